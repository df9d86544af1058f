"""
Material request lifecycle.

    pending -> approved -> processing -> prepared -> collected
    pending | approved -> rejected

The standalone ``materialrequest`` collection is the only store; the per-play
listing is a read-only projection (see queries.WorkflowQueryService). Every
transition is a conditional write on the request's revision, so re-applying a
transition or racing another writer fails instead of silently succeeding.
"""

from typing import List, Optional

from pydantic import ValidationError

from config import Config
from database import commit_revision, create_document, find_by_id, now, oid, with_id
from errors import DuplicatePending, InvalidInput, InvalidTransition, NotAssigned, NotFound, Unauthorized
from identity import IdentityService, history_entry
from logger import logger
from schemas import MaterialRequest, Play

COLLECTION = "materialrequest"

ALLOWED_FROM = {
    "approved": ("pending",),
    "processing": ("approved",),
    "prepared": ("processing",),
    "collected": ("prepared",),
    "rejected": ("pending", "approved"),
}

TIMESTAMP_FIELDS = {
    "approved": "approved_at",
    "processing": "processing_at",
    "prepared": "prepared_at",
    "collected": "collected_at",
    "rejected": "rejected_at",
}


class MaterialRequestWorkflow:
    def __init__(self, database, identity: IdentityService, allow_prepare_from_approved: Optional[bool] = None):
        self.db = database
        self.identity = identity
        if allow_prepare_from_approved is None:
            allow_prepare_from_approved = Config.ALLOW_PREPARE_FROM_APPROVED
        self.allow_prepare_from_approved = allow_prepare_from_approved

    def _allowed_from(self, target: str) -> tuple:
        if target == "prepared" and self.allow_prepare_from_approved:
            return ("approved", "processing")
        return ALLOWED_FROM[target]

    def _load(self, request_id: str, play_id: Optional[str] = None) -> dict:
        doc = find_by_id(COLLECTION, request_id, database=self.db)
        if not doc:
            raise NotFound("Material request", str(request_id))
        if play_id is not None and doc.get("play_id") != str(oid(play_id)):
            raise NotFound("Material request", f"{request_id} in play {play_id}")
        return doc

    def _transition(self, request_id, target, play_id=None, actor=None, detail=None, extra=None) -> dict:
        doc = self._load(request_id, play_id)
        current = doc.get("status") or "pending"
        if current not in self._allowed_from(target):
            raise InvalidTransition(current, target)
        stamp = now()
        changes = {"status": target, TIMESTAMP_FIELDS[target]: stamp}
        if extra:
            changes.update(extra)
        entry = history_entry(target, actor=actor, detail=detail, timestamp=stamp)
        updated = commit_revision(COLLECTION, doc, changes, entry, database=self.db)
        logger.info(f"Material request {request_id}: {current} -> {target}")
        return with_id(updated)

    # ---------- Operations ----------

    def submit(self, play_id: str, actor_id: str, materials: List) -> dict:
        doc = find_by_id("play", play_id, database=self.db)
        if not doc:
            raise NotFound("Play", str(play_id))
        actor = self.identity.stamp(actor_id)

        try:
            roster = Play.model_validate(doc)
        except ValidationError as e:
            raise InvalidInput(f"Play record {play_id} is incomplete: {e.errors()[0]['msg']}")
        assigned = {a.actor_id for a in roster.actors if a.status == "Active"}
        if actor.id not in assigned:
            raise NotAssigned("Actor is not assigned to this play")

        play_key = str(doc["_id"])
        existing = self.db[COLLECTION].find_one({"play_id": play_key, "actor_id": actor.id, "status": "pending"})
        if existing:
            raise DuplicatePending("Actor already has a pending material request for this play")

        requested_at = now()
        try:
            request = MaterialRequest(
                actor_id=actor.id,
                play_id=play_key,
                materials=materials,
                requested_at=requested_at,
                history=[history_entry("submitted", actor=actor, timestamp=requested_at)],
            )
        except ValidationError as e:
            raise InvalidInput(f"Invalid materials: {e.errors()[0]['msg']}")

        request_id = create_document(COLLECTION, request, database=self.db)
        logger.info(f"Material request {request_id} submitted by actor {actor.id} for play {play_key}")
        return with_id(self.db[COLLECTION].find_one({"_id": oid(request_id)}))

    def approve(self, request_id: str, play_id: Optional[str] = None, by: Optional[str] = None) -> dict:
        return self._transition(request_id, "approved", play_id, actor=self.identity.optional_stamp(by))

    def mark_processing(self, request_id: str, play_id: Optional[str] = None, by: Optional[str] = None) -> dict:
        return self._transition(request_id, "processing", play_id, actor=self.identity.optional_stamp(by))

    def prepare(self, request_id: str, prepared_by: str, play_id: Optional[str] = None) -> dict:
        preparer = self.identity.stamp(prepared_by)
        return self._transition(
            request_id, "prepared", play_id,
            actor=preparer,
            extra={"prepared_by": preparer.model_dump()},
        )

    def collect(self, request_id: str, actor_id: str, play_id: Optional[str] = None) -> dict:
        doc = self._load(request_id, play_id)
        if doc.get("actor_id") != str(actor_id):
            raise Unauthorized("Not authorized to collect another actor's material request")
        return self._transition(request_id, "collected", play_id, actor=self.identity.optional_stamp(actor_id))

    def reject(self, request_id: str, reason: Optional[str] = None, play_id: Optional[str] = None,
               by: Optional[str] = None) -> dict:
        extra = {"notes": reason} if reason else None
        return self._transition(
            request_id, "rejected", play_id,
            actor=self.identity.optional_stamp(by), detail=reason, extra=extra,
        )
