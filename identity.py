"""Resolves user ids to identity stamps recorded on privileged actions."""

from datetime import datetime
from typing import Iterable, Optional

from pydantic import ValidationError

from database import find_by_id, now
from errors import InvalidInput, NotFound, Unauthorized
from schemas import HistoryEntry, Stamp, User


class IdentityService:
    def __init__(self, database):
        self.db = database

    def resolve(self, user_id: str) -> dict:
        doc = find_by_id("user", user_id, database=self.db)
        if not doc:
            raise NotFound("User", str(user_id))
        try:
            user = User.model_validate(doc)
        except ValidationError as e:
            raise InvalidInput(f"User record {user_id} is incomplete: {e.errors()[0]['msg']}")
        return {"id": str(doc["_id"]), "name": user.name, "role": user.role, "email": user.email}

    def stamp(self, user_id: str, allowed_roles: Optional[Iterable[str]] = None) -> Stamp:
        """Resolve ``user_id`` and check it holds one of ``allowed_roles``."""
        user = self.resolve(user_id)
        if allowed_roles is not None and user["role"] not in allowed_roles:
            raise Unauthorized(f"{user['name']} ({user['role']}) may not perform this action")
        return Stamp(id=user["id"], name=user["name"], role=user["role"])

    def optional_stamp(self, user_id: Optional[str]) -> Optional[Stamp]:
        return self.stamp(user_id) if user_id else None


def history_entry(action: str, actor: Optional[Stamp] = None, detail: Optional[str] = None,
                  timestamp: Optional[datetime] = None) -> dict:
    return HistoryEntry(actor=actor, action=action, timestamp=timestamp or now(), detail=detail).model_dump()
