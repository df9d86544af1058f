"""Tests for the material request lifecycle."""

import pytest
from bson import ObjectId

from database import commit_revision, find_by_id
from errors import (
    ConcurrentModification,
    DuplicatePending,
    InvalidInput,
    InvalidTransition,
    NotAssigned,
    NotFound,
    Unauthorized,
)
from material_requests import MaterialRequestWorkflow

COSTUME = [{"name": "Cape", "quantity": 1, "unit": "pcs"}, {"name": "Face paint", "quantity": 2, "unit": "tubes"}]


@pytest.fixture
def submitted(requests_workflow, play_id, users):
    """A pending request from actor A."""
    return requests_workflow.submit(play_id, users["actor_a"], COSTUME)


def test_full_lifecycle(requests_workflow, submitted, users):
    """pending -> approved -> processing -> prepared -> collected."""
    rid = submitted["id"]
    assert submitted["status"] == "pending"
    assert submitted["requested_at"] is not None
    assert [m["name"] for m in submitted["materials"]] == ["Cape", "Face paint"]

    approved = requests_workflow.approve(rid)
    assert approved["status"] == "approved"
    assert approved["approved_at"] is not None

    with pytest.raises(InvalidTransition) as exc:
        requests_workflow.prepare(rid, users["jane"])
    assert exc.value.current == "approved"
    assert exc.value.attempted == "prepared"

    assert requests_workflow.mark_processing(rid)["status"] == "processing"

    prepared = requests_workflow.prepare(rid, users["jane"])
    assert prepared["status"] == "prepared"
    assert prepared["prepared_by"]["name"] == "Jane"
    assert prepared["prepared_at"] is not None

    collected = requests_workflow.collect(rid, users["actor_a"])
    assert collected["status"] == "collected"
    assert collected["collected_at"] is not None

    actions = [h["action"] for h in collected["history"]]
    assert actions == ["submitted", "approved", "processing", "prepared", "collected"]
    assert collected["revision"] == 4


def test_collect_twice_fails_second_time(requests_workflow, submitted, users):
    rid = submitted["id"]
    requests_workflow.approve(rid)
    requests_workflow.mark_processing(rid)
    requests_workflow.prepare(rid, users["jane"])

    requests_workflow.collect(rid, users["actor_a"])
    with pytest.raises(InvalidTransition):
        requests_workflow.collect(rid, users["actor_a"])


def test_collect_by_another_actor_is_unauthorized(requests_workflow, play_id, users):
    other = requests_workflow.submit(play_id, users["actor_b"], ["Spear"])
    requests_workflow.approve(other["id"])
    requests_workflow.mark_processing(other["id"])
    requests_workflow.prepare(other["id"], users["jane"])

    with pytest.raises(Unauthorized):
        requests_workflow.collect(other["id"], users["actor_a"])
    assert requests_workflow.collect(other["id"], users["actor_b"])["status"] == "collected"


def test_plain_material_names_are_accepted(requests_workflow, play_id, users):
    req = requests_workflow.submit(play_id, users["actor_b"], ["Spear", "Drum"])
    assert req["materials"] == [
        {"name": "Spear", "quantity": 1, "unit": "pcs"},
        {"name": "Drum", "quantity": 1, "unit": "pcs"},
    ]


def test_submit_requires_materials(requests_workflow, play_id, users):
    with pytest.raises(InvalidInput):
        requests_workflow.submit(play_id, users["actor_a"], [])


def test_submit_unknown_play(requests_workflow, users, missing_id):
    with pytest.raises(NotFound):
        requests_workflow.submit(missing_id, users["actor_a"], COSTUME)


def test_submit_unknown_actor(requests_workflow, play_id, missing_id):
    with pytest.raises(NotFound):
        requests_workflow.submit(play_id, missing_id, COSTUME)


@pytest.mark.parametrize("who", ["actor_c", "jane"])
def test_submit_requires_active_assignment(requests_workflow, play_id, users, who):
    with pytest.raises(NotAssigned):
        requests_workflow.submit(play_id, users[who], COSTUME)


def test_duplicate_pending_is_refused(requests_workflow, play_id, submitted, users):
    with pytest.raises(DuplicatePending):
        requests_workflow.submit(play_id, users["actor_a"], ["Hat"])

    requests_workflow.approve(submitted["id"])
    again = requests_workflow.submit(play_id, users["actor_a"], ["Hat"])
    assert again["status"] == "pending"


@pytest.mark.parametrize("steps", [[], ["approve"]])
def test_reject_from_pending_or_approved(requests_workflow, submitted, steps):
    for step in steps:
        getattr(requests_workflow, step)(submitted["id"])
    rejected = requests_workflow.reject(submitted["id"], reason="Budget exhausted")
    assert rejected["status"] == "rejected"
    assert rejected["rejected_at"] is not None
    assert rejected["history"][-1]["detail"] == "Budget exhausted"


def test_reject_after_processing_is_invalid(requests_workflow, submitted):
    requests_workflow.approve(submitted["id"])
    requests_workflow.mark_processing(submitted["id"])
    with pytest.raises(InvalidTransition):
        requests_workflow.reject(submitted["id"])


def test_rejected_is_terminal(requests_workflow, submitted):
    requests_workflow.reject(submitted["id"])
    with pytest.raises(InvalidTransition):
        requests_workflow.approve(submitted["id"])


def test_approve_twice_fails(requests_workflow, submitted):
    requests_workflow.approve(submitted["id"])
    with pytest.raises(InvalidTransition):
        requests_workflow.approve(submitted["id"])


def test_play_scoped_lookup(requests_workflow, submitted, play_id, missing_id):
    assert requests_workflow.approve(submitted["id"], play_id=play_id)["status"] == "approved"
    with pytest.raises(NotFound):
        requests_workflow.mark_processing(submitted["id"], play_id=missing_id)


def test_unknown_request(requests_workflow):
    with pytest.raises(NotFound):
        requests_workflow.approve(str(ObjectId()))


def test_prepare_from_approved_when_enabled(db, identity, play_id, users):
    workflow = MaterialRequestWorkflow(db, identity, allow_prepare_from_approved=True)
    req = workflow.submit(play_id, users["actor_a"], COSTUME)
    workflow.approve(req["id"])
    assert workflow.prepare(req["id"], users["jane"])["status"] == "prepared"


def test_acting_user_recorded_in_history(requests_workflow, submitted, users):
    approved = requests_workflow.approve(submitted["id"], by=users["admin"])
    assert approved["history"][-1]["actor"]["name"] == "Ada"


def test_stale_write_is_refused(db, requests_workflow, submitted):
    stale = find_by_id("materialrequest", submitted["id"], database=db)
    requests_workflow.approve(submitted["id"])
    with pytest.raises(ConcurrentModification):
        commit_revision("materialrequest", stale, {"status": "rejected"}, database=db)
    assert find_by_id("materialrequest", submitted["id"], database=db)["status"] == "approved"


def test_incomplete_play_record_is_invalid_input(db, requests_workflow, users):
    """A cast entry without a role is reported as bad data, not a crash."""
    broken = str(db["play"].insert_one({
        "title": "Death and the King's Horseman",
        "actors": [{"actor_id": users["actor_a"], "status": "Active"}],
    }).inserted_id)
    with pytest.raises(InvalidInput):
        requests_workflow.submit(broken, users["actor_a"], ["Cloak"])
    assert db["materialrequest"].count_documents({}) == 0


def test_incomplete_user_record_is_invalid_input(db, identity):
    nameless = str(db["user"].insert_one({"email": "ghost@example.com", "role": "Actor"}).inserted_id)
    with pytest.raises(InvalidInput):
        identity.stamp(nameless)
