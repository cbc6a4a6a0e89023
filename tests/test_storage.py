import numpy as np
import pytest
from sqlalchemy import select

from scrutin.models import AuditAction, AuditLog, Vote
from scrutin.services.audit_service import audit_service
from scrutin.services.errors import (
    DuplicateVoteError, ElectionClosedError, UnknownElectionError, UnknownOptionError
)
from scrutin.services.profile_service import profile_service
from scrutin.services.vote_service import vote_service
from tests.conftest import BrokenSession


async def test_insert_vote(db, voter, election):
    vote = await vote_service.insert_vote(
        db, voter.id, election.id, "party1", face_verified=True, blink_verified=True,
        ip_address="127.0.0.1", user_agent="pytest",
    )
    assert vote.id is not None
    assert vote.selected_option == "party1"
    assert await vote_service.voted_election_ids(db, voter.id) == {election.id}


async def test_second_vote_is_duplicate(db, voter, election):
    # Le rollback du doublon expire les objets de la session
    user_id, election_id = voter.id, election.id
    await vote_service.insert_vote(db, user_id, election_id, "party1", True, True)

    with pytest.raises(DuplicateVoteError):
        await vote_service.insert_vote(db, user_id, election_id, "party2", True, True)

    result = await db.execute(select(Vote).where(Vote.user_id == user_id))
    assert len(result.scalars().all()) == 1


async def test_unknown_option_rejected(db, voter, election):
    with pytest.raises(UnknownOptionError):
        await vote_service.insert_vote(db, voter.id, election.id, "party9", True, True)


async def test_unknown_election_rejected(db, voter):
    with pytest.raises(UnknownElectionError):
        await vote_service.insert_vote(db, voter.id, 999, "party1", True, True)


async def test_inactive_election_is_closed(db, voter, election):
    election.is_active = False
    await db.commit()

    with pytest.raises(ElectionClosedError):
        await vote_service.insert_vote(db, voter.id, election.id, "party1", True, True)
    assert await vote_service.list_active_elections(db) == []


async def test_string_options_are_normalized(election):
    election.options = ["Oui", "Non"]
    assert election.normalized_options()[0] == {"id": "Oui", "name": "Oui", "description": None}


async def test_template_round_trip_is_encrypted(db, voter):
    template = np.linspace(0, 1, 128)
    profile = await profile_service.save_template(db, voter.id, template, "/uploads/1/face.jpg")

    assert profile.is_verified
    assert profile.face_descriptor != template.tobytes()
    loaded = await profile_service.load_template(db, voter.id)
    assert np.allclose(loaded, template)


async def test_save_template_replaces_previous(db, voter):
    await profile_service.save_template(db, voter.id, np.zeros(128))
    await profile_service.save_template(db, voter.id, np.ones(128))

    assert (await profile_service.load_template(db, voter.id)).tolist() == [1.0] * 128


async def test_store_image_returns_public_reference():
    url = await profile_service.store_image("7/7_face_1.jpg", b"jpeg")

    assert url == "/uploads/7/7_face_1.jpg"
    assert (profile_service.upload_dir / "7" / "7_face_1.jpg").read_bytes() == b"jpeg"


async def test_audit_append(db, voter):
    ok = await audit_service.append(voter.id, AuditAction.VOTE_SUBMITTED, {"election_id": 1})

    assert ok
    result = await db.execute(select(AuditLog))
    assert result.scalar_one().details == {"election_id": 1}


async def test_audit_failure_is_not_propagated(monkeypatch):
    broken = BrokenSession()
    monkeypatch.setattr(audit_service, "session_maker", lambda: broken)

    assert not await audit_service.append(1, AuditAction.FACE_REGISTERED)
    assert broken.rolled_back
