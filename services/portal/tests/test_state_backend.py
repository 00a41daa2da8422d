from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from schemas.models import ApplicationStatus
from app.services.state_backend import MongoStateBackend

FILTER = {"userId": "CRN123", "businessId": "12345", "grantId": "grant-a"}


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def mongo_backend(db):
    return MongoStateBackend(db)


def test_save_state_upserts_by_identity_with_escaped_keys(mongo_backend, db, identity):
    mongo_backend.save_state(identity, {"$$__referenceNumber": "ABC-123-DEF", "q": "a"})

    filter_, update = db.state.update_one.call_args.args
    assert filter_ == FILTER
    assert update["$set"]["state"] == {"＄$__referenceNumber": "ABC-123-DEF", "q": "a"}
    assert db.state.update_one.call_args.kwargs["upsert"] is True


def test_fetch_state_restores_keys(mongo_backend, db, identity):
    db.state.find_one.return_value = {"state": {"＄$__referenceNumber": "ABC-123-DEF", "q": "a"}}
    assert mongo_backend.fetch_state(identity) == {"$$__referenceNumber": "ABC-123-DEF", "q": "a"}

    db.state.find_one.return_value = None
    assert mongo_backend.fetch_state(identity) is None


def test_status_update_touches_only_the_status_field(mongo_backend, db, identity):
    mongo_backend.update_application_status(identity, ApplicationStatus.REOPENED)
    update = db.state.update_one.call_args.args[1]
    assert update["$set"]["state.applicationStatus"] == "REOPENED"

    mongo_backend.update_application_status(identity, ApplicationStatus.UNSET)
    update = db.state.update_one.call_args.args[1]
    assert update["$unset"] == {"state.applicationStatus": ""}


def test_submissions_are_keyed_by_reference_number(mongo_backend, db):
    mongo_backend.record_submission({"referenceNumber": "ABC-123-DEF", "grantCode": "grant-a-code"})

    filter_, update = db.submissions.update_one.call_args.args
    assert filter_ == {"referenceNumber": "ABC-123-DEF"}
    assert update["$set"]["grantCode"] == "grant-a-code"


def test_delete_state(mongo_backend, db, identity):
    mongo_backend.delete_state(identity)
    db.state.delete_one.assert_called_once_with(FILTER)
