from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional

import pytest

from schemas.models import ApplicationStatus, GrantDefinition, Identity
from app.errors import GasApiError
from app.services.registry import build_definition
from app.services.state_store import MemorySessionCache, StateStore
from app.settings import Settings

AGREEMENTS_URL = "https://agreements.example.gov/agreement"

POST_SUBMISSION_RULES: List[Dict[str, str]] = [
    {"fromStatus": "SUBMITTED,REOPENED", "gasStatus": "APPLICATION_WITHDRAWN", "toStatus": "CLEARED", "toPath": "/start"},
    {"fromStatus": "SUBMITTED", "gasStatus": "AWAITING_AMENDMENTS", "toStatus": "REOPENED", "toPath": "/summary"},
    {"fromStatus": "REOPENED", "gasStatus": "default", "toStatus": "REOPENED", "toPath": "/summary"},
    {
        "fromStatus": "SUBMITTED",
        "gasStatus": "OFFER_SENT,OFFER_WITHDRAWN,OFFER_ACCEPTED",
        "toStatus": "SUBMITTED",
        "toPath": "__AGREEMENTS_BASE_URL__",
    },
    {"fromStatus": "SUBMITTED", "gasStatus": "default", "toStatus": "SUBMITTED", "toPath": "/confirmation"},
    {"fromStatus": "default", "gasStatus": "default", "toStatus": "SUBMITTED", "toPath": "/fallback"},
]


def grant_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": "Grant A",
        "pages": ["/start", "/question", "/summary", "/confirmation", "/fallback"],
        "metadata": {
            "id": "grant-a-id",
            "enabledInProd": True,
            "submission": {"grantCode": "grant-a-code"},
            "grantRedirectRules": {
                "preSubmission": [{"toPath": "/summary"}],
                "postSubmission": copy.deepcopy(POST_SUBMISSION_RULES),
            },
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_grant() -> Callable[..., GrantDefinition]:
    def _make(slug: str = "grant-a", payload: Optional[Dict[str, Any]] = None) -> GrantDefinition:
        return build_definition(slug, payload or grant_payload(), {}, AGREEMENTS_URL)

    return _make


@pytest.fixture
def grant(make_grant: Callable[..., GrantDefinition]) -> GrantDefinition:
    return make_grant()


@pytest.fixture
def grant_without_code(grant: GrantDefinition) -> GrantDefinition:
    """A grant that slipped past load-time checks with no submission.grantCode."""
    return grant.model_copy(update={"metadata": grant.metadata.model_copy(update={"submission": None})})


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id="CRN123", business_id="12345", grant_id="grant-a")


class FakeGas:
    """Stands in for GasClient: answers with `status` or raises `error`."""

    def __init__(self, status: str = "RECEIVED", error: Optional[Exception] = None):
        self.status = status
        self.error = error
        self.status_calls: List[tuple] = []
        self.submissions: List[tuple] = []
        self.submit_error: Optional[Exception] = None

    def get_application_status(self, grant_code: str, reference_number: str) -> str:
        self.status_calls.append((grant_code, reference_number))
        if self.error is not None:
            raise self.error
        return self.status

    def submit_application(self, grant_code: str, application: Dict[str, Any]) -> int:
        self.submissions.append((grant_code, application))
        if self.submit_error is not None:
            raise self.submit_error
        return 204


class FakeBackend:
    """In-memory durable backend keyed like the Mongo one."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.submissions: List[Dict[str, Any]] = []
        self.status_updates: List[tuple] = []

    def fetch_state(self, identity: Identity) -> Optional[Dict[str, Any]]:
        row = self.rows.get(identity.key)
        return copy.deepcopy(row) if row is not None else None

    def save_state(self, identity: Identity, state: Dict[str, Any]) -> None:
        self.rows[identity.key] = copy.deepcopy(state)

    def update_application_status(self, identity: Identity, status: ApplicationStatus) -> None:
        self.status_updates.append((identity.key, status))
        self.rows.setdefault(identity.key, {})["applicationStatus"] = status.value

    def delete_state(self, identity: Identity) -> None:
        self.rows.pop(identity.key, None)

    def record_submission(self, submission: Dict[str, Any]) -> None:
        self.submissions.append(dict(submission))


class CountingStore(StateStore):
    """StateStore that records every write it is asked to do."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.writes: List[tuple] = []

    def set_state(self, identity, state):
        self.writes.append(("set_state", dict(state)))
        return super().set_state(identity, state)

    def update_application_status(self, identity, status):
        self.writes.append(("update_application_status", status))
        return super().update_application_status(identity, status)


@pytest.fixture
def gas() -> FakeGas:
    return FakeGas()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore(MemorySessionCache(), ttl_seconds=3600)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        GRANT_DEFINITIONS_DIR=str(tmp_path),
        AGREEMENTS_BASE_URL=AGREEMENTS_URL,
        SESSION_CACHE_ENGINE="memory",
        MONGO_URI=None,
    )
