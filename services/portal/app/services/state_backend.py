# services/portal/app/services/state_backend.py
import time
from typing import Any, Dict, Optional, Protocol

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from schemas.models import APPLICATION_STATUS_FIELD, ApplicationStatus, Identity


class StateBackend(Protocol):
    def fetch_state(self, identity: Identity) -> Optional[Dict[str, Any]]: ...
    def save_state(self, identity: Identity, state: Dict[str, Any]) -> None: ...
    def update_application_status(self, identity: Identity, status: ApplicationStatus) -> None: ...
    def delete_state(self, identity: Identity) -> None: ...
    def record_submission(self, submission: Dict[str, Any]) -> None: ...


def mongo(uri: str, dbname: str) -> Database:
    cli = MongoClient(uri)
    db = cli.get_database(dbname)

    # indexes (idempotent)
    db.state.create_index(
        [("userId", ASCENDING), ("businessId", ASCENDING), ("grantId", ASCENDING)],
        unique=True,
    )
    db.submissions.create_index([("referenceNumber", ASCENDING)], unique=True)
    return db


# mongo rejects $-prefixed field names in updates
_DOLLAR = "$"
_ESCAPED_DOLLAR = "\uff04"


def _escape_keys(state: Dict[str, Any]) -> Dict[str, Any]:
    return {(_ESCAPED_DOLLAR + k[1:] if k.startswith(_DOLLAR) else k): v for k, v in state.items()}


def _unescape_keys(state: Dict[str, Any]) -> Dict[str, Any]:
    return {(_DOLLAR + k[1:] if k.startswith(_ESCAPED_DOLLAR) else k): v for k, v in state.items()}


def _identity_filter(identity: Identity) -> Dict[str, str]:
    return {
        "userId": identity.user_id,
        "businessId": identity.business_id,
        "grantId": identity.grant_id,
    }


class MongoStateBackend:
    """Durable copy of session state, queried by the business/user/grant triple."""

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def from_uri(cls, uri: str, dbname: str) -> "MongoStateBackend":
        return cls(mongo(uri, dbname))

    def fetch_state(self, identity: Identity) -> Optional[Dict[str, Any]]:
        row = self.db.state.find_one(_identity_filter(identity), projection={"_id": False})
        if not row:
            return None
        return _unescape_keys(row.get("state") or {})

    def save_state(self, identity: Identity, state: Dict[str, Any]) -> None:
        self.db.state.update_one(
            _identity_filter(identity),
            {"$set": {"state": _escape_keys(state), "updatedAt": int(time.time())}},
            upsert=True,
        )

    def update_application_status(self, identity: Identity, status: ApplicationStatus) -> None:
        field = f"state.{APPLICATION_STATUS_FIELD}"
        if status is ApplicationStatus.UNSET:
            update = {"$unset": {field: ""}, "$set": {"updatedAt": int(time.time())}}
        else:
            update = {"$set": {field: status.value, "updatedAt": int(time.time())}}
        self.db.state.update_one(_identity_filter(identity), update, upsert=True)

    def delete_state(self, identity: Identity) -> None:
        self.db.state.delete_one(_identity_filter(identity))

    def record_submission(self, submission: Dict[str, Any]) -> None:
        # resubmissions of the same reference overwrite the previous record
        self.db.submissions.update_one(
            {"referenceNumber": submission["referenceNumber"]},
            {"$set": submission},
            upsert=True,
        )
