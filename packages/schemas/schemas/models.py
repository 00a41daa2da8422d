# packages/schemas/schemas/models.py
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Optional
from urllib.parse import urlsplit

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

# ----- Common -----
DEFAULT = "default"

APPLICATION_STATUS_FIELD = "applicationStatus"
REFERENCE_NUMBER_FIELD = "$$__referenceNumber"
BASE_STATE_KEYS = frozenset({APPLICATION_STATUS_FIELD, REFERENCE_NUMBER_FIELD})


class ApplicationStatus(str, Enum):
    """Portal-owned lifecycle status. UNSET is never written, it is the missing field."""

    UNSET = "UNSET"
    SUBMITTED = "SUBMITTED"
    REOPENED = "REOPENED"
    CLEARED = "CLEARED"

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "ApplicationStatus":
        raw = state.get(APPLICATION_STATUS_FIELD)
        if not raw:
            return cls.UNSET
        try:
            return cls(raw)
        except ValueError:
            # unknown values are treated as "nothing to reconcile"
            return cls.UNSET


class GasStatus:
    """Statuses observed from GAS. The set is open: unknown strings are valid."""

    RECEIVED = "RECEIVED"
    AWAITING_AMENDMENTS = "AWAITING_AMENDMENTS"
    APPLICATION_WITHDRAWN = "APPLICATION_WITHDRAWN"
    OFFER_SENT = "OFFER_SENT"
    OFFER_WITHDRAWN = "OFFER_WITHDRAWN"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"

    KNOWN = (
        RECEIVED,
        AWAITING_AMENDMENTS,
        APPLICATION_WITHDRAWN,
        OFFER_SENT,
        OFFER_WITHDRAWN,
        OFFER_ACCEPTED,
    )


def is_absolute_url(path: str) -> bool:
    parts = urlsplit(path)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def _split_csv(value: str) -> FrozenSet[str]:
    return frozenset(p.strip() for p in value.split(",") if p.strip())


def _check_to_path(value: str) -> str:
    if not (value.startswith("/") or is_absolute_url(value)):
        raise ValueError(f"toPath must start with '/' or be an absolute URL, got {value!r}")
    return value


ToPath = Annotated[str, AfterValidator(_check_to_path)]


# =========================
#  REDIRECT RULES
# =========================
class PreSubmissionRule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    to_path: ToPath = Field(alias="toPath")


class RedirectRule(BaseModel):
    """
    One row of a grant's post-submission table:
    (fromStatus, gasStatus) -> (toStatus, toPath).
    fromStatus / gasStatus accept "default" or a comma separated list.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    from_status: str = Field(alias="fromStatus", min_length=1)
    gas_status: str = Field(alias="gasStatus", min_length=1)
    to_status: ApplicationStatus = Field(alias="toStatus")
    to_path: ToPath = Field(alias="toPath")

    @field_validator("from_status")
    @classmethod
    def _known_from_statuses(cls, v: str) -> str:
        allowed = {s.value for s in ApplicationStatus} | {DEFAULT}
        unknown = sorted(_split_csv(v) - allowed)
        if unknown or not _split_csv(v):
            raise ValueError(f"unknown fromStatus value(s): {', '.join(unknown) or repr(v)}")
        return v

    @field_validator("gas_status")
    @classmethod
    def _non_empty_gas_statuses(cls, v: str) -> str:
        if not _split_csv(v):
            raise ValueError("gasStatus must not be blank")
        return v

    @field_validator("to_status")
    @classmethod
    def _writable_status(cls, v: ApplicationStatus) -> ApplicationStatus:
        if v is ApplicationStatus.UNSET:
            raise ValueError("toStatus cannot be UNSET")
        return v

    @property
    def from_set(self) -> FrozenSet[str]:
        return _split_csv(self.from_status)

    @property
    def gas_set(self) -> FrozenSet[str]:
        return _split_csv(self.gas_status)

    @property
    def is_fallback(self) -> bool:
        return self.from_set == {DEFAULT} and self.gas_set == {DEFAULT}


class GrantRedirectRules(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pre_submission: List[PreSubmissionRule] = Field(alias="preSubmission", default_factory=list)
    post_submission: List[RedirectRule] = Field(alias="postSubmission", default_factory=list)

    @property
    def resume_path(self) -> str:
        return self.pre_submission[0].to_path


# =========================
#  GRANT DEFINITION
# =========================
class SubmissionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grant_code: Optional[str] = Field(alias="grantCode", default=None)


class GrantMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    enabled_in_prod: bool = Field(alias="enabledInProd", default=False)
    tasklist_id: Optional[str] = Field(alias="tasklistId", default=None)
    submission: Optional[SubmissionConfig] = None
    grant_redirect_rules: GrantRedirectRules = Field(alias="grantRedirectRules")


class GrantDefinition(BaseModel):
    """A grant journey as served by the portal (slug comes from the file name)."""

    model_config = ConfigDict(populate_by_name=True)

    slug: str
    name: str
    pages: List[str] = Field(min_length=1)
    metadata: GrantMetadata

    @property
    def start_path(self) -> str:
        return self.pages[0]

    @property
    def grant_code(self) -> Optional[str]:
        return self.metadata.submission.grant_code if self.metadata.submission else None

    @property
    def is_tasklist(self) -> bool:
        return self.metadata.tasklist_id is not None

    @property
    def rules(self) -> GrantRedirectRules:
        return self.metadata.grant_redirect_rules


# =========================
#  SESSION / RECONCILIATION
# =========================
class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    business_id: str
    grant_id: str

    @property
    def key(self) -> str:
        return f"{self.user_id}:{self.business_id}:{self.grant_id}"


class ReconciliationContext(BaseModel):
    """Derived per request from session state + route. Never persisted."""

    previous_status: ApplicationStatus = ApplicationStatus.UNSET
    reference_number: Optional[str] = None
    grant_code: str
    current_path: str
    start_path: str
    state: Dict[str, Any] = {}

    @property
    def has_meaningful_state(self) -> bool:
        return any(k not in BASE_STATE_KEYS for k in self.state)


class Outcome(BaseModel):
    """Either continue with normal page handling or redirect to `location`."""

    model_config = ConfigDict(frozen=True)

    location: Optional[str] = None

    @property
    def is_redirect(self) -> bool:
        return self.location is not None


CONTINUE = Outcome()


def redirect(location: str) -> Outcome:
    return Outcome(location=location)


class GasStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = Field(min_length=1)
