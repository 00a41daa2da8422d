"""
Portal status lifecycle.

    UNSET -> SUBMITTED -> {REOPENED, CLEARED} -> SUBMITTED (resubmission) ...

The matched redirect rule proposes the next status. Two GAS statuses carry
structural guards that the rule table cannot express: a stale poll must never
reopen or clear an application a second time.
"""
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models import APPLICATION_STATUS_FIELD, ApplicationStatus, GasStatus, Identity, RedirectRule
from app.services.state_store import StateStore

logger = logging.getLogger("portal.lifecycle")

S = ApplicationStatus

WITHDRAWABLE = frozenset({S.SUBMITTED, S.REOPENED})


class Transition(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous: ApplicationStatus
    new: ApplicationStatus
    noop: bool = False  # a guard refused the move; leave status and page alone

    @property
    def changed(self) -> bool:
        return not self.noop and self.new != self.previous


def amendments_guard(gas_status: str, previous: ApplicationStatus) -> Optional[Transition]:
    if gas_status != GasStatus.AWAITING_AMENDMENTS:
        return None
    if previous is S.SUBMITTED:
        return Transition(previous=previous, new=S.REOPENED)
    return Transition(previous=previous, new=previous, noop=True)


def withdrawal_guard(gas_status: str, previous: ApplicationStatus) -> Optional[Transition]:
    if gas_status != GasStatus.APPLICATION_WITHDRAWN:
        return None
    if previous in WITHDRAWABLE:
        return Transition(previous=previous, new=S.CLEARED)
    return Transition(previous=previous, new=previous, noop=True)


def next_status(previous: ApplicationStatus, gas_status: str, rule: RedirectRule) -> Transition:
    for guard in (amendments_guard, withdrawal_guard):
        t = guard(gas_status, previous)
        if t is not None:
            return t
    return Transition(previous=previous, new=rule.to_status)


def persist_transition(store: StateStore, identity: Identity, transition: Transition) -> bool:
    """Write the new status if it changed. Returns True when a write happened."""
    if not transition.changed:
        return False

    logger.info(
        "Application status transition",
        extra={
            "identity": identity.key,
            "from_status": transition.previous.value,
            "to_status": transition.new.value,
        },
    )
    if transition.new is S.CLEARED:
        # withdrawn: drop answers and reference, keep only the status
        store.set_state(identity, {APPLICATION_STATUS_FIELD: S.CLEARED.value})
    else:
        store.update_application_status(identity, transition.new)
    return True
