import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from schemas.models import (
    APPLICATION_STATUS_FIELD,
    BASE_STATE_KEYS,
    REFERENCE_NUMBER_FIELD,
    ApplicationStatus,
    GrantDefinition,
    Identity,
)
from app.clients.gas import GasClient
from app.errors import GasApiError, GrantConfigurationError, SubmissionError
from app.services.paths import grant_path
from app.services.state_backend import StateBackend
from app.services.state_store import StateStore

logger = logging.getLogger("portal.submission")

SUBMITTED_AT_FIELD = "submittedAt"
SUBMITTED_BY_FIELD = "submittedBy"
BOOKKEEPING_FIELDS = BASE_STATE_KEYS | {SUBMITTED_AT_FIELD, SUBMITTED_BY_FIELD}

_REF_ALPHABET = string.ascii_uppercase + string.digits


def new_reference_number() -> str:
    """e.g. 'K7Q-2ZD-91X'"""
    return "-".join("".join(secrets.choice(_REF_ALPHABET) for _ in range(3)) for _ in range(3))


def answers_from_state(state: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in state.items() if k not in BOOKKEEPING_FIELDS}


def build_gas_application(
    identity: Identity,
    state: Dict[str, Any],
    submitted_at: str,
) -> Dict[str, Any]:
    reference_number = state[REFERENCE_NUMBER_FIELD]
    return {
        "metadata": {
            "clientRef": reference_number.lower(),
            "sbi": identity.business_id,
            "crn": identity.user_id,
            "submittedAt": submitted_at,
        },
        "answers": answers_from_state(state),
    }


def submit_application(
    *,
    grant: GrantDefinition,
    identity: Identity,
    store: StateStore,
    gas: GasClient,
    backend: Optional[StateBackend] = None,
) -> str:
    """
    Send the current answers to GAS and mark the session SUBMITTED.
    Returns the confirmation path to redirect to.
    Resubmitting the same reference number is safe: GAS keys on clientRef.
    """
    grant_code = grant.grant_code
    if not grant_code:
        raise GrantConfigurationError(f"Grant '{grant.slug}' has no submission.grantCode configured")

    state = store.get_state(identity)
    reference_number = state.get(REFERENCE_NUMBER_FIELD)
    if not reference_number:
        raise SubmissionError("No reference number in session state; nothing to submit")

    submitted_at = datetime.now(timezone.utc).isoformat()
    application = build_gas_application(identity, state, submitted_at)

    try:
        status = gas.submit_application(grant_code, application)
    except GasApiError as e:
        logger.error(
            "Submission to GAS failed",
            extra={
                "grant_code": grant_code,
                "reference_number": reference_number,
                "sbi": identity.business_id,
                "crn": identity.user_id,
                "error": str(e),
            },
        )
        raise SubmissionError(str(e), reference_number=reference_number) from e

    logger.info(
        "Submission completed",
        extra={
            "grant_code": grant_code,
            "reference_number": reference_number,
            "number_of_fields": len(application["answers"]),
            "status": status,
        },
    )

    store.merge_state(
        identity,
        {
            APPLICATION_STATUS_FIELD: ApplicationStatus.SUBMITTED.value,
            SUBMITTED_AT_FIELD: submitted_at,
            SUBMITTED_BY_FIELD: identity.user_id,
        },
    )

    if backend is not None:
        backend.record_submission(
            {
                "crn": identity.user_id,
                "sbi": identity.business_id,
                "grantCode": grant_code,
                "referenceNumber": reference_number,
                "submittedAt": submitted_at,
            }
        )

    return grant_path(grant.slug, "/confirmation")
