import logging
from typing import Any, Dict, Optional

from schemas.models import (
    CONTINUE,
    REFERENCE_NUMBER_FIELD,
    ApplicationStatus,
    GrantDefinition,
    Identity,
    Outcome,
    ReconciliationContext,
    RedirectRule,
    redirect,
)
from app.clients.gas import GasClient
from app.errors import GasApiError, GrantConfigurationError
from app.services.lifecycle import next_status, persist_transition
from app.services.paths import grant_path, is_same_path
from app.services.rules import fallback_rule, match
from app.services.state_store import StateStore

logger = logging.getLogger("portal.status")

S = ApplicationStatus

# nothing submitted, or the submission has been voided / handed back
PRE_SUBMISSION = frozenset({S.UNSET, S.CLEARED, S.REOPENED})


def build_context(grant: GrantDefinition, current_path: str, state: Dict[str, Any]) -> ReconciliationContext:
    grant_code = grant.grant_code
    if not grant_code:
        raise GrantConfigurationError(f"Grant '{grant.slug}' has no submission.grantCode configured")
    return ReconciliationContext(
        previous_status=S.from_state(state),
        reference_number=state.get(REFERENCE_NUMBER_FIELD),
        grant_code=grant_code,
        current_path=current_path,
        start_path=grant.start_path,
        state=state,
    )


def _redirect_unless_here(destination: str, current_path: str) -> Outcome:
    if is_same_path(destination, current_path):
        return CONTINUE
    return redirect(destination)


def is_start_page(grant: GrantDefinition, ctx: ReconciliationContext) -> bool:
    return is_same_path(ctx.current_path, grant_path(grant.slug, ctx.start_path))


def pre_submission_redirect(grant: GrantDefinition, ctx: ReconciliationContext) -> Outcome:
    """
    An applicant with saved answers who lands on the start page is sent to the
    grant's resume ("check answers") page. Tasklist journeys are not handled.
    """
    if ctx.has_meaningful_state and is_start_page(grant, ctx) and not grant.is_tasklist:
        return _redirect_unless_here(grant_path(grant.slug, grant.rules.resume_path), ctx.current_path)
    return CONTINUE


class StatusReconciler:
    """Runs once per grant page request, before the page renders."""

    def __init__(self, store: StateStore, gas: GasClient):
        self.store = store
        self.gas = gas

    def reconcile(
        self,
        grant: Optional[GrantDefinition],
        identity: Identity,
        current_path: str,
        state: Dict[str, Any],
        *,
        resume_on_start: bool = True,
    ) -> Outcome:
        """
        Decide whether the request continues or redirects. Pass
        resume_on_start=False for writes: the resume redirect only applies when
        landing on the start page, never to answers being posted there.
        """
        if grant is None:
            return CONTINUE

        ctx = build_context(grant, current_path, state)

        if ctx.previous_status in PRE_SUBMISSION:
            return pre_submission_redirect(grant, ctx) if resume_on_start else CONTINUE

        if ctx.previous_status is not S.SUBMITTED:
            return CONTINUE

        if not ctx.reference_number:
            logger.warning(
                "Submitted application has no reference number; skipping status check",
                extra={"grant_code": ctx.grant_code, "identity": identity.key},
            )
            return CONTINUE

        rules = grant.rules.post_submission
        try:
            gas_status = self.gas.get_application_status(ctx.grant_code, ctx.reference_number)
        except GasApiError as e:
            if e.is_not_found:
                # no submission upstream yet
                return CONTINUE

            logger.error(
                "Submission redirect failure",
                extra={
                    "grant_code": ctx.grant_code,
                    "reference_number": ctx.reference_number,
                    "error": str(e),
                },
            )
            return self._follow(grant, fallback_rule(rules), ctx)

        rule = match(ctx.previous_status.value, gas_status, rules)
        transition = next_status(ctx.previous_status, gas_status, rule)
        persist_transition(self.store, identity, transition)

        if transition.noop:
            return CONTINUE
        return self._follow(grant, rule, ctx)

    @staticmethod
    def _follow(grant: GrantDefinition, rule: RedirectRule, ctx: ReconciliationContext) -> Outcome:
        return _redirect_unless_here(grant_path(grant.slug, rule.to_path), ctx.current_path)
