# services/portal/app/routers/submission.py
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from app.errors import SubmissionError
from app.identity import resolve_identity
from app.portal import Portal
from app.services.paths import grant_path
from app.services.submission import submit_application

router = APIRouter(tags=["submission"])

SUBMIT_PAGE = "/submit"


class SubmissionErrorView(BaseModel):
    heading: str = "Sorry, there was a problem submitting the application"
    ref_number: str = "N/A"
    back_link: Optional[str] = None


@router.post("/{slug}/submit")
def submit(slug: str, request: Request):
    portal: Portal = request.app.state.portal
    grant = portal.grants.get(slug)
    identity = resolve_identity(request, slug, portal.settings)

    # an application GAS already holds is not sent again
    state = portal.store.get_state(identity)
    outcome = portal.reconciler.reconcile(grant, identity, grant_path(slug, SUBMIT_PAGE), state)
    if outcome.is_redirect:
        return RedirectResponse(outcome.location, status_code=303)

    try:
        confirmation = submit_application(
            grant=grant,
            identity=identity,
            store=portal.store,
            gas=portal.gas,
            backend=portal.backend,
        )
    except SubmissionError as e:
        view = SubmissionErrorView(ref_number=e.reference_number or "N/A")
        return JSONResponse(status_code=502, content=view.model_dump())

    return RedirectResponse(confirmation, status_code=303)
