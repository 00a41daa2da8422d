# services/portal/app/routers/pages.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from schemas.models import REFERENCE_NUMBER_FIELD, ApplicationStatus, GrantDefinition, Identity
from app.identity import resolve_identity
from app.portal import Portal
from app.services.paths import canonical_path, grant_path, is_same_path
from app.services.submission import BOOKKEEPING_FIELDS, answers_from_state, new_reference_number

router = APIRouter(tags=["pages"])

SEE_OTHER = 303


class PageView(BaseModel):
    """What the template layer would render for a grant page."""

    grant: str
    grant_name: str
    page: str
    reference_number: Optional[str] = None
    application_status: ApplicationStatus
    answers: Dict[str, Any] = {}


class SaveAnswersResponse(BaseModel):
    ok: bool
    saved: int
    next_path: Optional[str] = None


def _portal(request: Request) -> Portal:
    return request.app.state.portal


def _page_path(grant: GrantDefinition, page: str) -> str:
    page_path = canonical_path(page)
    if not any(is_same_path(page_path, p) for p in grant.pages):
        raise HTTPException(status_code=404, detail="Page not found")
    return page_path


def _ensure_reference(portal: Portal, identity: Identity) -> Dict[str, Any]:
    state = portal.store.get_state(identity)
    if not state.get(REFERENCE_NUMBER_FIELD):
        state = portal.store.merge_state(identity, {REFERENCE_NUMBER_FIELD: new_reference_number()})
    return state


def _next_path(grant: GrantDefinition, page_path: str) -> Optional[str]:
    pages = [canonical_path(p) for p in grant.pages]
    idx = pages.index(page_path)
    if idx + 1 < len(pages):
        return grant_path(grant.slug, pages[idx + 1])
    return None


@router.get("/{slug}")
def grant_root(slug: str, request: Request):
    grant = _portal(request).grants.get(slug)
    return RedirectResponse(grant_path(slug, grant.start_path), status_code=SEE_OTHER)


@router.get("/{slug}/{page:path}", response_model=PageView)
def get_page(slug: str, page: str, request: Request):
    """
    Reconcile the application status before rendering; the reconciler may
    send the user elsewhere (confirmation, resume page, agreements, ...).
    """
    portal = _portal(request)
    grant = portal.grants.get(slug)
    page_path = _page_path(grant, page)
    identity = resolve_identity(request, slug, portal.settings)

    state = portal.store.get_state(identity)
    outcome = portal.reconciler.reconcile(grant, identity, grant_path(slug, page_path), state)
    if outcome.is_redirect:
        return RedirectResponse(outcome.location, status_code=SEE_OTHER)

    # after reconciling: a withdrawal rewrites the state and drops the old reference
    state = _ensure_reference(portal, identity)
    return PageView(
        grant=slug,
        grant_name=grant.name,
        page=page_path,
        reference_number=state.get(REFERENCE_NUMBER_FIELD),
        application_status=ApplicationStatus.from_state(state),
        answers=answers_from_state(state),
    )


@router.post("/{slug}/{page:path}", response_model=SaveAnswersResponse)
def save_answers(slug: str, page: str, request: Request, answers: Dict[str, Any] = Body(...)):
    """Shallow-merge the answers posted from a page into the session state."""
    portal = _portal(request)
    grant = portal.grants.get(slug)
    page_path = _page_path(grant, page)
    identity = resolve_identity(request, slug, portal.settings)

    state = portal.store.get_state(identity)
    outcome = portal.reconciler.reconcile(
        grant, identity, grant_path(slug, page_path), state, resume_on_start=False
    )
    if outcome.is_redirect:
        return RedirectResponse(outcome.location, status_code=SEE_OTHER)

    _ensure_reference(portal, identity)
    # bookkeeping fields are owned by the portal, never by the form
    partial = {k: v for k, v in answers.items() if k not in BOOKKEEPING_FIELDS}
    portal.store.merge_state(identity, partial)
    return SaveAnswersResponse(ok=True, saved=len(partial), next_path=_next_path(grant, page_path))
