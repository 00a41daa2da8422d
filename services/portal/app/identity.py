from fastapi import Request

from schemas.models import Identity
from app.settings import Settings

USER_HEADER = "x-user-id"          # CRN, set by the auth proxy
BUSINESS_HEADER = "x-business-id"  # SBI of the business being acted for


def resolve_identity(request: Request, slug: str, settings: Settings) -> Identity:
    """
    Session identity for this request. Derived from the request every time:
    switching business between requests yields a different key immediately.
    """
    user_id = request.headers.get(USER_HEADER) or settings.PLACEHOLDER_USER_ID
    business_id = request.headers.get(BUSINESS_HEADER) or settings.PLACEHOLDER_BUSINESS_ID
    return Identity(user_id=user_id, business_id=business_id, grant_id=slug)
