import re

from schemas.models import is_absolute_url

_MULTI_SLASH = re.compile(r"/{2,}")


def canonical_path(path: str) -> str:
    """
    Normal form shared by destination building and the "already there" check:
    one leading slash, no duplicate slashes, no trailing slash (except "/").
    Absolute URLs only lose a trailing slash.
    """
    if is_absolute_url(path):
        return path.rstrip("/") or path
    p = _MULTI_SLASH.sub("/", "/" + path.strip().lstrip("/"))
    if len(p) > 1:
        p = p.rstrip("/")
    return p


def grant_path(slug: str, path: str) -> str:
    """Resolve a rule path for a grant: relative -> /{slug}/{path}; absolute URL -> verbatim."""
    if is_absolute_url(path):
        return path
    return canonical_path(f"/{slug}/{path}")


def is_same_path(a: str, b: str) -> bool:
    return canonical_path(a) == canonical_path(b)
