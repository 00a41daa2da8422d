import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from pydantic import ValidationError

from schemas import load_shared_rules
from schemas.models import GrantDefinition, GrantRedirectRules
from app.errors import GrantConfigurationError, GrantNotFoundError, RedirectRuleError
from app.services.rules import has_fallback

logger = logging.getLogger("portal.grants")

AGREEMENTS_PLACEHOLDER = "__AGREEMENTS_BASE_URL__"


def list_definition_files(base_dir: Path) -> List[Path]:
    return sorted(p for p in base_dir.rglob("*") if p.is_file() and p.suffix.lower() == ".json")


def _substitute_agreements(rules: List[Dict[str, Any]], agreements_url: str) -> List[Dict[str, Any]]:
    return [
        {**r, "toPath": agreements_url if r.get("toPath") == AGREEMENTS_PLACEHOLDER else r.get("toPath")}
        for r in rules
    ]


def merge_redirect_rules(
    shared: Dict[str, Any],
    own: Optional[Dict[str, Any]],
    agreements_url: str,
) -> Dict[str, Any]:
    """Grant rules win per top-level list (preSubmission / postSubmission)."""
    merged = {**shared, **(own or {})}
    for key in ("preSubmission", "postSubmission"):
        if key in merged:
            merged[key] = _substitute_agreements(merged[key], agreements_url)
    return merged


def load_rules(form_name: str, raw_rules: Dict[str, Any]) -> GrantRedirectRules:
    """
    Validate a merged rule table. Raises RedirectRuleError; no partial table
    is ever returned.
    """
    pre = raw_rules.get("preSubmission") or []
    post = raw_rules.get("postSubmission") or []

    if len(pre) != 1:
        raise RedirectRuleError(
            f"Invalid redirect rules in form {form_name}: preSubmission has {len(pre)} rules. "
            "Expected one rule with toPath property."
        )
    if not post:
        raise RedirectRuleError(
            f"Invalid redirect configuration in form {form_name}: no postSubmission redirect rules defined"
        )

    try:
        rules = GrantRedirectRules.model_validate({"preSubmission": pre, "postSubmission": post})
    except ValidationError as e:
        raise RedirectRuleError(f"Invalid redirect rules in form {form_name}: {e}") from e

    if not has_fallback(rules.post_submission):
        raise RedirectRuleError(
            f"Invalid redirect configuration in form {form_name}: "
            "missing default/default fallback rule in postSubmission"
        )
    fallbacks = sum(1 for r in rules.post_submission if r.is_fallback)
    if fallbacks > 1:
        raise RedirectRuleError(
            f"Invalid redirect configuration in form {form_name}: "
            f"{fallbacks} default/default fallback rules in postSubmission, expected one"
        )
    return rules


def build_definition(
    slug: str,
    raw: Dict[str, Any],
    shared_rules: Dict[str, Any],
    agreements_url: str,
) -> GrantDefinition:
    """Turn a parsed grant file into a validated GrantDefinition."""
    form_name = raw.get("name") or slug
    metadata = dict(raw.get("metadata") or {})

    merged = merge_redirect_rules(shared_rules, metadata.get("grantRedirectRules"), agreements_url)
    metadata["grantRedirectRules"] = load_rules(form_name, merged)

    try:
        grant = GrantDefinition.model_validate({**raw, "slug": slug, "name": form_name, "metadata": metadata})
    except ValidationError as e:
        raise GrantConfigurationError(f"Invalid grant definition in form {form_name}: {e}") from e

    if not grant.grant_code:
        raise GrantConfigurationError(f"Invalid grant definition in form {form_name}: no submission.grantCode configured")
    return grant


class GrantRegistry:
    """Grants servable by this portal, keyed by slug. Immutable after startup."""

    def __init__(self, grants: Optional[Dict[str, GrantDefinition]] = None):
        self._grants: Dict[str, GrantDefinition] = dict(grants or {})

    def __iter__(self) -> Iterator[GrantDefinition]:
        return iter(self._grants.values())

    def __len__(self) -> int:
        return len(self._grants)

    def __contains__(self, slug: str) -> bool:
        return slug in self._grants

    def register(self, grant: GrantDefinition) -> None:
        if grant.slug in self._grants:
            logger.warning("Skipping duplicate form: %s with id %s", grant.slug, grant.metadata.id)
            return
        self._grants[grant.slug] = grant

    def get(self, slug: str) -> GrantDefinition:
        grant = self._grants.get(slug)
        if grant is None:
            raise GrantNotFoundError(slug)
        return grant


def load_grants(
    base_dir: str,
    *,
    agreements_url: str,
    production: bool = False,
    shared_rules: Optional[Dict[str, Any]] = None,
) -> GrantRegistry:
    """
    Discover grant definition files under `base_dir` and validate every one.
    Unreadable files are skipped with an error log; invalid redirect rules
    abort startup.
    """
    shared = load_shared_rules() if shared_rules is None else shared_rules
    registry = GrantRegistry()

    if not Path(base_dir).is_dir():
        logger.error('Failed to read forms directory "%s": not a directory', base_dir)
        return registry

    files = list_definition_files(Path(base_dir))

    for path in files:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error('Failed to parse form "%s": %s', path, e)
            continue

        if not isinstance(raw, dict):
            logger.error('Failed to parse form "%s": top level must be an object', path)
            continue

        if raw.get("tasklist"):
            continue

        enabled_in_prod = (raw.get("metadata") or {}).get("enabledInProd") is True
        if production and not enabled_in_prod:
            continue

        try:
            grant = build_definition(path.stem, raw, shared, agreements_url)
        except GrantConfigurationError as e:
            logger.error("Form validation failed during startup for %s: %s", raw.get("name") or path.stem, e)
            raise
        logger.info("Grant redirect rules validated for form: %s", grant.name)
        registry.register(grant)

    return registry
