from importlib.resources import files
import json

SHARED_REDIRECT_RULES = "shared_redirect_rules"


def load_shared_rules(name: str = SHARED_REDIRECT_RULES) -> dict:
    """
    Load the redirect rules every grant inherits, by filename (without extension),
    from this package folder. Grants override them per top-level list.
    Example: load_shared_rules()["postSubmission"]
    """
    p = files(__package__) / f"{name}.json"
    data = json.loads(p.read_text(encoding="utf-8"))
    return data.get("sharedRedirectRules", {})
