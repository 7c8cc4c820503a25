from __future__ import annotations

import re
from typing import Any, Optional

NAMESPACE_SEP = ":"
_SPACE_RE = re.compile(r"\s+")


def bare_name(qualified_name: Optional[str]) -> str:
    """
    Operation name without its namespace: "ghl:createTasks" -> "createTasks".
    Names without a separator are returned unchanged.
    """
    if not qualified_name:
        return ""
    return str(qualified_name).rsplit(NAMESPACE_SEP, 1)[-1]


def normalize_action(value: Any) -> str:
    if value is None:
        return ""
    s = _SPACE_RE.sub(" ", str(value))
    return s.strip().lower()


def action_matches(result_action: Optional[str], match_action: Optional[str]) -> bool:
    # Composite actions ("invoice_created_with_email") also satisfy their prefix.
    wanted = normalize_action(match_action)
    if not wanted:
        return False
    actual = normalize_action(result_action)
    return actual == wanted or wanted in actual


def endpoint_tail(endpoint: Optional[str]) -> str:
    if not endpoint:
        return ""
    s = str(endpoint).strip().rstrip("/")
    return s.split("/")[-1] or s


def strict_equals(a: Any, b: Any) -> bool:
    # JSON-style equality: booleans never equal numbers (0 != False).
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return bool(a == b)
