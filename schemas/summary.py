"""
Structured AI summary schema.

The summarizer's JSON output is untrusted: field names vary (snake_case or
camelCase, ``feature_items`` vs ``features``), booleans may arrive as strings and
lists can be arbitrarily long. ``normalize_structured_summary`` coerces any such
payload into a ``StructuredSummary`` or returns None.

The normalized model is what gets persisted on ``Change.ai_summary_meta``,
tagged with ``schema_version`` so older rows can be told apart from newer ones.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

SUMMARY_SCHEMA_VERSION = 1

MAX_FEATURES = 12
MAX_FIXES = 8
MAX_ITEM_LENGTH = 300
MAX_SKIP_REASON_LENGTH = 200

SUMMARY_STATUSES = ("ok", "no_changes")
IMPORTANCE_VALUES = ("high", "medium", "low")


class StructuredSummary(BaseModel):
    """
    Normalized, policy-ready summary of one change.

    should_notify is advisory only; notification decisions are re-derived by
    monitoring.policy.enforce_notification_policy.
    """

    schema_version: int = SUMMARY_SCHEMA_VERSION
    status: str
    title: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    fixes: List[str] = Field(default_factory=list)
    should_notify: bool = True
    skip_reason: Optional[str] = None
    importance: Optional[str] = None

    @validator("status")
    def check_status(cls, v):
        if v not in SUMMARY_STATUSES:
            raise ValueError(f"status must be one of {SUMMARY_STATUSES}")
        return v

    @validator("importance")
    def check_importance(cls, v):
        if v is not None and v not in IMPORTANCE_VALUES:
            raise ValueError(f"importance must be one of {IMPORTANCE_VALUES}")
        return v

    def to_meta(self) -> Dict[str, Any]:
        """Serialize for Change.ai_summary_meta."""
        return self.dict()


# ============================================================================
# Coercion helpers
# ============================================================================

def _first_present(obj: Dict[str, Any], *keys: str) -> Any:
    """Return the first key's value that is not None."""
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return fallback


def _trim_list(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if not isinstance(item, str):
            continue
        trimmed = item.strip()
        if not trimmed:
            continue
        out.append(trimmed[:MAX_ITEM_LENGTH])
        if len(out) >= limit:
            break
    return out


def _normalize_importance(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    return lowered if lowered in IMPORTANCE_VALUES else None


def normalize_structured_summary(raw: Any) -> Optional[StructuredSummary]:
    """
    Coerce a raw summarizer payload into a StructuredSummary.

    Args:
        raw: Parsed JSON object from the summarizer (or a stored meta dict)

    Returns:
        StructuredSummary, or None when the payload is not an object, has an
        unknown status, or carries a newer schema_version than this code knows
    """
    if not isinstance(raw, dict):
        return None

    schema_version = raw.get("schema_version", SUMMARY_SCHEMA_VERSION)
    if not isinstance(schema_version, int) or schema_version > SUMMARY_SCHEMA_VERSION:
        return None

    status = raw.get("status")
    if status not in SUMMARY_STATUSES:
        return None

    title = raw.get("title")
    title = title.strip() if isinstance(title, str) else None

    features = _trim_list(_first_present(raw, "features", "feature_items"), MAX_FEATURES)
    fixes = _trim_list(_first_present(raw, "fixes", "fix_items"), MAX_FIXES)

    should_notify = _coerce_bool(
        _first_present(raw, "should_notify", "shouldNotify"),
        status == "ok",
    )

    skip_reason = _first_present(raw, "skip_reason", "skipReason")
    skip_reason = skip_reason.strip()[:MAX_SKIP_REASON_LENGTH] if isinstance(skip_reason, str) else None

    importance = _normalize_importance(
        _first_present(raw, "importance", "importance_level", "signal")
    )

    return StructuredSummary(
        status=status,
        title=title,
        features=features,
        fixes=fixes,
        should_notify=should_notify,
        skip_reason=skip_reason,
        importance=importance,
    )


def parse_change_meta(meta: Any) -> Optional[StructuredSummary]:
    """Read Change.ai_summary_meta back into a StructuredSummary (None if unusable)."""
    if not meta:
        return None
    if isinstance(meta, str):
        try:
            meta = json.loads(meta)
        except ValueError:
            return None
    return normalize_structured_summary(meta)
