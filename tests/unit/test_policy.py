"""
Tests for the notification gate and summary formatting
"""

import pytest
from models.change import Change
from monitoring.policy import (
    build_aggregated_summary,
    enforce_notification_policy,
    format_release_summary,
    format_summary_markdown,
    should_notify,
)
from schemas.summary import StructuredSummary
from tests.helpers import structured


def test_no_changes_status_is_suppressed():
    result = enforce_notification_policy(structured(status="no_changes"))

    assert result.should_notify is False
    assert result.skip_reason == "no material changes"


def test_empty_ok_summary_is_suppressed():
    result = enforce_notification_policy(structured())

    assert result.should_notify is False
    assert result.skip_reason == "no actionable changes detected"


@pytest.mark.parametrize(
    "fixes, reason",
    [
        (["Fix crash on start"], "single bug fix only"),
        (["Fix crash on start", "Fix typo in --help"], "two bug fixes only"),
    ],
)
def test_one_or_two_fixes_without_features_are_suppressed(fixes, reason):
    result = enforce_notification_policy(structured(fixes=fixes))

    assert result.should_notify is False
    assert result.skip_reason == reason


def test_three_fixes_notify():
    result = enforce_notification_policy(structured(fixes=["a", "b", "c"]))

    assert result.should_notify is True
    assert result.skip_reason is None


def test_single_feature_notifies():
    result = enforce_notification_policy(structured(features=["New export command"]))
    assert result.should_notify is True


def test_upstream_skip_reason_is_preserved():
    summary = structured(fixes=["Fix typo"]).copy(update={"skip_reason": "cosmetic"})

    result = enforce_notification_policy(summary)

    assert result.should_notify is False
    assert result.skip_reason == "cosmetic"


def test_upstream_should_notify_false_is_kept():
    """A summarizer may still veto a release that passes the thresholds"""
    summary = structured(features=["Internal refactor"], should_notify=False)

    assert enforce_notification_policy(summary).should_notify is False


def test_gate_ignores_upstream_should_notify_true():
    """The summarizer saying "notify" does not override the thresholds"""
    summary = structured(fixes=["Fix crash"], should_notify=True)
    assert should_notify(summary) is False


def test_missing_summary_notifies():
    assert should_notify(None) is True


def test_format_summary_markdown_caps_fixes():
    summary = structured(
        features=["Sandbox mode"],
        fixes=[f"Fix {i}" for i in range(8)],
        title="Release 2.0",
    )

    text = format_summary_markdown(summary)

    assert text.startswith("**Release 2.0**\n**Features**\n- Sandbox mode\n**Fixes**")
    assert "- Fix 4" in text
    assert "- Fix 5" not in text


def test_format_summary_markdown_no_changes():
    assert format_summary_markdown(StructuredSummary(status="no_changes")) is None


def test_format_release_summary_replaces_leading_title():
    text = format_release_summary("Acme CLI", "v1.2.0", "**Acme ships sandbox**\n- Sandbox mode")
    assert text == "**Acme CLI v1.2.0 released**\n- Sandbox mode"


def test_format_release_summary_without_ai_text():
    assert format_release_summary("Acme CLI", "v1.2.0", None) == "**Acme CLI v1.2.0 released**"


# ============================================================================
# Aggregation
# ============================================================================

def test_aggregated_summary_spans_versions():
    items = [
        (Change(release_version="v1.1.0"), structured(features=["Sandbox mode"], fixes=["Fix login"])),
        (Change(release_version="v1.2.0"), structured(features=["Export command"])),
    ]

    aggregated = build_aggregated_summary("Acme CLI", items)

    assert aggregated.title == "Acme CLI: changes from v1.1.0 to v1.2.0"
    assert aggregated.versions == ["v1.1.0", "v1.2.0"]
    assert aggregated.markdown == (
        "**Acme CLI: changes from v1.1.0 to v1.2.0**\n"
        "**Features**\n- Sandbox mode\n- Export command\n"
        "**Fixes**\n- Fix login"
    )


def test_aggregated_summary_single_version_title():
    items = [(Change(release_version="v3.0.0"), structured(features=["Plugins"]))]
    assert build_aggregated_summary("Acme CLI", items).title == "Acme CLI v3.0.0 released"


def test_aggregated_summary_falls_back_to_first_summary_line():
    items = [
        (Change(ai_summary="\n**Docs updated**\n- more"), None),
        (Change(summary="Pricing page"), None),
    ]

    aggregated = build_aggregated_summary("Docs", items, timeframe=("2024-01-15", "2024-01-22"))

    assert aggregated.title == "Docs: latest updates"
    assert aggregated.markdown == (
        "**Docs: latest updates**\n"
        "Period: 2024-01-15 → 2024-01-22\n"
        "**Highlights**\n- **Docs updated**\n- Pricing page"
    )


def test_aggregated_summary_empty():
    assert build_aggregated_summary("Docs", []) is None
