"""
Pydantic schemas shared across the engine.

Modules:
    summary: Versioned structured AI summary and its normalizer
    plugin: Plugin transform results and release slices
    results: Collaborator and engine result contracts
"""

__all__ = [
    "StructuredSummary",
    "normalize_structured_summary",
    "parse_change_meta",
    "ReleaseSlice",
    "SkipResult",
    "ReleasesResult",
    "ContentResult",
    "FetchResult",
    "DiffResult",
    "SummaryResult",
    "SendResult",
    "CheckResult",
    "DigestTarget",
    "DigestGroup",
]
