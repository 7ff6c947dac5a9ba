"""Formal pipeline invariants.

This file documents what each stage MUST produce. Use it as a reviewer
anchor and system reference.
"""

PIPELINE_INVARIANTS = {
    "intake": [
        "Exactly one envelope per raw event",
        "String properties are never null (absent -> empty string)",
        "data passes through untouched",
    ],

    "transform": [
        "Only envelopes matching the function's (device, category) are read",
        "An envelope with N leaf entries yields exactly N rows",
        "Every row carries its envelope's lineage fields unchanged",
        "Malformed envelopes are dropped and counted, never raised",
        "Same input batch -> identical output frame",
    ],

    "cascade": [
        "One update policy per target table",
        "Policy graph is acyclic and references existing tables/functions",
        "Source append and all cascaded appends commit in one transaction",
        "Each (table, extent_id) is applied at most once",
        "Appends are applied in arrival order",
    ],

    "backfill": [
        "Windows are day-aligned, contiguous and non-overlapping",
        "All windows are half-open except the last, closed at the true end",
        "creation_time is the window's own calendar date",
        "No window generation reads the wall clock",
    ],
}
