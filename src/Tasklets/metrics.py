"""Minimal in-process metrics shim for importer counters.

This is intentionally simple; production can replace these with a real backend.
Counters are process-wide and survive across runs in one process, so tests
call ``reset_counters()`` before asserting.
"""

from __future__ import annotations

from collections import defaultdict

_counters: dict[str, int] = defaultdict(int)


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def reset_counters() -> None:
    _counters.clear()


def get_counters() -> dict[str, int]:
    """Return a shallow copy of all counters for diagnostics."""
    return dict(_counters)


# Convenience functions for importer outcomes

def record_import_outcome(kind: str, outcome: str) -> None:
    """Count a per-record outcome both overall and per entity kind."""
    inc_counter(f"importer.record.{outcome}")
    inc_counter(f"importer.record.{outcome}.{kind}")


def record_malformed_line() -> None:
    inc_counter("importer.line.malformed")


def record_drift(kind: str) -> None:
    inc_counter("importer.reconcile.drift")
    inc_counter(f"importer.reconcile.drift.{kind}")
