"""Streaming reader for beads ``issues.jsonl`` exports.

Each line is parsed on its own; a line that is not a valid issue is logged
and skipped so one corrupt record never stops an import.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import IO

import orjson
import structlog
from pydantic import ValidationError

from Tasklets.importer_context import InputSourceError, MalformedLine
from Tasklets.metrics import record_malformed_line
from Tasklets.schemas import ExternalIssue

log = structlog.get_logger()

_MAX_RAW_PREVIEW = 200


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
    more = f" (+{exc.error_count() - 1} more)" if exc.error_count() > 1 else ""
    return f"{loc}: {first.get('msg', 'invalid')}{more}"


def _parse_line(text: str) -> ExternalIssue | str:
    """Return the parsed issue, or a reason string when the line is unusable."""
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError as exc:
        return f"invalid json: {exc}"
    if not isinstance(data, dict):
        return f"expected a JSON object, got {type(data).__name__}"
    try:
        return ExternalIssue.model_validate(data)
    except ValidationError as exc:
        return _describe_validation_error(exc)


def read_issues(
    lines: Iterable[str],
    *,
    on_malformed: Callable[[MalformedLine], None] | None = None,
) -> Iterator[ExternalIssue]:
    """Lazily yield issues from JSON lines; blank lines are ignored."""
    for line_no, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        parsed = _parse_line(text)
        if isinstance(parsed, ExternalIssue):
            yield parsed
            continue
        bad = MalformedLine(line_no=line_no, reason=parsed, raw=text[:_MAX_RAW_PREVIEW])
        log.warning("ingest.line.malformed", line_no=line_no, reason=parsed)
        record_malformed_line()
        if on_malformed is not None:
            on_malformed(bad)


def open_issue_source(path: str | Path) -> IO[str]:
    """Open a local JSONL file for line iteration.

    The file is opened eagerly so a missing or unreadable source fails here,
    before the import touches the store. The caller owns the handle and closes
    it (``with open_issue_source(p) as lines: ...``).
    """
    p = Path(path)
    try:
        # Undecodable bytes surface as malformed lines, not a crash mid-run
        fh = p.open("r", encoding="utf-8", errors="replace")
    except OSError as exc:
        raise InputSourceError(f"cannot read issue source {p}: {exc.strerror or exc}") from exc
    log.info("ingest.source.opened", path=str(p))
    return fh
