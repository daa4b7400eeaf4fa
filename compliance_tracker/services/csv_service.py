"""
CSV Service — export and import of requirement collections.

Export writes one row per requirement with a fixed header order, CRLF line
endings and minimal quoting.  Import is split in two steps so the store can
process a large file in chunks:

  1. ``read_rows``  — parse the document and its header into ``CsvRow`` items
     (raises ``CsvFormatError`` if the document itself is unusable).
  2. ``parse_row``  — coerce one row into a ``RequirementDraft`` (raises
     ``ImportRowError`` carrying the row number and the reason).

``id``, ``createdAt`` and ``updatedAt`` cells are dropped on import: the store
mints identity for every imported row.

Set-valued cells join their members with the list delimiter; a member that
contains the delimiter or a backslash has it escaped with a backslash.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Container, Iterable
from enum import Enum
from typing import Any, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from compliance_tracker.errors import CsvFormatError, ImportRowError
from compliance_tracker.models.enums import (
    MaturityLevelName,
    Priority,
    RequirementCategory,
    RequirementStatus,
    RiskLevel,
)
from compliance_tracker.models.schemas import CsvRow, Requirement, RequirementDraft

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

CSV_HEADER: tuple[str, ...] = (
    "id",
    "title",
    "description",
    "category",
    "priority",
    "status",
    "framework",
    "frameworkId",
    "capabilityIds",
    "evidenceIds",
    "tags",
    "businessJustification",
    "riskLevel",
    "source",
    "maturityLevel_level",
    "maturityLevel_score",
    "businessValueScore",
    "costEstimate",
    "createdAt",
    "updatedAt",
)

REQUIRED_COLUMNS: tuple[str, ...] = ("title", "category")
STORE_MANAGED_COLUMNS: frozenset[str] = frozenset({"id", "createdAt", "updatedAt"})
DEFAULT_LIST_DELIMITER = ";"
LINE_TERMINATOR = "\r\n"
ESCAPE = "\\"

_CANONICAL = {name.casefold(): name for name in CSV_HEADER}


# ── Export ───────────────────────────────────────────────


def format_number(value: float) -> str:
    """``3.0`` → ``"3"``, ``2.5`` → ``"2.5"``."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def join_list(values: Iterable[str], delimiter: str = DEFAULT_LIST_DELIMITER) -> str:
    """Join set members into one cell, escaping the delimiter and backslash with ``\\``."""
    return delimiter.join(
        value.replace(ESCAPE, ESCAPE * 2).replace(delimiter, ESCAPE + delimiter) for value in values
    )


def _requirement_cells(req: Requirement, delimiter: str) -> list[str]:
    return [
        req.id,
        req.title,
        req.description,
        req.category.value,
        req.priority.value,
        req.status.value,
        req.framework or "",
        req.framework_id or "",
        join_list(req.capability_ids, delimiter),
        join_list(req.evidence_ids, delimiter),
        join_list(req.tags, delimiter),
        req.business_justification,
        req.risk_level.value,
        req.source,
        req.maturity_level.level.value,
        format_number(req.maturity_level.score),
        format_number(req.business_value_score),
        format_number(req.cost_estimate),
        req.created_at.isoformat(),
        req.updated_at.isoformat(),
    ]


def export_requirements_csv(
    requirements: Iterable[Requirement],
    delimiter: str = DEFAULT_LIST_DELIMITER,
) -> str:
    """Serialize requirements to CSV text (header + one row each)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator=LINE_TERMINATOR)
    writer.writerow(CSV_HEADER)
    count = 0
    for req in requirements:
        writer.writerow(_requirement_cells(req, delimiter))
        count += 1
    logger.debug(f"Exported {count} requirements to CSV")
    return buffer.getvalue()


# ── Import: document level ───────────────────────────────


def _canonical_header(header: list[str]) -> list[Optional[str]]:
    """Map raw header cells to known column names; unknown columns → None."""
    return [_CANONICAL.get(cell.strip().casefold()) for cell in header]


def read_rows(text: str) -> list[CsvRow]:
    """
    Split a CSV document into data rows keyed by canonical column name.

    Row numbers are 1-based and exclude the header.  Blank lines are skipped.
    Raises ``CsvFormatError`` for an empty document or a header without the
    required columns.
    """
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise CsvFormatError("CSV document is empty")

    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        raw_header = next(reader)
    except csv.Error as exc:
        raise CsvFormatError(f"Unreadable CSV header: {exc}") from exc

    columns = _canonical_header(raw_header)
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise CsvFormatError(
            f"CSV header is missing required column(s): {', '.join(missing)}",
            details={"missing": missing, "header": raw_header},
        )

    rows: list[CsvRow] = []
    number = 0
    try:
        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            number += 1
            values = {
                column: cell
                for column, cell in zip(columns, cells)
                if column is not None and column not in STORE_MANAGED_COLUMNS
            }
            rows.append(CsvRow(row=number, values=values))
    except csv.Error as exc:
        raise CsvFormatError(f"Malformed CSV near data row {number + 1}: {exc}") from exc

    logger.debug(f"Read {len(rows)} CSV data rows")
    return rows


# ── Import: row level ────────────────────────────────────


def _enum_cell(enum_cls: type[E], raw: str, column: str, row: int) -> Optional[E]:
    text = raw.strip()
    if not text:
        return None
    wanted = text.casefold()
    for member in enum_cls:
        if member.value.casefold() == wanted or member.name.casefold() == wanted:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ImportRowError(row, f"invalid {column} '{text}' (expected one of: {allowed})")


def _number_cell(raw: str, column: str, row: int) -> Optional[float]:
    text = raw.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        raise ImportRowError(row, f"invalid {column} '{text}' (not a number)") from None


def split_list(raw: str, delimiter: str = DEFAULT_LIST_DELIMITER) -> tuple[str, ...]:
    """
    Inverse of ``join_list``.  A backslash only escapes the delimiter or
    another backslash; anywhere else it is kept as written.
    """
    parts: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(raw):
        if raw.startswith(ESCAPE, i) and (
            raw.startswith(delimiter, i + 1) or raw.startswith(ESCAPE, i + 1)
        ):
            escaped = delimiter if raw.startswith(delimiter, i + 1) else ESCAPE
            current.append(escaped)
            i += 1 + len(escaped)
        elif raw.startswith(delimiter, i):
            parts.append("".join(current))
            current = []
            i += len(delimiter)
        else:
            current.append(raw[i])
            i += 1
    parts.append("".join(current))
    return tuple(part.strip() for part in parts if part.strip())


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
        for err in exc.errors()
    )


def parse_row(
    row: CsvRow,
    known_capabilities: Container[str] = (),
    delimiter: str = DEFAULT_LIST_DELIMITER,
) -> RequirementDraft:
    """Coerce one CSV row into a draft, or raise ``ImportRowError``."""
    values = row.values

    def cell(name: str) -> str:
        return values.get(name, "")

    payload: dict[str, Any] = {
        "title": cell("title"),
        "description": cell("description"),
        "business_justification": cell("businessJustification"),
        "source": cell("source"),
        "capability_ids": split_list(cell("capabilityIds"), delimiter),
        "evidence_ids": split_list(cell("evidenceIds"), delimiter),
        "tags": split_list(cell("tags"), delimiter),
    }

    category = _enum_cell(RequirementCategory, cell("category"), "category", row.row)
    if category is None:
        raise ImportRowError(row.row, "category is required")
    payload["category"] = category

    for key, column, enum_cls in (
        ("priority", "priority", Priority),
        ("status", "status", RequirementStatus),
        ("risk_level", "riskLevel", RiskLevel),
    ):
        member = _enum_cell(enum_cls, cell(column), column, row.row)
        if member is not None:
            payload[key] = member

    for key, column in (("framework", "framework"), ("framework_id", "frameworkId")):
        if cell(column).strip():
            payload[key] = cell(column).strip()

    for key, column in (("business_value_score", "businessValueScore"), ("cost_estimate", "costEstimate")):
        number = _number_cell(cell(column), column, row.row)
        if number is not None:
            payload[key] = number

    level = _enum_cell(MaturityLevelName, cell("maturityLevel_level"), "maturityLevel_level", row.row)
    score = _number_cell(cell("maturityLevel_score"), "maturityLevel_score", row.row)
    if level is not None or score is not None:
        maturity: dict[str, Any] = {}
        if level is not None:
            maturity["level"] = level
        if score is not None:
            maturity["score"] = score
        payload["maturity_level"] = maturity

    try:
        draft = RequirementDraft.model_validate(payload)
    except PydanticValidationError as exc:
        raise ImportRowError(row.row, _describe(exc)) from None

    unknown = [cid for cid in draft.capability_ids if cid not in known_capabilities]
    if unknown:
        raise ImportRowError(row.row, f"unknown capability id(s): {', '.join(unknown)}")
    return draft
