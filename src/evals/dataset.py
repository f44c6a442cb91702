"""CSV import and CSV/JSON export of test cases.

CSV layout:
    id,input,expected_output[,generated_output,judgment,judgment_score,error]

Only ``input`` and ``expected_output`` are required on import. Rows without
an id get a generated one. The result columns are passed through so an
exported file can be loaded again to inspect or resume a run.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import structlog
from pydantic import ValidationError

from src.errors import DatasetImportError
from src.schemas.test_case import TestCase, new_case_id

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("input", "expected_output")
CSV_COLUMNS = (
    "id",
    "input",
    "expected_output",
    "generated_output",
    "judgment",
    "judgment_score",
    "error",
)
EXPORT_FORMATS = ("csv", "json")


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def _blank_to_none(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    return value


def _parse_score(raw: str | None, row_number: int) -> float | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise DatasetImportError(
            f"Row {row_number}: judgment_score is not a number: {raw!r}"
        ) from exc


def parse_csv(text: str) -> list[TestCase]:
    """Parse CSV text into test cases.

    Raises:
        DatasetImportError: no header, missing required columns, no data rows,
            or a row whose values do not form a valid test case.
    """
    reader = csv.DictReader(io.StringIO(text))
    header = [h.strip() for h in (reader.fieldnames or []) if h is not None]
    if not header:
        raise DatasetImportError("CSV file is empty")
    reader.fieldnames = header

    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise DatasetImportError(
            "CSV file must contain 'input' and 'expected_output' columns "
            f"(missing: {', '.join(missing)})"
        )

    cases: list[TestCase] = []
    for row_number, row in enumerate(reader, start=2):
        if all(not (v or "").strip() for k, v in row.items() if k is not None):
            continue
        try:
            case = TestCase(
                id=(row.get("id") or "").strip() or new_case_id(),
                input=row.get("input") or "",
                expected_output=row.get("expected_output") or "",
                generated_output=_blank_to_none(row.get("generated_output")),
                judgment_explanation=_blank_to_none(row.get("judgment")),
                judgment_score=_parse_score(row.get("judgment_score"), row_number),
                error=_blank_to_none(row.get("error")),
            )
        except ValidationError as exc:
            raise DatasetImportError(f"Row {row_number}: {exc}") from exc
        cases.append(case)

    if not cases:
        raise DatasetImportError("CSV file is empty")

    logger.info("csv_parsed", rows=len(cases), columns=header)
    return cases


def load_csv(path: str | Path) -> list[TestCase]:
    """Read and parse a CSV file (a UTF-8 BOM is tolerated)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise DatasetImportError(f"Cannot read {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DatasetImportError(f"{path} is not UTF-8 text") from exc
    return parse_csv(text)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def format_score(score: float | None) -> str:
    """Plain decimal text: 9.0 -> "9", 7.5 -> "7.5", None -> ""."""
    if score is None:
        return ""
    if float(score).is_integer():
        return str(int(score))
    text = repr(float(score))
    if "e" in text:
        # never scientific notation: 1e-05 -> "0.00001"
        return format(Decimal(text), "f")
    return text


def to_csv(cases: list[TestCase]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for case in cases:
        writer.writerow(
            {
                "id": case.id,
                "input": case.input,
                "expected_output": case.expected_output,
                "generated_output": case.generated_output or "",
                "judgment": case.judgment_explanation or "",
                "judgment_score": format_score(case.judgment_score),
                "error": case.error or "",
            }
        )
    return buffer.getvalue()


def to_json(cases: list[TestCase]) -> str:
    return json.dumps(
        [case.model_dump(mode="json") for case in cases],
        indent=2,
        ensure_ascii=False,
    )


def export_filename(fmt: str, now: datetime | None = None) -> str:
    """``llm-evaluation-<ISO timestamp with : and . replaced>.<fmt>``."""
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    stamp = stamp.replace(":", "-").replace(".", "-")
    return f"llm-evaluation-{stamp}.{fmt}"


def render_export(cases: list[TestCase], fmt: str) -> str:
    fmt = fmt.lower()
    if fmt == "csv":
        return to_csv(cases)
    if fmt == "json":
        return to_json(cases)
    raise ValueError(f"Unsupported export format: {fmt}")


def write_export(cases: list[TestCase], path: str | Path) -> Path:
    """Write cases to ``path``; the suffix (.csv or .json) picks the format."""
    path = Path(path)
    fmt = path.suffix.lstrip(".").lower()
    content = render_export(cases, fmt)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("results_exported", path=str(path), format=fmt, count=len(cases))
    return path
