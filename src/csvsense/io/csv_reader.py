"""CSV decoding and parsing.

Turns raw upload bytes into a string-typed DataFrame plus the detected
encoding and delimiter. Type inference happens later in profiling, so every
cell is read as ``str`` and nothing is treated as NA by pandas itself.
"""

from __future__ import annotations

import codecs
import csv
import io
from dataclasses import dataclass

import pandas as pd

from csvsense.agents.base import AgentError, AgentType


CANDIDATE_DELIMITERS = [",", ";", "\t", "|"]
_SNIFF_BYTES = 64 * 1024

_BOMS = [
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
]


@dataclass
class ParsedCsv:
    """Parsed upload ready for profiling."""

    frame: pd.DataFrame
    encoding: str
    delimiter: str
    row_count: int
    sampled: bool = False

    @property
    def parsed_rows(self) -> int:
        return int(self.frame.shape[0])


def detect_encoding(buffer: bytes) -> tuple[str, str]:
    """Decode ``buffer`` and return ``(text, encoding)``.

    BOMs win; otherwise strict UTF-8, then cp1252, then latin-1 (which
    accepts any byte sequence).
    """
    for bom, encoding in _BOMS:
        if buffer.startswith(bom):
            return buffer.decode(encoding), encoding
    for encoding in ("utf-8", "cp1252"):
        try:
            return buffer.decode(encoding), encoding
        except UnicodeDecodeError:
            continue
    return buffer.decode("latin-1"), "latin-1"


def detect_delimiter(text: str) -> str:
    """Pick the delimiter among comma, semicolon, tab and pipe."""
    head = text[:_SNIFF_BYTES]
    lines = [line for line in head.splitlines() if line.strip()][:20]
    if not lines:
        return ","
    sample = "\n".join(lines)
    try:
        return csv.Sniffer().sniff(sample, delimiters="".join(CANDIDATE_DELIMITERS)).delimiter
    except csv.Error:
        pass

    # Sniffer gives up on single-column or ragged files; count outside quotes
    counts = {d: _count_unquoted(lines[0], d) for d in CANDIDATE_DELIMITERS}
    best = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def _count_unquoted(line: str, delimiter: str) -> int:
    count = 0
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            count += 1
    return count


def read_csv_bytes(buffer: bytes, *, max_rows: int | None = None) -> ParsedCsv:
    """Parse CSV bytes into a string-typed frame.

    Args:
        buffer: Raw file content
        max_rows: Parse at most this many data rows (the rest are counted)

    Returns:
        ParsedCsv with column names stripped and made unique

    Raises:
        AgentError: ``EMPTY_DATASET`` when there is no header or no data row,
            ``PARSE_ERROR`` wrapping the parser's exception otherwise
    """
    text, encoding = detect_encoding(buffer)
    if not text.strip():
        raise AgentError("The uploaded file is empty", AgentType.PROFILING, code="EMPTY_DATASET")

    delimiter = detect_delimiter(text)
    nrows = max_rows + 1 if max_rows else None
    _check_field_counts(text, delimiter, nrows)
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=True,
            index_col=False,
            on_bad_lines="error",
            nrows=nrows,
        )
    except pd.errors.EmptyDataError as exc:
        raise AgentError("The uploaded file has no columns", AgentType.PROFILING, code="EMPTY_DATASET") from exc
    except (pd.errors.ParserError, UnicodeError, ValueError) as exc:
        raise AgentError(
            f"Failed to parse CSV: {exc}",
            AgentType.PROFILING,
            code="PARSE_ERROR",
            details={"delimiter": delimiter, "encoding": encoding},
        ) from exc

    if frame.shape[0] == 0:
        raise AgentError("The uploaded file has a header but no data rows", AgentType.PROFILING, code="EMPTY_DATASET")

    frame.columns = _clean_column_names(frame.columns)
    sampled = bool(max_rows) and frame.shape[0] > max_rows
    if sampled:
        frame = frame.iloc[:max_rows].copy()
        row_count = _count_data_rows(text, delimiter)
    else:
        row_count = int(frame.shape[0])

    return ParsedCsv(
        frame=frame,
        encoding=encoding,
        delimiter=delimiter,
        row_count=row_count,
        sampled=sampled,
    )


def _clean_column_names(columns: pd.Index) -> list[str]:
    names: list[str] = []
    seen: dict[str, int] = {}
    for i, raw in enumerate(columns, 1):
        name = str(raw).strip()
        if not name or name.startswith("Unnamed:"):
            name = f"column_{i}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        names.append(name)
    return names


def _check_field_counts(text: str, delimiter: str, limit: int | None) -> None:
    """Reject rows carrying more values than the header has columns.

    pandas would otherwise shift the surplus leading fields into an index
    and misalign every value in the row.
    """
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, skipinitialspace=True)
    width = None
    data_rows = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            raise AgentError(
                f"Failed to parse CSV: {exc}",
                AgentType.PROFILING,
                code="PARSE_ERROR",
                details={"delimiter": delimiter, "line": reader.line_num},
            ) from exc
        if not any(cell.strip() for cell in row):
            continue
        if width is None:
            width = len(row)
            continue
        if len(row) > width:
            raise AgentError(
                f"Failed to parse CSV: line {reader.line_num} has {len(row)} fields, "
                f"the header has {width}",
                AgentType.PROFILING,
                code="PARSE_ERROR",
                details={"delimiter": delimiter, "line": reader.line_num},
            )
        data_rows += 1
        if limit is not None and data_rows >= limit:
            return


def _count_data_rows(text: str, delimiter: str) -> int:
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    rows = sum(1 for row in reader if any(cell.strip() for cell in row))
    return max(rows - 1, 0)
