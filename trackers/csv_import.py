"""Delimited-text ingestion for tracker imports"""

import io
from typing import Optional

import pandas as pd

from core.exceptions import MalformedInputError
from core.models import ColumnDefinition, ParsedCSV


# Leading characters a spreadsheet would evaluate as a formula
FORMULA_TRIGGERS = ("=", "+", "-", "@")
CANDIDATE_DELIMITERS = [',', '\t', '|', ';', ':']


def sanitize_cell(value: str) -> str:
    """Prefix formula-like cells with a quote so spreadsheets treat them as text"""
    if value and value[0] in FORMULA_TRIGGERS:
        return f"'{value}"
    return value


def detect_delimiter(text: str) -> str:
    """Pick the delimiter that appears consistently across the first lines"""
    sample = text[:4096]

    scores = {}
    for delim in CANDIDATE_DELIMITERS:
        counts = [line.count(delim) for line in sample.split('\n')[:10] if line.strip()]
        if counts and min(counts) > 0:
            avg = sum(counts) / len(counts)
            variance = sum((c - avg) ** 2 for c in counts) / len(counts)
            scores[delim] = min(counts) if variance < 2 else 0

    return max(scores, key=scores.get) if scores else ','


def parse_csv(text: str, delimiter: Optional[str] = ",") -> ParsedCSV:
    """
    Split delimited text into sanitized headers and rows

    Quoted fields may contain the delimiter, newlines and doubled quotes.
    Cells are trimmed and blank lines skipped. The first line sets the
    width; cells beyond it on later lines are dropped and short lines
    are padded.

    Args:
        text: Raw delimited text
        delimiter: Field separator; None sniffs it from the first lines

    Returns:
        ParsedCSV with the first non-blank line as headers

    Raises:
        MalformedInputError: If a line cannot be tokenized
    """
    if not text or not text.strip():
        return ParsedCSV()

    sep = delimiter or detect_delimiter(text)

    options = dict(
        sep=sep,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        skipinitialspace=True,
        engine="python",
    )

    try:
        width = pd.read_csv(io.StringIO(text), nrows=1, **options).shape[1]
        df = pd.read_csv(
            io.StringIO(text),
            on_bad_lines=lambda fields: fields[:width],
            **options,
        )
    except pd.errors.EmptyDataError:
        return ParsedCSV()
    except pd.errors.ParserError as e:
        raise MalformedInputError(f"Failed to parse CSV: {e}") from e

    # Short lines are padded with NaN
    df = df.fillna("")

    records = [
        [str(cell).strip() for cell in row]
        for row in df.itertuples(index=False, name=None)
    ]
    records = [row for row in records if any(row)]
    if not records:
        return ParsedCSV()

    headers = [sanitize_cell(header) for header in records[0]]
    rows = [[sanitize_cell(cell) for cell in row] for row in records[1:]]

    return ParsedCSV(headers=headers, rows=rows)


def map_to_records(
    headers: list[str],
    rows: list[list[str]],
    columns: list[ColumnDefinition],
) -> list[dict[str, str]]:
    """Key each row by column key, matching headers to column names or keys case-insensitively"""
    column_for_index: dict[int, str] = {}
    for index, header in enumerate(headers):
        needle = header.lower()
        for column in columns:
            if column.name.lower() == needle or column.key.lower() == needle:
                column_for_index[index] = column.key
                break

    records = []
    for row in rows:
        record = {}
        for index, key in column_for_index.items():
            if index < len(row):
                record[key] = row[index]
        records.append(record)

    return records
