# CSV upload decoding into the partner file envelope
import io
import logging
from typing import Any, Dict, List, Tuple

import pandas as pd

from .errors import RowParseError, ValidationError
from .normalizer import normalize_csv_row, sample_to_partner_row

logger = logging.getLogger(__name__)

# Header is line 1, so data line at position p is row p + 2
HEADER_OFFSET = 2


def read_csv_records(text: str) -> Tuple[int, List[Tuple[int, Dict[str, str]]]]:
    """Parse CSV text into (total data lines, [(row number, record)]).

    Header names are lower-cased and stripped, values stripped. Blank lines
    (or all-empty lines) are counted but produce no record. Extra trailing
    fields, including a trailing comma, are dropped. The total counts data
    lines only; the empty tail after a final newline is not a line.
    """
    if not text or not text.strip():
        raise ValidationError('CSV file is empty')

    try:
        header = pd.read_csv(io.StringIO(text), nrows=0).columns
        n_cols = len(header)
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            index_col=False,
            engine='python',
            on_bad_lines=lambda bad: bad[:n_cols],
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValidationError(f'Unable to parse CSV file: {e}') from e

    df.columns = [str(c).strip().lower() for c in df.columns]
    df = df.fillna('')

    records: List[Tuple[int, Dict[str, str]]] = []
    for position, (_, row) in enumerate(df.iterrows()):
        record = {col: str(value).strip() for col, value in row.items()}
        if not any(record.values()):
            continue
        records.append((position + HEADER_OFFSET, record))
    return len(df), records


def generate_data_summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Coverage summary over partner-format rows"""
    if not rows:
        return {}

    years = [r['location']['year'] for r in rows]
    summary = {
        'totalLocations': len(rows),
        'uniqueLocations': len({r['location']['name'] for r in rows}),
        'dateRange': {
            'earliest': min(years),
            'latest': max(years),
        },
        'metalsCoverage': {},
    }

    seen: List[str] = []
    for r in rows:
        for metal in r['heavyMetals']:
            if metal not in seen:
                seen.append(metal)
    for metal in seen:
        count = sum(1 for r in rows if metal in r['heavyMetals'])
        summary['metalsCoverage'][metal] = {
            'count': count,
            'percentage': round(count / len(rows) * 100),
        }
    return summary


def process_csv_text(text: str) -> Dict[str, Any]:
    """Build the partner file envelope from raw CSV text.

    Rejected rows are collected in `errors` and never stop the remaining rows.
    """
    total_rows, records = read_csv_records(text)

    data: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for row_number, record in records:
        try:
            sample = normalize_csv_row(record, row_number)
        except RowParseError as e:
            logger.debug(f"CSV row {row_number} rejected: {e.message}")
            errors.append({
                'row': row_number,
                'error': e.message,
                'rawData': e.raw_data,
            })
            continue
        data.append(sample_to_partner_row(sample))

    if errors:
        logger.warning(f"{len(errors)} of {total_rows} CSV rows rejected")

    return {
        'success': True,
        'totalRows': total_rows,
        'processedRows': len(data),
        'errorRows': len(errors),
        'data': data,
        'errors': errors,
        'summary': generate_data_summary(data),
    }
