"""
Keyword list loading and parsing from CSV and Excel files.

This module handles ingestion of candidate keywords from:
- Excel files (.xlsx, .xls), first sheet by default
- CSV files
"""

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .models import KeywordRecord, KeywordSource

logger = logging.getLogger(__name__)


class KeywordLoadError(Exception):
    """Raised when keyword loading fails."""
    pass


# Sentinels returned in place of keywords so callers can check for an
# "Error:" prefix on the first element.
ERROR_PREFIX = "Error:"
EXCEL_NOT_FOUND = "Error: Excel_Not_Found"
EXCEL_READ_FAILED = "Error: Excel_Read_Failed"

# Common column name variations for keyword data
KEYWORD_COLUMN_VARIANTS = ["keyword", "keywords", "關鍵字", "term", "query", "phrase"]


def _normalize_column_name(name: str) -> str:
    """Normalize column name for matching."""
    return str(name).lower().strip().replace(" ", "_").replace("-", "_")


def _find_column(df: pd.DataFrame, variants: list[str]) -> Optional[str]:
    """
    Find a column in the DataFrame matching one of the variant names.

    Args:
        df: The DataFrame to search.
        variants: List of possible column name variants.

    Returns:
        The actual column name if found, None otherwise.
    """
    normalized_columns = {_normalize_column_name(col): col for col in df.columns}

    for variant in variants:
        normalized = _normalize_column_name(variant)
        if normalized in normalized_columns:
            return normalized_columns[normalized]

    return None


def load_keywords_from_csv(file_path: Union[str, Path]) -> list[KeywordRecord]:
    """
    Load keywords from a CSV file.

    Raises:
        KeywordLoadError: If the file cannot be read or parsed.
    """
    path = Path(file_path)

    if not path.exists():
        raise KeywordLoadError(f"File not found: {file_path}")

    try:
        df = pd.read_csv(path, encoding="utf-8")
    except UnicodeDecodeError:
        try:
            df = pd.read_csv(path, encoding="latin-1")
        except Exception as e:
            raise KeywordLoadError(f"Failed to read CSV file: {e}")
    except Exception as e:
        raise KeywordLoadError(f"Failed to read CSV file: {e}")

    return _parse_keyword_dataframe(df)


def load_keywords_from_excel(
    file_path: Union[str, Path], sheet_name: Optional[str] = None
) -> list[KeywordRecord]:
    """
    Load keywords from an Excel file.

    Args:
        file_path: Path to the Excel file (.xlsx or .xls).
        sheet_name: Optional sheet name to read from. Defaults to first sheet.

    Raises:
        KeywordLoadError: If the file cannot be read or parsed.
    """
    path = Path(file_path)

    if not path.exists():
        raise KeywordLoadError(f"File not found: {file_path}")

    try:
        df = pd.read_excel(path, sheet_name=sheet_name if sheet_name else 0)
    except Exception as e:
        raise KeywordLoadError(f"Failed to read Excel file: {e}")

    return _parse_keyword_dataframe(df)


def _parse_keyword_dataframe(df: pd.DataFrame) -> list[KeywordRecord]:
    """
    Parse a DataFrame into spreadsheet-origin KeywordRecords.

    Blank cells are skipped. Duplicates are kept; uniqueness is only
    enforced for user-added keywords.

    Raises:
        KeywordLoadError: If the keyword column is missing.
    """
    keyword_col = _find_column(df, KEYWORD_COLUMN_VARIANTS)
    if keyword_col is None:
        raise KeywordLoadError(
            f"No keyword column found. Expected one of: {', '.join(KEYWORD_COLUMN_VARIANTS)}. "
            f"Found columns: {', '.join(str(c) for c in df.columns)}"
        )

    keywords: list[KeywordRecord] = []
    for value in df[keyword_col]:
        if pd.isna(value) or not str(value).strip():
            continue
        keywords.append(KeywordRecord(phrase=str(value), source=KeywordSource.SPREADSHEET))

    return keywords


def load_keywords(file_path: Union[str, Path], sheet_name: Optional[str] = None) -> list[KeywordRecord]:
    """
    Load keywords from a CSV or Excel file.

    Automatically detects file type based on extension.

    Raises:
        KeywordLoadError: If the file cannot be read or is invalid.
    """
    path = Path(file_path)
    suffix = path.suffix.lower()

    if suffix == ".csv":
        return load_keywords_from_csv(path)
    elif suffix in (".xlsx", ".xls"):
        return load_keywords_from_excel(path, sheet_name)
    else:
        raise KeywordLoadError(
            f"Unsupported file format: {suffix}. Supported formats: .csv, .xlsx, .xls"
        )


def read_spreadsheet_keywords(file_path: Union[str, Path], limit: Optional[int] = None) -> list[str]:
    """
    Read the candidate keyword list for the dashboard.

    Never raises. A missing file yields [EXCEL_NOT_FOUND]; any other read
    or parse failure yields [EXCEL_READ_FAILED].

    Args:
        file_path: Spreadsheet location.
        limit: Keep only the first N keywords. None keeps all.

    Returns:
        Keyword strings, or a single-element sentinel list.
    """
    path = Path(file_path)
    if not path.exists():
        logger.error(f"Keyword spreadsheet not found: {path}")
        return [EXCEL_NOT_FOUND]

    try:
        records = load_keywords(path)
    except KeywordLoadError as e:
        logger.error(f"Keyword spreadsheet read failed: {e}")
        return [EXCEL_READ_FAILED]

    phrases = [record.phrase for record in records]
    if limit is not None:
        phrases = phrases[:limit]
    return phrases


def is_error_sentinel(keywords: list[str]) -> bool:
    """Check whether a keyword list is a failure sentinel."""
    return bool(keywords) and keywords[0].startswith(ERROR_PREFIX)


def deduplicate_keywords(keywords: list[KeywordRecord]) -> list[KeywordRecord]:
    """
    Remove duplicate keywords based on phrase (case-insensitive).

    Keeps the first occurrence of each keyword.
    """
    seen: set[str] = set()
    unique: list[KeywordRecord] = []

    for kw in keywords:
        key = kw.phrase.lower()
        if key not in seen:
            seen.add(key)
            unique.append(kw)

    return unique
