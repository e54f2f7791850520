# app/processing.py
import io
import logging

import pandas as pd
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import StoreFailure
from .schemas import TransactionType

logger = logging.getLogger(__name__)

CHUNK_SIZE = 50_000  # Process 50,000 rows at a time
REQUIRED_COLUMNS = {"type", "category", "amount", "description", "date"}
# description may be blank, everything else maps to a NOT NULL column
NON_EMPTY_COLUMNS = ["type", "category", "amount", "date"]
VALID_TYPES = {t.value for t in TransactionType}


def _normalise_chunk(chunk_df: pd.DataFrame) -> pd.DataFrame:
    """
    Cleans one chunk of uploaded rows into the shape of the transactions table.

    Raises:
        ValueError: If any row has a missing value, an unknown type, a bad
            amount or a bad date
    """
    chunk_df = chunk_df[sorted(REQUIRED_COLUMNS)].copy()

    # Whitespace-only cells count as missing
    cells = chunk_df[NON_EMPTY_COLUMNS].replace(r"^\s*$", pd.NA, regex=True)
    missing = [col for col in NON_EMPTY_COLUMNS if cells[col].isna().any()]
    if missing:
        raise ValueError(f"missing values in column(s): {', '.join(missing)}")

    chunk_df['type'] = chunk_df['type'].astype(str).str.strip().str.lower()
    unknown = set(chunk_df['type']) - VALID_TYPES
    if unknown:
        raise ValueError(f"unknown transaction type(s): {', '.join(sorted(unknown))}")

    # This will raise a ValueError if conversion fails
    chunk_df['amount'] = pd.to_numeric(chunk_df['amount'])
    if (chunk_df['amount'] < 0).any():
        raise ValueError("amount must not be negative")

    chunk_df['date'] = pd.to_datetime(chunk_df['date'], format='mixed').dt.date
    chunk_df['category'] = chunk_df['category'].astype(str).str.strip()
    chunk_df['description'] = chunk_df['description'].fillna("").astype(str)
    return chunk_df


def validate_csv_format(file_contents: bytes):
    """
    Validates CSV format and structure without processing the entire file.

    Args:
        file_contents: The CSV file contents as bytes

    Raises:
        ValueError: If the CSV format is invalid
    """
    try:
        buffer = io.StringIO(file_contents.decode('utf-8'))
        # Read just the first few rows to validate structure
        sample_df = pd.read_csv(buffer, nrows=5)
    except (UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValueError(f"Invalid CSV format: {e}")

    if not REQUIRED_COLUMNS.issubset(sample_df.columns):
        missing_cols = REQUIRED_COLUMNS - set(sample_df.columns)
        raise ValueError(f"CSV file is missing required columns: {', '.join(sorted(missing_cols))}")

    try:
        _normalise_chunk(sample_df)
    except (ValueError, TypeError) as e:
        raise ValueError(f"CSV file contains corrupt or malformed data: {e}")


def process_csv_to_db(file_contents: bytes, engine: Engine, user_id: int) -> int:
    """
    Processes a CSV file in chunks and appends the rows to the 'transactions'
    table, owned by ``user_id``.

    Args:
        file_contents: The CSV file contents as bytes
        engine: SQLAlchemy engine for database connection
        user_id: Owner of every imported transaction

    Returns:
        int: Total number of rows processed
    """
    buffer = io.StringIO(file_contents.decode('utf-8'))
    total_rows = 0

    try:
        for chunk_df in pd.read_csv(buffer, chunksize=CHUNK_SIZE):
            if not REQUIRED_COLUMNS.issubset(chunk_df.columns):
                raise ValueError("CSV file is missing one or more required columns.")

            chunk_df = _normalise_chunk(chunk_df)
            chunk_df['user_id'] = user_id

            chunk_df.to_sql(
                'transactions',
                con=engine,
                if_exists='append',
                index=False
            )
            total_rows += len(chunk_df)
    except (ValueError, TypeError) as e:
        raise ValueError(f"CSV file contains corrupt or malformed data: {e}")
    except (SQLAlchemyError, pd.errors.DatabaseError) as e:
        logger.exception("Import for user %s failed after %d rows", user_id, total_rows)
        raise StoreFailure(f"Transaction import failed: {e}") from e

    logger.info("Imported %d transactions for user %s", total_rows, user_id)
    return total_rows
