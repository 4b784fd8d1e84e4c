# Overview: Concurrency-safe, year-scoped request number allocation.

"""
Request Number Sequence Service

================================================================================
PURPOSE: Issue unique, per-year, monotonically increasing request numbers
================================================================================

FORMAT:
    PREFIX (2 uppercase letters) + YEAR (4 digits) + SEQUENCE (4 digits, zero padded)
    e.g. SC20250001, SC20250002, ... SC20259999

ALGORITHM:
    1. INSERT the counter row for the year if it does not exist
       (INSERT ... ON CONFLICT (year) DO NOTHING)
    2. UPDATE request_number_counters SET last_number = last_number + 1
       WHERE year = :year RETURNING last_number
    3. Format

Step 2 is the only point of serialization: concurrent callers block on the
counter row lock, so no two callers can observe the same value. Application
code never reads the counter and writes it back.

The increment joins the caller's transaction; the caller commits it together
with the request row. Gaps are acceptable, duplicates are not.

FAILURES:
    Any database error raises RequestNumberError. No retry, no fallback: a
    request must never be created without a number.
================================================================================
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import insert as generic_insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import RequestNumberCounter
from shopreq.time_utils import current_year


DEFAULT_PREFIX = "SC"
SEQUENCE_DIGITS = 4
MAX_SEQUENCE = 10 ** SEQUENCE_DIGITS - 1

REQUEST_NUMBER_RE = re.compile(r"^([A-Z]{2})(\d{4})(\d{4})$")
_PREFIX_RE = re.compile(r"^[A-Z]{2}$")


class RequestNumberError(Exception):
    """Raised when a request number cannot be issued."""
    pass


def _resolve_prefix(prefix: str | None) -> str:
    if prefix is None:
        prefix = current_app.config.get("REQUEST_NUMBER_PREFIX", DEFAULT_PREFIX)
    if not _PREFIX_RE.match(prefix or ""):
        raise ValueError(f"Request number prefix must be two uppercase letters, got {prefix!r}")
    return prefix


def _resolve_year(year: int | str | None) -> str:
    if year is None:
        year = current_year()
    year_str = str(year)
    if not (len(year_str) == 4 and year_str.isdigit()):
        raise ValueError(f"Year must be a 4-digit number, got {year!r}")
    return year_str


def format_request_number(prefix: str, year: int | str, sequence: int) -> str:
    if sequence < 1 or sequence > MAX_SEQUENCE:
        raise RequestNumberError(
            f"Sequence {sequence} does not fit in {SEQUENCE_DIGITS} digits"
        )
    return f"{prefix}{year}{sequence:0{SEQUENCE_DIGITS}d}"


def parse_request_number(value: str) -> tuple[str, str, int]:
    """Split "SC20250001" into ("SC", "2025", 1). Raises ValueError if malformed."""
    match = REQUEST_NUMBER_RE.match(value or "")
    if not match:
        raise ValueError(f"Malformed request number: {value!r}")
    prefix, year, seq = match.groups()
    return prefix, year, int(seq)


def _insert_counter_if_absent(year: str) -> None:
    dialect = db.session.get_bind().dialect.name
    values = {"year": year, "last_number": 0}

    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        stmt = pg_insert(RequestNumberCounter).values(**values).on_conflict_do_nothing(
            index_elements=["year"]
        )
        db.session.execute(stmt)
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        stmt = sqlite_insert(RequestNumberCounter).values(**values).on_conflict_do_nothing(
            index_elements=["year"]
        )
        db.session.execute(stmt)
    else:
        # No native upsert: let the primary key decide inside a savepoint
        try:
            with db.session.begin_nested():
                db.session.execute(generic_insert(RequestNumberCounter).values(**values))
        except IntegrityError:
            pass


def _increment_counter(year: str) -> int | None:
    bind = db.session.get_bind()
    stmt = (
        update(RequestNumberCounter)
        .where(RequestNumberCounter.year == year)
        .values(last_number=RequestNumberCounter.last_number + 1)
    )

    if bind.dialect.update_returning:
        return db.session.execute(
            stmt.returning(RequestNumberCounter.last_number)
        ).scalar_one_or_none()

    # The UPDATE holds the row lock until commit, so this read cannot interleave
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return db.session.execute(
        select(RequestNumberCounter.last_number).where(RequestNumberCounter.year == year)
    ).scalar_one()


def next_request_number(year: int | str | None = None, *, prefix: str | None = None) -> str:
    """
    Atomically allocate the next request number for a year.

    Args:
        year: Year to allocate in (defaults to the current UTC year)
        prefix: Two-letter prefix (defaults to REQUEST_NUMBER_PREFIX)

    Returns:
        The formatted request number, e.g. "SC20250001"

    Raises:
        ValueError: Malformed prefix or year
        RequestNumberError: Counter unavailable or year exhausted

    The caller owns the transaction and must commit (or roll back).
    """
    prefix = _resolve_prefix(prefix)
    year_str = _resolve_year(year)

    try:
        _insert_counter_if_absent(year_str)
        value = _increment_counter(year_str)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise RequestNumberError(f"Could not allocate request number for {year_str}") from exc

    if value is None:
        db.session.rollback()
        raise RequestNumberError(f"Counter row for {year_str} is missing")

    if value > MAX_SEQUENCE:
        db.session.rollback()
        raise RequestNumberError(f"Request numbers for {year_str} are exhausted ({MAX_SEQUENCE} issued)")

    return format_request_number(prefix, year_str, value)


def peek_counter(year: int | str | None = None) -> int:
    """Last issued sequence value for the year (0 if nothing issued yet)."""
    year_str = _resolve_year(year)
    value = db.session.execute(
        select(RequestNumberCounter.last_number).where(RequestNumberCounter.year == year_str)
    ).scalar_one_or_none()
    return value or 0
