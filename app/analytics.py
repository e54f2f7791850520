# app/analytics.py
import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Tuple

import pandas as pd
from pydantic import ValidationError

from .cache import Cache, CacheError
from .config import settings
from .errors import StoreFailure
from .schemas import (
    AnalyticsSnapshot,
    CategoryBreakdown,
    CategoryShare,
    DailyComparison,
    Identity,
    IncomeVsExpense,
    MonthlyTrendItem,
    MonthlyTrends,
    Period,
    Role,
    TransactionType,
)
from .store import TransactionStore

logger = logging.getLogger(__name__)

ADMIN_CACHE_KEY = "analytics:admin"
CENTS = Decimal("0.01")


def cache_key(identity: Identity) -> str:
    # Every admin shares one snapshot; other roles get a private one
    if identity.role is Role.ADMIN:
        return ADMIN_CACHE_KEY
    return f"analytics:user:{identity.user_id}"


def owner_filter(identity: Identity) -> Optional[int]:
    """
    Returns the user id rows must belong to, or None for an unrestricted read.
    """
    if identity.role is Role.ADMIN:
        return None
    elif identity.role is Role.USER or identity.role is Role.READ_ONLY:
        return identity.user_id
    raise ValueError(f"No row filter defined for role {identity.role!r}")


def to_cents(value) -> Decimal:
    """Rounds a summed amount to whole cents."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def breakdown_to_mapping(rows: Iterable[Tuple[str, Decimal]]) -> Dict[str, Decimal]:
    """
    Turns grouped (category, total) rows into a category -> total mapping.

    Raises ValueError on a repeated category, which would mean the query was
    not grouped by category.
    """
    mapping: Dict[str, Decimal] = {}
    for category, total in rows:
        if category in mapping:
            raise ValueError(f"Duplicate category '{category}' in grouped result")
        mapping[category] = total
    return mapping


def compute_snapshot(identity: Identity, store: TransactionStore) -> AnalyticsSnapshot:
    user_id = owner_filter(identity)

    # Whole cents, so the breakdown adds up to the expense total exactly
    total_income = to_cents(store.sum_amount(TransactionType.INCOME, user_id=user_id))
    total_expense = to_cents(store.sum_amount(TransactionType.EXPENSE, user_id=user_id))
    rows = [(category, to_cents(total)) for category, total in store.sum_by_category(user_id=user_id)]
    try:
        category_breakdown = breakdown_to_mapping(rows)
    except ValueError as e:
        raise StoreFailure(str(e)) from e

    return AnalyticsSnapshot(
        total_income=float(total_income),
        total_expense=float(total_expense),
        net_balance=float(total_income - total_expense),
        category_breakdown={category: float(total) for category, total in category_breakdown.items()},
    )


def _read_cached(cache: Cache, key: str) -> Optional[AnalyticsSnapshot]:
    try:
        cached = cache.get(key)
    except CacheError as e:
        logger.warning("Cache read failed, computing fresh snapshot: %s", e)
        return None
    if cached is None:
        return None
    try:
        return AnalyticsSnapshot.model_validate_json(cached)
    except ValidationError as e:
        logger.warning("Discarding unreadable cache entry %s: %s", key, e)
        return None


def get_analytics(
    identity: Identity,
    store: TransactionStore,
    cache: Cache,
    ttl: Optional[int] = None,
) -> AnalyticsSnapshot:
    """
    Cache-aside read of the caller's analytics snapshot.

    A hit is returned as stored. On a miss the snapshot is computed from the
    store and written back with a fixed TTL. Cache failures never fail the
    request, store failures always do (and nothing is cached).
    """
    key = cache_key(identity)

    snapshot = _read_cached(cache, key)
    if snapshot is not None:
        logger.debug("Analytics cache hit for %s", key)
        return snapshot

    logger.debug("Analytics cache miss for %s", key)
    snapshot = compute_snapshot(identity, store)

    try:
        cache.set(key, snapshot.model_dump_json(by_alias=True), ttl or settings.ANALYTICS_CACHE_TTL)
    except CacheError as e:
        logger.warning("Cache write failed for %s: %s", key, e)

    return snapshot


def date_window(
    period: Optional[Period] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    today: Optional[date] = None,
) -> Tuple[Optional[date], Optional[date]]:
    """
    Resolves the period/year/month query filters to an inclusive date range.

    Without a period, ``month`` implies a month window and ``year`` a year
    window; with none of the three the range is unbounded (None, None).
    ``week`` is the seven days ending today and ignores year and month.
    """
    today = today or date.today()
    if period is None:
        if month is not None:
            period = Period.MONTH
        elif year is not None:
            period = Period.YEAR
        else:
            return None, None

    if period is Period.WEEK:
        return today - timedelta(days=6), today
    elif period is Period.MONTH:
        year = year or today.year
        month = month or today.month
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
    elif period is Period.YEAR:
        year = year or today.year
        return date(year, 1, 1), date(year, 12, 31)
    raise ValueError(f"Unknown period {period!r}")


def _income_expense_pivot(
    identity: Identity,
    store: TransactionStore,
    window: Tuple[Optional[date], Optional[date]],
    freq: Optional[str] = None,
) -> pd.DataFrame:
    """
    Sums amounts per date (or per ``freq`` period) into income and expense
    columns. Returns an empty frame when there are no rows in the window.
    """
    start_date, end_date = window
    df = store.fetch_amounts(user_id=owner_filter(identity), start_date=start_date, end_date=end_date)
    if df.empty:
        return df

    dates = pd.to_datetime(df['date'])
    df['bucket'] = dates.dt.to_period(freq).astype(str) if freq else dates.dt.date
    df['amount'] = pd.to_numeric(df['amount'])

    pivot = df.pivot_table(index='bucket', columns='type', values='amount', aggfunc='sum', fill_value=0)
    return pivot.reindex(columns=[t.value for t in TransactionType], fill_value=0).sort_index()


def _pivot_rows(pivot: pd.DataFrame):
    for bucket, row in pivot.iterrows():
        income = float(to_cents(row[TransactionType.INCOME.value]))
        expenses = float(to_cents(row[TransactionType.EXPENSE.value]))
        yield bucket, income, expenses, float(to_cents(income - expenses))


def monthly_trends(
    identity: Identity,
    store: TransactionStore,
    period: Optional[Period] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> MonthlyTrends:
    pivot = _income_expense_pivot(identity, store, date_window(period, year, month), freq='M')
    return MonthlyTrends(trends=[
        MonthlyTrendItem(month=bucket, income=income, expenses=expenses, net=net)
        for bucket, income, expenses, net in _pivot_rows(pivot)
    ])


def income_vs_expense(
    identity: Identity,
    store: TransactionStore,
    period: Optional[Period] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> IncomeVsExpense:
    """Income, expenses and net for every date that has transactions."""
    pivot = _income_expense_pivot(identity, store, date_window(period, year, month))
    return IncomeVsExpense(comparison=[
        DailyComparison(date=bucket, income=income, expenses=expenses, net=net)
        for bucket, income, expenses, net in _pivot_rows(pivot)
    ])


def category_breakdown(
    identity: Identity,
    store: TransactionStore,
    period: Optional[Period] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> CategoryBreakdown:
    start_date, end_date = date_window(period, year, month)
    rows = store.sum_by_type_and_category(
        user_id=owner_filter(identity), start_date=start_date, end_date=end_date
    )

    totals: Dict[str, float] = {}
    for type_, _, amount in rows:
        totals[type_] = totals.get(type_, 0.0) + amount

    categories = []
    for type_, category, amount in rows:
        share = (amount / totals[type_] * 100) if totals[type_] else 0.0
        categories.append(CategoryShare(
            category=category,
            type=TransactionType(type_),
            amount=float(to_cents(amount)),
            percentage=round(share, 2),
        ))
    return CategoryBreakdown(categories=categories)
