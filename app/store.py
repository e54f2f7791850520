# app/store.py
import datetime as dt
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StoreFailure
from .models import Transaction, User
from .schemas import Role, TransactionType


def _owner_clause(user_id: Optional[int], params: Dict[str, Any]) -> str:
    """Returns the extra WHERE fragment restricting rows to one owner, if any."""
    if user_id is None:
        return ""
    params["user_id"] = user_id
    return " AND user_id = :user_id"


def _period_clause(start_date: Optional[dt.date], end_date: Optional[dt.date], params: Dict[str, Any]) -> str:
    if start_date is None or end_date is None:
        return ""
    params["start_date"] = start_date
    params["end_date"] = end_date
    return " AND date BETWEEN :start_date AND :end_date"


class UserStore:
    """Credential store: user records keyed by id and unique email."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        try:
            return self.db.query(User).filter(User.email == email).first()
        except SQLAlchemyError as e:
            raise StoreFailure(f"User lookup failed: {e}") from e

    def get(self, user_id: int) -> Optional[User]:
        try:
            return self.db.get(User, user_id)
        except SQLAlchemyError as e:
            raise StoreFailure(f"User lookup failed: {e}") from e

    def create(self, name: str, email: str, password_hash: str, role: Role = Role.USER) -> User:
        user = User(name=name, email=email, password_hash=password_hash, role=role.value)
        try:
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreFailure(f"User insert failed: {e}") from e
        return user


class TransactionStore:
    """
    Transaction rows plus the aggregate reads used by the analytics endpoints.

    Every aggregate takes an optional ``user_id``; ``None`` means the read
    covers all users' rows.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- CRUD ---

    def create(self, user_id: int, data: Dict[str, Any]) -> Transaction:
        txn = Transaction(user_id=user_id, **data)
        try:
            self.db.add(txn)
            self.db.commit()
            self.db.refresh(txn)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreFailure(f"Transaction insert failed: {e}") from e
        return txn

    def get(self, transaction_id: int) -> Optional[Transaction]:
        try:
            return self.db.get(Transaction, transaction_id)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Transaction lookup failed: {e}") from e

    def list(
        self,
        user_id: Optional[int] = None,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
    ) -> List[Transaction]:
        query = self.db.query(Transaction)
        if user_id is not None:
            query = query.filter(Transaction.user_id == user_id)
        if type is not None:
            query = query.filter(Transaction.type == type.value)
        if category is not None:
            query = query.filter(Transaction.category == category)
        try:
            return query.order_by(Transaction.date.desc(), Transaction.id.desc()).all()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Transaction listing failed: {e}") from e

    def update(self, txn: Transaction, data: Dict[str, Any]) -> Transaction:
        for field, value in data.items():
            setattr(txn, field, value)
        try:
            self.db.commit()
            self.db.refresh(txn)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreFailure(f"Transaction update failed: {e}") from e
        return txn

    def delete(self, txn: Transaction) -> None:
        try:
            self.db.delete(txn)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreFailure(f"Transaction delete failed: {e}") from e

    # --- aggregates ---

    def sum_amount(self, type: TransactionType, user_id: Optional[int] = None) -> float:
        params: Dict[str, Any] = {"type": type.value}
        owner = _owner_clause(user_id, params)
        query = text(f"SELECT SUM(amount) FROM transactions WHERE type = :type{owner}")  # nosec B608
        try:
            total = self.db.execute(query, params).scalar()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Sum of {type.value} failed: {e}") from e
        # SUM over no rows is NULL
        return float(total) if total is not None else 0.0

    def sum_by_category(self, user_id: Optional[int] = None) -> List[Tuple[str, float]]:
        """Expense totals grouped by category, as ordered (category, total) rows."""
        params: Dict[str, Any] = {"type": TransactionType.EXPENSE.value}
        owner = _owner_clause(user_id, params)
        query = text(f"""
        SELECT category, SUM(amount) AS total
        FROM transactions
        WHERE type = :type{owner}
        GROUP BY category
        ORDER BY category
        """)  # nosec B608
        try:
            rows = self.db.execute(query, params).fetchall()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Category breakdown failed: {e}") from e
        return [(row[0], float(row[1])) for row in rows]

    def sum_by_type_and_category(
        self,
        user_id: Optional[int] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None,
    ) -> List[Tuple[str, str, float]]:
        params: Dict[str, Any] = {}
        owner = _owner_clause(user_id, params)
        owner += _period_clause(start_date, end_date, params)
        query = text(f"""
        SELECT type, category, SUM(amount) AS total
        FROM transactions
        WHERE 1=1{owner}
        GROUP BY type, category
        ORDER BY type, total DESC
        """)  # nosec B608
        try:
            rows = self.db.execute(query, params).fetchall()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Type/category breakdown failed: {e}") from e
        return [(row[0], row[1], float(row[2])) for row in rows]

    def fetch_amounts(
        self,
        user_id: Optional[int] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None,
    ) -> pd.DataFrame:
        """Loads (date, type, amount) rows into a DataFrame for trend analysis."""
        params: Dict[str, Any] = {}
        owner = _owner_clause(user_id, params)
        period = _period_clause(start_date, end_date, params)
        query = text(f"SELECT date, type, amount FROM transactions WHERE 1=1{owner}{period}")  # nosec B608
        try:
            return pd.read_sql(query, con=self.db.connection(), params=params)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Trend query failed: {e}") from e
