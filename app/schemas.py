# app/schemas.py
from enum import Enum
from typing import Dict, List, Optional
import datetime as dt

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    READ_ONLY = "read-only"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Period(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class CamelModel(BaseModel):
    """Serialises to camelCase for the frontend, accepts both spellings on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Identity(BaseModel):
    """The authenticated caller, as resolved from the bearer token."""
    user_id: int
    role: Role


# --- auth ---

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = Role.USER

class RegisterResponse(CamelModel):
    message: str
    user_id: int

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class UserOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: Role

class LoginResponse(BaseModel):
    token: str
    user: UserOut

class MessageResponse(BaseModel):
    message: str


# --- transactions ---

class TransactionBase(CamelModel):
    type: TransactionType
    category: str = Field(min_length=1, max_length=100)
    amount: float = Field(ge=0)
    description: str = Field(default="", max_length=255)
    date: dt.date

class TransactionCreate(TransactionBase):
    pass

class TransactionUpdate(CamelModel):
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=255)
    date: Optional[dt.date] = None

    @field_validator("type", "category", "amount", "description", "date")
    @classmethod
    def not_null(cls, value):
        # Omitted fields stay unchanged; null is never a valid value
        if value is None:
            raise ValueError("must not be null")
        return value

class TransactionOut(TransactionBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    created_at: dt.datetime
    updated_at: dt.datetime


# --- analytics ---

class AnalyticsSnapshot(CamelModel):
    total_income: float = 0
    total_expense: float = 0
    net_balance: float = 0
    category_breakdown: Dict[str, float] = Field(default_factory=dict)

class MonthlyTrendItem(BaseModel):
    month: str
    income: float
    expenses: float
    net: float

class MonthlyTrends(BaseModel):
    trends: List[MonthlyTrendItem]

class CategoryShare(BaseModel):
    category: str
    type: TransactionType
    amount: float
    percentage: float

class CategoryBreakdown(BaseModel):
    categories: List[CategoryShare]

class DailyComparison(BaseModel):
    date: dt.date
    income: float
    expenses: float
    net: float

class IncomeVsExpense(BaseModel):
    comparison: List[DailyComparison]
