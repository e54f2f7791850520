# app/main.py
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, UploadFile, File, HTTPException, Depends, BackgroundTasks, Query, Request, Response
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from .config import settings
from .database import Base, engine as main_engine, SessionLocal
from .cache import Cache, RedisCache
from .errors import AuthenticationFailure, register_exception_handlers
from .auth import create_access_token, get_current_identity, hash_password, require_roles, verify_password
from .store import TransactionStore, UserStore
from .schemas import (
    AnalyticsSnapshot,
    CategoryBreakdown,
    Identity,
    IncomeVsExpense,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    MonthlyTrends,
    Period,
    RegisterRequest,
    RegisterResponse,
    Role,
    TransactionCreate,
    TransactionOut,
    TransactionType,
    TransactionUpdate,
    UserOut,
)
from . import analytics, processing

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

WRITER_ROLES = (Role.ADMIN, Role.USER)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=main_engine)
    # redis-py connects lazily, so an unreachable cache does not block startup
    app.state.cache = RedisCache.from_url(settings.REDIS_URL)
    yield
    app.state.cache.close()


app = FastAPI(
    title="Finance Tracker API",
    description="API for personal finance tracking: authentication, transactions and analytics.",
    lifespan=lifespan,
)
register_exception_handlers(app)

# Dependency function for engine
def get_engine():
    yield main_engine

# Dependency function for database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_cache(request: Request) -> Cache:
    return request.app.state.cache

def get_user_store(db: Session = Depends(get_db)) -> UserStore:
    return UserStore(db)

def get_transaction_store(db: Session = Depends(get_db)) -> TransactionStore:
    return TransactionStore(db)


def _owned_transaction(store: TransactionStore, transaction_id: int, identity: Identity):
    """Looks up a transaction the caller may see; other users' rows look like missing ones."""
    txn = store.get(transaction_id)
    if txn is None or (identity.role is not Role.ADMIN and txn.user_id != identity.user_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn

def _row_data(payload, exclude_unset: bool = False) -> dict:
    data = payload.model_dump(exclude_unset=exclude_unset)
    if data.get("type") is not None:
        data["type"] = data["type"].value
    return data


# This is the route for the root URL "/"
@app.get("/")
def read_root():
    return {"message": "Welcome to the Finance Tracker API"}


# --- auth ---

@app.post("/api/auth/register", response_model=RegisterResponse, status_code=201)
def register(payload: RegisterRequest, users: UserStore = Depends(get_user_store)):
    if users.find_by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")

    user = users.create(payload.name, payload.email, hash_password(payload.password), payload.role)
    logger.info("Registered user %s with role %s", user.id, user.role)
    return RegisterResponse(message="User registered successfully", user_id=user.id)

@app.post("/api/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, users: UserStore = Depends(get_user_store)):
    user = users.find_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    logger.info("User %s logged in", user.id)
    return LoginResponse(token=create_access_token(user), user=UserOut.model_validate(user))

@app.get("/api/auth/protected", response_model=MessageResponse)
def protected(
    identity: Identity = Depends(get_current_identity),
    users: UserStore = Depends(get_user_store),
):
    user = users.get(identity.user_id)
    if user is None:
        raise AuthenticationFailure("Token refers to a deleted user")
    return MessageResponse(message=f"Hello, {user.name or 'user'}!")

@app.get("/api/auth/admin-only", response_model=MessageResponse)
def admin_only(identity: Identity = Depends(require_roles(Role.ADMIN))):
    return MessageResponse(message="Welcome Admin!")


# --- transactions ---

@app.get("/api/transactions", response_model=List[TransactionOut])
def list_transactions(
    type: Optional[TransactionType] = None,
    category: Optional[str] = None,
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
):
    """
    Lists the caller's transactions, newest first. Admins see every user's rows.
    - **type**: Only income or only expense rows
    - **category**: Exact category label
    """
    user_id = None if identity.role is Role.ADMIN else identity.user_id
    return store.list(user_id=user_id, type=type, category=category)

@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    identity: Identity = Depends(require_roles(*WRITER_ROLES)),
    store: TransactionStore = Depends(get_transaction_store),
):
    return store.create(identity.user_id, _row_data(payload))

@app.post("/api/transactions/upload")
async def upload_csv(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    identity: Identity = Depends(require_roles(*WRITER_ROLES)),
    engine: Engine = Depends(get_engine),
):
    """
    Uploads a CSV of transactions and imports them in the background.
    - **file**: CSV with columns type, category, amount, description, date
    """
    if not file.filename or not file.filename.endswith('.csv'):
        raise HTTPException(status_code=400, detail="Invalid file type. Please upload a CSV.")

    contents = await file.read()
    try:
        processing.validate_csv_format(contents)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(processing.process_csv_to_db, contents, engine, identity.user_id)

    return {
        "message": f"File '{file.filename}' accepted and is being processed in the background."
    }

@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
):
    return _owned_transaction(store, transaction_id, identity)

@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    identity: Identity = Depends(require_roles(*WRITER_ROLES)),
    store: TransactionStore = Depends(get_transaction_store),
):
    txn = _owned_transaction(store, transaction_id, identity)
    return store.update(txn, _row_data(payload, exclude_unset=True))

@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    identity: Identity = Depends(require_roles(*WRITER_ROLES)),
    store: TransactionStore = Depends(get_transaction_store),
):
    txn = _owned_transaction(store, transaction_id, identity)
    store.delete(txn)
    return Response(status_code=204)


# --- analytics ---

class PeriodFilter:
    """
    Query filters shared by the trend and breakdown routes.
    - **period**: week (last 7 days), month or year
    - **year**: Calendar year (YYYY), defaults to the current one
    - **month**: Month of the year (1-12), defaults to the current one
    """
    def __init__(
        self,
        period: Optional[Period] = None,
        year: Optional[int] = Query(default=None, ge=1, le=9999),
        month: Optional[int] = Query(default=None, ge=1, le=12),
    ):
        self.period = period
        self.year = year
        self.month = month

    def as_kwargs(self):
        return {"period": self.period, "year": self.year, "month": self.month}


@app.get("/api/analytics", response_model=AnalyticsSnapshot)
@app.get("/api/analytics/dashboard", response_model=AnalyticsSnapshot)
def get_analytics(
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
    cache: Cache = Depends(get_cache),
):
    """
    Returns income, expense and per-category totals for the caller.
    Snapshots cover all dates and are cached for 15 minutes, so recent
    writes may not show yet.
    """
    return analytics.get_analytics(identity, store, cache)

@app.get("/api/analytics/monthly-trends", response_model=MonthlyTrends)
def get_monthly_trends(
    filters: PeriodFilter = Depends(),
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
):
    """
    Returns income, expenses and net per calendar month.
    """
    return analytics.monthly_trends(identity, store, **filters.as_kwargs())

@app.get("/api/analytics/category-breakdown", response_model=CategoryBreakdown)
def get_category_breakdown(
    filters: PeriodFilter = Depends(),
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
):
    return analytics.category_breakdown(identity, store, **filters.as_kwargs())

@app.get("/api/analytics/income-vs-expense", response_model=IncomeVsExpense)
def get_income_vs_expense(
    filters: PeriodFilter = Depends(),
    identity: Identity = Depends(get_current_identity),
    store: TransactionStore = Depends(get_transaction_store),
):
    """
    Returns income, expenses and net for every date with transactions.
    """
    return analytics.income_vs_expense(identity, store, **filters.as_kwargs())
