# app/database.py
import sqlite3
from datetime import date
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.event import listen

from .config import settings

DATABASE_URL = settings.get_database_url()

# 'check_same_thread' is only needed for SQLite, since FastAPI runs
# sync endpoints in a threadpool.
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

# Create a SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def _sqlite_on_connect(dbapi_con, con_record):
    """Enables foreign keys and the date adapter for SQLite connections."""
    dbapi_con.execute('PRAGMA foreign_keys=ON')
    # Avoids the Python 3.12+ default date adapter DeprecationWarning
    sqlite3.register_adapter(date, lambda val: val.isoformat())

def register_sqlite_listener(target_engine):
    listen(target_engine, 'connect', _sqlite_on_connect)

if DATABASE_URL.startswith("sqlite"):
    register_sqlite_listener(engine)
