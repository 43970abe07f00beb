import os
from pathlib import Path
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"

DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{DATA_DIR / 'ledger.db'}"
SQL_ECHO = os.getenv("LEDGER_SQL_ECHO", "false").lower() == "true"

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    # FastAPI serves sync routes from a thread pool
    connect_args = {"check_same_thread": False}

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    connect_args=connect_args,
)


def init_db() -> None:
    """Create database tables if they do not exist."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
