import os

os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LEDGER_TIMEZONE", "UTC")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from database import Base  # noqa: E402
import models  # noqa: E402,F401


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


@pytest.fixture
def session():
    db = make_session()
    try:
        yield db
    finally:
        db.close()
