import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "accounts": "accounts",
    "categories": "categories",
    "transactions": "transactions",
    "recurring_rules": "recurring",
}


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class ChangeFeed:
    """Notifies subscribers of collections touched by a committed session.

    Bind it to a ``sessionmaker`` or a single ``Session``; work that is rolled
    back notifies nobody.
    """

    _PENDING_KEY = "changed_collections"

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[str], None]]] = defaultdict(list)

    def bind(self, target) -> None:
        event.listen(target, "after_flush", self._collect)
        event.listen(target, "after_commit", self._publish)
        event.listen(target, "after_rollback", self._discard)

    def subscribe(
        self, collection: str, callback: Callable[[str], None]
    ) -> Callable[[], None]:
        if collection not in COLLECTIONS.values():
            raise ValueError(f"Unknown collection: {collection}")
        self._subscribers[collection].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[collection]:
                self._subscribers[collection].remove(callback)

        return unsubscribe

    def _collect(self, session: Session, _flush_context) -> None:
        pending = session.info.setdefault(self._PENDING_KEY, set())
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            collection = COLLECTIONS.get(getattr(obj, "__tablename__", ""))
            if collection:
                pending.add(collection)

    def _discard(self, session: Session) -> None:
        session.info.pop(self._PENDING_KEY, None)

    def _publish(self, session: Session) -> None:
        pending = session.info.pop(self._PENDING_KEY, set())
        for collection in sorted(pending):
            for callback in list(self._subscribers[collection]):
                try:
                    callback(collection)
                except Exception:
                    logger.exception(f"change_feed: subscriber failed collection={collection}")


change_feed = ChangeFeed()
change_feed.bind(SessionLocal)


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
