from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import fakeredis
import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.db.base import Base
from app.db.session import configure_engine, get_engine, get_session_factory
from app.notifications.cache import (
    NotificationListCache,
    configure_notification_list_cache,
)


@pytest.fixture()
def session_factory(tmp_path: Path) -> Iterator[sessionmaker[Session]]:
    database_url = f"sqlite:///{tmp_path / 'test_notification_core.db'}"
    configure_engine(database_url)
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield get_session_factory()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_factory() as db_session:
        yield db_session


@pytest.fixture()
def redis_server() -> fakeredis.FakeServer:
    # A fresh server per test; fake clients otherwise share state.
    return fakeredis.FakeServer()


@pytest.fixture(autouse=True)
def list_cache(redis_server: fakeredis.FakeServer) -> Iterator[NotificationListCache]:
    cache = NotificationListCache(fakeredis.FakeRedis(server=redis_server), ttl_seconds=30)
    configure_notification_list_cache(cache)
    yield cache
    configure_notification_list_cache(None)
