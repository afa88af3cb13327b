import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from scratchoff.db import init_db, make_engine, make_session_factory
from scratchoff.store import SqlInventoryStore


@pytest.fixture()
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'scratchoff.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def store(session_factory) -> SqlInventoryStore:
    return SqlInventoryStore(session_factory)
