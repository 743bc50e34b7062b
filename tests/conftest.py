"""Test configuration and fixtures."""

from typing import Callable, Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from work_registry.db.base import Base
from work_registry.db.models import AgentModel
from work_registry.db.services import AgentService
from work_registry.signing import CredentialIssuer, SigningError
from work_registry.storage import ObjectPage, ObjectSource, ObjectSourceError, StoredObject


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingIssuer(CredentialIssuer):
    """Issuer that returns a distinct URL per call and records every call."""

    def __init__(self, fail_paths: Optional[set] = None):
        self.calls: List[tuple] = []
        self.fail_paths = fail_paths or set()

    def sign(self, bucket: str, path: str, ttl_seconds: int) -> str:
        self.calls.append((bucket, path, ttl_seconds))
        if path in self.fail_paths:
            raise SigningError(f"cannot sign {path}")
        return f"https://cdn.test/{bucket}/{path}?sig={len(self.calls)}"


class MemoryObjectSource(ObjectSource):
    """In-memory object source paginated by offset, like a blob store listing."""

    def __init__(self, names: List[str], bucket: str = "works", fail: bool = False):
        self.bucket = bucket
        self.objects = [StoredObject(name=n, size=100 + i) for i, n in enumerate(names)]
        self.fail = fail
        self.page_requests: List[Optional[str]] = []

    def list_objects(self, prefix: str, page_cursor: Optional[str], page_size: int) -> ObjectPage:
        self.page_requests.append(page_cursor)
        if self.fail:
            raise ObjectSourceError("store offline")
        matching = [o for o in self.objects if o.name.startswith(prefix)]
        offset = int(page_cursor or 0)
        window = matching[offset : offset + page_size]
        end = offset + len(window)
        return ObjectPage(
            objects=window,
            has_more=end < len(matching),
            next_cursor=str(end),
        )


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from work_registry.db import models  # noqa: F401

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def agent(db_session) -> AgentModel:
    return AgentService(db_session).create("abraham")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def issuer() -> CountingIssuer:
    return CountingIssuer()


@pytest.fixture
def make_source() -> Callable[..., MemoryObjectSource]:
    def _make(ordinals_or_names, handle: str = "abraham", **kwargs) -> MemoryObjectSource:
        names = [
            n if isinstance(n, str) else f"{handle}/{n}.png" for n in ordinals_or_names
        ]
        return MemoryObjectSource(names, **kwargs)

    return _make


@pytest.fixture
def snapshot(db_session, agent) -> Callable[[], Dict[int, dict]]:
    """Return a function that snapshots the agent's works keyed by ordinal."""
    from work_registry.db.models import WorkModel

    def _snapshot() -> Dict[int, dict]:
        db_session.expire_all()
        rows = db_session.query(WorkModel).filter(WorkModel.agent_id == agent.id).all()
        return {
            row.ordinal: {
                "id": row.id,
                "status": row.status,
                "storage_path": row.storage_path,
                "bytes": row.bytes,
                "sha256": row.sha256,
            }
            for row in rows
        }

    return _snapshot
