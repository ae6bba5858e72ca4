import inspect
import json
import types
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from portcullis.core.config import Settings
from portcullis.core.connectors import ConnectorRegistry, LinkTypeDescriptor
from portcullis.db import create_engine, create_session_factory, init_db
from portcullis.ingestion.base import ColumnSpec, SourceConnector, SourceSession, TableSnapshot
from portcullis.sync.job_store import SyncJobStore

# Core modules / symbols we forbid patching; inject transports instead
_FORBIDDEN_PREFIXES = [
    "httpx.",
    "sqlalchemy.",
]


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_call(item):
    mp = item.funcargs.get("monkeypatch") if hasattr(item, "funcargs") else None
    if mp:
        original_setattr = mp.setattr

        def guarded_setattr(target, name=None, value=None, *a, **kw):
            fq = None
            if isinstance(target, types.ModuleType):
                fq = f"{target.__name__}.{name}"
            elif inspect.isclass(target):
                fq = f"{target.__module__}.{target.__name__}.{name}"
            elif isinstance(target, str):
                fq = target
            if fq and any(fq.startswith(p) for p in _FORBIDDEN_PREFIXES):
                raise RuntimeError(f"Forbidden monkeypatch of core real dependency: {fq}")
            if isinstance(target, str):
                return original_setattr(target, name, *a, **kw)
            return original_setattr(target, name, value, *a, **kw)

        mp.setattr = guarded_setattr  # type: ignore
    yield


# =============================================================================
# Settings / job store
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'syncs.db'}",
        github_token="test-token",
        dispatch_max_attempts=3,
        dispatch_initial_backoff_seconds=0,
        dispatch_max_backoff_seconds=0,
        sync_deadline_seconds=30,
    )


@pytest_asyncio.fixture
async def engine(settings):
    eng = create_engine(settings)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def store(engine) -> SyncJobStore:
    return SyncJobStore(create_session_factory(engine))


# =============================================================================
# Fake source warehouse
# =============================================================================

class FakeSession(SourceSession):
    def __init__(self, connector: "FakeConnector"):
        self.connector = connector

    async def list_tables(self) -> List[str]:
        if self.connector.list_error:
            raise self.connector.list_error
        return list(self.connector.table_names)

    async def fetch_table(self, table: str) -> TableSnapshot:
        self.connector.fetched.append(table)
        if table in self.connector.fetch_errors:
            raise self.connector.fetch_errors[table]
        return self.connector.tables[table]


class FakeConnector(SourceConnector):
    """In-memory warehouse that records how it was used."""

    link_type = "clickhouse"

    def __init__(self, tables: Optional[Dict[str, TableSnapshot]] = None):
        self.tables: Dict[str, TableSnapshot] = tables or {}
        self.table_names: List[str] = list(self.tables)
        self.connect_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.fetch_errors: Dict[str, Exception] = {}
        self.fetched: List[str] = []
        self.opened = 0
        self.closed = 0
        self.credentials_seen: List[Dict[str, Any]] = []

    @asynccontextmanager
    async def connect(self):
        if self.connect_error:
            raise self.connect_error
        self.opened += 1
        try:
            yield FakeSession(self)
        finally:
            self.closed += 1


def make_table(name: str, rows: Optional[List[Dict[str, Any]]] = None, types_: Optional[Dict[str, str]] = None) -> TableSnapshot:
    rows = rows or []
    names = list(types_ or (rows[0] if rows else {}))
    return TableSnapshot(
        name=name,
        columns=[ColumnSpec(n, (types_ or {}).get(n)) for n in names],
        rows=rows,
    )


@pytest.fixture
def fake_source() -> FakeConnector:
    return FakeConnector({"events": make_table("events", types_={"id": "UInt64", "name": "String"})})


@pytest.fixture
def registry(fake_source) -> ConnectorRegistry:
    def factory(credentials, timeout):
        fake_source.credentials_seen.append(dict(credentials))
        return fake_source

    reg = ConnectorRegistry()
    reg.register(
        LinkTypeDescriptor(
            link_type="clickhouse",
            required_fields=("host", "username", "password", "database"),
            factory=factory,
        )
    )
    return reg


# =============================================================================
# GitHub workflow_dispatch endpoint
# =============================================================================

class GitHubStub:
    """Scripted responses for the dispatch endpoint; records every request."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: List[Any] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        nxt = self.responses.pop(0) if self.responses else 204
        if isinstance(nxt, Exception):
            raise nxt
        if isinstance(nxt, tuple):
            status, payload = nxt
            return httpx.Response(status, json=payload)
        return httpx.Response(nxt)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def github() -> GitHubStub:
    return GitHubStub()


@pytest.fixture
def valid_body() -> Dict[str, Any]:
    return {
        "organization": "org_1",
        "internal_warehouse": "wh_1",
        "link_type": "ClickHouse",
        "internal_credentials": {"host": "h", "username": "u", "password": "p", "database": "d"},
        "destination_config": {"type": "warehouse", "credentials": {"token": "dest-secret"}},
    }
