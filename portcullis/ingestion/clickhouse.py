"""ClickHouse source connector over the ClickHouse HTTP interface.

Queries are POSTed as the request body. Introspection uses
``SHOW TABLES FORMAT JSON``; extraction uses
``FORMAT JSONCompactEachRowWithNamesAndTypes`` so column names and types
arrive with the rows.
"""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from portcullis.core.errors import SourceConnectionError, SourceQueryError
from portcullis.ingestion.base import ColumnSpec, SourceConnector, SourceSession, TableSnapshot

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 403, 516)


def quote_identifier(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def build_base_url(host: str, port: Optional[Any] = None) -> str:
    """Normalise a ClickHouse host into an HTTP base URL."""
    host = host.strip().rstrip("/")
    if "://" not in host:
        host = f"http://{host}"
    parts = urlsplit(host)
    if port not in (None, "") and parts.port is None:
        netloc = f"{parts.hostname}:{int(port)}"
        if parts.username:
            netloc = f"{parts.username}@{netloc}"
        parts = parts._replace(netloc=netloc)
    return urlunsplit(parts)


class ClickHouseSession(SourceSession):
    def __init__(self, client: httpx.AsyncClient, database: str):
        self._client = client
        self.database = database

    async def _query(self, sql: str) -> httpx.Response:
        try:
            resp = await self._client.post(
                "/",
                params={"database": self.database},
                content=sql.encode("utf-8"),
            )
        except httpx.HTTPError as exc:
            raise SourceConnectionError(
                message=f"ClickHouse request failed: {exc}",
                details={"database": self.database},
            ) from exc
        if resp.status_code in AUTH_FAILURE_STATUSES:
            raise SourceConnectionError(
                message=f"ClickHouse authentication failed: {resp.text.strip()[:300]}",
                details={"status_code": resp.status_code},
            )
        if resp.status_code >= 400:
            raise SourceQueryError(
                message=f"ClickHouse query failed: {resp.text.strip()[:300]}",
                details={"status_code": resp.status_code},
            )
        return resp

    async def ping(self) -> None:
        await self._query("SELECT 1 FORMAT TabSeparated")

    async def list_tables(self) -> List[str]:
        resp = await self._query("SHOW TABLES FORMAT JSON")
        try:
            return [str(row["name"]) for row in resp.json()["data"]]
        except (ValueError, KeyError, TypeError) as exc:
            raise SourceQueryError(message="ClickHouse returned malformed JSON for SHOW TABLES") from exc

    async def fetch_table(self, table: str) -> TableSnapshot:
        sql = f"SELECT * FROM {quote_identifier(table)} FORMAT JSONCompactEachRowWithNamesAndTypes"
        resp = await self._query(sql)
        return parse_compact_rows(table, resp.text)


def parse_compact_rows(table: str, body: str) -> TableSnapshot:
    """Parse a JSONCompactEachRowWithNamesAndTypes body into a TableSnapshot."""
    lines = [line for line in body.splitlines() if line.strip()]
    if not lines:
        return TableSnapshot(name=table)
    malformed = SourceQueryError(
        message=f"ClickHouse returned malformed rows for {table}",
        details={"table": table},
    )
    try:
        decoded = [json.loads(line) for line in lines]
    except json.JSONDecodeError as exc:
        raise malformed from exc
    # every line, header included, is a JSON array
    if not all(isinstance(values, list) for values in decoded):
        raise malformed
    names: List[str] = decoded[0]
    types: List[str] = decoded[1] if len(decoded) > 1 else [None] * len(names)
    columns = [ColumnSpec(name=n, type=t) for n, t in zip(names, types)]
    rows: List[Dict[str, Any]] = [dict(zip(names, values)) for values in decoded[2:]]
    return TableSnapshot(name=table, columns=columns, rows=rows)


class ClickHouseConnector(SourceConnector):
    link_type = "clickhouse"

    def __init__(
        self,
        credentials: Dict[str, Any],
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = build_base_url(credentials["host"], credentials.get("port"))
        self.username = credentials["username"]
        self.password = credentials["password"]
        self.database = credentials["database"]
        self.timeout = timeout
        self._transport = transport

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[ClickHouseSession]:
        client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.username, self.password),
            timeout=self.timeout,
            transport=self._transport,
        )
        try:
            session = ClickHouseSession(client, self.database)
            try:
                await session.ping()
            except SourceQueryError as exc:
                raise SourceConnectionError(message=exc.message, details=exc.details) from exc
            logger.debug("Connected to ClickHouse at %s", self.base_url)
            yield session
        finally:
            await client.aclose()
