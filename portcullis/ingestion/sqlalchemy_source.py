"""SQL-dialect source connector (Redshift, PostgreSQL) built on SQLAlchemy async."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from portcullis.core.errors import SourceConnectionError, SourceQueryError
from portcullis.ingestion.base import ColumnSpec, SourceConnector, SourceSession, TableSnapshot

logger = logging.getLogger(__name__)


class SqlAlchemySession(SourceSession):
    def __init__(self, conn: AsyncConnection, schema: Optional[str] = None):
        self._conn = conn
        self.schema = schema

    async def list_tables(self) -> List[str]:
        try:
            return await self._conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names(schema=self.schema)
            )
        except SQLAlchemyError as exc:
            raise SourceQueryError(message=f"Listing tables failed: {exc}") from exc

    def _qualified(self, table: str) -> str:
        preparer = self._conn.dialect.identifier_preparer
        if self.schema:
            return f"{preparer.quote_schema(self.schema)}.{preparer.quote(table)}"
        return preparer.quote(table)

    async def fetch_table(self, table: str) -> TableSnapshot:
        try:
            described = await self._conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_columns(table, schema=self.schema)
            )
            result = await self._conn.execute(text(f"SELECT * FROM {self._qualified(table)}"))
            rows = [dict(row._mapping) for row in result]
        except SQLAlchemyError as exc:
            raise SourceQueryError(
                message=f"Reading table {table} failed: {exc}",
                details={"table": table},
            ) from exc
        columns = [ColumnSpec(name=col["name"], type=str(col["type"])) for col in described]
        return TableSnapshot(name=table, columns=columns, rows=rows)


class SqlAlchemyConnector(SourceConnector):
    """Connects through any SQLAlchemy async dialect URL."""

    def __init__(
        self,
        url: URL | str,
        schema: Optional[str] = None,
        timeout: float = 60.0,
        link_type: str = "sql",
    ):
        self.url = url
        self.schema = schema
        self.timeout = timeout
        self.link_type = link_type

    @classmethod
    def for_postgres_protocol(
        cls,
        credentials: Dict[str, Any],
        timeout: float = 60.0,
        link_type: str = "postgres",
    ) -> "SqlAlchemyConnector":
        url = URL.create(
            "postgresql+asyncpg",
            username=credentials["user"],
            password=credentials["password"],
            host=credentials["host"],
            port=int(credentials["port"]),
            database=credentials["database"],
        )
        return cls(url, schema=credentials.get("schema") or None, timeout=timeout, link_type=link_type)

    def _connect_args(self) -> Dict[str, Any]:
        backend = make_url(self.url).drivername
        if backend.endswith("asyncpg"):
            return {"timeout": self.timeout}
        return {}

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[SqlAlchemySession]:
        engine = create_async_engine(self.url, pool_pre_ping=True, connect_args=self._connect_args())
        try:
            try:
                conn = await engine.connect()
            except (DBAPIError, SQLAlchemyError, OSError) as exc:
                raise SourceConnectionError(
                    message=f"Could not connect to {self.link_type} source: {exc}",
                ) from exc
            logger.debug("Connected to %s source via %s", self.link_type, make_url(self.url).drivername)
            try:
                yield SqlAlchemySession(conn, schema=self.schema)
            finally:
                await conn.close()
        finally:
            await engine.dispose()
