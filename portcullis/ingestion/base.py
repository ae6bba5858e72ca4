"""
Source connector contracts.

A SourceConnector knows how to open a scoped session against one source
warehouse. Sessions list tables and read a table in full.
"""
from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type}


@dataclass
class TableSnapshot:
    """Full contents of one source table plus its column types."""
    name: str
    columns: List[ColumnSpec] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def schema(self) -> List[Dict[str, Any]]:
        return [column.to_dict() for column in self.columns]


def json_default(value: Any) -> Any:
    """``json.dumps`` hook for values source drivers hand back."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=json_default, separators=(",", ":"))


class SourceSession(ABC):
    """An open connection to a source warehouse."""

    @abstractmethod
    async def list_tables(self) -> List[str]:
        ...

    @abstractmethod
    async def fetch_table(self, table: str) -> TableSnapshot:
        ...


class SourceConnector(ABC):
    """Factory for scoped source sessions."""

    link_type: str = ""

    @abstractmethod
    def connect(self) -> AbstractAsyncContextManager[SourceSession]:
        """Open a session; the connection is released when the block exits."""
