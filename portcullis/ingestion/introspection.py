"""Source schema introspection: which tables can these credentials see."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from portcullis.core.connectors import ConnectorRegistry, get_registry
from portcullis.core.retry_config import Deadline
from portcullis.ingestion.base import SourceConnector

logger = logging.getLogger(__name__)


def dedupe(names: List[str]) -> List[str]:
    """Drop repeated names, keeping first-seen order."""
    seen = set()
    ordered: List[str] = []
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        ordered.append(name)
    return ordered


class SourceIntrospector:
    """
    Lists the tables visible to a set of source credentials.

    The credential shape is checked against the link-type registry before
    any connection is attempted, so malformed credentials never reach the
    network. Nothing here is retried.
    """

    def __init__(self, registry: Optional[ConnectorRegistry] = None, source_timeout: float = 60.0):
        self.registry = registry or get_registry()
        self.source_timeout = source_timeout

    def resolve(self, link_type: str, credentials: Dict[str, Any]) -> SourceConnector:
        descriptor = self.registry.get(link_type)
        return descriptor.build(credentials, timeout=self.source_timeout)

    async def list_tables(
        self,
        link_type: str,
        credentials: Dict[str, Any],
        deadline: Optional[Deadline] = None,
    ) -> List[str]:
        connector = self.resolve(link_type, credentials)
        deadline = deadline or Deadline.unbounded()
        tables = await deadline.run(self._list(connector), "introspection")
        logger.info(
            "Introspected %d tables",
            len(tables),
            extra={"event": "introspection_done", "link_type": link_type.lower()},
        )
        return tables

    async def _list(self, connector: SourceConnector) -> List[str]:
        async with connector.connect() as session:
            return dedupe(await session.list_tables())
