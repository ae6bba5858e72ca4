"""
Connector Registry Module

Link-type capability descriptors. Each descriptor names the credential
fields a link type requires and how to build a connector for it, so new
source technologies are added by registration alone.

Usage:
    from portcullis.core.connectors import get_registry, LinkTypeDescriptor

    registry = get_registry()
    descriptor = registry.get("ClickHouse")
    descriptor.check_credentials(credentials)
    connector = descriptor.build(credentials, timeout=60)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from portcullis.core.errors import CredentialShapeError
from portcullis.ingestion.base import SourceConnector
from portcullis.ingestion.clickhouse import ClickHouseConnector
from portcullis.ingestion.sqlalchemy_source import SqlAlchemyConnector

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[Dict[str, Any], float], SourceConnector]


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _is_port(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            return False
        value = int(value)
    return isinstance(value, int) and 0 < value < 65536


@dataclass(frozen=True)
class LinkTypeDescriptor:
    """Required credential shape and connector factory for one link type."""
    link_type: str
    required_fields: Tuple[str, ...]
    factory: ConnectorFactory
    port_fields: Tuple[str, ...] = ()

    def missing_fields(self, credentials: Mapping[str, Any]) -> List[str]:
        return [f for f in self.required_fields if not _is_present(credentials.get(f))]

    def invalid_fields(self, credentials: Mapping[str, Any]) -> Dict[str, str]:
        return {
            f: "must be a port number (1-65535)"
            for f in self.port_fields
            if _is_present(credentials.get(f)) and not _is_port(credentials[f])
        }

    def check_credentials(self, credentials: Mapping[str, Any]) -> None:
        """Raise CredentialShapeError when a required field is absent or blank or a port is malformed."""
        missing = self.missing_fields(credentials)
        invalid = self.invalid_fields(credentials)
        if missing or invalid:
            raise CredentialShapeError(self.link_type, missing, invalid=invalid)

    def build(self, credentials: Dict[str, Any], timeout: float = 60.0) -> SourceConnector:
        self.check_credentials(credentials)
        return self.factory(credentials, timeout)


@dataclass
class ConnectorRegistry:
    """Descriptors keyed by lower-cased link type."""
    _descriptors: Dict[str, LinkTypeDescriptor] = field(default_factory=dict)

    def register(self, descriptor: LinkTypeDescriptor, replace: bool = False) -> None:
        key = descriptor.link_type.lower()
        if key in self._descriptors and not replace:
            raise ValueError(f"Link type already registered: {key}")
        self._descriptors[key] = descriptor
        logger.debug("Registered link type %s", key)

    def find(self, link_type: str) -> Optional[LinkTypeDescriptor]:
        return self._descriptors.get(link_type.lower())

    def get(self, link_type: str) -> LinkTypeDescriptor:
        descriptor = self.find(link_type)
        if descriptor is None:
            raise CredentialShapeError(
                link_type.lower(),
                message=f"Unsupported link type: {link_type}",
            )
        return descriptor


# =============================================================================
# Built-in link types
# =============================================================================

def _clickhouse(credentials: Dict[str, Any], timeout: float) -> SourceConnector:
    return ClickHouseConnector(credentials, timeout=timeout)


def _redshift(credentials: Dict[str, Any], timeout: float) -> SourceConnector:
    return SqlAlchemyConnector.for_postgres_protocol(credentials, timeout=timeout, link_type="redshift")


def _postgres(credentials: Dict[str, Any], timeout: float) -> SourceConnector:
    return SqlAlchemyConnector.for_postgres_protocol(credentials, timeout=timeout, link_type="postgres")


BUILTIN_LINK_TYPES: Tuple[LinkTypeDescriptor, ...] = (
    LinkTypeDescriptor(
        link_type="clickhouse",
        required_fields=("host", "username", "password", "database"),
        port_fields=("port",),
        factory=_clickhouse,
    ),
    LinkTypeDescriptor(
        link_type="redshift",
        required_fields=("host", "port", "database", "user", "password"),
        port_fields=("port",),
        factory=_redshift,
    ),
    LinkTypeDescriptor(
        link_type="postgres",
        required_fields=("host", "port", "database", "user", "password"),
        port_fields=("port",),
        factory=_postgres,
    ),
)


def build_default_registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()
    for descriptor in BUILTIN_LINK_TYPES:
        registry.register(descriptor)
    return registry


_registry: Optional[ConnectorRegistry] = None


def get_registry() -> ConnectorRegistry:
    """Process-wide registry with the built-in link types."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def reset_registry() -> None:
    global _registry
    _registry = None
