"""
Error Catalog Module

Structured failure catalog with error codes and metadata for the sync
dispatch pipeline.

Features:
- Canonical error codes (PCL-XXXX format)
- Error categories (validation, source, storage, dispatch)
- HTTP status code mapping
- Exception hierarchy used at every pipeline stage boundary

Usage:
    from portcullis.core.errors import SourceConnectionError

    raise SourceConnectionError(message="connection refused", details={"host": host})
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    VALIDATION = "validation"    # Caller input malformed
    SOURCE = "source"            # Source warehouse unreachable / query rejected
    STORAGE = "storage"          # Job store failures
    EXTERNAL = "external"        # Provisioning trigger failures
    SYSTEM = "system"            # Anything else


@dataclass(frozen=True)
class ErrorDefinition:
    """Definition of an error in the catalog."""
    code: str
    message: str
    category: ErrorCategory
    http_status: int


# =============================================================================
# Error Catalog
# =============================================================================

ERROR_CATALOG: Dict[str, ErrorDefinition] = {
    # 1000-1999: Validation
    "PCL-1001": ErrorDefinition(
        code="PCL-1001",
        message="Validation failed",
        category=ErrorCategory.VALIDATION,
        http_status=400,
    ),
    "PCL-1101": ErrorDefinition(
        code="PCL-1101",
        message="Invalid credentials for link type {link_type}",
        category=ErrorCategory.VALIDATION,
        http_status=500,
    ),
    # 2000-2999: Source warehouse
    "PCL-2001": ErrorDefinition(
        code="PCL-2001",
        message="Could not connect to source warehouse",
        category=ErrorCategory.SOURCE,
        http_status=500,
    ),
    "PCL-2002": ErrorDefinition(
        code="PCL-2002",
        message="Source warehouse rejected query",
        category=ErrorCategory.SOURCE,
        http_status=500,
    ),
    "PCL-2003": ErrorDefinition(
        code="PCL-2003",
        message="Sync deadline exceeded during {stage}",
        category=ErrorCategory.SOURCE,
        http_status=500,
    ),
    # 3000-3999: Job store
    "PCL-3001": ErrorDefinition(
        code="PCL-3001",
        message="Database error",
        category=ErrorCategory.STORAGE,
        http_status=500,
    ),
    "PCL-3002": ErrorDefinition(
        code="PCL-3002",
        message="Sync {sync_id} not found",
        category=ErrorCategory.STORAGE,
        http_status=404,
    ),
    "PCL-3003": ErrorDefinition(
        code="PCL-3003",
        message="Cannot move sync from {current} to {requested}",
        category=ErrorCategory.STORAGE,
        http_status=409,
    ),
    # 4000-4999: Provisioning dispatch
    "PCL-4001": ErrorDefinition(
        code="PCL-4001",
        message="Dispatch error",
        category=ErrorCategory.EXTERNAL,
        http_status=422,
    ),
    # 9000-9999: System
    "PCL-9001": ErrorDefinition(
        code="PCL-9001",
        message="Internal error",
        category=ErrorCategory.SYSTEM,
        http_status=500,
    ),
}


# =============================================================================
# Exception Classes
# =============================================================================

class PortcullisError(Exception):
    """Base exception carrying a catalog code."""

    default_code = "PCL-9001"

    def __init__(
        self,
        code: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **format_args: Any,
    ):
        self.code = code or self.default_code
        self.details = details or {}
        self.definition = ERROR_CATALOG.get(self.code)

        if self.definition:
            if message:
                self.message = message
            else:
                try:
                    self.message = self.definition.message.format(**format_args)
                except KeyError:
                    self.message = self.definition.message
            self.http_status = self.definition.http_status
            self.category = self.definition.category
        else:
            self.message = message or f"Unknown error: {self.code}"
            self.http_status = 500
            self.category = ErrorCategory.SYSTEM

        super().__init__(self.message)


class ValidationError(PortcullisError):
    """Caller input malformed; carries every violated field."""

    default_code = "PCL-1001"

    def __init__(self, issues: List[Dict[str, Any]], message: Optional[str] = None):
        super().__init__(message=message, details={"issues": issues})
        self.issues = issues


class ExtractionError(PortcullisError):
    """Base for failures before a job record exists (introspection / snapshot)."""


class CredentialShapeError(ExtractionError):
    """Source credentials missing or malformed for the declared link type."""

    default_code = "PCL-1101"

    def __init__(
        self,
        link_type: str,
        missing: Optional[List[str]] = None,
        message: Optional[str] = None,
        invalid: Optional[Dict[str, str]] = None,
    ):
        missing = missing or []
        invalid = invalid or {}
        if message is None and (missing or invalid):
            problems = []
            if missing:
                problems.append(f"missing {', '.join(missing)}")
            problems.extend(f"{name} {reason}" for name, reason in invalid.items())
            message = f"Invalid credentials for link type {link_type}: {'; '.join(problems)}"
        super().__init__(
            message=message,
            details={"link_type": link_type, "missing": missing, "invalid": invalid},
            link_type=link_type,
        )
        self.link_type = link_type
        self.missing = missing
        self.invalid = invalid


class SourceConnectionError(ExtractionError):
    """Source system unreachable or authentication refused."""

    default_code = "PCL-2001"


class SourceQueryError(ExtractionError):
    """Source system accepted the connection but rejected a query."""

    default_code = "PCL-2002"


class DeadlineExceededError(ExtractionError):
    """A stage ran past the request deadline."""

    default_code = "PCL-2003"

    def __init__(self, stage: str):
        super().__init__(details={"stage": stage}, stage=stage)
        self.stage = stage


class PersistenceError(PortcullisError):
    """Job-store write or read failed."""

    default_code = "PCL-3001"


class SyncNotFoundError(PortcullisError):
    default_code = "PCL-3002"

    def __init__(self, sync_id: str):
        super().__init__(details={"sync_id": sync_id}, sync_id=sync_id)
        self.sync_id = sync_id


class StatusTransitionError(PortcullisError):
    """Requested status would move a sync backwards."""

    default_code = "PCL-3003"

    def __init__(self, current: str, requested: str):
        super().__init__(
            details={"current": current, "requested": requested},
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class DispatchError(PortcullisError):
    """External provisioning trigger rejected or unreachable."""

    default_code = "PCL-4001"

    def __init__(self, message: str, attempts: int = 1, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            details={"attempts": attempts, "status_code": status_code},
        )
        self.attempts = attempts
        self.status_code = status_code

