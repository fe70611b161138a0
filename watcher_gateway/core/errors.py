"""Shared error codes and exception taxonomy.

Startup-phase errors (registry, reachability, introspection, schema
conflicts) are fatal: the gateway refuses to serve. Request-phase errors
(backend execution, backend range/state checks) are isolated to the field
that caused them and surfaced to the caller as GraphQL errors.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(str, Enum):
    REGISTRY_INVALID = "REGISTRY_INVALID"
    BACKEND_UNREACHABLE = "BACKEND_UNREACHABLE"
    INTROSPECTION_FAILED = "INTROSPECTION_FAILED"
    SCHEMA_CONFLICT = "SCHEMA_CONFLICT"
    BACKEND_EXECUTION_FAILED = "BACKEND_EXECUTION_FAILED"
    BACKEND_TIMEOUT = "BACKEND_TIMEOUT"  # Backend did not answer in time
    RANGE_OR_STATE = "RANGE_OR_STATE"  # Block not processed / range outside indexed bounds
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GatewayError(Exception):
    """Base class for all errors raised by the gateway and its backends."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class RegistryError(GatewayError):
    code = ErrorCode.REGISTRY_INVALID


class StartupUnreachableError(GatewayError):
    """One or more backend endpoints refused the reachability probe."""

    code = ErrorCode.BACKEND_UNREACHABLE

    def __init__(self, endpoints: Sequence[str], reasons: Optional[Dict[str, str]] = None):
        self.endpoints: List[str] = list(endpoints)
        self.reasons: Dict[str, str] = dict(reasons or {})
        listed = ", ".join(
            f"{ep} ({self.reasons[ep]})" if ep in self.reasons else ep for ep in self.endpoints
        )
        super().__init__(
            f"Watcher endpoint {listed} is not reachable.",
            details={"endpoints": self.endpoints, "reasons": self.reasons},
        )


class IntrospectionError(GatewayError):
    code = ErrorCode.INTROSPECTION_FAILED

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        super().__init__(
            f"Failed to introspect schema of {endpoint}: {reason}",
            details={"endpoint": endpoint, "reason": reason},
        )


class SchemaConflictError(GatewayError):
    """Two backends contribute the same root field, or an ambiguous type merge."""

    code = ErrorCode.SCHEMA_CONFLICT

    def __init__(self, name: str, endpoints: Sequence[str], reason: str = "duplicate root field"):
        self.name = name
        self.endpoints: List[str] = list(endpoints)
        super().__init__(
            f"Schema conflict on '{name}' ({reason}) between {', '.join(self.endpoints)}",
            details={"name": name, "endpoints": self.endpoints, "reason": reason},
        )


class BackendExecutionError(GatewayError):
    code = ErrorCode.BACKEND_EXECUTION_FAILED

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        timeout: bool = False,
    ):
        self.endpoint = endpoint
        self.errors: List[Dict[str, Any]] = list(errors or [])
        if timeout:
            self.code = ErrorCode.BACKEND_TIMEOUT
        super().__init__(message, details={"endpoint": endpoint, "errors": self.errors})

    @classmethod
    def from_graphql_errors(
        cls, errors: List[Dict[str, Any]], endpoint: Optional[str] = None
    ) -> "BackendExecutionError":
        """Build from a backend's GraphQL ``errors`` list, keeping its messages verbatim."""
        messages = [str(err.get("message", err)) for err in errors] or ["Unknown backend error"]
        return cls("; ".join(messages), endpoint=endpoint, errors=errors)


class RangeOrStateError(GatewayError):
    """Raised by backend resolvers for unprocessed blocks or out-of-range queries."""

    code = ErrorCode.RANGE_OR_STATE


__all__ = [
    "ErrorCode",
    "GatewayError",
    "RegistryError",
    "StartupUnreachableError",
    "IntrospectionError",
    "SchemaConflictError",
    "BackendExecutionError",
    "RangeOrStateError",
]
