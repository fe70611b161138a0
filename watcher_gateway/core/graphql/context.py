"""Per-request operation context passed to resolvers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

API_KEY_HEADER = "x-api-key"


@dataclass
class OperationContext:
    """What a resolver knows about the inbound request.

    Created per request (or per subscription) and discarded once the
    response, or the subscription stream, is finished.
    """
    query: str
    variables: Dict[str, Any] = field(default_factory=dict)
    operation_name: Optional[str] = None
    url_path: Optional[str] = None
    api_key: Optional[str] = None
    origin: Optional[str] = None

    @classmethod
    def from_request(
        cls,
        *,
        query: str,
        variables: Optional[Mapping[str, Any]],
        operation_name: Optional[str],
        url_path: Optional[str],
        headers: Mapping[str, str],
    ) -> "OperationContext":
        return cls(
            query=query,
            variables=dict(variables or {}),
            operation_name=operation_name,
            url_path=url_path,
            api_key=headers.get(API_KEY_HEADER),
            origin=headers.get("origin"),
        )

    def log_fields(self) -> Dict[str, Any]:
        """Caller metadata in the shape used by the audit log."""
        return {
            "query": self.query,
            "variables": self.variables,
            "url_path": self.url_path,
            "api_key": self.api_key,
            "origin": self.origin,
        }
