"""Static backend registry.

The registry is an ordered list of ``{"endpoint": url, "prefix": name}``
records loaded once at startup. It is never mutated afterwards.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from watcher_gateway.core.errors import RegistryError

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[_A-Za-z][_0-9A-Za-z]*$")


class BackendDescriptor(BaseModel):
    """One watcher service known to the gateway."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    endpoint: str
    prefix: str = Field(alias="namespacePrefix")

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"endpoint must be an absolute http(s) URL, got {value!r}")
        try:
            parsed.port
        except ValueError as exc:
            raise ValueError(f"endpoint has an invalid port, got {value!r}") from exc
        return value

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"prefix must be a GraphQL name, got {value!r}")
        return value

    @property
    def host(self) -> str:
        return urlparse(self.endpoint).hostname or ""

    @property
    def port(self) -> int:
        parsed = urlparse(self.endpoint)
        if parsed.port is not None:
            return parsed.port
        return 443 if parsed.scheme == "https" else 80


BackendRegistry = Tuple[BackendDescriptor, ...]


def build_backend_registry(entries: Iterable[Any]) -> BackendRegistry:
    """Validate raw registry records into an immutable registry.

    Accepts either ``prefix`` or ``namespacePrefix`` as the prefix key.

    Raises:
        RegistryError: on malformed records, duplicates or an empty registry.
    """
    descriptors = []
    for index, entry in enumerate(entries):
        if isinstance(entry, BackendDescriptor):
            descriptors.append(entry)
            continue
        try:
            descriptors.append(BackendDescriptor.model_validate(entry))
        except ValidationError as exc:
            raise RegistryError(
                f"Invalid registry entry #{index}: {exc.errors()[0]['msg']}",
                details={"index": index, "entry": entry},
            ) from exc

    if not descriptors:
        raise RegistryError("Backend registry is empty")

    seen_prefixes: dict[str, str] = {}
    seen_endpoints: set[str] = set()
    for descriptor in descriptors:
        if descriptor.prefix in seen_prefixes:
            raise RegistryError(
                f"Duplicate prefix '{descriptor.prefix}' for {descriptor.endpoint} "
                f"and {seen_prefixes[descriptor.prefix]}",
                details={"prefix": descriptor.prefix},
            )
        if descriptor.endpoint in seen_endpoints:
            raise RegistryError(
                f"Duplicate endpoint {descriptor.endpoint}",
                details={"endpoint": descriptor.endpoint},
            )
        seen_prefixes[descriptor.prefix] = descriptor.endpoint
        seen_endpoints.add(descriptor.endpoint)

    return tuple(descriptors)


def load_backend_registry(path: Union[str, Path]) -> BackendRegistry:
    """Load the registry file (a JSON array) from ``path``."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RegistryError(f"Cannot read registry file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise RegistryError(f"Registry file {path} is not valid JSON: {exc}") from exc

    if not isinstance(raw, list):
        raise RegistryError(f"Registry file {path} must contain a JSON array")

    registry = build_backend_registry(raw)
    logger.info(
        "Backend registry loaded",
        extra={"endpoint": [d.endpoint for d in registry], "prefix": [d.prefix for d in registry]},
    )
    return registry
