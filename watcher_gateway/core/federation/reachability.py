"""Startup reachability gate.

Every registered watcher must accept a TCP connection before the gateway
composes anything. There is no degraded mode and no retry: a single
unreachable endpoint aborts startup.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from watcher_gateway.core.errors import StartupUnreachableError
from watcher_gateway.core.federation.registry import BackendDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Result of one TCP probe."""
    endpoint: str
    reachable: bool
    message: str = ""
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)


class TCPProbe:
    """TCP connection probe for a single backend."""

    def __init__(self, descriptor: BackendDescriptor, timeout: float = 5.0):
        self.descriptor = descriptor
        self.timeout = timeout

    async def check(self) -> ProbeResult:
        host, port = self.descriptor.host, self.descriptor.port
        start = time.time()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.timeout,
            )
            latency = (time.time() - start) * 1000
            writer.close()
            await writer.wait_closed()

            return ProbeResult(
                endpoint=self.descriptor.endpoint,
                reachable=True,
                message="TCP connection successful",
                latency_ms=latency,
                details={"host": host, "port": port},
            )
        except asyncio.TimeoutError:
            return ProbeResult(
                endpoint=self.descriptor.endpoint,
                reachable=False,
                message=f"Connection timeout after {self.timeout}s",
                latency_ms=self.timeout * 1000,
                details={"host": host, "port": port},
            )
        except OSError as e:
            latency = (time.time() - start) * 1000
            return ProbeResult(
                endpoint=self.descriptor.endpoint,
                reachable=False,
                message=str(e) or type(e).__name__,
                latency_ms=latency,
                details={"host": host, "port": port, "error": type(e).__name__},
            )


class ReachabilityGate:
    """Probe all backends concurrently and fail if any is unreachable."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def probe(self, registry: Sequence[BackendDescriptor]) -> List[ProbeResult]:
        probes = [TCPProbe(descriptor, self.timeout) for descriptor in registry]
        return list(await asyncio.gather(*(p.check() for p in probes)))

    async def check(self, registry: Sequence[BackendDescriptor]) -> List[ProbeResult]:
        """Probe every endpoint.

        Returns:
            The probe results, in registry order, when all endpoints are reachable.

        Raises:
            StartupUnreachableError: naming every endpoint that failed its probe.
        """
        results = await self.probe(registry)
        failed = [r for r in results if not r.reachable]
        for result in results:
            if result.reachable:
                logger.info(
                    "Watcher endpoint reachable",
                    extra={"endpoint": result.endpoint, "latency_ms": round(result.latency_ms, 2)},
                )
            else:
                logger.error(
                    "Watcher endpoint unreachable",
                    extra={"endpoint": result.endpoint, "error": result.message},
                )
        if failed:
            raise StartupUnreachableError(
                [r.endpoint for r in failed],
                reasons={r.endpoint: r.message for r in failed},
            )
        return results
