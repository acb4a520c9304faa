"""Notification sinks for published cluster graphs.

Delivery is fire-and-forget and at-least-once: several instrumentation
sources may report the same exchange, so the same graph can be pushed more
than once. Sinks are responsible for tolerating repeated pushes of an equal
graph.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from cluster_lens.constants import SINK_TIMEOUT_SECONDS
from cluster_lens.logging import get_logger
from cluster_lens.observation.models import ClusterGraph

log = get_logger("cluster_lens.sinks")


class GraphSink(Protocol):
    """Receives finished graphs for rendering."""

    async def push_graph(self, graph: ClusterGraph) -> None: ...


class LatestGraphSink:
    """Keeps the most recently published graph in memory.

    Repeated pushes of an equal graph leave the state untouched.
    """

    def __init__(self) -> None:
        self._latest: ClusterGraph | None = None
        self._publish_count = 0

    @property
    def latest(self) -> ClusterGraph | None:
        return self._latest

    @property
    def publish_count(self) -> int:
        """Number of distinct consecutive graphs received."""
        return self._publish_count

    async def push_graph(self, graph: ClusterGraph) -> None:
        if graph == self._latest:
            log.debug("graph_push_duplicate", cluster_id=graph.id)
            return
        self._latest = graph
        self._publish_count += 1

    def clear(self) -> None:
        self._latest = None


class CallbackGraphSink:
    """Forwards each push to a sync or async callable."""

    def __init__(
        self, callback: Callable[[ClusterGraph], None] | Callable[[ClusterGraph], Awaitable[None]]
    ) -> None:
        self._callback = callback

    async def push_graph(self, graph: ClusterGraph) -> None:
        result = self._callback(graph)
        if inspect.isawaitable(result):
            await result


class WebhookGraphSink:
    """POSTs published graphs to the rendering collaborator.

    A push equal to the last successfully delivered graph is skipped.
    """

    def __init__(self, url: str, *, timeout: float = SINK_TIMEOUT_SECONDS) -> None:
        self._url = url
        self._timeout = timeout
        self._last_delivered: ClusterGraph | None = None

    async def push_graph(self, graph: ClusterGraph) -> None:
        if graph == self._last_delivered:
            log.debug("webhook_push_skipped_duplicate", cluster_id=graph.id)
            return
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._url,
                    json={"action": "newClusterData", "data": graph.to_dict()},
                    headers={"Content-Type": "application/json"},
                )
            if resp.is_success:
                self._last_delivered = graph
                log.info("webhook_graph_delivered", cluster_id=graph.id)
                return
            log.warning(
                "webhook_graph_rejected",
                cluster_id=graph.id,
                status=resp.status_code,
                body=resp.text[:200],
            )
        except httpx.RequestError as exc:
            log.warning("webhook_send_failed", cluster_id=graph.id, error=str(exc))
