"""Main observation pipeline orchestrator.

Coordinates the full observation flow:
1. Receive an ExchangeRecord from any instrumentation adapter
2. Correlate body-less observations with the cache, or cache the record
3. Classify the exchange as GraphQL traffic
4. Log its operations and extract the cluster graph
5. Publish the graph to the sink
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from cluster_lens.constants import HISTORY_LIMIT, MAX_REQUESTS, SWEEP_INTERVAL_SECONDS
from cluster_lens.logging import get_logger, observation_context
from cluster_lens.observation.cache import CorrelationCache
from cluster_lens.observation.classifier import Classifier, decode_payload, extract_operations
from cluster_lens.observation.extractors import ClusterExtractor
from cluster_lens.observation.models import (
    CapturedRequest,
    ClusterGraph,
    ExchangeRecord,
    GraphqlOperation,
)

if TYPE_CHECKING:
    from cluster_lens.config import Settings
    from cluster_lens.sinks import GraphSink

log = get_logger("cluster_lens.observation.pipeline")


class ObservationPipeline:
    """Owns the correlation cache and runs every observation through it.

    Adapters hold a reference to the pipeline rather than to any shared
    global state, so all three sources see the same cache and history.
    """

    def __init__(
        self,
        *,
        cache: CorrelationCache | None = None,
        classifier: Classifier | None = None,
        extractor: ClusterExtractor | None = None,
        sink: GraphSink | None = None,
        max_requests: int = MAX_REQUESTS,
        history_limit: int = HISTORY_LIMIT,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        # An empty cache is falsy, so test for None explicitly
        self._cache = cache if cache is not None else CorrelationCache()
        self._classifier = classifier or Classifier()
        self._extractor = extractor or ClusterExtractor()
        self._sink = sink
        self._sweep_interval = sweep_interval
        self._requests: deque[CapturedRequest] = deque(maxlen=max_requests)
        self._history: deque[Any] = deque(maxlen=history_limit)
        self._last_graph: ClusterGraph | None = None
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, sink: GraphSink | None = None) -> ObservationPipeline:
        """Build a pipeline configured from application settings."""
        return cls(
            cache=CorrelationCache(max_age=settings.cache_max_age_seconds),
            classifier=Classifier(settings.address_patterns),
            extractor=ClusterExtractor(collection_fields=settings.collection_fields),
            sink=sink,
            max_requests=settings.max_requests,
            history_limit=settings.history_limit,
            sweep_interval=settings.sweep_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def cache(self) -> CorrelationCache:
        return self._cache

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    @property
    def last_graph(self) -> ClusterGraph | None:
        return self._last_graph

    def requests(self) -> list[CapturedRequest]:
        """Return the request log, newest first."""
        return list(self._requests)

    def history(self) -> list[Any]:
        """Return the observed response payloads, oldest first."""
        return list(self._history)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def observe(self, record: ExchangeRecord) -> ClusterGraph | None:
        """Process one observation through the full pipeline.

        Returns:
            The graph published for this observation, or None.
        """
        with observation_context(record.endpoint_id, record.source_kind.value):
            return await self._observe(record)

    async def _observe(self, record: ExchangeRecord) -> ClusterGraph | None:
        log.debug("pipeline_observe_start", has_response=record.has_response)

        if record.has_response:
            self._cache.put(record.endpoint_id, record)
        else:
            correlated = self._correlate(record)
            if correlated is None:
                return None
            record = correlated

        if not self._classifier.is_of_interest(record.endpoint_id, record.request_payload):
            log.debug("exchange_not_of_interest", endpoint_id=record.endpoint_id)
            return None

        # Only classified traffic enters the bounded history
        response = decode_payload(record.response_payload)
        if response is not None:
            self._history.append(response)

        self._log_requests(record, response)

        if response is None:
            return None

        graph = self._extractor.extract(response, history=self._history)
        if graph is None:
            return None

        self._last_graph = graph
        log.info(
            "cluster_graph_found",
            cluster_id=graph.id,
            endpoint_id=record.endpoint_id,
            nodes=len(graph.nodes),
            edges=len(graph.edges),
        )
        await self._publish(graph)
        return graph

    def _correlate(self, record: ExchangeRecord) -> ExchangeRecord | None:
        """Pair a body-less observation with the cached response for its address.

        On a miss the body-less record is cached as a placeholder and its
        request id remembered, and None is returned.
        """
        cached = self._cache.lookup(record.endpoint_id)
        if cached is None or not cached.has_response:
            self._cache.put(record.endpoint_id, record)
            if record.request_id:
                self._cache.remember_request_id(record.endpoint_id, record.request_id)
            log.debug("response_not_captured", endpoint_id=record.endpoint_id)
            return None

        request_body = decode_payload(record.request_payload)
        envelope = {
            "action": "captureResponseBody",
            "requestId": record.request_id,
            "url": record.endpoint_id,
            "method": record.method,
            "requestBody": request_body if request_body is not None else record.request_payload,
            "data": {"responseBody": cached.response_payload},
            "status": cached.status_code,
            "headers": dict(record.headers or cached.headers),
        }
        log.debug(
            "response_correlated",
            endpoint_id=record.endpoint_id,
            cached_endpoint_id=cached.endpoint_id,
        )
        return replace(record, response_payload=envelope, status_code=cached.status_code)

    def _log_requests(self, record: ExchangeRecord, response: Any) -> None:
        operations = extract_operations(decode_payload(record.request_payload))
        if not operations:
            operations = [GraphqlOperation()]
        for operation in operations:
            self._requests.appendleft(
                CapturedRequest(
                    endpoint_id=record.endpoint_id,
                    method=record.method,
                    operation=operation,
                    response=response if response is not None else record.response_payload,
                    status_code=record.status_code,
                    headers=dict(record.headers),
                    timestamp=record.observed_at,
                )
            )
        log.debug(
            "requests_logged",
            endpoint_id=record.endpoint_id,
            operations=[op.operation_name for op in operations],
        )

    async def _publish(self, graph: ClusterGraph) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.push_graph(graph)
        except Exception as exc:
            log.warning("graph_push_failed", cluster_id=graph.id, error=str(exc))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_graph(self, cluster_id: str) -> ClusterGraph | None:
        """Find a previously observed graph for a specific cluster id.

        Searches the request log, then the payload history, newest first.
        Payloads are never rewritten to force a match.
        """
        cluster_id = str(cluster_id)
        if self._last_graph is not None and self._last_graph.id == cluster_id:
            return self._last_graph

        for captured in self._requests:
            graph = self._extractor.extract(captured.response, cluster_id, history=self._history)
            if graph is not None:
                return graph

        for payload in reversed(self._history):
            graph = self._extractor.extract(payload, cluster_id, history=self._history)
            if graph is not None:
                return graph

        log.debug("cluster_not_found", cluster_id=cluster_id)
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic cache sweep on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._cache.run_sweeper(self._sweep_interval)
        )

    async def stop(self) -> None:
        """Cancel the periodic cache sweep."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    @property
    def is_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def clear(self) -> None:
        """Drop all captured requests, history, cached exchanges and the last graph."""
        self._requests.clear()
        self._history.clear()
        self._cache.clear()
        self._last_graph = None
        log.info("pipeline_cleared")
