"""Web-request hook source adapter.

Browser-level request listeners see request bodies and response headers but
never response bodies. The adapter remembers request bodies by request id
until the headers arrive, then emits a body-less ExchangeRecord that the
pipeline correlates with whatever the page-level sources cached for the
same address.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cluster_lens.logging import get_logger
from cluster_lens.observation.adapters.page import coerce_status, parse_headers
from cluster_lens.observation.classifier import decode_request_body, requested_cluster_ids
from cluster_lens.observation.models import ExchangeRecord, SourceKind

if TYPE_CHECKING:
    from cluster_lens.observation.models import ClusterGraph
    from cluster_lens.observation.pipeline import ObservationPipeline

log = get_logger("cluster_lens.observation.adapters.web_request")


class WebRequestAdapter:
    """Tracks browser request lifecycles for GraphQL addresses."""

    def __init__(self, pipeline: ObservationPipeline) -> None:
        self._pipeline = pipeline
        self._request_bodies: dict[str, Any] = {}  # request id → decoded body

    def pending_request_ids(self) -> set[str]:
        return set(self._request_bodies)

    def _is_tracked(self, details: dict[str, Any]) -> bool:
        url = details.get("url")
        return isinstance(url, str) and self._pipeline.classifier.matches_address(url)

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def before_request(self, details: dict[str, Any]) -> None:
        """Remember the decoded body of a POST to a GraphQL address."""
        if not self._is_tracked(details):
            return
        request_id = details.get("requestId")
        if request_id is None or str(details.get("method", "GET")).upper() != "POST":
            return

        body = decode_request_body(details.get("requestBody"))
        if body is None:
            return
        self._request_bodies[str(request_id)] = body

        cluster_ids = requested_cluster_ids(body)
        if cluster_ids:
            log.info("cluster_details_requested", request_id=request_id, cluster_ids=cluster_ids)

    def headers_received(self, details: dict[str, Any]) -> ExchangeRecord | None:
        """Build a body-less record once response headers are known."""
        if not self._is_tracked(details):
            return None
        request_id = details.get("requestId")
        request_id = None if request_id is None else str(request_id)

        record = ExchangeRecord(
            endpoint_id=details["url"],
            method=str(details.get("method") or "GET").upper(),
            request_payload=self._request_bodies.get(request_id) if request_id else None,
            response_payload=None,
            status_code=coerce_status(details.get("statusCode")),
            headers=parse_headers(details.get("responseHeaders")),
            source_kind=SourceKind.WEB_REQUEST,
            request_id=request_id,
        )
        log.debug("web_request_headers_adapted", endpoint_id=record.endpoint_id)
        return record

    def completed(self, details: dict[str, Any]) -> None:
        """Forget the request body once the browser reports completion."""
        request_id = details.get("requestId")
        if request_id is not None:
            self._request_bodies.pop(str(request_id), None)

    async def on_headers_received(self, details: dict[str, Any]) -> ClusterGraph | None:
        record = self.headers_received(details)
        if record is None:
            return None
        return await self._pipeline.observe(record)
