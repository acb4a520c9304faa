"""Injected interceptor source adapter.

The injected script posts window messages tagged with a fixed source name;
anything else arriving on the same channel is ignored.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cluster_lens.constants import INJECTED_MESSAGE_SOURCE
from cluster_lens.logging import get_logger
from cluster_lens.observation.adapters.page import coerce_status, parse_response
from cluster_lens.observation.models import ExchangeRecord, SourceKind

if TYPE_CHECKING:
    from cluster_lens.observation.models import ClusterGraph
    from cluster_lens.observation.pipeline import ObservationPipeline

log = get_logger("cluster_lens.observation.adapters.injected")

_KINDS = {
    "fetch-response": SourceKind.INJECTED_FETCH,
    "xhr-response": SourceKind.INJECTED_XHR,
}


class InjectedScriptAdapter:
    """Converts injected interceptor messages into ExchangeRecords."""

    def __init__(self, pipeline: ObservationPipeline) -> None:
        self._pipeline = pipeline

    def should_process(self, message: Any) -> bool:
        """Only messages from our interceptor that name a URL are processed."""
        if not isinstance(message, dict):
            return False
        if message.get("source") != INJECTED_MESSAGE_SOURCE:
            return False
        return bool(message.get("url"))

    def adapt(self, message: Any) -> ExchangeRecord | None:
        if not self.should_process(message):
            return None

        kind = _KINDS.get(str(message.get("type")), SourceKind.INJECTED_FETCH)
        record = ExchangeRecord(
            endpoint_id=str(message["url"]),
            method=str(message.get("method") or "GET").upper(),
            request_payload=message.get("requestBody"),
            response_payload=parse_response(message),
            status_code=coerce_status(message.get("status")),
            source_kind=kind,
        )
        log.debug("injected_exchange_adapted", endpoint_id=record.endpoint_id, source=kind.value)
        return record

    async def submit(self, message: Any) -> ClusterGraph | None:
        record = self.adapt(message)
        if record is None:
            return None
        return await self._pipeline.observe(record)
