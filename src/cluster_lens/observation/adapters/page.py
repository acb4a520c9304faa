"""Page hook source adapter.

Converts messages from the fetch / XMLHttpRequest overrides installed in the
page's script context into ExchangeRecords.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cluster_lens.logging import get_logger
from cluster_lens.observation.classifier import decode_payload
from cluster_lens.observation.models import ExchangeRecord, SourceKind

if TYPE_CHECKING:
    from cluster_lens.observation.models import ClusterGraph
    from cluster_lens.observation.pipeline import ObservationPipeline

log = get_logger("cluster_lens.observation.adapters.page")

_KINDS = {
    "fetch": SourceKind.PAGE_FETCH,
    "xhr": SourceKind.PAGE_XHR,
}


def parse_response(message: dict[str, Any]) -> Any:
    """Prefer the raw response text, parsed as JSON, falling back to the text itself."""
    text = message.get("responseText")
    if isinstance(text, str) and text:
        parsed = decode_payload(text)
        return parsed if parsed is not None else text
    return message.get("responseBody")


def coerce_status(value: Any) -> int:
    """HTTP status as an int; unusable values become 0."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_headers(raw: Any) -> dict[str, str]:
    """Normalize response headers.

    Accepts a mapping, a list of ``{"name", "value"}`` pairs, or the CRLF
    separated block returned by ``getAllResponseHeaders()``.
    """
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}

    headers: dict[str, str] = {}
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict) and item.get("name"):
                headers[str(item["name"])] = str(item.get("value", ""))
        return headers

    if isinstance(raw, str):
        for line in raw.split("\r\n"):
            name, sep, value = line.partition(": ")
            if sep and name and value:
                headers[name] = value
    return headers


class PageHookAdapter:
    """Converts fetch / XHR hook messages into ExchangeRecords."""

    def __init__(self, pipeline: ObservationPipeline) -> None:
        self._pipeline = pipeline

    def adapt(self, message: dict[str, Any]) -> ExchangeRecord | None:
        """Convert a hook message, or return None when it names no URL."""
        url = message.get("url")
        if not url or not isinstance(url, str):
            log.debug("page_message_without_url")
            return None

        kind = _KINDS.get(str(message.get("type", "fetch")).lower(), SourceKind.PAGE_FETCH)
        record = ExchangeRecord(
            endpoint_id=url,
            method=str(message.get("method") or "GET").upper(),
            request_payload=message.get("requestBody"),
            response_payload=parse_response(message),
            status_code=coerce_status(message.get("status")),
            headers=parse_headers(message.get("headers")),
            source_kind=kind,
        )
        log.debug("page_exchange_adapted", endpoint_id=url, source=kind.value)
        return record

    async def submit(self, message: dict[str, Any]) -> ClusterGraph | None:
        """Adapt a hook message and run it through the pipeline."""
        record = self.adapt(message)
        if record is None:
            return None
        return await self._pipeline.observe(record)
