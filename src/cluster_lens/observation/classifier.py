"""Classification of observed exchanges as GraphQL traffic.

The gate is a short-circuiting ladder: cheap address patterns first, then
(only when no pattern matched) a parse of the request body looking for
GraphQL operation markers. Bodies that fail to parse are simply not of
interest.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from typing import Any

from cluster_lens.constants import (
    CLUSTER_DETAILS_OPERATION,
    DEFAULT_ADDRESS_PATTERNS,
    DEFAULT_COLLECTION_FIELDS,
    UNKNOWN_OPERATION,
)
from cluster_lens.logging import get_logger
from cluster_lens.observation.models import GraphqlOperation, Payload

log = get_logger("cluster_lens.observation.classifier")

_OPERATION_KEYWORDS = ("query", "mutation", "subscription")


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------


def decode_payload(raw: Payload) -> Any | None:
    """Parse a str/bytes payload as JSON.

    Already-structured payloads (dicts, lists) are returned unchanged.
    Anything that is not valid JSON yields None.
    """
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def decode_request_body(body: Any) -> Any | None:
    """Decode a browser-level request body description.

    Handles the two forms a web-request hook reports: raw byte chunks
    (``{"raw": [{"bytes": ...}, ...]}``) and form data
    (``{"formData": {field: [values]}}``). Raw bodies that are not JSON are
    returned as text.
    """
    if not isinstance(body, dict):
        return decode_payload(body)

    chunks = body.get("raw")
    if isinstance(chunks, list) and chunks:
        parts: list[bytes] = []
        for chunk in chunks:
            data = chunk.get("bytes") if isinstance(chunk, dict) else None
            if isinstance(data, (bytes, bytearray)):
                parts.append(bytes(data))
            elif isinstance(data, list):
                parts.append(bytes(data))
        text = b"".join(parts).decode("utf-8", errors="replace")
        parsed = decode_payload(text)
        return parsed if parsed is not None else text

    form = body.get("formData")
    if isinstance(form, dict):
        if form.get("query"):
            variables = _first(form.get("variables"))
            return {
                "query": _first(form["query"]),
                "variables": (decode_payload(variables) or {}) if variables else {},
                "operationName": _first(form.get("operationName")),
            }
        return form

    return None


def _first(values: Any) -> Any:
    if isinstance(values, list):
        return values[0] if values else None
    return values


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Classifier:
    """Decides whether an exchange is GraphQL traffic worth extracting from."""

    def __init__(self, address_patterns: Sequence[str] | None = None) -> None:
        patterns = DEFAULT_ADDRESS_PATTERNS if address_patterns is None else address_patterns
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def matches_address(self, endpoint_id: str) -> bool:
        """Check the endpoint against the ordered address patterns."""
        return any(pattern.search(endpoint_id) for pattern in self._patterns)

    def is_of_interest(self, endpoint_id: str, request_payload: Payload) -> bool:
        """Run the classification ladder for one exchange."""
        if endpoint_id and self.matches_address(endpoint_id):
            return True

        body = decode_payload(request_payload)
        if body is None:
            return False

        if has_operation_markers(body):
            log.debug("classified_by_body", endpoint_id=endpoint_id)
            return True
        return False


def has_operation_markers(body: Any) -> bool:
    """Check a parsed request body for GraphQL operation markers."""
    if isinstance(body, list):
        return any(_is_operation(item) for item in body)
    return _is_operation(body)


def _is_operation(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    if item.get("query") or item.get("mutation") or item.get("operationName"):
        return True
    extensions = item.get("extensions")
    return isinstance(extensions, dict) and bool(extensions.get("persistedQuery"))


# ---------------------------------------------------------------------------
# Operation extraction
# ---------------------------------------------------------------------------


def operation_type(query: str | None) -> str:
    """Determine the operation type from the query text."""
    if not query:
        return "unknown"
    stripped = query.strip()
    for keyword in _OPERATION_KEYWORDS:
        if stripped.startswith(keyword):
            return keyword
    # Anonymous shorthand query
    if "{" in stripped:
        return "query"
    return "unknown"


def extract_operations(body: Any) -> list[GraphqlOperation]:
    """Split a parsed request body into its GraphQL operations.

    Batched bodies (lists) yield one operation per element. A single body
    needs a ``query`` or ``operationName`` to count as an operation.
    """
    if isinstance(body, list):
        return [_to_operation(item) for item in body if isinstance(item, dict)]
    if isinstance(body, dict) and (body.get("query") or body.get("operationName")):
        return [_to_operation(body)]
    return []


def _to_operation(item: dict[str, Any]) -> GraphqlOperation:
    query = item.get("query") or ""
    variables = item.get("variables")
    extensions = item.get("extensions")
    return GraphqlOperation(
        operation_name=item.get("operationName") or UNKNOWN_OPERATION,
        query=query if isinstance(query, str) else "",
        variables=variables if isinstance(variables, dict) else {},
        extensions=extensions if isinstance(extensions, dict) else None,
        operation_type=operation_type(query if isinstance(query, str) else None),
    )


def requested_cluster_ids(request_body: Any) -> list[str]:
    """Cluster ids named by ``getPersonClusterDetails`` operations in a request."""
    body = decode_payload(request_body)
    ids: list[str] = []
    for operation in extract_operations(body):
        if operation.operation_name != CLUSTER_DETAILS_OPERATION:
            continue
        cluster_id = operation.variables.get("id")
        if cluster_id is not None and cluster_id != "":
            ids.append(str(cluster_id))
    return ids


def has_cluster_data(payload: Any, collection_fields: Iterable[str] | None = None) -> bool:
    """Quick check for a cluster connection in a response payload."""
    fields = list(DEFAULT_COLLECTION_FIELDS if collection_fields is None else collection_fields)

    def _container_has(item: Any) -> bool:
        data = item.get("data") if isinstance(item, dict) else None
        return isinstance(data, dict) and any(data.get(name) for name in fields)

    if isinstance(payload, list):
        return any(_container_has(item) for item in payload)
    return _container_has(payload)
