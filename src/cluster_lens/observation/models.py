"""Data models for the observation pipeline.

Exchange records are what the instrumentation adapters produce; cluster
graphs are what the extractor publishes. All models are dataclasses with
to_dict/from_dict for the wire shapes they cross.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cluster_lens.constants import UNKNOWN_OPERATION

# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class InvalidRecordError(ValueError):
    """Raised when a raw observation cannot be turned into an ExchangeRecord."""


# ------------------------------------------------------------------
# Exchange records
# ------------------------------------------------------------------


class SourceKind(Enum):
    """Which instrumentation source produced an observation."""

    PAGE_FETCH = "page_fetch"
    PAGE_XHR = "page_xhr"
    INJECTED_FETCH = "injected_fetch"
    INJECTED_XHR = "injected_xhr"
    WEB_REQUEST = "web_request"
    REPLAY = "replay"


# json | bytes | raw text | nothing
Payload = Any


@dataclass(frozen=True)
class ExchangeRecord:
    """One observation of a request/response exchange.

    Records are replaced wholesale in the correlation cache, never
    mutated, so the dataclass is frozen.
    """

    endpoint_id: str
    method: str = "GET"
    request_payload: Payload = None
    response_payload: Payload = None
    status_code: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=datetime.now)
    source_kind: SourceKind = SourceKind.REPLAY
    request_id: str | None = None

    @property
    def has_response(self) -> bool:
        payload = self.response_payload
        if isinstance(payload, (str, bytes, bytearray)):
            return len(payload) > 0
        return payload is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpointId": self.endpoint_id,
            "method": self.method,
            "requestPayload": _jsonable(self.request_payload),
            "responsePayload": _jsonable(self.response_payload),
            "statusCode": self.status_code,
            "headers": dict(self.headers),
            "observedAt": self.observed_at.isoformat(),
            "sourceKind": self.source_kind.value,
            "requestId": self.request_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeRecord:
        """Build a record from the collaborator wire shape.

        ``url`` is accepted in place of ``endpointId``. Unknown source kinds
        fall back to ``replay``.
        """
        endpoint_id = data.get("endpointId") or data.get("url")
        if not endpoint_id or not isinstance(endpoint_id, str):
            raise InvalidRecordError("exchange record has no endpointId")

        raw_kind = data.get("sourceKind", SourceKind.REPLAY.value)
        try:
            source_kind = SourceKind(raw_kind)
        except ValueError:
            source_kind = SourceKind.REPLAY

        observed_at = datetime.now()
        raw_observed = data.get("observedAt") or data.get("timestamp")
        if isinstance(raw_observed, str):
            try:
                observed_at = datetime.fromisoformat(raw_observed.replace("Z", "+00:00"))
            except ValueError:
                pass

        try:
            status_code = int(data.get("statusCode", data.get("status", 0)) or 0)
        except (TypeError, ValueError):
            status_code = 0

        headers = data.get("headers") or {}
        return cls(
            endpoint_id=endpoint_id,
            method=str(data.get("method") or "GET").upper(),
            request_payload=data.get("requestPayload", data.get("requestBody")),
            response_payload=data.get("responsePayload", data.get("responseBody")),
            status_code=status_code,
            headers={str(k): str(v) for k, v in headers.items()}
            if isinstance(headers, dict)
            else {},
            observed_at=observed_at,
            source_kind=source_kind,
            request_id=data.get("requestId"),
        )


def _jsonable(payload: Payload) -> Any:
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload


# ------------------------------------------------------------------
# Request log
# ------------------------------------------------------------------


@dataclass(frozen=True)
class GraphqlOperation:
    """A single operation from a (possibly batched) GraphQL request body."""

    operation_name: str = UNKNOWN_OPERATION
    query: str = ""
    variables: dict[str, Any] = field(default_factory=dict)
    extensions: dict[str, Any] | None = None
    operation_type: str = "unknown"


@dataclass
class CapturedRequest:
    """Request-log entry for one operation of a classified exchange."""

    endpoint_id: str
    method: str
    operation: GraphqlOperation
    response: Payload = None
    status_code: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "url": self.endpoint_id,
            "method": self.method,
            "operationName": self.operation.operation_name,
            "operationType": self.operation.operation_type,
            "query": self.operation.query,
            "variables": self.operation.variables,
            "extensions": self.operation.extensions,
            "response": _jsonable(self.response),
            "responseStatus": self.status_code,
            "headers": self.headers,
        }


# ------------------------------------------------------------------
# Canonical cluster graph
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ClusterNode:
    """A person in a de-duplication cluster."""

    person_id: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"person_id": self.person_id, "name": self.name}


@dataclass(frozen=True)
class ClusterEdge:
    """A scored candidate-duplicate link between two cluster members."""

    lower_id: str
    higher_id: str
    status: str | None
    sub_status: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lower_person_id": self.lower_id,
            "higher_person_id": self.higher_id,
            "status": self.status,
            "sub_status_type": self.sub_status,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ClusterGraph:
    """Canonical node/edge view of one cluster.

    Nodes are unique by person id and kept in first-seen order. Every
    edge endpoint is guaranteed to be one of the nodes.
    """

    id: str
    nodes: tuple[ClusterNode, ...] = ()
    edges: tuple[ClusterEdge, ...] = ()

    @property
    def person_ids(self) -> frozenset[str]:
        return frozenset(node.person_id for node in self.nodes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }
