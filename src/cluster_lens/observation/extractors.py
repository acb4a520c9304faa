"""Cluster graph extraction from heterogeneous GraphQL responses.

Responses reach us in several envelopes: batched arrays, single objects,
capture envelopes that wrap a response body (sometimes as a string), and
person lookups that embed the cluster directly. Each envelope is handled by
one shape matcher. Matchers are tried in a fixed order and yield raw-cluster
candidates lazily; the first candidate that passes the identity filter and
shape validation is normalized into a ClusterGraph.

Nothing is ever synthesized: a payload with no acceptable candidate yields
None, and edges that reference unknown members are dropped.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from cluster_lens.constants import DEFAULT_COLLECTION_FIELDS, NO_NAME
from cluster_lens.logging import get_logger
from cluster_lens.observation.classifier import decode_payload, requested_cluster_ids
from cluster_lens.observation.models import ClusterEdge, ClusterGraph, ClusterNode

log = get_logger("cluster_lens.observation.extractors")

RawCluster = dict[str, Any]


@dataclass(frozen=True)
class ExtractionContext:
    """Per-call inputs shared by all shape matchers."""

    expected_id: str | None = None
    collection_fields: tuple[str, ...] = tuple(DEFAULT_COLLECTION_FIELDS)
    history: Sequence[Any] = ()


# ---------------------------------------------------------------------------
# Shape matchers
# ---------------------------------------------------------------------------


class ShapeMatcher(Protocol):
    """Recognizes one response envelope and yields raw-cluster candidates."""

    name: str

    def candidates(self, payload: Any, context: ExtractionContext) -> Iterator[RawCluster]: ...


def _connection_candidate(item: Any, fields: Iterable[str]) -> RawCluster | None:
    """First cluster node of the first known collection under ``item.data``."""
    if not isinstance(item, dict):
        return None
    data = item.get("data")
    if not isinstance(data, dict):
        return None
    for name in fields:
        connection = data.get(name)
        if not connection:
            continue
        edges = connection.get("edges") if isinstance(connection, dict) else None
        if not isinstance(edges, list) or not edges:
            return None
        first = edges[0]
        node = first.get("node") if isinstance(first, dict) else None
        return node if isinstance(node, dict) else None
    return None


class BatchedResponseShape:
    """``[{"data": {<collection>: {"edges": [{"node": cluster}]}}}, ...]``."""

    name = "batched_response"

    def candidates(self, payload: Any, context: ExtractionContext) -> Iterator[RawCluster]:
        if not isinstance(payload, list) or not payload:
            return
        for item in payload:
            candidate = _connection_candidate(item, context.collection_fields)
            if candidate is not None:
                yield candidate


class SingleResponseShape:
    """``{"data": {<collection>: {"edges": [{"node": cluster}]}}}``."""

    name = "single_response"

    def candidates(self, payload: Any, context: ExtractionContext) -> Iterator[RawCluster]:
        candidate = _connection_candidate(payload, context.collection_fields)
        if candidate is not None:
            yield candidate


class PersonClusterShape:
    """``{"data": {"person": {"deduplicationCluster": cluster}}}``."""

    name = "person_cluster"

    def candidates(self, payload: Any, context: ExtractionContext) -> Iterator[RawCluster]:
        if not isinstance(payload, dict):
            return
        data = payload.get("data")
        person = data.get("person") if isinstance(data, dict) else None
        cluster = person.get("deduplicationCluster") if isinstance(person, dict) else None
        if isinstance(cluster, dict):
            yield cluster


_DIRECT_SHAPES: tuple[ShapeMatcher, ...] = (
    BatchedResponseShape(),
    SingleResponseShape(),
    PersonClusterShape(),
)


def _direct_candidates(payload: Any, context: ExtractionContext) -> Iterator[RawCluster]:
    for shape in _DIRECT_SHAPES:
        yield from shape.candidates(payload, context)


def envelope_body(payload: Any) -> tuple[bool, Any]:
    """Return ``(is_envelope, body)`` for a capture envelope.

    The body lives in ``responseBody`` at the top level or under ``data``
    and may be a JSON string; strings that fail to parse come back as None.
    """
    if not isinstance(payload, dict):
        return False, None
    if "responseBody" in payload:
        raw = payload["responseBody"]
    else:
        data = payload.get("data")
        if isinstance(data, dict) and "responseBody" in data:
            raw = data["responseBody"]
        elif payload.get("action") == "captureResponseBody":
            return True, None
        else:
            return False, None
    return True, decode_payload(raw)


class CaptureEnvelopeShape:
    """A capture envelope wrapping a response body plus its request description.

    The unwrapped body is matched against the direct shapes. If that fails,
    the payload history is scanned for a cluster whose id equals one named by
    the envelope's ``getPersonClusterDetails`` operations.
    """

    name = "capture_envelope"

    def candidates(self, payload: Any, context: ExtractionContext) -> Iterator[RawCluster]:
        is_envelope, body = envelope_body(payload)
        if not is_envelope:
            return

        requested = requested_cluster_ids(payload.get("requestBody"))
        if context.expected_id is not None and requested and context.expected_id not in requested:
            log.debug(
                "envelope_not_for_expected_cluster",
                expected_id=context.expected_id,
                requested=requested,
            )
            return

        if body is not None:
            yield from _direct_candidates(body, context)

        for cluster_id in requested:
            if context.expected_id is not None and cluster_id != context.expected_id:
                continue
            yield from self._from_history(cluster_id, context)

    def _from_history(self, cluster_id: str, context: ExtractionContext) -> Iterator[RawCluster]:
        # Newest observations first
        for past in reversed(context.history):
            is_envelope, body = envelope_body(past)
            source = body if is_envelope else past
            if source is None:
                continue
            for candidate in _direct_candidates(source, context):
                if _cluster_id(candidate) == cluster_id:
                    log.debug("envelope_resolved_from_history", cluster_id=cluster_id)
                    yield candidate


DEFAULT_SHAPES: tuple[ShapeMatcher, ...] = (
    BatchedResponseShape(),
    CaptureEnvelopeShape(),
    SingleResponseShape(),
    PersonClusterShape(),
)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _cluster_id(candidate: RawCluster) -> str | None:
    raw = candidate.get("id")
    if raw is None or raw == "":
        return None
    return str(raw)


def _node_id(ref: Any) -> str | None:
    if not isinstance(ref, dict):
        return None
    raw = ref.get("id")
    if raw is None or raw == "":
        return None
    return str(raw)


def format_score(value: Any) -> str:
    """Render one score the way the review UI shows it (``1`` not ``1.0``)."""
    if value is None:
        return "n/a"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_scores(vector: dict[str, Any]) -> str:
    return (
        f"Scores: Name={format_score(vector.get('nameScore'))}, "
        f"Email={format_score(vector.get('emailScore'))}, "
        f"Phone={format_score(vector.get('phoneScore'))}"
    )


def normalize_cluster(raw: RawCluster) -> ClusterGraph | None:
    """Convert a validated raw cluster into the canonical graph.

    Returns None when the cluster has no id or lacks an edges or members
    list.
    """
    cluster_id = _cluster_id(raw)
    raw_edges = raw.get("edges")
    raw_members = raw.get("members")
    if cluster_id is None or not isinstance(raw_edges, list) or not isinstance(raw_members, list):
        return None

    nodes: dict[str, ClusterNode] = {}
    for member in raw_members:
        node = member.get("node") if isinstance(member, dict) else None
        person_id = _node_id(node)
        if person_id is None or person_id in nodes:
            continue
        nodes[person_id] = ClusterNode(person_id=person_id, name=node.get("name") or NO_NAME)

    edges: list[ClusterEdge] = []
    dropped = 0
    for edge in raw_edges:
        if not isinstance(edge, dict):
            dropped += 1
            continue
        lower_id = _node_id(edge.get("nodeA"))
        higher_id = _node_id(edge.get("nodeB"))
        if lower_id not in nodes or higher_id not in nodes:
            dropped += 1
            continue

        sub_statuses = edge.get("subStatuses")
        vector = edge.get("vector")
        edges.append(
            ClusterEdge(
                lower_id=lower_id,
                higher_id=higher_id,
                status=edge.get("status"),
                sub_status=sub_statuses[0]
                if isinstance(sub_statuses, list) and sub_statuses
                else None,
                notes=format_scores(vector) if isinstance(vector, dict) else None,
            )
        )

    if dropped:
        log.debug("cluster_edges_dropped", cluster_id=cluster_id, dropped=dropped)

    return ClusterGraph(id=cluster_id, nodes=tuple(nodes.values()), edges=tuple(edges))


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ClusterExtractor:
    """Runs the ordered shape search over a response payload."""

    def __init__(
        self,
        *,
        collection_fields: Sequence[str] | None = None,
        shapes: Sequence[ShapeMatcher] | None = None,
    ) -> None:
        self._collection_fields = tuple(
            DEFAULT_COLLECTION_FIELDS if collection_fields is None else collection_fields
        )
        self._shapes = tuple(DEFAULT_SHAPES if shapes is None else shapes)

    @property
    def shape_names(self) -> list[str]:
        return [shape.name for shape in self._shapes]

    def extract(
        self,
        payload: Any,
        expected_id: str | None = None,
        *,
        history: Sequence[Any] = (),
    ) -> ClusterGraph | None:
        """Extract the cluster graph from a response payload.

        Args:
            payload: Parsed JSON, or a str/bytes body that is parsed first.
            expected_id: When set, only a cluster with this id is accepted.
            history: Previously observed payloads, oldest first, used to
                resolve capture envelopes that carry only a request.

        Returns:
            The canonical graph, or None when no acceptable cluster exists.
        """
        parsed = decode_payload(payload)
        if parsed is None:
            return None

        context = ExtractionContext(
            expected_id=None if expected_id is None else str(expected_id),
            collection_fields=self._collection_fields,
            history=history,
        )

        for shape in self._shapes:
            for candidate in shape.candidates(parsed, context):
                graph = self._accept(candidate, context, shape.name)
                if graph is not None:
                    log.debug(
                        "cluster_extracted",
                        shape=shape.name,
                        cluster_id=graph.id,
                        nodes=len(graph.nodes),
                        edges=len(graph.edges),
                    )
                    return graph

        log.debug("cluster_shape_mismatch", expected_id=context.expected_id)
        return None

    def _accept(
        self, candidate: RawCluster, context: ExtractionContext, shape: str
    ) -> ClusterGraph | None:
        candidate_id = _cluster_id(candidate)
        if context.expected_id is not None and candidate_id != context.expected_id:
            log.debug(
                "cluster_identity_mismatch",
                shape=shape,
                candidate_id=candidate_id,
                expected_id=context.expected_id,
            )
            return None

        graph = normalize_cluster(candidate)
        if graph is None:
            log.debug("cluster_candidate_rejected", shape=shape, candidate_id=candidate_id)
        return graph


_default_extractor = ClusterExtractor()


def extract(
    payload: Any,
    expected_id: str | None = None,
    *,
    history: Sequence[Any] = (),
    collection_fields: Sequence[str] | None = None,
) -> ClusterGraph | None:
    """Extract with the default shape order.

    ``collection_fields`` overrides the default collection field names.
    """
    extractor = (
        _default_extractor
        if collection_fields is None
        else ClusterExtractor(collection_fields=collection_fields)
    )
    return extractor.extract(payload, expected_id, history=history)
