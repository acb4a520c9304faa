"""Unit tests for the graph notification sinks.

All HTTP interactions are mocked via patching httpx.AsyncClient, and
no real network calls are made.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cluster_lens.observation.models import ClusterEdge, ClusterGraph, ClusterNode
from cluster_lens.sinks import CallbackGraphSink, LatestGraphSink, WebhookGraphSink

SINK_URL = "http://renderer.local/graphs"


def _make_graph(cluster_id: str = "1") -> ClusterGraph:
    return ClusterGraph(
        id=cluster_id,
        nodes=(ClusterNode("a", "A"), ClusterNode("b", "B")),
        edges=(ClusterEdge("a", "b", "PENDING"),),
    )


def _make_client(response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def _make_response(status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = "" if response.is_success else "bad request"
    return response


# ===================================================================
# LatestGraphSink
# ===================================================================


class TestLatestGraphSink:
    """Tests for the in-memory sink."""

    @pytest.mark.asyncio
    async def test_keeps_latest(self):
        sink = LatestGraphSink()
        await sink.push_graph(_make_graph("1"))
        await sink.push_graph(_make_graph("2"))
        assert sink.latest.id == "2"
        assert sink.publish_count == 2

    @pytest.mark.asyncio
    async def test_equal_push_is_idempotent(self):
        sink = LatestGraphSink()
        await sink.push_graph(_make_graph())
        await sink.push_graph(_make_graph())
        assert sink.publish_count == 1

    @pytest.mark.asyncio
    async def test_clear(self):
        sink = LatestGraphSink()
        await sink.push_graph(_make_graph())
        sink.clear()
        assert sink.latest is None


# ===================================================================
# CallbackGraphSink
# ===================================================================


class TestCallbackGraphSink:
    """Tests for the callback adapter sink."""

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        received = []
        sink = CallbackGraphSink(received.append)
        graph = _make_graph()
        await sink.push_graph(graph)
        assert received == [graph]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        callback = AsyncMock()
        sink = CallbackGraphSink(callback)
        graph = _make_graph()
        await sink.push_graph(graph)
        callback.assert_awaited_once_with(graph)

    @pytest.mark.asyncio
    async def test_callback_errors_propagate(self):
        """The pipeline, not the sink, decides how push failures are handled."""
        sink = CallbackGraphSink(MagicMock(side_effect=RuntimeError("boom")))
        with pytest.raises(RuntimeError):
            await sink.push_graph(_make_graph())


# ===================================================================
# WebhookGraphSink
# ===================================================================


class TestWebhookGraphSink:
    """Tests for the HTTP webhook sink."""

    @pytest.mark.asyncio
    async def test_posts_graph(self):
        mock_client = _make_client(_make_response(200))
        with patch("cluster_lens.sinks.httpx.AsyncClient", return_value=mock_client):
            sink = WebhookGraphSink(SINK_URL)
            await sink.push_graph(_make_graph())

        mock_client.post.assert_awaited_once()
        call_kwargs = mock_client.post.call_args
        assert call_kwargs.args[0] == SINK_URL
        payload = call_kwargs.kwargs["json"]
        assert payload["action"] == "newClusterData"
        assert payload["data"]["id"] == "1"
        assert payload["data"]["edges"][0]["lower_person_id"] == "a"

    @pytest.mark.asyncio
    async def test_duplicate_skipped_after_delivery(self):
        mock_client = _make_client(_make_response(200))
        with patch("cluster_lens.sinks.httpx.AsyncClient", return_value=mock_client):
            sink = WebhookGraphSink(SINK_URL)
            await sink.push_graph(_make_graph())
            await sink.push_graph(_make_graph())

        assert mock_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_push_is_retried_next_time(self):
        mock_client = _make_client(_make_response(500))
        with patch("cluster_lens.sinks.httpx.AsyncClient", return_value=mock_client):
            sink = WebhookGraphSink(SINK_URL)
            await sink.push_graph(_make_graph())
            await sink.push_graph(_make_graph())

        assert mock_client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_logged_not_raised(self):
        mock_client = _make_client(side_effect=httpx.ConnectError("connection refused"))
        with patch("cluster_lens.sinks.httpx.AsyncClient", return_value=mock_client):
            sink = WebhookGraphSink(SINK_URL)
            await sink.push_graph(_make_graph())

    @pytest.mark.asyncio
    async def test_timeout_passed_to_client(self):
        mock_client = _make_client(_make_response(200))
        with patch(
            "cluster_lens.sinks.httpx.AsyncClient", return_value=mock_client
        ) as mock_cls:
            sink = WebhookGraphSink(SINK_URL, timeout=3)
            await sink.push_graph(_make_graph())

        mock_cls.assert_called_once_with(timeout=3)
