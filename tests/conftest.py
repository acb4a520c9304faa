"""Shared fixtures: a recorded de-duplication cluster response."""

from __future__ import annotations

from typing import Any

import pytest

CLUSTER_ID = "2682385"
MEMBER_IDS = ("70107929", "70022953", "70031591")


def _person(person_id: str, name: str) -> dict[str, Any]:
    return {
        "id": person_id,
        "name": name,
        "displayArtwork": "",
        "active": True,
        "__typename": "Person",
    }


def build_cluster(cluster_id: str = CLUSTER_ID) -> dict[str, Any]:
    """Raw cluster node as returned under ``edges[0].node``."""
    return {
        "id": cluster_id,
        "createdAt": "2024-10-06T20:24:07.098Z",
        "updatedAt": "2024-10-06T20:24:07.098Z",
        "__typename": "PRSNDeduplicationCluster",
        "edges": [
            {
                "id": "3811161",
                "nodeA": _person("70022953", "Zylen Drew Arnaud"),
                "nodeB": _person("70107929", "Zylen Arnaud"),
                "status": "PENDING",
                "subStatuses": [],
                "vector": {
                    "ServiceScore": 0,
                    "emailScore": 1,
                    "nameScore": 0.90061516,
                    "phoneScore": 0,
                    "movieScore": 0,
                    "__typename": "PRSNDeduplicationVector",
                },
                "vectorSum": 1.9006152,
                "__typename": "PRSNDeduplicationEdge",
            },
            {
                "id": "3813280",
                "nodeA": _person("70031591", "Zylen Arnaud"),
                "nodeB": _person("70107929", "Zylen Arnaud"),
                "status": "PENDING",
                "subStatuses": [],
                "__typename": "PRSNDeduplicationEdge",
            },
        ],
        "members": [
            {"node": {"id": "70107929", "active": True, "name": "Zylen Arnaud"}},
            {"node": {"id": "70022953", "active": True, "name": "Zylen Drew Arnaud"}},
            {"node": {"id": "70031591", "active": True, "name": "Zylen Arnaud"}},
        ],
    }


def build_single_response(
    cluster_id: str = CLUSTER_ID, field: str = "prsn_deduplicationClusters"
) -> dict[str, Any]:
    """``{"data": {<field>: {"edges": [{"node": cluster}]}}}``."""
    return {
        "data": {
            field: {
                "edges": [{"cursor": "MA==", "node": build_cluster(cluster_id)}],
                "__typename": "DeduplicationClusterConnection",
            }
        }
    }


def build_batched_response(cluster_id: str = CLUSTER_ID) -> list[dict[str, Any]]:
    return [build_single_response(cluster_id)]


@pytest.fixture()
def cluster() -> dict[str, Any]:
    return build_cluster()


@pytest.fixture()
def batched_response() -> list[dict[str, Any]]:
    return build_batched_response()


@pytest.fixture()
def single_response() -> dict[str, Any]:
    return build_single_response()


@pytest.fixture()
def cluster_details_request() -> list[dict[str, Any]]:
    """Batched request body naming the fixture cluster."""
    return [
        {
            "operationName": "getPersonClusterDetails",
            "query": "query getPersonClusterDetails($id: ID!) { cluster(id: $id) { id } }",
            "variables": {"id": CLUSTER_ID},
        }
    ]


@pytest.fixture()
def make_single_response():
    """Factory for single-object responses with a custom cluster id or field."""
    return build_single_response


@pytest.fixture()
def make_batched_response():
    return build_batched_response


@pytest.fixture()
def make_cluster():
    return build_cluster
