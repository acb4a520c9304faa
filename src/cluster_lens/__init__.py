"""Cluster Lens: GraphQL traffic correlation and cluster graph extraction."""

__version__ = "1.0.1"
