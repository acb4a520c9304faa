"""Observation pipeline for Cluster Lens.

Correlates partial observations of GraphQL exchanges from several
instrumentation sources and extracts de-duplication cluster graphs from
their responses.
"""
