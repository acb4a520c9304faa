"""Instrumentation source adapters.

Each adapter converts one source's raw messages into ExchangeRecords and
feeds them to the shared ObservationPipeline.
"""
