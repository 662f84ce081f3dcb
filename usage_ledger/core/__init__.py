"""
Core modules for the usage ledger.

This package contains OTLP attribute decoding, identity resolution,
metric routing, session/message aggregation and the ingestion pipeline.
"""
