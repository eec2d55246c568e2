"""Health export ingestion pipeline.

This package reads large exports as ordered byte ranges, reassembles
and classifies records, and merges them into per-metric series.
"""
