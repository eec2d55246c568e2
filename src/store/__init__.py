"""Series and job persistence layer.

This package stores per-owner metric series and job status documents
for the ingest pipeline and the SDK.
"""
