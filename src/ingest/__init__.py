"""Archive ingestion pipeline.

This package validates export archives, parses relationship members,
and merges them into unified account records for the store layer.
"""
