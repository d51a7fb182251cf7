"""Ingestion flows: candidate normalization, batch reconcile, statement and email uploads."""
