"""Scan pipeline: IR building, per-unit analysis and result aggregation."""
