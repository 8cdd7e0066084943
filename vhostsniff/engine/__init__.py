"""Probe engine package: input records, probing runtime and findings model."""
