"""Cypher mint engine service package."""
