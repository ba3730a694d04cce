"""
Integration tests for treebuild.

These tests build whole source trees end to end: configuration selection,
incremental rebuilds, failure isolation and deterministic archives.
"""
