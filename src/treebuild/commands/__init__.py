"""Command implementations for the treebuild CLI.

This package contains implementations of treebuild commands that are too
complex to fit in the main cli.py file.
"""

from treebuild.commands.clean import clean_output

__all__ = ["clean_output"]
