"""Task store CLI.

A small command-line front end for inspecting a configured store. Built
with Click and Rich.
"""

from taskstore.cli.main import cli

__all__ = ["cli"]
