"""Build execution and result persistence.

This module handles:
- Fetching the source tree of a revision
- Running pipeline steps as external processes
- Classifying and persisting build results
- Looking results up by commit identifier
"""

from commitci.builds.service import BuildQueue, build_project, get_result
from commitci.builds.store import FileResultStore, ResultStore, SqlResultStore

__all__ = [
    "BuildQueue",
    "FileResultStore",
    "ResultStore",
    "SqlResultStore",
    "build_project",
    "get_result",
]
