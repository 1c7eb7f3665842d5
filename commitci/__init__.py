"""commitci - a minimal continuous-integration executor.

This package fetches a specific commit of a remote repository, runs a fixed
test/package pipeline against it, and stores the outcome keyed by commit.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
