"""
.. include:: ../README.md
"""

__all__ = [
    "applier",
    "backend",
    "builder",
    "cluster",
    "config",
    "exceptions",
    "git_repo",
    "manifest",
    "pipeline",
    "planner",
    "resolver",
    "resource_diff",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
