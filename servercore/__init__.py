"""Server building blocks: buffers, locks, console logging, jobs, HTTP routing, schema model and diff, and asyncio sessions."""

__version__ = "0.1.0"

__all__ = [
    "buffers",
    "locks",
    "console",
    "jobs",
    "web",
    "dbmodel",
    "schema_diff",
    "network",
]