"""SQLite metadata store for profiling data, with lookup keys, a cache and a label postings index."""

__version__ = "0.1.0"