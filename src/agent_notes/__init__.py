"""Feedback threads anchored to spans of source files.

This package contains:
- Pydantic models for threads, comments and the workspace store
- The persistence engine (atomic writes, backup recovery, write coalescing)
- The anchor tracker that keeps thread ranges valid across document edits
"""

__version__ = "0.1.0"
