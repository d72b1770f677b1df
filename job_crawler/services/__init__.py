"""
Services Layer

Collaborators the crawl driver hands its output to.
"""

from .sink import JobSink, MemorySink, JsonLinesSink

__all__ = [
    "JobSink",
    "MemorySink",
    "JsonLinesSink"
]
