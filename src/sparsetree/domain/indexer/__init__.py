"""Breadth-first crawling of provider records into the graph store."""

from __future__ import annotations

from .crawler import Indexer, IndexRequest, IndexResult, JobHandle
from .jobs import Job, JobManager, JobSnapshot
from .writer import GraphWriter, LinkedRelative, PersistOutcome, parse_payload

__all__ = [
    "GraphWriter",
    "IndexRequest",
    "IndexResult",
    "Indexer",
    "Job",
    "JobHandle",
    "JobManager",
    "JobSnapshot",
    "LinkedRelative",
    "PersistOutcome",
    "parse_payload",
]
