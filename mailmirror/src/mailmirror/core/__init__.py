"""Core synchronization logic: cursor, topic state mapping, ingestion, engine."""

from .cursor import Cursor, partition_uids, select_batches
from .engine import PassState, PassStats, SyncEngine
from .mapper import TopicStateMapper
from .receiver import EmailReceiver, IngestResult, ProcessingError, Receiver, ingest

__all__ = [
    "Cursor",
    "partition_uids",
    "select_batches",
    "PassState",
    "PassStats",
    "SyncEngine",
    "TopicStateMapper",
    "EmailReceiver",
    "IngestResult",
    "ProcessingError",
    "Receiver",
    "ingest",
]
