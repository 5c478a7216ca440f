"""
Participant and editor client runtime
"""
from .editor import EditorSlideList, PendingMove
from .progress import ProgressSnapshot, ProgressStore
from .queue import OfflineQueue, QueuedResponse
from .sync import ResponseRecorder, ResponseSyncer, SyncStatus, create_client

__all__ = [
    'EditorSlideList',
    'PendingMove',
    'ProgressSnapshot',
    'ProgressStore',
    'OfflineQueue',
    'QueuedResponse',
    'ResponseRecorder',
    'ResponseSyncer',
    'SyncStatus',
    'create_client',
]
