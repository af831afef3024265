from .models import ScanEvent, ScanEventType
from .emitter import ScanEventEmitter, NullEventEmitter, SafeEventEmitter
from .memory_emitter import MemoryQueueEventEmitter

__all__ = [
    "ScanEvent",
    "ScanEventType",
    "ScanEventEmitter",
    "NullEventEmitter",
    "SafeEventEmitter",
    "MemoryQueueEventEmitter",
]
