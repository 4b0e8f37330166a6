"""Editor core: document model, suggestion and selection controllers."""

from . import document_model, timers

__all__ = ["document_model", "timers"]
