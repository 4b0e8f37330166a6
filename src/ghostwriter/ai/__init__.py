"""Completion client, prompt construction and the model registry."""

from .client import AIClient, ClientSettings, CompletionOptions, CompletionService
from .models import DEFAULT_MODELS, FailoverState, ModelDescriptor, ModelRegistry

__all__ = [
    "AIClient",
    "ClientSettings",
    "CompletionOptions",
    "CompletionService",
    "DEFAULT_MODELS",
    "FailoverState",
    "ModelDescriptor",
    "ModelRegistry",
]
