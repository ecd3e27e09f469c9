"""Native inference backends."""

from .base import InferenceBackend, NativeContext, NativeModel
from .llama_cpp import LlamaCppBackend

__all__ = [
    "InferenceBackend",
    "NativeContext",
    "NativeModel",
    "LlamaCppBackend",
]
