"""Exceptions raised by the translation engine."""

from pathlib import Path


class KonnyakuError(Exception):
    """Base class for all translation engine errors."""


class CacheLocationError(KonnyakuError):
    """The per-user cache directory could not be determined."""


class DownloadError(KonnyakuError):
    """Every download method failed for the model file.

    Attributes:
        cause: The last underlying exception.
        url: Direct download URL of the model file.
        destination: Local path the file was supposed to be written to.
    """

    def __init__(self, cause: BaseException, url: str, destination: Path):
        self.cause = cause
        self.url = url
        self.destination = destination
        super().__init__(f"{cause}. {self.instructions}")

    @property
    def instructions(self) -> str:
        """Manual recovery steps for the user."""
        return (
            f"Please download the model manually from {self.url} "
            f"and save it to {self.destination}"
        )


class BackendInitError(KonnyakuError):
    """The native inference backend could not be initialized."""


class ModelLoadError(KonnyakuError):
    """Model weights could not be loaded from the cached file."""


class InferenceError(KonnyakuError):
    """Tokenization or a forward pass failed during generation."""


class PromptTooLongError(KonnyakuError):
    """The tokenized prompt does not fit in the generation window."""

    def __init__(self, n_tokens: int, limit: int):
        self.n_tokens = n_tokens
        self.limit = limit
        super().__init__(f"Prompt is {n_tokens} tokens, the limit is {limit}")


class InvalidDirectionError(KonnyakuError, ValueError):
    """Translation direction token is not one of the supported ones."""

    def __init__(self, direction: str):
        self.direction = direction
        super().__init__(f"Invalid translation direction: {direction}")


class CommandError(KonnyakuError):
    """A host command failed; the message is meant for the user."""
