"""Abstract interfaces for the native inference backend."""

from abc import ABC, abstractmethod
from pathlib import Path


class NativeContext(ABC):
    """Inference context holding the KV-cache of a single generation.

    A context is owned by one generation at a time and must be closed when
    that generation ends.
    """

    @abstractmethod
    def decode(self, tokens: list[int], start_pos: int) -> None:
        """Run a forward pass over tokens placed at start_pos, start_pos + 1, ...

        Args:
            tokens: Token ids to submit as one batch.
            start_pos: Position of the first token in the sequence.

        Raises:
            Exception: If the forward pass fails.
        """
        pass

    @abstractmethod
    def sample_greedy(self) -> int:
        """Pick the highest-probability token after the last decoded position."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the context state."""
        pass

    def __enter__(self) -> "NativeContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class NativeModel(ABC):
    """Loaded model weights plus vocabulary."""

    @abstractmethod
    def tokenize(self, text: str, add_bos: bool = True) -> list[int]:
        """Convert text to token ids.

        Args:
            text: Text to tokenize.
            add_bos: Prepend the beginning-of-sequence token.

        Returns:
            List of token ids.
        """
        pass

    @abstractmethod
    def token_to_bytes(self, token: int) -> bytes:
        """Raw bytes of a token, possibly a fragment of a UTF-8 character."""
        pass

    @abstractmethod
    def is_eog(self, token: int) -> bool:
        """Check whether token marks the end of generation."""
        pass

    @abstractmethod
    def new_context(self) -> NativeContext:
        """Create a fresh inference context for one generation."""
        pass


class InferenceBackend(ABC):
    """Process-wide native backend handle."""

    @abstractmethod
    def supports_gpu_offload(self) -> bool:
        pass

    @abstractmethod
    def load_model(
        self,
        path: Path,
        n_gpu_layers: int,
        context_size: int,
        batch_size: int,
        n_threads: int,
    ) -> NativeModel:
        """Load model weights from a file.

        Args:
            path: Path to the GGUF model file.
            n_gpu_layers: Layers to offload to the GPU (-1 for all, 0 for CPU only).
            context_size: Context window of the inference contexts, in tokens.
            batch_size: Maximum number of tokens submitted in one batch.
            n_threads: CPU threads used for inference.

        Raises:
            Exception: If the file cannot be parsed or loaded.
        """
        pass
