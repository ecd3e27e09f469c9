"""llama.cpp inference backend (via llama-cpp-python)."""

import sys
from pathlib import Path

from .. import log
from ..errors import BackendInitError
from .base import InferenceBackend, NativeContext, NativeModel

logger = log.get_logger("llama_cpp")

# Special tokens that end a turn in chat-tuned GGUF vocabularies
END_OF_TURN_MARKERS = ("<|im_end|>", "<|endoftext|>")

MAX_PATH = 512  # buffer size for short path conversion, in characters


def _get_short_path(path: Path) -> str:
    """Model path in a form llama.cpp can open.

    On Windows the native loader cannot open paths with non-ASCII characters
    (e.g. an accented user name in the cache directory), so the 8.3 short
    form is passed instead when the filesystem provides one.
    """
    long_path = str(path)
    if sys.platform != "win32":
        return long_path

    import ctypes

    buffer = ctypes.create_unicode_buffer(MAX_PATH)
    if not ctypes.windll.kernel32.GetShortPathNameW(long_path, buffer, MAX_PATH):
        logger.debug("no short path available", path=long_path)
        return long_path
    return buffer.value


class LlamaCppContext(NativeContext):
    """Inference context of a llama.cpp model.

    llama-cpp-python keeps one native context per ``Llama`` instance, so a
    "new" context resets it: ``reset()`` rewinds the token count and the next
    ``eval()`` drops every KV-cache entry past it.
    """

    def __init__(self, llama):
        self._llama = llama
        self._llama.reset()

    def decode(self, tokens: list[int], start_pos: int) -> None:
        if start_pos != self._llama.n_tokens:
            raise ValueError(
                f"Token position {start_pos} does not follow the context ({self._llama.n_tokens} tokens)"
            )
        self._llama.eval(tokens)

    def sample_greedy(self) -> int:
        # temp == 0 selects the greedy sampler; repeat_penalty 1.0 disables penalties
        return int(self._llama.sample(temp=0.0, repeat_penalty=1.0))

    def close(self) -> None:
        self._llama.reset()


class LlamaCppModel(NativeModel):
    """A GGUF model loaded with llama-cpp-python."""

    def __init__(self, llama):
        self._llama = llama
        self._eog_tokens = self._find_eog_tokens()

    def _find_eog_tokens(self) -> frozenset[int]:
        tokens = {self._llama.token_eos()}
        for marker in END_OF_TURN_MARKERS:
            ids = self._llama.tokenize(marker.encode("utf-8"), add_bos=False, special=True)
            if len(ids) == 1:
                tokens.add(ids[0])
        return frozenset(tokens)

    def tokenize(self, text: str, add_bos: bool = True) -> list[int]:
        return list(self._llama.tokenize(text.encode("utf-8"), add_bos=add_bos, special=False))

    def token_to_bytes(self, token: int) -> bytes:
        return self._llama.detokenize([token], special=True)

    def is_eog(self, token: int) -> bool:
        return token in self._eog_tokens

    def new_context(self) -> LlamaCppContext:
        return LlamaCppContext(self._llama)


class LlamaCppBackend(InferenceBackend):
    """Process-wide llama.cpp backend."""

    def __init__(self, llama_cpp_module):
        self._llama_cpp = llama_cpp_module

    @classmethod
    def init(cls) -> "LlamaCppBackend":
        """Import and initialize llama.cpp.

        Raises:
            BackendInitError: If the native library cannot be loaded.
        """
        try:
            import llama_cpp
        except (ImportError, OSError) as e:
            raise BackendInitError(f"Failed to initialize llama.cpp backend: {e}") from e

        llama_cpp.llama_backend_init()
        backend = cls(llama_cpp)
        logger.debug("backend initialized", gpu_offload=backend.supports_gpu_offload())
        return backend

    def supports_gpu_offload(self) -> bool:
        return bool(self._llama_cpp.llama_supports_gpu_offload())

    def load_model(
        self,
        path: Path,
        n_gpu_layers: int,
        context_size: int,
        batch_size: int,
        n_threads: int,
    ) -> LlamaCppModel:
        llama = self._llama_cpp.Llama(
            model_path=_get_short_path(path),
            n_gpu_layers=n_gpu_layers,
            n_ctx=context_size,
            n_batch=batch_size,
            n_threads=n_threads,
            verbose=False,
        )
        return LlamaCppModel(llama)
