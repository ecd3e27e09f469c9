"""Process-wide inference engine state."""

from pathlib import Path

from . import log
from .backends import InferenceBackend, LlamaCppBackend, NativeModel
from .config import Config
from .errors import ModelLoadError

logger = log.get_logger("engine")


class InferenceEngine:
    """Owns the native backend and, once loaded, the model weights.

    One instance is created per process and handed to the translation
    service, which guards every access with its lock. The engine moves from
    unloaded to loaded once and never unloads.
    """

    def __init__(self, model_path: Path, config: Config, backend: InferenceBackend | None = None):
        """Initialize the backend; the model itself is loaded lazily.

        Args:
            model_path: Path of the cached model file.
            config: Engine configuration (context window, threads, GPU layers).
            backend: Native backend, llama.cpp when omitted.

        Raises:
            BackendInitError: If the native backend cannot be initialized.
        """
        self.model_path = Path(model_path)
        self._config = config
        self._backend = backend if backend is not None else LlamaCppBackend.init()
        self._model: NativeModel | None = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> NativeModel:
        if self._model is None:
            raise ModelLoadError("Model not loaded")
        return self._model

    def load(self) -> None:
        """Load the model weights from the cached file (blocking).

        Does nothing if the model is already loaded. The model file must
        exist; downloading is the caller's job.

        Raises:
            ModelLoadError: If the file is missing or cannot be loaded.
        """
        if self._model is not None:
            return

        if not self.model_path.exists():
            raise ModelLoadError(f"Model file not found: {self.model_path}")

        n_gpu_layers = self._config.n_gpu_layers
        if not self._backend.supports_gpu_offload():
            n_gpu_layers = 0
        device = "GPU" if n_gpu_layers != 0 else "CPU"

        logger.info("loading model", path=self.model_path, device=device)
        try:
            model = self._backend.load_model(
                self.model_path,
                n_gpu_layers=n_gpu_layers,
                context_size=self._config.context_size,
                batch_size=self._config.max_tokens,
                n_threads=self._config.n_threads,
            )
        except Exception as e:
            raise ModelLoadError(
                f"Failed to load model from {self.model_path}: {e}. "
                f"If the file is corrupted, delete it to download it again"
            ) from e

        self._model = model
        logger.info("model loaded", device=device)
