"""Translation service: model lifecycle and request serialization."""

import asyncio
from typing import Callable, TypeVar

from . import log
from .config import Config
from .directions import TranslationDirection
from .engine import InferenceEngine
from .models import ModelFetcher, ProgressCallback, resolve_cache_path
from .session import GenerationSession

logger = log.get_logger("service")

T = TypeVar("T")


class TranslationService:
    """Translates text with a lazily downloaded and loaded model.

    Engine state is guarded by a single asyncio lock. Downloads run without
    the lock so status reads stay responsive; loading and generation run
    with it held, in a worker thread, so at most one native call is in
    flight at any time.
    """

    def __init__(self, engine: InferenceEngine, fetcher: ModelFetcher, config: Config | None = None):
        self._engine = engine
        self._fetcher = fetcher
        self._config = config or Config()
        self._lock = asyncio.Lock()

    @classmethod
    def create(cls, config: Config | None = None) -> "TranslationService":
        """Build the service, its fetcher and its engine from configuration.

        Raises:
            CacheLocationError: If the cache directory cannot be determined.
            BackendInitError: If the native backend cannot be initialized.
        """
        config = config or Config()
        artifact = config.artifact
        model_path = resolve_cache_path(artifact, config.cache_dir)
        fetcher = ModelFetcher(
            artifact,
            model_path,
            http_timeout=config.download_timeout,
            hub_timeout=config.hub_timeout,
            progress_interval=config.progress_interval_bytes,
        )
        engine = InferenceEngine(model_path, config)
        return cls(engine, fetcher, config)

    @property
    def fetcher(self) -> ModelFetcher:
        return self._fetcher

    @staticmethod
    def supported_directions() -> list[str]:
        return TranslationDirection.supported_tokens()

    async def is_model_loaded(self) -> bool:
        async with self._lock:
            return self._engine.is_loaded

    async def ensure_model_downloaded(self, progress_callback: ProgressCallback | None = None) -> None:
        """Download the model file unless it is cached.

        Raises:
            DownloadError: If every download method failed.
        """
        await self._fetcher.ensure_downloaded(progress_callback)

    async def ensure_model_loaded(self) -> None:
        """Download (if needed) and load the model, once.

        Raises:
            DownloadError: If the model file could not be downloaded.
            ModelLoadError: If the model file could not be loaded.
        """
        async with self._lock:
            if self._engine.is_loaded:
                return

        await self.ensure_model_downloaded()

        async with self._lock:
            # Another caller may have loaded it while the lock was released
            if self._engine.is_loaded:
                return
            await self._run_native(self._engine.load)

    async def translate(self, text: str, direction: TranslationDirection | str) -> str:
        """Translate text in the given direction.

        Args:
            text: Source text.
            direction: TranslationDirection or its token ("en-ja", "ja-en").

        Returns:
            The translated text.

        Raises:
            InvalidDirectionError: If the direction is not supported.
            DownloadError, ModelLoadError: If the model is not available.
            PromptTooLongError, InferenceError: If generation failed.
        """
        direction = TranslationDirection.from_token(direction)

        await self.ensure_model_loaded()

        async with self._lock:
            session = GenerationSession(
                self._engine.model,
                direction,
                text,
                max_tokens=self._config.max_tokens,
                context_size=self._config.context_size,
            )
            logger.debug("translating", direction=direction.value, chars=len(text))
            translation = await self._run_native(session.run)

        logger.info("translation complete", direction=direction.value, n_tokens=len(session.tokens))
        return translation

    async def _run_native(self, fn: Callable[[], T]) -> T:
        """Run a blocking native call in a worker thread.

        Must be called with the lock held. If the caller is cancelled, the
        lock stays held until the native call returns, since it cannot be
        interrupted.
        """
        task = asyncio.ensure_future(asyncio.to_thread(fn))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.warning("native call failed after cancellation", error=str(task.exception()))
            raise
