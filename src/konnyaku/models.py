"""Model download and caching for Konnyaku.

The translation model is a single GGUF file hosted on HuggingFace. It is
stored in a per-user cache directory (~/.konnyaku/models by default) and
fetched on first use:

1. direct streamed HTTP download of the resolve URL
2. fallback to the HuggingFace Hub client, bounded by a global timeout

A file that exists at the cache path is considered downloaded. Each download
attempt writes to its own ``<file>.<random>.partial`` sibling and renames it
into place, so an interrupted or concurrent download never leaves a partial
file at the cache path.
"""

import asyncio
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, BinaryIO, Callable, Iterator

# Suppress HuggingFace Hub warnings (must be set before import)
os.environ["HF_HUB_DISABLE_IMPLICIT_TOKEN"] = "1"
os.environ["HF_HUB_VERBOSITY"] = "error"

import requests
from huggingface_hub import hf_hub_download

from . import log
from .errors import CacheLocationError, DownloadError

logger = log.get_logger("fetcher")

CACHE_DIR_ENV = "KONNYAKU_CACHE_DIR"

MIB = 1024 * 1024
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ModelArtifact:
    """A model file identified by its HuggingFace repository and filename."""

    repo_id: str
    filename: str
    host: str = "huggingface.co"

    @property
    def url(self) -> str:
        return f"https://{self.host}/{self.repo_id}/resolve/main/{self.filename}"


class ModelStatus(Enum):
    """Status of the cached model file."""

    NOT_INSTALLED = "not_installed"
    DOWNLOADING = "downloading"
    READY = "ready"
    ERROR = "error"


# callback(current_bytes, total_bytes, filename)
ProgressCallback = Callable[[int, int, str], None]


def get_cache_dir(cache_dir: str | os.PathLike | None = None) -> Path:
    """Get the model cache directory, creating it if needed.

    Args:
        cache_dir: Explicit directory. Falls back to $KONNYAKU_CACHE_DIR,
            then ~/.konnyaku/models.

    Raises:
        CacheLocationError: If the home directory cannot be determined.
        OSError: If the directory cannot be created.
    """
    if cache_dir is None:
        cache_dir = os.environ.get(CACHE_DIR_ENV) or None

    try:
        if cache_dir is not None:
            path = Path(cache_dir).expanduser()
        else:
            path = Path.home() / ".konnyaku" / "models"
    except RuntimeError as e:
        raise CacheLocationError(f"Failed to determine cache directory: {e}") from e

    if not path.is_absolute() and str(path).startswith("~"):
        raise CacheLocationError("Failed to determine cache directory: home directory is unknown")

    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_cache_path(artifact: ModelArtifact, cache_dir: str | os.PathLike | None = None) -> Path:
    """Get the local path the model artifact is cached at."""
    return get_cache_dir(cache_dir) / artifact.filename


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


async def _first_success(attempts: list[tuple[str, Callable[[], Awaitable[None]]]]) -> str:
    """Run download attempts in order until one succeeds.

    Returns:
        Name of the attempt that succeeded.

    Raises:
        ValueError: If no attempts are given.
        Exception: The failure of the last attempt.
    """
    if not attempts:
        raise ValueError("No download methods given")

    last_error: Exception | None = None
    for name, attempt in attempts:
        try:
            await attempt()
            return name
        except Exception as e:
            last_error = e
            logger.warning("download method failed", method=name, error=_describe(e))
    raise last_error


class ModelFetcher:
    """Makes sure the model file exists in the local cache."""

    def __init__(
        self,
        artifact: ModelArtifact,
        path: Path,
        http_timeout: float = 300.0,
        hub_timeout: float = 300.0,
        progress_interval: int = 10 * MIB,
        session: requests.Session | None = None,
    ):
        """Initialize the fetcher.

        Args:
            artifact: Repository and filename of the model.
            path: Destination path in the cache directory.
            http_timeout: Deadline for the direct download, in seconds.
            hub_timeout: Deadline for the whole hub fallback, in seconds.
            progress_interval: Bytes between progress log lines.
            session: HTTP session, a new one per download when omitted.
        """
        self.artifact = artifact
        self.path = Path(path)
        self._http_timeout = http_timeout
        self._hub_timeout = hub_timeout
        self._progress_interval = progress_interval
        self._session = session
        self._status = ModelStatus.READY if self.path.exists() else ModelStatus.NOT_INSTALLED
        self._last_error: str | None = None
        self._lock = asyncio.Lock()

    @property
    def status(self) -> ModelStatus:
        if self._status is not ModelStatus.DOWNLOADING and self.path.exists():
            return ModelStatus.READY
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def is_downloaded(self) -> bool:
        return self.path.exists()

    @contextmanager
    def _partial_file(self) -> Iterator[BinaryIO]:
        """Open a temporary file next to the cache path, renamed onto it on success.

        Every attempt gets its own file, so concurrent downloads of the same
        model (from another fetcher or process) never write into each other.
        """
        f = tempfile.NamedTemporaryFile(
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".partial",
            delete=False,
        )
        partial = Path(f.name)
        try:
            with f:
                yield f
            os.replace(partial, self.path)
        finally:
            partial.unlink(missing_ok=True)

    async def ensure_downloaded(self, progress_callback: ProgressCallback | None = None) -> None:
        """Download the model unless it is already cached.

        Concurrent calls on the same fetcher are serialized; a caller that
        waited finds the file in place and returns without downloading.

        Args:
            progress_callback: Optional callback for direct download progress.

        Raises:
            DownloadError: If both download methods failed.
        """
        async with self._lock:
            if self.path.exists():
                logger.info("model already cached", path=self.path)
                return

            logger.info("downloading model", repo=self.artifact.repo_id, file=self.artifact.filename)
            self.path.parent.mkdir(parents=True, exist_ok=True)

            self._status = ModelStatus.DOWNLOADING
            self._last_error = None
            try:
                method = await _first_success([
                    ("direct", lambda: asyncio.to_thread(self._download_direct, progress_callback)),
                    ("hub", self._download_from_hub),
                ])
            except Exception as e:
                self._status = ModelStatus.ERROR
                self._last_error = _describe(e)
                error = DownloadError(e, self.artifact.url, self.path)
                logger.error("model download failed", error=_describe(e))
                logger.error("manual download", url=error.url, destination=error.destination)
                raise error from e

            self._status = ModelStatus.READY
            logger.info("model downloaded", method=method, path=self.path)

    def _download_direct(self, progress_callback: ProgressCallback | None) -> None:
        """Stream the resolve URL into the cache (runs in a worker thread)."""
        url = self.artifact.url
        logger.info("direct download", url=url)

        deadline = time.monotonic() + self._http_timeout
        session = self._session or requests.Session()
        try:
            with session.get(url, stream=True, timeout=self._http_timeout) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0))
                logger.info("download size", size_mb=total // MIB)

                downloaded = 0
                next_report = self._progress_interval
                with self._partial_file() as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if time.monotonic() > deadline:
                            raise requests.Timeout(
                                f"direct download timed out after {self._http_timeout:.0f}s"
                            )
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded += len(chunk)

                        if progress_callback:
                            progress_callback(downloaded, total, self.artifact.filename)
                        if downloaded >= next_report or downloaded == total:
                            self._log_progress(downloaded, total)
                            while next_report <= downloaded:
                                next_report += self._progress_interval
        finally:
            if self._session is None:
                session.close()

    def _log_progress(self, downloaded: int, total: int) -> None:
        percent = int(downloaded / total * 100) if total > 0 else 0
        logger.info(
            "download progress",
            downloaded_mb=downloaded // MIB,
            total_mb=total // MIB,
            percent=percent,
        )

    async def _download_from_hub(self) -> None:
        """Fetch through the HuggingFace Hub client, bounded by hub_timeout."""
        if self.path.exists():
            # Placed by another process while the direct download failed
            logger.info("model appeared in cache", path=self.path)
            return

        async def attempt() -> None:
            logger.info("hub download", repo=self.artifact.repo_id)
            cached = await asyncio.to_thread(
                hf_hub_download,
                repo_id=self.artifact.repo_id,
                filename=self.artifact.filename,
            )
            logger.info("hub download complete, copying to cache")
            await asyncio.to_thread(self._install_file, Path(cached))

        try:
            await asyncio.wait_for(attempt(), timeout=self._hub_timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Model download timed out after {self._hub_timeout:.0f}s"
            ) from None

    def _install_file(self, source: Path) -> None:
        with open(source, "rb") as src, self._partial_file() as dst:
            shutil.copyfileobj(src, dst)
