"""Tests for the model cache resolver and fetcher."""

import asyncio
import itertools
import time
from pathlib import Path
from unittest.mock import patch

import pytest
import requests

from fakes import FakeResponse, FakeSession
from konnyaku.errors import CacheLocationError, DownloadError
from konnyaku.models import (
    CACHE_DIR_ENV,
    ModelArtifact,
    ModelFetcher,
    ModelStatus,
    _first_success,
    get_cache_dir,
    resolve_cache_path,
)

ARTIFACT = ModelArtifact(repo_id="org/model-GGUF", filename="model.gguf")


@pytest.fixture
def destination(tmp_path) -> Path:
    return tmp_path / "cache" / "model.gguf"


@pytest.fixture
def hub_file(tmp_path) -> Path:
    path = tmp_path / "hf" / "model.gguf"
    path.parent.mkdir()
    path.write_bytes(b"from-hub")
    return path


class TestModelArtifact:
    """Tests for ModelArtifact."""

    def test_url(self):
        assert ARTIFACT.url == "https://huggingface.co/org/model-GGUF/resolve/main/model.gguf"

    def test_custom_host(self):
        artifact = ModelArtifact("org/m", "m.gguf", host="hf-mirror.com")

        assert artifact.url == "https://hf-mirror.com/org/m/resolve/main/m.gguf"


class TestCacheDir:
    """Tests for get_cache_dir and resolve_cache_path."""

    def test_explicit_dir_is_created(self, tmp_path):
        target = tmp_path / "a" / "b"

        assert get_cache_dir(target) == target
        assert target.is_dir()

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CACHE_DIR_ENV, str(tmp_path / "env"))

        assert get_cache_dir() == tmp_path / "env"

    def test_explicit_dir_wins_over_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CACHE_DIR_ENV, str(tmp_path / "env"))

        assert get_cache_dir(tmp_path / "explicit") == tmp_path / "explicit"

    def test_default_under_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CACHE_DIR_ENV, raising=False)

        with patch("konnyaku.models.Path.home", return_value=tmp_path):
            path = get_cache_dir()

        assert path == tmp_path / ".konnyaku" / "models"
        assert path.is_dir()

    def test_unknown_home(self, monkeypatch):
        monkeypatch.delenv(CACHE_DIR_ENV, raising=False)

        with patch("konnyaku.models.Path.home", side_effect=RuntimeError("Could not determine home directory.")):
            with pytest.raises(CacheLocationError):
                get_cache_dir()

    def test_creation_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(OSError):
            get_cache_dir(blocker / "models")

    def test_resolve_cache_path(self, tmp_path):
        assert resolve_cache_path(ARTIFACT, tmp_path) == tmp_path / "model.gguf"

    def test_resolve_is_deterministic(self, tmp_path):
        assert resolve_cache_path(ARTIFACT, tmp_path) == resolve_cache_path(ARTIFACT, tmp_path)


class TestModelFetcher:
    """Tests for ModelFetcher.ensure_downloaded."""

    def test_existing_file_skips_network(self, destination):
        destination.parent.mkdir(parents=True)
        destination.write_bytes(b"cached")
        session = FakeSession(FakeResponse([b"new"]))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        with patch("konnyaku.models.hf_hub_download") as hub:
            asyncio.run(fetcher.ensure_downloaded())

        assert session.calls == []
        hub.assert_not_called()
        assert destination.read_bytes() == b"cached"
        assert fetcher.status is ModelStatus.READY

    def test_direct_download(self, destination):
        session = FakeSession(FakeResponse([b"GG", b"UF", b"-data"]))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        with patch("konnyaku.models.hf_hub_download") as hub:
            asyncio.run(fetcher.ensure_downloaded())

        assert destination.read_bytes() == b"GGUF-data"
        assert session.calls == [{"url": ARTIFACT.url, "stream": True, "timeout": 300.0}]
        hub.assert_not_called()
        assert list(destination.parent.glob("*.partial")) == []
        assert fetcher.status is ModelStatus.READY

    def test_progress_callback(self, destination):
        session = FakeSession(FakeResponse([b"aaaa", b"bbbb", b"cc"]))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session, progress_interval=4)
        calls = []

        with patch("konnyaku.models.hf_hub_download"):
            asyncio.run(fetcher.ensure_downloaded(lambda cur, total, name: calls.append((cur, total, name))))

        assert calls == [
            (4, 10, "model.gguf"),
            (8, 10, "model.gguf"),
            (10, 10, "model.gguf"),
        ]

    def test_second_call_does_not_download(self, destination):
        """Once the file exists, later calls perform no network I/O."""
        session = FakeSession(FakeResponse([b"data"]))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        with patch("konnyaku.models.hf_hub_download") as hub:
            asyncio.run(fetcher.ensure_downloaded())
            asyncio.run(fetcher.ensure_downloaded())

        assert len(session.calls) == 1
        hub.assert_not_called()

    def test_http_error_falls_back_to_hub(self, destination, hub_file):
        session = FakeSession(FakeResponse([], status=404))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        with patch("konnyaku.models.hf_hub_download", return_value=str(hub_file)) as hub:
            asyncio.run(fetcher.ensure_downloaded())

        hub.assert_called_once_with(repo_id="org/model-GGUF", filename="model.gguf")
        assert destination.read_bytes() == b"from-hub"
        assert hub_file.exists()

    def test_interrupted_stream_leaves_no_partial_file(self, destination, hub_file):
        """A transport error mid-body removes the partial file before fallback."""
        session = FakeSession(FakeResponse([b"half", b"never"], fail_at=1))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        with patch("konnyaku.models.hf_hub_download", return_value=str(hub_file)):
            asyncio.run(fetcher.ensure_downloaded())

        assert destination.read_bytes() == b"from-hub"
        assert list(destination.parent.glob("*.partial")) == []

    def test_both_methods_fail(self, destination):
        session = FakeSession(error=requests.ConnectionError("no route to host"))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)
        hub_error = OSError("hub unreachable")

        with patch("konnyaku.models.hf_hub_download", side_effect=hub_error):
            with pytest.raises(DownloadError) as exc_info:
                asyncio.run(fetcher.ensure_downloaded())

        error = exc_info.value
        assert error.cause is hub_error
        assert error.url == ARTIFACT.url
        assert error.destination == destination
        assert ARTIFACT.url in error.instructions
        assert str(destination) in error.instructions
        assert not destination.exists()
        assert fetcher.status is ModelStatus.ERROR
        assert fetcher.last_error == "hub unreachable"

    def test_retry_after_failure_starts_from_scratch(self, destination):
        failing = FakeSession(FakeResponse([b"half", b"x"], fail_at=1))
        fetcher = ModelFetcher(ARTIFACT, destination, session=failing)
        with patch("konnyaku.models.hf_hub_download", side_effect=OSError("down")):
            with pytest.raises(DownloadError):
                asyncio.run(fetcher.ensure_downloaded())

        retry = ModelFetcher(ARTIFACT, destination, session=FakeSession(FakeResponse([b"complete"])))
        with patch("konnyaku.models.hf_hub_download"):
            asyncio.run(retry.ensure_downloaded())

        assert destination.read_bytes() == b"complete"

    def test_hub_timeout(self, destination, hub_file):
        session = FakeSession(FakeResponse([], status=500))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session, hub_timeout=0.05)

        def slow_download(**kwargs):
            time.sleep(0.3)
            return str(hub_file)

        with patch("konnyaku.models.hf_hub_download", side_effect=slow_download):
            with pytest.raises(DownloadError) as exc_info:
                asyncio.run(fetcher.ensure_downloaded())

        assert isinstance(exc_info.value.cause, TimeoutError)
        assert "timed out" in str(exc_info.value)
        assert not destination.exists()

    def test_direct_download_deadline(self, destination):
        """The direct download gives up once its overall deadline passes."""
        destination.parent.mkdir(parents=True)
        session = FakeSession(FakeResponse([b"a", b"b"]))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session, http_timeout=300)

        with patch("konnyaku.models.time.monotonic", side_effect=itertools.count(0, 1000)):
            with pytest.raises(requests.Timeout):
                fetcher._download_direct(None)

        assert not destination.exists()
        assert list(destination.parent.glob("*.partial")) == []

    def test_status_before_download(self, destination):
        fetcher = ModelFetcher(ARTIFACT, destination)

        assert fetcher.status is ModelStatus.NOT_INSTALLED
        assert not fetcher.is_downloaded()

    def test_hub_skipped_when_file_appears(self, destination):
        """A file placed by someone else during the direct attempt is accepted."""

        class RacingSession(FakeSession):
            def get(self, url, stream=False, timeout=None):
                destination.write_bytes(b"from-elsewhere")
                raise requests.ConnectionError("reset")

        fetcher = ModelFetcher(ARTIFACT, destination, session=RacingSession())

        with patch("konnyaku.models.hf_hub_download") as hub:
            asyncio.run(fetcher.ensure_downloaded())

        hub.assert_not_called()
        assert destination.read_bytes() == b"from-elsewhere"
        assert fetcher.status is ModelStatus.READY


CHUNKS = [bytes([i]) * 1000 for i in range(1, 21)]


class TestConcurrentDownloads:
    """Tests for overlapping ensure_downloaded calls."""

    def test_same_fetcher_downloads_once(self, destination):
        """A caller arriving mid-download waits and reuses the finished file."""
        session = FakeSession(FakeResponse(CHUNKS, delay=0.01))
        fetcher = ModelFetcher(ARTIFACT, destination, session=session)

        async def scenario():
            first = asyncio.create_task(fetcher.ensure_downloaded())
            await asyncio.sleep(0.05)
            await asyncio.gather(first, fetcher.ensure_downloaded())

        with patch("konnyaku.models.hf_hub_download", side_effect=OSError("offline")) as hub:
            asyncio.run(scenario())

        assert destination.read_bytes() == b"".join(CHUNKS)
        assert len(session.calls) == 1
        hub.assert_not_called()
        assert fetcher.status is ModelStatus.READY
        assert list(destination.parent.glob("*.partial")) == []

    def test_separate_fetchers_keep_file_intact(self, destination):
        """Two fetchers writing the same model never corrupt each other's file."""
        first = ModelFetcher(ARTIFACT, destination, session=FakeSession(FakeResponse(CHUNKS, delay=0.01)))
        second = ModelFetcher(ARTIFACT, destination, session=FakeSession(FakeResponse(CHUNKS, delay=0.01)))

        async def scenario():
            task = asyncio.create_task(first.ensure_downloaded())
            await asyncio.sleep(0.05)
            await asyncio.gather(task, second.ensure_downloaded())

        with patch("konnyaku.models.hf_hub_download", side_effect=OSError("offline")) as hub:
            asyncio.run(scenario())

        assert destination.read_bytes() == b"".join(CHUNKS)
        hub.assert_not_called()
        assert first.status is ModelStatus.READY
        assert second.status is ModelStatus.READY
        assert list(destination.parent.glob("*.partial")) == []


class TestFirstSuccess:
    """Tests for the download fallback combinator."""

    def test_returns_first_successful_method(self):
        calls = []

        async def fail():
            calls.append("fail")
            raise OSError("down")

        async def succeed():
            calls.append("succeed")

        assert asyncio.run(_first_success([("a", fail), ("b", succeed), ("c", succeed)])) == "b"
        assert calls == ["fail", "succeed"]

    def test_raises_last_failure(self):
        async def fail_with(message):
            raise OSError(message)

        with pytest.raises(OSError, match="second"):
            asyncio.run(_first_success([("a", lambda: fail_with("first")), ("b", lambda: fail_with("second"))]))

    def test_requires_attempts(self):
        with pytest.raises(ValueError):
            asyncio.run(_first_success([]))
