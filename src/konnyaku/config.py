"""Configuration management for Konnyaku."""

import os
from pathlib import Path

import yaml

from .models import ModelArtifact

DEFAULT_MODEL_REPO = "LiquidAI/LFM2-350M-ENJP-MT-GGUF"
DEFAULT_MODEL_FILE = "lfm2-350m-enjp-mt-q4_k_m.gguf"
DEFAULT_MODEL_HOST = "huggingface.co"

# Generation window
DEFAULT_CONTEXT_SIZE = 4096  # model supports far more, translations stay short
DEFAULT_MAX_TOKENS = 512     # prompt + generated tokens
DEFAULT_N_THREADS = 4
DEFAULT_N_GPU_LAYERS = -1    # offload every layer when a GPU is available

# Download
DEFAULT_DOWNLOAD_TIMEOUT = 300.0  # seconds, direct HTTP request
DEFAULT_HUB_TIMEOUT = 300.0       # seconds, whole hub fallback
DEFAULT_PROGRESS_INTERVAL_MB = 10


class Config:
    """Engine configuration."""

    def __init__(
        self,
        model_repo: str = DEFAULT_MODEL_REPO,
        model_file: str = DEFAULT_MODEL_FILE,
        model_host: str = DEFAULT_MODEL_HOST,
        cache_dir: str | None = None,
        context_size: int = DEFAULT_CONTEXT_SIZE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        n_threads: int = DEFAULT_N_THREADS,
        n_gpu_layers: int = DEFAULT_N_GPU_LAYERS,
        download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        hub_timeout: float = DEFAULT_HUB_TIMEOUT,
        progress_interval_mb: int = DEFAULT_PROGRESS_INTERVAL_MB,
        log_level: str = "INFO",
    ):
        self.model_repo = model_repo
        self.model_file = model_file
        self.model_host = model_host
        self.cache_dir = cache_dir
        self.context_size = context_size
        self.max_tokens = max_tokens
        self.n_threads = n_threads
        self.n_gpu_layers = n_gpu_layers
        self.download_timeout = download_timeout
        self.hub_timeout = hub_timeout
        self.progress_interval_mb = progress_interval_mb
        self.log_level = log_level

    @property
    def artifact(self) -> ModelArtifact:
        return ModelArtifact(
            repo_id=self.model_repo,
            filename=self.model_file,
            host=self.model_host,
        )

    @property
    def progress_interval_bytes(self) -> int:
        return self.progress_interval_mb * 1024 * 1024

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load configuration from a YAML file.

        Args:
            config_path: Path to config file. If None, looks for config.yml
                        in the working directory, then in ~/.konnyaku/.

        Returns:
            Config instance with loaded values, or defaults if no file exists.
        """
        if config_path is None:
            search_paths = [
                Path("config.yml"),
                Path.home() / ".konnyaku" / "config.yml",
            ]
            for path in search_paths:
                if path.exists():
                    config_path = str(path)
                    break

        if not config_path or not os.path.exists(config_path):
            return cls()

        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            model_repo=data.get("model_repo", DEFAULT_MODEL_REPO),
            model_file=data.get("model_file", DEFAULT_MODEL_FILE),
            model_host=data.get("model_host", DEFAULT_MODEL_HOST),
            cache_dir=data.get("cache_dir"),
            context_size=int(data.get("context_size", DEFAULT_CONTEXT_SIZE)),
            max_tokens=int(data.get("max_tokens", DEFAULT_MAX_TOKENS)),
            n_threads=int(data.get("n_threads", DEFAULT_N_THREADS)),
            n_gpu_layers=int(data.get("n_gpu_layers", DEFAULT_N_GPU_LAYERS)),
            download_timeout=float(data.get("download_timeout", DEFAULT_DOWNLOAD_TIMEOUT)),
            hub_timeout=float(data.get("hub_timeout", DEFAULT_HUB_TIMEOUT)),
            progress_interval_mb=int(data.get("progress_interval_mb", DEFAULT_PROGRESS_INTERVAL_MB)),
            log_level=str(data.get("log_level", "INFO")),
        )
