"""Konnyaku - Offline English <-> Japanese translator.

Translates text on-device with LiquidAI's LFM2-350M-ENJP-MT model running
on llama.cpp. The model is downloaded from HuggingFace on first use and
cached in ~/.konnyaku/models.
"""

__version__ = "0.1.0"

# Public API
from .commands import Commands, ModelStatusResponse, TranslateRequest, TranslateResponse
from .config import Config
from .directions import TranslationDirection
from .service import TranslationService

__all__ = [
    "Commands",
    "Config",
    "ModelStatusResponse",
    "TranslateRequest",
    "TranslateResponse",
    "TranslationDirection",
    "TranslationService",
    "__version__",
]
