"""Commands exposed to the host application.

Each command maps to one operation of the translation service and turns
its results and failures into the shapes the host expects. ``translate``
never raises; the model commands raise ``CommandError`` with a message that
can be shown to the user as is.
"""

from dataclasses import asdict, dataclass

from . import log
from .directions import TranslationDirection
from .errors import CommandError, InvalidDirectionError
from .models import ModelStatus, ProgressCallback
from .service import TranslationService

logger = log.get_logger("commands")


@dataclass
class TranslateRequest:
    text: str
    direction: str  # "en-ja" or "ja-en"


@dataclass
class TranslateResponse:
    success: bool
    translation: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, translation: str) -> "TranslateResponse":
        return cls(success=True, translation=translation)

    @classmethod
    def failed(cls, error: str) -> "TranslateResponse":
        return cls(success=False, error=error)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ModelStatusResponse:
    loaded: bool
    downloaded: bool = False
    status: str = ModelStatus.NOT_INSTALLED.value  # download status, see ModelStatus
    last_error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class Commands:
    """Host-facing command surface of a TranslationService."""

    def __init__(self, service: TranslationService):
        self._service = service

    async def translate(self, request: TranslateRequest) -> TranslateResponse:
        """Translate a request, reporting every failure in the response.

        The text is trimmed first; blank text translates to an empty string
        without touching the model.
        """
        try:
            direction = TranslationDirection.from_token(request.direction)
        except InvalidDirectionError as e:
            return TranslateResponse.failed(str(e))

        text = request.text.strip()
        if not text:
            return TranslateResponse.ok("")

        try:
            translation = await self._service.translate(text, direction)
        except Exception as e:
            logger.error("translation failed", direction=direction.value, error=str(e))
            return TranslateResponse.failed(f"Translation failed: {e}")

        return TranslateResponse.ok(translation)

    async def get_model_status(self) -> ModelStatusResponse:
        fetcher = self._service.fetcher
        return ModelStatusResponse(
            loaded=await self._service.is_model_loaded(),
            downloaded=fetcher.is_downloaded(),
            status=fetcher.status.value,
            last_error=fetcher.last_error,
        )

    async def ensure_model_downloaded(self, progress_callback: ProgressCallback | None = None) -> bool:
        """Download the model if needed.

        Raises:
            CommandError: If the download failed.
        """
        try:
            await self._service.ensure_model_downloaded(progress_callback)
        except Exception as e:
            raise CommandError(f"Failed to download model: {e}") from e
        return True

    async def initialize_model(self) -> bool:
        """Download and load the model if needed.

        Raises:
            CommandError: If the model could not be downloaded or loaded.
        """
        try:
            await self._service.ensure_model_loaded()
        except Exception as e:
            raise CommandError(f"Failed to initialize model: {e}") from e
        return True

    @staticmethod
    def get_supported_languages() -> list[str]:
        return TranslationService.supported_directions()
