"""Supported translation directions and their system prompts."""

from enum import Enum

from .errors import InvalidDirectionError


class TranslationDirection(Enum):
    """Translation direction, valued by its wire token."""

    ENGLISH_TO_JAPANESE = "en-ja"
    JAPANESE_TO_ENGLISH = "ja-en"

    @property
    def system_prompt(self) -> str:
        """Fixed instruction the model expects before the source text."""
        prompts = {
            TranslationDirection.ENGLISH_TO_JAPANESE: "Translate to Japanese.",
            TranslationDirection.JAPANESE_TO_ENGLISH: "Translate to English.",
        }
        return prompts[self]

    def compose_prompt(self, text: str) -> str:
        return f"{self.system_prompt}\n{text}"

    @classmethod
    def from_token(cls, token: "str | TranslationDirection") -> "TranslationDirection":
        """Parse a wire token such as "en-ja".

        Raises:
            InvalidDirectionError: If the token is not supported.
        """
        if isinstance(token, cls):
            return token
        try:
            return cls(token)
        except ValueError:
            raise InvalidDirectionError(str(token)) from None

    @classmethod
    def supported_tokens(cls) -> list[str]:
        return [direction.value for direction in cls]
