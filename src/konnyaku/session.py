"""Single translation request: prompt prefill followed by greedy generation."""

from enum import Enum
from typing import Callable, TypeVar

from . import log
from .backends import NativeContext, NativeModel
from .config import DEFAULT_CONTEXT_SIZE, DEFAULT_MAX_TOKENS
from .decoder import Utf8StreamDecoder
from .directions import TranslationDirection
from .errors import InferenceError, KonnyakuError, PromptTooLongError

logger = log.get_logger("session")

T = TypeVar("T")


class SessionState(Enum):
    """Lifecycle of a generation session."""

    CREATED = "created"
    PREFILLING = "prefilling"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


class GenerationSession:
    """Translates one text with a fresh inference context.

    The prompt is the direction's system prompt and the source text on the
    next line, tokenized with a BOS token and submitted as one batch. Tokens
    are then sampled greedily and fed back one at a time until an
    end-of-generation token, or until the window (the smaller of
    ``max_tokens`` and ``context_size``) is full.
    """

    def __init__(
        self,
        model: NativeModel,
        direction: TranslationDirection,
        text: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        context_size: int = DEFAULT_CONTEXT_SIZE,
    ):
        self._model = model
        self.direction = direction
        self.text = text
        self._max_tokens = max_tokens
        self._context_size = context_size

        self.state = SessionState.CREATED
        self.prompt_tokens: list[int] = []
        self.tokens: list[int] = []
        self.position = 0

    @property
    def prompt(self) -> str:
        return self.direction.compose_prompt(self.text)

    @property
    def token_limit(self) -> int:
        return min(self._max_tokens, self._context_size)

    def run(self) -> str:
        """Generate the translation (blocking).

        Returns:
            The translated text with surrounding whitespace removed.

        Raises:
            PromptTooLongError: If the prompt does not fit in the window.
            InferenceError: If tokenization or a forward pass fails.
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"Session already ran (state={self.state.value})")

        try:
            self.state = SessionState.PREFILLING
            self.prompt_tokens = self._call("tokenize prompt", self._model.tokenize, self.prompt, True)
            if len(self.prompt_tokens) > self.token_limit:
                raise PromptTooLongError(len(self.prompt_tokens), self.token_limit)
            logger.debug("prompt tokenized", n_tokens=len(self.prompt_tokens))

            with self._call("create context", self._model.new_context) as ctx:
                self._call("decode prompt", ctx.decode, self.prompt_tokens, 0)
                self.position = len(self.prompt_tokens)

                self.state = SessionState.GENERATING
                translation = self._generate(ctx, self.token_limit - len(self.prompt_tokens))
        except KonnyakuError:
            self.state = SessionState.FAILED
            raise
        except Exception as e:
            self.state = SessionState.FAILED
            raise InferenceError(f"Generation failed: {e}") from e

        self.state = SessionState.DONE
        return translation

    def _generate(self, ctx: NativeContext, max_new_tokens: int) -> str:
        decoder = Utf8StreamDecoder()
        pieces = []

        for _ in range(max_new_tokens):
            token = self._call("sample token", ctx.sample_greedy)
            if self._model.is_eog(token):
                break

            self.tokens.append(token)
            data = self._call("convert token to bytes", self._model.token_to_bytes, token)
            pieces.append(decoder.feed(data))

            self._call("decode token", ctx.decode, [token], self.position)
            self.position += 1
        else:
            if max_new_tokens > 0:
                logger.debug("generation truncated", max_new_tokens=max_new_tokens)

        decoder.finish()
        logger.debug("generation finished", n_tokens=len(self.tokens))
        return "".join(pieces).strip()

    @staticmethod
    def _call(action: str, fn: Callable[..., T], *args) -> T:
        try:
            return fn(*args)
        except Exception as e:
            raise InferenceError(f"Failed to {action}: {e}") from e
