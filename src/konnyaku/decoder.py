"""Incremental UTF-8 decoding of generated token bytes.

A token's bytes can end in the middle of a multi-byte character (common with
Japanese output), so bytes are buffered until the character is complete
instead of being decoded token by token.
"""

import codecs

from . import log

logger = log.get_logger("decoder")


class Utf8StreamDecoder:
    """Stateful UTF-8 decoder fed one token's bytes at a time.

    State is the buffer of bytes belonging to an incomplete character.
    ``feed`` returns every character completed by the new bytes and keeps the
    remainder pending. Malformed sequences are replaced with U+FFFD.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> bytes:
        """Bytes of a character that is not complete yet."""
        buffered, _ = self._decoder.getstate()
        return buffered

    def feed(self, data: bytes) -> str:
        return self._decoder.decode(data, final=False)

    def finish(self) -> bytes:
        """End the stream and reset the decoder.

        Bytes of a trailing incomplete character are dropped rather than
        rendered as a replacement character.

        Returns:
            The dropped bytes, empty if the stream ended on a boundary.
        """
        dropped = self.pending
        if dropped:
            logger.debug("dropping incomplete character", n_bytes=len(dropped))
        self._decoder.reset()
        return dropped
