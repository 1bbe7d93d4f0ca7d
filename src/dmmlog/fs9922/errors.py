from __future__ import annotations

from typing import Optional


class DmmError(Exception):
    """Base class for multimeter link failures."""


class ReadError(DmmError):
    """The byte source failed; sampling cannot continue."""


class EndOfStream(Exception):
    """The byte source is exhausted (e.g. a replayed capture reached its end)."""


class DecodeError(DmmError):
    """A frame was rejected by the packet decoder."""

    code = 0

    def __init__(self, message: str, frame: Optional[bytes] = None):
        super().__init__(message)
        self.frame = frame


class FrameFormatError(DecodeError):
    code = -1


class InvalidSignError(DecodeError):
    code = -2


class InvalidDigitError(DecodeError):
    code = -3
