from __future__ import annotations

import logging
import os
import select
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Iterator, Optional

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - handled when a device is opened
    serial = None  # type: ignore[assignment]

from .errors import EndOfStream, ReadError

FRAME_LEN = 14
DEFAULT_IDLE_TIMEOUT = 0.1


@dataclass(frozen=True)
class Frame:
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != FRAME_LEN:
            raise ValueError(f"Frame must be {FRAME_LEN} bytes, got {len(self.data)}")

    def __bytes__(self) -> bytes:
        return self.data



class SerialByteSource:
    """
    Byte source backed by a pyserial handle. A read that returns nothing
    within the timeout is reported as an idle gap, never as end of stream.

    The meter pauses between frames, so on a live port a frame is only
    accepted once the gap that follows it has been seen.
    """

    gap_delimited = True

    def __init__(self, handle: Any):
        self.handle = handle

    def read_byte(self, timeout: float) -> Optional[int]:
        serial_error = serial.SerialException if serial is not None else OSError
        try:
            if self.handle.timeout != timeout:
                self.handle.timeout = timeout
            chunk = self.handle.read(1)
        except (serial_error, OSError) as exc:
            raise ReadError(f"Serial read failed: {exc}") from exc
        if not chunk:
            return None
        return chunk[0]

    def close(self) -> None:
        self.handle.close()


class PipeByteSource:
    """
    Timed reads from a pipe, socket or terminal file descriptor, e.g. stdin
    fed by ``socat`` or ``ser2net``.

    Idle gaps are reported so a stream joined mid-frame can resync. The pipe
    may just as well carry a replayed capture without any gaps, so frames are
    still emitted as soon as 14 bytes have arrived.
    """

    gap_delimited = False

    def __init__(self, fd: int, close_fd: bool = False):
        self.fd = fd
        self._close_fd = close_fd

    def read_byte(self, timeout: float) -> Optional[int]:
        try:
            readable, _, _ = select.select([self.fd], [], [], timeout)
            if not readable:
                return None
            chunk = os.read(self.fd, 1)
        except OSError as exc:
            raise ReadError(f"Pipe read failed: {exc}") from exc
        if not chunk:
            raise EndOfStream()
        return chunk[0]

    def close(self) -> None:
        if self._close_fd:
            os.close(self.fd)


class CaptureReplaySource:
    """Replays a recorded byte stream; exhaustion ends sampling cleanly."""

    gap_delimited = False

    def __init__(self, handle: BinaryIO, close_handle: bool = True):
        self.handle = handle
        self._close_handle = close_handle

    def read_byte(self, timeout: float) -> Optional[int]:
        try:
            chunk = self.handle.read(1)
        except OSError as exc:
            raise ReadError(f"Capture read failed: {exc}") from exc
        if not chunk:
            raise EndOfStream()
        return chunk[0]

    def close(self) -> None:
        if self._close_handle:
            self.handle.close()


class FrameSynchronizer:
    """
    Splits a markerless byte stream into 14-byte frames.

    The FS9922 protocol has no start marker, so frame boundaries are inferred
    from idle gaps: whenever no byte arrives within ``idle_timeout`` seconds,
    any partially accumulated bytes are dropped and accumulation restarts.

    Sources with ``gap_delimited = True`` only yield a frame when exactly 14
    bytes sit between two gaps (or a gap and the end of the stream); longer
    bursts are dropped whole. Other sources yield a frame as soon as the
    14th byte arrives, which keeps gapless capture replays working.
    """

    def __init__(self, source: Any, idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self.source = source
        self.idle_timeout = idle_timeout
        self.gap_delimited = bool(getattr(source, "gap_delimited", False))
        self._buffer = bytearray()
        self._overrun = 0
        self._stats: Dict[str, int] = {"frames": 0, "resyncs": 0, "discarded_bytes": 0}
        self._log = logging.getLogger(__name__)

    def next_frame(self) -> Frame:
        while True:
            try:
                value = self.source.read_byte(self.idle_timeout)
            except EndOfStream:
                if self._complete():
                    return self._emit()
                if self._pending():
                    self._log.debug("End of stream, dropping %d partial bytes", self._pending())
                    self._discard()
                raise
            if value is None:
                if self._complete():
                    return self._emit()
                if self._pending():
                    self._stats["resyncs"] += 1
                    self._log.debug("Idle gap, discarding %d bytes", self._pending())
                    self._discard()
                continue
            if len(self._buffer) == FRAME_LEN:
                self._overrun += 1
                continue
            self._buffer.append(value)
            if len(self._buffer) == FRAME_LEN and not self.gap_delimited:
                return self._emit()

    def iter_frames(self) -> Iterator[Frame]:
        while True:
            try:
                yield self.next_frame()
            except EndOfStream:
                return

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def _pending(self) -> int:
        return len(self._buffer) + self._overrun

    def _complete(self) -> bool:
        return len(self._buffer) == FRAME_LEN and not self._overrun

    def _emit(self) -> Frame:
        frame = Frame(bytes(self._buffer))
        self._buffer.clear()
        self._stats["frames"] += 1
        return frame

    def _discard(self) -> None:
        self._stats["discarded_bytes"] += self._pending()
        self._buffer.clear()
        self._overrun = 0
