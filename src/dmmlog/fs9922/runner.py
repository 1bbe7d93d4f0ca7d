from __future__ import annotations

import logging
import os
import stat
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - handled in open_serial
    serial = None  # type: ignore[assignment]

from .config import DmmConfig, SerialConfig
from .decoder import MeasurementRecord, PacketDecoder
from .errors import DecodeError, EndOfStream, ReadError
from .frames import CaptureReplaySource, Frame, FrameSynchronizer, PipeByteSource, SerialByteSource

logger = logging.getLogger(__name__)

STDIN_DEVICE = "-"


def open_serial(port: str, config: SerialConfig, timeout: float):
    if serial is None:
        raise ImportError("pyserial is required to read from a serial device")
    try:
        handle = serial.Serial(
            port=port,
            baudrate=config.baudrate,
            bytesize=config.bytesize,
            parity=config.parity,
            stopbits=config.stopbits,
            timeout=timeout,
            exclusive=config.exclusive,
        )
        handle.dtr = config.dtr
        handle.rts = config.rts
        handle.reset_input_buffer()
    except (serial.SerialException, OSError) as exc:
        raise ReadError(f"Cannot open {port}: {exc}") from exc
    logger.info("Connected to %s (%d baud)", port, config.baudrate)
    return handle


def _is_capture_file(device: str) -> bool:
    try:
        mode = Path(device).stat().st_mode
    except OSError:
        return False
    return stat.S_ISREG(mode)


def _stdin_source():
    stream = sys.stdin.buffer
    try:
        fd = stream.fileno()
        mode = os.fstat(fd).st_mode
    except (AttributeError, OSError, ValueError):
        # In-memory stdin (tests, embedding) has no descriptor to wait on.
        return CaptureReplaySource(stream, close_handle=False)
    if stat.S_ISREG(mode):
        return CaptureReplaySource(stream, close_handle=False)
    logger.info("Reading live stream from stdin")
    return PipeByteSource(fd)


def open_source(device: str, config: DmmConfig):
    """
    Open ``device`` as a byte source.

    ``-`` reads stdin: a redirected file is replayed, a pipe or terminal is
    read with idle-gap detection. A regular file replays a capture, anything
    else is opened as a serial port.
    """
    if device == STDIN_DEVICE:
        return _stdin_source()
    if _is_capture_file(device):
        try:
            handle = open(device, "rb")
        except OSError as exc:
            raise ReadError(f"Cannot open capture {device}: {exc}") from exc
        logger.info("Replaying capture %s", device)
        return CaptureReplaySource(handle)
    return SerialByteSource(open_serial(device, config.serial, config.sync.idle_timeout))


class Sampler:
    """
    Sequential read/decode loop.

    Each iteration reads one frame and decodes it. Decode failures are logged
    and skipped, ``EndOfStream`` ends the loop and ``ReadError`` propagates.
    ``count`` limits the number of frames read.
    """

    def __init__(
        self,
        synchronizer: FrameSynchronizer,
        decoder: PacketDecoder,
        sink: Callable[[MeasurementRecord], None],
        count: Optional[int] = None,
    ):
        self.synchronizer = synchronizer
        self.decoder = decoder
        self.sink = sink
        self.count = count
        self._stats: Dict[str, int] = {"records": 0, "decode_errors": 0}

    def run(self) -> Dict[str, int]:
        loops = 0
        try:
            while self.count is None or loops < self.count:
                loops += 1
                try:
                    frame = self.synchronizer.next_frame()
                except EndOfStream:
                    logger.debug("End of stream after %d frames", loops - 1)
                    break
                record = self._decode(frame)
                if record is not None:
                    self.sink(record)
        finally:
            stats = self.stats()
            logger.info(
                "Final stats: records=%d decode_errors=%d frames=%d resyncs=%d discarded_bytes=%d",
                stats["records"],
                stats["decode_errors"],
                stats.get("frames", 0),
                stats.get("resyncs", 0),
                stats.get("discarded_bytes", 0),
            )
        return self.stats()

    def _decode(self, frame: Frame) -> Optional[MeasurementRecord]:
        try:
            record = self.decoder.decode(frame)
        except DecodeError as exc:
            self._stats["decode_errors"] += 1
            logger.warning("packet parsing failed with %d: %s", exc.code, exc)
            logger.debug("Rejected frame: %s", bytes(frame).hex(" "))
            return None
        self._stats["records"] += 1
        return record

    def stats(self) -> Dict[str, int]:
        stats = self.synchronizer.stats()
        stats.update(self._stats)
        return stats


def build_sampler(
    source: Any,
    config: DmmConfig,
    sink: Callable[[MeasurementRecord], None],
) -> Sampler:
    synchronizer = FrameSynchronizer(source, idle_timeout=config.sync.idle_timeout)
    decoder = PacketDecoder(legacy_kilo_multiplier=config.decoder.legacy_kilo_multiplier)
    if config.decoder.legacy_kilo_multiplier:
        logger.warning("Using legacy 'k' multiplier of 1e6 for SI values")
    return Sampler(synchronizer, decoder, sink, count=config.count)
