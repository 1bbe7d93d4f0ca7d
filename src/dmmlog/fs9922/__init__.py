"""
Decoder for the serial telemetry of FS9922-DMM4 based multimeters.

The subpackage exposes the frame synchronizer, the packet decoder, the
measurement record model and the sampling loop used by the CLI.
"""

from .config import DmmConfig, load_config
from .decoder import Label, MeasurementRecord, PacketDecoder, decode
from .errors import (
    DecodeError,
    DmmError,
    EndOfStream,
    FrameFormatError,
    InvalidDigitError,
    InvalidSignError,
    ReadError,
)
from .frames import CaptureReplaySource, Frame, FrameSynchronizer, PipeByteSource, SerialByteSource
from .render import render
from .runner import Sampler, open_source

__all__ = [
    "DmmConfig",
    "load_config",
    "Label",
    "MeasurementRecord",
    "PacketDecoder",
    "decode",
    "DecodeError",
    "DmmError",
    "EndOfStream",
    "FrameFormatError",
    "InvalidDigitError",
    "InvalidSignError",
    "ReadError",
    "CaptureReplaySource",
    "Frame",
    "FrameSynchronizer",
    "PipeByteSource",
    "SerialByteSource",
    "render",
    "Sampler",
    "open_source",
]
