"""
FS9922-DMM4 packet decoder.

A frame is 14 bytes::

    0      sign ('+' or '-')
    1..4   display digits, or '?0:?' on overflow
    5      space
    6      decimal point position code
    7..10  status bytes SB1..SB4 (bit flags)
    11     bar graph value (low 7 bits) and bar graph sign (bit 7)
    12..13 CR LF
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from .errors import FrameFormatError, InvalidDigitError, InvalidSignError
from .frames import FRAME_LEN, Frame

Clock = Callable[[], datetime]

OVERFLOW_DIGITS = b"?0:?"
OVERFLOW_TEXT = "OVF"
STATUS_OFFSET = 7
BAR_GRAPH_MASK = 0x7F

# byte6 code -> number of digits before the decimal point.
# 0x33 and 0x34 share a position; the datasheet does not tell them apart.
DECIMAL_POINT_POSITIONS = {0x31: 1, 0x32: 2, 0x33: 3, 0x34: 3}


class Label(str, enum.Enum):
    AUTO = "AUTO"
    DC = "DC"
    AC = "AC"
    REL = "REL"
    HOLD = "HOLD"
    DIODE = "Diode"
    Z2 = "Z2"
    MAX = "MAX"
    MIN = "MIN"
    APO = "APO"
    BAT = "Bat"
    NANO = "n"
    Z3 = "Z3"
    MICRO = "µ"
    MILLI = "m"
    KILO = "k"
    MEGA = "M"
    BEEP = "Beep"
    PERCENT = "%"
    Z4 = "Z4"
    VOLT = "V"
    AMPERE = "A"
    OHM = "Ω"
    HFE = "hFE"
    HERTZ = "Hz"
    FARAD = "F"
    CELSIUS = "°C"
    FAHRENHEIT = "°F"

    def __str__(self) -> str:
        return self.value


class LabelField(str, enum.Enum):
    MODE = "mode"
    PREFIX = "prefix"
    UNIT = "unit"
    INFO = "info"


class StatusBit(NamedTuple):
    byte: int
    bit: int
    label: Optional[Label]
    target: Optional[LabelField]
    flag: Optional[str] = None


STATUS_BITS: Tuple[StatusBit, ...] = (
    StatusBit(1, 5, Label.AUTO, LabelField.INFO, "auto_range"),
    StatusBit(1, 4, Label.DC, LabelField.MODE),
    StatusBit(1, 3, Label.AC, LabelField.MODE),
    StatusBit(1, 2, Label.REL, LabelField.MODE, "delta"),
    StatusBit(1, 1, Label.HOLD, LabelField.MODE, "hold"),
    StatusBit(1, 0, None, None, "bar_graph_shown"),
    StatusBit(2, 7, Label.DIODE, LabelField.INFO),
    StatusBit(2, 6, Label.Z2, LabelField.INFO),
    StatusBit(2, 5, Label.MAX, LabelField.INFO),
    StatusBit(2, 4, Label.MIN, LabelField.INFO),
    StatusBit(2, 3, Label.APO, LabelField.INFO),
    StatusBit(2, 2, Label.BAT, LabelField.INFO, "battery_warning"),
    StatusBit(2, 1, Label.NANO, LabelField.PREFIX),
    StatusBit(2, 0, Label.Z3, LabelField.INFO),
    StatusBit(3, 7, Label.MICRO, LabelField.PREFIX),
    StatusBit(3, 6, Label.MILLI, LabelField.PREFIX),
    StatusBit(3, 5, Label.KILO, LabelField.PREFIX),
    StatusBit(3, 4, Label.MEGA, LabelField.PREFIX),
    StatusBit(3, 3, Label.BEEP, LabelField.INFO),
    StatusBit(3, 2, Label.DIODE, LabelField.INFO),
    StatusBit(3, 1, Label.PERCENT, LabelField.PREFIX),
    StatusBit(3, 0, Label.Z4, LabelField.INFO),
    StatusBit(4, 7, Label.VOLT, LabelField.UNIT),
    StatusBit(4, 6, Label.AMPERE, LabelField.UNIT),
    StatusBit(4, 5, Label.OHM, LabelField.UNIT),
    StatusBit(4, 4, Label.HFE, LabelField.UNIT),
    StatusBit(4, 3, Label.HERTZ, LabelField.UNIT),
    StatusBit(4, 2, Label.FARAD, LabelField.UNIT),
    StatusBit(4, 1, Label.CELSIUS, LabelField.UNIT),
    StatusBit(4, 0, Label.FAHRENHEIT, LabelField.UNIT),
)

SI_MULTIPLIERS: Dict[str, float] = {
    "": 1.0,
    "n": 1e-9,
    "µ": 1e-6,
    "m": 1e-3,
    "k": 1e3,
}
# Older firmware tooling scaled 'k' by 1e6. Unverified against hardware, so it
# is only applied on request.
LEGACY_KILO_MULTIPLIER = 1e6

SI_DECIMALS = 12


def _join(labels: Tuple[Label, ...]) -> str:
    return " ".join(label.value for label in labels)


@dataclass(frozen=True)
class MeasurementRecord:
    captured_at: datetime
    digits: str
    sign: str
    mode: Tuple[Label, ...] = ()
    unit: Tuple[Label, ...] = ()
    prefix: Tuple[Label, ...] = ()
    info: Tuple[Label, ...] = ()
    bar_graph: int = 0
    bar_graph_shown: bool = False
    battery_warning: bool = False
    auto_range: bool = False
    hold: bool = False
    delta: bool = False
    overflow: bool = False
    si_value: Optional[float] = None
    display_text: str = field(init=False)
    si_text: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "display_text", format_display(self.sign, self.digits, self.prefix_text, self.unit_text))
        object.__setattr__(self, "si_text", format_si(self.si_value, self.unit_text))

    @property
    def mode_text(self) -> str:
        return _join(self.mode)

    @property
    def unit_text(self) -> str:
        return _join(self.unit)

    @property
    def prefix_text(self) -> str:
        return _join(self.prefix)

    @property
    def info_text(self) -> str:
        return _join(self.info)

    @property
    def full_unit(self) -> str:
        return self.prefix_text + self.unit_text

    @property
    def value(self) -> Optional[float]:
        """Signed display value in the displayed (prefixed) unit."""
        if self.overflow:
            return None
        magnitude = float(self.digits)
        return -magnitude if self.sign == "-" else magnitude

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured_at": self.captured_at.isoformat(timespec="microseconds"),
            "sign": self.sign,
            "digits": self.digits,
            "mode": self.mode_text,
            "unit": self.unit_text,
            "prefix": self.prefix_text,
            "full_unit": self.full_unit,
            "info": self.info_text,
            "bar_graph": self.bar_graph,
            "bar_graph_shown": self.bar_graph_shown,
            "battery_warning": self.battery_warning,
            "auto_range": self.auto_range,
            "hold": self.hold,
            "delta": self.delta,
            "overflow": self.overflow,
            "si_value": self.si_value,
            "display_text": self.display_text,
            "si_text": self.si_text,
        }


def format_display(sign: str, digits: str, prefix: str, unit: str) -> str:
    """Display digits without leading zeros, keeping one before the point."""
    stripped = digits.lstrip("0")
    if not stripped or stripped.startswith("."):
        stripped = "0" + stripped
    text = f"-{stripped}" if sign == "-" else stripped
    return f"{text} {prefix}{unit}"


def format_si(si_value: Optional[float], unit: str) -> str:
    if si_value is None:
        return f"{OVERFLOW_TEXT} {unit}"
    text = f"{si_value:.{SI_DECIMALS}f}"
    return f"{trim_zeros(text)} {unit}"


def trim_zeros(text: str) -> str:
    """Drop trailing fractional zeros but keep one digit after the point."""
    if "." not in text:
        return text
    head, _, tail = text.partition(".")
    tail = tail.rstrip("0") or "0"
    return f"{head}.{tail}"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _status_byte(data: bytes, number: int) -> int:
    return data[STATUS_OFFSET + number - 1]


class PacketDecoder:
    """
    Validate and interpret one FS9922 frame.

    Decoding is all-or-nothing: a ``DecodeError`` subclass is raised before any
    record is built. ``clock`` supplies ``captured_at`` and may be replaced in
    tests.
    """

    def __init__(self, clock: Optional[Clock] = None, legacy_kilo_multiplier: bool = False):
        self.clock = clock or _local_now
        self.legacy_kilo_multiplier = legacy_kilo_multiplier

    def decode(self, frame: Union[Frame, bytes]) -> MeasurementRecord:
        data = bytes(frame)
        if len(data) != FRAME_LEN:
            raise FrameFormatError(f"Frame must be {FRAME_LEN} bytes, got {len(data)}", data)
        if data[5] != 0x20 or data[12] != 0x0D or data[13] != 0x0A:
            raise FrameFormatError("Missing space separator or CRLF terminator", data)

        if data[0] == 0x2B:
            sign = "+"
        elif data[0] == 0x2D:
            sign = "-"
        else:
            raise InvalidSignError(f"Invalid sign byte 0x{data[0]:02X}", data)

        overflow = data[1:5] == OVERFLOW_DIGITS
        if overflow:
            digits = OVERFLOW_TEXT
        else:
            raw = data[1:5]
            if not all(0x30 <= value <= 0x39 for value in raw):
                raise InvalidDigitError(f"Invalid digit bytes {raw.hex(' ')}", data)
            digits = raw.decode("ascii")
            position = DECIMAL_POINT_POSITIONS.get(data[6])
            if position is not None:
                digits = digits[:position] + "." + digits[position:]

        fields: Dict[LabelField, List[Label]] = {target: [] for target in LabelField}
        flags = {
            "auto_range": False,
            "delta": False,
            "hold": False,
            "bar_graph_shown": False,
            "battery_warning": False,
        }
        for entry in STATUS_BITS:
            if not _status_byte(data, entry.byte) & (1 << entry.bit):
                continue
            if entry.label is not None and entry.target is not None:
                fields[entry.target].append(entry.label)
            if entry.flag:
                flags[entry.flag] = True

        prefix = tuple(fields[LabelField.PREFIX])
        si_value = None
        if not overflow:
            si_value = float(digits) * self.multiplier(_join(prefix))
            if sign == "-":
                si_value = -si_value
            if si_value == 0:
                si_value = 0.0

        return MeasurementRecord(
            captured_at=self.clock(),
            digits=digits,
            sign=sign,
            mode=tuple(fields[LabelField.MODE]),
            unit=tuple(fields[LabelField.UNIT]),
            prefix=prefix,
            info=tuple(fields[LabelField.INFO]),
            bar_graph=data[11] & BAR_GRAPH_MASK,
            overflow=overflow,
            si_value=si_value,
            **flags,
        )

    def multiplier(self, prefix: str) -> float:
        if prefix == "k" and self.legacy_kilo_multiplier:
            return LEGACY_KILO_MULTIPLIER
        return SI_MULTIPLIERS.get(prefix, 1.0)


_default_decoder = PacketDecoder()


def decode(frame: Union[Frame, bytes], clock: Optional[Clock] = None) -> MeasurementRecord:
    if clock is None:
        return _default_decoder.decode(frame)
    return PacketDecoder(clock=clock).decode(frame)
