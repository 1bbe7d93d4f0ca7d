from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

import pytest

from dmmlog.fs9922.decoder import STATUS_BITS, Label, LabelField, PacketDecoder, decode
from dmmlog.fs9922.errors import (
    DecodeError,
    FrameFormatError,
    InvalidDigitError,
    InvalidSignError,
)
from dmmlog.fs9922.frames import Frame

FIXED_TIME = datetime(2021, 5, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_TIME


def build_frame(
    *,
    sign=b"+",
    digits=b"1234",
    point=0x33,
    sb1=0,
    sb2=0,
    sb3=0,
    sb4=0,
    bar=0,
    space=0x20,
    end=b"\r\n",
) -> bytes:
    return sign + digits + bytes([space, point, sb1, sb2, sb3, sb4, bar]) + end


def test_decode_dc_volts_example():
    decoder = PacketDecoder(clock=fixed_clock)
    record = decoder.decode(build_frame(sb1=0b0011_0000, sb4=0b1000_0000))
    assert record.sign == "+"
    assert record.digits == "123.4"
    assert record.mode == (Label.DC,)
    assert record.mode_text == "DC"
    assert record.info_text == "AUTO"
    assert record.unit_text == "V"
    assert record.prefix_text == ""
    assert record.display_text == "123.4 V"
    assert record.si_value == 123.4
    assert record.si_text == "123.4 V"
    assert record.auto_range is True
    assert record.hold is False
    assert record.overflow is False
    assert record.captured_at == FIXED_TIME


@pytest.mark.parametrize(
    "code,expected",
    [
        (0x31, "1.234"),
        (0x32, "12.34"),
        (0x33, "123.4"),
        (0x34, "123.4"),
        (0x30, "1234"),
        (0x00, "1234"),
    ],
)
def test_decimal_point_position(code, expected):
    record = decode(build_frame(point=code), clock=fixed_clock)
    assert record.digits == expected


def test_overflow_ignores_status_bytes():
    frame = build_frame(digits=b"?0:?", point=0x31, sb1=0xFF, sb2=0xFF, sb3=0xFF, sb4=0xFF)
    record = decode(frame, clock=fixed_clock)
    assert record.overflow is True
    assert record.digits == "OVF"
    assert record.si_value is None
    assert record.value is None
    assert record.display_text.startswith("OVF ")
    assert record.si_text.startswith("OVF ")


def test_overflow_display_keeps_unit():
    record = decode(build_frame(digits=b"?0:?", sb3=0b0001_0000, sb4=0b0010_0000), clock=fixed_clock)
    assert record.display_text == "OVF MΩ"
    assert record.si_text == "OVF Ω"


def test_bar_graph_is_not_clamped():
    record = decode(build_frame(bar=75 | 0x80), clock=fixed_clock)
    assert record.bar_graph == 75


def test_bar_graph_uses_low_seven_bits():
    record = decode(build_frame(bar=0xFF), clock=fixed_clock)
    assert record.bar_graph == 127


@pytest.mark.parametrize(
    "kwargs",
    [
        {"space": 0x21},
        {"end": b"\n\r"},
        {"end": b"\r\x00"},
    ],
)
def test_framing_errors(kwargs):
    with pytest.raises(FrameFormatError) as excinfo:
        decode(build_frame(**kwargs), clock=fixed_clock)
    assert excinfo.value.code == -1


def test_framing_checked_before_sign():
    with pytest.raises(FrameFormatError):
        decode(build_frame(sign=b"x", space=0x21), clock=fixed_clock)


def test_invalid_sign():
    with pytest.raises(InvalidSignError) as excinfo:
        decode(build_frame(sign=b" "), clock=fixed_clock)
    assert excinfo.value.code == -2
    assert isinstance(excinfo.value, DecodeError)


@pytest.mark.parametrize("digits", [b"12a4", b"?0:0", b"    ", b"1.23"])
def test_invalid_digits(digits):
    with pytest.raises(InvalidDigitError) as excinfo:
        decode(build_frame(digits=digits), clock=fixed_clock)
    assert excinfo.value.code == -3
    assert excinfo.value.frame == build_frame(digits=digits)


def test_wrong_length_is_frame_format_error():
    with pytest.raises(FrameFormatError):
        decode(build_frame() + b"\x00", clock=fixed_clock)


def test_clock_not_read_for_rejected_frames():
    calls = []

    def clock():
        calls.append(1)
        return FIXED_TIME

    with pytest.raises(InvalidSignError):
        PacketDecoder(clock=clock).decode(build_frame(sign=b"*"))
    assert calls == []


def test_decode_is_deterministic():
    decoder = PacketDecoder(clock=fixed_clock)
    frame = build_frame(sign=b"-", point=0x32, sb1=0x3F, sb2=0x24, sb3=0x40, sb4=0x40, bar=33)
    assert decoder.decode(frame) == decoder.decode(frame)


def test_accepts_frame_objects():
    record = decode(Frame(build_frame(sb4=0x80)), clock=fixed_clock)
    assert record.display_text == "123.4 V"


@pytest.mark.parametrize("entry", STATUS_BITS, ids=lambda e: f"SB{e.byte}.{e.bit}")
def test_each_status_bit_maps_to_one_label(entry):
    status = [0, 0, 0, 0]
    status[entry.byte - 1] = 1 << entry.bit
    record = decode(
        build_frame(sb1=status[0], sb2=status[1], sb3=status[2], sb4=status[3]),
        clock=fixed_clock,
    )
    fields = {
        LabelField.MODE: record.mode,
        LabelField.PREFIX: record.prefix,
        LabelField.UNIT: record.unit,
        LabelField.INFO: record.info,
    }
    for target, labels in fields.items():
        if target is entry.target:
            assert labels == (entry.label,)
        else:
            assert labels == ()
    if entry.flag:
        assert getattr(record, entry.flag) is True


def test_bar_graph_shown_bit_has_no_label():
    record = decode(build_frame(sb1=0b0000_0001), clock=fixed_clock)
    assert record.bar_graph_shown is True
    assert record.info == () and record.mode == ()


def test_labels_ordered_by_status_byte_then_msb():
    record = decode(
        build_frame(sb1=0b0010_0110, sb2=0b1010_0100, sb3=0b0000_0100),
        clock=fixed_clock,
    )
    assert record.mode == (Label.REL, Label.HOLD)
    assert record.info == (Label.AUTO, Label.DIODE, Label.MAX, Label.BAT, Label.DIODE)
    assert record.info_text == "AUTO Diode MAX Bat Diode"
    assert record.delta and record.hold and record.battery_warning


def test_conflicting_units_are_concatenated():
    record = decode(build_frame(sb4=0b1100_0000), clock=fixed_clock)
    assert record.unit_text == "V A"
    assert record.display_text == "123.4 V A"


def test_conflicting_prefixes_use_unit_multiplier():
    record = decode(build_frame(sb3=0b1100_0000, sb4=0x80), clock=fixed_clock)
    assert record.prefix_text == "µ m"
    assert record.si_value == 123.4


def test_milli_amperes():
    record = decode(build_frame(point=0x32, sb3=0b0100_0000, sb4=0b0100_0000), clock=fixed_clock)
    assert record.display_text == "12.34 mA"
    assert record.full_unit == "mA"
    assert record.si_value == pytest.approx(0.01234)
    assert record.si_text == "0.01234 A"


def test_micro_farads():
    record = decode(build_frame(sb3=0b1000_0000, sb4=0b0000_0100), clock=fixed_clock)
    assert record.si_value == pytest.approx(123.4e-6)
    assert record.si_text == "0.0001234 F"


def test_nano_farads_keep_resolution():
    record = decode(build_frame(point=0x32, sb2=0b0000_0010, sb4=0b0000_0100), clock=fixed_clock)
    assert record.display_text == "12.34 nF"
    assert record.si_text == "0.00000001234 F"


def test_kilo_ohms():
    record = decode(build_frame(point=0x31, sb3=0b0010_0000, sb4=0b0010_0000), clock=fixed_clock)
    assert record.display_text == "1.234 kΩ"
    assert record.si_value == pytest.approx(1234.0)
    assert record.si_text == "1234.0 Ω"


def test_legacy_kilo_multiplier_is_opt_in():
    decoder = PacketDecoder(clock=fixed_clock, legacy_kilo_multiplier=True)
    record = decoder.decode(build_frame(point=0x31, sb3=0b0010_0000, sb4=0b0010_0000))
    assert record.si_value == pytest.approx(1.234e6)


@pytest.mark.parametrize("sb3", [0b0001_0000, 0b0000_0010])
def test_unlisted_prefixes_scale_by_one(sb3):
    record = decode(build_frame(point=0x31, sb3=sb3), clock=fixed_clock)
    assert record.si_value == pytest.approx(1.234)


def test_negative_value_strips_leading_zeros():
    record = decode(build_frame(sign=b"-", digits=b"0012", point=0x30, sb4=0x80), clock=fixed_clock)
    assert record.display_text == "-12 V"
    assert record.si_value == -12.0
    assert record.si_text == "-12.0 V"
    assert record.value == -12.0


def test_leading_zero_kept_before_point():
    record = decode(build_frame(digits=b"0012", point=0x31, sb4=0x80), clock=fixed_clock)
    assert record.digits == "0.012"
    assert record.display_text == "0.012 V"


def test_all_zero_display_keeps_one_digit():
    record = decode(build_frame(sign=b"-", digits=b"0000", point=0x30, sb4=0x80), clock=fixed_clock)
    assert record.display_text == "-0 V"
    assert record.si_value == 0.0
    assert record.si_text == "0.0 V"


def test_record_is_immutable():
    record = decode(build_frame(), clock=fixed_clock)
    with pytest.raises(dataclasses.FrozenInstanceError):
        record.digits = "9999"  # type: ignore[misc]


def test_to_dict_is_flat():
    record = decode(build_frame(sb1=0b0001_0000, sb4=0x80, bar=12), clock=fixed_clock)
    data = record.to_dict()
    assert data["captured_at"] == FIXED_TIME.isoformat()
    assert data["mode"] == "DC"
    assert data["unit"] == "V"
    assert data["bar_graph"] == 12
    assert data["si_value"] == 123.4
    assert data["display_text"] == "123.4 V"
