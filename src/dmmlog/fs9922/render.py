"""Text renderers for decoded measurement records."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Union

from .decoder import MeasurementRecord
from .frames import Frame


def format_timestamp(moment: datetime, time_format: str) -> str:
    fmt = time_format.lower()
    if fmt == "none":
        return ""
    if fmt == "iso":
        return moment.isoformat(timespec="microseconds")
    if fmt == "local":
        return moment.strftime("%Y-%m-%d %H:%M:%S")
    if fmt == "human":
        return f"{moment.strftime('%H:%M:%S')}.{moment.microsecond // 1000:03d}"
    if fmt == "epochsecms":
        return f"{moment.timestamp():.6f}"
    raise ValueError(f"Unknown time format '{time_format}'")


def _fields(record: MeasurementRecord, time_text: str) -> Dict[str, Any]:
    data = record.to_dict()
    if time_text:
        items = list(data.items())
        items.insert(1, ("captured_at_formatted", time_text))
        data = dict(items)
    return data


def render_human(record: MeasurementRecord, time_text: str = "") -> str:
    lead = f"{time_text}\t\t" if time_text else ""
    return f"{lead}{record.display_text}\t\t{record.mode_text}\t{record.info_text}"


def render_si(record: MeasurementRecord, time_text: str = "") -> str:
    lead = f"{time_text}\t\t" if time_text else ""
    return f"{lead}{record.si_text}\t\t{record.mode_text}\t{record.info_text}"


def render_json(record: MeasurementRecord, time_text: str = "") -> str:
    return json.dumps(_fields(record, time_text), indent=2, ensure_ascii=False)


def render_keyvalue(record: MeasurementRecord, time_text: str = "") -> str:
    lines: List[str] = []
    for key, value in _fields(record, time_text).items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif value is None:
            value = ""
        lines.append(f"{key}={value}")
    return "\n".join(lines)


RENDERERS = {
    "human": render_human,
    "si": render_si,
    "json": render_json,
    "keyvalue": render_keyvalue,
}


def render(record: MeasurementRecord, output_format: str = "human", time_format: str = "none") -> str:
    try:
        renderer = RENDERERS[output_format.lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown output format '{output_format}'") from exc
    return renderer(record, format_timestamp(record.captured_at, time_format))


def format_frame(frame: Union[Frame, bytes]) -> str:
    """Four-row dump of a raw frame: index, binary, hex and printable view."""
    data = bytes(frame)
    rows = [
        " ".join(f"{index:^8}" for index in range(len(data))),
        " ".join(f"{value:08b}" for value in data),
        " ".join(f"{value:^8}" for value in (f"{b:02x}" for b in data)),
        " ".join(f"{chr(b) if chr(b).isalnum() else '?':^8}" for b in data),
    ]
    return "\n".join(rows)
