"""
Conversions between compose notation and Engine API units.
"""
import re
from datetime import timedelta
from typing import Union

_BYTE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024 ** 2,
    "mb": 1024 ** 2,
    "g": 1024 ** 3,
    "gb": 1024 ** 3,
    "t": 1024 ** 4,
    "tb": 1024 ** 4,
}

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_bytes(value: Union[str, int]) -> int:
    """
    Parses a memory size such as '512m' or '1g' into bytes.

    :raises ValueError: If the value is not a size.
    """
    if isinstance(value, int):
        return value
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*", str(value))
    if not match or match.group(2).lower() not in _BYTE_UNITS:
        raise ValueError(f"Invalid memory size: {value!r}")
    return int(float(match.group(1)) * _BYTE_UNITS[match.group(2).lower()])


def parse_duration(value: Union[str, int, float]) -> int:
    """
    Parses a compose duration ('30s', '1m30s', '500ms') into nanoseconds.
    Bare numbers are seconds.

    :raises ValueError: If the value is not a duration.
    """
    if isinstance(value, (int, float)):
        return int(value * 1_000_000_000)
    text = str(value).strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return int(float(text) * 1_000_000_000)
    if not text or _DURATION_PART.sub("", text):
        raise ValueError(f"Invalid duration: {value!r}")
    total = 0
    for amount, unit in _DURATION_PART.findall(text):
        total += int(float(amount) * _DURATION_UNITS[unit])
    return total


def format_duration(value: Union[str, int, float, timedelta]) -> str:
    """
    Renders seconds or a timedelta as a compose duration string ('1m30s').
    Strings are returned unchanged.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    else:
        seconds = float(value)
    if seconds < 0:
        raise ValueError(f"Duration cannot be negative: {value!r}")

    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)

    out = ""
    if hours:
        out += f"{hours}h"
    if minutes:
        out += f"{minutes}m"
    if secs:
        out += f"{secs}s"
    if millis:
        out += f"{millis}ms"
    return out or "0s"
