from __future__ import annotations

import datetime as dt
import os


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return False


def parse_int(value: object, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def join_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    path = path.lstrip("/")
    if not path:
        return base
    return f"{base}/{path}"


def rfc822_date(value: dt.datetime) -> str:
    # strftime("%Y") does not pad years below 1000 on every platform
    value = value.replace(tzinfo=dt.timezone.utc)
    return f"{value:%a, %d %b} {value.year:04d} {value:%H:%M:%S %z}"


def iso_date(value: dt.datetime) -> str:
    return f"{value.year:04d}-{value:%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}"


def at_midnight(value: dt.date) -> dt.datetime:
    return dt.datetime.combine(value, dt.time.min, tzinfo=dt.timezone.utc)


def resolve_workers(value: object) -> int:
    workers = parse_int(value, 0)
    if workers <= 0:
        workers = (os.cpu_count() or 1) - 1
    return max(1, min(workers, 32))
