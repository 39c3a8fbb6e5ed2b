"""Shared utilities for container operations."""

import inspect
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged.

    Collaborator callbacks (marker probes, confirmation prompts) may be
    plain functions or coroutines.
    """
    if inspect.isawaitable(value):
        return await value
    return value


def backoff_delays(attempts: int, base_delay: float, factor: float = 1.5) -> Iterator[float]:
    """Yield the wait before each attempt: 0 for the first, then geometric."""
    for attempt in range(attempts):
        yield 0.0 if attempt == 0 else base_delay * (factor ** attempt)


def parse_labels(raw: Any) -> Dict[str, str]:
    """Parse docker labels from either a dict or ``a=b,c=d`` text."""
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    labels: Dict[str, str] = {}
    if not raw:
        return labels
    for item in str(raw).split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            labels[key.strip()] = value.strip()
    return labels


def parse_docker_timestamp(value: Optional[str]) -> datetime:
    """Parse the timestamps docker prints in ``ps`` and ``inspect`` output.

    ``ps`` prints ``2024-05-01 10:00:00 +0000 UTC``; ``inspect`` prints
    RFC 3339 with nanoseconds. Falls back to now when unparseable.
    """
    if not value:
        return datetime.now(timezone.utc)
    text = value.strip()
    try:
        if text[10:11] == "T":
            main, _, rest = text.partition(".")
            if rest:
                end = 0
                while end < len(rest) and rest[end].isdigit():
                    end += 1
                digits, zone = rest[:end], rest[end:] or "Z"
                text = f"{main}.{digits[:6].ljust(6, '0')}{zone}"
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        parts = text.split(" ")
        return datetime.strptime(" ".join(parts[:3]), "%Y-%m-%d %H:%M:%S %z")
    except (ValueError, IndexError):
        return datetime.now(timezone.utc)


def iter_json_lines(output: str) -> Iterator[dict]:
    """Yield one object per ``--format '{{json .}}'`` output line.

    Lines that are not JSON objects are skipped.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            continue
