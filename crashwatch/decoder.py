from __future__ import annotations

import json
from typing import Optional, Union

from .events import CrashEvent, now_ms
from .exceptions import ParseError

__all__ = ["decode_crash_message", "normalize_feed_url"]


def normalize_feed_url(url: str) -> str:
    """Rewrite ``http(s)://`` feed addresses to their ``ws(s)://`` form."""

    cleaned = url.strip()
    if cleaned.startswith("https:"):
        return "wss:" + cleaned[len("https:"):]
    if cleaned.startswith("http:"):
        return "ws:" + cleaned[len("http:"):]
    return cleaned


def decode_crash_message(raw: Union[str, bytes]) -> Optional[CrashEvent]:
    """Return a :class:`CrashEvent` from a feed message or ``None``.

    Only objects with ``"type": "crash"`` and a ``multiplier`` field are crash
    records; anything else that is valid JSON is ignored. Raises
    :class:`ParseError` for undecodable payloads and for crash records whose
    fields are unusable.

    Example
    -------
    >>> decode_crash_message('{"type":"crash","multiplier":2.5,"timestamp":1,"gameId":"g1"}')
    CrashEvent(multiplier=2.5, timestamp=1, game_id='g1')
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"payload is not UTF-8: {exc}") from exc
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(str(exc)) from exc

    if not isinstance(msg, dict) or msg.get("type") != "crash":
        return None
    if not msg.get("multiplier"):
        return None

    record = dict(msg)
    if record.get("timestamp") in (None, 0):
        record["timestamp"] = now_ms()
    try:
        return CrashEvent.from_dict(record)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc
