from __future__ import annotations

import dataclasses
import datetime
import enum
import json
from typing import Any


def to_json(obj: Any, *, indent: int | None = None) -> str:
    """Return a JSON string ensuring dataclasses, enums and datetimes are
    encoded as plain objects / values / ISO-8601 strings.

    Compact separators are used unless *indent* is given.

    >>> to_json({"exportTime": datetime.datetime(2025, 7, 8, tzinfo=datetime.timezone.utc)})
    '{"exportTime":"2025-07-08T00:00:00Z"}'
    """

    def _encoder(o: Any) -> Any:  # noqa: D401
        if dataclasses.is_dataclass(o) and not isinstance(o, type):
            return dataclasses.asdict(o)
        if isinstance(o, enum.Enum):
            return o.value
        if isinstance(o, datetime.datetime):
            o = o.astimezone(datetime.timezone.utc)
            return o.isoformat().replace("+00:00", "Z")
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serialisable")

    if indent is None:
        return json.dumps(obj, default=_encoder, separators=(",", ":"))
    return json.dumps(obj, default=_encoder, indent=indent)
