from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timedelta, timezone

from crashwatch.connection import ConnectionState
from crashwatch.json_utils import to_json


@dataclasses.dataclass
class Inner:
    ts: datetime


@dataclasses.dataclass
class Wrapper:
    inner: Inner
    state: ConnectionState


def test_to_json_nested_dataclass():
    obj = Wrapper(Inner(datetime(2020, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))), ConnectionState.CONNECTED)
    data = json.loads(to_json(obj))
    assert data["inner"]["ts"] == "2020-01-01T10:00:00Z"
    assert data["state"] == "connected"


def test_to_json_compact_unless_indented():
    assert to_json({"a": 1}) == '{"a":1}'
    assert "\n" in to_json({"a": 1}, indent=2)
