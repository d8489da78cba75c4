r"""Contain the JSON value returned by the controller and the JSON body
builder used to create request payloads.

Paths are dot separated keys, e.g. ``"error.code"`` or
``"data.0.deviceId"``. A numeric segment indexes a list.
"""

from __future__ import annotations

__all__ = ["Body", "Result"]

import json
from dataclasses import dataclass, field
from typing import Any

_MISSING = object()


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.split(".") if segment]


def _lookup(value: Any, path: str) -> Any:
    for segment in _split_path(path):
        if isinstance(value, dict):
            value = value.get(segment, _MISSING)
        elif isinstance(value, list):
            try:
                value = value[int(segment)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
        if value is _MISSING:
            return _MISSING
    return value


@dataclass(frozen=True)
class Result:
    r"""Implement the parsed payload of a controller response.

    Args:
        raw: The response body as received.
        value: The decoded JSON document, or ``None`` if the body is
            empty or is not JSON.

    Example:
        ```pycon
        >>> from sdwanet import Result
        >>> res = Result.from_bytes(b'{"data": [{"deviceId": "1.1.1.1"}]}')
        >>> res.get("data.0.deviceId")
        '1.1.1.1'
        >>> res.get("error.code")

        ```
    """

    raw: bytes = b""
    value: Any = field(default=None, compare=False)

    @classmethod
    def from_bytes(cls, raw: bytes) -> Result:
        try:
            value = json.loads(raw) if raw else None
        except ValueError:
            value = None
        return cls(raw=raw, value=value)

    @property
    def text(self) -> str:
        return self.raw.decode("utf-8", errors="replace")

    def get(self, path: str, default: Any = None) -> Any:
        r"""Return the value at ``path``, or ``default`` if it does not
        exist."""
        value = _lookup(self.value, path)
        return default if value is _MISSING else value

    def exists(self, path: str) -> bool:
        return _lookup(self.value, path) is not _MISSING

    def error_code(self) -> str | None:
        r"""Return the application error code embedded at ``error.code``.

        ``None`` is returned when the code is absent, empty or not a
        string.
        """
        code = self.get("error.code")
        if isinstance(code, str) and code:
            return code
        return None


class Body:
    r"""Implement a chainable builder for JSON request bodies.

    Example:
        ```pycon
        >>> from sdwanet import Body
        >>> Body().set("name", "site-1").set("devices.0.id", 10).to_json()
        '{"name": "site-1", "devices": [{"id": 10}]}'

        ```
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data) if data else {}

    def __repr__(self) -> str:
        return f"{self.__class__.__qualname__}({self._data!r})"

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def set(self, path: str, value: Any) -> Body:
        r"""Set ``value`` at ``path``, creating intermediate containers.

        A numeric segment creates or indexes a list; ``-1`` or an index
        equal to the list length appends a new element.

        Raises:
            ValueError: If the path is empty, uses a key on a list, or
                uses an index past the end of a list.
        """
        segments = _split_path(path)
        if not segments:
            msg = f"Invalid empty path: {path!r}"
            raise ValueError(msg)
        container: Any = self._data
        for segment, next_segment in zip(segments, segments[1:]):
            child = self._child(container, segment)
            if not isinstance(child, (dict, list)):
                child = [] if _is_index(next_segment) else {}
                self._assign(container, segment, child)
            container = child
        self._assign(container, segments[-1], value)
        return self

    def to_json(self) -> str:
        return json.dumps(self._data)

    @staticmethod
    def _child(container: Any, segment: str) -> Any:
        if isinstance(container, dict):
            return container.get(segment)
        if not _is_index(segment):
            msg = f"Cannot use key {segment!r} on a list"
            raise ValueError(msg)
        index = int(segment)
        if 0 <= index < len(container):
            return container[index]
        return None

    @staticmethod
    def _assign(container: Any, segment: str, value: Any) -> None:
        if isinstance(container, dict):
            container[segment] = value
            return
        if not _is_index(segment):
            msg = f"Cannot use key {segment!r} on a list"
            raise ValueError(msg)
        index = int(segment)
        if index == -1 or index == len(container):
            container.append(value)
        elif 0 <= index < len(container):
            container[index] = value
        else:
            msg = f"List index {index} out of range (length {len(container)})"
            raise ValueError(msg)


def _is_index(segment: str) -> bool:
    return segment == "-1" or segment.isdigit()
