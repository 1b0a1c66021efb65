"""Codecs turning raw blob bytes into events.

A codec consumes the chunks of one byte range and lazily yields events
(plain dicts). Reaching the end of the iterator means the whole range was
decoded; a problem with the input raises ``DecodeError`` instead.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, Type

from blobtail.lib.errors import ConfigurationError, DecodeError

logger = logging.getLogger(__name__)

__all__ = [
    "Codec",
    "Event",
    "JsonLinesCodec",
    "LineCodec",
    "get_codec",
    "register_codec",
]

Event = Dict[str, Any]

_CODECS: Dict[str, Type["Codec"]] = {}


def register_codec(name: str) -> Callable[[Type["Codec"]], Type["Codec"]]:
    """Class decorator adding a codec to the registry under ``name``."""

    def decorator(cls: Type["Codec"]) -> Type["Codec"]:
        cls.name = name
        _CODECS[name] = cls
        return cls

    return decorator


class Codec(ABC):
    """Base class for codecs."""

    name = "codec"

    @abstractmethod
    def decode(self, chunks: Iterable[bytes]) -> Iterator[Event]:
        """Decode a byte stream into events, in stream order."""
        ...


@register_codec("line")
class LineCodec(Codec):
    """One event per line.

    A trailing partial line (no final delimiter) is flushed as its own event
    when the input ends.
    """

    def __init__(self, delimiter: str = "\n", charset: str = "utf-8") -> None:
        if not delimiter:
            raise ConfigurationError("Line codec delimiter must not be empty", field="codec.delimiter")
        self.delimiter = delimiter.encode(charset)
        self.charset = charset

    def _to_event(self, raw: bytes) -> Event:
        text = raw.decode(self.charset, errors="replace")
        if text.endswith("\r"):
            text = text[:-1]
        return {"message": text}

    def decode(self, chunks: Iterable[bytes]) -> Iterator[Event]:
        buffer = b""
        for chunk in chunks:
            buffer += chunk
            *lines, buffer = buffer.split(self.delimiter)
            for raw in lines:
                yield self._to_event(raw)
        if buffer:
            yield self._to_event(buffer)


@register_codec("json_lines")
class JsonLinesCodec(Codec):
    """One JSON document per line.

    Objects become the event as-is; any other JSON value is wrapped as
    ``{"message": value}``. Blank lines are skipped.
    """

    def __init__(self, delimiter: str = "\n", charset: str = "utf-8") -> None:
        self._lines = LineCodec(delimiter=delimiter, charset=charset)

    def decode(self, chunks: Iterable[bytes]) -> Iterator[Event]:
        for line_number, line in enumerate(self._lines.decode(chunks), start=1):
            text = line["message"].strip()
            if not text:
                continue
            try:
                value = json.loads(text)
            except json.JSONDecodeError as exc:
                raise DecodeError(
                    f"Invalid JSON: {exc.msg}",
                    codec=self.name,
                    line_number=line_number,
                ) from exc
            yield value if isinstance(value, dict) else {"message": value}


def get_codec(name: str = "line", **options: Any) -> Codec:
    """Create a registered codec by name.

    Raises:
        ConfigurationError: If no codec is registered under ``name``
    """
    try:
        codec_cls = _CODECS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown codec '{name}'. Available: {', '.join(sorted(_CODECS))}",
            field="codec.name",
            value=name,
        ) from None
    return codec_cls(**options)
