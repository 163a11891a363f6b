"""Flat XML event stream and depth-scoped views over it.

The registry is read as one forward pass over parse events. ``iter_events``
adapts ``xml.etree.ElementTree.XMLParser`` (with a custom target, so no tree
is built) into a pull-based iterator, and ``Contents`` bounds that iterator to
the contents of a single element by tracking nesting depth.
"""

import io
import xml.etree.ElementTree as ET
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import IO

from vkregistry.errors import MalformedSource

DEFAULT_CHUNK_SIZE = 64 * 1024


# ===--- Event types ---=== #


@dataclass(frozen=True)
class StartElement:
    name: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EndElement:
    name: str


@dataclass(frozen=True)
class Characters:
    text: str


@dataclass(frozen=True)
class Comment:
    text: str


XmlEvent = StartElement | EndElement | Characters | Comment


def local_name(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix from a tag or attribute name."""
    if tag.startswith("{"):
        return tag.rpartition("}")[2]
    return tag


# ===--- Tokenizer adapter ---=== #


class _EventTarget:
    """XMLParser target that queues events instead of building elements.

    Character data arrives in arbitrary pieces; adjacent pieces are coalesced
    into one ``Characters`` event before the next structural event.
    """

    def __init__(self):
        self.pending: deque[XmlEvent] = deque()
        self._text: list[str] = []

    def _flush_text(self) -> None:
        if self._text:
            self.pending.append(Characters("".join(self._text)))
            self._text.clear()

    def start(self, tag: str, attrib: dict[str, str]) -> None:
        self._flush_text()
        attributes = {local_name(key): value for key, value in attrib.items()}
        self.pending.append(StartElement(local_name(tag), attributes))

    def end(self, tag: str) -> None:
        self._flush_text()
        self.pending.append(EndElement(local_name(tag)))

    def data(self, data: str) -> None:
        self._text.append(data)

    def comment(self, text: str) -> None:
        self._flush_text()
        self.pending.append(Comment(text))

    def close(self) -> None:
        self._flush_text()


def iter_events(
    source: IO[bytes] | IO[str], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[XmlEvent]:
    """Yield parse events from an open file object, reading it in chunks.

    Only as much of the document is read as the consumer has pulled. Errors
    reported by the underlying parser surface as ``MalformedSource``.
    """
    target = _EventTarget()
    parser = ET.XMLParser(target=target)
    while True:
        chunk = source.read(chunk_size)
        try:
            if chunk:
                parser.feed(chunk)
            else:
                parser.close()
        except ET.ParseError as err:
            raise MalformedSource(f"Malformed registry XML: {err}") from err
        while target.pending:
            yield target.pending.popleft()
        if not chunk:
            return


def events_from_string(text: str) -> Iterator[XmlEvent]:
    return iter_events(io.StringIO(text))


# ===--- Scoping ---=== #


class Contents:
    """Iterator over the contents of the element whose start tag was just read.

    The nesting counter starts at 1: start tags increment it, end tags
    decrement it. When it reaches 0 the closing tag has been consumed (and is
    not yielded) and iteration stops. Nested scopes must be built on top of
    their parent ``Contents`` so every counter observes every event.

    If the underlying stream runs out first, iteration simply stops and
    ``closed`` stays False; callers decide whether that is an error.
    """

    def __init__(self, events: Iterator[XmlEvent]):
        self._events = events
        self.depth = 1

    def __iter__(self) -> "Contents":
        return self

    def __next__(self) -> XmlEvent:
        if self.depth <= 0:
            raise StopIteration
        event = next(self._events)
        if isinstance(event, StartElement):
            self.depth += 1
        elif isinstance(event, EndElement):
            self.depth -= 1
            if self.depth <= 0:
                raise StopIteration
        return event

    @property
    def closed(self) -> bool:
        return self.depth <= 0

    def drain(self) -> bool:
        """Consume the rest of the scope. Returns True if it closed normally."""
        for _ in self:
            pass
        return self.closed


def skip_element(events: Iterator[XmlEvent]) -> bool:
    """Skip the contents of the element whose start tag was just read."""
    return Contents(events).drain()


def next_start_element(
    events: Iterator[XmlEvent], names: Iterable[str]
) -> StartElement | None:
    """Advance to the next start tag named in ``names`` at the current depth.

    Text, comments and end tags are skipped; any other element is skipped
    together with its whole subtree, so matches nested inside unrelated
    elements are never returned. Returns None when ``events`` is exhausted.
    """
    wanted = frozenset(names)
    for event in events:
        if isinstance(event, StartElement):
            if event.name in wanted:
                return event
            skip_element(events)
    return None
