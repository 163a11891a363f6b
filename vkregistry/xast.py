"""Generic attributed tree for registry fragments without a dedicated parser.

Typed parsers build one ``Node`` per small element (a ``<type>``, a
``<command>``, a ``<member>``) and read fields off it; text and child nodes
keep their document interleaving because pointer and const-ness parsing
depends on where ``*`` and ``const`` sit relative to the ``<type>`` child.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field

from vkregistry.errors import UnexpectedEndOfStream
from vkregistry.events import (
    Characters,
    Comment,
    Contents,
    EndElement,
    StartElement,
    XmlEvent,
)


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class CommentText:
    text: str


@dataclass
class Node:
    name: str
    attributes: dict[str, str] = field(default_factory=dict)
    contents: list["Text | CommentText | Node"] = field(default_factory=list)

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def get_child(self, name: str) -> "Node | None":
        for child in self.children(name):
            return child
        return None

    def children(self, name: str | None = None) -> Iterator["Node"]:
        for item in self.contents:
            if isinstance(item, Node) and (name is None or item.name == name):
                yield item

    def get_attribute_or_child(self, name: str) -> str | None:
        """Return attribute ``name``, else the text of the first child ``<name>``.

        vk.xml spells many fields either way depending on the element, e.g.
        ``<type name="X"/>`` versus ``<type>...<name>X</name></type>``.
        """
        value = self.get_attribute(name)
        if value is not None:
            return value
        child = self.get_child(name)
        if child is not None:
            return child.text()
        return None

    def text(self) -> str:
        """Concatenate the node's own text items, excluding child nodes."""
        return "".join(item.text for item in self.contents if isinstance(item, Text))

    def itertext(self) -> Iterator[str]:
        """Yield all text in document order, descending into children."""
        for item in self.contents:
            if isinstance(item, Text):
                yield item.text
            elif isinstance(item, Node):
                yield from item.itertext()


Content = Text | CommentText | Node


def node_from_start(start: StartElement) -> Node:
    # Event attributes are already a plain dict, so duplicate names cannot
    # survive to this point; when a caller builds one from pairs, last wins.
    return Node(start.name, dict(start.attributes))


def build_node(events: Iterator[XmlEvent], start: StartElement) -> Node:
    """Build the tree for the element whose start tag ``start`` was just read.

    Consumes the element's contents and its closing tag from ``events``.
    Raises UnexpectedEndOfStream if the stream ends before the element closes.
    """
    root = node_from_start(start)
    stack = [root]
    contents = Contents(events)
    for event in contents:
        if isinstance(event, StartElement):
            child = node_from_start(event)
            stack[-1].contents.append(child)
            stack.append(child)
        elif isinstance(event, EndElement):
            stack.pop()
        elif isinstance(event, Characters):
            stack[-1].contents.append(Text(event.text))
        elif isinstance(event, Comment):
            stack[-1].contents.append(CommentText(event.text))
    if not contents.closed:
        raise UnexpectedEndOfStream(
            "Element was never closed", element=start.name, entity=start.attributes.get("name")
        )
    return root
