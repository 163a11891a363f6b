"""Parsers for the small typed fragments that make up registry entities."""

import re

from vkregistry.errors import MalformedNumericLiteral, MissingRequiredField
from vkregistry.model import (
    AliasValue,
    BitPosition,
    EnumValue,
    ExplicitValue,
    ParameterInfo,
    StructMember,
    StringValue,
    TyperefInfo,
)
from vkregistry.xast import Node, Text

_POINTER_RE = re.compile(r"\s*(const)?\s*\*")
_INT_LITERAL_RE = re.compile(r"^-?(0[xX][0-9a-fA-F]+|[0-9]+)$")
_ARRAY_DIM_RE = re.compile(r"\[(\d+)\]")
_BITFIELD_RE = re.compile(r":\s*(\d+)")

MAX_BITPOS = 63


# ===--- Scalars ---=== #


def parse_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_bool(raw: str | None, field: str, element: str | None = None) -> bool:
    if raw is None:
        return False
    if raw == "true":
        return True
    if raw == "false":
        return False
    raise MalformedNumericLiteral(field, raw, element=element)


def parse_bool_list(
    raw: str | None, field: str, element: str | None = None
) -> tuple[bool, ...]:
    """Parse ``optional="false,true"`` style per-indirection flags."""
    if raw is None:
        return ()
    return tuple(parse_bool(part.strip(), field, element) for part in raw.split(","))


def parse_c_int(raw: str) -> int:
    s = raw.strip()
    negative = s.startswith("-")
    if negative:
        s = s[1:]
    value = int(s, 16) if s.startswith(("0x", "0X")) else int(s)
    return -value if negative else value


def parse_int_attribute(raw: str, field: str, element: str | None = None) -> int:
    if not _INT_LITERAL_RE.match(raw.strip()):
        raise MalformedNumericLiteral(field, raw, element=element)
    return parse_c_int(raw)


def parse_bitpos(raw: str, element: str | None = None, entity: str | None = None) -> int:
    text = raw.strip()
    if not text.isdigit() or int(text) > MAX_BITPOS:
        raise MalformedNumericLiteral("bitpos", raw, element=element, entity=entity)
    return int(text)


def parse_literal(raw: str) -> EnumValue:
    """Integer literals become ExplicitValue; anything else is kept verbatim."""
    if _INT_LITERAL_RE.match(raw.strip()):
        return ExplicitValue(parse_c_int(raw))
    return StringValue(raw)


# ===--- Type references ---=== #


def parse_constness(ptr_info: str) -> tuple[bool, ...]:
    """One entry per ``*``; True when ``const`` sits immediately before it.

    ``"const "`` alone (a const value, not a const pointer) yields ``()``.
    """
    return tuple(m.group(1) == "const" for m in _POINTER_RE.finditer(ptr_info))


def parse_typeref(node: Node) -> TyperefInfo:
    type_name = node.get_attribute_or_child("type")
    if type_name is None:
        raise MissingRequiredField(
            node.name, "type", entity=node.get_attribute_or_child("name")
        )
    return TyperefInfo(type_name, parse_constness(node.text()))


def require_name(node: Node, element: str | None = None) -> str:
    name = node.get_attribute_or_child("name")
    if not name:
        raise MissingRequiredField(element or node.name, "name")
    return name


# ===--- Members and parameters ---=== #


def _array_size(node: Node) -> str | None:
    name_el = node.get_child("name")
    if name_el is None:
        return None
    # Text following <name> holds "[4]", "[2][3]" or "[" before an <enum> child.
    tail = _text_after(node, name_el)
    if "[" not in tail:
        return None
    enum_el = node.get_child("enum")
    if enum_el is not None and enum_el.text():
        return enum_el.text().strip()
    dims = _ARRAY_DIM_RE.findall(tail)
    if not dims:
        return None
    total = 1
    for dim in dims:
        total *= int(dim)
    return str(total)


def _text_after(node: Node, child: Node) -> str:
    texts = []
    seen = False
    for item in node.contents:
        if item is child:
            seen = True
        elif seen and isinstance(item, Text):
            texts.append(item.text)
    return "".join(texts)


def _bitwidth(node: Node) -> int | None:
    name_el = node.get_child("name")
    if name_el is None:
        return None
    tail = _text_after(node, name_el)
    if "[" in tail:
        return None
    m = _BITFIELD_RE.search(tail)
    return int(m.group(1)) if m else None


def parse_member(node: Node) -> StructMember:
    name = require_name(node, "member")
    values = node.get_attribute("values")
    return StructMember(
        name=name,
        typeref=parse_typeref(node),
        values=parse_csv(values) if values is not None else None,
        externsync=node.get_attribute("externsync"),
        len=node.get_attribute("len"),
        altlen=node.get_attribute("altlen"),
        optional=parse_bool_list(node.get_attribute("optional"), "optional", "member"),
        noautovalidity=parse_bool(
            node.get_attribute("noautovalidity"), "noautovalidity", "member"
        ),
        array_size=_array_size(node),
        bitwidth=_bitwidth(node),
    )


def parse_param(node: Node) -> ParameterInfo:
    return ParameterInfo(
        name=require_name(node, "param"),
        typeref=parse_typeref(node),
        optional=parse_bool_list(node.get_attribute("optional"), "optional", "param"),
    )


# ===--- Enum values ---=== #


def parse_enum_value(attributes: dict[str, str], element: str = "enum") -> EnumValue:
    """Parse the value of an ``<enum>`` declaration.

    ``alias`` wins when present. Otherwise exactly one of ``bitpos`` and
    ``value`` must be given; a missing value is never defaulted to zero.
    """
    name = attributes.get("name")
    alias = attributes.get("alias")
    if alias is not None:
        return AliasValue(alias)
    bitpos = attributes.get("bitpos")
    value = attributes.get("value")
    if bitpos is not None and value is not None:
        raise MalformedNumericLiteral(
            "value",
            value,
            element=element,
            entity=name,
            reason="Enum declares both bitpos and value",
        )
    if bitpos is not None:
        return BitPosition(parse_bitpos(bitpos, element, name))
    if value is not None:
        return parse_literal(value)
    raise MissingRequiredField(element, "value|bitpos", entity=name)
