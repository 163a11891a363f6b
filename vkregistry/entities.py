"""Parsers for the top-level registry entities.

Every ``parse_next_*`` function has the same contract: skip sibling subtrees
until the wanted start tag at the current depth, parse exactly one entity
from a fresh scope, and return it, or return None once ``events`` is
exhausted. ``iter_entities`` turns such a function into a lazy sequence.
"""

import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar, get_args

from vkregistry.errors import (
    MissingRequiredField,
    UnexpectedEndOfStream,
    UnrecognizedCategory,
)
from vkregistry.events import (
    Contents,
    StartElement,
    XmlEvent,
    next_start_element,
    skip_element,
)
from vkregistry.fields import (
    parse_bool,
    parse_constness,
    parse_csv,
    parse_enum_value,
    parse_int_attribute,
    parse_member,
    parse_param,
    parse_typeref,
    require_name,
)
from vkregistry.model import (
    DISPATCHABLE_HANDLE_MACRO,
    Alias,
    AliasStrategy,
    AliasValue,
    Basetype,
    BitPosition,
    BitposStrategy,
    Bitmask,
    CommandAlias,
    CommandBufferLevel,
    CommandInfo,
    Constant,
    ConstantValue,
    Define,
    Enum,
    EnumExtension,
    EnumExtensionStrategy,
    ExtensionInfo,
    ExtensionKind,
    FeatureInfo,
    Funcpointer,
    Group,
    Handle,
    HandleKind,
    Include,
    OffsetStrategy,
    ParameterInfo,
    PipelineType,
    ReferenceCommand,
    ReferenceEnum,
    ReferenceType,
    RenderPass,
    Requirement,
    Struct,
    StructMember,
    TypeEntry,
    TyperefInfo,
    Uncategorized,
    Union,
    ValueStrategy,
)
from vkregistry.xast import Node, Text, build_node

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VK_VERSION_RE = re.compile(r"^VK(SC)?_VERSION_(\d+)_(\d+)$")


# ===--- Shared helpers ---=== #


def iter_entities(
    parse_next: Callable[..., T | None], events: Iterator[XmlEvent], **kwargs: object
) -> Iterator[T]:
    """Call ``parse_next(events, **kwargs)`` until it reports exhaustion."""
    while True:
        entity = parse_next(events, **kwargs)
        if entity is None:
            return
        yield entity


def api_matches(api_attr: str | None, api: str | None) -> bool:
    """True when an element's ``api`` attribute admits ``api``.

    Elements without the attribute apply to every API; ``api=None`` disables
    filtering altogether.
    """
    if api_attr is None or api is None:
        return True
    return api in parse_csv(api_attr)


def finish_scope(contents: Contents, element: str, entity: str | None = None) -> None:
    if not contents.closed:
        raise UnexpectedEndOfStream("Element was never closed", element=element, entity=entity)


def skip_scope(events: Iterator[XmlEvent], start: StartElement) -> None:
    if not skip_element(events):
        raise UnexpectedEndOfStream(
            "Element was never closed", element=start.name, entity=start.attributes.get("name")
        )


def required_attribute(
    attributes: dict[str, str], element: str, name: str, entity: str | None = None
) -> str:
    value = attributes.get(name)
    if value is None:
        raise MissingRequiredField(element, name, entity=entity)
    return value


def is_version_token(token: str) -> bool:
    return _VK_VERSION_RE.match(token) is not None


def split_depends(depends: str) -> tuple[str, ...]:
    """Split a ``depends`` expression into names, in order, without duplicates.

    AND (``+``) and OR (``,``) are flattened and wrapper parentheses dropped,
    so every mentioned name counts as a dependency.
    """
    tokens: dict[str, None] = {}
    for raw_token in re.split(r"[+,]", depends.strip()):
        token = raw_token.strip().strip("() ")
        if token:
            tokens[token] = None
    return tuple(tokens)


def compile_supported(supported: str) -> re.Pattern[str]:
    """Compile ``supported="vulkan,vulkansc"`` into a full-match API matcher."""
    return re.compile("|".join(re.escape(token) for token in parse_csv(supported)))


# ===--- Types ---=== #


def _parse_members(node: Node, api: str | None) -> tuple[StructMember, ...]:
    return tuple(
        parse_member(child)
        for child in node.children("member")
        if api_matches(child.get_attribute("api"), api)
    )


def _parse_basetype(node: Node, api: str | None) -> Basetype:
    # Opaque basetypes ("struct ANativeWindow;") carry no <type> child.
    return Basetype(require_name(node, "type"), node.get_attribute_or_child("type"))


def _parse_bitmask(node: Node, api: str | None) -> Bitmask:
    name = require_name(node, "type")
    type_name = node.get_attribute_or_child("type")
    if type_name is None:
        raise MissingRequiredField("type", "type", entity=name)
    bitvalues = node.get_attribute("bitvalues") or node.get_attribute("requires")
    return Bitmask(name, type_name, bitvalues)


def _parse_define(node: Node, api: str | None) -> Define:
    return Define(require_name(node, "type"), node)


def _parse_enum_placeholder(node: Node, api: str | None) -> Enum:
    return Enum(require_name(node, "type"))


def _legacy_funcpointer_return(node: Node, name_el: Node, name: str) -> TyperefInfo:
    head = []
    for item in node.contents:
        if item is name_el:
            break
        if isinstance(item, Text):
            head.append(item.text)
    # "typedef const void* (VKAPI_PTR *" -> declaration before the "("
    declaration = "".join(head).split("(", 1)[0]
    m = re.match(r"\s*typedef\s+(const\s+)?(\w+)(.*)$", declaration, re.S)
    if m is None:
        raise MissingRequiredField("type", "return type", entity=name)
    return TyperefInfo(m.group(2), parse_constness((m.group(1) or "") + m.group(3)))


def _legacy_funcpointer_params(
    node: Node, name_el: Node, name: str
) -> tuple[ParameterInfo, ...]:
    params = []
    seen_name = False
    prefix = ""
    type_name = None
    for item in node.contents:
        if item is name_el:
            seen_name = True
            continue
        if not seen_name:
            continue
        if isinstance(item, Node) and item.name == "type":
            type_name = item.text()
        elif isinstance(item, Text):
            if type_name is None:
                # ")(\n    const " -> only what follows the last separator
                prefix = re.split(r"[(,]", item.text)[-1]
                continue
            m = re.match(r"([^,)]*)[,)](.*)$", item.text, re.S)
            if m is None:
                raise MissingRequiredField("type", "param", entity=name)
            declaration = m.group(1)
            ident = re.search(r"(\w+)\s*$", declaration)
            if ident is None:
                raise MissingRequiredField("type", "param name", entity=name)
            ptr_info = prefix + declaration[: ident.start()]
            params.append(
                ParameterInfo(ident.group(1), TyperefInfo(type_name, parse_constness(ptr_info)))
            )
            prefix = m.group(2)
            type_name = None
    return tuple(params)


def _parse_funcpointer(node: Node, api: str | None) -> Funcpointer:
    proto = node.get_child("proto")
    if proto is not None:
        params = tuple(
            parse_param(child)
            for child in node.children("param")
            if api_matches(child.get_attribute("api"), api)
        )
        # The proto text may also hold "(VKAPI_PTR *"; only what precedes "(" counts.
        return_type = TyperefInfo(
            parse_typeref(proto).type_name, parse_constness(proto.text().split("(", 1)[0])
        )
        return Funcpointer(require_name(proto, "type"), params, return_type)

    name_el = node.get_child("name")
    if name_el is None:
        raise MissingRequiredField("type", "name")
    name = name_el.text()
    return Funcpointer(
        name,
        _legacy_funcpointer_params(node, name_el, name),
        _legacy_funcpointer_return(node, name_el, name),
    )


def _parse_group(node: Node, api: str | None) -> Group:
    return Group(require_name(node, "type"), node)


def _parse_handle(node: Node, api: str | None) -> Handle:
    name = require_name(node, "type")
    type_el = node.get_child("type")
    if type_el is None:
        raise MissingRequiredField("type", "type", entity=name)
    if type_el.text() == DISPATCHABLE_HANDLE_MACRO:
        kind = HandleKind.DISPATCHABLE
    else:
        kind = HandleKind.NON_DISPATCHABLE
    return Handle(name, node.get_attribute("parent"), kind)


def _parse_struct(node: Node, api: str | None) -> Struct:
    return Struct(
        name=require_name(node, "type"),
        members=_parse_members(node, api),
        extends=parse_csv(node.get_attribute("structextends")),
        returned_only=parse_bool(node.get_attribute("returnedonly"), "returnedonly", "type"),
    )


def _parse_union(node: Node, api: str | None) -> Union:
    return Union(require_name(node, "type"), _parse_members(node, api))


def _parse_include(node: Node, api: str | None) -> Include:
    return Include(require_name(node, "type"), node)


TYPE_CATEGORY_PARSERS: dict[str, Callable[[Node, str | None], TypeEntry]] = {
    Basetype.category: _parse_basetype,
    Bitmask.category: _parse_bitmask,
    Define.category: _parse_define,
    Enum.category: _parse_enum_placeholder,
    Funcpointer.category: _parse_funcpointer,
    Group.category: _parse_group,
    Handle.category: _parse_handle,
    Struct.category: _parse_struct,
    Union.category: _parse_union,
    Include.category: _parse_include,
}

_PARSED_BEFORE_DISPATCH = (Alias, Constant, Uncategorized)
if {
    cls.category for cls in get_args(TypeEntry) if cls not in _PARSED_BEFORE_DISPATCH
} != set(TYPE_CATEGORY_PARSERS):
    raise RuntimeError("TYPE_CATEGORY_PARSERS does not cover every TypeEntry category")


def parse_type(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> TypeEntry | None:
    """Parse one ``<type>`` element; None if it belongs to another API."""
    node = build_node(events, start)
    if not api_matches(node.get_attribute("api"), api):
        return None
    category = node.get_attribute("category")
    alias = node.get_attribute("alias")
    if alias is not None:
        return Alias(require_name(node, "type"), alias, category or "")
    if category is None:
        return Uncategorized(require_name(node, "type"), node)
    parser = TYPE_CATEGORY_PARSERS.get(category)
    if parser is None:
        raise UnrecognizedCategory(
            "type", "category", category, entity=node.get_attribute_or_child("name")
        )
    return parser(node, api)


def parse_next_type(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> TypeEntry | None:
    while True:
        start = next_start_element(events, ("type",))
        if start is None:
            return None
        entry = parse_type(events, start, api)
        if entry is not None:
            return entry


# ===--- Enum blocks ---=== #


@dataclass(frozen=True)
class ConstantsBlock:
    name: str
    constants: tuple[Constant, ...]


ENUM_BLOCK_TYPES = ("enum", "bitmask")


def parse_enums(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> Enum | ConstantsBlock | None:
    """Parse one ``<enums>`` block.

    ``type="enum"``/``"bitmask"`` yields an Enum, ``type="constants"`` a
    ConstantsBlock. A block with no ``type`` groups loose constants with no
    enum semantics; it is parsed for well-formedness and then dropped.
    """
    name = required_attribute(start.attributes, "enums", "name")
    block_type = start.attributes.get("type")
    if block_type is not None and block_type not in ENUM_BLOCK_TYPES + ("constants",):
        raise UnrecognizedCategory("enums", "type", block_type, entity=name)
    bitwidth_raw = start.attributes.get("bitwidth")
    bitwidth = parse_int_attribute(bitwidth_raw, "bitwidth", "enums") if bitwidth_raw else None

    values = []
    contents = Contents(events)
    for child in iter_entities(next_start_element, contents, names=("enum",)):
        skip_scope(contents, child)
        if not api_matches(child.attributes.get("api"), api):
            continue
        value_name = required_attribute(child.attributes, "enum", "name", entity=name)
        values.append((value_name, parse_enum_value(child.attributes), child.attributes.get("type")))
    finish_scope(contents, "enums", name)

    if block_type is None:
        logger.debug("Discarding untyped <enums name=%r> (%d values)", name, len(values))
        return None
    if block_type == "constants":
        return ConstantsBlock(
            name, tuple(Constant(n, value, type_name) for n, value, type_name in values)
        )
    return Enum(
        name,
        [(n, value) for n, value, _ in values],
        kind=block_type,
        bitwidth=bitwidth,
    )


def parse_next_enums(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> Enum | ConstantsBlock | None:
    """Return the next typed ``<enums>`` block; untyped blocks are skipped."""
    while True:
        start = next_start_element(events, ("enums",))
        if start is None:
            return None
        block = parse_enums(events, start, api)
        if block is not None:
            return block


# ===--- Commands ---=== #


def _enum_attribute(node: Node, attribute: str, enum_type: type, entity: str):
    raw = node.get_attribute(attribute)
    if raw is None:
        return None
    try:
        return enum_type(raw)
    except ValueError as err:
        raise UnrecognizedCategory("command", attribute, raw, entity=entity) from err


def _parse_cmdbufferlevel(node: Node, entity: str) -> frozenset[CommandBufferLevel] | None:
    raw = node.get_attribute("cmdbufferlevel")
    if raw is None:
        return None
    levels = set()
    for token in parse_csv(raw):
        try:
            levels.add(CommandBufferLevel(token))
        except ValueError as err:
            raise UnrecognizedCategory("command", "cmdbufferlevel", token, entity=entity) from err
    return frozenset(levels)


def parse_command(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> CommandInfo | CommandAlias | None:
    node = build_node(events, start)
    if not api_matches(node.get_attribute("api"), api):
        return None
    alias = node.get_attribute("alias")
    if alias is not None:
        return CommandAlias(required_attribute(node.attributes, "command", "name"), alias)

    proto = node.get_child("proto")
    if proto is None:
        raise MissingRequiredField("command", "proto", entity=node.get_attribute("name"))
    name = require_name(proto, "command")
    params = tuple(
        parse_param(child)
        for child in node.children("param")
        if api_matches(child.get_attribute("api"), api)
    )
    return CommandInfo(
        name=name,
        return_type=parse_typeref(proto),
        params=params,
        queues=parse_csv(node.get_attribute("queues")),
        successcodes=parse_csv(node.get_attribute("successcodes")),
        errorcodes=parse_csv(node.get_attribute("errorcodes")),
        renderpass=_enum_attribute(node, "renderpass", RenderPass, name),
        cmdbufferlevel=_parse_cmdbufferlevel(node, name),
        pipeline=_enum_attribute(node, "pipeline", PipelineType, name),
    )


def parse_next_command(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> CommandInfo | CommandAlias | None:
    while True:
        start = next_start_element(events, ("command",))
        if start is None:
            return None
        command = parse_command(events, start, api)
        if command is not None:
            return command


# ===--- Requirements ---=== #


REQUIREMENT_ELEMENTS = ("type", "command", "enum")


def _parse_strategy(attributes: dict[str, str]) -> EnumExtensionStrategy:
    name = attributes.get("name")
    if "offset" in attributes:
        extnumber = attributes.get("extnumber")
        return OffsetStrategy(
            offset=parse_int_attribute(attributes["offset"], "offset", "enum"),
            negated=attributes.get("dir") == "-",
            extnumber=parse_int_attribute(extnumber, "extnumber", "enum") if extnumber else None,
        )
    if "alias" in attributes:
        return AliasStrategy(attributes["alias"])
    value = parse_enum_value(attributes)
    if isinstance(value, BitPosition):
        return BitposStrategy(value.bit)
    if isinstance(value, AliasValue):
        raise MissingRequiredField("enum", "value|bitpos|offset", entity=name)
    return ValueStrategy(value)


def parse_requirement(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> Requirement | None:
    attributes = start.attributes
    skip_scope(events, start)
    if not api_matches(attributes.get("api"), api):
        return None
    name = required_attribute(attributes, start.name, "name")
    if start.name == "type":
        return ReferenceType(name)
    if start.name == "command":
        return ReferenceCommand(name)

    extends = attributes.get("extends")
    if extends is not None:
        return EnumExtension(name, extends, _parse_strategy(attributes))
    if "value" in attributes or "bitpos" in attributes or "alias" in attributes:
        return ConstantValue(name, parse_enum_value(attributes), attributes.get("type"))
    return ReferenceEnum(name)


def parse_next_requirement(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> Requirement | None:
    while True:
        start = next_start_element(events, REQUIREMENT_ELEMENTS)
        if start is None:
            return None
        requirement = parse_requirement(events, start, api)
        if requirement is not None:
            return requirement


def _parse_requirement_blocks(
    contents: Contents, api: str | None, owner: str
) -> tuple[tuple[Requirement, ...], tuple[Requirement, ...]]:
    requirements: list[Requirement] = []
    removals: list[Requirement] = []
    for start in iter_entities(next_start_element, contents, names=("require", "remove")):
        block = Contents(contents)
        if api_matches(start.attributes.get("api"), api):
            target = requirements if start.name == "require" else removals
            target.extend(iter_entities(parse_next_requirement, block, api=api))
        else:
            block.drain()
        finish_scope(block, start.name, owner)
    return tuple(requirements), tuple(removals)


# ===--- Features and extensions ---=== #


def parse_feature(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> FeatureInfo:
    attributes = start.attributes
    name = required_attribute(attributes, "feature", "name")
    feature_api = required_attribute(attributes, "feature", "api", name)
    number = required_attribute(attributes, "feature", "number", name)

    contents = Contents(events)
    requirements, removals = _parse_requirement_blocks(contents, api, name)
    finish_scope(contents, "feature", name)
    return FeatureInfo(
        name=name,
        api=feature_api,
        number=number,
        requires=split_depends(attributes.get("depends", "")),
        requirements=requirements,
        removals=removals,
    )


def parse_next_feature(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> FeatureInfo | None:
    start = next_start_element(events, ("feature",))
    if start is None:
        return None
    return parse_feature(events, start, api)


EXTENSION_KINDS = {
    "instance": ExtensionKind.INSTANCE,
    "device": ExtensionKind.DEVICE,
}


def _extension_requires(attributes: dict[str, str]) -> tuple[str, ...]:
    if "requires" in attributes:
        return parse_csv(attributes["requires"])
    return tuple(
        token
        for token in split_depends(attributes.get("depends", ""))
        if not is_version_token(token)
    )


def parse_extension(
    events: Iterator[XmlEvent], start: StartElement, api: str | None = "vulkan"
) -> ExtensionInfo:
    attributes = start.attributes
    name = required_attribute(attributes, "extension", "name")
    number = parse_int_attribute(
        required_attribute(attributes, "extension", "number", name), "number", "extension"
    )

    ext_type = attributes.get("type")
    supported = attributes.get("supported")
    if ext_type is not None and ext_type not in EXTENSION_KINDS:
        raise UnrecognizedCategory("extension", "type", ext_type, entity=name)
    if ext_type is None or supported == "disabled":
        kind = ExtensionKind.DISABLED
    else:
        if supported is None:
            raise MissingRequiredField("extension", "supported", entity=name)
        kind = EXTENSION_KINDS[ext_type]

    contents = Contents(events)
    requirements, removals = _parse_requirement_blocks(contents, api, name)
    finish_scope(contents, "extension", name)
    return ExtensionInfo(
        name=name,
        number=number,
        kind=kind,
        supported=compile_supported(supported) if supported else None,
        author=attributes.get("author"),
        contact=attributes.get("contact"),
        requires=_extension_requires(attributes),
        depends=attributes.get("depends", ""),
        protect=attributes.get("protect"),
        platform=attributes.get("platform"),
        promoted_to=attributes.get("promotedto"),
        requirements=requirements,
        removals=removals,
    )


def parse_next_extension(
    events: Iterator[XmlEvent], api: str | None = "vulkan"
) -> ExtensionInfo | None:
    start = next_start_element(events, ("extension",))
    if start is None:
        return None
    return parse_extension(events, start, api)


# ===--- Platforms ---=== #


def parse_platforms(events: Iterator[XmlEvent]) -> dict[str, str]:
    """Map ``<platform name=... protect=...>`` entries inside ``<platforms>``."""
    platforms = {}
    contents = Contents(events)
    for start in iter_entities(next_start_element, contents, names=("platform",)):
        skip_scope(contents, start)
        name = required_attribute(start.attributes, "platform", "name")
        platforms[name] = required_attribute(start.attributes, "platform", "protect", name)
    finish_scope(contents, "platforms")
    return platforms
