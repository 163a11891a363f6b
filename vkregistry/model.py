"""Typed registry model.

Each entity kind is a closed union of frozen dataclasses. The only mutable
piece is ``Enum.values``, which the resolver extends with values injected by
features and extensions.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import ClassVar

from vkregistry.xast import Node

# Reserved numbering scheme for extension-provided enum values.
ENUM_BASE_VALUE = 1000000000
ENUM_RANGE_SIZE = 1000

DISPATCHABLE_HANDLE_MACRO = "VK_DEFINE_HANDLE"


# ===--- Type references ---=== #


@dataclass(frozen=True)
class TyperefInfo:
    """A referenced type plus one const flag per pointer level, outermost first."""

    type_name: str
    constness: tuple[bool, ...] = ()

    @property
    def is_pointer(self) -> bool:
        return bool(self.constness)


# ===--- Enum values ---=== #


@dataclass(frozen=True)
class BitPosition:
    bit: int


@dataclass(frozen=True)
class ExplicitValue:
    value: int


@dataclass(frozen=True)
class StringValue:
    text: str


@dataclass(frozen=True)
class AliasValue:
    target: str


EnumValue = BitPosition | ExplicitValue | StringValue | AliasValue


def materialize(value: EnumValue) -> int | str:
    """Return the literal an emitter writes for ``value``.

    Bit positions become ``1 << bit``; string values and aliases are returned
    as their raw text or target name.
    """
    if isinstance(value, BitPosition):
        return 1 << value.bit
    if isinstance(value, ExplicitValue):
        return value.value
    if isinstance(value, StringValue):
        return value.text
    if isinstance(value, AliasValue):
        return value.target
    raise TypeError(f"Not an enum value: {value!r}")


# ===--- Struct members and parameters ---=== #


@dataclass(frozen=True)
class StructMember:
    name: str
    typeref: TyperefInfo
    values: tuple[str, ...] | None = None
    externsync: str | None = None
    len: str | None = None
    altlen: str | None = None
    optional: tuple[bool, ...] = ()
    noautovalidity: bool = False
    array_size: str | None = None
    bitwidth: int | None = None

    @property
    def is_optional(self) -> bool:
        return bool(self.optional) and self.optional[0]

    @property
    def len_names(self) -> tuple[str, ...]:
        """Member names referenced by ``len``, ignoring markers like null-terminated."""
        if not self.len:
            return ()
        return tuple(
            part.strip() for part in self.len.split(",") if _IDENTIFIER_RE.match(part.strip())
        )

    @property
    def is_length_governed(self) -> bool:
        return self.len is not None and self.typeref.is_pointer


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class ParameterInfo:
    name: str
    typeref: TyperefInfo
    optional: tuple[bool, ...] = ()

    @property
    def is_optional(self) -> bool:
        return bool(self.optional) and self.optional[0]


def private_member_names(members: tuple[StructMember, ...]) -> frozenset[str]:
    """Members an emitter hides behind a slice-like accessor.

    A member is private when another member's ``len`` names it, or when it is
    itself a pointer whose length is governed by ``len``.
    """
    names = {m.name for m in members}
    private: set[str] = set()
    for member in members:
        if member.is_length_governed:
            private.add(member.name)
            private.update(n for n in member.len_names if n in names)
    return frozenset(private)


# ===--- Type entries ---=== #


class HandleKind(enum.Enum):
    DISPATCHABLE = "dispatchable"
    NON_DISPATCHABLE = "non_dispatchable"


@dataclass(frozen=True)
class Basetype:
    category: ClassVar[str] = "basetype"
    name: str
    type_name: str | None


@dataclass(frozen=True)
class Bitmask:
    category: ClassVar[str] = "bitmask"
    name: str
    type_name: str
    bitvalues: str | None = None


@dataclass
class Enum:
    category: ClassVar[str] = "enum"
    name: str
    values: list[tuple[str, EnumValue]] = field(default_factory=list)
    kind: str = "enum"
    bitwidth: int | None = None

    @property
    def is_bitmask(self) -> bool:
        return self.kind == "bitmask"

    def value_names(self) -> set[str]:
        return {name for name, _ in self.values}

    def get(self, name: str) -> EnumValue | None:
        for value_name, value in self.values:
            if value_name == name:
                return value
        return None


@dataclass(frozen=True)
class Handle:
    category: ClassVar[str] = "handle"
    name: str
    parent: str | None
    kind: HandleKind


@dataclass(frozen=True)
class Struct:
    category: ClassVar[str] = "struct"
    name: str
    members: tuple[StructMember, ...]
    extends: tuple[str, ...] = ()
    returned_only: bool = False

    def member(self, name: str) -> StructMember | None:
        for m in self.members:
            if m.name == name:
                return m
        return None

    @property
    def is_extensible(self) -> bool:
        """True for structs with the ``sType``/``pNext`` chain header."""
        return self.member("sType") is not None and self.member("pNext") is not None

    def private_member_names(self) -> frozenset[str]:
        return private_member_names(self.members)


@dataclass(frozen=True)
class Union:
    category: ClassVar[str] = "union"
    name: str
    members: tuple[StructMember, ...]


@dataclass(frozen=True)
class Funcpointer:
    category: ClassVar[str] = "funcpointer"
    name: str
    params: tuple[ParameterInfo, ...]
    return_type: TyperefInfo


@dataclass(frozen=True)
class Define:
    category: ClassVar[str] = "define"
    name: str
    node: Node = field(compare=False, repr=False)


@dataclass(frozen=True)
class Include:
    category: ClassVar[str] = "include"
    name: str
    node: Node = field(compare=False, repr=False)


@dataclass(frozen=True)
class Group:
    category: ClassVar[str] = "group"
    name: str
    node: Node = field(compare=False, repr=False)


@dataclass(frozen=True)
class Uncategorized:
    category: ClassVar[str] = ""
    name: str
    node: Node = field(compare=False, repr=False)


@dataclass(frozen=True)
class Alias:
    """``<type name="VkFooKHR" alias="VkFoo" category="..."/>``."""

    name: str
    alias: str
    category: str


@dataclass(frozen=True)
class Constant:
    category: ClassVar[str] = "constant"
    name: str
    value: EnumValue
    type_name: str | None = None


TypeEntry = (
    Basetype
    | Bitmask
    | Enum
    | Handle
    | Struct
    | Union
    | Funcpointer
    | Define
    | Include
    | Group
    | Uncategorized
    | Alias
    | Constant
)


# ===--- Commands ---=== #


class RenderPass(enum.Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"
    BOTH = "both"


class CommandBufferLevel(enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class PipelineType(enum.Enum):
    COMPUTE = "compute"
    TRANSFER = "transfer"
    GRAPHICS = "graphics"
    RAYTRACING = "raytracing"


@dataclass(frozen=True)
class CommandInfo:
    name: str
    return_type: TyperefInfo
    params: tuple[ParameterInfo, ...]
    queues: tuple[str, ...] = ()
    successcodes: tuple[str, ...] = ()
    errorcodes: tuple[str, ...] = ()
    renderpass: RenderPass | None = None
    cmdbufferlevel: frozenset[CommandBufferLevel] | None = None
    pipeline: PipelineType | None = None


@dataclass(frozen=True)
class CommandAlias:
    name: str
    alias: str


# ===--- Requirements ---=== #


@dataclass(frozen=True)
class BitposStrategy:
    bit: int


@dataclass(frozen=True)
class OffsetStrategy:
    offset: int
    negated: bool = False
    extnumber: int | None = None


@dataclass(frozen=True)
class ValueStrategy:
    value: EnumValue


@dataclass(frozen=True)
class AliasStrategy:
    target: str


EnumExtensionStrategy = BitposStrategy | OffsetStrategy | ValueStrategy | AliasStrategy


@dataclass(frozen=True)
class ReferenceType:
    name: str


@dataclass(frozen=True)
class ReferenceCommand:
    name: str


@dataclass(frozen=True)
class ReferenceEnum:
    name: str


@dataclass(frozen=True)
class ConstantValue:
    name: str
    value: EnumValue
    type_name: str | None = None


@dataclass(frozen=True)
class EnumExtension:
    name: str
    extends: str
    strategy: EnumExtensionStrategy


Requirement = (
    ReferenceType | ReferenceCommand | ReferenceEnum | ConstantValue | EnumExtension
)


# ===--- Features and extensions ---=== #


class ExtensionKind(enum.Enum):
    INSTANCE = "instance"
    DEVICE = "device"
    DISABLED = "disabled"


@dataclass(frozen=True)
class FeatureInfo:
    name: str
    api: str
    number: str
    requires: tuple[str, ...] = ()
    requirements: tuple[Requirement, ...] = ()
    removals: tuple[Requirement, ...] = ()
    protect: str | None = None


@dataclass(frozen=True)
class ExtensionInfo:
    name: str
    number: int
    kind: ExtensionKind = ExtensionKind.DISABLED
    supported: re.Pattern[str] | None = None
    author: str | None = None
    contact: str | None = None
    requires: tuple[str, ...] = ()
    depends: str = ""
    protect: str | None = None
    platform: str | None = None
    promoted_to: str | None = None
    requirements: tuple[Requirement, ...] = ()
    removals: tuple[Requirement, ...] = ()

    def supports(self, api: str) -> bool:
        return self.supported is not None and self.supported.fullmatch(api) is not None


# ===--- Registry ---=== #


@dataclass
class Registry:
    types: dict[str, TypeEntry] = field(default_factory=dict)
    enums: dict[str, Enum] = field(default_factory=dict)
    commands: dict[str, CommandInfo] = field(default_factory=dict)
    command_aliases: dict[str, CommandAlias] = field(default_factory=dict)
    platforms: dict[str, str] = field(default_factory=dict)
    features: list[FeatureInfo] = field(default_factory=list)
    extensions: list[ExtensionInfo] = field(default_factory=list)
    resolved: bool = False

    def get_extension(self, name: str) -> ExtensionInfo | None:
        for ext in self.extensions:
            if ext.name == name:
                return ext
        return None
