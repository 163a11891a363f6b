"""Streaming parser and extension resolver for the Vulkan API registry (vk.xml)."""

from vkregistry.errors import (
    DependencyCycle,
    InvalidStrategyForEntity,
    MalformedNumericLiteral,
    MalformedSource,
    MissingRequiredField,
    MissingTypesSection,
    RegistryError,
    UnexpectedEndOfStream,
    UnknownEnumTarget,
    UnrecognizedCategory,
)
from vkregistry.events import events_from_string, iter_events
from vkregistry.model import Registry, materialize
from vkregistry.registry import (
    assemble_registry,
    include_all,
    load_registry,
    load_registry_file,
)
from vkregistry.resolve import (
    resolve_extension_deps,
    resolve_registry,
    sort_extensions_by_dependency,
)

__all__ = [
    "DependencyCycle",
    "InvalidStrategyForEntity",
    "MalformedNumericLiteral",
    "MalformedSource",
    "MissingRequiredField",
    "MissingTypesSection",
    "Registry",
    "RegistryError",
    "UnexpectedEndOfStream",
    "UnknownEnumTarget",
    "UnrecognizedCategory",
    "assemble_registry",
    "events_from_string",
    "include_all",
    "iter_events",
    "load_registry",
    "load_registry_file",
    "materialize",
    "resolve_extension_deps",
    "resolve_registry",
    "sort_extensions_by_dependency",
]
