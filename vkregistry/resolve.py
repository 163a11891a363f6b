"""Second pass over an assembled registry.

Assembly leaves cross-section references dangling: ``<enums>`` blocks sit
apart from their ``<type category="enum">`` placeholders, and requirements
name enums that may be declared later in the document. Resolution links
them up and computes every extension-provided enum value.
"""

import dataclasses
import logging
from collections import defaultdict
from collections.abc import Iterable

from vkregistry.errors import (
    DependencyCycle,
    InvalidStrategyForEntity,
    UnknownEnumTarget,
)
from vkregistry.model import (
    ENUM_BASE_VALUE,
    ENUM_RANGE_SIZE,
    Alias,
    AliasStrategy,
    AliasValue,
    BitPosition,
    BitposStrategy,
    Enum,
    EnumExtension,
    EnumExtensionStrategy,
    EnumValue,
    ExplicitValue,
    ExtensionInfo,
    OffsetStrategy,
    Registry,
    Requirement,
    ValueStrategy,
)

logger = logging.getLogger(__name__)


# ===--- Enum values ---=== #


def offset_value(extension_number: int, offset: int, negated: bool = False) -> int:
    value = ENUM_BASE_VALUE + (extension_number - 1) * ENUM_RANGE_SIZE + offset
    return -value if negated else value


def compute_enum_value(
    strategy: EnumExtensionStrategy,
    extension_number: int | None,
    owner: str,
    value_name: str,
) -> EnumValue:
    """Turn a requirement's strategy into a concrete enum value.

    ``extension_number`` is the owning extension's number, or None for a
    feature. A requirement's own ``extnumber`` always takes precedence.
    """
    if isinstance(strategy, BitposStrategy):
        return BitPosition(strategy.bit)
    if isinstance(strategy, ValueStrategy):
        return strategy.value
    if isinstance(strategy, AliasStrategy):
        return AliasValue(strategy.target)
    if isinstance(strategy, OffsetStrategy):
        number = strategy.extnumber if strategy.extnumber is not None else extension_number
        if number is None:
            raise InvalidStrategyForEntity(owner, value_name)
        return ExplicitValue(offset_value(number, strategy.offset, strategy.negated))
    raise TypeError(f"Not an enum extension strategy: {strategy!r}")


def find_enum(registry: Registry, name: str) -> Enum | None:
    """Look up an enum by name, following ``<type alias=...>`` declarations."""
    seen = set()
    while name not in seen:
        seen.add(name)
        if name in registry.enums:
            return registry.enums[name]
        entry = registry.types.get(name)
        if isinstance(entry, Enum):
            return entry
        if not isinstance(entry, Alias):
            return None
        name = entry.alias
    return None


def merge_enum_blocks(registry: Registry) -> None:
    """Make ``types`` and ``enums`` share one Enum object per name.

    A parsed ``<enums>`` block replaces the empty placeholder left by its
    ``<type category="enum">``; a block with no placeholder is added to
    ``types``, and a placeholder with no block is registered in ``enums``.
    """
    for name, block in registry.enums.items():
        existing = registry.types.get(name)
        if existing is not None and not isinstance(existing, Enum):
            logger.debug("Enum block %s shadows a %s type", name, existing.category)
        registry.types[name] = block
    for name, entry in registry.types.items():
        if isinstance(entry, Enum) and name not in registry.enums:
            registry.enums[name] = entry


def _owners(registry: Registry):
    for feature in registry.features:
        yield feature.name, None, feature.requirements
    for extension in registry.extensions:
        yield extension.name, extension.number, extension.requirements


def compute_enum_extensions(registry: Registry) -> list[tuple[Enum, str, EnumValue]]:
    """Compute every enum extension value without touching any Enum."""
    pending = []
    for owner, number, requirements in _owners(registry):
        for requirement in requirements:
            if not isinstance(requirement, EnumExtension):
                continue
            target = find_enum(registry, requirement.extends)
            if target is None:
                raise UnknownEnumTarget(owner, requirement.extends, requirement.name)
            value = compute_enum_value(requirement.strategy, number, owner, requirement.name)
            pending.append((target, requirement.name, value))
    return pending


def resolve_enum_extensions(registry: Registry) -> int:
    """Append extension-provided values to their target enums.

    All values are computed and validated first, so a failure leaves every
    enum unchanged. The first declaration of a value name wins. Returns the
    number of values appended.
    """
    pending = compute_enum_extensions(registry)
    seen: dict[int, set[str]] = defaultdict(set)
    appended = 0
    for target, name, value in pending:
        names = seen[id(target)]
        if not names:
            names.update(target.value_names())
        if name in names:
            continue
        target.values.append((name, value))
        names.add(name)
        appended += 1
    return appended


# ===--- Platforms ---=== #


def fill_platform_protect(registry: Registry) -> None:
    for index, extension in enumerate(registry.extensions):
        if extension.platform is None or extension.protect is not None:
            continue
        protect = registry.platforms.get(extension.platform)
        if protect is None:
            logger.warning(
                "Extension %s names unknown platform %r", extension.name, extension.platform
            )
            continue
        registry.extensions[index] = dataclasses.replace(extension, protect=protect)


def resolve_registry(registry: Registry) -> Registry:
    """Finish an assembled registry in place and return it.

    Calling it again on a resolved registry is a no-op.
    """
    if registry.resolved:
        return registry
    merge_enum_blocks(registry)
    appended = resolve_enum_extensions(registry)
    fill_platform_protect(registry)
    registry.resolved = True
    logger.info(
        "Resolved registry: %d enums, %d extension enum values, %d extensions",
        len(registry.enums),
        appended,
        len(registry.extensions),
    )
    return registry


# ===--- Extension dependencies ---=== #


def resolve_extension_deps(registry: Registry, requested: Iterable[str]) -> frozenset[str]:
    """Resolve extension dependencies transitively to a closed set.

    Unknown names pass through unchanged. Cycles are harmless here since
    every name is visited once.
    """
    requested = frozenset(requested)
    if not requested:
        return frozenset()

    dep_map = {ext.name: ext.requires for ext in registry.extensions}
    resolved: set[str] = set(requested)
    frontier: set[str] = set(requested)

    while frontier:
        new_frontier: set[str] = set()
        for ext_name in frontier:
            for dep in dep_map.get(ext_name, ()):
                if dep not in resolved:
                    resolved.add(dep)
                    new_frontier.add(dep)
        frontier = new_frontier

    return frozenset(resolved)


def sort_extensions_by_dependency(
    extensions: Iterable[ExtensionInfo],
) -> list[ExtensionInfo]:
    """Order extensions so each comes after the extensions it requires.

    Ties keep document order. Dependencies outside ``extensions`` are
    ignored. Raises DependencyCycle naming the extensions left unordered.
    """
    extensions = list(extensions)
    position = {ext.name: i for i, ext in enumerate(extensions)}
    in_degree = {ext.name: 0 for ext in extensions}
    dependents = defaultdict(list)
    for ext in extensions:
        for dep in set(ext.requires):
            if dep in position and dep != ext.name:
                dependents[dep].append(ext.name)
                in_degree[ext.name] += 1

    ready = [name for name, degree in in_degree.items() if degree == 0]
    result = []
    while ready:
        ready.sort(key=position.__getitem__)
        name = ready.pop(0)
        result.append(extensions[position[name]])
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                ready.append(dependent)

    if len(result) != len(extensions):
        remaining = frozenset(in_degree) - {ext.name for ext in result}
        raise DependencyCycle(remaining)

    return result


def requirements_of_kind(requirements: Iterable[Requirement], kind: type) -> list:
    return [r for r in requirements if isinstance(r, kind)]
