"""Registry assembly: one forward pass over the whole document.

The assembler is the only place that sees the document's top-level layout.
It dispatches each section to its entity parser and accumulates the results;
cross-references between sections are left to ``vkregistry.resolve``.
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import IO

from vkregistry.entities import (
    ConstantsBlock,
    api_matches,
    finish_scope,
    iter_entities,
    parse_enums,
    parse_extension,
    parse_feature,
    parse_next_command,
    parse_next_extension,
    parse_next_feature,
    parse_next_type,
    parse_platforms,
)
from vkregistry.errors import MissingTypesSection, UnexpectedEndOfStream
from vkregistry.events import (
    Contents,
    StartElement,
    XmlEvent,
    iter_events,
    next_start_element,
)
from vkregistry.model import (
    CommandAlias,
    CommandInfo,
    Constant,
    Enum,
    ExtensionInfo,
    FeatureInfo,
    Registry,
    TypeEntry,
)
from vkregistry.resolve import resolve_registry

logger = logging.getLogger(__name__)

NamePredicate = Callable[[str], bool]

SECTION_NAMES = (
    "types",
    "enums",
    "commands",
    "feature",
    "features",
    "extension",
    "extensions",
    "platforms",
)


def include_all(name: str) -> bool:
    return True


class RegistryAssembler:
    """Accumulates sections into a Registry as they stream past.

    ``<types>`` may appear anywhere in the document but must appear somewhere;
    repeated sections append to what was already collected.
    """

    def __init__(
        self,
        include_feature: NamePredicate = include_all,
        include_extension: NamePredicate = include_all,
        api: str | None = "vulkan",
    ):
        self.include_feature = include_feature
        self.include_extension = include_extension
        self.api = api
        self.types: dict[str, TypeEntry] | None = None
        self.constants: list[Constant] = []
        self.enums: dict[str, Enum] = {}
        self.commands: dict[str, CommandInfo] = {}
        self.command_aliases: dict[str, CommandAlias] = {}
        self.platforms: dict[str, str] = {}
        self.features: list[FeatureInfo] = []
        self.extensions: list[ExtensionInfo] = []
        self._sections = {
            "types": self._consume_types,
            "enums": self._consume_enums,
            "commands": self._consume_commands,
            "feature": self._consume_feature,
            "features": self._consume_features,
            "extension": self._consume_extension,
            "extensions": self._consume_extensions,
            "platforms": self._consume_platforms,
        }

    # ===--- Sections ---=== #

    def consume_section(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        self._sections[start.name](events, start)

    def _consume_types(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        if self.types is None:
            self.types = {}
        contents = Contents(events)
        count = 0
        for entry in iter_entities(parse_next_type, contents, api=self.api):
            self.types[entry.name] = entry
            count += 1
        finish_scope(contents, "types")
        logger.debug("Parsed %d types", count)

    def _consume_enums(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        block = parse_enums(events, start, self.api)
        if isinstance(block, ConstantsBlock):
            self.constants.extend(block.constants)
        elif isinstance(block, Enum):
            existing = self.enums.get(block.name)
            if existing is None:
                self.enums[block.name] = block
                return
            names = existing.value_names()
            existing.values.extend(v for v in block.values if v[0] not in names)
            logger.debug("Appended a repeated <enums name=%r> block", block.name)

    def _consume_commands(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        contents = Contents(events)
        for command in iter_entities(parse_next_command, contents, api=self.api):
            if isinstance(command, CommandAlias):
                self.command_aliases[command.name] = command
            else:
                self.commands[command.name] = command
        finish_scope(contents, "commands")
        logger.debug(
            "Parsed %d commands, %d command aliases",
            len(self.commands),
            len(self.command_aliases),
        )

    def _add_feature(self, feature: FeatureInfo) -> None:
        if not api_matches(feature.api, self.api):
            logger.debug("Skipping feature %s for api %s", feature.name, feature.api)
            return
        if not self.include_feature(feature.name):
            logger.debug("Feature %s excluded by filter", feature.name)
            return
        self.features.append(feature)

    def _consume_feature(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        self._add_feature(parse_feature(events, start, self.api))

    def _consume_features(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        contents = Contents(events)
        for feature in iter_entities(parse_next_feature, contents, api=self.api):
            self._add_feature(feature)
        finish_scope(contents, "features")

    def _add_extension(self, extension: ExtensionInfo) -> None:
        if not self.include_extension(extension.name):
            logger.debug("Extension %s excluded by filter", extension.name)
            return
        self.extensions.append(extension)

    def _consume_extension(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        self._add_extension(parse_extension(events, start, self.api))

    def _consume_extensions(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        contents = Contents(events)
        for extension in iter_entities(parse_next_extension, contents, api=self.api):
            self._add_extension(extension)
        finish_scope(contents, "extensions")
        logger.debug("Collected %d extensions so far", len(self.extensions))

    def _consume_platforms(self, events: Iterator[XmlEvent], start: StartElement) -> None:
        self.platforms.update(parse_platforms(events))

    # ===--- Driver ---=== #

    def consume(self, events: Iterator[XmlEvent]) -> None:
        root = next((e for e in events if isinstance(e, StartElement)), None)
        if root is None:
            raise UnexpectedEndOfStream("Registry document is empty", element="registry")
        if root.name in self._sections:
            self.consume_section(events, root)
            return
        contents = Contents(events)
        for start in iter_entities(next_start_element, contents, names=SECTION_NAMES):
            self.consume_section(contents, start)
        finish_scope(contents, root.name)

    def finish(self) -> Registry:
        if self.types is None:
            raise MissingTypesSection()
        types = dict(self.types)
        for constant in self.constants:
            types[constant.name] = constant
        return Registry(
            types=types,
            enums=self.enums,
            commands=self.commands,
            command_aliases=self.command_aliases,
            platforms=self.platforms,
            features=self.features,
            extensions=self.extensions,
        )


def assemble_registry(
    events: Iterable[XmlEvent],
    include_feature: NamePredicate = include_all,
    include_extension: NamePredicate = include_all,
    api: str | None = "vulkan",
) -> Registry:
    """Build an unresolved Registry from a stream of parse events.

    Filtered-out features and extensions are still parsed in full, so a
    malformed entity fails the build whether or not it was wanted.
    """
    assembler = RegistryAssembler(include_feature, include_extension, api)
    assembler.consume(iter(events))
    registry = assembler.finish()
    logger.debug(
        "Assembled %d types, %d enums, %d features, %d extensions",
        len(registry.types),
        len(registry.enums),
        len(registry.features),
        len(registry.extensions),
    )
    return registry


def load_registry(
    events: Iterable[XmlEvent],
    include_feature: NamePredicate = include_all,
    include_extension: NamePredicate = include_all,
    api: str | None = "vulkan",
) -> Registry:
    """Assemble and resolve a registry in one call."""
    return resolve_registry(assemble_registry(events, include_feature, include_extension, api))


def load_registry_file(
    source: IO[bytes],
    include_feature: NamePredicate = include_all,
    include_extension: NamePredicate = include_all,
    api: str | None = "vulkan",
) -> Registry:
    """Load a registry from an already-open vk.xml file object."""
    return load_registry(iter_events(source), include_feature, include_extension, api)
