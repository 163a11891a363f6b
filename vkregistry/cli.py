"""Discovery commands over a parsed Vulkan registry.

Usage:
    python -m vkregistry --vk-xml path/to/vk.xml --list-features
    python -m vkregistry --vk-xml path/to/vk.xml --list-extensions --filter surface
    python -m vkregistry --vk-xml path/to/vk.xml --info VK_KHR_swapchain
    python -m vkregistry --vk-xml path/to/vk.xml --enum VkResult
"""

import argparse
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

from vkregistry.entities import is_version_token, split_depends
from vkregistry.errors import RegistryError
from vkregistry.model import (
    Define,
    EnumExtension,
    ReferenceCommand,
    ReferenceType,
    Registry,
    materialize,
)
from vkregistry.registry import load_registry_file
from vkregistry.resolve import find_enum, requirements_of_kind

logger = logging.getLogger(__name__)

DEFAULT_VK_XML = Path("vk.xml")
DEFAULT_API = "vulkan"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class DiscoveryConfig:
    command: str
    filter_text: str | None
    info_extension: str | None
    enum_name: str | None
    vk_xml: Path
    api: str
    verbose: bool = False


VALID_ERROR_CODES = {
    "MISSING_COMMAND",
    "INVALID_EXTENSION_NAME",
    "FILTER_WITHOUT_LIST",
    "PATH_NOT_FOUND",
}
_EXT_NAME_RE = re.compile(r"^VK_[A-Z0-9]+_[A-Za-z0-9_]+$")
_HEADER_VERSION_RE = re.compile(r"VK_HEADER_VERSION\s+(\d+)")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_extension_name(name: str) -> str:
    if _EXT_NAME_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_EXTENSION_NAME",
        f"Invalid extension name: {name}",
        "Extension names must match VK_<VENDOR>_<name> (for example VK_KHR_swapchain).",
    )


def validate_path_exists(path: Path | None, flag: str, suggestion: str | None = None) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vkregistry", description="Inspect a Vulkan API registry (vk.xml)"
    )

    parser.add_argument("--vk-xml", type=Path, default=DEFAULT_VK_XML)
    parser.add_argument("--api", type=str, default=DEFAULT_API)
    parser.add_argument("--verbose", "-v", action="store_true", default=False)

    discovery_group = parser.add_mutually_exclusive_group()
    discovery_group.add_argument("--list-features", action="store_true", default=False)
    discovery_group.add_argument("--list-extensions", action="store_true", default=False)
    discovery_group.add_argument("--info", type=str, default=None)
    discovery_group.add_argument("--enum", type=str, default=None)

    parser.add_argument("--filter", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> DiscoveryConfig:
    if args.filter and not args.list_extensions:
        raise ConfigError(
            "FILTER_WITHOUT_LIST",
            "--filter requires --list-extensions.",
            "Add --list-extensions or remove --filter.",
        )

    if args.list_features:
        command = "list-features"
    elif args.list_extensions:
        command = "list-extensions"
    elif args.info is not None:
        command = "info"
    elif args.enum is not None:
        command = "enum"
    else:
        raise ConfigError(
            "MISSING_COMMAND",
            "No discovery command given.",
            "Pass one of --list-features, --list-extensions, --info NAME, --enum NAME.",
        )

    vk_xml = validate_path_exists(
        args.vk_xml,
        "--vk-xml",
        "Clone Vulkan-Docs:\n"
        "  git clone https://github.com/KhronosGroup/Vulkan-Docs.git\n"
        "Then pass: --vk-xml Vulkan-Docs/xml/vk.xml",
    )
    info_extension = validate_extension_name(args.info) if args.info is not None else None

    return DiscoveryConfig(
        command=command,
        filter_text=args.filter,
        info_extension=info_extension,
        enum_name=args.enum,
        vk_xml=vk_xml,
        api=args.api,
        verbose=bool(args.verbose),
    )


def build_config(argv: list[str] | None = None) -> DiscoveryConfig:
    return validate_config(parse_args(argv))


# ===--- Summaries ---=== #


@dataclass(frozen=True)
class FeatureSummary:
    """One row of the --list-features table.

    Counts are taken from the feature's own require blocks; they are not
    cumulative over earlier versions.
    """

    name: str
    number: str
    type_count: int
    command_count: int
    enum_count: int


@dataclass(frozen=True)
class ExtensionSummary:
    """One row of the --list-extensions table.

    depends_raw is the raw depends= value, kept uninterpreted so the table can
    truncate it while --info splits it into names.
    """

    name: str
    ext_type: str
    type_count: int
    command_count: int
    depends_raw: str
    promoted_to: str | None


@dataclass(frozen=True)
class TypeRow:
    name: str
    category: str


@dataclass(frozen=True)
class EnumValueRow:
    name: str
    extends: str
    value: int | str


@dataclass(frozen=True)
class ExtensionDetail:
    """Full --info output for one extension, in require-block order, deduplicated."""

    summary: ExtensionSummary
    number: int
    protect: str | None
    types: tuple[TypeRow, ...]
    commands: tuple[str, ...]
    enum_values: tuple[EnumValueRow, ...]


def _unique_names(requirements, kind) -> tuple[str, ...]:
    return tuple(dict.fromkeys(r.name for r in requirements_of_kind(requirements, kind)))


def _version_key(number: str) -> tuple[int, ...] | None:
    try:
        return tuple(int(part) for part in number.split("."))
    except ValueError:
        return None


def extract_registry_version(registry: Registry) -> str:
    """Return the vk.xml version string, e.g. "1.4.343".

    Major.minor comes from the highest feature number, the patch from the
    VK_HEADER_VERSION define. Returns "unknown" when there are no features.
    """
    best = None
    for feature in registry.features:
        key = _version_key(feature.number)
        if key is not None and (best is None or key > best[0]):
            best = (key, feature.number)
    if best is None:
        return "unknown"

    header = registry.types.get("VK_HEADER_VERSION")
    if isinstance(header, Define):
        m = _HEADER_VERSION_RE.search("".join(header.node.itertext()))
        if m:
            return f"{best[1]}.{m.group(1)}"
    return best[1]


def gather_feature_summaries(registry: Registry) -> list[FeatureSummary]:
    return [
        FeatureSummary(
            name=feature.name,
            number=feature.number,
            type_count=len(_unique_names(feature.requirements, ReferenceType)),
            command_count=len(_unique_names(feature.requirements, ReferenceCommand)),
            enum_count=len(requirements_of_kind(feature.requirements, EnumExtension)),
        )
        for feature in registry.features
    ]


def _summarize_extension(extension) -> ExtensionSummary:
    return ExtensionSummary(
        name=extension.name,
        ext_type=extension.kind.value,
        type_count=len(_unique_names(extension.requirements, ReferenceType)),
        command_count=len(_unique_names(extension.requirements, ReferenceCommand)),
        depends_raw=extension.depends,
        promoted_to=extension.promoted_to,
    )


def gather_extension_summaries(registry: Registry, api: str = DEFAULT_API) -> list[ExtensionSummary]:
    """Return one summary per extension supported by ``api``, sorted by name."""
    summaries = [
        _summarize_extension(extension)
        for extension in registry.extensions
        if extension.supports(api)
    ]
    summaries.sort(key=lambda s: s.name)
    return summaries


def filter_extensions_by_text(
    summaries: list[ExtensionSummary],
    filter_text: str,
) -> list[ExtensionSummary]:
    """Keep summaries whose name contains filter_text, case-insensitively."""
    if not filter_text:
        return list(summaries)
    needle = filter_text.lower()
    return [s for s in summaries if needle in s.name.lower()]


def gather_extension_detail(registry: Registry, extension_name: str) -> ExtensionDetail | None:
    extension = registry.get_extension(extension_name)
    if extension is None:
        return None

    types = tuple(
        TypeRow(name, getattr(registry.types.get(name), "category", ""))
        for name in _unique_names(extension.requirements, ReferenceType)
    )
    enum_values = []
    for requirement in requirements_of_kind(extension.requirements, EnumExtension):
        target = find_enum(registry, requirement.extends)
        value = target.get(requirement.name) if target is not None else None
        enum_values.append(
            EnumValueRow(
                requirement.name,
                requirement.extends,
                materialize(value) if value is not None else "?",
            )
        )

    return ExtensionDetail(
        summary=_summarize_extension(extension),
        number=extension.number,
        protect=extension.protect,
        types=types,
        commands=_unique_names(extension.requirements, ReferenceCommand),
        enum_values=tuple(enum_values),
    )


# ===--- Formatters ---=== #


def format_features_table(summaries: list[FeatureSummary], registry_version: str) -> str:
    lines = [f"{len(summaries)} features in vk.xml {registry_version}:", ""]
    name_width = max((len(s.name) for s in summaries), default=0)
    for s in summaries:
        type_col = f"{s.type_count} types"
        cmd_col = f"{s.command_count} cmds"
        enum_col = f"{s.enum_count} enum values"
        lines.append(
            f"  {s.name.ljust(name_width)}  {s.number:<5} {type_col:<10} {cmd_col:<9} {enum_col}"
        )
    lines.append("")
    return "\n".join(lines)


def format_extensions_table(
    summaries: list[ExtensionSummary],
    registry_version: str,
) -> str:
    """Return the complete --list-extensions output as a single string.

    Output format:

        {N} Vulkan extensions in vk.xml {registry_version}:

          VK_KHR_swapchain  device    13 types   9 cmds   depends: VK_KHR_surface

    Long depends values are truncated with "...". Callers pre-filter with
    filter_extensions_by_text.
    """
    lines = [f"{len(summaries)} Vulkan extensions in vk.xml {registry_version}:", ""]

    if not summaries:
        lines.append("")
        return "\n".join(lines)

    name_width = max(len(s.name) for s in summaries)
    type_width = max(len(s.ext_type) for s in summaries)

    for s in summaries:
        if s.promoted_to is not None:
            annotation = f"promoted: {s.promoted_to}"
        elif s.depends_raw:
            raw = s.depends_raw
            if len(raw) > 40:
                raw = raw[:37] + "..."
            annotation = f"depends: {raw}"
        else:
            annotation = ""

        type_count_col = f"{s.type_count} types"
        cmd_count_col = f"{s.command_count} cmds"
        row = (
            f"  {s.name.ljust(name_width)}  {s.ext_type.ljust(type_width)}"
            f"  {type_count_col:<10} {cmd_count_col:<8}"
        )
        if annotation:
            row = row.rstrip() + f"  {annotation}"
        lines.append(row.rstrip())

    lines.append("")
    return "\n".join(lines)


def format_extension_detail(detail: ExtensionDetail) -> str:
    s = detail.summary
    lines = [f"{s.name} ({s.ext_type} extension, number {detail.number})"]

    # Version tokens are implied by the feature set, not real dependencies.
    ext_deps = sorted(d for d in split_depends(s.depends_raw) if not is_version_token(d))
    if ext_deps:
        lines.append(f"  Depends:  {', '.join(ext_deps)}")
    if detail.protect:
        lines.append(f"  Protect:  {detail.protect}")
    lines.append(f"  Promoted: {s.promoted_to if s.promoted_to is not None else 'no'}")

    lines.append("")
    lines.append(f"  Types ({len(detail.types)}):")
    name_width = max((len(row.name) for row in detail.types), default=0)
    for row in detail.types:
        if row.category:
            lines.append(f"    {row.name.ljust(name_width)}  {row.category}")
        else:
            lines.append(f"    {row.name}")

    lines.append("")
    lines.append(f"  Commands ({len(detail.commands)}):")
    for cmd in detail.commands:
        lines.append(f"    {cmd}")

    if detail.enum_values:
        lines.append("")
        lines.append(f"  Enum values ({len(detail.enum_values)}):")
        for row in detail.enum_values:
            lines.append(f"    {row.name} = {row.value}  ({row.extends})")

    lines.append("")
    return "\n".join(lines)


def format_enum(registry: Registry, name: str) -> str | None:
    enum = find_enum(registry, name)
    if enum is None:
        return None
    header = f"{enum.name} ({enum.kind}"
    if enum.bitwidth is not None:
        header += f", {enum.bitwidth}-bit"
    lines = [header + f", {len(enum.values)} values)"]
    name_width = max((len(n) for n, _ in enum.values), default=0)
    for value_name, value in enum.values:
        rendered = materialize(value)
        if isinstance(rendered, int) and enum.is_bitmask:
            rendered = hex(rendered)
        lines.append(f"  {value_name.ljust(name_width)}  {rendered}")
    lines.append("")
    return "\n".join(lines)


# ===--- Dispatch ---=== #


def run_discovery(config: DiscoveryConfig) -> None:
    """Load the registry, run the configured command and print its output.

    Prints to stderr and exits 1 when --info or --enum names something the
    registry does not have.
    """
    with open(config.vk_xml, "rb") as source:
        registry = load_registry_file(source, api=config.api)
    registry_version = extract_registry_version(registry)
    logger.debug("Loaded vk.xml %s from %s", registry_version, config.vk_xml)

    if config.command == "list-features":
        output = format_features_table(gather_feature_summaries(registry), registry_version)
        print(output, end="")

    elif config.command == "list-extensions":
        summaries = gather_extension_summaries(registry, config.api)
        if config.filter_text is not None:
            summaries = filter_extensions_by_text(summaries, config.filter_text)
        print(format_extensions_table(summaries, registry_version), end="")

    elif config.command == "info":
        detail = gather_extension_detail(registry, config.info_extension)
        if detail is None:
            print(
                f"Error: extension '{config.info_extension}' not found in vk.xml {registry_version}",
                file=sys.stderr,
            )
            raise SystemExit(1)
        print(format_extension_detail(detail), end="")

    elif config.command == "enum":
        output = format_enum(registry, config.enum_name)
        if output is None:
            print(
                f"Error: enum '{config.enum_name}' not found in vk.xml {registry_version}",
                file=sys.stderr,
            )
            raise SystemExit(1)
        print(output, end="")


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        run_discovery(config)
    except RegistryError as err:
        print(f"Registry error [{err.code}]: {err}")
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
