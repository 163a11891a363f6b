import re

import pytest

from vkregistry.entities import (
    ConstantsBlock,
    api_matches,
    iter_entities,
    parse_command,
    parse_enums,
    parse_extension,
    parse_feature,
    parse_next_command,
    parse_next_enums,
    parse_next_requirement,
    parse_next_type,
    parse_platforms,
    parse_type,
    split_depends,
)
from vkregistry.errors import (
    MalformedNumericLiteral,
    MissingRequiredField,
    UnexpectedEndOfStream,
    UnrecognizedCategory,
)
from vkregistry.events import Contents, StartElement
from vkregistry.model import (
    Alias,
    AliasStrategy,
    Basetype,
    BitPosition,
    BitposStrategy,
    Bitmask,
    CommandAlias,
    CommandBufferLevel,
    Constant,
    ConstantValue,
    Define,
    Enum,
    EnumExtension,
    ExplicitValue,
    ExtensionKind,
    Funcpointer,
    Group,
    Handle,
    HandleKind,
    Include,
    OffsetStrategy,
    PipelineType,
    ReferenceCommand,
    ReferenceEnum,
    ReferenceType,
    RenderPass,
    Struct,
    StringValue,
    Uncategorized,
    Union,
    ValueStrategy,
)


@pytest.fixture
def type_from(make_started):
    def _type_from(xml: str, api: str | None = "vulkan"):
        events, start = make_started(xml)
        return parse_type(events, start, api)

    return _type_from


# ===--- Types ---=== #


def test_basetype_with_and_without_underlying_type(type_from) -> None:
    flags = type_from('<type category="basetype">typedef <type>uint32_t</type> <name>VkFlags</name>;</type>')
    opaque = type_from('<type category="basetype">struct <name>ANativeWindow</name>;</type>')

    assert flags == Basetype("VkFlags", "uint32_t")
    assert opaque == Basetype("ANativeWindow", None)


def test_bitmask_reads_underlying_type_and_bits(type_from) -> None:
    entry = type_from(
        '<type requires="VkCullModeFlagBits" category="bitmask">'
        "typedef <type>VkFlags</type> <name>VkCullModeFlags</name>;</type>"
    )

    assert entry == Bitmask("VkCullModeFlags", "VkFlags", "VkCullModeFlagBits")


def test_handle_kind_depends_on_macro(type_from) -> None:
    dispatchable = type_from(
        '<type category="handle" parent="VkInstance">'
        "<type>VK_DEFINE_HANDLE</type>(<name>VkPhysicalDevice</name>)</type>"
    )
    non_dispatchable = type_from(
        '<type category="handle" parent="VkDevice">'
        "<type>VK_DEFINE_NON_DISPATCHABLE_HANDLE</type>(<name>VkBuffer</name>)</type>"
    )

    assert dispatchable == Handle("VkPhysicalDevice", "VkInstance", HandleKind.DISPATCHABLE)
    assert non_dispatchable.kind is HandleKind.NON_DISPATCHABLE


def test_struct_members_keep_document_order(type_from) -> None:
    entry = type_from(
        '<type category="struct" name="VkExtent2D" structextends="A,B" returnedonly="true">'
        "<member><type>uint32_t</type> <name>width</name></member>"
        "<comment>between</comment>"
        "<member><type>uint32_t</type> <name>height</name></member>"
        "</type>"
    )

    assert isinstance(entry, Struct)
    assert [m.name for m in entry.members] == ["width", "height"]
    assert entry.extends == ("A", "B")
    assert entry.returned_only
    assert not entry.is_extensible


def test_struct_members_for_other_apis_are_dropped(type_from) -> None:
    xml = (
        '<type category="struct" name="VkS">'
        '<member api="vulkan"><type>uint32_t</type> <name>a</name></member>'
        '<member api="vulkansc"><type>uint32_t</type> <name>b</name></member>'
        "</type>"
    )

    assert [m.name for m in type_from(xml).members] == ["a"]
    assert [m.name for m in type_from(xml, api=None).members] == ["a", "b"]


def test_union_members(type_from) -> None:
    entry = type_from(
        '<type category="union" name="VkClearColorValue">'
        "<member><type>float</type> <name>float32</name>[4]</member>"
        "<member><type>int32_t</type> <name>int32</name>[4]</member>"
        "</type>"
    )

    assert isinstance(entry, Union)
    assert [m.array_size for m in entry.members] == ["4", "4"]


def test_funcpointer_legacy_text_form(type_from) -> None:
    entry = type_from(
        '<type category="funcpointer">typedef void* (VKAPI_PTR *<name>PFN_vkAllocationFunction</name>)(\n'
        "    <type>void</type>*                                       pUserData,\n"
        "    <type>size_t</type>                                      size,\n"
        "    const <type>char</type>*                                 pMessage);</type>"
    )

    assert isinstance(entry, Funcpointer)
    assert entry.name == "PFN_vkAllocationFunction"
    assert entry.return_type.type_name == "void"
    assert entry.return_type.constness == (False,)
    assert [(p.name, p.typeref.type_name, p.typeref.constness) for p in entry.params] == [
        ("pUserData", "void", (False,)),
        ("size", "size_t", ()),
        ("pMessage", "char", (True,)),
    ]


def test_funcpointer_without_params(type_from) -> None:
    entry = type_from(
        '<type category="funcpointer">typedef void (VKAPI_PTR *<name>PFN_vkVoidFunction</name>)(void);</type>'
    )

    assert entry == Funcpointer("PFN_vkVoidFunction", (), entry.return_type)
    assert entry.return_type.type_name == "void"
    assert entry.return_type.constness == ()


def test_funcpointer_proto_form(type_from) -> None:
    entry = type_from(
        '<type category="funcpointer">'
        "<proto><type>VkBool32</type> (VKAPI_PTR *<name>PFN_vkDebugCallback</name>)</proto>"
        "<param><type>VkFlags</type> <name>flags</name></param>"
        '<param optional="true"><type>void</type>* <name>pUserData</name></param>'
        "</type>"
    )

    assert entry.name == "PFN_vkDebugCallback"
    assert entry.return_type.type_name == "VkBool32"
    assert entry.return_type.constness == ()
    assert [p.name for p in entry.params] == ["flags", "pUserData"]
    assert entry.params[1].is_optional


@pytest.mark.parametrize(
    ("xml", "kind"),
    [
        ('<type category="define">#define <name>VK_API_VERSION</name> 1</type>', Define),
        ('<type category="include" name="vk_platform">#include "vk_platform.h"</type>', Include),
        ('<type category="group" name="VkThings"/>', Group),
        ('<type requires="stdint" name="uint8_t"/>', Uncategorized),
    ],
)
def test_raw_categories_keep_their_node(type_from, xml, kind) -> None:
    entry = type_from(xml)

    assert isinstance(entry, kind)
    assert entry.node.name == "type"


def test_enum_category_is_an_empty_placeholder(type_from) -> None:
    assert type_from('<type category="enum" name="VkResult"/>') == Enum("VkResult")


def test_alias_type(type_from) -> None:
    entry = type_from('<type category="struct" name="VkFooKHR" alias="VkFoo"/>')

    assert entry == Alias("VkFooKHR", "VkFoo", "struct")


def test_unknown_category_fails(type_from) -> None:
    with pytest.raises(UnrecognizedCategory) as exc_info:
        type_from('<type category="mystery" name="VkX"/>')

    assert exc_info.value.value == "mystery"
    assert exc_info.value.entity == "VkX"


def test_type_for_other_api_is_skipped(make_started) -> None:
    events, _ = make_started(
        "<types>"
        '<type category="struct" name="VkOnlySC" api="vulkansc"/>'
        '<type category="enum" name="VkKept"/>'
        "</types>"
    )
    contents = Contents(events)

    assert list(iter_entities(parse_next_type, contents, api="vulkan")) == [Enum("VkKept")]
    assert contents.closed


def test_truncated_type_fails() -> None:
    events = iter(
        [
            StartElement("type", {"category": "struct", "name": "VkX"}),
            StartElement("member", {}),
        ]
    )

    with pytest.raises(UnexpectedEndOfStream):
        list(iter_entities(parse_next_type, events))


# ===--- Enum blocks ---=== #


def test_enums_block_becomes_enum(make_started) -> None:
    events, start = make_started(
        '<enums name="VkCullModeFlagBits" type="bitmask" bitwidth="64">'
        '<enum value="0" name="VK_CULL_MODE_NONE"/>'
        '<enum bitpos="0" name="VK_CULL_MODE_FRONT_BIT"/>'
        '<enum name="VK_CULL_MODE_FRONT" alias="VK_CULL_MODE_FRONT_BIT"/>'
        "<unused start=\"2\"/>"
        "</enums>"
    )

    block = parse_enums(events, start)

    assert block.is_bitmask
    assert block.bitwidth == 64
    assert block.values[:2] == [
        ("VK_CULL_MODE_NONE", ExplicitValue(0)),
        ("VK_CULL_MODE_FRONT_BIT", BitPosition(0)),
    ]
    assert block.get("VK_CULL_MODE_FRONT").target == "VK_CULL_MODE_FRONT_BIT"


def test_constants_block(make_started) -> None:
    events, start = make_started(
        '<enums name="API Constants" type="constants">'
        '<enum type="uint32_t" value="256" name="VK_MAX_EXTENSION_NAME_SIZE"/>'
        '<enum type="float" value="1000.0F" name="VK_LOD_CLAMP_NONE"/>'
        "</enums>"
    )

    block = parse_enums(events, start)

    assert block == ConstantsBlock(
        "API Constants",
        (
            Constant("VK_MAX_EXTENSION_NAME_SIZE", ExplicitValue(256), "uint32_t"),
            Constant("VK_LOD_CLAMP_NONE", StringValue("1000.0F"), "float"),
        ),
    )


def test_untyped_enums_block_is_discarded(make_started) -> None:
    events, start = make_started('<enums name="Loose"><enum value="1" name="A"/></enums>')

    assert parse_enums(events, start) is None


def test_parse_next_enums_skips_untyped_blocks(make_started) -> None:
    events, _ = make_started(
        "<registry>"
        '<enums name="Loose"><enum value="1" name="A"/></enums>'
        '<comment>between</comment>'
        '<enums name="VkResult" type="enum"><enum value="0" name="VK_SUCCESS"/></enums>'
        "</registry>"
    )
    contents = Contents(events)

    blocks = list(iter_entities(parse_next_enums, contents))

    assert blocks == [Enum("VkResult", [("VK_SUCCESS", ExplicitValue(0))])]
    assert contents.closed


def test_unknown_enums_type_fails(make_started) -> None:
    events, start = make_started('<enums name="X" type="flags"/>')

    with pytest.raises(UnrecognizedCategory):
        parse_enums(events, start)


def test_enum_value_missing_both_attributes_fails(make_started) -> None:
    events, start = make_started('<enums name="X" type="enum"><enum name="A"/></enums>')

    with pytest.raises(MissingRequiredField):
        parse_enums(events, start)


# ===--- Commands ---=== #


def test_command_attributes(make_started) -> None:
    events, start = make_started(
        '<command queues="graphics,compute" renderpass="both" '
        'cmdbufferlevel="primary,secondary" pipeline="graphics" '
        'successcodes="VK_SUCCESS,VK_INCOMPLETE">'
        "<proto><type>void</type> <name>vkCmdDraw</name></proto>"
        '<param externsync="true"><type>VkCommandBuffer</type> <name>commandBuffer</name></param>'
        "<param><type>uint32_t</type> <name>vertexCount</name></param>"
        "<implicitexternsyncparams><param>the pool</param></implicitexternsyncparams>"
        "</command>"
    )

    command = parse_command(events, start)

    assert command.name == "vkCmdDraw"
    assert command.return_type.type_name == "void"
    assert [p.name for p in command.params] == ["commandBuffer", "vertexCount"]
    assert command.queues == ("graphics", "compute")
    assert command.successcodes == ("VK_SUCCESS", "VK_INCOMPLETE")
    assert command.renderpass is RenderPass.BOTH
    assert command.cmdbufferlevel == frozenset(
        {CommandBufferLevel.PRIMARY, CommandBufferLevel.SECONDARY}
    )
    assert command.pipeline is PipelineType.GRAPHICS


def test_command_alias(make_started) -> None:
    events, start = make_started('<command name="vkFooKHR" alias="vkFoo"/>')

    assert parse_command(events, start) == CommandAlias("vkFooKHR", "vkFoo")


@pytest.mark.parametrize(
    "attribute",
    ['renderpass="sideways"', 'cmdbufferlevel="tertiary"', 'pipeline="audio"'],
)
def test_bad_command_enumeration_fails(make_started, attribute) -> None:
    events, start = make_started(
        f"<command {attribute}><proto><type>void</type> <name>vkX</name></proto></command>"
    )

    with pytest.raises(UnrecognizedCategory):
        parse_command(events, start)


def test_command_without_proto_fails(make_started) -> None:
    events, start = make_started('<command name="vkX"><param/></command>')

    with pytest.raises(MissingRequiredField):
        parse_command(events, start)


def test_parse_next_command_skips_other_apis(make_started) -> None:
    events, _ = make_started(
        "<commands>"
        '<command api="vulkansc"><proto><type>void</type> <name>vkSC</name></proto></command>'
        '<command api="vulkan"><proto><type>void</type> <name>vkVK</name></proto></command>'
        "</commands>"
    )

    assert [c.name for c in iter_entities(parse_next_command, events)] == ["vkVK"]


# ===--- Requirements ---=== #


def test_requirement_kinds(make_started) -> None:
    events, _ = make_started(
        "<require>"
        '<type name="VkSurfaceKHR"/>'
        '<command name="vkDestroySurfaceKHR"/>'
        '<enum name="VK_KHR_SURFACE_SPEC_VERSION" value="25"/>'
        '<enum name="VK_KHR_SURFACE_EXTENSION_NAME" value="&quot;VK_KHR_surface&quot;"/>'
        '<enum name="VK_MAX_EXTENSION_NAME_SIZE"/>'
        '<enum offset="0" extends="VkResult" dir="-" name="VK_ERROR_SURFACE_LOST_KHR"/>'
        '<enum bitpos="4" extends="VkBits" name="VK_BIT_4"/>'
        '<enum value="7" extends="VkResult" name="VK_SEVEN"/>'
        '<enum extends="VkResult" name="VK_ALIASED" alias="VK_SEVEN"/>'
        '<enum offset="3" extends="VkResult" extnumber="12" name="VK_FROM_OTHER"/>'
        "<comment>ignored</comment>"
        "</require>"
    )

    requirements = list(iter_entities(parse_next_requirement, events))

    assert requirements == [
        ReferenceType("VkSurfaceKHR"),
        ReferenceCommand("vkDestroySurfaceKHR"),
        ConstantValue("VK_KHR_SURFACE_SPEC_VERSION", ExplicitValue(25)),
        ConstantValue("VK_KHR_SURFACE_EXTENSION_NAME", StringValue('"VK_KHR_surface"')),
        ReferenceEnum("VK_MAX_EXTENSION_NAME_SIZE"),
        EnumExtension("VK_ERROR_SURFACE_LOST_KHR", "VkResult", OffsetStrategy(0, negated=True)),
        EnumExtension("VK_BIT_4", "VkBits", BitposStrategy(4)),
        EnumExtension("VK_SEVEN", "VkResult", ValueStrategy(ExplicitValue(7))),
        EnumExtension("VK_ALIASED", "VkResult", AliasStrategy("VK_SEVEN")),
        EnumExtension("VK_FROM_OTHER", "VkResult", OffsetStrategy(3, extnumber=12)),
    ]


def test_bad_offset_fails(make_started) -> None:
    events, _ = make_started('<require><enum offset="x" extends="VkResult" name="A"/></require>')

    with pytest.raises(MalformedNumericLiteral):
        list(iter_entities(parse_next_requirement, events))


# ===--- Features and extensions ---=== #


def test_feature_collects_requirements_and_removals(make_started) -> None:
    events, start = make_started(
        '<feature api="vulkan" name="VK_VERSION_1_1" number="1.1" depends="VK_VERSION_1_0">'
        '<require><type name="A"/></require>'
        '<require api="vulkansc"><type name="OnlySC"/></require>'
        '<remove><command name="vkGone"/></remove>'
        "</feature>"
    )

    feature = parse_feature(events, start)

    assert feature.name == "VK_VERSION_1_1"
    assert feature.number == "1.1"
    assert feature.requires == ("VK_VERSION_1_0",)
    assert feature.requirements == (ReferenceType("A"),)
    assert feature.removals == (ReferenceCommand("vkGone"),)
    assert feature.protect is None


def test_feature_requires_number(make_started) -> None:
    events, start = make_started('<feature api="vulkan" name="VK_VERSION_1_0"/>')

    with pytest.raises(MissingRequiredField) as exc_info:
        parse_feature(events, start)

    assert exc_info.value.field == "number"


def test_extension_fields(make_started) -> None:
    events, start = make_started(
        '<extension name="VK_KHR_swapchain" number="2" type="device" '
        'depends="VK_KHR_surface+VK_VERSION_1_1" supported="vulkan,vulkansc" '
        'author="KHR" contact="someone" promotedto="VK_VERSION_1_4">'
        '<require><command name="vkCreateSwapchainKHR"/></require>'
        "</extension>"
    )

    extension = parse_extension(events, start)

    assert extension.number == 2
    assert extension.kind is ExtensionKind.DEVICE
    assert extension.supports("vulkan")
    assert extension.supports("vulkansc")
    assert not extension.supports("vulkan2")
    assert extension.requires == ("VK_KHR_surface",)
    assert extension.depends == "VK_KHR_surface+VK_VERSION_1_1"
    assert extension.author == "KHR"
    assert extension.promoted_to == "VK_VERSION_1_4"
    assert extension.requirements == (ReferenceCommand("vkCreateSwapchainKHR"),)


def test_extension_requires_attribute_wins_over_depends(make_started) -> None:
    events, start = make_started(
        '<extension name="VK_A_b" number="3" type="instance" supported="vulkan" '
        'requires="VK_X,VK_Y" depends="VK_Z"/>'
    )

    assert parse_extension(events, start).requires == ("VK_X", "VK_Y")


@pytest.mark.parametrize(
    "attributes",
    ['supported="disabled" type="device"', 'supported="vulkan"'],
)
def test_disabled_extensions(make_started, attributes) -> None:
    events, start = make_started(f'<extension name="VK_A_b" number="3" {attributes}/>')

    assert parse_extension(events, start).kind is ExtensionKind.DISABLED


def test_extension_with_unknown_type_fails(make_started) -> None:
    events, start = make_started(
        '<extension name="VK_A_b" number="3" type="galaxy" supported="vulkan"/>'
    )

    with pytest.raises(UnrecognizedCategory):
        parse_extension(events, start)


def test_extension_with_bad_number_fails(make_started) -> None:
    events, start = make_started('<extension name="VK_A_b" number="three" supported="disabled"/>')

    with pytest.raises(MalformedNumericLiteral):
        parse_extension(events, start)


def test_platforms(make_started) -> None:
    events, _ = make_started(
        "<platforms>"
        '<platform name="xlib" protect="VK_USE_PLATFORM_XLIB_KHR"/>'
        '<platform name="win32" protect="VK_USE_PLATFORM_WIN32_KHR"/>'
        "</platforms>"
    )

    assert parse_platforms(events) == {
        "xlib": "VK_USE_PLATFORM_XLIB_KHR",
        "win32": "VK_USE_PLATFORM_WIN32_KHR",
    }


# ===--- Helpers ---=== #


def test_split_depends_flattens_and_dedupes() -> None:
    assert split_depends("(VK_A+VK_B),VK_A,VK_VERSION_1_1") == ("VK_A", "VK_B", "VK_VERSION_1_1")
    assert split_depends("") == ()


def test_api_matches() -> None:
    assert api_matches(None, "vulkan")
    assert api_matches("vulkan,vulkansc", "vulkansc")
    assert not api_matches("vulkansc", "vulkan")
    assert api_matches("vulkansc", None)


def test_supported_matcher_is_a_full_match(make_started) -> None:
    events, start = make_started(
        '<extension name="VK_A_b" number="1" type="device" supported="vulkan"/>'
    )

    extension = parse_extension(events, start)

    assert isinstance(extension.supported, re.Pattern)
    assert not extension.supports("vulkansc")
