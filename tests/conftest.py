import argparse
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from vkregistry.events import StartElement, XmlEvent, events_from_string
from vkregistry.xast import Node, build_node

MINIMAL_REGISTRY = """<?xml version="1.0" encoding="UTF-8"?>
<registry>
    <comment>Minimal registry used by the tests</comment>
    <platforms>
        <platform name="xlib" protect="VK_USE_PLATFORM_XLIB_KHR" comment="X Window System"/>
    </platforms>
    <types>
        <type category="include" name="vk_platform">#include "vk_platform.h"</type>
        <type requires="vk_platform" name="uint32_t"/>
        <type category="define">// Version of this file
#define <name>VK_HEADER_VERSION</name> 343</type>
        <type category="basetype">typedef <type>uint32_t</type> <name>VkFlags</name>;</type>
        <type category="handle" objtypeenum="VK_OBJECT_TYPE_INSTANCE"><type>VK_DEFINE_HANDLE</type>(<name>VkInstance</name>)</type>
        <type category="enum" name="VkResult"/>
        <type category="enum" name="VkStructureType"/>
        <type category="struct" name="VkApplicationInfo">
            <member values="VK_STRUCTURE_TYPE_APPLICATION_INFO"><type>VkStructureType</type> <name>sType</name></member>
            <member optional="true">const <type>void</type>*     <name>pNext</name></member>
            <member optional="true" len="null-terminated">const <type>char</type>*     <name>pApplicationName</name></member>
            <member><type>uint32_t</type>        <name>apiVersion</name></member>
        </type>
    </types>
    <enums name="API Constants" type="constants">
        <enum type="uint32_t" value="256" name="VK_MAX_EXTENSION_NAME_SIZE"/>
    </enums>
    <enums name="VkResult" type="enum">
        <enum value="0" name="VK_SUCCESS"/>
        <enum value="1" name="VK_NOT_READY"/>
    </enums>
    <enums name="VkStructureType" type="enum">
        <enum value="0" name="VK_STRUCTURE_TYPE_APPLICATION_INFO"/>
    </enums>
    <commands>
        <command successcodes="VK_SUCCESS" errorcodes="VK_ERROR_OUT_OF_HOST_MEMORY">
            <proto><type>VkResult</type> <name>vkCreateInstance</name></proto>
            <param>const <type>VkInstanceCreateInfo</type>* <name>pCreateInfo</name></param>
            <param optional="true">const <type>VkAllocationCallbacks</type>* <name>pAllocator</name></param>
            <param><type>VkInstance</type>* <name>pInstance</name></param>
        </command>
        <command name="vkCreateInstanceKHR" alias="vkCreateInstance"/>
    </commands>
    <feature api="vulkan,vulkansc" name="VK_VERSION_1_0" number="1.0">
        <require comment="Header boilerplate">
            <type name="vk_platform"/>
        </require>
        <require>
            <type name="VkApplicationInfo"/>
            <command name="vkCreateInstance"/>
            <enum value="2" name="VK_FEATURE_ADDED_RESULT" extends="VkResult"/>
        </require>
    </feature>
    <extensions>
        <extension name="VK_KHR_surface" number="1" type="instance" supported="vulkan,vulkansc" author="KHR">
            <require>
                <enum offset="0" extends="VkResult" dir="-" name="VK_ERROR_SURFACE_LOST_KHR"/>
                <type name="VkSurfaceKHR"/>
            </require>
        </extension>
        <extension name="VK_KHR_xlib_surface" number="5" type="instance" depends="VK_KHR_surface" platform="xlib" supported="vulkan">
            <require>
                <enum offset="0" extends="VkStructureType" name="VK_STRUCTURE_TYPE_XLIB_SURFACE_CREATE_INFO_KHR"/>
                <command name="vkCreateXlibSurfaceKHR"/>
            </require>
        </extension>
        <extension name="VK_NV_reserved" number="7" supported="disabled">
            <require>
                <enum offset="0" extends="VkResult" name="VK_NV_RESERVED_VALUE"/>
            </require>
        </extension>
    </extensions>
</registry>
"""


@pytest.fixture
def make_events() -> Callable[[str], Iterator[XmlEvent]]:
    return events_from_string


@pytest.fixture
def make_started() -> Callable[[str], tuple[Iterator[XmlEvent], StartElement]]:
    """Return an event stream positioned just after the document's root start tag."""

    def _make_started(xml: str) -> tuple[Iterator[XmlEvent], StartElement]:
        events = events_from_string(xml)
        for event in events:
            if isinstance(event, StartElement):
                return events, event
        raise AssertionError("document has no elements")

    return _make_started


@pytest.fixture
def make_node(make_started) -> Callable[[str], Node]:
    def _make_node(xml: str) -> Node:
        events, start = make_started(xml)
        return build_node(events, start)

    return _make_node


@pytest.fixture
def minimal_registry_xml() -> str:
    return MINIMAL_REGISTRY


@pytest.fixture
def write_registry(tmp_path: Path) -> Callable[[str], Path]:
    def _write_registry(xml: str = MINIMAL_REGISTRY) -> Path:
        vk_xml = tmp_path / "vk.xml"
        vk_xml.write_text(xml, encoding="utf-8")
        return vk_xml

    return _write_registry


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(write_registry) -> Callable[..., argparse.Namespace]:
    vk_xml = write_registry()

    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "vk_xml": vk_xml,
            "api": "vulkan",
            "verbose": False,
            "list_features": False,
            "list_extensions": False,
            "info": None,
            "enum": None,
            "filter": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
