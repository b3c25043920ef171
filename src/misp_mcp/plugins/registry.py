"""Tool registry - the name to descriptor mapping shared by every dispatch.

Populated during startup, then frozen before the transport is read. After
freezing the registry never changes, so concurrent lookups need no locking.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from misp_mcp.plugins.base import PluginBase, ToolDescriptor
from misp_mcp.protocol.errors import ToolNotFoundError


class RegistryError(Exception):
    """Raised for invalid registrations. Fatal at startup."""

    pass


class DuplicateToolError(RegistryError):
    """Raised when a tool name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool already registered: {name}")
        self.name = name


class RegistryFrozenError(RegistryError):
    """Raised when registering after the registry was frozen."""

    pass


class ToolRegistry:
    """Holds registered tools in registration order."""

    def __init__(self) -> None:
        """Initialize an empty, unfrozen registry."""
        self._tools: dict[str, ToolDescriptor] = {}
        self._plugins: list[PluginBase] = []
        self._frozen = False
        self._snapshot: list[dict[str, Any]] | None = None

    @property
    def frozen(self) -> bool:
        """Whether registration is closed."""
        return self._frozen

    @property
    def plugins(self) -> list[PluginBase]:
        """Plugins registered through register_plugin()."""
        return list(self._plugins)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a single tool.

        Args:
            descriptor: Tool to add.

        Raises:
            RegistryFrozenError: If the registry is frozen.
            DuplicateToolError: If the name is taken.
            RegistryError: If the input schema is not a valid JSON Schema.
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{descriptor.name}': registry is frozen")
        if descriptor.name in self._tools:
            raise DuplicateToolError(descriptor.name)
        try:
            Draft202012Validator.check_schema(descriptor.input_schema)
        except SchemaError as e:
            raise RegistryError(
                f"Tool '{descriptor.name}' has an invalid input schema: {e.message}"
            ) from e

        self._tools[descriptor.name] = descriptor

    def register_plugin(self, plugin: PluginBase) -> None:
        """Register every tool a plugin provides.

        Args:
            plugin: Plugin instance to register.

        Raises:
            RegistryError: If any of its tools cannot be registered.
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register plugin '{plugin.name}': registry is frozen")
        for descriptor in plugin.get_tools():
            self.register(descriptor)
        self._plugins.append(plugin)

    def freeze(self) -> None:
        """Close registration and take the tools/list snapshot."""
        if self._frozen:
            return
        self._frozen = True
        self._snapshot = [descriptor.to_dict() for descriptor in self._tools.values()]

    def lookup(self, name: str) -> ToolDescriptor:
        """Look up a tool by name.

        Raises:
            ToolNotFoundError: If no tool has that name.
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolNotFoundError(f"Tool not found: {name}", data={"tool": name})
        return descriptor

    def list(self) -> list[ToolDescriptor]:
        """Return descriptors in registration order."""
        return list(self._tools.values())

    def list_tools(self) -> list[dict[str, Any]]:
        """List all tools in MCP format.

        Returns:
            List of tool definitions in MCP format, identical across calls
            once the registry is frozen.
        """
        if self._snapshot is not None:
            return self._snapshot
        return [descriptor.to_dict() for descriptor in self._tools.values()]
