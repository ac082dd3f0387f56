"""Tool system — ToolRegistry and the factory that assembles built-in tools."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from langchain_core.utils.function_calling import convert_to_openai_tool
from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from toolbot.core.errors import (
    DuplicateToolError,
    MissingExecutionHandlerError,
    UnknownToolError,
    ValidationError,
)

if TYPE_CHECKING:
    from toolbot.agent.context import AgentContext
    from toolbot.core.config.schema import Config

# async (validated_args, ctx) -> JSON-able result
Executor = Callable[[Any, "AgentContext"], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    """A named capability the model can request.

    A definition without ``execute`` is confirmation-required; its body is
    registered separately with :meth:`ToolRegistry.register_execution` and
    only runs after a human approves the call.
    """

    name: str
    description: str
    input_schema: type[BaseModel]
    execute: Executor | None = None

    @property
    def requires_confirmation(self) -> bool:
        return self.execute is None

    def validate(self, raw: Any) -> BaseModel:
        """Validate raw arguments against the input schema."""
        try:
            return self.input_schema.model_validate(raw if raw is not None else {})
        except SchemaValidationError as e:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(self.name, detail) from e


@dataclass(frozen=True)
class ToolExecutor:
    """Resolved body for a tool: runs directly (auto) or after approval (confirm)."""

    kind: Literal["auto", "confirm"]
    run: Executor


class ToolRegistry:
    """Central tool registry: the single source of truth for tool metadata.

    Populated once at startup and read-only afterwards. Confirmation-required
    tools keep their bodies in a separate execution map under the same name.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._executions: dict[str, Executor] = {}
        self._groups: dict[str, list[str]] = {}

    def register(self, definition: ToolDefinition, group: str = "default") -> None:
        if definition.name in self._tools:
            raise DuplicateToolError(definition.name)
        self._tools[definition.name] = definition
        self._groups.setdefault(group, []).append(definition.name)

    def register_group(self, group: str, definitions: list[ToolDefinition]) -> None:
        """Register a list of tools under a group name."""
        for d in definitions:
            self.register(d, group=group)

    def register_execution(self, name: str, run: Executor) -> None:
        """Attach the approved-call body of a confirmation-required tool."""
        definition = self.lookup(name)
        if not definition.requires_confirmation:
            raise ValueError(f"Tool {name} auto-executes; it takes no separate execution")
        if name in self._executions:
            raise DuplicateToolError(name)
        self._executions[name] = run

    def lookup(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def requires_confirmation(self, name: str) -> bool:
        return self.lookup(name).requires_confirmation

    def executor_for(self, name: str) -> ToolExecutor:
        """Resolve the body that runs for ``name``.

        Raises
        ------
        UnknownToolError
            ``name`` is not registered.
        MissingExecutionHandlerError
            ``name`` needs confirmation but has no execution registered.
        """
        definition = self.lookup(name)
        if definition.execute is not None:
            return ToolExecutor(kind="auto", run=definition.execute)
        run = self._executions.get(name)
        if run is None:
            raise MissingExecutionHandlerError(name)
        return ToolExecutor(kind="confirm", run=run)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get_groups_summary(self) -> dict[str, list[str]]:
        """Return group -> tool names mapping."""
        return {g: list(names) for g, names in self._groups.items()}

    def missing_executions(self) -> list[str]:
        """Confirmation-required tools that would fail at approval time."""
        return [
            n for n, d in self._tools.items()
            if d.requires_confirmation and n not in self._executions
        ]

    def to_model_tools(self) -> list[dict[str, Any]]:
        """OpenAI-style function specs describing every tool to the model."""
        specs = []
        for d in self._tools.values():
            spec = convert_to_openai_tool(d.input_schema)
            spec["function"]["name"] = d.name
            spec["function"]["description"] = d.description
            specs.append(spec)
        return specs


def make_registry(config: Config) -> ToolRegistry:
    """Build the registry with all built-in tools and executions."""
    from toolbot.agent.tools.builtin import make_builtin_executions, make_builtin_tools
    from toolbot.agent.tools.scheduling import make_scheduling_tools

    registry = ToolRegistry()
    registry.register_group("scheduling", make_scheduling_tools())
    registry.register_group("builtin", make_builtin_tools())
    for name, run in make_builtin_executions(config).items():
        registry.register_execution(name, run)

    missing = registry.missing_executions()
    if missing:
        logger.warning(f"Confirmation tools without execution handler: {missing}")
    logger.info(f"ToolRegistry ready: {len(registry)} tools")
    return registry
