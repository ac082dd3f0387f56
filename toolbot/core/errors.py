"""Error taxonomy shared by the registry, gate, scheduler and context."""

from __future__ import annotations


class ToolbotError(Exception):
    """Base error. ``kind`` is the name reported back to the model/user."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def message(self) -> str:
        return str(self)


class UnknownToolError(ToolbotError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class DuplicateToolError(ToolbotError):
    def __init__(self, name: str):
        super().__init__(f"Tool already registered: {name}")
        self.name = name


class ValidationError(ToolbotError):
    """Arguments rejected by a tool's input schema."""

    def __init__(self, name: str, detail: str):
        super().__init__(f"Invalid arguments for {name}: {detail}")
        self.name = name
        self.detail = detail


class ExecutionError(ToolbotError):
    """A tool body raised while running."""

    def __init__(self, name: str, cause: BaseException | str):
        super().__init__(f"Tool {name} failed: {cause}")
        self.name = name


class UnknownPendingCallError(ToolbotError):
    def __init__(self, call_id: str):
        super().__init__(f"No pending confirmation for call {call_id}")
        self.call_id = call_id


class MissingExecutionHandlerError(ToolbotError):
    def __init__(self, name: str):
        super().__init__(f"No execution handler registered for {name}")
        self.name = name


class InvalidScheduleError(ToolbotError):
    pass


class UnknownTaskError(ToolbotError):
    def __init__(self, task_id: str):
        super().__init__(f"Scheduled task {task_id} not found or no longer active")
        self.task_id = task_id


class NoActiveContextError(ToolbotError):
    def __init__(self, detail: str = "No agent bound to the current call"):
        super().__init__(detail)
