from __future__ import annotations

from typing import Iterable, List

from mcpkit.core.schemas import FieldViolation


class ToolError(Exception):
    error_code = "runtime.tool_error"


class ToolRegistrationError(ToolError):
    error_code = "registry.invalid"


class DuplicateToolError(ToolRegistrationError):
    error_code = "registry.duplicate_tool"

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is already registered")
        self.tool_name = name


class MissingHandlerError(ToolRegistrationError):
    error_code = "registry.missing_handler"

    def __init__(self, names: Iterable[str]) -> None:
        self.tool_names = sorted(names)
        super().__init__(f"No handler registered for tool(s): {', '.join(self.tool_names)}")


class UnknownToolError(ToolError):
    error_code = "contract.tool_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.tool_name = name


class InputValidationError(ToolError):
    error_code = "contract.input_invalid"

    def __init__(self, name: str, violations: Iterable[FieldViolation]) -> None:
        self.tool_name = name
        self.violations: List[FieldViolation] = list(violations)
        detail = "; ".join(str(violation) for violation in self.violations[:5])
        super().__init__(f"Invalid arguments for tool '{name}': {detail}")


class OutputValidationError(ToolError):
    error_code = "contract.output_invalid"

    def __init__(self, name: str, detail: str, violations: Iterable[FieldViolation] = ()) -> None:
        self.tool_name = name
        self.violations: List[FieldViolation] = list(violations)
        super().__init__(f"Tool '{name}' returned an invalid result: {detail}")


class ToolTimeoutError(ToolError):
    error_code = "runtime.timeout"

    def __init__(self, name: str, timeout_ms: int) -> None:
        super().__init__(f"Tool '{name}' execution timed out after {timeout_ms}ms")
        self.tool_name = name
        self.timeout_ms = timeout_ms


class ToolCancelledError(ToolError):
    error_code = "runtime.cancelled"

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Tool '{name}' was cancelled: {reason}")
        self.tool_name = name
        self.reason = reason


class ToolExecutionError(ToolError):
    error_code = "runtime.tool_error"

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(str(cause) or cause.__class__.__name__)
        self.tool_name = name
        self.cause = cause
