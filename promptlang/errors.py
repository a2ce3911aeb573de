from typing import List, Optional


class PromptError(Exception):
    pass


class PromptSyntaxError(PromptError):
    """Raised when a source file cannot be parsed. Fatal to that file."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None, source: Optional[str] = None):
        self.message = message
        self.line = line
        self.column = column
        self.source = source
        super().__init__(self.__str__())

    def __str__(self) -> str:
        where = ""
        if self.line is not None:
            where = f"line {self.line}, col {self.column or 1}: "
        if self.source:
            where = f"{self.source}: {where}"
        return f"{where}{self.message}"


class UnresolvedReference(PromptSyntaxError):
    """A unit call names a unit that is not defined (or was blocked)."""
    pass


class DuplicateUnit(PromptSyntaxError):
    pass


class InvalidMetadata(PromptError):
    """Bad or missing metadata value. The unit location is filled in by the validator."""
    line: Optional[int] = None
    column: Optional[int] = None
    source: Optional[str] = None


class UnresolvedVariable(PromptError):
    def __init__(self, name: str, unit: Optional[str] = None):
        self.name = name
        self.unit = unit
        where = f" in unit '{unit}'" if unit else ""
        super().__init__(f"Undefined variable ${name}{where}")


class CommandFailed(PromptError):
    """Non-zero exit or timeout of an external command. Reported, not fatal."""

    def __init__(self, command: str, result=None):
        self.command = command
        self.result = result
        detail = ""
        if result is not None:
            if result.timed_out:
                detail = " (timed out)"
            else:
                detail = f" (exit {result.exit_code})"
            if result.stderr:
                detail += f": {result.stderr.strip()[:200]}"
        super().__init__(f"Command failed{detail}: {command}")


class ModelUnavailable(PromptError):
    """Network error, timeout or empty answer from the model. Retryable by the caller."""
    pass


class CyclicInvocation(PromptError):
    def __init__(self, stack: List[str], target: str):
        self.stack = list(stack)
        self.target = target
        super().__init__("Cyclic invocation: " + " -> ".join(self.stack + [target]))


class ConfigError(PromptError):
    pass
