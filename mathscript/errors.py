from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class MSError(Exception):
    """Base class for interpreter errors."""

    kind = "Error"

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None
        self.traceback: Optional[List[Any]] = None

    def render(self) -> str:
        return f"{self.kind}: {self.message}"


class MSSyntaxError(MSError):
    """Raised when the token stream does not fit the grammar."""

    kind = "SyntaxError"


class MSSymbolError(MSError):
    """Raised for unrecognized characters or malformed names."""

    kind = "SymbolError"


class MSArithmeticError(MSError):
    kind = "ArithmeticError"


class MSMatrixError(MSError):
    kind = "MatrixError"


class MSParsingError(MSError):
    """Raised for semantic grammar violations (bad definitions, unknown calls)."""

    kind = "ParsingError"


class MSUndeclaredVariableError(MSError):
    kind = "UndeclaredVariableError"


class MSArgumentError(MSError):
    kind = "ArgumentError"


class MSRuntimeError(MSError):
    kind = "RuntimeError"
