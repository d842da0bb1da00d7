"""MathScript: a small matrix and boolean expression language."""

from mathscript.errors import (
    MSArgumentError,
    MSArithmeticError,
    MSError,
    MSMatrixError,
    MSParsingError,
    MSRuntimeError,
    MSSymbolError,
    MSSyntaxError,
    MSUndeclaredVariableError,
)
from mathscript.interpreter import Interpreter, interpret_source

__all__ = [
    "Interpreter",
    "interpret_source",
    "MSError",
    "MSSyntaxError",
    "MSSymbolError",
    "MSArithmeticError",
    "MSMatrixError",
    "MSParsingError",
    "MSUndeclaredVariableError",
    "MSArgumentError",
    "MSRuntimeError",
]
