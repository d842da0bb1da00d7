import pytest

from mathscript.interpreter import Interpreter


@pytest.fixture
def interpreter() -> Interpreter:
    return Interpreter()


@pytest.fixture
def run(interpreter):
    """Interpret source with the shared fixture interpreter."""
    return interpreter.interpret
