from __future__ import annotations
import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from mathscript.errors import (
    MSArgumentError,
    MSError,
    MSParsingError,
    MSRuntimeError,
    MSUndeclaredVariableError,
    SourceLocation,
)
from mathscript.lexer import Lexer
from mathscript.parser import (
    SCOPE_GLOBAL,
    Assign,
    BinaryOperator,
    Compound,
    Empty,
    Node,
    Parser,
    ProcedureCall,
    ProcedureDefinition,
    SingleValue,
    Ternary,
    UnaryOperator,
    Variable,
)
from mathscript.values import (
    DeferredMatrix,
    Logical,
    Matrix,
    Numeric,
    Value,
    compute,
    is_computable,
    negate,
)


DEFAULT_MAX_DEPTH = 100


@dataclass
class Environment:
    values: Dict[str, Value] = field(default_factory=dict)

    def set(self, name: str, value: Value) -> None:
        self.values[name] = value

    def get_optional(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def has(self, name: str) -> bool:
        return name in self.values

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = str(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{type(val).__name__}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class Function:
    name: str
    params: List[str]
    body: List[Node]


@dataclass
class Outcome:
    """Result of one top-level statement: a value, nothing, or the error it failed with."""

    value: Any = None
    error: Optional[MSError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def render(self) -> Optional[str]:
        if self.error is not None:
            return self.error.render()
        if self.value is None:
            return None
        return str(self.value)


@dataclass
class Frame:
    name: str
    env: Environment
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    rule: str
    frame_id: Optional[str]
    location: Optional[SourceLocation]
    details: Dict[str, Any]
    env_snapshot: Optional[Dict[str, str]] = None

    @property
    def state_id(self) -> str:
        return f"s_{self.step_index:06d}"

    @property
    def statement(self) -> Optional[str]:
        return self.location.statement if self.location else None


class StateLogger:
    """Steps taken during the latest interpret() call; indices keep counting across calls."""

    def __init__(self) -> None:
        self.entries: List[StateEntry] = []
        self.next_index = 0

    def record(
        self,
        *,
        rule: str,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        details: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        entry = StateEntry(
            step_index=self.next_index,
            rule=rule,
            frame_id=frame.frame_id if frame else None,
            location=location,
            details=dict(details or {}),
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_index += 1
        return entry

    def clear(self) -> None:
        self.entries = []

    def last_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        for entry in reversed(self.entries):
            if entry.frame_id == frame_id:
                return entry
        return None


BuiltinImpl = Callable[["Interpreter", List[Any], SourceLocation], Value]


@dataclass
class BuiltinFunction:
    name: str
    min_args: int
    max_args: int
    impl: BuiltinImpl


# Coefficients of the rational approximation to the inverse normal CDF.
_CI_NUMERATOR = (2.515517, 0.802853, 0.010328)
_CI_DENOMINATOR = (1.432788, 0.189269, 0.001308)


def _rational_approximation(t: float) -> float:
    c0, c1, c2 = _CI_NUMERATOR
    d0, d1, d2 = _CI_DENOMINATOR
    return t - ((c2 * t + c1) * t + c0) / (((d2 * t + d1) * t + d0) * t + 1.0)


def inverse_normal_cdf(p: float) -> float:
    if p < 0.5:
        return -_rational_approximation(math.sqrt(-2.0 * math.log(p)))
    return -_rational_approximation(math.sqrt(-2.0 * math.log(1.0 - p)))


def _two_sided(level: float) -> float:
    return (1.0 - level) / 2.0 + level


def _round3(x: float) -> float:
    return math.floor(x * 1000.0 + 0.5) / 1000.0


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        self._register_custom("rref", 1, 1, self._rref)
        self._register_custom("trans", 1, 1, self._transpose)
        self._register_custom("transpose", 1, 1, self._transpose)
        self._register_custom("det", 1, 1, self._determinant)
        self._register_custom("determinant", 1, 1, self._determinant)
        self._register_custom("q", 1, 1, self._sqrt)
        self._register_custom("sqrt", 1, 1, self._sqrt)
        self._register_custom("identity", 1, 1, self._identity)
        self._register_custom("ciprop", 3, 3, self._ci_proportion)
        self._register_custom("cimean", 4, 4, self._ci_mean)

    def _register_custom(self, name: str, min_args: int, max_args: int, impl: BuiltinImpl) -> None:
        self.table[name] = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl)

    def __contains__(self, name: str) -> bool:
        return name in self.table

    def invoke(self, interpreter: "Interpreter", name: str, args: List[Any], location: SourceLocation) -> Value:
        builtin = self.table[name]
        supplied = len(args)
        if supplied < builtin.min_args or supplied > builtin.max_args:
            expected = str(builtin.min_args)
            if builtin.max_args != builtin.min_args:
                expected = f"{builtin.min_args}-{builtin.max_args}"
            raise MSArgumentError(
                f"{name} expects {expected} arguments, got {supplied}", location=location, rule=name
            )
        return builtin.impl(interpreter, args, location)

    # Helpers
    def _expect_matrix(self, value: Any, rule: str, location: SourceLocation) -> Matrix:
        if not isinstance(value, Matrix):
            raise MSArgumentError("expected a matrix", location=location, rule=rule)
        return value

    def _expect_number(self, value: Any, rule: str, location: SourceLocation) -> float:
        if not isinstance(value, Numeric):
            raise MSArgumentError("expected a number", location=location, rule=rule)
        return value.value

    def _expect_level(self, value: Any, rule: str, location: SourceLocation) -> float:
        level = self._expect_number(value, rule, location)
        if not 0.0 < level < 1.0:
            raise MSArgumentError("confidence level must be between 0 and 1", location=location, rule=rule)
        return level

    def _expect_count(self, value: Any, rule: str, location: SourceLocation) -> float:
        n = self._expect_number(value, rule, location)
        if n <= 0:
            raise MSArgumentError("sample size must be positive", location=location, rule=rule)
        return n

    def _rref(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        return self._expect_matrix(args[0], "rref", location).rref()

    def _transpose(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        # Transposes the argument itself; the only builtin that mutates a value.
        return self._expect_matrix(args[0], "transpose", location).transpose(save=True).value

    def _determinant(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        return self._expect_matrix(args[0], "det", location).determinant()

    def _sqrt(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        self._expect_number(args[0], "sqrt", location)
        return compute(args[0], Numeric(0.5), "CARET").value

    def _identity(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        size = self._expect_number(args[0], "identity", location)
        if size < 1 or not float(size).is_integer():
            raise MSArgumentError("identity expects a positive integer size", location=location, rule="identity")
        return Matrix.identity(int(size))

    def _ci_proportion(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        p = self._expect_number(args[0], "ciprop", location)
        n = self._expect_count(args[1], "ciprop", location)
        level = self._expect_level(args[2], "ciprop", location)
        z = inverse_normal_cdf(_two_sided(level))
        r = z * math.sqrt(p * (1.0 - p) / n)
        return Matrix([[_round3(p + r), _round3(p - r)]])

    def _ci_mean(self, _: "Interpreter", args: List[Any], location: SourceLocation) -> Value:
        mean = self._expect_number(args[0], "cimean", location)
        sd = self._expect_number(args[1], "cimean", location)
        n = self._expect_count(args[2], "cimean", location)
        level = self._expect_level(args[3], "cimean", location)
        z = inverse_normal_cdf(_two_sided(level))
        r = z * (sd / math.sqrt(n))
        return Matrix([[_round3(mean + r), _round3(mean - r)]])


def _describe(value: Any) -> str:
    return "nothing" if value is None else str(value)


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.max_depth = max_depth
        self.builtins = Builtins()
        self.globals = Environment()
        self.functions: Dict[str, Function] = {}
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.logger = StateLogger()
        # Informational messages from the value model during the latest interpret() call.
        self.notes: List[str] = []
        # Errors caught at statement boundaries during the latest interpret() call.
        self.errors: List[MSError] = []

    def parse(self, source: str) -> Compound:
        return Parser(Lexer(source, self.filename)).parse()

    def interpret(self, source: str) -> Union[List[str], str]:
        """Parse and run source against this session's state.

        Returns one output string per producing statement, or a single error
        string when the source does not parse.
        """
        self.errors = []
        self.notes = []
        self.logger.clear()
        try:
            program = self.parse(source)
        except MSError as error:
            entry = self._log_step(rule="PARSE", location=error.location, extra={"error": error.render()})
            error.step_index = entry.step_index
            self.errors.append(error)
            return error.render()
        return self.execute(program)

    def execute(self, program: Compound) -> List[str]:
        outputs: List[str] = []
        for statement in program.statements:
            text = self.run_statement(statement).render()
            if text is not None:
                outputs.append(text)
        return outputs

    def reset(self) -> None:
        self.globals = Environment()
        self.functions = {}
        self.call_stack = []
        self.notes = []
        self._log_step(rule="RESET", location=None)

    def run_statement(self, statement: Node) -> Outcome:
        """Evaluate one top-level statement, turning a failure into an error outcome."""
        try:
            return Outcome(value=self._evaluate(statement))
        except MSError as error:
            self._record_error(error, statement)
            return Outcome(error=error)
        except (ArithmeticError, ValueError, RecursionError) as exc:
            wrapped = MSRuntimeError(
                f"internal interpreter error: {exc}", location=statement.location, rule="internal"
            )
            self.call_stack.clear()
            self._record_error(wrapped, statement)
            return Outcome(error=wrapped)

    def _record_error(self, error: MSError, statement: Node) -> None:
        if error.location is None:
            error.location = statement.location
        if error.traceback is None:
            error.traceback = TracebackFormatter(self).build_frames()
        entry = self._log_step(rule="ERROR", location=error.location, extra={"error": error.render()})
        error.step_index = entry.step_index
        self.errors.append(error)

    def _evaluate(self, node: Node) -> Any:
        if isinstance(node, SingleValue):
            if isinstance(node.value, DeferredMatrix):
                node.value = node.value.force(self._evaluate)
            return node.value
        if isinstance(node, Variable):
            env = self._scope_env(node.scope)
            found = env.get_optional(node.name)
            if found is None:
                raise MSUndeclaredVariableError(f"{node.name} was not declared!", location=node.location, rule="IDENT")
            return found
        if isinstance(node, BinaryOperator):
            left = self._evaluate(node.left)
            right = self._evaluate(node.right)
            if not is_computable(left) or not is_computable(right):
                raise MSParsingError(self._not_computable(left, right), location=node.location, rule="BINOP")
            result = compute(left, right, node.operator.type)
            if result.message:
                self.notes.append(result.message)
                self._log_step(rule="NOTE", location=node.location, extra={"message": result.message})
            return result.value
        if isinstance(node, UnaryOperator):
            operand = self._evaluate(node.operand)
            kind = node.operator.type
            if kind == "BANG":
                if not isinstance(operand, Logical):
                    raise MSRuntimeError("unary not expects boolean", location=node.location, rule="UNARY")
                return Logical(not operand.value)
            if not is_computable(operand):
                raise MSParsingError(f"{_describe(operand)} is not computable", location=node.location, rule="UNARY")
            if kind == "MINUS":
                return negate(operand)
            return operand
        if isinstance(node, Ternary):
            condition = self._evaluate(node.condition)
            if not isinstance(condition, Logical):
                raise MSRuntimeError(
                    "ternary operator expects a boolean expression", location=node.location, rule="TERNARY"
                )
            if isinstance(node.if_true, Empty) or isinstance(node.if_false, Empty):
                raise MSRuntimeError("ternary operator incomplete", location=node.location, rule="TERNARY")
            return self._evaluate(node.if_true if condition.value else node.if_false)
        if isinstance(node, ProcedureCall):
            return self._call(node)
        if isinstance(node, Assign):
            value = self._evaluate(node.value)
            if not is_computable(value):
                raise MSParsingError(f"{_describe(value)} is not computable", location=node.location, rule="ASSIGN")
            name = node.target.name
            self._scope_env(node.target.scope).set(name, value)
            self._log_step(rule="ASSIGN", location=node.location, extra={"target": name, "value": str(value)})
            return f"{name} = {value}"
        if isinstance(node, ProcedureDefinition):
            if node.name in self.builtins:
                raise MSParsingError(
                    f"conflicting function definition name: {node.name}", location=node.location, rule="DEFINE"
                )
            self.functions[node.name] = Function(name=node.name, params=list(node.params), body=node.body)
            self._log_step(rule="DEFINE", location=node.location, extra={"function": node.name})
            return f"created function '{node.name}'"
        if isinstance(node, Empty):
            return None
        raise MSRuntimeError(f"cannot evaluate {type(node).__name__}", location=node.location)

    def _scope_env(self, scope: str) -> Environment:
        if scope == SCOPE_GLOBAL:
            return self.globals
        if not self.call_stack:
            raise MSRuntimeError("function call stack was empty, something weird happened.", rule="IDENT")
        return self.call_stack[-1].env

    def _not_computable(self, left: Any, right: Any) -> str:
        if is_computable(left):
            return f"{_describe(right)} is not computable"
        if is_computable(right):
            return f"{_describe(left)} is not computable"
        return f"{_describe(left)} and {_describe(right)} are not computable"

    def _call(self, node: ProcedureCall) -> Value:
        if node.name in self.builtins:
            args = [self._evaluate(arg) for arg in node.args]
            result = self.builtins.invoke(self, node.name, args, node.location)
            self._log_step(rule="CALL", location=node.location, extra={"function": node.name, "result": str(result)})
            return result
        function = self.functions.get(node.name)
        if function is None:
            raise MSParsingError(f"function {node.name} couldn't be found", location=node.location, rule="CALL")
        return self._call_user_function(function, node)

    def _call_user_function(self, function: Function, node: ProcedureCall) -> Value:
        if len(node.args) != len(function.params):
            raise MSRuntimeError(
                f"expected {len(function.params)} parameters, but got {len(node.args)}",
                location=node.location,
                rule=function.name,
            )
        if len(self.call_stack) >= self.max_depth:
            raise MSRuntimeError(
                f"maximum recursion depth of {self.max_depth} exceeded", location=node.location, rule=function.name
            )
        env = Environment()
        for param, arg in zip(function.params, node.args):
            env.set(param, self._evaluate(arg))
        frame = self._new_frame(function.name, env, node.location)
        self.call_stack.append(frame)
        try:
            self._log_step(rule="CALL", location=node.location, extra={"function": function.name})
            result: Any = None
            for statement in function.body:
                result = self._evaluate(statement)
            return result
        except MSError as error:
            if error.traceback is None:
                error.traceback = TracebackFormatter(self).build_frames()
            raise
        finally:
            self.call_stack.pop()

    def _new_frame(self, name: str, env: Environment, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, env=env, frame_id=frame_id, call_location=call_location)

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> StateEntry:
        frame = self.call_stack[-1] if self.call_stack else None
        env = frame.env if frame else self.globals
        env_snapshot = env.snapshot() if self.verbose else None
        return self.logger.record(
            rule=rule, frame=frame, location=location, details=extra, env_snapshot=env_snapshot
        )


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    entry: Optional[StateEntry]


def _source_lines(location: SourceLocation, scope: str) -> List[str]:
    lines = [f"  File \"{location.file}\", line {location.line}, in {scope}"]
    if location.statement:
        lines.append(f"    {location.statement}")
    return lines


class TracebackFormatter:
    """Renders an MSError with the user-function frames active when it was raised."""

    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_for_frame(frame.frame_id)
            location = entry.location if entry else frame.call_location
            frames.append(TracebackFrame(name=frame.name, location=location, entry=entry))
        return frames

    def format_text(self, error: MSError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        frames = error.traceback or []
        for frame in frames:
            if frame.location:
                lines.extend(_source_lines(frame.location, frame.name))
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.entry is None:
                continue
            lines.append(f"    Step {frame.entry.step_index} ({frame.entry.state_id}, {frame.entry.rule})")
            if verbose and frame.entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in frame.entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        if error.location is not None:
            lines.extend(_source_lines(error.location, frames[-1].name if frames else "<top-level>"))
        lines.append(f"{error.render()} (rule: {error.rule or 'runtime'})")
        return "\n".join(lines)

    def to_json(self, error: MSError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for frame in error.traceback or []:
            item: Dict[str, Any] = {"name": frame.name}
            if frame.location:
                item["line"] = frame.location.line
                item["statement"] = frame.location.statement
            if frame.entry:
                item["step_index"] = frame.entry.step_index
                if frame.entry.env_snapshot is not None:
                    item["env_snapshot"] = frame.entry.env_snapshot
            frames_json.append(item)
        data = {
            "error": {
                "type": error.kind,
                "message": error.message,
                "rule": error.rule,
                "step_index": error.step_index,
                "line": error.location.line if error.location else None,
            },
            "frames": frames_json,
        }
        return json.dumps(data, indent=2)


def interpret_source(source: str) -> Union[List[str], str]:
    """Run source in a fresh interpreter."""
    return Interpreter().interpret(source)
