from __future__ import annotations
import math
import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from numpy.typing import NDArray

from mathscript.errors import MSArithmeticError, MSMatrixError


@dataclass(frozen=True)
class Numeric:
    value: float

    def __str__(self) -> str:
        return format_number(self.value)


@dataclass(frozen=True)
class Logical:
    value: bool

    def __str__(self) -> str:
        return "true" if self.value else "false"

    def as_numeric(self) -> Numeric:
        return Numeric(1.0 if self.value else 0.0)

    def and_(self, other: "Logical") -> "Result":
        return Result(Logical(self.value and other.value))

    def or_(self, other: "Logical") -> "Result":
        return Result(Logical(self.value or other.value))

    def xor(self, other: "Logical") -> "Result":
        return Result(Logical(self.value != other.value))

    def nand(self, other: "Logical") -> "Result":
        # Kept as (a == b) and not a: true only when both operands are false.
        return Result(Logical(self.value == other.value and not self.value))


class Matrix:
    """Rectangular grid of doubles backed by a 2-D float64 array."""

    def __init__(self, data: Any) -> None:
        grid = np.array(data, dtype=np.float64)
        if grid.ndim != 2 or grid.shape[0] == 0 or grid.shape[1] == 0:
            raise MSMatrixError("row dimensions did not match")
        self.data: NDArray[np.float64] = grid

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Matrix":
        if not rows or not rows[0]:
            raise MSMatrixError("a matrix needs at least one element")
        width = len(rows[0])
        for row in rows:
            if len(row) != width:
                raise MSMatrixError("row dimensions did not match")
        return cls([list(row) for row in rows])

    @classmethod
    def identity(cls, size: int) -> "Matrix":
        return cls(np.eye(size, dtype=np.float64))

    @property
    def dim_r(self) -> int:
        return int(self.data.shape[0])

    @property
    def dim_c(self) -> int:
        return int(self.data.shape[1])

    @property
    def shape_text(self) -> str:
        return f"({self.dim_r} x {self.dim_c})"

    def __str__(self) -> str:
        rows = ("[" + ",".join(format_number(x) for x in row) + "]" for row in self.data)
        return "[" + ",".join(rows) + "]"

    def __repr__(self) -> str:
        return f"Matrix({self})"

    def same_as(self, other: "Matrix") -> bool:
        return self.data.shape == other.data.shape and bool(np.array_equal(self.data, other.data))

    def transpose(self, save: bool = False) -> "Result":
        flipped = self.data.T.copy()
        if save:
            self.data = flipped
            return Result(self)
        return Result(Matrix(flipped))

    def determinant(self) -> Numeric:
        if self.dim_r != self.dim_c:
            raise MSMatrixError("cannot take determinant of non-square matrix")
        return Numeric(_cofactor_determinant(self.data))

    def rref(self) -> "Matrix":
        """Gauss-Jordan elimination, pivoting on the first nonzero entry found below."""
        grid = self.data.copy()
        rows, cols = grid.shape
        lead = 0
        for k in range(rows):
            if cols <= lead:
                break
            i = k
            while grid[i, lead] == 0:
                i += 1
                if i == rows:
                    i = k
                    lead += 1
                    if lead == cols:
                        return Matrix(grid)
            grid[[i, k]] = grid[[k, i]]
            grid[k] = grid[k] / grid[k, lead]
            for r in range(rows):
                if r != k:
                    grid[r] = grid[r] - grid[r, lead] * grid[k]
            lead += 1
        return Matrix(grid)

    def el_mul(self, other: "Matrix") -> "Result":
        if self.data.shape != other.data.shape:
            raise MSMatrixError("cannot do element-wise multiplication on different sized matricies")
        return Result(Matrix(self.data * other.data))

    def matmul(self, other: "Matrix") -> "Result":
        if self.dim_c != other.dim_r:
            if self.data.shape == other.data.shape:
                product = self.matmul(other.transpose().value).value
                return Result(product, "inferred to take dot product.")
            raise MSMatrixError(
                f"can't multiply matricies of non-matching dimensions! {self.shape_text} and {other.shape_text}"
            )
        grid = self.data @ other.data
        if grid.shape == (1, 1):
            return Result(Numeric(float(grid[0, 0])))
        return Result(Matrix(grid))

    def power(self, exponent: float) -> "Result":
        if self.dim_r != self.dim_c:
            raise MSMatrixError("only square matricies can be raised to the power")
        if not float(exponent).is_integer() or exponent < 0:
            raise MSMatrixError("matrix power is not supported")
        result: Matrix = Matrix.identity(self.dim_r)
        for _ in range(int(exponent)):
            result = Matrix(result.data @ self.data)
        return Result(result)


Value = Union[Numeric, Logical, Matrix]


@dataclass
class Result:
    value: Value
    message: Optional[str] = None


class DeferredMatrix:
    """Matrix literal whose elements are still expression nodes.

    Forcing evaluates every element once and keeps the concrete Matrix;
    later calls return that same Matrix.
    """

    def __init__(self, rows: List[List[Any]]) -> None:
        self.rows = rows
        self._forced: Optional[Matrix] = None

    @property
    def forced(self) -> bool:
        return self._forced is not None

    def force(self, evaluate: Callable[[Any], Any]) -> Matrix:
        if self._forced is not None:
            return self._forced
        grid: List[List[float]] = []
        for row in self.rows:
            values: List[float] = []
            for node in row:
                element = evaluate(node)
                if isinstance(element, Logical):
                    element = element.as_numeric()
                if not isinstance(element, Numeric):
                    raise MSMatrixError("couldn't evaluate matrix! expected numbers.")
                values.append(element.value)
            grid.append(values)
        self._forced = Matrix.from_rows(grid)
        return self._forced


def is_computable(value: Any) -> bool:
    return isinstance(value, (Numeric, Logical, Matrix))


def format_number(x: float) -> str:
    x = float(x)
    if math.isfinite(x) and x.is_integer():
        return str(int(x))
    return repr(x)


def _cofactor_determinant(grid: NDArray[np.float64]) -> float:
    size = grid.shape[0]
    if size == 1:
        return float(grid[0, 0])
    if size == 2:
        return float(grid[0, 0] * grid[1, 1] - grid[0, 1] * grid[1, 0])
    total = 0.0
    for col in range(size):
        minor = np.delete(grid[1:], col, axis=1)
        sign = -1.0 if col % 2 else 1.0
        total += sign * float(grid[0, col]) * _cofactor_determinant(minor)
    return total


def _scalar(op: Callable[[Any, Any], Any], a: float, b: float) -> float:
    with np.errstate(all="ignore"):
        return float(op(np.float64(a), np.float64(b)))


def _broadcast(op: Callable[[Any, Any], Any], a: Any, b: Any) -> Matrix:
    with np.errstate(all="ignore"):
        return Matrix(op(a, b))


def _arith_operand(value: Value) -> Union[Numeric, Matrix]:
    if isinstance(value, Logical):
        return value.as_numeric()
    return value


def _dimension_error(left: Matrix, right: Matrix) -> MSMatrixError:
    return MSMatrixError(
        f"can't perform operations on matricies of different dimensions! {left.shape_text} and {right.shape_text}"
    )


def _elementwise(op: Callable[[Any, Any], Any]) -> Callable[[Value, Value], Result]:
    def apply(left: Value, right: Value) -> Result:
        a, b = _arith_operand(left), _arith_operand(right)
        if isinstance(a, Numeric) and isinstance(b, Numeric):
            return Result(Numeric(_scalar(op, a.value, b.value)))
        if isinstance(a, Matrix) and isinstance(b, Matrix):
            if a.data.shape != b.data.shape:
                raise _dimension_error(a, b)
            return Result(_broadcast(op, a.data, b.data))
        # A scalar on the left commutes onto the matrix: n - M is M - n.
        matrix, scalar = (a, b) if isinstance(a, Matrix) else (b, a)
        return Result(_broadcast(op, matrix.data, scalar.value))

    return apply


_add = _elementwise(np.add)
_sub = _elementwise(np.subtract)


def _mul(left: Value, right: Value) -> Result:
    a, b = _arith_operand(left), _arith_operand(right)
    if isinstance(a, Matrix) and isinstance(b, Matrix):
        return a.matmul(b)
    if isinstance(a, Numeric) and isinstance(b, Numeric):
        return Result(Numeric(_scalar(np.multiply, a.value, b.value)))
    matrix, scalar = (a, b) if isinstance(a, Matrix) else (b, a)
    return Result(_broadcast(np.multiply, matrix.data, scalar.value))


def _division(op: Callable[[Any, Any], Any]) -> Callable[[Value, Value], Result]:
    def apply(left: Value, right: Value) -> Result:
        if isinstance(left, Logical) or isinstance(right, Logical):
            raise MSArithmeticError("boolean division is not supported")
        if isinstance(left, Matrix) and isinstance(right, Matrix):
            raise MSMatrixError("matrix division is not supported.")
        if isinstance(left, Numeric) and isinstance(right, Numeric):
            return Result(Numeric(_scalar(op, left.value, right.value)))
        # n / M is M / n, matching subtraction.
        matrix, scalar = (left, right) if isinstance(left, Matrix) else (right, left)
        return Result(_broadcast(op, matrix.data, scalar.value))

    return apply


def _floor_divide(a: Any, b: Any) -> Any:
    return np.floor(np.divide(a, b))


_div = _division(np.divide)
_floordiv = _division(_floor_divide)


def _pow(left: Value, right: Value) -> Result:
    if isinstance(left, Logical) or isinstance(right, Logical):
        raise MSArithmeticError("boolean powers not supported")
    if isinstance(left, Matrix):
        if isinstance(right, Matrix):
            raise MSMatrixError("matrix power is not supported")
        return left.power(right.value)
    if isinstance(right, Matrix):
        raise MSArithmeticError("cannot raise a number to a matrix power")
    return Result(Numeric(_scalar(np.power, left.value, right.value)))


def _mod(left: Value, right: Value) -> Result:
    if isinstance(left, Matrix) or isinstance(right, Matrix):
        raise MSMatrixError("matrix modulo is not supported")
    a, b = _arith_operand(left), _arith_operand(right)
    if not float(b.value).is_integer():
        raise MSArithmeticError("expected an integer for mod")
    # np.mod takes the sign of the divisor, so the result is positive for b > 0
    return Result(Numeric(_scalar(np.mod, a.value, b.value)))


def _ordering(op: Callable[[float, float], bool]) -> Callable[[Value, Value], Result]:
    def apply(left: Value, right: Value) -> Result:
        if isinstance(left, Matrix) or isinstance(right, Matrix):
            raise MSMatrixError("matricies cannot be ordered")
        a, b = _arith_operand(left), _arith_operand(right)
        return Result(Logical(bool(op(a.value, b.value))))

    return apply


def _values_equal(left: Value, right: Value) -> bool:
    if isinstance(left, Matrix) and isinstance(right, Matrix):
        return left.same_as(right)
    if isinstance(left, Matrix) or isinstance(right, Matrix):
        return False
    return _arith_operand(left).value == _arith_operand(right).value


def _eq(left: Value, right: Value) -> Result:
    return Result(Logical(_values_equal(left, right)))


def _neq(left: Value, right: Value) -> Result:
    return Result(Logical(not _values_equal(left, right)))


def _bitwise(name: str) -> Callable[[Value, Value], Result]:
    def apply(left: Value, right: Value) -> Result:
        if isinstance(left, Logical) and isinstance(right, Logical):
            return left.and_(right) if name == "and" else left.or_(right)
        if isinstance(left, Numeric) and isinstance(right, Numeric):
            if float(left.value).is_integer() and float(right.value).is_integer():
                a, b = int(left.value), int(right.value)
                return Result(Numeric(float(a & b if name == "and" else a | b)))
        raise MSArithmeticError(f"bitwise {name} expects two integers or two booleans")

    return apply


def _boolean(name: str) -> Callable[[Value, Value], Result]:
    def apply(left: Value, right: Value) -> Result:
        if not (isinstance(left, Logical) and isinstance(right, Logical)):
            raise MSArithmeticError(f"boolean {name} expects boolean operands")
        return left.and_(right) if name == "and" else left.or_(right)

    return apply


OPERATIONS: Dict[str, Callable[[Value, Value], Result]] = {
    "PLUS": _add,
    "MINUS": _sub,
    "STAR": _mul,
    "SLASH": _div,
    "DSLASH": _floordiv,
    "CARET": _pow,
    "PERCENT": _mod,
    "LT": _ordering(lambda a, b: a < b),
    "GT": _ordering(lambda a, b: a > b),
    "LTE": _ordering(lambda a, b: a <= b),
    "GTE": _ordering(lambda a, b: a >= b),
    "EQ": _eq,
    "NEQ": _neq,
    "AMP": _bitwise("and"),
    "PIPE": _bitwise("or"),
    "AND": _boolean("and"),
    "OR": _boolean("or"),
}


def compute(left: Value, right: Value, operator: str) -> Result:
    """Apply a binary operator (given by token type) to two values."""
    handler = OPERATIONS.get(operator)
    if handler is None:
        raise MSArithmeticError(f"unsupported operation: {operator}")
    return handler(left, right)


def negate(value: Value) -> Value:
    return _mul(value, Numeric(-1.0)).value
