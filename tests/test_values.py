import pytest

from mathscript.errors import MSArithmeticError, MSMatrixError
from mathscript.values import (
    DeferredMatrix,
    Logical,
    Matrix,
    Numeric,
    compute,
    format_number,
    is_computable,
    negate,
)

TRUE = Logical(True)
FALSE = Logical(False)


def m(*rows):
    return Matrix.from_rows([list(row) for row in rows])


@pytest.mark.parametrize(
    "value, text",
    [(5.0, "5"), (-3.0, "-3"), (0.5, "0.5"), (-0.0, "0"), (float("inf"), "inf"), (1e20, "100000000000000000000")],
)
def test_format_number(value, text):
    assert format_number(value) == text


def test_value_rendering():
    assert str(Numeric(2.0)) == "2"
    assert str(TRUE) == "true"
    assert str(m((1, 2), (3, 4.5))) == "[[1,2],[3,4.5]]"


def test_scalar_arithmetic():
    assert compute(Numeric(2.0), Numeric(3.0), "PLUS").value == Numeric(5.0)
    assert compute(Numeric(2.0), Numeric(3.0), "MINUS").value == Numeric(-1.0)
    assert compute(Numeric(2.0), Numeric(3.0), "STAR").value == Numeric(6.0)
    assert compute(Numeric(3.0), Numeric(2.0), "SLASH").value == Numeric(1.5)
    assert compute(Numeric(7.0), Numeric(2.0), "DSLASH").value == Numeric(3.0)
    assert compute(Numeric(2.0), Numeric(10.0), "CARET").value == Numeric(1024.0)


def test_division_by_zero_is_infinite():
    assert compute(Numeric(1.0), Numeric(0.0), "SLASH").value == Numeric(float("inf"))


def test_logical_promotes_for_arithmetic():
    assert compute(TRUE, Numeric(1.0), "PLUS").value == Numeric(2.0)
    assert compute(TRUE, TRUE, "STAR").value == Numeric(1.0)


@pytest.mark.parametrize("operator", ["SLASH", "DSLASH"])
def test_logical_division_rejected(operator):
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(TRUE, Numeric(1.0), operator)
    assert excinfo.value.message == "boolean division is not supported"


def test_logical_power_rejected():
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(Numeric(2.0), FALSE, "CARET")
    assert excinfo.value.message == "boolean powers not supported"


def test_matrix_addition_and_dimension_mismatch():
    total = compute(m((1, 2)), m((3, 4)), "PLUS").value
    assert str(total) == "[[4,6]]"
    with pytest.raises(MSMatrixError) as excinfo:
        compute(m((1, 2)), m((1, 2, 3)), "PLUS")
    assert excinfo.value.message == (
        "can't perform operations on matricies of different dimensions! (1 x 2) and (1 x 3)"
    )


def test_scalar_on_the_left_commutes_onto_the_matrix():
    assert str(compute(Numeric(10.0), m((1, 2)), "MINUS").value) == "[[-9,-8]]"
    assert str(compute(m((1, 2)), Numeric(10.0), "MINUS").value) == "[[-9,-8]]"
    assert str(compute(Numeric(2.0), m((1, 2)), "SLASH").value) == "[[0.5,1]]"
    assert str(compute(Numeric(2.0), m((1, 4)), "DSLASH").value) == "[[0,2]]"
    assert str(compute(Numeric(2.0), m((2, 4)), "STAR").value) == "[[4,8]]"
    assert str(compute(m((2, 4)), Numeric(2.0), "STAR").value) == "[[4,8]]"


def test_matrix_product():
    product = compute(m((1, 2), (3, 4)), m((5, 6), (7, 8)), "STAR")
    assert str(product.value) == "[[19,22],[43,50]]"
    assert product.message is None


def test_inferred_dot_product():
    product = compute(m((1, 2, 3)), m((4, 5, 6)), "STAR")
    assert product.value == Numeric(32.0)
    assert product.message == "inferred to take dot product."


def test_one_by_one_product_collapses_to_number():
    product = compute(m((1, 2)), m((3,), (4,)), "STAR")
    assert product.value == Numeric(11.0)


def test_non_matching_product():
    with pytest.raises(MSMatrixError) as excinfo:
        compute(m((1, 2)), m((1, 2), (3, 4), (5, 6)), "STAR")
    assert excinfo.value.message == "can't multiply matricies of non-matching dimensions! (1 x 2) and (3 x 2)"


def test_matrix_division_rejected():
    with pytest.raises(MSMatrixError):
        compute(m((1,)), m((1,)), "SLASH")


def test_matrix_power():
    base = m((1, 1), (0, 1))
    assert str(compute(base, Numeric(0.0), "CARET").value) == "[[1,0],[0,1]]"
    assert str(compute(base, Numeric(1.0), "CARET").value) == "[[1,1],[0,1]]"
    assert str(compute(base, Numeric(3.0), "CARET").value) == "[[1,3],[0,1]]"


@pytest.mark.parametrize("exponent", [-1.0, 0.5])
def test_matrix_power_needs_natural_exponent(exponent):
    with pytest.raises(MSMatrixError) as excinfo:
        compute(m((1, 0), (0, 1)), Numeric(exponent), "CARET")
    assert excinfo.value.message == "matrix power is not supported"


def test_matrix_power_needs_square():
    with pytest.raises(MSMatrixError) as excinfo:
        compute(m((1, 2)), Numeric(2.0), "CARET")
    assert excinfo.value.message == "only square matricies can be raised to the power"


def test_number_to_matrix_power_rejected():
    with pytest.raises(MSArithmeticError):
        compute(Numeric(2.0), m((1,)), "CARET")


def test_modulo():
    assert compute(Numeric(7.0), Numeric(3.0), "PERCENT").value == Numeric(1.0)
    assert compute(Numeric(-7.0), Numeric(3.0), "PERCENT").value == Numeric(2.0)
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(Numeric(7.0), Numeric(2.5), "PERCENT")
    assert excinfo.value.message == "expected an integer for mod"
    with pytest.raises(MSMatrixError):
        compute(m((1, 2)), Numeric(2.0), "PERCENT")


def test_comparisons():
    assert compute(Numeric(1.0), Numeric(2.0), "LT").value == TRUE
    assert compute(Numeric(2.0), Numeric(2.0), "GTE").value == TRUE
    assert compute(Numeric(1.0), TRUE, "EQ").value == TRUE
    assert compute(m((1, 2)), m((1, 2)), "EQ").value == TRUE
    assert compute(m((1, 2)), m((1,), (2,)), "EQ").value == FALSE
    assert compute(m((1,)), Numeric(1.0), "NEQ").value == TRUE
    with pytest.raises(MSMatrixError) as excinfo:
        compute(m((1,)), Numeric(1.0), "LT")
    assert excinfo.value.message == "matricies cannot be ordered"


def test_bitwise_and_boolean_operators():
    assert compute(Numeric(6.0), Numeric(3.0), "AMP").value == Numeric(2.0)
    assert compute(Numeric(6.0), Numeric(3.0), "PIPE").value == Numeric(7.0)
    assert compute(TRUE, FALSE, "PIPE").value == TRUE
    assert compute(TRUE, FALSE, "AND").value == FALSE
    assert compute(TRUE, FALSE, "OR").value == TRUE
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(Numeric(1.5), Numeric(1.0), "AMP")
    assert excinfo.value.message == "bitwise and expects two integers or two booleans"
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(Numeric(1.0), TRUE, "OR")
    assert excinfo.value.message == "boolean or expects boolean operands"


def test_logical_connectives():
    assert TRUE.xor(FALSE).value == TRUE
    assert TRUE.xor(TRUE).value == FALSE
    assert FALSE.nand(FALSE).value == TRUE
    assert TRUE.nand(TRUE).value == FALSE
    assert TRUE.nand(FALSE).value == FALSE


def test_unknown_operator():
    with pytest.raises(MSArithmeticError) as excinfo:
        compute(Numeric(1.0), Numeric(1.0), "QUESTION")
    assert excinfo.value.message == "unsupported operation: QUESTION"


def test_negate():
    assert negate(Numeric(2.0)) == Numeric(-2.0)
    assert str(negate(m((1, -2)))) == "[[-1,2]]"


def test_transpose_copy_and_in_place():
    column = m((1, 2, 3))
    copy = column.transpose().value
    assert (copy.dim_r, copy.dim_c) == (3, 1)
    assert column.shape_text == "(1 x 3)"
    same = column.transpose(save=True).value
    assert same is column
    assert column.shape_text == "(3 x 1)"


def test_determinant():
    assert m((4,)).determinant() == Numeric(4.0)
    assert m((1, 2), (3, 4)).determinant() == Numeric(-2.0)
    assert m((6, 1, 1), (4, -2, 5), (2, 8, 7)).determinant() == Numeric(-306.0)
    with pytest.raises(MSMatrixError) as excinfo:
        m((1, 2)).determinant()
    assert excinfo.value.message == "cannot take determinant of non-square matrix"


def test_rref():
    assert str(m((2, 4), (1, 3)).rref()) == "[[1,0],[0,1]]"
    assert str(m((1, 2), (2, 4)).rref()) == "[[1,2],[0,0]]"
    assert str(m((0, 1), (1, 0)).rref()) == "[[1,0],[0,1]]"


def test_rref_pivots_on_first_nonzero_entry():
    # The 1e-20 pivot rounds x to 0; a largest-magnitude pivot would give x = 1.
    assert str(m((1e-20, 1, 1), (1, 1, 2)).rref()) == "[[1,0,0],[0,1,1]]"


def test_rref_leaves_source_untouched():
    source = m((2, 4), (1, 3))
    source.rref()
    assert str(source) == "[[2,4],[1,3]]"


def test_element_wise_multiplication():
    assert str(m((1, 2)).el_mul(m((3, 4))).value) == "[[3,8]]"
    with pytest.raises(MSMatrixError):
        m((1, 2)).el_mul(m((1,)))


def test_from_rows_validation():
    with pytest.raises(MSMatrixError):
        Matrix.from_rows([])
    with pytest.raises(MSMatrixError) as excinfo:
        Matrix.from_rows([[1.0, 2.0], [3.0]])
    assert excinfo.value.message == "row dimensions did not match"


def test_identity():
    assert str(Matrix.identity(3)) == "[[1,0,0],[0,1,0],[0,0,1]]"


def test_deferred_matrix_forces_once():
    calls = []

    def evaluate(node):
        calls.append(node)
        return Numeric(float(node))

    deferred = DeferredMatrix([[1, 2], [3, 4]])
    first = deferred.force(evaluate)
    second = deferred.force(evaluate)
    assert first is second
    assert deferred.forced
    assert len(calls) == 4


def test_deferred_matrix_keeps_first_result():
    deferred = DeferredMatrix([[1]])
    first = deferred.force(lambda node: Numeric(1.0))
    second = deferred.force(lambda node: Numeric(2.0))
    assert second is first
    assert str(second) == "[[1]]"


def test_deferred_matrix_element_types():
    assert str(DeferredMatrix([[True, False]]).force(Logical)) == "[[1,0]]"
    with pytest.raises(MSMatrixError) as excinfo:
        DeferredMatrix([[0]]).force(lambda node: Matrix.identity(1))
    assert excinfo.value.message == "couldn't evaluate matrix! expected numbers."


def test_is_computable():
    assert is_computable(Numeric(1.0))
    assert is_computable(FALSE)
    assert is_computable(Matrix.identity(1))
    assert not is_computable(None)
    assert not is_computable("x = 1")
