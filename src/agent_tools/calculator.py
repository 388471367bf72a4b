"""Safe arithmetic evaluator used by ``calc:`` turns and the ``calculate`` tool.

Only a closed grammar is accepted: numeric literals, parentheses, unary
``+``/``-`` and the binary operators ``+ - * / % **``. Everything else is
rejected before any evaluation happens.
"""
from __future__ import annotations

import ast
import math
import operator
from typing import Any, Callable, Dict, Type

ERROR_MESSAGE = "Error: Invalid mathematical expression."
MAX_EXPONENT = 10_000
MAX_LENGTH = 500
# Integer results stay below this many bits (about 4200 digits, under the int->str limit)
MAX_RESULT_BITS = 14_000

_BIN_OPS: Dict[Type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: Dict[Type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _check_result_size(op: ast.operator, left: float | int, right: float | int) -> None:
    """Reject integer ``**`` and ``*`` whose result would exceed ``MAX_RESULT_BITS``.

    Float arithmetic overflows on its own; big ints would instead grow until
    the process runs out of time or memory.
    """
    if not (isinstance(left, int) and isinstance(right, int)):
        return
    if isinstance(op, ast.Pow):
        if right > 0 and abs(left) > 1 and right * math.log2(abs(left)) > MAX_RESULT_BITS:
            raise ValueError("Result too large")
    elif isinstance(op, ast.Mult):
        if left.bit_length() + right.bit_length() > MAX_RESULT_BITS:
            raise ValueError("Result too large")


def _eval(node: ast.AST) -> float | int:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant):
        # bool is an int subclass; reject it explicitly
        if type(node.value) in (int, float):
            return node.value
        raise ValueError(f"Literal not allowed: {node.value!r}")
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left = _eval(node.left)
        right = _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("Exponent too large")
        _check_result_size(node.op, left, right)
        result = _BIN_OPS[type(node.op)](left, right)
        if isinstance(result, complex):
            raise ValueError("Complex result")
        return result
    raise ValueError(f"Unsupported syntax: {type(node).__name__}")


def format_number(value: float | int) -> str:
    """Render a result the way a calculator display would (``5.0`` -> ``5``)."""
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("Non-finite result")
        if value.is_integer() and abs(value) < 1e16:
            return str(int(value))
        return repr(value)
    return str(value)


def evaluate(expression: str) -> str:
    """Evaluate an arithmetic expression, returning the result or ``ERROR_MESSAGE``."""
    expr = (expression or "").strip()
    if not expr or len(expr) > MAX_LENGTH:
        return ERROR_MESSAGE
    try:
        tree = ast.parse(expr, mode="eval")
        return format_number(_eval(tree))
    except (SyntaxError, ValueError, TypeError, ArithmeticError, RecursionError):
        return ERROR_MESSAGE
