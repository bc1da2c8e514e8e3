"""
Mathematical Expression Tool

Evaluates mathematical expressions using SymPy's parser.
Supports scientific calculator syntax including:
- Factorial notation: 5!
- Caret exponentiation: 2^16
- Degree notation: sin(30 degrees)
"""

import logging
import re
from tokenize import TokenError

from sympy import N
from sympy.parsing.sympy_parser import (
    parse_expr,
    standard_transformations,
    implicit_multiplication_application,
    convert_xor,
    factorial_notation,
)

from ..errors import ToolExecutionError
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

TRANSFORMATIONS = (
    standard_transformations
    + (implicit_multiplication_application,)
    + (convert_xor,)  # 2^16 -> 2**16
    + (factorial_notation,)  # 5! -> factorial(5)
)

INPUT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "expression": {
            "type": "string",
            "minLength": 1,
            "description": "Math expression like 2+2, sqrt(16) or sin(30 degrees)",
        }
    },
    "required": ["expression"],
    "additionalProperties": False,
}


def preprocess_expression(expression: str) -> str:
    """
    Rewrite calculator syntax SymPy does not understand.

    - ``sin(30 degrees)`` -> ``sin((30 * pi / 180))``
    - ``ceil(x)`` -> ``ceiling(x)``
    """
    degree_pattern = r"(\d+(?:\.\d+)?)\s*(?:degrees?|deg)\b"
    expression = re.sub(degree_pattern, r"(\1 * pi / 180)", expression, flags=re.IGNORECASE)
    return re.sub(r"\bceil\b", "ceiling", expression)


def calculate(expression: str) -> dict:
    """
    Evaluate a mathematical expression numerically.

    Returns:
        ``{"expression": ..., "result": ...}`` with ints for whole numbers.

    Raises:
        ToolExecutionError: The expression cannot be parsed or evaluated.
            Always permanent: the same input fails the same way again.
    """
    if not expression or not expression.strip():
        raise ToolExecutionError("Expression is empty")

    try:
        expr = parse_expr(
            preprocess_expression(expression),
            transformations=TRANSFORMATIONS,
            evaluate=True,
        )
        value = complex(N(expr))
    except (SyntaxError, TokenError) as e:
        logger.debug("Syntax error parsing expression '%s': %s", expression, e)
        raise ToolExecutionError(f"Syntax error: {e}") from e
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug("Could not evaluate '%s': %s", expression, e)
        raise ToolExecutionError(f"Calculation error: {e}") from e

    result: complex | float | int = value
    if value.imag == 0:
        result = value.real
        if result.is_integer():
            result = int(result)
    else:
        result = str(value)

    return {"expression": expression, "result": result}


def _handle_calculate(arguments: dict) -> dict:
    return calculate(arguments["expression"])


def calculator_tool() -> ToolDefinition:
    return ToolDefinition(
        name="calculate",
        description="Perform mathematical calculations",
        input_schema=INPUT_SCHEMA,
        handler=_handle_calculate,
    )
