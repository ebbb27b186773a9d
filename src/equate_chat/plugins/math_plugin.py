import logging
import re

import sympy
from sympy import Basic, Pow, evaluate, log, postorder_traversal, sympify
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 500
MAX_EXPONENT = 100_000
MAX_INTEGER_ARGUMENT = 10_000
MAX_RESULT_DIGITS = 10_000
MAX_RESULT_LENGTH = 4_000
MAX_PRECISION = 1_000

_TRANSFORMATIONS = standard_transformations + (
    implicit_multiplication_application,
    convert_xor,
)
_ATTRIBUTE_ACCESS = re.compile(r"[A-Za-z_)\]]\s*\.")
_STRING_LITERAL = re.compile(r"['\"]")

# Functions whose cost grows with the size of their integer arguments
_COSTLY_MODULES = (
    "sympy.functions.combinatorial",
    "sympy.functions.special.gamma_functions",
    "sympy.ntheory",
)


def _magnitude(expr):
    """Absolute value of a finite real number, or None for anything else."""
    if not getattr(expr, "is_number", False):
        return None
    value = expr.evalf(15)
    if not (value.is_Number and value.is_finite):
        return None
    return abs(value)


def check_bounds(expr):
    """Reject expressions whose exact evaluation would take too long.

    Children are checked before their parents, so an exponent tower is
    rejected at its first oversized level without evaluating the rest.
    """
    with evaluate(True):
        for node in postorder_traversal(expr):
            if isinstance(node, Pow):
                exponent = _magnitude(node.exp)
                if exponent is None:
                    continue
                if exponent > MAX_EXPONENT:
                    raise ValueError(f"Exponent is too large: {node.exp}")
                base = _magnitude(node.base)
                if base is not None and base > 1:
                    digits = exponent * log(base, 10).evalf(15)
                    if digits > MAX_RESULT_DIGITS:
                        raise ValueError(
                            f"Power has about {int(digits)} digits, "
                            f"more than {MAX_RESULT_DIGITS}"
                        )
            elif getattr(node, "is_Function", False) and type(node).__module__.startswith(
                _COSTLY_MODULES
            ):
                for arg in node.args:
                    size = _magnitude(arg)
                    if size is not None and size > MAX_INTEGER_ARGUMENT:
                        raise ValueError(
                            f"Argument of {type(node).__name__} is larger than "
                            f"{MAX_INTEGER_ARGUMENT}"
                        )


def _bounded_n(expr, n=15, **options):
    """``sympy.N`` with a precision cap and the same bounds as the evaluator."""
    n = int(n)
    if n > MAX_PRECISION:
        raise ValueError(f"Precision is limited to {MAX_PRECISION} digits")
    expr = sympify(expr)
    check_bounds(expr)
    with evaluate(True):
        return expr.evalf(n, **options)


def build_namespace() -> dict:
    """Names visible to parsed expressions: SymPy numbers, constants and functions.

    Python builtins and the SymPy helpers that parse or evaluate strings
    are left out.
    """
    namespace = {}
    for name in sympy.__all__:
        obj = getattr(sympy, name)
        if isinstance(obj, Basic) or (
            isinstance(obj, type)
            and obj.__module__.startswith(("sympy.core", "sympy.functions"))
        ):
            namespace[name] = obj
    for name in ("sqrt", "cbrt", "root", "real_root"):
        namespace[name] = getattr(sympy, name)
    namespace["N"] = _bounded_n
    namespace["__builtins__"] = {}
    return namespace


_NAMESPACE = build_namespace()


def evaluate_expression(expression: str) -> str:
    """Evaluate an expression with SymPy and return the result as text.

    The expression is parsed without evaluation first, so that its size
    can be checked before any arithmetic happens.

    Raises
    ------
    ValueError
        If the expression is empty, too long, uses Python syntax that is
        not part of a math expression, or is too costly to evaluate exactly.
    """
    expression = expression.strip()
    if not expression:
        raise ValueError("Empty expression")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ValueError(
            f"Expression is longer than {MAX_EXPRESSION_LENGTH} characters"
        )
    if "__" in expression or _ATTRIBUTE_ACCESS.search(expression):
        raise ValueError(f"Unsupported syntax in expression: {expression}")
    if _STRING_LITERAL.search(expression):
        raise ValueError(f"String literals are not supported: {expression}")

    with evaluate(False):
        parsed = parse_expr(
            expression,
            local_dict={},
            global_dict=dict(_NAMESPACE),
            transformations=_TRANSFORMATIONS,
            evaluate=False,
        )
    if not isinstance(parsed, Basic):
        return str(parsed)

    check_bounds(parsed)
    result = parsed.doit()
    try:
        text = str(result)
    except ValueError:
        # Python refuses to print huge integers
        text = None
    if text is None or len(text) > MAX_RESULT_LENGTH:
        raise ValueError(
            f"Result is longer than {MAX_RESULT_LENGTH} characters; "
            f"use N(...) for an approximation"
        )
    return text


class MathPlugin:
    """Plugin that gives the model a numerical expression evaluator."""

    def numerical_expression_eval(self, expression: str) -> str:
        """Evaluates a math expression with SymPy and returns the exact result.

        Equivalent to running:

            str(sympy.parse_expr(EXPRESSION).doit())

        Use `*` for multiplication and `**` or `^` for powers, e.g. `870912*15`,
        `2^64 - 1`, `(-2)**3`, `sqrt(2)*3`, `factorial(20)`, `Rational(1, 3) + 1/6`.
        Integer and rational arithmetic stays exact; write a decimal point
        (e.g. `1.0/3`) or use `N(EXPRESSION)` for a decimal approximation.
        Exact results longer than a few thousand digits are refused; use
        `N(EXPRESSION, DIGITS)` for those.
        SymPy may not support the full range of whatever you are calculating!
        """
        logger.debug(f"MATH: evaluating {expression!r}")
        return evaluate_expression(expression)

    def hook_provide_tools(self):
        """Return tools this plugin provides for auto-registration."""
        return [self.numerical_expression_eval]

    def hook_provide_system_prompt(self):
        """Return system prompt addition describing when to use the evaluator."""
        return r"""
## Calculations

If you run into a calculation during your answer and you're unsure, then you should:
  - Call relevant tool calls
  - Wait for tool call responses
  - Resume your response exactly from where you left off.

You can use tool calls however much you want, even in the middle of a response! Use them for intermediate steps in computations too.
Just be aware that your responses will be stacked like sandwiches on top of each other!
Don't be overconfident: if an answer you wrote doesn't match a tool call result, admit the mistake and apologize.

You can use tool calls even in the middle of a response, interrupting, like this example:
    We need to calculate [NUM1] x [NUM2] + [NUM3]

    1. Calculate the product [NUM1] x [NUM2]: [NUM4 := NUM1 x NUM2]
    2. Calculate the addition [NUM4] + [NUM3]: [NUM5 := NUM4 + NUM3]
but there is a tool call beforehand to calculate [NUM1 x NUM2] and a tool call between list items 1 and 2 to calculate [NUM4 + NUM3] if needed.

Don't do huge calculations by yourself because that's error prone; interrupt the flow instead. Extremely simple calculations you can do yourself. For example:

  - \( 3553368960 \times 20 \) SHOULD result in a tool call
  - \( 4 \times 5 \) SHOULDN'T
  - \( 7 + 7 \) SHOULDN'T
  - \( 23 + 6 \) SHOULDN'T
  - \( 23 + 60 \) MAYBE
  - \( 123 + 456 \) PROBABLY
  - \( 718 - 462 \) SHOULD
  - \( 870912 \times 15 \) SHOULD
""".strip()
