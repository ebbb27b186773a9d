"""
Tests for the numerical expression evaluator tool.
"""

import pytest
from equate_chat.messages import ToolCallRequest
from equate_chat.plugins.math_plugin import MathPlugin, build_namespace, evaluate_expression
from equate_chat.tool_registry import ToolRegistry


class TestEvaluateExpression:
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("870912*15", "13063680"),
            ("718 - 462", "256"),
            ("2^10", "1024"),
            ("(-2)**3", "-8"),
            ("1/3 + 1/6", "1/2"),
            ("factorial(10)", "3628800"),
            ("sqrt(16)", "4"),
        ],
    )
    def test_exact_results(self, expression, expected):
        assert evaluate_expression(expression) == expected

    def test_decimal_input_gives_decimal_output(self):
        assert evaluate_expression("1.5 * 2").startswith("3.0")

    def test_large_integers_stay_exact(self):
        assert evaluate_expression("138128939823 * 1238912738917") == str(
            138128939823 * 1238912738917
        )

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "   ",
            "__import__('os')",
            "x.__class__",
            "(1).real",
            "exec(\"open('/tmp/pwned','w')\"+chr(46)+\"write('x')\")",
            "sympify('1+1')",
        ],
    )
    def test_rejects_unsupported_input(self, expression):
        with pytest.raises(ValueError):
            evaluate_expression(expression)

    def test_rejects_overlong_expression(self):
        with pytest.raises(ValueError, match="longer than"):
            evaluate_expression("1+" * 300 + "1")

    def test_namespace_has_no_python_builtins(self):
        namespace = build_namespace()

        assert namespace["__builtins__"] == {}
        for name in ("exec", "eval", "open", "chr", "sympify", "parse_expr", "S"):
            assert name not in namespace
        assert "factorial" in namespace
        assert "pi" in namespace

    @pytest.mark.parametrize(
        "expression",
        [
            "9^9^9",
            "9**9**9**9",
            "factorial(300000)",
            "2^10000000",
            "(10^9999)^9999",
            "binomial(10^8, 10^7)",
            "N(pi, 100000)",
        ],
    )
    def test_rejects_costly_expressions(self, expression):
        with pytest.raises(ValueError):
            evaluate_expression(expression)

    def test_small_towers_are_evaluated(self):
        assert evaluate_expression("2^(3^4)") == str(2**81)

    def test_approximation_with_n(self):
        assert evaluate_expression("N(pi, 20)").startswith("3.14159265358979323")

    def test_rejects_results_too_long_to_show(self):
        with pytest.raises(ValueError, match=r"N\(\.\.\.\)"):
            evaluate_expression("10^5000")


class TestMathPlugin:
    def test_provides_the_evaluator_tool(self):
        plugin = MathPlugin()
        registry = ToolRegistry()
        for method in plugin.hook_provide_tools():
            registry.register_callable(method)

        schema = registry.get_schemas()[0]["function"]
        assert schema["name"] == "numerical_expression_eval"
        assert schema["parameters"]["required"] == ["expression"]
        assert "SymPy" in schema["description"]

    def test_system_prompt_mentions_stacking(self):
        assert "stacked" in MathPlugin().hook_provide_system_prompt()

    @pytest.mark.asyncio
    async def test_syntax_errors_come_back_as_text(self):
        registry = ToolRegistry()
        registry.register_callable(MathPlugin().numerical_expression_eval)

        call = ToolCallRequest("call_1", "numerical_expression_eval", '{"expression": "2 +* )"}')
        output = await registry.execute_tool_call(call)

        assert output.startswith("Error: ")
