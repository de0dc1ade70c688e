import pytest

from splinterp.spl import (
    SPLSyntaxError, SPLNameError, SPLArithmeticError, SPLRuntimeError,
    CallFrame, BlockBegin,
)


def test_sum_of_two_variables(run, outputs):
    result = run(
        "function main",
        "begin",
        "int a = 3",
        "int b = 4",
        "( a + b )",
        "end",
    )
    assert result == 7
    assert outputs == [7]


@pytest.mark.parametrize("digit", range(10))
def test_declared_variable_evaluates_to_its_literal(run, digit):
    assert run("function main", "begin", f"int v = {digit}", "( v )", "end") == digit


def test_function_call_result_combines_with_operator(run, outputs):
    result = run(
        "function f x",
        "begin",
        "( x )",
        "end",
        "function main",
        "begin",
        "( f(5) + 1 )",
        "end",
    )
    assert result == 6
    assert outputs == [6]


def test_argument_from_variable_and_nested_calls(run):
    result = run(
        "function f x",
        "begin",
        "( x * 2 )",
        "end",
        "function g y",
        "begin",
        "( f(y) + 1 )",
        "end",
        "function main",
        "begin",
        "int a = 3",
        "( g(a) )",
        "end",
    )
    assert result == 7


def test_parameter_shadows_outer_variable_only_during_call(run):
    result = run(
        "function f x",
        "begin",
        "( x )",
        "end",
        "function main",
        "begin",
        "int x = 9",
        "( f(5) + x )",
        "end",
    )
    assert result == 14


def test_two_calls_on_separate_lines(run):
    result = run(
        "function s n",
        "begin",
        "( n * n )",
        "end",
        "function main",
        "begin",
        "( s(3) )",
        "( s(2) - 1 )",
        "end",
    )
    assert result == 3


def test_output_is_last_expression_before_end(run):
    assert run("function main", "begin", "( 1 + 1 )", "( 4 - 1 )", "end") == 3


def test_keywords_are_case_insensitive_and_tabs_allowed(run):
    assert run("FUNCTION main", "BEGIN", "Int\ta = 2", "\t( a * 3 )", "End") == 6


def test_statements_before_main_are_not_executed(run):
    with pytest.raises(SPLNameError):
        run("int q = 1", "function main", "begin", "( q )", "end")


def test_program_ends_at_first_top_level_end(run, outputs):
    run(
        "function main",
        "begin",
        "( 2 )",
        "end",
        "begin",
        "( 5 )",
        "end",
    )
    assert outputs == [2]


def test_program_without_main_produces_no_output(run, outputs):
    assert run("int a = 1", "( a )") is None
    assert outputs == []


def test_default_variable_value_is_zero(run):
    assert run("function main", "begin", "int a", "( a + 2 )", "end") == 2


def test_value_without_equals_sign(run):
    assert run("function main", "begin", "int a 5", "( a )", "end") == 5


def test_malformed_lines_are_skipped(run):
    result = run(
        "function main",
        "begin",
        "int",
        "int b =",
        "( 3 )",
        "end",
    )
    assert result == 3


def test_strict_mode_reports_malformed_line(run):
    with pytest.raises(SPLSyntaxError) as info:
        run("function main", "begin", "int b =", "( 3 )", "end", strict=True)
    assert info.value.line == 3


def test_bad_call_shape_is_malformed(run):
    lines = ("function f x", "begin", "( x )", "end",
             "function main", "begin", "( 1 )", "( f (5) )", "end")
    assert run(*lines) == 1
    with pytest.raises(SPLSyntaxError):
        run(*lines, strict=True)


def test_undefined_name_zero_policy(run):
    assert run("function main", "begin", "( z + 4 )", "end", undefined='zero') == 4


def test_division_by_zero_fails_with_line_number(run):
    with pytest.raises(SPLArithmeticError) as info:
        run("function main", "begin", "( 4 / 0 )", "end")
    assert info.value.line == 3


def test_unbounded_recursion_hits_call_depth_limit(run):
    with pytest.raises(SPLRuntimeError):
        run(
            "function f x",
            "begin",
            "( f(x) )",
            "end",
            "function main",
            "begin",
            "( f(1) )",
            "end",
            max_call_depth=3,
        )


def test_step_limit(run):
    with pytest.raises(SPLRuntimeError):
        run("function main", "begin", "( 1 )", "( 2 )", "end", max_steps=3)


def test_repeated_runs_do_not_share_state(interpreter, outputs):
    source = "function main\nbegin\nint a = 4\n( a - 1 )\nend\n"
    assert interpreter.run_source(source) == 3
    assert interpreter.run_source(source) == 3
    assert outputs == [3, 3]
    assert len(interpreter.symbols) == 0


def test_run_file(interpreter, source_file):
    path = source_file("function main", "begin", "( 2 * 3 + 2 )", "end")
    assert interpreter.run_file(path) == 8


def test_check_reports_malformed_lines_and_missing_main(interpreter):
    errors = interpreter.check_source("int a = 12\n( )\n")
    assert [e.line for e in errors] == [1, 2, None]


def test_check_accepts_valid_program(interpreter):
    source = "function f x\nbegin\n( x )\nend\nfunction main\nbegin\n( f(5) + 1 )\nend\n"
    assert interpreter.check_source(source) == []


def test_declaration_without_spaces_is_malformed(run):
    with pytest.raises(SPLNameError):
        run("function main", "begin", "int a=3", "( a + 1 )", "end")
    with pytest.raises(SPLSyntaxError):
        run("function main", "begin", "int a=3", "( a + 1 )", "end", strict=True)


def test_nested_block_in_main_does_not_end_program(run, outputs):
    result = run(
        "function main",
        "begin",
        "( 1 )",
        "begin",
        "( 2 )",
        "end",
        "( 3 )",
        "end",
    )
    assert result == 3
    assert outputs == [3]


def test_nested_block_in_function_does_not_return_early(run):
    result = run(
        "function f x",
        "begin",
        "begin",
        "( x )",
        "end",
        "( x + 4 )",
        "end",
        "function main",
        "begin",
        "( f(2) * 2 )",
        "end",
    )
    assert result == 12


def test_strict_mode_ignores_lines_before_main(run):
    assert run("int a = 12", "( )", "function main", "begin", "( 5 )", "end", strict=True) == 5


def test_block_close_with_return_still_pending(interpreter):
    interpreter.symbols.push(CallFrame(3))
    interpreter.symbols.push(BlockBegin())
    interpreter.session.pending_return = 4
    with pytest.raises(SPLRuntimeError):
        interpreter.driver.exec_end(6)


def test_check_flags_function_without_parameter(interpreter):
    source = "function f\nbegin\n( 1 )\nend\nfunction main\nbegin\n( f(1) )\nend\n"
    errors = interpreter.check_source(source)
    assert [e.line for e in errors] == [1]
