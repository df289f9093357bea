import pytest

from workflow_core.code_executor import CodeExecutor
from workflow_core.errors import CodeExecutionError


@pytest.fixture
def code_executor() -> CodeExecutor:
    return CodeExecutor(timeout_seconds=2)


async def test_returns_result_and_mutates_variables(code_executor):
    variables = {"count": 1}
    output = await code_executor.execute(
        "variables['count'] += 1\nreturn {'name': trigger['name'].upper(), 'n': len(nodes)}",
        trigger={"name": "ada"},
        nodes={"a": {}, "b": {}},
        variables=variables,
    )
    assert output == {"ok": True, "result": {"name": "ADA", "n": 2}}
    assert variables == {"count": 2}


async def test_code_without_return_yields_none(code_executor):
    output = await code_executor.execute("x = 1")
    assert output == {"ok": True, "result": None}


async def test_json_and_math_are_available(code_executor):
    output = await code_executor.execute("return json.dumps({'root': math.sqrt(input)})", input=16)
    assert output["result"] == '{"root": 4.0}'


async def test_imports_are_not_available(code_executor):
    with pytest.raises(CodeExecutionError, match="Code execution error"):
        await code_executor.execute("import os\nreturn os.getcwd()")


async def test_syntax_error_is_reported(code_executor):
    with pytest.raises(CodeExecutionError, match="Code compile error"):
        await code_executor.execute("return (")


async def test_timeout(code_executor):
    with pytest.raises(CodeExecutionError, match="timed out"):
        await code_executor.execute(
            "total = 0\nfor i in range(30000000):\n    total += i\nreturn total",
            timeout_seconds=0.05,
        )


def test_validate_code(code_executor):
    assert code_executor.validate_code("return 1") == (True, None)
    valid, message = code_executor.validate_code("def broken(:")
    assert valid is False
    assert "compile error" in message
