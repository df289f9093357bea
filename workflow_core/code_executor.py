"""
Python code execution service for workflow code nodes.
Runs user code as the body of a function with access to the run context.
"""
import asyncio
import json
import math
import textwrap
from typing import Any, Dict, Optional

from shared.config import config
from shared.logger import get_logger

from .errors import CodeExecutionError

logger = get_logger("workflow_core.code_executor")

ENTRYPOINT = "__workflow_main__"

SAFE_BUILTINS = {
    'abs': abs,
    'all': all,
    'any': any,
    'bool': bool,
    'dict': dict,
    'enumerate': enumerate,
    'Exception': Exception,
    'filter': filter,
    'float': float,
    'int': int,
    'isinstance': isinstance,
    'KeyError': KeyError,
    'len': len,
    'list': list,
    'map': map,
    'max': max,
    'min': min,
    'range': range,
    'reversed': reversed,
    'round': round,
    'set': set,
    'sorted': sorted,
    'str': str,
    'sum': sum,
    'tuple': tuple,
    'type': type,
    'TypeError': TypeError,
    'ValueError': ValueError,
    'zip': zip,
    'print': print,  # Allow print for debugging
}


class CodeExecutor:
    """
    Executes Python code nodes.

    User code becomes the body of ``__workflow_main__(input, trigger, nodes,
    variables)``; its return value is the node result. Builtins are limited
    to ``SAFE_BUILTINS`` and imports are unavailable, with ``json`` and
    ``math`` pre-loaded.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        """
        Initialize code executor.

        Args:
            timeout_seconds: Default wall-clock limit per execution
        """
        self.timeout_seconds = timeout_seconds or config.code_execution_timeout_seconds

    def compile(self, code: str):
        """
        Compile user code into the entrypoint function.

        Raises:
            CodeExecutionError: On syntax errors
        """
        source = f"def {ENTRYPOINT}(input, trigger, nodes, variables):\n"
        source += textwrap.indent(code, "    ") + "\n    pass\n"
        namespace: Dict[str, Any] = {
            '__builtins__': SAFE_BUILTINS,
            '__name__': '__workflow__',
            'json': json,
            'math': math,
        }
        try:
            exec(compile(source, '<workflow-code>', 'exec'), namespace)
        except SyntaxError as e:
            raise CodeExecutionError(f"Code compile error: {e.msg} (line {max((e.lineno or 1) - 1, 1)})") from e
        return namespace[ENTRYPOINT]

    async def execute(
        self,
        code: str,
        *,
        input: Any = None,
        trigger: Optional[Dict[str, Any]] = None,
        nodes: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Execute a code node.

        Args:
            code: Python function body
            input: Resolved ``input`` value from the node config
            trigger: Trigger payload of the run
            nodes: Outputs of nodes executed so far
            variables: Workflow variables; mutations are visible to later nodes
            timeout_seconds: Override of the default time limit

        Returns:
            ``{"ok": True, "result": <return value>}``

        Raises:
            CodeExecutionError: On compile errors, runtime errors or timeout
        """
        function = self.compile(code)
        timeout = timeout_seconds or self.timeout_seconds
        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, function, input, trigger or {}, nodes or {}, variables if variables is not None else {}),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            error_msg = f"Code execution timed out after {timeout:g} seconds"
            logger.error(error_msg)
            raise CodeExecutionError(error_msg) from None
        except Exception as e:
            error_msg = f"Code execution error: {type(e).__name__}: {e}"
            logger.error(error_msg)
            raise CodeExecutionError(error_msg) from e

        return {"ok": True, "result": result}

    def validate_code(self, code: str) -> tuple[bool, Optional[str]]:
        """
        Validate code syntax without executing.

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            self.compile(code)
            return True, None
        except CodeExecutionError as e:
            return False, str(e)


__all__ = ["CodeExecutor", "ENTRYPOINT", "SAFE_BUILTINS"]
