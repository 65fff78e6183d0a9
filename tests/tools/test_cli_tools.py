from __future__ import annotations

import asyncio
import json
import sys
import time

from mcpkit.core.models import TimeoutPolicy
from mcpkit.framework.tool_runtime import InvocationContext, create_tool_runtime
from mcpkit.tools.cli_tools import (
    GEMINI_CLI_DEFINITION,
    GEMINI_CLI_TOOL,
    build_gemini_cli_handlers,
    run_cli,
)


def test_run_cli_captures_output() -> None:
    context = InvocationContext(GEMINI_CLI_TOOL)
    result = asyncio.run(run_cli([sys.executable, "-c", "print('hi')"], context))
    assert result.output.strip() == "hi"
    assert result.exit_code == 0
    assert result.error is None


def test_run_cli_reports_failures() -> None:
    script = "import sys; sys.stderr.write('bad input'); sys.exit(3)"
    context = InvocationContext(GEMINI_CLI_TOOL)
    result = asyncio.run(run_cli([sys.executable, "-c", script], context))
    assert result.exit_code == 3
    assert result.error == "bad input"


def test_run_cli_spawn_failure_is_a_result() -> None:
    context = InvocationContext(GEMINI_CLI_TOOL)
    result = asyncio.run(run_cli(["/nonexistent/gemini-binary", "--prompt", "x"], context))
    assert result.exit_code == 1
    assert result.output == ""
    assert result.error


def test_cancellation_kills_the_process() -> None:
    async def scenario():
        context = InvocationContext(GEMINI_CLI_TOOL)
        asyncio.get_running_loop().call_later(0.2, context.cancel, "timeout")
        return await run_cli([sys.executable, "-c", "import time; time.sleep(30)"], context)

    started = time.monotonic()
    result = asyncio.run(scenario())
    assert time.monotonic() - started < 10
    assert result.exit_code == 1


def test_gemini_cli_tool_result_shape() -> None:
    runtime = create_tool_runtime(
        [GEMINI_CLI_DEFINITION],
        build_gemini_cli_handlers("/nonexistent/gemini-binary"),
        TimeoutPolicy(default_timeout_ms=10_000),
    )
    assert runtime.get(GEMINI_CLI_TOOL).passes_context is True
    envelope = asyncio.run(runtime.invoke(GEMINI_CLI_TOOL, {"prompt": "summarize"}))
    payload = json.loads(envelope.content[0].text)
    assert set(payload) == {"output", "exitCode", "error"}
    assert payload["exitCode"] == 1
    assert payload["output"] == ""


def test_gemini_cli_omits_error_when_stderr_is_empty(tmp_path) -> None:
    script = tmp_path / "fake-gemini"
    script.write_text(f"#!{sys.executable}\nimport sys\nprint('answer to', sys.argv[2])\n")
    script.chmod(0o755)
    runtime = create_tool_runtime([GEMINI_CLI_DEFINITION], build_gemini_cli_handlers(str(script)))
    envelope = asyncio.run(runtime.invoke(GEMINI_CLI_TOOL, {"prompt": "summarize"}))
    assert json.loads(envelope.content[0].text) == {
        "output": "answer to summarize\n",
        "exitCode": 0,
    }
