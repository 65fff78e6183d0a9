from __future__ import annotations

import asyncio
import os
from typing import Annotated, Any, Dict, Sequence

from pydantic import Field

from mcpkit.core import logging as core_logging
from mcpkit.core.models import CliResult, ToolDefinition
from mcpkit.core.schemas import ModelSchema
from mcpkit.framework.tool_runtime import InvocationContext, ToolHandler

LOGGER = core_logging.get_logger("cli_tools")

GEMINI_CLI_TOOL = "gemini-cli"

GEMINI_CLI_DEFINITION = ToolDefinition(
    name=GEMINI_CLI_TOOL,
    description=(
        "Execute the Gemini CLI command with a prompt. This tool launches the local Gemini CLI "
        "with your prompt and returns the response. The Gemini CLI can read and analyze files, "
        "including text files, PDFs, images, and entire codebases within its 1M token context "
        "window."
    ),
    input_schema={
        "prompt": Annotated[str, Field(description="The prompt to send to Gemini CLI")],
    },
    output_schema=ModelSchema(CliResult, exclude_none=True),
)


async def run_cli(argv: Sequence[str], context: InvocationContext) -> CliResult:
    """Run ``argv`` to completion and capture its output.

    Spawn failures are reported as ``exit_code=1`` results rather than
    raised. The process is killed if the invocation gets cancelled.
    """
    env = {**os.environ, "LANG": "en_US.UTF-8"}
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        return CliResult(output="", exit_code=1, error=str(exc))

    def _kill() -> None:
        if process.returncode is None:
            LOGGER.info("cli_process_killed", argv0=argv[0], reason=context.cancel_reason)
            try:
                process.kill()
            except ProcessLookupError:
                pass

    context.on_cancel(_kill)
    stdout, stderr = await process.communicate()
    error_text = stderr.decode("utf-8", errors="replace")
    # Killed by a signal counts as a plain failure.
    returncode = process.returncode
    exit_code = returncode if returncode is not None and returncode >= 0 else 1
    return CliResult(
        output=stdout.decode("utf-8", errors="replace"),
        exit_code=exit_code,
        error=error_text or None,
    )


def build_gemini_cli_handlers(command: str = "gemini") -> Dict[str, ToolHandler]:
    async def gemini_cli(params: Any, context: InvocationContext) -> CliResult:
        return await run_cli([command, "--prompt", params.prompt], context)

    return {GEMINI_CLI_TOOL: gemini_cli}
