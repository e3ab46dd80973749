"""
Judge Executor
==============
Runs the external judge CLI once and captures what it produced.

BOUNDARY RULES:
    - Executor ONLY runs the process and collects stdout/stderr/exit code.
    - Executor NEVER parses the review — that is the Review Parser's job.
    - Executor NEVER retries. A timeout is reported once and the process is killed.
    - Executor NEVER raises for process failures; it returns a JudgeExecution
      describing them. Only task cancellation propagates.

Invocation:
    <executable> audit --format json --headless --stdin
    The JSON request is written to stdin; the review is read from stdout.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from auditor.core import config
from auditor.llm.prompts import JUDGE_ARGS

logger = logging.getLogger(__name__)

_STDERR_EXCERPT = 2000


# ---------------------------------------------------------------------------
# Execution Result (returned to the Judge Agent)
# ---------------------------------------------------------------------------
@dataclass
class JudgeExecution:
    """
    Structured output of one judge run.

    Fields
    ------
    exit_code : int
        Process exit code (-1 when the process never ran or was killed).
    stdout : str
        Raw judge output.
    stderr : str
        Excerpt of the judge's stderr.
    duration_seconds : float
        Wall-clock time spent.
    timed_out : bool
        True if the timeout fired and the process was killed.
    not_found : bool
        True if the executable could not be started.
    error : str
        Human-readable failure description, empty on success.
    """
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    not_found: bool = False
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.not_found


async def run_judge_process(
    request_json: str,
    timeout_seconds: float,
    executable: Optional[str] = None,
    args: Sequence[str] = JUDGE_ARGS,
) -> JudgeExecution:
    """
    Execute the judge with a JSON request on stdin.

    Parameters
    ----------
    request_json : str
        Serialised judge request.
    timeout_seconds : float
        Hard limit from the audit depth plan.
    executable : str, optional
        Judge binary; JUDGE_EXECUTABLE when omitted.
    args : sequence of str
        Command-line arguments after the executable.

    Returns
    -------
    JudgeExecution
    """
    executable = executable or config.JUDGE_EXECUTABLE
    start = time.monotonic()

    try:
        proc = await asyncio.create_subprocess_exec(
            executable, *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.error("Judge executable not found: %s", executable)
        return JudgeExecution(
            exit_code=-1,
            not_found=True,
            error=f"Judge executable not found: {executable}",
        )
    except PermissionError as e:
        logger.error("Judge executable not runnable: %s (%s)", executable, e)
        return JudgeExecution(exit_code=-1, error=f"EACCES: permission denied running {executable}")

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(request_json.encode("utf-8")),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        await _kill(proc)
        duration = time.monotonic() - start
        logger.warning("Judge timed out after %.1fs (limit %.1fs)", duration, timeout_seconds)
        return JudgeExecution(
            exit_code=-1,
            duration_seconds=duration,
            timed_out=True,
            error=f"Judge timed out after {timeout_seconds:g}s",
        )
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    duration = time.monotonic() - start
    stderr_text = stderr.decode("utf-8", errors="replace")[-_STDERR_EXCERPT:]
    result = JudgeExecution(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr_text,
        duration_seconds=duration,
    )
    if result.exit_code != 0:
        result.error = f"Judge exited with code {result.exit_code}"
        logger.warning("%s: %s", result.error, stderr_text.strip()[:200])
    else:
        logger.info("Judge finished in %.2fs", duration)
    return result


async def _kill(proc) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
