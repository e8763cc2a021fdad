"""The bash tool: schema sent to the model and the confirm-then-run executor."""

import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass

BASH_TOOL = {
    "type": "function",
    "function": {
        "name": "bash",
        "description": (
            "Execute a bash command. Use this to run shell commands, "
            "read/write files, compile code, run tests, etc."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The bash command to execute",
                }
            },
            "required": ["command"],
        },
    },
}

TOOLS = [BASH_TOOL]

MAX_OUTPUT_BYTES = 100_000
READ_CHUNK = 4096
TRUNCATION_MARKER = "\n... [truncated at 100KB]"
SKIPPED = "Command skipped by user"
SPAWN_FAILED = "Error: failed to execute command"
CONFIRM_PROMPT = "Run this command? [y/N] "

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


@dataclass
class ToolResult:
    output: str
    truncated: bool = False
    skipped: bool = False


def _default_ask(text: str) -> str:
    from prompt_toolkit import prompt

    return prompt(text)


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit."""
    if sys.platform != "win32":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    try:
        proc.kill()
    except OSError:
        pass  # already dead
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass  # unkillable; give up


def capture_output(proc: subprocess.Popen) -> tuple[bytes, bool]:
    """Read merged stdout/stderr until EOF or until the soft cap is crossed.

    The chunk that crosses MAX_OUTPUT_BYTES is kept whole, so the buffer
    never exceeds the cap by more than one chunk. Unless the child closes
    its output on its own, its process group is killed before reaping,
    including when the read is interrupted.
    """
    chunks: list[bytes] = []
    total = 0
    truncated = False
    reached_eof = False
    try:
        while True:
            chunk = proc.stdout.read(READ_CHUNK)
            if not chunk:
                reached_eof = True
                break
            chunks.append(chunk)
            total += len(chunk)
            if total > MAX_OUTPUT_BYTES:
                truncated = True
                break
    finally:
        if not reached_eof:
            _kill_process_tree(proc)
        proc.stdout.close()
        proc.wait()
    return b"".join(chunks), truncated


class ToolExecutor:
    """Asks the human before every command, then runs it through bash.

    ``ask`` receives the prompt text and returns the raw answer line; any
    answer not starting with ``y``/``Y`` declines.
    """

    def __init__(self, ask=None, shell: str | None = None, cwd: str | None = None):
        self.ask = ask or _default_ask
        self.shell = shell or shutil.which("bash") or "/bin/sh"
        self.cwd = cwd

    def confirm(self, command: str) -> bool:
        try:
            answer = self.ask(f"$ {command}\n{CONFIRM_PROMPT}")
        except (EOFError, KeyboardInterrupt):
            return False
        return (answer or "")[:1] in ("y", "Y")

    def execute(self, command: str) -> ToolResult:
        if not self.confirm(command):
            return ToolResult(SKIPPED, skipped=True)
        return self.run(command)

    def run(self, command: str) -> ToolResult:
        """Run without asking. Spawn failures come back as text, never raised."""
        popen_kwargs: dict = dict(
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            cwd=self.cwd,
        )
        if sys.platform != "win32":
            popen_kwargs["start_new_session"] = True
        try:
            proc = subprocess.Popen([self.shell, "-c", command], **popen_kwargs)
        except (OSError, ValueError):
            # ValueError: embedded NUL in the command
            return ToolResult(SPAWN_FAILED)

        raw, truncated = capture_output(proc)
        output = raw.decode("utf-8", errors="replace")
        if truncated:
            return ToolResult(output + TRUNCATION_MARKER, truncated=True)
        return ToolResult(f"{output}\n[exit code: {proc.returncode}]")

