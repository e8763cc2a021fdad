import argparse
import contextlib
import functools
import json
import sys
import time
from importlib import metadata
from typing import Protocol

import tiktoken

from . import fmt
from .config import (
    Config,
    append_agents_file,
    generate_config,
    load_config,
    load_env_files,
    print_config,
    resolve_config,
)
from .conversation import Conversation
from .messages import ChatResponse, Message, TokenUsage, ToolCall, encode
from .repl import ChatLoop
from .report import AgentError, AgentLoopExceeded, MalformedResponse, ReportCollector
from .tools import TOOLS, ToolExecutor
from .transport import ChatTransport

MAX_ITERATIONS = 20
NUDGE_MESSAGE = "Please use your tools or respond with text."
MAX_PREVIEW = 500


@functools.lru_cache(maxsize=1)
def _encoder():
    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(messages: list[dict], tools: list | None = None) -> int:
    """Count tokens across wire messages using tiktoken."""
    total = 0
    for m in messages:
        content = m.get("content") or ""
        for tc in m.get("tool_calls") or ():
            fn = tc.get("function") if isinstance(tc, dict) else None
            if not isinstance(fn, dict):
                continue
            arguments = fn.get("arguments") or ""
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            content += str(fn.get("name", "")) + arguments
        total += len(_encoder().encode(content))
    if tools:
        total += len(_encoder().encode(json.dumps(tools)))
    # ~4 tokens of per-message overhead
    total += 4 * len(messages)
    return total


def build_request(messages: list[dict], config: Config, tools: list = TOOLS) -> dict:
    """Build a chat-completions request body."""
    request = {
        "model": config.model,
        "max_tokens": config.max_tokens,
        "messages": messages,
        "tools": tools,
    }
    if config.temperature is not None:
        request["temperature"] = config.temperature
    return request


def parse_choice(response: dict) -> tuple[dict, str | None]:
    """Return (assistant message, finish_reason) from the first choice."""
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedResponse("Response missing choices array")
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        raise MalformedResponse("Response choice missing message")

    content = message.get("content")
    if content is not None and not isinstance(content, str):
        raise MalformedResponse(
            f"Response content must be a string, got {type(content).__name__}"
        )
    tool_calls = message.get("tool_calls")
    if tool_calls is not None and not isinstance(tool_calls, list):
        raise MalformedResponse("Response tool_calls must be an array")
    return message, choice.get("finish_reason")


def call_llm(
    transport, messages: list[dict], config: Config
) -> tuple[dict, str | None, TokenUsage | None]:
    """One round-trip. Returns (message, finish_reason, usage)."""
    response = transport.post_request(build_request(messages, config))
    message, finish_reason = parse_choice(response)
    return message, finish_reason, TokenUsage.from_wire(response.get("usage"))


def handle_tool_call(wire_call: dict, executor: ToolExecutor, verbose: bool):
    """Answer a single tool call and return (tool_msg, metadata).

    Bad arguments or an unknown tool name are reported back to the model
    as an ``error:`` result instead of failing the turn.
    """
    tool_call = ToolCall.from_wire(wire_call)
    name = tool_call.function_name
    if verbose:
        fmt.tool_call(name, tool_call.arguments)

    command = None
    t0 = time.monotonic()
    skipped = truncated = failed = False
    if name != "bash":
        content = f"error: unknown tool {name!r}, only 'bash' is available"
        failed = True
    else:
        try:
            command = tool_call.command()
        except MalformedResponse as e:
            content = f"error: {e}"
            failed = True
        else:
            result = executor.execute(command)
            content = result.output
            skipped = result.skipped
            truncated = result.truncated
    elapsed = time.monotonic() - t0

    if verbose:
        if failed:
            fmt.tool_error(name, content)
        elif skipped:
            fmt.tool_skipped(name)
        else:
            fmt.tool_result(name, elapsed, content[:MAX_PREVIEW])

    tool_msg = encode(Message.tool_result(tool_call.id, content))
    return tool_msg, {
        "command": command,
        "elapsed": elapsed,
        "skipped": skipped,
        "truncated": truncated,
    }


def run_agent_loop(
    conversation: Conversation,
    user_input: str,
    *,
    config: Config,
    transport,
    executor: ToolExecutor,
    verbose: bool = False,
    report: ReportCollector | None = None,
    max_iterations: int = MAX_ITERATIONS,
) -> ChatResponse:
    """Run one turn: round-trips with the model until it answers with text.

    Tool calls and their results only go to a local working list. On
    success exactly one user and one assistant message are committed to
    ``conversation``; on any error it is left untouched.

    Raises AgentLoopExceeded after ``max_iterations`` round-trips, and
    propagates TransportError / MalformedResponse immediately.
    """
    user_msg = Message.user(user_input)
    working = conversation.to_wire(config.system_prompt)
    working.append(encode(user_msg))
    turn = report.current_turn() if report else 0

    for round_trip in range(1, max_iterations + 1):
        if verbose:
            fmt.round_trip_header(
                round_trip, max_iterations, estimate_tokens(working, TOOLS)
            )

        t0 = time.monotonic()
        with fmt.llm_spinner() if verbose else contextlib.nullcontext():
            msg, finish_reason, usage = call_llm(transport, working, config)
        elapsed = time.monotonic() - t0
        if verbose:
            fmt.llm_timing(elapsed, finish_reason)
        if report:
            report.record_llm_call(turn, round_trip, elapsed)

        content = msg.get("content")
        tool_calls = msg.get("tool_calls") or []

        if tool_calls:
            working.append(msg)
            if content and verbose:
                fmt.assistant_text(content)
            for wire_call in tool_calls:
                tool_msg, meta = handle_tool_call(wire_call, executor, verbose)
                working.append(tool_msg)
                if report:
                    report.record_tool_call(
                        turn,
                        meta["command"],
                        meta["skipped"],
                        meta["elapsed"],
                        len(tool_msg["content"]),
                        truncated=meta["truncated"],
                    )
            continue

        if content:
            conversation.add(user_msg)
            conversation.add_assistant(content)
            if verbose:
                fmt.completion(round_trip, "ok")
            return ChatResponse(content, usage)

        # Neither text nor tool calls
        if "content" in msg:
            working.append(msg)
        working.append(encode(Message.user(NUDGE_MESSAGE)))
        if verbose:
            fmt.nudge()
        if report:
            report.record_nudge(turn, round_trip)

    if verbose:
        fmt.completion(max_iterations, "max_iterations")
    raise AgentLoopExceeded(
        f"no text response after {max_iterations} round-trips, turn abandoned"
    )


class ChatClient(Protocol):
    """Anything that can turn a conversation plus user input into a reply."""

    def send(self, conversation: Conversation, user_input: str) -> ChatResponse: ...


class OpenRouterClient:
    """ChatClient backed by the chat-completions endpoint and the bash tool."""

    def __init__(
        self,
        config: Config,
        *,
        transport=None,
        executor: ToolExecutor | None = None,
        verbose: bool = False,
        report: ReportCollector | None = None,
    ):
        self.config = config
        self.transport = transport or ChatTransport(
            config.api_key, base_url=config.base_url
        )
        self.executor = executor or ToolExecutor()
        self.verbose = verbose
        self.report = report

    @property
    def model(self) -> str:
        return self.config.model

    def send(self, conversation: Conversation, user_input: str) -> ChatResponse:
        return run_agent_loop(
            conversation,
            user_input,
            config=self.config,
            transport=self.transport,
            executor=self.executor,
            verbose=self.verbose,
            report=self.report,
        )


ENV_HELP = """\
Environment variables:
  OPENROUTER_API_KEY          API key (required)
  LLM_MODEL                   Model ID override
  MAX_TOKENS                  Max tokens override
  TEMPERATURE                 LLM temperature override
  SYSTEM_PROMPT               System prompt
  OPENROUTER_BASE_URL         API base URL override

REPL commands:
  /exit, /quit                Exit the chat
  /clear                      Clear conversation history
  /help                       Show REPL commands
"""


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"Error: {message}\n")


def build_parser():
    """Build and return the argument parser."""
    parser = _Parser(
        prog="shellchat",
        description="Interactive LLM chat with a human-approved bash tool.",
        epilog=ENV_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "-m",
        "--model",
        default=None,
        help="Model ID (default: anthropic/claude-sonnet-4).",
    )
    parser.add_argument(
        "-s",
        "--system-prompt",
        default=None,
        help="System prompt.",
    )
    parser.add_argument(
        "-t",
        "--max-tokens",
        default=None,
        metavar="N",
        help="Max response tokens (default: 4096).",
    )
    parser.add_argument(
        "--temperature",
        default=None,
        metavar="VALUE",
        help="LLM temperature (0.0-2.0).",
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Display resolved config and exit.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress diagnostics on stderr.",
    )
    parser.add_argument(
        "--report",
        default=None,
        metavar="FILE",
        help="Write a JSON session report to FILE on exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a template config file and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project template instead of the global one.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI color even when stderr is a TTY.",
    )

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("shellchat")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project), end="")
        sys.exit(0)

    fmt.init(color=args.color, no_color=args.no_color)
    args.verbose = not args.quiet

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    load_env_files()
    config = resolve_config(args, load_config("."))

    if config.show_config:
        print_config(config)
        return

    config = append_agents_file(config, ".")
    report = ReportCollector()
    client = OpenRouterClient(config, verbose=args.verbose, report=report)
    loop = ChatLoop(config, client, report=report, verbose=args.verbose)
    loop.run()

    if args.verbose:
        summary = report.summary_line()
        if summary:
            fmt.info(summary)
    if args.report:
        try:
            report.write(
                args.report,
                model=config.model,
                settings={
                    "max_tokens": config.max_tokens,
                    "temperature": config.temperature,
                    "max_iterations": MAX_ITERATIONS,
                },
            )
        except OSError as e:
            fmt.error(f"Failed to write report to {args.report}: {e}")
            return
        if args.verbose:
            fmt.info(f"Report written to {args.report}")


if __name__ == "__main__":
    main()
