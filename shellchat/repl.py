"""Interactive read-eval-print loop."""

import enum
import sys

from . import fmt
from .conversation import Conversation
from .report import AgentError

PROMPT = "You> "

HELP_TEXT = (
    "Commands:\n"
    "  /exit, /quit  Exit the chat\n"
    "  /clear        Clear conversation history\n"
    "  /help         Show this help\n\n"
)


class CommandResult(enum.Enum):
    HANDLED = "handled"
    EXIT = "exit"
    UNRECOGNIZED = "unrecognized"


def _default_reader():
    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import InMemoryHistory

    session = PromptSession(history=InMemoryHistory())
    return session.prompt


class ChatLoop:
    """Reads user lines and hands each one to a chat client.

    ``run()`` fixes the overall loop; subclasses customise it by
    overriding the ``display_*``, ``read_input``, ``handle_command``,
    ``process_input`` and ``handle_error`` hooks.

    ``read_line`` takes the prompt text and returns one line, raising
    EOFError at end of input.
    """

    def __init__(
        self,
        config,
        client,
        *,
        read_line=None,
        out=None,
        report=None,
        verbose: bool = True,
    ):
        self.config = config
        self.client = client
        self.conversation = Conversation(config.system_prompt)
        self.usage_history = []
        self.report = report
        self.verbose = verbose
        self.out = out or sys.stdout
        self._read_line = read_line

    def run(self) -> int:
        """Run until /exit, /quit or end of input. Returns the exit code."""
        self.display_welcome()

        while True:
            line = self.read_input()
            if line is None:
                break

            stripped = line.strip()
            if not stripped:
                continue

            result = self.handle_command(stripped)
            if result is CommandResult.EXIT:
                break
            if result is CommandResult.HANDLED:
                continue

            self.process_input(line)

        return 0

    def handle_builtin_command(self, cmd: str) -> CommandResult:
        """Handle /exit, /quit, /clear and /help; anything else is unrecognized."""
        if cmd in ("/exit", "/quit"):
            self.out.write("Goodbye!\n")
            return CommandResult.EXIT

        if cmd == "/clear":
            self.conversation.clear()
            self.out.write("Conversation cleared.\n\n")
            return CommandResult.HANDLED

        if cmd == "/help":
            self.out.write(HELP_TEXT)
            return CommandResult.HANDLED

        return CommandResult.UNRECOGNIZED

    # -- Hooks ----------------------------------------------------------------

    def display_welcome(self) -> None:
        self.out.write(
            f"shellchat (model: {self.config.model})\n"
            "Type /help for commands, /exit to quit.\n\n"
        )

    def read_input(self) -> str | None:
        if self._read_line is None:
            self._read_line = _default_reader()
        try:
            return self._read_line(PROMPT)
        except (EOFError, KeyboardInterrupt):
            self.out.write("\n")  # newline after ^D / ^C
            return None

    def handle_command(self, cmd: str) -> CommandResult:
        return self.handle_builtin_command(cmd)

    def process_input(self, line: str) -> None:
        # A failed turn leaves the conversation exactly as it was.
        mark = len(self.conversation)
        try:
            response = self.client.send(self.conversation, line)
        except AgentError as e:
            self.conversation.truncate(mark)
            self.handle_error(str(e))
            return
        except KeyboardInterrupt:
            self.conversation.truncate(mark)
            fmt.warning("interrupted, question aborted.")
            return

        if response.usage is not None:
            self.usage_history.append(response.usage)
        if self.report:
            self.report.record_turn(response.usage)
        self.display_response(response)

    def display_response(self, response) -> None:
        self.out.write(f"\nAssistant> {response.text}\n\n")
        if self.verbose and response.usage is not None:
            u = response.usage
            fmt.usage(u.prompt_tokens, u.completion_tokens, u.total_tokens)

    def handle_error(self, message: str) -> None:
        fmt.error(message)
        if self.report:
            self.report.record_failure(message)
