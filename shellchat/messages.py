"""Message value types and the chat-completions wire codec."""

import json
from dataclasses import dataclass, field

from .report import MalformedMessage, MalformedResponse

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"

ROLES = (SYSTEM, USER, ASSISTANT, TOOL)


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model.

    ``id`` is provider-assigned and must be echoed back unchanged in the
    tool-role message that answers it.
    """

    id: str
    function_name: str
    arguments: str

    @classmethod
    def from_wire(cls, data: dict) -> "ToolCall":
        try:
            fn = data["function"]
            call_id = data["id"]
            name = fn["name"]
            arguments = fn.get("arguments")
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedResponse(f"malformed tool call: {e}") from e
        # Some providers send the arguments as an already-decoded object
        if isinstance(arguments, dict):
            arguments = json.dumps(arguments)
        elif arguments is None:
            arguments = ""
        elif not isinstance(arguments, str):
            raise MalformedResponse(
                f"tool call arguments must be a string, got {type(arguments).__name__}"
            )
        return cls(id=call_id, function_name=name, arguments=arguments)

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.function_name, "arguments": self.arguments},
        }

    def command(self) -> str:
        """Return the ``command`` argument of a bash call."""
        try:
            parsed = json.loads(self.arguments)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedResponse(f"invalid JSON in tool arguments: {e}") from e
        if not isinstance(parsed, dict):
            raise MalformedResponse("tool arguments must be a JSON object")
        command = parsed.get("command")
        if not isinstance(command, str):
            raise MalformedResponse("tool arguments missing string 'command'")
        return command


@dataclass(frozen=True)
class Message:
    role: str
    text: str
    tool_calls: tuple[ToolCall, ...] = field(default=())
    tool_call_id: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise MalformedMessage(f"unknown role {self.role!r}")
        if self.role == ASSISTANT and not self.text and not self.tool_calls:
            raise MalformedMessage("assistant message has neither text nor tool calls")

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(SYSTEM, text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(USER, text)

    @classmethod
    def assistant(cls, text: str, tool_calls=()) -> "Message":
        return cls(ASSISTANT, text, tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, text: str) -> "Message":
        return cls(TOOL, text, tool_call_id=tool_call_id)


def encode(msg: Message) -> dict:
    """Convert a Message to the provider's wire shape."""
    wire: dict = {"role": msg.role, "content": msg.text}
    if msg.tool_calls:
        wire["tool_calls"] = [tc.to_wire() for tc in msg.tool_calls]
        if not msg.text:
            wire["content"] = None
    if msg.role == TOOL:
        wire["tool_call_id"] = msg.tool_call_id
    return wire


def decode(wire: dict) -> Message:
    """Parse a wire message.

    ``content`` may only be null on an assistant message that carries
    tool calls.
    """
    if not isinstance(wire, dict):
        raise MalformedMessage(f"expected a JSON object, got {type(wire).__name__}")
    if "role" not in wire:
        raise MalformedMessage("message missing 'role'")
    if "content" not in wire:
        raise MalformedMessage("message missing 'content'")

    role = wire["role"]
    content = wire["content"]
    tool_calls = tuple(ToolCall.from_wire(tc) for tc in wire.get("tool_calls") or ())

    if content is None:
        if role != ASSISTANT or not tool_calls:
            raise MalformedMessage(f"null content on {role!r} message")
        content = ""
    elif not isinstance(content, str):
        raise MalformedMessage(
            f"'content' must be a string, got {type(content).__name__}"
        )

    tool_call_id = None
    if role == TOOL:
        tool_call_id = wire.get("tool_call_id")
        if not isinstance(tool_call_id, str):
            raise MalformedMessage("tool message missing 'tool_call_id'")

    return Message(role, content, tool_calls, tool_call_id)


@dataclass(frozen=True)
class TokenUsage:
    """Token counters as reported by the provider; None means not reported."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_wire(cls, usage) -> "TokenUsage | None":
        if not isinstance(usage, dict):
            return None

        def _count(key):
            value = usage.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return None
            return value

        result = cls(
            prompt_tokens=_count("prompt_tokens"),
            completion_tokens=_count("completion_tokens"),
            total_tokens=_count("total_tokens"),
        )
        if result == cls():
            return None
        return result

    def as_dict(self) -> dict[str, int]:
        return {
            k: v
            for k, v in (
                ("prompt_tokens", self.prompt_tokens),
                ("completion_tokens", self.completion_tokens),
                ("total_tokens", self.total_tokens),
            )
            if v is not None
        }


@dataclass(frozen=True)
class ChatResponse:
    """Final result of one turn."""

    text: str
    usage: TokenUsage | None = None
