"""Conversation history kept for the lifetime of a chat session."""

from .messages import Message, encode


class Conversation:
    """Ordered list of messages plus an optional system prompt.

    The provider API is stateless, so every request replays the whole
    history. Only finished exchanges are stored here; tool-call chatter
    stays in the agent loop's working list.
    """

    def __init__(self, system_prompt: str | None = None):
        self._messages: list[Message] = []
        self.system_prompt = system_prompt

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def add(self, msg: Message) -> None:
        self._messages.append(msg)

    def add_user(self, text: str) -> None:
        self.add(Message.user(text))

    def add_assistant(self, text: str) -> None:
        self.add(Message.assistant(text))

    def pop(self) -> Message | None:
        """Remove and return the last message, or None when empty."""
        if not self._messages:
            return None
        return self._messages.pop()

    def truncate(self, size: int) -> int:
        """Drop messages beyond ``size``. Returns the number removed."""
        dropped = max(0, len(self._messages) - size)
        del self._messages[size:]
        return dropped

    def clear(self) -> None:
        """Drop all messages; the system prompt is kept."""
        self._messages.clear()

    def clear_system_prompt(self) -> None:
        self.system_prompt = None

    def to_wire(self, system_prompt: str | None = None) -> list[dict]:
        """Encode for a request. ``system_prompt`` overrides the stored one."""
        prompt = system_prompt if system_prompt is not None else self.system_prompt
        wire = []
        if prompt:
            wire.append({"role": "system", "content": prompt})
        wire.extend(encode(m) for m in self._messages)
        return wire
