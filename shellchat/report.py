"""Error types and JSON session reports."""

import json
from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad numeric value, etc.)."""


class TransportError(AgentError):
    """Raised when a chat-completions request fails (network or non-200 status)."""


class MalformedResponse(AgentError):
    """Raised when the provider returns JSON that lacks the expected fields."""


class MalformedMessage(MalformedResponse):
    """Raised when a wire message cannot be decoded into a Message."""


class AgentLoopExceeded(AgentError):
    """Raised when the tool-call loop hits its iteration ceiling."""


class ReportCollector:
    """Accumulates events during a chat session for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.turns = 0
        self.failed_turns = 0
        self.llm_calls = 0
        self.tool_calls = 0
        self.tool_calls_skipped = 0
        self.nudges = 0
        self.total_llm_time = 0.0
        self.total_tool_time = 0.0
        self.usage_history: list[dict] = []

    def record_llm_call(self, turn: int, round_trip: int, duration: float):
        self.llm_calls += 1
        self.total_llm_time += duration
        self.events.append(
            {
                "turn": turn,
                "type": "llm_call",
                "round_trip": round_trip,
                "duration_s": round(duration, 3),
            }
        )

    def record_tool_call(
        self,
        turn: int,
        command: str | None,
        skipped: bool,
        duration: float,
        output_length: int,
        truncated: bool = False,
    ):
        self.tool_calls += 1
        self.total_tool_time += duration
        if skipped:
            self.tool_calls_skipped += 1
        self.events.append(
            {
                "turn": turn,
                "type": "tool_call",
                "command": command,
                "skipped": skipped,
                "duration_s": round(duration, 3),
                "output_length": output_length,
                "truncated": truncated,
            }
        )

    def record_nudge(self, turn: int, round_trip: int):
        self.nudges += 1
        self.events.append({"turn": turn, "type": "nudge", "round_trip": round_trip})

    def record_turn(self, usage=None):
        """Close a successful turn; ``usage`` is a TokenUsage or None."""
        self.turns += 1
        entry = {"turn": self.turns}
        if usage is not None:
            entry.update(usage.as_dict())
        self.usage_history.append(entry)

    def record_failure(self, message: str):
        self.failed_turns += 1
        self.events.append(
            {"turn": self.turns + 1, "type": "error", "message": message}
        )

    def current_turn(self) -> int:
        return self.turns + 1

    def total_tokens(self) -> dict[str, int]:
        totals = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
        for entry in self.usage_history:
            for key in totals:
                totals[key] += entry.get(key) or 0
        return totals

    def summary_line(self) -> str | None:
        if not self.turns:
            return None
        totals = self.total_tokens()
        return (
            f"Session: {self.turns} turns, {self.llm_calls} LLM calls, "
            f"{self.tool_calls} tool calls, {totals['total_tokens']} tokens"
        )

    def build_report(self, *, model: str, settings: dict) -> dict:
        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": model,
            "settings": settings,
            "stats": {
                "turns": self.turns,
                "failed_turns": self.failed_turns,
                "llm_calls": self.llm_calls,
                "tool_calls": self.tool_calls,
                "tool_calls_skipped": self.tool_calls_skipped,
                "nudges": self.nudges,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "total_tool_time_s": round(self.total_tool_time, 3),
                "tokens": self.total_tokens(),
            },
            "usage": list(self.usage_history),
            "timeline": self.events,
        }

    def write(self, path: str, *, model: str, settings: dict):
        report = self.build_report(model=model, settings=settings)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
            f.write("\n")
        return report
