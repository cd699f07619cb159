"""
Shared vocabulary for the multi-turn flows (builders, editors, confirmation).

A flow step consumes one input line and returns a StepResult: the session to
keep (None once the flow is over) and the messages to show.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

MOTHER = "Mother"
SYSTEM = "MiD"

CANCEL_WORDS = ("cancel", "exit")
SKIP = "skip"
DONE = "done"
SAVE = "save"
CLEAR = "clear"

DIVIDER = "─────────────────────"


@dataclass
class Message:
    speaker: str
    text: str
    kind: str = "text"


def mother(text: str) -> Message:
    """Conversational reply."""
    return Message(MOTHER, text)


def system(text: str) -> Message:
    """Guidance, prompts and errors."""
    return Message(SYSTEM, text)


@dataclass
class StepResult:
    session: Optional[Any]
    messages: List[Message] = field(default_factory=list)
    completed: bool = False
    error: Optional[str] = None


class StepInvalid(ValueError):
    """Input rejected by the current step; the step is re-prompted, not advanced."""


class FlowAborted(Exception):
    """A step ended its flow without persisting anything."""
