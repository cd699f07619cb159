"""
Yes/no confirmation gate for deletes and structured edits.

While armed, the gate consumes every input line: yes/y and no/n resolve it,
anything else leaves it armed so the caller can ask again.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

YES_WORDS = ("yes", "y")
NO_WORDS = ("no", "n")


class Decision(Enum):
    YES = "yes"
    NO = "no"
    NONE = "none"


@dataclass
class PendingAction:
    type: str  # "delete" or "edit"
    data: Any
    prompt: str = ""


@dataclass
class GateResult:
    matched: bool
    decision: Decision
    action: Optional[PendingAction] = None


class ConfirmationGate:
    def __init__(self):
        self.pending: Optional[PendingAction] = None

    @property
    def armed(self) -> bool:
        return self.pending is not None

    def request(self, action: PendingAction) -> None:
        if self.pending is not None:
            raise RuntimeError(f"A {self.pending.type} is already waiting for confirmation")
        self.pending = action

    def resolve(self, line: str) -> GateResult:
        """Interpret one line as an answer. The resolved action is returned, never run here."""
        answer = (line or "").strip().lower()
        if self.pending is None:
            return GateResult(False, Decision.NONE)
        if answer in YES_WORDS:
            action, self.pending = self.pending, None
            return GateResult(True, Decision.YES, action)
        if answer in NO_WORDS:
            action, self.pending = self.pending, None
            return GateResult(True, Decision.NO, action)
        return GateResult(False, Decision.NONE, self.pending)
