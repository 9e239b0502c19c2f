from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Mode(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class Step(str, Enum):
    DATE = "date"
    PAYEE = "payee"
    CATEGORY = "category"
    GEO = "geo"
    STATUS = "status"
    INCOME_TYPE = "income_type"
    AMOUNT = "amount"
    CURRENCY = "currency"
    COMMENT = "comment"


STEPS = {
    Mode.EXPENSE: [Step.DATE, Step.PAYEE, Step.CATEGORY, Step.GEO, Step.AMOUNT, Step.CURRENCY, Step.COMMENT],
    Mode.INCOME: [Step.DATE, Step.STATUS, Step.INCOME_TYPE, Step.AMOUNT, Step.CURRENCY, Step.COMMENT],
}


@dataclass
class WizardSession:
    mode: Mode
    step: Step = Step.DATE
    data: Dict[str, Any] = field(default_factory=dict)

    def next_step(self) -> Optional[Step]:
        steps = STEPS[self.mode]
        index = steps.index(self.step)
        return steps[index + 1] if index + 1 < len(steps) else None


class SessionRepository:
    """In-process wizard sessions keyed by conversation id. Lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, WizardSession] = {}

    def get(self, conversation_id) -> Optional[WizardSession]:
        return self._sessions.get(str(conversation_id))

    def start(self, conversation_id, mode: Mode) -> WizardSession:
        session = WizardSession(mode=mode)
        self._sessions[str(conversation_id)] = session
        return session

    def clear(self, conversation_id) -> bool:
        return self._sessions.pop(str(conversation_id), None) is not None

    def __contains__(self, conversation_id) -> bool:
        return str(conversation_id) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
