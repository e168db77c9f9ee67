# src/cafe_portal/ledger/ledger_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

KIND_TASK_COMPLETION = "task_completion"
KIND_SESSION = "session"


@dataclass(frozen=True, slots=True)
class Breakdown:
    """
    Advisory split of an amount. Not required to sum to the transaction amount.
    """

    usage: float = 0.0
    print_bw: float = 0.0
    print_color: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"usage": self.usage, "print_bw": self.print_bw, "print_color": self.print_color}


@dataclass(frozen=True, slots=True)
class Transaction:
    id: str
    kind: str
    amount: float
    actor_id: str
    created_at: float

    task_id: str | None = None
    session_id: str | None = None
    description: str = ""
    client_id: str | None = None
    hostname: str | None = None
    breakdown: Breakdown = field(default_factory=Breakdown)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "amount": self.amount,
            "actor_id": self.actor_id,
            "created_at": self.created_at,
            "task_id": self.task_id,
            "session_id": self.session_id,
            "description": self.description,
            "client_id": self.client_id,
            "hostname": self.hostname,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    count: int
    total: float
    by_kind: dict[str, float]


@dataclass(frozen=True, slots=True)
class LedgerSummary:
    today: PeriodTotals
    week: PeriodTotals
    month: PeriodTotals
