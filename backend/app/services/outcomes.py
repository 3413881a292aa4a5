"""
Per-item batch outcomes.

Batch operations (scoring every alert, correlating every pair, running
every scenario) never abort on a single bad item. Each item resolves to
an ``ItemOutcome`` (either a value or a skip reason) and the outcomes
are gathered into a ``BatchResult`` that knows whether it is complete.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ItemOutcome:
    key: str
    value: Any = None
    skipped_reason: Optional[str] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.skipped_reason is None

    @classmethod
    def success(cls, key: str, value: Any) -> "ItemOutcome":
        return cls(key=key, value=value)

    @classmethod
    def skipped(cls, key: str, reason: str, detail: str = "") -> "ItemOutcome":
        return cls(key=key, skipped_reason=reason, detail=detail)


@dataclass
class BatchResult:
    outcomes: List[ItemOutcome] = field(default_factory=list)
    total: int = 0
    truncated: bool = False

    @property
    def values(self) -> List[Any]:
        return [o.value for o in self.outcomes if o.ok]

    @property
    def skipped(self) -> List[Dict[str, str]]:
        return [
            {"key": o.key, "reason": o.skipped_reason, "detail": o.detail}
            for o in self.outcomes if not o.ok
        ]

    @property
    def partial(self) -> bool:
        return self.truncated or len(self.outcomes) < self.total or any(not o.ok for o in self.outcomes)
