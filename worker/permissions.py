"""
Permission / credit collaborator.

Admission asks two questions before a job is created:
1. May this user generate at all?  has_active_subscription() or can_generate()
2. Can they afford it?             remaining_credits() >= cost

There is no reservation protocol: it is a pass/fail gate, followed by
record_usage() once the job is admitted.

CreditAccount is the in-process implementation (plan flag + running credit
counter). Anything with the same four methods can stand in for it, for
example an adapter over a billing service.
"""

from dataclasses import dataclass, field
from typing import Protocol

from config.settings import settings


class PermissionProvider(Protocol):

    def has_active_subscription(self) -> bool: ...

    def can_generate(self) -> bool: ...

    def remaining_credits(self) -> int: ...

    def record_usage(self, credits: int) -> None: ...


@dataclass
class CreditAccount:
    user_id: str
    plan: str = "free"
    subscription_active: bool = False
    generation_enabled: bool = True
    credits_total: int = field(default_factory=lambda: settings.DEFAULT_USER_CREDITS)
    credits_used: int = 0

    def has_active_subscription(self) -> bool:
        return self.subscription_active

    def can_generate(self) -> bool:
        return self.generation_enabled and self.remaining_credits() > 0

    def remaining_credits(self) -> int:
        return max(0, self.credits_total - self.credits_used)

    def record_usage(self, credits: int) -> None:
        if credits < 0:
            raise ValueError("credits must be non-negative")
        self.credits_used += credits
