"""Plan collaborator contract: how many streams a user may run."""

from __future__ import annotations

from typing import Mapping, Protocol


class PlanProvider(Protocol):
    """Answers from the billing/plan system; treated as authoritative."""

    def can_start_stream(self, user_id: str) -> bool:
        """Whether the user's plan allows streaming at all."""

    def concurrency_limit(self, user_id: str) -> int:
        """Maximum number of concurrent streams for the user's plan tier."""


class SettingsPlanProvider:
    """Plan tiers mapped to stream ceilings from configuration.

    Users without an assignment fall back to ``default_plan``. A tier with a
    ceiling of zero cannot stream.
    """

    def __init__(
        self,
        limits: Mapping[str, int],
        default_plan: str = "free",
        assignments: Mapping[str, str] | None = None,
    ) -> None:
        if default_plan not in limits:
            raise ValueError(f"Default plan {default_plan!r} has no configured limit")
        self._limits = dict(limits)
        self._default_plan = default_plan
        self._assignments: dict[str, str] = dict(assignments or {})

    def assign(self, user_id: str, plan: str) -> None:
        if plan not in self._limits:
            raise ValueError(f"Unknown plan: {plan}")
        self._assignments[user_id] = plan

    def plan_for(self, user_id: str) -> str:
        return self._assignments.get(user_id, self._default_plan)

    def can_start_stream(self, user_id: str) -> bool:
        return self.concurrency_limit(user_id) > 0

    def concurrency_limit(self, user_id: str) -> int:
        return self._limits[self.plan_for(user_id)]
