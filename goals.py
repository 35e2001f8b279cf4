from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from errors import ValidationError
from models import Goal


HUNDRED = Decimal("100")


@dataclass(frozen=True)
class GoalProgress:
    goal_id: str
    name: str
    percentage: Decimal
    ceiling_cents: int
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        # Negative when the goal is overspent.
        return self.ceiling_cents - self.spent_cents

    @property
    def progress_percent(self) -> float:
        if self.ceiling_cents <= 0:
            return 0.0
        return self.spent_cents / self.ceiling_cents * 100


def ceiling_for(income_cents: int, percentage: Decimal) -> int:
    value = Decimal(income_cents) * Decimal(percentage) / HUNDRED
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def allocate(
    goals: Iterable[Goal],
    percentages: Mapping[str, Decimal],
    income_cents: int,
    spent: Mapping[str, int],
) -> list[GoalProgress]:
    """
    Split paid income into per-goal ceilings. Goals missing from
    ``percentages`` get 0%.
    """
    progress = []
    for goal in goals:
        percentage = Decimal(percentages.get(goal.id, Decimal("0")))
        progress.append(
            GoalProgress(
                goal_id=goal.id,
                name=goal.name,
                percentage=percentage,
                ceiling_cents=ceiling_for(income_cents, percentage),
                spent_cents=spent.get(goal.id, 0),
            )
        )
    return progress


def validate_percentages(percentages: Mapping[str, Decimal]) -> None:
    for goal_id, value in percentages.items():
        if value < 0 or value > HUNDRED:
            raise ValidationError(f"Percentage for goal {goal_id} must be 0-100")
    total = sum(percentages.values(), Decimal("0"))
    if total != HUNDRED:
        raise ValidationError(f"Goal percentages must add up to 100 (got {total})")
