from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import ValidationError
from goals import allocate, ceiling_for, validate_percentages
from models import Goal
from schemas import GoalConfigIn
from services import GoalService


def test_ceiling_and_overspent_remaining():
    goals = [Goal(id="2", name="Custos Fixos", display_order=1)]
    progress = allocate(goals, {"2": Decimal("30")}, 200000, {"2": 65000})[0]

    assert progress.ceiling_cents == 60000
    assert progress.remaining_cents == -5000
    assert progress.progress_percent == pytest.approx(108.333, rel=1e-3)


def test_ceiling_rounds_half_up_to_the_cent():
    assert ceiling_for(333, Decimal("50")) == 167
    assert ceiling_for(0, Decimal("25")) == 0


def test_goal_without_configuration_gets_zero():
    goals = [Goal(id="5", name="Prazeres", display_order=4)]
    progress = allocate(goals, {}, 100000, {"5": 1000})[0]
    assert progress.percentage == Decimal("0")
    assert progress.ceiling_cents == 0
    assert progress.remaining_cents == -1000
    assert progress.progress_percent == 0.0


def test_validate_percentages():
    validate_percentages({"1": Decimal("60"), "2": Decimal("40")})
    with pytest.raises(ValidationError):
        validate_percentages({"1": Decimal("60"), "2": Decimal("39")})
    with pytest.raises(ValidationError):
        validate_percentages({"1": Decimal("120"), "2": Decimal("-20")})


def test_default_goals_are_seeded_once():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        service = GoalService(session)
        assert service.seed_defaults() == 6
        assert service.seed_defaults() == 0
        names = [goal.name for goal in service.list_all()]
        assert names[0] == "Liberdade Financeira"
        assert names[-1] == "Conhecimento"


def test_saving_configuration_requires_total_of_100():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        service = GoalService(session)
        service.seed_defaults()

        service.save_config(
            GoalConfigIn(
                items=[
                    {"goal_id": "1", "percentage": "50"},
                    {"goal_id": "2", "percentage": "30"},
                    {"goal_id": "3", "percentage": "20"},
                ]
            )
        )
        assert service.percentages() == {
            "1": Decimal("50"),
            "2": Decimal("30"),
            "3": Decimal("20"),
        }

        with pytest.raises(ValidationError):
            service.save_config(
                GoalConfigIn(items=[{"goal_id": "1", "percentage": "90"}])
            )
        assert service.percentages()["2"] == Decimal("30")

        with pytest.raises(ValidationError):
            service.save_config(
                GoalConfigIn(items=[{"goal_id": "missing", "percentage": "100"}])
            )

        service.save_config(GoalConfigIn(items=[{"goal_id": "4", "percentage": "100"}]))
        assert service.percentages() == {"4": Decimal("100")}
