import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from database import Base, enable_sqlite_pragmas
from months import Month
from schemas import (
    BudgetIn,
    BudgetTemplateIn,
    BudgetTemplateUpdate,
    CategoryGroupIn,
    CategoryIn,
)
from services import (
    BudgetTemplateService,
    BudgetWorkspaceService,
    CategoryService,
    LedgerService,
)

APRIL = Month(2025, 4)


def make_engine():
    engine = create_engine("sqlite:///:memory:")
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    return engine


def seed_categories(session: Session):
    BudgetWorkspaceService(session).create(BudgetIn(name="Household"))
    categories = CategoryService(session)
    group = categories.create_group(CategoryGroupIn(name="Monthly"))
    rent = categories.create(
        CategoryIn(group_id=group.id, name="Rent", goal_cents=30_000)
    )
    fuel = categories.create(CategoryIn(group_id=group.id, name="Fuel"))
    return rent, fuel


def test_apply_replaces_existing_assignments() -> None:
    engine = make_engine()

    with Session(engine) as session:
        rent, fuel = seed_categories(session)
        ledger = LedgerService(session)
        ledger.set_category_assignment(APRIL, rent.id, 100)

        templates = BudgetTemplateService(session)
        tmpl = templates.create(
            BudgetTemplateIn(name="Lean", goals={fuel.id: 50})
        )
        applied = templates.apply(tmpl.id, APRIL)

        assert applied == {fuel.id: 50}
        assert ledger.assignments_for_month(APRIL) == {fuel.id: 50}
        assert ledger.assignments_for_month(APRIL.previous()) == {}


def test_apply_skips_categories_outside_the_budget() -> None:
    engine = make_engine()

    with Session(engine) as session:
        rent, _fuel = seed_categories(session)
        templates = BudgetTemplateService(session)
        tmpl = templates.create(
            BudgetTemplateIn(name="Old", goals={rent.id: 25_000, 9_999: 1_000})
        )

        assert templates.apply(tmpl.id, APRIL) == {rent.id: 25_000}
        assert templates.apply(9_999, APRIL) is None


def test_only_one_default_template() -> None:
    engine = make_engine()

    with Session(engine) as session:
        templates = BudgetTemplateService(session)
        first = templates.create(BudgetTemplateIn(name="First", is_default=True))
        second = templates.create(BudgetTemplateIn(name="Second", is_default=True))

        session.refresh(first)
        assert not first.is_default
        assert templates.default().id == second.id

        templates.update(first.id, BudgetTemplateUpdate(is_default=True))
        session.refresh(second)
        assert not second.is_default
        assert templates.default().id == first.id
        assert [t.name for t in templates.list_all()] == ["First", "Second"]


def test_update_replaces_goal_set() -> None:
    engine = make_engine()

    with Session(engine) as session:
        rent, fuel = seed_categories(session)
        templates = BudgetTemplateService(session)
        tmpl = templates.create(BudgetTemplateIn(name="Plan", goals={rent.id: 100}))

        templates.update(
            tmpl.id, BudgetTemplateUpdate(name="Plan B", goals={fuel.id: 75})
        )
        session.refresh(tmpl)

        assert tmpl.name == "Plan B"
        assert tmpl.goal_map() == {fuel.id: 75}


def test_save_current_uses_positive_category_goals() -> None:
    engine = make_engine()

    with Session(engine) as session:
        rent, fuel = seed_categories(session)
        CategoryService(session).set_goal(fuel.id, 0)

        tmpl = BudgetTemplateService(session).save_current_as_template("Snapshot")

        assert tmpl.goal_map() == {rent.id: 30_000}
        assert not tmpl.is_default


def test_template_goals_must_be_non_negative() -> None:
    with pytest.raises(ValidationError):
        BudgetTemplateIn(name="Bad", goals={1: -5})
    with pytest.raises(ValidationError):
        BudgetTemplateUpdate(goals={1: -5})
    with pytest.raises(ValidationError):
        BudgetTemplateIn(name="Bad", goals={}, budget_id=1)


def test_delete_template() -> None:
    engine = make_engine()

    with Session(engine) as session:
        templates = BudgetTemplateService(session)
        tmpl = templates.create(BudgetTemplateIn(name="Temp", goals={1: 10}))

        assert templates.delete(tmpl.id) is True
        assert templates.get(tmpl.id) is None
        assert templates.delete(tmpl.id) is None
