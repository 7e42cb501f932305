from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Category, User
from periods import DateRange
from schemas import BudgetIn, CategoryIn, CategoryUpdate, ExpenseIn
from services import (
    BudgetService,
    CategoryService,
    ConflictError,
    ExpenseService,
    NotFoundError,
)


def add_user(session: Session, email: str = "ada@example.com") -> User:
    user = User(name="Ada", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_category_names_are_unique_per_user_ignoring_case() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ada = add_user(session)
        bob = add_user(session, email="bob@example.com")
        CategoryService(session, ada.id).create(CategoryIn(name="Food"))

        with pytest.raises(ConflictError):
            CategoryService(session, ada.id).create(CategoryIn(name=" food "))

        other = CategoryService(session, bob.id).create(CategoryIn(name="Food"))
        assert other.color == "#1890ff"


def test_rename_checks_for_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = add_user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food"))
        categories.create(CategoryIn(name="Travel"))

        with pytest.raises(ConflictError):
            categories.update(food.id, CategoryUpdate(name="TRAVEL"))

        renamed = categories.update(
            food.id, CategoryUpdate(name="FOOD", color="#00AA00")
        )
        assert renamed.name == "FOOD"
        assert renamed.color == "#00AA00"


def test_delete_is_hard_for_unused_and_soft_for_used_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = add_user(session)
        categories = CategoryService(session, user.id)
        unused = categories.create(CategoryIn(name="Unused"))
        used = categories.create(CategoryIn(name="Food"))
        budgeted = categories.create(CategoryIn(name="Travel"))
        ExpenseService(session, user.id).create(
            ExpenseIn(
                amount=Decimal("12.50"),
                description="Lunch",
                date=date(2025, 1, 2),
                category_id=used.id,
            )
        )
        BudgetService(session, user.id).create(
            BudgetIn(
                name="Trips",
                amount=Decimal("500"),
                start_date=date(2025, 1, 1),
                end_date=date(2025, 12, 31),
                category_id=budgeted.id,
            )
        )

        assert categories.delete(unused.id) is True
        assert categories.delete(used.id) is False
        assert categories.delete(budgeted.id) is False

        assert session.get(Category, unused.id) is None
        assert [c.name for c in categories.list_all()] == []
        assert {c.name for c in categories.list_all(include_inactive=True)} == {
            "Food",
            "Travel",
        }


def test_category_stats_and_expense_counts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = add_user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food"))
        expenses = ExpenseService(session, user.id)
        for amount, day in [("10.00", 3), ("20.00", 10), ("15.50", 25)]:
            expenses.create(
                ExpenseIn(
                    amount=Decimal(amount),
                    description="Meal",
                    date=date(2025, 1, day),
                    category_id=food.id,
                )
            )

        stats = categories.stats(food.id, DateRange(date(2025, 1, 5), None))

        assert stats.category.expense_count == 3
        assert stats.stats.total_count == 2
        assert stats.stats.total_amount == 35.5
        assert stats.stats.average_amount == 17.75
        assert [e.amount for e in stats.recent_expenses] == [15.5, 20.0, 10.0]
        assert categories.expense_counts() == {food.id: 3}


def test_categories_are_private_to_their_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ada = add_user(session)
        bob = add_user(session, email="bob@example.com")
        food = CategoryService(session, ada.id).create(CategoryIn(name="Food"))

        with pytest.raises(NotFoundError):
            CategoryService(session, bob.id).get(food.id)
        with pytest.raises(NotFoundError):
            CategoryService(session, bob.id).delete(food.id)
