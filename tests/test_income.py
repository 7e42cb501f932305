from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from periods import DateRange
from schemas import IncomeIn, IncomeUpdate
from services import IncomeService, NotFoundError


def add_user(session: Session, email: str = "ada@example.com") -> User:
    user = User(name="Ada", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_income_stats_break_down_by_source() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = add_user(session)
        income = IncomeService(session, user.id)
        rows = [
            ("3000.00", "Salary", date(2025, 1, 31)),
            ("3000.00", "Salary", date(2025, 2, 28)),
            ("450.00", "Freelance", date(2025, 2, 10)),
            ("99.99", "Freelance", date(2024, 12, 1)),
        ]
        for amount, source, day in rows:
            income.create(
                IncomeIn(amount=Decimal(amount), description="Pay", source=source, date=day)
            )

        stats = income.stats(DateRange(date(2025, 1, 1), None))

        assert stats.total_amount == 6450.0
        assert stats.total_count == 3
        assert stats.average_amount == 2150.0
        assert [(s.source, s.total_amount, s.count) for s in stats.source_breakdown] == [
            ("Salary", 6000.0, 2),
            ("Freelance", 450.0, 1),
        ]


def test_income_list_update_and_delete() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ada = add_user(session)
        bob = add_user(session, email="bob@example.com")
        income = IncomeService(session, ada.id)
        salary = income.create(
            IncomeIn(
                amount=Decimal("2500"),
                description="January salary",
                source="Employer",
                date=date(2025, 1, 31),
            )
        )
        income.create(
            IncomeIn(
                amount=Decimal("80"),
                description="Sold bike",
                source="Marketplace",
                date=date(2025, 1, 12),
            )
        )

        items, total = income.list(DateRange(), search="employer")
        assert total == 1
        assert items[0].id == salary.id

        updated = income.update(salary.id, IncomeUpdate(amount=Decimal("2600")))
        assert updated.amount_cents == 260000
        assert updated.source == "Employer"

        with pytest.raises(NotFoundError):
            IncomeService(session, bob.id).get(salary.id)

        income.delete(salary.id)
        items, total = income.list(DateRange())
        assert total == 1
        assert items[0].description == "Sold bike"
