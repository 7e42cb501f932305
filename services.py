from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, joinedload

from budget_overlap import (
    AlertSeverity,
    BudgetWindow,
    ExpensePoint,
    alert_severity,
    compute_spent,
    percentage_used,
    round_amount,
)
from config import get_settings
from mailer import MailDeliveryError, Mailer
from models import (
    Budget,
    Category,
    Expense,
    Income,
    PasswordReset,
    RefreshToken,
    User,
    utcnow,
)
from money import cents_to_amount, cents_to_decimal, to_cents
from periods import DateRange, local_today, trailing_year
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryRef,
    CategoryStatOut,
    CategoryStatsOut,
    CategoryUpdate,
    ChangePasswordIn,
    ExpenseIn,
    ExpenseOut,
    ExpenseStatsOut,
    ExpenseUpdate,
    ForgotPasswordIn,
    IncomeIn,
    IncomeStatsOut,
    IncomeUpdate,
    LoginIn,
    MonthlyStatOut,
    ProfileUpdateIn,
    RegisterIn,
    ResetPasswordIn,
    SourceStatOut,
    TotalsOut,
    UserStatsOut,
)
from security import (
    TokenExpired,
    TokenInvalid,
    generate_access_token,
    generate_otp,
    generate_refresh_token,
    hash_password,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("Food & Dining", "Restaurants, groceries, and food delivery", "#F59E0B"),
    ("Transportation", "Gas, public transport, taxi, car maintenance", "#3B82F6"),
    ("Shopping", "Clothing, electronics, and general shopping", "#EC4899"),
    ("Entertainment", "Movies, games, subscriptions, and hobbies", "#8B5CF6"),
    ("Bills & Utilities", "Electricity, water, internet, phone bills", "#EF4444"),
    ("Healthcare", "Medical expenses, insurance, pharmacy", "#10B981"),
    ("Education", "Books, courses, school fees", "#F97316"),
    ("Travel", "Flights, hotels, vacation expenses", "#06B6D4"),
    ("Personal Care", "Haircuts, cosmetics, gym membership", "#84CC16"),
    ("Other", "Miscellaneous expenses", "#6B7280"),
]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _totals(count: int, total_cents: int) -> TotalsOut:
    average = (
        float(round_amount(cents_to_decimal(total_cents) / count)) if count else 0.0
    )
    return TotalsOut(
        total_amount=cents_to_amount(total_cents),
        total_count=count,
        average_amount=average,
    )


def _apply_range(stmt, column, date_range: DateRange):
    if date_range.start:
        stmt = stmt.where(column >= date_range.start)
    if date_range.end:
        stmt = stmt.where(column <= date_range.end)
    return stmt


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(self, session: Session, mailer: Optional[Mailer] = None) -> None:
        self.session = session
        self.settings = get_settings()
        self.mailer = mailer or Mailer()

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == normalize_email(email))
        )

    def _issue_tokens(self, user: User) -> IssuedTokens:
        access = generate_access_token(user.id, user.email)
        refresh = generate_refresh_token(user.id, user.email)
        self.session.add(
            RefreshToken(
                token=refresh,
                user_id=user.id,
                expires_at=utcnow()
                + timedelta(seconds=self.settings.refresh_token_ttl_secs),
            )
        )
        return IssuedTokens(access_token=access, refresh_token=refresh)

    def register(self, data: RegisterIn) -> tuple[User, IssuedTokens]:
        if self._by_email(data.email):
            raise ConflictError("User with this email already exists")
        user = User(
            name=data.name.strip(),
            email=normalize_email(data.email),
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self.session.flush()
        CategoryService(self.session, user.id).seed_defaults()
        tokens = self._issue_tokens(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"auth_register: user_id={user.id}")
        return user, tokens

    def login(self, data: LoginIn) -> tuple[User, IssuedTokens]:
        user = self._by_email(data.email)
        if not user or not user.is_active:
            logger.info("auth_login_failed: reason=unknown_or_inactive")
            raise AuthenticationError("Invalid credentials")
        if not verify_password(data.password, user.password_hash):
            logger.info(f"auth_login_failed: user_id={user.id} reason=password")
            raise AuthenticationError("Invalid credentials")
        tokens = self._issue_tokens(user)
        self.session.commit()
        logger.info(f"auth_login: user_id={user.id}")
        return user, tokens

    def authenticate(self, access_token: str) -> User:
        payload = verify_access_token(access_token)
        user = self.session.get(User, payload.user_id)
        if not user or not user.is_active:
            raise AuthenticationError("User not found or inactive")
        return user

    def refresh(self, refresh_token: Optional[str]) -> tuple[User, IssuedTokens]:
        if not refresh_token:
            raise AuthenticationError("Refresh token not found")
        try:
            payload = verify_refresh_token(refresh_token)
        except (TokenExpired, TokenInvalid) as exc:
            raise AuthenticationError("Invalid refresh token") from exc
        record = self.session.scalar(
            select(RefreshToken).where(RefreshToken.token == refresh_token)
        )
        if not record or record.expires_at <= utcnow():
            raise AuthenticationError("Invalid refresh token")
        user = self.session.get(User, payload.user_id)
        if not user or not user.is_active:
            raise AuthenticationError("User not found")
        self.session.delete(record)
        tokens = self._issue_tokens(user)
        self.session.commit()
        return user, tokens

    def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            return
        self.session.execute(
            delete(RefreshToken).where(RefreshToken.token == refresh_token)
        )
        self.session.commit()

    def revoke_all(self, user_id: int) -> None:
        self.session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))

    def forgot_password(self, data: ForgotPasswordIn) -> None:
        user = self._by_email(data.email)
        if not user or not user.is_active:
            logger.info("password_reset_requested: known=false")
            return
        pending = self.session.scalars(
            select(PasswordReset).where(
                PasswordReset.user_id == user.id, PasswordReset.used.is_(False)
            )
        ).all()
        for reset in pending:
            reset.used = True
        ttl = self.settings.reset_otp_ttl_secs
        otp = generate_otp()
        self.session.add(
            PasswordReset(
                email=user.email,
                otp=otp,
                user_id=user.id,
                expires_at=utcnow() + timedelta(seconds=ttl),
            )
        )
        self.session.commit()
        logger.info(f"password_reset_requested: user_id={user.id}")
        try:
            self.mailer.send_password_reset_otp(user.email, user.name, otp, ttl // 60)
        except MailDeliveryError as exc:
            # The response must not reveal whether the account exists.
            logger.error(f"password_reset_mail_failed: user_id={user.id} error={exc}")

    def reset_password(self, data: ResetPasswordIn) -> None:
        record = self.session.scalar(
            select(PasswordReset)
            .where(
                PasswordReset.email == normalize_email(data.email),
                PasswordReset.otp == data.otp,
                PasswordReset.used.is_(False),
                PasswordReset.expires_at > utcnow(),
            )
            .order_by(PasswordReset.created_at.desc(), PasswordReset.id.desc())
        )
        if not record:
            raise ValueError("Invalid or expired OTP")
        user = record.user
        user.password_hash = hash_password(data.new_password)
        record.used = True
        self.revoke_all(user.id)
        self.session.commit()
        logger.info(f"password_reset_completed: user_id={user.id}")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        tokens = self.session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at <= now)
        ).rowcount
        resets = self.session.execute(
            delete(PasswordReset).where(PasswordReset.expires_at <= now)
        ).rowcount
        self.session.commit()
        return int(tokens or 0) + int(resets or 0)


class UserService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update_profile(self, data: ProfileUpdateIn) -> User:
        user = self.get()
        if data.name:
            user.name = data.name
        if data.email:
            email = normalize_email(data.email)
            taken = self.session.scalar(
                select(User.id).where(User.email == email, User.id != user.id)
            )
            if taken:
                raise ConflictError("User with this email already exists")
            user.email = email
        if data.avatar:
            user.avatar = data.avatar
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(
        self, data: ChangePasswordIn, *, revoke_sessions: bool = False
    ) -> None:
        user = self.get()
        if not verify_password(data.current_password, user.password_hash):
            raise ValueError("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        if revoke_sessions:
            AuthService(self.session).revoke_all(user.id)
        self.session.commit()
        logger.info(f"password_changed: user_id={user.id} revoked={revoke_sessions}")

    def deactivate(self) -> None:
        user = self.get()
        user.is_active = False
        AuthService(self.session).revoke_all(user.id)
        self.session.commit()
        logger.info(f"account_deactivated: user_id={user.id}")

    def stats(self) -> UserStatsOut:
        count, total = self.session.execute(
            select(
                func.count(Expense.id), func.coalesce(func.sum(Expense.amount_cents), 0)
            ).where(Expense.user_id == self.user_id)
        ).one()
        categories_used = self.session.execute(
            select(func.count(func.distinct(Expense.category_id))).where(
                Expense.user_id == self.user_id
            )
        ).scalar_one()
        recent = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
            .limit(5)
        ).all()
        return UserStatsOut(
            total_expenses=int(count),
            total_amount=cents_to_amount(int(total)),
            categories_used=int(categories_used),
            recent_expenses=[ExpenseOut.from_model(e) for e in recent],
        )


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def expense_counts(self) -> dict[int, int]:
        rows = self.session.execute(
            select(Expense.category_id, func.count(Expense.id).label("usage"))
            .where(Expense.user_id == self.user_id)
            .group_by(Expense.category_id)
        ).all()
        return {row.category_id: int(row.usage) for row in rows}

    def list_all(self, include_inactive: bool = False) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        if not include_inactive:
            stmt = stmt.where(Category.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name):
            raise ConflictError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            description=data.description,
            color=data.color or "#1890ff",
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def seed_defaults(self) -> int:
        created = 0
        for name, description, color in DEFAULT_CATEGORIES:
            if self._name_taken(name):
                continue
            self.session.add(
                Category(
                    user_id=self.user_id,
                    name=name,
                    description=description,
                    color=color,
                )
            )
            created += 1
        self.session.flush()
        return created

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        fields = data.model_dump(exclude_unset=True)
        name = fields.get("name")
        if name and name.strip().lower() != category.name.lower():
            if self._name_taken(name, exclude_id=category.id):
                raise ConflictError("Category with this name already exists")
        if name:
            category.name = name.strip()
        if "description" in fields:
            category.description = fields["description"]
        if fields.get("color"):
            category.color = fields["color"]
        if fields.get("is_active") is not None:
            category.is_active = fields["is_active"]
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> bool:
        """Delete a category, or deactivate it when anything still references it.

        Returns True for a hard delete.
        """
        category = self.get(category_id)
        expense_refs = self.session.execute(
            select(func.count(Expense.id)).where(Expense.category_id == category.id)
        ).scalar_one()
        budget_refs = self.session.execute(
            select(func.count(Budget.id)).where(Budget.category_id == category.id)
        ).scalar_one()
        if expense_refs or budget_refs:
            category.is_active = False
            self.session.commit()
            return False
        self.session.delete(category)
        self.session.commit()
        return True

    def stats(self, category_id: int, date_range: DateRange) -> CategoryStatsOut:
        category = self.get(category_id)
        totals_stmt = select(
            func.count(Expense.id), func.coalesce(func.sum(Expense.amount_cents), 0)
        ).where(Expense.user_id == self.user_id, Expense.category_id == category.id)
        totals_stmt = _apply_range(totals_stmt, Expense.date, date_range)
        count, total = self.session.execute(totals_stmt).one()
        recent = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.category_id == category.id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(10)
        ).all()
        return CategoryStatsOut(
            category=CategoryOut.from_model(
                category, self.expense_counts().get(category.id, 0)
            ),
            stats=_totals(int(count), int(total)),
            recent_expenses=[ExpenseOut.from_model(e) for e in recent],
        )


@dataclass
class ExpenseFilters:
    category_id: Optional[int] = None
    date_range: DateRange = DateRange()
    search: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _active_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id or not category.is_active:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: ExpenseIn) -> Expense:
        self._active_category(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            description=data.description.strip(),
            notes=data.notes,
            date=data.date or local_today(),
            category_id=data.category_id,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("category_id") is not None:
            self._active_category(fields["category_id"])
            expense.category_id = fields["category_id"]
        if fields.get("amount") is not None:
            expense.amount_cents = to_cents(fields["amount"])
        if fields.get("description"):
            expense.description = fields["description"].strip()
        if "notes" in fields:
            expense.notes = fields["notes"]
        if fields.get("date"):
            expense.date = fields["date"]
        self.session.commit()
        self.session.expire(expense, ["category"])
        return self.get(expense.id)

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()

    def _filtered(self, stmt, filters: ExpenseFilters):
        stmt = stmt.where(Expense.user_id == self.user_id)
        if filters.category_id:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        stmt = _apply_range(stmt, Expense.date, filters.date_range)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Expense.description).like(like),
                    func.lower(func.coalesce(Expense.notes, "")).like(like),
                )
            )
        return stmt

    def list(
        self, filters: ExpenseFilters, page: int = 1, limit: int = 10
    ) -> tuple[list[Expense], int]:
        total = self.session.execute(
            self._filtered(select(func.count(Expense.id)), filters)
        ).scalar_one()
        stmt = (
            self._filtered(select(Expense), filters)
            .options(joinedload(Expense.category))
            .order_by(Expense.date.desc(), Expense.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self.session.scalars(stmt).all(), int(total)

    def stats(self, date_range: DateRange) -> ExpenseStatsOut:
        totals_stmt = select(
            func.count(Expense.id), func.coalesce(func.sum(Expense.amount_cents), 0)
        ).where(Expense.user_id == self.user_id)
        count, total = self.session.execute(
            _apply_range(totals_stmt, Expense.date, date_range)
        ).one()

        by_category_stmt = (
            select(
                Expense.category_id,
                func.count(Expense.id).label("count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(Expense.user_id == self.user_id)
            .group_by(Expense.category_id)
        )
        by_category = self.session.execute(
            _apply_range(by_category_stmt, Expense.date, date_range)
        ).all()
        categories = {
            c.id: c
            for c in self.session.scalars(
                select(Category).where(
                    Category.id.in_([row.category_id for row in by_category])
                )
            )
        }
        category_stats = [
            CategoryStatOut(
                category_id=row.category_id,
                category=(
                    CategoryRef.model_validate(categories[row.category_id])
                    if row.category_id in categories
                    else None
                ),
                total_amount=cents_to_amount(int(row.total)),
                count=int(row.count),
            )
            for row in by_category
        ]
        category_stats.sort(key=lambda s: s.total_amount, reverse=True)

        return ExpenseStatsOut(
            total_stats=_totals(int(count), int(total)),
            category_stats=category_stats,
            monthly_stats=self.monthly(date_range),
        )

    def monthly(self, date_range: DateRange) -> list[MonthlyStatOut]:
        default = trailing_year()
        window = DateRange(
            date_range.start or default.start, date_range.end or default.end
        )
        rows = self.session.execute(
            _apply_range(
                select(Expense.date, Expense.amount_cents).where(
                    Expense.user_id == self.user_id
                ),
                Expense.date,
                window,
            )
        ).all()
        buckets: dict[str, list[int]] = {}
        for row in rows:
            key = f"{row.date.year:04d}-{row.date.month:02d}"
            bucket = buckets.setdefault(key, [0, 0])
            bucket[0] += row.amount_cents
            bucket[1] += 1
        return [
            MonthlyStatOut(
                month=month,
                total_amount=cents_to_amount(total),
                expense_count=count,
            )
            for month, (total, count) in sorted(buckets.items(), reverse=True)
        ]


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            description=data.description.strip(),
            source=data.source.strip(),
            date=data.date or local_today(),
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def get(self, income_id: int) -> Income:
        income = self.session.scalar(
            select(Income).where(Income.user_id == self.user_id, Income.id == income_id)
        )
        if not income:
            raise NotFoundError("Income not found")
        return income

    def update(self, income_id: int, data: IncomeUpdate) -> Income:
        income = self.get(income_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("amount") is not None:
            income.amount_cents = to_cents(fields["amount"])
        if fields.get("description"):
            income.description = fields["description"].strip()
        if fields.get("source"):
            income.source = fields["source"].strip()
        if fields.get("date"):
            income.date = fields["date"]
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        self.session.delete(income)
        self.session.commit()

    def _filtered(self, stmt, date_range: DateRange, search: Optional[str]):
        stmt = _apply_range(stmt.where(Income.user_id == self.user_id), Income.date, date_range)
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Income.description).like(like),
                    func.lower(Income.source).like(like),
                )
            )
        return stmt

    def list(
        self,
        date_range: DateRange,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Income], int]:
        total = self.session.execute(
            self._filtered(select(func.count(Income.id)), date_range, search)
        ).scalar_one()
        stmt = (
            self._filtered(select(Income), date_range, search)
            .order_by(Income.date.desc(), Income.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self.session.scalars(stmt).all(), int(total)

    def stats(self, date_range: DateRange) -> IncomeStatsOut:
        count, total = self.session.execute(
            self._filtered(
                select(
                    func.count(Income.id),
                    func.coalesce(func.sum(Income.amount_cents), 0),
                ),
                date_range,
                None,
            )
        ).one()
        total_col = func.coalesce(func.sum(Income.amount_cents), 0).label("total")
        rows = self.session.execute(
            self._filtered(
                select(Income.source, func.count(Income.id).label("count"), total_col),
                date_range,
                None,
            )
            .group_by(Income.source)
            .order_by(total_col.desc())
        ).all()
        totals = _totals(int(count), int(total))
        return IncomeStatsOut(
            total_amount=totals.total_amount,
            total_count=totals.total_count,
            average_amount=totals.average_amount,
            source_breakdown=[
                SourceStatOut(
                    source=row.source,
                    total_amount=cents_to_amount(int(row.total)),
                    count=int(row.count),
                )
                for row in rows
            ],
        )


@dataclass(frozen=True)
class BudgetUsage:
    budget: Budget
    spent: Decimal
    remaining: Decimal
    percentage_used: Decimal
    is_over_budget: bool
    severity: Optional[AlertSeverity]


def budget_window(budget: Budget) -> BudgetWindow:
    return BudgetWindow(
        id=budget.id,
        amount_cents=budget.amount_cents,
        start_date=budget.start_date,
        end_date=budget.end_date,
        category_id=budget.category_id,
    )


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")

    def create(self, data: BudgetIn) -> Budget:
        self._check_category(data.category_id)
        budget = Budget(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=to_cents(data.amount),
            start_date=data.start_date,
            end_date=data.end_date,
            category_id=data.category_id,
        )
        self.session.add(budget)
        self.session.commit()
        logger.info(f"budget_created: user_id={self.user_id} budget_id={budget.id}")
        return self.get(budget.id)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_dump(exclude_unset=True)
        start = fields.get("start_date") or budget.start_date
        end = fields.get("end_date") or budget.end_date
        if start > end:
            raise ValueError("Start date must be on or before end date")
        if "category_id" in fields:
            self._check_category(fields["category_id"])
            budget.category_id = fields["category_id"]
        if fields.get("name"):
            budget.name = fields["name"].strip()
        if fields.get("amount") is not None:
            budget.amount_cents = to_cents(fields["amount"])
        if fields.get("is_active") is not None:
            budget.is_active = fields["is_active"]
        budget.start_date = start
        budget.end_date = end
        self.session.commit()
        self.session.expire(budget, ["category"])
        return self.get(budget.id)

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: user_id={self.user_id} budget_id={budget_id}")

    def _all_budgets(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return self.session.scalars(stmt).all()

    def candidate_expenses(self, budget: Budget) -> list[ExpensePoint]:
        stmt = select(Expense.amount_cents, Expense.date).where(
            Expense.user_id == self.user_id,
            Expense.date.between(budget.start_date, budget.end_date),
        )
        if budget.category_id is not None:
            stmt = stmt.where(Expense.category_id == budget.category_id)
        return [
            ExpensePoint(amount_cents=row.amount_cents, date=row.date)
            for row in self.session.execute(stmt)
        ]

    def _spent(self, budget: Budget, windows: list[BudgetWindow]) -> Decimal:
        return compute_spent(
            budget_window(budget), windows, self.candidate_expenses(budget)
        )

    def _usage(self, budget: Budget, windows: list[BudgetWindow]) -> BudgetUsage:
        spent = self._spent(budget, windows)
        amount = cents_to_decimal(budget.amount_cents)
        return BudgetUsage(
            budget=budget,
            spent=spent,
            remaining=amount - spent,
            percentage_used=percentage_used(spent, amount),
            is_over_budget=spent > amount,
            severity=alert_severity(spent, amount),
        )

    def list_with_spent(
        self, is_active: Optional[bool] = None
    ) -> list[tuple[Budget, Decimal]]:
        budgets = self._all_budgets()
        # Overlaps are resolved against every budget, not just the listed ones.
        windows = [budget_window(b) for b in budgets]
        listed = [b for b in budgets if is_active is None or b.is_active == is_active]
        return [(b, self._spent(b, windows)) for b in listed]

    def progress(self, budget_id: int) -> BudgetUsage:
        budget = self.get(budget_id)
        windows = [budget_window(b) for b in self._all_budgets()]
        return self._usage(budget, windows)

    def alerts(self, today: Optional[date] = None) -> list[BudgetUsage]:
        today = today or local_today()
        budgets = self._all_budgets()
        windows = [budget_window(b) for b in budgets]
        alerts: list[BudgetUsage] = []
        for budget in budgets:
            if not budget.is_active:
                continue
            if not (budget.start_date <= today <= budget.end_date):
                continue
            usage = self._usage(budget, windows)
            if usage.severity is not None:
                alerts.append(usage)
        return alerts
