import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from budget_overlap import AlertSeverity
from models import Budget, Category, Expense, Income
from money import cents_to_amount

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def amount_field(default=...):
    return Field(default, gt=0, max_digits=12, decimal_places=2)


# Auth / users


class RegisterIn(ApiModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)


class LoginIn(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordIn(ApiModel):
    email: EmailStr


class ResetPasswordIn(ApiModel):
    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{6}$")
    new_password: str = Field(..., min_length=6, max_length=100)


class ChangePasswordIn(ApiModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=100)


class ProfileUpdateIn(ApiModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    avatar: Optional[str] = Field(None, max_length=500)

    @field_validator("name", "email", "avatar", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class UserOut(ApiModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    avatar: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# Categories


class CategoryIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class CategoryUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    is_active: Optional[bool] = None


class CategoryRef(ApiModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: str


class CategoryOut(ApiModel):
    id: int
    name: str
    description: Optional[str]
    color: str
    is_active: bool
    expense_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, category: Category, expense_count: int = 0) -> "CategoryOut":
        return cls(
            id=category.id,
            name=category.name,
            description=category.description,
            color=category.color,
            is_active=category.is_active,
            expense_count=expense_count,
            created_at=category.created_at,
            updated_at=category.updated_at,
        )


# Expenses / income


class ExpenseIn(ApiModel):
    amount: Decimal = amount_field()
    description: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    date: Optional[dt.date] = None
    category_id: int


class ExpenseUpdate(ApiModel):
    amount: Optional[Decimal] = amount_field(None)
    description: Optional[str] = Field(None, min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    date: Optional[dt.date] = None
    category_id: Optional[int] = None


class ExpenseOut(ApiModel):
    id: int
    amount: float
    description: str
    notes: Optional[str]
    date: date
    category_id: int
    category: Optional[CategoryRef]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            amount=cents_to_amount(expense.amount_cents),
            description=expense.description,
            notes=expense.notes,
            date=expense.date,
            category_id=expense.category_id,
            category=(
                CategoryRef.model_validate(expense.category)
                if expense.category
                else None
            ),
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )


class IncomeIn(ApiModel):
    amount: Decimal = amount_field()
    description: str = Field(..., min_length=1, max_length=255)
    source: str = Field(..., min_length=1, max_length=100)
    date: Optional[dt.date] = None


class IncomeUpdate(ApiModel):
    amount: Optional[Decimal] = amount_field(None)
    description: Optional[str] = Field(None, min_length=1, max_length=255)
    source: Optional[str] = Field(None, min_length=1, max_length=100)
    date: Optional[dt.date] = None


class IncomeOut(ApiModel):
    id: int
    amount: float
    description: str
    source: str
    date: date
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, income: Income) -> "IncomeOut":
        return cls(
            id=income.id,
            amount=cents_to_amount(income.amount_cents),
            description=income.description,
            source=income.source,
            date=income.date,
            created_at=income.created_at,
            updated_at=income.updated_at,
        )


class Pagination(ApiModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = (total_count + limit - 1) // limit
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_count=total_count,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


# Budgets


class BudgetIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = amount_field()
    start_date: date
    end_date: date
    category_id: Optional[int] = None

    @model_validator(mode="after")
    def check_range(self) -> "BudgetIn":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be on or before end date")
        return self


class BudgetUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[Decimal] = amount_field(None)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def check_range(self) -> "BudgetUpdate":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Start date must be on or before end date")
        return self


class BudgetOut(ApiModel):
    id: int
    name: str
    amount: float
    start_date: date
    end_date: date
    category_id: Optional[int]
    category: Optional[CategoryRef]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, budget: Budget, **extra) -> "BudgetOut":
        return cls(
            id=budget.id,
            name=budget.name,
            amount=cents_to_amount(budget.amount_cents),
            start_date=budget.start_date,
            end_date=budget.end_date,
            category_id=budget.category_id,
            category=(
                CategoryRef.model_validate(budget.category) if budget.category else None
            ),
            is_active=budget.is_active,
            created_at=budget.created_at,
            updated_at=budget.updated_at,
            **extra,
        )


class BudgetWithSpentOut(BudgetOut):
    spent: float


class BudgetProgressOut(ApiModel):
    budget: BudgetOut
    spent_amount: float
    remaining_amount: float
    percentage_used: float
    is_over_budget: bool


class BudgetAlertOut(ApiModel):
    budget: BudgetOut
    spent_amount: float
    percentage_used: float
    is_over_budget: bool
    severity: AlertSeverity


# Stats


class TotalsOut(ApiModel):
    total_amount: float
    total_count: int
    average_amount: float


class CategoryStatOut(ApiModel):
    category_id: int
    category: Optional[CategoryRef]
    total_amount: float
    count: int


class MonthlyStatOut(ApiModel):
    month: str
    total_amount: float
    expense_count: int


class ExpenseStatsOut(ApiModel):
    total_stats: TotalsOut
    category_stats: list[CategoryStatOut]
    monthly_stats: list[MonthlyStatOut]


class SourceStatOut(ApiModel):
    source: str
    total_amount: float
    count: int


class IncomeStatsOut(ApiModel):
    total_amount: float
    total_count: int
    average_amount: float
    source_breakdown: list[SourceStatOut]


class CategoryStatsOut(ApiModel):
    category: CategoryOut
    stats: TotalsOut
    recent_expenses: list[ExpenseOut]


class UserStatsOut(ApiModel):
    total_expenses: int
    total_amount: float
    categories_used: int
    recent_expenses: list[ExpenseOut]
