"""
Default category set seeded for every new user.
"""

import re
from datetime import datetime
from typing import Optional

from finledger.models import BudgetSettings, Category, CategoryType
from finledger.models.common import utc_now


DEFAULT_INCOME_CATEGORIES = [
    ("Salary", "Briefcase", "#10B981"),
    ("Freelance", "Laptop", "#3B82F6"),
    ("Investment", "TrendingUp", "#8B5CF6"),
    ("Business", "Building", "#F59E0B"),
    ("Other Income", "Plus", "#6B7280"),
]

DEFAULT_EXPENSE_CATEGORIES = [
    ("Food & Dining", "UtensilsCrossed", "#EF4444"),
    ("Transportation", "Car", "#F97316"),
    ("Shopping", "ShoppingBag", "#EC4899"),
    ("Entertainment", "Film", "#8B5CF6"),
    ("Bills & Utilities", "Receipt", "#06B6D4"),
    ("Healthcare", "Heart", "#EF4444"),
    ("Education", "GraduationCap", "#3B82F6"),
    ("Travel", "Plane", "#10B981"),
    ("Insurance", "Shield", "#6366F1"),
    ("Savings", "PiggyBank", "#059669"),
    ("Other Expenses", "Minus", "#6B7280"),
]


def slugify(name: str) -> str:
    """'Food & Dining' -> 'food-&-dining' (whitespace runs become '-')."""
    return re.sub(r"\s+", "-", name.strip().lower())


def build_default_categories(user_id: str, now: Optional[datetime] = None) -> list[Category]:
    """Build (but do not store) the default categories for a user."""
    now = now or utc_now()
    categories = []
    for category_type, entries, budgetable in (
        (CategoryType.INCOME, DEFAULT_INCOME_CATEGORIES, False),
        (CategoryType.EXPENSE, DEFAULT_EXPENSE_CATEGORIES, True),
    ):
        for index, (name, icon, color) in enumerate(entries):
            categories.append(Category(
                user_id=user_id,
                name=name,
                description=f"Default {name.lower()} category",
                icon=icon,
                color=color,
                parent_id=None,
                path=f"/{slugify(name)}",
                level=0,
                sort_order=index,
                type=category_type,
                is_system=True,
                is_active=True,
                budget_settings=BudgetSettings(allow_budgeting=budgetable),
                created_at=now,
                updated_at=now,
                created_by=user_id,
            ))
    return categories
