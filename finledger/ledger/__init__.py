"""Ledger package: transactions, categories, budgets and their aggregates."""

from finledger.ledger.aggregates import (
    apply_category_usage,
    budget_impact_for,
    compute_tracking,
    find_covering_budgets,
    recalculate_budget,
    recalculate_budgets_for,
    update_category_usage,
)
from finledger.ledger.transactions import LEDGER_STORES, TransactionService
from finledger.ledger.categories import CategoryService
from finledger.ledger.budgets import BudgetService

__all__ = [
    # Aggregates
    "apply_category_usage",
    "budget_impact_for",
    "compute_tracking",
    "find_covering_budgets",
    "recalculate_budget",
    "recalculate_budgets_for",
    "update_category_usage",
    # Services
    "LEDGER_STORES",
    "BudgetService",
    "CategoryService",
    "TransactionService",
]
