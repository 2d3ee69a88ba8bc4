"""Tests for budgets and budget tracking."""

import asyncio

import pytest

from conftest import category_named, sign_in
from finledger.errors import AuthorizationError, NotFoundError, ValidationError
from finledger.ledger import budget_impact_for, compute_tracking
from finledger.models import Budget, BudgetStatus
from finledger.services.storage import Stores


JANUARY = {"start_date": "2025-01-01", "end_date": "2025-01-31"}


async def food_budget(components, amount=100000, **overrides):
    food = await category_named(components, "Food & Dining")
    data = {"category_id": food.id, "name": "Food", "amount": amount, **JANUARY}
    data.update(overrides)
    return food, await components.budgets.create_budget(data)


async def spend(components, category, amount, day="2025-01-10", **overrides):
    return await components.transactions.create_transaction({
        "amount": amount,
        "type": "expense",
        "date": day,
        "description": "Groceries",
        "category_id": category.id,
        **overrides,
    })


async def reload_budget(components, budget_id) -> Budget:
    return Budget.model_validate(await components.storage.get(Stores.BUDGETS, budget_id))


class TestComputeTracking:
    """compute_tracking()"""

    def test_under_budget(self):
        """Test a partly used budget."""
        tracking = compute_tracking(100000, 90000)
        assert tracking.current_spent == 90000
        assert tracking.remaining_amount == 10000
        assert tracking.percentage_used == 90.0
        assert tracking.on_track

    def test_exactly_spent_is_on_track(self):
        """Test the boundary at 100 percent."""
        assert compute_tracking(100000, 100000).on_track

    def test_overspent(self):
        """Test that remaining goes negative."""
        tracking = compute_tracking(100000, 120000)
        assert tracking.remaining_amount == -20000
        assert tracking.percentage_used == 120.0
        assert not tracking.on_track

    def test_percentage_rounded_to_two_places(self):
        """Test rounding."""
        assert compute_tracking(3, 1).percentage_used == 33.33


class TestBudgetTracking:
    """Tracking kept in sync by ledger writes."""

    def test_spending_against_budget(self, app):
        """Test three expenses then a fourth that overspends."""
        async def scenario():
            await sign_in(app)
            food, budget = await food_budget(app)
            for _ in range(3):
                await spend(app, food, 30000)
            under = await reload_budget(app, budget.id)
            last = await spend(app, food, 30000)
            over = await reload_budget(app, budget.id)
            return budget, under, over, last

        budget, under, over, last = asyncio.run(scenario())
        assert under.tracking.current_spent == 90000
        assert under.tracking.remaining_amount == 10000
        assert under.tracking.on_track
        assert over.tracking.current_spent == 120000
        assert over.tracking.remaining_amount == -20000
        assert not over.tracking.on_track
        assert last.budget_impact.budget_id == budget.id
        assert last.budget_impact.budget_period == "2025-01-01_2025-01-31"
        assert last.budget_impact.remaining_budget == -20000

    def test_new_budget_counts_existing_spending(self, app):
        """Test that tracking is computed when the budget is created."""
        async def scenario():
            await sign_in(app)
            food = await category_named(app, "Food & Dining")
            await spend(app, food, 25000)
            await spend(app, food, 5000, day="2025-02-03")
            _, budget = await food_budget(app)
            return budget

        budget = asyncio.run(scenario())
        assert budget.tracking.current_spent == 25000
        assert budget.last_calculated_at is not None

    def test_ignores_income_other_categories_and_dates(self, app):
        """Test what does not count against a budget."""
        async def scenario():
            await sign_in(app)
            food, budget = await food_budget(app)
            travel = await category_named(app, "Travel")
            await spend(app, food, 10000)
            await spend(app, food, 10000, type="income")
            await spend(app, travel, 10000)
            await spend(app, food, 10000, day="2024-12-31")
            outside = await spend(app, food, 10000, day="2025-02-01")
            return outside, await reload_budget(app, budget.id)

        outside, budget = asyncio.run(scenario())
        assert budget.tracking.current_spent == 10000
        assert outside.budget_impact.budget_id is None

    def test_delete_and_update_recalculate(self, app):
        """Test that tracking follows deletes and moves out of the period."""
        async def scenario():
            await sign_in(app)
            food, budget = await food_budget(app)
            first = await spend(app, food, 40000)
            second = await spend(app, food, 20000)
            await app.transactions.delete_transaction(first.id)
            after_delete = await reload_budget(app, budget.id)
            await app.transactions.update_transaction(second.id, {"date": "2025-02-02"})
            after_move = await reload_budget(app, budget.id)
            return after_delete, after_move

        after_delete, after_move = asyncio.run(scenario())
        assert after_delete.tracking.current_spent == 20000
        assert after_move.tracking.current_spent == 0
        assert after_move.tracking.remaining_amount == 100000

    def test_paused_budget_is_frozen_until_reactivated(self, app):
        """Test that only active budgets are tracked."""
        async def scenario():
            await sign_in(app)
            food, budget = await food_budget(app)
            await app.budgets.set_budget_status(budget.id, BudgetStatus.PAUSED)
            await spend(app, food, 30000)
            paused = await reload_budget(app, budget.id)
            active = await app.budgets.set_budget_status(budget.id, "active")
            return paused, active

        paused, active = asyncio.run(scenario())
        assert paused.status == BudgetStatus.PAUSED
        assert paused.tracking.current_spent == 0
        assert active.tracking.current_spent == 30000

    def test_templates_are_not_tracked(self, app):
        """Test that template budgets never get a transaction's impact."""
        async def scenario():
            await sign_in(app)
            food, template = await food_budget(app, is_template=True)
            tx = await spend(app, food, 30000)
            return tx, await reload_budget(app, template.id)

        tx, template = asyncio.run(scenario())
        assert tx.budget_impact.budget_id is None
        assert template.tracking.current_spent == 0

    def test_manual_recalculate(self, app, clock):
        """Test recalculate_budget()."""
        async def scenario():
            await sign_in(app)
            food, budget = await food_budget(app)
            await spend(app, food, 30000)
            clock.advance(minutes=30)
            return await app.budgets.recalculate_budget(budget.id)

        budget = asyncio.run(scenario())
        assert budget.tracking.current_spent == 30000
        assert budget.last_calculated_at == clock()


class TestBudgetService:
    """create / get / list."""

    def test_currency_defaults_to_preference(self, app):
        """Test the currency fallback."""
        async def scenario():
            await sign_in(app)
            _, budget = await food_budget(app)
            return budget

        assert asyncio.run(scenario()).currency == "IDR"

    def test_end_before_start(self, app):
        """Test the period check."""
        async def scenario():
            await sign_in(app)
            await food_budget(app, start_date="2025-02-01", end_date="2025-01-01")

        with pytest.raises(ValidationError):
            asyncio.run(scenario())
        assert asyncio.run(app.storage.count(Stores.BUDGETS)) == 0

    def test_income_category_rejected(self, app):
        """Test that budgets only track expense categories."""
        async def scenario():
            await sign_in(app)
            salary = await category_named(app, "Salary")
            await app.budgets.create_budget({
                "category_id": salary.id, "name": "Salary", "amount": 1000, **JANUARY,
            })

        with pytest.raises(ValidationError):
            asyncio.run(scenario())

    @pytest.mark.parametrize("amount", [0, -1])
    def test_amount_must_be_positive(self, app, amount):
        """Test the amount check."""
        asyncio.run(sign_in(app))
        with pytest.raises(ValidationError):
            asyncio.run(food_budget(app, amount=amount))

    def test_foreign_budget(self, app):
        """Test ownership on read."""
        async def scenario():
            await sign_in(app, "bob")
            _, budget = await food_budget(app)
            await app.identity.logout()
            await sign_in(app, "alice")
            with pytest.raises(AuthorizationError):
                await app.budgets.get_budget(budget.id)
            with pytest.raises(NotFoundError):
                await app.budgets.get_budget("missing")
            return await app.budgets.list_budgets()

        assert asyncio.run(scenario()) == []

    def test_list_orders_and_filters(self, app):
        """Test list_budgets()."""
        async def scenario():
            await sign_in(app)
            _, feb = await food_budget(app, name="Feb", start_date="2025-02-01", end_date="2025-02-28")
            _, jan = await food_budget(app, name="Jan")
            await app.budgets.set_budget_status(feb.id, BudgetStatus.CANCELLED)
            return (
                await app.budgets.list_budgets(),
                await app.budgets.list_budgets(status=BudgetStatus.ACTIVE),
            )

        everything, active = asyncio.run(scenario())
        assert [b.name for b in everything] == ["Jan", "Feb"]
        assert [b.name for b in active] == ["Jan"]


class TestBudgetImpact:
    """budget_impact_for()"""

    def test_no_budget_means_empty_impact(self, app):
        """Test the empty snapshot."""
        async def scenario():
            await sign_in(app)
            food = await category_named(app, "Food & Dining")
            return await spend(app, food, 1000)

        tx = asyncio.run(scenario())
        assert budget_impact_for(tx, []) == tx.budget_impact
        assert tx.budget_impact.remaining_budget is None
