import unittest
from datetime import date, datetime

from moneymate.analytics import (
    UNCATEGORIZED_NAME,
    category_breakdown,
    current_month_stats,
    monthly_trends,
    net_worth_progression,
    recent_transactions,
    savings_rate,
    trend_percent,
)
from moneymate.balance_engine import current_balance
from moneymate.budget_engine import budget_status
from moneymate.currency_conversion import StaticRateTable
from moneymate.tests.helpers import (
    make_memory_store,
    record_expense,
    record_income,
    record_transfer,
)
from moneymate.watchlist import watchlist


class RatioTests(unittest.TestCase):
    def test_trend_percent(self) -> None:
        self.assertEqual(trend_percent(150, 100), 50)
        self.assertEqual(trend_percent(50, -100), 150)
        self.assertEqual(trend_percent(123, 0), 0)

    def test_savings_rate(self) -> None:
        self.assertEqual(savings_rate(1000, 250), 0.75)
        self.assertEqual(savings_rate(0, 500), 0)


class AnalyticsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rates = StaticRateTable()
        self.rates.add("USD", "IDR", "15000", "2024-01-01")
        self.store, self.owner_id = make_memory_store(rate_table=self.rates)
        self.bank = self.store.create_account(self.owner_id, "Bank", "bank", 0)
        self.cash = self.store.create_account(self.owner_id, "Cash", "cash", 0)
        self.food = self.store.create_category(self.owner_id, "Food", "expense")
        self.rent = self.store.create_category(self.owner_id, "Rent", "expense")
        self.now = datetime(2024, 6, 20, 10, 0)

    def test_month_stats_with_trends(self) -> None:
        record_income(self.store, self.owner_id, self.bank.id, 1_000_000, datetime(2024, 5, 1))
        record_expense(self.store, self.owner_id, self.bank.id, 500_000, datetime(2024, 5, 2))
        record_income(self.store, self.owner_id, self.bank.id, 2_000_000, datetime(2024, 6, 1))
        record_expense(self.store, self.owner_id, self.bank.id, 500_000, datetime(2024, 6, 2))
        record_transfer(
            self.store, self.owner_id, self.bank.id, self.cash.id, 100_000, datetime(2024, 6, 3)
        )

        stats = current_month_stats(self.store, self.rates, self.owner_id, self.now)

        self.assertEqual(stats.month, "2024-06")
        self.assertEqual(stats.income, 2_000_000)
        self.assertEqual(stats.expenses, 500_000)
        self.assertEqual(stats.net, 1_500_000)
        self.assertEqual(stats.savings_rate, 0.75)
        self.assertEqual(stats.transaction_count, 2)
        self.assertEqual(stats.income_trend, 100)
        self.assertEqual(stats.expense_trend, 0)
        self.assertEqual(stats.savings_rate_trend, 50)

    def test_month_stats_for_empty_ledger(self) -> None:
        stats = current_month_stats(self.store, self.rates, self.owner_id, self.now)

        self.assertEqual(stats.income, 0)
        self.assertEqual(stats.savings_rate, 0)
        self.assertEqual(stats.income_trend, 0)

    def test_month_stats_convert_foreign_amounts(self) -> None:
        brokerage = self.store.create_account(
            self.owner_id, "Brokerage", "investment", currency="USD"
        )
        record_income(self.store, self.owner_id, brokerage.id, 100, datetime(2024, 6, 5))

        stats = current_month_stats(self.store, self.rates, self.owner_id, self.now)

        self.assertEqual(stats.income, 1_500_000)

    def test_monthly_trends_are_dense(self) -> None:
        record_income(self.store, self.owner_id, self.bank.id, 300, datetime(2024, 2, 10))
        record_expense(self.store, self.owner_id, self.bank.id, 100, datetime(2024, 6, 1))

        trends = monthly_trends(self.store, self.rates, self.owner_id, self.now, months=6)

        self.assertEqual(
            [t.month for t in trends],
            ["2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06"],
        )
        self.assertEqual(trends[0].income, 0)
        self.assertEqual(trends[1].income, 300)
        self.assertEqual(trends[5].expense, 100)
        self.assertEqual(trends[5].net, -100)
        self.assertEqual(sum(t.income + t.expense for t in trends[2:5]), 0)

    def test_net_worth_progression(self) -> None:
        savings = self.store.create_account(self.owner_id, "Savings", "bank", 10, currency="USD")
        record_income(self.store, self.owner_id, self.bank.id, 100_000, datetime(2024, 4, 30, 23, 0))
        record_expense(self.store, self.owner_id, self.bank.id, 50_000, datetime(2024, 6, 1))
        self.rates.add("USD", "IDR", "16000", "2024-05-15")

        points = net_worth_progression(self.store, self.rates, self.owner_id, self.now, months=3)

        self.assertEqual([p.month for p in points], ["2024-04", "2024-05", "2024-06"])
        self.assertEqual(points[0].date, date(2024, 4, 30))
        self.assertEqual(points[0].net_worth, 100_000 + 150_000)
        self.assertEqual(points[0].change, 0)
        self.assertEqual(points[0].change_percent, 0)
        self.assertEqual(points[1].net_worth, 100_000 + 160_000)
        self.assertEqual(points[1].change, 10_000)
        self.assertEqual(points[2].net_worth, 50_000 + 160_000)
        self.assertEqual(points[2].change, -50_000)
        self.assertEqual(self.store.get_account(self.owner_id, savings.id).initial_balance, 10)

    def test_category_breakdown(self) -> None:
        record_expense(
            self.store, self.owner_id, self.bank.id, 300, datetime(2024, 6, 1),
            category_id=self.food.id,
        )
        record_expense(
            self.store, self.owner_id, self.bank.id, 200, datetime(2024, 6, 2),
            category_id=self.food.id,
        )
        record_expense(
            self.store, self.owner_id, self.bank.id, 500, datetime(2024, 6, 3),
            category_id=self.rent.id,
        )
        record_expense(self.store, self.owner_id, self.bank.id, 1000, datetime(2024, 6, 4))
        record_expense(
            self.store, self.owner_id, self.bank.id, 999, datetime(2024, 5, 4),
            category_id=self.rent.id,
        )

        rows = category_breakdown(
            self.store,
            self.rates,
            self.owner_id,
            start=datetime(2024, 6, 1),
            end=datetime(2024, 6, 30, 23, 59, 59),
        )

        self.assertEqual([r.name for r in rows], [UNCATEGORIZED_NAME, "Food", "Rent"])
        self.assertIsNone(rows[0].category_id)
        self.assertEqual(rows[1].total, 500)
        self.assertEqual(rows[1].count, 2)
        self.assertEqual(rows[0].percentage, 50)
        self.assertEqual(rows[2].percentage, 25)

    def test_category_breakdown_rejects_transfer(self) -> None:
        with self.assertRaises(ValueError):
            category_breakdown(self.store, self.rates, self.owner_id, txn_type="transfer")

    def test_recent_transactions_newest_first(self) -> None:
        for day in range(1, 8):
            record_income(self.store, self.owner_id, self.bank.id, day, datetime(2024, 6, day))

        recent = recent_transactions(self.store, self.owner_id, limit=5)

        self.assertEqual([t.amount for t in recent], [7, 6, 5, 4, 3])


class EndToEndScenarioTests(unittest.TestCase):
    def test_single_account_month(self) -> None:
        rates = StaticRateTable()
        store, owner_id = make_memory_store(rate_table=rates)
        bank = store.create_account(owner_id, "Bank", "bank", 0, currency="IDR")
        food = store.create_category(owner_id, "Food", "expense", monthly_budget=500_000)
        record_income(store, owner_id, bank.id, 1_000_000, datetime(2024, 3, 1, 9, 0))
        record_expense(
            store, owner_id, bank.id, 300_000, datetime(2024, 3, 15, 12, 0), category_id=food.id
        )
        now = datetime(2024, 3, 20)

        status = budget_status(store, rates, owner_id, food.id, now)

        self.assertEqual(current_balance(store, owner_id, bank.id), 700_000)
        self.assertEqual(status.spent, 300_000)
        self.assertEqual(status.percentage, 60)
        self.assertEqual(status.status, "safe")
        self.assertEqual(watchlist(store, rates, owner_id, now), [])


if __name__ == "__main__":
    unittest.main()
