import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime

from moneymate.balance_engine import balances_for_owner
from moneymate.errors import NotFoundError
from moneymate.tests.helpers import make_file_store, make_memory_store


class GoalStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store, self.owner_id = make_memory_store()

    def test_create_defaults_to_base_currency(self) -> None:
        goal = self.store.create_goal(
            self.owner_id, "  Laptop ", 15_000_000, datetime(2024, 9, 1, 8, 30), icon="💻"
        )

        self.assertEqual(goal.name, "Laptop")
        self.assertEqual(goal.currency, "IDR")
        self.assertEqual(goal.current_amount, 0)
        self.assertEqual(goal.target_date, date(2024, 9, 1))
        self.assertEqual(goal.icon, "💻")

    def test_rejects_invalid_goals(self) -> None:
        with self.assertRaises(ValueError):
            self.store.create_goal(self.owner_id, " ", 100, date(2024, 9, 1))
        with self.assertRaises(ValueError):
            self.store.create_goal(self.owner_id, "Car", 0, date(2024, 9, 1))
        with self.assertRaises(ValueError):
            self.store.create_goal(self.owner_id, "Car", 10.5, date(2024, 9, 1))

    def test_list_is_ordered_by_target_date(self) -> None:
        self.store.create_goal(self.owner_id, "House", 500_000_000, date(2030, 1, 1))
        self.store.create_goal(self.owner_id, "Trip", 5_000_000, date(2024, 7, 1))
        self.store.create_goal(self.owner_id, "Phone", 8_000_000, date(2025, 2, 1))

        names = [goal.name for goal in self.store.list_goals(self.owner_id)]

        self.assertEqual(names, ["Trip", "Phone", "House"])

    def test_add_money_increments_and_reports_progress(self) -> None:
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000, date(2024, 7, 1))

        self.store.add_money_to_goal(self.owner_id, goal.id, 300)
        updated = self.store.add_money_to_goal(self.owner_id, goal.id, 900)

        self.assertEqual(updated.current_amount, 1_200)
        self.assertEqual(updated.remaining, 0)
        self.assertEqual(updated.progress_percent, 100)
        self.assertEqual(self.store.get_goal(self.owner_id, goal.id).current_amount, 1_200)

    def test_add_money_requires_positive_amount(self) -> None:
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000, date(2024, 7, 1))

        for amount in (0, -5, True):
            with self.subTest(amount=amount):
                with self.assertRaises(ValueError):
                    self.store.add_money_to_goal(self.owner_id, goal.id, amount)
        self.assertEqual(self.store.get_goal(self.owner_id, goal.id).current_amount, 0)

    def test_goals_are_scoped_to_owner(self) -> None:
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000, date(2024, 7, 1))
        other = self.store.create_user(name="Budi")

        self.assertEqual(self.store.list_goals(other.id), [])
        with self.assertRaises(NotFoundError):
            self.store.get_goal(other.id, goal.id)
        with self.assertRaises(NotFoundError):
            self.store.add_money_to_goal(other.id, goal.id, 100)
        with self.assertRaises(NotFoundError):
            self.store.delete_goal(other.id, goal.id)
        self.assertEqual(self.store.get_goal(self.owner_id, goal.id).current_amount, 0)

    def test_delete_removes_goal(self) -> None:
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000, date(2024, 7, 1))

        self.store.delete_goal(self.owner_id, goal.id)

        with self.assertRaises(NotFoundError):
            self.store.get_goal(self.owner_id, goal.id)
        with self.assertRaises(NotFoundError):
            self.store.delete_goal(self.owner_id, goal.id)

    def test_goals_leave_account_balances_alone(self) -> None:
        bank = self.store.create_account(self.owner_id, "Bank", "bank", 5_000)
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000, date(2024, 7, 1))

        self.store.add_money_to_goal(self.owner_id, goal.id, 500)

        self.assertEqual(balances_for_owner(self.store, self.owner_id), {bank.id: 5_000})


class GoalConcurrencyTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store, self.owner_id = make_file_store(self._tmp.name)

    def tearDown(self) -> None:
        self.store.engine.dispose()
        self._tmp.cleanup()

    def test_concurrent_deposits_all_land(self) -> None:
        goal = self.store.create_goal(self.owner_id, "Trip", 1_000_000, date(2024, 7, 1))

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(
                pool.map(
                    lambda _: self.store.add_money_to_goal(self.owner_id, goal.id, 10),
                    range(20),
                )
            )

        self.assertEqual(self.store.get_goal(self.owner_id, goal.id).current_amount, 200)


if __name__ == "__main__":
    unittest.main()
