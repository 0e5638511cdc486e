import tempfile
import unittest
from datetime import date, datetime
from decimal import Decimal
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import insert

from moneymate import config
from moneymate.currency_conversion import StaticRateTable, StoreRateTable
from moneymate.main import app, get_rate_table, get_store
from moneymate.schema import transactions
from moneymate.tests.helpers import make_file_store


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.rates = StaticRateTable()
        self.store, self.owner_id = make_file_store(self._tmp.name, rate_table=self.rates)
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_rate_table] = lambda: self.rates
        self.client = TestClient(app)
        self.headers = {"x-user-id": str(self.owner_id)}

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.store.engine.dispose()
        self._tmp.cleanup()

    def _create_account(self, **overrides) -> dict:
        payload = {"name": "Bank", "type": "bank", "initial_balance": 0}
        payload.update(overrides)
        response = self.client.post("/accounts", json=payload, headers=self.headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_missing_and_unknown_identity(self) -> None:
        self.assertEqual(self.client.get("/accounts").status_code, 401)
        self.assertEqual(self.client.get("/accounts", headers={"x-user-id": "abc"}).status_code, 400)
        self.assertEqual(self.client.get("/accounts", headers={"x-user-id": "999"}).status_code, 404)

    def test_create_user_seeds_categories(self) -> None:
        response = self.client.post("/users", json={"name": "Sari", "base_currency": "usd"})

        self.assertEqual(response.status_code, 200, response.text)
        user = response.json()
        self.assertEqual(user["base_currency"], "USD")
        categories = self.client.get(
            "/categories", headers={"x-user-id": str(user["id"])}
        ).json()
        self.assertEqual(len(categories), 13)

    def test_update_settings(self) -> None:
        response = self.client.put(
            "/users/me/settings", json={"base_currency": "eur"}, headers=self.headers
        )

        self.assertEqual(response.json()["base_currency"], "EUR")
        bad = self.client.put(
            "/users/me/settings", json={"base_currency": "EURO"}, headers=self.headers
        )
        self.assertEqual(bad.status_code, 400)

    def test_transaction_flow_and_balance(self) -> None:
        account = self._create_account()
        food = self.client.post(
            "/categories",
            json={"name": "Food", "type": "expense", "monthly_budget": 500_000},
            headers=self.headers,
        ).json()

        income = self.client.post(
            "/transactions",
            json={
                "amount": 1_000_000,
                "type": "income",
                "date": "2024-03-01T09:00:00",
                "to_account_id": account["id"],
            },
            headers=self.headers,
        )
        expense = self.client.post(
            "/transactions",
            json={
                "amount": 300_000,
                "type": "expense",
                "date": "2024-03-15T12:00:00",
                "from_account_id": account["id"],
                "category_id": food["id"],
            },
            headers=self.headers,
        )
        self.assertEqual(income.status_code, 200, income.text)
        self.assertEqual(expense.status_code, 200, expense.text)

        balance = self.client.get(f"/accounts/{account['id']}/balance", headers=self.headers)
        statuses = self.client.get(
            "/budget/status", params={"now": "2024-03-20T00:00:00"}, headers=self.headers
        ).json()
        watch = self.client.get(
            "/budget/watchlist", params={"now": "2024-03-20T00:00:00"}, headers=self.headers
        ).json()

        self.assertEqual(balance.json()["balance"], 700_000)
        self.assertEqual(statuses[0]["spent"], 300_000)
        self.assertEqual(statuses[0]["status"], "safe")
        self.assertEqual(watch, [])

    def test_invalid_transaction_shape_is_rejected(self) -> None:
        account = self._create_account()

        response = self.client.post(
            "/transactions",
            json={
                "amount": 100,
                "type": "transfer",
                "from_account_id": account["id"],
                "to_account_id": account["id"],
            },
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)

    def test_currency_mismatch_is_rejected(self) -> None:
        account = self._create_account()

        response = self.client.post(
            "/transactions",
            json={"amount": 100, "type": "expense", "currency": "USD", "from_account_id": account["id"]},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/transactions", headers=self.headers).json(), [])

    def test_goal_lifecycle(self) -> None:
        created = self.client.post(
            "/goals",
            json={"name": " Holiday ", "target_amount": 1_000_000, "target_date": "2024-12-01"},
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 200, created.text)
        goal = created.json()
        self.assertEqual(goal["name"], "Holiday")
        self.assertEqual(goal["currency"], "IDR")
        self.assertEqual(goal["current_amount"], 0)

        deposit = self.client.post(
            f"/goals/{goal['id']}/add-money", json={"amount": 250_000}, headers=self.headers
        ).json()
        self.assertEqual(deposit["current_amount"], 250_000)
        self.assertEqual(deposit["remaining"], 750_000)
        self.assertEqual(deposit["progress_percent"], 25)

        rejected = self.client.post(
            f"/goals/{goal['id']}/add-money", json={"amount": 0}, headers=self.headers
        )
        self.assertEqual(rejected.status_code, 400)

        other = self.store.create_user(name="Budi")
        foreign = self.client.delete(
            f"/goals/{goal['id']}", headers={"x-user-id": str(other.id)}
        )
        self.assertEqual(foreign.status_code, 404)

        deleted = self.client.delete(f"/goals/{goal['id']}", headers=self.headers)
        self.assertEqual(deleted.json(), {"status": "deleted"})
        self.assertEqual(self.client.get("/goals", headers=self.headers).json(), [])

    def test_account_currency_is_immutable(self) -> None:
        account = self._create_account()

        response = self.client.put(
            f"/accounts/{account['id']}", json={"currency": "USD"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 400)

    def test_delete_referenced_account_deactivates(self) -> None:
        account = self._create_account()
        self.client.post(
            "/transactions",
            json={"amount": 100, "type": "income", "to_account_id": account["id"]},
            headers=self.headers,
        )

        response = self.client.delete(f"/accounts/{account['id']}", headers=self.headers)
        active = self.client.get(
            "/accounts", params={"include_inactive": "false"}, headers=self.headers
        ).json()

        self.assertEqual(response.json(), {"status": "deactivated"})
        self.assertEqual(active, [])

    def test_conversion_without_rate_is_unprocessable(self) -> None:
        response = self.client.get(
            "/currency/convert",
            params={"amount": 100, "from_currency": "USD", "on_date": "2024-01-01"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 422)

    def test_exchange_rates_are_recorded_and_used(self) -> None:
        with mock.patch.object(config, "RATES_SECRET", "s3cret"):
            denied = self.client.post(
                "/exchange-rates",
                json={"base_currency": "USD", "rates": {"IDR": "15000"}, "effective_date": "2024-01-01"},
            )
            accepted = self.client.post(
                "/exchange-rates",
                json={"base_currency": "USD", "rates": {"IDR": "15000"}, "effective_date": "2024-01-01"},
                headers={"x-rates-secret": "s3cret"},
            )

        self.assertEqual(denied.status_code, 401)
        self.assertEqual(accepted.json(), {"status": "ok", "stored": 1})
        stored_rate = StoreRateTable(self.store.engine).get_rate("USD", "IDR", date(2024, 2, 1))
        self.assertEqual(stored_rate, Decimal("15000"))

    def test_malformed_ledger_surfaces_as_server_error(self) -> None:
        account = self._create_account()
        with self.store.engine.begin() as conn:
            conn.execute(
                insert(transactions).values(
                    user_id=self.owner_id,
                    amount=-5,
                    currency="IDR",
                    type="income",
                    to_account_id=account["id"],
                    date=datetime(2024, 1, 1),
                )
            )

        response = self.client.get("/accounts/balances", headers=self.headers)

        self.assertEqual(response.status_code, 500)

    def test_dashboard(self) -> None:
        account = self._create_account()
        self.client.post(
            "/transactions",
            json={
                "amount": 5_000,
                "type": "income",
                "date": "2024-03-02T00:00:00",
                "to_account_id": account["id"],
            },
            headers=self.headers,
        )

        response = self.client.get(
            "/dashboard", params={"now": "2024-03-20T00:00:00", "months": 2}, headers=self.headers
        )

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["total_balance"], 5_000)
        self.assertEqual(len(body["monthly_trends"]), 2)
        self.assertEqual(body["errors"], {})


if __name__ == "__main__":
    unittest.main()
