import hmac
from datetime import date, datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from moneymate import config
from moneymate.analytics import (
    category_breakdown,
    current_month_stats,
    monthly_trends,
    net_worth_progression,
)
from moneymate.balance_engine import balances_for_owner, current_balance, total_balance
from moneymate.budget_engine import budget_statuses
from moneymate.currency_conversion import (
    RateTable,
    StoreRateTable,
    convert_amount,
    normalize_currency,
)
from moneymate.dashboard import build_dashboard
from moneymate.errors import LedgerIntegrityError, NotFoundError, RateUnavailable
from moneymate.ledger_store import LedgerStore
from moneymate.logger import get_logger
from moneymate.models import (
    Account,
    AccountType,
    CategoryType,
    Goal,
    RecordState,
    TransactionFilter,
    TransactionType,
)
from moneymate.schema import create_ledger_engine, init_db
from moneymate.time_windows import end_of_day, start_of_day
from moneymate.watchlist import watchlist

logger = get_logger(__name__)

app = FastAPI(title="MoneyMate")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_ledger_engine(config.DATABASE_URL)


@app.on_event("startup")
def on_startup() -> None:
    init_db(engine)
    logger.info("Database tables ready")


def get_rate_table() -> RateTable:
    return StoreRateTable(engine)


def get_store(rate_table: RateTable = Depends(get_rate_table)) -> LedgerStore:
    return LedgerStore(engine, rate_table=rate_table)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RateUnavailable)
async def rate_unavailable_handler(request: Request, exc: RateUnavailable) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(LedgerIntegrityError)
async def integrity_handler(request: Request, exc: LedgerIntegrityError) -> JSONResponse:
    if request.method == "GET":
        logger.error(f"Ledger integrity fault on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Ledger integrity fault."})
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ── PAYLOADS & RESPONSES ──────────────────────────────────


class UserPayload(BaseModel):
    name: str | None = None
    base_currency: str | None = None
    seed_categories: bool = True


class UserResponse(BaseModel):
    id: int
    name: str | None = None
    base_currency: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    base_currency: str | None = None


class AccountPayload(BaseModel):
    name: str
    type: str
    initial_balance: int = 0
    currency: str | None = None
    icon: str | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.type = AccountType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        if payload.currency:
            payload.currency = normalize_currency(payload.currency)
        return payload


class AccountUpdatePayload(BaseModel):
    name: str | None = None
    type: str | None = None
    icon: str | None = None
    currency: str | None = None
    initial_balance: int | None = None


class AccountResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    type: str
    initial_balance: int
    currency: str
    icon: str | None = None
    state: RecordState
    balance: int | None = None
    created_at: datetime | None = None


class AccountBalanceResponse(BaseModel):
    account_id: int
    currency: str
    balance: int


class CategoryPayload(BaseModel):
    name: str
    type: str
    color: str | None = None
    icon: str | None = None
    monthly_budget: int | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.type = CategoryType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name required.")
        return payload


class CategoryUpdatePayload(BaseModel):
    name: str | None = None
    type: str | None = None
    color: str | None = None
    icon: str | None = None
    monthly_budget: int | None = None
    is_active: bool | None = None


class CategoryResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    type: str
    color: str
    icon: str | None = None
    monthly_budget: int | None = None
    state: RecordState


class TransactionPayload(BaseModel):
    amount: int
    type: str
    date: datetime | None = None
    currency: str | None = None
    category_id: int | None = None
    from_account_id: int | None = None
    to_account_id: int | None = None
    description: str | None = None
    exchange_rate: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if payload.currency:
            payload.currency = normalize_currency(payload.currency)
        payload.description = payload.description.strip() if payload.description else None
        return payload


class TransactionResponse(BaseModel):
    id: int
    owner_id: int
    amount: int
    currency: str
    type: str
    date: datetime
    category_id: int | None = None
    from_account_id: int | None = None
    to_account_id: int | None = None
    exchange_rate: Decimal | None = None
    exchange_rate_currency: str | None = None
    description: str | None = None


class GoalPayload(BaseModel):
    name: str
    target_amount: int
    target_date: date
    currency: str | None = None
    icon: str | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalPayload") -> "GoalPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Goal name required.")
        if payload.target_amount <= 0:
            raise ValueError("Target amount must be greater than zero.")
        if payload.currency:
            payload.currency = normalize_currency(payload.currency)
        return payload


class GoalDepositPayload(BaseModel):
    amount: int


class GoalResponse(BaseModel):
    id: int
    name: str
    currency: str
    target_amount: int
    current_amount: int
    remaining: int
    progress_percent: float
    target_date: date
    icon: str | None = None


class ExchangeRatesPayload(BaseModel):
    base_currency: str
    rates: dict[str, Decimal]
    effective_date: date


class ConversionResponse(BaseModel):
    amount: int
    from_currency: str
    to_currency: str
    converted: int
    on_date: date


class MonthStatsResponse(BaseModel):
    month: str
    currency: str
    income: int
    expenses: int
    net: int
    savings_rate: float
    transaction_count: int
    income_trend: float
    expense_trend: float
    savings_rate_trend: float


class MonthlyTrendResponse(BaseModel):
    month: str
    income: int
    expense: int
    net: int


class NetWorthPointResponse(BaseModel):
    month: str
    date: date
    net_worth: int
    change: int
    change_percent: float


class CategorySpendResponse(BaseModel):
    category_id: int | None = None
    name: str
    color: str
    icon: str | None = None
    total: int
    count: int
    percentage: float


class TotalBalanceResponse(BaseModel):
    currency: str
    total_balance: int


class BudgetStatusResponse(BaseModel):
    category_id: int
    category_name: str
    color: str
    icon: str | None = None
    budget: int
    spent: int
    remaining: int
    percentage: float
    status: str


class DashboardResponse(BaseModel):
    owner_id: int
    currency: str
    generated_at: datetime
    total_balance: int | None = None
    month_stats: MonthStatsResponse | None = None
    monthly_trends: list[MonthlyTrendResponse] | None = None
    net_worth: list[NetWorthPointResponse] | None = None
    category_breakdown: list[CategorySpendResponse] | None = None
    recent_transactions: list[TransactionResponse] | None = None
    budget_statuses: list[BudgetStatusResponse] | None = None
    watchlist: list[BudgetStatusResponse] | None = None
    errors: dict[str, str]


# ── HELPERS ───────────────────────────────────────────────


def get_user_id(x_user_id: str | None, store: LedgerStore) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    store.get_user(user_id)
    return user_id


def account_response(account: Account, balance: int | None = None) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        owner_id=account.owner_id,
        name=account.name,
        type=account.type,
        initial_balance=account.initial_balance,
        currency=account.currency,
        icon=account.icon,
        state=account.state,
        balance=balance,
        created_at=account.created_at,
    )


def goal_response(goal: Goal) -> GoalResponse:
    return GoalResponse(
        id=goal.id,
        name=goal.name,
        currency=goal.currency,
        target_amount=goal.target_amount,
        current_amount=goal.current_amount,
        remaining=goal.remaining,
        progress_percent=goal.progress_percent,
        target_date=goal.target_date,
        icon=goal.icon,
    )


def resolve_now(now: datetime | None) -> datetime:
    return now or datetime.now()


# ── USERS ─────────────────────────────────────────────────


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/users", response_model=UserResponse)
def create_user(payload: UserPayload, store: LedgerStore = Depends(get_store)):
    user = store.create_user(name=payload.name, base_currency=payload.base_currency)
    if payload.seed_categories:
        store.seed_default_categories(user.id)
    return user


@app.get("/users/me/settings", response_model=UserResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    return store.get_user(user_id)


@app.put("/users/me/settings", response_model=UserResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    if payload.base_currency is None:
        raise HTTPException(status_code=400, detail="Base currency required.")
    return store.update_base_currency(user_id, payload.base_currency)


# ── ACCOUNTS ──────────────────────────────────────────────


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    include_inactive: bool = Query(True),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> list[AccountResponse]:
    user_id = get_user_id(x_user_id, store)
    balances = balances_for_owner(store, user_id)
    return [
        account_response(account, balances.get(account.id))
        for account in store.list_accounts(user_id, include_inactive=include_inactive)
    ]


@app.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> AccountResponse:
    user_id = get_user_id(x_user_id, store)
    try:
        payload = AccountPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    account = store.create_account(
        user_id,
        payload.name,
        payload.type,
        initial_balance=payload.initial_balance,
        currency=payload.currency,
        icon=payload.icon,
    )
    return account_response(account, account.initial_balance)


@app.get("/accounts/balances", response_model=list[AccountBalanceResponse])
def list_account_balances(
    as_of: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> list[AccountBalanceResponse]:
    user_id = get_user_id(x_user_id, store)
    balances = balances_for_owner(store, user_id, as_of=as_of)
    return [
        AccountBalanceResponse(
            account_id=account.id,
            currency=account.currency,
            balance=balances[account.id],
        )
        for account in store.list_accounts(user_id)
    ]


@app.get("/accounts/{account_id}/balance", response_model=AccountBalanceResponse)
def get_account_balance(
    account_id: int,
    as_of: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> AccountBalanceResponse:
    user_id = get_user_id(x_user_id, store)
    account = store.get_account(user_id, account_id)
    return AccountBalanceResponse(
        account_id=account.id,
        currency=account.currency,
        balance=current_balance(store, user_id, account_id, as_of=as_of),
    )


@app.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    payload: AccountUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> AccountResponse:
    user_id = get_user_id(x_user_id, store)
    changes = {}
    if "icon" in payload.model_fields_set:
        changes["icon"] = payload.icon
    account = store.update_account(
        user_id,
        account_id,
        name=payload.name,
        account_type=payload.type,
        currency=payload.currency,
        initial_balance=payload.initial_balance,
        **changes,
    )
    return account_response(account, current_balance(store, user_id, account_id))


@app.post("/accounts/{account_id}/deactivate", response_model=AccountResponse)
def deactivate_account(
    account_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> AccountResponse:
    user_id = get_user_id(x_user_id, store)
    account = store.set_account_state(user_id, account_id, RecordState.INACTIVE)
    return account_response(account, current_balance(store, user_id, account_id))


@app.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id, store)
    return {"status": store.delete_account(user_id, account_id)}


# ── CATEGORIES ────────────────────────────────────────────


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    type: str | None = Query(None),
    include_inactive: bool = Query(True),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    return store.list_categories(user_id, include_inactive=include_inactive, category_type=type)


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.create_category(
        user_id,
        payload.name,
        payload.type,
        color=payload.color,
        icon=payload.icon,
        monthly_budget=payload.monthly_budget,
    )


@app.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    changes = {}
    if "icon" in payload.model_fields_set:
        changes["icon"] = payload.icon
    if "monthly_budget" in payload.model_fields_set:
        changes["monthly_budget"] = payload.monthly_budget
    category = store.update_category(
        user_id,
        category_id,
        name=payload.name,
        category_type=payload.type,
        color=payload.color,
        **changes,
    )
    if payload.is_active is not None and payload.is_active != category.state.is_active:
        category = store.set_category_state(
            user_id, category_id, RecordState.from_flag(payload.is_active)
        )
    return category


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id, store)
    cleared = store.delete_category(user_id, category_id)
    return {"status": "deleted", "uncategorized_transactions": cleared}


# ── TRANSACTIONS ──────────────────────────────────────────


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    type: str | None = Query(None),
    category_id: int | None = Query(None),
    account_id: int | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    search: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    txn_filter = TransactionFilter(
        types=frozenset({TransactionType.validate(type)}) if type else None,
        category_id=category_id,
        account_id=account_id,
        start=start_of_day(start_date) if start_date else None,
        end=end_of_day(end_date) if end_date else None,
        search=search or None,
        limit=limit,
        newest_first=True,
    )
    return store.list_transactions(user_id, txn_filter)


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.record_transaction(
        user_id,
        amount=payload.amount,
        txn_type=payload.type,
        date=payload.date or datetime.now(),
        currency=payload.currency,
        category_id=payload.category_id,
        from_account_id=payload.from_account_id,
        to_account_id=payload.to_account_id,
        description=payload.description,
        exchange_rate=payload.exchange_rate,
    )


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    occurred_at = payload.date or store.get_transaction(user_id, transaction_id).date
    return store.update_transaction(
        user_id,
        transaction_id,
        amount=payload.amount,
        txn_type=payload.type,
        date=occurred_at,
        currency=payload.currency,
        category_id=payload.category_id,
        from_account_id=payload.from_account_id,
        to_account_id=payload.to_account_id,
        description=payload.description,
        exchange_rate=payload.exchange_rate,
    )


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id, store)
    store.delete_transaction(user_id, transaction_id)
    return {"status": "deleted"}


# ── GOALS ─────────────────────────────────────────────────


@app.get("/goals", response_model=list[GoalResponse])
def list_goals(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    return [goal_response(goal) for goal in store.list_goals(user_id)]


@app.post("/goals", response_model=GoalResponse)
def create_goal(
    payload: GoalPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    try:
        payload = GoalPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    goal = store.create_goal(
        user_id,
        payload.name,
        payload.target_amount,
        payload.target_date,
        currency=payload.currency,
        icon=payload.icon,
    )
    return goal_response(goal)


@app.post("/goals/{goal_id}/add-money", response_model=GoalResponse)
def add_money_to_goal(
    goal_id: int,
    payload: GoalDepositPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
):
    user_id = get_user_id(x_user_id, store)
    if payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    return goal_response(store.add_money_to_goal(user_id, goal_id, payload.amount))


@app.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id, store)
    store.delete_goal(user_id, goal_id)
    return {"status": "deleted"}


# ── EXCHANGE RATES ────────────────────────────────────────


@app.post("/exchange-rates")
def record_exchange_rates(
    payload: ExchangeRatesPayload,
    x_rates_secret: str | None = Header(None, alias="x-rates-secret"),
    store: LedgerStore = Depends(get_store),
) -> dict:
    if config.RATES_SECRET and not hmac.compare_digest(
        x_rates_secret or "", config.RATES_SECRET
    ):
        raise HTTPException(status_code=401, detail="Invalid rates secret.")
    stored = store.record_exchange_rates(
        payload.base_currency, payload.rates, payload.effective_date
    )
    return {"status": "ok", "stored": stored}


@app.get("/currency/convert", response_model=ConversionResponse)
def convert_currency(
    amount: int = Query(...),
    from_currency: str = Query(...),
    to_currency: str | None = Query(None),
    on_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
) -> ConversionResponse:
    user_id = get_user_id(x_user_id, store)
    source = normalize_currency(from_currency)
    target = normalize_currency(to_currency) if to_currency else store.get_base_currency(user_id)
    lookup_date = on_date or date.today()
    return ConversionResponse(
        amount=amount,
        from_currency=source,
        to_currency=target,
        converted=convert_amount(amount, source, target, rate_table, lookup_date),
        on_date=lookup_date,
    )


# ── REPORTS ───────────────────────────────────────────────


@app.get("/reports/month-stats", response_model=MonthStatsResponse)
def get_month_stats(
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return current_month_stats(store, rate_table, user_id, resolve_now(now))


@app.get("/reports/monthly-trends", response_model=list[MonthlyTrendResponse])
def get_monthly_trends(
    months: int = Query(config.DEFAULT_TREND_MONTHS, ge=1, le=36),
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return monthly_trends(store, rate_table, user_id, resolve_now(now), months)


@app.get("/reports/net-worth", response_model=list[NetWorthPointResponse])
def get_net_worth(
    months: int = Query(config.DEFAULT_TREND_MONTHS, ge=1, le=36),
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return net_worth_progression(store, rate_table, user_id, resolve_now(now), months)


@app.get("/reports/category-breakdown", response_model=list[CategorySpendResponse])
def get_category_breakdown(
    type: str = Query(TransactionType.EXPENSE),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be on or before end_date.")
    return category_breakdown(
        store,
        rate_table,
        user_id,
        txn_type=type,
        start=start_of_day(start_date) if start_date else None,
        end=end_of_day(end_date) if end_date else None,
    )


@app.get("/reports/total-balance", response_model=TotalBalanceResponse)
def get_total_balance(
    on_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
) -> TotalBalanceResponse:
    user_id = get_user_id(x_user_id, store)
    return TotalBalanceResponse(
        currency=store.get_base_currency(user_id),
        total_balance=total_balance(store, rate_table, user_id, on_date or date.today()),
    )


# ── BUDGET ────────────────────────────────────────────────


@app.get("/budget/status", response_model=list[BudgetStatusResponse])
def get_budget_status(
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return budget_statuses(store, rate_table, user_id, resolve_now(now))


@app.get("/budget/watchlist", response_model=list[BudgetStatusResponse])
def get_budget_watchlist(
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return watchlist(store, rate_table, user_id, resolve_now(now))


# ── DASHBOARD ─────────────────────────────────────────────


@app.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    months: int = Query(config.DEFAULT_TREND_MONTHS, ge=1, le=36),
    now: datetime | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: LedgerStore = Depends(get_store),
    rate_table: RateTable = Depends(get_rate_table),
):
    user_id = get_user_id(x_user_id, store)
    return await build_dashboard(store, rate_table, user_id, resolve_now(now), months)
