import logging
import os
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from recr_monkey.aggregation import (
    PaymentGroup,
    category_highlights,
    expense_trend,
    grid_total,
    group_by_category,
    group_by_payment_source,
    summarize,
    year_grid_total,
)
from recr_monkey.calendar_grid import CalendarDay, build_month_grid, build_year_grid
from recr_monkey.currency_conversion import (
    BASE_CURRENCY,
    CurrencyNormalizer,
    FrankfurterRateFetcher,
    RateCache,
    StaticRateFetcher,
    normalize_currency,
)
from recr_monkey.formatting import format_frequency
from recr_monkey.payments import (
    PaymentSource,
    RecurringPayment,
    is_used_by_payments,
    validate_frequency,
    validate_identifier,
    validate_source_type,
)
from recr_monkey.recurrence import DEFAULT_HORIZON_DAYS
from recr_monkey.upcoming import upcoming_payments

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Recr-Monkey")

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./recr_monkey.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", BASE_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return BASE_CURRENCY


def build_rate_fetcher():
    provider = os.getenv("FX_PROVIDER", "frankfurter").strip().lower()
    if provider == "static":
        return StaticRateFetcher()
    return FrankfurterRateFetcher()


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
RATE_CACHE = RateCache(fetcher=build_rate_fetcher())
NORMALIZER = CurrencyNormalizer(RATE_CACHE)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("display_currency", String(3)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

payment_sources = Table(
    "payment_sources",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("identifier", String(4), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

recurring_payments = Table(
    "recurring_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default=SYSTEM_DEFAULT_CURRENCY),
    Column("frequency", String(20), nullable=False),
    Column("payment_source_id", Integer, ForeignKey("payment_sources.id"), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("category", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    display_currency: str | None = None


class UserSettingsResponse(BaseModel):
    id: int
    email: str
    display_currency: str


class PaymentSourcePayload(BaseModel):
    name: str
    type: str
    identifier: str

    @classmethod
    def validate_payload(cls, payload: "PaymentSourcePayload") -> "PaymentSourcePayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Payment source name required.")
        payload.type = validate_source_type(payload.type)
        payload.identifier = validate_identifier(payload.identifier)
        return payload


class PaymentSourceResponse(BaseModel):
    id: int
    user_id: int | None = None
    name: str
    type: str
    identifier: str
    created_at: datetime | None = None


class RecurringPaymentPayload(BaseModel):
    name: str
    amount: Decimal
    currency: str | None = None
    frequency: str
    payment_source_id: int
    start_date: date
    category: str | None = None

    @classmethod
    def validate_payload(
        cls, payload: "RecurringPaymentPayload"
    ) -> "RecurringPaymentPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Payment name required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.currency = payload.currency.strip() if payload.currency else None
        payload.frequency = validate_frequency(payload.frequency)
        payload.category = payload.category.strip() if payload.category else None
        return payload


class RecurringPaymentResponse(BaseModel):
    id: int
    user_id: int | None = None
    name: str
    amount: Decimal
    currency: str
    frequency: str
    frequency_label: str
    payment_source_id: int
    start_date: date
    category: str | None = None
    created_at: datetime | None = None


class OccurrenceResponse(BaseModel):
    date: date
    payment: RecurringPaymentResponse
    payment_source: PaymentSourceResponse | None = None


class CalendarDayResponse(BaseModel):
    day: date | None
    occurrences: list[OccurrenceResponse]


class MonthCalendarResponse(BaseModel):
    year: int
    month: int
    days: list[CalendarDayResponse]
    total: Decimal
    currency: str


class YearCalendarResponse(BaseModel):
    year: int
    months: list[list[CalendarDayResponse]]
    total: Decimal
    currency: str


class SummaryResponse(BaseModel):
    count: int
    monthly_total: Decimal
    yearly_total: Decimal
    monthly_total_usd: Decimal
    yearly_total_usd: Decimal
    currency: str


class PaymentGroupResponse(BaseModel):
    key: str
    count: int
    monthly_total: Decimal
    yearly_total: Decimal
    currency: str
    payments: list[RecurringPaymentResponse]
    source: PaymentSourceResponse | None = None


class CategoryHighlightsResponse(BaseModel):
    highest_spend_category: str
    highest_spend_yearly_total: Decimal
    most_frequent_category: str
    most_frequent_yearly_occurrences: int
    currency: str


class UpcomingPaymentResponse(BaseModel):
    payment: RecurringPaymentResponse
    payment_source: PaymentSourceResponse | None = None
    due_date: date
    days_until_due: int
    urgency: str
    label: str
    display_amount: Decimal
    currency: str


class MonthTotalResponse(BaseModel):
    month_start: date
    total: Decimal


class ExpenseTrendResponse(BaseModel):
    months: list[MonthTotalResponse]
    total: Decimal
    average_monthly: Decimal
    currency: str


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_display_currency(conn, user_id: int, override: str | None = None) -> str:
    if override:
        try:
            return normalize_currency(override)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    stored = conn.execute(
        select(users.c.display_currency).where(users.c.id == user_id)
    ).scalar_one_or_none()
    if stored:
        try:
            return normalize_currency(stored)
        except ValueError:
            pass
    return SYSTEM_DEFAULT_CURRENCY


def load_payment_sources(conn, user_id: int) -> list[PaymentSource]:
    rows = conn.execute(
        select(payment_sources)
        .where(payment_sources.c.user_id == user_id)
        .order_by(payment_sources.c.id.asc())
    ).mappings().all()
    return [source_from_row(row) for row in rows]


def load_recurring_payments(conn, user_id: int) -> list[RecurringPayment]:
    rows = conn.execute(
        select(recurring_payments)
        .where(recurring_payments.c.user_id == user_id)
        .order_by(recurring_payments.c.id.asc())
    ).mappings().all()
    return [payment_from_row(row) for row in rows]


def source_from_row(row) -> PaymentSource:
    return PaymentSource(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        identifier=row["identifier"],
    )


def payment_from_row(row) -> RecurringPayment:
    return RecurringPayment(
        id=row["id"],
        name=row["name"],
        amount=Decimal(str(row["amount"])),
        currency=row["currency"],
        frequency=row["frequency"],
        payment_source_id=row["payment_source_id"],
        start_date=row["start_date"],
        category=row["category"],
    )


def source_row_response(row) -> PaymentSourceResponse:
    return PaymentSourceResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        identifier=row["identifier"],
        created_at=row["created_at"],
    )


def payment_row_response(row) -> RecurringPaymentResponse:
    return RecurringPaymentResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        currency=row["currency"],
        frequency=row["frequency"],
        frequency_label=format_frequency(row["frequency"]),
        payment_source_id=row["payment_source_id"],
        start_date=row["start_date"],
        category=row["category"],
        created_at=row["created_at"],
    )


def source_response(source: PaymentSource | None) -> PaymentSourceResponse | None:
    if source is None:
        return None
    return PaymentSourceResponse(
        id=source.id,
        name=source.name,
        type=source.type,
        identifier=source.identifier,
    )


def payment_response(payment: RecurringPayment) -> RecurringPaymentResponse:
    return RecurringPaymentResponse(
        id=payment.id,
        name=payment.name,
        amount=payment.amount,
        currency=payment.currency,
        frequency=payment.frequency,
        frequency_label=format_frequency(payment.frequency),
        payment_source_id=payment.payment_source_id,
        start_date=payment.start_date,
        category=payment.category,
    )


def calendar_day_response(cell: CalendarDay) -> CalendarDayResponse:
    return CalendarDayResponse(
        day=cell.date,
        occurrences=[
            OccurrenceResponse(
                date=occurrence.date,
                payment=payment_response(occurrence.payment),
                payment_source=source_response(occurrence.payment_source),
            )
            for occurrence in cell.occurrences
        ],
    )


def group_response(group: PaymentGroup) -> PaymentGroupResponse:
    return PaymentGroupResponse(
        key=str(group.key),
        count=group.count,
        monthly_total=group.monthly_total,
        yearly_total=group.yearly_total,
        currency=group.currency,
        payments=[payment_response(payment) for payment in group.payments],
        source=source_response(group.source),
    )


def ensure_source_owned(conn, user_id: int, source_id: int) -> None:
    source_exists = conn.execute(
        select(payment_sources.c.id).where(
            payment_sources.c.id == source_id,
            payment_sources.c.user_id == user_id,
        )
    ).first()
    if not source_exists:
        raise HTTPException(status_code=404, detail="Payment source not found.")


def payment_source_in_use(conn, user_id: int, source_id: int) -> bool:
    return is_used_by_payments(source_id, load_recurring_payments(conn, user_id))


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
        display_currency = resolve_display_currency(conn, user_id)
    return UserSettingsResponse(
        id=row["id"],
        email=row["email"],
        display_currency=display_currency,
    )


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    if payload.display_currency is None:
        raise HTTPException(status_code=400, detail="Display currency required.")
    try:
        normalized_currency = normalize_currency(payload.display_currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(display_currency=normalized_currency)
            .returning(users.c.id, users.c.email, users.c.display_currency)
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
    return UserSettingsResponse(
        id=row["id"],
        email=row["email"],
        display_currency=row["display_currency"],
    )


@app.get("/payment-sources", response_model=list[PaymentSourceResponse])
def list_payment_sources(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[PaymentSourceResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(payment_sources)
            .where(payment_sources.c.user_id == user_id)
            .order_by(payment_sources.c.created_at.desc(), payment_sources.c.id.desc())
        ).mappings().all()
    return [source_row_response(row) for row in rows]


@app.post("/payment-sources", response_model=PaymentSourceResponse)
def create_payment_source(
    payload: PaymentSourcePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> PaymentSourceResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = PaymentSourcePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(payment_sources)
        .values(
            user_id=user_id,
            name=payload.name,
            type=payload.type,
            identifier=payload.identifier,
        )
        .returning(*payment_sources.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create payment source.")
    return source_row_response(row)


@app.put("/payment-sources/{source_id}", response_model=PaymentSourceResponse)
def update_payment_source(
    source_id: int,
    payload: PaymentSourcePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PaymentSourceResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = PaymentSourcePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(payment_sources)
        .where(payment_sources.c.id == source_id, payment_sources.c.user_id == user_id)
        .values(name=payload.name, type=payload.type, identifier=payload.identifier)
        .returning(*payment_sources.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Payment source not found.")
    return source_row_response(row)


@app.delete("/payment-sources/{source_id}")
def delete_payment_source(
    source_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        ensure_source_owned(conn, user_id, source_id)
        if payment_source_in_use(conn, user_id, source_id):
            logger.info("Refused to delete payment source %s: still referenced", source_id)
            raise HTTPException(
                status_code=409,
                detail="Payment source is in use by recurring payments.",
            )
        conn.execute(
            payment_sources.delete().where(
                payment_sources.c.id == source_id, payment_sources.c.user_id == user_id
            )
        )
    return {"status": "deleted"}


@app.get("/recurring-payments", response_model=list[RecurringPaymentResponse])
def list_recurring_payments(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[RecurringPaymentResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(recurring_payments)
            .where(recurring_payments.c.user_id == user_id)
            .order_by(recurring_payments.c.created_at.desc(), recurring_payments.c.id.desc())
        ).mappings().all()
    return [payment_row_response(row) for row in rows]


@app.get("/recurring-payments/check")
def check_recurring_payments(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        first = conn.execute(
            select(recurring_payments.c.id)
            .where(recurring_payments.c.user_id == user_id)
            .limit(1)
        ).first()
    return {"has_payments": first is not None}


@app.post("/recurring-payments", response_model=RecurringPaymentResponse)
def create_recurring_payment(
    payload: RecurringPaymentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringPaymentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = RecurringPaymentPayload.validate_payload(payload)
        currency = normalize_currency(payload.currency) if payload.currency else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_source_owned(conn, user_id, payload.payment_source_id)
        resolved_currency = currency or resolve_display_currency(conn, user_id)
        stmt = (
            insert(recurring_payments)
            .values(
                user_id=user_id,
                name=payload.name,
                amount=payload.amount,
                currency=resolved_currency,
                frequency=payload.frequency,
                payment_source_id=payload.payment_source_id,
                start_date=payload.start_date,
                category=payload.category,
            )
            .returning(*recurring_payments.c)
        )
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create recurring payment.")
    return payment_row_response(row)


@app.put("/recurring-payments/{payment_id}", response_model=RecurringPaymentResponse)
def update_recurring_payment(
    payment_id: int,
    payload: RecurringPaymentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringPaymentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = RecurringPaymentPayload.validate_payload(payload)
        currency = normalize_currency(payload.currency) if payload.currency else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_source_owned(conn, user_id, payload.payment_source_id)
        if currency is None:
            existing_currency = conn.execute(
                select(recurring_payments.c.currency).where(
                    recurring_payments.c.id == payment_id,
                    recurring_payments.c.user_id == user_id,
                )
            ).scalar_one_or_none()
            currency = existing_currency or resolve_display_currency(conn, user_id)
        stmt = (
            update(recurring_payments)
            .where(
                recurring_payments.c.id == payment_id,
                recurring_payments.c.user_id == user_id,
            )
            .values(
                name=payload.name,
                amount=payload.amount,
                currency=currency,
                frequency=payload.frequency,
                payment_source_id=payload.payment_source_id,
                start_date=payload.start_date,
                category=payload.category,
            )
            .returning(*recurring_payments.c)
        )
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Recurring payment not found.")
    return payment_row_response(row)


@app.delete("/recurring-payments/{payment_id}")
def delete_recurring_payment(
    payment_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = recurring_payments.delete().where(
        recurring_payments.c.id == payment_id, recurring_payments.c.user_id == user_id
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Recurring payment not found.")
    return {"status": "deleted"}


@app.get("/calendar/month", response_model=MonthCalendarResponse)
def get_month_calendar(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthCalendarResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)
        sources = load_payment_sources(conn, user_id)

    cells = build_month_grid(year, month, payments, sources)
    total = NORMALIZER.convert(grid_total(cells, NORMALIZER), BASE_CURRENCY, display_currency)
    return MonthCalendarResponse(
        year=year,
        month=month,
        days=[calendar_day_response(cell) for cell in cells],
        total=total,
        currency=display_currency,
    )


@app.get("/calendar/year", response_model=YearCalendarResponse)
def get_year_calendar(
    year: int = Query(..., ge=1, le=9999),
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> YearCalendarResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)
        sources = load_payment_sources(conn, user_id)

    months = build_year_grid(year, payments, sources)
    total = NORMALIZER.convert(year_grid_total(months, NORMALIZER), BASE_CURRENCY, display_currency)
    return YearCalendarResponse(
        year=year,
        months=[[calendar_day_response(cell) for cell in cells] for cells in months],
        total=total,
        currency=display_currency,
    )


@app.get("/summary", response_model=SummaryResponse)
def get_summary(
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SummaryResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)

    summary_usd = summarize(payments, NORMALIZER)
    summary = summary_usd.in_currency(NORMALIZER, display_currency)
    return SummaryResponse(
        count=summary.count,
        monthly_total=summary.monthly_total,
        yearly_total=summary.yearly_total,
        monthly_total_usd=summary_usd.monthly_total,
        yearly_total_usd=summary_usd.yearly_total,
        currency=display_currency,
    )


@app.get("/breakdown/categories", response_model=list[PaymentGroupResponse])
def get_category_breakdown(
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[PaymentGroupResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)

    groups = group_by_category(payments, NORMALIZER)
    return [group_response(group.in_currency(NORMALIZER, display_currency)) for group in groups]


@app.get("/breakdown/categories/highlights", response_model=CategoryHighlightsResponse | None)
def get_category_highlights(
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CategoryHighlightsResponse | None:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)

    highlights = category_highlights(group_by_category(payments, NORMALIZER))
    if highlights is None:
        return None
    highest = highlights.highest_spend.in_currency(NORMALIZER, display_currency)
    return CategoryHighlightsResponse(
        highest_spend_category=str(highest.key),
        highest_spend_yearly_total=highest.yearly_total,
        most_frequent_category=str(highlights.most_frequent.key),
        most_frequent_yearly_occurrences=highlights.yearly_occurrences,
        currency=display_currency,
    )


@app.get("/breakdown/sources", response_model=list[PaymentGroupResponse])
def get_source_breakdown(
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[PaymentGroupResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)
        sources = load_payment_sources(conn, user_id)

    groups = group_by_payment_source(payments, sources, NORMALIZER)
    return [group_response(group.in_currency(NORMALIZER, display_currency)) for group in groups]


@app.get("/upcoming", response_model=list[UpcomingPaymentResponse])
def get_upcoming_payments(
    days: int = Query(DEFAULT_HORIZON_DAYS, ge=0, le=366),
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UpcomingPaymentResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)
        sources = load_payment_sources(conn, user_id)

    items = upcoming_payments(payments, sources, date.today(), days)
    return [
        UpcomingPaymentResponse(
            payment=payment_response(item.payment),
            payment_source=source_response(item.source),
            due_date=item.due_date,
            days_until_due=item.days_until_due,
            urgency=item.urgency,
            label=item.label,
            display_amount=NORMALIZER.convert(
                item.payment.amount, item.payment.currency, display_currency
            ),
            currency=display_currency,
        )
        for item in items
    ]


@app.get("/expense-trend", response_model=ExpenseTrendResponse)
def get_expense_trend(
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseTrendResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        display_currency = resolve_display_currency(conn, user_id, currency)
        payments = load_recurring_payments(conn, user_id)

    trend = expense_trend(payments, NORMALIZER, date.today()).in_currency(
        NORMALIZER, display_currency
    )
    return ExpenseTrendResponse(
        months=[
            MonthTotalResponse(month_start=item.month_start, total=item.total)
            for item in trend.months
        ],
        total=trend.total,
        average_monthly=trend.average_monthly,
        currency=display_currency,
    )
