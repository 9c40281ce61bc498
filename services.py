from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, load_only, sessionmaker

from config import Settings
from database import session_scope
from errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ValidationError,
)
from models import Transaction, TransactionType, User, utcnow
from passwords import hash_password, verify_password
from periods import Period, resolve_lookback, resolve_report_range
from schemas import (
    ChangePasswordIn,
    LoginIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdateIn,
    UpdateAccountIn,
    amount_to_cents,
    cents_to_amount,
)
from tokens import TokenService

logger = logging.getLogger(__name__)

PUBLIC_USER_COLUMNS = (
    User.id,
    User.full_name,
    User.email,
    User.created_at,
    User.updated_at,
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def load_public_user(session: Session, user_id: int) -> Optional[User]:
    stmt = select(User).options(load_only(*PUBLIC_USER_COLUMNS)).where(
        User.id == user_id
    )
    return session.scalar(stmt)


class UserService:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        tokens: Optional[TokenService] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.tokens = tokens or TokenService(settings)

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def _require(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def _issue_tokens(self, user: User) -> tuple[str, str]:
        access_token = self.tokens.issue_access_token(user)
        refresh_token = self.tokens.issue_refresh_token(user)
        user.refresh_token = refresh_token
        self.session.commit()
        return access_token, refresh_token

    def get(self, user_id: int) -> User:
        user = load_public_user(self.session, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def register(self, data: RegisterIn) -> User:
        full_name = data.full_name.strip()
        email = normalize_email(data.email)
        if not full_name or not email or not data.password.strip():
            raise ValidationError("All fields are required")
        if self._by_email(email):
            raise DuplicateEmail("User with this email already exists")

        user = User(
            full_name=full_name,
            email=email,
            password_hash=hash_password(data.password, self.settings.bcrypt_rounds),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateEmail("User with this email already exists") from exc
        logger.info(f"user_registered: user_id={user.id}")
        return self.get(user.id)

    def login(self, data: LoginIn) -> tuple[User, str, str]:
        email = normalize_email(data.email)
        if not email or not data.password:
            raise ValidationError("Email and password are required")
        user = self._by_email(email)
        if not user:
            logger.info(f"login_failed: email={email} reason=unknown_email")
            raise NotFound("User does not exist")
        if not verify_password(data.password, user.password_hash):
            logger.info(f"login_failed: email={email} reason=bad_password")
            raise InvalidCredentials("Invalid user credentials")

        access_token, refresh_token = self._issue_tokens(user)
        logger.info(f"login_succeeded: user_id={user.id}")
        return self.get(user.id), access_token, refresh_token

    def refresh_session(self, token: Optional[str]) -> tuple[User, str, str]:
        if not token:
            raise InvalidToken("Refresh token is required")
        claims = self.tokens.verify_refresh_token(token)
        user = self.session.get(User, claims["id"])
        if not user or user.refresh_token != token:
            raise InvalidToken("Refresh token is expired or used")

        access_token, refresh_token = self._issue_tokens(user)
        logger.info(f"session_refreshed: user_id={user.id}")
        return self.get(user.id), access_token, refresh_token

    def logout(self, user_id: int) -> None:
        self.session.execute(
            update(User).where(User.id == user_id).values(refresh_token=None)
        )
        self.session.commit()
        logger.info(f"user_logged_out: user_id={user_id}")

    def update_profile(self, user_id: int, data: UpdateAccountIn) -> User:
        full_name = data.full_name.strip()
        email = normalize_email(data.email)
        if not full_name or not email:
            raise ValidationError("Full name and email are required")
        taken = self.session.scalar(
            select(User.id).where(User.email == email, User.id != user_id)
        )
        if taken:
            raise DuplicateEmail("User with this email already exists")

        user = self._require(user_id)
        user.full_name = full_name
        user.email = email
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateEmail("User with this email already exists") from exc
        logger.info(f"user_updated: user_id={user_id}")
        return self.get(user_id)

    def change_password(self, user_id: int, data: ChangePasswordIn) -> None:
        if not data.old_password or not data.new_password.strip():
            raise ValidationError("Old and new password are required")
        user = self._require(user_id)
        if not verify_password(data.old_password, user.password_hash):
            raise InvalidCredentials("Invalid old password")
        user.password_hash = hash_password(
            data.new_password, self.settings.bcrypt_rounds
        )
        self.session.commit()
        logger.info(f"password_changed: user_id={user_id}")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    period: Optional[str] = None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        amount_cents = amount_to_cents(data.amount)
        if not data.description or not data.category or amount_cents <= 0:
            raise ValidationError(
                "Description, amount, type, and category are required"
            )
        txn = Transaction(
            user_id=self.user_id,
            description=data.description,
            amount_cents=amount_cents,
            type=data.type,
            category=data.category,
            date=data.date or utcnow(),
            receipt_url=data.receipt_url or "",
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: user_id={self.user_id} id={txn.id}")
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        now = utcnow()
        try:
            since = resolve_lookback(filters.period, now)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if since is not None:
            stmt = stmt.where(Transaction.date >= since)
        return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        fields = data.model_dump(exclude_unset=True, exclude_none=True)
        values: dict[str, object] = {}
        for key in ("description", "type", "category", "date", "receipt_url"):
            if key in fields:
                values[key] = fields[key]
        if "amount" in fields:
            values["amount_cents"] = amount_to_cents(fields["amount"])
        if not values:
            return self.get(transaction_id)

        # Owner check and write are a single statement.
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFound("Transaction not found")
        self.session.commit()
        logger.info(f"transaction_updated: user_id={self.user_id} id={transaction_id}")
        return self.session.get(Transaction, transaction_id, populate_existing=True)

    def delete(self, transaction_id: int) -> int:
        result = self.session.execute(
            delete(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFound("Transaction not found")
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")
        return transaction_id


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def totals(self) -> dict[str, float]:
        stmt = (
            select(Transaction.type, func.sum(Transaction.amount_cents).label("total"))
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.type)
        )
        sums = {row.type: int(row.total or 0) for row in self.session.execute(stmt)}
        income = sums.get(TransactionType.income, 0)
        expense = sums.get(TransactionType.expense, 0)
        return {
            "totalIncome": cents_to_amount(income),
            "totalExpense": cents_to_amount(expense),
            "balance": cents_to_amount(income - expense),
        }

    def category_breakdown(self) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Transaction.category, total)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category)
            .order_by(total.desc())
        )
        return [
            {"category": row.category, "totalAmount": cents_to_amount(int(row.total))}
            for row in self.session.execute(stmt)
        ]


def _in_period(user_id: int, period: Period):
    return (
        Transaction.user_id == user_id,
        Transaction.date >= period.start,
        Transaction.date < period.end,
    )


def _sum_of(kind: TransactionType):
    return func.coalesce(
        func.sum(
            case((Transaction.type == kind, Transaction.amount_cents), else_=0)
        ),
        0,
    )


def _day_key(value: object) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


def report_trend(session: Session, user_id: int, period: Period) -> list[dict]:
    day = func.date(Transaction.date).label("day")
    stmt = (
        select(
            day,
            _sum_of(TransactionType.income).label("income"),
            _sum_of(TransactionType.expense).label("expense"),
        )
        .where(*_in_period(user_id, period))
        .group_by(day)
        .order_by(day)
    )
    return [
        {
            "date": _day_key(row.day),
            "income": cents_to_amount(int(row.income)),
            "expense": cents_to_amount(int(row.expense)),
        }
        for row in session.execute(stmt)
    ]


def report_by_category(session: Session, user_id: int, period: Period) -> list[dict]:
    total = func.sum(Transaction.amount_cents).label("total")
    stmt = (
        select(
            Transaction.category,
            total,
            func.count(Transaction.id).label("count"),
        )
        .where(
            *_in_period(user_id, period),
            Transaction.type == TransactionType.expense,
        )
        .group_by(Transaction.category)
        .order_by(total.desc())
    )
    return [
        {
            "category": row.category,
            "amount": cents_to_amount(int(row.total)),
            "count": int(row.count),
        }
        for row in session.execute(stmt)
    ]


def report_summary(session: Session, user_id: int, period: Period) -> dict:
    stmt = select(
        _sum_of(TransactionType.income).label("income"),
        _sum_of(TransactionType.expense).label("expense"),
        func.count(Transaction.id).label("count"),
    ).where(*_in_period(user_id, period))
    row = session.execute(stmt).one()
    income = int(row.income or 0)
    expense = int(row.expense or 0)
    return {
        "totalIncome": cents_to_amount(income),
        "totalExpense": cents_to_amount(expense),
        "balance": cents_to_amount(income - expense),
        "totalTransactions": int(row.count or 0),
    }


ReportPart = Callable[[Session, int, Period], object]

REPORT_PARTS: dict[str, ReportPart] = {
    "trend": report_trend,
    "byCategory": report_by_category,
    "summary": report_summary,
}


class ReportService:
    """Date-range reports: daily trend, expense categories and a summary.

    With a ``session_factory`` the three parts run on a small thread pool,
    each on its own session; without one they run in order on ``session``.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.session_factory = session_factory

    def _run_isolated(self, part: ReportPart, period: Period) -> object:
        with session_scope(self.session_factory) as session:
            return part(session, self.user_id, period)

    def report(self, start: Optional[str], end: Optional[str]) -> dict[str, object]:
        try:
            period = resolve_report_range(start, end)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if self.session_factory is None:
            return {
                name: part(self.session, self.user_id, period)
                for name, part in REPORT_PARTS.items()
            }

        # Release the request connection before the parts borrow their own.
        self.session.commit()
        with ThreadPoolExecutor(max_workers=len(REPORT_PARTS)) as pool:
            futures = {
                name: pool.submit(self._run_isolated, part, period)
                for name, part in REPORT_PARTS.items()
            }
            return {name: future.result() for name, future in futures.items()}
