from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

import pydantic
from pydantic import TypeAdapter
from rapidfuzz import fuzz, process
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import (
    CommitmentPoint,
    HistoryPoint,
    MonthlyTotals,
    SpendingAlert,
    by_tag,
    commitments,
    history,
    monthly_totals,
    reportable,
    spending_alerts,
    spent_by_goal,
)
from config import get_settings
from csv_utils import export_occurrences, parse_amount
from dates import local_today, month_end, months_back, parse_month_key
from deletion import DeletionPolicy, DeletionResult, DeletionScope
from errors import ConstraintViolation, NotDeletable, NotFound, ValidationError
from goals import GoalProgress, allocate, validate_percentages
from models import (
    DEFAULT_GOALS,
    Account,
    Goal,
    GoalConfig,
    Tag,
    Transaction,
    TransactionType,
)
from occurrences import Occurrence, OccurrenceRef
from paid_status import PaidStatusTracker
from periods import Period, month_period
from recurrence import ListingFilters, SeriesExpander, TransactionInput
from repository import TransactionRepository
from schemas import (
    BankNotificationIn,
    GoalConfigIn,
    TransactionForm,
    TransactionIn,
    TransactionUpdate,
)


logger = logging.getLogger(__name__)

AMOUNT_PATTERN = re.compile(r"R\$\s?([0-9\.]+,\d{2})")
MERCHANT_CONNECTORS = {"em", "no", "na", "para"}
TAG_MATCH_CUTOFF = 80


def get_current_user_id() -> int:
    return 1


def _validation_message(exc: pydantic.ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name)
        )
        return self.session.scalars(stmt).all()

    def create(self, name: str) -> Account:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Account name cannot be empty")

        stmt = select(Account).where(
            Account.user_id == self.user_id,
            func.lower(Account.name) == clean_name.lower(),
        )
        if self.session.scalar(stmt):
            raise ValidationError("Account already exists")

        account = Account(user_id=self.user_id, name=clean_name)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: str) -> None:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")

        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
        )
        if in_use:
            raise ConstraintViolation("Account still has transactions")
        self.session.delete(account)
        self.session.commit()


class TagService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def names(self) -> dict[str, str]:
        return {tag.id: tag.name for tag in self.list_all()}

    def create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        if self.session.scalar(stmt):
            raise ValidationError("Tag already exists")

        tag = Tag(user_id=self.user_id, name=clean_name)
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def rename(self, tag_id: str, name: str) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.user_id != self.user_id:
            raise NotFound("Tag not found")

        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id,
            func.lower(Tag.name) == clean_name.lower(),
            Tag.id != tag_id,
        )
        if self.session.scalar(stmt):
            raise ValidationError("Tag with this name already exists")

        tag.name = clean_name
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def delete(self, tag_id: str) -> None:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.user_id != self.user_id:
            raise NotFound("Tag not found")

        # Transactions fall back to "Uncategorized".
        self.session.execute(
            update(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.tag_id == tag.id)
            .values(tag_id=None)
        )
        self.session.delete(tag)
        self.session.commit()


class GoalService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def seed_defaults(self) -> int:
        existing = set(self.session.scalars(select(Goal.id)).all())
        created = 0
        for order, (goal_id, name) in enumerate(DEFAULT_GOALS):
            if goal_id in existing:
                continue
            self.session.add(Goal(id=goal_id, name=name, display_order=order))
            created += 1
        if created:
            self.session.commit()
            logger.info(f"goals_seeded: count={created}")
        return created

    def list_all(self) -> list[Goal]:
        stmt = select(Goal).order_by(Goal.display_order, Goal.name)
        return self.session.scalars(stmt).all()

    def percentages(self) -> dict[str, Decimal]:
        stmt = select(GoalConfig).where(GoalConfig.user_id == self.user_id)
        return {cfg.goal_id: cfg.percentage for cfg in self.session.scalars(stmt)}

    def save_config(self, data: GoalConfigIn) -> dict[str, Decimal]:
        percentages: dict[str, Decimal] = {}
        for item in data.items:
            if item.goal_id in percentages:
                raise ValidationError(f"Goal {item.goal_id} listed twice")
            percentages[item.goal_id] = item.percentage
        validate_percentages(percentages)

        known = {goal.id for goal in self.list_all()}
        unknown = sorted(set(percentages) - known)
        if unknown:
            raise ValidationError(f"Unknown goals: {', '.join(unknown)}")

        current = {
            cfg.goal_id: cfg
            for cfg in self.session.scalars(
                select(GoalConfig).where(GoalConfig.user_id == self.user_id)
            )
        }
        for goal_id, percentage in percentages.items():
            cfg = current.get(goal_id)
            if cfg:
                cfg.percentage = percentage
            else:
                self.session.add(
                    GoalConfig(
                        user_id=self.user_id, goal_id=goal_id, percentage=percentage
                    )
                )
        for goal_id, cfg in current.items():
            if goal_id not in percentages:
                self.session.delete(cfg)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConstraintViolation("Goal configuration was rejected") from exc
        return percentages


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.repository = TransactionRepository(session)
        self.expander = SeriesExpander(self.repository, self.user_id)

    def _check_references(
        self,
        account_id: Optional[str],
        tag_id: Optional[str],
        goal_id: Optional[str],
    ) -> None:
        if account_id is not None:
            account = self.session.get(Account, account_id)
            if not account or account.user_id != self.user_id:
                raise ValidationError("Unknown account")
        if tag_id is not None:
            tag = self.session.get(Tag, tag_id)
            if not tag or tag.user_id != self.user_id:
                raise ValidationError("Unknown tag")
        if goal_id is not None and not self.session.get(Goal, goal_id):
            raise ValidationError("Unknown goal")

    def create(self, data: TransactionInput) -> list[Transaction]:
        """
        Persist a transaction and, for series, all of its rows. Returns the
        written rows; the first one is the seed or template.
        """
        self._check_references(data.account_id, data.tag_id, data.goal_id)
        return self.expander.expand(data)

    def create_from_form(self, form: TransactionForm) -> list[Transaction]:
        try:
            amount_cents = parse_amount(form.amount)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        payload = form.model_dump(exclude={"amount"})
        payload["amount_cents"] = amount_cents
        if form.recurrence_type != "single":
            payload.pop("hide_from_reports")
        if form.recurrence_type != "installment":
            payload.pop("installment_total")
        try:
            data = TypeAdapter(TransactionIn).validate_python(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        return self.create(data)

    def update(self, ref: OccurrenceRef, data: TransactionUpdate) -> Transaction:
        occurrence = self.expander.resolve(ref)
        if occurrence.is_virtual:
            raise NotDeletable(
                "Generated occurrences cannot be edited; mark them paid or edit "
                "the recurring transaction"
            )
        txn = occurrence.transaction
        fields = data.model_dump(exclude_unset=True)
        if "account_id" in fields and fields["account_id"] is None:
            raise ValidationError("Account is required")
        if "description" in fields and fields["description"] is not None:
            fields["description"] = fields["description"].strip()
            if not fields["description"]:
                raise ValidationError("Description cannot be empty")
        for required in (
            "description",
            "date",
            "amount_cents",
            "type",
            "hide_from_reports",
            "is_paid",
        ):
            if required in fields and fields[required] is None:
                raise ValidationError(f"{required} cannot be cleared")
        if txn.is_recurring_template:
            if "date" in fields and fields["date"] != txn.date:
                raise ValidationError(
                    "The start date of a recurring transaction cannot change"
                )
            if fields.get("is_paid"):
                raise ValidationError("Recurring templates are never paid")
            if fields.get("hide_from_reports") is False:
                raise ValidationError("Recurring templates are never reported on")
        self._check_references(
            fields.get("account_id"), fields.get("tag_id"), fields.get("goal_id")
        )
        return self.repository.update_by_id(txn.id, self.user_id, fields)

    def effective(
        self, period: Period, filters: Optional[ListingFilters] = None
    ) -> list[Occurrence]:
        return self.expander.effective_occurrences(period, filters)

    def delete(
        self, ref: OccurrenceRef, scope: Optional[DeletionScope] = None
    ) -> DeletionResult:
        return DeletionPolicy(self.expander).delete(ref, scope)

    def set_paid(self, ref: OccurrenceRef, is_paid: bool) -> Transaction:
        return PaidStatusTracker(self.expander).set_paid(ref, is_paid)

    def is_paid(self, ref: OccurrenceRef) -> bool:
        return PaidStatusTracker(self.expander).is_paid(ref)

    def due_on(self, day: Optional[date] = None) -> list[Occurrence]:
        day = day or local_today()
        return reportable(self.effective(Period("day", day, day)))

    def export_csv(
        self, period: Period, filters: Optional[ListingFilters] = None
    ) -> str:
        occurrences = self.effective(period, filters)
        accounts = AccountService(self.session, self.user_id).list_all()
        return export_occurrences(
            occurrences,
            tag_names=TagService(self.session, self.user_id).names(),
            account_names={account.id: account.name for account in accounts},
        )


@dataclass(frozen=True)
class Aggregates:
    period: Period
    totals: MonthlyTotals
    by_tag: dict[str, int]
    history: list[HistoryPoint]
    commitments: list[CommitmentPoint]


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = get_settings()
        self.transactions = TransactionService(session, self.user_id)

    def history_window(self, today: Optional[date] = None) -> tuple[list[str], Period]:
        """The configured number of full calendar months ending this month."""
        months = months_back(today or local_today(), self.settings.history_months)
        first_year, first_month = parse_month_key(months[0])
        last_year, last_month = parse_month_key(months[-1])
        start = date(first_year, first_month, 1)
        end = month_end(date(last_year, last_month, 1))
        return months, Period("history", start, end)

    def get_aggregates(
        self, period: Period, *, today: Optional[date] = None
    ) -> Aggregates:
        occurrences = self.transactions.effective(period)
        months, window = self.history_window(today)
        past = self.transactions.effective(window)
        return Aggregates(
            period=period,
            totals=monthly_totals(occurrences),
            by_tag=by_tag(occurrences, TagService(self.session, self.user_id).names()),
            history=history(past, months),
            commitments=commitments(past, months),
        )

    def get_goals_progress(self, period: Period) -> list[GoalProgress]:
        occurrences = self.transactions.effective(period)
        goals = GoalService(self.session, self.user_id)
        return allocate(
            goals.list_all(),
            goals.percentages(),
            monthly_totals(occurrences).income_cents,
            spent_by_goal(occurrences),
        )

    def alerts(self, month: str, report_session: ReportSession) -> list[SpendingAlert]:
        try:
            year, month_number = parse_month_key(month)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        totals = monthly_totals(
            self.transactions.effective(month_period(year, month_number))
        )
        due = spending_alerts(month, totals, report_session.sent_alerts)
        for alert in due:
            report_session.mark_sent(alert.key)
            logger.info(f"spending_alert: key={alert.key}")
        return due


class ReportSession:
    """
    Per-client reporting state.

    Window changes can overlap; ``begin`` hands out a token and ``accept``
    only lets the result of the most recent request through. It also keeps
    the spending alerts already shown so each fires once per month.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest = 0
        self.sent_alerts: set[str] = set()

    def begin(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._latest

    def accept(self, token: int, result):
        """``result`` when ``token`` is still the latest request, else None."""
        if not self.is_current(token):
            logger.debug(f"report_discarded: token={token}")
            return None
        return result

    def mark_sent(self, key: str) -> None:
        with self._lock:
            self.sent_alerts.add(key)


class ReportSessionRegistry:
    """
    Report sessions by client id, keeping at most ``max_clients``. The least
    recently used client is evicted first.
    """

    def __init__(self, max_clients: int = 256) -> None:
        if max_clients < 1:
            raise ValueError("max_clients must be at least 1")
        self.max_clients = max_clients
        self._lock = threading.Lock()
        self._sessions: OrderedDict[str, ReportSession] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, client_id: str) -> ReportSession:
        with self._lock:
            report_session = self._sessions.get(client_id)
            if report_session is None:
                report_session = ReportSession()
                self._sessions[client_id] = report_session
            self._sessions.move_to_end(client_id)
            while len(self._sessions) > self.max_clients:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug(f"report_session_evicted: client={evicted}")
            return report_session


@dataclass
class TransactionSuggestion:
    description: str
    amount_cents: Optional[int]
    date: date
    type: TransactionType = TransactionType.expense
    tag_id: Optional[str] = None
    source: dict[str, str] = field(default_factory=dict)


def extract_amount(body: str) -> Optional[int]:
    match = AMOUNT_PATTERN.search(body)
    if not match:
        return None
    return parse_amount(match.group(1))


def extract_merchant(text: str) -> Optional[str]:
    match = AMOUNT_PATTERN.search(text)
    if not match:
        return None
    words = text[match.end():].split()
    if words and words[0].lower() in MERCHANT_CONNECTORS:
        words = words[1:]
    return " ".join(words) or None


class SuggestionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def suggest_tag(self, merchant: Optional[str]) -> Optional[str]:
        if not merchant:
            return None
        choices = {
            tag.id: tag.name.lower()
            for tag in TagService(self.session, self.user_id).list_all()
        }
        if not choices:
            return None
        best = process.extractOne(
            merchant.lower(),
            choices,
            scorer=fuzz.partial_ratio,
            score_cutoff=TAG_MATCH_CUTOFF,
        )
        return best[2] if best else None

    def from_notification(
        self, data: BankNotificationIn, *, today: Optional[date] = None
    ) -> TransactionSuggestion:
        """Draft expense from a bank notification. Nothing is stored."""
        if data.amount is not None:
            amount_cents = int((data.amount * 100).quantize(Decimal("1")))
        else:
            amount_cents = extract_amount(f"{data.title} {data.text}")
        merchant = (data.merchant or "").strip() or extract_merchant(data.text)
        description = merchant or data.title.strip() or data.package
        suggestion = TransactionSuggestion(
            description=description,
            amount_cents=amount_cents,
            date=today or local_today(),
            tag_id=self.suggest_tag(merchant),
            source={"package": data.package, "title": data.title, "text": data.text},
        )
        logger.info(
            f"notification_suggested: package={data.package} "
            f"amount_cents={amount_cents} tag_id={suggestion.tag_id}"
        )
        return suggestion
