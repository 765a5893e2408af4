# sync/financial.py

"""
Financial dashboard figures for one condominium.

Stats come from the ``obter_saldo_disponivel`` procedure plus the payments
of the selected month. Refreshes run on demand and after any payments,
expenses or condominium change. Overlapping refreshes are sequenced: only
the most recently started one is allowed to publish its result.
"""

import itertools
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.errors import BackendError, ValidationError
from core.logging_config import logger
from core.notifications import Notifier
from models.enums import PaymentStatus
from models.events import ChangeEvent, ChannelHandlers
from models.financial import FinancialStats, Payment
from models.results import RpcFailure, parse_rpc_result


BALANCE_RPC = "obter_saldo_disponivel"
ANNUAL_REMAINDER_RPC = "processar_remanescente_anual"

PAYMENT_COLUMNS = "*, residents(id, apartment_number, profiles(first_name, last_name))"

# Descriptions like "Quota de março 2024" name the month the payment is for,
# which wins over a mis-stored reference_month
MONTH_NAMES = [
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return Decimal("0")


def _reference_month(raw: Any, description: Optional[str]) -> Optional[date]:
    if isinstance(raw, date):
        year, month = raw.year, raw.month
    else:
        try:
            year_str, month_str = str(raw).split("-")[:2]
            year, month = int(year_str), int(month_str)
        except (TypeError, ValueError):
            return None

    text = (description or "").lower()
    for index, name in enumerate(MONTH_NAMES):
        if name in text:
            month = index + 1

    return date(year, month, 1)


def normalize_payments(rows: List[Dict[str, Any]], today: Optional[date] = None) -> List[Payment]:
    """
    Clean raw payment rows:

    - ``reference_month`` becomes the first day of its month
    - ``amount`` becomes a Decimal
    - ``pending`` past its ``due_date`` becomes ``overdue``

    Rows that still cannot be read are skipped with a warning.
    """
    today = today or date.today()
    payments = []

    for row in rows:
        reference = _reference_month(row.get("reference_month"), row.get("description"))
        if reference is None:
            logger.warning(f"Skipping payment {row.get('id')} with unreadable reference_month")
            continue

        try:
            payment = Payment(**{**row, "reference_month": reference, "amount": _to_decimal(row.get("amount"))})
        except PydanticValidationError as e:
            logger.warning(f"Skipping unreadable payment {row.get('id')}: {e}")
            continue

        if payment.status == PaymentStatus.pending and payment.due_date and payment.due_date < today:
            payment = payment.model_copy(update={"status": PaymentStatus.overdue})
        payments.append(payment)

    return payments


def monthly_totals(payments: List[Payment]) -> Dict[str, Decimal]:
    totals = {status: Decimal("0") for status in PaymentStatus}
    for payment in payments:
        totals[payment.status] += payment.amount
    return {
        "total_received": totals[PaymentStatus.paid],
        "total_pending": totals[PaymentStatus.pending],
        "total_overdue": totals[PaymentStatus.overdue],
    }


class FinancialSync:
    def __init__(
        self,
        backend,
        subscriber,
        notifier: Notifier,
        condominium_id: Optional[str],
        month: Optional[int] = None,
        year: Optional[int] = None,
    ):
        self.backend = backend
        self.subscriber = subscriber
        self.notifier = notifier
        self.condominium_id = condominium_id

        today = date.today()
        self.month = month or today.month
        self.year = year or today.year

        self.stats = FinancialStats(ano_atual=self.year, current_month=self.month, current_year=self.year)
        self.payments: List[Payment] = []
        self.remainder_history: List[Dict[str, Any]] = []
        self.loading = False

        self._sequence = itertools.count(1)
        self._applied = 0
        self._started = 0
        self._scope = 0
        self._channels: List[tuple] = []
        self._handlers = ChannelHandlers(
            on_insert=self._on_change,
            on_update=self._on_change,
            on_delete=self._on_change,
        )
        self._condo_handlers = ChannelHandlers(on_update=self._on_change)

    # ============================================================
    # Lifecycle
    # ============================================================
    async def start(self):
        if not self.condominium_id or self._channels:
            return

        for table in ("payments", "expenses"):
            channel = await self.subscriber.subscribe(table, self.condominium_id, self._handlers)
            self._channels.append((channel, self._handlers))

        channel = await self.subscriber.subscribe(
            "condominiums", self.condominium_id, self._condo_handlers, filter=f"id=eq.{self.condominium_id}"
        )
        self._channels.append((channel, self._condo_handlers))

        await self.refresh_stats()

    async def stop(self):
        self._scope += 1
        channels, self._channels = self._channels, []
        for channel, handlers in channels:
            await self.subscriber.unsubscribe(channel, handlers)

    async def select_month(self, month: int, year: int) -> FinancialStats:
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month {month}", field_name="month")
        self.month, self.year = month, year
        return await self.refresh_stats()

    # ============================================================
    # Refresh
    # ============================================================
    async def refresh_stats(self, condominium_id: Optional[str] = None) -> FinancialStats:
        condominium_id = condominium_id or self.condominium_id
        if not condominium_id:
            return self.stats

        seq = next(self._sequence)
        self._started = seq
        scope = self._scope
        month, year = self.month, self.year
        self.loading = True

        try:
            stats, payments = await self._compute(condominium_id, month, year)
        except BackendError as e:
            logger.error(f"Error fetching financial data: {e}")
            if seq > self._applied:
                self.notifier.error("Financial sync failed", str(e), retryable=True)
            return self.stats
        finally:
            if seq == self._started:
                self.loading = False

        if scope != self._scope or seq < self._applied:
            logger.debug(f"Discarding financial refresh #{seq} (#{self._applied} already applied)")
            return self.stats

        self._applied = seq
        self.stats = stats
        self.payments = payments
        return stats

    async def refresh_data(self) -> FinancialStats:
        """Manual refresh with a confirmation notification."""
        stats = await self.refresh_stats()
        self.notifier.success("Synchronized", "Financial data updated")
        return stats

    async def _compute(self, condominium_id: str, month: int, year: int):
        balance = await self.backend.rpc(BALANCE_RPC, {"_condominium_id": condominium_id})
        if not isinstance(balance, dict):
            raise BackendError(f"{BALANCE_RPC} returned no data", code="MALFORMED_RESPONSE")

        condo = await self.backend.select(
            "condominiums", {"id": condominium_id}, columns="current_monthly_fee, currency", single=True
        )
        rows = await self.backend.select(
            "payments",
            {"condominium_id": condominium_id},
            columns=PAYMENT_COLUMNS,
            order="created_at",
            descending=True,
        )

        payments = [
            p for p in normalize_payments(rows)
            if p.reference_month.month == month and p.reference_month.year == year
        ]

        stats = FinancialStats.from_rpc(balance, fallback_year=date.today().year).model_copy(
            update={
                **monthly_totals(payments),
                "current_monthly_fee": _to_decimal((condo or {}).get("current_monthly_fee")),
                "current_month": month,
                "current_year": year,
            }
        )
        logger.debug(f"Financial stats for {condominium_id} {year}-{month:02d}: {stats}")
        return stats, payments

    def _on_change(self, event: ChangeEvent):
        logger.debug(f"Financial trigger: {event.event_kind} on {event.table}")
        return self.refresh_stats()

    # ============================================================
    # Writes
    # ============================================================
    async def mark_payment_as_paid(self, payment_id: str, today: Optional[date] = None) -> bool:
        """Stats follow through the payments feed; no explicit refresh here."""
        if not payment_id:
            raise ValidationError("Payment id is required", field_name="payment_id")

        paid_on = (today or date.today()).isoformat()
        try:
            await self.backend.update(
                "payments",
                {"id": payment_id},
                {"status": PaymentStatus.paid.value, "payment_date": paid_on},
            )
        except BackendError as e:
            logger.error(f"Error marking payment as paid: {e}")
            self.notifier.error("Failed to update payment", str(e), retryable=True)
            return False

        self.notifier.success("Payment marked as paid")
        return True

    async def process_annual_remainder(self, year: int) -> bool:
        if not self.condominium_id:
            return False

        try:
            raw = await self.backend.rpc(
                ANNUAL_REMAINDER_RPC, {"_condominium_id": self.condominium_id, "_ano": year}
            )
        except BackendError as e:
            logger.error(f"Error processing annual remainder: {e}")
            self.notifier.error("Could not process the annual remainder", str(e), retryable=True)
            return False

        result = parse_rpc_result(raw)
        if isinstance(result, RpcFailure):
            logger.error(f"{ANNUAL_REMAINDER_RPC} refused: {result.error}")
            self.notifier.error("Could not process the annual remainder", result.error)
            return False

        self.notifier.success("Annual remainder processed", f"Remainder for {year} processed")
        await self.refresh_stats()
        await self.fetch_remainder_history()
        return True

    async def fetch_remainder_history(self) -> List[Dict[str, Any]]:
        if not self.condominium_id:
            return self.remainder_history
        try:
            self.remainder_history = await self.backend.select(
                "remanescente_anual",
                {"condominium_id": self.condominium_id},
                order="ano_referencia",
                descending=True,
            )
        except BackendError as e:
            logger.error(f"Error fetching remainder history: {e}")
        return self.remainder_history
