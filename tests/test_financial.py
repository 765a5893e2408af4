# tests/test_financial.py

"""
Tests for payment normalization and the financial dashboard sync.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from core.errors import BackendError, ValidationError
from models.enums import PaymentStatus
from sync.channels import ChangeFeedSubscriber
from sync.financial import (
    ANNUAL_REMAINDER_RPC,
    BALANCE_RPC,
    FinancialSync,
    monthly_totals,
    normalize_payments,
)


TODAY = date(2024, 3, 20)


def payment(pid, status="pending", amount="50.00", reference="2024-03-01", due="2024-03-10", **extra):
    return {
        "id": pid,
        "condominium_id": "condo-1",
        "amount": amount,
        "status": status,
        "reference_month": reference,
        "due_date": due,
        "created_at": f"2024-03-0{len(pid)}T10:00:00",
        **extra,
    }


def balance(saldo="100.00", **overrides):
    data = {
        "ano_atual": 2024,
        "receita_atual": "1500.00",
        "despesas_aprovadas": "900.00",
        "remanescente_total": "200.00",
        "saldo_disponivel": saldo,
    }
    data.update(overrides)
    return data


# -----------------------------------------------------
# normalize_payments
# -----------------------------------------------------
def test_pending_past_due_becomes_overdue():
    rows = [
        payment("p1", due="2024-03-10"),
        payment("p2", due="2024-03-25"),
        payment("p3", status="paid", due="2024-03-01"),
    ]

    statuses = [p.status for p in normalize_payments(rows, today=TODAY)]

    assert statuses == [PaymentStatus.overdue, PaymentStatus.pending, PaymentStatus.paid]


def test_reference_month_is_normalized_to_first_day():
    [p] = normalize_payments([payment("p1", reference="2024-03-17")], today=TODAY)
    assert p.reference_month == date(2024, 3, 1)
    assert p.amount == Decimal("50.00")


def test_month_named_in_description_wins():
    [p] = normalize_payments(
        [payment("p1", reference="2024-02-01", description="Quota de março 2024")],
        today=TODAY,
    )
    assert p.reference_month == date(2024, 3, 1)


def test_unreadable_rows_are_skipped():
    rows = [payment("p1", reference="not-a-date"), payment("p2", status="refunded"), payment("p3")]
    assert [p.id for p in normalize_payments(rows, today=TODAY)] == ["p3"]


def test_monthly_totals():
    payments = normalize_payments(
        [
            payment("p1", status="paid", amount="50"),
            payment("p2", status="paid", amount="25.50"),
            payment("p3", amount="50", due="2024-04-01"),
            payment("p4", amount="40", due="2024-03-01"),
        ],
        today=TODAY,
    )
    assert monthly_totals(payments) == {
        "total_received": Decimal("75.50"),
        "total_pending": Decimal("50"),
        "total_overdue": Decimal("40"),
    }


# -----------------------------------------------------
# FinancialSync
# -----------------------------------------------------
def make_sync(backend, notifier, month=3, year=2024):
    subscriber = ChangeFeedSubscriber(backend, notifier)
    return FinancialSync(backend, subscriber, notifier, "condo-1", month=month, year=year)


@pytest.fixture
def financial_backend(backend):
    backend.seed("condominiums", {"id": "condo-1", "current_monthly_fee": "50.00"})
    backend.seed(
        "payments",
        payment("p1", status="paid"),
        payment("p2", status="paid", reference="2024-02-01"),
        payment("p3", status="paid", amount="30", condominium_id="condo-2"),
    )
    backend.rpc_results[BALANCE_RPC] = balance()
    return backend


class TestFinancialSync:
    @pytest.mark.asyncio
    async def test_refresh_combines_balance_and_month_payments(self, financial_backend, notifier):
        sync = make_sync(financial_backend, notifier)

        stats = await sync.refresh_stats()

        assert stats.receita_atual == Decimal("1500.00")
        assert stats.total_received == Decimal("50.00")
        assert stats.current_monthly_fee == Decimal("50.00")
        assert (stats.current_month, stats.current_year) == (3, 2024)
        assert [p.id for p in sync.payments] == ["p1"]
        assert financial_backend.rpc_calls == [(BALANCE_RPC, {"_condominium_id": "condo-1"})]

    @pytest.mark.asyncio
    async def test_negative_balance_is_not_clamped(self, financial_backend, notifier):
        financial_backend.rpc_results[BALANCE_RPC] = balance(saldo="-320.75")
        sync = make_sync(financial_backend, notifier)

        stats = await sync.refresh_stats()

        assert stats.saldo_disponivel == Decimal("-320.75")

    @pytest.mark.asyncio
    async def test_select_month_validates_and_refilters(self, financial_backend, notifier):
        sync = make_sync(financial_backend, notifier)

        with pytest.raises(ValidationError):
            await sync.select_month(13, 2024)

        await sync.select_month(2, 2024)
        assert [p.id for p in sync.payments] == ["p2"]

    @pytest.mark.asyncio
    async def test_last_started_refresh_wins(self, financial_backend, notifier):
        financial_backend.queue_rpc(BALANCE_RPC, balance(saldo="1.00"), balance(saldo="2.00"))
        gate = financial_backend.hold_rpc(BALANCE_RPC)
        sync = make_sync(financial_backend, notifier)

        slow = asyncio.ensure_future(sync.refresh_stats())
        await asyncio.sleep(0)
        await sync.refresh_stats()
        assert sync.loading is False

        gate.set()
        await slow

        assert sync.stats.saldo_disponivel == Decimal("2.00")
        assert sync.loading is False

    @pytest.mark.asyncio
    async def test_backend_error_keeps_previous_stats(self, financial_backend, notifier):
        sync = make_sync(financial_backend, notifier)
        await sync.refresh_stats()
        financial_backend.failures[f"rpc:{BALANCE_RPC}"] = BackendError("timeout")

        stats = await sync.refresh_stats()

        assert stats.receita_atual == Decimal("1500.00")
        assert notifier.titles("error") == ["Financial sync failed"]
        assert sync.loading is False

    @pytest.mark.asyncio
    async def test_change_events_trigger_refresh(self, financial_backend, notifier):
        sync = make_sync(financial_backend, notifier)
        await sync.start()
        assert sorted(c.table for c in financial_backend.open_channels()) == ["condominiums", "expenses", "payments"]
        assert financial_backend.open_channels("condominiums")[0].filter == "id=eq.condo-1"

        financial_backend.rpc_results[BALANCE_RPC] = balance(saldo="55.00")
        financial_backend.emit("expenses", "insert", new={"id": "e1", "amount": "45.00"})
        await sync.subscriber.drain()

        assert sync.stats.saldo_disponivel == Decimal("55.00")
        assert financial_backend.rpc_names().count(BALANCE_RPC) == 2

        await sync.stop()
        assert financial_backend.open_channels() == []

    @pytest.mark.asyncio
    async def test_mark_payment_as_paid_updates_without_refresh(self, financial_backend, notifier):
        financial_backend.seed("payments", payment("p9"))
        sync = make_sync(financial_backend, notifier)

        assert await sync.mark_payment_as_paid("p9", today=TODAY) is True

        row = next(r for r in financial_backend.tables["payments"] if r["id"] == "p9")
        assert row["status"] == "paid"
        assert row["payment_date"] == "2024-03-20"
        assert financial_backend.rpc_calls == []

    @pytest.mark.asyncio
    async def test_mark_payment_as_paid_failure(self, financial_backend, notifier):
        financial_backend.failures["update:payments"] = BackendError("denied")
        sync = make_sync(financial_backend, notifier)

        assert await sync.mark_payment_as_paid("p1", today=TODAY) is False
        assert notifier.titles("error") == ["Failed to update payment"]

    @pytest.mark.asyncio
    async def test_annual_remainder_success_refreshes(self, financial_backend, notifier):
        financial_backend.rpc_results[ANNUAL_REMAINDER_RPC] = {"success": True, "remanescente": 150}
        financial_backend.seed("remanescente_anual", {"condominium_id": "condo-1", "ano_referencia": 2023})
        sync = make_sync(financial_backend, notifier)

        assert await sync.process_annual_remainder(2023) is True

        assert (ANNUAL_REMAINDER_RPC, {"_condominium_id": "condo-1", "_ano": 2023}) in financial_backend.rpc_calls
        assert BALANCE_RPC in financial_backend.rpc_names()
        assert sync.remainder_history == [{"condominium_id": "condo-1", "ano_referencia": 2023}]

    @pytest.mark.asyncio
    async def test_annual_remainder_refusal(self, financial_backend, notifier):
        financial_backend.rpc_results[ANNUAL_REMAINDER_RPC] = {"success": False, "error": "Year already processed"}
        sync = make_sync(financial_backend, notifier)

        assert await sync.process_annual_remainder(2023) is False
        assert BALANCE_RPC not in financial_backend.rpc_names()
        assert notifier.notifications[-1].message == "Year already processed"
