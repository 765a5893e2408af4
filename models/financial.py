# models/financial.py

from typing import Optional, Dict, Any
from datetime import date
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from models.enums import PaymentStatus


class FinancialStats(BaseModel):
    """
    Dashboard figures for one condominium.

    The first five fields come straight from ``obter_saldo_disponivel``.
    ``saldo_disponivel`` is negative when the condominium runs a deficit
    and is never clamped.
    """

    ano_atual: int
    receita_atual: Decimal = Decimal("0")
    despesas_aprovadas: Decimal = Decimal("0")
    remanescente_total: Decimal = Decimal("0")
    saldo_disponivel: Decimal = Decimal("0")

    # Derived from the payments of the selected month
    total_received: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    total_overdue: Decimal = Decimal("0")
    current_monthly_fee: Decimal = Decimal("0")
    current_month: Optional[int] = None
    current_year: Optional[int] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any], fallback_year: int) -> "FinancialStats":
        data = data or {}
        return cls(
            ano_atual=data.get("ano_atual") or fallback_year,
            receita_atual=Decimal(str(data.get("receita_atual") or 0)),
            despesas_aprovadas=Decimal(str(data.get("despesas_aprovadas") or 0)),
            remanescente_total=Decimal(str(data.get("remanescente_total") or 0)),
            saldo_disponivel=Decimal(str(data.get("saldo_disponivel") or 0)),
        )


class Payment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    condominium_id: Optional[str] = None
    resident_id: Optional[str] = None
    amount: Decimal
    status: PaymentStatus
    reference_month: date
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    created_at: Optional[str] = None

    # Nested projection: residents(id, apartment_number, profiles(first_name, last_name))
    residents: Optional[Dict[str, Any]] = None
