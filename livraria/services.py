from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from livraria.models import Book
from livraria.repos import BookRepo, CustomerRepo, SalesRepo, TopBook, money

PAYMENT_METHODS = {"cash", "credit_card", "debit_card", "pix"}
REPORT_PERIODS = ("week", "month", "year")


@dataclass(frozen=True)
class CheckoutResult:
    ok: bool
    error: str | None = None
    details: list[dict] | None = None
    sale_id: int | None = None
    total: Decimal | None = None
    payment_method: str | None = None


class PosService:
    def __init__(self, session: Session):
        self.session = session
        self.books = BookRepo(session)
        self.customers = CustomerRepo(session)
        self.sales = SalesRepo(session)

    def checkout(
        self,
        cart: dict[int, int],
        *,
        payment_method: str = "cash",
        customer_id: int | None = None,
        notes: str | None = None,
    ) -> CheckoutResult:
        """Create the sale, its items and the stock decrements in one unit of work."""
        try:
            cart = {int(k): int(v) for k, v in (cart or {}).items()}
        except (TypeError, ValueError):
            return CheckoutResult(ok=False, error="Carrinho inválido")
        if not cart:
            return CheckoutResult(ok=False, error="Adicione pelo menos um item ao carrinho")
        if any(qty <= 0 for qty in cart.values()):
            return CheckoutResult(ok=False, error="Quantidade inválida")

        pm = (payment_method or "cash").strip().lower()
        if pm not in PAYMENT_METHODS:
            return CheckoutResult(ok=False, error="Forma de pagamento inválida")

        if customer_id is not None and self.customers.get(customer_id) is None:
            return CheckoutResult(ok=False, error="Cliente não encontrado")

        by_id = self.books.get_by_ids(list(cart.keys()))
        missing = [k for k in cart.keys() if k not in by_id]
        if missing:
            return CheckoutResult(ok=False, error=f"Livros não encontrados: {missing}")

        insufficient: list[dict] = []
        for book_id, qty in cart.items():
            b = by_id[book_id]
            if b.stock_quantity < qty:
                insufficient.append(
                    {
                        "book_id": book_id,
                        "title": b.title,
                        "available": int(b.stock_quantity),
                        "requested": qty,
                    }
                )
        if insufficient:
            return CheckoutResult(ok=False, error="Quantidade indisponível em estoque", details=insufficient)

        lines: list[dict] = []
        total = Decimal("0.00")
        for book_id, qty in cart.items():
            b: Book = by_id[book_id]
            unit = money(b.price)
            subtotal = (unit * Decimal(qty)).quantize(Decimal("0.01"))
            total += subtotal
            lines.append({"book_id": b.id, "quantity": qty, "unit_price": unit, "subtotal": subtotal})

        for book_id, qty in cart.items():
            by_id[book_id].stock_quantity = int(by_id[book_id].stock_quantity - qty)
            by_id[book_id].updated_at = datetime.utcnow()

        sale = self.sales.create_sale(
            lines=lines,
            total=total,
            payment_method=pm,
            customer_id=customer_id,
            notes=notes,
        )
        return CheckoutResult(ok=True, sale_id=sale.id, total=total, payment_method=pm)


@dataclass(frozen=True)
class PeriodReport:
    period: str
    start: datetime
    total_sales: int
    total_revenue: Decimal
    average_ticket: Decimal
    revenue_by_day: list[tuple]
    top_books: list[TopBook]


def period_start(period: str, now: datetime | None = None) -> datetime:
    now = now or datetime.utcnow()
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        # Same day one month back, clamped to the month's last day.
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        for day in (now.day, 30, 29, 28):
            try:
                return now.replace(year=year, month=month, day=day)
            except ValueError:
                continue
    if period == "year":
        try:
            return now.replace(year=now.year - 1)
        except ValueError:
            # Feb 29th
            return now.replace(year=now.year - 1, day=28)
    raise ValueError(f"Período inválido: {period}")


class ReportService:
    def __init__(self, session: Session):
        self.session = session
        self.books = BookRepo(session)
        self.customers = CustomerRepo(session)
        self.sales = SalesRepo(session)

    def dashboard(self, recent: int = 5) -> dict:
        return {
            "total_books": self.books.count(),
            "total_customers": self.customers.count(),
            "total_sales": self.sales.count(),
            "total_revenue": self.sales.total_sold(),
            "recent_sales": self.sales.list_sales_summary(limit=recent),
        }

    def period_report(self, period: str = "month", now: datetime | None = None) -> PeriodReport:
        start = period_start(period, now)
        sales = self.sales.sales_since(start)
        count = len(sales)
        revenue = money(sum((total for _created, total in sales), Decimal("0")))
        average = money(revenue / count) if count else money(0)
        return PeriodReport(
            period=period,
            start=start,
            total_sales=count,
            total_revenue=revenue,
            average_ticket=average,
            revenue_by_day=self.sales.total_sold_by_day(start),
            top_books=self.sales.top_books(start, limit=10),
        )
