from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, BinaryIO

import requests

from livraria.bulk_import import BulkBookImporter
from livraria.credentials import APIFY_TOKEN_KEY, LocalSettingsStore, apify_token_providers, resolve_token
from livraria.db import session_scope
from livraria.excel_import import ImportedBook, parse_excel_file
from livraria.isbn_lookup import (
    BookNotFoundError,
    InvalidIsbnError,
    IsbnResolver,
    LookupConfigError,
    build_resolver,
)
from livraria.models import Book, Category, Customer, Sale
from livraria.repos import BookRepo, CategoryRepo, CustomerRepo, SalesRepo
from livraria.services import REPORT_PERIODS, PosService, ReportService
from livraria.settings import Settings

logger = logging.getLogger(__name__)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _num(d: Decimal | None) -> float | None:
    return float(d) if d is not None else None


def _book_dict(b: Book) -> dict:
    return {
        "id": int(b.id),
        "title": b.title,
        "author": b.author,
        "isbn": b.isbn,
        "category_id": b.category_id,
        "category": b.category.name if b.category is not None else None,
        "price": float(b.price),
        "stock_quantity": int(b.stock_quantity),
        "description": b.description,
        "publisher": b.publisher,
        "publication_year": b.publication_year,
        "cover_image": b.cover_image,
        "created_at": _iso(b.created_at),
        "updated_at": _iso(b.updated_at),
    }


def _category_dict(c: Category) -> dict:
    return {"id": int(c.id), "name": c.name, "description": c.description, "created_at": _iso(c.created_at)}


def _customer_dict(c: Customer) -> dict:
    return {
        "id": int(c.id),
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "cpf": c.cpf,
        "address": c.address,
        "created_at": _iso(c.created_at),
    }


def _sale_summary_dict(s: dict) -> dict:
    out = dict(s)
    out["created_at"] = _iso(s.get("created_at"))
    out["total_amount"] = _num(s.get("total_amount"))
    return out


def _sale_dict(s: Sale) -> dict:
    return {
        "id": int(s.id),
        "created_at": _iso(s.created_at),
        "customer_id": s.customer_id,
        "customer_name": s.customer.name if s.customer is not None else None,
        "total_amount": float(s.total_amount),
        "payment_method": s.payment_method,
        "status": s.status,
        "notes": s.notes,
        "items": [
            {
                "book_id": int(it.book_id),
                "title": it.book.title if it.book is not None else None,
                "quantity": int(it.quantity),
                "unit_price": float(it.unit_price),
                "subtotal": float(it.subtotal),
            }
            for it in s.items
        ],
    }


_BOOK_FIELDS = (
    "title",
    "author",
    "isbn",
    "category_id",
    "price",
    "stock_quantity",
    "description",
    "publisher",
    "publication_year",
    "cover_image",
)


def _book_fields(data: dict) -> dict:
    out: dict[str, Any] = {}
    for name in _BOOK_FIELDS:
        if name in data:
            out[name] = data[name]
    if "price" in out:
        try:
            out["price"] = Decimal(str(out["price"] if out["price"] not in (None, "") else 0))
        except InvalidOperation as e:
            raise ValueError("Preço inválido") from e
        if not out["price"].is_finite():
            raise ValueError("Preço inválido")
    for name in ("stock_quantity", "publication_year", "category_id"):
        if name in out and out[name] not in (None, ""):
            try:
                out[name] = int(out[name])
            except (TypeError, ValueError) as e:
                raise ValueError(f"Valor inválido para {name}") from e
        elif name in out:
            out[name] = None if name != "stock_quantity" else 0
    return out


class WebBackend:
    """JSON-friendly operations used by the HTTP server and scripts.

    Every public method returns a dict with an "ok" flag; validation
    problems come back as {"ok": False, "error": "..."}.
    """

    def __init__(
        self,
        session_factory,
        settings: Settings,
        *,
        resolver: IsbnResolver | None = None,
        http: requests.Session | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._store = LocalSettingsStore(settings.local_settings_path)
        self._resolver = resolver or build_resolver(settings, session_factory, http=http, store=self._store)

    def get_app_info(self) -> dict:
        return {"ok": True, "app_name": self._settings.APP_NAME, "db_url": str(self._settings.DATABASE_URL)}

    # --- Books ---

    def list_books(self, q: str = "", limit: int = 500) -> list[dict]:
        lim = max(1, min(int(limit or 500), 2000))
        with session_scope(self._session_factory) as session:
            return [_book_dict(b) for b in BookRepo(session).list(q=q, limit=lim)]

    def list_books_in_stock(self) -> list[dict]:
        with session_scope(self._session_factory) as session:
            return [
                {"id": b.id, "title": b.title, "author": b.author, "price": float(b.price), "stock_quantity": b.stock_quantity}
                for b in BookRepo(session).list_in_stock()
            ]

    def get_book(self, book_id: int) -> dict:
        with session_scope(self._session_factory) as session:
            row = BookRepo(session).get(book_id)
            if row is None:
                return {"ok": False, "error": "Livro não encontrado"}
            return {"ok": True, "book": _book_dict(row)}

    def create_book(self, data: dict) -> dict:
        try:
            fields = _book_fields(data or {})
            fields.setdefault("title", "")
            fields.setdefault("author", "")
            with session_scope(self._session_factory) as session:
                row = BookRepo(session).create(**fields)
                return {"ok": True, "book": _book_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def update_book(self, book_id: int, data: dict) -> dict:
        try:
            fields = _book_fields(data or {})
            with session_scope(self._session_factory) as session:
                row = BookRepo(session).update(book_id, **fields)
                return {"ok": True, "book": _book_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def delete_book(self, book_id: int) -> dict:
        try:
            with session_scope(self._session_factory) as session:
                ok = BookRepo(session).delete(book_id)
        except ValueError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": bool(ok)} if ok else {"ok": False, "error": "Livro não encontrado"}

    # --- Categories ---

    def list_categories(self) -> list[dict]:
        with session_scope(self._session_factory) as session:
            return [_category_dict(c) for c in CategoryRepo(session).list()]

    def create_category(self, name: str, description: str | None = None) -> dict:
        try:
            with session_scope(self._session_factory) as session:
                row = CategoryRepo(session).create(name, description)
                return {"ok": True, "category": _category_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def update_category(self, category_id: int, name: str, description: str | None = None) -> dict:
        try:
            with session_scope(self._session_factory) as session:
                row = CategoryRepo(session).update(category_id, name=name, description=description)
                return {"ok": True, "category": _category_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def delete_category(self, category_id: int) -> dict:
        with session_scope(self._session_factory) as session:
            ok = CategoryRepo(session).delete(category_id)
        return {"ok": True} if ok else {"ok": False, "error": "Categoria não encontrada"}

    # --- Customers ---

    def list_customers(self, q: str = "") -> list[dict]:
        with session_scope(self._session_factory) as session:
            return [_customer_dict(c) for c in CustomerRepo(session).list(q=q)]

    def create_customer(self, data: dict) -> dict:
        data = data or {}
        try:
            with session_scope(self._session_factory) as session:
                row = CustomerRepo(session).create(
                    name=data.get("name", ""),
                    email=data.get("email"),
                    phone=data.get("phone"),
                    cpf=data.get("cpf"),
                    address=data.get("address"),
                )
                return {"ok": True, "customer": _customer_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def update_customer(self, customer_id: int, data: dict) -> dict:
        fields = {k: v for k, v in (data or {}).items() if k in ("name", "email", "phone", "cpf", "address")}
        try:
            with session_scope(self._session_factory) as session:
                row = CustomerRepo(session).update(customer_id, **fields)
                return {"ok": True, "customer": _customer_dict(row)}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def delete_customer(self, customer_id: int) -> dict:
        try:
            with session_scope(self._session_factory) as session:
                ok = CustomerRepo(session).delete(customer_id)
        except ValueError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True} if ok else {"ok": False, "error": "Cliente não encontrado"}

    # --- Sales ---

    def checkout(self, lines, customer_id=None, payment_method: str = "cash", notes: str | None = None) -> dict:
        cart: dict[int, int] = {}
        for ln in (lines or []):
            try:
                book_id = int(ln.get("book_id"))
                qty = int(ln.get("quantity") or 0)
            except (AttributeError, TypeError, ValueError):
                return {"ok": False, "error": "Item inválido no carrinho"}
            cart[book_id] = cart.get(book_id, 0) + qty

        cid: int | None = None
        if customer_id not in (None, ""):
            try:
                cid = int(customer_id)
            except (TypeError, ValueError):
                return {"ok": False, "error": "Cliente inválido"}

        with session_scope(self._session_factory) as session:
            res = PosService(session).checkout(cart, payment_method=payment_method, customer_id=cid, notes=notes)
            if not res.ok:
                return {"ok": False, "error": res.error or "Erro ao realizar venda", "details": res.details or None}
            return {
                "ok": True,
                "sale_id": int(res.sale_id or 0),
                "total": float(res.total or 0),
                "payment_method": res.payment_method,
            }

    def list_sales(self, limit: int = 200) -> list[dict]:
        with session_scope(self._session_factory) as session:
            return [_sale_summary_dict(s) for s in SalesRepo(session).list_sales_summary(limit=limit)]

    def get_sale(self, sale_id: int) -> dict:
        with session_scope(self._session_factory) as session:
            row = SalesRepo(session).get(sale_id)
            if row is None:
                return {"ok": False, "error": "Venda não encontrada"}
            return {"ok": True, "sale": _sale_dict(row)}

    # --- Reports ---

    def get_dashboard(self) -> dict:
        with session_scope(self._session_factory) as session:
            d = ReportService(session).dashboard()
        return {
            "ok": True,
            "total_books": d["total_books"],
            "total_customers": d["total_customers"],
            "total_sales": d["total_sales"],
            "total_revenue": float(d["total_revenue"]),
            "recent_sales": [_sale_summary_dict(s) for s in d["recent_sales"]],
        }

    def get_report(self, period: str = "month") -> dict:
        p = (period or "month").strip().lower()
        if p not in REPORT_PERIODS:
            return {"ok": False, "error": f"Período inválido: {period}"}
        with session_scope(self._session_factory) as session:
            r = ReportService(session).period_report(p)
        return {
            "ok": True,
            "period": r.period,
            "start": _iso(r.start),
            "total_sales": r.total_sales,
            "total_revenue": float(r.total_revenue),
            "average_ticket": float(r.average_ticket),
            "revenue_by_day": [{"date": d.isoformat(), "total": float(t)} for d, t in r.revenue_by_day],
            "top_books": [
                {"title": t.title, "author": t.author, "quantity": t.quantity, "revenue": float(t.revenue)}
                for t in r.top_books
            ],
        }

    # --- Spreadsheet import ---

    def preview_import(self, stream: BinaryIO) -> dict:
        res = parse_excel_file(stream)
        return {"ok": bool(res.books), **res.to_dict()}

    def commit_import(self, books: list[dict]) -> dict:
        records: list[ImportedBook] = []
        errors: list[str] = []
        for idx, data in enumerate(books or [], start=1):
            try:
                records.append(ImportedBook.from_dict(data or {}))
            except (AttributeError, ValueError) as e:
                errors.append(f"Livro {idx}: {e}")
        if not records:
            return {"ok": False, "error": "Nenhum livro para importar", "messages": errors}

        res = BulkBookImporter(self._session_factory).commit(records)
        out = res.to_dict()
        out["messages"] = errors + out["messages"]
        out["errors"] = int(out["errors"]) + len(errors)
        out["ok"] = res.success > 0
        # Fresh listings so the client can refresh without another round trip.
        out["books"] = self.list_books()
        out["categories"] = self.list_categories()
        return out

    # --- ISBN lookup ---

    def lookup_isbn(self, isbn: str) -> dict:
        try:
            book = self._resolver.resolve(isbn)
        except (InvalidIsbnError, LookupConfigError, BookNotFoundError) as e:
            return {"ok": False, "error": str(e), "kind": type(e).__name__}
        return {"ok": True, "book": book.to_dict()}

    # --- Settings ---

    def get_apify_status(self) -> dict:
        token = resolve_token(apify_token_providers(self._settings, self._store))
        saved = self._store.get(APIFY_TOKEN_KEY) is not None
        return {"ok": True, "status": "active" if token else "inactive", "saved_locally": saved}

    def save_apify_token(self, token: str) -> dict:
        t = (token or "").strip()
        if not t:
            return {"ok": False, "error": "Token inválido"}
        self._store.set(APIFY_TOKEN_KEY, t)
        logger.info("Token do Apify salvo nas configurações locais")
        return {"ok": True, "status": "active"}

    def remove_apify_token(self) -> dict:
        self._store.remove(APIFY_TOKEN_KEY)
        return self.get_apify_status()
