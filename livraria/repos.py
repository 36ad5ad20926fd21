from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from livraria.isbn import normalize_isbn
from livraria.models import Book, Category, Customer, Sale, SaleItem

YEAR_MIN = 1000
YEAR_MAX = 2100


def money(x: float | int | str | Decimal | None) -> Decimal:
    d = x if isinstance(x, Decimal) else Decimal(str(x if x not in (None, "") else 0))
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _opt_text(value) -> str | None:
    s = str(value).strip() if value is not None else ""
    return s or None


@dataclass(frozen=True)
class TopBook:
    book_id: int
    title: str
    author: str
    quantity: int
    revenue: Decimal


class CategoryRepo:
    def __init__(self, session: Session):
        self.session = session

    def list(self) -> list[Category]:
        stmt = select(Category).order_by(Category.name.asc())
        return self.session.execute(stmt).scalars().all()

    def get(self, category_id: int) -> Category | None:
        return self.session.get(Category, int(category_id))

    def find_by_name(self, name: str) -> Category | None:
        """Case-insensitive exact match on the trimmed name."""
        n = (name or "").strip()
        if not n:
            return None
        stmt = select(Category).where(func.lower(Category.name) == n.lower()).limit(1)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is not None:
            return row
        # SQLite's lower() only folds ASCII ("FICÇÃO" vs "Ficção").
        key = n.casefold()
        return next((c for c in self.list() if c.name.casefold() == key), None)

    def create(self, name: str, description: str | None = None) -> Category:
        n = (name or "").strip()
        if not n:
            raise ValueError("Nome da categoria é obrigatório")
        if self.find_by_name(n) is not None:
            raise ValueError(f"Categoria já existe: {n}")
        row = Category(name=n, description=_opt_text(description))
        self.session.add(row)
        self.session.flush()
        return row

    def get_or_create(self, name: str) -> Category:
        row = self.find_by_name(name)
        if row is not None:
            return row
        return self.create(name)

    def update(self, category_id: int, *, name: str, description: str | None = None) -> Category:
        row = self.get(category_id)
        if row is None:
            raise ValueError("Categoria não encontrada")
        n = (name or "").strip()
        if not n:
            raise ValueError("Nome da categoria é obrigatório")
        other = self.find_by_name(n)
        if other is not None and other.id != row.id:
            raise ValueError(f"Categoria já existe: {n}")
        row.name = n
        row.description = _opt_text(description)
        self.session.flush()
        return row

    def delete(self, category_id: int) -> bool:
        row = self.get(category_id)
        if row is None:
            return False
        # Books keep existing without category.
        for b in list(row.books):
            b.category_id = None
        self.session.delete(row)
        self.session.flush()
        return True


class BookRepo:
    def __init__(self, session: Session):
        self.session = session

    def list(self, q: str = "", limit: int = 500) -> list[Book]:
        stmt = select(Book).options(selectinload(Book.category))
        qn = (q or "").strip().lower()
        if qn:
            like = f"%{qn}%"
            stmt = stmt.where(func.lower(Book.title).like(like) | func.lower(Book.author).like(like))
        stmt = stmt.order_by(Book.title.asc()).limit(int(limit))
        return self.session.execute(stmt).scalars().all()

    def list_in_stock(self) -> list[Book]:
        stmt = select(Book).where(Book.stock_quantity > 0).order_by(Book.title.asc())
        return self.session.execute(stmt).scalars().all()

    def get(self, book_id: int) -> Book | None:
        return self.session.get(Book, int(book_id))

    def get_by_ids(self, ids: list[int]) -> dict[int, Book]:
        if not ids:
            return {}
        rows = self.session.execute(select(Book).where(Book.id.in_(ids))).scalars().all()
        return {r.id: r for r in rows}

    def get_by_isbn(self, isbn: str) -> Book | None:
        """Exact match against the normalized ISBN (hyphens/spaces ignored)."""
        target = normalize_isbn(isbn)
        if not target:
            return None
        stored = func.upper(func.replace(func.replace(Book.isbn, "-", ""), " ", ""))
        stmt = select(Book).where(Book.isbn.is_not(None)).where(stored == target).order_by(Book.id.asc()).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def count(self) -> int:
        return int(self.session.execute(select(func.count(Book.id))).scalar_one())

    def _check_category(self, category_id: int | None) -> None:
        if category_id is not None and self.session.get(Category, int(category_id)) is None:
            raise ValueError("Categoria não encontrada")

    @staticmethod
    def _validate(
        *,
        title: str,
        author: str,
        price: Decimal,
        stock_quantity: int,
        publication_year: int | None,
    ) -> None:
        if not (title or "").strip():
            raise ValueError("Título é obrigatório")
        if not (author or "").strip():
            raise ValueError("Autor é obrigatório")
        if price < 0:
            raise ValueError("Preço inválido")
        if stock_quantity < 0:
            raise ValueError("Estoque inválido")
        if publication_year is not None and not (YEAR_MIN <= publication_year <= YEAR_MAX):
            raise ValueError("Ano de publicação inválido")

    def create(
        self,
        *,
        title: str,
        author: str,
        isbn: str | None = None,
        category_id: int | None = None,
        price: Decimal | float | int = 0,
        stock_quantity: int = 0,
        description: str | None = None,
        publisher: str | None = None,
        publication_year: int | None = None,
        cover_image: str | None = None,
    ) -> Book:
        price_d = money(price)
        stock = int(stock_quantity or 0)
        year = int(publication_year) if publication_year is not None else None
        self._validate(title=title, author=author, price=price_d, stock_quantity=stock, publication_year=year)
        self._check_category(category_id)

        now = datetime.utcnow()
        row = Book(
            title=title.strip(),
            author=author.strip(),
            isbn=_opt_text(isbn),
            category_id=category_id,
            price=price_d,
            stock_quantity=stock,
            description=_opt_text(description),
            publisher=_opt_text(publisher),
            publication_year=year,
            cover_image=_opt_text(cover_image),
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def update(self, book_id: int, **fields) -> Book:
        row = self.get(book_id)
        if row is None:
            raise ValueError("Livro não encontrado")

        title = fields.get("title", row.title)
        author = fields.get("author", row.author)
        price_d = money(fields["price"]) if "price" in fields else money(row.price)
        stock = int(fields["stock_quantity"] or 0) if "stock_quantity" in fields else int(row.stock_quantity)
        if "publication_year" in fields:
            y = fields["publication_year"]
            year = int(y) if y not in (None, "") else None
        else:
            year = row.publication_year
        self._validate(title=title, author=author, price=price_d, stock_quantity=stock, publication_year=year)

        row.title = title.strip()
        row.author = author.strip()
        row.price = price_d
        row.stock_quantity = stock
        row.publication_year = year
        for name in ("isbn", "description", "publisher", "cover_image"):
            if name in fields:
                setattr(row, name, _opt_text(fields[name]))
        if "category_id" in fields:
            cid = fields["category_id"]
            cid = int(cid) if cid not in (None, "") else None
            self._check_category(cid)
            row.category_id = cid
        row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def delete(self, book_id: int) -> bool:
        row = self.get(book_id)
        if row is None:
            return False
        sold = self.session.execute(
            select(func.count(SaleItem.id)).where(SaleItem.book_id == row.id)
        ).scalar_one()
        if int(sold) > 0:
            raise ValueError("Livro possui vendas registradas e não pode ser excluído")
        self.session.delete(row)
        self.session.flush()
        return True


class CustomerRepo:
    def __init__(self, session: Session):
        self.session = session

    def list(self, q: str = "", limit: int = 500) -> list[Customer]:
        stmt = select(Customer)
        qn = (q or "").strip().lower()
        if qn:
            like = f"%{qn}%"
            stmt = stmt.where(
                func.lower(Customer.name).like(like)
                | func.lower(func.coalesce(Customer.email, "")).like(like)
                | func.coalesce(Customer.cpf, "").like(like)
            )
        stmt = stmt.order_by(Customer.name.asc()).limit(int(limit))
        return self.session.execute(stmt).scalars().all()

    def get(self, customer_id: int) -> Customer | None:
        return self.session.get(Customer, int(customer_id))

    def count(self) -> int:
        return int(self.session.execute(select(func.count(Customer.id))).scalar_one())

    def create(
        self,
        *,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        cpf: str | None = None,
        address: str | None = None,
    ) -> Customer:
        n = (name or "").strip()
        if not n:
            raise ValueError("Nome do cliente é obrigatório")
        row = Customer(
            name=n,
            email=_opt_text(email),
            phone=_opt_text(phone),
            cpf=_opt_text(cpf),
            address=_opt_text(address),
        )
        self.session.add(row)
        self.session.flush()
        return row

    def update(self, customer_id: int, **fields) -> Customer:
        row = self.get(customer_id)
        if row is None:
            raise ValueError("Cliente não encontrado")
        if "name" in fields:
            n = (fields["name"] or "").strip()
            if not n:
                raise ValueError("Nome do cliente é obrigatório")
            row.name = n
        for name in ("email", "phone", "cpf", "address"):
            if name in fields:
                setattr(row, name, _opt_text(fields[name]))
        self.session.flush()
        return row

    def delete(self, customer_id: int) -> bool:
        row = self.get(customer_id)
        if row is None:
            return False
        self.session.delete(row)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ValueError("Cliente não pode ser excluído") from e
        return True


class SalesRepo:
    def __init__(self, session: Session):
        self.session = session

    def create_sale(
        self,
        *,
        lines: list[dict],
        total: Decimal,
        payment_method: str = "cash",
        customer_id: int | None = None,
        notes: str | None = None,
        status: str = "completed",
    ) -> Sale:
        sale = Sale(
            customer_id=customer_id,
            total_amount=total,
            payment_method=(payment_method or "cash"),
            status=status,
            notes=_opt_text(notes),
            created_at=datetime.utcnow(),
        )
        for ln in lines:
            sale.items.append(
                SaleItem(
                    book_id=int(ln["book_id"]),
                    quantity=int(ln["quantity"]),
                    unit_price=ln["unit_price"],
                    subtotal=ln["subtotal"],
                )
            )
        self.session.add(sale)
        self.session.flush()
        return sale

    def get(self, sale_id: int) -> Sale | None:
        stmt = (
            select(Sale)
            .options(selectinload(Sale.items).selectinload(SaleItem.book), selectinload(Sale.customer))
            .where(Sale.id == int(sale_id))
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_sales_summary(self, limit: int = 200) -> list[dict]:
        lim = max(1, min(int(limit or 200), 500))
        stmt = (
            select(
                Sale.id,
                Sale.created_at,
                Sale.total_amount,
                Sale.payment_method,
                Sale.status,
                Customer.name,
                func.coalesce(func.count(SaleItem.id), 0),
            )
            .select_from(Sale)
            .outerjoin(Customer, Customer.id == Sale.customer_id)
            .outerjoin(SaleItem, SaleItem.sale_id == Sale.id)
            .group_by(Sale.id, Customer.name)
            .order_by(Sale.created_at.desc(), Sale.id.desc())
            .limit(lim)
        )
        out: list[dict] = []
        for sale_id, created_at, total, pm, status, customer_name, items in self.session.execute(stmt).all():
            out.append(
                {
                    "id": int(sale_id),
                    "created_at": created_at,
                    "total_amount": money(total),
                    "payment_method": str(pm or "cash"),
                    "status": str(status or "completed"),
                    "customer_name": customer_name,
                    "items": int(items),
                }
            )
        return out

    def count(self) -> int:
        return int(self.session.execute(select(func.count(Sale.id))).scalar_one())

    def total_sold(self) -> Decimal:
        v = self.session.execute(select(func.coalesce(func.sum(Sale.total_amount), 0))).scalar_one()
        return money(v)

    def sales_since(self, start: datetime) -> list[tuple[datetime, Decimal]]:
        stmt = (
            select(Sale.created_at, Sale.total_amount)
            .where(Sale.created_at >= start)
            .order_by(Sale.created_at.asc())
        )
        return [(created_at, money(total)) for created_at, total in self.session.execute(stmt).all()]

    def total_sold_by_day(self, start: datetime) -> list[tuple[date, Decimal]]:
        stmt = (
            select(func.date(Sale.created_at), func.coalesce(func.sum(Sale.total_amount), 0))
            .where(Sale.created_at >= start)
            .group_by(func.date(Sale.created_at))
            .order_by(func.date(Sale.created_at).asc())
        )
        out: list[tuple[date, Decimal]] = []
        for d, total in self.session.execute(stmt).all():
            day = d if isinstance(d, date) else date.fromisoformat(str(d))
            out.append((day, money(total)))
        return out

    def top_books(self, start: datetime, limit: int = 10) -> list[TopBook]:
        revenue = func.coalesce(func.sum(SaleItem.subtotal), 0)
        stmt = (
            select(
                SaleItem.book_id,
                Book.title,
                Book.author,
                func.coalesce(func.sum(SaleItem.quantity), 0),
                revenue,
            )
            .join(Sale, Sale.id == SaleItem.sale_id)
            .join(Book, Book.id == SaleItem.book_id)
            .where(Sale.created_at >= start)
            .group_by(SaleItem.book_id, Book.title, Book.author)
            .order_by(revenue.desc())
            .limit(int(limit))
        )
        out: list[TopBook] = []
        for book_id, title, author, qty, total in self.session.execute(stmt).all():
            out.append(
                TopBook(
                    book_id=int(book_id),
                    title=str(title),
                    author=str(author),
                    quantity=int(qty),
                    revenue=money(total),
                )
            )
        return out
