from __future__ import annotations

from decimal import Decimal

import pytest

from livraria.credentials import APIFY_TOKEN_KEY, LocalSettingsStore, apify_token_providers, resolve_token
from livraria.db import session_scope
from livraria.repos import BookRepo, CategoryRepo, CustomerRepo, money
from livraria.services import PosService
from livraria.settings import Settings


def test_money_rounds_half_up() -> None:
    assert money("10.005") == Decimal("10.01")
    assert money(None) == Decimal("0.00")
    assert money(49.9) == Decimal("49.90")


def test_book_validation(session_factory) -> None:
    with session_scope(session_factory) as s:
        repo = BookRepo(s)
        with pytest.raises(ValueError, match="Título é obrigatório"):
            repo.create(title=" ", author="A")
        with pytest.raises(ValueError, match="Estoque inválido"):
            repo.create(title="T", author="A", stock_quantity=-1)
        with pytest.raises(ValueError, match="Ano de publicação inválido"):
            repo.create(title="T", author="A", publication_year=999)


def test_book_search_and_update(session_factory) -> None:
    with session_scope(session_factory) as s:
        repo = BookRepo(s)
        book = repo.create(title="O Cortiço", author="Aluísio Azevedo", price=20)
        repo.create(title="Iracema", author="José de Alencar")

        assert [b.title for b in repo.list(q="cortiço")] == ["O Cortiço"]
        assert [b.title for b in repo.list(q="alencar")] == ["Iracema"]

        repo.update(book.id, price="35.5", stock_quantity=4, isbn=" ")
        assert book.price == Decimal("35.50")
        assert book.stock_quantity == 4
        assert book.isbn is None
        assert [b.title for b in repo.list_in_stock()] == ["O Cortiço"]


def test_get_by_isbn_ignores_formatting(session_factory) -> None:
    with session_scope(session_factory) as s:
        repo = BookRepo(s)
        repo.create(title="Com hífens", author="A", isbn="978-85-359-0277-3")
        repo.create(title="ISBN-10", author="B", isbn="0-8044-2957-x")

        assert repo.get_by_isbn("9788535902773").title == "Com hífens"
        assert repo.get_by_isbn("080442957X").title == "ISBN-10"
        assert repo.get_by_isbn("9780000000000") is None


def test_book_with_sales_cannot_be_deleted(session_factory) -> None:
    with session_scope(session_factory) as s:
        book_id = BookRepo(s).create(title="Vendido", author="A", stock_quantity=1).id
        assert PosService(s).checkout({book_id: 1}).ok

    with session_scope(session_factory) as s:
        with pytest.raises(ValueError, match="vendas registradas"):
            BookRepo(s).delete(book_id)


def test_category_rules(session_factory) -> None:
    with session_scope(session_factory) as s:
        cats = CategoryRepo(s)
        ficcao = cats.create("Ficção")
        with pytest.raises(ValueError, match="já existe"):
            cats.create("FICÇÃO")
        assert cats.get_or_create("ficção").id == ficcao.id

        book = BookRepo(s).create(title="T", author="A", category_id=ficcao.id)
        assert cats.delete(ficcao.id)
        assert book.category_id is None


def test_customer_crud(session_factory) -> None:
    with session_scope(session_factory) as s:
        repo = CustomerRepo(s)
        c = repo.create(name="Bruno", email="bruno@example.com")
        repo.update(c.id, phone="(11) 99999-0000", email="")
        assert c.email is None
        assert [x.name for x in repo.list(q="BRU")] == ["Bruno"]
        with pytest.raises(ValueError, match="obrigatório"):
            repo.create(name="")
        assert repo.delete(c.id)
        assert repo.count() == 0


def test_local_settings_store_roundtrip(tmp_path) -> None:
    store = LocalSettingsStore(tmp_path / "cfg" / "settings.json")

    assert store.get(APIFY_TOKEN_KEY) is None
    store.set(APIFY_TOKEN_KEY, "abc")
    assert store.get(APIFY_TOKEN_KEY) == "abc"
    assert store.remove(APIFY_TOKEN_KEY)
    assert not store.remove(APIFY_TOKEN_KEY)


def test_unreadable_settings_file_is_empty(tmp_path) -> None:
    p = tmp_path / "settings.json"
    p.write_text("{not json", encoding="utf-8")

    assert LocalSettingsStore(p).get(APIFY_TOKEN_KEY) is None


def test_saved_token_wins_over_environment(tmp_path) -> None:
    settings = Settings(INSTANCE_DIR=tmp_path, APIFY_API_TOKEN="from-env")
    store = LocalSettingsStore(settings.local_settings_path)

    assert resolve_token(apify_token_providers(settings, store)) == "from-env"
    store.set(APIFY_TOKEN_KEY, "  saved  ")
    assert resolve_token(apify_token_providers(settings, store)) == "saved"


def test_default_database_lives_in_instance_dir(tmp_path) -> None:
    settings = Settings(INSTANCE_DIR=tmp_path, DATABASE_URL="")

    assert settings.DATABASE_URL == f"sqlite:///{(tmp_path / 'livraria.sqlite').resolve().as_posix()}"
