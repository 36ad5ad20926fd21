from __future__ import annotations

from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from livraria.isbn_lookup import CatalogSource, IsbnResolver
from livraria.ui.web_backend import WebBackend
from livraria.ui.web_server import create_app


@pytest.fixture()
def client(session_factory, settings):
    backend = WebBackend(session_factory, settings, resolver=IsbnResolver([CatalogSource(session_factory)]))
    app = create_app(session_factory, settings, backend=backend)
    app.config.update(TESTING=True)
    return app.test_client()


def _xlsx_bytes(rows: list[list]) -> BytesIO:
    wb = Workbook()
    for row in rows:
        wb.active.append(row)
    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


def test_health(client) -> None:
    r = client.get("/health")

    assert r.status_code == 200
    assert r.get_json()["ok"] is True


def test_book_crud(client) -> None:
    r = client.post("/api/categories", json={"name": "Poesia"})
    cat_id = r.get_json()["category"]["id"]

    r = client.post(
        "/api/books",
        json={"title": "Alguma Poesia", "author": "Drummond", "price": "19,90", "category_id": cat_id},
    )
    assert r.status_code == 400
    assert r.get_json()["error"] == "Preço inválido"

    r = client.post(
        "/api/books",
        json={"title": "Alguma Poesia", "author": "Drummond", "price": 19.9, "stock_quantity": 3, "category_id": cat_id},
    )
    assert r.status_code == 200
    book = r.get_json()["book"]
    assert book["category"] == "Poesia"
    assert book["price"] == pytest.approx(19.9)

    r = client.put(f"/api/books/{book['id']}", json={"stock_quantity": 7})
    assert r.get_json()["book"]["stock_quantity"] == 7

    assert [b["title"] for b in client.get("/api/books?q=poesia").get_json()] == ["Alguma Poesia"]

    assert client.delete(f"/api/books/{book['id']}").status_code == 200
    assert client.get(f"/api/books/{book['id']}").status_code == 404


def test_create_book_without_title(client) -> None:
    r = client.post("/api/books", json={"author": "Alguém"})

    assert r.status_code == 400
    assert r.get_json()["error"] == "Título é obrigatório"


def test_checkout_and_reports(client) -> None:
    book = client.post("/api/books", json={"title": "Capitães da Areia", "author": "Jorge Amado", "price": 40, "stock_quantity": 2}).get_json()["book"]

    r = client.post("/api/checkout", json={"lines": [{"book_id": book["id"], "quantity": 3}]})
    assert r.status_code == 400
    assert r.get_json()["details"][0]["available"] == 2

    r = client.post("/api/checkout", json={"lines": [{"book_id": book["id"], "quantity": 2}], "payment_method": "debit_card"})
    assert r.status_code == 200
    sale_id = r.get_json()["sale_id"]
    assert r.get_json()["total"] == pytest.approx(80.0)

    sale = client.get(f"/api/sales/{sale_id}").get_json()["sale"]
    assert sale["items"][0]["title"] == "Capitães da Areia"
    assert client.get("/api/books/in-stock").get_json() == []

    dash = client.get("/api/dashboard").get_json()
    assert dash["total_sales"] == 1
    assert dash["total_revenue"] == pytest.approx(80.0)

    report = client.get("/api/reports?period=week").get_json()
    assert report["top_books"][0]["quantity"] == 2
    assert client.get("/api/reports?period=decade").status_code == 400


def test_import_preview_and_commit(client) -> None:
    upload = _xlsx_bytes([["Título", "Autor", "Preço", "Categoria"], ["Quincas Borba", "Machado de Assis", "35,00", "Clássicos"], ["", "Sem título"]])

    r = client.post(
        "/api/import/preview",
        data={"file": (upload, "livros.xlsx")},
        content_type="multipart/form-data",
    )
    preview = r.get_json()
    assert preview["success"] == 1
    assert preview["failed"] == 1
    assert preview["errors"] == ["Linha 3: Título obrigatório não encontrado"]

    r = client.post("/api/import/commit", json={"books": preview["books"]})
    body = r.get_json()
    assert r.status_code == 200
    assert body["success"] == 1
    assert [b["title"] for b in body["books"]] == ["Quincas Borba"]
    assert [c["name"] for c in body["categories"]] == ["Clássicos"]


def test_import_preview_requires_file(client) -> None:
    r = client.post("/api/import/preview", data={}, content_type="multipart/form-data")

    assert r.status_code == 400


def test_template_download(client) -> None:
    r = client.get("/api/import/template")

    assert r.status_code == 200
    assert "template_cadastro_livros.xlsx" in r.headers["Content-Disposition"]
    wb = load_workbook(BytesIO(r.data))
    assert wb.active["A1"].value == "Título"


def test_isbn_lookup_status_codes(client) -> None:
    assert client.get("/api/isbn/123").status_code == 400

    r = client.get("/api/isbn/978-85-359-0277-3")
    assert r.status_code == 404
    assert r.get_json()["error"] == "Livro não encontrado."

    client.post("/api/books", json={"title": "Dom Casmurro", "author": "Machado de Assis", "isbn": "9788535902773"})
    r = client.get("/api/isbn/978-85-359-0277-3")
    assert r.status_code == 200
    assert r.get_json()["book"]["source"] == "catalog"


def test_apify_token_settings(client, settings) -> None:
    assert client.get("/api/settings/apify").get_json()["status"] == "inactive"

    assert client.post("/api/settings/apify", json={"token": ""}).status_code == 400
    r = client.post("/api/settings/apify", json={"token": "apify_api_x"})
    assert r.get_json()["status"] == "active"
    assert settings.local_settings_path.exists()

    status = client.delete("/api/settings/apify").get_json()
    assert status["status"] == "inactive"
    assert status["saved_locally"] is False


def test_book_with_unknown_category_is_rejected(client) -> None:
    r = client.post("/api/books", json={"title": "T", "author": "A", "category_id": 999})

    assert r.status_code == 400
    assert r.get_json()["error"] == "Categoria não encontrada"

    book = client.post("/api/books", json={"title": "T", "author": "A"}).get_json()["book"]
    r = client.put(f"/api/books/{book['id']}", json={"category_id": 999})
    assert r.status_code == 400
    assert r.get_json()["error"] == "Categoria não encontrada"


@pytest.mark.parametrize("price", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_price_is_rejected(client, price) -> None:
    r = client.post("/api/books", json={"title": "T", "author": "A", "price": price})

    assert r.status_code == 400
    assert r.get_json()["error"] == "Preço inválido"
