from __future__ import annotations

from io import BytesIO

from flask import Flask, Response, jsonify, request, send_file

from livraria.excel_template import TEMPLATE_FILENAME, template_bytes
from livraria.settings import Settings
from livraria.ui.web_backend import WebBackend

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def create_app(session_factory, settings: Settings, *, backend: WebBackend | None = None) -> Flask:
    backend = backend or WebBackend(session_factory=session_factory, settings=settings)

    app = Flask(__name__, static_folder=None)

    def _ok(payload, status: int = 200):
        return jsonify(payload), status

    def _result(payload: dict, error_status: int = 400):
        # Backend dicts carry their own ok flag; map failures to a 4xx code.
        return _ok(payload, 200 if payload.get("ok") else error_status)

    @app.get("/health")
    def health() -> Response:
        return jsonify({"ok": True, "app": settings.APP_NAME})

    @app.get("/api/app-info")
    def api_app_info():
        return _ok(backend.get_app_info())

    # --- Books ---
    @app.get("/api/books")
    def api_list_books():
        return _ok(backend.list_books(request.args.get("q", ""), request.args.get("limit", 500, type=int)))

    @app.get("/api/books/in-stock")
    def api_books_in_stock():
        return _ok(backend.list_books_in_stock())

    @app.post("/api/books")
    def api_create_book():
        return _result(backend.create_book(request.get_json(silent=True) or {}))

    @app.get("/api/books/<int:book_id>")
    def api_get_book(book_id: int):
        return _result(backend.get_book(book_id), 404)

    @app.put("/api/books/<int:book_id>")
    def api_update_book(book_id: int):
        return _result(backend.update_book(book_id, request.get_json(silent=True) or {}))

    @app.delete("/api/books/<int:book_id>")
    def api_delete_book(book_id: int):
        return _result(backend.delete_book(book_id))

    # --- Categories ---
    @app.get("/api/categories")
    def api_list_categories():
        return _ok(backend.list_categories())

    @app.post("/api/categories")
    def api_create_category():
        data = request.get_json(silent=True) or {}
        return _result(backend.create_category(data.get("name", ""), data.get("description")))

    @app.put("/api/categories/<int:category_id>")
    def api_update_category(category_id: int):
        data = request.get_json(silent=True) or {}
        return _result(backend.update_category(category_id, data.get("name", ""), data.get("description")))

    @app.delete("/api/categories/<int:category_id>")
    def api_delete_category(category_id: int):
        return _result(backend.delete_category(category_id), 404)

    # --- Customers ---
    @app.get("/api/customers")
    def api_list_customers():
        return _ok(backend.list_customers(request.args.get("q", "")))

    @app.post("/api/customers")
    def api_create_customer():
        return _result(backend.create_customer(request.get_json(silent=True) or {}))

    @app.put("/api/customers/<int:customer_id>")
    def api_update_customer(customer_id: int):
        return _result(backend.update_customer(customer_id, request.get_json(silent=True) or {}))

    @app.delete("/api/customers/<int:customer_id>")
    def api_delete_customer(customer_id: int):
        return _result(backend.delete_customer(customer_id))

    # --- Sales ---
    @app.post("/api/checkout")
    def api_checkout():
        data = request.get_json(silent=True) or {}
        return _result(
            backend.checkout(
                data.get("lines"),
                customer_id=data.get("customer_id"),
                payment_method=data.get("payment_method", "cash"),
                notes=data.get("notes"),
            )
        )

    @app.get("/api/sales")
    def api_list_sales():
        return _ok(backend.list_sales(request.args.get("limit", 200, type=int)))

    @app.get("/api/sales/<int:sale_id>")
    def api_get_sale(sale_id: int):
        return _result(backend.get_sale(sale_id), 404)

    # --- Reports ---
    @app.get("/api/dashboard")
    def api_dashboard():
        return _ok(backend.get_dashboard())

    @app.get("/api/reports")
    def api_reports():
        return _result(backend.get_report(request.args.get("period", "month")))

    # --- Spreadsheet import ---
    @app.post("/api/import/preview")
    def api_import_preview():
        f = request.files.get("file")
        if f is None or not f.filename:
            return _ok({"ok": False, "error": "Arquivo inválido"}, 400)
        # Read into memory: openpyxl needs a seekable stream.
        return _ok(backend.preview_import(BytesIO(f.read())))

    @app.post("/api/import/commit")
    def api_import_commit():
        data = request.get_json(silent=True) or {}
        return _result(backend.commit_import(data.get("books") or []))

    @app.get("/api/import/template")
    def api_import_template():
        return send_file(
            BytesIO(template_bytes()),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=TEMPLATE_FILENAME,
        )

    # --- ISBN lookup ---
    @app.get("/api/isbn/<path:isbn>")
    def api_lookup_isbn(isbn: str):
        res = backend.lookup_isbn(isbn)
        if res.get("ok"):
            return _ok(res)
        status = {"InvalidIsbnError": 400, "LookupConfigError": 409, "BookNotFoundError": 404}.get(res.get("kind"), 400)
        return _ok(res, status)

    # --- Settings ---
    @app.get("/api/settings/apify")
    def api_apify_status():
        return _ok(backend.get_apify_status())

    @app.post("/api/settings/apify")
    def api_save_apify_token():
        data = request.get_json(silent=True) or {}
        return _result(backend.save_apify_token(data.get("token", "")))

    @app.delete("/api/settings/apify")
    def api_remove_apify_token():
        return _ok(backend.remove_apify_token())

    return app
