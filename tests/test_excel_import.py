from io import BytesIO

import pytest

from livraria.excel_import import (
    EMPTY_SHEET_ERROR,
    NO_VALID_BOOKS_ERROR,
    ExcelImporter,
    ImportedBook,
    parse_excel_file,
    parse_number,
    parse_stock,
    parse_year,
)
from livraria.excel_template import EXAMPLE_ROW, HEADERS, template_bytes, write_template


def test_parse_number_accepts_comma_decimal() -> None:
    assert parse_number("49,90") == pytest.approx(49.90)
    assert parse_number("49.90") == pytest.approx(49.90)
    assert parse_number(12) == 12.0


def test_parse_number_returns_none_for_garbage() -> None:
    assert parse_number("abc") is None
    assert parse_number("") is None
    assert parse_number(None) is None
    assert parse_number("nan") is None


def test_parse_year_range() -> None:
    assert parse_year(1899) == 1899
    assert parse_year(999) is None
    assert parse_year(2023) == 2023
    assert parse_year("2023") == 2023
    assert parse_year(2101) is None
    assert parse_year("abc") is None


def test_parse_stock_is_floored() -> None:
    assert parse_stock("10,7") == 10
    assert parse_stock(3) == 3
    assert parse_stock("x") is None


def test_three_row_sheet_scenario(make_xlsx) -> None:
    path = make_xlsx(
        [
            ["Título", "Autor"],
            ["A", "X"],
            ["", ""],
            ["B", ""],
        ]
    )

    res = parse_excel_file(path)

    assert res.success == 1
    assert res.failed == 1
    assert res.books == [ImportedBook(titulo="A", autor="X")]
    assert len(res.errors) == 1
    assert "Autor obrigatório não encontrado" in res.errors[0]


def test_missing_title_reports_row_number(make_xlsx) -> None:
    path = make_xlsx(
        [
            ["Título", "Autor"],
            ["Dom Casmurro", "Machado de Assis"],
            ["", "Clarice Lispector"],
        ]
    )

    res = parse_excel_file(path)

    assert res.success == 1
    assert res.failed == 1
    assert res.errors == ["Linha 3: Título obrigatório não encontrado"]


def test_no_valid_books_appends_summary_error(make_xlsx) -> None:
    path = make_xlsx([["Título", "Autor"], ["", "Alguém"], ["Sem autor", ""]])

    res = parse_excel_file(path)

    assert res.success == 0
    assert res.failed == 2
    assert res.books == []
    assert res.errors[-1] == NO_VALID_BOOKS_ERROR
    assert len(res.errors) == 3


def test_header_only_sheet_is_empty(make_xlsx) -> None:
    path = make_xlsx([["Título", "Autor"]])

    res = parse_excel_file(path)

    assert res.errors == [EMPTY_SHEET_ERROR]
    assert res.success == 0
    assert res.failed == 0


def test_corrupt_file_is_a_single_error() -> None:
    res = parse_excel_file(BytesIO(b"isto nao e uma planilha"))

    assert len(res.errors) == 1
    assert res.errors[0].startswith("Erro ao processar arquivo:")
    assert res.books == []
    assert res.success == 0


def test_english_headers_and_optional_fields(make_xlsx) -> None:
    path = make_xlsx(
        [
            ["Title", "Author", "ISBN", "Publisher", "Year", "Price", "Stock", "Category", "Description"],
            ["Memórias Póstumas", "Machado de Assis", 9788535902773, "Penguin", 1881, "39,90", "7", "Clássicos", "  "],
        ]
    )

    res = parse_excel_file(path)

    assert res.success == 1
    book = res.books[0]
    assert book.titulo == "Memórias Póstumas"
    assert book.isbn == "9788535902773"
    assert book.editora == "Penguin"
    assert book.ano == 1881
    assert book.preco == pytest.approx(39.90)
    assert book.estoque == 7
    assert book.categoria == "Clássicos"
    assert book.descricao is None


def test_blank_alias_falls_through_to_next_one(make_xlsx) -> None:
    path = make_xlsx([["Título", "Title", "Autor"], ["", "Grande Sertão", "Guimarães Rosa"]])

    res = parse_excel_file(path)

    assert res.books[0].titulo == "Grande Sertão"


def test_unparsable_numbers_stay_none(make_xlsx) -> None:
    path = make_xlsx([["Título", "Autor", "Preço", "Ano", "Estoque"], ["Livro", "Autor", "caro", 1500.5, "muito"]])

    book = parse_excel_file(path).books[0]

    assert book.preco is None
    assert book.ano == 1500
    assert book.estoque is None


def test_row_exception_does_not_abort_batch(make_xlsx, monkeypatch) -> None:
    path = make_xlsx([["Título", "Autor"], ["A", "X"], ["B", "Y"], ["C", "Z"]])
    original = ExcelImporter._build_book

    def flaky(self, row):
        if row.get("Título") == "B":
            raise RuntimeError("célula corrompida")
        return original(self, row)

    monkeypatch.setattr(ExcelImporter, "_build_book", flaky)

    res = parse_excel_file(path)

    assert [b.titulo for b in res.books] == ["A", "C"]
    assert res.success == 2
    assert res.failed == 1
    assert res.errors == ["Linha 3: célula corrompida"]


def test_only_first_sheet_is_read(tmp_path) -> None:
    from openpyxl import Workbook

    wb = Workbook()
    wb.active.append(["Título", "Autor"])
    wb.active.append(["Primeira", "Aba"])
    other = wb.create_sheet("Outra")
    other.append(["Título", "Autor"])
    other.append(["Segunda", "Aba"])
    p = tmp_path / "duas_abas.xlsx"
    wb.save(p)

    res = parse_excel_file(p)

    assert [b.titulo for b in res.books] == ["Primeira"]


def test_template_is_importable(tmp_path) -> None:
    path = write_template(tmp_path / "modelo.xlsx")

    res = parse_excel_file(path)

    assert res.success == 1
    book = res.books[0]
    assert book.titulo == EXAMPLE_ROW[0]
    assert book.isbn == "9788535902773"
    assert book.preco == pytest.approx(49.90)
    assert book.estoque == 10
    assert book.categoria == "Ficção"


def test_template_bytes_has_expected_header() -> None:
    from openpyxl import load_workbook

    wb = load_workbook(BytesIO(template_bytes()))

    assert wb.sheetnames == ["Livros"]
    assert [c.value for c in wb.active[1]] == HEADERS


def test_imported_book_from_dict_requires_title_and_author() -> None:
    with pytest.raises(ValueError, match="obrigatórios"):
        ImportedBook.from_dict({"titulo": "Só título"})

    book = ImportedBook.from_dict({"titulo": "T", "autor": "A", "preco": "10,50", "estoque": 2})
    assert book.preco == pytest.approx(10.5)
    assert book.estoque == 2


def test_blank_rows_do_not_shift_row_numbers(make_xlsx) -> None:
    path = make_xlsx([["Título", "Autor"], ["A", "X"], [None, None], ["", "Y"]])

    res = parse_excel_file(path)

    assert res.errors == ["Linha 3: Título obrigatório não encontrado"]
    assert res.success == 1
