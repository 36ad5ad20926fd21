from __future__ import annotations

from io import BytesIO
from pathlib import Path

from openpyxl import Workbook

TEMPLATE_FILENAME = "template_cadastro_livros.xlsx"
TEMPLATE_SHEET = "Livros"

HEADERS = ["Título", "Autor", "ISBN", "Editora", "Ano", "Preço", "Estoque", "Categoria", "Descrição"]

EXAMPLE_ROW = [
    "Exemplo de Livro",
    "Nome do Autor",
    "9788535902773",
    "Nome da Editora",
    2023,
    49.90,
    10,
    "Ficção",
    "Descrição do livro",
]


def build_template() -> Workbook:
    """Single-sheet workbook with the header row the importer understands plus one example."""
    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET

    for c, h in enumerate(HEADERS, start=1):
        ws.cell(row=1, column=c, value=h)
    for c, v in enumerate(EXAMPLE_ROW, start=1):
        ws.cell(row=2, column=c, value=v)

    # ISBN as text so spreadsheet apps don't turn it into 9.78854E+12.
    ws.cell(row=2, column=3).number_format = "@"
    return wb


def write_template(xlsx_path: Path) -> Path:
    p = Path(xlsx_path).expanduser().resolve()
    if p.suffix.lower() != ".xlsx":
        raise RuntimeError("O arquivo deve ser .xlsx")
    p.parent.mkdir(parents=True, exist_ok=True)
    build_template().save(p)
    return p


def template_bytes() -> bytes:
    buf = BytesIO()
    build_template().save(buf)
    return buf.getvalue()
