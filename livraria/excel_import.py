from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, BinaryIO

from openpyxl import load_workbook

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportedBook:
    """One validated spreadsheet row. Never persisted as-is."""

    titulo: str
    autor: str
    isbn: str | None = None
    editora: str | None = None
    ano: int | None = None
    preco: float | None = None
    estoque: int | None = None
    categoria: str | None = None
    descricao: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ImportedBook":
        """Rebuild a record sent back by the client (e.g. after previewing an import)."""
        titulo = cell_text(data.get("titulo"))
        autor = cell_text(data.get("autor"))
        if not titulo or not autor:
            raise ValueError("Título e autor são obrigatórios")
        return cls(
            titulo=titulo,
            autor=autor,
            isbn=cell_text(data.get("isbn")) or None,
            editora=cell_text(data.get("editora")) or None,
            ano=parse_year(data.get("ano")),
            preco=parse_number(data.get("preco")),
            estoque=parse_stock(data.get("estoque")),
            categoria=cell_text(data.get("categoria")) or None,
            descricao=cell_text(data.get("descricao")) or None,
        )


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    books: list[ImportedBook] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": int(self.success),
            "failed": int(self.failed),
            "errors": list(self.errors),
            "books": [b.to_dict() for b in self.books],
        }


# Probed in order; the first alias holding a non-empty value wins.
HEADER_ALIASES: dict[str, list[str]] = {
    "titulo": ["Título", "TÍTULO", "titulo", "Title", "TITLE"],
    "autor": ["Autor", "AUTOR", "autor", "Author", "AUTHOR"],
    "isbn": ["ISBN", "isbn", "Isbn"],
    "editora": ["Editora", "EDITORA", "editora", "Publisher", "PUBLISHER"],
    "categoria": ["Categoria", "CATEGORIA", "categoria", "Category", "CATEGORY"],
    "descricao": ["Descrição", "DESCRIÇÃO", "descrição", "Descricao", "Description", "DESCRIPTION"],
    "ano": ["Ano", "ANO", "ano", "Ano de Publicação", "Year", "YEAR"],
    "preco": ["Preço", "PREÇO", "preço", "Preco", "Price", "PRICE"],
    "estoque": ["Estoque", "ESTOQUE", "estoque", "Quantidade", "Stock", "STOCK"],
}

YEAR_MIN = 1000
YEAR_MAX = 2100

EMPTY_SHEET_ERROR = "Planilha vazia ou sem dados válidos"
NO_VALID_BOOKS_ERROR = "Nenhum livro válido encontrado na planilha"


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        # ISBNs and years typed as numbers come back as floats from some writers.
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_number(value: Any) -> float | None:
    """Number or numeric text (comma or dot decimal). None when unparsable."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    else:
        s = str(value).strip().replace(",", ".", 1)
        try:
            num = float(s)
        except ValueError:
            return None
    if not math.isfinite(num):
        return None
    return num


def parse_year(value: Any) -> int | None:
    num = parse_number(value)
    if num is None or num < YEAR_MIN or num > YEAR_MAX:
        return None
    return int(math.floor(num))


def parse_stock(value: Any) -> int | None:
    num = parse_number(value)
    if num is None:
        return None
    return int(math.floor(num))


class ExcelImporter:
    """Reads the first worksheet of a book spreadsheet into ImportedBook records.

    The first row is the header row; every following non-blank row is one book.
    Column names are matched through HEADER_ALIASES so Portuguese/English and
    upper/lower case headers all work.
    """

    def __init__(self, source: Path | str | BinaryIO):
        self.source = source

    def _open(self):
        src = self.source
        if isinstance(src, str):
            src = Path(src)
        # read_only=True avoids building cell objects for large sheets.
        return load_workbook(filename=src, data_only=True, read_only=True)

    def read_rows(self) -> list[tuple[int, dict[str, Any]]]:
        """Return (row number, header -> value) for each non-blank data row.

        Fully blank rows are not data rows; the n-th data row is numbered
        n + 1 (the header is row 1), whatever blank rows sit between them.
        """
        wb = self._open()
        try:
            if not wb.worksheets:
                return []
            ws = wb.worksheets[0]
            it = ws.iter_rows(values_only=True)
            header_vals = next(it, None)
            if header_vals is None:
                return []

            headers: list[str] = [cell_text(h) for h in header_vals]
            out: list[tuple[int, dict[str, Any]]] = []
            for vals in it:
                vals = list(vals or ())
                if not any(cell_text(v) for v in vals):
                    continue
                row_number = len(out) + 2
                row: dict[str, Any] = {}
                for idx, name in enumerate(headers):
                    if not name or name in row:
                        continue
                    v = vals[idx] if idx < len(vals) else None
                    row[name] = "" if v is None else v
                out.append((row_number, row))
            return out
        finally:
            wb.close()

    @staticmethod
    def _pick(row: dict[str, Any], field_name: str) -> Any:
        for alias in HEADER_ALIASES[field_name]:
            v = row.get(alias)
            if cell_text(v):
                return v
        return ""

    def _build_book(self, row: dict[str, Any]) -> ImportedBook:
        return ImportedBook(
            titulo=cell_text(self._pick(row, "titulo")),
            autor=cell_text(self._pick(row, "autor")),
            isbn=cell_text(self._pick(row, "isbn")) or None,
            editora=cell_text(self._pick(row, "editora")) or None,
            ano=parse_year(self._pick(row, "ano")),
            preco=parse_number(self._pick(row, "preco")),
            estoque=parse_stock(self._pick(row, "estoque")),
            categoria=cell_text(self._pick(row, "categoria")) or None,
            descricao=cell_text(self._pick(row, "descricao")) or None,
        )

    def parse(self) -> ImportResult:
        result = ImportResult()

        try:
            rows = self.read_rows()
        except Exception as e:
            logger.warning("Falha ao ler planilha: %s", e)
            return ImportResult(errors=[f"Erro ao processar arquivo: {str(e) or 'Erro desconhecido'}"])

        if not rows:
            result.errors.append(EMPTY_SHEET_ERROR)
            return result

        for row_number, row in rows:
            try:
                titulo = cell_text(self._pick(row, "titulo"))
                autor = cell_text(self._pick(row, "autor"))

                if not titulo and not autor:
                    continue
                if not titulo:
                    result.failed += 1
                    result.errors.append(f"Linha {row_number}: Título obrigatório não encontrado")
                    continue
                if not autor:
                    result.failed += 1
                    result.errors.append(f"Linha {row_number}: Autor obrigatório não encontrado")
                    continue

                result.books.append(self._build_book(row))
                result.success += 1
            except Exception as e:
                result.failed += 1
                result.errors.append(f"Linha {row_number}: {str(e) or 'Erro desconhecido'}")

        if not result.books:
            result.errors.append(NO_VALID_BOOKS_ERROR)

        logger.info(
            "Planilha processada: %s livros válidos, %s linhas com erro", result.success, result.failed
        )
        return result


def parse_excel_file(source: Path | str | BinaryIO) -> ImportResult:
    return ExcelImporter(source).parse()
