from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from livraria.db import session_scope
from livraria.excel_import import ImportedBook
from livraria.repos import BookRepo, CategoryRepo

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class CommitResult:
    success: int = 0
    errors: int = 0
    messages: list[str] = field(default_factory=list)
    book_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": int(self.success),
            "errors": int(self.errors),
            "messages": list(self.messages),
            "book_ids": list(self.book_ids),
        }


class BulkBookImporter:
    """Persists imported books one at a time.

    Rows are processed strictly in order so progress (current/total) is
    meaningful and two rows never race to create the same category. Each row
    runs in its own transaction: a failed insert rolls back only that row.
    Books are not deduplicated; running the same import twice creates
    duplicates. Categories are matched by name, so they are reused.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        on_progress: ProgressCallback | None = None,
        on_finish: Callable[[CommitResult], None] | None = None,
    ):
        self._session_factory = session_factory
        self._on_progress = on_progress
        self._on_finish = on_finish

    def _resolve_category(self, name: str | None) -> int | None:
        n = (name or "").strip()
        if not n:
            return None
        try:
            with session_scope(self._session_factory) as session:
                return CategoryRepo(session).get_or_create(n).id
        except Exception as e:
            logger.warning("Falha ao resolver categoria '%s': %s", n, e)
            return None

    def _insert(self, book: ImportedBook, category_id: int | None) -> int:
        with session_scope(self._session_factory) as session:
            row = BookRepo(session).create(
                title=book.titulo,
                author=book.autor,
                isbn=book.isbn,
                category_id=category_id,
                price=book.preco if book.preco is not None else 0,
                stock_quantity=book.estoque if book.estoque is not None else 0,
                description=book.descricao,
                publisher=book.editora,
                publication_year=book.ano,
            )
            return int(row.id)

    def commit(self, books: list[ImportedBook]) -> CommitResult:
        result = CommitResult()
        total = len(books)

        for idx, book in enumerate(books, start=1):
            if self._on_progress is not None:
                self._on_progress(idx, total)

            category_id = self._resolve_category(book.categoria)
            try:
                result.book_ids.append(self._insert(book, category_id))
                result.success += 1
            except Exception as e:
                result.errors += 1
                result.messages.append(f"Livro {idx} ({book.titulo}): {e}")
                logger.warning("Falha ao importar livro %s/%s '%s': %s", idx, total, book.titulo, e)

        logger.info("Importação concluída: %s livros importados, %s com erro", result.success, result.errors)
        if self._on_finish is not None:
            self._on_finish(result)
        return result
