from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import Workbook

from livraria.db import create_engine_from_url, init_db, make_session_factory
from livraria.settings import Settings


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        INSTANCE_DIR=tmp_path,
        DATABASE_URL=f"sqlite:///{(tmp_path / 'test.sqlite').as_posix()}",
        GOOGLE_BOOKS_ENABLED=True,
        GOOGLE_BOOKS_API_KEY="",
        APIFY_API_TOKEN="",
        APIFY_POLL_INTERVAL_SECONDS=3.0,
        APIFY_MAX_ATTEMPTS=30,
    )


@pytest.fixture()
def session_factory(settings: Settings):
    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def make_xlsx(tmp_path: Path):
    """Write rows (first one is the header) to a one-sheet workbook and return its path."""

    def _make(rows: list[list], name: str = "livros.xlsx") -> Path:
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        p = tmp_path / name
        wb.save(p)
        return p

    return _make
