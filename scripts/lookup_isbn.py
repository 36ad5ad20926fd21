from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from livraria.db import create_engine_from_url, init_db, make_session_factory
from livraria.isbn_lookup import LookupFailure, build_resolver
from livraria.settings import Settings


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Busca dados de um livro pelo ISBN")
    p.add_argument("isbn")
    args = p.parse_args(argv)

    settings = Settings()
    logging.basicConfig(level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO))
    settings.ensure_instance()

    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    resolver = build_resolver(settings, make_session_factory(engine))

    try:
        report = resolver.resolve_with_report(args.isbn)
    except LookupFailure as e:
        print("Erro:", e)
        return 2

    for attempt in report.attempts:
        print(f"  {attempt.source}: {attempt.status.value} {attempt.detail}".rstrip())
    if report.book is None:
        print("Livro não encontrado.")
        return 1

    print(json.dumps(report.book.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
