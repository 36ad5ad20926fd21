from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from livraria.bulk_import import BulkBookImporter
from livraria.db import create_engine_from_url, init_db, make_session_factory
from livraria.excel_import import parse_excel_file
from livraria.excel_template import write_template
from livraria.settings import Settings


def _progress(current: int, total: int) -> None:
    print(f"\rImportando {current}/{total}...", end="", flush=True)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Importa livros de uma planilha Excel")
    p.add_argument("xlsx", nargs="?", help="Planilha .xlsx (primeira aba, primeira linha = cabeçalho)")
    p.add_argument("--dry-run", action="store_true", help="Só valida a planilha, sem gravar")
    p.add_argument("--template", metavar="PATH", help="Gera a planilha modelo neste caminho e sai")
    args = p.parse_args(argv)

    settings = Settings()
    logging.basicConfig(level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO))

    if args.template:
        print("Modelo gerado:", write_template(Path(args.template)))
        return 0
    if not args.xlsx:
        p.error("informe a planilha ou --template")

    xlsx = Path(args.xlsx)
    if not xlsx.is_absolute():
        xlsx = xlsx.resolve()

    parsed = parse_excel_file(xlsx)
    for err in parsed.errors:
        print("  -", err)
    print(f"válidos {parsed.success} com erro {parsed.failed}")
    if args.dry_run or not parsed.books:
        return 0 if parsed.books else 1

    settings.ensure_instance()
    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    sf = make_session_factory(engine)

    res = BulkBookImporter(sf, on_progress=_progress).commit(parsed.books)
    print()
    for msg in res.messages:
        print("  -", msg)
    print("importados", res.success, "erros", res.errors)
    return 0 if res.errors == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
