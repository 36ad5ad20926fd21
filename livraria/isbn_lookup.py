"""
Busca de dados de livros por ISBN.

Ordem de resolução:
1. Catálogo local (ISBN normalizado exato): responde sem acessar a rede.
2. Google Books (API pública, chave opcional).
3. Apify (robô de scraping da Amazon Brasil), somente se houver token.
   O job é assíncrono: submete, consulta o status em intervalo fixo até um
   número máximo de tentativas e então lê o dataset do resultado. Se o ISBN-13
   não retornar nada, repete a busca com o ISBN-10 equivalente.

Falhas de rede/API em uma fonte não abortam a busca: a fonte é marcada como
indisponível e a próxima é consultada.

Uso:
    from livraria.isbn_lookup import build_resolver

    resolver = build_resolver(settings, session_factory)
    book = resolver.resolve("978-85-359-0277-3")
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from livraria.credentials import LocalSettingsStore, TokenProvider, apify_token_providers, resolve_token
from livraria.db import session_scope
from livraria.isbn import is_valid_length, isbn13_to_isbn10, normalize_isbn
from livraria.models import Book
from livraria.repos import BookRepo
from livraria.settings import Settings

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Autor Desconhecido"
UNKNOWN_TITLE = "Título Desconhecido"

YEAR_MIN = 1000
YEAR_MAX = 2100


@dataclass(frozen=True)
class ExternalBookData:
    """Book metadata normalized from whichever source answered."""

    title: str
    author: str
    isbn: str
    description: str | None = None
    publisher: str | None = None
    publication_year: int | None = None
    price: float | None = None
    cover_image: str | None = None
    source: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class LookupFailure(Exception):
    pass


class InvalidIsbnError(LookupFailure):
    pass


class LookupConfigError(LookupFailure):
    pass


class BookNotFoundError(LookupFailure):
    pass


class SourceStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SourceResult:
    status: SourceStatus
    book: ExternalBookData | None = None
    detail: str = ""

    @classmethod
    def found(cls, book: ExternalBookData) -> "SourceResult":
        return cls(SourceStatus.FOUND, book=book)

    @classmethod
    def not_found(cls, detail: str = "") -> "SourceResult":
        return cls(SourceStatus.NOT_FOUND, detail=detail)

    @classmethod
    def unavailable(cls, detail: str) -> "SourceResult":
        return cls(SourceStatus.UNAVAILABLE, detail=detail)


@dataclass(frozen=True)
class LookupAttempt:
    source: str
    status: SourceStatus
    detail: str = ""


@dataclass
class LookupReport:
    isbn: str
    attempts: list[LookupAttempt] = field(default_factory=list)
    book: ExternalBookData | None = None


def _year_from_text(value: Any) -> int | None:
    m = re.match(r"\s*(\d{4})", str(value or "").split("-", 1)[0])
    if not m:
        return None
    year = int(m.group(1))
    return year if YEAR_MIN <= year <= YEAR_MAX else None


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# --- Catálogo local ---


class CatalogSource:
    name = "catalog"
    external = False
    configured = True

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @staticmethod
    def _to_data(book: Book, isbn: str) -> ExternalBookData:
        return ExternalBookData(
            title=book.title,
            author=book.author,
            isbn=isbn,
            description=book.description,
            publisher=book.publisher,
            publication_year=book.publication_year,
            price=float(book.price) if book.price is not None else None,
            cover_image=book.cover_image,
            source="catalog",
        )

    def lookup(self, isbn: str) -> SourceResult:
        try:
            with session_scope(self._session_factory) as session:
                row = BookRepo(session).get_by_isbn(isbn)
                if row is None:
                    return SourceResult.not_found()
                return SourceResult.found(self._to_data(row, isbn))
        except SQLAlchemyError as e:
            return SourceResult.unavailable(f"Catálogo local indisponível: {e}")


# --- Google Books ---


def parse_google_volume(item: dict, isbn: str) -> ExternalBookData:
    vi = item.get("volumeInfo") or {}
    authors = [str(a).strip() for a in (vi.get("authors") or []) if str(a).strip()]

    sale = item.get("saleInfo") or {}
    price = _float_or_none((sale.get("listPrice") or {}).get("amount"))
    if price is None:
        price = _float_or_none((sale.get("retailPrice") or {}).get("amount"))

    links = vi.get("imageLinks") or {}
    cover = links.get("thumbnail") or links.get("smallThumbnail")
    if cover:
        cover = str(cover).replace("http://", "https://")

    return ExternalBookData(
        title=str(vi.get("title") or "").strip() or UNKNOWN_TITLE,
        author=", ".join(authors) or UNKNOWN_AUTHOR,
        isbn=isbn,
        description=vi.get("description") or None,
        publisher=vi.get("publisher") or None,
        publication_year=_year_from_text(vi.get("publishedDate")),
        price=price,
        cover_image=cover or None,
        source="google_books",
    )


class GoogleBooksSource:
    name = "google_books"
    external = True
    URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(
        self,
        http: requests.Session,
        *,
        api_key: str = "",
        enabled: bool = True,
        timeout: float = 15,
    ):
        self._http = http
        self._api_key = (api_key or "").strip()
        self.configured = bool(enabled)
        self._timeout = timeout

    def lookup(self, isbn: str) -> SourceResult:
        params = {"q": f"isbn:{isbn}"}
        if self._api_key:
            params["key"] = self._api_key
        try:
            resp = self._http.get(self.URL, params=params, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json() or {}
        except (requests.RequestException, ValueError) as e:
            return SourceResult.unavailable(f"Google Books indisponível: {e}")
        if not isinstance(data, dict):
            return SourceResult.unavailable("Google Books: resposta em formato inesperado")

        items = data.get("items") or []
        if not items:
            return SourceResult.not_found("Google Books sem resultados")
        if not isinstance(items, list) or not isinstance(items[0], dict):
            return SourceResult.unavailable("Google Books: resposta em formato inesperado")
        return SourceResult.found(parse_google_volume(items[0], isbn))


# --- Apify (scraping da Amazon) ---


class JobState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED_OUT"


TERMINAL_STATES = {JobState.SUCCEEDED, JobState.FAILED, JobState.ABORTED, JobState.TIMED_OUT}

# Apify run statuses that end a run; READY/RUNNING/TIMING-OUT/ABORTING keep polling.
APIFY_TERMINAL_STATUS: dict[str, JobState] = {
    "SUCCEEDED": JobState.SUCCEEDED,
    "FAILED": JobState.FAILED,
    "ABORTED": JobState.ABORTED,
    "TIMED-OUT": JobState.TIMED_OUT,
}


class ScrapeJobPoller:
    """Drives one scraping job from SUBMITTED to a terminal state.

    fetch_status returns the remote status string, or None when the status
    request itself failed (which ends the job as FAILED). After max_attempts
    polls without a terminal status the job ends as TIMED_OUT.
    """

    def __init__(
        self,
        fetch_status: Callable[[], str | None],
        *,
        max_attempts: int = 30,
        interval: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._fetch_status = fetch_status
        self.max_attempts = int(max_attempts)
        self.interval = float(interval)
        self._sleep = sleep
        self.state = JobState.SUBMITTED
        self.attempts = 0
        self.last_status: str | None = None

    def run(self, initial_status: str | None) -> JobState:
        self.state = JobState.SUBMITTED
        self.attempts = 0
        self.last_status = initial_status

        terminal = APIFY_TERMINAL_STATUS.get(str(initial_status or "").upper())
        if terminal is not None:
            self.state = terminal
            return self.state

        self.state = JobState.POLLING
        while self.attempts < self.max_attempts:
            self._sleep(self.interval)
            self.attempts += 1

            status = self._fetch_status()
            if status is None:
                self.state = JobState.FAILED
                return self.state

            self.last_status = status
            logger.debug("Status do job: %s (tentativa %s/%s)", status, self.attempts, self.max_attempts)
            terminal = APIFY_TERMINAL_STATUS.get(str(status).upper())
            if terminal is not None:
                self.state = terminal
                return self.state

        self.state = JobState.TIMED_OUT
        return self.state


_PUBLISHER_RE = re.compile(r"Editora:\s*([^;(]+)")
_AUTHOR_RE = re.compile(r"Autor(?:es)?:\s*(.+)")
_YEAR_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")


def parse_scraped_item(item: dict, isbn: str) -> ExternalBookData:
    """Normalize the first dataset item of the Amazon scraper."""
    author = UNKNOWN_AUTHOR
    publisher = ""
    year: int | None = None

    for detail in item.get("detailBulletPoints") or []:
        text = str(detail or "")
        if "Editora:" in text and not publisher:
            m = _PUBLISHER_RE.search(text)
            if m:
                publisher = m.group(1).strip()
        if ("Autor:" in text or "Autores:" in text) and author == UNKNOWN_AUTHOR:
            m = _AUTHOR_RE.search(text)
            if m:
                author = m.group(1).strip() or UNKNOWN_AUTHOR
        if year is None:
            for m in _YEAR_RE.finditer(text):
                y = int(m.group(1))
                if YEAR_MIN <= y <= YEAR_MAX:
                    year = y
                    break

    price = _float_or_none((item.get("priceDetail") or {}).get("pricePerUnit"))
    if price is None:
        raw_price = item.get("price")
        price = _float_or_none(raw_price.get("value") if isinstance(raw_price, dict) else raw_price)

    cover = None
    images = item.get("images") or []
    if images:
        first = images[0]
        cover = first.get("url") if isinstance(first, dict) else first

    return ExternalBookData(
        title=str(item.get("title") or "").strip() or UNKNOWN_TITLE,
        author=author,
        isbn=isbn,
        description=item.get("description") or None,
        publisher=publisher or None,
        publication_year=year,
        price=price,
        cover_image=str(cover) if cover else None,
        source="apify",
    )


class ApifySource:
    name = "apify"
    external = True
    BASE_URL = "https://api.apify.com/v2"
    SEARCH_URL = "https://www.amazon.com.br/s?k={query}&i=stripbooks"

    def __init__(
        self,
        http: requests.Session,
        token_providers: list[TokenProvider],
        *,
        actor: str = "junglee~free-amazon-product-scraper",
        poll_interval: float = 3.0,
        max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 15,
    ):
        self._http = http
        self._token_providers = token_providers
        self._actor = actor
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._timeout = timeout

    @property
    def token(self) -> str | None:
        return resolve_token(self._token_providers)

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _run_input(self, query: str) -> dict:
        return {
            "categoryUrls": [{"url": self.SEARCH_URL.format(query=query)}],
            "maxItems": 5,
            "proxyConfiguration": {"useApifyProxy": True},
        }

    def _fetch_status(self, run_id: str, token: str) -> str | None:
        try:
            resp = self._http.get(
                f"{self.BASE_URL}/acts/{self._actor}/runs/{run_id}",
                params={"token": token},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            return str(resp.json()["data"]["status"])
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning("Falha ao consultar status do job %s: %s", run_id, e)
            return None

    def _search(self, isbn: str, query: str, token: str) -> SourceResult:
        logger.info("Buscando na Amazon via Apify: %s", self.SEARCH_URL.format(query=query))
        try:
            resp = self._http.post(
                f"{self.BASE_URL}/acts/{self._actor}/runs",
                params={"token": token},
                json=self._run_input(query),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            run = resp.json()["data"]
            run_id = str(run["id"])
            dataset_id = str(run["defaultDatasetId"])
            initial_status = run.get("status")
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            return SourceResult.unavailable(f"Falha ao iniciar job no Apify: {e}")

        poller = ScrapeJobPoller(
            lambda: self._fetch_status(run_id, token),
            max_attempts=self._max_attempts,
            interval=self._poll_interval,
            sleep=self._sleep,
        )
        state = poller.run(initial_status)
        if state is not JobState.SUCCEEDED:
            return SourceResult.not_found(
                f"Job {run_id} terminou como {state.value} após {poller.attempts} consultas"
            )

        try:
            resp = self._http.get(
                f"{self.BASE_URL}/datasets/{dataset_id}/items",
                params={"token": token},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            items = resp.json()
        except (requests.RequestException, ValueError) as e:
            return SourceResult.unavailable(f"Falha ao obter resultados do dataset: {e}")

        if not isinstance(items, list):
            return SourceResult.unavailable("Apify: dataset em formato inesperado")
        if not items:
            return SourceResult.not_found("Nenhum resultado na Amazon")
        if not isinstance(items[0], dict):
            return SourceResult.unavailable("Apify: dataset em formato inesperado")
        return SourceResult.found(parse_scraped_item(items[0], isbn))

    def lookup(self, isbn: str) -> SourceResult:
        token = self.token
        if not token:
            return SourceResult.unavailable("Token da API Apify não configurado")

        result = self._search(isbn, isbn, token)
        if result.status is SourceStatus.FOUND or len(isbn) != 13:
            return result

        isbn10 = isbn13_to_isbn10(isbn)
        if not isbn10:
            return result
        logger.info("Tentando busca com ISBN-10: %s -> %s", isbn, isbn10)
        return self._search(isbn, isbn10, token)


# --- Resolver ---


class IsbnResolver:
    """Tries each source in order until one finds the book."""

    def __init__(self, sources: list):
        self.sources = list(sources)

    def resolve_with_report(self, raw_isbn: str) -> LookupReport:
        isbn = normalize_isbn(raw_isbn)
        if not is_valid_length(isbn):
            raise InvalidIsbnError("ISBN inválido. Deve ter 10 ou 13 dígitos.")

        report = LookupReport(isbn=isbn)
        checked_config = False
        for source in self.sources:
            if source.external and not checked_config:
                checked_config = True
                external = [s for s in self.sources if s.external]
                if external and not any(s.configured for s in external):
                    names = ", ".join(s.name for s in external)
                    raise LookupConfigError(
                        f"Nenhuma fonte de busca configurada ({names}). Configure o token em Configurações."
                    )

            if not source.configured:
                continue

            result = source.lookup(isbn)
            report.attempts.append(LookupAttempt(source=source.name, status=result.status, detail=result.detail))
            if result.status is SourceStatus.FOUND:
                logger.info("ISBN %s encontrado em %s", isbn, source.name)
                report.book = result.book
                return report
            if result.status is SourceStatus.UNAVAILABLE:
                logger.warning("Fonte %s indisponível para ISBN %s: %s", source.name, isbn, result.detail)
            else:
                logger.info("ISBN %s não encontrado em %s", isbn, source.name)

        return report

    def resolve(self, raw_isbn: str) -> ExternalBookData:
        report = self.resolve_with_report(raw_isbn)
        if report.book is None:
            raise BookNotFoundError("Livro não encontrado.")
        return report.book


def build_resolver(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    http: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
    store: LocalSettingsStore | None = None,
) -> IsbnResolver:
    http = http or requests.Session()
    return IsbnResolver(
        [
            CatalogSource(session_factory),
            GoogleBooksSource(
                http,
                api_key=settings.GOOGLE_BOOKS_API_KEY,
                enabled=settings.GOOGLE_BOOKS_ENABLED,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            ),
            ApifySource(
                http,
                apify_token_providers(settings, store),
                actor=settings.APIFY_ACTOR,
                poll_interval=settings.APIFY_POLL_INTERVAL_SECONDS,
                max_attempts=settings.APIFY_MAX_ATTEMPTS,
                sleep=sleep,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            ),
        ]
    )
