from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # App
    APP_NAME: str = os.environ.get("APP_NAME", "Livraria Admin")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # Storage
    INSTANCE_DIR: Path = Path(os.environ.get("INSTANCE_DIR", "instance")).resolve()
    # Empty means "livraria.sqlite inside INSTANCE_DIR" (resolved in __post_init__).
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")

    # Local settings file (token saved from the settings screen)
    LOCAL_SETTINGS_FILE: str = os.environ.get("LOCAL_SETTINGS_FILE", "settings.json")

    # ISBN lookup: public books API
    GOOGLE_BOOKS_ENABLED: bool = _env_bool("GOOGLE_BOOKS_ENABLED", "true")
    GOOGLE_BOOKS_API_KEY: str = os.environ.get("GOOGLE_BOOKS_API_KEY", "")

    # ISBN lookup: Apify scraping job (optional)
    APIFY_API_TOKEN: str = os.environ.get("APIFY_API_TOKEN", "")
    APIFY_ACTOR: str = os.environ.get("APIFY_ACTOR", "junglee~free-amazon-product-scraper")
    APIFY_POLL_INTERVAL_SECONDS: float = float(os.environ.get("APIFY_POLL_INTERVAL_SECONDS", "3"))
    APIFY_MAX_ATTEMPTS: int = int(os.environ.get("APIFY_MAX_ATTEMPTS", "30"))

    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "INSTANCE_DIR", Path(self.INSTANCE_DIR).resolve())

        db = str(self.DATABASE_URL or "").strip()
        if not db:
            abs_db = (self.INSTANCE_DIR / "livraria.sqlite").resolve()
            object.__setattr__(self, "DATABASE_URL", f"sqlite:///{abs_db.as_posix()}")
            return

        # Normalize relative SQLite URLs so they don't depend on the process working directory.
        if db.startswith("sqlite:///") and not db.startswith("sqlite:////"):
            path_part = db[len("sqlite:///") :]
            if "?" in path_part:
                path_part = path_part.split("?", 1)[0]

            p = Path(path_part)
            if path_part and not path_part.startswith(":") and not p.is_absolute():
                project_root = Path(__file__).resolve().parents[1]
                abs_path = (project_root / p).resolve()
                object.__setattr__(self, "DATABASE_URL", f"sqlite:///{abs_path.as_posix()}")

    @property
    def local_settings_path(self) -> Path:
        return (self.INSTANCE_DIR / str(self.LOCAL_SETTINGS_FILE)).resolve()

    def ensure_instance(self) -> None:
        self.INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
