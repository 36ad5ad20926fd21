from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Iterable

from livraria.settings import Settings

logger = logging.getLogger(__name__)

APIFY_TOKEN_KEY = "apify_token"

TokenProvider = Callable[[], "str | None"]


class LocalSettingsStore:
    """Small JSON key/value file in the instance folder (settings saved from the UI)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Arquivo de configurações ilegível (%s): %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> str | None:
        v = self._load().get(key)
        if isinstance(v, str):
            return v.strip() or None
        return None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._save(data)
        return True


def resolve_token(providers: Iterable[TokenProvider]) -> str | None:
    """First non-empty token from the providers, in order."""
    for provider in providers:
        token = provider()
        if token and token.strip():
            return token.strip()
    return None


def apify_token_providers(settings: Settings, store: LocalSettingsStore | None = None) -> list[TokenProvider]:
    # Token saved locally wins over the environment.
    store = store or LocalSettingsStore(settings.local_settings_path)
    return [
        lambda: store.get(APIFY_TOKEN_KEY),
        lambda: settings.APIFY_API_TOKEN or None,
    ]
