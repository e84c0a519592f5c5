import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigError, ProviderNotFoundError

logger = logging.getLogger(__name__)

PROVIDER_TYPES = ("openai", "anthropic")

DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-latest",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_data_dir() -> Path:
    return Path(os.getenv("SMART_EXCALIDRAW_DATA_DIR", ".smart_excalidraw_data"))


def get_log_level() -> str:
    return os.getenv("SMART_EXCALIDRAW_LOG_LEVEL", "INFO").upper()


def configure_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level or get_log_level())
        return
    logging.basicConfig(level=level or get_log_level(), format=LOG_FORMAT)


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    type: str
    base_url: str
    api_key: str
    model: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "baseUrl": self.base_url,
            "apiKey": self.api_key,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ProviderConfig":
        if not isinstance(raw, dict):
            raise ConfigError("Provider configuration must be an object.")
        provider_type = str(raw.get("type", "openai") or "openai").strip().lower()
        return cls(
            id=str(raw.get("id", "") or "").strip(),
            name=str(raw.get("name", "") or "").strip() or provider_type,
            type=provider_type,
            base_url=str(raw.get("baseUrl", raw.get("base_url", "")) or "").strip().rstrip("/"),
            api_key=str(raw.get("apiKey", raw.get("api_key", "")) or "").strip(),
            model=str(raw.get("model", "") or "").strip(),
        )


def is_config_valid(config: Optional[ProviderConfig]) -> bool:
    if config is None:
        return False
    return bool(config.type and config.base_url and config.api_key and config.model)


@dataclass(frozen=True)
class Session:
    providers: Tuple[ProviderConfig, ...] = field(default_factory=tuple)
    current_provider_id: Optional[str] = None

    def current_provider(self) -> Optional[ProviderConfig]:
        if not self.current_provider_id:
            return None
        return self.find(self.current_provider_id)

    def find(self, provider_id: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providers": [provider.to_dict() for provider in self.providers],
            "currentProviderId": self.current_provider_id,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Session":
        raw_providers = raw.get("providers", []) if isinstance(raw, dict) else []
        providers = tuple(
            ProviderConfig.from_dict(item) for item in raw_providers if isinstance(item, dict)
        )
        current = raw.get("currentProviderId") if isinstance(raw, dict) else None
        return cls(providers=providers, current_provider_id=current or None)


def switch_provider(session: Session, provider_id: str) -> Session:
    if session.find(provider_id) is None:
        raise ProviderNotFoundError(provider_id)
    return replace(session, current_provider_id=provider_id)


def upsert_provider(session: Session, provider: ProviderConfig, make_current: bool = True) -> Session:
    if provider.type not in PROVIDER_TYPES:
        raise ConfigError(f"Unsupported provider type: {provider.type}")
    if not provider.id:
        provider = replace(provider, id=f"provider_{int(time.time() * 1000)}")

    providers: List[ProviderConfig] = list(session.providers)
    for index, existing in enumerate(providers):
        if existing.id == provider.id:
            providers[index] = provider
            break
    else:
        providers.append(provider)

    current = provider.id if make_current else session.current_provider_id
    return Session(providers=tuple(providers), current_provider_id=current)


def remove_provider(session: Session, provider_id: str) -> Session:
    providers = tuple(p for p in session.providers if p.id != provider_id)
    current = session.current_provider_id
    if not providers:
        current = None
    elif current == provider_id:
        current = providers[0].id
    return Session(providers=providers, current_provider_id=current)


def session_from_env() -> Session:
    session = Session()
    for provider_type in PROVIDER_TYPES:
        prefix = provider_type.upper()
        api_key = os.getenv(f"{prefix}_API_KEY", "").strip()
        if not api_key:
            continue
        provider = ProviderConfig(
            id=f"env_{provider_type}",
            name=f"{provider_type} (env)",
            type=provider_type,
            base_url=os.getenv(f"{prefix}_BASE_URL", DEFAULT_BASE_URLS[provider_type]).rstrip("/"),
            api_key=api_key,
            model=os.getenv(f"{prefix}_MODEL", DEFAULT_MODELS[provider_type]),
        )
        session = upsert_provider(session, provider, make_current=session.current_provider_id is None)
    return session


class ProviderStore:
    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._config_file = self.base_dir / "providers.json"

    def load(self) -> Session:
        if not self._config_file.exists():
            return Session()
        try:
            with self._config_file.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
            return Session.from_dict(raw)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load provider configs from %s: %s", self._config_file, exc)
            return Session()

    def save(self, session: Session) -> Session:
        with self._config_file.open("w", encoding="utf-8") as handle:
            json.dump(session.to_dict(), handle, ensure_ascii=False, indent=2)
        logger.info("Saved %d provider config(s)", len(session.providers))
        return session
