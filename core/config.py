from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class LocalPaths:
    base_dir: Path
    data_dir: Path
    db_path: Path
    accounts_file: Path


@dataclass(frozen=True)
class OrchestratorConfig:
    history_limit: int
    history_keep: int
    min_confidence: float
    confirmation_turns: int
    matcher: str


@dataclass(frozen=True)
class PricingConfig:
    cache_hours: float
    default_price: int


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str | None
    model: str
    transcription_model: str
    transcription_language: str

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class WhatsAppConfig:
    phone_number_id: str | None
    access_token: str | None
    verify_token: str | None
    api_version: str
    timeout_seconds: float

    @property
    def base_url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}"


@dataclass(frozen=True)
class AppConfig:
    paths: LocalPaths
    orchestrator: OrchestratorConfig
    pricing: PricingConfig
    openai: OpenAIConfig
    whatsapp: WhatsAppConfig
    admin_token: str | None


def _default_base_dir() -> Path:
    override = os.getenv("BUDGETBOT_DATA_DIR")
    if override:
        return Path(override).expanduser()
    if sys.platform == "win32":
        root = Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return root / "budgetbot"
    root = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return root / "budgetbot"


def get_local_paths() -> LocalPaths:
    base_dir = _default_base_dir()
    data_dir = base_dir / "data"
    accounts_file = Path(os.getenv("BUDGETBOT_ACCOUNTS_FILE", Path.cwd() / "accounts.json")).expanduser()
    return LocalPaths(
        base_dir=base_dir,
        data_dir=data_dir,
        db_path=data_dir / "budgetbot.sqlite3",
        accounts_file=accounts_file,
    )


def ensure_directories() -> LocalPaths:
    paths = get_local_paths()
    for path in (paths.base_dir, paths.data_dir):
        path.mkdir(parents=True, exist_ok=True)
    return paths


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_orchestrator_config() -> OrchestratorConfig:
    matcher = os.getenv("BUDGETBOT_MATCHER", "tiered").strip().lower()
    if matcher not in {"tiered", "substring"}:
        matcher = "tiered"
    return OrchestratorConfig(
        history_limit=_parse_int(os.getenv("BUDGETBOT_HISTORY_LIMIT"), 10),
        history_keep=_parse_int(os.getenv("BUDGETBOT_HISTORY_KEEP"), 50),
        min_confidence=_parse_float(os.getenv("BUDGETBOT_MIN_CONFIDENCE"), 0.5),
        confirmation_turns=_parse_int(os.getenv("BUDGETBOT_CONFIRMATION_TURNS"), 5),
        matcher=matcher,
    )


def get_pricing_config() -> PricingConfig:
    default_price = _parse_int(os.getenv("BUDGETBOT_DEFAULT_PRICE"), 1000)
    if default_price <= 0:
        default_price = 1000
    return PricingConfig(
        cache_hours=_parse_float(os.getenv("BUDGETBOT_PRICE_CACHE_HOURS"), 24.0),
        default_price=default_price,
    )


def get_openai_config() -> OpenAIConfig:
    return OpenAIConfig(
        api_key=_optional("OPENAI_API_KEY"),
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini",
        transcription_model=os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1").strip() or "whisper-1",
        transcription_language=os.getenv("TRANSCRIPTION_LANGUAGE", "es").strip() or "es",
    )


def get_whatsapp_config() -> WhatsAppConfig:
    return WhatsAppConfig(
        phone_number_id=_optional("WHATSAPP_PHONE_NUMBER_ID"),
        access_token=_optional("WHATSAPP_ACCESS_TOKEN"),
        verify_token=_optional("WHATSAPP_VERIFY_TOKEN"),
        api_version=os.getenv("WHATSAPP_API_VERSION", "v18.0").strip() or "v18.0",
        timeout_seconds=_parse_float(os.getenv("WHATSAPP_TIMEOUT_SECONDS"), 20.0),
    )


def get_app_config() -> AppConfig:
    return AppConfig(
        paths=get_local_paths(),
        orchestrator=get_orchestrator_config(),
        pricing=get_pricing_config(),
        openai=get_openai_config(),
        whatsapp=get_whatsapp_config(),
        admin_token=_optional("BUDGETBOT_ADMIN_TOKEN"),
    )
