from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

from dotenv import load_dotenv

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_CATALOG = PACKAGE_DIR / "data" / "products.json"

logger = logging.getLogger(__name__)


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    tax_rate: float = 0.05
    payment_delay_seconds: float = 2.5
    scan_debounce_seconds: float = 2.0
    catalog_path: str = str(DEFAULT_CATALOG)
    gemini_model: str = "gemini-3-flash-preview"
    api_key: str = ""
    log_dir: str = "logs"
    log_level: str = "INFO"
    session_max_age_hours: int = 24

    def validate(self) -> "Settings":
        if self.tax_rate < 0:
            raise ValueError("tax_rate must be >= 0")
        if self.payment_delay_seconds < 0:
            raise ValueError("payment_delay_seconds must be >= 0")
        if self.scan_debounce_seconds < 0:
            raise ValueError("scan_debounce_seconds must be >= 0")
        return self


def _coerce(key: str, value, default):
    """Convert a config file value to the type of the field's default"""
    if isinstance(value, bool) or value is None or isinstance(value, (list, dict)):
        raise ValueError(f"Invalid value for {key}: {value!r}")
    try:
        return type(default)(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {key}: {value!r}") from e


def load_config(config_file: Path) -> dict | None:
    """Load configuration from a JSON file if it exists"""
    if config_file.exists():
        with open(config_file, 'r', encoding='utf-8') as f:
            return json.load(f)
    return None


def load_settings(config_path: str | None = None) -> Settings:
    """Defaults, then the JSON config file, then the environment."""
    load_dotenv()

    settings = Settings()

    path = Path(config_path or _get_env("SWIFTSCAN_CONFIG", default="swiftscan.json"))
    data = load_config(path)
    if data:
        known = {f.name for f in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")
        settings = replace(settings, **{
            k: _coerce(k, v, getattr(settings, k)) for k, v in data.items() if k in known
        })

    overrides = {}
    api_key = _get_env("GEMINI_API_KEY", "API_KEY")
    if api_key:
        overrides["api_key"] = api_key
    host = _get_env("SWIFTSCAN_HOST")
    if host:
        overrides["host"] = host
    port = _get_env("SWIFTSCAN_PORT")
    if port:
        overrides["port"] = int(port)
    log_level = _get_env("SWIFTSCAN_LOG_LEVEL")
    if log_level:
        overrides["log_level"] = log_level.upper()

    return replace(settings, **overrides).validate()
