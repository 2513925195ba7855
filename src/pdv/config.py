from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os
import sys

from pdv.domain.errors import ConfigurationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    store_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class ServiceSettings:
    api_url: str
    api_key: str
    timeout: float = 10.0


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "PdvSaleEngine") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    store = base / "cart.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, store_path=store, logs_dir=logs)


def load_service_settings(env: Mapping[str, str] | None = None) -> ServiceSettings:
    env = os.environ if env is None else env
    api_url = (env.get("PDV_API_URL") or "").strip()
    api_key = (env.get("PDV_API_KEY") or "").strip()
    if not api_url or not api_key:
        raise ConfigurationError("PDV_API_URL and PDV_API_KEY must be set.")

    raw_timeout = env.get("PDV_HTTP_TIMEOUT") or "10"
    try:
        timeout = float(raw_timeout)
    except ValueError as e:
        raise ConfigurationError(f"PDV_HTTP_TIMEOUT must be a number. Received: {raw_timeout}") from e
    if timeout <= 0:
        raise ConfigurationError(f"PDV_HTTP_TIMEOUT must be > 0. Received: {timeout}")

    return ServiceSettings(api_url=api_url, api_key=api_key, timeout=timeout)
