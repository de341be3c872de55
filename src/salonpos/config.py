from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class PosSettings:
    store_timeout_seconds: float = 5.0
    enforce_available_stock: bool = True
    backend_url: Optional[str] = None
    backend_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "PosSettings":
        env = os.environ if env is None else env
        timeout = float(env.get("SALONPOS_STORE_TIMEOUT", "") or cls.store_timeout_seconds)
        enforce_raw = env.get("SALONPOS_ENFORCE_AVAILABLE_STOCK", "1").strip().lower()
        return cls(
            store_timeout_seconds=timeout,
            enforce_available_stock=enforce_raw not in {"0", "false", "no", "off"},
            backend_url=(env.get("SALONPOS_BACKEND_URL") or "").strip() or None,
            backend_key=(env.get("SALONPOS_BACKEND_KEY") or "").strip() or None,
        )


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "SalonPOS") -> AppPaths:
    override = os.environ.get("SALONPOS_DATA_DIR", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "pos.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
