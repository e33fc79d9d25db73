from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import math
import os
import sys

from shopledger.domain.errors import ValidationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "ShopLedger") -> AppPaths:
    override = os.environ.get("SHOPLEDGER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


@dataclass(frozen=True)
class StoreSettings:
    """Connection to the hosted REST store. Unset url means the local SQLite file."""

    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0

    @property
    def remote(self) -> bool:
        return bool(self.url)

    @classmethod
    def from_env(cls) -> "StoreSettings":
        url = os.environ.get("SHOPLEDGER_STORE_URL", "").strip() or None
        key = os.environ.get("SHOPLEDGER_STORE_KEY", "").strip() or None
        timeout = float(os.environ.get("SHOPLEDGER_STORE_TIMEOUT", "10") or 10)
        return cls(url=url, api_key=key, timeout=timeout)


SETTINGS_KEYS = ("fixed_5h_amount", "fixed_8h_amount", "upcoming_window_days", "currency")


@dataclass(frozen=True)
class ShopSettings:
    """Shop-wide settings stored as a string map and validated on load."""

    fixed_5h_amount: float = 800.0
    fixed_8h_amount: float = 500.0
    upcoming_window_days: int = 6
    currency: str = "TL"
    extra: dict[str, str] = field(default_factory=dict, compare=False)

    def amount_for(self, entry_type: str) -> float:
        if entry_type == "5H":
            return self.fixed_5h_amount
        if entry_type == "8H":
            return self.fixed_8h_amount
        raise ValidationError(f"No fixed amount for entry type '{entry_type}'.")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ShopSettings":
        defaults = cls()
        try:
            five = float(data.get("fixed_5h_amount", defaults.fixed_5h_amount))
            eight = float(data.get("fixed_8h_amount", defaults.fixed_8h_amount))
            window = int(float(data.get("upcoming_window_days", defaults.upcoming_window_days)))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValidationError(f"Invalid settings value: {exc}") from exc
        currency = str(data.get("currency", defaults.currency)).strip()

        if not (math.isfinite(five) and math.isfinite(eight)):
            raise ValidationError("Fixed shift amounts must be finite numbers.")
        if five < 0 or eight < 0:
            raise ValidationError("Fixed shift amounts must be >= 0.")
        if not 0 <= window <= 60:
            raise ValidationError("Upcoming window must be between 0 and 60 days.")
        if not currency:
            raise ValidationError("Currency is required.")

        extra = {str(k): str(v) for k, v in data.items() if k not in SETTINGS_KEYS}
        return cls(
            fixed_5h_amount=five,
            fixed_8h_amount=eight,
            upcoming_window_days=window,
            currency=currency,
            extra=extra,
        )

    def to_mapping(self) -> dict[str, str]:
        out = dict(self.extra)
        out.update(
            {
                "fixed_5h_amount": repr(float(self.fixed_5h_amount)),
                "fixed_8h_amount": repr(float(self.fixed_8h_amount)),
                "upcoming_window_days": str(int(self.upcoming_window_days)),
                "currency": self.currency,
            }
        )
        return out
