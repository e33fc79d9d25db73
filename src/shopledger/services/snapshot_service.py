from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shopledger.domain.errors import SnapshotError
from shopledger.domain.models import ENTRY_TYPES, ROLES, TRANSACTION_TYPES, User
from shopledger.repositories.records import (
    entry_from_row,
    transaction_from_row,
    user_from_row,
    wholesaler_from_row,
)

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"


class SnapshotService:
    """Whole-store JSON export and import.

    Import is an upsert per collection keyed on `id`: rows in the file replace
    stored rows with the same id, other stored rows are left alone.
    """

    def __init__(self, repo, auth_service):
        self.repo = repo
        self.auth = auth_service

    def build_snapshot(self) -> dict[str, Any]:
        rows = self.repo.export_rows()
        return {
            "version": SNAPSHOT_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            **rows,
        }

    def export_snapshot(self, target: Path | str) -> Path:
        path = Path(target)
        if path.is_dir():
            path = path / f"ShopLedger_Backup_{datetime.now().strftime('%Y-%m-%d')}.json"
        snapshot = self.build_snapshot()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise SnapshotError(f"Could not write snapshot: {exc}") from exc
        log.info(
            "snapshot_exported path=%s users=%s entries=%s",
            path, len(snapshot["users"]), len(snapshot["entries"]),
        )
        return path

    def import_snapshot(self, actor: User, source: Path | str) -> dict[str, int]:
        self.auth.require_action(actor, "import_snapshot")
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SnapshotError(f"Could not read snapshot: {exc}") from exc

        self.validate(data)
        counts = self.repo.import_rows(data)
        log.warning("snapshot_imported source=%s counts=%s actor=%s", source, counts, actor.id)
        return counts

    def validate(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise SnapshotError("Invalid snapshot file: expected a JSON object.")
        version = str(data.get("version", SNAPSHOT_VERSION))
        if version.split(".")[0] != SNAPSHOT_VERSION.split(".")[0]:
            raise SnapshotError(f"Unsupported snapshot version '{version}'.")
        if not isinstance(data.get("users"), list) or not isinstance(data.get("entries"), list):
            raise SnapshotError("Invalid snapshot file: 'users' and 'entries' are required.")
        for key in ("wholesalers", "transactions"):
            if not isinstance(data.get(key, []), list):
                raise SnapshotError(f"Invalid snapshot file: '{key}' must be a list.")
        if not isinstance(data.get("settings", {}), dict):
            raise SnapshotError("Invalid snapshot file: 'settings' must be an object.")

        checks = (
            ("users", user_from_row),
            ("entries", entry_from_row),
            ("wholesalers", wholesaler_from_row),
            ("transactions", transaction_from_row),
        )
        for key, parse in checks:
            for i, row in enumerate(data.get(key) or []):
                try:
                    record = parse(row)
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    raise SnapshotError(f"Invalid row {i} in '{key}': {exc}") from exc
                self._check_tags(key, i, record)

    @staticmethod
    def _check_tags(key: str, index: int, record: Any) -> None:
        if key == "users" and record.role not in ROLES:
            raise SnapshotError(f"Invalid row {index} in 'users': unknown role '{record.role}'.")
        if key == "entries" and record.type not in ENTRY_TYPES:
            raise SnapshotError(f"Invalid row {index} in 'entries': unknown type '{record.type}'.")
        if key == "transactions" and record.type not in TRANSACTION_TYPES:
            raise SnapshotError(f"Invalid row {index} in 'transactions': unknown type '{record.type}'.")
