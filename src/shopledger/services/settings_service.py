from __future__ import annotations

import logging

from shopledger.config import SETTINGS_KEYS, ShopSettings
from shopledger.domain.errors import ValidationError
from shopledger.domain.models import User

log = logging.getLogger(__name__)


class SettingsService:
    def __init__(self, repo, auth_service):
        self.repo = repo
        self.auth = auth_service

    def current(self) -> ShopSettings:
        return ShopSettings.from_mapping(self.repo.get_settings())

    def update(self, actor: User, **changes) -> ShopSettings:
        self.auth.require_action(actor, "manage_settings")
        current = self.current()
        unknown = set(changes) - set(SETTINGS_KEYS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = current.to_mapping()
        values.update({k: str(v) for k, v in changes.items()})
        updated = ShopSettings.from_mapping(values)
        self.repo.save_settings(updated.to_mapping())
        log.info("settings_updated fields=%s actor=%s", ",".join(sorted(changes)), actor.id)
        return updated
