from __future__ import annotations

import math
from datetime import date

from shopledger.domain import ledger
from shopledger.domain.errors import ValidationError
from shopledger.domain.models import TipDistribution


class TipService:
    """Advisory weekly split of a cash tip pool by hours worked. Nothing is written."""

    def __init__(self, repo):
        self.repo = repo

    def suggested_sunday(self, today: date) -> date:
        return ledger.suggested_sunday(today)

    def distribute(self, sunday: date, pool: float) -> TipDistribution:
        if pool is None or math.isnan(float(pool)):
            raise ValidationError("Tip pool is required.")
        return ledger.tip_distribution(self.repo.list_users(), self.repo.list_entries(), sunday, float(pool))
