from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Optional

from shopledger.domain.errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from shopledger.domain.models import ROLE_ADMIN, ROLE_STAFF, ROLES, User
from shopledger.repositories.sqlite_repo import BOOTSTRAP_ADMIN_ID
from shopledger.security import password_problem

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginPolicy:
    min_password_length: int = 4
    max_failed_attempts: int = 5
    lockout_seconds: int = 60


PERMISSIONS: dict[str, set[str]] = {
    "manage_users": {ROLE_ADMIN},
    "record_entries": {ROLE_ADMIN},
    "manage_accounts": {ROLE_ADMIN},
    "view_reports": {ROLE_ADMIN},
    "manage_settings": {ROLE_ADMIN},
    "import_snapshot": {ROLE_ADMIN},
    "view_own_portal": {ROLE_ADMIN, ROLE_STAFF},
    "change_own_password": {ROLE_ADMIN, ROLE_STAFF},
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_lock(value: str) -> datetime:
    until = datetime.fromisoformat(value)
    if until.tzinfo is not None:
        until = until.astimezone(timezone.utc).replace(tzinfo=None)
    return until


class AuthService:
    def __init__(self, repo, policy: LoginPolicy | None = None):
        self.repo = repo
        self.policy = policy or LoginPolicy()

    def list_users(self) -> list[User]:
        return self.repo.list_users()

    def login(self, name: str, password: str) -> User:
        name_clean = name.strip()
        if not name_clean:
            raise AuthorizationError("User name is required.")

        state = self.repo.get_user_security_state(name_clean)
        if state:
            _attempts, locked_until = state
            if locked_until:
                until = _parse_lock(locked_until)
                now = _utc_now()
                if now < until:
                    remaining = int((until - now).total_seconds())
                    raise AuthorizationError(f"User is temporarily locked. Retry in {remaining}s.")

        user = self.repo.authenticate_user(name_clean, password.strip())
        if not user:
            attempts, locked_until = self.repo.record_login_failure(
                name_clean,
                self.policy.max_failed_attempts,
                self.policy.lockout_seconds,
            )
            if locked_until is not None:
                log.warning("user_locked name=%s", name_clean)
                raise AuthorizationError("Too many failed attempts. User is temporarily locked.")
            raise AuthorizationError("Invalid user name or password.")

        self.repo.clear_login_guard(user.id)
        log.info("login user_id=%s role=%s", user.id, user.role)
        return user

    def can(self, user: User, action: str) -> bool:
        allowed_roles = PERMISSIONS.get(action)
        if not allowed_roles:
            return False
        return user.role in allowed_roles

    def require_action(self, user: User, action: str) -> None:
        if not self.can(user, action):
            raise AuthorizationError(f"Role '{user.role}' is not allowed to perform '{action}'.")

    def _check_password(self, password: str) -> None:
        problem = password_problem(password, min_len=self.policy.min_password_length)
        if problem:
            raise ValidationError(problem)

    @staticmethod
    def _clean_role(role: str) -> str:
        target = role.strip().upper()
        if target not in ROLES:
            raise ValidationError(f"Unknown role '{role}'.")
        return target

    def create_user(
        self,
        actor: User,
        name: str,
        password: str,
        role: str = ROLE_STAFF,
        hourly_rate: float = 0.0,
        avatar: Optional[str] = None,
    ) -> str:
        self.require_action(actor, "manage_users")

        clean_name = name.strip()
        secret = password.strip()
        if not clean_name:
            raise ValidationError("Name is required.")
        if hourly_rate < 0:
            raise ValidationError("Hourly rate must be >= 0.")
        self._check_password(secret)
        target_role = self._clean_role(role)

        try:
            uid = self.repo.create_user(
                clean_name, secret, target_role, hourly_rate=float(hourly_rate), avatar=avatar, must_change_password=1
            )
        except StoreError as exc:
            raise ValidationError(f"Could not create user '{clean_name}': {exc}") from exc
        log.info("user_created user_id=%s role=%s actor=%s", uid, target_role, actor.id)
        return uid

    def update_user(
        self,
        actor: User,
        user_id: str,
        name: str,
        role: str,
        hourly_rate: float,
        avatar: Optional[str] = None,
        new_password: Optional[str] = None,
    ) -> None:
        self.require_action(actor, "manage_users")
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Name is required.")
        target_role = self._clean_role(role)
        if user_id == BOOTSTRAP_ADMIN_ID and target_role != ROLE_ADMIN:
            raise ValidationError("The main admin must keep the admin role.")
        if new_password:
            self._check_password(new_password.strip())

        if not self.repo.update_user(user_id, clean_name, target_role, float(hourly_rate), avatar):
            raise NotFoundError("User not found.")
        if new_password:
            self.repo.set_user_password(user_id, new_password.strip(), must_change_password=1)
        log.info("user_updated user_id=%s actor=%s", user_id, actor.id)

    def change_my_password(self, actor: User, current_password: str, new_password: str, confirm_password: str) -> None:
        self.require_action(actor, "change_own_password")
        current_secret = current_password.strip()
        new_secret = new_password.strip()

        if not current_secret:
            raise ValidationError("Current password is required.")
        self._check_password(new_secret)
        if new_secret != confirm_password.strip():
            raise ValidationError("Password confirmation does not match.")
        if new_secret == current_secret:
            raise ValidationError("New password must be different from the current password.")

        if not self.repo.change_user_password(actor.id, current_secret, new_secret):
            raise AuthorizationError("Current password is incorrect.")

    def delete_user(self, actor: User, user_id: str, confirmation: str) -> None:
        """Remove a user and all their entries. `confirmation` must repeat the user's name."""
        self.require_action(actor, "manage_users")
        if user_id == BOOTSTRAP_ADMIN_ID:
            raise ValidationError("The main admin cannot be deleted.")
        target = self.repo.get_user(user_id)
        if not target:
            raise NotFoundError("User not found.")
        if confirmation.strip() != target.name:
            raise ValidationError(f"Type '{target.name}' to confirm deletion.")

        self.repo.delete_user_cascade(user_id)
        log.warning("user_deleted user_id=%s actor=%s", user_id, actor.id)
