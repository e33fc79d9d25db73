class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class AuthorizationError(AppError):
    pass


class StoreError(AppError):
    """The backing store rejected a request or could not be reached."""


class SnapshotError(AppError):
    pass
