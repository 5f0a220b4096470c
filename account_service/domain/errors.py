"""Error taxonomy shared by the account orchestration layer and its stores."""

from __future__ import annotations

NO_ACCOUNT_FOUND = "No account found."
INVALID_CREDENTIALS = "Invalid credentials."
MISSING_CREDENTIALS = "Email and password must be provided."
INVALID_TOKEN = "Invalid token."


class AccountError(Exception):
    """Base class for failures that carry a caller-safe message."""

    default_message = "Account operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AccountError):
    """Malformed input or a policy violation (weak password, duplicate email, unknown role)."""

    default_message = "Validation failed."

    def __init__(self, message: str | None = None, errors: list[str] | None = None) -> None:
        self.errors = list(errors or ([message] if message else []))
        super().__init__(message or ", ".join(self.errors) or None)


class NotFoundError(AccountError):
    default_message = NO_ACCOUNT_FOUND


class AuthenticationError(AccountError):
    """Unknown email and wrong password share this error and its message."""

    default_message = INVALID_CREDENTIALS


class InvalidTokenError(AccountError):
    """Token rejected for any reason; the reason is only logged."""

    default_message = INVALID_TOKEN

    def __init__(self, reason: str = "invalid") -> None:
        self.reason = reason
        super().__init__(INVALID_TOKEN)


class PartialFailureError(AccountError):
    """An earlier step was persisted but a dependent step failed."""

    default_message = "Operation partially completed."


class DeadlineExceededError(AccountError):
    default_message = "Request deadline exceeded."


class CancelledError(AccountError):
    default_message = "Request was cancelled."


class RepositoryError(Exception):
    """Persistence collaborator failure with an operator-curated description."""

    def __init__(self, message: str = "Database operation failed.") -> None:
        self.message = message
        super().__init__(message)


class DuplicateEmailError(RepositoryError):
    """Raised by the store when the unique email constraint rejects a write."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email '{email}' is already taken.")


class DuplicateRoleError(RepositoryError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Role name '{name}' is already taken.")


class DuplicateUserNameError(RepositoryError):
    """Raised by the store when the unique user name constraint rejects a write."""

    def __init__(self, user_name: str) -> None:
        self.user_name = user_name
        super().__init__(f"Username '{user_name}' is already taken.")
