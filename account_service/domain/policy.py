"""Password policy applied on account creation and password reset."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PasswordPolicy:
    min_length: int = 8
    require_digit: bool = True
    require_lowercase: bool = True
    require_uppercase: bool = True
    require_non_alphanumeric: bool = True
    required_unique_chars: int = 1

    def violations(self, password: str) -> list[str]:
        """Return a description for every rule ``password`` breaks, in a stable order."""
        errors: list[str] = []
        if len(password) < self.min_length:
            errors.append(f"Passwords must be at least {self.min_length} characters.")
        if self.require_non_alphanumeric and all(ch.isalnum() for ch in password):
            errors.append("Passwords must have at least one non alphanumeric character.")
        if self.require_digit and not any("0" <= ch <= "9" for ch in password):
            errors.append("Passwords must have at least one digit ('0'-'9').")
        if self.require_lowercase and not any("a" <= ch <= "z" for ch in password):
            errors.append("Passwords must have at least one lowercase ('a'-'z').")
        if self.require_uppercase and not any("A" <= ch <= "Z" for ch in password):
            errors.append("Passwords must have at least one uppercase ('A'-'Z').")
        if len(set(password)) < self.required_unique_chars:
            errors.append(
                f"Passwords must use at least {self.required_unique_chars} different characters."
            )
        return errors
