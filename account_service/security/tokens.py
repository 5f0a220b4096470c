"""JWT implementation of the purpose-scoped security token codec."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from ..config import get_settings
from ..domain.contracts import TokenPurpose
from ..domain.errors import InvalidTokenError

logger = logging.getLogger(__name__)

_RESERVED_CLAIMS = frozenset({"iss", "sub", "pur", "iat", "exp"})


class JwtTokenCodec:
    """Issue and redeem signed, expiring tokens bound to a purpose and a subject."""

    def __init__(
        self,
        secret: str | None = None,
        issuer: str | None = None,
        *,
        algorithm: str = "HS256",
        leeway_seconds: int = 0,
    ) -> None:
        settings = get_settings()
        self._secret = secret or settings.token_secret
        self._issuer = issuer or settings.token_issuer
        self._algorithm = algorithm
        self._leeway = leeway_seconds

    def issue(
        self,
        purpose: TokenPurpose,
        subject: str,
        payload: dict[str, Any],
        ttl_seconds: int,
    ) -> str:
        """Create a signed token.

        Parameters
        ----------
        purpose:
            Flow the token authorises; redemption for any other purpose fails.
        subject:
            Account identifier embedded in the ``sub`` claim.
        payload:
            Extra claims, e.g. the target address of an email change.
        ttl_seconds:
            Lifetime of the token from now.
        """
        clashing = _RESERVED_CLAIMS.intersection(payload)
        if clashing:
            raise ValueError(f"payload uses reserved claims: {sorted(clashing)}")
        now = int(time.time())
        claims: dict[str, Any] = {
            **payload,
            "iss": self._issuer,
            "sub": subject,
            "pur": purpose.value,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def redeem(self, token: str, purpose: TokenPurpose, subject: str) -> dict[str, Any]:
        """Verify ``token`` and return its payload claims.

        Raises
        ------
        InvalidTokenError
            For a bad signature, an expired or malformed token, or a purpose
            or subject other than the expected ones.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["exp", "iat", "sub", "iss"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidTokenError("malformed") from exc

        if claims.get("pur") != purpose.value:
            raise InvalidTokenError("purpose")
        if claims.get("sub") != subject:
            raise InvalidTokenError("subject")
        return {key: value for key, value in claims.items() if key not in _RESERVED_CLAIMS}
