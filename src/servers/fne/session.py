import time
import logging
from typing import Any, Callable, Dict, List, Optional

import jwt

from src.servers.fne.errors import AuthError

logger = logging.getLogger("fne-session")


class FneSession:
    """
    Bearer-token session handed to the FNE client at construction.

    Created at login, invalidated at logout or when the service answers 401.
    Once invalid, no further request is sent until a new session is opened.
    """

    def __init__(
        self,
        token: str,
        user_id: str,
        user: Optional[Dict[str, Any]] = None,
        expires_at: Optional[float] = None,
    ):
        self.token = token
        self.user_id = user_id
        self.user = user or {}
        self.expires_at = expires_at
        self.invalidated_reason: Optional[str] = None
        self._on_invalidate: List[Callable[["FneSession"], None]] = []

    @classmethod
    def from_token(
        cls,
        token: str,
        user_id: str,
        user: Optional[Dict[str, Any]] = None,
        expires_in: Optional[float] = None,
    ) -> "FneSession":
        """
        Build a session, reading the expiry from the token when it is a JWT

        Args:
            token: bearer token returned by the auth service
            user_id: local user the session belongs to
            user: user profile from the login response
            expires_in: lifetime in seconds from the login response, wins over the JWT
        """
        expires_at = None
        if expires_in:
            expires_at = time.time() + float(expires_in)
        else:
            try:
                # The service verifies the signature; we only need the expiry
                claims = jwt.decode(token, options={"verify_signature": False})
                if claims.get("exp"):
                    expires_at = float(claims["exp"])
            except jwt.PyJWTError:
                logger.debug(f"Token for user {user_id} is not a JWT, no expiry known")
        return cls(token, user_id, user=user, expires_at=expires_at)

    def on_invalidate(self, callback: Callable[["FneSession"], None]) -> None:
        self._on_invalidate.append(callback)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() >= self.expires_at

    @property
    def is_active(self) -> bool:
        return bool(self.token) and self.invalidated_reason is None and not self.is_expired

    def authorization_header(self) -> Dict[str, str]:
        if not self.is_active:
            reason = self.invalidated_reason or ("expired" if self.is_expired else "no token")
            raise AuthError(
                f"FNE session for user {self.user_id} is not active ({reason}). "
                "Please authenticate again.",
                code="SESSION_INVALID",
            )
        return {"Authorization": f"Bearer {self.token}"}

    def invalidate(self, reason: str = "logout") -> None:
        if self.invalidated_reason is not None:
            return
        self.invalidated_reason = reason
        logger.info(f"[invalidate] session for user {self.user_id} invalidated: {reason}")
        for callback in self._on_invalidate:
            callback(self)
