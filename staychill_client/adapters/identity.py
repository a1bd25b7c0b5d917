"""
Identity provider adapter.

The dispatcher only needs two things from the identity provider: a bearer
token (refreshed when needed) and a way to hear about sign-in/sign-out.
"""

import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import jwt

from shared.logging import get_logger
from shared.errors import AuthenticationError


AuthStateCallback = Callable[[Optional[Dict[str, Any]]], Any]
TokenRefresher = Callable[[Dict[str, Any]], Awaitable[str]]


class IdentityProvider(Protocol):
    async def get_token(self, force_refresh: bool = False) -> Optional[str]:
        ...

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Callable[[], None]:
        ...


class SessionIdentityProvider:
    """Holds the signed-in user and their bearer token.

    Tokens are JWTs issued by the identity service. Only the ``exp`` claim is
    read here; signatures are verified server-side.
    """

    def __init__(self,
                 refresher: Optional[TokenRefresher] = None,
                 *,
                 clock: Callable[[], float] = time.time,
                 leeway_seconds: int = 30):
        self.refresher = refresher
        self.leeway_seconds = leeway_seconds
        self._clock = clock
        self._user: Optional[Dict[str, Any]] = None
        self._token: Optional[str] = None
        self._callbacks: List[AuthStateCallback] = []
        self.logger = get_logger("client.identity")

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self._user

    def sign_in(self, user: Dict[str, Any], token: str) -> None:
        self._user = user
        self._token = token
        self.logger.info("User signed in", user_id=user.get("id"))
        self._notify()

    def sign_out(self) -> None:
        had_user = self._user is not None
        self._user = None
        self._token = None
        if had_user:
            self.logger.info("User signed out")
            self._notify()

    def token_expired(self, token: str) -> bool:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.DecodeError:
            # opaque tokens carry no expiry we can read
            return False
        exp = claims.get("exp")
        if exp is None:
            return False
        return self._clock() >= float(exp) - self.leeway_seconds

    async def get_token(self, force_refresh: bool = False) -> Optional[str]:
        """Current token, refreshed first when forced or expired. None when signed out."""
        if self._user is None or self._token is None:
            return None

        if (force_refresh or self.token_expired(self._token)) and self.refresher is not None:
            try:
                self._token = await self.refresher(self._user)
                self.logger.debug("Token refreshed", forced=force_refresh)
            except Exception as e:
                self.logger.error("Error refreshing ID token", error=str(e))
                if self.token_expired(self._token):
                    raise AuthenticationError("Token refresh failed", details={"error": str(e)})

        return self._token

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._user)
            except Exception as e:
                self.logger.error("Auth state callback failed", error=str(e))
