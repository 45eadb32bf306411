from __future__ import annotations
import time
import uuid
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from broker.base import Credentials
from broker.errors import AuthError, ProtocolError, TransportError

# Wealthsimple OAuth (same client the web app uses):
#   POST {API_BASE}oauth/token  grant_type=password       -> access/refresh token
#   401 + x-wealthsimple-otp: required; ...                -> resend with OTP
#   POST {API_BASE}oauth/token  grant_type=refresh_token  -> new access token
API_BASE = "https://api.production.wealthsimple.com/v1/"
CLIENT_ID = "4da53ac2b03225bed1550eba8e4611e086c7b905a3855e6ed12ea08c246758fa"
SCOPE = "invest.read mfda.read mercer.read trade.read"
USER_AGENT = "curl/7.64.1"

OTP_HEADER = "x-wealthsimple-otp"
OTP_CLAIM_HEADER = "x-wealthsimple-otp-claim"
DEVICE_ID_HEADER = "x-ws-device-id"

DEF_TIMEOUT = 30
EXPIRY_MARGIN = 60  # refresh this many seconds before the issuer says the token dies


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    REAUTH_REQUIRED = "reauth_required"


def _head(token: Optional[str]) -> str:
    return (token or "")[:8]


class SessionManager:
    """
    Owns the Wealthsimple OAuth session.

    Only the access token ever leaves this object. The session is meant to be
    used from a single thread (the account poller) and does no locking.
    """

    def __init__(
        self,
        base_url: str = API_BASE,
        otp_prompt: Optional[Callable[[], str]] = None,
        timeout: float = DEF_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        device_id: Optional[str] = None,
    ):
        self.base = base_url if base_url.endswith("/") else base_url + "/"
        self.otp_prompt = otp_prompt
        self.timeout = timeout
        self.clock = clock
        self.device_id = device_id or uuid.uuid4().hex
        self.http = requests.Session()
        self.http.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})

        self._state = SessionState.UNAUTHENTICATED
        self._credentials: Optional[Credentials] = None
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._otp_claim: Optional[str] = None
        self._remembered = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def remembered(self) -> bool:
        return self._remembered

    # -----------------------------------------------------
    def login(self, credentials: Optional[Credentials] = None) -> None:
        """Log in with username/password, answering an OTP challenge if one is raised."""
        creds = credentials or self._credentials
        if creds is None:
            raise AuthError("no credentials to log in with")
        self._credentials = creds
        self._state = SessionState.AUTHENTICATING

        payload = {
            "username": creds.username,
            "password": creds.password,
            "grant_type": "password",
            "scope": SCOPE,
            "client_id": CLIENT_ID,
        }
        try:
            r = self._post_token(payload)
            if r.status_code == 401 and self._otp_required(r):
                logger.info("Wealthsimple login requires a one-time password")
                otp = self._next_otp()
                r = self._post_token(
                    payload,
                    {OTP_HEADER: f"{otp};remember=true", DEVICE_ID_HEADER: self.device_id},
                )
                if r.status_code != 200:
                    raise AuthError(f"login failed after 2FA ({r.status_code}): {r.text[:200]}")
                claim = r.headers.get(OTP_CLAIM_HEADER)
                if claim:
                    self._otp_claim = claim
                self._remembered = True
            elif r.status_code != 200:
                raise AuthError(f"login failed ({r.status_code}): {r.text[:200]}")
            self._store_tokens(self._json(r))
        except TransportError as e:
            self._state = SessionState.UNAUTHENTICATED
            raise AuthError(f"login request failed: {e}") from e
        except Exception:
            self._state = SessionState.UNAUTHENTICATED
            raise

        self._state = SessionState.AUTHENTICATED
        logger.info(
            "Wealthsimple login OK (token {}..., remembered={})",
            _head(self._access_token),
            self._remembered,
        )

    def current_token(self) -> str:
        """Return a usable access token, refreshing it first if it is stale."""
        if self._state in (SessionState.UNAUTHENTICATED, SessionState.REAUTH_REQUIRED):
            raise AuthError(f"no usable session (state={self._state.value})")
        if self._state is SessionState.AUTHENTICATED and self._expired():
            logger.debug("Access token past expiry, marking session expired")
            self._state = SessionState.EXPIRED
        if self._state is SessionState.EXPIRED:
            self.refresh()
        return self._access_token  # type: ignore[return-value]

    def refresh(self) -> None:
        """
        Swap the refresh token for a new access token.

        Never prompts. A rejected refresh token leaves the session in
        REAUTH_REQUIRED; whether to fall back to a full login is the caller's call.
        """
        if not self._refresh_token:
            self._state = SessionState.REAUTH_REQUIRED
            raise AuthError("no refresh token, full login required")

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
            "client_id": CLIENT_ID,
        }
        r = self._post_token(payload)
        if r.status_code in (400, 401):
            self._clear_tokens()
            self._state = SessionState.REAUTH_REQUIRED
            raise AuthError(f"refresh token rejected ({r.status_code}): {r.text[:200]}")
        if r.status_code != 200:
            raise TransportError(
                f"token refresh failed ({r.status_code}): {r.text[:200]}",
                status_code=r.status_code,
            )
        self._store_tokens(self._json(r))
        self._state = SessionState.AUTHENTICATED
        logger.info("Wealthsimple token refreshed (token {}...)", _head(self._access_token))

    def invalidate(self) -> None:
        """Mark the current access token as dead; next current_token() refreshes."""
        if self._state is SessionState.AUTHENTICATED:
            self._state = SessionState.EXPIRED

    # -----------------------------------------------------
    def _post_token(self, payload: Dict[str, Any], extra_headers: Optional[Dict[str, str]] = None):
        headers: Dict[str, str] = {}
        if self._otp_claim:
            headers[OTP_CLAIM_HEADER] = self._otp_claim
        if extra_headers:
            headers.update(extra_headers)
        try:
            return self.http.post(
                self.base + "oauth/token", json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"POST oauth/token: {e}") from e

    @staticmethod
    def _otp_required(r) -> bool:
        return (r.headers.get(OTP_HEADER) or "").strip().lower().startswith("required")

    def _next_otp(self) -> str:
        creds = self._credentials
        if creds is not None and creds.otp:
            otp = creds.otp
            self._credentials = replace(creds, otp=None)
            return otp
        if self.otp_prompt is None:
            raise AuthError("one-time password required but no prompt is available")
        otp = (self.otp_prompt() or "").strip()
        if not otp:
            raise AuthError("empty one-time password")
        return otp

    @staticmethod
    def _json(r) -> Dict[str, Any]:
        try:
            data = r.json()
        except ValueError as e:
            raise ProtocolError(f"token response is not JSON: {r.text[:200]}") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"token response is not an object: {type(data).__name__}")
        return data

    def _store_tokens(self, data: Dict[str, Any]) -> None:
        access = data.get("access_token")
        if not access:
            raise ProtocolError("token response missing access_token")
        self._access_token = str(access)
        self._refresh_token = data.get("refresh_token") or self._refresh_token
        expires_in = data.get("expires_in")
        try:
            self._expires_at = self.clock() + float(expires_in) - EXPIRY_MARGIN
        except (TypeError, ValueError):
            self._expires_at = None

    def _clear_tokens(self) -> None:
        self._access_token = None
        self._refresh_token = None
        self._expires_at = None

    def _expired(self) -> bool:
        return self._expires_at is not None and self.clock() >= self._expires_at
