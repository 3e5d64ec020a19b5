"""Persistence and identity on a hosted Supabase project (auth + PostgREST)."""

import logging

import requests

from .defaults import DEFAULT_STATS
from .exceptions import AuthenticationError, GatewayError

logger = logging.getLogger(__name__)

SESSION_EXPIRED = "Your session has expired. Please sign in again."

AUTH_MESSAGES = {
    "Invalid login credentials": "Invalid email or password. Check your credentials and try again.",
    "Email not confirmed": "Please confirm your email before signing in. Check your inbox.",
}


def _error_message(response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(data, dict):
        return str(data)
    return (
        data.get("error_description")
        or data.get("msg")
        or data.get("message")
        or data.get("error")
        or f"HTTP {response.status_code}"
    )


def _friendly(message: str) -> str:
    for needle, text in AUTH_MESSAGES.items():
        if needle in message:
            return text
    return message


class SupabaseGateway:
    """Client for the ``profiles``, ``completed_exercises`` and ``user_stats`` tables."""

    def __init__(self, url: str, anon_key: str, access_token: str | None = None,
                 timeout: float = 10, http=None, refresh_token: str | None = None):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self, extra=None) -> dict:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, path: str, headers=None, **kwargs):
        try:
            return self.http.request(
                method,
                f"{self.url}{path}",
                headers=self._headers(headers),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise GatewayError(f"Backend unreachable: {e}") from e

    def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", None)
        response = self._send(method, path, headers, **kwargs)

        # Access tokens expire after about an hour; refresh once and replay
        if response.status_code == 401 and path.startswith("/rest/"):
            self.refresh()
            response = self._send(method, path, headers, **kwargs)

        if response.status_code >= 400:
            detail = _error_message(response)
            raise GatewayError(
                f"{method} {path} failed: {detail}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    def _rows(self, table: str, params: dict):
        response = self._request("GET", f"/rest/v1/{table}", params=params)
        try:
            return response.json() or []
        except ValueError as e:
            raise GatewayError(f"GET /rest/v1/{table} returned a non-JSON body", status_code=response.status_code) from e

    # ───────── Identity ─────────

    def _auth(self, path: str, payload: dict, params=None) -> dict:
        try:
            data = self._request("POST", f"/auth/v1/{path}", json=payload, params=params)
        except GatewayError as e:
            if e.status_code is None or e.status_code >= 500:
                raise
            raise AuthenticationError(_friendly(e.detail)) from e
        return data.json() if data.content else {}

    def _update_tokens(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token") or self.refresh_token

    def refresh(self):
        """Trade the refresh token for a new access token."""
        if not self.refresh_token:
            raise AuthenticationError(SESSION_EXPIRED)
        # The expired token must not ride along on the refresh call
        self.access_token = None
        try:
            data = self._auth("token", {"refresh_token": self.refresh_token}, params={"grant_type": "refresh_token"})
        except AuthenticationError as e:
            raise AuthenticationError(SESSION_EXPIRED) from e
        logger.info("Refreshed access token")
        self._update_tokens(data)

    def sign_in(self, email: str, password: str):
        data = self._auth("token", {"email": email, "password": password}, params={"grant_type": "password"})
        user = data.get("user") or {}
        self._update_tokens(data)
        return {
            "user_id": user.get("id"),
            "email": user.get("email", email),
            "name": (user.get("user_metadata") or {}).get("name") or "User",
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }

    def sign_up(self, email: str, password: str, name: str = "", redirect_to: str | None = None):
        params = {"redirect_to": redirect_to} if redirect_to else None
        data = self._auth(
            "signup",
            {"email": email, "password": password, "data": {"name": name}},
            params=params,
        )
        # With email confirmation on, the user object comes back bare and without a session
        user = data.get("user") or data
        if user.get("identities") == []:
            raise AuthenticationError("An account with this email already exists. Please sign in.")

        self._update_tokens(data)
        return {
            "user_id": user.get("id"),
            "email": user.get("email", email),
            "name": name or "User",
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "confirmation_required": self.access_token is None,
        }

    def request_password_reset(self, email: str, redirect_to: str | None = None):
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._auth("recover", {"email": email}, params=params)

    def ensure_profile(self, user_id: str, name: str = ""):
        """Create the profile and stats rows the first time a user signs in."""
        if self._rows("profiles", {"id": f"eq.{user_id}", "select": "id"}):
            return
        logger.info("Creating profile for user %s", user_id)
        minimal = {"Prefer": "return=minimal"}
        self._request("POST", "/rest/v1/profiles", json={"id": user_id, "name": name or "User"}, headers=minimal)
        self._request("POST", "/rest/v1/user_stats", json={"user_id": user_id}, headers=minimal)

    # ───────── Completions & stats ─────────

    def fetch_completed_exercise_ids(self, user_id: str, day):
        try:
            rows = self._rows("completed_exercises", {
                "user_id": f"eq.{user_id}",
                "date": f"eq.{day.isoformat()}",
                "select": "exercise_id",
            })
        except GatewayError as e:
            logger.warning("Could not load completions for %s on %s: %s", user_id, day, e)
            return set()
        return {row["exercise_id"] for row in rows if row.get("exercise_id")}

    def record_completion(self, user_id: str, exercise_id: str, exercise_kind: str, day):
        self._request(
            "POST",
            "/rest/v1/completed_exercises",
            json={
                "user_id": user_id,
                "exercise_id": exercise_id,
                "exercise_type": exercise_kind,
                "date": day.isoformat(),
            },
            headers={"Prefer": "return=minimal"},
        )

    def fetch_user_stats(self, user_id: str):
        rows = self._rows("user_stats", {"user_id": f"eq.{user_id}", "select": "*"})
        if not rows:
            return None
        row = rows[0]
        return {key: row.get(key, default) for key, default in DEFAULT_STATS.items()}

    def update_user_stats(self, user_id: str, fields: dict):
        self._request(
            "PATCH",
            "/rest/v1/user_stats",
            params={"user_id": f"eq.{user_id}"},
            json=fields,
            headers={"Prefer": "return=minimal"},
        )
