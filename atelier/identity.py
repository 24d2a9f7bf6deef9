"""
Identity provider abstraction for Supabase Auth (GoTrue) and in-memory testing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from atelier.errors import IdentityError

REQUEST_TIMEOUT = 15  # seconds


@dataclass
class IdentityUser:
    id: str
    email: Optional[str] = None
    raw: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        if self.raw:
            return self.raw
        return {"id": self.id, "email": self.email}


@dataclass
class IdentitySession:
    access_token: str
    user: IdentityUser


class IdentityClient(Protocol):
    """Defines the operations the API needs from the identity provider."""

    def create_user(self, email: str, password: str) -> IdentityUser:
        ...

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        ...

    def get_user(self, token: str) -> Optional[IdentityUser]:
        ...

    def send_recovery_email(self, email: str, redirect_to: str) -> None:
        ...


@dataclass
class InMemoryIdentityClient:
    """Test double for identity interactions."""

    users: dict = field(default_factory=dict)
    passwords: dict = field(default_factory=dict)
    tokens: dict = field(default_factory=dict)
    recovery_requests: list = field(default_factory=list)

    def create_user(self, email: str, password: str) -> IdentityUser:
        if not email or not password:
            raise IdentityError("Email and password are required")
        if any(user.email == email for user in self.users.values()):
            raise IdentityError(
                "A user with this email address has already been registered"
            )
        user = IdentityUser(id=str(uuid.uuid4()), email=email)
        self.users[user.id] = user
        self.passwords[user.id] = password
        return user

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        for user in self.users.values():
            if user.email == email and self.passwords.get(user.id) == password:
                return IdentitySession(
                    access_token=self.issue_token(user.id), user=user
                )
        raise IdentityError("Invalid login credentials")

    def get_user(self, token: str) -> Optional[IdentityUser]:
        user_id = self.tokens.get(token)
        if user_id is None:
            raise IdentityError("invalid JWT: unable to parse or verify signature")
        return self.users.get(user_id)

    def send_recovery_email(self, email: str, redirect_to: str) -> None:
        if not email:
            raise IdentityError("To send a recovery email, you need to provide an email")
        self.recovery_requests.append((email, redirect_to))

    def issue_token(self, user_id: str) -> str:
        token = uuid.uuid4().hex
        self.tokens[token] = user_id
        return token

    def add_user(self, email: str, password: str = "secret") -> tuple[IdentityUser, str]:
        """Register a user and return it with a valid access token."""
        user = self.create_user(email, password)
        return user, self.issue_token(user.id)


@dataclass
class SupabaseIdentityClient:
    """
    GoTrue REST client authenticated with the project's service-role key.
    """

    url: str
    service_role_key: str
    timeout: float = REQUEST_TIMEOUT

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        self._session = requests.Session()
        self._session.headers.update({"apikey": self.service_role_key})

    def _auth_url(self, path: str) -> str:
        return f"{self.url}/auth/v1/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        bearer: str | None = None,
        **kwargs,
    ) -> dict:
        # A caller token, when given, is never swapped for the service key.
        token = self.service_role_key if bearer is None else bearer
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = self._session.request(
                method,
                self._auth_url(path),
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise IdentityError(str(exc)) from exc
        if response.status_code >= 400:
            raise IdentityError(_error_message(response))
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityError("Identity provider returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise IdentityError("Identity provider returned an unexpected body")
        return payload

    def create_user(self, email: str, password: str) -> IdentityUser:
        payload = self._request(
            "POST",
            "admin/users",
            json={"email": email, "password": password, "email_confirm": True},
        )
        return _to_user(payload)

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        payload = self._request(
            "POST",
            "token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if not payload.get("access_token") or not payload.get("user"):
            raise IdentityError("Missing session in token response")
        return IdentitySession(
            access_token=payload["access_token"], user=_to_user(payload["user"])
        )

    def get_user(self, token: str) -> Optional[IdentityUser]:
        if not token:
            raise IdentityError("Empty bearer token")
        payload = self._request("GET", "user", bearer=token)
        if not payload.get("id"):
            return None
        return _to_user(payload)

    def send_recovery_email(self, email: str, redirect_to: str) -> None:
        self._request(
            "POST",
            "recover",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )


def _to_user(payload: dict) -> IdentityUser:
    # Admin endpoints return the user directly, older versions wrap it.
    user = payload.get("user", payload) if isinstance(payload, dict) else None
    if not isinstance(user, dict) or not user.get("id"):
        raise IdentityError("Identity provider returned no user")
    return IdentityUser(id=user["id"], email=user.get("email"), raw=user)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"
