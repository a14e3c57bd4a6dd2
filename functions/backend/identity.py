"""
Identity provider client (Supabase GoTrue REST API).

Supports an in-memory fallback for tests/local runs and a requests-backed
implementation for production.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
LIST_USERS_PAGE_SIZE = 1000


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects or fails a request."""


@dataclass
class IdentityUser:
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class GeneratedLink:
    action_link: str
    hashed_token: Optional[str] = None
    verification_type: Optional[str] = None


class IdentityClient(Protocol):
    """Interface for identity-provider access."""

    def get_user(self, access_token: str) -> Optional[IdentityUser]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        ...

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        ...

    def generate_link(
        self, link_type: str, email: str, redirect_to: Optional[str] = None
    ) -> GeneratedLink:
        ...

    def delete_user(self, user_id: str) -> None:
        ...


def _json_object(response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError as exc:
        raise IdentityProviderError(
            f"Invalid JSON from GoTrue: {response.text}"
        ) from exc
    if not isinstance(data, dict):
        raise IdentityProviderError(f"Unexpected GoTrue response: {response.text}")
    return data


def _to_user(payload: dict) -> IdentityUser:
    return IdentityUser(
        id=payload["id"],
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata") or {},
    )


class SupabaseIdentityClient:
    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not base_url or not service_role_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout = timeout
        self.session = requests.Session()

    def _admin_headers(self) -> dict:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
        }

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise IdentityProviderError(f"{method} {path} failed: {exc}") from exc

    def get_user(self, access_token: str) -> Optional[IdentityUser]:
        response = self._request(
            "GET",
            "/auth/v1/user",
            headers={
                "apikey": self.service_role_key,
                "Authorization": f"Bearer {access_token}",
            },
        )
        if response.status_code in (401, 403, 404):
            return None
        if not response.ok:
            raise IdentityProviderError(
                f"User lookup failed: {response.status_code} {response.text}"
            )
        return _to_user(_json_object(response))

    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        response = self._request(
            "GET", f"/auth/v1/admin/users/{user_id}", headers=self._admin_headers()
        )
        if response.status_code == 404:
            return None
        if not response.ok:
            raise IdentityProviderError(
                f"Admin user lookup failed: {response.status_code} {response.text}"
            )
        return _to_user(_json_object(response))

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        target = email.strip().lower()
        page = 1
        while True:
            response = self._request(
                "GET",
                "/auth/v1/admin/users",
                headers=self._admin_headers(),
                params={"page": page, "per_page": LIST_USERS_PAGE_SIZE},
            )
            if not response.ok:
                raise IdentityProviderError(
                    f"Listing users failed: {response.status_code} {response.text}"
                )
            users = _json_object(response).get("users") or []
            for payload in users:
                if (payload.get("email") or "").lower() == target:
                    return _to_user(payload)
            if len(users) < LIST_USERS_PAGE_SIZE:
                return None
            page += 1

    def generate_link(
        self, link_type: str, email: str, redirect_to: Optional[str] = None
    ) -> GeneratedLink:
        body: dict = {"type": link_type, "email": email}
        if redirect_to:
            body["redirect_to"] = redirect_to
        response = self._request(
            "POST",
            "/auth/v1/admin/generate_link",
            headers=self._admin_headers(),
            json=body,
        )
        if not response.ok:
            raise IdentityProviderError(
                f"generate_link failed: {response.status_code} {response.text}"
            )
        payload = _json_object(response)
        # Older GoTrue releases nest the link fields under "properties".
        props = payload.get("properties") or payload
        action_link = props.get("action_link")
        if not action_link:
            raise IdentityProviderError("generate_link returned no action_link")
        return GeneratedLink(
            action_link=action_link,
            hashed_token=props.get("hashed_token"),
            verification_type=props.get("verification_type"),
        )

    def delete_user(self, user_id: str) -> None:
        response = self._request(
            "DELETE", f"/auth/v1/admin/users/{user_id}", headers=self._admin_headers()
        )
        if not response.ok and response.status_code != 404:
            raise IdentityProviderError(
                f"Deleting user {user_id} failed: {response.status_code} {response.text}"
            )
        logger.info("Deleted identity user %s", user_id)


@dataclass
class InMemoryIdentityClient:
    """Token table and user directory for testing/dev."""

    tokens: Dict[str, IdentityUser] = field(default_factory=dict)
    users: Dict[str, IdentityUser] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    generated: list[tuple[str, str, Optional[str]]] = field(default_factory=list)
    fail_generate_link: bool = False

    def add_user(
        self, user_id: str, email: Optional[str] = None, token: Optional[str] = None
    ) -> IdentityUser:
        user = IdentityUser(id=user_id, email=email)
        self.users[user_id] = user
        if token:
            self.tokens[token] = user
        return user

    def get_user(self, access_token: str) -> Optional[IdentityUser]:
        return self.tokens.get(access_token)

    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        return self.users.get(user_id)

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        target = email.strip().lower()
        for user in self.users.values():
            if (user.email or "").lower() == target:
                return user
        return None

    def generate_link(
        self, link_type: str, email: str, redirect_to: Optional[str] = None
    ) -> GeneratedLink:
        if self.fail_generate_link:
            raise IdentityProviderError("generate_link disabled")
        self.generated.append((link_type, email, redirect_to))
        return GeneratedLink(
            action_link=f"https://auth.example.test/verify?type={link_type}&email={email}",
            hashed_token=f"hash-{len(self.generated)}",
            verification_type=link_type,
        )

    def delete_user(self, user_id: str) -> None:
        self.deleted.append(user_id)
        self.users.pop(user_id, None)
        for token, user in list(self.tokens.items()):
            if user.id == user_id:
                del self.tokens[token]
