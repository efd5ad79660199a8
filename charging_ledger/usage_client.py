"""Client for the Easee charging usage API."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

import httpx

from .errors import ApiFailed, AuthFailed, IdentityNotFound
from .fetcher import FetchPolicy, ResilientFetcher
from .logging import get_logger
from .models import MonthKey, UsageSeries

logger = get_logger(__name__)

_USER_LIST_FIELDS = ("users", "data", "items", "results")
_USER_ID_FIELDS = ("userId", "userID", "id")


class UsageClient:
    """Authenticates against Easee and reads monthly energy per site user."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        base_url: str,
        retries: int = 3,
        retry_delay_ms: int = 1000,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.retry_delay_ms = retry_delay_ms

    def login(self, username: str, password: str) -> str:
        response = self._request(
            "POST",
            "/api/accounts/login",
            label="Easee login",
            json={"userName": username, "password": password},
        )
        if not response.is_success:
            raise AuthFailed(f"Easee login failed with {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthFailed("Easee login response is not JSON", cause=exc) from exc
        token = data.get("accessToken") if isinstance(data, dict) else None
        if not token:
            raise AuthFailed("Easee login response missing accessToken")
        logger.info("easee_login_ok")
        return str(token)

    def monthly_usage(self, site_id: int, user_id: int, token: str) -> UsageSeries:
        response = self._request(
            "GET",
            f"/api/sites/{site_id}/users/{user_id}/monthly",
            label=f"Easee monthly usage ({user_id})",
            token=token,
        )
        if not response.is_success:
            raise ApiFailed(f"Easee API failed for {user_id} with {response.status_code}")
        data = self._json(response, f"Easee monthly usage for {user_id}")
        if data is None:
            data = []
        if not isinstance(data, list):
            raise ApiFailed(f"Easee monthly usage for {user_id} is not a list")

        usage: UsageSeries = {}
        for entry in data:
            if not isinstance(entry, dict):
                continue
            year, month = entry.get("year"), entry.get("month")
            if not year or not month:
                continue
            value = entry.get("totalEnergyUsage")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            try:
                key = MonthKey(int(year), int(month))
            except (TypeError, ValueError):
                continue
            usage[key] = float(value)
        logger.info("easee_usage_fetched", user_id=user_id, months=len(usage))
        return usage

    def site_users(self, site_id: int, token: str) -> List[int]:
        response = self._request(
            "GET",
            f"/api/sites/{site_id}/users",
            label=f"Easee site users ({site_id})",
            token=token,
        )
        if not response.is_success:
            raise ApiFailed(f"Easee site users failed with {response.status_code}")
        data = self._json(response, "Easee site users")
        ids = [user_id for user_id in map(extract_user_id, _user_list(data)) if user_id is not None]
        return ids

    def verify_identities(self, site_id: int, expected: Iterable[int], token: str) -> None:
        """Fail fast when a configured user is not registered on the site."""
        available = self.site_users(site_id, token)
        if not available:
            logger.warning("site_users_unrecognized", site_id=site_id)
            return
        missing = [user_id for user_id in expected if user_id not in available]
        if missing:
            raise IdentityNotFound(site_id, missing, available)

    def _request(
        self,
        method: str,
        path: str,
        label: str,
        token: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return self.fetcher.fetch(
            method,
            f"{self.base_url}{path}",
            FetchPolicy(retries=self.retries, retry_delay_ms=self.retry_delay_ms, label=label),
            headers=headers,
            **kwargs,
        )

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ApiFailed(f"{what} returned invalid JSON", cause=exc) from exc


def _user_list(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for name in _USER_LIST_FIELDS:
            value = data.get(name)
            if isinstance(value, list):
                return value
    return []


def extract_user_id(user: Any) -> Optional[int]:
    """Read a user id from the shapes the site-users endpoint has returned."""
    if isinstance(user, bool):
        return None
    if isinstance(user, int):
        return user
    if isinstance(user, str):
        return int(user) if user.strip().isdigit() else None
    if not isinstance(user, dict):
        return None
    candidate = next((user[name] for name in _USER_ID_FIELDS if user.get(name) is not None), None)
    if candidate is None and isinstance(user.get("user"), dict):
        candidate = user["user"].get("id")
    if isinstance(candidate, bool):
        return None
    if isinstance(candidate, int):
        return candidate
    if isinstance(candidate, str) and candidate.strip().isdigit():
        return int(candidate)
    return None
