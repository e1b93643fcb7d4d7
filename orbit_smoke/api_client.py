"""Async HTTP client for the Orbit agent API."""
from typing import Optional, Any

import httpx


class APIError(Exception):
    """API request failed."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AgentClient:
    """Client for the agent's HTTP API, bound to one bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AgentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Make HTTP request and handle errors."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise APIError(f"Connection failed: {e}")

        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            raise APIError(
                f"{method} {path} returned {response.status_code}: {detail}",
                response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise APIError(f"{method} {path} returned invalid JSON", response.status_code)

    async def check_health(self) -> None:
        """Raise APIError unless the status endpoint answers with a 2xx."""
        try:
            response = await self._client.get("/system/info")
        except httpx.RequestError as e:
            raise APIError(f"Connection failed: {e}")
        if not response.is_success:
            raise APIError(f"Health check returned {response.status_code}", response.status_code)

    async def system_info(self) -> dict:
        """Get agent version, build and uptime."""
        return await self._request("GET", "/system/info")

    async def issue_token(self, name: str, scopes: list[str], expires_at: str) -> dict:
        """Issue a scoped API token. Requires the admin credential."""
        payload = {"name": name, "scopes": list(scopes), "expires_at": expires_at}
        return await self._request("POST", "/security/tokens", json=payload)

    async def revoke_token(self, token_id: str) -> None:
        """Revoke a previously issued token."""
        await self._request("DELETE", f"/security/tokens/{token_id}")

    async def create_container(
        self, name: str, platform: str, description: Optional[str] = None
    ) -> dict:
        """Request a new container. Returns the task tracking its creation."""
        payload = {"name": name, "platform": platform}
        if description:
            payload["description"] = description
        return await self._request("POST", "/containers", json=payload)

    async def list_containers(self, status: Optional[str] = None) -> list[dict]:
        """List containers."""
        params = {}
        if status:
            params["status"] = status
        return await self._request("GET", "/containers", params=params) or []

    async def list_tasks(
        self, limit: Optional[int] = None, status: Optional[str] = None
    ) -> list[dict]:
        """List tasks in the order the agent returns them."""
        params = {}
        if limit is not None:
            params["limit"] = limit
        if status:
            params["status"] = status
        return await self._request("GET", "/tasks", params=params) or []

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
