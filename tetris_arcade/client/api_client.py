"""
Score Service Client
====================
Async HTTP client for the account/score service.

Every call returns the decoded JSON body. Transport failures come back as
{"success": False, "error": ...} instead of raising, so callers on the frame
loop never have to guard against exceptions.
"""

from typing import Optional, Dict, Any
import logging

import httpx

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Connection error"


class TetrisApiClient:

    def __init__(
        self,
        base_url: str = "http://localhost:8000/api",
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(self, path: str, method: str = "GET", body: Optional[dict] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self._headers(),
                    json=body
                )
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s %s failed: %s", method, path, e)
            return {"success": False, "error": CONNECTION_ERROR}

    async def register(self, username: str, password: str) -> Dict[str, Any]:
        return await self.request("/auth/register", "POST", {"username": username, "password": password})

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        """Log in and keep the returned token for later private calls"""
        result = await self.request("/auth/login", "POST", {"username": username, "password": password})
        if result.get("token"):
            self.token = result["token"]
        return result

    async def leaderboard(self) -> Dict[str, Any]:
        return await self.request("/leaderboard")

    async def profile(self) -> Dict[str, Any]:
        return await self.request("/user/profile")

    async def update_settings(self, key_map: Dict[str, str]) -> Dict[str, Any]:
        return await self.request("/user/settings", "PUT", {"keyMap": key_map})

    async def submit_stats(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("/stats", "POST", summary)

    async def reset_history(self) -> Dict[str, Any]:
        return await self.request("/analytics/reset", "DELETE")
