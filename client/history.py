from typing import List, Optional

import httpx

from constants import CLIENT_TIMEOUT_SECONDS, JWT_COOKIE_NAME
from logging_config import get_logger

logger = get_logger(__name__)


class HistoryError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class HistoryClient:
    """Fetches the stored page of a conversation over HTTP."""

    def __init__(self, base_url: str, token: str, timeout: float = CLIENT_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def fetch_dm(self, other_user_id: str, limit: Optional[int] = None) -> List[dict]:
        return await self._fetch(f"/messages/dm/{other_user_id}", limit)

    async def fetch_group(self, group_id: str, limit: Optional[int] = None) -> List[dict]:
        return await self._fetch(f"/messages/group/{group_id}", limit)

    async def _fetch(self, path: str, limit: Optional[int]) -> List[dict]:
        params = {"limit": limit} if limit else None
        async with httpx.AsyncClient(
            base_url=self.base_url,
            cookies={JWT_COOKIE_NAME: self.token},
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                resp = await client.get(path, params=params)
            except httpx.HTTPError as exc:
                logger.warning(f"History request {path} failed: {exc}")
                raise HistoryError("Failed to load messages") from exc
        if resp.status_code != 200:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = None
            raise HistoryError(detail if isinstance(detail, str) else "Failed to load messages", resp.status_code)
        return resp.json().get("messages", [])
