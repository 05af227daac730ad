"""
MODULE OVERVIEW:
The Refresh Coordinator: single-flight credential renewal.

WHAT IS HAPPENING HERE:
When the access token expires, every request in flight gets a 401 at roughly the same
moment. If each of them called /auth/refresh we would rotate the session N times and most
of the new tokens would be stale before they were used. Instead, the first caller becomes
the initiator and does the one network call; everybody arriving while it is busy parks an
asyncio.Future in `_waiters` and is woken with the exact same outcome.

The waiters list is drained in a `finally` block, so even if the initiator is cancelled
nobody is left hanging (they get None, i.e. "could not refresh").
"""
import asyncio
from typing import List

import httpx
from loguru import logger

from admin_console.client.credentials import CredentialStore
from admin_console.shared.models import TokenResponse


class RefreshCoordinator:
    def __init__(self, store: CredentialStore, http: httpx.AsyncClient, refresh_url: str):
        self.store = store
        self.http = http
        self.refresh_url = refresh_url

        self._busy = False
        self._waiters: List[asyncio.Future] = []
        self.renewals = 0

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    async def refresh(self) -> str | None:
        if self._busy:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        self._busy = True
        token: str | None = None
        try:
            token = await self._renew()
            return token
        finally:
            waiters, self._waiters = self._waiters, []
            self._busy = False
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(token)

    async def _renew(self) -> str | None:
        self.renewals += 1
        try:
            response = await self.http.post(self.refresh_url)
        except httpx.HTTPError as e:
            logger.warning(f"refresh=failed reason=network error='{e}'")
            return None

        if response.status_code in (401, 403):
            logger.info(f"refresh=rejected status={response.status_code}")
            return None
        if not response.is_success:
            logger.warning(f"refresh=failed status={response.status_code}")
            return None

        try:
            token = TokenResponse.model_validate(response.json()).token
        except ValueError as e:
            logger.warning(f"refresh=failed reason=bad_body error='{e}'")
            return None

        self.store.set(token)
        logger.info("refresh=ok")
        return token
