"""Test fixtures: an isolated credential store and an ApiClient wired to an in-memory router.

Every test gets its own store, router and client, so no credential or cookie state
leaks between tests. Nothing here touches the network.
"""

import httpx
import pytest
import pytest_asyncio

from admin_console.client.api_client import ApiClient
from admin_console.client.credentials import CredentialStore, MemoryCredentialPersistence
from helpers import BASE, Router


@pytest.fixture()
def store():
    return CredentialStore(MemoryCredentialPersistence(), "mg_admin_token")


@pytest.fixture()
def router():
    return Router()


@pytest.fixture()
def redirects():
    """Collects every sign-in redirect the client fires."""
    return []


@pytest_asyncio.fixture()
async def api(store, router, redirects):
    client = ApiClient(
        store,
        BASE,
        http=httpx.AsyncClient(transport=httpx.MockTransport(router)),
        redirect_to_sign_in=redirects.append,
    )
    yield client
    await client.aclose()
