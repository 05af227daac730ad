"""
MODULE OVERVIEW:
The Authenticated Request Executor. Every REST call of the console goes through here.

WHAT IS HAPPENING HERE:
One logical request = resolve URL, attach the bearer token, encode the body, send.
On a 401 we ask the RefreshCoordinator for a new token and replay the request exactly
once. The replay is sent with `RequestAttempt.RETRIED`, and a RETRIED request that gets
another 401 is terminal: no third attempt, ever.

Terminal auth failure clears the CredentialStore, fires the sign-in redirect callback and
raises SessionExpiredError so callers stop what they were doing.

We share one httpx.AsyncClient for everything. Its cookie jar plays the role of the
browser's `credentials: "include"`: the refresh endpoint relies on the session cookie.
"""
import json
from enum import Enum
from typing import Any, Callable, Mapping

import httpx
from loguru import logger

from admin_console.client.credentials import CredentialStore
from admin_console.client.refresh import RefreshCoordinator
from admin_console.shared.config import settings
from admin_console.shared.errors import ApiError, NetworkError, SessionExpiredError


class RequestAttempt(str, Enum):
    FRESH = "fresh"
    RETRIED = "retried"


def _default_redirect(sign_in_url: str) -> None:
    logger.warning(f"session=expired redirect={sign_in_url}")


class ApiClient:
    def __init__(
        self,
        store: CredentialStore,
        base_url: str = settings.API_BASE_URL,
        *,
        http: httpx.AsyncClient | None = None,
        login_path: str = settings.LOGIN_PATH,
        refresh_path: str = settings.REFRESH_PATH,
        sign_in_url: str = settings.SIGN_IN_URL,
        redirect_to_sign_in: Callable[[str], None] | None = None,
        timeout: float = settings.REQUEST_TIMEOUT_S,
    ):
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.http = http or httpx.AsyncClient(timeout=timeout)
        self.login_path = login_path
        self.refresh_path = refresh_path
        self.sign_in_url = sign_in_url
        self.redirect_to_sign_in = redirect_to_sign_in or _default_redirect
        self.refresher = RefreshCoordinator(store, self.http, self.resolve_url(refresh_path))

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ==========================
    # REQUEST BUILDING
    # ==========================
    def resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path if path.startswith('/') else '/' + path}"

    def auth_headers(self) -> dict[str, str]:
        token = self.store.get()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _is_auth_endpoint(self, url: str) -> bool:
        path = httpx.URL(url).path
        return path.endswith(self.login_path) or path.endswith(self.refresh_path)

    def _build(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None,
        json_body: Any,
        content: str | bytes | None,
        data: Mapping[str, Any] | None,
        files: Any,
        params: Mapping[str, Any] | None,
    ) -> httpx.Request:
        if method == "GET" and any(body is not None for body in (json_body, content, data, files)):
            raise ValueError("GET requests cannot carry a body, pass query values with params=")

        request_headers = httpx.Headers(headers or {})
        request_headers.update(self.auth_headers())
        kwargs: dict[str, Any] = {"params": params}

        if files is not None or data is not None:
            # Form and multipart bodies: httpx writes its own content type, pass through untouched.
            kwargs["files"] = files
            kwargs["data"] = data
        elif isinstance(content, bytes):
            kwargs["content"] = content
        elif method != "GET":
            if "Content-Type" not in request_headers:
                request_headers["Content-Type"] = "application/json"
            if content is not None:
                kwargs["content"] = content
            elif isinstance(json_body, str):
                kwargs["content"] = json_body
            else:
                kwargs["content"] = json.dumps(json_body if json_body is not None else {})

        return self.http.build_request(method, url, headers=request_headers, **kwargs)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.http.send(request)
        except httpx.HTTPError as e:
            logger.warning(f"request=network_error method={request.method} url={request.url} error='{e}'")
            raise NetworkError() from e

    # ==========================
    # RESPONSE HANDLING
    # ==========================
    @staticmethod
    def decode(response: httpx.Response) -> Any:
        text = response.text
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    @staticmethod
    def _error_for(response: httpx.Response, payload: Any) -> ApiError:
        message = None
        if isinstance(payload, dict):
            message = payload.get("error") or payload.get("message")
        return ApiError(str(message or f"API error ({response.status_code})"), response.status_code, payload)

    def expire_session(self) -> SessionExpiredError:
        """Terminal auth failure: forget the credential and send the user to sign-in."""
        self.store.clear()
        try:
            self.redirect_to_sign_in(self.sign_in_url)
        except Exception as e:
            logger.error(f"Error in sign-in redirect callback: {e}")
        return SessionExpiredError()

    # ==========================
    # PUBLIC API
    # ==========================
    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        content: str | bytes | None = None,
        data: Mapping[str, Any] | None = None,
        files: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self._execute(
            method.upper(),
            self.resolve_url(path),
            dict(headers=headers, json_body=json, content=content, data=data, files=files, params=params),
            RequestAttempt.FRESH,
        )

    async def _execute(self, method: str, url: str, options: dict, attempt: RequestAttempt) -> Any:
        response = await self._send(self._build(method, url, **options))

        if response.status_code == 401:
            if attempt is RequestAttempt.RETRIED or self._is_auth_endpoint(url):
                raise self.expire_session()

            token = await self.refresher.refresh()
            if token is None:
                raise self.expire_session()
            logger.debug(f"request=retry method={method} url={url}")
            return await self._execute(method, url, options, RequestAttempt.RETRIED)

        payload = self.decode(response)
        if not response.is_success:
            raise self._error_for(response, payload)
        return payload

    async def renew_credential(self) -> str | None:
        """Refresh on behalf of callers outside the request path, such as the event stream.

        Shares the single-flight refresh with in-flight requests. When no new token can be
        had, the session is expired exactly as a terminal 401 would expire it.
        """
        token = await self.refresher.refresh()
        if token is None:
            self.expire_session()
        return token

    async def request_raw(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        content: str | bytes | None = None,
    ) -> httpx.Response:
        """Send with the credential attached and return the unparsed response.

        For binary payloads (CSV, PDF, ZIP exports). No refresh-and-retry here.
        """
        request_headers = httpx.Headers(headers or {})
        request_headers.update(self.auth_headers())
        request = self.http.build_request(
            method.upper(), self.resolve_url(path), headers=request_headers, params=params, content=content
        )
        return await self._send(request)

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request(path, method="GET", **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request(path, method="POST", **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request(path, method="PUT", **kwargs)

    async def patch(self, path: str, **kwargs) -> Any:
        return await self.request(path, method="PATCH", **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request(path, method="DELETE", **kwargs)
