"""
MODULE OVERVIEW:
The admin sign-in session: login, restore on startup, logout.

WHAT IS HAPPENING HERE:
Only admin accounts may use the console, so a valid login for any other role is still
rejected. Logout is best-effort on the server side: even if POST /auth/logout fails we
clear the local credential and send the user to sign-in, otherwise they would be stuck.
"""
from loguru import logger

from admin_console.client.api_client import ApiClient
from admin_console.shared.config import settings
from admin_console.shared.errors import ApiError, AuthError
from admin_console.shared.models import AuthUser, LoginResponse


class AuthSession:
    def __init__(
        self,
        api: ApiClient,
        *,
        admin_role_id: int = settings.ADMIN_ROLE_ID,
        logout_path: str = settings.LOGOUT_PATH,
        me_path: str = settings.ME_PATH,
    ):
        self.api = api
        self.admin_role_id = admin_role_id
        self.logout_path = logout_path
        self.me_path = me_path
        self.user: AuthUser | None = None

    @property
    def token(self) -> str | None:
        return self.api.store.get()

    async def login(self, email: str, password: str) -> AuthUser:
        data = await self.api.post(self.api.login_path, json={"email": email, "password": password})
        result = LoginResponse.model_validate(data if isinstance(data, dict) else {})

        if not result.ok or result.user is None or not result.token:
            raise AuthError(result.error or "Login failed")
        if result.user.role_id != self.admin_role_id:
            raise AuthError("Access denied. Admins only.")

        self.api.store.set(result.token)
        self.user = result.user
        logger.info(f"auth=login user_id={result.user.id}")
        return result.user

    async def restore(self) -> AuthUser | None:
        """Validate a persisted credential. Logs out locally when it no longer works."""
        if self.token is None:
            return None
        try:
            data = await self.api.get(self.me_path)
            user = AuthUser.model_validate((data or {}).get("user") if isinstance(data, dict) else None)
        except (ApiError, ValueError) as e:
            logger.info(f"auth=restore_failed reason='{e}'")
            await self.logout()
            return None

        if user.role_id != self.admin_role_id:
            await self.logout()
            return None
        self.user = user
        return user

    async def logout(self) -> None:
        if self.token is not None:
            try:
                await self.api.post(self.logout_path)
            except ApiError as e:
                logger.debug(f"auth=logout_request_failed reason='{e}'")
        self.api.store.clear()
        self.user = None
        self.api.redirect_to_sign_in(self.api.sign_in_url)
