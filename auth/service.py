"""Login, logout and profile calls on top of ApiClient."""

import logging

from api_errors import ApiError
from auth.token_store import USER_KEY

log = logging.getLogger(__name__)


class LoginError(ApiError):
    """Login call succeeded at HTTP level but the payload is unusable."""


class AuthService:
    def __init__(self, api_client):
        self._api = api_client
        self._store = api_client.token_store

    async def login(self, username: str, password: str) -> dict:
        data = await self._api.post("/api/auth/login", {
            "username": username,
            "password": password,
        })
        return await self._accept_login(data)

    async def send_sms_code(self, phone: str, scene: str = "login") -> str:
        """``scene`` is ``"login"`` or ``"register"``."""
        data = await self._api.post("/api/auth/send-sms-code", {"phone": phone, "scene": scene})
        message = data.get("message") if isinstance(data, dict) else None
        return message or "Verification code sent"

    async def login_with_sms(self, phone: str, code: str) -> dict:
        data = await self._api.post("/api/auth/login-sms", {"phone": phone, "code": code})
        return await self._accept_login(data)

    async def register(
        self, name: str, email: str, phone: str, password: str, username: str | None = None,
    ) -> dict:
        payload = {
            "name": name,
            "email": email,
            "phone": phone,
            "password": password,
            "password_confirmation": password,
        }
        if username:
            payload["username"] = username
        data = await self._api.post("/api/auth/register", payload)
        return await self._accept_login(data)

    async def _accept_login(self, data) -> dict:
        if not isinstance(data, dict) or data.get("success") is False:
            message = data.get("message") if isinstance(data, dict) else None
            raise LoginError(message or "Login failed")
        if not data.get("token"):
            raise LoginError("Login response is missing the token")
        if not data.get("user"):
            raise LoginError("Login response is missing the user")

        await self._api.set_token(data["token"], data.get("refreshToken"))
        await self._store.set(USER_KEY, data["user"])
        log.info("Logged in as %s", data["user"].get("username") or data["user"].get("id"))
        return data

    async def logout(self):
        try:
            await self._api.post("/api/auth/logout")
        except ApiError as e:
            log.warning("Logout call failed, clearing local session anyway: %s", e)
        finally:
            await self._api.clear_token()

    async def current_user(self, refresh: bool = False) -> dict:
        if not refresh:
            cached = await self._store.get(USER_KEY)
            if cached:
                return cached
        data = await self._api.get("/api/auth/profile")
        user = data.get("user", data) if isinstance(data, dict) else data
        await self._store.set(USER_KEY, user)
        return user

    async def update_profile(self, changes: dict) -> dict:
        data = await self._api.put("/api/auth/profile", changes)
        user = data.get("user", data) if isinstance(data, dict) else data
        await self._store.set(USER_KEY, user)
        return user

    async def change_password(self, current_password: str, new_password: str):
        await self._api.post("/api/auth/change-password", {
            "current_password": current_password,
            "password": new_password,
            "password_confirmation": new_password,
        })

    async def forgot_password(self, email: str):
        await self._api.post("/api/auth/forgot-password", {"email": email})

    async def reset_password(self, token: str, password: str):
        await self._api.post("/api/auth/reset-password", {
            "token": token,
            "password": password,
            "password_confirmation": password,
        })

    async def upload_avatar(self, form) -> dict:
        """``form`` is an ``aiohttp.FormData`` carrying the image file."""
        data = await self._api.post("/api/auth/avatar", form)
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            await self._store.set(USER_KEY, data["user"])
        return data
