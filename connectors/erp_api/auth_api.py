"""Authentication endpoints of the ERP backend.

Login, registration, Google sign-in and token refresh are issued with
``skip_auth``; everything else goes through the normal bearer/refresh path
of the HttpClient.
"""

from typing import Any, Dict, Mapping, Optional

from connectors.erp_api.api_client import HttpClient, get_default_client
from connectors.erp_api.api_models import TokenPair
from core.observability.logging import log_request_event

REGISTER_PATH = "/api/v1/users/register/"
GOOGLE_AUTH_URL_PATH = "/api/v1/auth/google/url/"
GOOGLE_CALLBACK_PATH = "/api/v1/auth/google/callback/"
CURRENT_USER_PATH = "/api/v1/users/me/"


class AuthApi:
    """Login/logout and the current-user endpoints.

    Usage:
        auth = AuthApi(client)
        await auth.login("jane@example.com", "secret")
        me = await auth.current_user()
        auth.logout()
    """

    def __init__(self, client: Optional[HttpClient] = None):
        self._client = client or get_default_client()

    @property
    def client(self) -> HttpClient:
        return self._client

    async def login(self, email: str, password: str) -> TokenPair:
        """Exchange credentials for a token pair and store it."""
        payload = await self._client.post(
            self._client.settings.login_path,
            {"email": email, "password": password},
            skip_auth=True,
        )
        tokens = TokenPair.model_validate(payload)
        self._client.token_store.set_tokens(tokens.access, tokens.refresh)
        log_request_event("Logged in", email=email)
        return tokens

    async def google_auth_url(self) -> str:
        """Get the URL that starts the Google sign-in flow."""
        payload = await self._client.get(GOOGLE_AUTH_URL_PATH, skip_auth=True)
        return payload["auth_url"]

    async def google_callback(self, code: str, state: Optional[str] = None) -> TokenPair:
        """Exchange the code from the Google redirect for a token pair and store it."""
        body = {"code": code}
        if state is not None:
            body["state"] = state
        payload = await self._client.post(GOOGLE_CALLBACK_PATH, body, skip_auth=True)
        tokens = TokenPair.model_validate(payload)
        self._client.token_store.set_tokens(tokens.access, tokens.refresh)
        log_request_event("Logged in with Google")
        return tokens

    def logout(self) -> None:
        self._client.token_store.clear_tokens()
        log_request_event("Logged out")

    async def register(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._client.post(REGISTER_PATH, dict(data), skip_auth=True)

    async def current_user(self) -> Dict[str, Any]:
        return await self._client.get(CURRENT_USER_PATH)

    def is_authenticated(self) -> bool:
        return self._client.token_store.is_authenticated()

    def get_access_token(self) -> Optional[str]:
        return self._client.token_store.get_access_token()

    def set_tokens(self, access: str, refresh: str) -> None:
        """Store tokens obtained outside this client."""
        self._client.token_store.set_tokens(access, refresh)
