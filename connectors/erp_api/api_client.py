"""ERP Backend HTTP Client.

Low-level async HTTP client for the ERP REST backend.
Handles bearer authentication, query encoding, the refresh-and-retry cycle on
401, and error mapping. Every resource client delegates here.
"""

import asyncio
import io
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Type, Union
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from connectors.erp_api.api_errors import (
    ApiError,
    AuthenticationExpiredError,
    AuthenticationRequiredError,
    NetworkError,
    RequestFailedError,
    UploadFailedError,
    REQUEST_FAILED_DETAIL,
    REQUEST_FAILED_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
)
from connectors.erp_api.api_models import QueryParams, RequestDescriptor, TokenRefreshResponse
from core.config import ApiSettings
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from core.security.token_store import TokenStore, get_default_token_store

logger = get_logger(__name__)


@dataclass
class RawResponse:
    """Fully read HTTP response."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


def encode_query_value(value: Any) -> str:
    """Render a scalar the way the backend expects it in a query string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_string(params: Optional[QueryParams]) -> str:
    """URL-encode ``params``, dropping keys whose value is None."""
    if not params:
        return ""
    return urlencode([
        (key, encode_query_value(value))
        for key, value in params.items()
        if value is not None
    ])


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("message")
        if detail:
            return str(detail)
    return fallback


def build_multipart_form(fields: Mapping[str, Any]) -> aiohttp.FormData:
    """Build a multipart form from a mapping.

    Bytes and file objects become file parts; every other value is sent as a
    text part, so the form is multipart even without a file.
    """
    form = aiohttp.FormData()
    for name, value in fields.items():
        if isinstance(value, (bytes, bytearray)):
            form.add_field(name, value, filename=name, content_type="application/octet-stream")
        elif isinstance(value, io.IOBase):
            form.add_field(name, value)
        elif value is not None:
            form.add_field(name, encode_query_value(value), content_type="text/plain; charset=utf-8")
    return form


class HttpClient:
    """Async HTTP client for the ERP backend.

    Provides:
    - Bearer authentication read fresh from the TokenStore on every request
    - One refresh-and-retry cycle per request on 401, shared between
      concurrent requests
    - JSON encoding/decoding and error mapping
    - Multipart upload and raw download variants

    Usage:
        async with HttpClient(settings, token_store) as client:
            page = await client.get("/api/v1/hrms/employees/", params={"page": 2})
    """

    def __init__(
        self,
        settings: Optional[ApiSettings] = None,
        token_store: Optional[TokenStore] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize API client.

        Args:
            settings: Client settings (read from the environment when omitted)
            token_store: Credential store (process default when omitted)
            session: Externally managed aiohttp session
        """
        self.settings = settings or ApiSettings.from_env()
        self.token_store = token_store or get_default_token_store(self.settings)
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self.settings.base_url

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def build_url(self, path: str, params: Optional[QueryParams] = None) -> str:
        """Compose the final URL for ``path``.

        Absolute URLs are used verbatim, anything else is prefixed with the
        base URL. Query parameters are joined with ``?`` or ``&`` depending on
        whether the path already carries a query string.
        """
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        query = build_query_string(params)
        if query:
            url += ("&" if "?" in url else "?") + query
        return url

    def _authorization_headers(self) -> Dict[str, str]:
        self.token_store.reload()
        token = self.token_store.get_access_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    # =========================================================================
    # JSON requests
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[QueryParams] = None,
        body: Optional[Any] = None,
        skip_auth: bool = False,
    ) -> Any:
        """Make a JSON API request.

        Returns:
            Parsed response JSON, or None for an empty response

        Raises:
            AuthenticationRequiredError: 401 and no refresh token stored
            AuthenticationExpiredError: 401 and the refresh failed
            RequestFailedError: Any other non-2xx response
            NetworkError: No response was received
        """
        return await self.execute(RequestDescriptor(
            method=method.upper(),
            path=path,
            params=params,
            body=body,
            skip_auth=skip_auth,
        ))

    async def execute(self, descriptor: RequestDescriptor) -> Any:
        """Run one logical request, including at most one refresh-and-retry."""
        url = self.build_url(descriptor.path, descriptor.params)
        data = None
        if descriptor.body is not None:
            data = json.dumps(descriptor.body, default=str).encode("utf-8")

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if not descriptor.skip_auth:
            headers.update(self._authorization_headers())

        request_id = f"req-{uuid.uuid4().hex[:8]}"
        with with_correlation(request_id=request_id, method=descriptor.method, path=descriptor.path):
            response = await self._send(descriptor.method, url, headers, data)

            if response.status == 401 and not descriptor.skip_auth:
                await self._recover_from_401(headers.get("Authorization"))
                headers["Authorization"] = f"Bearer {self.token_store.get_access_token()}"
                response = await self._send(descriptor.method, url, headers, data, attempt=2)

            return self._handle_response(response)

    async def _recover_from_401(self, sent_authorization: Optional[str]) -> None:
        """Make a fresh access token available for the single retry.

        A token that changed since the request went out (another request's
        refresh finished in between) is reused without refreshing again.

        Raises:
            AuthenticationRequiredError: No refresh token is stored
            AuthenticationExpiredError: The refresh failed; credentials are cleared
        """
        self.token_store.reload()
        current = self.token_store.get_access_token()
        if current and sent_authorization != f"Bearer {current}":
            logger.info("Access token changed while the request was in flight, retrying with it")
            return

        if not self.token_store.get_refresh_token():
            logger.warning("Got 401 and no refresh token is stored")
            get_metrics().record_auth_failure()
            raise AuthenticationRequiredError()

        logger.warning("Got 401, attempting token refresh...")
        if not await self.refresh_access_token():
            get_metrics().record_auth_failure()
            raise AuthenticationExpiredError()

    async def get(self, path: str, params: Optional[QueryParams] = None, skip_auth: bool = False) -> Any:
        return await self.request("GET", path, params=params, skip_auth=skip_auth)

    async def post(self, path: str, body: Optional[Any] = None, skip_auth: bool = False) -> Any:
        return await self.request("POST", path, body=body, skip_auth=skip_auth)

    async def put(self, path: str, body: Optional[Any] = None, skip_auth: bool = False) -> Any:
        return await self.request("PUT", path, body=body, skip_auth=skip_auth)

    async def patch(self, path: str, body: Optional[Any] = None, skip_auth: bool = False) -> Any:
        return await self.request("PATCH", path, body=body, skip_auth=skip_auth)

    async def delete(self, path: str, skip_auth: bool = False) -> Any:
        return await self.request("DELETE", path, skip_auth=skip_auth)

    # =========================================================================
    # Non-JSON variants
    # =========================================================================

    async def upload(
        self,
        path: str,
        form: Union[aiohttp.FormData, Mapping[str, Any]],
        skip_auth: bool = False,
    ) -> Any:
        """POST a multipart payload.

        A mapping is turned into multipart form fields first. No Content-Type
        is set so aiohttp can add the multipart boundary. The current token is
        attached once; a 401 is not refreshed.

        Raises:
            UploadFailedError: Non-2xx response
            NetworkError: No response was received
        """
        if not isinstance(form, aiohttp.FormData):
            form = build_multipart_form(form)
        headers = {} if skip_auth else self._authorization_headers()
        with with_correlation(request_id=f"req-{uuid.uuid4().hex[:8]}", method="POST", path=path):
            response = await self._send("POST", self.build_url(path), headers, form)
            return self._handle_response(
                response,
                failure=UploadFailedError,
                fallback_detail=UPLOAD_FAILED_MESSAGE,
                fallback_message=UPLOAD_FAILED_MESSAGE,
            )

    async def fetch_raw(self, path: str, params: Optional[QueryParams] = None) -> bytes:
        """GET ``path`` and return the undecoded body (exports, PDFs).

        The current token is attached manually; there is no refresh-and-retry.
        """
        url = self.build_url(path, params)
        with with_correlation(request_id=f"req-{uuid.uuid4().hex[:8]}", method="GET", path=path):
            response = await self._send("GET", url, self._authorization_headers(), None)
            if not response.ok:
                self._raise_for_response(response, RequestFailedError, REQUEST_FAILED_DETAIL, REQUEST_FAILED_MESSAGE)
            return response.body

    # =========================================================================
    # Token refresh
    # =========================================================================

    async def refresh_access_token(self) -> bool:
        """Refresh the access token, joining a refresh already in flight.

        Returns:
            True if a new access token is stored
        """
        if self.token_store.is_refresh_pending():
            logger.info("Joining token refresh already in flight")
            get_metrics().record_refresh_shared()

        pending = self.token_store.share_refresh(self._perform_refresh)
        return await asyncio.shield(pending)

    async def _perform_refresh(self) -> bool:
        refresh_token = self.token_store.get_refresh_token()
        if not refresh_token:
            logger.warning("No refresh token available")
            return False

        get_metrics().record_refresh_started()
        try:
            payload = await self.post(
                self.settings.refresh_url,
                {"refresh": refresh_token},
                skip_auth=True,
            )
            tokens = TokenRefreshResponse.model_validate(payload)
        except (ApiError, ValidationError) as e:
            logger.warning(f"Refresh token expired or invalid, clearing credentials: {e}")
            self.token_store.clear_tokens()
            get_metrics().record_refresh_finished(False)
            return False

        self.token_store.update_access_token(tokens.access, tokens.refresh)
        get_metrics().record_refresh_finished(True)
        logger.info("Token refreshed successfully")
        return True

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Any,
        attempt: int = 1,
    ) -> RawResponse:
        session = self._get_session()
        get_metrics().record_request(method, retry=attempt > 1)
        started = time.monotonic()

        with with_correlation(attempt=attempt):
            try:
                async with session.request(method, url, headers=headers, data=data) as response:
                    body = await response.read()
                    raw = RawResponse(response.status, body, dict(response.headers))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                get_metrics().record_network_error()
                logger.error(f"Request failed with {type(e).__name__}: {e}")
                raise NetworkError(f"Network error: {e}") from e

            duration_ms = (time.monotonic() - started) * 1000
            get_metrics().record_response(method, raw.status, duration_ms)
            logger.debug(f"HTTP {raw.status} in {duration_ms:.0f}ms")
        return raw

    def _handle_response(
        self,
        response: RawResponse,
        failure: Type[RequestFailedError] = RequestFailedError,
        fallback_detail: str = REQUEST_FAILED_DETAIL,
        fallback_message: str = REQUEST_FAILED_MESSAGE,
    ) -> Any:
        if not response.ok:
            self._raise_for_response(response, failure, fallback_detail, fallback_message)

        if response.status == 204 or not response.body.strip():
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RequestFailedError(
                f"Invalid JSON in response: {e}",
                response.status,
                response.body.decode("utf-8", errors="replace"),
            )

    @staticmethod
    def _raise_for_response(
        response: RawResponse,
        failure: Type[RequestFailedError],
        fallback_detail: str,
        fallback_message: str,
    ) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = {"detail": fallback_detail}

        message = _error_message(payload, fallback_message)
        logger.warning(f"API error {response.status}: {message}")
        raise failure(message, response.status, payload)


# =============================================================================
# Process-wide default
# =============================================================================

_default_client: Optional[HttpClient] = None


def get_default_client() -> HttpClient:
    """Get the shared client, building it from the environment on first use."""
    global _default_client
    if _default_client is None:
        _default_client = HttpClient()
    return _default_client


def set_default_client(client: Optional[HttpClient]) -> None:
    """Swap the shared client (``None`` resets it)."""
    global _default_client
    _default_client = client
