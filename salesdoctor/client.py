"""
Async JSON-RPC client for the Sales Doctor API.

Every call is a POST to https://{server}/api/v2/ with the body
{"auth": {"userId", "token"}, "method", "params"} and answers with
{"status", "result", "error"}.

Features:
- Connection pooling with httpx
- Per-call timeout (asyncio.wait_for on top of the httpx timeout)
- Retry with backoff for connection failures only
- One transparent re-login and retry when the token is rejected
- Request correlation IDs for tracing
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx

from salesdoctor.config import APIConfig, config
from salesdoctor.exceptions import (
    AuthenticationError,
    AuthExpiredError,
    DataShapeError,
    TransportError,
    UpstreamAPIError,
)
from salesdoctor.observability import get_correlation_id, get_logger, Timer
from salesdoctor.pagination import AsyncPaginator
from salesdoctor.periods import Period
from salesdoctor.resilience import RetryConfig, retry_with_backoff

logger = get_logger(__name__)

RETRY_CONFIG = RetryConfig(max_attempts=2, base_delay=0.5, max_delay=2.0)

AUTH_ERROR_MARKERS = ("token", "auth", "unauthorized", "user not found")


def server_host(server_url: str) -> str:
    """'https://acme.salesdoc.io/' -> 'acme.salesdoc.io'"""
    host = (server_url or "").strip()
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
    return host.rstrip("/")


def error_message(error: Any) -> str:
    """Readable text from a string or {code, message} error payload."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return json.dumps(error, default=str)


def error_code(error: Any) -> Any:
    if isinstance(error, dict):
        return error.get("code")
    return None


def is_auth_error(error: Any) -> bool:
    """True for code 401 or a message mentioning the token/authorization."""
    code = error_code(error)
    if code is not None and str(code) == "401":
        return True
    if isinstance(error, str):
        text = error
    else:
        text = json.dumps(error or "", default=str)
    text = text.lower()
    return any(marker in text for marker in AUTH_ERROR_MARKERS)


class SalesDoctorClient:
    """
    Async client for the Sales Doctor RPC API.

    Usage:
        async with SalesDoctorClient() as client:
            orders = await client.get_orders(period)

        # Or with manual lifecycle:
        client = SalesDoctorClient()
        await client.connect()
        try:
            balances = await client.get_balances()
        finally:
            await client.close()
    """

    def __init__(
        self,
        server_url: str = None,
        login: str = None,
        password: str = None,
        user_id: str = None,
        token: str = None,
        timeout: float = None,
        api_config: APIConfig = None,
        retry_config: RetryConfig = RETRY_CONFIG,
    ):
        """
        Initialize client.

        Args:
            server_url: Sales Doctor host (defaults to SD_SERVER_URL)
            login: Login for token refresh (defaults to SD_LOGIN)
            password: Password for token refresh (defaults to SD_PASSWORD)
            user_id: Pre-issued user id (defaults to SD_USER_ID)
            token: Pre-issued token (defaults to SD_TOKEN)
            timeout: Per-call timeout in seconds (defaults to SD_REQUEST_TIMEOUT)
            api_config: Page sizes and ceilings (defaults to global config)
            retry_config: Backoff for connection failures
        """
        self.settings = api_config or config.api
        self.host = server_host(server_url or self.settings.server_url)
        self.login_name = login or self.settings.login
        self.password = password or self.settings.password
        self.user_id = user_id or self.settings.user_id
        self.token = token or self.settings.token
        self.timeout = timeout or self.settings.request_timeout
        self.retry_config = retry_config
        self._client: Optional[httpx.AsyncClient] = None

        if not self.host:
            raise ValueError("SD_SERVER_URL is required")

    @property
    def url(self) -> str:
        return f"https://{self.host}/api/v2/"

    @property
    def has_credentials(self) -> bool:
        return bool(self.login_name and self.password)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id and self.token)

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SalesDoctorClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # TRANSPORT
    # ═══════════════════════════════════════════════════════════════════════════

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST one envelope, retrying connection failures."""
        try:
            return await retry_with_backoff(
                self._do_post,
                body,
                config=self.retry_config,
                retryable_exceptions=(httpx.ConnectError,),
            )
        except httpx.ConnectError as e:
            raise TransportError("Sales Doctor unreachable", str(e)) from e

    async def _do_post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a single POST (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        method = body.get("method", "")
        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"salesdoctor_{method}", logger):
                response = await asyncio.wait_for(
                    self._client.post(
                        self.url,
                        json=body,
                        headers=request_headers if request_headers else None,
                    ),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(
                f"Request timeout: {method}",
                extra={"method": method, "timeout": self.timeout}
            )
            raise TransportError(f"Request timeout after {self.timeout}s", method) from e
        except httpx.ConnectError:
            raise
        except httpx.RequestError as e:
            logger.error(
                f"Request failed: {method} - {e}",
                extra={"method": method, "error": str(e)}
            )
            raise TransportError(f"Request failed: {method}", str(e)) from e

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"method": method, "status_code": response.status_code}
            )
            raise TransportError(
                f"API returned {response.status_code}",
                details=error_text,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DataShapeError(
                f"Response to {method} is not JSON",
                details=response.text[:200],
                expected="json",
                got="text",
            ) from e

        if not isinstance(data, dict):
            raise DataShapeError(
                f"Invalid response to {method}",
                expected="dict",
                got=type(data).__name__,
            )
        return data

    # ═══════════════════════════════════════════════════════════════════════════
    # AUTH
    # ═══════════════════════════════════════════════════════════════════════════

    async def login(self) -> Dict[str, str]:
        """
        Exchange login/password for a userId/token pair.

        Raises:
            AuthenticationError: Missing credentials or login rejected
            TransportError: Upstream unreachable
        """
        if not self.has_credentials:
            raise AuthenticationError("No login credentials configured")

        data = await self._post({
            "method": "login",
            "auth": {"login": self.login_name, "password": self.password},
        })

        result = data.get("result") or {}
        if data.get("status") is True and result.get("userId") and result.get("token"):
            self.user_id = str(result["userId"])
            self.token = str(result["token"])
            logger.info("Logged in to Sales Doctor", extra={"user_id": self.user_id})
            return {"userId": self.user_id, "token": self.token}

        raise AuthenticationError("Login rejected", error_message(data.get("error")))

    async def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post({
            "auth": {"userId": self.user_id, "token": self.token},
            "method": method,
            "params": params,
        })

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Call an RPC method and return its `result` object.

        An authorization failure triggers one re-login and one retry of the
        original call.

        Raises:
            TransportError: Network/timeout/non-2xx
            AuthExpiredError: Re-login or the retried call failed on auth
            UpstreamAPIError: status=false for a non-auth reason
            DataShapeError: Response is not a JSON object
        """
        params = params or {}

        if not self.is_authenticated:
            await self.login()

        data = await self._call(method, params)

        if data.get("status") is False and is_auth_error(data.get("error")):
            logger.info(f"Token rejected on {method}, logging in again", extra={"method": method})
            try:
                await self.login()
            except AuthenticationError as e:
                raise AuthExpiredError("Re-authentication failed", str(e), method=method) from e

            data = await self._call(method, params)
            if data.get("status") is False and is_auth_error(data.get("error")):
                raise AuthExpiredError(
                    "Authorization failed after re-login",
                    error_message(data.get("error")),
                    method=method,
                )

        if data.get("status") is False:
            error = data.get("error")
            raise UpstreamAPIError(
                f"{method} failed",
                error_message(error),
                method=method,
                error_code=error_code(error),
            )

        result = data.get("result")
        return result if isinstance(result, dict) else {}

    # ═══════════════════════════════════════════════════════════════════════════
    # PAGINATION HELPERS
    # ═══════════════════════════════════════════════════════════════════════════

    def paginate(
        self,
        method: str,
        result_key: str,
        page_size: int = 1000,
        max_pages: int = 20,
    ) -> AsyncPaginator:
        """Paginator over one list method."""
        return AsyncPaginator(
            lambda params: self.request(method, params),
            result_key=result_key,
            page_size=page_size,
            max_pages=max_pages,
        )

    async def fetch_all(
        self,
        method: str,
        result_key: str,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 1000,
        max_pages: int = 20,
    ) -> List[Dict[str, Any]]:
        """Fetch every page of a list method."""
        records = await self.paginate(method, result_key, page_size, max_pages).fetch_all(params)
        logger.debug(
            f"Fetched {len(records)} {result_key} records",
            extra={"method": method, "count": len(records)}
        )
        return records

    # ═══════════════════════════════════════════════════════════════════════════
    # ENTITY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_orders(self, period: Optional[Period] = None, status: str = "all") -> List[Dict[str, Any]]:
        """Orders (and returns), optionally filtered upstream by date."""
        params: Dict[str, Any] = {"filter": {"status": status}}
        if period is not None:
            params["filter"].update(period.to_params())
        return await self.fetch_all(
            "getOrder", "order", params,
            self.settings.order_page_size, self.settings.order_max_pages,
        )

    async def get_products(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {"filter": filter} if filter else None
        return await self.fetch_all(
            "getProduct", "product", params,
            self.settings.product_page_size, self.settings.product_max_pages,
        )

    async def get_clients(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {"filter": filter} if filter else None
        return await self.fetch_all(
            "getClient", "client", params,
            self.settings.client_page_size, self.settings.client_max_pages,
        )

    async def get_purchases(self) -> List[Dict[str, Any]]:
        """Purchase (warehouse receipt) documents with their `detail` lines."""
        return await self.fetch_all(
            "getPurchase", "warehouse", None,
            self.settings.purchase_page_size, self.settings.purchase_max_pages,
        )

    async def get_balances(self) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "getBalance", "balance", None,
            self.settings.balance_page_size, self.settings.balance_max_pages,
        )

    async def get_payments(self) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "getPayment", "payment", None,
            self.settings.payment_page_size, self.settings.payment_max_pages,
        )

    async def get_agents(self) -> List[Dict[str, Any]]:
        result = await self.request("getAgent", {"page": 1, "limit": self.settings.agent_limit})
        return result.get("agent") or []

    async def get_price_types(self) -> List[Dict[str, Any]]:
        result = await self.request("getPriceType", {})
        return result.get("priceType") or []

    async def get_stock(self) -> List[Dict[str, Any]]:
        """Warehouse remainders; each warehouse carries `products` quantities."""
        result = await self.request("getStock", {"limit": self.settings.stock_limit})
        return result.get("warehouse") or []
