"""
Tests for salesdoctor.client module.
"""
import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import httpx

from salesdoctor.client import SalesDoctorClient, error_message, is_auth_error, server_host
from salesdoctor.config import APIConfig
from salesdoctor.exceptions import (
    AuthenticationError,
    AuthExpiredError,
    DataShapeError,
    TransportError,
    UpstreamAPIError,
)
from salesdoctor.periods import Period
from salesdoctor.resilience import RetryConfig

NO_DELAY = RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=0)

AUTH_ERROR = {"status": False, "error": {"code": 401, "message": "Invalid token"}}
LOGIN_OK = {"status": True, "result": {"userId": "u_2", "token": "fresh-token"}}


def make_response(payload=None, status_code=200, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


def make_client(**kwargs):
    params = dict(
        server_url="https://acme.salesdoc.io/",
        login="admin",
        password="secret",
        user_id="u_1",
        token="old-token",
        retry_config=NO_DELAY,
    )
    params.update(kwargs)
    return SalesDoctorClient(**params)


def mock_post(client, *payloads):
    """Attach a fake httpx client answering with `payloads` in order."""
    responses = [p if isinstance(p, (MagicMock, Exception)) else make_response(p) for p in payloads]
    client._client = MagicMock()
    client._client.post = AsyncMock(side_effect=responses)
    return client._client.post


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize("raw,expected", [
        ("https://acme.salesdoc.io/", "acme.salesdoc.io"),
        ("http://acme.salesdoc.io", "acme.salesdoc.io"),
        (" acme.salesdoc.io ", "acme.salesdoc.io"),
        ("", ""),
    ])
    def test_server_host(self, raw, expected):
        assert server_host(raw) == expected

    @pytest.mark.parametrize("error", [
        {"code": 401, "message": "whatever"},
        {"code": "401"},
        "Token expired",
        {"message": "User not found"},
        "Unauthorized",
    ])
    def test_auth_errors_detected(self, error):
        assert is_auth_error(error)

    @pytest.mark.parametrize("error", [{"code": 500, "message": "Internal"}, "Bad filter", None])
    def test_other_errors(self, error):
        assert not is_auth_error(error)

    def test_error_message(self):
        assert error_message({"code": 1, "message": "Boom"}) == "Boom"
        assert error_message("plain") == "plain"
        assert error_message(None) == ""


class TestSalesDoctorClient:
    """Tests for SalesDoctorClient class."""

    def test_init(self):
        client = make_client()
        assert client.host == "acme.salesdoc.io"
        assert client.url == "https://acme.salesdoc.io/api/v2/"
        assert client.is_authenticated

    def test_init_without_server_raises(self):
        """Should raise error if no server configured."""
        with pytest.raises(ValueError, match="SD_SERVER_URL is required"):
            SalesDoctorClient(server_url=None, api_config=APIConfig(server_url=""))

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Should work as async context manager."""
        client = make_client()
        async with client:
            assert client._client is not None
        assert client._client is None

    @pytest.mark.asyncio
    async def test_request_success(self):
        """Should post the auth envelope and return the result object."""
        client = make_client()
        post = mock_post(client, {"status": True, "result": {"agent": [{"SD_id": "d0_7"}]}})

        result = await client.request("getAgent", {"page": 1})

        assert result == {"agent": [{"SD_id": "d0_7"}]}
        body = post.await_args.kwargs["json"]
        assert body == {
            "auth": {"userId": "u_1", "token": "old-token"},
            "method": "getAgent",
            "params": {"page": 1},
        }
        assert post.await_args.args[0] == "https://acme.salesdoc.io/api/v2/"

    @pytest.mark.asyncio
    async def test_non_dict_result(self):
        client = make_client()
        mock_post(client, {"status": True, "result": None})
        assert await client.request("getStock") == {}

    @pytest.mark.asyncio
    async def test_logs_in_when_no_token(self):
        client = make_client(user_id=None, token=None, api_config=APIConfig(server_url="", user_id="", token=""))
        post = mock_post(client, LOGIN_OK, {"status": True, "result": {}})

        await client.request("getPriceType")

        login_body = post.await_args_list[0].kwargs["json"]
        assert login_body == {"method": "login", "auth": {"login": "admin", "password": "secret"}}
        assert client.token == "fresh-token"

    @pytest.mark.asyncio
    async def test_login_without_credentials(self):
        client = make_client(login=None, password=None, api_config=APIConfig(server_url="", login="", password=""))
        with pytest.raises(AuthenticationError):
            await client.login()

    @pytest.mark.asyncio
    async def test_login_rejected(self):
        client = make_client()
        mock_post(client, {"status": False, "error": {"message": "Wrong password"}})

        with pytest.raises(AuthenticationError) as exc_info:
            await client.login()

        assert "Wrong password" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_reauth_once_then_succeeds(self):
        """Token rejection triggers exactly one re-login and one retry."""
        client = make_client()
        post = mock_post(client, AUTH_ERROR, LOGIN_OK, {"status": True, "result": {"balance": []}})

        result = await client.request("getBalance")

        assert result == {"balance": []}
        assert post.await_count == 3
        retried = post.await_args_list[2].kwargs["json"]
        assert retried["auth"] == {"userId": "u_2", "token": "fresh-token"}

    @pytest.mark.asyncio
    async def test_reauth_retry_fails(self):
        """A second auth failure surfaces as AuthExpiredError with no further retries."""
        client = make_client()
        post = mock_post(client, AUTH_ERROR, LOGIN_OK, AUTH_ERROR)

        with pytest.raises(AuthExpiredError) as exc_info:
            await client.request("getBalance")

        assert exc_info.value.method == "getBalance"
        assert post.await_count == 3

    @pytest.mark.asyncio
    async def test_relogin_rejected(self):
        client = make_client()
        mock_post(client, AUTH_ERROR, {"status": False, "error": "Wrong password"})

        with pytest.raises(AuthExpiredError):
            await client.request("getOrder")

    @pytest.mark.asyncio
    async def test_upstream_error(self):
        """status=false without an auth marker is an UpstreamAPIError."""
        client = make_client()
        mock_post(client, {"status": False, "error": {"code": 500, "message": "Internal"}})

        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.request("getOrder")

        assert exc_info.value.error_code == 500
        assert exc_info.value.method == "getOrder"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Should raise TransportError on 4xx/5xx responses."""
        client = make_client()
        mock_post(client, make_response(status_code=502, text="Bad gateway"))

        with pytest.raises(TransportError) as exc_info:
            await client.request("getOrder")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Timeouts are not retried."""
        client = make_client()
        post = mock_post(client, httpx.ReadTimeout("slow"))

        with pytest.raises(TransportError, match="timeout"):
            await client.request("getOrder")

        assert post.await_count == 1

    @pytest.mark.asyncio
    async def test_connect_error_retried(self):
        client = make_client()
        post = mock_post(client, httpx.ConnectError("refused"), {"status": True, "result": {"ok": 1}})

        assert await client.request("getOrder") == {"ok": 1}
        assert post.await_count == 2

    @pytest.mark.asyncio
    async def test_connect_error_exhausted(self):
        client = make_client()
        mock_post(client, httpx.ConnectError("refused"), httpx.ConnectError("refused"))

        with pytest.raises(TransportError, match="unreachable"):
            await client.request("getOrder")

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        client = make_client()
        response = make_response(text="<html>")
        response.json.side_effect = ValueError("no json")
        mock_post(client, response)

        with pytest.raises(DataShapeError):
            await client.request("getOrder")

    @pytest.mark.asyncio
    async def test_get_orders_with_period(self):
        """Should pass the status and date filter and read the 'order' key."""
        client = make_client()
        post = mock_post(client, {"status": True, "result": {"order": [{"SD_id": "o_1"}]}})
        period = Period("month", date(2026, 1, 1), date(2026, 1, 15))

        orders = await client.get_orders(period)

        assert orders == [{"SD_id": "o_1"}]
        params = post.await_args.kwargs["json"]["params"]
        assert params["filter"] == {"status": "all", "startDate": "2026-01-01", "endDate": "2026-01-15"}
        assert params["page"] == 1
        assert params["limit"] == client.settings.order_page_size

    @pytest.mark.asyncio
    async def test_get_purchases_reads_warehouse_key(self):
        client = make_client()
        mock_post(client, {"status": True, "result": {"warehouse": [{"purchase_id": "w_1"}]}})
        assert await client.get_purchases() == [{"purchase_id": "w_1"}]

    @pytest.mark.asyncio
    async def test_get_agents_single_request(self):
        client = make_client()
        post = mock_post(client, {"status": True, "result": {"agent": [{"SD_id": "d0_7"}]}})

        agents = await client.get_agents()

        assert agents == [{"SD_id": "d0_7"}]
        assert post.await_args.kwargs["json"]["params"] == {"page": 1, "limit": 100}

    @pytest.mark.asyncio
    async def test_get_stock_empty(self):
        client = make_client()
        mock_post(client, {"status": True, "result": {}})
        assert await client.get_stock() == []
