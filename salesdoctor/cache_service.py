"""
Read-through client for the caching intermediary service.

The service keeps its own periodically refreshed copy of the upstream data
and exposes it under /api/cache/*. It is a faster alternate source: any
failure (status=false, non-2xx, unreachable, timeout, malformed body)
yields None so the caller can fall back to the RPC API.
"""
import asyncio
from typing import Any, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from salesdoctor.config import config
from salesdoctor.models import CostPriceRecord
from salesdoctor.observability import get_correlation_id, get_logger, Timer
from salesdoctor.periods import Period
from salesdoctor.schemas import (
    AgentDebtRow,
    AgentDebtsEnvelope,
    CacheEnvelope,
    CacheStatusResponse,
    PeriodStats,
    StatsEnvelope,
)
from salesdoctor.validators import validate_currency_filter

logger = get_logger(__name__)


class CacheServiceClient:
    """
    Async client for the caching service.

    Usage:
        async with CacheServiceClient("https://cache.example.com") as service:
            orders = await service.get_orders(period)
            if orders is None:
                ...  # fall back to RPC
    """

    def __init__(self, base_url: str = None, timeout: float = None):
        self.base_url = (base_url if base_url is not None else config.cache.service_url).rstrip("/")
        self.timeout = timeout or config.cache.service_timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CacheServiceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        schema: Type[BaseModel] = CacheEnvelope,
    ) -> Optional[BaseModel]:
        """GET one endpoint and parse its envelope; None on any failure."""
        if not self.enabled:
            return None
        if not self._client:
            await self.connect()

        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id

        url = f"{self.base_url}/api/cache/{path}"
        try:
            with Timer(f"cache_service_{path}", logger):
                response = await asyncio.wait_for(
                    self._client.get(url, params=params, headers=headers or None),
                    timeout=self.timeout,
                )
            if response.status_code >= 400:
                logger.warning(
                    f"Cache service returned {response.status_code} for {path}",
                    extra={"path": path, "status_code": response.status_code}
                )
                return None
            envelope = schema.model_validate(response.json())
        except (asyncio.TimeoutError, httpx.HTTPError) as e:
            logger.warning(
                f"Cache service unavailable for {path}: {e!r}",
                extra={"path": path, "error_type": type(e).__name__}
            )
            return None
        except (ValueError, SchemaError) as e:
            logger.warning(
                f"Cache service sent a malformed body for {path}",
                extra={"path": path, "error": str(e)[:200]}
            )
            return None

        if not envelope.status:
            logger.debug(
                f"Cache service has no data for {path}",
                extra={"path": path, "error": str(getattr(envelope, "error", ""))}
            )
            return None
        return envelope

    async def _records(self, path: str, key: str, params: Optional[Dict[str, Any]] = None) -> Optional[List[Dict[str, Any]]]:
        envelope = await self._get(path, params)
        if envelope is None:
            return None
        return envelope.records(key)

    # ═══════════════════════════════════════════════════════════════════════════
    # ENDPOINTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_status(self) -> Optional[CacheStatusResponse]:
        return await self._get("status", schema=CacheStatusResponse)

    async def get_stats(self, period: Period) -> Optional[PeriodStats]:
        """Service-side stats for a period (custom periods pass explicit dates)."""
        params = None
        if period.name == "custom":
            params = {"startDate": period.start_str, "endDate": period.end_str}
        envelope = await self._get(f"stats/{period.name}", params, schema=StatsEnvelope)
        if envelope is None or not isinstance(envelope.result, dict):
            return None
        try:
            return PeriodStats.model_validate(envelope.result)
        except SchemaError:
            return None

    async def get_orders(self, period: Optional[Period] = None) -> Optional[List[Dict[str, Any]]]:
        """Orders for a named period, or all cached orders."""
        if period is None or period.name == "custom":
            return await self._records("orders", "order")
        return await self._records(f"orders/{period.name}", "order")

    async def get_balances(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("balances", "balance")

    async def get_payments(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("payments", "payment")

    async def get_clients(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("clients", "client")

    async def get_products(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("products", "product")

    async def get_purchases(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("purchases", "warehouse")

    async def get_agents(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("agents", "agent")

    async def get_stock(self) -> Optional[List[Dict[str, Any]]]:
        return await self._records("stock", "warehouse")

    async def get_cost_prices(self) -> Optional[Dict[str, CostPriceRecord]]:
        """Service-side cost price map keyed by product id."""
        envelope = await self._get("costprices")
        if envelope is None or not isinstance(envelope.result, dict):
            return None
        return {
            product_id: CostPriceRecord.from_cache_api(product_id, data)
            for product_id, data in envelope.result.items()
            if isinstance(data, dict)
        }

    async def get_agent_debts(self, currency: str = "all") -> Optional[List[AgentDebtRow]]:
        currency = validate_currency_filter(currency)
        envelope = await self._get("agentDebts", {"currency": currency}, schema=AgentDebtsEnvelope)
        if envelope is None:
            return None
        try:
            return envelope.agents()
        except SchemaError:
            return None
