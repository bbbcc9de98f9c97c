"""
Pydantic models for the caching service's JSON envelopes.

Every /api/cache/* endpoint answers with
{"status": bool, "result": ..., "lastUpdate": ..., "error": ...}
plus a few endpoint-specific extras.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# ENVELOPES
# ═══════════════════════════════════════════════════════════════════════════════

class CacheEnvelope(BaseModel):
    """Common response wrapper."""
    model_config = ConfigDict(extra="allow")

    status: bool = Field(description="False when the service has no data yet")
    result: Optional[Any] = Field(None, description="Endpoint payload")
    lastUpdate: Optional[Any] = Field(None, description="Last refresh time of the service cache")
    error: Optional[Any] = Field(None, description="Error text when status is false")
    total: Optional[int] = Field(None, description="Record count for list endpoints")

    def records(self, key: str) -> Optional[List[Dict[str, Any]]]:
        """Record list under `result[key]`, or None if the payload lacks it."""
        if not isinstance(self.result, dict):
            return None
        records = self.result.get(key)
        return records if isinstance(records, list) else None


class CacheStatusResponse(BaseModel):
    """Health of the caching service."""
    model_config = ConfigDict(extra="allow")

    status: bool
    hasData: bool = False
    lastUpdate: Optional[Any] = None
    isLoading: bool = False
    error: Optional[Any] = None
    counts: Dict[str, int] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# PRECOMPUTED STATS
# ═══════════════════════════════════════════════════════════════════════════════

class PeriodStats(BaseModel):
    """Headline sales stats for one period (service-side or built locally)."""
    model_config = ConfigDict(extra="allow")

    totalSalesUZS: float = 0
    totalSalesUSD: float = 0
    totalOrders: int = 0
    totalClientsOKB: int = 0
    totalClientsAKB: int = 0
    totalProducts: int = 0
    stockValueUSD: float = 0
    totalProfitUZS: float = 0
    totalProfitUSD: float = 0
    irodaSalesUZS: float = 0
    irodaSalesUSD: float = 0
    irodaOrders: int = 0


class StatsEnvelope(CacheEnvelope):
    serverRate: Optional[float] = None


# ═══════════════════════════════════════════════════════════════════════════════
# AGENT DEBTS
# ═══════════════════════════════════════════════════════════════════════════════

class AgentDebtClient(BaseModel):
    """Debtor row; debts are signed (negative = owed)."""
    model_config = ConfigDict(extra="allow")

    clientId: str
    name: str = ""
    somDebt: float = 0
    dollarDebt: float = 0
    srokDate: str = ""
    overdueDays: int = 0
    daysLeft: int = 0
    isOverdue: bool = False


class AgentDebtRow(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    totalSom: float = 0
    totalDollar: float = 0
    clientCount: int = 0
    clients: List[AgentDebtClient] = Field(default_factory=list)


class AgentDebtsEnvelope(CacheEnvelope):
    totalSom: float = 0
    totalDollar: float = 0

    def agents(self) -> List[AgentDebtRow]:
        rows = self.records("agents") or []
        return [AgentDebtRow.model_validate(row) for row in rows]
