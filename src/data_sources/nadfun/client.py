"""
nad.fun market data API client.

Read-only REST accessor for token, market, account and trade records.
"""
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.core.models import (
    AccountPositions,
    ChartInterval,
    CreatedTokens,
    OrderedTokens,
    PositionType,
    TokenChart,
    TokenHolders,
    TokenInfo,
    TokenMarket,
    TokenSwaps,
)
from src.data_sources.base import BaseDataSource
from src.utils.exceptions import DataSourceError


class NadfunClient(BaseDataSource):
    """nad.fun bot API client (no auth required)."""

    BASE_URL = "https://testnet-bot-api-server.nad.fun"

    ORDER_CREATION_TIME = "creation_time"
    ORDER_MARKET_CAP = "market_cap"
    ORDER_LATEST_TRADE = "latest_trade"

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        super().__init__(
            name="nadfun",
            base_url=base_url or self.BASE_URL,
            timeout=timeout,
            requires_api_key=False,
        )

    def _get_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def fetch_raw(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        return await self._make_request(method, endpoint, params=params, json_body=json_body)

    def transform(self, raw_data: Any, data_type: str) -> Any:
        parsers = {
            "positions": AccountPositions,
            "created_tokens": CreatedTokens,
            "ordered_tokens": OrderedTokens,
            "token": TokenInfo,
            "chart": TokenChart,
            "swaps": TokenSwaps,
            "market": TokenMarket,
            "holders": TokenHolders,
        }
        model = parsers.get(data_type)
        if model is None:
            return raw_data
        try:
            return model.model_validate(raw_data)
        except ValidationError as e:
            raise DataSourceError(self.name, f"Unexpected {data_type} payload: {e.error_count()} invalid fields")

    async def get_account_positions(
        self,
        account_address: str,
        position_type: PositionType = PositionType.OPEN,
        page: int = 1,
        limit: int = 10,
    ) -> AccountPositions:
        """Positions held by an account."""
        return await self.fetch(
            f"/account/position/{account_address}",
            params={"position_type": position_type.value, "page": page, "limit": limit},
            data_type="positions",
        )

    async def get_account_created_tokens(
        self, account_address: str, page: int = 1, limit: int = 10
    ) -> CreatedTokens:
        """Tokens created by an account."""
        return await self.fetch(
            f"/account/create_token/{account_address}",
            params={"page": page, "limit": limit},
            data_type="created_tokens",
        )

    async def get_tokens_ordered(self, order: str, page: int = 1, limit: int = 10) -> OrderedTokens:
        """Token listing ordered by creation_time, market_cap or latest_trade."""
        if order not in (self.ORDER_CREATION_TIME, self.ORDER_MARKET_CAP, self.ORDER_LATEST_TRADE):
            raise ValueError(f"Unsupported token order: {order}")
        return await self.fetch(
            f"/order/{order}",
            params={"page": page, "limit": limit},
            data_type="ordered_tokens",
        )

    async def get_token_info(self, token_address: str) -> TokenInfo:
        return await self.fetch(f"/token/{token_address}", data_type="token")

    async def get_token_chart(
        self,
        token_address: str,
        interval: ChartInterval = ChartInterval.ONE_HOUR,
        base_timestamp: Optional[int] = None,
    ) -> TokenChart:
        params: Dict[str, Any] = {"interval": interval.value}
        if base_timestamp is not None:
            params["base_timestamp"] = base_timestamp
        return await self.fetch(f"/token/chart/{token_address}", params=params, data_type="chart")

    async def get_token_swaps(self, token_address: str, page: int = 1, limit: int = 10) -> TokenSwaps:
        return await self.fetch(
            f"/token/swap/{token_address}",
            params={"page": page, "limit": limit},
            data_type="swaps",
        )

    async def get_token_market(self, token_address: str) -> TokenMarket:
        """Market record: type, price and virtual/real reserves."""
        return await self.fetch(f"/token/market/{token_address}", data_type="market")

    async def get_token_holders(self, token_address: str, page: int = 1, limit: int = 10) -> TokenHolders:
        return await self.fetch(
            f"/token/holder/{token_address}",
            params={"page": page, "limit": limit},
            data_type="holders",
        )
