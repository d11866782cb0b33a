"""
Privy server wallet API client.

Docs: https://docs.privy.io/api-reference/wallets

The custodial key never leaves Privy; this client only creates wallets and
asks Privy to sign and broadcast transactions for them.
"""
import base64
from typing import Any, Dict, Optional

from src.core.models import SessionWallet
from src.data_sources.base import BaseDataSource
from src.utils.exceptions import DataSourceError


class PrivyClient(BaseDataSource):
    """Privy REST client (HTTP basic auth with app id / app secret)."""

    BASE_URL = "https://api.privy.io"

    def __init__(
        self,
        app_id: Optional[str],
        app_secret: Optional[str],
        chain_id: int = 10143,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.chain_id = chain_id
        super().__init__(
            name="privy",
            base_url=base_url or self.BASE_URL,
            timeout=timeout,
            requires_api_key=True,
        )

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    @property
    def caip2(self) -> str:
        return f"eip155:{self.chain_id}"

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.configured:
            token = base64.b64encode(f"{self.app_id}:{self.app_secret}".encode()).decode()
            headers["Authorization"] = f"Basic {token}"
            headers["privy-app-id"] = self.app_id
        return headers

    async def fetch_raw(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        if not self.configured:
            raise DataSourceError(self.name, "PRIVY_APP_ID / PRIVY_APP_SECRET not configured")
        return await self._make_request(method, endpoint, params=params, json_body=json_body)

    async def create_wallet(self) -> SessionWallet:
        """Create an ethereum-compatible server wallet."""
        data = await self.fetch(
            "/v1/wallets",
            method="POST",
            json_body={"chain_type": "ethereum"},
            retry=False,
        )
        if "id" not in data or "address" not in data:
            raise DataSourceError(self.name, "Wallet response missing id or address")
        return SessionWallet(id=data["id"], address=data["address"])

    async def send_transaction(
        self,
        wallet_id: str,
        to: str,
        value: int = 0,
        data: str = "0x",
        gas_limit: Optional[int] = None,
    ) -> str:
        """
        Sign and broadcast a transaction from a server wallet.

        Never retried: a timed-out request may still have been broadcast.

        Returns:
            transaction hash
        """
        transaction: Dict[str, Any] = {"to": to, "value": hex(value), "data": data}
        if gas_limit is not None:
            transaction["gas_limit"] = hex(gas_limit)

        response = await self.fetch(
            f"/v1/wallets/{wallet_id}/rpc",
            method="POST",
            json_body={
                "method": "eth_sendTransaction",
                "caip2": self.caip2,
                "params": {"transaction": transaction},
            },
            retry=False,
        )
        tx_hash = (response.get("data") or {}).get("hash")
        if not tx_hash:
            raise DataSourceError(self.name, "eth_sendTransaction response has no hash")
        return tx_hash
