"""
链上网关

对 Monad RPC 的读写封装：余额查询、合约只读调用、交易签名发送与回执等待。
签名按身份类型分派：调用方私钥在进程内用 eth_account 签名，托管钱包交由 Privy 签名广播。
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted

from src.chain.abi import ROUTER_ABI, TOKEN_ABI
from src.core.models import ADDRESS_PATTERN, SessionWalletIdentity, SuppliedKeyIdentity, TradingConfig
from src.data_sources.privy import PrivyClient
from src.utils.exceptions import ChainError, DataSourceError
from src.utils.logger import get_logger

logger = get_logger(__name__)

SignerIdentity = SessionWalletIdentity | SuppliedKeyIdentity


def checksum(address: str) -> str:
    return AsyncWeb3.to_checksum_address(address)


def _normalize_arg(value: Any) -> Any:
    # ABI编码只接受校验和格式的地址
    if isinstance(value, str) and ADDRESS_PATTERN.match(value):
        return checksum(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_arg(v) for v in value]
    return value


class ChainSession:
    """单次调用内使用的链连接，由 ChainGateway.connect() 创建和释放"""

    def __init__(
        self,
        w3: AsyncWeb3,
        trading_config: TradingConfig,
        wallet_provider: Optional[PrivyClient] = None,
    ):
        self.w3 = w3
        self.config = trading_config
        self.wallet_provider = wallet_provider

    # ==================== 读操作 ====================

    async def get_balance(self, address: str) -> int:
        """原生币余额（wei）"""
        try:
            return await self.w3.eth.get_balance(checksum(address))
        except Exception as e:
            raise ChainError(f"get_balance failed: {e}") from e

    async def token_balance(self, token_address: str, owner: str) -> int:
        """ERC-20 余额"""
        return await self.call_contract(token_address, TOKEN_ABI, "balanceOf", [checksum(owner)])

    async def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> List[int]:
        """DEX 路由报价"""
        return await self.call_contract(
            self.config.contracts.uniswap_v2_router,
            ROUTER_ABI,
            "getAmountsOut",
            [amount_in, [checksum(p) for p in path]],
        )

    async def call_contract(self, address: str, abi: list, function: str, args: list) -> Any:
        contract = self.w3.eth.contract(address=checksum(address), abi=abi)
        try:
            return await getattr(contract.functions, function)(*args).call()
        except Exception as e:
            raise ChainError(f"{function} call failed: {e}") from e

    # ==================== 写操作 ====================

    def encode_call(self, address: str, abi: list, function: str, args: list) -> str:
        contract = self.w3.eth.contract(address=checksum(address), abi=abi)
        try:
            return contract.encode_abi(function, args=[_normalize_arg(a) for a in args])
        except Exception as e:
            raise ChainError(f"{function} encoding failed: {e}") from e

    async def send_contract_call(
        self,
        identity: SignerIdentity,
        address: str,
        abi: list,
        function: str,
        args: list,
        value: int = 0,
    ) -> str:
        """
        编码并发送合约调用

        Returns:
            交易哈希

        Raises:
            ChainError: 签名或广播失败
        """
        data = self.encode_call(address, abi, function, args)
        return await self.send_transaction(identity, address, value=value, data=data)

    async def send_transaction(
        self,
        identity: SignerIdentity,
        to: str,
        value: int = 0,
        data: str = "0x",
        gas_limit: Optional[int] = None,
    ) -> str:
        gas = gas_limit or self.config.gas_limit
        if isinstance(identity, SessionWalletIdentity):
            return await self._send_via_wallet_provider(identity, to, value, data, gas)
        return await self._send_with_local_key(identity, to, value, data, gas)

    async def _send_via_wallet_provider(
        self, identity: SessionWalletIdentity, to: str, value: int, data: str, gas: int
    ) -> str:
        if self.wallet_provider is None:
            raise ChainError("Custodial wallet provider not configured")
        try:
            tx_hash = await self.wallet_provider.send_transaction(
                identity.wallet_id, checksum(to), value=value, data=data, gas_limit=gas
            )
        except DataSourceError as e:
            raise ChainError(f"Wallet provider rejected transaction: {e.message}") from e
        logger.info("transaction_broadcast", signer=identity.address, tx_hash=tx_hash, via="wallet_provider")
        return tx_hash

    async def _send_with_local_key(
        self, identity: SuppliedKeyIdentity, to: str, value: int, data: str, gas: int
    ) -> str:
        account = Account.from_key(identity.raw_key.get_secret_value())
        try:
            nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
            gas_price = await self.w3.eth.gas_price
            tx = {
                "from": account.address,
                "to": checksum(to),
                "value": value,
                "data": data,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self.config.chain_id,
            }
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise ChainError(f"Transaction submission failed: {e}") from e

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info("transaction_broadcast", signer=account.address, tx_hash=tx_hash_hex, via="local_key")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str) -> bool:
        """
        等待交易回执

        Returns:
            回执状态是否成功

        Raises:
            ChainError: 超时或RPC错误（交易结果未知）
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.config.receipt_timeout_seconds
            )
        except TimeExhausted as e:
            raise ChainError(f"Receipt for {tx_hash} not found in time, outcome unknown") from e
        except Exception as e:
            raise ChainError(f"Receipt lookup failed for {tx_hash}: {e}") from e
        return receipt["status"] == 1


class ChainGateway:
    """ChainSession 工厂，每次调用获取连接并在退出时确定性释放"""

    def __init__(self, trading_config: TradingConfig, wallet_provider: Optional[PrivyClient] = None):
        self.config = trading_config
        self.wallet_provider = wallet_provider

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[ChainSession]:
        w3 = AsyncWeb3(AsyncHTTPProvider(self.config.rpc_url))
        try:
            yield ChainSession(w3, self.config, self.wallet_provider)
        finally:
            await w3.provider.disconnect()
