"""
Pytest配置和共享fixtures
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.asyncio import Redis

from src.core.data_source_registry import registry
from src.core.models import (
    ContractAddresses,
    Session,
    SessionTokens,
    SessionUser,
    SessionWallet,
    TokenInfo,
    TokenMarket,
    TradingConfig,
)

TOKEN_ADDRESS = "0x" + "11" * 20
OTHER_ADDRESS = "0x" + "22" * 20
WALLET_ADDRESS = "0x" + "33" * 20
# 仅用于测试的公开示例私钥
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

NOW_MS = 1_750_000_000_000


# ==================== Pytest Markers ====================

def pytest_configure(config):
    """注册自定义markers"""
    config.addinivalue_line("markers", "unit: fast isolated tests")


# ==================== Data Source Registry Fixture ====================

@pytest.fixture(autouse=True)
def clean_registry():
    """每个测试前后清空数据源注册表，避免测试间干扰"""
    registry._sources.clear()
    yield
    registry._sources.clear()


# ==================== Redis ====================

@pytest.fixture
async def mock_redis() -> AsyncGenerator[MagicMock, None]:
    """Mock Redis客户端"""
    redis_mock = MagicMock(spec=Redis)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.aclose = AsyncMock()
    yield redis_mock


# ==================== 交易配置 ====================

@pytest.fixture
def trading_config() -> TradingConfig:
    """测试用交易配置（不等待结算）"""
    return TradingConfig(
        chain_id=10143,
        rpc_url="http://localhost:8545",
        contracts=ContractAddresses(
            core="0x" + "c0" * 20,
            uniswap_v2_router="0x" + "c2" * 20,
            wrapped_mon="0x" + "c4" * 20,
        ),
        settle_delay_seconds=0,
    )


# ==================== 市场数据 ====================

class FakeMarketData:
    """可配置的 nad.fun 市场数据替身"""

    def __init__(self):
        self.market = TokenMarket(
            token_address=TOKEN_ADDRESS,
            market_type="CURVE",
            price="0.5",
            virtual_native=1_000_000,
            virtual_token=500_000,
            reserve_token=1_000_000,
            reserve_native=100_000,
        )
        self.info = TokenInfo(token_address=TOKEN_ADDRESS, name="Moon Cat", symbol="MCAT", is_listing=False)
        self.calls = 0

    def set_listing(self, is_listing: Optional[bool], market_type: str = "CURVE"):
        self.info = self.info.model_copy(update={"is_listing": is_listing})
        self.market = self.market.model_copy(update={"market_type": market_type})

    async def get_token_market(self, token_address: str) -> TokenMarket:
        self.calls += 1
        return self.market

    async def get_token_info(self, token_address: str) -> TokenInfo:
        self.calls += 1
        return self.info


@pytest.fixture
def market_data() -> FakeMarketData:
    return FakeMarketData()


# ==================== 链上网关 ====================

class FakeChainGateway:
    """记录连接次数的链网关替身，session 为 AsyncMock"""

    def __init__(self):
        self.session = MagicMock()
        self.session.get_balance = AsyncMock(return_value=10**21)
        self.session.token_balance = AsyncMock(return_value=0)
        self.session.get_amounts_out = AsyncMock(return_value=[0, 0])
        self.session.send_contract_call = AsyncMock(return_value="0x" + "ab" * 32)
        self.session.send_transaction = AsyncMock(return_value="0x" + "cd" * 32)
        self.session.wait_for_receipt = AsyncMock(return_value=True)
        self.connections = 0

    @asynccontextmanager
    async def connect(self):
        self.connections += 1
        yield self.session


@pytest.fixture
def chain() -> FakeChainGateway:
    return FakeChainGateway()


# ==================== 会话 ====================

def make_session(expires_at: int = NOW_MS + 3_600_000, with_wallet: bool = True) -> Session:
    return Session(
        user=SessionUser(id="google-user-1", email="trader@example.com", name="Trader"),
        wallet=SessionWallet(id="wallet-1", address=WALLET_ADDRESS) if with_wallet else None,
        tokens=SessionTokens(access_token="access-token", expires_at=expires_at),
    )


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def sample_ordered_tokens_response():
    """示例 /order/latest_trade 响应"""
    return {
        "order_type": "latest_trade",
        "order_token": [
            {
                "token_info": {
                    "token_address": TOKEN_ADDRESS,
                    "name": "Moon Cat",
                    "symbol": "MCAT",
                    "is_listing": False,
                },
                "market_info": {"market_type": "CURVE", "price": "0.000012"},
            },
            {
                "token_info": {
                    "token_address": OTHER_ADDRESS,
                    "name": "Dog Coin",
                    "symbol": "DOGE2",
                    "is_listing": True,
                },
                "market_info": {"market_type": "DEX", "price": "0.0031"},
            },
        ],
        "total_count": 2,
    }


@pytest.fixture
def sample_market_response():
    """示例 /token/market 响应（储备为十进制字符串）"""
    return {
        "market_address": "0x" + "44" * 20,
        "market_type": "CURVE",
        "token_address": TOKEN_ADDRESS,
        "virtual_native": "30000000000000000000000",
        "virtual_token": "1073000000000000000000000000",
        "reserve_token": "1000000000000000000000000000",
        "reserve_native": "0",
        "price": "0.0000279",
    }
