"""
配置管理测试
"""
import pytest

from src.utils.config import ConfigManager, Settings
from src.utils.exceptions import ConfigurationError


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.mark.unit
class TestSettings:
    def test_explicit_rpc_url_wins(self):
        settings = _settings(MONAD_RPC_URL="http://rpc.local", ALCHEMY_API_KEY="key")
        assert settings.rpc_url == "http://rpc.local"

    def test_alchemy_fallback(self):
        settings = _settings(MONAD_RPC_URL=None, ALCHEMY_API_KEY="key")
        assert settings.rpc_url == "https://monad-testnet.g.alchemy.com/v2/key"

    def test_public_rpc_default(self):
        settings = _settings(MONAD_RPC_URL=None, ALCHEMY_API_KEY=None)
        assert settings.rpc_url == "https://testnet-rpc.monad.xyz"


@pytest.mark.unit
class TestConfigManager:
    def test_trading_config_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path, settings=_settings())

        trading = manager.trading_config()

        assert trading.fee_bps == 100
        assert trading.exact_out_buffer_bps == 500
        assert trading.deadline_seconds == 1200
        assert trading.contracts.core == manager.settings.core_contract_address
        assert set(type(trading.contracts).model_fields) == {"core", "uniswap_v2_router", "wrapped_mon"}

    def test_tools_enabled_without_yaml(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path, settings=_settings())
        assert manager.is_tool_enabled("buy-tokens-from-curve")

    def test_tool_disabled_in_yaml(self, tmp_path):
        (tmp_path / "tools.yaml").write_text("token-chart:\n  enabled: false\n", encoding="utf-8")
        manager = ConfigManager(config_dir=tmp_path, settings=_settings())

        assert not manager.is_tool_enabled("token-chart")
        assert manager.is_tool_enabled("token-market")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "tools.yaml").write_text("token-chart: [unclosed\n", encoding="utf-8")
        manager = ConfigManager(config_dir=tmp_path, settings=_settings())

        with pytest.raises(ConfigurationError):
            manager.tools

    def test_malformed_yaml_does_not_reenable_tools(self, tmp_path):
        (tmp_path / "tools.yaml").write_text(
            "buy-tokens-from-curve:\n  enabled: false\ntoken-chart: [unclosed\n", encoding="utf-8"
        )
        manager = ConfigManager(config_dir=tmp_path, settings=_settings())

        with pytest.raises(ConfigurationError, match="tools.yaml"):
            manager.is_tool_enabled("buy-tokens-from-curve")

    def test_auth_requires_google_credentials(self, tmp_path):
        manager = ConfigManager(
            config_dir=tmp_path,
            settings=_settings(REQUIRE_AUTH=True, GOOGLE_CLIENT_ID="id", GOOGLE_CLIENT_SECRET=None),
        )

        with pytest.raises(ConfigurationError, match="GOOGLE_CLIENT_SECRET"):
            manager.validate_startup()

    def test_auth_disabled_needs_nothing(self, tmp_path):
        manager = ConfigManager(
            config_dir=tmp_path,
            settings=_settings(REQUIRE_AUTH=False, GOOGLE_CLIENT_ID=None, GOOGLE_CLIENT_SECRET=None),
        )
        manager.validate_startup()

    def test_api_key_lookup(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path, settings=_settings(PRIVY_APP_SECRET="s3"))
        assert manager.get_api_key("Privy") == "s3"
        assert manager.get_api_key("unknown") is None
