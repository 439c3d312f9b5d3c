from amberink.config import IRYS_DEVNET_GRAPHQL, IRYS_MAINNET_GRAPHQL, Settings


def test_environment_legacy_alias(monkeypatch):
    """Environment name should load from AMBERINK_ENV when ENVIRONMENT is unset."""

    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("AMBERINK_ENV", "staging")

    settings = Settings(_env_file=None)

    assert settings.environment == "staging"


def test_environment_direct_env(monkeypatch):
    """Environment-provided name remains the primary source."""

    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("AMBERINK_ENV", "staging")

    settings = Settings(_env_file=None)

    assert settings.environment == "production"


def test_gateway_list_is_trimmed(monkeypatch):
    monkeypatch.setenv("ARWEAVE_GATEWAYS", " https://a.example/ ,,https://b.example")

    settings = Settings(_env_file=None)

    assert settings.gateway_list == ["https://a.example", "https://b.example"]


def test_irys_graphql_url(monkeypatch):
    monkeypatch.delenv("IRYS_GRAPHQL_URL", raising=False)
    monkeypatch.setenv("IRYS_NETWORK", "mainnet")
    assert Settings(_env_file=None).resolved_irys_graphql_url == IRYS_MAINNET_GRAPHQL

    monkeypatch.setenv("IRYS_NETWORK", "devnet")
    assert Settings(_env_file=None).resolved_irys_graphql_url == IRYS_DEVNET_GRAPHQL

    monkeypatch.setenv("IRYS_GRAPHQL_URL", "https://custom.example/graphql")
    assert Settings(_env_file=None).resolved_irys_graphql_url == "https://custom.example/graphql"


def test_price_feed_flag(monkeypatch):
    monkeypatch.setenv("CHAINLINK_PRICE_FEED_ADDRESS", "0x" + "00" * 20)
    assert not Settings(_env_file=None).has_price_feed

    monkeypatch.setenv("CHAINLINK_PRICE_FEED_ADDRESS", "0x" + "cd" * 20)
    assert Settings(_env_file=None).has_price_feed
