from __future__ import annotations

from pathlib import Path

import pytest

from codes_service.app.config import load_aggregate_config, load_cache_config


_ENV_KEYS = (
    "CODES_SNELP_URL",
    "NEXT_PUBLIC_SNELP_CODES_URL",
    "CODES_REDDIT_ENABLED",
    "CODES_SAMPLE_FILE",
    "CODES_SOURCE_PRIORITY",
    "CODES_CACHE_TTL_SECONDS",
    "DISCORD_TOKEN",
    "DISCORD_GUILD_ID",
    "DISCORD_CODES_CHANNEL_IDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_enable_reddit_only() -> None:
    cfg = load_aggregate_config()

    by_name = {s.name: s for s in cfg.sources}
    assert cfg.priority == ["snelp", "discord", "reddit", "sample"]
    assert by_name["snelp"].enabled is False
    assert by_name["discord"].enabled is False
    assert by_name["reddit"].enabled is True
    assert by_name["reddit"].subreddit == "SuperSnailGame"
    assert by_name["sample"].enabled is False


def test_env_overrides_priority_and_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NEXT_PUBLIC_SNELP_CODES_URL", "https://snelp.example/codes")
    monkeypatch.setenv("CODES_SOURCE_PRIORITY", "reddit, snelp")

    cfg = load_aggregate_config()

    assert cfg.priority == ["reddit", "snelp"]
    assert [s.name for s in cfg.ordered_sources()] == ["reddit", "snelp", "discord", "sample"]
    assert cfg.sources[0].url == "https://snelp.example/codes"
    assert cfg.sources[0].enabled is True


def test_discord_needs_token_and_guild(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "bot-token")

    assert next(s for s in load_aggregate_config().sources if s.name == "discord").enabled is False

    monkeypatch.setenv("DISCORD_GUILD_ID", "1234")
    monkeypatch.setenv("DISCORD_CODES_CHANNEL_IDS", " 111, ,222 ")

    discord = next(s for s in load_aggregate_config().sources if s.name == "discord")
    assert discord.enabled is True
    assert discord.token == "bot-token"
    assert discord.guild_id == "1234"
    assert discord.channel_ids == ["111", "222"]
    assert discord.trust_weight == 1.0


def test_config_yaml_overrides_sources(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        "codes:\n"
        "  priority: [sample, snelp]\n"
        "  sources:\n"
        "    - name: sample\n"
        "      path: data/sample.json\n"
        "      enabled: true\n"
        "      trust_weight: 0.25\n",
        encoding="utf-8",
    )

    cfg = load_aggregate_config()

    sample = next(s for s in cfg.sources if s.name == "sample")
    assert cfg.priority == ["sample", "snelp"]
    assert sample.path == "data/sample.json"
    assert sample.enabled is True
    assert sample.trust_weight == 0.25


@pytest.mark.parametrize(
    "key, value",
    [("CODES_REDDIT_ENABLED", "maybe"), ("CODES_CACHE_TTL_SECONDS", "soon")],
)
def test_malformed_values_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(RuntimeError):
        load_aggregate_config()
        load_cache_config()
