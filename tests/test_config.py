"""
Config Tests — layered OrmConfig loading and application.

Tests:
- YAML files, environment variables and overrides merge in order
- Typed accessors reject bad values with ConfigInvalidFault
- apply() pushes values into tessera.settings
- register_databases() registers configured aliases
"""

import datetime
from zoneinfo import ZoneInfo

import pytest

from tessera import settings
from tessera.config import DEFAULTS, OrmConfig
from tessera.db import close_databases, get_db_alias
from tessera.faults import ConfigInvalidFault
from tessera.models.utils import get_name_strategy


@pytest.fixture
def yaml_file(tmp_path):
    path = tmp_path / "tessera.yaml"
    path.write_text(
        "debug: true\n"
        "default_rows_limit: 500\n"
        "default_time_loc: Asia/Shanghai\n"
        "databases:\n"
        "  default:\n"
        "    driver: sqlite3\n"
        "    dsn: ':memory:'\n"
        "    max_idle_conns: 4\n"
    )
    return path


class TestLoading:
    """Merge order."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        config = OrmConfig.load()
        assert config.to_dict() == DEFAULTS
        assert config.default_rows_limit == -1
        assert config.default_time_loc == datetime.timezone.utc

    def test_yaml(self, yaml_file):
        config = OrmConfig.load([str(yaml_file)])
        assert config.debug is True
        assert config.default_rows_limit == 500
        assert config.default_time_loc == ZoneInfo("Asia/Shanghai")
        assert config.get("databases.default.max_idle_conns") == 4
        assert config.get("databases.missing.dsn", "none") == "none"

    def test_env_overrides_yaml(self, yaml_file, monkeypatch):
        monkeypatch.setenv("TESSERA_DEFAULT_ROWS_LIMIT", "50")
        monkeypatch.setenv("TESSERA_DATABASES__DEFAULT__MAX_OPEN_CONNS", "20")
        monkeypatch.setenv("TESSERA_DEBUG", "no")
        config = OrmConfig.load([str(yaml_file)])
        assert config.default_rows_limit == 50
        assert config.debug is False
        assert config.get("databases.default") == {
            "driver": "sqlite3",
            "dsn": ":memory:",
            "max_idle_conns": 4,
            "max_open_conns": 20,
        }

    def test_overrides_win(self, yaml_file, monkeypatch):
        monkeypatch.setenv("TESSERA_DEFAULT_ROWS_LIMIT", "50")
        config = OrmConfig.load([str(yaml_file)], overrides={"default_rows_limit": 7})
        assert config.default_rows_limit == 7

    def test_custom_prefix(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("APP_ORM_DEFAULT_RELS_DEPTH", "4")
        config = OrmConfig.load(env_prefix="APP_ORM_")
        assert config.default_rels_depth == 4

    def test_glob_paths(self, tmp_path):
        (tmp_path / "a.yaml").write_text("default_rows_limit: 1\n")
        (tmp_path / "b.yaml").write_text("default_rows_limit: 2\n")
        config = OrmConfig.load([str(tmp_path / "*.yaml")])
        assert config.default_rows_limit == 2

    def test_parse_value(self):
        assert OrmConfig._parse_value("true") is True
        assert OrmConfig._parse_value("12") == 12
        assert OrmConfig._parse_value("1.5") == 1.5
        assert OrmConfig._parse_value('{"a": 1}') == {"a": 1}
        assert OrmConfig._parse_value("app.db") == "app.db"


class TestValidation:
    """ConfigInvalidFault."""

    def test_bad_integer(self):
        config = OrmConfig.load([], overrides={"default_rows_limit": "many"})
        with pytest.raises(ConfigInvalidFault, match="expected an integer"):
            config.apply()

    def test_unknown_time_zone(self):
        config = OrmConfig.load([], overrides={"default_time_loc": "Mars/Olympus"})
        with pytest.raises(ConfigInvalidFault, match="unknown time zone"):
            config.default_time_loc

    def test_unknown_name_strategy(self):
        config = OrmConfig.load([], overrides={"name_strategy": "kebab"})
        with pytest.raises(ConfigInvalidFault, match="unknown name strategy"):
            config.apply()

    def test_databases_must_be_mapping(self):
        config = OrmConfig.load([], overrides={"databases": ["default"]})
        with pytest.raises(ConfigInvalidFault):
            config.databases


class TestApply:
    """Applying the configuration."""

    def test_apply_settings(self, yaml_file):
        OrmConfig.load([str(yaml_file)], overrides={"name_strategy": "snake_string_with_acronym"}).apply()
        assert settings.DEBUG is True
        assert settings.DEFAULT_ROWS_LIMIT == 500
        assert settings.DEFAULT_RELS_DEPTH == 2
        assert settings.DEFAULT_TIME_LOC == ZoneInfo("Asia/Shanghai")
        assert get_name_strategy() == "snake_string_with_acronym"

    @pytest.mark.asyncio
    async def test_register_databases(self, yaml_file):
        config = OrmConfig.load([str(yaml_file)])
        try:
            assert await config.register_databases() == ["default"]
            al = get_db_alias("default")
            assert al.max_idle_conns == 4
        finally:
            await close_databases()

    @pytest.mark.asyncio
    async def test_register_requires_driver_and_dsn(self):
        config = OrmConfig.load([], overrides={"databases": {"default": {"driver": "sqlite3"}}})
        with pytest.raises(ConfigInvalidFault, match="needs `driver` and `dsn`"):
            await config.register_databases()
