import pytest
import yaml

from wpprovisioner.errors import ProvisionerError
from wpprovisioner.services.config_loader import ConfigLoader
from wpprovisioner.settings import DEFAULT_CONFIG, Settings


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".wpprovisioner.yml"
    config_file.write_text(
        "server:\n  path: /srv/sites\n"
        "database:\n  password: secret\n  docker:\n    enabled: true\n    port: 3307\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["server"]["path"] == "/srv/sites"
    assert loaded["database"]["docker"]["port"] == 3307


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".wpprovisioner.yml"
    config_file.write_text("database:\n  docker:\n    colour: blue\nunknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(ProvisionerError, match="database.docker.colour, unknown_key"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping_section(tmp_path):
    config_file = tmp_path / ".wpprovisioner.yml"
    config_file.write_text("database: localhost\n", encoding="utf-8")

    with pytest.raises(ProvisionerError, match="'database' must be a mapping"):
        ConfigLoader().load(str(config_file))


def test_config_loader_reports_missing_file(tmp_path):
    with pytest.raises(ProvisionerError, match="Config file not found"):
        ConfigLoader().load(str(tmp_path / "missing.yml"))


def test_load_settings_merges_over_defaults(tmp_path):
    config_file = tmp_path / ".wpprovisioner.yml"
    config_file.write_text(
        "server:\n  path: /srv/sites\n"
        "site:\n  secure: true\n"
        "sql:\n  search_replace:\n    additional_replacements:\n"
        "      - {search: 'old-cdn.example', replace: 'cdn.test'}\n",
        encoding="utf-8",
    )

    settings = ConfigLoader().load_settings(str(config_file))

    assert settings.server_path == "/srv/sites"
    assert settings.site.scheme == "https"
    assert settings.database.charset == "utf8mb4"
    assert settings.sql.search_replace.additional_replacements == (("old-cdn.example", "cdn.test"),)


def test_write_default_refuses_to_overwrite(tmp_path):
    target = tmp_path / ".wpprovisioner.yml"
    loader = ConfigLoader()

    loader.write_default(str(target))
    assert yaml.safe_load(target.read_text(encoding="utf-8")) == DEFAULT_CONFIG

    with pytest.raises(ProvisionerError, match="already exists"):
        loader.write_default(str(target))

    loader.write_default(str(target), force=True)


def test_settings_reject_invalid_wordpress_version():
    with pytest.raises(ProvisionerError, match="wordpress.version"):
        Settings.from_mapping({"wordpress": {"version": "not a version"}})


def test_grant_host_defaults_follow_container_mode():
    assert Settings.from_mapping({}).database.grant_host == "localhost"
    containerized = Settings.from_mapping({"database": {"docker": {"enabled": True}}})
    assert containerized.database.grant_host == "%"
