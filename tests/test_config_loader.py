"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from ubosctl.config import AppConfig, ConfigError, TriggerAction, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.state_dir == Path("/var/lib/ubosctl")
    assert config.registry_dir == Path("/var/lib/ubosctl/registry")
    assert config.manifest_dir == Path("/ubos/lib/ubos/manifests")
    assert config.backups.update_dir == Path("/ubos/backups/update")
    assert config.ports.tcp_base == 7000
    assert config.roles == ("mysql", "postgresql", "generic", "tomcat8", "apache2")
    assert config.variables["package.codedir"] == "/ubos/share/${package.name}"
    assert config.triggers["httpd-reload"] == TriggerAction("reload-or-restart", "httpd.service")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file and merged with defaults."""
    cfg = tmp_path / "ubosctl.yml"
    cfg.write_text(
        "state_dir: {state}\n"
        "ports:\n"
        "  tcp_base: 8100\n"
        "roles: [mysql, apache2]\n"
        "variables:\n"
        "  host.tmpdir: /srv/tmp\n"
        "triggers:\n"
        "  php-reload:\n"
        "    action: restart\n"
        "    unit: php-fpm.service\n".format(state=tmp_path / "state")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.state_dir == tmp_path / "state"
    assert config.registry_dir == tmp_path / "state" / "registry"
    assert config.ports.tcp_base == 8100
    assert config.ports.udp_base == 7000
    assert config.roles == ("mysql", "apache2")
    assert config.variables["host.tmpdir"] == "/srv/tmp"
    assert "package.codedir" in config.variables
    assert config.triggers["php-reload"].unit == "php-fpm.service"
    assert "httpd-reload" in config.triggers


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "ubosctl.yml"
    cfg.write_text("ports:\n  udp_base: 9000\n")
    env = {
        "UBOSCTL_CONFIG_FILE": str(cfg),
        "UBOSCTL_PORTS__UDP_BASE": "9500",
        "UBOSCTL_BACKUPS__UPDATE_DIR": str(tmp_path / "update"),
        "UBOSCTL_DATABASE__HOST": "db.internal",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.ports.udp_base == 9500
    assert config.backups.update_dir == tmp_path / "update"
    assert config.database.host == "db.internal"


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    env = {"UBOSCTL_LOGS_DIR": str(tmp_path / "env-logs")}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"logs_dir": str(tmp_path / "cli-logs")},
    )

    assert config.logs_dir == tmp_path / "cli-logs"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A top-level YAML list raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_raises(tmp_path: Path) -> None:
    """Extra keys inside a known section are rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("database:\n  client_bin: mariadb\n  port: 3306\n")

    with pytest.raises(ConfigError, match="Unknown database configuration keys"):
        load_config(config_file=cfg, env={})


def test_invalid_trigger_action_raises(tmp_path: Path) -> None:
    """Trigger actions are limited to known systemctl verbs."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("triggers:\n  httpd-reload:\n    action: kill\n    unit: httpd.service\n")

    with pytest.raises(ConfigError, match="Unsupported action 'kill'"):
        load_config(config_file=cfg, env={})


def test_variables_must_be_scalars(tmp_path: Path) -> None:
    """Nested values are not allowed in the host variable layer."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("variables:\n  host.tmpdir:\n    - a\n")

    with pytest.raises(ConfigError, match="must be a scalar value"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The resolved config round-trips into plain data."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    data = config.to_dict()

    assert data["roles"] == ["mysql", "postgresql", "generic", "tomcat8", "apache2"]
    assert data["backups"] == {
        "update_dir": "/ubos/backups/update",
        "legacy_update_dir": "/var/lib/ubos/backups/update",
    }
    assert data["triggers"]["tomcat8-reload"] == {"action": "restart", "unit": "tomcat8.service"}
