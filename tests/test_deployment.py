"""Site-level deployment orchestration tests."""
from __future__ import annotations

import json
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ubosctl.deployment import (
    check_site,
    deploy_site,
    deployed_sites,
    execute_triggers,
    find_deployed_site,
    load_sites,
    prevent_interruptions,
    record_site,
    resume_site,
    suspend_site,
    undeploy_site,
)
from ubosctl.installable import Installable, ManifestError
from ubosctl.runtime import RuntimeContext
from ubosctl.site import Site, SiteError

WORDPRESS = {
    "type": "app",
    "roles": {
        "mysql": {
            "appconfigitems": [{"type": "database", "name": "maindb", "privileges": "all"}],
        },
        "apache2": {
            "appconfigitems": [
                {"type": "file", "name": "wp-config.php", "template": "wp-config.tmpl", "templatelang": "varsubst"},
                {"type": "systemd-service", "name": "wp-cron"},
            ],
            "triggersactivate": ["httpd-reload"],
            "installers": [{"type": "perlscript", "source": "install.pl"}],
            "uninstallers": [{"type": "perlscript", "source": "uninstall.pl"}],
        },
    },
}
WORDPRESS_FILES = {
    "wp-config.tmpl": "db=${appconfig.mysql.dbname.maindb} host=${site.hostname}\n",
    "install.pl": "1;",
    "uninstall.pl": "1;",
}


@pytest.fixture
def wordpress(make_installable: Callable[..., Installable]) -> Installable:
    """Install the ``wordpress`` manifest and code."""
    return make_installable("wordpress", WORDPRESS, WORDPRESS_FILES)


def _site_json(site_id: str = "s1", **extra: Any) -> dict[str, Any]:
    return {
        "siteid": site_id,
        "hostname": f"{site_id}.example.com",
        "appconfigs": [{"appconfigid": f"a-{site_id}", "appid": "wordpress", "context": "/blog"}],
        **extra,
    }


# ----------------------------------------------------------------------
# Site JSON
# ----------------------------------------------------------------------
def test_load_sites_object_and_array(tmp_path: Path, runtime: RuntimeContext, wordpress: Installable) -> None:
    """A site file holds one Site JSON object or an array of them."""
    single = tmp_path / "single.json"
    single.write_text(json.dumps(_site_json("s1")))
    many = tmp_path / "many.json"
    many.write_text(json.dumps([_site_json("s1"), _site_json("s2")]))

    assert [site.site_id for site in load_sites(single, runtime)] == ["s1"]
    sites = load_sites(many, runtime)
    assert [site.site_id for site in sites] == ["s1", "s2"]
    assert sites[1].app_configs[0].installables == [wordpress]


def test_load_sites_inserts_slurped_files(tmp_path: Path, runtime: RuntimeContext, wordpress: Installable) -> None:
    """``@file`` values are replaced relative to the site file."""
    (tmp_path / "tls").mkdir()
    (tmp_path / "tls" / "key.pem").write_text("KEY")
    site_file = tmp_path / "site.json"
    site_file.write_text(json.dumps(_site_json(tls={"key": "@tls/key.pem"})))

    (site,) = load_sites(site_file, runtime)

    assert site.site_json["tls"]["key"] == "KEY"
    assert site.has_tls
    assert "tls" not in site.site_json_without_tls()


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("[]", "No site given"),
        ("{not json", "is not valid JSON"),
        ("42", "must contain a JSON object or array"),
        (json.dumps([_site_json("s1"), _site_json("s1")]), "appears more than once"),
        (json.dumps({"siteid": "s1"}), "field 'hostname' must be a non-empty string"),
    ],
)
def test_load_sites_rejects_bad_input(
    tmp_path: Path,
    runtime: RuntimeContext,
    wordpress: Installable,
    content: str,
    message: str,
) -> None:
    """Malformed site files raise SiteError."""
    site_file = tmp_path / "site.json"
    site_file.write_text(content)

    with pytest.raises(SiteError, match=message):
        load_sites(site_file, runtime)


def test_deployed_sites_and_lookup(runtime: RuntimeContext, make_site: Callable[..., Site], wordpress: Installable) -> None:
    """Recorded sites can be found by id or unique prefix."""
    assert deployed_sites(runtime) == {}

    first = make_site("s1a", [("a1", "wordpress")])
    second = make_site("s1b", [("a2", "wordpress")])
    record_site(runtime, first)
    record_site(runtime, second)

    site_file = runtime.config.sites_dir / "s1a.json"
    assert (site_file.stat().st_mode & 0o777) == 0o600
    assert sorted(deployed_sites(runtime)) == ["s1a", "s1b"]
    assert find_deployed_site(runtime, "s1b").hostname == "s1b.example.com"
    assert find_deployed_site(runtime, "s1a").site_id == "s1a"

    with pytest.raises(SiteError, match="ambiguous"):
        find_deployed_site(runtime, "s1")
    with pytest.raises(SiteError, match="No deployed site with id zz"):
        find_deployed_site(runtime, "zz")


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------
def test_check_site_validates_without_changes(
    tmp_path: Path,
    runtime: RuntimeContext,
    make_site: Callable[..., Site],
    wordpress: Installable,
    fake_database: Any,
) -> None:
    """Checking a site deploys nothing."""
    site = make_site("s1", [("a1", "wordpress")], context="/blog")

    assert check_site(site, runtime)

    assert fake_database.databases == {}
    assert not (tmp_path / "http").exists()
    assert deployed_sites(runtime) == {}


def test_check_site_raises_on_invalid_manifest(
    runtime: RuntimeContext,
    make_installable: Callable[..., Installable],
    make_site: Callable[..., Site],
) -> None:
    """Manifest violations surface as ManifestError."""
    make_installable("broken", {"type": "app", "roles": {"apache2": {"appconfigitems": [{"type": "file"}]}}})
    site = make_site("s1", [("a1", "broken")])

    with pytest.raises(ManifestError, match="Manifest JSON for package broken"):
        check_site(site, runtime)


def test_deploy_and_undeploy_site(
    tmp_path: Path,
    runtime: RuntimeContext,
    make_site: Callable[..., Site],
    wordpress: Installable,
    fake_database: Any,
    fake_perl: Any,
    fake_systemd: Any,
) -> None:
    """Database variables flow into web server files; undeploy reverses everything."""
    site = make_site("s1", [("a1", "wordpress")], context="/blog")
    triggers: set[str] = set()

    assert deploy_site(site, runtime, triggers)

    reservation = runtime.resources.get_database("a1", "wordpress", "maindb")
    assert reservation is not None
    config_file = tmp_path / "http" / "s1" / "blog" / "wp-config.php"
    assert config_file.read_text() == f"db={reservation.dbname} host=s1.example.com\n"
    assert triggers == {"httpd-reload"}
    assert fake_perl.calls == [("install.pl", "install")]
    assert fake_systemd.calls == [("enable", "wp-cron.service"), ("start", "wp-cron.service")]
    assert "s1" in deployed_sites(runtime)

    triggers.clear()
    assert undeploy_site(site, runtime, triggers)

    assert fake_perl.calls[-1] == ("uninstall.pl", "uninstall")
    assert not config_file.exists()
    assert fake_database.databases == {}
    assert triggers == {"httpd-reload"}
    assert deployed_sites(runtime) == {}


def test_failed_deploy_is_not_recorded(
    runtime: RuntimeContext,
    make_site: Callable[..., Site],
    wordpress: Installable,
    fake_systemd: Any,
) -> None:
    """A site is only recorded when every item deployed."""
    fake_systemd.failing.add("wp-cron.service")
    site = make_site("s1", [("a1", "wordpress")], context="/blog")

    assert not deploy_site(site, runtime, set())
    assert deployed_sites(runtime) == {}


def test_accessories_follow_their_app(
    runtime: RuntimeContext,
    make_installable: Callable[..., Installable],
    make_site: Callable[..., Site],
    fake_perl: Any,
) -> None:
    """Apps deploy before accessories and undeploy after them."""
    make_installable(
        "blog",
        {"type": "app", "roles": {"apache2": {"appconfigitems": [{"type": "perlscript", "source": "app.pl"}]}}},
        {"app.pl": "1;"},
    )
    make_installable(
        "blog-plugin",
        {"type": "accessory", "roles": {"apache2": {"appconfigitems": [{"type": "perlscript", "source": "plugin.pl"}]}}},
        {"plugin.pl": "1;"},
    )
    site = make_site("s1", [("a1", "blog")], context="/blog", accessories=["blog-plugin"])

    assert deploy_site(site, runtime, set())
    assert undeploy_site(site, runtime, set())

    assert fake_perl.calls == [
        ("app.pl", "deploy"),
        ("plugin.pl", "deploy"),
        ("plugin.pl", "undeploy"),
        ("app.pl", "undeploy"),
    ]


def test_suspend_and_resume_site(
    runtime: RuntimeContext,
    make_site: Callable[..., Site],
    wordpress: Installable,
    fake_systemd: Any,
) -> None:
    """Suspend stops services and resume starts them again."""
    site = make_site("s1", [("a1", "wordpress")], context="/blog")

    assert suspend_site(site, runtime)
    assert resume_site(site, runtime)

    assert fake_systemd.calls == [("stop", "wp-cron.service"), ("start", "wp-cron.service")]


def test_dry_run_deploy_is_not_recorded(
    runtime: RuntimeContext,
    make_installable: Callable[..., Installable],
    make_site: Callable[..., Site],
) -> None:
    """Dry runs never persist the site."""
    make_installable("empty", {"type": "app", "roles": {}})
    runtime.dry_run = True

    assert deploy_site(make_site("s1", [("a1", "empty")]), runtime, set())
    assert deployed_sites(runtime) == {}


def test_execute_triggers(runtime: RuntimeContext, fake_systemd: Any, caplog: pytest.LogCaptureFixture) -> None:
    """Known triggers run their systemctl action; unknown ones are skipped."""
    assert execute_triggers(["httpd-reload", "no-such-trigger", "httpd-reload"], runtime)

    assert fake_systemd.calls == [("reload-or-restart", "httpd.service")]
    assert "Unknown trigger no-such-trigger" in caplog.text

    fake_systemd.failing.add("httpd.service")
    assert not execute_triggers({"httpd-reload"}, runtime)


def test_prevent_interruptions_restores_handlers() -> None:
    """Signals are ignored inside the block and restored afterwards."""

    def handler(signum: int, frame: object) -> None:
        raise AssertionError("unexpected signal")

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        with prevent_interruptions():
            assert signal.getsignal(signal.SIGTERM) is signal.SIG_IGN
            assert signal.getsignal(signal.SIGINT) is signal.SIG_IGN
        assert signal.getsignal(signal.SIGTERM) is handler
    finally:
        signal.signal(signal.SIGTERM, previous)
