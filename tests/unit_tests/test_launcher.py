import os

import pytest
import requests

from webdeploy import launcher
from webdeploy.exceptions import LaunchError
from webdeploy.launcher import (
    application_status,
    is_process_alive,
    node_version,
    probe_health,
    read_pid,
    start_application,
    stop_application,
    write_start_script,
)
from tests.fixtures.deploy_fixtures import make_settings, write_tree, STANDALONE_BUILD


@pytest.fixture
def app_dir(workspace, settings):
    deploy = write_tree(workspace / "public_html", STANDALONE_BUILD)
    write_start_script(deploy, settings)
    return deploy


def test_start_script_uses_configured_environment(workspace):
    settings = make_settings(workspace, app_port=8080, node_env="staging", node_binary="node20")
    deploy = workspace / "public_html"
    deploy.mkdir()

    script = write_start_script(deploy, settings)

    lines = script.read_text().splitlines()
    assert lines[0] == "#!/bin/bash"
    assert "export PORT=8080" in lines
    assert "export NODE_ENV=staging" in lines
    assert lines[-1] == "exec node20 server.js"
    assert os.access(script, os.X_OK)


def test_node_version_missing_binary(no_node):
    assert node_version("node") is None


def test_node_version_reports_fake_node(fake_node):
    assert node_version("node") == "v20.11.0"


def test_start_requires_launcher(workspace, settings):
    (workspace / "public_html").mkdir()
    with pytest.raises(LaunchError):
        start_application(workspace / "public_html", settings)


def test_start_status_and_stop(app_dir, settings, fake_node):
    result = start_application(app_dir, settings)

    assert result.success
    assert read_pid(app_dir / "app.pid") == result.pid
    status = application_status(app_dir, settings)
    assert status == {"pid": result.pid, "running": True, "log_file": str(app_dir / "app.log")}

    assert stop_application(app_dir, settings) is True
    assert not (app_dir / "app.pid").exists()
    assert stop_application(app_dir, settings) is False


def test_crashing_server_is_reported(app_dir, settings, crashing_node):
    result = start_application(app_dir, settings)

    assert not result.running
    assert not result.success
    assert "exited with code 1" in result.error
    assert not (app_dir / "app.pid").exists()


def test_stale_pid_file(app_dir, settings):
    (app_dir / "app.pid").write_text("999999999")

    assert application_status(app_dir, settings)["running"] is False
    assert stop_application(app_dir, settings) is False
    assert not (app_dir / "app.pid").exists()


def test_malformed_pid_file(app_dir):
    (app_dir / "app.pid").write_text("not-a-pid")
    assert read_pid(app_dir / "app.pid") is None


def test_is_process_alive_for_current_process():
    assert is_process_alive(os.getpid())


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_probe_health_retries_until_success(monkeypatch):
    responses = iter([requests.ConnectionError("refused"), FakeResponse(200)])

    def fake_get(url, timeout):
        item = next(responses)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(launcher.requests, "get", fake_get)

    assert probe_health("http://localhost:3000/", attempts=2, delay=0) == 200


def test_probe_health_gives_up(monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return FakeResponse(503)

    monkeypatch.setattr(launcher.requests, "get", fake_get)

    with pytest.raises(requests.HTTPError):
        probe_health("http://localhost:3000/", attempts=3, delay=0)
    assert len(calls) == 3


def test_failed_health_check_marks_launch_unhealthy(workspace, app_dir, fake_node, monkeypatch):
    settings = make_settings(workspace, health_check_url="http://localhost:3000/", health_check_attempts=1)

    def refuse(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(launcher.requests, "get", refuse)

    result = start_application(app_dir, settings)

    assert result.running
    assert result.healthy is False
    assert not result.success
    assert "Health check failed" in result.error


def test_second_start_refused_while_running(app_dir, settings, fake_node):
    first = start_application(app_dir, settings)

    with pytest.raises(LaunchError, match="already running"):
        start_application(app_dir, settings)

    assert read_pid(app_dir / "app.pid") == first.pid
    assert is_process_alive(first.pid)


def test_start_replaces_stale_pid_file(app_dir, settings, fake_node):
    (app_dir / "app.pid").write_text("999999999")

    result = start_application(app_dir, settings)

    assert result.success
    assert read_pid(app_dir / "app.pid") == result.pid
