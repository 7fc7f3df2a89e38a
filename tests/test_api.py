import threading
from typing import Any, Dict, List, Mapping, Optional, Set

import pytest
from fastapi.testclient import TestClient

from plugin_service.app import create_app
from plugin_service.config import ServiceSettings
from plugin_service.models import PluginDescriptor, PluginRecord
from plugin_service.services.plugin_service import DefaultPluginService, PluginService

from plugin_samples import FAILING_START_SOURCE, write_echo_jar, write_file


@pytest.fixture
def settings(plugins_dir):
    return ServiceSettings(plugins_dir=str(plugins_dir), load_timeout=5, hook_timeout=0.5)


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "UP"}


def test_echo_end_to_end(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")

    r = client.post("/api/plugins/install", json={
        "pluginName": "echo",
        "jarPath": jar,
        "className": "com.example.Echo",
    })
    assert r.status_code == 201, r.text
    assert r.json() == {"name": "echo", "version": "1.2.0", "state": "INSTALLED", "jarPath": jar}

    r = client.put("/api/plugins/echo/config", json={"mode": "verbose"})
    assert r.status_code == 200
    assert r.json() == {"mode": "verbose"}

    r = client.post("/api/plugins/echo/start")
    assert r.status_code == 200, r.text
    assert r.json()["state"] == "RUNNING"

    r = client.get("/api/plugins")
    assert r.json() == [{"name": "echo", "version": "1.2.0", "state": "RUNNING", "jarPath": jar}]

    r = client.delete("/api/plugins/echo")
    assert r.status_code == 400
    assert r.json() == {"error": "Cannot unload plugin 'echo' in state RUNNING"}

    r = client.post("/api/plugins/echo/stop")
    assert r.status_code == 200
    assert r.json()["state"] == "STOPPED"

    r = client.delete("/api/plugins/echo")
    assert r.status_code == 200
    assert r.json() == {"message": "Plugin unloaded: echo"}

    r = client.get("/api/plugins/echo")
    assert r.status_code == 404
    assert r.json() == {"error": "Plugin not found: echo"}


def test_list_is_empty_initially(client):
    r = client.get("/api/plugins")
    assert r.status_code == 200
    assert r.json() == []


def test_install_validation(client):
    r = client.post("/api/plugins/install", json={"pluginName": "echo"})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields: pluginName, jarPath, className"}

    r = client.post("/api/plugins/install", json=["not", "an", "object"])
    assert r.status_code == 400

    r = client.post("/api/plugins/install", content=b"{broken", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_install_missing_artifact_reports_cause(client, plugins_dir):
    missing = str(plugins_dir / "missing.jar")
    r = client.post("/api/plugins/install", json={
        "pluginName": "missing",
        "jarPath": missing,
        "className": "com.example.Echo",
    })
    assert r.status_code == 400
    assert r.json() == {"error": f"Plugin artifact not found: {missing}"}


def test_install_missing_module_reports_loader_message(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    r = client.post("/api/plugins/install", json={
        "pluginName": "echo",
        "jarPath": jar,
        "className": "com.nothere.Echo",
    })
    assert r.status_code == 400
    assert r.json() == {"error": "Module 'com.nothere' not found in artifact (entry point: com.nothere.Echo)"}
    assert "_plugin_scope_" not in r.text


def test_install_twice_conflicts(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    body = {"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"}

    assert client.post("/api/plugins/install", json=body).status_code == 201
    r = client.post("/api/plugins/install", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == "Plugin already installed: echo (state: INSTALLED)"


def test_operations_on_unknown_plugin(client):
    for method, path in (
        ("post", "/api/plugins/ghost/start"),
        ("post", "/api/plugins/ghost/stop"),
        ("delete", "/api/plugins/ghost"),
        ("get", "/api/plugins/ghost/config"),
        ("post", "/api/plugins/ghost/cancel"),
    ):
        r = getattr(client, method)(path)
        assert r.status_code == 404, path
        assert r.json()["error"].startswith("Plugin not found: ghost. No plugins installed.")


def test_unknown_plugin_lists_available(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    client.post("/api/plugins/install", json={"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"})

    r = client.post("/api/plugins/ghost/start")
    assert r.status_code == 404
    assert r.json() == {"error": "Plugin not found: ghost. Available plugins: [echo]"}


def test_stop_installed_plugin_is_rejected(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    client.post("/api/plugins/install", json={"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"})

    r = client.post("/api/plugins/echo/stop")
    assert r.status_code == 400
    assert r.json() == {"error": "Cannot stop plugin 'echo' in state INSTALLED"}


def test_failed_start_reports_hook_error(client, plugins_dir):
    path = write_file(plugins_dir / "broken.py", FAILING_START_SOURCE)
    client.post("/api/plugins/install", json={"pluginName": "broken", "jarPath": path, "className": "broken.Broken"})

    r = client.post("/api/plugins/broken/start")
    assert r.status_code == 400
    assert r.json() == {"error": "boom on start"}
    assert client.get("/api/plugins/broken").json()["state"] == "FAILED"


def test_config_update_requires_string_values(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    client.post("/api/plugins/install", json={"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"})

    r = client.put("/api/plugins/echo/config", json={"repeat": 3})
    assert r.status_code == 400
    r = client.put("/api/plugins/echo/config", json="nope")
    assert r.status_code == 400
    assert client.get("/api/plugins/echo/config").json() == {}


def test_cancel_without_running_start(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    client.post("/api/plugins/install", json={"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"})

    r = client.post("/api/plugins/echo/cancel")
    assert r.status_code == 200
    assert r.json() == {"name": "echo", "cancelled": False}


def test_discover(client, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    write_file(plugins_dir / "corrupt.jar", "not a zip")

    r = client.get("/api/plugins/discover")
    assert r.status_code == 200
    assert r.json() == [{"name": "echo", "jarPath": jar, "className": None, "size": (plugins_dir / "echo.jar").stat().st_size}]
    assert client.get("/api/plugins").json() == []


def test_unknown_route(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json() == {"error": "Resource not found: /api/nothing-here"}


def test_metrics_count_requests_and_errors(client):
    client.get("/api/plugins")
    client.get("/api/plugins")
    client.get("/api/plugins/ghost")

    metrics = client.get("/api/metrics").json()
    assert metrics["api_requests"]["GET /api/plugins"] == 2
    assert metrics["api_requests"]["GET /api/plugins/{name}"] == 1
    assert metrics["api_errors"] == {"GET /api/plugins/{name}": 1}
    assert metrics["plugins_total"] == 0


class ExplodingService(PluginService):
    """PluginService whose queries fail with unexpected errors."""

    def list_plugins(self) -> Set[str]:
        return {"echo"}

    def get_plugin_info(self, name: str) -> Optional[PluginRecord]:
        raise RuntimeError("database on fire")

    def discover_plugins(self) -> List[PluginDescriptor]:
        raise RuntimeError("disk on fire")

    async def install_plugin(self, name: str, artifact_path: str, entry_point: str) -> PluginRecord:
        raise RuntimeError("database on fire")

    async def start_plugin(self, name: str) -> PluginRecord:
        raise RuntimeError("database on fire")

    async def stop_plugin(self, name: str) -> PluginRecord:
        raise RuntimeError("database on fire")

    async def unload_plugin(self, name: str) -> None:
        raise RuntimeError("database on fire")

    def get_plugin_config(self, name: str) -> Optional[Dict[str, str]]:
        raise RuntimeError("database on fire")

    async def update_plugin_config(self, name: str, config: Mapping[str, str]) -> Dict[str, str]:
        raise RuntimeError("database on fire")

    def record_api_request(self, endpoint: str) -> None:
        pass

    def record_api_error(self, endpoint: str) -> None:
        pass

    def get_metrics(self) -> Dict[str, Any]:
        return {}


def test_unexpected_errors_become_500(settings):
    app = create_app(settings, service=ExplodingService())
    with TestClient(app) as client:
        for method, path in (
            ("get", "/api/plugins"),
            ("get", "/api/plugins/discover"),
            ("get", "/api/plugins/echo"),
            ("post", "/api/plugins/echo/start"),
            ("delete", "/api/plugins/echo"),
        ):
            r = getattr(client, method)(path)
            assert r.status_code == 500, path
            assert r.json() == {"error": "Internal server error"}


class ThreadRecordingService(DefaultPluginService):
    """DefaultPluginService that remembers which threads served queries and lists a vanished plugin."""

    def __init__(self, settings):
        super().__init__(settings)
        self.threads: Dict[str, int] = {}

    def list_plugins(self) -> Set[str]:
        self.threads.setdefault("list", threading.get_ident())
        return super().list_plugins() | {"vanished"}

    def discover_plugins(self) -> List[PluginDescriptor]:
        self.threads["discover"] = threading.get_ident()
        return super().discover_plugins()


def test_discover_runs_off_the_event_loop(settings, plugins_dir):
    write_echo_jar(plugins_dir / "echo.jar")
    service = ThreadRecordingService(settings)

    with TestClient(create_app(settings, service=service)) as client:
        r = client.get("/api/plugins/discover")

    assert r.status_code == 200
    assert [d["name"] for d in r.json()] == ["echo"]
    # list_plugins is first called by the lifespan, on the loop thread
    assert service.threads["discover"] != service.threads["list"]


def test_list_skips_plugins_removed_meanwhile(settings, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    service = ThreadRecordingService(settings)

    with TestClient(create_app(settings, service=service)) as client:
        client.post("/api/plugins/install", json={"pluginName": "echo", "jarPath": jar, "className": "com.example.Echo"})
        r = client.get("/api/plugins")

    assert r.status_code == 200
    assert [p["name"] for p in r.json()] == ["echo"]
