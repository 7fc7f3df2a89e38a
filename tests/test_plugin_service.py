import asyncio

import pytest

from plugin_service.config import ServiceSettings
from plugin_service.errors import (
    ArtifactNotFoundError,
    InvalidStateError,
    PluginNotFoundError,
    PluginOperationError,
    PluginTimeoutError,
)
from plugin_service.models import PluginState
from plugin_service.plugin_system.loader import PluginLoader
from plugin_service.services.plugin_service import DefaultPluginService

from plugin_samples import SLOW_START_SOURCE, write_echo_jar, write_file


@pytest.fixture
def service(tmp_path, plugins_dir):
    settings = ServiceSettings(
        plugins_dir=str(plugins_dir),
        load_timeout=5,
        hook_timeout=0.3,
        plugin_configs={"echo": {"greeting": "hello"}},
    )
    plugin_service = DefaultPluginService(settings, loader=PluginLoader(temp_dir=str(tmp_path / "scratch")))
    yield plugin_service
    asyncio.run(plugin_service.close())


def test_install_applies_preset_config(service, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")

    record = asyncio.run(service.install_plugin("echo", jar, "com.example.Echo"))

    assert record.state == PluginState.INSTALLED
    assert service.list_plugins() == {"echo"}
    assert service.get_plugin_config("echo") == {"greeting": "hello"}


def test_unknown_plugin_queries_return_none(service):
    assert service.get_plugin_info("ghost") is None
    assert service.get_plugin_config("ghost") is None


def test_validate_plugin_exists(service):
    with pytest.raises(PluginOperationError) as exc:
        service.validate_plugin_exists("ghost")
    assert isinstance(exc.value.cause, PluginNotFoundError)
    assert exc.value.cause_message == "Plugin not found: ghost"


def test_install_missing_field(service):
    with pytest.raises(PluginOperationError) as exc:
        asyncio.run(service.install_plugin("echo", "", "com.example.Echo"))
    assert exc.value.message == "Missing required field: jarPath"


def test_install_failure_is_wrapped(service, plugins_dir):
    with pytest.raises(PluginOperationError) as exc:
        asyncio.run(service.install_plugin("ghost", str(plugins_dir / "ghost.jar"), "com.example.Echo"))

    error = exc.value
    assert error.message == "Failed to install plugin: ghost"
    assert isinstance(error.cause, ArtifactNotFoundError)
    assert error.__cause__ is error.cause
    assert "ghost.jar" in error.cause_message


def test_start_unknown_plugin_is_wrapped_invalid_state(service):
    with pytest.raises(PluginOperationError) as exc:
        asyncio.run(service.start_plugin("ghost"))
    assert isinstance(exc.value.cause, InvalidStateError)
    assert exc.value.cause_message == "Cannot start plugin 'ghost' in state UNINSTALLED"


def test_unload_running_plugin_is_rejected(service, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")

    async def main():
        await service.install_plugin("echo", jar, "com.example.Echo")
        await service.start_plugin("echo")
        with pytest.raises(PluginOperationError) as exc:
            await service.unload_plugin("echo")
        assert isinstance(exc.value.cause, InvalidStateError)
        await service.stop_plugin("echo")
        await service.unload_plugin("echo")

    asyncio.run(main())
    assert service.list_plugins() == set()


def test_timeout_message_is_preserved(service, plugins_dir):
    path = write_file(plugins_dir / "sleepy.py", SLOW_START_SOURCE)

    async def main():
        await service.install_plugin("sleepy", path, "sleepy.Sleepy")
        with pytest.raises(PluginOperationError) as exc:
            await service.start_plugin("sleepy")
        return exc.value

    error = asyncio.run(main())
    assert isinstance(error.cause, PluginTimeoutError)
    assert error.cause_message.startswith("Timeout after 0.3s")


def test_update_config_requires_strings(service, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")

    async def main():
        await service.install_plugin("echo", jar, "com.example.Echo")
        with pytest.raises(PluginOperationError):
            await service.update_plugin_config("echo", {"repeat": 3})
        return await service.update_plugin_config("echo", {"repeat": "3"})

    assert asyncio.run(main()) == {"greeting": "hello", "repeat": "3"}


def test_discover_does_not_register(service, plugins_dir):
    write_echo_jar(plugins_dir / "echo.jar")

    descriptors = service.discover_plugins()

    assert [d.name for d in descriptors] == ["echo"]
    assert service.list_plugins() == set()


def test_metrics(service, plugins_dir):
    jar = write_echo_jar(plugins_dir / "echo.jar")
    asyncio.run(service.install_plugin("echo", jar, "com.example.Echo"))

    service.record_api_request("GET /api/plugins")
    service.record_api_request("GET /api/plugins")
    service.record_api_request("POST /api/plugins/{name}/start")
    service.record_api_error("POST /api/plugins/{name}/start")

    metrics = service.get_metrics()
    assert metrics["api_requests"] == {"GET /api/plugins": 2, "POST /api/plugins/{name}/start": 1}
    assert metrics["api_errors"] == {"POST /api/plugins/{name}/start": 1}
    assert metrics["total_requests"] == 3
    assert metrics["total_errors"] == 1
    assert metrics["plugins_total"] == 1
    assert metrics["plugins_by_state"] == {"INSTALLED": 1}
    assert metrics["plugins_running"] == 0
