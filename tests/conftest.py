import pytest

from plugin_service.plugin_system.loader import PluginLoader
from plugin_service.plugin_system.managers.lifecycle import PluginLifecycleManager
from plugin_service.plugin_system.registry import PluginRegistry


@pytest.fixture
def loader(tmp_path):
    plugin_loader = PluginLoader(temp_dir=str(tmp_path / "scratch"))
    yield plugin_loader
    plugin_loader.cleanup()


@pytest.fixture
def registry():
    return PluginRegistry()


@pytest.fixture
def manager(registry, loader):
    return PluginLifecycleManager(registry, loader, load_timeout=5, hook_timeout=0.5)


@pytest.fixture
def plugins_dir(tmp_path):
    directory = tmp_path / "plugins"
    directory.mkdir()
    return directory
