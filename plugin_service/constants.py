"""
Константы для всего приложения.
Централизованное хранение всех магических чисел и строк.
"""

# ============= Plugin Limits =============
PLUGIN_LOAD_TIMEOUT = 60  # Таймаут загрузки артефакта плагина (секунды)
PLUGIN_HOOK_TIMEOUT = 30  # Таймаут on_start / on_stop / on_configure (секунды)
PLUGIN_UNKNOWN_VERSION = "unknown"

# ============= Plugin Capability Surface =============
PLUGIN_HOOK_START = "on_start"
PLUGIN_HOOK_STOP = "on_stop"
PLUGIN_HOOK_CONFIGURE = "on_configure"

REQUIRED_PLUGIN_HOOKS = [
    PLUGIN_HOOK_START,
    PLUGIN_HOOK_STOP,
    PLUGIN_HOOK_CONFIGURE,
]

# ============= Plugin Artifacts =============
PLUGIN_METADATA_FILE = "plugin.json"
PLUGIN_ENTRY_FILES = ["main.py", "__init__.py"]
PLUGIN_SCOPE_PREFIX = "_plugin_scope_"

ZIP_ARTIFACT_SUFFIXES = (".zip", ".jar", ".whl")
TAR_ARTIFACT_SUFFIXES = (".tar.gz", ".tgz", ".tar")
ARCHIVE_ARTIFACT_SUFFIXES = ZIP_ARTIFACT_SUFFIXES + TAR_ARTIFACT_SUFFIXES

# ============= Service Defaults =============
DEFAULT_PLUGINS_DIR = "./plugins"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
