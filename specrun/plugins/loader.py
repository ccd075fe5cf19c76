"""Dynamic plugin loader -- discovers and imports plugin modules at runtime."""

import importlib.util
import inspect
import sys
from pathlib import Path

from specrun.plugins.base import BasePlugin
from specrun.utils.exceptions import PluginLoadError
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

PLUGIN_GLOB = "*_plugin.py"


def _module_name_for(path: Path) -> str:
    """Derive a module name unique to *path* within this process."""
    return f"_specrun_plugin_{path.stem}_{hash(str(path)) & 0xFFFFFFFF:08x}"


def load_plugins_from_directory(
    directory: str | Path,
) -> tuple[list[BasePlugin], list[PluginLoadError]]:
    """Scan *directory* for ``*_plugin.py`` files and instantiate the plugins
    defined in them.

    A file that fails to import, or a class that fails to instantiate, is
    reported in the returned error list and skipped; the remaining plugins
    still load.

    Returns
    -------
    tuple[list[BasePlugin], list[PluginLoadError]]
        Plugin instances in file-name order, and the load failures.
    """
    directory = Path(directory)

    if not directory.exists():
        logger.warning("plugin_directory_missing", path=str(directory))
        return [], []

    if not directory.is_dir():
        logger.warning("plugin_path_not_directory", path=str(directory))
        return [], []

    plugins: list[BasePlugin] = []
    errors: list[PluginLoadError] = []

    for filepath in sorted(directory.glob(PLUGIN_GLOB)):
        if filepath.name.startswith("_"):
            continue
        instances, file_errors = load_plugins_from_file(filepath)
        plugins.extend(instances)
        errors.extend(file_errors)

    return plugins, errors


def load_plugins_from_file(
    filepath: str | Path,
) -> tuple[list[BasePlugin], list[PluginLoadError]]:
    """Import a single Python file and instantiate the concrete
    :class:`BasePlugin` subclasses it defines.
    """
    filepath = Path(filepath)

    if not filepath.exists():
        logger.warning("plugin_file_missing", path=str(filepath))
        return [], [PluginLoadError(str(filepath), "file does not exist")]

    module_name = _module_name_for(filepath)

    spec = importlib.util.spec_from_file_location(module_name, str(filepath))
    if spec is None or spec.loader is None:
        logger.error("plugin_spec_creation_failed", path=str(filepath))
        return [], [PluginLoadError(str(filepath), "cannot create module spec")]

    module = importlib.util.module_from_spec(spec)

    # Register in sys.modules so intra-module imports work.
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        logger.exception("plugin_module_exec_error", path=str(filepath))
        sys.modules.pop(module_name, None)
        return [], [PluginLoadError(str(filepath), f"{type(exc).__name__}: {exc}")]

    return _extract_plugin_instances(module, filepath)


def _extract_plugin_instances(
    module: object,
    filepath: Path,
) -> tuple[list[BasePlugin], list[PluginLoadError]]:
    """Instantiate every concrete plugin class defined (not imported) in *module*."""
    plugins: list[BasePlugin] = []
    errors: list[PluginLoadError] = []
    module_name = getattr(module, "__name__", "")

    for name, obj in inspect.getmembers(module, inspect.isclass):
        if not issubclass(obj, BasePlugin) or inspect.isabstract(obj):
            continue
        if obj.__module__ != module_name:
            continue

        try:
            instance = obj()
        except Exception as exc:
            logger.exception("plugin_instantiation_error", cls=name, path=str(filepath))
            errors.append(PluginLoadError(f"{filepath}:{name}", f"{type(exc).__name__}: {exc}"))
            continue

        plugins.append(instance)
        logger.debug(
            "plugin_loaded",
            plugin=instance.plugin_name,
            version=instance.version,
            file=str(filepath),
        )

    return plugins, errors
