"""Central registry that discovers, stores, and resolves plugins by capability."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from specrun.plugins.base import (
    BaseDebtDetector,
    BaseExecutor,
    BaseFailureAnalyzer,
    BasePlugin,
    BaseReporter,
    BaseValidator,
    Capability,
    CAPABILITY_BASES,
    capabilities_of,
)
from specrun.plugins.loader import load_plugins_from_directory
from specrun.utils.exceptions import (
    PluginContractError,
    PluginLoadError,
    PluginNotFoundError,
    PluginRegistryError,
    UnknownActionTypeError,
)
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

BUILTIN_PLUGIN_DIR = Path(__file__).parent / "builtin"

# Keyed capabilities hold one plugin per key; ordered ones keep every
# subscriber, sorted by descending priority.
_KEYED = (Capability.EXECUTOR, Capability.VALIDATOR)
_ORDERED = (Capability.FAILURE_ANALYZER, Capability.DEBT_DETECTOR, Capability.REPORTER)


class PluginRegistry:
    """Holds every loaded plugin, filed under the capabilities it implements.

    Typical lifecycle::

        registry = PluginRegistry()
        registry.discover(["./plugins"])
        executor = registry.resolve(Capability.EXECUTOR, "HTTP_REQUEST")
        for analyzer in registry.subscribers(Capability.FAILURE_ANALYZER):
            ...
        await registry.cleanup_all()

    Executors are keyed by action type and validators by condition type;
    in both cases a later registration for the same key replaces the
    earlier one (plugins from user directories override built-ins).
    """

    def __init__(self) -> None:
        self._keyed: dict[Capability, dict[str, BasePlugin]] = {cap: {} for cap in _KEYED}
        self._ordered: dict[Capability, list[BasePlugin]] = {cap: [] for cap in _ORDERED}
        self._plugins: list[BasePlugin] = []
        self.load_errors: list[PluginLoadError] = []

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(
        self,
        plugin_dirs: Iterable[str | Path] = (),
        include_builtin: bool = True,
    ) -> int:
        """Scan the built-in plugin directory and *plugin_dirs*, instantiate
        plugins, and register them.

        Load failures are collected in :attr:`load_errors`; they never abort
        discovery.  Returns the number of newly registered plugins.

        Raises :class:`PluginRegistryError` only when a directory cannot be
        scanned at all.
        """
        directories: list[Path] = []
        if include_builtin:
            directories.append(BUILTIN_PLUGIN_DIR)
        directories.extend(Path(d) for d in plugin_dirs)

        count = 0
        for directory in directories:
            try:
                instances, errors = load_plugins_from_directory(directory)
            except OSError as exc:
                raise PluginRegistryError(f"Cannot scan plugin directory {directory}: {exc}") from exc

            for error in errors:
                self.record_load_error(error)

            for plugin in instances:
                try:
                    self.register(plugin)
                except PluginContractError as exc:
                    self.record_load_error(PluginLoadError(plugin.plugin_name, str(exc)))
                    continue
                count += 1

        logger.info(
            "plugins_discovered",
            count=count,
            errors=len(self.load_errors),
            **{cap.value: len(self.names(cap)) for cap in Capability},
        )
        return count

    def record_load_error(self, error: PluginLoadError) -> None:
        self.load_errors.append(error)
        logger.warning("plugin_load_failed", path=error.path, detail=error.detail)

    # ------------------------------------------------------------------
    # Registration & lookup
    # ------------------------------------------------------------------

    def register(self, plugin: BasePlugin, capability: Capability | None = None) -> None:
        """File *plugin* under *capability*, or under every capability it
        implements when *capability* is omitted.

        Raises :class:`PluginContractError` if the plugin does not implement
        the requested capability (or any capability at all).
        """
        if capability is None:
            capabilities = capabilities_of(plugin)
            if not capabilities:
                raise PluginContractError(getattr(plugin, "plugin_name", repr(plugin)), "any")
        else:
            capability = Capability(capability)
            if not isinstance(plugin, CAPABILITY_BASES[capability]):
                raise PluginContractError(
                    getattr(plugin, "plugin_name", repr(plugin)), capability.value
                )
            capabilities = [capability]

        for cap in capabilities:
            if cap in _KEYED:
                self._register_keyed(plugin, cap)
            else:
                self._register_ordered(plugin, cap)

        if not any(p is plugin for p in self._plugins):
            self._plugins.append(plugin)

    def _register_keyed(self, plugin: BasePlugin, capability: Capability) -> None:
        keys = (
            plugin.action_types
            if capability == Capability.EXECUTOR
            else plugin.condition_types
        )
        if not keys:
            raise PluginContractError(plugin.plugin_name, capability.value)

        table = self._keyed[capability]
        for key in keys:
            previous = table.get(key)
            if previous is not None and previous is not plugin:
                logger.warning(
                    "plugin_overwritten",
                    capability=capability.value,
                    key=key,
                    old_plugin=previous.plugin_name,
                    new_plugin=plugin.plugin_name,
                )
            table[key] = plugin
            logger.debug("plugin_registered", capability=capability.value, key=key,
                         plugin=plugin.plugin_name)

    def _register_ordered(self, plugin: BasePlugin, capability: Capability) -> None:
        subscribers = self._ordered[capability]
        if any(p is plugin for p in subscribers):
            return
        subscribers.append(plugin)
        # Stable sort: equal priorities keep registration order.
        subscribers.sort(key=lambda p: -getattr(p, "priority", 0))
        logger.debug(
            "plugin_registered",
            capability=capability.value,
            plugin=plugin.plugin_name,
            priority=getattr(plugin, "priority", None),
        )

    def resolve(self, capability: Capability, key: str) -> BasePlugin:
        """Return the plugin registered for *key* under *capability*.

        For executors and validators *key* is the action or condition type;
        for ordered capabilities it is the plugin name.

        Raises :class:`UnknownActionTypeError` for a missing executor and
        :class:`PluginNotFoundError` otherwise.
        """
        capability = Capability(capability)
        if capability in _KEYED:
            plugin = self._keyed[capability].get(key)
        else:
            plugin = next(
                (p for p in self._ordered[capability] if p.plugin_name == key),
                None,
            )

        if plugin is None:
            if capability == Capability.EXECUTOR:
                raise UnknownActionTypeError(key)
            raise PluginNotFoundError(capability.value, key)
        return plugin

    def subscribers(self, capability: Capability) -> list[BasePlugin]:
        """Return every plugin of an ordered capability, highest priority first."""
        capability = Capability(capability)
        if capability in _KEYED:
            # Unique instances in registration order.
            seen: list[BasePlugin] = []
            for plugin in self._keyed[capability].values():
                if not any(p is plugin for p in seen):
                    seen.append(plugin)
            return seen
        return list(self._ordered[capability])

    # Convenience accessors used by the engine.

    def executor_for(self, action_type: str) -> BaseExecutor:
        return self.resolve(Capability.EXECUTOR, action_type)  # type: ignore[return-value]

    def validator_for(self, condition_type: str) -> BaseValidator | None:
        return self._keyed[Capability.VALIDATOR].get(condition_type)  # type: ignore[return-value]

    def failure_analyzers(self) -> list[BaseFailureAnalyzer]:
        return self.subscribers(Capability.FAILURE_ANALYZER)  # type: ignore[return-value]

    def debt_detectors(self) -> list[BaseDebtDetector]:
        return self.subscribers(Capability.DEBT_DETECTOR)  # type: ignore[return-value]

    def reporters(self) -> list[BaseReporter]:
        return self.subscribers(Capability.REPORTER)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def cleanup_all(self) -> None:
        """Call ``cleanup()`` on every plugin; failures are logged, not raised."""
        for plugin in self._plugins:
            try:
                await plugin.cleanup()
            except Exception:
                logger.exception("plugin_cleanup_error", plugin=plugin.plugin_name)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def names(self, capability: Capability) -> list[str]:
        return [p.plugin_name for p in self.subscribers(capability)]

    def keys(self, capability: Capability) -> list[str]:
        """Action or condition types served by a keyed capability."""
        return list(self._keyed.get(Capability(capability), {}))

    def list_all(self) -> dict[str, list[str]]:
        """Return plugin names per capability."""
        return {cap.value: self.names(cap) for cap in Capability}

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: str) -> bool:
        return any(p.plugin_name == name for p in self._plugins)
