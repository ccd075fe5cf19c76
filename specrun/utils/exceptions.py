class SpecRunError(Exception):
    """Base exception for the specification-driven test engine."""


# ---------------------------------------------------------------------------
# Specification loading (fatal)
# ---------------------------------------------------------------------------


class SpecError(SpecRunError):
    pass


class SpecParseError(SpecError):
    def __init__(self, source: str, detail: str):
        self.source = source
        super().__init__(f"Failed to parse specification {source}: {detail}")


class SpecValidationError(SpecError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid specification: {'; '.join(errors)}")


# ---------------------------------------------------------------------------
# Plugins
# ---------------------------------------------------------------------------


class PluginError(SpecRunError):
    pass


class PluginLoadError(PluginError):
    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"Failed to load plugin {path}: {detail}")


class PluginContractError(PluginError):
    def __init__(self, plugin: str, capability: str):
        self.plugin = plugin
        self.capability = capability
        super().__init__(f"Plugin '{plugin}' does not implement capability {capability}")


class PluginNotFoundError(PluginError):
    def __init__(self, capability: str, key: str):
        self.capability = capability
        self.key = key
        super().__init__(f"No {capability} plugin registered for: {key}")


class UnknownActionTypeError(PluginNotFoundError):
    def __init__(self, action_type: str):
        super().__init__("executor", action_type)
        self.action_type = action_type
        self.args = (f"No executor registered for action type: {action_type}",)


class PluginRegistryError(PluginError):
    pass


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ActionExecutionError(SpecRunError):
    """Raised by executors; ``data`` is kept as evidence on the failed action."""

    def __init__(self, message: str, data: dict | None = None):
        self.data = data or {}
        super().__init__(message)


class InvalidParametersError(ActionExecutionError):
    def __init__(self, action_type: str, detail: str):
        self.action_type = action_type
        super().__init__(f"Invalid parameters for {action_type}: {detail}")


class EngineStateError(SpecRunError):
    pass


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


class EvidenceWriteError(SpecRunError):
    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__(f"Failed to write evidence {path}: {detail}")


class EvidenceNotFoundError(SpecRunError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Evidence not found: {path}")
