"""Built-in plugins, discovered from this directory by ``PluginRegistry.discover``."""
