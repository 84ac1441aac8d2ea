"""Plugin type discovery and catalog.

Plugin types are classes decorated with ``@plugin``. The catalog imports
the built-in modules and, optionally, every ``.py`` file in a plugin
directory, then indexes decorated classes by type name. Later
registrations override earlier ones, so a directory plugin can replace a
built-in of the same type.
"""

from __future__ import annotations

import importlib
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any

from switchboard.plugins.base import PluginBase, derive_capabilities
from switchboard.shared.errors import NotFoundError, ValidationFailure
from switchboard.shared.types import PluginManifest
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.catalog")

BUILTIN_MODULES = (
    "switchboard.plugins.builtin.litellm_model",
    "switchboard.plugins.builtin.ollama",
    "switchboard.plugins.builtin.http_tools",
    "switchboard.plugins.builtin.telegram_channel",
    "switchboard.plugins.builtin.discord_channel",
    "switchboard.plugins.builtin.webhook_channel",
)

_VALID_FEATURES = ("channel", "model", "tooling")


def validate_manifest(data: dict[str, Any]) -> list[str]:
    """Return a list of problems with a raw manifest dict (empty when valid)."""
    errors = []
    for key in ("type", "name", "description", "version"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"Missing or invalid '{key}'")
    features = data.get("features")
    if not isinstance(features, list) or not features:
        errors.append("'features' must be a non-empty list")
    else:
        for feature in features:
            if feature not in _VALID_FEATURES:
                errors.append(f"Invalid feature '{feature}'")
    return errors


def plugin(
    type: str,
    name: str,
    description: str,
    version: str = "1.0.0",
    author: str | None = None,
    config_schema: list[dict[str, Any]] | None = None,
):
    """Class decorator that turns a ``PluginBase`` subclass into a plugin type.

    Features are derived from the capability interfaces the class
    implements; a class implementing none of them is rejected.
    """

    def decorator(cls):
        if not issubclass(cls, PluginBase):
            raise ValidationFailure(f"{cls.__name__} must subclass PluginBase")
        capabilities = derive_capabilities(cls)
        raw = {
            "type": type,
            "name": name,
            "description": description,
            "version": version,
            "author": author,
            "features": sorted(c.value for c in capabilities),
            "config_schema": config_schema or [],
        }
        errors = validate_manifest(raw)
        if errors:
            raise ValidationFailure(f"Invalid plugin {type!r}: {'; '.join(errors)}")
        cls.manifest = PluginManifest(**raw)
        cls.capabilities = capabilities
        return cls

    return decorator


class PluginCatalog:
    """Indexes plugin types by name and constructs instances."""

    def __init__(self, plugin_dir: str | None = None, include_builtins: bool = True):
        self._types: dict[str, type[PluginBase]] = {}
        if include_builtins:
            for module_name in BUILTIN_MODULES:
                try:
                    self._collect(importlib.import_module(module_name))
                except Exception as e:
                    logger.warning(f"Failed to load builtin plugin {module_name}: {e}")
        if plugin_dir:
            self.discover(plugin_dir)

    def discover(self, plugin_dir: str | Path) -> int:
        """Load every .py file in ``plugin_dir``. Returns the number of types added."""
        path = Path(plugin_dir)
        if not path.exists():
            logger.warning(f"Plugin directory not found: {plugin_dir}")
            return 0
        before = len(self._types)
        for py_file in sorted(path.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            try:
                spec = importlib.util.spec_from_file_location(
                    f"switchboard_plugin_{py_file.stem}", str(py_file),
                )
                if spec and spec.loader:
                    module = importlib.util.module_from_spec(spec)
                    spec.loader.exec_module(module)
                    self._collect(module)
            except Exception as e:
                logger.warning(f"Failed to load plugin {py_file}: {e}")
        return len(self._types) - before

    def _collect(self, module: ModuleType) -> None:
        for obj in vars(module).values():
            if (
                isinstance(obj, type)
                and issubclass(obj, PluginBase)
                and obj.__module__ == module.__name__
                and "manifest" in obj.__dict__
            ):
                self.register(obj)

    def register(self, cls: type[PluginBase]) -> None:
        if "manifest" not in cls.__dict__:
            raise ValidationFailure(f"{cls.__name__} is not decorated with @plugin")
        plugin_type = cls.manifest.type
        if plugin_type in self._types:
            logger.info(f"Plugin type {plugin_type} overridden by {cls.__module__}")
        self._types[plugin_type] = cls

    def has(self, plugin_type: str) -> bool:
        return plugin_type in self._types

    def get(self, plugin_type: str) -> type[PluginBase]:
        cls = self._types.get(plugin_type)
        if cls is None:
            raise NotFoundError(f"Plugin not found in catalog: {plugin_type}")
        return cls

    def load(self, plugin_type: str, config: dict[str, Any]) -> PluginBase:
        """Construct a fresh plugin object for ``plugin_type``."""
        return self.get(plugin_type)(config)

    def entries(self) -> list[PluginManifest]:
        return [cls.manifest for cls in self._types.values()]
