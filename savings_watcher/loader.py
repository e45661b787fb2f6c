"""Locating and importing the config module named on the command line."""

from __future__ import annotations

import importlib.util
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

import structlog
from pydantic import ValidationError

from .config import SavingsConfig
from .errors import ConfigurationError
from .hooks import HookRegistry

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "savings_config.py"
_MODULE_NAME = "savings_user_config"


@dataclass
class LoadedConfig:
    config: SavingsConfig
    hooks: HookRegistry
    plugin: object | None = None
    module: ModuleType | None = None


def resolve_config_path(arg: str | None = None, base_dir: Path | None = None) -> Path:
    """Turn the optional CLI argument into an absolute ``.py`` path."""
    name = arg or DEFAULT_CONFIG_FILE
    if not name.endswith(".py"):
        name += ".py"
    path = Path(name)
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path
    return path


def _import_module(path: Path) -> ModuleType:
    if not path.is_file():
        raise ConfigurationError(f"Config module not found: {path}")
    spec = importlib.util.spec_from_file_location(_MODULE_NAME, path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot import config module: {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ConfigurationError(f"Error while importing {path}: {exc}") from exc
    return module


def _build_settings(raw: object) -> SavingsConfig:
    try:
        if raw is None:
            return SavingsConfig()
        if isinstance(raw, SavingsConfig):
            return raw
        if isinstance(raw, Mapping):
            return SavingsConfig(**dict(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc
    raise ConfigurationError(
        f"'settings' must be a mapping or SavingsConfig, not {type(raw).__name__}"
    )


def load_config_module(path: Path) -> LoadedConfig:
    """Import *path* and collect its settings and hooks.

    The module provides ``settings`` (a mapping or :class:`SavingsConfig`;
    omitted means environment variables only) and either a ``plugin``
    (instance or class) or module-level functions named after the stages.
    Module-level functions find ``mailer`` and ``extras`` as module globals
    once the watcher has bound them.

    Raises:
        ConfigurationError: If the module is missing, fails to import, or
            its settings do not validate.
    """
    module = _import_module(path)
    config = _build_settings(getattr(module, "settings", None))

    plugin = getattr(module, "plugin", None)
    if inspect.isclass(plugin):
        try:
            plugin = plugin()
        except Exception as exc:
            raise ConfigurationError(f"Could not instantiate plugin {plugin.__name__}: {exc}") from exc

    hooks = HookRegistry.from_object(plugin if plugin is not None else module)
    logger.info(
        "config_loaded",
        path=str(path),
        plugin=type(plugin).__name__ if plugin is not None else None,
        hooks=hooks.registered,
    )
    return LoadedConfig(config=config, hooks=hooks, plugin=plugin, module=module)
