"""Collaborator loading.

The pump driver, data store and recommendation engine are provided by
the deployment as ``"package.module:attribute"`` factory paths in
settings. Each factory is called with the Settings instance.
"""

import importlib
from typing import Any

from closedloop.config import Settings
from closedloop.core.exceptions import CollaboratorConfigError
from closedloop.core.models import LoopPreferences
from closedloop.logging_config import get_logger
from closedloop.services.aps_manager import APSManager
from closedloop.storage import FileStorage

logger = get_logger(__name__)


def load_factory(path: str) -> Any:
    """Resolve ``"module:attribute"`` to the attribute."""
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise CollaboratorConfigError(
            f"Invalid factory path {path!r}; expected 'module:attribute'"
        )
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise CollaboratorConfigError(f"Cannot import {module_path!r}: {e}") from e
    try:
        factory = getattr(module, attr)
    except AttributeError as e:
        raise CollaboratorConfigError(f"{module_path!r} has no attribute {attr!r}") from e
    if not callable(factory):
        raise CollaboratorConfigError(f"{path!r} is not callable")
    return factory


def build_manager(settings: Settings) -> APSManager | None:
    """Build the loop manager from settings.

    Returns None when no data store or engine is configured; the service
    then runs without a loop.
    """
    if not settings.data_store_factory or not settings.engine_factory:
        logger.warning(
            "Loop collaborators not configured",
            data_store_factory=settings.data_store_factory or None,
            engine_factory=settings.engine_factory or None,
        )
        return None

    data_store = load_factory(settings.data_store_factory)(settings)
    engine = load_factory(settings.engine_factory)(settings)
    pump_driver = None
    if settings.pump_driver_factory:
        pump_driver = load_factory(settings.pump_driver_factory)(settings)

    preferences = LoopPreferences(
        closed_loop=settings.closed_loop,
        unsuspend_if_no_temp=settings.unsuspend_if_no_temp,
    )
    manager = APSManager(
        storage=FileStorage(settings.storage_path),
        data_store=data_store,
        engine=engine,
        preferences=preferences,
        pump_driver=pump_driver,
        min_glucose_samples=settings.min_glucose_samples,
    )
    logger.info(
        "Loop manager built",
        closed_loop=preferences.closed_loop,
        pump_attached=pump_driver is not None,
        storage_path=settings.storage_path,
    )
    return manager
