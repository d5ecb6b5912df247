"""Application configuration using Pydantic Settings."""

import sys

from pydantic_settings import BaseSettings, SettingsConfigDict

from closedloop.core.constants import MIN_GLUCOSE_SAMPLES


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CLOSEDLOOP_",
    )

    # Loop behaviour (initial values; runtime changes go through LoopPreferences)
    closed_loop: bool = False
    unsuspend_if_no_temp: bool = False
    min_glucose_samples: int = MIN_GLUCOSE_SAMPLES

    # Periodic loop
    loop_enabled: bool = True
    loop_interval_minutes: int = 5  # Matches the 5-minute CGM cadence

    # Engine maintenance jobs
    autosense_enabled: bool = True
    autosense_interval_minutes: int = 30
    autotune_enabled: bool = True
    autotune_hour: int = 4  # Local hour of the nightly autotune run

    # Record storage
    storage_path: str = "./data"

    # Collaborators as "module:attribute" factory paths
    pump_driver_factory: str = ""
    data_store_factory: str = ""
    engine_factory: str = ""

    # Logging
    log_format: str = "json"  # 'json' or 'text'
    log_level: str = "INFO"
    service_name: str = "closedloop"

    # Testing
    testing: bool = False


settings = Settings()


def validate_settings() -> None:
    """Validate that the loop settings are coherent before starting.

    Exits the process on values that would make the controller act on
    too little data or schedule itself into a tight loop.
    """
    if settings.min_glucose_samples < 1:
        print(
            "FATAL: CLOSEDLOOP_MIN_GLUCOSE_SAMPLES must be at least 1 "
            f"(currently {settings.min_glucose_samples}).",
            file=sys.stderr,
        )
        sys.exit(1)

    if settings.loop_interval_minutes < 1:
        print(
            "FATAL: CLOSEDLOOP_LOOP_INTERVAL_MINUTES must be at least 1 "
            f"(currently {settings.loop_interval_minutes}).",
            file=sys.stderr,
        )
        sys.exit(1)

    if not 0 <= settings.autotune_hour <= 23:
        print(
            f"FATAL: CLOSEDLOOP_AUTOTUNE_HOUR must be 0-23 (currently {settings.autotune_hour}).",
            file=sys.stderr,
        )
        sys.exit(1)

    if settings.closed_loop and not settings.pump_driver_factory:
        print(
            "WARNING: closed loop is enabled but no pump driver factory is "
            "configured; suggestions will be computed but never enacted.",
            file=sys.stderr,
        )
