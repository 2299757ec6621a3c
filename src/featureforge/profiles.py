"""
Environment profiles for featureforge configuration.

Profiles set request defaults (staleness policy, validation mode, missing
row handling), adapter retry settings and the schema document a store is
built from.

Example featureforge.yaml:
    default_profile: dev

    profiles:
      dev:
        schema: ./schema.yaml
        staleness: warn

      production:
        schema: ${oc.env:FEATUREFORGE_SCHEMA}
        staleness: raise
        validation: raise
        retry:
          max_attempts: 5
          base_delay: 0.5
"""

from __future__ import annotations

import os
import typing as T
from pathlib import Path

from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import InterpolationKeyError
from pydantic import BaseModel, Field, ValidationError

import featureforge.errors as errors
import featureforge.logging as log

CONFIG_FILENAME = "featureforge.yaml"
PROFILE_ENV_VAR = "FEATUREFORGE_PROFILE"


class RetryConfig(BaseModel, frozen=True):
    """Adapter retry settings."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.1, ge=0)


class ProfileConfig(BaseModel, frozen=True):
    """Configuration for a single profile."""

    schema_: str | None = Field(default=None, alias="schema")
    staleness: T.Literal["warn", "raise", "ignore"] = "warn"
    validation: T.Literal["raise", "diagnostics"] = "raise"
    on_missing: T.Literal["drop", "keep"] = "drop"
    retry: RetryConfig | None = None

    model_config = {"populate_by_name": True}


class FeatureforgeConfig(BaseModel, frozen=True):
    """Root configuration from featureforge.yaml."""

    default_profile: str = "dev"
    profiles: dict[str, ProfileConfig]


# =============================================================================
# Config Loading
# =============================================================================


def load_config(config_path: Path | None = None) -> FeatureforgeConfig | None:
    """
    Load and validate featureforge.yaml configuration.

    Args:
        config_path: Path to config file. If None, searches for
            featureforge.yaml in current directory.

    Returns:
        Validated FeatureforgeConfig, or None if no config file exists.

    Raises:
        ProfileError: If config file is invalid or env vars missing.
    """
    if config_path is None:
        config_path = Path(CONFIG_FILENAME)

    if not config_path.exists():
        return None

    try:
        loaded = OmegaConf.load(config_path)
        if not isinstance(loaded, DictConfig):
            raise errors.ProfileError(
                f"Expected YAML mapping in {config_path}, got list or scalar",
                hint="featureforge.yaml must be a YAML mapping with a profiles key.",
            )
        omega_conf: DictConfig = loaded
    except errors.ProfileError:
        raise
    except Exception as e:
        raise errors.ProfileError(
            f"Failed to parse {config_path}: {e}",
            hint="Check that your featureforge.yaml is valid YAML syntax.",
        ) from e

    # Resolve ${oc.env:VAR} interpolations
    try:
        OmegaConf.resolve(omega_conf)
    except InterpolationKeyError as e:
        raise errors.ProfileError(
            f"Failed to resolve config variables: {e}",
            hint="Set the missing environment variable and try again.",
        ) from e
    except Exception as e:
        raise errors.ProfileError(f"Failed to resolve config variables: {e}") from e

    config_dict = OmegaConf.to_container(omega_conf, resolve=True)

    try:
        return FeatureforgeConfig.model_validate(config_dict)
    except ValidationError as e:
        error_lines = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            error_lines.append(f"  {loc}: {err['msg']}")

        raise errors.ProfileError(
            f"Invalid configuration in {config_path}:\n" + "\n".join(error_lines),
            hint="Check the featureforge.yaml schema and fix the validation errors.",
        ) from e


def load_profile(
    name: str | None = None,
    config_path: Path | None = None,
) -> ProfileConfig:
    """
    Load a profile from featureforge.yaml.

    Profile resolution order:
    1. Explicit `name` parameter (highest priority)
    2. FEATUREFORGE_PROFILE environment variable
    3. default_profile from featureforge.yaml

    Args:
        name: Profile name. If None, uses env var or config default.
        config_path: Path to config file. If None, uses featureforge.yaml.

    Returns:
        Validated ProfileConfig

    Raises:
        ProfileError: If no config file found, profile not found, or config invalid.
    """
    config = load_config(config_path)

    if config is None:
        raise errors.ProfileError(
            f"No {CONFIG_FILENAME} found.",
            hint="Create featureforge.yaml or pass settings to FeatureStore directly.",
        )

    if name is None:
        name = os.environ.get(PROFILE_ENV_VAR, config.default_profile)

    if name not in config.profiles:
        available = list(config.profiles.keys())
        available_str = ", ".join(
            f"{p}{' (default)' if p == config.default_profile else ''}" for p in available
        )
        raise errors.ProfileError(
            f"Profile '{name}' not found.\n\nAvailable profiles: {available_str}",
            hint=f"Use one of the available profiles: featureforge profile --profile {available[0]}",
        )

    return config.profiles[name]


def get_profile_info(
    config_path: Path | None = None,
) -> tuple[str, str, FeatureforgeConfig] | None:
    """
    Get current profile name, source, and config in one call.

    Returns:
        Tuple of (profile_name, source, config) where source is "env" or
        "config", or None if no config file exists.
    """
    config = load_config(config_path)
    if config is None:
        return None

    if PROFILE_ENV_VAR in os.environ:
        return os.environ[PROFILE_ENV_VAR], "env", config

    return config.default_profile, "config", config


def print_profile(name: str, config: ProfileConfig) -> None:
    """Print a profile's settings to the console."""
    log.print_info(f"Profile: {name}")
    log.print_info(f"  Schema: {config.schema_ or '-'}")
    log.print_info(f"  Staleness: {config.staleness}")
    log.print_info(f"  Validation: {config.validation}")
    log.print_info(f"  On missing: {config.on_missing}")
    if config.retry:
        log.print_info(
            f"  Retry: {config.retry.max_attempts} attempts, base delay {config.retry.base_delay}s"
        )
    else:
        log.print_info("  Retry: disabled")
