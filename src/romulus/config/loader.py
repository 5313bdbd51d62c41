# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import RomulusConfig

log = logging.getLogger("romulus")

DEFAULT_CONFIG_PATH = "romulus.yaml"


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> RomulusConfig:
    """
    Read a YAML config, expand ${VARS} from the environment and validate it.
    Every failure surfaces as ConfigurationError.
    """
    path = Path(path)
    try:
        raw = path.read_text()
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e

    expanded = os.path.expandvars(raw)

    try:
        data = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must be a mapping, got {type(data).__name__}")

    try:
        cfg = RomulusConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}:\n{e}") from e

    log.debug(f"loaded config {path} for cluster {cfg.cluster.name}")
    return cfg
