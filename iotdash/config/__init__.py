"""Configuration module for iotdash."""

from iotdash.config.loader import load_config, save_config
from iotdash.config.schema import Config

__all__ = ["Config", "load_config", "save_config"]
