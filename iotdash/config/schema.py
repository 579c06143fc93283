"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AutomationConfig(Base):
    """Rule engine timing and history configuration."""

    cooldown_seconds: int = Field(default=60, ge=0)  # Minimum gap between two firings of a sensor rule
    tick_interval_seconds: float = Field(default=60.0, gt=0)  # Period of the time-trigger tick
    history_limit: int = Field(default=50, gt=0)  # Execution records kept in the log


class StorageConfig(Base):
    """Where the automation collection and execution history are persisted."""

    data_dir: str = "~/.iotdash"
    automations_key: str = "automations"
    history_key: str = "automation_history"


class CommandsConfig(Base):
    """UDP command transport to LED/relay controllers."""

    udp_port: int = 4210  # Port the device firmware listens on
    grace_seconds: float = 0.5  # Keep the socket open this long after a send so the datagram is flushed


class Config(BaseSettings):
    """Root configuration for iotdash."""

    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded data directory path."""
        return Path(self.storage.data_dir).expanduser()

    model_config = ConfigDict(env_prefix="IOTDASH_", env_nested_delimiter="__")
