"""
Configuration Management System

Hierarchical configuration loading:
1. Environment variables (highest priority)
2. config.yaml file

The owner private key is never part of the configuration model; it is read
from OWNER_PRIVATE_KEY by the orchestrator.
"""

import os
from typing import Optional, Dict, Any
from pathlib import Path
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .types import ConfigurationError


class RPCConfig(BaseModel):
    """RPC provider configuration"""
    http_url: str = Field(..., description="HTTP JSON-RPC endpoint for reads and broadcasts")
    ws_url: str = Field(..., description="WebSocket endpoint for new block heads")
    backup_ws_url: Optional[str] = Field(default=None, description="Failover WebSocket endpoint")


class ContractConfig(BaseModel):
    """Gas price contract and owner account"""
    address: str = Field(..., description="Contract holding the gas price")
    owner_address: str = Field(..., description="Account allowed to set the gas price")
    gas_limit: int = Field(default=100000, gt=0)
    priority_fee_gwei: int = Field(default=1, ge=0)

    @field_validator('address', 'owner_address')
    @classmethod
    def validate_address(cls, v):
        """Validate Ethereum address format"""
        if not v.startswith('0x') or len(v) != 42:
            raise ValueError(f"Invalid Ethereum address: {v}")
        return v


class ThresholdConfig(BaseModel):
    """Hysteresis thresholds and buffers, in integer percent"""
    upward_threshold_pct: int = Field(..., description="Raise when network price exceeds this % of contract price")
    downward_threshold_pct: int = Field(..., description="Lower when network price falls below this % of contract price")
    upward_buffer_pct: int = Field(..., ge=100, description="Multiplier applied to network price on raise")
    downward_buffer_pct: int = Field(..., ge=100, description="Multiplier applied to network price on lower")

    model_config = {"frozen": True}

    @model_validator(mode='after')
    def validate_band(self):
        if not (0 <= self.downward_threshold_pct < 100 < self.upward_threshold_pct):
            raise ValueError(
                "Thresholds must satisfy 0 <= downward_threshold_pct < 100 < upward_threshold_pct, "
                f"got downward={self.downward_threshold_pct} upward={self.upward_threshold_pct}"
            )
        return self


class LifecycleConfig(BaseModel):
    """Pending update reconciliation limits"""
    max_wait_blocks: int = Field(..., ge=1, description="Blocks to wait on a pending tx before timing out")
    max_retries: int = Field(..., ge=1, description="Submission attempts per decision")


class RedisConfig(BaseModel):
    """Redis configuration for pending update persistence"""
    host: str = Field(default="localhost")
    port: int = Field(default=6379)
    password: Optional[str] = Field(default=None)
    db: int = Field(default=0)
    ttl_seconds: int = Field(default=86400)


class MonitoringConfig(BaseModel):
    """Metrics and logging configuration"""
    metrics_enabled: bool = Field(default=True)
    metrics_port: int = Field(default=8000)
    log_dir: str = Field(default="logs")
    log_level: str = Field(default="INFO")


class FeeUpdaterConfig(BaseModel):
    """Main configuration model"""
    # Network
    chain_id: Optional[int] = Field(default=None)
    network_name: str = Field(default="mainnet")

    # Components
    rpc: RPCConfig
    contract: ContractConfig
    thresholds: ThresholdConfig
    lifecycle: LifecycleConfig
    redis: Optional[RedisConfig] = None
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


# Environment variable -> (section, key, caster)
ENV_OVERRIDES = {
    'WS_URL': ('rpc', 'ws_url', str),
    'API_URL': ('rpc', 'http_url', str),
    'BACKUP_WS_URL': ('rpc', 'backup_ws_url', str),
    'PP_ADDRESS': ('contract', 'address', str),
    'OWNER_ADDRESS': ('contract', 'owner_address', str),
    'UPWARD_THRESHOLD_PCT': ('thresholds', 'upward_threshold_pct', int),
    'DOWNWARD_THRESHOLD_PCT': ('thresholds', 'downward_threshold_pct', int),
    'UPWARD_BUFFER_PCT': ('thresholds', 'upward_buffer_pct', int),
    'DOWNWARD_BUFFER_PCT': ('thresholds', 'downward_buffer_pct', int),
    'MAX_WAIT_BLOCKS': ('lifecycle', 'max_wait_blocks', int),
    'MAX_RETRIES': ('lifecycle', 'max_retries', int),
    'REDIS_HOST': ('redis', 'host', str),
    'REDIS_PASSWORD': ('redis', 'password', str),
    'LOG_LEVEL': ('monitoring', 'log_level', str),
}


class ConfigLoader:
    """Configuration loader with hierarchical loading"""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or Path(os.getenv('FEE_UPDATER_CONFIG', 'config.yaml'))

    def load(self) -> FeeUpdaterConfig:
        """Load configuration from all sources"""
        config_data = self._load_yaml()
        config_data = self._apply_env_overrides(config_data)

        try:
            return FeeUpdaterConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _load_yaml(self) -> Dict[str, Any]:
        """Load configuration from YAML file.

        A missing file is only tolerated when the environment provides
        everything; validation reports what is absent.
        """
        if not self.config_path.exists():
            if os.getenv('WS_URL') and os.getenv('API_URL'):
                return {}
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed configuration file {self.config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        for env_name, (section, key, caster) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                value = caster(raw)
            except ValueError as e:
                raise ConfigurationError(f"{env_name} has invalid value {raw!r}") from e
            section_data = config_data.get(section) or {}
            section_data[key] = value
            config_data[section] = section_data
        return config_data


def init_config(config_path: Optional[Path] = None) -> FeeUpdaterConfig:
    """Initialize configuration with custom path"""
    return ConfigLoader(config_path).load()
