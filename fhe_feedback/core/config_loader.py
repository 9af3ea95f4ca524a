"""
Configuration Loader & Validation
"""

import os
import logging
import yaml
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration Models
# =============================================================================

class SystemConfig(BaseModel):
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    event_buffer_size: int = Field(1000, ge=1)

class FHESettings(BaseModel):
    backend: str = "mock"
    integer_bits: int = Field(32, ge=8, le=64)
    security_bits: int = 128

class ScoringConfig(BaseModel):
    """Constants of the improvement-score blend.

    improvement' = (prev + (rating * rating_weight
                   + (response_ceiling - response_time / response_divisor))
                   / blend_divisor) / blend_divisor
    """
    rating_weight: int = Field(20, ge=0)
    response_ceiling: int = Field(100, ge=0)
    response_divisor: int = Field(10, ge=1)
    blend_divisor: int = Field(2, ge=1)

class AccessConfig(BaseModel):
    admin_identity: str = "admin"
    initial_managers: List[str] = []

class StorageConfig(BaseModel):
    # None keeps ciphertexts in memory
    database_url: Optional[str] = None

class RegistryConfig(BaseModel):
    service_types: List[int] = [1, 2, 3, 4, 5]

class OracleConfig(BaseModel):
    # Hex-encoded raw Ed25519 public key of the decryption authority.
    # Empty means "trust the key of the oracle the service was built with".
    authority_public_key: str = ""
    proof_failure_threshold: int = Field(3, ge=1)
    proof_failure_window_s: float = Field(300.0, gt=0)

class AppConfig(BaseModel):
    system: SystemConfig = Field(default_factory=SystemConfig)
    fhe: FHESettings = Field(default_factory=FHESettings)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)

# =============================================================================
# Loader
# =============================================================================

def load_and_validate_config(config_path: str = "config/config.yaml") -> AppConfig:
    """
    Load configuration from YAML, apply env overrides, and validate.
    """
    path = Path(config_path)
    config_data = {}

    # 1. Load YAML
    if path.exists():
        try:
            with open(path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config file: {e}")
    else:
        logger.warning(f"Config file {path} not found. Using defaults.")

    if not isinstance(config_data, dict):
        logger.error(f"Config file {path} must contain a mapping, got {type(config_data).__name__}")
        config_data = {}

    # 2. Environment Overrides
    if os.getenv("LOG_LEVEL"):
        config_data.setdefault("system", {})["log_level"] = os.getenv("LOG_LEVEL").upper()

    if os.getenv("API_PORT"):
        try:
            config_data.setdefault("system", {})["api_port"] = int(os.getenv("API_PORT"))
        except ValueError:
            logger.warning(f"Ignoring non-integer API_PORT={os.getenv('API_PORT')!r}")

    if os.getenv("FEEDBACK_DB_URL"):
        config_data.setdefault("storage", {})["database_url"] = os.getenv("FEEDBACK_DB_URL")

    if os.getenv("FEEDBACK_ADMIN"):
        config_data.setdefault("access", {})["admin_identity"] = os.getenv("FEEDBACK_ADMIN")

    # 3. Validation
    try:
        config = AppConfig(**config_data)
        logger.info("Configuration validated successfully.")
        return config
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        logger.warning("Falling back to default configuration due to validation errors.")
        return AppConfig()
