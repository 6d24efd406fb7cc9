import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOSTNAME = "cp.cloudflare.com"
DEFAULT_PORTS = [80, 443]
DEFAULT_MAX_PING = 300
DEFAULT_SCANS = 10000
DEFAULT_MAX_LATENCY = 1000
DEFAULT_IPLIST = "ipv4.txt"


def default_goroutines() -> int:
    return max(1, os.cpu_count() or 1)


class ScanConfig(BaseModel):
    """
    Validation model for scan parameters.
    Field aliases match the keys of config.json, so files written by older
    builds load unchanged.
    """
    model_config = ConfigDict(populate_by_name=True)

    hostname: str = Field(DEFAULT_HOSTNAME, alias="Hostname")
    ports: List[int] = Field(default_factory=lambda: list(DEFAULT_PORTS), alias="Ports")
    path: str = Field("/", alias="Path")
    ping: bool = Field(True, alias="Ping")
    max_ping: int = Field(DEFAULT_MAX_PING, gt=0, alias="MaxPing")
    goroutines: int = Field(default_factory=default_goroutines, gt=0, alias="Goroutines")
    scans: int = Field(DEFAULT_SCANS, gt=0, alias="Scans")
    max_latency: int = Field(DEFAULT_MAX_LATENCY, gt=0, alias="Maxlatency")
    iplist_path: str = Field(DEFAULT_IPLIST, alias="IplistPath")
    csv: bool = Field(True, alias="CSV")

    @field_validator('ports')
    @classmethod
    def validate_ports(cls, v):
        # Keep the configured order, drop duplicates and out-of-range values
        valid = list(dict.fromkeys(p for p in v if 1 <= p <= 65535))
        if not valid:
            raise ValueError("No valid ports found in range 1-65535")
        return valid

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        v = (v or "").strip()
        return v if v.startswith("/") else "/" + v

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


ConfigPath = Union[str, Path]


class ConfigurationService:
    """
    Loads, saves, validates and repairs the JSON configuration file.
    The scan engine only ever sees a repaired ScanConfig.
    """

    def __init__(self, config_path: Optional[ConfigPath] = None):
        self.config_path = Path(config_path) if config_path else Path.cwd() / "config.json"

    def default_configuration(self) -> ScanConfig:
        return ScanConfig()

    def load_configuration(self, repair: bool = True) -> ScanConfig:
        """
        Read config.json, creating it with defaults when missing.

        Args:
            repair: Replace invalid values with defaults. When False an
                unusable file raises ConfigurationError instead.
        """
        if not self.config_path.exists():
            logger.info("Configuration file not found, creating default at %s", self.config_path)
            config = self.default_configuration()
            self.save_configuration(config)
            return config

        try:
            raw = json.loads(self.config_path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("top-level JSON value must be an object")
        except (OSError, ValueError) as e:
            if not repair:
                raise ConfigurationError(f"Cannot read {self.config_path}: {e}") from e
            logger.warning("Failed to parse configuration (%s), using default", e)
            return self.default_configuration()

        try:
            config = ScanConfig.model_validate(raw)
        except ValidationError as e:
            if not repair:
                raise ConfigurationError(f"Invalid configuration in {self.config_path}: {e}") from e
            config = self._salvage(raw)
            self.save_configuration(config)

        config = self.fix_configuration(config)
        logger.info("Configuration loaded from %s", self.config_path)
        return config

    def _salvage(self, raw: dict) -> ScanConfig:
        """Build a config keeping every field that validates on its own."""
        config = self.default_configuration()
        kept = {}
        for name, info in ScanConfig.model_fields.items():
            for key in (info.alias, name):
                if key in raw:
                    try:
                        single = ScanConfig.model_validate({name: raw[key]})
                    except ValidationError:
                        logger.warning("Dropping invalid configuration value %s=%r", key, raw[key])
                    else:
                        kept[name] = getattr(single, name)
                    break
        return config.model_copy(update=kept)

    def save_configuration(self, config: ScanConfig) -> bool:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(config.to_json(), encoding="utf-8")
        except OSError as e:
            logger.error("Error saving configuration to %s: %s", self.config_path, e)
            return False
        logger.info("Configuration saved to %s", self.config_path)
        return True

    def validate(self, config: ScanConfig) -> List[str]:
        errors = []
        if not config.hostname or not config.hostname.strip():
            errors.append("Hostname cannot be empty")
        if not config.ports:
            errors.append("At least one port must be specified")
        elif any(p <= 0 or p > 65535 for p in config.ports):
            errors.append("Ports must be between 1 and 65535")
        if config.goroutines <= 0:
            errors.append("Goroutines must be greater than 0")
        if config.scans <= 0:
            errors.append("Scans must be greater than 0")
        if config.max_ping <= 0:
            errors.append("MaxPing must be greater than 0")
        if config.max_latency <= 0:
            errors.append("Maxlatency must be greater than 0")
        if config.iplist_path and config.iplist_path.strip() and not Path(config.iplist_path).exists():
            errors.append(f"IP list file not found: {config.iplist_path}")
        return errors

    def fix_configuration(self, config: ScanConfig) -> ScanConfig:
        """
        Replace invalid values with defaults and persist the result.
        A missing IP list file is reported but left alone: the candidate
        loader has its own fallback search.
        """
        errors = self.validate(config)
        if not errors:
            return config

        logger.info("Fixing configuration errors: %s", ", ".join(errors))
        fixes = {}
        if not config.hostname or not config.hostname.strip():
            fixes['hostname'] = DEFAULT_HOSTNAME
        if not config.ports or any(p <= 0 or p > 65535 for p in config.ports):
            fixes['ports'] = [p for p in config.ports if 1 <= p <= 65535] or list(DEFAULT_PORTS)
        if config.goroutines <= 0:
            fixes['goroutines'] = default_goroutines()
        if config.scans <= 0:
            fixes['scans'] = DEFAULT_SCANS
        if config.max_ping <= 0:
            fixes['max_ping'] = DEFAULT_MAX_PING
        if config.max_latency <= 0:
            fixes['max_latency'] = DEFAULT_MAX_LATENCY
        if not config.iplist_path or not config.iplist_path.strip():
            fixes['iplist_path'] = DEFAULT_IPLIST

        if not fixes:
            return config

        config = config.model_copy(update=fixes)
        self.save_configuration(config)
        logger.info("Configuration fixed and saved")
        return config
