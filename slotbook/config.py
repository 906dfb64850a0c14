"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator


class DefaultsConfig(BaseModel):
    """Default settings for scheduling."""
    slot_duration_minutes: int = 30
    busy_timeout_seconds: float = 15

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure slot duration is positive."""
        if value <= 0:
            raise ValueError("slot_duration_minutes must be greater than zero")
        return value

    @field_validator("busy_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("busy_timeout_seconds must be greater than zero")
        return value


class Operator(BaseModel):
    """Operator (service provider) configuration."""
    name: str  # Used as alias
    id: str

    def display_name(self) -> str:
        """Get display name."""
        return self.name


class AppConfig(BaseModel):
    """Application configuration."""
    database_url: str = "sqlite:///slotbook.db"
    timezone: str = "America/Sao_Paulo"
    log_level: str = "WARNING"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    operators: List[Operator] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("operators")
    @classmethod
    def validate_operators(cls, value: List[Operator]) -> List[Operator]:
        """Ensure operator aliases and ids are unique."""
        seen_names: set[str] = set()
        seen_ids: set[str] = set()
        for operator in value:
            name_key = operator.name.lower()
            if name_key in seen_names:
                raise ValueError(f"Duplicate operator name detected: {operator.name}")
            if operator.id in seen_ids:
                raise ValueError(f"Duplicate operator id detected: {operator.id}")
            seen_names.add(name_key)
            seen_ids.add(operator.id)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_operator_by_name(self, name: str) -> Operator | None:
        """Find an operator by name (alias)."""
        for operator in self.operators:
            if operator.name.lower() == name.lower():
                return operator
        return None

    def resolve_operator(self, identifier: str) -> str:
        """
        Resolve an operator identifier (alias or id) to an operator id.

        Identifiers that are not configured aliases are passed through as ids,
        since operators are owned by the external identity provider.
        """
        operator = self.find_operator_by_name(identifier)
        if operator:
            return operator.id
        return identifier


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
