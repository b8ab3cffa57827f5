"""
Engine settings.

Provides the EngineSettings pydantic model shared by the action engine, the
connector manager and the CLI.

Precedence (highest first):
    1. Explicit keyword overrides passed to ``EngineSettings.resolve``
    2. ``SERVEROKEY_*`` environment variables
    3. The manifest ``settings`` section
    4. Field defaults

Example YAML:
    settings:
      verbose: true
      http_timeout: 10
      max_action_depth: 16
      store_path: "app/data/store.db"
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ENV_PREFIX = "SERVEROKEY_"

_ENV_FIELDS = ("verbose", "http_timeout", "max_action_depth", "data_dir", "store_path")


class EngineSettings(BaseModel):
    """
    Pydantic model for engine configuration.

    Attributes:
        verbose: Log swallowed expression failures at WARNING level
        http_timeout: Timeout in seconds for http:get steps
        max_action_depth: Maximum nesting of action:run calls
        data_dir: Directory (relative to the app) holding flat-file connector data
        store_path: Path (relative to the app) of the document store database
    """

    model_config = ConfigDict(extra="ignore")

    verbose: bool = Field(default=False, description="Verbose evaluation logging")
    http_timeout: float = Field(
        default=5.0, gt=0, description="Timeout in seconds for http:get steps"
    )
    max_action_depth: int = Field(
        default=32, ge=1, description="Maximum nesting of action:run calls"
    )
    data_dir: str = Field(default="app/data", description="Flat-file data directory")
    store_path: str = Field(
        default="app/data/serverokey.db", description="Document store database path"
    )

    @field_validator("verbose", mode="before")
    @classmethod
    def parse_verbose(cls, v):
        """Accept common string spellings from environment variables."""
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "on")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Collect ``SERVEROKEY_*`` values present in the environment."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in _ENV_FIELDS:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        return values

    @classmethod
    def resolve(
        cls,
        manifest_settings: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "EngineSettings":
        """
        Build settings from every configuration layer.

        Args:
            manifest_settings: The manifest ``settings`` section, if any.
            environ: Environment mapping (defaults to os.environ).
            **overrides: Explicit values; None values are ignored.

        Returns:
            Validated EngineSettings.
        """
        values: Dict[str, Any] = dict(manifest_settings or {})
        values.update(cls.from_env(environ))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
