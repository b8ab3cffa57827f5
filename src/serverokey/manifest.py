"""
Manifest models and loading.

The manifest describes an application declaratively: its connectors, its
actions, the socket channels that watch connector writes, the auth wiring
and engine settings. It is loaded from YAML or JSON with PyYAML and
validated with pydantic. Action steps are parsed into the immutable step
model once, at load time.

Example YAML:
    connectors:
      receipt:
        type: collection
        initialState: {items: [], total: 0}
        computed:
          - {target: total, formula: "sum(items, 'price')", format: "toFixed(2)"}
        migrations:
          - {if_not_exists: quantity, set: {quantity: 1}}
    actions:
      clearReceipt:
        reads: [receipt]
        writes: [receipt]
        steps:
          - {set: data.receipt.items, to: "[]"}
    sockets:
      receipt-updates:
        watch: receipt
        emit: {event: receipt-changed, payload: receipt}
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError as PydanticValidationError,
    field_validator,
)

from .exceptions import ManifestError
from .steps import Step, parse_steps


CONNECTOR_TYPES = ("in-memory", "json", "collection", "wise-json", "session")


class ComputedRule(BaseModel):
    """
    Derived field rule.

    Attributes:
        target: Field that is always overwritten
        formula: ``sum(array, field)``, ``count(array)`` or an expression
        format: ``toFixed(N)`` or ``fixed:N``
        default_value: Value written when the result is not a finite number
    """

    model_config = ConfigDict(populate_by_name=True)

    target: str
    formula: Optional[str] = None
    format: Optional[str] = None
    default_value: Any = Field(
        default=0, validation_alias=AliasChoices("defaultValue", "default_value")
    )


class MigrationRule(BaseModel):
    """Additive per-item upgrade: set ``patch`` on items lacking ``condition_field``."""

    model_config = ConfigDict(populate_by_name=True)

    condition_field: str = Field(
        validation_alias=AliasChoices("if_not_exists", "conditionField", "condition_field")
    )
    patch: Dict[str, Any] = Field(validation_alias=AliasChoices("set", "patch"))


class ConnectorConfig(BaseModel):
    """
    Connector declaration.

    Attributes:
        type: One of in-memory, json, collection (alias wise-json), session
        collection: Document-store collection name (defaults to the connector name)
        path: Explicit file path or fsspec URL for json connectors
        initial_state: Value used when nothing is persisted yet
        computed: Derived field rules
        migrations: Additive item upgrades applied on read
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    collection: Optional[str] = None
    path: Optional[str] = None
    initial_state: Any = Field(
        default=None, validation_alias=AliasChoices("initialState", "initial_state")
    )
    computed: List[ComputedRule] = Field(default_factory=list)
    migrations: List[MigrationRule] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in CONNECTOR_TYPES:
            raise ValueError(
                f"Unknown connector type '{v}'. Valid options: {list(CONNECTOR_TYPES)}"
            )
        return v


class ManipulateConfig(BaseModel):
    """Declarative array manipulation (push, removeFirstWhere, custom:<name>)."""

    model_config = ConfigDict(populate_by_name=True)

    operation: str
    target: Optional[str] = None
    source: Optional[str] = None
    find_by: Optional[Dict[str, str]] = Field(
        default=None, validation_alias=AliasChoices("findBy", "find_by")
    )
    match: Optional[Dict[str, str]] = None
    args: Optional[Dict[str, str]] = None


class ActionConfig(BaseModel):
    """
    Action declaration.

    Exactly one of ``steps``, ``manipulate`` or ``handler`` drives the run.
    ``internal`` actions are only reachable through action:run.
    """

    model_config = ConfigDict(extra="allow")

    reads: List[str] = Field(default_factory=list)
    writes: List[str] = Field(default_factory=list)
    steps: Optional[List[Any]] = None
    manipulate: Optional[ManipulateConfig] = None
    handler: Optional[str] = None
    internal: bool = False

    _parsed_steps: Tuple[Step, ...] = PrivateAttr(default=())

    def model_post_init(self, __context: Any) -> None:
        self._parsed_steps = parse_steps(self.steps)

    @property
    def parsed_steps(self) -> Tuple[Step, ...]:
        return self._parsed_steps


class EmitConfig(BaseModel):
    event: str
    payload: Optional[str] = None


class ChannelConfig(BaseModel):
    """Socket channel: emit ``event`` whenever connector ``watch`` is written."""

    watch: str
    emit: EmitConfig


class AuthConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_connector: str = Field(
        default="user", validation_alias=AliasChoices("userConnector", "user_connector")
    )
    session_connector: str = Field(
        default="session",
        validation_alias=AliasChoices("sessionConnector", "session_connector"),
    )
    identity_field: str = Field(
        default="login", validation_alias=AliasChoices("identityField", "identity_field")
    )
    password_field: str = Field(
        default="passwordHash",
        validation_alias=AliasChoices("passwordField", "password_field"),
    )


class Manifest(BaseModel):
    """Root manifest model."""

    model_config = ConfigDict(extra="allow")

    connectors: Dict[str, ConnectorConfig] = Field(default_factory=dict)
    actions: Dict[str, ActionConfig] = Field(default_factory=dict)
    sockets: Dict[str, ChannelConfig] = Field(default_factory=dict)
    auth: Optional[AuthConfig] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


def parse_manifest(data: Union[Dict[str, Any], Manifest]) -> Manifest:
    """
    Validate a manifest mapping.

    Raises:
        ManifestError: If the mapping does not describe a valid manifest.
    """
    if isinstance(data, Manifest):
        return data
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest must be a mapping, got {type(data).__name__}")
    try:
        return Manifest.model_validate(data)
    except PydanticValidationError as e:
        raise ManifestError(f"Invalid manifest: {e}") from e


def load_manifest(path: Union[str, Path]) -> Manifest:
    """
    Load a manifest file (``.yaml``, ``.yml`` or ``.json``).

    Args:
        path: Manifest file path.

    Returns:
        Validated Manifest.

    Raises:
        ManifestError: If the file cannot be read or parsed.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ManifestError(f"Failed to load manifest '{path}': {e}") from e
    return parse_manifest(data or {})
