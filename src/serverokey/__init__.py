from .engine import ActionEngine, ActionResult, create_engine
from .connector_manager import ConnectorManager
from .config import EngineSettings
from .manifest import Manifest, load_manifest, parse_manifest

# Core exceptions (zero dependencies)
from .exceptions import (
    ServerokeyError,
    ValidationError,
    EvaluationError,
    StepExecutionError,
    ConnectorError,
    ConnectorNotFoundError,
    MigrationError,
    ActionNotFoundError,
    ActionRecursionError,
    ManifestError,
    AuthError,
)

# Expressions and steps
from .expressions import Evaluator, is_truthy
from .steps import parse_step, parse_steps
from .interpreter import StepInterpreter, build_context

# Storage
from .store import DocumentStore
from .connectors import (
    Connector,
    InMemoryConnector,
    JsonFileConnector,
    CollectionConnector,
    SessionConnector,
    register_connector,
)
from .migrations import Migrator
from .computed import ComputedFields

# Boundary collaborators
from .assets import AssetRegistry
from .operations import OperationHandler
from .auth import AuthEngine
from .notifier import ChannelNotifier

__all__ = [
    "ActionEngine",
    "ActionResult",
    "create_engine",
    "ConnectorManager",
    "EngineSettings",
    "Manifest",
    "load_manifest",
    "parse_manifest",
    "ServerokeyError",
    "ValidationError",
    "EvaluationError",
    "StepExecutionError",
    "ConnectorError",
    "ConnectorNotFoundError",
    "MigrationError",
    "ActionNotFoundError",
    "ActionRecursionError",
    "ManifestError",
    "AuthError",
    "Evaluator",
    "is_truthy",
    "parse_step",
    "parse_steps",
    "StepInterpreter",
    "build_context",
    "DocumentStore",
    "Connector",
    "InMemoryConnector",
    "JsonFileConnector",
    "CollectionConnector",
    "SessionConnector",
    "register_connector",
    "Migrator",
    "ComputedFields",
    "AssetRegistry",
    "OperationHandler",
    "AuthEngine",
    "ChannelNotifier",
    "__version__",
]

__version__ = "0.1.0"
