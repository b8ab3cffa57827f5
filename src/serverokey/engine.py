"""
Action engine: read-before-run, run, write-after-run, notify.

``handle`` is the boundary entry point for one action invocation:

1. Read every connector in ``reads`` into ``context["data"]``
2. Run the action's ``steps`` (or its ``manipulate`` operation, or its
   legacy ``handler`` callback)
3. Write every connector in ``writes`` in declaration order, notifying
   subscribers after each successful write

Nothing is written if the run raises. ``run_action`` is the nested dispatch
used by ``action:run`` steps; it threads an explicit call stack so cycles and
runaway nesting raise ActionRecursionError.

Example:
    >>> engine = await create_engine("./kassa")
    >>> result = await engine.handle("addItem", body={"id": 3})
    >>> result.written
    ['receipt']
    >>> await engine.close()
"""

import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from .action_graph import check_action_graph
from .assets import AssetRegistry
from .config import EngineSettings
from .connector_manager import ConnectorManager
from .exceptions import ActionNotFoundError, ActionRecursionError, ManifestError
from .expressions import Evaluator
from .interpreter import StepInterpreter, build_context
from .manifest import ActionConfig, Manifest, load_manifest
from .notifier import ChannelNotifier, WriteNotifier
from .operations import OperationHandler


logger = logging.getLogger(__name__)

MANIFEST_FILES = ("manifest.yaml", "manifest.yml", "manifest.json")


@dataclass
class ActionResult:
    """
    Outcome of one ``handle`` call.

    Attributes:
        context: Final context after the run
        redirect: URL requested by client:redirect, if any
        login_user: User mapping requested by auth:login, if any
        logout: Whether auth:logout ran
        written: Connectors written, in order
    """

    context: Dict[str, Any]
    redirect: Optional[str] = None
    login_user: Optional[Dict[str, Any]] = None
    logout: bool = False
    written: List[str] = field(default_factory=list)

    @property
    def data(self) -> Dict[str, Any]:
        return self.context.get("data", {})


class ActionEngine:
    """
    Execute manifest actions against connectors.

    Args:
        manifest: Validated manifest.
        connectors: Connector manager with connectors loaded.
        assets: Registry of legacy callbacks and custom operations.
        notifier: Receives ``notify_on_write`` after each write.
        settings: Engine settings (defaults to the connector manager's).
        http_transport: Optional httpx transport for ``http:get`` steps.

    Raises:
        ActionRecursionError: If the static action:run graph has a cycle.
        ManifestError: If an action:run names an undeclared action.
    """

    def __init__(
        self,
        manifest: Manifest,
        connectors: ConnectorManager,
        assets: Optional[AssetRegistry] = None,
        notifier: Optional[WriteNotifier] = None,
        settings: Optional[EngineSettings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.manifest = manifest
        self.connectors = connectors
        self.assets = assets or AssetRegistry()
        self.notifier = notifier
        self.settings = settings or connectors.settings
        self.evaluator: Evaluator = connectors.evaluator
        self.http_transport = http_transport
        self.graph = check_action_graph(manifest.actions)

    def get_action(self, name: str) -> ActionConfig:
        try:
            return self.manifest.actions[name]
        except KeyError:
            raise ActionNotFoundError(
                f"Action '{name}' not found. "
                f"Available: [{', '.join(sorted(self.manifest.actions))}]"
            ) from None

    def _interpreter(self, context: Dict[str, Any], call_stack: Tuple[str, ...]) -> StepInterpreter:
        return StepInterpreter(
            context,
            self.evaluator,
            assets=self.assets,
            run_action=self.run_action,
            call_stack=call_stack,
            http_timeout=self.settings.http_timeout,
            http_transport=self.http_transport,
        )

    async def run_action(
        self,
        name: str,
        context: Dict[str, Any],
        call_stack: Tuple[str, ...] = (),
    ) -> Dict[str, Any]:
        """
        Run an action against ``context`` and return it.

        Dispatches on the action's driver: ``steps`` through the step
        interpreter, otherwise its ``manipulate`` operation or its ``handler``
        callback.

        Raises:
            ActionNotFoundError: If the action is not declared.
            ActionRecursionError: If ``name`` is already on the call stack or
                the stack is at ``max_action_depth``.
            ManifestError: If the action declares no driver.
        """
        action = self.get_action(name)
        call_stack = tuple(call_stack)
        if name in call_stack:
            chain = call_stack + (name,)
            raise ActionRecursionError(
                f"Recursive action:run: {' -> '.join(chain)}", call_stack=chain
            )
        if len(call_stack) >= self.settings.max_action_depth:
            raise ActionRecursionError(
                f"Maximum action:run depth of {self.settings.max_action_depth} exceeded "
                f"while running '{name}'",
                call_stack=call_stack + (name,),
            )

        context.setdefault("_internal", {})
        context.setdefault("context", {})
        if action.steps is not None:
            interpreter = self._interpreter(context, call_stack + (name,))
            await interpreter.run(action.parsed_steps)
        elif action.manipulate is not None:
            await OperationHandler(context, self.assets).execute(action.manipulate)
        elif action.handler:
            result = self.assets.get_action(action.handler)(context, context.get("body"))
            if inspect.isawaitable(result):
                await result
        else:
            raise ManifestError(
                f"Action '{name}' has no 'steps', 'manipulate', or 'handler' defined."
            )
        return context

    async def handle(
        self,
        name: str,
        body: Optional[Dict[str, Any]] = None,
        user: Optional[Dict[str, Any]] = None,
        initiator_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Run one action invocation end to end.

        Args:
            name: Action name.
            body: Parsed request body.
            user: Current user, if authenticated.
            initiator_id: Subscriber id of the caller; it is not notified of
                its own writes.

        Returns:
            ActionResult with the final context and control signals.

        Raises:
            ActionNotFoundError: Unknown or internal action.
            StepExecutionError: A step failed (nothing is written).
            ConnectorError: A read or write failed.
        """
        action = self.get_action(name)
        if action.internal:
            raise ActionNotFoundError(f"Action '{name}' is internal and cannot be invoked directly")

        data = await self.connectors.get_context(action.reads)
        context = build_context(data=data, user=user, body=body)

        await self.run_action(name, context)

        written: List[str] = []
        for target in action.writes:
            if target not in context["data"]:
                logger.warning(f"Action '{name}' declares write to '{target}' but it is not in data")
                continue
            await self.connectors.get_connector(target).write(context["data"][target])
            written.append(target)
            if self.notifier is not None:
                await self.notifier.notify_on_write(target, initiator_id)

        internal = context["_internal"]
        logger.info(f"Action '{name}' completed, wrote {written}")
        return ActionResult(
            context=context,
            redirect=internal.get("redirect"),
            login_user=internal.get("loginUser"),
            logout=bool(internal.get("logout")),
            written=written,
        )

    async def close(self) -> None:
        await self.connectors.close()


def find_manifest(app_path: Union[str, Path]) -> Path:
    """
    Raises:
        ManifestError: If the app directory has no manifest file.
    """
    for filename in MANIFEST_FILES:
        candidate = Path(app_path) / filename
        if candidate.exists():
            return candidate
    raise ManifestError(f"No manifest ({', '.join(MANIFEST_FILES)}) found in '{app_path}'")


async def create_engine(
    app_path: Union[str, Path],
    manifest: Optional[Manifest] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    **overrides: Any,
) -> ActionEngine:
    """
    Assemble an engine for an app directory.

    Loads the manifest (unless given), resolves settings, loads connectors,
    the app's actions/operations and a ChannelNotifier for ``sockets``.

    Args:
        app_path: Application root.
        manifest: Pre-loaded manifest.
        http_transport: Optional httpx transport for ``http:get``.
        **overrides: EngineSettings overrides (highest precedence).
    """
    app_path = str(app_path)
    if manifest is None:
        manifest = load_manifest(find_manifest(app_path))
    settings = EngineSettings.resolve(manifest.settings, **overrides)
    connectors = ConnectorManager(app_path, manifest, settings=settings)
    await connectors.load_all()
    notifier = ChannelNotifier(manifest.sockets, connectors, connectors.evaluator)
    return ActionEngine(
        manifest,
        connectors,
        assets=AssetRegistry.from_app(app_path),
        notifier=notifier,
        settings=settings,
        http_transport=http_transport,
    )
