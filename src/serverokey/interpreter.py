"""
Step interpreter for action recipes.

Executes a parsed step tree against a mutable context:

    context = {
        "data": {...},        # connector values by name
        "user": {...},        # current user, if any
        "body": {...},        # request body
        "context": {...},     # scratch space
        "_internal": {...},   # control signals: interrupt, redirect, loginUser, logout
    }

Execution is sequential. The ``_internal.interrupt`` flag (set by
``client:redirect``) is checked before every step at every depth. An
``action:run`` callee gets a fresh ``context`` scratch space but shares
``data``; its control signals are copied back to the caller, so a redirect
in a nested action also stops the caller's remaining steps. Any
failure other than a swallowed expression error is raised as a
StepExecutionError carrying the serialized step.

Example:
    >>> interpreter = StepInterpreter(build_context(data={"cart": {"items": []}}), Evaluator())
    >>> await interpreter.run(parse_steps([
    ...     {"set": "data.cart.count", "to": "data.cart.items | length"},
    ... ]))
    >>> interpreter.context["data"]["cart"]["count"]
    0
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

import httpx

from .assets import AssetRegistry
from .exceptions import ActionNotFoundError, StepExecutionError
from .expressions import Evaluator, is_truthy
from .steps import (
    ActionRunStep,
    ForEachStep,
    HttpGetStep,
    IfStep,
    LoginStep,
    LogoutStep,
    RedirectStep,
    RunStep,
    SetStep,
    Step,
    UnknownStep,
)


logger = logging.getLogger(__name__)

_PROPAGATED_SIGNALS = ("interrupt", "redirect", "loginUser", "logout")

RunAction = Callable[[str, Dict[str, Any], Tuple[str, ...]], Awaitable[Dict[str, Any]]]


def build_context(
    data: Optional[Dict[str, Any]] = None,
    user: Any = None,
    body: Any = None,
) -> Dict[str, Any]:
    """Create a fresh per-invocation context."""
    return {
        "data": data if data is not None else {},
        "user": user,
        "body": body if body is not None else {},
        "context": {},
        "_internal": {},
    }


class StepInterpreter:
    """
    Execute steps against one context.

    Args:
        context: Mutable context; ``_internal`` is created when missing.
        evaluator: Shared expression evaluator.
        assets: Registry resolving ``run`` callbacks.
        run_action: Nested dispatch for ``action:run``; called as
            ``run_action(name, sub_context, call_stack)`` and returns the
            resulting context.
        call_stack: Names of the actions currently executing.
        http_timeout: Timeout in seconds for ``http:get``.
        http_transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        context: Dict[str, Any],
        evaluator: Evaluator,
        assets: Optional[AssetRegistry] = None,
        run_action: Optional[RunAction] = None,
        call_stack: Tuple[str, ...] = (),
        http_timeout: float = 5.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.context = context
        self.context.setdefault("_internal", {})
        self.evaluator = evaluator
        self.assets = assets
        self.call_stack = tuple(call_stack)
        self._run_action = run_action
        self._http_timeout = http_timeout
        self._http_transport = http_transport
        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            SetStep: self._execute_set,
            IfStep: self._execute_if,
            ForEachStep: self._execute_for_each,
            HttpGetStep: self._execute_http_get,
            LoginStep: self._execute_login,
            LogoutStep: self._execute_logout,
            RedirectStep: self._execute_redirect,
            RunStep: self._execute_run,
            ActionRunStep: self._execute_action_run,
            UnknownStep: self._execute_unknown,
        }

    @property
    def internal(self) -> Dict[str, Any]:
        return self.context["_internal"]

    @property
    def interrupted(self) -> bool:
        return bool(self.internal.get("interrupt"))

    def _spawn(self, context: Dict[str, Any]) -> "StepInterpreter":
        return StepInterpreter(
            context,
            self.evaluator,
            assets=self.assets,
            run_action=self._run_action,
            call_stack=self.call_stack,
            http_timeout=self._http_timeout,
            http_transport=self._http_transport,
        )

    def evaluate(self, expression: Any) -> Any:
        return self.evaluator.evaluate(expression, self.context)

    async def run(self, steps: Iterable[Step]) -> None:
        """Execute ``steps`` in order, stopping as soon as an interrupt is set."""
        for step in steps:
            if self.interrupted:
                break
            await self.execute_step(step)

    async def execute_step(self, step: Step) -> None:
        """
        Execute a single step.

        Raises:
            StepExecutionError: Wrapping any failure raised by the step.
        """
        handler = self._handlers.get(type(step), self._execute_unknown)
        try:
            await handler(step)
        except StepExecutionError:
            raise
        except Exception as e:
            error = StepExecutionError(step.raw, e)
            logger.error(f"{error}")
            raise error from e

    # =========================================================================
    # Step handlers
    # =========================================================================

    async def _execute_set(self, step: SetStep) -> None:
        self.set_value(step.path, self.evaluate(step.to))

    async def _execute_if(self, step: IfStep) -> None:
        if is_truthy(self.evaluate(step.condition)):
            await self.run(step.then)
        else:
            await self.run(step.otherwise)

    async def _execute_for_each(self, step: ForEachStep) -> None:
        items = self.evaluate(step.items)
        if not isinstance(items, list):
            if items is not None:
                logger.warning(
                    f"forEach expects a list for '{step.items}', got {type(items).__name__}"
                )
            return

        alias = step.alias
        for element in items:
            if self.interrupted:
                break
            child_context = dict(self.context)
            child_context[alias] = element
            child = self._spawn(child_context)
            await child.run(step.body)

            for key, value in child.context.items():
                if key != alias:
                    self.context[key] = value
            rebound = child.context.get(alias)
            if rebound is not element and isinstance(rebound, dict) and isinstance(element, dict):
                element.update(rebound)

    async def _execute_http_get(self, step: HttpGetStep) -> None:
        url = self.evaluate(step.url)
        logger.info(f"Performing HTTP GET: {url}")
        try:
            result = await self._http_get(url)
        except Exception as e:
            logger.error(f"HTTP GET request to {url} failed: {e}")
            result = {"error": str(e)}
        self.set_value(step.save_to, result)

    async def _http_get(self, url: Any) -> Any:
        if not isinstance(url, str) or not url:
            raise ValueError(f"Invalid URL: {url!r}")
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self._http_timeout,
            transport=self._http_transport,
        ) as client:
            try:
                response = await client.get(url)
            except httpx.TimeoutException:
                raise TimeoutError(
                    f"Request timed out after {int(self._http_timeout * 1000)}ms"
                ) from None
            except httpx.HTTPError as e:
                raise ConnectionError(f"Request Error: {e}") from e
        if not 200 <= response.status_code < 300:
            raise RuntimeError(f"Request Failed. Status Code: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise ValueError(f"Failed to parse JSON response: {e}") from e

    async def _execute_login(self, step: LoginStep) -> None:
        user = self.evaluate(step.user)
        if isinstance(user, dict):
            self.internal["loginUser"] = user
        else:
            logger.warning("auth:login step requires a valid user object")

    async def _execute_logout(self, step: LogoutStep) -> None:
        self.internal["logout"] = True

    async def _execute_redirect(self, step: RedirectStep) -> None:
        self.internal["redirect"] = self.evaluate(step.url)
        self.internal["interrupt"] = True

    async def _execute_run(self, step: RunStep) -> None:
        if self.assets is None:
            raise ActionNotFoundError(f"Action callback '{step.name}' not found.")
        callback = self.assets.get_action(step.name)
        result = callback(self.context, self.context.get("body"))
        if inspect.isawaitable(result):
            await result

    async def _execute_action_run(self, step: ActionRunStep) -> None:
        if self._run_action is None:
            raise ActionNotFoundError(
                f"Cannot run action '{step.name}': no dispatcher available"
            )
        sub_context = {
            "user": self.context.get("user"),
            "body": self.context.get("body"),
            "data": self.context.get("data"),
        }
        result = await self._run_action(step.name, sub_context, self.call_stack)
        data = result.get("data") if isinstance(result, dict) else None
        if isinstance(data, dict):
            caller_data = self.context.get("data")
            if isinstance(caller_data, dict):
                if caller_data is not data:
                    caller_data.update(data)
            else:
                self.context["data"] = data
        signals = result.get("_internal") if isinstance(result, dict) else None
        if isinstance(signals, dict):
            for key in _PROPAGATED_SIGNALS:
                if key in signals:
                    self.internal[key] = signals[key]

    async def _execute_unknown(self, step: Step) -> None:
        logger.warning(f"Unknown or incomplete step: {getattr(step, 'raw', step)!r}")

    # =========================================================================
    # Path assignment
    # =========================================================================

    def set_value(self, path: str, value: Any) -> None:
        """
        Assign ``value`` at a dotted path, creating intermediate objects.

        Numeric segments index into lists (``data.cart.items.0.qty``).
        """
        keys = path.split(".")
        target: Any = self.context
        for key in keys[:-1]:
            if isinstance(target, list):
                target = target[int(key)]
                continue
            next_target = target.get(key)
            if next_target is None:
                next_target = {}
                target[key] = next_target
            target = next_target
        last = keys[-1]
        if isinstance(target, list):
            target[int(last)] = value
        else:
            target[last] = value
