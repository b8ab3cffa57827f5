"""
Step model for action recipes.

Raw step mappings from the manifest are parsed once, at load time, into a
closed set of frozen dataclasses. The interpreter dispatches on the step type
instead of probing dictionary keys on every execution.

Raw shapes:

    {"set": "data.cart.total", "to": "data.cart.items | length"}
    {"if": "user", "then": [...], "else": [...]}
    {"forEach": "data.cart.items", "as": "item", "steps": [...]}
    {"http:get": {"url": "'https://example.com/api'", "saveTo": "context.api"}}
    {"auth:login": "context.user"}
    {"auth:logout": true}
    {"client:redirect": "'/'"}
    {"run": "legacyCallback"}
    {"action:run": {"name": "recalculateCart"}}

Anything else parses into UnknownStep, which the interpreter logs and skips.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Tuple, Union


@dataclass(frozen=True)
class SetStep:
    path: str
    to: Any
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class IfStep:
    condition: Any
    then: Tuple["Step", ...] = ()
    otherwise: Tuple["Step", ...] = ()
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ForEachStep:
    items: Any
    alias: str = "item"
    body: Tuple["Step", ...] = ()
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class HttpGetStep:
    url: Any
    save_to: str
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class LoginStep:
    user: Any
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class LogoutStep:
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RedirectStep:
    url: Any
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RunStep:
    name: str
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ActionRunStep:
    name: str
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class UnknownStep:
    raw: Any = field(default=None, compare=False)


Step = Union[
    SetStep,
    IfStep,
    ForEachStep,
    HttpGetStep,
    LoginStep,
    LogoutStep,
    RedirectStep,
    RunStep,
    ActionRunStep,
    UnknownStep,
]


def parse_step(raw: Any) -> Step:
    """
    Parse one raw step mapping.

    Args:
        raw: A step mapping as found in the manifest.

    Returns:
        The matching Step dataclass, or UnknownStep for unrecognized or
        incomplete shapes.
    """
    if not isinstance(raw, Mapping):
        return UnknownStep(raw=raw)

    if isinstance(raw.get("set"), str) and raw["set"]:
        return SetStep(path=raw["set"], to=raw.get("to"), raw=raw)

    if "if" in raw:
        return IfStep(
            condition=raw["if"],
            then=parse_steps(raw.get("then")),
            otherwise=parse_steps(raw.get("else")),
            raw=raw,
        )

    if "forEach" in raw:
        return ForEachStep(
            items=raw["forEach"],
            alias=raw.get("as") or "item",
            body=parse_steps(raw.get("steps")),
            raw=raw,
        )

    if "http:get" in raw:
        config = raw["http:get"]
        if isinstance(config, Mapping) and config.get("url") and config.get("saveTo"):
            return HttpGetStep(url=config["url"], save_to=config["saveTo"], raw=raw)
        return UnknownStep(raw=raw)

    if "auth:login" in raw:
        return LoginStep(user=raw["auth:login"], raw=raw)

    if raw.get("auth:logout"):
        return LogoutStep(raw=raw)

    if raw.get("client:redirect"):
        return RedirectStep(url=raw["client:redirect"], raw=raw)

    if isinstance(raw.get("run"), str) and raw["run"]:
        return RunStep(name=raw["run"], raw=raw)

    if "action:run" in raw:
        target = raw["action:run"]
        if isinstance(target, Mapping):
            target = target.get("name")
        if isinstance(target, str) and target:
            return ActionRunStep(name=target, raw=raw)

    return UnknownStep(raw=raw)


def parse_steps(raw_steps: Any) -> Tuple[Step, ...]:
    """Parse a list of raw steps; None or a non-list yields an empty tuple."""
    if not isinstance(raw_steps, (list, tuple)):
        return ()
    return tuple(parse_step(raw) for raw in raw_steps)


def iter_action_calls(steps: Iterable[Step]) -> Iterable[str]:
    """Yield every ``action:run`` target reachable inside ``steps``."""
    for step in steps:
        if isinstance(step, ActionRunStep):
            yield step.name
        elif isinstance(step, IfStep):
            yield from iter_action_calls(step.then)
            yield from iter_action_calls(step.otherwise)
        elif isinstance(step, ForEachStep):
            yield from iter_action_calls(step.body)


def iter_expressions(steps: Iterable[Step]) -> Iterable[str]:
    """Yield every expression string evaluated by ``steps``."""
    for step in steps:
        if isinstance(step, SetStep):
            candidates = [step.to]
        elif isinstance(step, IfStep):
            candidates = [step.condition]
        elif isinstance(step, ForEachStep):
            candidates = [step.items]
        elif isinstance(step, HttpGetStep):
            candidates = [step.url]
        elif isinstance(step, LoginStep):
            candidates = [step.user]
        elif isinstance(step, RedirectStep):
            candidates = [step.url]
        else:
            candidates = []
        for candidate in candidates:
            if isinstance(candidate, str):
                yield candidate
        if isinstance(step, IfStep):
            yield from iter_expressions(step.then)
            yield from iter_expressions(step.otherwise)
        elif isinstance(step, ForEachStep):
            yield from iter_expressions(step.body)
