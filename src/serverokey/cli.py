#!/usr/bin/env python3
"""
CLI for running serverokey actions outside an HTTP server.

Usage:
    serverokey run ./kassa addItem --body '{"id": 3}'
    serverokey run ./kassa addItem --body @body.json --user @user.json
    serverokey read ./kassa receipt positions
    serverokey check ./kassa
    serverokey --version
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from serverokey import __version__
from serverokey.action_graph import check_action_graph
from serverokey.engine import create_engine, find_manifest
from serverokey.exceptions import ServerokeyError
from serverokey.expressions import Evaluator
from serverokey.manifest import load_manifest
from serverokey.steps import UnknownStep, iter_expressions


app = typer.Typer(
    name="serverokey",
    help="serverokey - Declarative action engine",
    no_args_is_help=True,
    add_completion=False,
)


def parse_json_option(value: Optional[str], option: str) -> Optional[Dict[str, Any]]:
    """
    Parse an option given as a JSON string or @file.json.

    Raises:
        typer.Exit: On parse error
    """
    if value is None:
        return None

    if value.startswith("@"):
        path = Path(value[1:])
        if not path.exists():
            typer.echo(f"Error: {option} file not found: {path}", err=True)
            raise typer.Exit(1)
        text = path.read_text()
    else:
        text = value

    try:
        result = json.loads(text)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in {option}: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(result, dict):
        typer.echo(f"Error: {option} must be a JSON object, got {type(result).__name__}", err=True)
        raise typer.Exit(1)
    return result


def setup_logging(verbose: int, quiet: bool = False):
    """Configure logging based on verbosity flags."""
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(level=level, format="%(levelname)s: %(name)s: %(message)s")


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


@app.command()
def run(
    app_path: Path = typer.Argument(..., help="Application directory containing the manifest"),
    action: str = typer.Argument(..., help="Action name"),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="Request body as JSON or @file.json"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Current user as JSON or @file.json"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
):
    """Run one action and print its result as JSON."""
    setup_logging(verbose, quiet)
    parsed_body = parse_json_option(body, "--body")
    parsed_user = parse_json_option(user, "--user")

    async def _run() -> Dict[str, Any]:
        engine = await create_engine(app_path, verbose=verbose > 0 or None)
        try:
            result = await engine.handle(action, body=parsed_body, user=parsed_user)
        finally:
            await engine.close()
        return {
            "written": result.written,
            "redirect": result.redirect,
            "loginUser": result.login_user,
            "logout": result.logout,
            "data": result.data,
        }

    try:
        output = asyncio.run(_run())
    except ServerokeyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(_dump(output))


@app.command()
def read(
    app_path: Path = typer.Argument(..., help="Application directory containing the manifest"),
    connectors: List[str] = typer.Argument(..., help="Connector names to read"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase verbosity"),
):
    """Print the current value of one or more connectors."""
    setup_logging(verbose)

    async def _read() -> Dict[str, Any]:
        engine = await create_engine(app_path)
        try:
            return await engine.connectors.get_context(connectors)
        finally:
            await engine.close()

    try:
        output = asyncio.run(_read())
    except ServerokeyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(_dump(output))


@app.command()
def check(
    app_path: Path = typer.Argument(..., help="Application directory containing the manifest"),
):
    """Validate the manifest, the action:run graph and expression syntax."""
    try:
        manifest = load_manifest(find_manifest(app_path))
        check_action_graph(manifest.actions)
    except ServerokeyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    evaluator = Evaluator()
    problems = []
    for name, action in manifest.actions.items():
        for step in action.parsed_steps:
            if isinstance(step, UnknownStep):
                problems.append(f"{name}: unknown step {step.raw!r}")
        for expression in iter_expressions(action.parsed_steps):
            try:
                evaluator.check(expression)
            except ServerokeyError as e:
                problems.append(f"{name}: {e}")

    for problem in problems:
        typer.echo(f"Error: {problem}", err=True)
    if problems:
        raise typer.Exit(1)

    typer.echo(
        f"OK: {len(manifest.connectors)} connector(s), {len(manifest.actions)} action(s), "
        f"{len(manifest.sockets)} channel(s)"
    )


def version_callback(value: bool):
    """Handle --version flag."""
    if value:
        typer.echo(f"serverokey {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True,
                                 help="Show version and exit"),
):
    """serverokey - Declarative action engine."""


def main():
    """Entry point for the serverokey CLI."""
    app()


if __name__ == "__main__":
    main()
