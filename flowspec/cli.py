"""flowspec command line.

    flowspec validate graph.json
    flowspec run graph.yaml --shared '{"name": "Ada"}'
    flowspec show graph.json
    flowspec kinds

``run`` wires only the requests-based HTTP client; graphs with llm nodes
need a program that passes an LLM collaborator to :class:`Compiler`.
"""

from __future__ import annotations

import json
import sys

import click

from flowspec.compiler import Compiler
from flowspec.config import get_settings
from flowspec.diagnostics import Diagnostic
from flowspec.errors import ConfigError, FlowspecError
from flowspec.loader import load_description, parse_description
from flowspec.logging import setup_logging
from flowspec.store import LAST_RESULT_KEY
from flowspec.visualize import describe_mermaid


def _load(path: str) -> dict:
    try:
        return load_description(path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(package_name="flowspec")
def main():
    """Validate, run and draw declarative flowspec graphs."""


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def validate(path):
    """Check a graph description without running it."""
    result = Compiler().validate(_load(path))
    if result:
        click.echo(f"OK  {path}")
        return
    for problem in result.errors:
        click.echo(f"  ✗ {problem}", err=True)
    sys.exit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--shared", "shared_json", default=None, help="Initial shared context as a JSON object.")
@click.option("--shared-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Initial shared context from a JSON/YAML file.")
@click.option("--verbose", is_flag=True, help="Log to the console as well as the log file.")
def run(path, shared_json, shared_file, verbose):
    """Compile and run a graph description; print the final shared context."""
    settings = get_settings()
    setup_logging("run", log_level=settings.log_level, log_dir=settings.log_dir, console=verbose)

    shared: dict = {}
    try:
        if shared_file:
            shared.update(load_description(shared_file))
        if shared_json:
            shared.update(parse_description(shared_json))
    except ConfigError as exc:
        raise click.BadParameter(str(exc)) from exc

    compiler = Compiler(default_http=True)

    def _report(d: Diagnostic) -> None:
        click.echo(f"  ! [{d.code}] {d.message}", err=True)

    compiler.diagnostics.subscribe(_report)
    try:
        compiled = compiler.compile(_load(path))
        result = compiled.run(shared)
    except FlowspecError as exc:
        raise click.ClickException(str(exc)) from exc

    shared.pop(LAST_RESULT_KEY, None)
    click.echo(f"result: {result if result is not None else 'default'}")
    click.echo(json.dumps(shared, indent=2, ensure_ascii=False, default=str))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def show(path):
    """Print a Mermaid flowchart of a graph description."""
    click.echo(describe_mermaid(_load(path)))


@main.command()
def kinds():
    """List the registered node kinds."""
    for kind in Compiler().registered_kinds():
        click.echo(kind)


if __name__ == "__main__":
    main()
