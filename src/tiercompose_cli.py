#!/usr/bin/env python3
# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""tiercompose command line: render or validate an environment file."""

import json
import logging
import sys

import click

from tiercompose_emit import dump, ensure_emittable, render_template, to_document
from tiercompose_environment import compose, load_environment
from tiercompose_errors import CompositionError

__version__ = "0.1.0"


def _fail(error):
    click.echo(click.style(f"ERROR: {error}", fg="red", bold=True), err=True)
    sys.exit(1)


def _compose_file(env_file):
    try:
        return compose(load_environment(env_file))
    except CompositionError as e:
        _fail(e)


@click.version_option(version=__version__, prog_name="tiercompose")
@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log composition steps")
def cli(verbose: bool) -> None:
    """Compose conditional AWS resources for an environment."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("env_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["cloudformation", "descriptors"]),
    default="cloudformation",
    show_default=True,
    help="CloudFormation template or the plain descriptor document",
)
@click.option(
    "--output", "output_format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    show_default=True,
)
@click.option(
    "--allow-violations", is_flag=True, default=False,
    help="Emit even when validation reports violations",
)
def render(env_file: str, fmt: str, output_format: str, allow_violations: bool) -> None:
    """Render ENV_FILE to stdout."""
    composition = _compose_file(env_file)
    try:
        if fmt == "descriptors":
            ensure_emittable(composition, allow_violations)
            rendered = dump(to_document(composition.descriptors), output_format)
        else:
            template = render_template(composition, allow_violations=allow_violations)
            rendered = template.to_json() if output_format == "json" else template.to_yaml()
    except CompositionError as e:
        _fail(e)
    except (TypeError, ValueError) as e:
        # troposphere rejects property values it cannot express
        _fail(f"CloudFormation rendering failed: {e}")
    click.echo(rendered)


@cli.command()
@click.argument("env_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, default=False, help="Print violations as JSON")
def validate(env_file: str, as_json: bool) -> None:
    """Compose ENV_FILE and report validation violations."""
    composition = _compose_file(env_file)
    violations = composition.violations
    if as_json:
        click.echo(json.dumps([
            {"rule": v.rule, "address": v.address, "message": v.message} for v in violations
        ], indent=2))
    elif violations:
        for violation in violations:
            click.echo(click.style(str(violation), fg="yellow"))
    else:
        click.echo(
            f"{composition.environment.name}: {len(composition.descriptors)} descriptors, no violations"
        )
    if violations:
        sys.exit(1)


if __name__ == "__main__":
    cli()
