import pathlib
import sys

import click
import yaml


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Log every executed command')
def stctl(verbose):
    """Secondary routing table controller"""
    from . import config

    settings = config.Settings(loglevel='DEBUG') if verbose else config.settings
    config.setup(settings, console_format='brief')


@stctl.command()
@click.argument(
    'playbooks', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=pathlib.Path)
)
@click.option('--dry-run', is_flag=True, help='Print commands instead of running them')
@click.option('--keep-going', is_flag=True, help='Continue after a failed operation')
def apply(playbooks, dry_run, keep_going):
    """Apply playbook operations in order"""
    from pid import PidFileError

    from .__main__ import format_pool
    from .__main__ import run
    from .config import ConfigurationError
    from .runner import DryRunRunner

    runner = DryRunRunner(echo=True) if dry_run else None

    try:
        controller, failures = run(playbooks, runner=runner, keep_going=keep_going)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))
    except PidFileError as exc:
        raise click.ClickException(f'Another stctl is running: {exc}')

    click.echo(format_pool(controller.pool))
    if failures:
        sys.exit(1)


@stctl.command('show-config')
def show_config():
    """Print effective pool and binaries configuration"""
    from . import config

    try:
        data = {
            'pool': config.settings.pool.model_dump(),
            'binaries': config.settings.binaries.model_dump(),
        }
    except config.ConfigurationError as exc:
        raise click.ClickException(str(exc))

    click.echo(yaml.safe_dump(data, sort_keys=False), nl=False)


if __name__ == '__main__':
    stctl()
