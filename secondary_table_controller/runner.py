import logging
import os
import subprocess
import typing

import click

logger = logging.getLogger('stctl.runner')

EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


class CommandRunner:
    """Runs one external program and returns its exit status"""

    def run(self, argv: typing.Sequence[str]) -> int:
        raise NotImplementedError


class SubprocessRunner(CommandRunner):
    def run(self, argv: typing.Sequence[str]) -> int:
        argv = list(argv)
        logger.info('Run %s', argv)

        try:
            process = subprocess.run(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False)
        except FileNotFoundError as exc:
            logger.warning('Executable not found: %s', exc.filename)
            return EXIT_NOT_FOUND
        except OSError as exc:
            logger.warning('Cannot execute %s: %s', argv[0], exc)
            return EXIT_NOT_EXECUTABLE

        for line in process.stdout.decode(errors='replace').splitlines():
            logger.info('%s: %s', os.path.basename(argv[0]), line.rstrip())

        if process.returncode != os.EX_OK:
            logger.debug('%s exit with code %s', argv, process.returncode)

        return process.returncode


class DryRunRunner(CommandRunner):
    """Records commands instead of running them"""

    def __init__(self, echo: bool = False):
        self.echo = echo
        self.commands: typing.List[typing.List[str]] = []

    def run(self, argv: typing.Sequence[str]) -> int:
        argv = list(argv)
        self.commands.append(argv)
        if self.echo:
            click.echo(' '.join(argv))
        return os.EX_OK
