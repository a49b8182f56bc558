import logging
import pathlib
import typing

from pid import PidFile

from . import config
from .controller import SecondaryTableController
from .errors import ControllerError
from .playbook import load_playbooks
from .runner import CommandRunner
from .table_pool import TablePool

logger = logging.getLogger('stctl')


def format_pool(pool: TablePool) -> str:
    lines = ['INDEX  TABLE  INTERFACE        RULES']
    for index, slot in pool.occupied():
        lines.append(f'{index:<5}  {pool.table_number(index):<5}  {slot.interface_name:<15}  {slot.rule_count}')
    if len(lines) == 1:
        lines.append('(no interfaces tracked)')
    return '\n'.join(lines)


def apply_operations(controller: SecondaryTableController, operations, keep_going: bool = False) -> int:
    """Apply ``operations`` in order, returns the number of failed ones"""
    failures = 0
    for number, operation in enumerate(operations, 1):
        try:
            operation.apply(controller)
        except ControllerError as exc:
            failures += 1
            logger.warning('#%s %s failed: %s', number, operation.describe(), exc)
            if not keep_going:
                break
        else:
            logger.info('#%s %s done', number, operation.describe())
    return failures


def run(
    playbooks: typing.Sequence[pathlib.Path], runner: CommandRunner = None, keep_going: bool = False
) -> typing.Tuple[SecondaryTableController, int]:
    operations = load_playbooks(playbooks)
    if not operations:
        logger.warning('No one operation to apply. Please check playbooks')

    controller = SecondaryTableController.from_settings(config.settings, runner=runner)

    with PidFile('stctl', piddir=config.settings.piddir):
        failures = apply_operations(controller, operations, keep_going=keep_going)

    return controller, failures


if __name__ == '__main__':
    from .cli import stctl

    stctl()
