import errno
import logging
import typing

from . import commands
from . import config
from .commands import ADD
from .commands import DEL
from .errors import CommandExecutionError
from .errors import InterfaceNotFoundError
from .errors import UidMapError
from .runner import CommandRunner
from .runner import SubprocessRunner
from .table_pool import TablePool
from .uid_mark_map import UidMarkMap

__all__ = ('SecondaryTableController',)

logger = logging.getLogger('stctl.controller')


class UidMarkMapType(typing.Protocol):
    def add(self, uid_start: int, uid_end: int, mark: int) -> bool:
        ...

    def remove(self, uid_start: int, uid_end: int, mark: int) -> bool:
        ...


class SecondaryTableController:
    """Keeps kernel policy routing in line with the table pool

    Every public operation returns ``None`` on success and raises
    a :class:`~.errors.ControllerError` subclass on failure.
    Calls must be serialized by the caller.
    """

    def __init__(
        self,
        uid_mark_map: UidMarkMapType,
        runner: CommandRunner = None,
        pool: TablePool = None,
        binaries: config.BinariesModel = None,
    ):
        self.uid_mark_map = uid_mark_map
        self.runner = runner if runner is not None else SubprocessRunner()
        self.pool = pool if pool is not None else TablePool()
        self.binaries = binaries if binaries is not None else config.BinariesModel()

    @classmethod
    def from_settings(cls, settings: config.Settings = None, uid_mark_map=None, runner: CommandRunner = None):
        if settings is None:
            settings = config.settings

        pool = TablePool(capacity=settings.pool.capacity, base_table_number=settings.pool.base_table_number)
        if uid_mark_map is None:
            uid_mark_map = UidMarkMap()

        return cls(uid_mark_map, runner=runner, pool=pool, binaries=settings.binaries)

    def find_table_number(self, iface: str) -> typing.Optional[int]:
        return self.pool.find_table_number(iface) if iface else None

    def _tracked_index(self, iface: str) -> int:
        table_index = self.find_table_number(iface)
        if table_index is None:
            logger.warning('Interface not found: %s', iface)
            raise InterfaceNotFoundError(iface)
        return table_index

    def _run(self, argv: typing.List[str]) -> int:
        return self.runner.run(argv)

    def _exec_iptables(self, target: str, args: typing.List[str]):
        """Run ``args`` against the requested rule-sets, every one is attempted"""
        executables = []
        if target in (commands.V4, commands.V4V6):
            executables.append(self.binaries.iptables)
        if target in (commands.V6, commands.V4V6):
            executables.append(self.binaries.ip6tables)

        failed = None
        for executable in executables:
            argv = [executable, *args]
            returncode = self._run(argv)
            if returncode and failed is None:
                failed = (argv, returncode)

        if failed is not None:
            argv, returncode = failed
            logger.warning('%s failed with %s', ' '.join(argv), returncode)
            raise CommandExecutionError(argv, returncode, 'iptables rule modification failed')

    # Routes

    def add_route(self, iface: str, dest: str, prefix: int, gateway: str):
        table_index = self.pool.allocate(iface)
        try:
            self.modify_route(ADD, iface, dest, prefix, gateway, table_index)
        finally:
            self.pool.release_if_unused(table_index)

    def remove_route(self, iface: str, dest: str, prefix: int, gateway: str):
        table_index = self._tracked_index(iface)
        self.modify_route(DEL, iface, dest, prefix, gateway, table_index)

    def modify_route(self, action: str, iface: str, dest: str, prefix: int, gateway: str, table_index: int):
        commands.check_action(action)
        self.pool.verify_table_index(table_index)

        table_number = self.pool.table_number(table_index)
        argv = commands.route_command(self.binaries.ip, action, dest, prefix, gateway, iface, table_number)

        returncode = self._run(argv)
        if returncode:
            logger.warning(
                'ip route %s failed: %s/%s via %s dev %s table %s', action, dest, prefix, gateway, iface, table_number
            )
            raise CommandExecutionError(argv, returncode, 'ip route modification failed')

        self.pool.modify_rule_count(table_index, action)

    # Source and local rules

    def modify_from_rule(self, table_index: int, action: str, addr: str):
        commands.check_action(action)
        self.pool.verify_table_index(table_index)

        argv = commands.from_rule_command(self.binaries.ip, action, addr, self.pool.table_number(table_index))
        returncode = self._run(argv)
        if returncode:
            logger.warning('ip rule %s from %s failed with %s', action, addr, returncode)
            raise CommandExecutionError(argv, returncode, 'ip rule modification failed')

        self.pool.modify_rule_count(table_index, action)

    def modify_local_route(self, table_index: int, action: str, iface: str, addr: str):
        commands.check_action(action)
        self.pool.verify_table_index(table_index)

        table_number = self.pool.table_number(table_index)
        # some deletions fail once the interface is gone, the count still has to drop
        self.pool.modify_rule_count(table_index, action)

        argv = commands.local_route_command(self.binaries.ip, action, addr, iface, table_number)
        returncode = self._run(argv)
        if not returncode:
            return

        if action == DEL:
            logger.info('Ignoring failed local route removal %s dev %s table %s', addr, iface, table_number)
            return

        self.pool.modify_rule_count(table_index, DEL)
        logger.warning('ip route add %s dev %s table %s failed with %s', addr, iface, table_number, returncode)
        raise CommandExecutionError(argv, returncode, 'ip route modification failed')

    # Fwmark and NAT

    def add_fwmark_rule(self, iface: str):
        self.set_fwmark_rule(iface, True)

    def remove_fwmark_rule(self, iface: str):
        self.set_fwmark_rule(iface, False)

    def set_fwmark_rule(self, iface: str, add: bool):
        if add:
            table_index = self.pool.allocate(iface)
        else:
            table_index = self._tracked_index(iface)

        mark = self.pool.table_number(table_index)
        argv = commands.fwmark_rule_command(self.binaries.ip, add, mark)
        try:
            returncode = self._run(argv)
            if returncode:
                logger.warning('ip rule fwmark %s for %s failed with %s', mark, iface, returncode)
                raise CommandExecutionError(argv, returncode, 'ip rule modification failed')

            self.pool.modify_rule_count(table_index, ADD if add else DEL)
        finally:
            self.pool.release_if_unused(table_index)

        # no NAT support for ipv6 in older kernels
        self._exec_iptables(commands.V4, commands.nat_masquerade_args(add, iface, mark))

    # UID marking

    def add_uid_rule(self, iface: str, uid_start: int, uid_end: int):
        self.set_uid_rule(iface, uid_start, uid_end, True)

    def remove_uid_rule(self, iface: str, uid_start: int, uid_end: int):
        self.set_uid_rule(iface, uid_start, uid_end, False)

    def set_uid_rule(self, iface: str, uid_start: int, uid_end: int, add: bool):
        table_index = self.find_table_number(iface)
        if table_index is None:
            logger.warning('No table for %s, UID rule %s-%s rejected', iface, uid_start, uid_end)
            raise InterfaceNotFoundError(iface, errno=errno.EINVAL)

        mark = self.pool.table_number(table_index)
        if add:
            ok = self.uid_mark_map.add(uid_start, uid_end, mark)
        else:
            ok = self.uid_mark_map.remove(uid_start, uid_end, mark)

        if not ok:
            logger.warning('UID range %s-%s rejected for mark %s', uid_start, uid_end, mark)
            raise UidMapError()

        self._exec_iptables(commands.V4V6, commands.uid_mark_args(add, uid_start, uid_end, mark))
