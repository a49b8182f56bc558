import logging
import typing

from .commands import ADD
from .commands import DEL
from .errors import InvalidInterfaceNameError
from .errors import InvalidTableIndexError
from .errors import SlotExhaustedError

__all__ = (
    'IFNAMSIZ',
    'INTERFACES_TRACKED',
    'BASE_TABLE_NUMBER',
    'TableSlot',
    'TablePool',
)

logger = logging.getLogger('stctl.pool')

IFNAMSIZ = 16
INTERFACES_TRACKED = 16
BASE_TABLE_NUMBER = 60


class TableSlot:
    __slots__ = ('interface_name', 'rule_count')

    def __init__(self, interface_name: str = '', rule_count: int = 0):
        self.interface_name = interface_name
        self.rule_count = rule_count

    @property
    def occupied(self) -> bool:
        return self.interface_name != ''

    def clear(self):
        self.interface_name = ''
        self.rule_count = 0

    def __eq__(self, other):
        if not isinstance(other, TableSlot):
            return NotImplemented
        return (self.interface_name, self.rule_count) == (other.interface_name, other.rule_count)

    def __repr__(self):
        return f'TableSlot({self.interface_name!r}, {self.rule_count})'


class TablePool:
    """Fixed number of secondary routing tables shared by the tracked interfaces

    Slot position is the table index; ``index + base_table_number`` is both the
    kernel routing table and the fwmark of that interface.
    A slot is released as soon as its rule count drops to zero.
    """

    def __init__(self, capacity: int = INTERFACES_TRACKED, base_table_number: int = BASE_TABLE_NUMBER):
        if capacity < 1:
            raise ValueError(f'capacity must be positive, got {capacity}')

        self.capacity = capacity
        self.base_table_number = base_table_number
        self._slots = [TableSlot() for _ in range(capacity)]

    @property
    def occupied_count(self) -> int:
        return sum(1 for slot in self._slots if slot.occupied)

    def __contains__(self, interface_name):
        return bool(interface_name) and self.find_table_number(interface_name) is not None

    @staticmethod
    def check_interface_name(interface_name: str):
        if not interface_name or len(interface_name) >= IFNAMSIZ:
            raise InvalidInterfaceNameError(f'Invalid interface name: {interface_name!r}')

    def find_table_number(self, interface_name: str) -> typing.Optional[int]:
        """Index of the slot holding ``interface_name``

        Empty name looks up the first free slot.
        """
        for index, slot in enumerate(self._slots):
            if slot.interface_name == interface_name:
                return index
        return None

    def verify_table_index(self, table_index: int):
        if not isinstance(table_index, int) or not 0 <= table_index < self.capacity:
            raise InvalidTableIndexError(table_index)

        if not self._slots[table_index].occupied:
            raise InvalidTableIndexError(table_index, f'Table index {table_index} is not in use')

    def allocate(self, interface_name: str) -> int:
        self.check_interface_name(interface_name)

        table_index = self.find_table_number(interface_name)
        if table_index is not None:
            return table_index

        table_index = self.find_table_number('')
        if table_index is None:
            logger.warning('Max number of NATed interfaces reached (%s), rejecting %s', self.capacity, interface_name)
            raise SlotExhaustedError()

        self._slots[table_index].interface_name = interface_name
        logger.debug('Table %s assigned to %s', self.table_number(table_index), interface_name)
        return table_index

    def release_if_unused(self, table_index: int):
        slot = self._slots[table_index]
        if slot.occupied and slot.rule_count == 0:
            logger.debug('Table %s released by %s', self.table_number(table_index), slot.interface_name)
            slot.clear()

    def modify_rule_count(self, table_index: int, action: str):
        slot = self._slots[table_index]

        if action == ADD:
            slot.rule_count += 1
        elif action == DEL:
            slot.rule_count -= 1
            if slot.rule_count < 1:
                # extra removals are absorbed
                slot.rule_count = 0
                self.release_if_unused(table_index)
        else:
            raise ValueError(f'Unknown action: {action!r}')

    def table_number(self, table_index: int) -> int:
        return table_index + self.base_table_number

    def rule_count(self, interface_name: str) -> int:
        table_index = self.find_table_number(interface_name) if interface_name else None
        if table_index is None:
            return 0
        return self._slots[table_index].rule_count

    def slots(self) -> typing.List[TableSlot]:
        return [TableSlot(slot.interface_name, slot.rule_count) for slot in self._slots]

    def occupied(self) -> typing.Iterator[typing.Tuple[int, TableSlot]]:
        for index, slot in enumerate(self._slots):
            if slot.occupied:
                yield index, TableSlot(slot.interface_name, slot.rule_count)
