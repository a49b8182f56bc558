import errno as _errno
import typing

__all__ = (
    'ControllerError',
    'SlotExhaustedError',
    'InterfaceNotFoundError',
    'InvalidInterfaceNameError',
    'InvalidTableIndexError',
    'CommandExecutionError',
    'UidMapError',
)


class ControllerError(Exception):
    """Base for every failure reported back to the command layer

    ``message`` is meant for the end client, ``errno`` for the response code.
    """

    default_message = 'Operation failed'
    default_errno = _errno.ENODEV

    def __init__(self, message: str = None, errno: int = None):
        self.message = message or self.default_message
        self.errno = self.default_errno if errno is None else errno
        super().__init__(self.message)


class SlotExhaustedError(ControllerError):
    default_message = 'Max number NATed'


class InterfaceNotFoundError(ControllerError):
    default_message = 'Interface not found'

    def __init__(self, interface: str, message: str = None, errno: int = None):
        self.interface = interface
        super().__init__(message, errno)


class InvalidInterfaceNameError(ControllerError):
    default_message = 'Invalid interface name'
    default_errno = _errno.EINVAL


class InvalidTableIndexError(ControllerError):
    default_message = 'Invalid table index'
    default_errno = _errno.EINVAL

    def __init__(self, table_index, message: str = None):
        self.table_index = table_index
        super().__init__(message or f'{self.default_message}: {table_index!r}')


class CommandExecutionError(ControllerError):
    def __init__(self, argv: typing.Sequence[str], returncode: int, message: str = None):
        self.argv = list(argv)
        self.returncode = returncode
        super().__init__(message)

    def __str__(self):
        return f'{self.message} (exit status {self.returncode}: {" ".join(self.argv)})'


class UidMapError(ControllerError):
    default_message = 'UID range rejected'
    default_errno = _errno.EINVAL
