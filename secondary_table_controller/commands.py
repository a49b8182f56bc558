"""Argument vectors for the ``ip`` and ``iptables`` invocations

Argument order is kept exactly as older ``ip``/``iptables`` releases expect it.
"""
import typing

ADD = 'add'
DEL = 'del'

V4 = 'v4'
V6 = 'v6'
V4V6 = 'v4v6'

LOCAL_MANGLE_OUTPUT = 'st_mangle_OUTPUT'
LOCAL_NAT_POSTROUTING = 'st_nat_POSTROUTING'

# `ip` rejects "::" as a gateway (it does accept 0.0.0.0)
UNSPECIFIED_GATEWAY = '::'

Argv = typing.List[str]


def check_action(action: str):
    if action not in (ADD, DEL):
        raise ValueError(f'Unknown action: {action!r}')


def ip_version(addr: str) -> str:
    return '-6' if ':' in addr else '-4'


def iptables_action(add: bool) -> str:
    return '-A' if add else '-D'


def route_command(
    ip_path: str, action: str, dest: str, prefix: int, gateway: str, iface: str, table_number: int
) -> Argv:
    argv = [ip_path, 'route', action, f'{dest}/{prefix}']
    if gateway != UNSPECIFIED_GATEWAY:
        argv += ['via', gateway]
    argv += ['dev', iface, 'table', str(table_number)]
    return argv


def from_rule_command(ip_path: str, action: str, addr: str, table_number: int) -> Argv:
    return [ip_path, ip_version(addr), 'rule', action, 'from', addr, 'table', str(table_number)]


def local_route_command(ip_path: str, action: str, addr: str, iface: str, table_number: int) -> Argv:
    return [ip_path, 'route', action, addr, 'dev', iface, 'table', str(table_number)]


def fwmark_rule_command(ip_path: str, add: bool, table_number: int) -> Argv:
    return [ip_path, 'rule', ADD if add else DEL, 'fwmark', str(table_number), 'table', str(table_number)]


def nat_masquerade_args(add: bool, iface: str, mark: int) -> Argv:
    """Arguments after the ``iptables`` binary"""
    return [
        '-t',
        'nat',
        iptables_action(add),
        LOCAL_NAT_POSTROUTING,
        '-o',
        iface,
        '-m',
        'mark',
        '--mark',
        str(mark),
        '-j',
        'MASQUERADE',
    ]


def uid_mark_args(add: bool, uid_start: int, uid_end: int, mark: int) -> Argv:
    return [
        '-t',
        'mangle',
        iptables_action(add),
        LOCAL_MANGLE_OUTPUT,
        '-m',
        'owner',
        '--uid-owner',
        f'{uid_start}-{uid_end}',
        '-j',
        'MARK',
        '--set-mark',
        str(mark),
    ]
