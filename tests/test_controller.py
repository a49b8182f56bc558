import errno

import pytest
from fixtures.controller import FakeUidMarkMap

from secondary_table_controller.commands import ADD
from secondary_table_controller.commands import DEL
from secondary_table_controller.controller import SecondaryTableController
from secondary_table_controller.errors import CommandExecutionError
from secondary_table_controller.errors import InterfaceNotFoundError
from secondary_table_controller.errors import InvalidTableIndexError
from secondary_table_controller.errors import SlotExhaustedError
from secondary_table_controller.errors import UidMapError


def test_route_and_fwmark_lifecycle(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    assert controller.find_table_number('wlan0') == 0
    assert controller.pool.rule_count('wlan0') == 1
    assert runner.lines == ['ip route add 10.0.0.0/24 dev wlan0 table 100']

    runner.reset()
    controller.add_fwmark_rule('wlan0')
    assert controller.find_table_number('wlan0') == 0
    assert controller.pool.rule_count('wlan0') == 2
    assert runner.lines == [
        'ip rule add fwmark 100 table 100',
        'iptables -t nat -A st_nat_POSTROUTING -o wlan0 -m mark --mark 100 -j MASQUERADE',
    ]

    controller.remove_route('wlan0', '10.0.0.0', 24, '::')
    assert controller.pool.rule_count('wlan0') == 1
    assert controller.find_table_number('wlan0') == 0

    runner.reset()
    controller.remove_fwmark_rule('wlan0')
    assert runner.lines == [
        'ip rule del fwmark 100 table 100',
        'iptables -t nat -D st_nat_POSTROUTING -o wlan0 -m mark --mark 100 -j MASQUERADE',
    ]
    assert controller.find_table_number('wlan0') is None
    assert controller.pool.occupied_count == 0


def test_route_with_gateway(controller, runner):
    controller.add_route('rmnet0', '2001:db8::', 32, '2001:db8::1')
    assert runner.lines == ['ip route add 2001:db8::/32 via 2001:db8::1 dev rmnet0 table 100']


def test_ipv4_unspecified_gateway_passed_through(controller, runner):
    controller.add_route('eth0', '0.0.0.0', 0, '0.0.0.0')
    assert runner.lines == ['ip route add 0.0.0.0/0 via 0.0.0.0 dev eth0 table 100']


def test_route_lookup_is_stable(controller):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    controller.add_route('rmnet0', '0.0.0.0', 0, '::')
    controller.add_route('wlan0', '10.1.0.0', 24, '::')

    assert controller.find_table_number('wlan0') == 0
    assert controller.find_table_number('rmnet0') == 1
    assert controller.pool.rule_count('wlan0') == 2


def test_add_route_pool_exhausted(controller, runner, pool_capacity):
    for number in range(pool_capacity):
        controller.add_route(f'eth{number}', '10.0.0.0', 8, '::')

    before = controller.pool.slots()
    runner.reset()

    with pytest.raises(SlotExhaustedError) as excinfo:
        controller.add_route('wlan0', '10.0.0.0', 8, '::')

    assert excinfo.value.errno == errno.ENODEV
    assert excinfo.value.message == 'Max number NATed'
    assert controller.pool.slots() == before
    assert runner.commands == []


def test_injected_empty_pool_is_used(controller, pool, runner):
    assert controller.pool is pool
    assert controller.runner is runner

    controller.add_route('wlan0', '10.0.0.0', 24, '::')

    assert pool.find_table_number('wlan0') == 0
    assert runner.lines == ['ip route add 10.0.0.0/24 dev wlan0 table 100']


@pytest.mark.parametrize('table_index', [1, 2, 7, -1], ids=['unoccupied', 'capacity', 'out-of-range', 'negative'])
@pytest.mark.parametrize('action', [ADD, DEL])
def test_modify_route_invalid_index(controller, runner, table_index, action):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    before = controller.pool.slots()
    runner.reset()

    with pytest.raises(InvalidTableIndexError) as excinfo:
        controller.modify_route(action, 'wlan0', '10.1.0.0', 24, '::', table_index)

    assert excinfo.value.errno == errno.EINVAL
    assert controller.pool.slots() == before
    assert runner.commands == []


def test_remove_route_unknown_interface(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    before = controller.pool.slots()
    runner.reset()

    with pytest.raises(InterfaceNotFoundError) as excinfo:
        controller.remove_route('eth0', '10.0.0.0', 24, '::')

    assert excinfo.value.interface == 'eth0'
    assert excinfo.value.message == 'Interface not found'
    assert controller.pool.slots() == before
    assert runner.commands == []


def test_failed_route_keeps_count(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.fail('ip', 'route', 'add')

    with pytest.raises(CommandExecutionError) as excinfo:
        controller.add_route('wlan0', '10.1.0.0', 24, '::')

    assert excinfo.value.message == 'ip route modification failed'
    assert excinfo.value.returncode == 2
    assert excinfo.value.argv == ['ip', 'route', 'add', '10.1.0.0/24', 'dev', 'wlan0', 'table', '100']
    assert controller.pool.rule_count('wlan0') == 1


def test_failed_first_route_frees_slot(controller, runner):
    runner.fail('ip', 'route', 'add')

    with pytest.raises(CommandExecutionError):
        controller.add_route('wlan0', '10.0.0.0', 24, '::')

    assert controller.find_table_number('wlan0') is None
    assert controller.pool.occupied_count == 0


def test_failed_route_removal_keeps_slot(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.fail('ip', 'route', 'del')

    with pytest.raises(CommandExecutionError):
        controller.remove_route('wlan0', '10.0.0.0', 24, '::')

    assert controller.pool.rule_count('wlan0') == 1


@pytest.mark.parametrize(
    'addr, expected',
    [
        ('192.168.1.10', 'ip -4 rule add from 192.168.1.10 table 100'),
        ('fe80::1', 'ip -6 rule add from fe80::1 table 100'),
    ],
    ids=['v4', 'v6'],
)
def test_from_rule(controller, runner, addr, expected):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.reset()

    controller.modify_from_rule(0, ADD, addr)

    assert runner.lines == [expected]
    assert controller.pool.rule_count('wlan0') == 2


def test_from_rule_removal_releases(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    controller.modify_from_rule(0, ADD, '10.0.0.5')
    controller.remove_route('wlan0', '10.0.0.0', 24, '::')

    controller.modify_from_rule(0, DEL, '10.0.0.5')

    assert runner.lines[-1] == 'ip -4 rule del from 10.0.0.5 table 100'
    assert controller.find_table_number('wlan0') is None


@pytest.mark.parametrize('table_index', [0, 5, -1, None])
def test_from_rule_invalid_index(controller, runner, table_index):
    with pytest.raises(InvalidTableIndexError):
        controller.modify_from_rule(table_index, ADD, '10.0.0.5')
    assert runner.commands == []


def test_from_rule_failure(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.fail('ip', '-4', 'rule')

    with pytest.raises(CommandExecutionError):
        controller.modify_from_rule(0, ADD, '10.0.0.5')

    assert controller.pool.rule_count('wlan0') == 1


def test_local_route(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.reset()

    controller.modify_local_route(0, ADD, 'wlan0', '10.0.0.5')

    assert runner.lines == ['ip route add 10.0.0.5 dev wlan0 table 100']
    assert controller.pool.rule_count('wlan0') == 2


def test_local_route_removal_failure_still_releases(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    controller.modify_local_route(0, ADD, 'wlan0', '10.0.0.5')
    controller.remove_route('wlan0', '10.0.0.0', 24, '::')
    runner.fail('ip', 'route', 'del')

    # interface already gone, nothing raised
    controller.modify_local_route(0, DEL, 'wlan0', '10.0.0.5')

    assert runner.lines[-1] == 'ip route del 10.0.0.5 dev wlan0 table 100'
    assert controller.find_table_number('wlan0') is None


def test_local_route_add_failure(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.fail('ip', 'route', 'add', '10.0.0.5')

    with pytest.raises(CommandExecutionError):
        controller.modify_local_route(0, ADD, 'wlan0', '10.0.0.5')

    assert controller.pool.rule_count('wlan0') == 1


def test_local_route_invalid_index(controller, runner):
    with pytest.raises(InvalidTableIndexError):
        controller.modify_local_route(0, DEL, 'wlan0', '10.0.0.5')
    assert runner.commands == []


def test_fwmark_rule_failure_skips_nat(controller, runner):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    runner.reset()
    runner.fail('ip', 'rule', 'add', 'fwmark')

    with pytest.raises(CommandExecutionError):
        controller.add_fwmark_rule('wlan0')

    assert runner.lines == ['ip rule add fwmark 100 table 100']
    assert controller.pool.rule_count('wlan0') == 1


def test_fwmark_rule_failure_frees_new_slot(controller, runner):
    runner.fail('ip', 'rule')

    with pytest.raises(CommandExecutionError):
        controller.add_fwmark_rule('wlan0')

    assert controller.find_table_number('wlan0') is None


def test_fwmark_rule_runner_exception_frees_new_slot(controller, runner, mocker):
    mocker.patch.object(runner, 'run', side_effect=PermissionError(13, 'Permission denied', 'ip'))

    with pytest.raises(PermissionError):
        controller.add_fwmark_rule('wlan0')

    assert controller.find_table_number('wlan0') is None
    assert controller.pool.occupied_count == 0


def test_fwmark_pool_exhausted(controller, runner, pool_capacity):
    for number in range(pool_capacity):
        controller.add_route(f'eth{number}', '10.0.0.0', 8, '::')

    before = controller.pool.slots()
    runner.reset()

    with pytest.raises(SlotExhaustedError) as excinfo:
        controller.add_fwmark_rule('wlan0')

    assert excinfo.value.errno == errno.ENODEV
    assert controller.pool.slots() == before
    assert controller.pool.occupied_count == pool_capacity
    assert runner.commands == []


def test_nat_failure_reported(controller, runner):
    runner.fail('iptables', '-t', 'nat')

    with pytest.raises(CommandExecutionError) as excinfo:
        controller.add_fwmark_rule('wlan0')

    assert excinfo.value.argv[0] == 'iptables'
    # ip rule is in place and accounted for
    assert controller.pool.rule_count('wlan0') == 1


def test_nat_is_ipv4_only(controller, runner):
    controller.add_fwmark_rule('rmnet0')
    assert not any(argv[0] == 'ip6tables' for argv in runner.commands)


def test_remove_fwmark_unknown_interface(controller, runner):
    with pytest.raises(InterfaceNotFoundError):
        controller.remove_fwmark_rule('wlan0')
    assert runner.commands == []
    assert controller.pool.occupied_count == 0


def test_fwmark_matches_table(controller, runner, base_table_number):
    controller.add_route('eth0', '10.0.0.0', 8, '::')
    controller.add_route('wlan0', '10.0.0.0', 8, '::')
    runner.reset()

    controller.add_fwmark_rule('wlan0')

    table_number = base_table_number + controller.find_table_number('wlan0')
    assert runner.commands[0] == ['ip', 'rule', 'add', 'fwmark', str(table_number), 'table', str(table_number)]
    assert runner.commands[1][runner.commands[1].index('--mark') + 1] == str(table_number)


def test_uid_rule(controller, runner, uid_mark_map):
    controller.add_fwmark_rule('wlan0')
    runner.reset()

    controller.add_uid_rule('wlan0', 1000, 1999)

    assert runner.lines == [
        'iptables -t mangle -A st_mangle_OUTPUT -m owner --uid-owner 1000-1999 -j MARK --set-mark 100',
        'ip6tables -t mangle -A st_mangle_OUTPUT -m owner --uid-owner 1000-1999 -j MARK --set-mark 100',
    ]
    assert uid_mark_map.get_mark(1500) == 100
    # UID rules are not counted
    assert controller.pool.rule_count('wlan0') == 1

    runner.reset()
    controller.remove_uid_rule('wlan0', 1000, 1999)

    assert [argv[3] for argv in runner.commands] == ['-D', '-D']
    assert uid_mark_map.get_mark(1500) is None


def test_uid_rule_unknown_interface(controller, runner, uid_mark_map):
    with pytest.raises(InterfaceNotFoundError) as excinfo:
        controller.add_uid_rule('eth0', 1000, 1999)

    assert excinfo.value.errno == errno.EINVAL
    assert runner.commands == []
    assert len(uid_mark_map) == 0


def test_uid_map_rejects(runner, pool, binaries):
    rejecting_map = FakeUidMarkMap(result=False)
    controller = SecondaryTableController(rejecting_map, runner=runner, pool=pool, binaries=binaries)
    controller.add_fwmark_rule('wlan0')
    runner.reset()

    with pytest.raises(UidMapError) as excinfo:
        controller.add_uid_rule('wlan0', 1000, 1999)

    assert excinfo.value.errno == errno.EINVAL
    assert rejecting_map.calls == [('add', 1000, 1999, 100)]
    assert runner.commands == []


def test_uid_overlap_rejected(controller, runner):
    controller.add_fwmark_rule('wlan0')
    controller.add_uid_rule('wlan0', 1000, 1999)
    runner.reset()

    with pytest.raises(UidMapError):
        controller.add_uid_rule('wlan0', 1500, 2500)

    assert runner.commands == []


def test_uid_rule_both_families_attempted(controller, runner, uid_mark_map):
    controller.add_fwmark_rule('wlan0')
    runner.reset()
    runner.fail('iptables', '-t', 'mangle')

    with pytest.raises(CommandExecutionError):
        controller.add_uid_rule('wlan0', 1000, 1999)

    assert [argv[0] for argv in runner.commands] == ['iptables', 'ip6tables']


def test_unknown_action(controller):
    controller.add_route('wlan0', '10.0.0.0', 24, '::')
    with pytest.raises(ValueError):
        controller.modify_route('change', 'wlan0', '10.0.0.0', 24, '::', 0)
