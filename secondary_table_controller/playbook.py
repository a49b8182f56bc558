"""YAML playbooks: ordered controller operations

Example::

    operations:
      - op: add_route
        interface: wlan0
        destination: 10.0.0.0
        prefix: 24
      - op: add_fwmark_rule
        interface: wlan0
      - op: add_uid_rule
        interface: wlan0
        uid_start: 10000
        uid_end: 10999
"""
import logging
import pathlib
import typing

import yaml
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import IPvAnyAddress
from pydantic import ValidationError
from pydantic import conint
from pydantic import constr
from pydantic import model_validator

from .commands import ADD
from .commands import DEL
from .config import ConfigurationError
from .table_pool import IFNAMSIZ

if typing.TYPE_CHECKING:
    from .controller import SecondaryTableController

logger = logging.getLogger('stctl.playbook')

InterfaceName = constr(min_length=1, max_length=IFNAMSIZ - 1)


class OperationModel(BaseModel):
    model_config = ConfigDict(extra='forbid')

    interface: InterfaceName

    def apply(self, controller: 'SecondaryTableController'):
        raise NotImplementedError

    def describe(self) -> str:
        fields = ' '.join(f'{k}={v}' for k, v in self.model_dump(exclude={'op'}).items())
        return f'{self.op} {fields}'


class _RouteOperation(OperationModel):
    destination: IPvAnyAddress
    prefix: conint(ge=0, le=128)
    gateway: IPvAnyAddress = '::'

    @model_validator(mode='after')
    def _check_prefix(self):
        if self.destination.version == 4 and self.prefix > 32:
            raise ValueError(f'prefix /{self.prefix} is too long for {self.destination}')
        return self


class AddRoute(_RouteOperation):
    op: typing.Literal['add_route']

    def apply(self, controller):
        controller.add_route(self.interface, str(self.destination), self.prefix, str(self.gateway))


class RemoveRoute(_RouteOperation):
    op: typing.Literal['remove_route']

    def apply(self, controller):
        controller.remove_route(self.interface, str(self.destination), self.prefix, str(self.gateway))


class _FromRule(OperationModel):
    address: str
    action: typing.ClassVar[str]

    def apply(self, controller):
        table_index = controller.find_table_number(self.interface)
        controller.modify_from_rule(table_index, self.action, self.address)


class AddFromRule(_FromRule):
    op: typing.Literal['add_from_rule']
    action = ADD


class RemoveFromRule(_FromRule):
    op: typing.Literal['remove_from_rule']
    action = DEL


class _LocalRoute(OperationModel):
    address: str
    action: typing.ClassVar[str]

    def apply(self, controller):
        table_index = controller.find_table_number(self.interface)
        controller.modify_local_route(table_index, self.action, self.interface, self.address)


class AddLocalRoute(_LocalRoute):
    op: typing.Literal['add_local_route']
    action = ADD


class RemoveLocalRoute(_LocalRoute):
    op: typing.Literal['remove_local_route']
    action = DEL


class AddFwmarkRule(OperationModel):
    op: typing.Literal['add_fwmark_rule']

    def apply(self, controller):
        controller.add_fwmark_rule(self.interface)


class RemoveFwmarkRule(OperationModel):
    op: typing.Literal['remove_fwmark_rule']

    def apply(self, controller):
        controller.remove_fwmark_rule(self.interface)


class _UidRule(OperationModel):
    uid_start: conint(ge=0)
    uid_end: conint(ge=0)


class AddUidRule(_UidRule):
    op: typing.Literal['add_uid_rule']

    def apply(self, controller):
        controller.add_uid_rule(self.interface, self.uid_start, self.uid_end)


class RemoveUidRule(_UidRule):
    op: typing.Literal['remove_uid_rule']

    def apply(self, controller):
        controller.remove_uid_rule(self.interface, self.uid_start, self.uid_end)


Operation = typing.Annotated[
    typing.Union[
        AddRoute,
        RemoveRoute,
        AddFromRule,
        RemoveFromRule,
        AddLocalRoute,
        RemoveLocalRoute,
        AddFwmarkRule,
        RemoveFwmarkRule,
        AddUidRule,
        RemoveUidRule,
    ],
    Field(discriminator='op'),
]


class PlaybookModel(BaseModel):
    model_config = ConfigDict(extra='forbid')

    operations: typing.List[Operation] = []


def load_playbook(path: pathlib.Path) -> PlaybookModel:
    with path.open() as fp:
        data = yaml.safe_load(fp) or {}

    try:
        return PlaybookModel.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f'Invalid playbook {path.as_posix()}: {exc}') from exc


def load_playbooks(paths: typing.Iterable[pathlib.Path]) -> typing.List[OperationModel]:
    operations = []
    for path in paths:
        playbook = load_playbook(path)
        logger.info('Loaded %s operation(s) from %s', len(playbook.operations), path.as_posix())
        operations += playbook.operations
    return operations
