import logging
import pathlib
import typing
from functools import cached_property

import sentry_sdk
import yaml
from pydantic import AnyHttpUrl
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import ValidationError
from pydantic import conint
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from sentry_sdk.integrations.logging import LoggingIntegration

from . import __version__
from .dict_merge import dict_merge
from .logging import setup_logging

__all__ = (
    'PoolModel',
    'BinariesModel',
    'Settings',
    'ConfigurationError',
    'settings',
)

logger = logging.getLogger('stctl.config')

# kernel table numbers above 252 collide with default/main/local
MAX_TABLE_NUMBER = 252


class ConfigurationError(Exception):
    pass


class PoolModel(BaseModel):
    model_config = ConfigDict(extra='forbid')

    capacity: conint(ge=1) = 16
    base_table_number: conint(ge=1) = 60

    @field_validator('base_table_number')
    @classmethod
    def _check_table_range(cls, base_table_number, info):
        capacity = info.data.get('capacity')
        if capacity is not None and base_table_number + capacity - 1 > MAX_TABLE_NUMBER:
            raise ValueError(f'tables {base_table_number}..{base_table_number + capacity - 1} overlap reserved tables')
        return base_table_number


class BinariesModel(BaseModel):
    model_config = ConfigDict(extra='forbid')

    ip: str = '/sbin/ip'
    iptables: str = '/sbin/iptables'
    ip6tables: str = '/sbin/ip6tables'


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_prefix='STCTL_', extra='ignore')

    sentry_dsn: typing.Optional[AnyHttpUrl] = None
    confdir_0: pathlib.Path = pathlib.Path('/etc/stctl/conf.d/')
    confdir_1: pathlib.Path = pathlib.Path('./conf.d/')
    error_log: pathlib.Path = pathlib.Path('/dev/null')
    loglevel: str = 'INFO'
    piddir: typing.Optional[pathlib.Path] = None

    @cached_property
    def merged_config_data(self):
        return load_configs(iter_config_files(self.confdir_0, self.confdir_1))

    @field_validator('loglevel')
    @classmethod
    def _check_loglevel(cls, v):
        from logging import _checkLevel  # noqa

        _checkLevel(v)
        return v

    def _parse_section(self, name: str, model: typing.Type[BaseModel]):
        data = self.merged_config_data.get(name) or {}
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f'Invalid `{name}` section: {exc}') from exc

    @cached_property
    def pool(self) -> PoolModel:
        return self._parse_section('pool', PoolModel)

    @cached_property
    def binaries(self) -> BinariesModel:
        return self._parse_section('binaries', BinariesModel)


def iter_config_files(*confdirs):
    for confdir in confdirs:
        if not confdir.exists():
            logger.info('Confdir not found: %s', confdir.absolute().as_posix())
            continue

        if not confdir.is_dir():
            logger.warning('Confdir expected to be a directory, not a file: %s', confdir.absolute().as_posix())
            continue

        for file in sorted(confdir.iterdir(), key=lambda f: f.name):
            if file.is_file() and file.name.endswith('.yaml'):
                logger.info('Found config: %s', file.as_posix())
                yield file
            else:
                logger.debug('Found non-config file, ignore: %s', file.as_posix())


def load_configs(paths: typing.Iterable[pathlib.Path]):
    whole_config = {}

    for path in paths:
        with path.open() as fp:
            config = yaml.safe_load(fp)

        if config is None:
            continue

        if not isinstance(config, dict):
            raise ConfigurationError(f'Config must be a mapping: {path.as_posix()}')

        whole_config = dict_merge(whole_config, config)

    return whole_config


def setup(settings_: Settings = None, reread: bool = False, console_format: str = 'verbose'):
    global settings
    if settings_ is None or reread:
        logger.info('Re-read settings')
        settings_ = Settings()

    settings = settings_

    if settings.sentry_dsn:
        sentry_logging = LoggingIntegration(
            level=logging.DEBUG,  # Capture info and above as breadcrumbs
            event_level=logging.ERROR,  # Send errors as events
        )
        sentry_sdk.init(
            dsn=str(settings.sentry_dsn),
            integrations=[sentry_logging],
            release=__version__,
        )

    setup_logging(
        loglevel=settings.loglevel, error_filename=settings.error_log.as_posix(), console_format=console_format
    )

    if settings.sentry_dsn:
        logger.debug('Sentry enabled')
    else:
        logger.debug('Sentry disabled')

    return settings


settings = Settings()

setup(settings)


def __getattr__(name):
    if name == 'pool':
        return settings.pool
    elif name == 'binaries':
        return settings.binaries
    else:
        raise AttributeError(name)
