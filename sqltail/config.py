import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqltail import values
from sqltail.errors import ConfigError

log = logging.getLogger('sqltail.config')

ENV_PREFIX = 'SQLTAIL_'
DEFAULT_CONFIG = '.env'


class Settings(BaseSettings):
    """Connection and output settings, read from SQLTAIL_* environment variables."""

    dsn: Optional[str] = Field(default=None, description='libpq connection string or URI')
    host: Optional[str] = Field(default=None, description='Database server host')
    port: Optional[int] = Field(default=None, description='Database server port')
    user: Optional[str] = Field(default=None, description='Database user')
    password: Optional[str] = Field(default=None, description='Database password')
    database: Optional[str] = Field(default=None, description='Database name')
    format: str = Field(default=values.JSON, description='Output format, json or csv')
    tz_offset: Optional[int] = Field(default=None,
                                     description='UTC offset for datetimes, in seconds east of UTC')

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra='ignore',
    )

    @field_validator('port')
    @classmethod
    def check_port(cls, port):
        if port is not None and not 0 < port < 65536:
            raise ValueError('port {} is out of range'.format(port))
        return port

    @field_validator('tz_offset')
    @classmethod
    def check_tz_offset(cls, offset):
        """Offsets are whole minutes, less than a day away from UTC (32400 is +09:00)."""
        if offset is None:
            return offset
        if abs(offset) >= 24 * 3600:
            raise ValueError('timezone offset {} is not within a day of UTC'.format(offset))
        if offset % 60:
            raise ValueError('timezone offset {} is not a whole number of minutes'.format(offset))
        return offset

    @field_validator('format')
    @classmethod
    def check_format(cls, output_format):
        lowered = output_format.lower()
        if lowered not in values.FORMATS:
            raise ValueError('unknown output format {!r}, expected one of: {}'.format(
                output_format, ', '.join(values.FORMATS)))
        return lowered


def load_config_file(path=None):
    """Load a dotenv file into the environment without overriding what is already set.

    An explicit path must exist. Without one, a .env in the working directory is used if
    there is one.
    """
    if path is None:
        if not os.path.isfile(DEFAULT_CONFIG):
            return False
        path = DEFAULT_CONFIG
    elif not os.path.isfile(path):
        raise ConfigError('Config file {} does not exist'.format(path))

    log.debug('Loading settings from %s', path)
    try:
        return load_dotenv(path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError('Cannot read config file {}: {}'.format(path, e))


def _describe(error):
    problems = []
    for detail in error.errors():
        field = '.'.join(str(part) for part in detail['loc'])
        problems.append('{}: {}'.format(field, detail['msg']))
    return 'Invalid settings: ' + '; '.join(problems)


def resolve_settings(args):
    """Build Settings from command line arguments over SQLTAIL_* environment variables.

    Arguments that were not given on the command line (None) fall through to the environment.
    """
    overrides = {}
    for name in Settings.model_fields:
        value = getattr(args, name, None)
        if value is not None and value != '':
            overrides[name] = value
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(_describe(e))
