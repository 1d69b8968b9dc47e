class SqlTailError(Exception):
    """Base class for every error sqltail raises itself."""


class ConfigError(SqlTailError):
    """Settings or arguments that cannot be used."""


class ValueConversionError(SqlTailError):
    """A column value that cannot be written in the requested format."""


class MissingTimezoneError(ValueConversionError):

    def __init__(self):
        super().__init__('Found a DATETIME value but no timezone offset was given (use --tz-offset)')
