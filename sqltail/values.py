import base64
import collections
import datetime
import decimal
import math

from sqltail.errors import ConfigError, MissingTimezoneError, ValueConversionError

JSON = 'json'
CSV = 'csv'
FORMATS = (JSON, CSV)

# A query result cell is always exactly one of these
Null = collections.namedtuple('Null', [])
Bytes = collections.namedtuple('Bytes', ['data'])
SignedInteger = collections.namedtuple('SignedInteger', ['value'])
UnsignedInteger = collections.namedtuple('UnsignedInteger', ['value'])
Float = collections.namedtuple('Float', ['value'])
DateTime = collections.namedtuple('DateTime', ['year', 'month', 'day', 'hour', 'minute', 'second',
                                               'microsecond'])
Duration = collections.namedtuple('Duration', ['negative', 'days', 'hours', 'minutes', 'seconds',
                                               'microseconds'])

NATIVE_TYPES = (Null, Bytes, SignedInteger, UnsignedInteger, Float, DateTime, Duration)

NULL = Null()

# PostgreSQL type OIDs whose values classify as DateTime: date, timestamp, timestamptz
DATETIME_TYPE_CODES = frozenset([1082, 1114, 1184])


def _duration_from_timedelta(delta):
    negative = delta < datetime.timedelta(0)
    if negative:
        delta = -delta
    hours, rest = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return Duration(negative, delta.days, hours, minutes, seconds, delta.microseconds)


def from_driver(obj):
    """Classify one object returned by psycopg2 as a native value.

    Text comes back from the driver already decoded, so it is re-encoded as UTF-8 bytes;
    normalization decodes it again losslessly. Decimals keep their exact text. Aware
    datetimes keep their wall clock, which is the session time zone.
    """
    if obj is None:
        return NULL
    if isinstance(obj, bool):
        return UnsignedInteger(int(obj))
    if isinstance(obj, int):
        return UnsignedInteger(obj) if obj >= 0 else SignedInteger(obj)
    if isinstance(obj, float):
        return Float(obj)
    if isinstance(obj, decimal.Decimal):
        return Bytes(str(obj).encode('ascii'))
    if isinstance(obj, str):
        return Bytes(obj.encode('utf-8'))
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return Bytes(bytes(obj))
    if isinstance(obj, datetime.datetime):
        return DateTime(obj.year, obj.month, obj.day, obj.hour, obj.minute, obj.second,
                        obj.microsecond)
    if isinstance(obj, datetime.date):
        return DateTime(obj.year, obj.month, obj.day, 0, 0, 0, 0)
    if isinstance(obj, datetime.timedelta):
        return _duration_from_timedelta(obj)
    if isinstance(obj, datetime.time):
        return Duration(False, 0, obj.hour, obj.minute, obj.second, obj.microsecond)
    raise ValueConversionError('Unsupported column value of type {}'.format(type(obj).__name__))


def to_timedelta(value):
    """Compose a Duration into one signed timedelta. The sign applies to the whole."""
    delta = datetime.timedelta(days=value.days, hours=value.hours, minutes=value.minutes,
                               seconds=value.seconds, microseconds=value.microseconds)
    return -delta if value.negative else delta


def format_duration(value):
    delta = to_timedelta(value)
    sign = ''
    if delta < datetime.timedelta(0):
        sign = '-'
        delta = -delta

    hours, rest = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    clock = '{:02d}:{:02d}:{:02d}'.format(hours, minutes, seconds)
    if delta.microseconds:
        clock += '.{:06d}'.format(delta.microseconds)

    if delta.days:
        unit = 'day' if delta.days == 1 else 'days'
        return '{}{} {} {}'.format(sign, delta.days, unit, clock)
    return sign + clock


def format_datetime(value, tz_offset):
    """Format a naive DateTime as RFC 3339, reading its wall clock at a fixed UTC offset."""
    if tz_offset is None:
        raise MissingTimezoneError()
    tz = datetime.timezone(datetime.timedelta(seconds=tz_offset))
    try:
        instant = datetime.datetime(*value, tzinfo=tz)
    except ValueError as e:
        raise ValueConversionError('Invalid DATETIME value {}: {}'.format(tuple(value), e))
    return instant.isoformat()


def format_bytes(data):
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        return base64.b64encode(data).decode('ascii')


def to_json(value, tz_offset=None):
    """Convert a native value to something json.dumps writes exactly."""
    if isinstance(value, Null):
        return None
    if isinstance(value, Bytes):
        return format_bytes(value.data)
    if isinstance(value, (SignedInteger, UnsignedInteger)):
        return value.value
    if isinstance(value, Float):
        if not math.isfinite(value.value):
            raise ValueConversionError('Cannot write {!r} as JSON'.format(value.value))
        return value.value
    if isinstance(value, DateTime):
        return format_datetime(value, tz_offset)
    if isinstance(value, Duration):
        return format_duration(value)
    raise ValueConversionError('Not a native value: {!r}'.format(value))


def to_csv(value, tz_offset=None):
    """Convert a native value to a CSV cell. NULL is the empty string."""
    if isinstance(value, Null):
        return ''
    if isinstance(value, Bytes):
        return format_bytes(value.data)
    if isinstance(value, (SignedInteger, UnsignedInteger)):
        return str(value.value)
    if isinstance(value, Float):
        return repr(value.value)
    if isinstance(value, DateTime):
        return format_datetime(value, tz_offset)
    if isinstance(value, Duration):
        return format_duration(value)
    raise ValueConversionError('Not a native value: {!r}'.format(value))


def normalize(value, tz_offset, target):
    """Turn one native value into what the target format writes for it.

    A JSON value (None, str, int or float) for JSON, a cell string for CSV. DateTime
    values need tz_offset, the seconds east of UTC they are rendered at.
    """
    if target == JSON:
        return to_json(value, tz_offset)
    if target == CSV:
        return to_csv(value, tz_offset)
    raise ConfigError('Unknown output format {!r}, expected one of: {}'.format(
        target, ', '.join(FORMATS)))


def has_datetime_column(type_codes):
    return any(code in DATETIME_TYPE_CODES for code in type_codes or ())
