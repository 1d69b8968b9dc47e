"""The tail cursor: the largest order column value seen so far.

None stands for "nothing seen yet" and sorts below every value.
"""

from sqltail import values
from sqltail.errors import ValueConversionError


def init(seed):
    return seed


def observe(current, candidate):
    """Advance the cursor to candidate if it is greater. Never moves backwards."""
    if candidate is None:
        return current
    if current is None:
        return candidate
    return max(current, candidate)


def cursor_value(value):
    """Read a cursor scalar out of a native value from the order column."""
    if isinstance(value, values.Null):
        return None
    if isinstance(value, (values.SignedInteger, values.UnsignedInteger)):
        return value.value
    raise ValueConversionError(
        'The order column must hold integers, got {}'.format(type(value).__name__))
