import csv
import json
import logging

from sqltail import values
from sqltail.errors import ConfigError, MissingTimezoneError

log = logging.getLogger('sqltail.emit')


class JsonLinesWriter:
    """Write each row as one JSON object per line, keys in column order."""

    format = values.JSON

    def __init__(self, stream, tz_offset=None):
        self.stream = stream
        self.tz_offset = tz_offset
        self.columns = None

    def start(self, columns, header=True):
        # JSON lines carry their keys on every row, so there is no header to write
        self.columns = list(columns)

    def write(self, row):
        obj = {}
        for column, value in zip(self.columns, row):
            obj[column] = values.to_json(value, self.tz_offset)
        line = json.dumps(obj, allow_nan=False, ensure_ascii=False)
        self.stream.write(line + '\n')

    def flush(self):
        self.stream.flush()


class CsvWriter:

    format = values.CSV

    def __init__(self, stream, tz_offset=None):
        self.stream = stream
        self.tz_offset = tz_offset
        self.columns = None
        self.writer = csv.writer(stream, lineterminator='\n')

    def start(self, columns, header=True):
        """Begin a result set. The header row is only written if asked for."""
        self.columns = list(columns)
        if header:
            self.writer.writerow(self.columns)

    def write(self, row):
        # Convert the whole row first so a bad value never leaves half a line behind
        cells = [values.to_csv(value, self.tz_offset) for value in row]
        self.writer.writerow(cells)

    def flush(self):
        self.stream.flush()


WRITERS = {
    values.JSON: JsonLinesWriter,
    values.CSV: CsvWriter,
}


def make_writer(output_format, stream, tz_offset=None):
    try:
        writer_class = WRITERS[output_format.lower()]
    except KeyError:
        raise ConfigError('Unknown output format {!r}, expected one of: {}'.format(
            output_format, ', '.join(values.FORMATS)))
    return writer_class(stream, tz_offset)


def emit(result, writer, header=True, on_row=None):
    """Stream every row of a result through a writer, flushing after each batch.

    on_row is called with each row once it has been written. Returns the number of rows.
    A result with a date or timestamp column needs the writer to have a tz_offset, this
    is checked before anything is written.
    """
    if writer.tz_offset is None and values.has_datetime_column(result.type_codes):
        raise MissingTimezoneError()
    writer.start(result.columns, header=header)
    count = 0
    for batch in result.batches:
        for row in batch:
            writer.write(row)
            count += 1
            if on_row is not None:
                on_row(row)
        writer.flush()
    if not count:
        # A CSV header may still be waiting in the buffer
        writer.flush()
    log.debug('Wrote %d rows', count)
    return count
