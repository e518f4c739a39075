from datetime import datetime, timedelta
import numpy as np


EPOCH = np.datetime64('1904-01-01 00:00:00', 's')

FRACTIONS_PER_SECOND = 2 ** 64

_units_per_second = {
    's': 1,
    'ms': 10 ** 3,
    'us': 10 ** 6,
    'ns': 10 ** 9,
    'ps': 10 ** 12,
}


class TdmsTimestamp(object):
    """ A timestamp read from a TDMS file, kept in its stored two field form

        TDMS stores a signed number of seconds since the epoch 1904-01-01 00:00:00 UTC
        and a positive number of 2^-64 fractions of a second.
        No conversion to a clock type is done unless requested.

        :ivar ~.seconds: Seconds since the epoch as a signed integer
        :ivar ~.second_fractions: A positive number of 2^-64 fractions of a second
    """

    __slots__ = ['seconds', 'second_fractions']

    def __init__(self, seconds, second_fractions):
        self.seconds = int(seconds)
        self.second_fractions = int(second_fractions)

    def __eq__(self, other):
        if not isinstance(other, TdmsTimestamp):
            return NotImplemented
        return (self.seconds, self.second_fractions) == (other.seconds, other.second_fractions)

    def __hash__(self):
        return hash((self.seconds, self.second_fractions))

    def __repr__(self):
        return "TdmsTimestamp(%d, %d)" % (self.seconds, self.second_fractions)

    def __str__(self):
        rounded = EPOCH + np.timedelta64(self.seconds, 's') + np.timedelta64(self._rounded_microseconds(), 'us')
        return str(rounded)

    def as_datetime64(self, resolution='us'):
        """ Convert this timestamp to a numpy datetime64 object, truncating to the resolution

            :param resolution: The resolution of the datetime64 object to create as a numpy unit code.
                Must be one of 's', 'ms', 'us', 'ns' or 'ps'
        """
        steps = (self.second_fractions * _get_units_per_second(resolution)) // FRACTIONS_PER_SECOND
        return EPOCH + np.timedelta64(self.seconds, 's') + np.timedelta64(steps, resolution)

    def as_datetime(self):
        """ Convert this timestamp to a naive Python datetime in UTC, rounded to the nearest microsecond
        """
        return datetime(1904, 1, 1) + timedelta(seconds=self.seconds, microseconds=self._rounded_microseconds())

    def _rounded_microseconds(self):
        return (self.second_fractions * 10 ** 6 + FRACTIONS_PER_SECOND // 2) // FRACTIONS_PER_SECOND


class TimestampArray(np.ndarray):
    """ A numpy array of TDMS timestamps in their stored form

        Indexing into a TimestampArray returns TdmsTimestamp objects.
    """

    def __new__(cls, input_array):
        """ Create a new TimestampArray

            The input array must be a structured numpy array with 'seconds' and 'second_fractions' fields.
        """
        field_names = input_array.dtype.names
        if field_names is None or set(field_names) != {'seconds', 'second_fractions'}:
            raise ValueError("Input array must have a dtype with 'seconds' and 'second_fractions' fields")
        return np.asarray(input_array).view(cls)

    def __getitem__(self, item):
        value = super(TimestampArray, self).__getitem__(item)
        if isinstance(item, str):
            # Fields are plain integer arrays
            return value.view(np.ndarray)
        if isinstance(item, (int, np.integer)):
            return TdmsTimestamp(value['seconds'], value['second_fractions'])
        return value

    def __iter__(self):
        return (self[i] for i in range(len(self)))

    @property
    def seconds(self):
        """ The number of seconds since the TDMS epoch (1904-01-01 00:00:00 UTC) as a numpy array
        """
        return self['seconds']

    @property
    def second_fractions(self):
        """ The number of 2**-64 fractions of a second as a numpy array
        """
        return self['second_fractions']

    def as_datetime64(self, resolution='us'):
        """ Convert to an array of numpy datetime64 objects

            :param resolution: The resolution of the datetime64 objects to create as a numpy unit code.
                Must be one of 's', 'ms', 'us', 'ns' or 'ps'
        """
        scale = _get_units_per_second(resolution) / float(FRACTIONS_PER_SECOND)
        steps = (self['second_fractions'] * scale).astype(np.int64)
        return (
            EPOCH +
            self['seconds'].astype(np.int64) * np.timedelta64(1, 's') +
            steps * np.timedelta64(1, resolution))


def concatenate_timestamps(arrays):
    """ Join TimestampArrays that may have different field orders into one little endian array
    """
    dtype = np.dtype([('second_fractions', '<u8'), ('seconds', '<i8')])
    result = np.empty(sum(len(a) for a in arrays), dtype=dtype)
    for field in ('seconds', 'second_fractions'):
        result[field] = np.concatenate([a[field] for a in arrays]) if arrays else []
    return TimestampArray(result)


def _get_units_per_second(resolution):
    try:
        return _units_per_second[resolution]
    except KeyError:
        raise ValueError("Unsupported resolution for converting to numpy datetime64: '{0}'".format(resolution))
