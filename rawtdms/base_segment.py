import numpy as np

from rawtdms.exceptions import TruncatedDataError
from rawtdms.log import log_manager


log = log_manager.get_logger(__name__)


class RawDataIndexSentinel(object):
    """ Raw data index marker used in place of a full index in segment metadata
    """

    __slots__ = ['name']

    def __init__(self, name):
        self.name = name

    def __repr__(self):
        return self.name


# The object has no data in this segment
ABSENT = RawDataIndexSentinel('ABSENT')
# The object reuses the most recent raw data index read for it
UNCHANGED = RawDataIndexSentinel('UNCHANGED')


class BaseRawDataIndex(object):
    """ Abstract base class for a raw data index describing an object's data in a segment

    :ivar data_type: TDMS data type class of the object's values
    :ivar dimension: Array dimension, always 1
    :ivar number_values: Number of values in each chunk of the segment
    """

    __slots__ = ['data_type', 'dimension', 'number_values']

    def __init__(self, data_type, dimension, number_values):
        self.data_type = data_type
        self.dimension = dimension
        self.number_values = number_values

    @property
    def data_size(self):
        """ Number of bytes taken by this object's values in one chunk
        """
        raise NotImplementedError("Data size must be implemented in derived classes")

    @property
    def scaler_data_types(self):
        return None

    def __repr__(self):
        return "%s(%s, number_values=%d)" % (
            self.__class__.__name__, self.data_type.__name__, self.number_values)


class SegmentObject(object):
    """ An object in the ordered object list of a segment

    :ivar path: Object path string
    :ivar raw_data_index: The most recent present raw data index for the object,
        or None if it has never had one
    :ivar has_data: Whether the object has data in this segment
    """

    __slots__ = ['path', 'raw_data_index', 'has_data']

    def __init__(self, path, raw_data_index=None, has_data=False):
        self.path = path
        self.raw_data_index = raw_data_index
        self.has_data = has_data

    @property
    def data_type(self):
        return None if self.raw_data_index is None else self.raw_data_index.data_type

    @property
    def number_values(self):
        return 0 if self.raw_data_index is None else self.raw_data_index.number_values

    def __repr__(self):
        return "SegmentObject(%s, %r, has_data=%s)" % (self.path, self.raw_data_index, self.has_data)


class BaseDataLocation(object):
    """ Where the values of a channel are stored within one chunk of a segment

    :ivar segment_index: Index of the segment in the TdmsIndex segment list
    :ivar raw_data_index: The raw data index in effect for the channel in this segment
    :ivar number_values: Number of values stored at this location
    :ivar start: Absolute byte position where the location's byte range starts
    :ivar end: Absolute byte position one past the end of the range
    """

    __slots__ = ['segment_index', 'raw_data_index', 'number_values', 'start', 'end']

    def __init__(self, segment_index, raw_data_index, number_values, start, end):
        self.segment_index = segment_index
        self.raw_data_index = raw_data_index
        self.number_values = number_values
        self.start = start
        self.end = end

    @property
    def byte_range(self):
        return self.start, self.end

    def read_bytes(self, source):
        """ Read the whole byte range of this location from a byte source
        """
        length = self.end - self.start
        data = source.read(self.start, length)
        if len(data) < length:
            raise TruncatedDataError(
                "Expected %d bytes of raw data at position %d for segment %d but only %d could be read" %
                (length, self.start, self.segment_index, len(data)))
        return data

    def read_data(self, source, endianness):
        """ Read and decode the values at this location

        :returns: A RawChannelDataChunk
        """
        raise NotImplementedError("Reading data must be implemented in derived classes")

    def __repr__(self):
        return "%s(segment=%d, values=%d, bytes=[%d, %d))" % (
            self.__class__.__name__, self.segment_index, self.number_values, self.start, self.end)


class RawChannelDataChunk(object):
    """Data read for a single channel from a single location

    :ivar data: Values for a standard TDMS channel, or a single scaler DAQmx channel.
    :ivar scaler_data: A dictionary of scaler data for DAQmx raw data.
        Keys are the scaler id and values are data arrays.
    """

    def __init__(self, data, scaler_data):
        self.data = data
        self.scaler_data = scaler_data

    def __len__(self):
        if self.data is not None:
            return len(self.data)
        elif self.scaler_data:
            return min(len(d) for d in self.scaler_data.values())
        return 0

    def __iter__(self):
        """ Iterate over values, or over dictionaries of scale id to value for DAQmx scaler data
        """
        if self.data is not None:
            return iter(self.data)
        if self.scaler_data:
            return self._iter_scaler_values()
        return iter(())

    def _iter_scaler_values(self):
        scale_ids = list(self.scaler_data.keys())
        for i in range(len(self)):
            yield dict((scale_id, self.scaler_data[scale_id][i]) for scale_id in scale_ids)

    @staticmethod
    def empty():
        return RawChannelDataChunk(None, None)

    @staticmethod
    def channel_data(data):
        return RawChannelDataChunk(data, None)

    @staticmethod
    def scaler_data(data):
        return RawChannelDataChunk(None, data)


def interleaved_rows(data, bytes_per_row, num_rows, offset=0):
    """ View raw interleaved bytes as a 2D array with one row of bytes per sample
    """
    combined_data = np.frombuffer(data, dtype=np.uint8, count=bytes_per_row * num_rows, offset=offset)
    return combined_data.reshape(num_rows, bytes_per_row)


def select_columns(rows, offset, width):
    """ Select the bytes of one value from each row and flatten them into a packed byte array
    """
    return np.ascontiguousarray(rows[:, offset:offset + width]).ravel()
