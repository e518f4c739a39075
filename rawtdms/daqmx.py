import numpy as np

from rawtdms import codec
from rawtdms import types
from rawtdms.base_segment import (
    BaseRawDataIndex, BaseDataLocation, RawChannelDataChunk, interleaved_rows, select_columns)
from rawtdms.exceptions import MalformedMetadataError
from rawtdms.log import log_manager


log = log_manager.get_logger(__name__)

FORMAT_CHANGING_SCALER = 0x00001269
DIGITAL_LINE_SCALER = 0x0000126A


class DaqmxRawDataIndex(BaseRawDataIndex):
    """ Raw data index for an object holding DAQmx raw data

    :ivar scalers: List of DaqMxScaler or DigitalLineScaler objects
    :ivar raw_data_widths: Width in bytes of one row of each raw data buffer
    """

    __slots__ = ['scalers', 'raw_data_widths']

    def __init__(self, data_type, dimension, number_values, scalers, raw_data_widths):
        super(DaqmxRawDataIndex, self).__init__(data_type, dimension, number_values)
        self.scalers = scalers
        self.raw_data_widths = raw_data_widths

    @classmethod
    def read(cls, data, offset, raw_data_index_header, endianness):
        """ Read a DAQmx raw data index, returning the index and the number of bytes read
        """
        if raw_data_index_header not in _scaler_classes:
            raise MalformedMetadataError(
                "Unexpected raw data index for DAQmx data: 0x%08X" % raw_data_index_header)
        # 0x00001269 is used for format changing scalers and 0x0000126A for digital line scalers.
        # The NI docs give 0x00001369 for digital line scalers, which does not match real files.
        position = offset
        data_type_code, size = codec.read_u32(data, position, endianness)
        position += size
        data_type = types.get_data_type(data_type_code)

        (dimension, number_values, scaler_count), size = codec.read_structs(data, position, endianness, 'LQL')
        position += size

        # In TDMS format version 2.0, 1 is the only valid value for dimension
        if dimension != 1:
            raise MalformedMetadataError("Data dimension is not 1")

        scaler_class = _scaler_classes[raw_data_index_header]
        scalers = []
        for _ in range(scaler_count):
            scaler, size = scaler_class.read(data, position, endianness)
            position += size
            scalers.append(scaler)

        if data_type != types.DaqMxRawData:
            if scaler_count != 1:
                raise MalformedMetadataError(
                    "Expected only one scaler for channel with type %s" % data_type.__name__)
            if scalers[0].data_type != data_type:
                raise MalformedMetadataError(
                    "Expected scaler data type to be %s but got %s" %
                    (data_type.__name__, scalers[0].data_type.__name__))

        # There is one raw data width per acquisition card, as data is interleaved separately for each card
        widths_count, size = codec.read_u32(data, position, endianness)
        position += size
        codec.check_length(data, position, 4 * widths_count)
        raw_data_widths, size = codec.read_structs(data, position, endianness, 'L' * widths_count)
        position += size

        index = cls(data_type, dimension, number_values, scalers, list(raw_data_widths))
        log.debug("DAQmx raw data index: %r", index)
        return index, position - offset

    @property
    def data_size(self):
        # DAQmx data size is given by the raw buffer dimensions of the whole segment
        return None

    @property
    def format_changing_scaler_count(self):
        return len(self.scalers)

    @property
    def scaler_data_types(self):
        return dict((s.scale_id, s.data_type) for s in self.scalers)

    def __repr__(self):
        return "DaqmxRawDataIndex(%s, number_values=%d, scalers=%r, raw_data_widths=%r)" % (
            self.data_type.__name__, self.number_values, self.scalers, self.raw_data_widths)


class DaqMxScaler(object):
    """ Details of a DAQmx raw data scaler read from a TDMS file
    """

    __slots__ = [
        'scale_id',
        'data_type',
        'raw_buffer_index',
        'raw_byte_offset',
        'sample_format_bitmap',
        ]

    def __init__(self, data_type, raw_buffer_index, raw_byte_offset, sample_format_bitmap, scale_id):
        self.data_type = data_type
        self.raw_buffer_index = raw_buffer_index
        self.raw_byte_offset = raw_byte_offset
        self.sample_format_bitmap = sample_format_bitmap
        self.scale_id = scale_id

    @classmethod
    def read(cls, data, offset, endianness):
        (data_type_code,
         raw_buffer_index,
         raw_byte_offset,
         sample_format_bitmap,
         scale_id), size = codec.read_structs(data, offset, endianness, 'LLLLL')
        return cls(
            _get_daqmx_type(data_type_code), raw_buffer_index, raw_byte_offset,
            sample_format_bitmap, scale_id), size

    def byte_offset(self):
        return self.raw_byte_offset

    def postprocess_data(self, data):
        return data

    def __repr__(self):
        return _slots_repr(self)


class DigitalLineScaler(object):
    """ Details of a DAQmx digital line scaler read from a TDMS file
    """

    __slots__ = [
        'scale_id',
        'data_type',
        'raw_buffer_index',
        'raw_bit_offset',
        'sample_format_bitmap',
        ]

    def __init__(self, data_type, raw_buffer_index, raw_bit_offset, sample_format_bitmap, scale_id):
        self.data_type = data_type
        self.raw_buffer_index = raw_buffer_index
        self.raw_bit_offset = raw_bit_offset
        self.sample_format_bitmap = sample_format_bitmap
        self.scale_id = scale_id

    @classmethod
    def read(cls, data, offset, endianness):
        (data_type_code,
         raw_buffer_index,
         raw_bit_offset,
         sample_format_bitmap,
         scale_id), size = codec.read_structs(data, offset, endianness, 'LLLBL')
        return cls(
            _get_daqmx_type(data_type_code), raw_buffer_index, raw_bit_offset,
            sample_format_bitmap, scale_id), size

    def byte_offset(self):
        return self.raw_bit_offset // 8

    def postprocess_data(self, data):
        bit_offset = self.raw_bit_offset % 8
        bitmask = 1 << bit_offset
        return np.right_shift(np.bitwise_and(data, bitmask), bit_offset)

    def __repr__(self):
        return _slots_repr(self)


class DaqmxDataLocation(BaseDataLocation):
    """ Location of a DAQmx channel's values within one chunk

    The byte range covers the whole chunk, which holds each raw data buffer in turn,
    with the rows of each buffer interleaving the values of all channels stored in it.

    :ivar buffers: List of (offset within the chunk, number of rows, row width) per raw buffer
    """

    __slots__ = ['buffers']

    def __init__(self, segment_index, raw_data_index, number_values, start, end, buffers):
        super(DaqmxDataLocation, self).__init__(segment_index, raw_data_index, number_values, start, end)
        self.buffers = buffers

    def read_data(self, source, endianness):
        chunk_bytes = self.read_bytes(source)
        data = None
        scaler_data = {}
        for scaler in self.raw_data_index.scalers:
            (buffer_offset, num_rows, width) = self.buffers[scaler.raw_buffer_index]
            rows = interleaved_rows(chunk_bytes, width, num_rows, buffer_offset)
            scaler_bytes = select_columns(rows, scaler.byte_offset(), scaler.data_type.size)
            values = scaler.data_type.from_bytes(scaler_bytes, endianness)
            values = scaler.postprocess_data(values)[:self.number_values]
            if self.raw_data_index.data_type == types.DaqMxRawData:
                scaler_data[scaler.scale_id] = values
            else:
                data = values
        if self.raw_data_index.data_type == types.DaqMxRawData:
            return RawChannelDataChunk.scaler_data(scaler_data)
        return RawChannelDataChunk.channel_data(data)


def get_daqmx_chunk_size(data_objects):
    # For DAQmx data, each channel should specify the same raw data widths,
    # but different buffers may have different numbers of values.
    return sum((num_values * width) for (num_values, width) in get_buffer_dimensions(data_objects))


def get_daqmx_final_buffer_lengths(buffer_dims, chunk_size_bytes):
    """ Number of rows of each buffer that fit in a final chunk that has less data than expected
    """
    updated_buffer_lengths = [0] * len(buffer_dims)
    bytes_remaining = chunk_size_bytes
    for i, (orig_length, width) in enumerate(buffer_dims):
        buffer_total_bytes = orig_length * width
        if bytes_remaining > buffer_total_bytes:
            updated_buffer_lengths[i] = orig_length
            bytes_remaining -= buffer_total_bytes
        else:
            updated_buffer_lengths[i] = bytes_remaining // width
            break
    return updated_buffer_lengths


def get_daqmx_final_chunk_lengths(data_objects, chunk_size_bytes):
    """Compute object data lengths for a final chunk that has less data than expected
    """
    object_lengths = {}
    buffer_dims = get_buffer_dimensions(data_objects)
    updated_buffer_lengths = get_daqmx_final_buffer_lengths(buffer_dims, chunk_size_bytes)
    for obj in data_objects:
        buffer_indices = list(set(s.raw_buffer_index for s in obj.raw_data_index.scalers))
        if len(buffer_indices) == 1:
            object_lengths[obj.path] = min(obj.number_values, updated_buffer_lengths[buffer_indices[0]])
        # Else scalers are in different buffers and no values are read from the final chunk
    return object_lengths


def get_buffer_dimensions(data_objects):
    """ Returns DAQmx buffer dimensions as list of tuples of (number of values, width in bytes)
    """
    dimensions = None
    raw_data_widths = None
    for o in data_objects:
        raw_data_index = o.raw_data_index
        if dimensions is None:
            raw_data_widths = raw_data_index.raw_data_widths
            # Set width for each buffer
            dimensions = [(0, w) for w in raw_data_widths]
        elif list(raw_data_index.raw_data_widths) != list(raw_data_widths):
            raise MalformedMetadataError(
                "Raw data widths for object %s (%s) do not match previous widths (%s)" %
                (o.path, raw_data_index.raw_data_widths, raw_data_widths))
        # Now set the buffer number of values based on the object chunk size
        for scaler in raw_data_index.scalers:
            buffer_index = scaler.raw_buffer_index
            if buffer_index >= len(dimensions):
                raise MalformedMetadataError(
                    "Scaler %d of object %s uses raw buffer %d but there are only %d buffers" %
                    (scaler.scale_id, o.path, buffer_index, len(dimensions)))
            current_buffer_shape = dimensions[buffer_index]
            if scaler.byte_offset() + scaler.data_type.size > current_buffer_shape[1]:
                raise MalformedMetadataError(
                    "Scaler %d of object %s at byte offset %d does not fit within raw data width %d" %
                    (scaler.scale_id, o.path, scaler.byte_offset(), current_buffer_shape[1]))
            updated_num_values = max(current_buffer_shape[0], o.number_values)
            dimensions[buffer_index] = (updated_num_values, current_buffer_shape[1])

    return [] if dimensions is None else dimensions


def daqmx_chunk_locations(segment_index, data_objects, chunk_start, final_chunk_bytes=None):
    """ Generate (path, DaqmxDataLocation) pairs for every data object in one chunk

    :param final_chunk_bytes: Size of the chunk if it is a final chunk holding less data than expected
    """
    buffer_dims = get_buffer_dimensions(data_objects)
    if final_chunk_bytes is None:
        buffer_lengths = [num_values for (num_values, _) in buffer_dims]
        object_lengths = dict((o.path, o.number_values) for o in data_objects)
    else:
        buffer_lengths = get_daqmx_final_buffer_lengths(buffer_dims, final_chunk_bytes)
        object_lengths = get_daqmx_final_chunk_lengths(data_objects, final_chunk_bytes)

    buffers = []
    offset = 0
    for (num_rows, (_, width)) in zip(buffer_lengths, buffer_dims):
        buffers.append((offset, num_rows, width))
        offset += num_rows * width
    chunk_end = chunk_start + offset

    for obj in data_objects:
        number_values = object_lengths.get(obj.path, 0)
        if number_values == 0:
            continue
        yield obj.path, DaqmxDataLocation(
            segment_index, obj.raw_data_index, number_values, chunk_start, chunk_end, buffers)


def _get_daqmx_type(data_type_code):
    try:
        return DAQMX_TYPES[data_type_code]
    except KeyError:
        raise MalformedMetadataError("Unrecognised DAQmx scaler data type: 0x%08X" % data_type_code)


def _slots_repr(obj):
    properties = (
        "%s=%s" % (name, _get_attr_repr(obj, name))
        for name in obj.__slots__)

    properties_list = ", ".join(properties)
    return "%s(%s)" % (obj.__class__.__name__, properties_list)


def _get_attr_repr(obj, attr_name):
    val = getattr(obj, attr_name)
    if isinstance(val, type):
        return val.__name__
    return repr(val)


# Type codes for DAQmx scalers don't match the normal TDMS type codes:
DAQMX_TYPES = {
    0: types.Uint8,
    1: types.Int8,
    2: types.Uint16,
    3: types.Int16,
    4: types.Uint32,
    5: types.Int32,
    6: types.Uint64,
    7: types.Int64,
    8: types.SingleFloat,
    9: types.DoubleFloat,
    0xFFFFFFFF: types.TimeStamp,
}


_scaler_classes = {
    FORMAT_CHANGING_SCALER: DaqMxScaler,
    DIGITAL_LINE_SCALER: DigitalLineScaler,
}
