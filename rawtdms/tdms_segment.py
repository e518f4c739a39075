import logging

from rawtdms import codec
from rawtdms import types
from rawtdms.common import (
    LEAD_IN_SIZE,
    SEGMENT_TAG,
    INCOMPLETE_SEGMENT_OFFSET,
    KNOWN_VERSIONS,
    ObjectPath,
    toc_properties,
    toc_endianness)
from rawtdms.exceptions import (
    InvalidSegmentTagError, MalformedMetadataError, TruncatedDataError)
from rawtdms.log import log_manager
from rawtdms.base_segment import (
    ABSENT,
    UNCHANGED,
    BaseRawDataIndex,
    BaseDataLocation,
    RawChannelDataChunk,
    SegmentObject,
    interleaved_rows,
    select_columns)
from rawtdms.daqmx import (
    FORMAT_CHANGING_SCALER,
    DIGITAL_LINE_SCALER,
    DaqmxRawDataIndex,
    daqmx_chunk_locations,
    get_daqmx_chunk_size,
    get_daqmx_final_chunk_lengths)


log = log_manager.get_logger(__name__)


RAW_DATA_INDEX_NO_DATA = 0xFFFFFFFF
RAW_DATA_INDEX_MATCHES_PREVIOUS = 0x00000000
# Digital line scaler header value given in the NI format documentation
DIGITAL_LINE_SCALER_ALTERNATE = 0x00001369

CONTIGUOUS_LAYOUT = 'contiguous'
INTERLEAVED_LAYOUT = 'interleaved'
DAQMX_LAYOUT = 'daqmx'


class LeadIn(object):
    """ The fixed 28 byte header at the start of each segment

    :ivar position: Byte position of the segment in the file
    :ivar tag: Four byte segment tag
    :ivar toc_mask: Table of contents bit mask
    :ivar version: TDMS format version number
    :ivar next_segment_offset: Offset of the next segment from the end of the lead in
    :ivar raw_data_offset: Offset of the raw data from the end of the lead in
    """

    __slots__ = ['position', 'tag', 'toc_mask', 'version', 'next_segment_offset', 'raw_data_offset']

    def __init__(self, position, tag, toc_mask, version, next_segment_offset, raw_data_offset):
        self.position = position
        self.tag = tag
        self.toc_mask = toc_mask
        self.version = version
        self.next_segment_offset = next_segment_offset
        self.raw_data_offset = raw_data_offset

    @staticmethod
    def from_bytes(lead_in_bytes, position=0, expected_tag=SEGMENT_TAG):
        """ Parse a segment lead in

        :param lead_in_bytes: The 28 bytes of the lead in
        :param position: Position of the segment, used in error messages and logging
        :param expected_tag: b'TDSm' for data files or b'TDSh' for index files
        """
        tag = bytes(lead_in_bytes[:4])
        if len(lead_in_bytes) < LEAD_IN_SIZE:
            if tag != expected_tag[:len(tag)]:
                raise InvalidSegmentTagError(position, expected_tag, tag)
            raise TruncatedDataError(
                "Segment lead in at position %d has only %d bytes" % (position, len(lead_in_bytes)))
        if tag != expected_tag:
            raise InvalidSegmentTagError(position, expected_tag, tag)

        # The table of contents mask is always little endian
        toc_mask, _ = codec.read_u32(lead_in_bytes, 4, '<')

        if log.isEnabledFor(logging.DEBUG):
            log.debug("Reading segment at %d", position)
            for prop_name, prop_mask in toc_properties.items():
                prop_is_set = (toc_mask & prop_mask) != 0
                log.debug("Property %s is %s", prop_name, prop_is_set)

        endianness = toc_endianness(toc_mask)
        (version, next_segment_offset, raw_data_offset), _ = codec.read_structs(
            lead_in_bytes, 8, endianness, 'LQQ')

        if version not in KNOWN_VERSIONS:
            log.warning("Unrecognised version number %d in segment at position %d", version, position)

        return LeadIn(position, tag, toc_mask, version, next_segment_offset, raw_data_offset)

    @property
    def endianness(self):
        return toc_endianness(self.toc_mask)

    @property
    def has_metadata(self):
        return bool(self.toc_mask & toc_properties['kTocMetaData'])

    @property
    def has_new_object_list(self):
        return bool(self.toc_mask & toc_properties['kTocNewObjList'])

    @property
    def has_raw_data(self):
        return bool(self.toc_mask & toc_properties['kTocRawData'])

    @property
    def is_interleaved(self):
        return bool(self.toc_mask & toc_properties['kTocInterleavedData'])

    @property
    def is_big_endian(self):
        return bool(self.toc_mask & toc_properties['kTocBigEndian'])

    @property
    def has_daqmx_raw_data(self):
        return bool(self.toc_mask & toc_properties['kTocDAQmxRawData'])

    @property
    def is_incomplete(self):
        """ Whether the segment size was never written, which can happen if LabVIEW crashes
        """
        return self.next_segment_offset == INCOMPLETE_SEGMENT_OFFSET

    def __repr__(self):
        return "LeadIn(position=%d, toc_mask=0x%02X, version=%d, next_segment_offset=%d, raw_data_offset=%d)" % (
            self.position, self.toc_mask, self.version, self.next_segment_offset, self.raw_data_offset)


class RawDataIndex(BaseRawDataIndex):
    """ A standard (non DAQmx) raw data index

    :ivar total_size: Size in bytes of the object's data in one chunk
    """

    __slots__ = ['total_size']

    def __init__(self, data_type, dimension, number_values, total_size=None):
        super(RawDataIndex, self).__init__(data_type, dimension, number_values)
        if total_size is None:
            total_size = number_values * data_type.size
        self.total_size = total_size

    @classmethod
    def read(cls, data, offset, raw_data_index_header, endianness):
        """ Read a standard raw data index, returning the index and the number of bytes read

        The header value is the length of the index including the header itself.
        """
        (data_type_code, dimension, number_values), size = codec.read_structs(data, offset, endianness, 'LLQ')
        position = offset + size

        data_type = types.get_data_type(data_type_code)
        if data_type.size is None and data_type != types.String:
            raise MalformedMetadataError("Unsupported data type for raw data: %r" % data_type.__name__)
        if data_type == types.Void:
            raise MalformedMetadataError("Void data type cannot have raw data")

        # In TDMS version 2.0, 1 is the only valid value for dimension
        if dimension != 1:
            raise MalformedMetadataError("Data dimension is not 1")

        # Variable length data types have total size
        if data_type == types.String:
            total_size, size = codec.read_u64(data, position, endianness)
            position += size
        else:
            total_size = None

        log.debug(
            "Object data type: %s, number of values in segment: %d", data_type.__name__, number_values)

        bytes_read = position - offset
        return cls(data_type, dimension, number_values, total_size), max(bytes_read, raw_data_index_header - 4)

    @property
    def data_size(self):
        return self.total_size


class DeclaredObject(object):
    """ An object as declared in the metadata of a single segment

    :ivar path: Object path string
    :ivar object_path: Parsed ObjectPath
    :ivar raw_data_index: ABSENT, UNCHANGED or a raw data index
    :ivar properties: List of (name, data type, value) tuples
    """

    __slots__ = ['path', 'object_path', 'raw_data_index', 'properties']

    def __init__(self, path, object_path, raw_data_index, properties):
        self.path = path
        self.object_path = object_path
        self.raw_data_index = raw_data_index
        self.properties = properties

    def __repr__(self):
        return "DeclaredObject(%s, %r, %d properties)" % (self.path, self.raw_data_index, len(self.properties))


def read_object_list(data, endianness):
    """ Read the object list from a segment's metadata block

    :param data: The bytes of the metadata block
    :param endianness: Byte order of the segment
    :returns: A list of DeclaredObject in declaration order
    """
    try:
        return _read_object_list(data, endianness)
    except TruncatedDataError as exc:
        raise MalformedMetadataError("Segment metadata is shorter than its contents: %s" % exc) from exc


def _read_object_list(data, endianness):
    position = 0
    num_objects, size = codec.read_u32(data, position, endianness)
    position += size
    log.debug("Reading metadata for %d objects", num_objects)

    objects = []
    for _ in range(num_objects):
        object_path, size = codec.read_string(data, position, endianness)
        position += size
        try:
            parsed_path = ObjectPath.from_string(object_path)
        except ValueError as exc:
            raise MalformedMetadataError(str(exc)) from exc

        raw_data_index_header, size = codec.read_u32(data, position, endianness)
        position += size
        log.debug("Reading metadata for object %s with index header 0x%08x", object_path, raw_data_index_header)

        raw_data_index, size = _read_raw_data_index(data, position, raw_data_index_header, endianness)
        position += size

        num_properties, size = codec.read_u32(data, position, endianness)
        position += size
        if num_properties > 0:
            log.debug("Reading %d properties", num_properties)
        properties = []
        for _ in range(num_properties):
            prop, size = read_property(data, position, endianness)
            position += size
            properties.append(prop)

        objects.append(DeclaredObject(object_path, parsed_path, raw_data_index, properties))
    return objects


def _read_raw_data_index(data, offset, raw_data_index_header, endianness):
    if raw_data_index_header == RAW_DATA_INDEX_NO_DATA:
        return ABSENT, 0
    if raw_data_index_header == RAW_DATA_INDEX_MATCHES_PREVIOUS:
        return UNCHANGED, 0
    if raw_data_index_header == DIGITAL_LINE_SCALER_ALTERNATE:
        raw_data_index_header = DIGITAL_LINE_SCALER
    if raw_data_index_header in (FORMAT_CHANGING_SCALER, DIGITAL_LINE_SCALER):
        return DaqmxRawDataIndex.read(data, offset, raw_data_index_header, endianness)
    return RawDataIndex.read(data, offset, raw_data_index_header, endianness)


def read_property(data, offset, endianness="<"):
    """ Read a property from a segment's metadata

    :returns: A tuple of ((name, data type, value), number of bytes read)
    """
    position = offset
    prop_name, size = codec.read_string(data, position, endianness)
    position += size
    type_code, size = codec.read_u32(data, position, endianness)
    position += size
    prop_data_type = types.get_data_type(type_code)
    if prop_data_type == types.DaqMxRawData:
        raise MalformedMetadataError("Property '%s' has the DAQmx raw data type" % prop_name)
    value, size = prop_data_type.read(data, position, endianness)
    position += size
    log.debug("Property '%s' = %r", prop_name, value)
    return (prop_name, prop_data_type, value), position - offset


class TdmsSegment(object):
    """ Represents a segment of data in a TDMS file

    :ivar index: Ordinal of the segment in the file
    :ivar position: Byte position of the segment lead in
    :ivar lead_in: The segment's LeadIn
    :ivar data_position: Absolute position of the segment's raw data
    :ivar next_segment_pos: Absolute position one past the end of the segment's raw data
    :ivar ordered_objects: List of SegmentObject, declared and inherited, in raw data order
    :ivar num_chunks: Number of times the raw data layout repeats in the segment
    :ivar final_chunk_lengths_override: None, or a dictionary of path to number of values
        when the final chunk holds less data than a full chunk
    :ivar final_chunk_size: Size in bytes of a shorter final chunk, or None
    :ivar incomplete: Whether the segment size was not written, so the segment runs to the end of the file
    :ivar truncated: Whether the segment declares an end beyond the end of the file
    """

    __slots__ = [
        'index',
        'position',
        'lead_in',
        'data_position',
        'next_segment_pos',
        'ordered_objects',
        'num_chunks',
        'final_chunk_lengths_override',
        'final_chunk_size',
        'layout',
        'incomplete',
        'truncated',
    ]

    def __init__(self, index, lead_in, data_position, next_segment_pos, incomplete=False, truncated=False):
        self.index = index
        self.position = lead_in.position
        self.lead_in = lead_in
        self.data_position = data_position
        self.next_segment_pos = next_segment_pos
        self.incomplete = incomplete
        self.truncated = truncated
        self.ordered_objects = []
        self.num_chunks = 0
        self.final_chunk_lengths_override = None
        self.final_chunk_size = None
        self.layout = None

    def __repr__(self):
        return "<TdmsSegment %d at position %d>" % (self.index, self.position)

    @property
    def endianness(self):
        return self.lead_in.endianness

    @property
    def raw_data_size(self):
        return self.next_segment_pos - self.data_position

    def data_objects(self):
        return [o for o in self.ordered_objects if o.has_data]

    def resolve_objects(self, object_list, previous_segment, last_present):
        """ Work out the ordered object list of this segment

        :param object_list: List of DeclaredObject read from this segment,
            or None if the segment has no metadata.
        :param previous_segment: The previous segment in the file or None.
        :param last_present: Dictionary of path to the most recent raw data index read for the object.
            This is not modified.
        :returns: Dictionary of path to raw data indexes declared in this segment
        """
        if object_list is None:
            if previous_segment is None:
                raise MalformedMetadataError(
                    "kTocMetaData is not set for segment but there is no previous segment")
            self.ordered_objects = previous_segment.ordered_objects
            return {}

        if self.lead_in.has_new_object_list or previous_segment is None:
            self.ordered_objects = []
            existing_objects = {}
        else:
            # Objects may be appended to the previous list,
            # or objects in it updated if their metadata changes.
            self.ordered_objects = previous_segment.ordered_objects[:]
            existing_objects = dict((o.path, i) for (i, o) in enumerate(self.ordered_objects))

        new_indexes = {}
        for obj in object_list:
            path = obj.path
            raw_data_index = obj.raw_data_index
            if raw_data_index is ABSENT:
                # Keep previous index information but mark the object as having no data
                segment_obj = SegmentObject(path, new_indexes.get(path, last_present.get(path)), False)
            elif raw_data_index is UNCHANGED:
                previous_index = new_indexes.get(path, last_present.get(path))
                if previous_index is None:
                    raise MalformedMetadataError(
                        "Raw data index for %s says to reuse previous structure, "
                        "but we have not seen this object before" % path)
                segment_obj = SegmentObject(path, previous_index, True)
            else:
                new_indexes[path] = raw_data_index
                segment_obj = SegmentObject(path, raw_data_index, True)

            existing_index = existing_objects.get(path)
            if existing_index is None:
                existing_objects[path] = len(self.ordered_objects)
                self.ordered_objects.append(segment_obj)
            else:
                self.ordered_objects[existing_index] = segment_obj
        return new_indexes

    def calculate_chunks(self):
        """ Work out the data layout and the number of chunks the raw data is in
        """
        self.num_chunks = 0
        self.final_chunk_lengths_override = None
        self.final_chunk_size = None
        if not self.lead_in.has_raw_data:
            return

        data_objects = self.data_objects()
        self.layout = self._get_layout(data_objects)
        chunk_size = self.chunk_size(data_objects)
        total_data_size = self.raw_data_size
        if total_data_size < 0:
            raise MalformedMetadataError("Negative data size")
        if chunk_size == 0:
            # Sometimes kTocRawData is set, but there isn't actually any data
            if total_data_size != 0:
                raise MalformedMetadataError(
                    "Zero channel data size but data length based on "
                    "segment offset is %d." % total_data_size)
            return

        chunk_remainder = total_data_size % chunk_size
        self.num_chunks = total_data_size // chunk_size
        if chunk_remainder != 0:
            log.warning(
                "Data size %d is not a multiple of the chunk size %d in segment %d. "
                "Will attempt to read last chunk",
                total_data_size, chunk_size, self.index)
            self.num_chunks += 1
            self.final_chunk_size = chunk_remainder
            self.final_chunk_lengths_override = self._compute_final_chunk_lengths(
                data_objects, chunk_size, chunk_remainder)

    def chunk_size(self, data_objects=None):
        """ Size in bytes of one pass of the raw data layout
        """
        if data_objects is None:
            data_objects = self.data_objects()
        if self.layout == DAQMX_LAYOUT:
            return get_daqmx_chunk_size(data_objects)
        return sum(o.raw_data_index.data_size for o in data_objects)

    def data_locations(self):
        """ Generate (path, data location) pairs for every chunk of this segment, in file order
        """
        if self.num_chunks == 0:
            return
        data_objects = self.data_objects()
        chunk_size = self.chunk_size(data_objects)
        for chunk_index in range(self.num_chunks):
            chunk_start = self.data_position + chunk_index * chunk_size
            is_final_partial_chunk = (
                chunk_index == self.num_chunks - 1 and self.final_chunk_size is not None)
            if self.layout == DAQMX_LAYOUT:
                final_chunk_size = self.final_chunk_size if is_final_partial_chunk else None
                for location in daqmx_chunk_locations(self.index, data_objects, chunk_start, final_chunk_size):
                    yield location
                continue
            if is_final_partial_chunk:
                lengths = self.final_chunk_lengths_override
            else:
                lengths = dict((o.path, o.number_values) for o in data_objects)
            if self.layout == INTERLEAVED_LAYOUT:
                locations = self._interleaved_chunk_locations(data_objects, chunk_start, lengths)
            else:
                locations = self._contiguous_chunk_locations(data_objects, chunk_start, lengths)
            for location in locations:
                yield location

    def _contiguous_chunk_locations(self, data_objects, chunk_start, lengths):
        offset = chunk_start
        for obj in data_objects:
            number_values = lengths.get(obj.path, 0)
            if number_values == 0:
                continue
            if number_values == obj.number_values:
                size = obj.raw_data_index.data_size
            else:
                # In last chunk with reduced chunk size
                size = number_values * obj.data_type.size
            yield obj.path, ContiguousDataLocation(
                self.index, obj.raw_data_index, number_values, offset, offset + size)
            offset += size

    def _interleaved_chunk_locations(self, data_objects, chunk_start, lengths):
        stride = sum(o.data_type.size for o in data_objects)
        stride_offset = 0
        for obj in data_objects:
            number_values = lengths.get(obj.path, 0)
            if number_values > 0:
                yield obj.path, InterleavedDataLocation(
                    self.index, obj.raw_data_index, number_values,
                    chunk_start, chunk_start + stride * number_values, stride, stride_offset)
            stride_offset += obj.data_type.size

    def _compute_final_chunk_lengths(self, data_objects, chunk_size, chunk_remainder):
        """Compute object data lengths for a final chunk that has less data than expected
        """
        if self.layout == DAQMX_LAYOUT:
            return get_daqmx_final_chunk_lengths(data_objects, chunk_remainder)

        obj_chunk_sizes = {}

        if any(o for o in data_objects if o.data_type.size is None):
            # Don't try to handle truncated segments with unsized data
            return obj_chunk_sizes

        if self.layout == INTERLEAVED_LAYOUT or not (self.incomplete or self.truncated):
            for obj in data_objects:
                obj_chunk_sizes[obj.path] = (obj.number_values * chunk_remainder) // chunk_size
        else:
            # Have contiguous truncated data
            for obj in data_objects:
                data_size = obj.number_values * obj.data_type.size
                if chunk_remainder > data_size:
                    obj_chunk_sizes[obj.path] = obj.number_values
                    chunk_remainder -= data_size
                else:
                    obj_chunk_sizes[obj.path] = chunk_remainder // obj.data_type.size
                    break

        return obj_chunk_sizes

    def _get_layout(self, data_objects):
        if self._have_daqmx_objects(data_objects):
            return DAQMX_LAYOUT
        if self._have_interleaved_data(data_objects):
            return INTERLEAVED_LAYOUT
        return CONTIGUOUS_LAYOUT

    def _have_daqmx_objects(self, data_objects):
        daqmx_count = sum(1 for o in data_objects if isinstance(o.raw_data_index, DaqmxRawDataIndex))
        if daqmx_count == 0:
            return False
        if daqmx_count == len(data_objects):
            return True
        raise MalformedMetadataError("Cannot read mixed DAQmx and non-DAQmx data")

    def _have_interleaved_data(self, data_objects):
        """ Whether data in this segment is interleaved. Assumes data is not DAQmx.
        """
        if not self.lead_in.is_interleaved:
            return False

        unsized_type_count = sum(1 for o in data_objects if o.data_type.size is None)
        if unsized_type_count == 1 and len(data_objects) == 1:
            # Some files may have segments with an interleaved data flag set but contain a single
            # channel of string data which must be read as a contiguous data chunk.
            return False
        if unsized_type_count > 0:
            raise MalformedMetadataError("Cannot read interleaved segment containing channels with unsized types")
        if len(set(o.number_values for o in data_objects)) > 1:
            raise MalformedMetadataError("Cannot read interleaved data with different chunk sizes")
        return True


class ContiguousDataLocation(BaseDataLocation):
    """ A run of one channel's values stored one after another
    """

    __slots__ = []

    def read_data(self, source, endianness):
        data = self.read_bytes(source)
        values = self.raw_data_index.data_type.read_values(data, self.number_values, endianness)
        return RawChannelDataChunk.channel_data(values)


class InterleavedDataLocation(BaseDataLocation):
    """ One channel's values within a block of interleaved rows

    Value i of the channel is at start + i * stride + stride_offset.

    :ivar stride: Width in bytes of one row holding a value of each channel
    :ivar stride_offset: Offset of this channel's value within a row
    """

    __slots__ = ['stride', 'stride_offset']

    def __init__(self, segment_index, raw_data_index, number_values, start, end, stride, stride_offset):
        super(InterleavedDataLocation, self).__init__(segment_index, raw_data_index, number_values, start, end)
        self.stride = stride
        self.stride_offset = stride_offset

    def read_data(self, source, endianness):
        data = self.read_bytes(source)
        data_type = self.raw_data_index.data_type
        rows = interleaved_rows(data, self.stride, self.number_values)
        # Select columns for this channel, so that number of values will be
        # number of bytes per point * number of data points
        value_bytes = select_columns(rows, self.stride_offset, data_type.size)
        return RawChannelDataChunk.channel_data(data_type.from_bytes(value_bytes, endianness))
