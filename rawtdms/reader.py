""" Builds an index of the segments, objects and data locations in a TDMS file
"""

import os

from rawtdms.common import LEAD_IN_SIZE, SEGMENT_TAG, INDEX_SEGMENT_TAG, ObjectPath
from rawtdms.exceptions import (
    DecodeError,
    InvalidFileError,
    InvalidSegmentTagError,
    MalformedMetadataError,
    PartialFile,
    TruncatedDataError,
    TruncatedFinalSegment)
from rawtdms.log import log_manager, Timer
from rawtdms.source import FileSource, as_source
from rawtdms.tdms import TdmsIndex
from rawtdms.tdms_segment import LeadIn, TdmsSegment, read_object_list


log = log_manager.get_logger(__name__)


def read_index(source, index_source=None):
    """ Read the structure of a TDMS file and the locations of all channel data

    :param source: A byte source with ``read(offset, length)`` and ``size()`` methods,
        bytes, a path to a TDMS file as a string or pathlib.Path, or an already opened binary file.
    :param index_source: Optional source for the matching .tdms_index file.
        When source is a path and this is not given, a file at the same path
        with "_index" appended is used if it exists.
    :rtype: TdmsIndex
    """
    owns_source = isinstance(source, (str, os.PathLike))
    owns_index_source = False
    index_file_path = str(source) + '_index' if owns_source else None
    source = as_source(source)
    try:
        if index_source is None and index_file_path is not None:
            if os.path.isfile(index_file_path):
                index_source = FileSource(index_file_path)
                owns_index_source = True
        elif index_source is not None:
            path_given = isinstance(index_source, (str, os.PathLike))
            index_source = as_source(index_source)
            owns_index_source = path_given
        reader = TdmsReader(source, index_source)
        reader.read_metadata()
    except Exception:
        if owns_source:
            source.close()
        raise
    finally:
        if owns_index_source:
            index_source.close()
    return TdmsIndex(
        source, reader.segments, reader.object_metadata, reader.diagnostics, owns_source=owns_source)


class TdmsReader(object):
    """ Reads segment lead ins and metadata from a TDMS file, and works out where each channel's data is stored

    :ivar segments: List of TdmsSegment in file order
    :ivar object_metadata: Dictionary of object path to ObjectMetadata, in the order objects were first seen
    :ivar diagnostics: List of warnings for recoverable problems found while reading
    """

    def __init__(self, source, index_source=None):
        """ Initialise a new TdmsReader

        :param source: Byte source for the TDMS data file
        :param index_source: Byte source for the TDMS index file, or None to read metadata from the data file
        """
        self._source = source
        self._index_source = index_source
        self.segments = []
        self.object_metadata = {}
        self.diagnostics = []
        # Most recent raw data index read for each object path
        self._last_present = {}

    def read_metadata(self):
        """ Read all segments, stopping at the end of the file or the first segment that can't be read
        """
        reading_index_file = self._index_source is not None
        metadata_source = self._index_source if reading_index_file else self._source

        with Timer(log, "Read metadata"):
            data_size = self._source.size()
            metadata_size = metadata_source.size()
            segment_position = 0
            metadata_position = 0
            previous_segment = None
            while metadata_position < metadata_size:
                segment_index = len(self.segments)
                try:
                    segment, object_list, new_indexes, locations = self._read_segment(
                        segment_index, segment_position, metadata_source, metadata_position,
                        reading_index_file, data_size, previous_segment)
                except DecodeError as exc:
                    if segment_index == 0:
                        raise InvalidFileError(
                            "Could not read the first segment of the file: %s" % exc) from exc
                    self._add_diagnostic(PartialFile(segment_index, segment_position, exc))
                    return

                self._commit_segment(segment, object_list, new_indexes, locations)
                previous_segment = segment
                if segment.incomplete or segment.truncated:
                    break

                if reading_index_file:
                    metadata_position += LEAD_IN_SIZE + segment.lead_in.raw_data_offset
                else:
                    metadata_position = segment.next_segment_pos
                segment_position = segment.next_segment_pos

            self._check_final_segment()

    def _read_segment(
            self, segment_index, segment_position, metadata_source, metadata_position,
            is_index_file, data_size, previous_segment):
        """ Read and validate a segment without modifying any state of this reader
        """
        expected_tag = INDEX_SEGMENT_TAG if is_index_file else SEGMENT_TAG
        lead_in_bytes = metadata_source.read(metadata_position, LEAD_IN_SIZE)
        lead_in = LeadIn.from_bytes(lead_in_bytes, segment_position, expected_tag)
        if is_index_file:
            self._verify_segment_start(segment_position)

        data_position = segment_position + LEAD_IN_SIZE + lead_in.raw_data_offset
        incomplete = lead_in.is_incomplete
        truncated = False
        if incomplete:
            # Segment size is unknown. This can happen if LabVIEW crashes.
            # Try to read until the end of the file.
            log.warning(
                "Last segment of file has unknown size, "
                "will attempt to read to the end of the file")
            next_segment_pos = data_size
        else:
            if lead_in.raw_data_offset > lead_in.next_segment_offset:
                raise MalformedMetadataError(
                    "Raw data offset %d of segment at %d is beyond the next segment offset %d" %
                    (lead_in.raw_data_offset, segment_position, lead_in.next_segment_offset))
            log.debug(
                "Next segment offset = %d, raw data offset = %d, data size = %d b",
                lead_in.next_segment_offset, lead_in.raw_data_offset,
                lead_in.next_segment_offset - lead_in.raw_data_offset)
            next_segment_pos = segment_position + LEAD_IN_SIZE + lead_in.next_segment_offset
            if next_segment_pos > data_size:
                log.warning(
                    "Segment %d at position %d ends at %d, beyond the end of the file at %d",
                    segment_index, segment_position, next_segment_pos, data_size)
                next_segment_pos = data_size
                truncated = True
        if data_position > next_segment_pos:
            raise TruncatedDataError(
                "Metadata of segment at %d ends at %d, beyond the end of the file at %d" %
                (segment_position, data_position, data_size))

        segment = TdmsSegment(segment_index, lead_in, data_position, next_segment_pos, incomplete, truncated)

        object_list = None
        if lead_in.has_metadata:
            log.debug("Reading segment object metadata at %d", metadata_position + LEAD_IN_SIZE)
            metadata_bytes = metadata_source.read(metadata_position + LEAD_IN_SIZE, lead_in.raw_data_offset)
            if len(metadata_bytes) < lead_in.raw_data_offset:
                raise TruncatedDataError(
                    "Expected %d bytes of metadata for segment at %d but only %d are available" %
                    (lead_in.raw_data_offset, segment_position, len(metadata_bytes)))
            object_list = read_object_list(metadata_bytes, lead_in.endianness)

        new_indexes = segment.resolve_objects(object_list, previous_segment, self._last_present)
        self._check_data_types(new_indexes)
        segment.calculate_chunks()
        locations = list(segment.data_locations())
        return segment, object_list, new_indexes, locations

    def _verify_segment_start(self, position):
        """ When reading metadata from an index file, check for the TDSm tag at the start of the data segment
            in an attempt to detect any mismatch between tdms and tdms_index files.
        """
        tag = self._source.read(position, len(SEGMENT_TAG))
        if tag != SEGMENT_TAG:
            raise InvalidSegmentTagError(position, SEGMENT_TAG, tag)

    def _check_data_types(self, new_indexes):
        for path, raw_data_index in new_indexes.items():
            obj = self.object_metadata.get(path)
            if obj is None:
                continue
            if obj.data_type is not None and obj.data_type != raw_data_index.data_type:
                raise MalformedMetadataError(
                    "Segment data doesn't have the same type as previous "
                    "segments for object %s. Expected type %s but got %s" %
                    (path, obj.data_type.__name__, raw_data_index.data_type.__name__))
            scaler_data_types = raw_data_index.scaler_data_types
            if (obj.scaler_data_types is not None and scaler_data_types is not None and
                    obj.scaler_data_types != scaler_data_types):
                raise MalformedMetadataError(
                    "Segment data doesn't have the same scaler data types as previous "
                    "segments for object %s. Expected types %s but got %s" %
                    (path, obj.scaler_data_types, scaler_data_types))

    def _commit_segment(self, segment, object_list, new_indexes, locations):
        """ Update object metadata using the metadata read from a single segment
        """
        self.segments.append(segment)
        self._last_present.update(new_indexes)

        if object_list is not None:
            for declared_object in object_list:
                obj = self._get_or_create_object(declared_object.path, declared_object.object_path)
                for (name, _, value) in declared_object.properties:
                    obj.properties[name] = value

        for path, raw_data_index in new_indexes.items():
            obj = self.object_metadata[path]
            if obj.data_type is None:
                obj.data_type = raw_data_index.data_type
            if obj.scaler_data_types is None:
                obj.scaler_data_types = raw_data_index.scaler_data_types
            if obj.scalers is None and raw_data_index.scaler_data_types is not None:
                obj.scalers = raw_data_index.scalers

        for path, location in locations:
            obj = self.object_metadata[path]
            obj.locations.append(location)
            obj.num_values += location.number_values

    def _check_final_segment(self):
        if not self.segments:
            return
        segment = self.segments[-1]
        if segment.truncated:
            expected_size = (
                segment.position + LEAD_IN_SIZE + segment.lead_in.next_segment_offset - segment.data_position)
        elif segment.final_chunk_size is not None:
            chunk_size = segment.chunk_size()
            expected_size = segment.num_chunks * chunk_size
        else:
            return
        self._add_diagnostic(TruncatedFinalSegment(segment.index, expected_size, segment.raw_data_size))

    def _add_diagnostic(self, diagnostic):
        log.warning(str(diagnostic))
        self.diagnostics.append(diagnostic)

    def _get_or_create_object(self, path, object_path):
        """ Get existing object metadata or create metadata for a new object
        """
        try:
            return self.object_metadata[path]
        except KeyError:
            pass
        if object_path.is_channel:
            # Channels may be written without an object for their group
            self._get_or_create_object(object_path.group_path(), ObjectPath(object_path.group))
        obj = ObjectMetadata(object_path)
        self.object_metadata[path] = obj
        return obj


class ObjectMetadata(object):
    """ Stores information about an object in a TDMS file, accumulated over all segments
    """

    def __init__(self, object_path):
        self.object_path = object_path
        self.properties = {}
        self.data_type = None
        self.scaler_data_types = None
        self.scalers = None
        self.locations = []
        self.num_values = 0
