""" Errors raised and warning conditions reported while reading TDMS files
"""


class TdmsError(Exception):
    """ Base class for all errors raised by rawtdms
    """


class DecodeError(TdmsError, ValueError):
    """ Bytes read from the source could not be decoded
    """


class TruncatedDataError(DecodeError):
    """ Fewer bytes were available than a value or data range requires
    """


class MalformedStringError(DecodeError):
    """ String bytes are not valid UTF-8
    """


class MalformedMetadataError(DecodeError):
    """ The metadata of a segment is inconsistent or runs outside its block
    """


class InvalidSegmentTagError(DecodeError):
    """ A segment lead-in did not start with the expected tag
    """

    def __init__(self, position, expected_tag, tag):
        super(InvalidSegmentTagError, self).__init__(
            "Segment at position %d does not start with %r, but with %r" % (position, expected_tag, tag))
        self.position = position
        self.expected_tag = expected_tag
        self.tag = tag


class InvalidFileError(TdmsError, ValueError):
    """ The first segment of a file could not be read, so no index can be built
    """


class TypeMismatchError(TdmsError, TypeError):
    """ Channel data was requested as a different type to the type declared in the file
    """


class TdmsWarning(UserWarning):
    """ Base class for recoverable conditions found while building a TDMS index
    """


class PartialFile(TdmsWarning):
    """ Reading stopped at a corrupt segment after at least one valid segment

    :ivar segment_index: Ordinal of the segment that could not be read
    :ivar position: Byte position of that segment in the file
    :ivar cause: The error raised while reading it
    """

    def __init__(self, segment_index, position, cause):
        super(PartialFile, self).__init__(
            "Could not read segment %d at position %d, only the preceding segments were read: %s" %
            (segment_index, position, cause))
        self.segment_index = segment_index
        self.position = position
        self.cause = cause


class TruncatedFinalSegment(TdmsWarning):
    """ The last segment holds less raw data than its metadata declares

    :ivar segment_index: Ordinal of the truncated segment
    :ivar expected_size: Raw data size in bytes implied by the segment metadata
    :ivar available_size: Raw data size in bytes actually present
    """

    def __init__(self, segment_index, expected_size, available_size):
        super(TruncatedFinalSegment, self).__init__(
            "Final segment %d is truncated, expected %d bytes of raw data but %d are available" %
            (segment_index, expected_size, available_size))
        self.segment_index = segment_index
        self.expected_size = expected_size
        self.available_size = available_size
