"""Module for indexing binary TDMS files produced by LabView and reading their raw data"""


# Make version number available
from .version import __version_info__, __version__

# Export public objects
from .reader import read_index, TdmsReader
from .tdms import TdmsIndex, TdmsGroup, TdmsChannel
from .source import BytesSource, FileSource
from .timestamp import TdmsTimestamp, TimestampArray
from .exceptions import (
    TdmsError,
    DecodeError,
    TruncatedDataError,
    MalformedStringError,
    MalformedMetadataError,
    InvalidSegmentTagError,
    InvalidFileError,
    TypeMismatchError,
    TdmsWarning,
    PartialFile,
    TruncatedFinalSegment)
