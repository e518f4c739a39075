""" Lazy reading of channel data from the locations recorded in a TDMS index
"""

import numpy as np

from rawtdms import types
from rawtdms.log import log_manager
from rawtdms.timestamp import concatenate_timestamps

log = log_manager.get_logger(__name__)


def channel_data_chunks(source, segments, locations):
    """ Generator of RawChannelDataChunk, one for each data location of a channel

    Each location is read using the byte order of the segment it belongs to.
    A location that can't be fully read raises TruncatedDataError when it is reached,
    after the chunks for all earlier locations have been yielded.
    """
    for location in locations:
        endianness = segments[location.segment_index].endianness
        log.debug("Reading %r", location)
        yield location.read_data(source, endianness)


def channel_values(source, segments, locations):
    """ Generator of the individual values of a channel
    """
    for chunk in channel_data_chunks(source, segments, locations):
        for value in chunk:
            yield value


def concatenate_channel_data(chunks, data_type):
    """ Join the data of channel chunks into a single array

    Data is converted to native byte order.
    """
    arrays = [chunk.data for chunk in chunks if chunk.data is not None]
    return _concatenate(arrays, data_type)


def concatenate_scaler_data(chunks, data_type, scaler_data_types):
    """ Join DAQmx scaler data from channel chunks into a dictionary of scale id to array
    """
    scaler_arrays = dict((scale_id, []) for scale_id in scaler_data_types)
    for chunk in chunks:
        if chunk.scaler_data is not None:
            for scale_id, data in chunk.scaler_data.items():
                scaler_arrays[scale_id].append(data)
        elif chunk.data is not None:
            # Typed DAQmx channels have a single scaler
            (scale_id, ) = scaler_arrays.keys()
            scaler_arrays[scale_id].append(chunk.data)
    return dict(
        (scale_id, _concatenate(arrays, scaler_data_types[scale_id]))
        for (scale_id, arrays) in scaler_arrays.items())


def _concatenate(arrays, data_type):
    if data_type == types.TimeStamp:
        return concatenate_timestamps(arrays)
    dtype = _native_dtype(data_type)
    if len(arrays) == 0:
        return np.empty(0, dtype=dtype)
    return np.concatenate([np.asarray(a, dtype=dtype) for a in arrays])


def _native_dtype(data_type):
    if data_type is None or data_type.nptype is None:
        return np.dtype('O')
    return data_type.nptype.newbyteorder('=')
