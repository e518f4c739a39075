""" Python module for indexing TDMS files produced by LabView

    This module contains the public facing API for inspecting the structure of
    a TDMS file and reading raw channel data
"""

from rawtdms import types
from rawtdms.channel_data import (
    channel_data_chunks, channel_values, concatenate_channel_data, concatenate_scaler_data)
from rawtdms.exceptions import PartialFile, TruncatedFinalSegment, TypeMismatchError
from rawtdms.log import log_manager


log = log_manager.get_logger(__name__)


class TdmsIndex(object):
    """ The structure of a TDMS file and the locations of all channel data within it

    A TdmsIndex is created with :func:`rawtdms.read_index` and is not modified once built.
    Channel data is read from the byte source lazily when requested::

        index = read_index(tdms_file_path)
        for value in index.channel_values("/'group'/'channel'"):
            # Use value
            ...

    This class acts like a dictionary, where the keys are names of groups in the TDMS
    file and the values are TdmsGroup objects.

    :ivar ~.properties: Dictionary of properties of the root object of the file
    :ivar ~.groups: Dictionary of group name to TdmsGroup, in the order groups were first seen
    :ivar ~.channels: Dictionary of channel path to TdmsChannel, in the order channels were first seen
    :ivar ~.segments: List of TdmsSegment in file order
    :ivar ~.diagnostics: List of PartialFile and TruncatedFinalSegment warnings
        for problems found while building the index
    """

    def __init__(self, source, segments, object_metadata, diagnostics, owns_source=False):
        self._source = source
        self._owns_source = owns_source
        self.segments = segments
        self.diagnostics = diagnostics
        self.properties = {}
        self.groups = {}
        self.channels = {}

        group_channels = {}
        for (path, obj) in object_metadata.items():
            object_path = obj.object_path
            if object_path.is_root:
                self.properties = obj.properties
            elif object_path.is_group:
                group_channels[object_path.group] = []
                self.groups[object_path.group] = TdmsGroup(path, object_path.group, obj.properties)
            else:
                channel = TdmsChannel(path, object_path, obj)
                self.channels[path] = channel
                group_channels[object_path.group].append(channel)
        for group_name, channels in group_channels.items():
            self.groups[group_name]._set_channels(channels)

    @property
    def source(self):
        """ The byte source channel data is read from
        """
        return self._source

    @property
    def partial(self):
        """ Whether reading stopped early at a segment that could not be read
        """
        return any(isinstance(d, PartialFile) for d in self.diagnostics)

    @property
    def truncated(self):
        """ Whether the final segment holds less data than its metadata declares
        """
        return any(isinstance(d, TruncatedFinalSegment) for d in self.diagnostics)

    def channel(self, path):
        """ Get a channel by its path

        :param path: Channel path string, for example "/'group'/'channel'", or a TdmsChannel
        :rtype: TdmsChannel
        """
        if isinstance(path, TdmsChannel):
            path = path.path
        try:
            return self.channels[path]
        except KeyError:
            raise KeyError("There is no channel with path %s in the TDMS file" % path)

    def channel_values(self, path, data_type=None):
        """ Returns a new iterator over all values of a channel, reading data as it is needed

        :param path: Channel path string or a TdmsChannel
        :param data_type: Optional TDMS data type class the values are expected to have.
            TypeMismatchError is raised immediately if the channel has a different type.
        :returns: A generator of values. For DAQmx raw data channels each value is
            a dictionary of scale id to the scaler value.
        """
        channel = self.channel(path)
        if data_type is not None and data_type != channel.data_type:
            raise TypeMismatchError(
                "Channel %s has data type %s but %s was requested" %
                (channel.path, _type_name(channel.data_type), _type_name(data_type)))
        return channel_values(self._source, self.segments, channel.locations)

    def channel_data_chunks(self, path):
        """ Returns a new iterator over the data of a channel, with one RawChannelDataChunk per data location
        """
        channel = self.channel(path)
        return channel_data_chunks(self._source, self.segments, channel.locations)

    def read_channel_data(self, path):
        """ Read all data for a channel

        :returns: A numpy array, a TimestampArray for timestamp data,
            or an object array for strings and extended floats
        """
        channel = self.channel(path)
        if channel.data_type == types.DaqMxRawData:
            raise TypeMismatchError(
                "Channel %s holds DAQmx raw data, use read_scaler_data to read it" % channel.path)
        chunks = channel_data_chunks(self._source, self.segments, channel.locations)
        return concatenate_channel_data(chunks, channel.data_type)

    def read_scaler_data(self, path):
        """ Read all DAQmx scaler data for a channel

        :returns: Dictionary of scale id to a numpy array of raw scaler values
        """
        channel = self.channel(path)
        if channel.scaler_data_types is None:
            raise TypeMismatchError("Channel %s does not hold DAQmx raw data" % channel.path)
        chunks = channel_data_chunks(self._source, self.segments, channel.locations)
        return concatenate_scaler_data(chunks, channel.data_type, channel.scaler_data_types)

    def close(self):
        """ Close the byte source if it was opened by read_index from a path
        """
        if self._owns_source and self._source is not None:
            self._source.close()
            self._source = None

    def __len__(self):
        """ Returns the number of groups in this file
        """
        return len(self.groups)

    def __iter__(self):
        """ Returns an iterator over the names of groups in this file
        """
        return iter(self.groups)

    def __getitem__(self, group_name):
        """ Retrieve a TDMS group from the file by name
        """
        try:
            return self.groups[group_name]
        except KeyError:
            raise KeyError("There is no group named '%s' in the TDMS file" % group_name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        return "<TdmsIndex with %d segments, %d groups and %d channels>" % (
            len(self.segments), len(self.groups), len(self.channels))


class TdmsGroup(object):
    """ Represents a group of channels in a TDMS file.

    This class acts like a dictionary, where the keys are names of channels in the group
    and the values are TdmsChannel objects.

    :ivar ~.properties: Dictionary of TDMS properties defined for this group.
    """

    def __init__(self, path, name, properties):
        self.path = path
        self.name = name
        self.properties = properties
        self._channels = {}

    def _set_channels(self, channels):
        self._channels = dict((c.name, c) for c in channels)

    def __repr__(self):
        return "<TdmsGroup with path %s>" % self.path

    def channels(self):
        """ The list of channels in this group

        :rtype: A list of TdmsChannel
        """
        return list(self._channels.values())

    def __len__(self):
        """ Returns the number of channels in this group
        """
        return len(self._channels)

    def __iter__(self):
        """ Returns an iterator over the names of channels in this group
        """
        return iter(self._channels)

    def __getitem__(self, channel_name):
        """ Retrieve a TDMS channel from this group by name
        """
        try:
            return self._channels[channel_name]
        except KeyError:
            raise KeyError(
                "There is no channel named '%s' in group '%s' of the TDMS file" %
                (channel_name, self.name))


class TdmsChannel(object):
    """ Represents a data channel in a TDMS file.

    The length of a channel is the total number of values over all of its data locations.

    :ivar ~.path: Path of the channel object
    :ivar ~.properties: Dictionary of TDMS properties defined for this channel,
                      for example the start time and time increment for waveforms.
    :ivar ~.data_type: TDMS data type class of the channel, or None if the channel never has data
    :ivar ~.scalers: List of DAQmx scalers for DAQmx channels, otherwise None
    :ivar ~.scaler_data_types: Dictionary of DAQmx scale id to data type for DAQmx channels, otherwise None
    :ivar ~.locations: List of data locations in file order
    """

    def __init__(self, path, object_path, object_metadata):
        self.path = path
        self._object_path = object_path
        self.properties = object_metadata.properties
        self.data_type = object_metadata.data_type
        self.scalers = object_metadata.scalers
        self.scaler_data_types = object_metadata.scaler_data_types
        self.locations = object_metadata.locations
        self._length = object_metadata.num_values

    def __repr__(self):
        return "<TdmsChannel with path %s>" % self.path

    def __len__(self):
        """ Returns the number of values in this channel
        """
        return self._length

    @property
    def name(self):
        """ The name of this channel
        """
        return self._object_path.channel

    @property
    def group_name(self):
        """ The name of the group that contains this channel
        """
        return self._object_path.group


def _type_name(data_type):
    return 'None' if data_type is None else data_type.__name__
