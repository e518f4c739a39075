import re


LITTLE_ENDIAN = '<'
BIG_ENDIAN = '>'

LEAD_IN_SIZE = 28
SEGMENT_TAG = b'TDSm'
INDEX_SEGMENT_TAG = b'TDSh'
INCOMPLETE_SEGMENT_OFFSET = 0xFFFFFFFFFFFFFFFF
KNOWN_VERSIONS = (4712, 4713)

toc_properties = {
    'kTocMetaData': (1 << 1),
    'kTocNewObjList': (1 << 2),
    'kTocRawData': (1 << 3),
    'kTocInterleavedData': (1 << 5),
    'kTocBigEndian': (1 << 6),
    'kTocDAQmxRawData': (1 << 7),
}

# A path component is a quoted name where quotes are escaped by doubling them
_COMPONENT = re.compile(r"/'((?:[^']|'')*)'")


def toc_endianness(toc_mask):
    """ Byte order used by all multi-byte fields of a segment after its table of contents
    """
    return BIG_ENDIAN if (toc_mask & toc_properties['kTocBigEndian']) else LITTLE_ENDIAN


class ObjectPath(object):
    """ Path of the root, a group or a channel object, eg. "/'group'/'channel'"

        :ivar group: Group name or None for the root object
        :ivar channel: Channel name or None for the root object or a group object
    """

    def __init__(self, group=None, channel=None):
        if group is None and channel is not None:
            raise ValueError("A channel path requires a group name")
        self.group = group
        self.channel = channel
        self._path = _format_path(group, channel)

    @property
    def is_root(self):
        return self.group is None

    @property
    def is_group(self):
        return self.group is not None and self.channel is None

    @property
    def is_channel(self):
        return self.channel is not None

    def group_path(self):
        """ For channel paths, returns the path of the channel's group as a string
        """
        return _format_path(self.group, None)

    @staticmethod
    def from_string(path_string):
        """ Parse a path string, raising ValueError if it is not a valid object path
        """
        if path_string == '/':
            return ObjectPath()
        names = []
        position = 0
        while position < len(path_string):
            match = _COMPONENT.match(path_string, position)
            if match is None:
                raise ValueError(
                    "Invalid object path %r, expected a quoted name at position %d" % (path_string, position))
            names.append(match.group(1).replace("''", "'"))
            position = match.end()
        if not names:
            raise ValueError("Invalid object path %r" % path_string)
        if len(names) > 2:
            raise ValueError("Object path %r may only have up to two components" % path_string)
        return ObjectPath(*names)

    def __eq__(self, other):
        return isinstance(other, ObjectPath) and self._path == other._path

    def __hash__(self):
        return hash(self._path)

    def __repr__(self):
        return "ObjectPath(%r)" % self._path

    def __str__(self):
        return self._path


def _format_path(group, channel):
    names = [name for name in (group, channel) if name is not None]
    return '/' + '/'.join("'%s'" % name.replace("'", "''") for name in names)
