""" Utilities for testing TDMS reading
"""

import binascii
from contextlib import contextmanager
import os
import struct
import tempfile
import numpy as np

from rawtdms import types
from rawtdms.reader import read_index
from rawtdms.source import BytesSource


# Raw data index headers
NO_RAW_DATA = "FF FF FF FF"
MATCHES_PREVIOUS = "00 00 00 00"

# Type codes used for channel data and properties
INT32_TYPE = types.Int32.enum_value
DOUBLE_TYPE = types.DoubleFloat.enum_value
STRING_TYPE = types.String.enum_value


def string_hexlify(input_string):
    """Return hex string representation of string"""
    return binascii.hexlify(input_string.encode('utf-8')).decode('utf-8')


def hexlify_value(struct_type, value):
    """Return hex string representation of a value"""
    return binascii.hexlify(struct.pack(struct_type, value)).decode('utf-8')


def values_hex(struct_type, values):
    """ Hex for a sequence of values packed with the same struct type, eg. "<i" """
    return "".join(hexlify_value(struct_type, v) for v in values)


def hex_string(value):
    """ Hex for a length prefixed string as used in metadata """
    return hexlify_value('<I', len(value.encode('utf-8'))) + string_hexlify(value)


def segment_objects_metadata(*args, endianness='<'):
    """ Metadata for multiple objects in a segment
    """
    return hexlify_value(endianness + "I", len(args)) + "".join(args)


def object_metadata(path, raw_data_index, properties=None, endianness='<'):
    """ Metadata for a single object, given the hex of its raw data index """
    return hex_string(path) + raw_data_index + hex_properties(properties, endianness)


def root_metadata(properties=None):
    return object_metadata("/", NO_RAW_DATA, properties)


def group_metadata(group_name='Group', properties=None):
    return object_metadata("/'%s'" % group_name, NO_RAW_DATA, properties)


def channel_metadata(channel_name, data_type, num_values, properties=None, endianness='<'):
    raw_data_index = (
        # Index length, data type and dimension
        values_hex(endianness + 'I', [20, data_type, 1]) +
        hexlify_value(endianness + 'Q', num_values))
    return object_metadata(channel_name, raw_data_index, properties, endianness)


def string_channel_metadata(channel_name, num_values, total_size, properties=None):
    raw_data_index = (
        values_hex('<I', [28, STRING_TYPE, 1]) +
        # Number of values then total size in bytes of the string data
        values_hex('<Q', [num_values, total_size]))
    return object_metadata(channel_name, raw_data_index, properties)


def hex_properties(properties, endianness='<'):
    """ Hex for a property list, from a dictionary of name to (type code, value hex)
    """
    if properties is None:
        properties = {}
    props_hex = hexlify_value(endianness + 'I', len(properties))
    for (prop_name, (prop_type, prop_value)) in properties.items():
        props_hex += hex_string(prop_name)
        props_hex += hexlify_value(endianness + 'I', prop_type)
        props_hex += prop_value
    return props_hex


def channel_metadata_with_repeated_structure(channel_name):
    return object_metadata(channel_name, MATCHES_PREVIOUS)


def channel_metadata_with_no_data(channel_name):
    return object_metadata(channel_name, NO_RAW_DATA)


def string_data(*values):
    """ Hex for raw string data: a table of end offsets followed by the UTF-8 bytes """
    encoded = [v.encode('utf-8') for v in values]
    offsets = []
    end = 0
    for value in encoded:
        end += len(value)
        offsets.append(hexlify_value('<I', end))
    return "".join(offsets) + "".join(binascii.hexlify(v).decode('utf-8') for v in encoded)


def basic_segment():
    """Basic TDMS segment with one group and two Int32 channels"""

    toc = ("kTocMetaData", "kTocRawData", "kTocNewObjList")
    metadata = segment_objects_metadata(
        group_metadata(properties={
            "prop": (STRING_TYPE, hex_string("value")),
            "num": (INT32_TYPE, hexlify_value("<i", 10)),
        }),
        channel_metadata("/'Group'/'Channel1'", INT32_TYPE, 2),
        channel_metadata("/'Group'/'Channel2'", INT32_TYPE, 2, properties={
            "wf_start_offset": (DOUBLE_TYPE, hexlify_value("<d", 0.0)),
            "wf_increment": (DOUBLE_TYPE, hexlify_value("<d", 0.1)),
        }),
        root_metadata(properties={
            "num": (INT32_TYPE, hexlify_value("<i", 15)),
        }),
    )
    data = values_hex("<i", [1, 2, 3, 4])
    return toc, metadata, data


_toc_bits = {
    "kTocMetaData": 1 << 1,
    "kTocNewObjList": 1 << 2,
    "kTocRawData": 1 << 3,
    "kTocInterleavedData": 1 << 5,
    "kTocBigEndian": 1 << 6,
    "kTocDAQmxRawData": 1 << 7,
}


class GeneratedFile(object):
    """Generate a TDMS file for testing"""

    def __init__(self):
        # List of (lead in, metadata, raw data) bytes
        self._segments = []

    def add_segment(
            self, toc, metadata, data, incomplete=False, binary_data=False,
            version=4713, next_segment_offset=None, tag=b'TDSm'):
        """ Add a segment to the file

        :param toc: Names of table of contents flags to set, or None to write no lead in
        :param metadata: Hex string of the metadata
        :param data: Hex string of the raw data, or bytes if binary_data is set
        :param incomplete: Write the next segment offset as the unknown size marker
        :param next_segment_offset: Override the next segment offset written in the lead in
        """
        metadata_bytes = hex_to_bytes(metadata)
        data_bytes = data if binary_data else hex_to_bytes(data)
        lead_in = b''
        if toc is not None:
            unknown = [name for name in toc if name not in _toc_bits]
            if unknown:
                raise ValueError("Unrecognised TOC value: %s" % unknown[0])
            toc_mask = sum(_toc_bits[name] for name in set(toc))
            endianness = '>' if "kTocBigEndian" in toc else '<'
            if incomplete:
                next_segment_offset = 0xFFFFFFFFFFFFFFFF
            elif next_segment_offset is None:
                next_segment_offset = len(metadata_bytes) + len(data_bytes)
            lead_in = (
                tag + struct.pack('<I', toc_mask) +
                struct.pack(endianness + 'IQQ', version, next_segment_offset, len(metadata_bytes)))
        self._segments.append((lead_in, metadata_bytes, data_bytes))

    def add_bytes(self, data):
        """ Append raw bytes that are not a segment """
        self._segments.append((b'', b'', data))

    def get_bytes(self):
        return b''.join(b''.join(segment) for segment in self._segments)

    def get_index_bytes(self):
        """ Contents of the matching index file, with only the lead in and metadata of each segment """
        return b''.join(
            b'TDSh' + lead_in[4:] + metadata
            for (lead_in, metadata, _) in self._segments if lead_in)

    @contextmanager
    def get_tempfile(self, with_index=False):
        """ Write the file to a temporary directory and yield its path """
        with tempfile.TemporaryDirectory() as directory:
            tdms_path = os.path.join(directory, 'test_file.tdms')
            with open(tdms_path, 'wb') as file:
                file.write(self.get_bytes())
            if with_index:
                with open(tdms_path + '_index', 'wb') as file:
                    file.write(self.get_index_bytes())
            yield tdms_path

    def get_tempfile_with_index(self):
        return self.get_tempfile(with_index=True)

    def load(self, with_index=False):
        """ Build an index of the generated file from in-memory bytes """
        index_source = BytesSource(self.get_index_bytes()) if with_index else None
        return read_index(BytesSource(self.get_bytes()), index_source)


def hex_to_bytes(hex_data):
    """ Converts a string of hex to a byte array
    """
    return binascii.unhexlify(
        hex_data.replace(" ", "").replace("\n", "").encode('utf-8'))


def compare_arrays(actual_data, expected_data):
    try:
        np.testing.assert_almost_equal(actual_data, expected_data)
    except TypeError:
        # Cannot compare given types
        assert len(actual_data) == len(expected_data)
        for (actual, expected) in zip(actual_data, expected_data):
            assert actual == expected
