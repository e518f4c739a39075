""" Readers for the fixed width primitive values that make up TDMS metadata

Every reader takes a bytes-like object, an offset into it and a byte order
('<' or '>'), and returns a tuple of the decoded value and the number of bytes consumed.
"""

import struct

from rawtdms.exceptions import TruncatedDataError, MalformedStringError
from rawtdms.log import log_manager
from rawtdms.timestamp import TdmsTimestamp


log = log_manager.get_logger(__name__)

_structs = {}


def _get_struct(format_string):
    try:
        return _structs[format_string]
    except KeyError:
        compiled = struct.Struct(format_string)
        _structs[format_string] = compiled
        return compiled


def check_length(data, offset, length):
    """ Raise TruncatedDataError unless data holds length bytes starting at offset
    """
    if offset < 0 or offset + length > len(data):
        raise TruncatedDataError(
            "Expected %d bytes at offset %d but only %d are available" %
            (length, offset, max(0, len(data) - offset)))


def read_struct(data, offset, endianness, struct_declaration):
    """ Read a single value described by a struct format character
    """
    compiled = _get_struct(endianness + struct_declaration)
    check_length(data, offset, compiled.size)
    return compiled.unpack_from(data, offset)[0], compiled.size


def read_structs(data, offset, endianness, struct_declaration):
    """ Read several consecutive values, returning a tuple of values and the bytes consumed
    """
    compiled = _get_struct(endianness + struct_declaration)
    check_length(data, offset, compiled.size)
    return compiled.unpack_from(data, offset), compiled.size


def read_u8(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'B')


def read_u16(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'H')


def read_u32(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'L')


def read_u64(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'Q')


def read_i8(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'b')


def read_i16(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'h')


def read_i32(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'l')


def read_i64(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'q')


def read_f32(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'f')


def read_f64(data, offset, endianness='<'):
    return read_struct(data, offset, endianness, 'd')


def read_string(data, offset, endianness='<'):
    """ Read a string stored as a u32 byte length followed by UTF-8 bytes

    The length prefix is always little endian, whatever the byte order of the segment,
    so the endianness argument is accepted only for a uniform reader signature.
    """
    length, prefix_size = read_u32(data, offset, '<')
    start = offset + prefix_size
    check_length(data, start, length)
    return decode_utf8(data[start:start + length]), prefix_size + length


def decode_utf8(string_bytes):
    try:
        return bytes(string_bytes).decode('utf-8')
    except UnicodeDecodeError as exc:
        log.debug("Invalid UTF-8 bytes: %r", bytes(string_bytes))
        raise MalformedStringError("String value %r is not valid UTF-8" % bytes(string_bytes)) from exc


def read_timestamp(data, offset, endianness='<'):
    """ Read a TDMS timestamp

    Timestamps are a 128 bit fixed point number, so in little endian order the
    fractions of a second come before the seconds and in big endian order after.
    """
    if endianness == '<':
        (second_fractions, seconds), size = read_structs(data, offset, endianness, 'Qq')
    else:
        (seconds, second_fractions), size = read_structs(data, offset, endianness, 'qQ')
    return TdmsTimestamp(seconds, second_fractions), size
