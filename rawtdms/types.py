"""Conversions from the bytes representation of values in TDMS files"""

import math
import struct
import numpy as np

from rawtdms import codec
from rawtdms.exceptions import MalformedMetadataError, TruncatedDataError
from rawtdms.timestamp import TdmsTimestamp, TimestampArray


__all__ = [
    'tds_data_types',
    'TdmsType',
    'Void',
    'Int8',
    'Int16',
    'Int32',
    'Int64',
    'Uint8',
    'Uint16',
    'Uint32',
    'Uint64',
    'SingleFloat',
    'DoubleFloat',
    'ExtendedFloat',
    'SingleFloatWithUnit',
    'DoubleFloatWithUnit',
    'ExtendedFloatWithUnit',
    'String',
    'Boolean',
    'TimeStamp',
    'FixedPoint',
    'ComplexSingleFloat',
    'ComplexDoubleFloat',
    'DaqMxRawData',
    'ExtendedFloatValue',
]


_struct_pack = struct.pack


tds_data_types = {}


def tds_data_type(enum_value, np_type):
    def decorator(cls):
        cls.enum_value = enum_value
        cls.nptype = None if np_type is None else np.dtype(np_type)
        if enum_value is not None:
            tds_data_types[enum_value] = cls
        return cls
    return decorator


def get_data_type(type_code):
    """ Look up a data type class from its TDMS type code
    """
    try:
        return tds_data_types[type_code]
    except KeyError:
        raise MalformedMetadataError("Unrecognised data type code: 0x%08X" % type_code)


class TdmsType(object):
    """ Base class for TDMS data types

    :cvar size: Width of a single value in bytes, or None for variable width types
    :cvar nptype: numpy dtype values are decoded to, or None if there is no direct equivalent
    """
    size = None
    nptype = None

    @classmethod
    def read(cls, data, offset, endianness="<"):
        """ Read a single value, returning the value and the number of bytes consumed
        """
        raise MalformedMetadataError("Unsupported data type to read a value of: %s" % cls.__name__)

    @classmethod
    def encode(cls, value, endianness="<"):
        raise NotImplementedError("Unsupported data type to encode: %s" % cls.__name__)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        """ Convert a numpy array of packed value bytes into an array of values
        """
        if cls.size is None:
            raise NotImplementedError("Cannot convert bytes of unsized type %s" % cls.__name__)
        byte_data = byte_array.tobytes()
        number_values = len(byte_data) // cls.size
        values = np.empty(number_values, dtype=np.dtype('O'))
        for i in range(number_values):
            values[i] = cls.read(byte_data, i * cls.size, endianness)[0]
        return values

    @classmethod
    def read_values(cls, data, number_values, endianness="<"):
        """ Read number_values values from raw data bytes
        """
        if cls.size is None:
            raise NotImplementedError("Unsupported data type to read values of: %s" % cls.__name__)
        length = number_values * cls.size
        codec.check_length(data, 0, length)
        return cls.from_bytes(np.frombuffer(data, dtype=np.uint8, count=length), endianness)


class StructType(TdmsType):
    struct_declaration = None

    @classmethod
    def read(cls, data, offset, endianness="<"):
        return codec.read_struct(data, offset, endianness, cls.struct_declaration)

    @classmethod
    def encode(cls, value, endianness="<"):
        return _struct_pack(endianness + cls.struct_declaration, value)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        return np.ascontiguousarray(byte_array).view(cls.nptype.newbyteorder(endianness))


@tds_data_type(0, None)
class Void(TdmsType):
    size = 0

    @classmethod
    def read(cls, data, offset, endianness="<"):
        return None, 0

    @classmethod
    def encode(cls, value, endianness="<"):
        return b''


@tds_data_type(1, np.int8)
class Int8(StructType):
    size = 1
    struct_declaration = "b"


@tds_data_type(2, np.int16)
class Int16(StructType):
    size = 2
    struct_declaration = "h"


@tds_data_type(3, np.int32)
class Int32(StructType):
    size = 4
    struct_declaration = "l"


@tds_data_type(4, np.int64)
class Int64(StructType):
    size = 8
    struct_declaration = "q"


@tds_data_type(5, np.uint8)
class Uint8(StructType):
    size = 1
    struct_declaration = "B"


@tds_data_type(6, np.uint16)
class Uint16(StructType):
    size = 2
    struct_declaration = "H"


@tds_data_type(7, np.uint32)
class Uint32(StructType):
    size = 4
    struct_declaration = "L"


@tds_data_type(8, np.uint64)
class Uint64(StructType):
    size = 8
    struct_declaration = "Q"


@tds_data_type(9, np.single)
class SingleFloat(StructType):
    size = 4
    struct_declaration = "f"


@tds_data_type(10, np.double)
class DoubleFloat(StructType):
    size = 8
    struct_declaration = "d"


class ExtendedFloatValue(object):
    """ An 80 bit extended precision float, kept exactly as stored

    :ivar sign_exponent: Sign bit and 15 bit biased exponent
    :ivar mantissa: 64 bit mantissa including the explicit integer bit
    """

    __slots__ = ['sign_exponent', 'mantissa']

    _bias = 16383

    def __init__(self, sign_exponent, mantissa):
        self.sign_exponent = sign_exponent
        self.mantissa = mantissa

    @classmethod
    def from_float(cls, value):
        sign = 0x8000 if math.copysign(1.0, value) < 0 else 0
        if value == 0.0:
            return cls(sign, 0)
        if math.isinf(value):
            return cls(sign | 0x7FFF, 1 << 63)
        if math.isnan(value):
            return cls(0x7FFF, 0xC000000000000000)
        fraction, exponent = math.frexp(abs(value))
        return cls(sign | (exponent - 1 + cls._bias), int(fraction * 2 ** 64))

    def __float__(self):
        sign = -1.0 if self.sign_exponent & 0x8000 else 1.0
        exponent = self.sign_exponent & 0x7FFF
        if exponent == 0x7FFF:
            if self.mantissa & ((1 << 63) - 1):
                return float('nan')
            return sign * float('inf')
        if exponent == 0:
            exponent = 1
        try:
            return sign * math.ldexp(self.mantissa, exponent - self._bias - 63)
        except OverflowError:
            return sign * float('inf')

    def __eq__(self, other):
        if isinstance(other, ExtendedFloatValue):
            return self.sign_exponent == other.sign_exponent and self.mantissa == other.mantissa
        if isinstance(other, (int, float)):
            return float(self) == other
        return NotImplemented

    def __hash__(self):
        return hash((self.sign_exponent, self.mantissa))

    def __repr__(self):
        return "ExtendedFloatValue(%r)" % float(self)


class ExtendedFloatType(TdmsType):
    size = 10

    @classmethod
    def read(cls, data, offset, endianness="<"):
        if endianness == "<":
            (mantissa, sign_exponent), size = codec.read_structs(data, offset, endianness, 'QH')
        else:
            (sign_exponent, mantissa), size = codec.read_structs(data, offset, endianness, 'HQ')
        return ExtendedFloatValue(sign_exponent, mantissa), size

    @classmethod
    def encode(cls, value, endianness="<"):
        if not isinstance(value, ExtendedFloatValue):
            value = ExtendedFloatValue.from_float(float(value))
        if endianness == "<":
            return _struct_pack('<QH', value.mantissa, value.sign_exponent)
        return _struct_pack('>HQ', value.sign_exponent, value.mantissa)


@tds_data_type(11, None)
class ExtendedFloat(ExtendedFloatType):
    pass


@tds_data_type(0x19, np.single)
class SingleFloatWithUnit(StructType):
    size = 4
    struct_declaration = "f"


@tds_data_type(0x1A, np.double)
class DoubleFloatWithUnit(StructType):
    size = 8
    struct_declaration = "d"


@tds_data_type(0x1B, None)
class ExtendedFloatWithUnit(ExtendedFloatType):
    pass


@tds_data_type(0x20, None)
class String(TdmsType):

    @classmethod
    def read(cls, data, offset, endianness="<"):
        return codec.read_string(data, offset, endianness)

    @classmethod
    def encode(cls, value, endianness="<"):
        content = value.encode('utf-8')
        return _struct_pack('<L', len(content)) + content

    @classmethod
    def read_values(cls, data, number_values, endianness="<"):
        """ Read string raw data

            This is stored as an array of end offsets
            followed by the contiguous string data.
        """
        offsets = [0]
        position = 0
        for _ in range(number_values):
            offset, size = codec.read_u32(data, position, endianness)
            offsets.append(offset)
            position += size
        strings = np.empty(number_values, dtype=np.dtype('O'))
        for i in range(number_values):
            start = position + offsets[i]
            end = position + offsets[i + 1]
            if end < start:
                raise TruncatedDataError("String offsets are not increasing at value %d" % i)
            codec.check_length(data, start, end - start)
            strings[i] = codec.decode_utf8(data[start:end])
        return strings


@tds_data_type(0x21, np.bool_)
class Boolean(StructType):
    size = 1
    struct_declaration = "B"

    @classmethod
    def read(cls, data, offset, endianness="<"):
        value, size = super(Boolean, cls).read(data, offset, endianness)
        return bool(value), size

    @classmethod
    def encode(cls, value, endianness="<"):
        return _struct_pack('B', 1 if value else 0)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        return np.ascontiguousarray(byte_array) != 0


@tds_data_type(0x44, None)
class TimeStamp(TdmsType):
    # Time stamps are stored as number of seconds since
    # 01/01/1904 00:00:00.00 UTC, ignoring leap seconds,
    # and number of 2^-64 fractions of a second.
    # Note that the TDMS epoch is not the Unix epoch.
    size = 16

    @classmethod
    def read(cls, data, offset, endianness="<"):
        return codec.read_timestamp(data, offset, endianness)

    @classmethod
    def encode(cls, value, endianness="<"):
        if endianness == "<":
            return _struct_pack('<Qq', value.second_fractions, value.seconds)
        return _struct_pack('>qQ', value.seconds, value.second_fractions)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        """ Convert an array of bytes to an array of timestamps
        """
        byte_array = np.ascontiguousarray(byte_array)
        if endianness == "<":
            dtype = np.dtype([('second_fractions', '<u8'), ('seconds', '<i8')])
        else:
            dtype = np.dtype([('seconds', '>i8'), ('second_fractions', '>u8')])
        return TimestampArray(byte_array.view(dtype).reshape(-1))


@tds_data_type(0x4F, np.uint64)
class FixedPoint(StructType):
    # Fixed point values are exposed as their raw 64 bit pattern
    size = 8
    struct_declaration = "Q"


@tds_data_type(0x08000c, np.complex64)
class ComplexSingleFloat(TdmsType):
    size = 8

    @classmethod
    def read(cls, data, offset, endianness="<"):
        (real, imag), size = codec.read_structs(data, offset, endianness, 'ff')
        return complex(real, imag), size

    @classmethod
    def encode(cls, value, endianness="<"):
        return _struct_pack(endianness + 'ff', value.real, value.imag)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        return np.ascontiguousarray(byte_array).view(cls.nptype.newbyteorder(endianness))


@tds_data_type(0x10000d, np.complex128)
class ComplexDoubleFloat(TdmsType):
    size = 16

    @classmethod
    def read(cls, data, offset, endianness="<"):
        (real, imag), size = codec.read_structs(data, offset, endianness, 'dd')
        return complex(real, imag), size

    @classmethod
    def encode(cls, value, endianness="<"):
        return _struct_pack(endianness + 'dd', value.real, value.imag)

    @classmethod
    def from_bytes(cls, byte_array, endianness="<"):
        return np.ascontiguousarray(byte_array).view(cls.nptype.newbyteorder(endianness))


@tds_data_type(0xFFFFFFFF, None)
class DaqMxRawData(TdmsType):
    pass
