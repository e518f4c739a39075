"""Test building an index of TDMS files"""

import logging
import os
from pathlib import Path
from shutil import copyfile
import numpy as np
import pytest

from rawtdms import read_index, types
from rawtdms import source as source_module
from rawtdms.exceptions import (
    InvalidFileError,
    InvalidSegmentTagError,
    MalformedMetadataError,
    PartialFile,
    TruncatedDataError,
    TruncatedFinalSegment,
    TypeMismatchError)
from rawtdms.log import log_manager
from rawtdms.source import BytesSource
from rawtdms.timestamp import TdmsTimestamp, TimestampArray
from rawtdms.test.util import (
    GeneratedFile,
    STRING_TYPE,
    basic_segment,
    channel_metadata,
    channel_metadata_with_repeated_structure,
    compare_arrays,
    group_metadata,
    hex_string,
    hex_to_bytes,
    hexlify_value,
    root_metadata,
    segment_objects_metadata,
    string_channel_metadata,
    string_data,
    values_hex,
)
from rawtdms.test import scenarios


NEW_OBJECTS = ("kTocMetaData", "kTocRawData", "kTocNewObjList")
NEW_INTERLEAVED_OBJECTS = NEW_OBJECTS + ("kTocInterleavedData", )
INT32 = scenarios.TDS_TYPE_INT32
CHANNEL_1 = "/'group'/'channel1'"
CHANNEL_2 = "/'group'/'channel2'"


def _int32_hex(*values):
    return values_hex("<i", values)


def _single_segment_file(objects, data, toc=NEW_OBJECTS, **kwargs):
    test_file = GeneratedFile()
    test_file.add_segment(toc, segment_objects_metadata(*objects), data, **kwargs)
    return test_file


def _load_error_cause(test_file):
    with pytest.raises(InvalidFileError) as exc_info:
        test_file.load()
    return exc_info.value.__cause__


def _check_data(index, expected_data):
    for (path, expected) in expected_data.items():
        compare_arrays(_comparable(index.read_channel_data(path)), expected)


def _comparable(data):
    if isinstance(data, TimestampArray):
        return data.as_datetime64('us')
    return data


def _comparable_value(value):
    if isinstance(value, TdmsTimestamp):
        return value.as_datetime64('us')
    return value


@pytest.fixture
def basic_index():
    test_file = GeneratedFile()
    test_file.add_segment(*basic_segment())
    return test_file.load()


@pytest.mark.parametrize("test_file,expected_data", scenarios.get_scenarios())
def test_read_channel_data(test_file, expected_data):
    index = test_file.load()

    for (path, expected) in expected_data.items():
        actual_data = _comparable(index.read_channel_data(path))
        assert actual_data.dtype == expected.dtype
        assert len(index.channel(path)) == len(expected)
        compare_arrays(actual_data, expected)


@pytest.mark.parametrize("test_file,expected_data", scenarios.get_scenarios())
def test_lazily_read_channel_values(test_file, expected_data):
    index = test_file.load()

    for (path, expected) in expected_data.items():
        values = [_comparable_value(v) for v in index.channel_values(path)]
        assert values == list(expected)


@pytest.mark.parametrize("test_file,expected_data", scenarios.get_scenarios())
def test_index_file_gives_same_data_and_locations(test_file, expected_data):
    """ Metadata read from a tdms_index file locates the same raw data as the data file
    """
    data_file_index = test_file.load()
    index_file_index = test_file.load(with_index=True)

    _check_data(index_file_index, expected_data)
    assert len(data_file_index.segments) == len(index_file_index.segments)
    for path, channel in data_file_index.channels.items():
        other_channel = index_file_index.channel(path)
        assert [loc.byte_range for loc in channel.locations] == [
            loc.byte_range for loc in other_channel.locations]


@pytest.mark.parametrize("as_path", [str, Path])
def test_read_from_file_path(as_path):
    test_file, expected_data = scenarios.chunked_segment().values
    with test_file.get_tempfile() as temp_file_path:
        with read_index(as_path(temp_file_path)) as index:
            _check_data(index, expected_data)


def test_read_from_open_file():
    test_file, expected_data = scenarios.single_segment_with_two_channels().values
    with test_file.get_tempfile() as temp_file_path:
        with open(temp_file_path, 'rb') as open_file:
            index = read_index(open_file)
            _check_data(index, expected_data)
            index.close()
            assert not open_file.closed


def test_read_from_bytes():
    test_file, expected_data = scenarios.single_segment_with_two_channels().values

    _check_data(read_index(test_file.get_bytes()), expected_data)


def test_read_from_file_path_uses_index_file():
    test_file, expected_data = scenarios.no_metadata_segment().values
    with test_file.get_tempfile_with_index() as temp_file_path:
        with read_index(temp_file_path) as index:
            _check_data(index, expected_data)


def test_read_with_mismatching_index_file():
    """ Metadata from an index file that doesn't match the data file stops indexing at the mismatch
    """
    def two_segment_file(num_values):
        test_file = GeneratedFile()
        for _ in range(2):
            test_file.add_segment(
                NEW_OBJECTS,
                segment_objects_metadata(
                    channel_metadata(CHANNEL_1, INT32, num_values),
                    channel_metadata(CHANNEL_2, INT32, num_values)),
                _int32_hex(*range(2 * num_values)))
        return test_file

    with two_segment_file(2).get_tempfile() as tdms_file_path:
        with two_segment_file(3).get_tempfile_with_index() as other_file_path:
            # Put the other file's index beside the first file
            index_path = tdms_file_path + '_index'
            copyfile(other_file_path + '_index', index_path)
            try:
                with read_index(tdms_file_path) as index:
                    assert index.partial
                    (diagnostic, ) = index.diagnostics
                    assert diagnostic.segment_index == 1
                    assert isinstance(diagnostic.cause, InvalidSegmentTagError)
            finally:
                os.remove(index_path)


def test_groups_and_channels(basic_index):
    assert len(basic_index) == 1
    assert list(basic_index) == ['Group']

    group = basic_index['Group']
    assert (group.path, group.name) == ("/'Group'", "Group")
    assert len(group) == 2
    assert list(group) == ['Channel1', 'Channel2']
    assert [c.path for c in group.channels()] == ["/'Group'/'Channel1'", "/'Group'/'Channel2'"]

    channel = group['Channel1']
    assert channel.path == "/'Group'/'Channel1'"
    assert channel.name == "Channel1"
    assert channel.group_name == "Group"


def test_key_errors_name_the_missing_object(basic_index):
    with pytest.raises(KeyError) as exc_info:
        basic_index['non-existent group']
    assert 'non-existent group' in str(exc_info.value)

    with pytest.raises(KeyError) as exc_info:
        basic_index['Group']['non-existent channel']
    assert 'non-existent channel' in str(exc_info.value)
    assert 'Group' in str(exc_info.value)

    with pytest.raises(KeyError):
        basic_index.channel("/'Group'/'non-existent channel'")


def test_object_properties(basic_index):
    assert basic_index.properties == {'num': 15}
    assert basic_index["Group"].properties == {"prop": "value", "num": 10}

    channel = basic_index["Group"]["Channel2"]
    assert channel.properties["wf_start_offset"] == 0.0
    assert channel.properties["wf_increment"] == 0.1
    assert basic_index["Group"]["Channel1"].properties == {}


def test_object_repr(basic_index):
    assert repr(basic_index) == "<TdmsIndex with 1 segments, 1 groups and 2 channels>"
    assert repr(basic_index["Group"]) == "<TdmsGroup with path /'Group'>"
    assert repr(basic_index["Group"]["Channel1"]) == "<TdmsChannel with path /'Group'/'Channel1'>"


def test_properties_persist_and_are_overwritten_over_segments():
    def pressure_channel(**properties):
        return channel_metadata("/'G'/'C'", INT32, 1, properties=dict(
            (name, (STRING_TYPE, hex_string(value))) for (name, value) in properties.items()))

    test_file = _single_segment_file([pressure_channel(Name="Pressure", Unit="Pa")], _int32_hex(1))
    test_file.add_segment(
        ("kTocMetaData", "kTocRawData"), segment_objects_metadata(pressure_channel(Unit="kPa")), _int32_hex(2))

    index = test_file.load()

    channel = index.channel("/'G'/'C'")
    assert channel.properties == {"Name": "Pressure", "Unit": "kPa"}
    assert list(channel.properties.keys()) == ["Name", "Unit"]
    compare_arrays(index.read_channel_data(channel), [1, 2])


def test_unchanged_index_uses_first_segment_type_for_second_segment_data():
    test_file, _ = scenarios.unchanged_index_without_new_object_list().values

    index = test_file.load()

    channel = index.channel("/'G'/'C'")
    assert channel.data_type == types.DoubleFloat
    (second_location, ) = [loc for loc in channel.locations if loc.segment_index == 1]
    assert second_location.start == index.segments[1].data_position
    assert second_location.number_values == 2
    assert list(index.channel_values(channel)) == [1.0, 2.0, 3.0, 4.0, 5.0]


def test_groups_are_created_for_channels_without_group_objects():
    test_file, _ = scenarios.single_segment_with_two_channels().values

    group = test_file.load()["group"]

    assert group.path == "/'group'"
    assert group.properties == {}
    assert len(group) == 2


def test_channels_are_ordered_by_first_appearance():
    test_file, _ = scenarios.add_new_channel().values

    index = test_file.load()

    assert list(index.channels.keys()) == [CHANNEL_1, CHANNEL_2, "/'group'/'channel3'"]


def test_slash_and_space_in_name():
    names = [("01/02/03 something", "04/05/06 another thing"), ("01/02/03 a", "04/05/06 b")]
    test_file = _single_segment_file(
        [channel_metadata("/'%s'/'%s'" % name, INT32, 2) for name in names],
        _int32_hex(1, 2, 3, 4))

    index = test_file.load()

    assert len(index.groups) == 2
    for (group_name, channel_name) in names:
        assert len(index[group_name].channels()) == 1
        assert len(index[group_name][channel_name]) == 2
    (group_name, channel_name) = names[1]
    compare_arrays(index.read_channel_data(index[group_name][channel_name]), [3, 4])


def test_single_quote_in_name():
    test_file = _single_segment_file(
        [channel_metadata("/'group''s name'/'channel''s name'", INT32, 2)], _int32_hex(1, 2))

    index = test_file.load()

    assert len(index.groups) == 1
    channel = index["group's name"]["channel's name"]
    assert channel.name == "channel's name"
    assert channel.group_name == "group's name"
    assert channel.path == "/'group''s name'/'channel''s name'"
    assert len(channel) == 2


def test_invalid_object_path():
    test_file = _single_segment_file([channel_metadata("'group'/'channel1'", INT32, 2)], _int32_hex(1, 2))

    assert isinstance(_load_error_cause(test_file), MalformedMetadataError)


def test_segment_records():
    test_file, _ = scenarios.chunked_segment().values

    index = test_file.load()

    (first, second) = index.segments
    assert (first.index, first.position, first.num_chunks) == (0, 0, 2)
    assert (second.index, second.position, second.num_chunks) == (1, first.next_segment_pos, 2)
    assert second.ordered_objects is first.ordered_objects
    assert [loc.segment_index for loc in index.channel(CHANNEL_1).locations] == [0, 0, 1, 1]


def test_debug_logging(caplog):
    test_file, _ = scenarios.single_segment_with_one_channel().values

    log_manager.set_level(logging.DEBUG)
    try:
        test_file.load()
    finally:
        log_manager.set_level(logging.WARNING)

    assert "Reading metadata for object /'group'/'channel1' with index header 0x00000014" in caplog.text
    assert "Object data type: Int32" in caplog.text


def test_log_level_set_by_name(caplog):
    test_file, _ = scenarios.single_segment_with_one_channel().values

    log_manager.set_level('info')
    try:
        test_file.load()
    finally:
        log_manager.set_level(logging.WARNING)

    assert "Read metadata: Took" in caplog.text
    with pytest.raises(ValueError):
        log_manager.set_level('not a level')


def test_unknown_version_logs_warning(caplog):
    test_file = _single_segment_file([channel_metadata(CHANNEL_1, INT32, 1)], _int32_hex(1), version=4714)

    index = test_file.load()

    assert "Unrecognised version number 4714" in caplog.text
    compare_arrays(index.read_channel_data(CHANNEL_1), [1])


def test_empty_source_gives_empty_index():
    index = read_index(BytesSource(b''))

    assert index.segments == []
    assert index.groups == {}
    assert index.channels == {}
    assert index.diagnostics == []
    assert not index.partial


def test_invalid_tag_in_first_segment_raises():
    test_file = _single_segment_file([channel_metadata(CHANNEL_1, INT32, 1)], _int32_hex(1), tag=b'TDSx')

    cause = _load_error_cause(test_file)

    assert isinstance(cause, InvalidSegmentTagError)
    assert cause.tag == b'TDSx'


def test_short_lead_in_raises():
    with pytest.raises(InvalidFileError) as exc_info:
        read_index(BytesSource(b'TDSm\x0e\x00'))
    assert isinstance(exc_info.value.__cause__, TruncatedDataError)


def test_corrupt_second_segment_gives_partial_file(caplog):
    test_file = _single_segment_file([channel_metadata(CHANNEL_1, INT32, 2)], _int32_hex(1, 2))
    test_file.add_segment(("kTocRawData", ), "", _int32_hex(3, 4), tag=b'XXXX')

    index = test_file.load()

    assert index.partial
    assert not index.truncated
    (diagnostic, ) = index.diagnostics
    assert isinstance(diagnostic, PartialFile)
    assert diagnostic.segment_index == 1
    assert diagnostic.position == index.segments[0].next_segment_pos
    assert isinstance(diagnostic.cause, InvalidSegmentTagError)
    assert len(index.segments) == 1
    compare_arrays(index.read_channel_data(CHANNEL_1), [1, 2])
    assert "Could not read segment 1" in caplog.text


def test_trailing_garbage_gives_partial_file():
    test_file, expected_data = scenarios.single_segment_with_two_channels().values
    test_file.add_bytes(b'\x00\x01\x02')

    index = test_file.load()

    assert index.partial
    _check_data(index, expected_data)


def test_change_of_data_type_in_later_segment_gives_partial_file():
    test_file = _single_segment_file([channel_metadata(CHANNEL_1, INT32, 2)], _int32_hex(1, 2))
    test_file.add_segment(
        NEW_OBJECTS,
        segment_objects_metadata(channel_metadata(CHANNEL_1, scenarios.TDS_TYPE_FLOAT64, 1)),
        hexlify_value("<d", 3.0))

    index = test_file.load()

    (diagnostic, ) = index.diagnostics
    assert isinstance(diagnostic.cause, MalformedMetadataError)
    assert "Expected type Int32 but got DoubleFloat" in str(diagnostic.cause)
    assert index.channel(CHANNEL_1).data_type == types.Int32
    compare_arrays(index.read_channel_data(CHANNEL_1), [1, 2])


def test_failed_segment_does_not_change_index():
    """ Objects and properties declared in a segment that fails to decode are not added
    """
    test_file = _single_segment_file([channel_metadata(CHANNEL_1, INT32, 1)], _int32_hex(1))
    test_file.add_segment(
        NEW_INTERLEAVED_OBJECTS,
        segment_objects_metadata(
            channel_metadata(CHANNEL_2, INT32, 2),
            channel_metadata("/'group'/'channel3'", INT32, 1)),
        _int32_hex(2, 3, 4))

    index = test_file.load()

    assert index.partial
    assert list(index.channels.keys()) == [CHANNEL_1]


def test_no_metadata_in_first_segment_raises():
    test_file = GeneratedFile()
    test_file.add_segment(("kTocRawData", ), "", _int32_hex(1))

    with pytest.raises(InvalidFileError) as exc_info:
        test_file.load()
    assert "there is no previous segment" in str(exc_info.value)


def test_unchanged_index_for_new_object_raises():
    test_file = _single_segment_file([channel_metadata_with_repeated_structure(CHANNEL_1)], _int32_hex(1))

    with pytest.raises(InvalidFileError) as exc_info:
        test_file.load()
    assert "we have not seen this object before" in str(exc_info.value)


def test_interleaved_segment_different_length():
    test_file = _single_segment_file(
        [channel_metadata(CHANNEL_1, INT32, 3), channel_metadata(CHANNEL_2, INT32, 2)],
        _int32_hex(1, 2, 1, 2, 1),
        NEW_INTERLEAVED_OBJECTS)

    assert str(_load_error_cause(test_file)) == "Cannot read interleaved data with different chunk sizes"


@pytest.mark.parametrize("objects,data", [
    ([string_channel_metadata("/'Group'/'Channel1'", 2, 10), string_channel_metadata("/'Group'/'Channel2'", 2, 10)],
     string_data("a", "b") + string_data("c", "d")),
    ([channel_metadata(CHANNEL_1, INT32, 2), string_channel_metadata("/'group'/'StringChannel'", 2, 10)],
     _int32_hex(1, 2) + string_data("a", "b")),
])
def test_interleaved_segment_with_unsized_types(objects, data):
    test_file = _single_segment_file(objects, data, NEW_INTERLEAVED_OBJECTS)

    assert str(_load_error_cause(test_file)) == (
        "Cannot read interleaved segment containing channels with unsized types")


def test_string_data_in_interleaved_segment():
    """ A single string channel is read even if the interleaved data flag is set
    """
    strings = ["abcdefg", "qwertyuiop"]
    test_file = _single_segment_file(
        [string_channel_metadata("/'Group'/'StringChannel'", 2, 0x19)], string_data(*strings),
        NEW_INTERLEAVED_OBJECTS)

    data = test_file.load().read_channel_data("/'Group'/'StringChannel'")

    assert data.dtype == np.dtype('O')
    assert list(data) == strings


def test_no_new_obj_list_for_first_segment():
    test_file = GeneratedFile()
    for values in ([1, 2, 3, 4], [5, 6, 7, 8]):
        test_file.add_segment(
            ("kTocMetaData", "kTocRawData"),
            segment_objects_metadata(channel_metadata(CHANNEL_1, INT32, 4)),
            _int32_hex(*values))

    index = test_file.load()

    compare_arrays(index.read_channel_data(CHANNEL_1), [1, 2, 3, 4, 5, 6, 7, 8])


def test_incomplete_final_segment_gives_truncated_diagnostic():
    test_file, _ = scenarios.incomplete_last_segment().values

    index = test_file.load()

    assert index.truncated
    assert not index.partial
    (diagnostic, ) = index.diagnostics
    assert isinstance(diagnostic, TruncatedFinalSegment)
    assert diagnostic.segment_index == 1
    assert diagnostic.expected_size == 24
    assert diagnostic.available_size == 12


def test_segment_extending_past_end_of_file():
    metadata = segment_objects_metadata(
        channel_metadata(CHANNEL_1, INT32, 2),
        channel_metadata(CHANNEL_2, INT32, 2))
    test_file = GeneratedFile()
    # The next segment offset includes one value missing from the end of the file
    test_file.add_segment(
        NEW_OBJECTS, metadata, _int32_hex(1, 2, 3),
        next_segment_offset=len(hex_to_bytes(metadata)) + 16)

    index = test_file.load()

    (segment, ) = index.segments
    assert segment.truncated
    (diagnostic, ) = index.diagnostics
    assert isinstance(diagnostic, TruncatedFinalSegment)
    assert diagnostic.expected_size == 16
    assert diagnostic.available_size == 12
    compare_arrays(index.read_channel_data(CHANNEL_1), [1, 2])
    compare_arrays(index.read_channel_data(CHANNEL_2), [3])


def test_incomplete_segment_with_string_data():
    """ Test incomplete last segment, eg. if LabView crashed, with string data
    """
    test_file = _single_segment_file(
        [string_channel_metadata("/'Group'/'StringChannel'", 2, 0x19)], "00 00 00 00", incomplete=True)

    index = test_file.load()

    assert len(index["Group"]["StringChannel"]) == 0
    assert index.truncated


def test_type_mismatch_raised_before_reading():
    test_file, _ = scenarios.single_segment_with_one_channel().values
    index = test_file.load()

    with pytest.raises(TypeMismatchError):
        index.channel_values(CHANNEL_1, types.DoubleFloat)
    with pytest.raises(TypeMismatchError):
        index.read_scaler_data(CHANNEL_1)

    assert list(index.channel_values(CHANNEL_1, types.Int32)) == [1, 2, 3, 4]


def test_root_and_group_only_file():
    test_file = _single_segment_file(
        [root_metadata({"author": (STRING_TYPE, hex_string("me"))}), group_metadata("Group")],
        "",
        ("kTocMetaData", "kTocNewObjList"))

    index = test_file.load()

    assert index.properties == {"author": "me"}
    assert list(index) == ["Group"]
    assert index["Group"].channels() == []


def test_close_source_opened_from_path():
    test_file, _ = scenarios.single_segment_with_one_channel().values
    with test_file.get_tempfile() as temp_file_path:
        index = read_index(temp_file_path)
        source = index.source
        index.close()
        index.close()
        assert index.source is None
        with pytest.raises(RuntimeError):
            source.read(0, 4)


@pytest.fixture
def opened_file_sources(monkeypatch):
    opened = []

    class TrackedFileSource(source_module.FileSource):
        def __init__(self, *args, **kwargs):
            super(TrackedFileSource, self).__init__(*args, **kwargs)
            opened.append(self)

    monkeypatch.setattr(source_module, "FileSource", TrackedFileSource)
    return opened


def _check_closed(file_source):
    with pytest.raises(RuntimeError):
        file_source.read(0, 4)


def test_index_file_closed_when_data_file_is_missing(opened_file_sources):
    test_file, _ = scenarios.single_segment_with_one_channel().values
    with test_file.get_tempfile_with_index() as temp_file_path:
        missing_path = os.path.join(os.path.dirname(temp_file_path), 'missing.tdms')

        with pytest.raises(FileNotFoundError):
            read_index(missing_path, temp_file_path + '_index')

    for file_source in opened_file_sources:
        _check_closed(file_source)


def test_data_file_closed_when_index_file_is_missing(opened_file_sources):
    test_file, _ = scenarios.single_segment_with_one_channel().values
    with test_file.get_tempfile() as temp_file_path:
        with pytest.raises(FileNotFoundError):
            read_index(temp_file_path, temp_file_path + '_missing_index')

    (data_source, ) = opened_file_sources
    _check_closed(data_source)


def test_close_does_not_close_caller_source():
    test_file, _ = scenarios.single_segment_with_one_channel().values
    source = BytesSource(test_file.get_bytes())
    with read_index(source) as index:
        pass
    assert index.source is source
    assert source.read(0, 4) == b'TDSm'


def test_void_property_has_no_value_bytes():
    properties = {
        "empty": (types.Void.enum_value, ""),
        "after": (INT32, _int32_hex(7)),
    }
    test_file = _single_segment_file(
        [group_metadata("group", properties=properties)],
        "",
        ("kTocMetaData", "kTocNewObjList"))

    index = test_file.load()

    assert index["group"].properties == {"empty": None, "after": 7}
    assert not index.diagnostics


def test_string_property_with_invalid_utf8_raises():
    invalid_string = "02 00 00 00" "C3 28"
    test_file = _single_segment_file(
        [group_metadata("group", properties={"prop": (STRING_TYPE, invalid_string)})],
        "",
        ("kTocMetaData", "kTocNewObjList"))

    with pytest.raises(InvalidFileError) as exc_info:
        test_file.load()
    assert "not valid UTF-8" in str(exc_info.value)
