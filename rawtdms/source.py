""" Byte sources that TDMS indexes are built from and channel data is read from

A byte source has two methods, ``read(offset, length)`` returning up to length bytes
starting at an absolute offset, and ``size()`` returning the total number of bytes.
Reads past the end return fewer bytes rather than raising.
"""

import os
import threading


class BytesSource(object):
    """ A byte source over an in-memory buffer
    """

    def __init__(self, data):
        self._data = memoryview(data).cast('B') if not isinstance(data, bytes) else data

    def read(self, offset, length):
        if offset < 0 or length < 0:
            raise ValueError("Offset and length must not be negative")
        return bytes(self._data[offset:offset + length])

    def size(self):
        return len(self._data)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        return "<BytesSource of %d bytes>" % len(self._data)


class FileSource(object):
    """ A byte source reading from a file

    Reads use os.pread where it is available so several readers can share the file.
    Otherwise seek and read are serialised with a lock.

    :param file: Path to a file as a string or pathlib.Path, or an already opened binary file.
        Files opened from a path are closed by close().
    """

    def __init__(self, file):
        self._lock = threading.Lock()
        if hasattr(file, "read"):
            # Is a file
            self._file = file
            self._owns_file = False
            self._path = getattr(file, "name", None)
        else:
            # Is path to a file
            self._path = str(file)
            self._file = open(self._path, 'rb')
            self._owns_file = True
        try:
            self._fileno = self._file.fileno()
        except (AttributeError, OSError):
            # Not backed by an OS file, eg. io.BytesIO
            self._fileno = None
        self._use_pread = hasattr(os, 'pread') and self._fileno is not None

    @property
    def path(self):
        return self._path

    def read(self, offset, length):
        self._ensure_open()
        if offset < 0 or length < 0:
            raise ValueError("Offset and length must not be negative")
        if self._use_pread:
            return self._pread(offset, length)
        with self._lock:
            self._file.seek(offset, os.SEEK_SET)
            return self._file.read(length)

    def _pread(self, offset, length):
        chunks = []
        remaining = length
        while remaining > 0:
            data = os.pread(self._fileno, remaining, offset)
            if not data:
                break
            chunks.append(data)
            offset += len(data)
            remaining -= len(data)
        return b''.join(chunks)

    def size(self):
        self._ensure_open()
        if self._fileno is not None:
            return os.fstat(self._fileno).st_size
        with self._lock:
            current_pos = self._file.tell()
            self._file.seek(0, os.SEEK_END)
            end_pos = self._file.tell()
            self._file.seek(current_pos, os.SEEK_SET)
        return end_pos

    def close(self):
        if self._file is None:
            # Already closed
            return
        if self._owns_file:
            self._file.close()
        # Otherwise always remove reference to the file
        self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def _ensure_open(self):
        if self._file is None:
            raise RuntimeError("Cannot read from a file source after it is closed")

    def __repr__(self):
        return "<FileSource %s>" % self._path


def as_source(source):
    """ Wrap bytes, paths and open files as byte sources, leaving existing sources unchanged
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(source)
    if hasattr(source, "read") and hasattr(source, "size") and callable(source.size):
        return source
    return FileSource(source)
