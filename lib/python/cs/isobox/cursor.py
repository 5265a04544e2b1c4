#!/usr/bin/env python3
#
# Seekable byte cursors over in-memory data and open files.
#

r''' Byte cursors: an offset tracking view of addressable data
    supporting exact reads, typed integer decoding and nested
    scope bounds.

    `BytesCursor` works on in-memory data;
    `FileCursor` works on an open binary file.
    Both share the `ByteCursor` contract:
    * `read(n)` returns exactly `n` bytes or raises `BoundsError`
      leaving the offset unchanged
    * `seek(offset)` and `.offset` provide absolute positioning
    * `remaining()` reports the bytes available to the end of the
      innermost scope
    * `bounded(end_offset)` is a context manager narrowing the
      readable region, typically to a box payload
    * `parse_binary(binary_class)` reads a fixed size `cs.binary` struct

    A `FileCursor` over an unseekable file such as a pipe
    has an unknown length and may only move forwards.

    Example:

        >>> C = BytesCursor(b'\x00\x00\x00\x10meta')
        >>> C.uint32be()
        16
        >>> C.read(4)
        b'meta'
        >>> C.offset
        8
'''

from abc import ABC, abstractmethod
from contextlib import contextmanager
from errno import EIO, ESPIPE
import os
from os import SEEK_END, SEEK_SET
from stat import S_ISREG
from typing import List, Optional

from icontract import require
from typeguard import typechecked

from cs.binary import (
    Int32BE,
    UInt8,
    UInt16BE,
    UInt16LE,
    UInt32BE,
    UInt32LE,
    UInt64BE,
    UInt64LE,
)
from cs.buffer import CornuCopyBuffer
from cs.deco import Promotable, default_params
from cs.logutils import debug
from cs.pfx import Pfx

from .errors import BoundsError, ResourceError

DEFAULT_FILE_MODE = 'rb'
FILE_MODE_ENVVAR = 'ISOBOX_FILE_MODE'

# the read size used when reading to the end of data of unknown length
DEFAULT_READSIZE = 65536

def default_file_mode(environ=None):
  ''' The default mode for opening files:
      the value of `$ISOBOX_FILE_MODE` if set,
      otherwise `DEFAULT_FILE_MODE` (`'rb'`).
  '''
  if environ is None:
    environ = os.environ
  return environ.get(FILE_MODE_ENVVAR) or DEFAULT_FILE_MODE

# supply the default file mode to functions with a "mode" keyword parameter
uses_file_mode = default_params(mode=default_file_mode)

def is_binary_read_mode(mode: str) -> bool:
  ''' Test whether `mode` is a binary `open()` mode which permits reading.
  '''
  return 'b' in mode and ('r' in mode or '+' in mode)

class ByteCursor(Promotable, ABC):
  ''' The common basis for cursors over addressable bytes.

      Subclasses implement `_read_at(offset, size)`,
      returning up to `size` bytes from `offset`
      without regard to the cursor state.
  '''

  def __init__(self, length: Optional[int] = None):
    self._offset = 0
    self.length = length
    # stack of scope end offsets, innermost last
    self._bounds = []
    self.closed = False

  def __str__(self):
    return f'{self.__class__.__name__}(offset={self._offset},end_offset={self.end_offset})'

  __repr__ = __str__

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_value, traceback):
    self.close()
    return False

  def close(self):
    ''' Release any resources. Subsequent calls have no effect.
    '''
    self.closed = True

  @abstractmethod
  def _read_at(self, offset: int, size: int) -> bytes:
    ''' Return up to `size` bytes starting at `offset`.
        A short return indicates the end of the data.
    '''
    raise NotImplementedError

  @property
  def offset(self) -> int:
    ''' The current offset. Assigning to it is a `seek`.
    '''
    return self._offset

  @offset.setter
  def offset(self, new_offset):
    self.seek(new_offset)

  def tell(self) -> int:
    ''' The current offset, for file-like use.
    '''
    return self._offset

  @property
  def end_offset(self) -> Optional[int]:
    ''' The end of the innermost scope:
        the innermost `bounded()` end offset if any,
        otherwise `.length`, which may be `None` if unknown.
    '''
    if self._bounds:
      return self._bounds[-1]
    return self.length

  @property
  def scope_depth(self) -> int:
    ''' The number of active `bounded()` scopes.
    '''
    return len(self._bounds)

  def remaining(self) -> Optional[int]:
    ''' The number of bytes from the current offset to `.end_offset`,
        or `None` if the end is not known.
    '''
    end_offset = self.end_offset
    if end_offset is None:
      return None
    return end_offset - self._offset

  def at_eof(self) -> bool:
    ''' Test whether the cursor is at the end of the current scope.
    '''
    remaining = self.remaining()
    if remaining is not None:
      return remaining <= 0
    return len(self._read_at(self._offset, 1)) == 0

  def _check_available(self, size: int, verb='read'):
    ''' Raise `BoundsError` if fewer than `size` bytes remain in scope.
    '''
    remaining = self.remaining()
    if remaining is not None and size > remaining:
      raise BoundsError(
          f'{verb}({size}) at offset {self._offset}:'
          f' only {remaining} bytes remain before offset {self.end_offset}'
      )

  @typechecked
  def seek(self, new_offset: int) -> int:
    ''' Set the current offset to `new_offset`, which must lie in
        `[0,self.end_offset]` if the end is known.
        Return the new offset.
    '''
    if new_offset < 0:
      raise BoundsError(f'seek({new_offset}): negative offset')
    end_offset = self.end_offset
    if end_offset is not None and new_offset > end_offset:
      raise BoundsError(
          f'seek({new_offset}): beyond the end offset {end_offset}'
      )
    self._offset = new_offset
    return new_offset

  @typechecked
  def read(self, size: int) -> bytes:
    ''' Return exactly `size` bytes from the current offset
        and advance the offset by `size`.
        Raise `BoundsError` if there are insufficient bytes in scope;
        the offset is then unchanged.
    '''
    if size < 0:
      raise ValueError(f'read({size}): size may not be negative')
    if size == 0:
      return b''
    self._check_available(size)
    bs = self._read_at(self._offset, size)
    if len(bs) < size:
      raise BoundsError(
          f'read({size}) at offset {self._offset}: only {len(bs)} bytes available'
      )
    self._offset += size
    return bs

  def peek(self, size: int) -> bytes:
    ''' Return exactly `size` bytes from the current offset
        without advancing the offset.
    '''
    offset = self._offset
    bs = self.read(size)
    self._offset = offset
    return bs

  def skip(self, size: int) -> int:
    ''' Advance the offset by `size` bytes, returning the new offset.
    '''
    if size < 0:
      raise ValueError(f'skip({size}): size may not be negative')
    self._check_available(size, 'skip')
    self._offset += size
    return self._offset

  def read_remaining(self, readsize: int = DEFAULT_READSIZE) -> bytes:
    ''' Read and return the bytes from the current offset
        to the end of the current scope.
        If the end is not known, read in chunks of up to `readsize` bytes
        until the data end.
    '''
    remaining = self.remaining()
    if remaining is not None:
      return self.read(remaining)
    bss = []
    while True:
      bs = self._read_at(self._offset, readsize)
      if not bs:
        break
      self._offset += len(bs)
      bss.append(bs)
    return b''.join(bss)

  def parse_binary(self, binary_class, length: Optional[int] = None):
    ''' Parse an instance of the `cs.binary` class `binary_class`
        from the next `length` bytes and advance past them.
        The default `length` is `binary_class.length`,
        the size of a `cs.binary.BinaryStruct`.
        Raise `ValueError` if the instance does not span all `length` bytes.
    '''
    if length is None:
      length = binary_class.length
    return binary_class.from_bytes(self.read(length))

  def parse_value(self, binary_class):
    ''' Parse a single value `cs.binary` struct such as `UInt32BE`
        and return its `.value`.
    '''
    return self.parse_binary(binary_class).value

  def scan_binary(self, binary_class, count: int) -> List:
    ''' Parse `count` consecutive instances of the fixed size
        `cs.binary` class `binary_class` and return them as a list.
    '''
    if count == 0:
      return []
    bfr = CornuCopyBuffer.from_bytes(self.read(count * binary_class.length))
    return list(binary_class.scan(bfr, count=count))

  @require(lambda width: width > 0)
  @require(lambda byteorder: byteorder in ('big', 'little'))
  def read_int(self, width: int, signed=False, byteorder='big') -> int:
    ''' Read `width` bytes and decode them as an integer
        in the specified `byteorder` (`'big'` or `'little'`).
        This supports any width; the shorthand methods
        such as `uint32be` use the `cs.binary` types.
    '''
    return int.from_bytes(self.read(width), byteorder, signed=signed)

  def uint8(self) -> int:
    ''' Read an unsigned 8 bit integer. '''
    return self.parse_value(UInt8)

  def int8(self) -> int:
    ''' Read a signed 8 bit integer. '''
    return self.read_int(1, signed=True)

  def uint16be(self) -> int:
    ''' Read a big endian unsigned 16 bit integer. '''
    return self.parse_value(UInt16BE)

  def uint16le(self) -> int:
    ''' Read a little endian unsigned 16 bit integer. '''
    return self.parse_value(UInt16LE)

  def uint24be(self) -> int:
    ''' Read a big endian unsigned 24 bit integer. '''
    return self.read_int(3)

  def uint32be(self) -> int:
    ''' Read a big endian unsigned 32 bit integer. '''
    return self.parse_value(UInt32BE)

  def uint32le(self) -> int:
    ''' Read a little endian unsigned 32 bit integer. '''
    return self.parse_value(UInt32LE)

  def int32be(self) -> int:
    ''' Read a big endian signed 32 bit integer. '''
    return self.parse_value(Int32BE)

  def uint64be(self) -> int:
    ''' Read a big endian unsigned 64 bit integer. '''
    return self.parse_value(UInt64BE)

  def uint64le(self) -> int:
    ''' Read a little endian unsigned 64 bit integer. '''
    return self.parse_value(UInt64LE)

  @contextmanager
  def bounded(self, end_offset: int):
    ''' A context manager which narrows the readable scope
        to end at `end_offset`, an absolute offset.
        The previous scope is restored on exit.

        Example:

            with cursor.bounded(cursor.offset + payload_length):
                ... reads here cannot pass the payload end ...
    '''
    if end_offset < self._offset:
      raise ValueError(
          f'bounded({end_offset}): before the current offset {self._offset}'
      )
    outer_end = self.end_offset
    if outer_end is not None and end_offset > outer_end:
      raise BoundsError(
          f'bounded({end_offset}): beyond the enclosing end offset {outer_end}'
      )
    self._bounds.append(end_offset)
    try:
      yield self
    finally:
      self._bounds.pop()

  @classmethod
  def promote(cls, obj):
    ''' Promote `obj` to a `ByteCursor`:
        cursors are returned unchanged,
        bytes-like objects are wrapped in a `BytesCursor`.
        Files are not promoted because the cursor would then own
        a file it did not open; use `FileCursor` directly.
    '''
    if isinstance(obj, cls):
      return obj
    if isinstance(obj, (bytes, bytearray, memoryview)):
      return BytesCursor(obj)
    raise TypeError(
        f'{cls.__name__}.promote: cannot promote {obj.__class__.__name__}'
    )

class BytesCursor(ByteCursor):
  ''' A cursor over in-memory data.
  '''

  def __init__(self, data):
    if not isinstance(data, bytes):
      data = bytes(data)
    super().__init__(length=len(data))
    self._data = data

  def _read_at(self, offset, size):
    return self._data[offset:offset + size]

  def getvalue(self) -> bytes:
    ''' Return the entire underlying content.
        The current offset is not affected.
    '''
    return self._data

  def __bytes__(self):
    return self.getvalue()

  def __len__(self):
    return len(self._data)

class FileCursor(ByteCursor):
  ''' A cursor over an open binary file.

      If `close` is true (the default for `from_filename`)
      the cursor owns the file and closes it on `.close()`,
      which happens at most once.

      An unseekable file such as a pipe is read forwards only.
      The most recently read bytes are retained
      so that `peek()` and `at_eof()` do not consume data,
      but seeking back before them raises `ResourceError`.
  '''

  def __init__(self, f, *, close=False, name=None):
    super().__init__(length=self._file_length(f))
    self.f = f
    self.name = name or getattr(f, 'name', None)
    self._close_file = close
    try:
      seekable = f.seekable()
    except (AttributeError, ValueError):
      seekable = False
    self.seekable = seekable
    try:
      fpos = f.tell()
    except OSError:
      # unseekable, presume we are at the start
      fpos = 0
    # the file position, or for an unseekable file
    # the offset of the retained bytes in ._ahead
    self._fpos = fpos
    self._ahead = b''
    self._offset = fpos

  def __str__(self):
    return f'{self.__class__.__name__}({self.name!r},offset={self._offset},end_offset={self.end_offset})'

  __repr__ = __str__

  @classmethod
  @uses_file_mode
  @require(
      lambda mode: is_binary_read_mode(mode),
      "mode must be a binary mode which permits reading",
  )
  def from_filename(cls, filename: str, *, mode: str) -> "FileCursor":
    ''' Open `filename` and return a `FileCursor` owning the open file.
        The default `mode` comes from `default_file_mode()`.
        Raise `ResourceError` if the file cannot be opened.
    '''
    with Pfx("open(%r,%r)", filename, mode):
      try:
        f = open(filename, mode)  # pylint: disable=consider-using-with,unspecified-encoding
      except OSError as e:
        raise ResourceError(e.errno or EIO, f'cannot open: {e.strerror or e}') from e
      try:
        cursor = cls(f, close=True, name=filename)
      except OSError as e:
        f.close()
        raise ResourceError(e.errno or EIO, f'cannot examine: {e}') from e
      except Exception:
        f.close()
        raise
    debug("opened %r, mode %r", filename, mode)
    return cursor

  @staticmethod
  def _file_length(f) -> Optional[int]:
    ''' Determine the length of the open file `f`, or `None` if unknown.
        Regular files use `os.fstat`; other files try a seek to the end.
    '''
    try:
      fd = f.fileno()
    except (AttributeError, OSError):
      fd = None
    if fd is not None:
      S = os.fstat(fd)
      if S_ISREG(S.st_mode):
        return S.st_size
    try:
      pos = f.tell()
      end_pos = f.seek(0, SEEK_END)
      f.seek(pos, SEEK_SET)
    except (AttributeError, OSError):
      return None
    return end_pos

  def _read_at(self, offset, size):
    if self.f is None:
      raise ValueError(f'{self}: read on a closed cursor')
    try:
      if self.seekable:
        return self._read_file(offset, size)
      return self._read_stream(offset, size)
    except ResourceError:
      raise
    except OSError as e:
      raise ResourceError(
          e.errno or EIO, f'{self}: read({size}) at {offset}: {e}'
      ) from e

  def _read_file(self, offset, size):
    ''' Read from a seekable file, seeking only if needed.
    '''
    # the file position is unknown until the read succeeds
    fpos, self._fpos = self._fpos, None
    if fpos != offset:
      self.f.seek(offset, SEEK_SET)
    bs = self.f.read(size)
    self._fpos = offset + len(bs)
    return bs

  def _read_stream(self, offset, size):
    ''' Read from an unseekable file, which only moves forwards.
        `self._ahead` holds the bytes already read from the file
        commencing at offset `self._fpos`.
    '''
    if offset < self._fpos:
      raise ResourceError(
          ESPIPE,
          f'{self}: cannot return to offset {offset} on an unseekable file,'
          f' the earliest available offset is {self._fpos}',
      )
    ahead = self._ahead
    gap = offset - self._fpos
    if gap <= len(ahead):
      ahead = ahead[gap:]
    else:
      # discard the data between the retained bytes and offset
      gap -= len(ahead)
      ahead = b''
      while gap > 0:
        bs = self.f.read(min(gap, DEFAULT_READSIZE))
        if not bs:
          self._fpos = offset - gap
          self._ahead = b''
          return b''
        gap -= len(bs)
    self._fpos = offset
    self._ahead = ahead
    while len(ahead) < size:
      bs = self.f.read(size - len(ahead))
      if not bs:
        break
      ahead += bs
      self._ahead = ahead
    return ahead[:size]

  def close(self):
    ''' Close the file if the cursor owns it.
        Only the first call has any effect.
    '''
    if self.closed:
      return
    super().close()
    f, self.f = self.f, None
    if self._close_file:
      f.close()

class FileCursorFactory:
  ''' A factory for `FileCursor`s with a default open mode,
      for hosts which configure the mode once.
  '''

  def __init__(self, default_mode: Optional[str] = None):
    self.default_mode = default_mode

  def __repr__(self):
    return f'{self.__class__.__name__}(default_mode={self.default_mode!r})'

  def open(self, path: str, mode: Optional[str] = None) -> FileCursor:
    ''' Open `path` and return a `FileCursor`.
        The mode is `mode` if supplied,
        otherwise the factory `default_mode`,
        otherwise the value of `default_file_mode()`.
    '''
    return FileCursor.from_filename(path, mode=mode or self.default_mode)
