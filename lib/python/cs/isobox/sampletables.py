#!/usr/bin/env python3
#
# The sample tables and the edit list.
#

''' Bodies for the sample table boxes and the edit list:
    `stts`, `ctts`, `stss`, `stsc`, `stsz`, `stco`, `co64` and `elst`.

    Each is a full box with an entry count
    followed by a table of fixed size `cs.binary` struct entries.
    The table is kept as bytes during the parse
    and only decoded when `.entries` is first accessed,
    because sample tables may be very large
    and are often not needed.
'''

from threading import Lock
from typing import Iterable, List, Mapping

from cs.binary import BinaryStruct, UInt32BE
from cs.logutils import warning
from cs.threads import locked_property

from .bodies import FullBoxBody
from .cursor import ByteCursor, BytesCursor
from .errors import FramingError
from .registry import BOX_TYPES

class SampleTableBoxBody(FullBoxBody):
  ''' A full box containing a 32 bit entry count
      and then that many fixed size entries.

      Subclasses define `ENTRY_TYPES`,
      a mapping of box version to the `BinaryStruct` entry class.
  '''

  ENTRY_TYPES: Mapping[int, type] = {}

  def __init__(self, entries: Iterable = (), *, version=0, flags=0):
    super().__init__(version=version, flags=flags)
    self._lock = Lock()
    self._entries_bs = b''
    self._bs_entry_type = None
    self._entry_count = 0
    self._entries = None
    self.set_entries(entries)

  def __str__(self):
    return f'{self.__class__.__name__}(version={self.version},entry_count={self.entry_count})'

  @property
  def entry_type(self):
    ''' The entry class for the current version.
        Unsupported versions use the entry class of the highest version.
    '''
    try:
      return self.ENTRY_TYPES[self.version]
    except KeyError:
      return self.ENTRY_TYPES[max(self.ENTRY_TYPES)]

  @property
  def entry_count(self) -> int:
    ''' The number of entries. '''
    if self._entries is None:
      return self._entry_count
    return len(self._entries)

  @locked_property
  def entries(self) -> List:
    ''' The entries decoded from the parsed table.
    '''
    return BytesCursor(self._entries_bs).scan_binary(
        self._bs_entry_type, self._entry_count
    )

  def set_entries(self, entries: Iterable):
    ''' Replace the entries.
        Each entry may be an instance of the entry class
        or a tuple of its field values.
    '''
    entry_type = self.entry_type
    self._entries = [entry_type.promote(entry) for entry in entries]

  def add_entry(self, entry):
    ''' Append `entry`, an entry class instance or a tuple of field values.
    '''
    self.entries.append(self.entry_type.promote(entry))

  def parse_entry_count(self, cursor: ByteCursor) -> int:
    ''' Parse the fields preceding the entries, return the entry count.
    '''
    return cursor.parse_value(UInt32BE)

  def transcribe_entry_count(self):
    ''' Yield the binary form of the fields preceding the entries.
    '''
    yield UInt32BE.transcribe_value(self.entry_count)

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    super().parse_fields(cursor, **scan_kw)
    if self.version not in self.ENTRY_TYPES:
      warning(
          "unsupported version %d, treating like version %d", self.version,
          max(self.ENTRY_TYPES)
      )
    entry_type = self.entry_type
    entry_count = self.parse_entry_count(cursor)
    table_length = entry_count * entry_type.length
    remaining = cursor.remaining()
    if remaining is not None and table_length > remaining:
      raise FramingError(
          f'entry count {entry_count} needs {table_length} bytes'
          f' but only {remaining} bytes remain'
      )
    # gather the table data but do not decode it until needed
    self._entries_bs = cursor.read(table_length)
    self._bs_entry_type = entry_type
    self._entry_count = entry_count
    self._entries = None

  def transcribe(self):
    yield from super().transcribe()
    yield from self.transcribe_entry_count()
    entry_type = self.entry_type
    if self._entries is None and self._bs_entry_type is entry_type:
      yield self._entries_bs
    else:
      for entry in self.entries:
        if type(entry) is not entry_type:
          # the version has changed since the entry was made
          entry = entry_type(*entry)
        yield entry.transcribe()

  def transcribed_length(self):
    return (
        4 + sum(map(len, self.transcribe_entry_count())) +
        self.entry_count * self.entry_type.length
    )

def entry_types(class_name, field_names, v0_format, v1_format=None):
  ''' Return an `ENTRY_TYPES` mapping of version to `BinaryStruct`
      for entries with fields `field_names`.
  '''
  entry_types_map = {
      0: BinaryStruct(f'{class_name}V0', v0_format, field_names)
  }
  if v1_format is not None:
    entry_types_map[1] = BinaryStruct(
        f'{class_name}V1', v1_format, field_names
    )
  return entry_types_map

@BOX_TYPES.register_body
class STTSBoxBody(SampleTableBoxBody):
  ''' A 'stts' Decoding Time to Sample box - ISO14496 section 8.6.1.2.
  '''

  ENTRY_TYPES = entry_types('STTSEntry', 'sample_count sample_delta', '>LL')

  @property
  def total_duration(self) -> int:
    ''' The sum of the sample durations in media timescale units. '''
    return sum(entry.sample_count * entry.sample_delta for entry in self.entries)

@BOX_TYPES.register_body
class CTTSBoxBody(SampleTableBoxBody):
  ''' A 'ctts' Composition Time to Sample box - ISO14496 section 8.6.1.3.
      Version 1 has signed offsets.
  '''

  ENTRY_TYPES = entry_types(
      'CTTSEntry', 'sample_count sample_offset', '>LL', '>Ll'
  )

@BOX_TYPES.register_body
class STSSBoxBody(SampleTableBoxBody):
  ''' A 'stss' Sync Sample box - ISO14496 section 8.6.2.
  '''

  ENTRY_TYPES = entry_types('STSSEntry', 'sample_number', '>L')

@BOX_TYPES.register_body
class STSCBoxBody(SampleTableBoxBody):
  ''' A 'stsc' Sample To Chunk box - ISO14496 section 8.7.4.
  '''

  ENTRY_TYPES = entry_types(
      'STSCEntry', 'first_chunk samples_per_chunk sample_description_index',
      '>LLL'
  )

@BOX_TYPES.register_body
class STCOBoxBody(SampleTableBoxBody):
  ''' A 'stco' Chunk Offset box - ISO14496 section 8.7.5.
  '''

  ENTRY_TYPES = entry_types('STCOEntry', 'chunk_offset', '>L')

  @property
  def chunk_offsets(self) -> List[int]:
    ''' The chunk offsets as a list of `int`. '''
    return [entry.chunk_offset for entry in self.entries]

@BOX_TYPES.register_body
class CO64BoxBody(STCOBoxBody):
  ''' A 'co64' 64 bit Chunk Offset box - ISO14496 section 8.7.5.
  '''

  ENTRY_TYPES = entry_types('CO64Entry', 'chunk_offset', '>Q')

@BOX_TYPES.register_body
class ELSTBoxBody(SampleTableBoxBody):
  ''' An 'elst' Edit List box - ISO14496 section 8.6.6.
  '''

  ENTRY_TYPES = entry_types(
      'ELSTEntry',
      'segment_duration media_time media_rate_integer media_rate_fraction',
      '>Llhh',
      '>Qqhh',
  )

# the fields of a stsz box preceding its entries
STSZHeader = BinaryStruct('STSZHeader', '>LL', 'sample_size sample_count')

@BOX_TYPES.register_body
class STSZBoxBody(SampleTableBoxBody):
  ''' A 'stsz' Sample Size box - ISO14496 section 8.7.3.2.

      If `sample_size` is nonzero every sample has that size
      and there are no entries,
      otherwise there is an entry for each sample.
  '''

  ENTRY_TYPES = entry_types('STSZEntry', 'entry_size', '>L')

  def __init__(
      self, entries: Iterable = (), *, sample_size=0, sample_count=0, **kw
  ):
    self.sample_size = sample_size
    self.sample_count = sample_count
    super().__init__(entries, **kw)

  def __str__(self):
    return (
        f'{self.__class__.__name__}(sample_size={self.sample_size},'
        f'sample_count={self.sample_count},entry_count={self.entry_count})'
    )

  @property
  def entry_sizes(self) -> List[int]:
    ''' The size of each sample. '''
    if self.sample_size:
      return [self.sample_size] * self.sample_count
    return [entry.entry_size for entry in self.entries]

  def set_entry_sizes(self, sizes: Iterable[int]):
    ''' Set distinct sizes for each sample. '''
    self.sample_size = 0
    self.set_entries(sizes)

  def parse_entry_count(self, cursor: ByteCursor) -> int:
    header = cursor.parse_binary(STSZHeader)
    self.sample_size = header.sample_size
    self.sample_count = header.sample_count
    return 0 if self.sample_size else self.sample_count

  def transcribe_entry_count(self):
    sample_count = self.sample_count if self.sample_size else self.entry_count
    yield STSZHeader(self.sample_size, sample_count).transcribe()
