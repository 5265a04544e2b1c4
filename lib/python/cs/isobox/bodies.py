#!/usr/bin/env python3
#
# Specialised box bodies for the common ISO14496-12 box types.
#

''' Specialised `BoxBody` subclasses for common ISO14496-12 boxes.

    Each class registers itself in the default registry `BOX_TYPES`
    for the box types named in its `BOX_TYPES` attribute
    or inferred from its class name.
'''

from typing import Tuple

from cs.binary import BinaryFixedBytes, BinaryStruct, BinaryUTF8NUL, UInt32BE
from cs.logutils import warning
from cs.pfx import Pfx

from .box import PARSE_MODE, BoxBody, ContainerBoxBody
from .cursor import ByteCursor
from .registry import BOX_TYPES, box_type_str

# ISO14496 section 4.2: a 1 byte version and 3 bytes of flags
FullBoxHeader = BinaryStruct(
    'FullBoxHeader', '>BBBB', 'version flags0 flags1 flags2'
)

def parse_version_flags(cursor: ByteCursor) -> Tuple[int, int]:
  ''' Parse a full box version and flags from `cursor`,
      return `(version,flags)`.
  '''
  vf = cursor.parse_binary(FullBoxHeader)
  return vf.version, (vf.flags0 << 16) | (vf.flags1 << 8) | vf.flags2

def version_flags_bytes(version: int, flags: int) -> bytes:
  ''' The 4 byte binary form of a full box version and flags.
  '''
  return FullBoxHeader(
      version, (flags >> 16) & 0xff, (flags >> 8) & 0xff, flags & 0xff
  ).transcribe()

class FullBoxBody(BoxBody):
  ''' A full box body - ISO14496 section 4.2.
      The payload commences with a 1 byte version and 3 bytes of flags.
  '''

  def __init__(self, version=0, flags=0):
    self.version = version
    self.flags = flags

  def __str__(self):
    return f'{self.__class__.__name__}(version={self.version},flags=0x{self.flags:06x})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    self.version, self.flags = parse_version_flags(cursor)

  def transcribe(self):
    yield version_flags_bytes(self.version, self.flags)

# the fixed leading fields of an ftyp box
FTYPHeader = BinaryStruct('FTYPHeader', '>4sL', 'major_brand minor_version')
Brand = BinaryFixedBytes('Brand', 4)

@BOX_TYPES.register_body
class FTYPBoxBody(BoxBody):
  ''' An 'ftyp' File Type box - ISO14496 section 4.3.
      Decode the major brand, minor version and compatible brands.
  '''

  def __init__(self, major_brand=b'isom', minor_version=0, brands=()):
    self.major_brand = bytes(major_brand)
    self.minor_version = minor_version
    self.brands = [bytes(brand) for brand in brands]

  def __str__(self):
    return (
        f'{self.__class__.__name__}('
        f'major_brand={box_type_str(self.major_brand)},'
        f'minor_version={self.minor_version},'
        f'brands={",".join(map(box_type_str, self.brands))})'
    )

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    header = cursor.parse_binary(FTYPHeader)
    self.major_brand = header.major_brand
    self.minor_version = header.minor_version
    remaining = cursor.remaining()
    if remaining is None:
      remaining = 0
    self.brands = [
        brand.data
        for brand in cursor.scan_binary(Brand, remaining // Brand.length)
    ]

  def transcribe(self):
    yield FTYPHeader(self.major_brand, self.minor_version).transcribe()
    yield from self.brands

@BOX_TYPES.register_body
class FREEBoxBody(BoxBody):
  ''' A 'free' or 'skip' Free Space box - ISO14496 section 8.1.2.
      The content is not kept, only its length;
      it transcribes as zero bytes.
  '''

  BOX_TYPES = (b'free', b'skip')

  def __init__(self, free_size=0):
    self.free_size = free_size

  def __str__(self):
    return f'{self.__class__.__name__}(free_size={self.free_size})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    remaining = cursor.remaining()
    if remaining is None:
      remaining = len(cursor.read_remaining())
    else:
      cursor.skip(remaining)
    self.free_size = remaining

  def transcribe(self):
    yield bytes(self.free_size)

  def transcribed_length(self):
    return self.free_size

@BOX_TYPES.register_body
class MDATBoxBody(BoxBody):
  ''' A Media Data Box - ISO14496 section 8.1.1.
      If `PARSE_MODE.discard_data` is true at parse time
      the payload is skipped and only its length is kept.
  '''

  def __init__(self, data=b''):
    self.data = data
    self.data_length = None if data is None else len(data)

  def __str__(self):
    if self.data is None:
      return f'{self.__class__.__name__}(data_length={self.data_length},discarded)'
    return f'{self.__class__.__name__}(data_length={self.data_length})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    if PARSE_MODE.discard_data:
      remaining = cursor.remaining()
      if remaining is None:
        remaining = len(cursor.read_remaining())
      else:
        cursor.skip(remaining)
      self.data = None
      self.data_length = remaining
    else:
      self.data = cursor.read_remaining()
      self.data_length = len(self.data)

  def transcribe(self):
    if self.data is None:
      raise ValueError(
          f'{self.__class__.__name__}: data discarded during parse, cannot transcribe'
      )
    yield self.data

  def transcribed_length(self):
    return self.data_length

# the fixed fields of an hdlr box after the version and flags
HDLRFields = BinaryStruct(
    'HDLRFields', '>L4s12s', 'pre_defined handler_type reserved'
)

@BOX_TYPES.register_body
class HDLRBoxBody(FullBoxBody):
  ''' A HDLRBoxBody is a Handler Reference box - ISO14496 section 8.4.3.
  '''

  def __init__(self, handler_type=b'\0\0\0\0', name=''):
    super().__init__()
    self.pre_defined = 0
    self.handler_type = bytes(handler_type)
    self.reserved = bytes(12)
    self.name_bs = b''.join(BinaryUTF8NUL.transcribe_value(name))

  def __str__(self):
    return (
        f'{self.__class__.__name__}(handler_type={box_type_str(self.handler_type)},'
        f'name={self.name!r})'
    )

  @property
  def handler_type_s(self) -> str:
    ''' The handler type as a `str`. '''
    return box_type_str(self.handler_type)

  @property
  def name(self) -> str:
    ''' The handler name: UTF-8 text up to the first NUL.
        QuickTime files sometimes omit the NUL.
    '''
    if not self.name_bs:
      return ''
    try:
      name, _ = BinaryUTF8NUL.parse_value_from_bytes(self.name_bs)
    except UnicodeDecodeError as e:
      with Pfx("hdlr.name"):
        warning("invalid UTF-8 %r: %s", self.name_bs, e)
      name = self.name_bs.split(b'\0', 1)[0].decode('utf-8', errors='replace')
    return name

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    super().parse_fields(cursor, **scan_kw)
    fields = cursor.parse_binary(HDLRFields)
    self.pre_defined = fields.pre_defined
    self.handler_type = fields.handler_type
    self.reserved = fields.reserved
    self.name_bs = cursor.read_remaining()

  def transcribe(self):
    yield from super().transcribe()
    yield HDLRFields(self.pre_defined, self.handler_type,
                     self.reserved).transcribe()
    yield self.name_bs

@BOX_TYPES.register_body
class METABoxBody(ContainerBoxBody):
  ''' A 'meta' Meta BoxBody - ISO14496 section 8.11.1.

      This is normally a full box containing boxes.
      The QuickTime form omits the version and flags;
      it is recognised by a nonzero leading word,
      which is then the size of the first child box.
  '''

  def __init__(self, boxes=None, *, is_full_box=True):
    super().__init__(boxes)
    self.is_full_box = is_full_box
    self.version = 0
    self.flags = 0

  def __str__(self):
    form = '' if self.is_full_box else 'quicktime,'
    return f'{self.__class__.__name__}({form}{",".join(box.box_type_s for box in self.boxes)})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    if (cursor.remaining() or 0) >= 4 and cursor.peek(4) != bytes(4):
      self.is_full_box = False
    else:
      self.is_full_box = True
      self.version, self.flags = parse_version_flags(cursor)
    super().parse_fields(cursor, **scan_kw)

  def transcribe(self):
    if self.is_full_box:
      yield version_flags_bytes(self.version, self.flags)
    yield from super().transcribe()

  def transcribed_length(self):
    return (4 if self.is_full_box else 0) + super().transcribed_length()

@BOX_TYPES.register_body
class EntryCountContainerBoxBody(ContainerBoxBody):
  ''' A full box containing a 32 bit entry count and then that many boxes.
      The transcribed count is the current number of boxes.
  '''

  BOX_TYPES = (
      b'stsd',  # Sample Description - section 8.5.2
      b'dref',  # Data Reference - section 8.7.2
  )

  def __init__(self, boxes=None):
    super().__init__(boxes)
    self.version = 0
    self.flags = 0

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    self.version, self.flags = parse_version_flags(cursor)
    entry_count = cursor.parse_value(UInt32BE)
    super().parse_fields(cursor, **scan_kw)
    if entry_count != len(self.boxes):
      warning(
          "entry_count=%d but %d boxes were decoded", entry_count,
          len(self.boxes)
      )

  def transcribe(self):
    yield version_flags_bytes(self.version, self.flags)
    yield UInt32BE.transcribe_value(len(self.boxes))
    yield from super().transcribe()

  def transcribed_length(self):
    return 8 + super().transcribed_length()
