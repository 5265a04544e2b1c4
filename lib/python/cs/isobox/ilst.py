#!/usr/bin/env python3
#
# The iTunes metadata list: ilst, its items and their data boxes.
#

''' The iTunes style metadata list, the `ilst` box,
    normally found at `moov.udta.meta.ilst`.

    The basis of the format knowledge here comes from AtomicParsley's
    documentation:

        http://atomicparsley.sourceforge.net/mpeg-4files.html

    and additional information from:

        https://github.com/sergiomb2/libmp4v2/wiki/iTunesMetadata

    The children of an `ilst` box are metadata items
    whose box types are arbitrary tags such as `b'\\xa9nam'` (the title).
    Each item is a container of `data` boxes holding typed values,
    preceded by `mean` and `name` boxes for freeform `----` items.

    Example:

        ilst = new_empty('ilst')
        ilst.set_value('©nam', 'A Title')
        ilst.set_value('trkn', (3, 12))
        ilst.metadata()
        {'title': 'A Title', 'track_number': (3, 12)}
'''

from typing import Optional, Union

from cs.binary import (
    BinaryStruct,
    Float64BE,
    Int16BE,
    Int32BE,
    UInt8,
    UInt16BE,
    UInt32BE,
    UInt64BE,
)
from cs.lex import cropped_repr
from cs.logutils import warning
from cs.pfx import Pfx

from .bodies import FullBoxBody
from .box import Box, BoxBody, ContainerBoxBody
from .cursor import ByteCursor
from .registry import (
    BOX_TYPES,
    BoxType,
    BoxTypeRegistry,
    box_type_bytes,
    box_type_str,
)

# item tag to metadata attribute name
ILST_SCHEMA = {
    b'\xa9alb': 'album_title',
    b'\xa9art': 'artist',
    b'\xa9ART': 'performer',
    b'\xa9cmt': 'comment',
    b'\xa9cpy': 'copyright_notice',
    b'\xa9day': 'year',
    b'\xa9gen': 'custom_genre',
    b'\xa9grp': 'grouping',
    b'\xa9lyr': 'lyrics',
    b'\xa9nam': 'title',
    b'\xa9too': 'encoder',
    b'\xa9wrt': 'composer',
    b'aART': 'album_artist',
    b'catg': 'category',
    b'cnID': 'itunes_catalogue_id',
    b'covr': 'cover',
    b'cpil': 'compilation',
    b'cprt': 'copyright',
    b'desc': 'description',
    b'disk': 'disk_number',
    b'egid': 'episode_guid',
    b'geID': 'itunes_genre_id',
    b'genr': 'genre',
    b'gnre': 'standard_genre',
    b'hdvd': 'is_high_definition',
    b'keyw': 'keyword',
    b'ldes': 'long_description',
    b'pcst': 'podcast',
    b'pgap': 'gapless_playback',
    b'purd': 'purchase_date',
    b'purl': 'podcast_url',
    b'rtng': 'rating',
    b'sfID': 'itunes_store_country_code',
    b'soal': 'sort_album_title',
    b'soar': 'sort_artist',
    b'sonm': 'sort_name',
    b'stik': 'itunes_media_type',
    b'tmpo': 'bpm',
    b'trkn': 'track_number',
    b'tven': 'tv_episode_number',
    b'tves': 'tv_episode',
    b'tvnn': 'tv_network_name',
    b'tvsh': 'tv_show_name',
    b'tvsn': 'tv_season',
}

ILST_SCHEMA_BY_ATTRIBUTE = {
    attribute_name: item_tag
    for item_tag, attribute_name in ILST_SCHEMA.items()
}

# items whose implicit data is a (number,total) pair
NUMBER_PAIR_TAGS = b'trkn', b'disk'

FREEFORM_TAG = b'----'

# the trkn/disk implicit data forms: reserved, number, total[, reserved]
NumberPair = BinaryStruct('NumberPair', '>HHHH', 'reserved1 number total reserved2')
NumberPairShort = BinaryStruct('NumberPairShort', '>HHH', 'reserved1 number total')

def decode_number_pair(bs: bytes):
  ''' Decode the `trkn`/`disk` implicit data form:
      2 reserved bytes, a 16 bit number, a 16 bit total
      and optionally 2 more reserved bytes.
      Return `(number,total)`, or `bs` unchanged if it is not of that form.
  '''
  if len(bs) == NumberPair.length:
    pair = NumberPair.from_bytes(bs)
  elif len(bs) == NumberPairShort.length:
    pair = NumberPairShort.from_bytes(bs)
  else:
    return bs
  return pair.number, pair.total

def encode_number_pair(number: int, total: int) -> bytes:
  ''' Encode `(number,total)` in the 8 byte `trkn`/`disk` form. '''
  return NumberPair(0, number, total, 0).transcribe()

def int_width(value: int, signed=True) -> int:
  ''' The smallest of 1, 2, 4 or 8 bytes which can hold `value`.
      Raise `ValueError` if 8 bytes are not enough.
  '''
  for width in 1, 2, 4, 8:
    bits = width * 8
    if signed:
      if -(1 << (bits - 1)) <= value < (1 << (bits - 1)):
        return width
    elif 0 <= value < (1 << bits):
      return width
  raise ValueError(f'{value} does not fit in 8 bytes (signed={signed})')

# the types absent from cs.binary
Int8 = BinaryStruct('Int8', 'b')
Int64BE = BinaryStruct('Int64BE', '>q')
Float32BE = BinaryStruct('Float32BE', '>f')

# (signed,width) to integer type for the integer data types
INT_TYPES = {
    (True, 1): Int8,
    (True, 2): Int16BE,
    (True, 4): Int32BE,
    (True, 8): Int64BE,
    (False, 1): UInt8,
    (False, 2): UInt16BE,
    (False, 4): UInt32BE,
    (False, 8): UInt64BE,
}

# the leading type indicator and locale of a data box
DataTypeLocale = BinaryStruct('DataTypeLocale', '>LL', 'type_word locale')

class DATABoxBody(BoxBody):
  ''' A 'data' box: a typed iTunes metadata value.

      The payload is a 1 byte type set (0 for the well known types),
      a 3 byte type code, a 4 byte locale and then the value bytes.
  '''

  # well known data types
  IMPLICIT = 0
  UTF8 = 1
  UTF16 = 2
  JPEG = 13
  PNG = 14
  BE_SIGNED = 21
  BE_UNSIGNED = 22
  BE_FLOAT32 = 23
  BE_FLOAT64 = 24
  BMP = 27

  IMAGE_MAGIC = (
      (b'\xff\xd8\xff', JPEG),
      (b'\x89PNG\r\n\x1a\n', PNG),
      (b'BM', BMP),
  )

  def __init__(self, value_bs=b'', data_type=IMPLICIT, *, type_set=0, locale=0):
    self.type_set = type_set
    self.data_type = data_type
    self.locale = locale
    self.value_bs = bytes(value_bs)

  def __str__(self):
    return f'{self.__class__.__name__}(type={self.data_type},{cropped_repr(self.value)})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    type_locale = cursor.parse_binary(DataTypeLocale)
    self.type_set = type_locale.type_word >> 24
    self.data_type = type_locale.type_word & 0xffffff
    self.locale = type_locale.locale
    self.value_bs = cursor.read_remaining()

  def transcribe(self):
    yield DataTypeLocale(
        (self.type_set << 24) | self.data_type, self.locale
    ).transcribe()
    yield self.value_bs

  def transcribed_length(self):
    return 8 + len(self.value_bs)

  @property
  def value(self):
    ''' The decoded value:
        `str` for text, `int` for integers, `float` for floats
        and `bytes` for images, implicit data and unknown types.
    '''
    data_type = self.data_type
    bs = self.value_bs
    if self.type_set != 0:
      return bs
    with Pfx("data_type %d", data_type):
      if data_type in (self.UTF8, self.UTF16):
        encoding = 'utf-8' if data_type == self.UTF8 else 'utf-16-be'
        try:
          return bs.decode(encoding)
        except UnicodeDecodeError as e:
          warning("%s decode fails, using replacement characters: %s", encoding, e)
          return bs.decode(encoding, errors='replace')
      if data_type in (self.BE_SIGNED, self.BE_UNSIGNED):
        int_type = INT_TYPES.get((data_type == self.BE_SIGNED, len(bs)))
        if int_type is None:
          warning("unexpected integer length %d, returning bytes", len(bs))
          return bs
        return int_type.from_bytes(bs).value
      if data_type == self.BE_FLOAT32 and len(bs) == Float32BE.length:
        return Float32BE.from_bytes(bs).value
      if data_type == self.BE_FLOAT64 and len(bs) == Float64BE.length:
        return Float64BE.from_bytes(bs).value
      if data_type in (self.BE_FLOAT32, self.BE_FLOAT64):
        warning("unexpected float length %d, returning bytes", len(bs))
    return bs

  @value.setter
  def value(self, new_value):
    self.set_value(new_value)

  def set_value(self, value, data_type: Optional[int] = None):
    ''' Set the value and data type.

        If `data_type` is `None` it is inferred from `value`:
        * `str`: UTF-8
        * `bool` or `int`: a signed big endian integer of minimal width
        * `float`: a 64 bit big endian float
        * bytes-like: JPEG, PNG or BMP according to the leading magic
          number, otherwise implicit
    '''
    with Pfx("%s.set_value(%s)", self.__class__.__name__, cropped_repr(value)):
      if isinstance(value, (bytes, bytearray, memoryview)):
        value_bs = bytes(value)
        if data_type is None:
          data_type = self.IMPLICIT
          for magic, image_type in self.IMAGE_MAGIC:
            if value_bs.startswith(magic):
              data_type = image_type
              break
      elif isinstance(value, str):
        if data_type is None:
          data_type = self.UTF8
        if data_type == self.UTF8:
          value_bs = value.encode('utf-8')
        elif data_type == self.UTF16:
          value_bs = value.encode('utf-16-be')
        else:
          raise TypeError(f'cannot store a str as data type {data_type}')
      elif isinstance(value, int):
        if data_type is None:
          data_type = self.BE_SIGNED
        if data_type not in (self.BE_SIGNED, self.BE_UNSIGNED):
          raise TypeError(f'cannot store an int as data type {data_type}')
        signed = data_type == self.BE_SIGNED
        int_type = INT_TYPES[signed, int_width(value, signed=signed)]
        value_bs = int_type.transcribe_value(int(value))
      elif isinstance(value, float):
        if data_type is None:
          data_type = self.BE_FLOAT64
        if data_type == self.BE_FLOAT64:
          value_bs = Float64BE.transcribe_value(value)
        elif data_type == self.BE_FLOAT32:
          value_bs = Float32BE.transcribe_value(value)
        else:
          raise TypeError(f'cannot store a float as data type {data_type}')
      else:
        raise TypeError(f'unsupported value type {type(value).__name__}')
      self.type_set = 0
      self.data_type = data_type
      self.value_bs = value_bs

class ILSTTextBoxBody(FullBoxBody):
  ''' The text of a 'mean' or 'name' box in a freeform '----' item.
  '''

  BOX_TYPES = b'mean', b'name'

  def __init__(self, text=''):
    super().__init__()
    self.text = text

  def __str__(self):
    return f'{self.__class__.__name__}({self.text!r})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    super().parse_fields(cursor, **scan_kw)
    self.text = cursor.read_remaining().decode('utf-8', errors='replace')

  def transcribe(self):
    yield from super().transcribe()
    yield self.text.encode('utf-8')

# the registry for the children of an ilst item
ILST_ITEM_CONTENT_TYPES = BOX_TYPES.overlay(
    'ilst item',
    [
        BoxType(b'data', False, DATABoxBody, DATABoxBody.doc_line()),
        BoxType(b'mean', False, ILSTTextBoxBody, ILSTTextBoxBody.doc_line()),
        BoxType(b'name', False, ILSTTextBoxBody, ILSTTextBoxBody.doc_line()),
    ],
)

class ILSTItemBoxBody(ContainerBoxBody):
  ''' An iTunes metadata item: a container of 'data' boxes,
      preceded by 'mean' and 'name' boxes for freeform items.
  '''

  @classmethod
  def empty(cls):
    ''' An empty item holds a single empty 'data' box.
    '''
    return cls([Box.new(b'data', body_class=DATABoxBody)])

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    scan_kw.update(registry=ILST_ITEM_CONTENT_TYPES)
    super().parse_fields(cursor, **scan_kw)

  @property
  def data_boxes(self):
    ''' The 'data' boxes of this item. '''
    return [box for box in self.boxes if box.box_type == b'data']

  def _text(self, box_type):
    for box in self.boxes:
      if box.box_type == box_type:
        return box.body.text
    return None

  @property
  def mean(self) -> Optional[str]:
    ''' The text of the 'mean' box or `None`. '''
    return self._text(b'mean')

  @property
  def name(self) -> Optional[str]:
    ''' The text of the 'name' box or `None`. '''
    return self._text(b'name')

  @property
  def value(self):
    ''' The value of the first 'data' box, or `None` if there are none.
    '''
    data_boxes = self.data_boxes
    if not data_boxes:
      return None
    return data_boxes[0].body.value

  @value.setter
  def value(self, new_value):
    self.set_value(new_value)

  def set_value(self, value, data_type: Optional[int] = None):
    ''' Set the value of the first 'data' box,
        adding a 'data' box if there are none.
    '''
    data_boxes = self.data_boxes
    if data_boxes:
      data_box = data_boxes[0]
    else:
      data_box = Box.new(b'data', body_class=DATABoxBody)
      self.add_box(data_box)
    data_box.body.set_value(value, data_type)

def item_attribute_name(item: Box) -> str:
  ''' The metadata attribute name for the ilst item `item`:
      `mean.name` for freeform items,
      the schema name for known tags,
      otherwise the item type as a `str`.
  '''
  if item.box_type == FREEFORM_TAG:
    mean, name = item.body.mean, item.body.name
    if mean is not None and name is not None:
      return f'{mean}.{name}'
  try:
    return ILST_SCHEMA[item.box_type]
  except KeyError:
    return item.box_type_s

def item_value(item: Box):
  ''' The value of the ilst item `item`.
      `trkn` and `disk` values are decoded as `(number,total)`.
  '''
  value = item.body.value
  if item.box_type in NUMBER_PAIR_TAGS and isinstance(value, bytes):
    value = decode_number_pair(value)
  return value

# the registry for the children of an ilst box: every tag is an item
ILST_ITEM_TYPES = BoxTypeRegistry(
    'ilst',
    default=BoxType(None, True, ILSTItemBoxBody, ILSTItemBoxBody.doc_line()),
).freeze()

def new_ilst_item(item_tag: Union[bytes, str]) -> Box:
  ''' Return a new empty ilst item of type `item_tag`,
      holding a single empty 'data' box.
  '''
  return Box.new(item_tag, registry=ILST_ITEM_TYPES)

@BOX_TYPES.register_body
class ILSTBoxBody(ContainerBoxBody):
  ''' Apple iTunes Information List, container for iTunes metadata items.

      Known items are also accessible as attributes named from the
      `ILST_SCHEMA`, for example `.title` for the `b'\\xa9nam'` item.
  '''

  def __getattr__(self, attr):
    if not attr.startswith('_'):
      try:
        item_tag = ILST_SCHEMA_BY_ATTRIBUTE[attr]
      except KeyError:
        pass
      else:
        return self.get_value(item_tag)
    raise AttributeError(f'{self.__class__.__name__}.{attr}')

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    scan_kw.update(registry=ILST_ITEM_TYPES)
    super().parse_fields(cursor, **scan_kw)

  def items(self):
    ''' The item boxes in order. '''
    return list(self.boxes)

  def get(self, item_tag: Union[bytes, str]) -> Optional[Box]:
    ''' Return the first item of type `item_tag`, or `None`.
    '''
    item_tag = box_type_bytes(item_tag)
    for item in self.boxes:
      if item.box_type == item_tag:
        return item
    return None

  def add_item(self, item_tag: Union[bytes, str]) -> Box:
    ''' Append a new empty item of type `item_tag` and return it.
    '''
    item = new_ilst_item(item_tag)
    self.add_box(item)
    return item

  def get_value(self, item_tag: Union[bytes, str], default=None):
    ''' Return the value of the first item of type `item_tag`,
        or `default` if there is no such item.
        `trkn` and `disk` values are decoded as `(number,total)`.
    '''
    item = self.get(item_tag)
    if item is None:
      return default
    return item_value(item)

  def set_value(
      self,
      item_tag: Union[bytes, str],
      value,
      data_type: Optional[int] = None,
  ) -> Box:
    ''' Set the value of the first item of type `item_tag`,
        adding the item if missing. Return the item.
        A `(number,total)` value for `trkn` or `disk`
        is encoded in their implicit form.
    '''
    item_tag = box_type_bytes(item_tag)
    with Pfx("ilst.set_value(%s)", box_type_str(item_tag)):
      if item_tag in NUMBER_PAIR_TAGS and isinstance(value, tuple):
        value = encode_number_pair(*value)
        data_type = DATABoxBody.IMPLICIT
      item = self.get(item_tag)
      if item is None:
        item = self.add_item(item_tag)
      item.body.set_value(value, data_type)
    return item

  def metadata(self) -> dict:
    ''' Return a `dict` mapping attribute names to values
        for all the items, the first item winning for repeated tags.
    '''
    md = {}
    for item in self.boxes:
      attribute_name = item_attribute_name(item)
      if attribute_name not in md:
        md[attribute_name] = item_value(item)
    return md

  metatags = metadata

# item tags which are containers when constructed by tag alone
for _item_tag in list(ILST_SCHEMA) + [FREEFORM_TAG]:
  BOX_TYPES.register(_item_tag, body_class=ILSTItemBoxBody, contextual=True)
