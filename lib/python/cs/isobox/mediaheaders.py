#!/usr/bin/env python3
#
# The movie, track and media header boxes.
#

''' Bodies for the fixed layout header boxes of a movie:
    `mvhd`, `tkhd`, `mdhd`, `vmhd` and `smhd`.

    These are full boxes whose fields are a sequence of `cs.binary`
    structs, some of which depend on the box version.
    The struct fields are presented as attributes of the body
    and therefore of the `Box`:

        mvhd = moov.MVHD
        print(mvhd.timescale, mvhd.duration, mvhd.duration_seconds)
        mvhd.set_fields(duration=6000)
'''

from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional, Tuple, Union

from cs.binary import BinaryStruct
from cs.pfx import Pfx

from .bodies import FullBoxBody
from .cursor import ByteCursor
from .errors import FramingError
from .registry import BOX_TYPES

# ISO14496 timestamps count seconds from midnight, 1 January 1904, UTC
ISO14496_EPOCH = datetime(1904, 1, 1, tzinfo=timezone.utc)

def timestamp_datetime(seconds: int) -> datetime:
  ''' Convert an ISO14496 timestamp to a UTC `datetime`.
  '''
  return ISO14496_EPOCH + timedelta(seconds=seconds)

def datetime_timestamp(dt: datetime) -> int:
  ''' Convert a `datetime` to an ISO14496 timestamp.
      A naive `datetime` is taken to be UTC.
  '''
  if dt.tzinfo is None:
    dt = dt.replace(tzinfo=timezone.utc)
  return int((dt - ISO14496_EPOCH).total_seconds())

# the unity transformation matrix, 16.16 and 2.30 fixed point values
UNITY_MATRIX = dict(
    v0=0x00010000,
    v1=0,
    v2=0,
    v3=0,
    v4=0x00010000,
    v5=0,
    v6=0,
    v7=0,
    v8=0x40000000,
)

Matrix9Long = BinaryStruct(
    'Matrix9Long', '>lllllllll', 'v0 v1 v2 v3 v4 v5 v6 v7 v8'
)

# the times of an mvhd or mdhd box
MediaTimesV0 = BinaryStruct(
    'MediaTimesV0', '>LLLL',
    'creation_time modification_time timescale duration'
)
MediaTimesV1 = BinaryStruct(
    'MediaTimesV1', '>QQLQ',
    'creation_time modification_time timescale duration'
)
MEDIA_TIMES = {0: MediaTimesV0, 1: MediaTimesV1}

StructSpec = Union[type, Mapping[int, type]]

class StructFieldsBoxBody(FullBoxBody):
  ''' A full box whose fields are a sequence of `cs.binary` structs.

      Subclasses define:
      * `FIELD_STRUCTS`: a sequence of `(name,struct_spec)`
        where `struct_spec` is a `BinaryStruct` class
        or a mapping of box version to `BinaryStruct` class
      * `FIELD_DEFAULTS`: an optional mapping of `name`
        to a mapping of field defaults for a new body
      * `DEFAULT_FLAGS`: the flags for a new body

      The fields of the structs are available as attributes
      and may be changed with `set_fields`.
  '''

  FIELD_STRUCTS: Tuple[Tuple[str, StructSpec], ...] = ()
  FIELD_DEFAULTS: Mapping[str, Mapping[str, int]] = {}
  DEFAULT_FLAGS = 0

  def __init__(self, version=0, flags=None, **field_values):
    super().__init__(
        version=version, flags=self.DEFAULT_FLAGS if flags is None else flags
    )
    structs = {}
    for name, struct_type in self.field_structs():
      value = struct_type.from_bytes(bytes(struct_type.length))
      defaults = self.FIELD_DEFAULTS.get(name)
      if defaults:
        value = value._replace(**defaults)
      structs[name] = value
    self._structs = structs
    self.set_fields(**field_values)

  def __str__(self):
    fields = ','.join(
        f'{field_name}={value}'
        for struct in self._structs.values()
        for field_name, value in struct._asdict().items()
        if not field_name.startswith('reserved')
        and not field_name.startswith('pre_defined')
    )
    return f'{self.__class__.__name__}(version={self.version},flags=0x{self.flags:06x},{fields})'

  def __getattr__(self, attr):
    if not attr.startswith('_'):
      for struct in self.__dict__.get('_structs', {}).values():
        if attr in struct._fields:
          return getattr(struct, attr)
    raise AttributeError(f'{self.__class__.__name__}.{attr}')

  def field_structs(self,
                    version: Optional[int] = None) -> Iterable[Tuple[str, type]]:
    ''' Yield `(name,struct_type)` for the structs of this body
        for `version`, default `self.version`.
        Raise `FramingError` for an unsupported version.
    '''
    if version is None:
      version = self.version
    for name, struct_spec in self.FIELD_STRUCTS:
      if isinstance(struct_spec, Mapping):
        try:
          struct_spec = struct_spec[version]
        except KeyError as e:
          raise FramingError(
              f'{self.__class__.__name__}: unsupported version {version},'
              f' expected one of {sorted(struct_spec)}'
          ) from e
      yield name, struct_spec

  def set_fields(self, **field_values):
    ''' Set struct fields by name.
        Raise `AttributeError` for an unknown field name.
    '''
    for field_name, value in field_values.items():
      for name, struct in self._structs.items():
        if field_name in struct._fields:
          self._structs[name] = struct._replace(**{field_name: value})
          break
      else:
        raise AttributeError(
            f'{self.__class__.__name__}.set_fields: unknown field {field_name!r}'
        )

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    super().parse_fields(cursor, **scan_kw)
    structs = {}
    for name, struct_type in self.field_structs():
      with Pfx(name):
        structs[name] = cursor.parse_binary(struct_type)
    self._structs = structs

  def transcribe(self):
    yield from super().transcribe()
    for name, struct_type in self.field_structs():
      struct = self._structs[name]
      if type(struct) is not struct_type:
        # the version has changed since the struct was made
        struct = struct_type(**struct._asdict())
      yield struct.transcribe()

  def transcribed_length(self):
    return 4 + sum(
        struct_type.length for _, struct_type in self.field_structs()
    )

class CreationTimesMixin:
  ''' Conveniences for bodies with `creation_time` and `modification_time`.
  '''

  @property
  def creation_datetime(self) -> datetime:
    ''' The creation time as a UTC `datetime`. '''
    return timestamp_datetime(self.creation_time)

  @property
  def modification_datetime(self) -> datetime:
    ''' The modification time as a UTC `datetime`. '''
    return timestamp_datetime(self.modification_time)

class MediaTimesMixin(CreationTimesMixin):
  ''' Conveniences for bodies which also have `timescale` and `duration`.
  '''

  @property
  def duration_seconds(self) -> Optional[float]:
    ''' The duration in seconds, or `None` if there is no timescale.
    '''
    timescale = self.timescale
    if not timescale:
      return None
    return self.duration / timescale

MVHDPlayback = BinaryStruct(
    'MVHDPlayback', '>lh10s', 'rate_long volume_short reserved1'
)
MVHDTrailer = BinaryStruct('MVHDTrailer', '>24sL', 'pre_defined next_track_id')

@BOX_TYPES.register_body
class MVHDBoxBody(MediaTimesMixin, StructFieldsBoxBody):
  ''' An 'mvhd' Movie Header box - ISO14496 section 8.2.2.
  '''

  FIELD_STRUCTS = (
      ('times', MEDIA_TIMES),
      ('playback', MVHDPlayback),
      ('matrix', Matrix9Long),
      ('trailer', MVHDTrailer),
  )
  FIELD_DEFAULTS = dict(
      times=dict(timescale=1000),
      playback=dict(rate_long=0x00010000, volume_short=0x0100),
      matrix=UNITY_MATRIX,
      trailer=dict(next_track_id=1),
  )

  @property
  def rate(self):
    ''' Rate field converted to float: 1.0 represents normal rate.
    '''
    rate_long = self.rate_long
    return (rate_long >> 16) + (rate_long & 0xffff) / 65536.0

  @property
  def volume(self):
    ''' Volume field converted to float: 1.0 represents full volume.
    '''
    volume_short = self.volume_short
    return (volume_short >> 8) + (volume_short & 0xff) / 256.0

TKHDTimesV0 = BinaryStruct(
    'TKHDTimesV0', '>LLLLL',
    'creation_time modification_time track_id reserved1 duration'
)
TKHDTimesV1 = BinaryStruct(
    'TKHDTimesV1', '>QQLLQ',
    'creation_time modification_time track_id reserved1 duration'
)
TKHDLayout = BinaryStruct(
    'TKHDLayout', '>8shhhH',
    'reserved2 layer alternate_group volume reserved3'
)
TKHDDimensions = BinaryStruct('TKHDDimensions', '>LL', 'width height')

@BOX_TYPES.register_body
class TKHDBoxBody(CreationTimesMixin, StructFieldsBoxBody):
  ''' A 'tkhd' Track Header box - ISO14496 section 8.3.2.
      The `width` and `height` are 16.16 fixed point values.
  '''

  FIELD_STRUCTS = (
      ('times', {0: TKHDTimesV0, 1: TKHDTimesV1}),
      ('layout', TKHDLayout),
      ('matrix', Matrix9Long),
      ('dimensions', TKHDDimensions),
  )
  FIELD_DEFAULTS = dict(
      times=dict(track_id=1),
      matrix=UNITY_MATRIX,
  )
  # track_enabled | track_in_movie
  DEFAULT_FLAGS = 0x3

  @property
  def track_enabled(self):
    ''' Test flags bit 0, 0x1, track_enabled.
    '''
    return (self.flags & 0x1) != 0

  @property
  def track_in_movie(self):
    ''' Test flags bit 1, 0x2, track_in_movie.
    '''
    return (self.flags & 0x2) != 0

  @property
  def track_in_preview(self):
    ''' Test flags bit 2, 0x4, track_in_preview.
    '''
    return (self.flags & 0x4) != 0

MDHDLanguage = BinaryStruct('MDHDLanguage', '>HH', 'language_short pre_defined')

def pack_language(language: str) -> int:
  ''' Pack an ISO 639-2/T 3 letter language code into 15 bits.
  '''
  if len(language) != 3 or not all(0x60 <= ord(c) <= 0x7f for c in language):
    raise ValueError(f'invalid language code {language!r}')
  a, b, c = (ord(c) - 0x60 for c in language)
  return (a << 10) | (b << 5) | c

def unpack_language(language_short: int) -> str:
  ''' Unpack a 15 bit packed ISO 639-2/T language code.
  '''
  return bytes(
      [
          x + 0x60 for x in (
              (language_short >> 10) & 0x1f, (language_short >> 5) & 0x1f,
              language_short & 0x1f
          )
      ]
  ).decode('ascii')

@BOX_TYPES.register_body
class MDHDBoxBody(MediaTimesMixin, StructFieldsBoxBody):
  ''' A MDHDBoxBody is a Media Header box - ISO14496 section 8.4.2.
  '''

  FIELD_STRUCTS = (
      ('times', MEDIA_TIMES),
      ('language', MDHDLanguage),
  )
  FIELD_DEFAULTS = dict(
      times=dict(timescale=1000),
      language=dict(language_short=pack_language('und')),
  )

  @property
  def language(self) -> str:
    ''' The ISO 639-2/T language code as decoded from the packed form.
    '''
    return unpack_language(self.language_short)

  @language.setter
  def language(self, new_language: str):
    self.set_fields(language_short=pack_language(new_language))

VMHDFields = BinaryStruct(
    'VMHDFields', '>HHHH', 'graphicsmode red green blue'
)

@BOX_TYPES.register_body
class VMHDBoxBody(StructFieldsBoxBody):
  ''' A 'vmhd' Video Media Header box - ISO14496 section 12.1.2.
  '''

  FIELD_STRUCTS = (('fields', VMHDFields),)
  DEFAULT_FLAGS = 0x1

SMHDFields = BinaryStruct('SMHDFields', '>hH', 'balance reserved1')

@BOX_TYPES.register_body
class SMHDBoxBody(StructFieldsBoxBody):
  ''' A 'smhd' Sound Media Header box - ISO14496 section 12.2.2.
      The `balance` is an 8.8 fixed point value, 0 being centre.
  '''

  FIELD_STRUCTS = (('fields', SMHDFields),)
