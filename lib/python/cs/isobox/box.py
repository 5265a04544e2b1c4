#!/usr/bin/env python3
#
# The Box record, its header and the recursive box decoder.
#

''' The `Box` record and the recursive descent box decoder.

    A `Box` has a `BoxHeader` (size and type)
    and a `BoxBody` holding the decoded payload.
    Generic leaves use an `OpaqueBoxBody` holding the raw payload bytes,
    generic containers use a `ContainerBoxBody` holding child `Box`es,
    and specialised box types use their registered `BoxBody` subclass.

    Decoding:

        with FileCursor.from_filename('movie.mp4') as cursor:
            for box in scan_boxes(cursor):
                box.dump()

    Construction and encoding:

        moov = new_empty('moov')
        moov.add_box(new_empty('udta'))
        bs = bytes(moov)
'''

from typing import Iterable, List, Optional, Tuple, Union

from cs.binary import BinaryStruct, UInt64BE
from cs.deco import promote
from cs.lex import cropped_repr, printt
from cs.logutils import debug, warning
from cs.pfx import Pfx
from cs.threads import ThreadState

from .cursor import ByteCursor
from .errors import BoundsError, FramingError, NestingError
from .registry import BOX_TYPES, BoxTypeRegistry, box_type_bytes, box_type_str

DEFAULT_MAX_DEPTH = 64

# Per thread parse options:
# * discard_data: do not keep the payload of mdat boxes
# * max_depth: the maximum box nesting depth
PARSE_MODE = ThreadState(discard_data=False, max_depth=DEFAULT_MAX_DEPTH)

# the leading 32 bit size field and 4 byte box type of every box header
BoxSizeType = BinaryStruct('BoxSizeType', '>L4s', 'size_field box_type')

class BoxHeader:
  ''' A box header: size, type and optional user type.

      The on disc forms are:
      * 4 byte big endian size, 4 byte type
      * size `1`: an 8 byte big endian size follows the type
      * size `0`: the box extends to the end of the enclosing scope
      * type `uuid`: a 16 byte user type follows the size fields
  '''

  MIN_LENGTH = 8
  MAX_SIZE_32 = 0xffffffff

  def __init__(
      self,
      box_type: Union[bytes, str],
      *,
      size_field: Optional[int] = None,
      box_size: Optional[int] = None,
      user_type: Optional[bytes] = None,
  ):
    box_type = box_type_bytes(box_type)
    if box_type == b'uuid':
      if user_type is None:
        user_type = bytes(16)
      elif len(user_type) != 16:
        raise ValueError(f'user_type must be 16 bytes, got {user_type!r}')
    elif user_type is not None:
      raise ValueError(f'user_type supplied for box type {box_type!r}')
    self.box_type = box_type
    self.size_field = size_field
    self.box_size = box_size
    self.user_type = user_type

  def __str__(self):
    return f'{self.__class__.__name__}({self.box_type_s},box_size={self.box_size})'

  __repr__ = __str__

  @property
  def box_type_s(self):
    ''' The box type as a `str`. '''
    return box_type_str(self.box_type)

  @property
  def is_extended(self):
    ''' Whether this header uses the 64 bit size form. '''
    return self.size_field == 1

  @property
  def header_length(self) -> int:
    ''' The length of this header in its current form.
    '''
    length = self.MIN_LENGTH
    if self.is_extended:
      length += 8
    if self.user_type is not None:
      length += 16
    return length

  @classmethod
  def parse(cls, cursor: ByteCursor) -> "BoxHeader":
    ''' Decode a `BoxHeader` from `cursor`.
        For a size field of `0` the `box_size` is left as `None`
        for the caller to resolve from the enclosing scope.
    '''
    size_type = cursor.parse_binary(BoxSizeType)
    size_field = size_type.size_field
    box_type = size_type.box_type
    if size_field == 1:
      box_size = cursor.parse_value(UInt64BE)
    elif size_field == 0:
      box_size = None
    else:
      box_size = size_field
    user_type = cursor.read(16) if box_type == b'uuid' else None
    return cls(
        box_type, size_field=size_field, box_size=box_size, user_type=user_type
    )

  def length_for(self, payload_length: int) -> int:
    ''' The header length needed to transcribe a box
        with a payload of `payload_length` bytes.
        The 64 bit form is kept if the header was decoded with it
        and used if the box size requires it.
    '''
    length = self.MIN_LENGTH
    if self.user_type is not None:
      length += 16
    if self.is_extended or length + payload_length > self.MAX_SIZE_32:
      length += 8
    return length

  def transcribe(self, payload_length: int) -> bytes:
    ''' Return the binary form of this header
        for a payload of `payload_length` bytes,
        updating `.box_size` and `.size_field` to match.
    '''
    header_length = self.length_for(payload_length)
    box_size = header_length + payload_length
    extended = header_length - (0 if self.user_type is None else 16) > 8
    self.size_field = 1 if extended else box_size
    self.box_size = box_size
    bss = [BoxSizeType(self.size_field, self.box_type).transcribe()]
    if extended:
      bss.append(UInt64BE.transcribe_value(box_size))
    if self.user_type is not None:
      bss.append(self.user_type)
    return b''.join(bss)

class BoxBody:
  ''' The base class for box bodies.

      This base class parses no fields;
      subclasses override `parse_fields` and `transcribe`.
      The class method `parse` returns a new instance
      with its fields parsed from a cursor bounded to the payload.
  '''

  IS_CONTAINER = False
  # the Box holding this body, set by the Box
  _box = None

  def __str__(self):
    return f'{self.__class__.__name__}()'

  __repr__ = __str__

  @classmethod
  def doc_line(cls):
    ''' The first line of the class docstring.
    '''
    return (cls.__doc__ or '').strip().split('\n')[0]

  @classmethod
  def body_box_types(cls) -> List[bytes]:
    ''' The box types for this body class:
        the class attribute `BOX_TYPES` if present,
        otherwise inferred from the class name:
        `FTYPBoxBody` has box type `b'ftyp'`
        and `URL_BoxBody` has box type `b'url '`.
    '''
    try:
      return list(cls.__dict__['BOX_TYPES'])
    except KeyError:
      pass
    class_name = cls.__name__
    prefix = class_name[:-len('BoxBody')]
    if (not class_name.endswith('BoxBody') or len(prefix) != 4
        or prefix != prefix.upper()):
      raise ValueError(f'cannot infer box type from class name {class_name!r}')
    return [prefix.replace('_', ' ').lower().encode('ascii')]

  @classmethod
  def empty(cls) -> "BoxBody":
    ''' Return the canonical empty form of this body.
        The base implementation returns `cls()`.
    '''
    return cls()

  @classmethod
  def parse(cls, cursor: ByteCursor, **scan_kw) -> "BoxBody":
    ''' Decode a body of this class from `cursor`,
        which is bounded to the box payload.
        The `scan_kw` are the depth and dispatch parameters
        used by container bodies to decode their children.
    '''
    self = cls()
    self.parse_fields(cursor, **scan_kw)
    return self

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    ''' Parse the fields of this body from `cursor`.
        This base implementation consumes nothing.
    '''

  @property
  def boxes(self):
    ''' Leaf bodies have no child boxes. '''
    return ()

  def __iter__(self):
    return iter(self.boxes)

  def transcribe(self) -> Iterable[bytes]:
    ''' Yield the binary form of this body.
        This base implementation yields nothing.
    '''
    return
    yield  # pylint: disable=unreachable

  def transcribed_length(self) -> int:
    ''' The length of this body's binary form.
    '''
    return sum(map(len, self.transcribe()))

  def metatags(self) -> dict:
    ''' Metadata presented by this body.
        The base implementation returns an empty `dict`.
    '''
    return {}

class OpaqueBoxBody(BoxBody):
  ''' A leaf body holding its payload as raw bytes.
  '''

  def __init__(self, payload=b''):
    self.payload = bytes(payload)

  def __str__(self):
    return f'{self.__class__.__name__}({cropped_repr(self.payload)})'

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    self.payload = cursor.read_remaining()

  def transcribe(self):
    yield self.payload

  def transcribed_length(self):
    return len(self.payload)

class ContainerBoxBody(BoxBody):
  ''' A body consisting of a sequence of boxes.
  '''

  IS_CONTAINER = True

  def __init__(self, boxes=None):
    self._boxes = []
    if boxes:
      for box in boxes:
        self.add_box(box)

  def __str__(self):
    return f'{self.__class__.__name__}({",".join(box.box_type_s for box in self._boxes)})'

  @property
  def boxes(self) -> List["Box"]:
    ''' The child boxes in order. '''
    return self._boxes

  def add_box(self, box: "Box"):
    ''' Append `box` to the child boxes. '''
    if not isinstance(box, Box):
      raise TypeError(f'{self}.add_box: expected a Box, got {box!r}')
    self._boxes.append(box)
    box.parent = self._box

  def remove_box(self, box: "Box"):
    ''' Remove `box` from the child boxes.
        Raise `ValueError` if it is not present.
    '''
    for i, child in enumerate(self._boxes):
      if child is box:
        del self._boxes[i]
        box.parent = None
        return
    raise ValueError(f'{self}.remove_box: {box} is not a child')

  def parse_fields(self, cursor: ByteCursor, **scan_kw):
    self.parse_boxes(cursor, **scan_kw)

  def parse_boxes(
      self,
      cursor: ByteCursor,
      *,
      depth: int,
      registry: Optional[BoxTypeRegistry] = None,
      **scan_kw,
  ):
    ''' Decode child boxes from `cursor` until its scope is exhausted.
        Children are at `depth+1`.
    '''
    for box in scan_boxes(cursor, depth=depth + 1, registry=registry,
                          **scan_kw):
      self.add_box(box)

  def transcribe(self):
    for box in self._boxes:
      yield from box.transcribe()

  def transcribed_length(self):
    return sum(box.transcribed_length() for box in self._boxes)

def body_class_for(entry) -> type:
  ''' Return the `BoxBody` subclass for the registry entry `entry`:
      its specialised `body_class`,
      otherwise `ContainerBoxBody` for containers,
      otherwise `OpaqueBoxBody`.
  '''
  if entry.body_class is not None:
    return entry.body_class
  if entry.is_container:
    return ContainerBoxBody
  return OpaqueBoxBody

class Box:
  ''' A box: a header, a body and any unparsed trailing payload bytes.

      The following virtual attributes support navigation,
      where *TYPE* is an uppercased box type such as `MOOV`:
      * `.`*TYPE*: the sole child box of that type
      * `.`*TYPE*`s`: a list of all the child boxes of that type
      * `.`*TYPE*`0`: the sole child box of that type or `None`
      Other unknown attributes are looked up on the body.
  '''

  def __init__(
      self,
      header: BoxHeader,
      body: BoxBody,
      *,
      offset: Optional[int] = None,
      unparsed: bytes = b'',
  ):
    self.header = header
    self.body = body
    self.offset = offset
    self.unparsed = unparsed
    # the decoded box size, kept for offset arithmetic in the source
    self.source_size = header.box_size if offset is not None else None
    self.parent = None
    body._box = self
    for child in body.boxes:
      child.parent = self

  def __str__(self):
    return f'{self.box_type_s}:{self.body}'

  def __repr__(self):
    return f'{self.__class__.__name__}({self.header!r},{self.body!r})'

  def __getattr__(self, attr):
    if attr in ('header', 'body') or attr.startswith('_'):
      raise AttributeError(f'{self.__class__.__name__}.{attr}')
    # .TYPE - the sole child of type b'type'
    if len(attr) == 4 and attr.isupper():
      boxes = getattr(self, f'{attr}s')
      if len(boxes) != 1:
        raise AttributeError(
            f'{self.__class__.__name__}.{attr}: expected exactly 1 box, found {len(boxes)}'
        )
      return boxes[0]
    # .TYPEs - all children of type b'type'
    # .TYPE0 - the sole child of type b'type' or None
    if len(attr) == 5 and attr.endswith(('s', '0')) and attr[:4].isupper():
      box_type = attr[:4].lower().encode('ascii')
      boxes = [box for box in self.boxes if box.box_type == box_type]
      if attr.endswith('s'):
        return boxes
      if not boxes:
        return None
      if len(boxes) > 1:
        raise AttributeError(
            f'{self.__class__.__name__}.{attr}: expected at most 1 box, found {len(boxes)}'
        )
      return boxes[0]
    try:
      return getattr(self.body, attr)
    except AttributeError as e:
      raise AttributeError(
          f'{self.__class__.__name__}.{attr}: not present on the Box or its body {self.body.__class__.__name__}'
      ) from e

  def __iter__(self):
    return iter(self.boxes)

  @classmethod
  def parse(
      cls,
      cursor: ByteCursor,
      *,
      depth: int = 0,
      max_depth: Optional[int] = None,
      registry: Optional[BoxTypeRegistry] = None,
      container: Optional[bool] = None,
  ) -> "Box":
    ''' Decode a `Box` from `cursor`.
        On return the cursor is positioned at the end of the box.

        Parameters:
        * `depth`: the nesting depth of this box, `0` at the top level
        * `max_depth`: the maximum nesting depth,
          default from `PARSE_MODE.max_depth`
        * `registry`: the `BoxTypeRegistry` for dispatch,
          default `BOX_TYPES`
        * `container`: if not `None`, force the container status
          of this box
    '''
    if max_depth is None:
      max_depth = PARSE_MODE.max_depth
    if registry is None:
      registry = BOX_TYPES
    offset = cursor.offset
    with Pfx("@%d", offset):
      if depth > max_depth:
        raise NestingError(
            f'nesting depth {depth} exceeds the maximum depth {max_depth}'
        )
      header = BoxHeader.parse(cursor)
      with Pfx(header.box_type_s):
        header_length = cursor.offset - offset
        remaining = cursor.remaining()
        if header.box_size is None:
          if remaining is None:
            raise FramingError(
                'box size 0 (to the end of the data) but the data length is unknown'
            )
          header.box_size = header_length + remaining
        elif header.box_size < header_length:
          raise FramingError(
              f'declared size {header.box_size} is less than the header length {header_length}'
          )
        elif remaining is not None and header.box_size - header_length > remaining:
          msg = (
              f'declared size {header.box_size} exceeds the'
              f' {header_length + remaining} bytes available'
          )
          if depth > 0:
            raise FramingError(msg + ' in the enclosing box')
          raise BoundsError(msg)
        entry = registry.lookup(header.box_type, container=container)
        body_class = body_class_for(entry)
        with cursor.bounded(offset + header.box_size):
          body = body_class.parse(
              cursor, depth=depth, max_depth=max_depth, registry=registry
          )
          unparsed = b''
          if not cursor.at_eof():
            unparsed = cursor.read_remaining()
            warning(
                "%s: %d unparsed bytes: %s", body_class.__name__,
                len(unparsed), cropped_repr(unparsed)
            )
        return cls(header, body, offset=offset, unparsed=unparsed)

  @classmethod
  def new(
      cls,
      box_type: Union[bytes, str],
      *,
      container: Optional[bool] = None,
      body_class=None,
      registry: Optional[BoxTypeRegistry] = None,
      user_type: Optional[bytes] = None,
  ) -> "Box":
    ''' Construct a new `Box` of type `box_type`
        with the canonical empty body for its type.

        Parameters:
        * `container`: if not `None`, assert the container status
          of the box, as for `BoxTypeRegistry.lookup`
        * `body_class`: if supplied, the `BoxBody` subclass to use
          instead of consulting the registry
        * `registry`: the `BoxTypeRegistry`, default `BOX_TYPES`
        * `user_type`: the 16 byte user type for `uuid` boxes
    '''
    header = BoxHeader(box_type, user_type=user_type)
    if body_class is None:
      if registry is None:
        registry = BOX_TYPES
      body_class = body_class_for(
          registry.lookup(header.box_type, container=container)
      )
    return cls(header, body_class.empty())

  @property
  def box_type(self) -> bytes:
    ''' The box type. '''
    return self.header.box_type

  @property
  def box_type_s(self) -> str:
    ''' The box type as a `str`. '''
    return self.header.box_type_s

  @property
  def user_type(self):
    ''' The 16 byte user type of a `uuid` box, otherwise `None`. '''
    return self.header.user_type

  @property
  def box_size(self) -> int:
    ''' The total size of the box as it would now be transcribed.
        This tracks changes to the content such as `add_box`;
        `source_size` is the size decoded from the source, if any.
    '''
    return self.transcribed_length()

  @property
  def payload_length(self) -> int:
    ''' The length of the payload as it would now be transcribed.
    '''
    return self.body.transcribed_length() + len(self.unparsed)

  @property
  def header_length(self) -> int:
    ''' The length of the header as it would now be transcribed,
        which may grow to the 64 bit form if the payload grows.
    '''
    return self.header.length_for(self.payload_length)

  @property
  def end_offset(self) -> Optional[int]:
    ''' The source offset of the end of this box,
        or `None` for a constructed box.
    '''
    if self.offset is None:
      return None
    return self.offset + self.source_size

  @property
  def is_container(self) -> bool:
    ''' Whether this box holds child boxes. '''
    return self.body.IS_CONTAINER

  @property
  def boxes(self):
    ''' The child boxes, empty for a leaf box. '''
    return self.body.boxes

  def add_box(self, box: "Box") -> "Box":
    ''' Append `box` to the children of this box and return it.
        Raise `TypeError` if this box is not a container.
    '''
    with Pfx("%s.add_box(%s)", self.box_type_s, box.box_type_s):
      if not self.is_container:
        raise TypeError(f'{self.box_type_s} is not a container box')
      if box.parent is not None:
        raise ValueError(f'already a child of {box.parent.box_type_s}')
      self.body.add_box(box)
    return box

  def remove_box(self, box: "Box") -> "Box":
    ''' Remove the child `box` from this box and return it.
    '''
    with Pfx("%s.remove_box(%s)", self.box_type_s, box.box_type_s):
      if not self.is_container:
        raise TypeError(f'{self.box_type_s} is not a container box')
      self.body.remove_box(box)
    return box

  def transcribe(self) -> Iterable[bytes]:
    ''' Yield the binary form of this box.
        The header size is computed from the current body and unparsed data.
    '''
    bss = list(self.body.transcribe())
    if self.unparsed:
      bss.append(self.unparsed)
    yield self.header.transcribe(sum(map(len, bss)))
    yield from bss

  def __bytes__(self):
    return b''.join(self.transcribe())

  def transcribed_length(self) -> int:
    ''' The length of the binary form of this box. '''
    payload_length = self.payload_length
    return self.header.length_for(payload_length) + payload_length

  @property
  def box_type_path(self) -> str:
    ''' The dot separated box types from the top box down to this box.
    '''
    types = []
    box = self
    while box is not None:
      types.append(box.box_type_s)
      box = box.parent
    return '.'.join(reversed(types))

  def ancestor(self, box_type: Union[bytes, str]) -> "Box":
    ''' Return the closest ancestor box of type `box_type`.
        Raise `ValueError` if there is no such ancestor.
    '''
    box_type = box_type_bytes(box_type)
    parent = self.parent
    while parent is not None:
      if parent.box_type == box_type:
        return parent
      parent = parent.parent
    raise ValueError(f'no ancestor of type {box_type!r}')

  def walk(self, *, level=0,
           limit=None) -> Iterable[Tuple[int, "Box", List["Box"]]]:
    ''' Walk this `Box` hierarchy.

        Yield `(level,box,subboxes)` 3-tuples starting with this box
        and recursing into its subboxes.
        As with `os.walk`, the `subboxes` list
        may be modified in place to prune or reorder the walk.
    '''
    subboxes = list(self.boxes)
    yield level, self, subboxes
    if limit is None or limit > 0:
      for subbox in subboxes:
        yield from subbox.walk(
            level=level + 1, limit=(None if limit is None else limit - 1)
        )

  def descendants(self, sub_box_types: Union[str, List[str]]):
    ''' A generator yielding the descendants of this box
        matching `sub_box_types`,
        a dot separated path of box types such as `'trak.mdia.hdlr'`
        or a list of box types.
    '''
    if isinstance(sub_box_types, str):
      sub_box_types = sub_box_types.split('.')
    box_type_s, *tail_box_types = sub_box_types
    for subbox in self.boxes:
      if subbox.box_type_s == box_type_s:
        if tail_box_types:
          yield from subbox.descendants(tail_box_types)
        else:
          yield subbox

  def gather_metadata(self, prepath='') -> Iterable[Tuple[str, "Box", dict]]:
    ''' Walk the `Box` hierarchy looking for metadata.
        Yield `(box_path,box,metatags)` 3-tuples for each `Box`
        whose body presents nonempty `metatags()`.
    '''
    path = f'{prepath}.{self.box_type_s}' if prepath else self.box_type_s
    tags = self.body.metatags()
    if tags:
      yield path, self, tags
    for subbox in self.boxes:
      yield from subbox.gather_metadata(path)

  def dump_table(
      self,
      table=None,
      indent='',
      subindent='  ',
      dump_fields=False,
      recurse=True,
  ) -> List[Tuple[str, str]]:
    ''' Dump this `Box` as a table of descriptions.
        Return a list of `(title,description)` 2-tuples
        suitable for use with `cs.lex.printt()`.
    '''
    if table is None:
      table = []
    for level, box, _ in self.walk(limit=(None if recurse else 0)):
      row_indent = indent + subindent * level
      body = box.body
      desc = str(body)
      if body.__class__ not in (OpaqueBoxBody, ContainerBoxBody):
        desc = f'{desc}: {body.doc_line()}'
      if box.unparsed:
        desc = f'{desc} +{len(box.unparsed)} unparsed'
      table.append((f'{row_indent}{box.box_type_s}', desc))
      if dump_fields:
        field_indent = row_indent + subindent
        for field_name in sorted(
            name for name in body.__dict__
            if not name.startswith('_') and name != 'boxes'):
          table.append(
              (
                  f'{field_indent}.{field_name}',
                  cropped_repr(getattr(body, field_name)),
              )
          )
    return table

  def dump(self, file=None, **dump_table_kw):
    ''' Dump this `Box` to `file` (default `sys.stdout` per `cs.lex.printt`).
        Other keyword parameters are passed to `Box.dump_table`.
    '''
    printt(*self.dump_table(**dump_table_kw), file=file)

@promote
def scan_boxes(
    cursor: ByteCursor,
    *,
    depth: int = 0,
    max_depth: Optional[int] = None,
    registry: Optional[BoxTypeRegistry] = None,
) -> Iterable[Box]:
  ''' A generator yielding consecutive `Box`es from `cursor`
      until the end of its current scope.
      Fewer than 8 trailing bytes is a `FramingError`.
  '''
  while True:
    remaining = cursor.remaining()
    if remaining is None:
      if cursor.at_eof():
        return
    elif remaining == 0:
      return
    elif remaining < BoxHeader.MIN_LENGTH:
      raise FramingError(
          f'{remaining} trailing bytes at offset {cursor.offset},'
          f' fewer than a box header ({BoxHeader.MIN_LENGTH} bytes)'
      )
    yield Box.parse(
        cursor, depth=depth, max_depth=max_depth, registry=registry
    )

@promote
def decode_box(
    cursor: ByteCursor,
    registry: Optional[BoxTypeRegistry] = None,
    container: Optional[bool] = None,
    max_depth: Optional[int] = None,
) -> Box:
  ''' Decode a single `Box` from `cursor`, which may also be a bytes-like
      object, at the top level.

      Example:

          >>> box = decode_box(b'\\x00\\x00\\x00\\x10meta\\x00\\x00\\x00\\x08free')
          >>> box.box_type, box.box_size, box.payload_length
          (b'meta', 16, 8)
  '''
  return Box.parse(
      cursor, registry=registry, container=container, max_depth=max_depth
  )

def new_empty(
    box_type: Union[bytes, str],
    container: Optional[bool] = None,
    body_class=None,
    registry: Optional[BoxTypeRegistry] = None,
) -> Box:
  ''' Construct a new `Box` of type `box_type` in its canonical empty form.
      See `Box.new` for the parameters.

      Example:

          >>> item = new_empty('©nam', container=True)
          >>> [box.box_type for box in item.boxes]
          [b'data']
  '''
  debug("new_empty(%r,container=%r)", box_type, container)
  return Box.new(
      box_type, container=container, body_class=body_class, registry=registry
  )

def transcribe_boxes(boxes: Iterable[Box]) -> Iterable[bytes]:
  ''' Yield the binary form of the `Box`es in `boxes`.
  '''
  for box in boxes:
    yield from box.transcribe()
