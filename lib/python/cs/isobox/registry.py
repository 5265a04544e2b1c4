#!/usr/bin/env python3
#
# Box type registries: the mapping of 4 byte box types to decoding behaviour.
#

''' Box type registries.

    A `BoxTypeRegistry` maps 4 byte box types to `BoxType` entries,
    each recording whether boxes of that type are containers
    and which specialised `BoxBody` subclass, if any, decodes them.
    Unknown box types resolve to the registry's default entry,
    normally an opaque leaf, so that unrecognised boxes never abort
    the decoding of the surrounding structure.

    Registries are populated once at import time and then frozen.
    Contexts which interpret their children differently,
    such as the iTunes metadata list,
    use their own registries or `overlay`s of an existing one.
'''

from collections import namedtuple
from types import MappingProxyType
from typing import Iterable, Optional, Union

from cs.logutils import debug
from cs.pfx import Pfx

def box_type_bytes(box_type: Union[bytes, str]) -> bytes:
  ''' Return `box_type` as a 4 byte `bytes`.
      A `str` is encoded as ISO8859-1
      so that the iTunes type `'©nam'` becomes `b'\\xa9nam'`.
      Raise `ValueError` if the result is not 4 bytes long.

      Example:

          >>> box_type_bytes('©nam')
          b'\\xa9nam'
  '''
  if isinstance(box_type, str):
    try:
      box_type = box_type.encode('iso8859-1')
    except UnicodeEncodeError as e:
      raise ValueError(f'box type {box_type!r} is not ISO8859-1: {e}') from e
  else:
    box_type = bytes(box_type)
  if len(box_type) != 4:
    raise ValueError(f'box type {box_type!r} is not 4 bytes long')
  return box_type

def box_type_str(box_type: bytes) -> str:
  ''' Return a printable `str` for the 4 byte `box_type`:
      the ISO8859-1 decoding if that is printable,
      otherwise the `repr` of the bytes.
  '''
  box_type_s = bytes(box_type).decode('iso8859-1')
  if not box_type_s.isprintable():
    return repr(bytes(box_type))
  return box_type_s

class BoxType(namedtuple('BoxType', 'box_type is_container body_class doc')):
  ''' A registry entry for a box type:
      * `box_type`: the 4 byte type
      * `is_container`: whether the box payload is a sequence of boxes
      * `body_class`: an optional specialised `BoxBody` subclass
      * `doc`: a short description
  '''

  @property
  def box_type_s(self):
    ''' The box type as a `str`.
    '''
    return box_type_str(self.box_type)

  def __str__(self):
    kind = (
        self.body_class.__name__ if self.body_class is not None else
        ('container' if self.is_container else 'leaf')
    )
    return f'{self.box_type_s}:{kind}'

class BoxTypeRegistry:
  ''' A mapping of 4 byte box types to `BoxType` entries.

      Parameters:
      * `name`: a name for the registry, used in messages
      * `default`: an optional `BoxType` used for unregistered types,
        whose `box_type` is ignored;
        the default default is an opaque leaf
  '''

  def __init__(self, name: str, default: Optional[BoxType] = None):
    if default is None:
      default = BoxType(None, False, None, 'unrecognised box')
    self.name = name
    self.default = default
    self._types = {}
    # container entries consulted only when the caller asserts container status
    self._contextual = {}
    self.frozen = False

  def __str__(self):
    return f'{self.__class__.__name__}({self.name!r},{len(self._types)} types)'

  __repr__ = __str__

  def __contains__(self, box_type):
    return box_type_bytes(box_type) in self._types

  def __len__(self):
    return len(self._types)

  def __iter__(self):
    return iter(sorted(self._types))

  def register(
      self,
      box_type: Union[bytes, str],
      *,
      is_container=False,
      body_class=None,
      doc=None,
      contextual=False,
  ) -> BoxType:
    ''' Register `box_type`, returning the new `BoxType`.
        If `body_class` is supplied, `is_container` comes from its
        `IS_CONTAINER` attribute.

        If `contextual` is true the entry must be a container
        and is only used by `lookup(box_type,container=True)`;
        this supports tags such as the iTunes metadata item tags
        which are containers inside an `ilst` box
        but may be plain leaves elsewhere.
        Raise `RuntimeError` if the registry is frozen
        and `ValueError` if `box_type` is already registered.
    '''
    box_type = box_type_bytes(box_type)
    with Pfx("%s.register(%r)", self.name, box_type):
      if self.frozen:
        raise RuntimeError('registry is frozen')
      types = self._contextual if contextual else self._types
      if box_type in types:
        raise ValueError(f'already registered as {types[box_type]}')
      if body_class is not None:
        is_container = body_class.IS_CONTAINER
        if doc is None:
          doc = body_class.doc_line()
      entry = BoxType(box_type, is_container, body_class, doc or '')
      if contextual and not is_container:
        raise ValueError(f'contextual entry {entry} is not a container')
      types[box_type] = entry
      return entry

  def register_body(self, body_class=None, *, box_types: Iterable = None):
    ''' Register a specialised `BoxBody` subclass for its box types,
        which come from `box_types` if supplied,
        otherwise from `body_class.body_box_types()`.
        Return `body_class`, allowing use as a class decorator:

            @BOX_TYPES.register_body
            class FTYPBoxBody(BoxBody):
                ...
    '''
    if body_class is None:
      return lambda body_class: self.register_body(
          body_class, box_types=box_types
      )
    if box_types is None:
      box_types = body_class.body_box_types()
    for box_type in box_types:
      self.register(box_type, body_class=body_class)
    return body_class

  def freeze(self):
    ''' Freeze the registry against further registrations.
        Freezing a frozen registry has no effect.
    '''
    if not self.frozen:
      self._types = MappingProxyType(self._types)
      self._contextual = MappingProxyType(self._contextual)
      self.frozen = True
    return self

  def lookup(
      self,
      box_type: Union[bytes, str],
      container: Optional[bool] = None,
  ) -> BoxType:
    ''' Return the `BoxType` for `box_type`.

        Unregistered types get the registry's default entry.
        If `container` is not `None` and differs from the container
        status of the entry, the contextual container entry is used
        if `container` is true and there is one,
        otherwise a generic entry with that container status;
        this supports callers who know from context
        whether a box is a container.
    '''
    box_type = box_type_bytes(box_type)
    try:
      entry = self._types[box_type]
    except KeyError:
      entry = self.default._replace(box_type=box_type)
      debug("%s: unregistered box type %r, using %s", self.name, box_type, entry)
    if container is not None and bool(container) != entry.is_container:
      entry = (
          container and self._contextual.get(box_type)
          or BoxType(box_type, bool(container), None, entry.doc)
      )
    return entry

  def overlay(
      self,
      name: str,
      entries: Iterable[BoxType] = (),
      default: Optional[BoxType] = None,
  ) -> "BoxTypeRegistry":
    ''' Return a new frozen registry named `name`
        with the entries of this registry
        updated by the supplied `entries`
        and with `default` as its default entry if supplied.
    '''
    new_registry = type(self)(name, default=default or self.default)
    new_types = dict(self._types)
    for entry in entries:
      new_types[box_type_bytes(entry.box_type)] = entry
    new_registry._types = new_types
    new_registry._contextual = dict(self._contextual)
    return new_registry.freeze()

# The default registry, populated by this package's modules.
# The container boxes of ISO14496-12 with no fields of their own
# are registered here; specialised bodies register themselves.
BOX_TYPES = BoxTypeRegistry('iso14496')

for _box_type, _section, _desc in (
    (b'moov', '8.2.1', 'Movie'),
    (b'trak', '8.3.1', 'Track'),
    (b'tref', '8.3.3', 'Track Reference'),
    (b'edts', '8.6.4', 'Edit'),
    (b'mdia', '8.4.1', 'Media'),
    (b'minf', '8.4.4', 'Media Information'),
    (b'dinf', '8.7.1', 'Data Information'),
    (b'stbl', '8.5.1', 'Sample Table'),
    (b'mvex', '8.8.1', 'Movie Extends'),
    (b'moof', '8.8.4', 'Movie Fragment'),
    (b'traf', '8.8.6', 'Track Fragment'),
    (b'mfra', '8.8.9', 'Movie Fragment Random Access'),
    (b'udta', '8.10.1', 'User Data'),
    (b'sinf', '8.12.1', 'Protection Scheme Information'),
    (b'schi', '8.12.6', 'Scheme Information'),
    (b'meco', '8.11.7', 'Additional Metadata Container'),
    (b'strk', '8.15.3', 'Sub Track'),
    (b'strd', '8.15.5', 'Sub Track Definition'),
):
  BOX_TYPES.register(
      _box_type,
      is_container=True,
      doc=f'{_desc} box - ISO14496 section {_section}.',
  )
