#!/usr/bin/env python3
#
# ISO14496 box tree decoding and encoding.
#

'''
Decoding, construction and encoding of ISO14496-12 box trees,
the ISO Base Media File Format which is the basis of MP4, MOV and friends.

A box is a length prefixed, type tagged record
which may contain further boxes.
This package provides:
* `ByteCursor`s over in-memory data (`BytesCursor`) and files (`FileCursor`)
* the `Box` record and the recursive descent decoder `decode_box`/`scan_boxes`
* `new_empty` and `Box.add_box` for building box trees,
  and `bytes(box)` for encoding them
* a type registry, `BOX_TYPES`, dispatching box types to specialised bodies
* the movie, track and media headers and the sample tables
* the iTunes metadata list (`ilst`) with typed `data` values

Example:

    from cs.isobox import parse
    for box in parse('movie.mp4'):
        box.dump()

ISO make the standard available here:
* [available standards main page](http://standards.iso.org/ittf/PubliclyAvailableStandards/index.html)
'''

import os
from typing import List

from cs.logutils import debug

from .errors import (
    ISOBoxError,
    BoundsError,
    FramingError,
    NestingError,
    ResourceError,
)
from .cursor import (
    ByteCursor,
    BytesCursor,
    FileCursor,
    FileCursorFactory,
    default_file_mode,
)
from .registry import BOX_TYPES, BoxType, BoxTypeRegistry, box_type_bytes
from .box import (
    DEFAULT_MAX_DEPTH,
    PARSE_MODE,
    Box,
    BoxBody,
    BoxHeader,
    ContainerBoxBody,
    OpaqueBoxBody,
    decode_box,
    new_empty,
    scan_boxes,
    transcribe_boxes,
)
from .bodies import (
    EntryCountContainerBoxBody,
    FREEBoxBody,
    FTYPBoxBody,
    FullBoxBody,
    HDLRBoxBody,
    MDATBoxBody,
    METABoxBody,
)
from .ilst import (
    DATABoxBody,
    ILSTBoxBody,
    ILSTItemBoxBody,
    ILSTTextBoxBody,
    new_ilst_item,
)
from .mediaheaders import (
    MDHDBoxBody,
    MVHDBoxBody,
    SMHDBoxBody,
    StructFieldsBoxBody,
    TKHDBoxBody,
    VMHDBoxBody,
)
from .sampletables import (
    CO64BoxBody,
    CTTSBoxBody,
    ELSTBoxBody,
    SampleTableBoxBody,
    STCOBoxBody,
    STSCBoxBody,
    STSSBoxBody,
    STSZBoxBody,
    STTSBoxBody,
)

__version__ = '20261019'

DISTINFO = {
    'keywords': ["python3"],
    'classifiers': [
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Topic :: Multimedia :: Video",
    ],
    'install_requires': [
        'cs.binary',
        'cs.buffer',
        'cs.deco',
        'cs.lex',
        'cs.logutils',
        'cs.pfx',
        'cs.threads',
        'icontract',
        'typeguard',
    ],
}

# all the box types are registered by now
BOX_TYPES.freeze()

def parse(source, **scan_kw) -> List[Box]:
  ''' Decode all the top level boxes from `source`
      and return them as a list.

      The `source` may be a filesystem path,
      which is opened with `FileCursor.from_filename` and closed afterwards,
      or anything promotable to a `ByteCursor` such as a `bytes` object.
      The keyword parameters are passed to `scan_boxes`.
  '''
  if isinstance(source, (str, os.PathLike)):
    with FileCursor.from_filename(os.fspath(source)) as cursor:
      boxes = list(scan_boxes(cursor, **scan_kw))
    debug("parse(%r): %d top level boxes", source, len(boxes))
    return boxes
  return list(scan_boxes(ByteCursor.promote(source), **scan_kw))
