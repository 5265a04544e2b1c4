#!/usr/bin/env python3
#
# Exceptions raised when decoding ISO14496 box trees.
#

''' The exceptions raised by `cs.isobox`.

    All of them subclass `ISOBoxError` and also the closest builtin
    exception so that callers catching `EOFError`, `ValueError` or
    `OSError` see them too.
'''

class ISOBoxError(Exception):
  ''' Base class for all `cs.isobox` failures.
      The sole argument is a human readable message.
  '''

class BoundsError(ISOBoxError, EOFError):
  ''' A read or seek beyond the end of the current scope:
      the end of the data or the end of an enclosing box payload.
  '''

class FramingError(ISOBoxError, ValueError):
  ''' A box whose declared size is inconsistent with its header
      or with the box containing it.
  '''

class NestingError(FramingError):
  ''' Box nesting deeper than the permitted maximum.
  '''

class ResourceError(ISOBoxError, OSError):
  ''' A file could not be opened or an I/O operation on it failed.
      Raise as `ResourceError(errno, message)`;
      the originating `OSError` should be chained with `from`.
  '''
