#!/usr/bin/env python3

''' Unit tests for cs.isobox.mediaheaders.
'''

from datetime import datetime, timezone
from struct import pack
import sys
import unittest

from cs.logutils import setup_logging

from .box import decode_box, new_empty
from .errors import FramingError
from .mediaheaders import (
    MDHDBoxBody,
    MVHDBoxBody,
    SMHDBoxBody,
    TKHDBoxBody,
    VMHDBoxBody,
    datetime_timestamp,
    pack_language,
    timestamp_datetime,
    unpack_language,
)

def box_bs(box_type: bytes, payload=b''):
  ''' Return the binary form of a box with a 32 bit size.
  '''
  return (8 + len(payload)).to_bytes(4, 'big') + box_type + payload

UNITY = pack('>9l', 0x10000, 0, 0, 0, 0x10000, 0, 0, 0, 0x40000000)

# 2001-01-01T00:00:00Z
CREATED = 3061152000

def mvhd_bs(version=0):
  ''' An mvhd box: created CREATED, timescale 600, duration 6000. '''
  if version == 0:
    times = pack('>LLLL', CREATED, CREATED + 60, 600, 6000)
  else:
    times = pack('>QQLQ', CREATED, CREATED + 60, 600, 6000)
  return box_bs(
      b'mvhd',
      bytes((version, 0, 0, 0)) + times + pack('>lh', 0x18000, 0x80) +
      bytes(10) + UNITY + bytes(24) + pack('>L', 3),
  )

class TestMVHD(unittest.TestCase):
  ''' Test the movie header. '''

  def test_decode_v0(self):
    bs = mvhd_bs(0)
    box = decode_box(bs)
    self.assertIsInstance(box.body, MVHDBoxBody)
    self.assertEqual(box.payload_length, 100)
    self.assertEqual(box.version, 0)
    self.assertEqual(box.timescale, 600)
    self.assertEqual(box.duration, 6000)
    self.assertEqual(box.duration_seconds, 10.0)
    self.assertEqual(box.rate, 1.5)
    self.assertEqual(box.volume, 0.5)
    self.assertEqual(box.next_track_id, 3)
    self.assertEqual(box.v8, 0x40000000)
    self.assertEqual(
        box.creation_datetime, datetime(2001, 1, 1, tzinfo=timezone.utc)
    )
    self.assertEqual(box.modification_datetime.minute, 1)
    self.assertEqual(bytes(box), bs)

  def test_decode_v1(self):
    bs = mvhd_bs(1)
    box = decode_box(bs)
    self.assertEqual(box.version, 1)
    self.assertEqual(box.payload_length, 112)
    self.assertEqual(box.duration, 6000)
    self.assertEqual(bytes(box), bs)

  def test_change_version(self):
    box = decode_box(mvhd_bs(0))
    box.body.version = 1
    box.set_fields(duration=1 << 40)
    bs = bytes(box)
    self.assertEqual(len(bs), 120)
    box2 = decode_box(bs)
    self.assertEqual(box2.duration, 1 << 40)
    self.assertEqual(box2.timescale, 600)

  def test_unsupported_version(self):
    bs = bytearray(mvhd_bs(0))
    bs[8] = 2
    with self.assertRaises(FramingError):
      decode_box(bytes(bs))

  def test_new(self):
    box = new_empty('mvhd')
    self.assertEqual(box.timescale, 1000)
    self.assertEqual(box.rate, 1.0)
    self.assertEqual(box.volume, 1.0)
    self.assertEqual(box.next_track_id, 1)
    self.assertEqual(box.box_size, 108)
    box2 = decode_box(bytes(box))
    self.assertEqual(box2.v0, 0x10000)
    with self.assertRaises(AttributeError):
      box.set_fields(no_such_field=1)

class TestTKHD(unittest.TestCase):
  ''' Test the track header. '''

  def test_round_trip(self):
    payload = (
        bytes((0, 0, 0, 7)) + pack('>LLLLL', CREATED, CREATED, 2, 0, 6000) +
        bytes(8) + pack('>hhhH', 0, 1, 0x100, 0) + UNITY +
        pack('>LL', 640 << 16, 480 << 16)
    )
    bs = box_bs(b'tkhd', payload)
    box = decode_box(bs)
    self.assertIsInstance(box.body, TKHDBoxBody)
    self.assertEqual(box.payload_length, 84)
    self.assertEqual(box.track_id, 2)
    self.assertEqual(box.duration, 6000)
    self.assertEqual(box.alternate_group, 1)
    self.assertEqual(box.width >> 16, 640)
    self.assertEqual(box.height >> 16, 480)
    self.assertTrue(box.track_enabled)
    self.assertTrue(box.track_in_movie)
    self.assertTrue(box.track_in_preview)
    self.assertEqual(box.creation_datetime.year, 2001)
    self.assertEqual(bytes(box), bs)

  def test_new(self):
    box = new_empty('tkhd')
    self.assertEqual(box.flags, 0x3)
    self.assertFalse(box.track_in_preview)
    self.assertEqual(box.track_id, 1)
    self.assertEqual(box.box_size, 92)

class TestMDHD(unittest.TestCase):
  ''' Test the media header. '''

  def test_round_trip(self):
    payload = bytes(4) + pack('>LLLL', 0, 0, 44100, 441000) + pack('>HH', 0x15c7, 0)
    bs = box_bs(b'mdhd', payload)
    box = decode_box(bs)
    self.assertIsInstance(box.body, MDHDBoxBody)
    self.assertEqual(box.language, 'eng')
    self.assertEqual(box.duration_seconds, 10.0)
    self.assertEqual(bytes(box), bs)

  def test_language(self):
    box = new_empty('mdhd')
    self.assertEqual(box.language, 'und')
    self.assertEqual(box.language_short, 0x55c4)
    box.body.language = 'fra'
    self.assertEqual(decode_box(bytes(box)).language, 'fra')
    with self.assertRaises(ValueError):
      box.body.language = 'en'
    self.assertEqual(pack_language('eng'), 0x15c7)
    self.assertEqual(unpack_language(0x15c7), 'eng')

class TestMediaHeaders(unittest.TestCase):
  ''' Test the video and sound media headers. '''

  def test_vmhd(self):
    box = new_empty('vmhd')
    self.assertIsInstance(box.body, VMHDBoxBody)
    self.assertEqual(bytes(box), box_bs(b'vmhd', b'\x00\x00\x00\x01' + bytes(8)))
    bs = box_bs(b'vmhd', b'\x00\x00\x00\x01' + pack('>HHHH', 64, 1, 2, 3))
    box = decode_box(bs)
    self.assertEqual((box.graphicsmode, box.red, box.green, box.blue), (64, 1, 2, 3))
    self.assertEqual(bytes(box), bs)

  def test_smhd(self):
    bs = box_bs(b'smhd', bytes(4) + pack('>hH', -256, 0))
    box = decode_box(bs)
    self.assertIsInstance(box.body, SMHDBoxBody)
    self.assertEqual(box.balance, -256)
    self.assertEqual(bytes(box), bs)

  def test_timestamps(self):
    dt = datetime(2001, 1, 1, tzinfo=timezone.utc)
    self.assertEqual(datetime_timestamp(dt), CREATED)
    self.assertEqual(timestamp_datetime(CREATED), dt)
    self.assertEqual(datetime_timestamp(datetime(2001, 1, 1)), CREATED)
    self.assertEqual(timestamp_datetime(0).year, 1904)

def selftest(argv):
  ''' Run the unit tests.
  '''
  setup_logging(__file__)
  unittest.main(__name__, None, argv)

if __name__ == '__main__':
  selftest(sys.argv)
