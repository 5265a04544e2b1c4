#!/usr/bin/env python3

''' Unit tests for cs.isobox.ilst.
'''

import sys
import unittest

from cs.binary import Float64BE
from cs.logutils import setup_logging

from .box import decode_box, new_empty
from .cursor import BytesCursor
from .ilst import (
    DATABoxBody,
    Float32BE,
    ILSTBoxBody,
    ILSTItemBoxBody,
    ILSTTextBoxBody,
    decode_number_pair,
    encode_number_pair,
    int_width,
    new_ilst_item,
)

def box_bs(box_type: bytes, payload=b''):
  ''' Return the binary form of a box with a 32 bit size.
  '''
  return (8 + len(payload)).to_bytes(4, 'big') + box_type + payload

def data_bs(data_type: int, value_bs: bytes):
  ''' Return the binary form of a 'data' box.
  '''
  return box_bs(b'data', data_type.to_bytes(4, 'big') + bytes(4) + value_bs)

EMPTY_NAM_BS = b'\x00\x00\x00\x18\xa9nam' b'\x00\x00\x00\x10data' + bytes(8)

class TestILSTConstruction(unittest.TestCase):
  ''' Test building metadata items and lists.
  '''

  def test_new_item_from_tag(self):
    ''' An item built from its tag alone holds one empty data box. '''
    item = new_empty('©nam', container=True)
    self.assertIsInstance(item.body, ILSTItemBoxBody)
    data, = item.boxes
    self.assertEqual(data.box_type, b'data')
    self.assertIsInstance(data.body, DATABoxBody)
    self.assertEqual(data.value_bs, b'')
    self.assertEqual(data.data_type, DATABoxBody.IMPLICIT)
    self.assertIs(data.parent, item)
    self.assertEqual(bytes(item), EMPTY_NAM_BS)

  def test_new_ilst_item(self):
    item = new_ilst_item(b'\xa9nam')
    self.assertEqual(len(item.boxes), 1)
    self.assertEqual(bytes(item), EMPTY_NAM_BS)
    # unknown tags are items too
    self.assertEqual(len(new_ilst_item('xyzw').boxes), 1)

  def test_set_values(self):
    ilst = new_empty('ilst')
    self.assertIsInstance(ilst.body, ILSTBoxBody)
    ilst.set_value('©nam', 'A Title')
    ilst.set_value('trkn', (3, 12))
    ilst.set_value('tmpo', 120)
    self.assertEqual(
        [item.box_type for item in ilst.items()],
        [b'\xa9nam', b'trkn', b'tmpo'],
    )
    # replacing a value does not add an item
    ilst.set_value('©nam', 'The Title')
    self.assertEqual(len(ilst.items()), 3)
    self.assertEqual(ilst.title, 'The Title')
    self.assertEqual(ilst.track_number, (3, 12))
    self.assertEqual(ilst.get_value('tmpo'), 120)
    self.assertIsNone(ilst.get('covr'))
    self.assertEqual(ilst.get_value('covr', 'missing'), 'missing')
    self.assertEqual(
        ilst.metadata(),
        {'title': 'The Title', 'track_number': (3, 12), 'bpm': 120},
    )
    with self.assertRaises(AttributeError):
      _ = ilst.no_such_attribute

  def test_round_trip_tree(self):
    moov = new_empty('moov')
    udta = moov.add_box(new_empty('udta'))
    meta = udta.add_box(new_empty('meta'))
    meta.add_box(new_empty('hdlr'))
    ilst = meta.add_box(new_empty('ilst'))
    ilst.set_value('©ART', 'Someone')
    ilst.set_value('covr', b'\x89PNG\r\n\x1a\n' + bytes(8))
    bs = bytes(moov)
    moov2 = decode_box(bs)
    ilst2 = moov2.UDTA.META.ILST
    self.assertIsInstance(ilst2.body, ILSTBoxBody)
    self.assertEqual(ilst2.performer, 'Someone')
    covr = ilst2.get('covr')
    self.assertEqual(covr.box_type_path, 'moov.udta.meta.ilst.covr')
    self.assertEqual(covr.DATA.data_type, DATABoxBody.PNG)
    (path, box, tags), = moov2.gather_metadata()
    self.assertEqual(path, 'moov.udta.meta.ilst')
    self.assertIs(box, ilst2)
    self.assertEqual(tags['performer'], 'Someone')
    self.assertEqual(bytes(moov2), bs)

class TestILSTDecode(unittest.TestCase):
  ''' Test decoding metadata lists.
  '''

  def test_decode(self):
    freeform = box_bs(
        b'----',
        box_bs(b'mean', bytes(4) + b'com.apple.iTunes') +
        box_bs(b'name', bytes(4) + b'iTunSMPB') + data_bs(1, b' 00000000'),
    )
    bs = box_bs(
        b'ilst',
        box_bs(b'\xa9nam', data_bs(1, 'Títle'.encode('utf-8'))) +
        box_bs(b'disk', data_bs(0, b'\x00\x00\x00\x01\x00\x02')) +
        box_bs(b'cpil', data_bs(21, b'\x01')) + freeform +
        box_bs(b'zzzz', data_bs(22, b'\x01\x00')),
    )
    ilst = decode_box(bs)
    nam, disk, cpil, ffitem, zzzz = ilst.boxes
    self.assertIsInstance(nam.body, ILSTItemBoxBody)
    self.assertEqual(nam.value, 'Títle')
    self.assertEqual(ilst.disk_number, (1, 2))
    self.assertEqual(cpil.value, 1)
    self.assertIsInstance(ffitem.MEAN.body, ILSTTextBoxBody)
    self.assertEqual(ffitem.body.mean, 'com.apple.iTunes')
    self.assertEqual(ffitem.body.name, 'iTunSMPB')
    self.assertEqual(zzzz.value, 256)
    self.assertEqual(
        ilst.metadata(),
        {
            'title': 'Títle',
            'disk_number': (1, 2),
            'compilation': 1,
            'com.apple.iTunes.iTunSMPB': ' 00000000',
            'zzzz': 256,
        },
    )
    self.assertEqual(bytes(ilst), bs)

  def test_item_without_data(self):
    item = decode_box(box_bs(b'ilst', box_bs(b'\xa9nam'))).boxes[0]
    self.assertIsNone(item.value)
    item.body.value = 'added'
    self.assertEqual(item.DATA.value, 'added')
    self.assertIs(item.DATA.parent, item)

class TestDATABoxBody(unittest.TestCase):
  ''' Test typed 'data' values.
  '''

  def assertValue(self, value, data_type, value_bs, explicit_type=None):
    ''' Set `value` and check the resulting type and encoding. '''
    body = DATABoxBody()
    body.set_value(value, explicit_type)
    self.assertEqual(body.data_type, data_type)
    self.assertEqual(body.value_bs, value_bs)
    return body

  def test_inferred_types(self):
    self.assertValue('héllo', DATABoxBody.UTF8, 'héllo'.encode('utf-8'))
    self.assertValue(True, DATABoxBody.BE_SIGNED, b'\x01')
    self.assertValue(5, DATABoxBody.BE_SIGNED, b'\x05')
    self.assertValue(-1, DATABoxBody.BE_SIGNED, b'\xff')
    self.assertValue(300, DATABoxBody.BE_SIGNED, b'\x01\x2c')
    self.assertValue(1 << 40, DATABoxBody.BE_SIGNED, (1 << 40).to_bytes(8, 'big'))
    self.assertValue(1.5, DATABoxBody.BE_FLOAT64, Float64BE.transcribe_value(1.5))
    self.assertValue(b'\xff\xd8\xff\xe0', DATABoxBody.JPEG, b'\xff\xd8\xff\xe0')
    self.assertValue(b'\x89PNG\r\n\x1a\n', DATABoxBody.PNG, b'\x89PNG\r\n\x1a\n')
    self.assertValue(b'BM1234', DATABoxBody.BMP, b'BM1234')
    self.assertValue(bytearray(b'\x00\x01'), DATABoxBody.IMPLICIT, b'\x00\x01')

  def test_explicit_types(self):
    body = self.assertValue('hi', DATABoxBody.UTF16, b'\x00h\x00i', DATABoxBody.UTF16)
    self.assertEqual(body.value, 'hi')
    body = self.assertValue(
        200, DATABoxBody.BE_UNSIGNED, b'\xc8', DATABoxBody.BE_UNSIGNED
    )
    self.assertEqual(body.value, 200)
    body = self.assertValue(
        0.5, DATABoxBody.BE_FLOAT32, Float32BE.transcribe_value(0.5), DATABoxBody.BE_FLOAT32
    )
    self.assertEqual(body.value, 0.5)
    with self.assertRaises(TypeError):
      DATABoxBody().set_value('text', DATABoxBody.BE_SIGNED)
    with self.assertRaises(TypeError):
      DATABoxBody().set_value([1, 2])
    with self.assertRaises(ValueError):
      DATABoxBody().set_value(1 << 64)

  def test_decode_values(self):
    self.assertEqual(DATABoxBody(b'\xff\xfe', DATABoxBody.BE_SIGNED).value, -2)
    self.assertEqual(DATABoxBody(b'\xff\xfe', DATABoxBody.BE_UNSIGNED).value, 65534)
    self.assertEqual(DATABoxBody(b'raw', DATABoxBody.IMPLICIT).value, b'raw')
    self.assertEqual(DATABoxBody(b'raw', 99).value, b'raw')
    # bad lengths and encodings fall back
    self.assertEqual(DATABoxBody(b'', DATABoxBody.BE_SIGNED).value, b'')
    self.assertEqual(DATABoxBody(b'123', DATABoxBody.BE_FLOAT32).value, b'123')
    self.assertEqual(DATABoxBody(b'a\xffb', DATABoxBody.UTF8).value, 'a�b')
    # only 1, 2, 4 and 8 byte integers are decoded
    self.assertEqual(
        DATABoxBody(b'\x01\x02\x03', DATABoxBody.BE_UNSIGNED).value,
        b'\x01\x02\x03'
    )
    self.assertEqual(
        DATABoxBody(b'\xff' * 8, DATABoxBody.BE_SIGNED).value, -1
    )
    self.assertEqual(
        DATABoxBody(b'\xff' * 8, DATABoxBody.BE_UNSIGNED).value, (1 << 64) - 1
    )
    self.assertEqual(
        DATABoxBody(b'\x00\x00@\x00\x00\x00\x00\x00', DATABoxBody.BE_FLOAT64).value, 2.0
    )
    # a nonzero type set is not interpreted
    self.assertEqual(DATABoxBody(b'\x05', DATABoxBody.BE_SIGNED, type_set=1).value, b'\x05')

  def test_wire_form(self):
    bs = data_bs(1, b'text')
    data = decode_box(bs, registry=None)
    # outside an ilst item a data box is an opaque leaf
    self.assertEqual(data.payload, bs[8:])
    body = DATABoxBody(b'text', DATABoxBody.UTF8, locale=0x01020304)
    self.assertEqual(
        b''.join(body.transcribe()), b'\x00\x00\x00\x01\x01\x02\x03\x04text'
    )

  def test_helpers(self):
    self.assertEqual(int_width(127), 1)
    self.assertEqual(int_width(128), 2)
    self.assertEqual(int_width(255, signed=False), 1)
    self.assertEqual(int_width(-32769), 4)
    with self.assertRaises(ValueError):
      int_width(-1, signed=False)
    self.assertEqual(encode_number_pair(3, 12), b'\x00\x00\x00\x03\x00\x0c\x00\x00')
    self.assertEqual(decode_number_pair(encode_number_pair(3, 12)), (3, 12))
    self.assertEqual(decode_number_pair(b'\x01'), b'\x01')
    # the short form omits the trailing reserved bytes
    self.assertEqual(decode_number_pair(b'\x00\x00\x00\x02\x00\x09'), (2, 9))

  def test_type_word(self):
    ''' The type set and data type share a 32 bit word. '''
    payload = data_bs(0x01000016, b'\x07')[8:]
    body = DATABoxBody.parse(BytesCursor(payload))
    self.assertEqual(body.type_set, 1)
    self.assertEqual(body.data_type, DATABoxBody.BE_UNSIGNED)
    self.assertEqual(b''.join(body.transcribe()), payload)

def selftest(argv):
  ''' Run the unit tests.
  '''
  setup_logging(__file__)
  unittest.main(__name__, None, argv)

if __name__ == '__main__':
  selftest(sys.argv)
