"""
Tests for the SHELX and CASTEP cell parsers

"""

import os
import shutil
import tempfile
import unittest

import numpy as np

from ...exceptions import FormatError
from ...geometry import Cell
from ...io import structure
from ..castep import CastepCellParser
from ..res import (ResParser, ShelxTITL, extract_res, format_res,
                   read_shelx_records)

fixtures = os.path.join(os.path.dirname(__file__), 'fixtures')
packed_res = os.path.join(fixtures, 'packed.res')
quartz_cell = os.path.join(fixtures, 'quartz.cell')


class ShelxTest(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_read(self):
        struc = structure.read(packed_res)
        self.assertEqual(struc.natoms, 6)
        self.assertEqual(struc.composition, {'Si': 2, 'O': 4})
        md = struc.metadata
        self.assertEqual(md['label'], 'SiO2-2301-ab12-1')
        self.assertAlmostEqual(md['enthalpy'], -1729.1234567)
        self.assertEqual(md['symm'], '(P3_221)')
        self.assertAlmostEqual(struc.volume, 4.98**2*np.sin(np.pi/3)*5.45)

    def test_read_packed(self):
        cells = ResParser().read(packed_res, index=None)
        self.assertEqual(len(cells), 2)
        self.assertEqual(cells[1].metadata['label'], 'SiO2-2301-cd34-2')
        self.assertAlmostEqual(cells[1].metadata['pressure'], 5.0)
        second = ResParser().read(packed_res, index=1)
        self.assertTrue(np.allclose(second.coords, cells[1].coords))

    def test_amend(self):
        struc = structure.read(packed_res, label='relabelled',
                               enthalpy=-1.0)
        self.assertEqual(struc.metadata['label'], 'relabelled')
        self.assertEqual(struc.metadata['enthalpy'], -1.0)

    def test_roundtrip(self):
        struc = structure.read(packed_res, index=1)
        fname = os.path.join(self.tmpdir, 'TEST.res')
        structure.write(struc, filename=fname)
        struc2 = structure.read(fname)
        self.assertEqual(struc2.types, struc.types)
        self.assertTrue(np.allclose(struc2.avec, struc.avec, atol=1e-8))
        self.assertTrue(np.allclose(struc2.fractional, struc.fractional))
        for key in ['label', 'pressure', 'enthalpy', 'natoms', 'symm']:
            self.assertEqual(struc2.metadata[key], struc.metadata[key])

    def test_write_label(self):
        cell = Cell(np.identity(3)*3.0, [[0, 0, 0]], ['Na'])
        text = format_res(cell, label='new-label')
        titl = ShelxTITL.from_string(text.splitlines()[0])
        self.assertEqual(titl.label, 'new-label')
        self.assertEqual(titl.natoms, 1)
        self.assertAlmostEqual(titl.volume, 27.0)
        self.assertEqual(ResParser().write(cell, label='new-label'), text)

    def test_invalid(self):
        with self.assertRaises(FormatError):
            ShelxTITL.from_string("TITL too short")
        fname = os.path.join(self.tmpdir, 'bad.res')
        with open(fname, 'w') as fp:
            fp.write("TITL x 0 1 2 0 0 1 (P1) n - 1\nSFAC A\nEND\n")
        with self.assertRaises(FormatError):
            structure.read(fname)

    def test_records(self):
        records = read_shelx_records(packed_res)
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].titl.natoms, 6)
        text = records[1].read_text()
        self.assertTrue(text.startswith("TITL SiO2-2301-cd34-2"))
        self.assertTrue(text.rstrip().endswith("END"))
        paths = extract_res(records, 'cd34', outdir=self.tmpdir)
        self.assertEqual(len(paths), 1)
        self.assertEqual(os.path.basename(paths[0]),
                         'SiO2-2301-cd34-2.res')
        struc = structure.read(paths[0])
        self.assertEqual(struc.natoms, 3)


class CastepCellTest(unittest.TestCase):

    def test_read(self):
        struc = structure.read(quartz_cell)
        self.assertEqual(struc.natoms, 4)
        self.assertEqual(struc.types, ['Si', 'Si', 'O', 'O'])
        self.assertAlmostEqual(struc.volume, 4.98**2*np.sin(np.pi/3)*5.45)
        self.assertTrue(np.allclose(struc.fractional[3], [0.73, 0.14, 0.45]))

    def test_roundtrip(self):
        struc = structure.read(quartz_cell)
        text = CastepCellParser().write(struc)
        self.assertIn("%BLOCK LATTICE_CART", text)
        with tempfile.TemporaryDirectory() as d:
            fname = os.path.join(d, 'TEST.cell')
            structure.write(struc, filename=fname)
            struc2 = structure.read(fname)
        self.assertTrue(np.allclose(struc2.avec, struc.avec, atol=1e-8))
        self.assertTrue(np.allclose(struc2.coords, struc.coords, atol=1e-8))

    def test_missing_block(self):
        with tempfile.TemporaryDirectory() as d:
            fname = os.path.join(d, 'empty.cell')
            with open(fname, 'w') as fp:
                fp.write("%BLOCK POSITIONS_FRAC\nH 0 0 0\n"
                         "%ENDBLOCK POSITIONS_FRAC\n")
            with self.assertRaises(FormatError):
                structure.read(fname)


if __name__ == "__main__":
    unittest.main()
