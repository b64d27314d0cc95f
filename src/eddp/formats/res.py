#!/usr/bin/env python

"""
Read and write AIRSS-style SHELX (res) files.

A record looks like

  TITL label pressure volume enthalpy spin abs_spin natoms (symm) n - 1
  REM ...
  CELL 1.54180 a b c alpha beta gamma
  LATT -1
  SFAC Si O
  Si  1  x y z  1.0
  ...
  END

Several records may be packed into a single file.

"""

import os
from dataclasses import dataclass

import numpy as np

from ..exceptions import FormatError
from ..geometry import Cell
from .. import util
from .parser_abc import ParserABC

__author__ = "The eddp developers"
__date__ = "2023-03-02"

TITL_FIELDS = ('label', 'pressure', 'volume', 'enthalpy', 'spin',
               'abs_spin', 'natoms', 'symm')


def _fmt(x):
    """
    Shortest representation of a float that reads back identically.
    """
    return repr(float(x))


@dataclass
class ShelxTITL:
    """
    Information from the TITL line of an AIRSS style SHELX record.
    """
    label: str
    pressure: float
    volume: float
    enthalpy: float
    spin: float
    abs_spin: float
    natoms: int
    symm: str
    flag1: str = "n"
    flag2: str = "-"
    flag3: str = "1"

    @classmethod
    def from_string(cls, line):
        tokens = line.split()
        if len(tokens) < 9 or tokens[0].upper() != "TITL":
            raise FormatError("Invalid TITL line: {}".format(line.strip()))
        try:
            titl = cls(tokens[1], float(tokens[2]), float(tokens[3]),
                       float(tokens[4]), float(tokens[5]),
                       float(tokens[6]), int(tokens[7]), tokens[8])
        except ValueError:
            raise FormatError("Invalid TITL line: {}".format(line.strip()))
        flags = tokens[9:12]
        if len(flags) == 3:
            titl.flag1, titl.flag2, titl.flag3 = flags
        return titl

    def to_string(self):
        return "TITL {} {} {} {} {} {} {} {} {} {} {}".format(
            self.label, _fmt(self.pressure), _fmt(self.volume),
            _fmt(self.enthalpy), _fmt(self.spin), _fmt(self.abs_spin),
            self.natoms, self.symm, self.flag1, self.flag2, self.flag3)


@dataclass
class ShelxRecord:
    """
    Location of a SHELX record in a (packed) file.
    """
    fname: str
    offset: int
    length: int
    titl: ShelxTITL

    def read_text(self):
        with open(self.fname, 'rb') as fp:
            fp.seek(self.offset)
            return fp.read(self.length).decode()


def read_shelx_records(fnames):
    """
    Scan (packed) SHELX files for records without parsing the
    structures.

    Arguments:
      fnames   file name or list of file names

    Returns:
      list of ShelxRecord
    """
    if isinstance(fnames, (str, os.PathLike)):
        fnames = [fnames]
    records = []
    for fname in fnames:
        offset = 0
        start = None
        titl = None
        with open(fname, 'rb') as fp:
            for raw in fp:
                line = raw.decode()
                if line.startswith("TITL"):
                    titl = ShelxTITL.from_string(line)
                    start = offset
                offset += len(raw)
                if line.strip() == "END" and titl is not None:
                    records.append(ShelxRecord(str(fname), start,
                                               offset - start, titl))
                    titl = None
    return records


def extract_res(records, needle, outdir="."):
    """
    Write the records whose label contains `needle` to separate files.

    Returns:
      list of the written paths
    """
    paths = []
    for rec in records:
        if needle in rec.titl.label:
            path = os.path.join(outdir, rec.titl.label + ".res")
            with open(path, 'w') as fp:
                fp.write(rec.read_text())
            paths.append(path)
    return paths


def parse_res_lines(lines, filename=None):
    """
    Parse the lines of a single SHELX record into a Cell.

    """
    titl = None
    params = None
    types = []
    frac = []
    in_sfac = False
    for line in lines:
        tokens = line.split()
        if len(tokens) == 0:
            continue
        key = tokens[0].upper()
        if key == "TITL":
            titl = ShelxTITL.from_string(line)
        elif key == "CELL":
            try:
                params = [float(x) for x in tokens[2:8]]
            except ValueError:
                raise FormatError("Invalid CELL line", filename)
        elif key == "SFAC":
            in_sfac = True
        elif key == "END":
            break
        elif key in ("REM", "LATT", "ZERR"):
            continue
        elif in_sfac:
            if len(tokens) < 5:
                raise FormatError("Invalid atom line: {}".format(
                    line.strip()), filename)
            types.append(tokens[0])
            frac.append([float(x) for x in tokens[2:5]])
    if params is None or len(params) != 6:
        raise FormatError("Missing CELL line", filename)
    avec = util.cellmatrix_from_params(*params)
    metadata = {}
    if titl is not None:
        for key in TITL_FIELDS:
            metadata[key] = getattr(titl, key)
        metadata['flags'] = (titl.flag1, titl.flag2, titl.flag3)
    return Cell(avec, np.array(frac).reshape((-1, 3)), types,
                fractional=True, metadata=metadata)


def format_res(cell, label=None):
    """
    SHELX text of a Cell; the TITL line is built from cell.metadata.

    """
    md = cell.metadata
    flags = md.get('flags', ("n", "-", "1"))
    titl = ShelxTITL(
        label=label or md.get('label', 'structure'),
        pressure=md.get('pressure', 0.0),
        volume=md.get('volume', cell.volume),
        enthalpy=md.get('enthalpy', 0.0),
        spin=md.get('spin', 0.0),
        abs_spin=md.get('abs_spin', 0.0),
        natoms=cell.natoms,
        symm=md.get('symm', '(P1)'),
        flag1=flags[0], flag2=flags[1], flag3=flags[2])
    species = []
    for t in cell.types:
        if t not in species:
            species.append(t)
    a, b, c, alpha, beta, gamma = util.cell_params(cell.avec)
    frac = cell.fractional
    lines = [titl.to_string(), "REM",
             "CELL 1.54180 {:.10f} {:.10f} {:.10f} {:.10f} {:.10f} "
             "{:.10f}".format(a, b, c, alpha, beta, gamma),
             "LATT -1",
             "SFAC " + " ".join(species)]
    for t, x in zip(cell.types, frac):
        lines.append("{:<4s} {:3d} {:16.12f} {:16.12f} {:16.12f} 1.0".format(
            t, species.index(t) + 1, *x))
    lines.append("END")
    return "\n".join(lines) + "\n"


class ResParser(ParserABC):
    def __init__(self):
        self.name = 'res'
        self.description = 'AIRSS SHELX format'
        self.extensions = ['res']

    def read(self, filename, index=0, **kwargs):
        """
        Read a structure from a (packed) SHELX file.

        Arguments:
          filename   path to the file
          index      index of the record in a packed file; None returns
                     a list with all records

        """
        with open(filename) as fp:
            lines = fp.readlines()
        blocks = []
        current = []
        for line in lines:
            current.append(line)
            if line.strip().upper() == "END":
                blocks.append(current)
                current = []
        if len(blocks) == 0 and current:
            blocks.append(current)
        if len(blocks) == 0:
            raise FormatError("No SHELX record found", filename)
        if index is None:
            cells = [parse_res_lines(b, filename) for b in blocks]
            for c in cells:
                self._amend(c, **kwargs)
            return cells
        cell = parse_res_lines(blocks[index], filename)
        self._amend(cell, **kwargs)
        return cell

    def write(self, cell, outfile=None, label=None, **kwargs):
        """
        Write a Cell in SHELX format; outfile=None returns the text.
        """
        text = format_res(cell, label=label)
        if outfile is None:
            return text
        with open(outfile, 'w') as fp:
            fp.write(text)
        return outfile
