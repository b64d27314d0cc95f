"""
Read and write CASTEP cell files (lattice and atomic positions only).

"""

import numpy as np

from ..exceptions import FormatError
from ..geometry import Cell
from .. import util
from .parser_abc import ParserABC

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def _blocks(lines):
    """
    Map of block name (upper case) to the lines inside the block.
    """
    blocks = {}
    name = None
    for line in lines:
        line = line.split('#')[0].split('!')[0].strip()
        if len(line) == 0:
            continue
        tokens = line.split()
        if tokens[0].upper() == "%BLOCK":
            name = tokens[1].upper()
            blocks[name] = []
        elif tokens[0].upper() == "%ENDBLOCK":
            name = None
        elif name is not None:
            blocks[name].append(tokens)
    return blocks


def _strip_units(rows):
    if len(rows) > 0 and len(rows[0]) == 1:
        return rows[1:]
    return rows


class CastepCellParser(ParserABC):
    def __init__(self):
        self.name = 'cell'
        self.description = 'CASTEP cell file'
        self.extensions = ['cell']

    def read(self, filename, **kwargs):
        """
        Read lattice vectors and positions from a CASTEP cell file.
        """
        with open(filename) as fp:
            blocks = _blocks(fp.readlines())
        try:
            if "LATTICE_CART" in blocks:
                rows = _strip_units(blocks["LATTICE_CART"])
                avec = np.array([[float(x) for x in r[:3]]
                                 for r in rows[:3]])
            elif "LATTICE_ABC" in blocks:
                rows = _strip_units(blocks["LATTICE_ABC"])
                params = [float(x) for x in rows[0][:3] + rows[1][:3]]
                avec = util.cellmatrix_from_params(*params)
            else:
                raise FormatError("No lattice block found", filename)
            if "POSITIONS_FRAC" in blocks:
                rows = blocks["POSITIONS_FRAC"]
                fractional = True
            elif "POSITIONS_ABS" in blocks:
                rows = _strip_units(blocks["POSITIONS_ABS"])
                fractional = False
            else:
                raise FormatError("No positions block found", filename)
            types = [r[0] for r in rows]
            coords = [[float(x) for x in r[1:4]] for r in rows]
        except (ValueError, IndexError) as err:
            raise FormatError("Invalid cell file ({})".format(err),
                              filename)
        cell = Cell(avec, coords, types, fractional=fractional)
        self._amend(cell, **kwargs)
        return cell

    def write(self, cell, outfile=None, **kwargs):
        """
        Write lattice and fractional positions; outfile=None returns the
        text.
        """
        lines = ["%BLOCK LATTICE_CART"]
        for v in cell.avec:
            lines.append("  {:16.10f} {:16.10f} {:16.10f}".format(*v))
        lines.append("%ENDBLOCK LATTICE_CART")
        lines.append("")
        lines.append("%BLOCK POSITIONS_FRAC")
        for t, x in zip(cell.types, cell.fractional):
            lines.append("  {:<4s} {:16.12f} {:16.12f} {:16.12f}".format(
                t, *x))
        lines.append("%ENDBLOCK POSITIONS_FRAC")
        text = "\n".join(lines) + "\n"
        if outfile is None:
            return text
        with open(outfile, 'w') as fp:
            fp.write(text)
        return outfile
