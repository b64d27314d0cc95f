"""
Abstract parser class to be inherited from.

"""

from abc import ABCMeta, abstractmethod

from ..log import logger

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class ParserABC(metaclass=ABCMeta):

    _amend_args = ['label', 'enthalpy', 'pressure']

    @abstractmethod
    def __init__(self):
        self.name = None
        self.description = None
        self.extensions = None

    @property
    def readable(self):
        return 'read' in self.__class__.__dict__

    @property
    def writable(self):
        return 'write' in self.__class__.__dict__

    def read(self, filename, **kwargs):
        raise NotImplementedError("No parser for this format available.")

    def write(self, cell, filename, **kwargs):
        raise NotImplementedError("Output not implemented for this format.")

    def __str__(self):
        out = " {:10s}  ".format(self.name)
        out += "{:30s}  ".format(self.description)
        out += "{:3s}    ".format("yes" if self.readable else "no ")
        out += "{:3s}    ".format("yes" if self.writable else "no ")
        for ext in self.extensions:
            out += "{} ".format(ext)
        return out

    def _amend(self, cell, label=None, enthalpy=None, pressure=None,
               **kwargs):
        """
        Override metadata of a Cell after reading.  To be called at the
        end of 'read()' with the remaining keyword arguments.

        Arguments:
          cell       An instance of Cell
          label      structure label
          enthalpy   enthalpy (or energy) in eV
          pressure   pressure in GPa

        Does not return anything; the input cell will be modified.

        """

        for k in kwargs:
            logger.warning("Unsupported keyword: %s", k)

        if label is not None:
            cell.metadata['label'] = str(label)
        if enthalpy is not None:
            cell.metadata['enthalpy'] = float(enthalpy)
        if pressure is not None:
            cell.metadata['pressure'] = float(pressure)
