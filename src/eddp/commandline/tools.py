"""
Object classes for eddp command line tools.  Each tool is a
singleton.

"""

import abc
import argparse
import inspect

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class EDDPToolABC(metaclass=abc.ABCMeta):
    """
    Attributes:
      subparsers: an instance of an argparse subparsers

    """

    def __init__(self, subparsers=None):
        self.name = self.__class__.__name__.lower()
        descr = (inspect.cleandoc(self.__doc__)
                 + "\n\n" + inspect.cleandoc(self._man()))
        if subparsers is not None:
            self.parser = subparsers.add_parser(
                self.name,
                help=inspect.cleandoc(self.__doc__).split("\n")[0],
                description=descr,
                formatter_class=argparse.RawDescriptionHelpFormatter)
        else:
            self.parser = argparse.ArgumentParser(
                description=descr,
                formatter_class=argparse.RawDescriptionHelpFormatter)
        self.parser.set_defaults(run=self.run)
        self._set_arguments()

    def _set_arguments(self):
        """
        Use this method to add command line argument parsers to self.parser.

        """
        pass

    def _man(self):
        """
        Manual entry added to the tool's help message.

        """
        return ""

    @abc.abstractmethod
    def run(self, args):
        """
        Arguments:
          args: object returned from an 'argparse' parser
        """
        pass
