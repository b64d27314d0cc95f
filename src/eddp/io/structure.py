#!/usr/bin/env python

"""
Generic structure I/O.

This module provides generic read and write routines that interface the
corresponding routines for the various file formats.
"""

import os

from ..exceptions import FormatError, FormatGuessError
from ..formats import formats

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def read(filename, frmt=None, **kwargs):
    """
    Read atomic structure file of the specified format.

    Input:
      filename    name of the input file
      frmt        name of the file format; guessed from the extension
                  if not given
      kwargs      further keyword arguments are passed on to the backend

    Returns:
      instance of class Cell (or a list for multi-record reads)
    """

    if not frmt:
        frmt = guess_format(filename)

    if frmt not in formats:
        raise FormatError("Format not supported: {}".format(frmt))

    if not formats[frmt].readable:
        raise FormatError("No read support for format: {}".format(frmt))

    return formats[frmt].read(filename, **kwargs)


def write(cell, filename=None, frmt=None, **kwargs):
    """
    Write atomic structure to a file in the specified format.

    Input:
      cell      instance of the Cell class
      filename  name of the output file
      frmt      the name of the file format; if None, the format will
                be guessed from the file extension
      kwargs    further keyword arguments are passed on to the backend
    """

    if not frmt:
        frmt = guess_format(filename)

    if frmt not in formats:
        raise FormatError("Format not supported: {}".format(frmt))

    if not formats[frmt].writable:
        raise FormatError("No write support for format: {}".format(frmt))

    return formats[frmt].write(cell, filename, **kwargs)


def guess_format(filename):
    """
    Guess the file format from the file extension.

    Input:
      filename   name of the file
    """

    if filename is None:
        raise FormatGuessError(filename)
    ext = os.path.splitext(str(filename))[1].lstrip('.')
    for f in formats:
        if ext in formats[f].extensions:
            return f

    # not successful --> raise Exception
    raise FormatGuessError(filename)
