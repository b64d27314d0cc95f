"""
Automatically search the 'formats' directory for parser
implementations and collect them in a dictionary.

"""

import glob
import importlib
import os

from .parser_abc import ParserABC

__author__ = "The eddp developers"
__date__ = "2023-03-02"

parser_files = glob.glob(os.path.join(os.path.dirname(__file__), '*.py'))
parser_packages = [os.path.basename(f)[:-3] for f in parser_files]
parser_packages = [p for p in parser_packages
                   if p not in ("__init__", "parser_abc")]

parser_module = []
for package in sorted(parser_packages):
    parser_module.append(importlib.import_module(
        'eddp.formats.' + package))

formats = {}
for p in ParserABC.__subclasses__():
    frmt = p()
    formats[frmt.name] = frmt
