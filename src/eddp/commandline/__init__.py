"""
Command line interface.  Tools are the subclasses of EDDPToolABC found
in the modules `eddp_*.py` of this package.

"""

import argparse
import glob
import importlib
import os
import sys

from ..exceptions import EDDPError
from .tools import EDDPToolABC

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def discover(subparsers):
    """
    Import all tool modules and register their tools with `subparsers`.

    Returns:
      dict mapping tool names to tool instances
    """
    tool_dir = os.path.dirname(__file__)
    tools = {}
    for path in sorted(glob.glob(os.path.join(tool_dir, 'eddp_*.py'))):
        module_name = os.path.basename(path)[:-3]
        mod = importlib.import_module('eddp.commandline.' + module_name)
        for obj in vars(mod).values():
            if (isinstance(obj, type) and issubclass(obj, EDDPToolABC)
                    and obj is not EDDPToolABC):
                tool = obj(subparsers=subparsers)
                tools[tool.name] = tool
    return tools


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Feature vectors, ensemble models and iterative "
                    "building of potentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    subparsers = parser.add_subparsers(title="tools", dest="tool")
    discover(subparsers)
    args = parser.parse_args(argv)
    if not hasattr(args, 'run'):
        parser.print_help()
        return 1
    try:
        args.run(args)
    except EDDPError as err:
        sys.stderr.write("Error: {}\n".format(err.msg))
        return 1
    return 0
