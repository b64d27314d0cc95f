"""
Manage configurations.

Settings are stored as JSON in `eddp.json`, either in the current
working directory or in `~/.config/eddp`.  At the moment the settings
only contain the names (or absolute paths) of the external programs
used for structure generation and single point calculations.

"""

import copy
import json
import os
import shutil
from typing import List, Union

from .log import logger

__author__ = "The eddp developers"
__date__ = "2023-03-02"

DEFAULT = {
    "external": {
        "buildcell": "buildcell",
        "cabal": "cabal",
        "crud": "crud.pl",
        "pp3": "pp3",
        "disp": "disp",
    },
}

PATHS = [
    '.',
    os.path.join(os.path.expanduser("~"), ".config", "eddp")
]


def config_file_path():
    """
    Search for configuration file and return path if found.

    """
    config_file = None
    for p in PATHS:
        path = os.path.join(p, "eddp.json")
        if os.path.exists(path):
            config_file = path
            break
    return config_file


def valid_setting(setting):
    """
    Check if a given setting actually exists.

    """
    return setting in DEFAULT


def read_config(config_file=None):
    """
    Search for configuration file and read if found.  Values found in the
    file are merged into the defaults section by section.  A file that
    does not exist (yet) gives the defaults.

    """
    config_dict = copy.deepcopy(DEFAULT)
    if config_file is None:
        config_file = config_file_path()
    if config_file is not None and os.path.exists(config_file):
        with open(config_file) as fp:
            for section, values in json.load(fp).items():
                if isinstance(values, dict) and section in config_dict:
                    config_dict[section].update(values)
                else:
                    config_dict[section] = values
    return config_dict


def write_config(config_dict, config_file=None, replace=False):
    """
    Write settings to a configuration file.

    Args:
      config_dict (dict): dict with settings
      config_file (str): (optional) path to a configuration file
      replace (bool): if True, replace existing configuration file

    """
    config_dict = dict(config_dict)
    for setting in list(config_dict.keys()):
        if not valid_setting(setting):
            config_dict.pop(setting)
            logger.warning("Unknown setting '%s' ignored.", setting)
    if config_file is None:
        config_file = config_file_path()
    if config_file is None:
        os.makedirs(PATHS[-1], exist_ok=True)
        config_file = os.path.join(PATHS[-1], "eddp.json")
    elif os.path.exists(config_file):
        shutil.copy2(config_file, config_file + ".bak")
        if not replace:
            config_dict_orig = read_config(config_file)
            config_dict_orig.update(config_dict)
            config_dict = config_dict_orig
    with open(config_file, "w") as fp:
        json.dump(config_dict, fp, indent=2)


def read(settings: Union[str, List[str]], config_file: os.PathLike = None):
    """
    Args:
      settings: one or more settings to read
      config_file: path to the config file

    Returns:
      If `settings` is a string, return only the result for this setting.
      If `settings` is a list, return list of results.

    """
    if hasattr(settings, 'lower'):
        settings = [settings]
        return_single = True
    else:
        return_single = False

    config_dict = read_config(config_file)

    result = []
    for setting in settings:
        if setting not in config_dict:
            raise KeyError('Not a valid setting: {}'.format(setting))
        result.append(config_dict[setting])

    if return_single:
        return result[0]
    else:
        return result


def executable(name, config_file=None):
    """
    Return the command configured for the external program `name`
    (e.g., 'buildcell').

    """
    programs = read('external', config_file)
    try:
        return programs[name]
    except KeyError:
        raise KeyError('No external program configured: {}'.format(name))
