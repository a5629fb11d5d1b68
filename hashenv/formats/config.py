"""
Handles reading the hashenv configuration file. By default this is
``~/.hashenv/config.yaml``; the ``HASHENV_CONFIG`` environment variable
or the ``--config`` command line option select another one.
"""

import os
from os.path import join as pjoin
from .marked_yaml import (load_yaml_from_file, validate_yaml, raw_tree, ValidationError)

DEFAULT_STORE_DIR = os.path.expanduser('~/.hashenv')
DEFAULT_CONFIG_FILENAME_REPR = os.path.join('~/.hashenv', 'config.yaml')
DEFAULT_CONFIG_FILENAME = os.path.expanduser(DEFAULT_CONFIG_FILENAME_REPR)
DEFAULT_HOST_PREFIXES = ('/usr/local', '/usr')

config_schema = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "title": "hashenv configuration file schema",
    "type": "object",
    "properties": {
        "store": {"type": "string"},
        "build_temp": {"type": "string"},
        "fetch_timeout": {"type": "number", "minimum": 0},
        "build_timeout": {"type": "number", "minimum": 0},
        "fetch_retries": {"type": "integer", "minimum": 0},
        "retry_delay": {"type": "number", "minimum": 0},
        "keep_build": {"enum": ["never", "error", "always"]},
        "host_prefixes": {
            "type": "array",
            "items": {"type": "string"}
        },
        "inputs": {
            "type": "object",
            "additionalProperties": {"type": "string"}
        },
    },
    "required": ["store"],
    "additionalProperties": False
}


def default_config(store_dir=DEFAULT_STORE_DIR):
    """The configuration used when no configuration file exists"""
    return {
        'store': store_dir,
        'build_temp': pjoin(store_dir, 'tmp'),
        'fetch_timeout': None,
        'build_timeout': None,
        'fetch_retries': 0,
        'retry_delay': 1,
        'keep_build': 'never',
        'host_prefixes': list(DEFAULT_HOST_PREFIXES),
        'inputs': {},
    }


def _ensure_dir(path, logger):
    if not os.path.isdir(path):
        logger.info('%s does not exist, creating it.' % path)
        os.makedirs(path)
    return path

def _make_abs(cwd, path):
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        return os.path.realpath(os.path.join(cwd, path))
    else:
        return path

def load_config_file(filename, logger):
    """
    Load hashenv config.yaml file, validates it, and creates missing directories.

    Keys missing from the file are filled in from :func:`default_config`;
    relative paths are taken relative to the directory of the file.
    """
    basedir = os.path.dirname(os.path.realpath(filename))
    doc = load_yaml_from_file(filename)
    validate_yaml(doc, config_schema)
    doc = raw_tree(doc)

    store_dir = _ensure_dir(_make_abs(basedir, doc['store']), logger)
    config = default_config(store_dir)
    config.update(doc)
    config['store'] = store_dir
    config['build_temp'] = _ensure_dir(_make_abs(basedir, config['build_temp']), logger)
    config['host_prefixes'] = [_make_abs(basedir, p) for p in config['host_prefixes']]
    inputs = {}
    for name, prefix in config['inputs'].items():
        if not name:
            raise ValidationError(doc, 'input names must be non-empty')
        inputs[name] = _make_abs(basedir, prefix)
    config['inputs'] = inputs
    return config


def get_config_example_filename():
    return pjoin(os.path.dirname(__file__), 'config.example.yaml')
