"""
Loading of package manifests.

A manifest is a YAML (or JSON) document describing one package and,
optionally, a development shell built from related inputs::

    package:
      name: ox
      version: v0.1.1-alpha
    source:
      origin: github:pagedMov/ox
      revision: v0.1.1-alpha
      hash: sha256-5XwZmsJF/imB8ZSBM9LCrQRRrG5sbjKl6N7MVYIUIck=
    inputs:
      native: [pkg-config]
      libraries: [openssl]
    env:
      PKG_CONFIG_PATH: "$PKG_CONFIG_PATH"
    lockHash: sk4e6f2bctk5mzo7vd7x2mojc5a3icpa
    build:
      builder: cargo
    passthru:
      shellPath: /bin/ox
    devShell:
      entryHook: ox
      inputs: [rustc, cargo, gcc, pkg-config, openssl]

The document is validated against :data:`manifest_schema` and turned
into a :class:`Manifest`, an immutable value. All problems are reported
as :class:`~hashenv.core.common.InvalidManifest` before any I/O besides
reading the manifest itself takes place.
"""

from collections import namedtuple

from ..core.common import InvalidManifest
from ..core.inputs import check_overrides
from ..core.recipes import BuildRecipe, BUILDERS
from .marked_yaml import (load_yaml_from_file, marked_yaml_load, validate_yaml,
                          raw_tree, ValidationError)

# not made of dots only, so a name is never a relative path component
_NAME_PATTERN = r'^(?!\.+$)[a-zA-Z0-9_+.\-]+$'
_VAR_PATTERN = r'^[A-Za-z_][A-Za-z0-9_]*$'

_string_list = {"type": "array", "items": {"type": "string", "minLength": 1}}
_command_list = {"type": "array",
                 "items": {"type": "array", "items": {"type": "string"}, "minItems": 1}}

manifest_schema = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "title": "hashenv manifest schema",
    "type": "object",
    "properties": {
        "package": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "pattern": _NAME_PATTERN},
                "version": {"type": "string", "pattern": _NAME_PATTERN},
            },
            "required": ["name", "version"],
            "additionalProperties": False
        },
        "source": {
            "type": "object",
            "properties": {
                "origin": {"type": "string", "minLength": 1},
                "revision": {"type": "string", "minLength": 1},
                "hash": {"type": "string", "minLength": 1},
                "hashAlgo": {"type": "string"},
            },
            "required": ["origin", "hash"],
            "additionalProperties": False
        },
        "inputs": {
            "type": "object",
            "properties": {
                "native": _string_list,
                "libraries": _string_list,
            },
            "additionalProperties": False
        },
        "env": {
            "type": "object",
            "patternProperties": {_VAR_PATTERN: {"type": "string"}},
            "additionalProperties": False
        },
        "lockHash": {"type": "string", "minLength": 1},
        "devShell": {
            "type": "object",
            "properties": {
                "entryHook": {"type": "string"},
                "inputs": _string_list,
            },
            "required": ["inputs"],
            "additionalProperties": False
        },
        "build": {
            "type": "object",
            "properties": {
                "builder": {"enum": list(BUILDERS)},
                "commands": _command_list,
                "checkCommands": _command_list,
                "check": {"type": "boolean"},
            },
            "additionalProperties": False
        },
        "passthru": {
            "type": "object",
            "additionalProperties": {"type": "string"}
        },
    },
    "required": ["package", "source", "inputs", "lockHash"],
    "additionalProperties": False
}


class PackageId(namedtuple('PackageId', 'name version')):
    pass


class SourceLocator(namedtuple('SourceLocator', 'origin revision hash hash_algo')):
    """`hash_algo` is `None` when the algorithm is taken from the hash;
    `revision` defaults to the package version in manifests"""

    def __new__(cls, origin, revision=None, hash=None, hash_algo=None):
        return super(SourceLocator, cls).__new__(cls, origin, revision, hash, hash_algo)


class BuildInputs(namedtuple('BuildInputs', 'native libraries')):
    pass


class DevShell(namedtuple('DevShell', 'entry_hook inputs')):
    pass


class Manifest(namedtuple('Manifest', 'package source inputs env lock_hash dev_shell '
                                      'build passthru')):
    """
    A loaded manifest. `env` and `passthru` are sorted tuples of
    ``(key, value)`` pairs; `dev_shell` and `build` may be `None`.
    """

    @property
    def name(self):
        return self.package.name

    @property
    def version(self):
        return self.package.version

    @property
    def overrides(self):
        return dict(self.env)

    @property
    def passthru_dict(self):
        return dict(self.passthru)


def _sorted_pairs(d):
    return tuple(sorted((d or {}).items()))


def manifest_from_doc(doc):
    """Validates a manifest document and creates a :class:`Manifest` from it

    `doc` may come from :func:`~hashenv.formats.marked_yaml.marked_yaml_load`
    (in which case errors carry line information) or be a plain dict.
    """
    try:
        validate_yaml(doc, manifest_schema)
    except ValidationError as e:
        raise InvalidManifest(str(e))
    doc = raw_tree(doc)

    src = doc['source']
    env = doc.get('env') or {}
    check_overrides(env)
    inputs = doc['inputs']
    shell_doc = doc.get('devShell')
    dev_shell = None
    if shell_doc is not None:
        dev_shell = DevShell(entry_hook=shell_doc.get('entryHook') or None,
                             inputs=tuple(shell_doc['inputs']))
    build_doc = doc.get('build')
    build = None
    if build_doc is not None:
        build = BuildRecipe(builder=build_doc.get('builder'),
                            commands=build_doc.get('commands', ()),
                            check_commands=build_doc.get('checkCommands', ()),
                            check=build_doc.get('check', True))
        if build.builder == 'command' and not build.commands:
            raise InvalidManifest('the "command" builder requires a list of commands')

    return Manifest(
        package=PackageId(doc['package']['name'], doc['package']['version']),
        source=SourceLocator(origin=src['origin'],
                             revision=src.get('revision') or doc['package']['version'],
                             hash=src['hash'],
                             hash_algo=src.get('hashAlgo')),
        inputs=BuildInputs(native=tuple(inputs.get('native', ())),
                           libraries=tuple(inputs.get('libraries', ()))),
        env=_sorted_pairs(env),
        lock_hash=doc['lockHash'],
        dev_shell=dev_shell,
        build=build,
        passthru=_sorted_pairs(doc.get('passthru')))


def loads_manifest(s, filecaption='<string>'):
    try:
        doc = marked_yaml_load(s, filecaption)
    except ValidationError as e:
        raise InvalidManifest(str(e))
    return manifest_from_doc(doc)


def load_manifest(filename):
    """Loads and validates a manifest file, raising InvalidManifest on problems"""
    try:
        doc = load_yaml_from_file(filename)
    except ValidationError as e:
        raise InvalidManifest(str(e))
    except (IOError, OSError) as e:
        raise InvalidManifest('unable to read manifest %s: %s' % (filename, e))
    return manifest_from_doc(doc)
