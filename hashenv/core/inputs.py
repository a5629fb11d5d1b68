"""
:mod:`hashenv.core.inputs` --- Input graph builder
==================================================

Resolves the named build inputs of a manifest against the surrounding
environment and produces an :class:`EnvironmentDescriptor`. Inputs are
not fetched here; the surrounding environment is the collaborator that
knows where an installed tool or library lives, returning its prefix
directory (the directory containing ``bin``, ``lib``, ``include``...).

Inputs come in two groups, *native* (tools needed while building) and
*libraries* (linked against). Each group has set semantics: a name
listed twice is resolved once, and the order of declaration never
matters. The descriptor carries a fingerprint of the two sorted name
sets, which is what goes into lock hashes and store keys.

Environment variables
---------------------

:func:`get_inputs_env` derives the variables giving visibility of the
inputs, in the way a build or a shell expects them:

**PATH**:
    The ``bin`` sub-directories of all inputs, native inputs first.

**PKG_CONFIG_PATH**:
    The ``lib*/pkgconfig`` and ``share/pkgconfig`` sub-directories.

**HASHENV_CFLAGS**:
    ``-I`` flags for the ``include`` sub-directories of libraries.

**HASHENV_LDFLAGS**:
    ``-L`` and rpath flags for the ``lib*`` sub-directories of libraries.

**HASHENV_INPUTS**:
    Space-separated names of all inputs.
"""

import os
import shutil
from glob import glob
from string import Template
from collections import namedtuple
from os.path import join as pjoin

from .common import InvalidManifest, UnresolvedInput
from .hasher import hash_document
from .run_job import substitute


class ResolvedInput(namedtuple('ResolvedInput', 'name prefix')):
    pass


class EnvironmentDescriptor(namedtuple('EnvironmentDescriptor',
                                       'native libraries fingerprint env')):
    """Resolved inputs, their fingerprint and the variable overrides

    `native` and `libraries` are tuples of :class:`ResolvedInput` sorted
    by name; `env` is a sorted tuple of ``(key, value)`` pairs.
    """

    @property
    def names(self):
        return frozenset(inp.name for inp in self.native + self.libraries)

    @property
    def overrides(self):
        return dict(self.env)


def fingerprint(native, libraries):
    """Order-independent fingerprint of the two input name sets"""
    doc = {'native': sorted(set(native)), 'libraries': sorted(set(libraries))}
    return hash_document('inputs', doc)


def _unique_names(names, what):
    result = set()
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise InvalidManifest('%s input names must be non-empty strings, got %r' % (what, name))
        result.add(name)
    return sorted(result)


def build_environment(native, libraries, surrounding_env, env=None):
    """Resolve inputs into an :class:`EnvironmentDescriptor`

    Parameters
    ----------

    native, libraries : iterable of str
        Input names; duplicates are collapsed.

    surrounding_env : object
        Has a ``locate(name)`` method returning the prefix of an input,
        or `None` if it is not available.

    env : dict (optional)
        Variable overrides, carried along unchanged; they may only refer
        to the variables of `INPUT_VARIABLES` and `BUILD_VARIABLES`.

    Raises `InvalidManifest` for an override referring to any other
    variable, and `UnresolvedInput` for the first (in sorted order) name
    that can not be located.
    """
    check_overrides(env or {})
    native = _unique_names(native, 'native')
    libraries = _unique_names(libraries, 'library')

    def resolve(names):
        resolved = []
        for name in names:
            prefix = surrounding_env.locate(name)
            if prefix is None:
                raise UnresolvedInput(name)
            resolved.append(ResolvedInput(name, prefix))
        return tuple(resolved)

    return EnvironmentDescriptor(native=resolve(native),
                                 libraries=resolve(libraries),
                                 fingerprint=fingerprint(native, libraries),
                                 env=tuple(sorted((env or {}).items())))


def _lib_dirs(prefix):
    return sorted(d for d in glob(pjoin(prefix, 'lib*')) if os.path.isdir(d))


def _append_unique(lst, item):
    if item not in lst:
        lst.append(item)


def get_inputs_env(descriptor):
    """Environment variables giving visibility of the inputs (see module docs)

    Overrides are not included; callers apply them last.
    """
    PATH = []
    PKG_CONFIG_PATH = []
    CFLAGS = []
    LDFLAGS = []

    for inp in descriptor.native + descriptor.libraries:
        bin_dir = pjoin(inp.prefix, 'bin')
        if os.path.isdir(bin_dir):
            _append_unique(PATH, bin_dir)
        for d in _lib_dirs(inp.prefix) + [pjoin(inp.prefix, 'share')]:
            pc_dir = pjoin(d, 'pkgconfig')
            if os.path.isdir(pc_dir):
                _append_unique(PKG_CONFIG_PATH, pc_dir)

    for inp in descriptor.libraries:
        incdir = pjoin(inp.prefix, 'include')
        if os.path.isdir(incdir):
            _append_unique(CFLAGS, '-I' + incdir)
        for libdir in _lib_dirs(inp.prefix):
            _append_unique(LDFLAGS, '-L' + libdir)
            _append_unique(LDFLAGS, '-Wl,-rpath,' + libdir)

    env = {}
    env['PATH'] = os.path.pathsep.join(PATH)
    env['PKG_CONFIG_PATH'] = os.path.pathsep.join(PKG_CONFIG_PATH)
    env['HASHENV_CFLAGS'] = ' '.join(CFLAGS)
    env['HASHENV_LDFLAGS'] = ' '.join(LDFLAGS)
    env['HASHENV_INPUTS'] = ' '.join(sorted(descriptor.names))
    return env


#
# Surrounding environments
#

class MappingEnvironment(object):
    """Inputs given explicitly as a ``{name: prefix}`` mapping"""

    def __init__(self, prefixes):
        self.prefixes = dict(prefixes)

    def locate(self, name):
        prefix = self.prefixes.get(name)
        if prefix is not None and not os.path.isdir(prefix):
            return None
        return prefix


class HostEnvironment(object):
    """Locates inputs installed on the host

    A name is found if it is an executable on `path`, or if one of the
    `prefixes` has a pkg-config file or a library by that name. The
    prefix of an executable is the parent of its ``bin`` directory.
    """

    def __init__(self, prefixes=('/usr/local', '/usr'), path=None):
        self.prefixes = list(prefixes)
        self.path = os.environ.get('PATH', '') if path is None else path

    def locate(self, name):
        exe = shutil.which(name, path=self.path)
        if exe is not None:
            bin_dir = os.path.dirname(os.path.realpath(exe))
            if os.path.basename(bin_dir) == 'bin':
                return os.path.dirname(bin_dir)
        libname = name if name.startswith('lib') else 'lib' + name
        for prefix in self.prefixes:
            patterns = [pjoin(prefix, 'lib*', 'pkgconfig', name + '.pc'),
                        pjoin(prefix, 'lib*', '*', 'pkgconfig', name + '.pc'),
                        pjoin(prefix, 'share', 'pkgconfig', name + '.pc'),
                        pjoin(prefix, 'lib*', libname + '.so'),
                        pjoin(prefix, 'lib*', '*', libname + '.so'),
                        pjoin(prefix, 'lib*', libname + '.a'),
                        pjoin(prefix, 'lib*', libname + '.dylib')]
            for pattern in patterns:
                if glob(pattern):
                    return prefix
        return None


class ChainedEnvironment(object):
    """Asks each environment in turn"""

    def __init__(self, *environments):
        self.environments = environments

    def locate(self, name):
        for environment in self.environments:
            prefix = environment.locate(name)
            if prefix is not None:
                return prefix
        return None


INPUT_VARIABLES = ('PATH', 'PKG_CONFIG_PATH', 'HASHENV_CFLAGS', 'HASHENV_LDFLAGS',
                   'HASHENV_INPUTS')

# only defined while building
BUILD_VARIABLES = ('BUILD', 'ARTIFACT', 'HOME')


def referenced_variables(value):
    """The set of variable names `value` refers to

    Raises `InvalidManifest` if `value` can not be expanded whatever the
    environment, e.g. for ``$$`` or a ``$`` not followed by a name.
    """
    if '$$' in value:
        raise InvalidManifest('$$ is not allowed (no variable can be named $): %s' % value)
    names = set()
    for m in Template.pattern.finditer(value.replace(r'\$', '$$')):
        if m.group('invalid') is not None:
            raise InvalidManifest('invalid placeholder at position %d: %s' % (m.start(), value))
        name = m.group('named') or m.group('braced')
        if name is not None:
            names.add(name)
    return names


def check_overrides(overrides):
    """Raises `InvalidManifest` for an override that refers to anything
    but the input and build variables"""
    known = set(INPUT_VARIABLES + BUILD_VARIABLES)
    for key, value in sorted(overrides.items()):
        unknown = sorted(referenced_variables(value) - known)
        if unknown:
            raise InvalidManifest('variable override %s="%s" refers to unknown variable %s'
                                  % (key, value, unknown[0]))


def apply_overrides(env, overrides, strict=True):
    """Returns a copy of `env` with the variable overrides applied

    Override values may refer to the variables derived from the inputs,
    e.g. ``"$PKG_CONFIG_PATH:/opt/extra/pkgconfig"``; ``\\$`` escapes.
    With ``strict=False``, overrides referring to a variable missing
    from `env` are left out instead of raising `InvalidManifest`.
    """
    result = dict(env)
    for key, value in sorted(overrides.items()):
        try:
            result[key] = substitute(value, env)
        except (KeyError, ValueError) as e:
            if not strict:
                continue
            raise InvalidManifest('unable to expand variable override %s="%s": %s' % (key, value, e))
    return result
