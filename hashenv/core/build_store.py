"""
:mod:`hashenv.core.build_store` --- Build executor
==================================================

Produces build artifacts identified by store keys. The key of an
artifact is known before it is built: it is the hash of

 * the package name and version,
 * the verified source hash,
 * the lock hash, and
 * the fingerprint of the input names.

Two evaluations with identical inputs therefore yield the same key, and
an artifact already present under its key is returned without running
the build engine again.

Artifact keys
-------------

A key has the form ``name/hash``, e.g.,
``ox/4niostz3iktlg67najtxuwwgss5vl6k4``. On disk a shortened hash is
used, ``<store>/art/ox/4niostz3iktl``; the full key is kept in the
``id`` file whose presence marks the build as complete.

The lock hash
-------------

Before anything is built the lock hash of the resolved dependency
graph (see :mod:`hashenv.core.lock`) is computed and compared with the
one declared in the manifest. A difference means the manifest is stale
relative to its source and raises `LockHashMismatch`.

The build environment
---------------------

Commands run in a copy of the source tree, with only these variables
set: the input variables of :func:`hashenv.core.inputs.get_inputs_env`,
the manifest's variable overrides, and

**BUILD**:
    The build directory. It is removed after the build, unless
    `keep_build` says otherwise.

**ARTIFACT**:
    The location of the final artifact, i.e. the install prefix.

**HOME**:
    Same as ``BUILD``, so tools do not write to the user's home.

Engine output goes to ``$BUILD/_hashenv/build.log``, which is kept
compressed as ``build.log.gz`` in the artifact. A failing engine raises
`BuildFailed` carrying the engine's exit code and raw output; builds
are never retried automatically.
"""

import os
import re
import json
import itertools
import shutil
from collections import namedtuple
from os.path import join as pjoin

from .common import (BuildFailed, InvalidManifest, LockHashMismatch,
                     json_formatting_options, SHORT_ARTIFACT_ID_LEN)
from .hasher import hash_document
from .fileutils import rmtree_write_protected, silent_makedirs, gzip_compress, write_protect, allow_writes
from .inputs import get_inputs_env, apply_overrides
from .lock import compute_lock_hash
from .recipes import BuildRecipe, get_build_commands
from .run_job import SubprocessEngine

from hashenv.util.logger_setup import log_to_file, getLogger


class BuildOutput(namedtuple('BuildOutput', 'key path')):
    pass


_SAFE_NAME_RE = re.compile(r'^(?!\.+$)[a-zA-Z0-9_+.\-]+$')
def assert_safe_name(x):
    """Raises InvalidManifest if x does not match ``[a-zA-Z0-9_+.-]+``, or
    consists of dots only.

    Returns `x`
    """
    if not _SAFE_NAME_RE.match(x):
        raise InvalidManifest('version or name "%s" is empty or contains illegal characters' % x)
    return x


def artifact_key(name, version, source_hash, lock_hash, fingerprint):
    assert_safe_name(name)
    doc = {'name': name, 'version': version, 'source': source_hash,
           'lock': lock_hash, 'inputs': fingerprint}
    return '%s/%s' % (name, hash_document('build-output', doc))


def shorten_artifact_key(key, length=SHORT_ARTIFACT_ID_LEN):
    """Shortens the hash part of the key to the desired length
    """
    name, digest = key.split('/')
    return '%s/%s' % (name, digest[:length])


class BuildStore(object):
    """
    Runs builds and keeps their results in the store.

    Parameters
    ----------

    store : DiskStore
        Where artifacts are kept.

    logger : Logger

    engine : object (optional)
        The build engine, with a ``run(commands, env, cwd, logger, timeout)``
        method returning an :class:`~hashenv.core.run_job.EngineResult`.
        Defaults to :class:`~hashenv.core.run_job.SubprocessEngine`.

    temp_build_dir : str (optional)
        Directory to use for temporary builds; defaults to the store's
        temporary directory.

    timeout : float (optional)
        Passed on to the engine; expiry is reported as `BuildFailed`.

    keep_build : str
        One of ``'never'``, ``'error'``, ``'always'``; whether to keep the
        build directory after the build.
    """

    def __init__(self, store, logger, engine=None, temp_build_dir=None, timeout=None,
                 keep_build='never'):
        if keep_build not in ('never', 'error', 'always'):
            raise ValueError("invalid keep_build value")
        self.store = store
        self.logger = logger
        self.engine = SubprocessEngine() if engine is None else engine
        self.temp_build_dir = os.path.realpath(temp_build_dir or store.temp_dir)
        self.timeout = timeout
        self.keep_build = keep_build
        silent_makedirs(self.temp_build_dir)

    def resolve(self, key):
        """Given a key, return the path of the artifact, or None if it isn't built."""
        return self.store.lookup_artifact(key)

    def is_present(self, key):
        return self.resolve(key) is not None

    def delete(self, key):
        return self.store.delete_artifact(key)

    def build(self, verified_source, environment, declared_lock_hash, package,
              recipe=None, passthru=None):
        """
        Builds an artifact (if it is not already present).

        Parameters
        ----------

        verified_source : VerifiedSource
            From :meth:`~hashenv.core.source_cache.SourceResolver.resolve`.

        environment : EnvironmentDescriptor
            From :func:`~hashenv.core.inputs.build_environment`.

        declared_lock_hash : str
            The lock hash pinned by the manifest.

        package : PackageId
            Name and version of the package.

        recipe : BuildRecipe (optional)
            How to build; guessed from the source tree if not given.

        passthru : dict (optional)
            Metadata recorded in ``artifact.json``; does not affect the key.

        Returns
        -------

        BuildOutput(key, path)
        """
        lock_hash = compute_lock_hash(environment, verified_source.path)
        if lock_hash != declared_lock_hash:
            self.logger.error('Lock hash of %s is %s, but the manifest declares %s' %
                              (package.name, lock_hash, declared_lock_hash))
            raise LockHashMismatch(declared_lock_hash, lock_hash)

        key = artifact_key(package.name, package.version, verified_source.hash,
                           lock_hash, environment.fingerprint)
        path = self.resolve(key)
        if path is None:
            with self.store.lock(key):
                path = self.resolve(key)
                if path is None:
                    builder = ArtifactBuilder(self, key, package, verified_source, environment,
                                              lock_hash, recipe, passthru)
                    path = builder.build()
        else:
            self.logger.info('%s already present' % shorten_artifact_key(key))
        return BuildOutput(key, path)

    def make_build_dir(self, key):
        """Creates ``<temp_build_dir>/<name>-<short hash>[-N]``; the caller removes it"""
        base = pjoin(self.temp_build_dir, shorten_artifact_key(key).replace('/', '-'))
        candidates = itertools.chain([base], ('%s-%d' % (base, i) for i in itertools.count(1)))
        for build_dir in candidates:
            try:
                os.mkdir(build_dir)
            except FileExistsError:
                continue
            self.logger.debug('Created build dir: %s' % build_dir)
            return build_dir

    def remove_build_dir(self, build_dir):
        self.logger.debug('Removing build dir: %s' % build_dir)
        rmtree_write_protected(build_dir)


class ArtifactBuilder(object):
    def __init__(self, build_store, key, package, source, environment, lock_hash,
                 recipe, passthru):
        self.build_store = build_store
        self.logger = getLogger('package', package.name)
        self.key = key
        self.package = package
        self.source = source
        self.environment = environment
        self.lock_hash = lock_hash
        self.recipe = recipe if recipe is not None else BuildRecipe()
        self.passthru = dict(passthru or {})

    def build(self):
        with self.build_store.store.reserve_artifact(self.key) as artifact_dir:
            self.build_to(artifact_dir)
            self.make_artifact_json(artifact_dir)
        return artifact_dir

    def build_to(self, artifact_dir):
        keep_build = self.build_store.keep_build
        build_dir = self.build_store.make_build_dir(self.key)

        should_keep = False # failures in init are bugs in hashenv itself, no need to keep dir
        try:
            should_keep = (keep_build == 'always')
            try:
                self.run_build_commands(build_dir, artifact_dir)
            except BaseException:
                should_keep = (keep_build in ('always', 'error'))
                raise
        finally:
            if not should_keep:
                self.build_store.remove_build_dir(build_dir)

    def get_build_env(self, build_dir, artifact_dir):
        env = get_inputs_env(self.environment)
        env['BUILD'] = build_dir
        env['ARTIFACT'] = artifact_dir
        env['HOME'] = build_dir
        return apply_overrides(env, self.environment.overrides)

    def run_build_commands(self, build_dir, artifact_dir):
        src_dir = pjoin(build_dir, 'src')
        shutil.copytree(self.source.path, src_dir, symlinks=True)
        commands = get_build_commands(self.recipe, src_dir)
        env = self.get_build_env(build_dir, artifact_dir)

        os.mkdir(pjoin(build_dir, '_hashenv'))
        log_filename = pjoin(build_dir, '_hashenv', 'build.log')
        self.logger.warning('Building %s, follow log with:' % shorten_artifact_key(self.key))
        self.logger.warning('  tail -f %s' % log_filename)
        with log_to_file('package', log_filename):
            result = self.build_store.engine.run(commands, env, src_dir, self.logger,
                                                 self.build_store.timeout)
        if not result.succeeded:
            if result.timed_out:
                msg = 'build of %s timed out' % self.package.name
            else:
                msg = 'build of %s failed (code=%s)' % (self.package.name, result.returncode)
            self.logger.error(msg)
            kept_dir = build_dir if self.build_store.keep_build != 'never' else None
            raise BuildFailed(msg, result.returncode, result.output, kept_dir)

        log_gz_filename = pjoin(artifact_dir, 'build.log.gz')
        with allow_writes(artifact_dir):
            gzip_compress(log_filename, log_gz_filename)
        write_protect(log_gz_filename)

    def make_artifact_json(self, artifact_dir):
        fname = pjoin(artifact_dir, 'artifact.json')
        artifact_doc = {
            'id': self.key,
            'name': self.package.name,
            'version': self.package.version,
            'source': self.source.hash,
            'lock_hash': self.lock_hash,
            'inputs': {
                'native': [inp.name for inp in self.environment.native],
                'libraries': [inp.name for inp in self.environment.libraries],
                'fingerprint': self.environment.fingerprint,
            },
            'passthru': self.passthru,
        }
        with allow_writes(artifact_dir):
            with open(fname, 'w') as f:
                json.dump(artifact_doc, f, **json_formatting_options)
                f.write('\n')
        write_protect(fname)
