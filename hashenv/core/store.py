"""
:mod:`hashenv.core.store` --- Content-addressed local store
===========================================================

The store is the only shared mutable resource of an evaluation. It
holds two kinds of entries:

**Source trees** (``src/<algo>/<digest>``):
    Verified source trees, keyed by their content hash. A tree is
    written to a staging directory under ``tmp/`` and then moved into
    place with a single ``rename``, so that a tree is visible under its
    key only once it has been completely fetched and verified.

**Artifacts** (``art/<name>/<short digest>``):
    Build outputs. These are built in place (builds may record their
    install location) and the presence of the ``id`` file, created by
    renaming ``_id``, signals that the build is complete. A directory
    without ``id`` is left over from an interrupted build and is wiped
    before the next attempt.

Publishing the same key twice is a no-op. Duplicate concurrent work on
one key is prevented by :meth:`DiskStore.lock`, which hands out one
lock per key; work on distinct keys proceeds in parallel.

Keys are ``<first>/<second>`` pairs of plain path segments; anything
else raises `ValueError` (see :func:`split_store_key`).

The store is always passed explicitly to the components using it.
"""

import os
import errno
import tempfile
import threading
import contextlib
from os.path import join as pjoin

from .common import IllegalStoreError, SHORT_ARTIFACT_ID_LEN
from .fileutils import (silent_makedirs, rmtree_write_protected, atomic_rename_dir,
                        allow_writes, write_protect)

SOURCES_DIRNAME = 'src'
ARTIFACTS_DIRNAME = 'art'
TEMP_DIRNAME = 'tmp'


def split_store_key(key):
    """Splits a ``<first>/<second>`` store key into its two segments

    Raises `ValueError` unless there are exactly two segments, neither
    of them empty, ``.`` or ``..``.
    """
    parts = key.split('/')
    if len(parts) != 2 or any(part in ('', '.', '..') for part in parts):
        raise ValueError('invalid store key: %r' % key)
    return parts


class KeyedLock(object):
    """One mutex per key; entries are dropped when nobody holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextlib.contextmanager
    def locked(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class DiskStore(object):
    """
    Parameters
    ----------

    root : str
        Directory of the store; ``src``, ``art`` and ``tmp`` are created
        below it.

    logger : Logger
    """

    def __init__(self, root, logger, create_dirs=True):
        if not os.path.isdir(root):
            if create_dirs:
                silent_makedirs(root)
            else:
                raise ValueError('"%s" is not an existing directory' % root)
        self.root = os.path.realpath(root)
        self.logger = logger
        self.temp_dir = pjoin(self.root, TEMP_DIRNAME)
        for d in [SOURCES_DIRNAME, ARTIFACTS_DIRNAME, TEMP_DIRNAME]:
            silent_makedirs(pjoin(self.root, d))
        self._locks = KeyedLock()

    @staticmethod
    def create_from_config(config, logger):
        return DiskStore(config['store'], logger)

    def lock(self, key):
        """Context manager serializing all work on `key`"""
        return self._locks.locked(key)

    #
    # Source trees
    #

    def _get_tree_path(self, key):
        algo, digest = split_store_key(key)
        return pjoin(self.root, SOURCES_DIRNAME, algo, digest)

    def lookup_tree(self, key):
        """Returns the path of the source tree stored under `key`, or `None`"""
        path = self._get_tree_path(key)
        return path if os.path.isdir(path) else None

    @contextlib.contextmanager
    def stage_tree(self, key):
        """Yields an empty staging directory which is published under `key`

        If the body raises, the staging directory is removed and nothing
        is published.
        """
        staging = tempfile.mkdtemp(prefix='staging-', dir=self.temp_dir)
        try:
            yield staging
            target = self._get_tree_path(key)
            silent_makedirs(os.path.dirname(target))
            if not atomic_rename_dir(staging, target):
                self.logger.debug('%s was published concurrently' % key)
        finally:
            if os.path.lexists(staging):
                rmtree_write_protected(staging)

    def tree_keys(self):
        base = pjoin(self.root, SOURCES_DIRNAME)
        return sorted('%s/%s' % (algo, digest)
                      for algo in os.listdir(base)
                      for digest in os.listdir(pjoin(base, algo)))

    def delete_tree(self, key):
        path = self.lookup_tree(key)
        if path is not None:
            rmtree_write_protected(path)
        return path

    #
    # Artifacts
    #

    def _get_artifact_path(self, key):
        name, digest = split_store_key(key)
        return pjoin(self.root, ARTIFACTS_DIRNAME, name, digest[:SHORT_ARTIFACT_ID_LEN])

    def lookup_artifact(self, key):
        """Given an artifact key, return its path, or `None` if the artifact
        isn't (completely) built.
        """
        path = self._get_artifact_path(key)
        try:
            f = open(pjoin(path, 'id'))
        except IOError as e:
            if e.errno == errno.ENOENT:
                return None
            raise
        with f:
            present_key = f.read().strip()
        if present_key != key:
            self.logger.error('An artifact with a hash that agrees in the first %d characters '
                              'is already present:' % SHORT_ARTIFACT_ID_LEN)
            self.logger.error('    %s (already present)' % present_key)
            self.logger.error('    %s (wants to access/build)' % key)
            raise IllegalStoreError('Hashes collide in first %d chars: %s and %s' %
                                    (SHORT_ARTIFACT_ID_LEN, present_key, key))
        return path

    @contextlib.contextmanager
    def reserve_artifact(self, key):
        """Yields the directory to build the artifact `key` in

        The directory is registered as complete when the body finishes
        without an exception and removed otherwise. The caller must hold
        :meth:`lock` for `key`.
        """
        path = self._get_artifact_path(key)
        if os.path.lexists(path):
            self.logger.warning('Removing incomplete artifact directory %s' % path)
            rmtree_write_protected(path)
        os.makedirs(path)
        try:
            yield path
            with allow_writes(path):
                with open(pjoin(path, '_id'), 'w') as f:
                    f.write('%s\n' % key)
                os.rename(pjoin(path, '_id'), pjoin(path, 'id'))
            write_protect(pjoin(path, 'id'))
        except BaseException:
            rmtree_write_protected(path)
            raise

    def artifact_keys(self):
        base = pjoin(self.root, ARTIFACTS_DIRNAME)
        keys = []
        for name in os.listdir(base):
            for short_digest in os.listdir(pjoin(base, name)):
                try:
                    with open(pjoin(base, name, short_digest, 'id')) as f:
                        keys.append(f.read().strip())
                except IOError as e:
                    if e.errno != errno.ENOENT:
                        raise
        return sorted(keys)

    def delete_artifact(self, key):
        """Removes the artifact directory; returns the path removed or `None`"""
        path = self._get_artifact_path(key)
        if not os.path.lexists(path):
            return None
        # remove 'id' first, to de-mark the artifact as valid
        id_file = pjoin(path, 'id')
        if os.path.exists(id_file):
            with allow_writes(path):
                os.unlink(id_file)
        rmtree_write_protected(path)
        return path
