"""
:mod:`hashenv.core.source_cache` --- Source resolution
======================================================

Turns a source locator (origin + revision + expected content hash) into
a verified source tree in the store::

    resolver = SourceResolver(store, logger)
    source = resolver.resolve(manifest.source)
    source.path   # the verified tree
    source.hash   # e.g. 'sha256-5XwZmsJF/imB8ZSBM9LCrQRRrG5sbjKl6N7MVYIUIck='

The tree is fetched into a staging directory, hashed, compared against
the expected hash and only then published under that hash. A second
resolve of the same hash is answered from the store without fetching,
and concurrent resolves of one hash perform a single fetch.

Origins
-------

The fetch method is determined by the origin:

``github:owner/repo``
    The tarball GitHub serves for `revision`, top-level directory stripped.

``git+https://...``, ``git+file:...`` etc.
    A git checkout of `revision`; the ``.git`` directory is not part of
    the tree.

``https://...``, ``http://...``
    An archive (``tar.gz``, ``tar.bz2``, ``tar.xz``, ``zip``). If all archive
    members lie below a single top-level directory, it is stripped.

``file:/some/path``
    A local archive, or a local directory which is copied as-is.

Tree hashes
-----------

Archive hashes depend on metadata and compression, so the hash is taken
over the unpacked tree instead. The stream starts with the 8-byte magic
string ``HETREE01``, followed by each entry sorted by its relative path
(``/``-separated). Each entry is stored as

==========================  ==============================
one byte                    ``f`` (file), ``x`` (executable) or ``l`` (symlink)
little-endian ``uint32_t``  length of path
little-endian ``uint32_t``  length of payload
---                         path (UTF-8, no terminating null)
---                         payload (contents, or link target)
==========================  ==============================

Directories are implied by the paths. The digest is rendered as
``<algo>-<base64 digest>``.

Module reference
----------------
"""

import os
import re
import stat
import shutil
import struct
import tarfile
import zipfile
import tempfile
import subprocess
import urllib.request
import urllib.error
import socket
import base64
from collections import namedtuple
from contextlib import closing
from os.path import join as pjoin

from .common import InvalidManifest, FetchFailed, HashMismatch, HashEnvError
from .hasher import (SUPPORTED_HASH_ALGOS, new_hasher, format_sri_digest,
                     split_sri_digest, HashingWriteStream)

TREE_MAGIC = b'HETREE01'


class SecurityError(HashEnvError):
    pass


class VerifiedSource(namedtuple('VerifiedSource', 'path hash hash_algo')):
    """A source tree in the store whose content hash has been checked"""


def parse_expected_hash(locator):
    """Returns ``(algo, base64_digest)`` for the locator's expected hash

    Raises `InvalidManifest` on an empty hash, an unknown algorithm, or an
    SRI prefix that contradicts `hash_algo`.
    """
    if not locator.hash:
        raise InvalidManifest('source hash must be non-empty')
    algo, digest = split_sri_digest(locator.hash, locator.hash_algo or 'sha256')
    if locator.hash_algo and algo != locator.hash_algo:
        raise InvalidManifest('source hash "%s" is not a %s hash' % (locator.hash, locator.hash_algo))
    if algo not in SUPPORTED_HASH_ALGOS:
        raise InvalidManifest('unsupported hash algorithm: %s' % algo)
    try:
        raw = base64.b64decode(digest.encode('ascii'), validate=True)
    except (ValueError, UnicodeEncodeError):
        raise InvalidManifest('source hash "%s" is not base64-encoded' % locator.hash)
    if len(raw) != new_hasher(algo).digest_size:
        raise InvalidManifest('source hash "%s" has the wrong length for %s' % (locator.hash, algo))
    return algo, digest


def source_key(algo, digest):
    """Store key of a tree; base64 is not filesystem-safe so re-encode as base32"""
    raw = base64.b64decode(digest.encode('ascii'))
    return '%s/%s' % (algo, base64.b32encode(raw).decode('ascii').rstrip('=').lower())


def hash_tree(root, algo='sha256'):
    """Hashes the directory `root` in the format documented above"""
    tee = HashingWriteStream(new_hasher(algo))
    tee.write(TREE_MAGIC)
    for kind, relpath, payload in iter_tree(root):
        encoded = relpath.encode('utf-8')
        tee.write(kind)
        tee.write(struct.pack('<II', len(encoded), len(payload)))
        tee.write(encoded)
        tee.write(payload)
    return format_sri_digest(algo, tee)


def iter_tree(root):
    """Yields ``(kind, relpath, payload)`` for every non-directory entry, sorted"""
    entries = []
    for dirpath, dirnames, filenames in os.walk(root):
        if dirpath == root and '.git' in dirnames:
            dirnames.remove('.git')
        for name in dirnames + filenames:
            qname = pjoin(dirpath, name)
            if os.path.islink(qname) or not os.path.isdir(qname):
                entries.append(os.path.relpath(qname, root).replace(os.path.sep, '/'))
    for relpath in sorted(entries):
        qname = pjoin(root, *relpath.split('/'))
        if os.path.islink(qname):
            yield b'l', relpath, os.readlink(qname).encode('utf-8')
        else:
            with open(qname, 'rb') as f:
                contents = f.read()
            kind = b'x' if os.stat(qname).st_mode & stat.S_IXUSR else b'f'
            yield kind, relpath, contents


class SourceResolver(object):
    """
    Parameters
    ----------

    store : DiskStore
        Where verified trees are kept.

    logger : Logger

    fetchers : list (optional)
        Fetcher collaborators, tried in order; the first whose
        ``accepts(origin)`` is true is used. Defaults to
        :func:`default_fetchers`.

    timeout : float (optional)
        Passed on to the fetcher; expiry is reported as `FetchFailed`.
    """

    def __init__(self, store, logger, fetchers=None, timeout=None):
        self.store = store
        self.logger = logger
        self.fetchers = default_fetchers(logger) if fetchers is None else list(fetchers)
        self.timeout = timeout

    def get_fetcher(self, locator):
        if not locator.origin:
            raise InvalidManifest('source origin must be non-empty')
        for fetcher in self.fetchers:
            if fetcher.accepts(locator.origin):
                fetcher.check(locator)
                return fetcher
        raise InvalidManifest('does not recognize source origin: %s' % locator.origin)

    def resolve(self, locator):
        algo, digest = parse_expected_hash(locator)
        expected = '%s-%s' % (algo, digest)
        fetcher = self.get_fetcher(locator)
        key = source_key(algo, digest)

        path = self.store.lookup_tree(key)
        if path is None:
            with self.store.lock(key):
                path = self.store.lookup_tree(key)
                if path is None:
                    path = self._fetch_and_verify(fetcher, locator, algo, expected, key)
        else:
            self.logger.debug('%s already present in store' % expected)
        return VerifiedSource(path, expected, algo)

    def _fetch_and_verify(self, fetcher, locator, algo, expected, key):
        with self.store.stage_tree(key) as staging:
            self.logger.info('Fetching %s' % describe_locator(locator))
            fetcher.fetch(locator, staging, self.timeout)
            got = hash_tree(staging, algo)
            if got != expected:
                msg = 'source fetched from %s has hash %s but expected %s' % (
                    describe_locator(locator), got, expected)
                self.logger.error(msg)
                raise HashMismatch(msg, expected, got)
        return self.store.lookup_tree(key)

    def hash_source(self, locator, algo='sha256'):
        """Fetches the source to a temporary directory and returns its hash

        Nothing is verified or stored; used to find the hash to pin.
        """
        fetcher = self.get_fetcher(locator)
        temp_dir = tempfile.mkdtemp(prefix='hash-source-')
        try:
            fetcher.fetch(locator, temp_dir, self.timeout)
            return hash_tree(temp_dir, algo)
        finally:
            shutil.rmtree(temp_dir)


def describe_locator(locator):
    if locator.revision:
        return '%s@%s' % (locator.origin, locator.revision)
    return locator.origin


def default_fetchers(logger):
    return [GithubFetcher(logger), GitFetcher(logger), ArchiveFetcher(logger)]


#
# Fetchers
#

SIMPLE_FILE_URL_RE = re.compile(r'^file:/?[^/]+.*$')


class ArchiveFetcher(object):
    """Downloads and unpacks archives, or copies local directories"""

    chunk_size = 16 * 1024

    def __init__(self, logger):
        self.logger = logger

    def accepts(self, origin):
        return origin.startswith(('http://', 'https://', 'file:'))

    def check(self, locator):
        if SIMPLE_FILE_URL_RE.match(locator.origin):
            return
        archive_type_of(locator.origin)

    def get_url(self, locator):
        return locator.origin

    def fetch(self, locator, target_dir, timeout=None):
        url = self.get_url(locator)
        if SIMPLE_FILE_URL_RE.match(url) and os.path.isdir(url[len('file:'):]):
            self._copy_dir(url[len('file:'):], target_dir)
            return
        type = archive_type_of(url)
        temp_file = self._download(url, timeout)
        try:
            handler = create_archive_handler(type, self.logger)
            if not handler.verify(temp_file):
                msg = "File downloaded from '%s' is not a valid archive" % url
                self.logger.error(msg)
                raise FetchFailed(msg)
            with open(temp_file, 'rb') as f:
                handler.unpack(f, target_dir)
        finally:
            os.unlink(temp_file)

    def _copy_dir(self, src, target_dir):
        for name in os.listdir(src):
            if name == '.git':
                continue
            qname = pjoin(src, name)
            if os.path.isdir(qname) and not os.path.islink(qname):
                shutil.copytree(qname, pjoin(target_dir, name), symlinks=True)
            else:
                shutil.copy2(qname, pjoin(target_dir, name), follow_symlinks=False)

    def _download(self, url, timeout):
        """Downloads the file at url to a temporary file and returns its name"""
        use_urllib = not SIMPLE_FILE_URL_RE.match(url)
        if not use_urllib:
            try:
                stream = open(url[len('file:'):], 'rb')
            except IOError as e:
                raise FetchFailed(str(e))
        else:
            self.logger.debug('Downloading %s' % url)
            try:
                stream = urllib.request.urlopen(url, timeout=timeout)
            except urllib.error.HTTPError as e:
                msg = "urllib failed to download (code: %d): %s" % (e.code, url)
                self.logger.error(msg)
                raise FetchFailed(msg)
            except urllib.error.URLError as e:
                msg = "urllib failed to download (reason: %s): %s" % (e.reason, url)
                self.logger.error(msg)
                raise FetchFailed(msg)
            except (socket.timeout, OSError) as e:
                msg = "urllib failed to download (%s): %s" % (e, url)
                self.logger.error(msg)
                raise FetchFailed(msg)

        temp_fd, temp_path = tempfile.mkstemp(prefix='downloading-')
        try:
            with os.fdopen(temp_fd, 'wb') as f, closing(stream):
                while True:
                    chunk = stream.read(self.chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)
        except (socket.timeout, OSError) as e:
            os.unlink(temp_path)
            msg = "Download of %s interrupted: %s" % (url, e)
            self.logger.error(msg)
            raise FetchFailed(msg)
        return temp_path


class GithubFetcher(ArchiveFetcher):
    """``github:owner/repo`` origins, fetched as the tarball of a revision"""

    url_pattern = 'https://github.com/%s/%s/archive/%s.tar.gz'

    def accepts(self, origin):
        return origin.startswith('github:')

    def check(self, locator):
        parts = locator.origin[len('github:'):].split('/')
        if len(parts) != 2 or not all(parts):
            raise InvalidManifest('GitHub origin must be "github:owner/repo", not "%s"' % locator.origin)
        if not locator.revision:
            raise InvalidManifest('GitHub origin %s requires a revision' % locator.origin)

    def get_url(self, locator):
        owner, repo = locator.origin[len('github:'):].split('/')
        return self.url_pattern % (owner, repo, locator.revision)


class GitFetcher(object):
    """``git+<url>`` origins, checked out at `revision`"""

    def __init__(self, logger):
        self.logger = logger

    def accepts(self, origin):
        return origin.startswith('git+')

    def check(self, locator):
        if not locator.revision:
            raise InvalidManifest('git origin %s requires a revision' % locator.origin)

    def git(self, cwd, timeout, *args):
        cmd = ['git'] + list(args)
        self.logger.debug('running: %s' % cmd)
        try:
            p = subprocess.Popen(cmd, cwd=cwd, stdin=subprocess.DEVNULL,
                                 stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise FetchFailed('unable to run git: %s' % e)
        try:
            out, err = p.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            p.kill()
            p.communicate()
            msg = 'git call %r timed out after %s seconds' % (args, timeout)
            self.logger.error(msg)
            raise FetchFailed(msg)
        if p.returncode != 0:
            msg = 'git call %r failed with code %d:\n%s' % (args, p.returncode,
                                                           err.decode('utf-8', 'replace'))
            self.logger.error(msg)
            raise FetchFailed(msg)
        return out

    def fetch(self, locator, target_dir, timeout=None):
        url = locator.origin[len('git+'):]
        self.git(target_dir, timeout, 'init', '-q')
        self.git(target_dir, timeout, 'fetch', '-q', '--depth', '1', url, locator.revision)
        self.git(target_dir, timeout, 'checkout', '-q', 'FETCH_HEAD')
        shutil.rmtree(pjoin(target_dir, '.git'))


#
# Archive format support
#

def top_level_prefix(names):
    """Returns ``'<dir>/'`` if all `names` lie below one top-level directory

    Otherwise, or if the archive holds nothing but that name, returns ``''``.
    """
    tops = set(name.split('/', 1)[0] for name in names)
    nested = any('/' in name.rstrip('/') for name in names)
    if len(tops) == 1 and nested:
        return tops.pop() + '/'
    return ''


def check_member_path(target_dir, name):
    """Raises `SecurityError` unless `name` unpacks inside `target_dir`"""
    dest = os.path.abspath(pjoin(target_dir, name))
    if os.path.isabs(name) or not dest.startswith(target_dir + os.path.sep):
        raise SecurityError('Archive attempted to break out of target dir with filename: %s'
                            % name)


class TarballHandler(object):
    """Tarballs compressed with `compression` (``gz``, ``bz2`` or ``xz``)"""

    kept_types = (tarfile.REGTYPE, tarfile.AREGTYPE, tarfile.DIRTYPE,
                  tarfile.SYMTYPE, tarfile.LNKTYPE)

    def __init__(self, logger, compression):
        self.logger = logger
        self.mode = 'r:' + compression

    def verify(self, filename):
        try:
            with tarfile.open(filename, self.mode) as archive:
                archive.getmembers()
        except (tarfile.TarError, EOFError, OSError):
            return False
        return True

    def unpack(self, infile, target_dir):
        target_dir = os.path.abspath(target_dir)
        with tarfile.open(fileobj=infile, mode=self.mode) as archive:
            members = archive.getmembers()
            prefix = top_level_prefix([m.name for m in members])
            selected = []
            for m in members:
                if m.name.rstrip('/') == prefix.rstrip('/'):
                    continue
                check_member_path(target_dir, m.name)
                if m.type not in self.kept_types:
                    self.logger.warning('Skipping special file in archive: %s' % m.name)
                    continue
                m.name = m.name[len(prefix):]
                if m.type == tarfile.LNKTYPE:
                    m.linkname = m.linkname[len(prefix):]
                selected.append(m)
            try:
                archive.extractall(target_dir, selected, filter='tar')
            except tarfile.FilterError as e:
                raise SecurityError(str(e))


class ZipHandler(object):

    def __init__(self, logger):
        self.logger = logger

    def verify(self, filename):
        try:
            with zipfile.ZipFile(filename) as archive:
                return archive.testzip() is None
        except zipfile.BadZipFile:
            return False

    def unpack(self, infile, target_dir):
        target_dir = os.path.abspath(target_dir)
        with zipfile.ZipFile(infile) as archive:
            infos = archive.infolist()
            prefix = top_level_prefix([info.filename for info in infos])
            for info in infos:
                if info.filename.rstrip('/') == prefix.rstrip('/'):
                    continue
                check_member_path(target_dir, info.filename)
                info.filename = info.filename[len(prefix):]
                archive.extract(info, target_dir)
                # permissions are not restored by zipfile
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    os.chmod(pjoin(target_dir, info.filename), mode)


# archive type, file extensions, handler factory
ARCHIVE_FORMATS = [
    ('tar.gz', ('tar.gz', 'tgz'), lambda logger: TarballHandler(logger, 'gz')),
    ('tar.bz2', ('tar.bz2', 'tb2', 'tbz2'), lambda logger: TarballHandler(logger, 'bz2')),
    ('tar.xz', ('tar.xz', 'txz'), lambda logger: TarballHandler(logger, 'xz')),
    ('zip', ('zip',), ZipHandler),
]
archive_types = sorted(type for type, exts, factory in ARCHIVE_FORMATS)


def archive_type_of(url):
    """The archive type, judged by the extension of `url`"""
    for type, exts, factory in ARCHIVE_FORMATS:
        if url.endswith(tuple('.' + ext for ext in exts)):
            return type
    raise InvalidManifest('Unable to guess archive type of "%s"' % url)


def create_archive_handler(type, logger):
    for known_type, exts, factory in ARCHIVE_FORMATS:
        if known_type == type:
            return factory(logger)
    raise ValueError('unknown archive type: %s' % type)
