import os
import shutil
import tarfile
import zipfile
import threading
import time
from contextlib import closing
from os.path import join as pjoin

import mock
import pytest

from ..source_cache import (SourceResolver, SecurityError, GithubFetcher,
                            hash_tree, parse_expected_hash, source_key, top_level_prefix)
from ..store import DiskStore
from ..common import InvalidManifest, FetchFailed, HashMismatch
from ...formats.manifest import SourceLocator

from .utils import (temp_dir, logger, assert_raises, cat, dump, scatter_files, git,
                    make_abs_temp_dir, make_temporary_tarball)
from hashenv.util.logger_fixtures import log_capture


#
# Fixture
#

mock_files = [('README', 'file contents'),
              ('src/main.rs', 'fn main() {}\n'),
              ('Cargo.lock', '# lock\n')]

@pytest.fixture(scope='module')
def mock_container():
    d = make_abs_temp_dir()
    try:
        yield d
    finally:
        shutil.rmtree(d)

@pytest.fixture(scope='module')
def mock_tarball(mock_container):
    _, archive, tree_hash = make_temporary_tarball(mock_files, container_dir=mock_container)
    return archive, tree_hash

@pytest.fixture(scope='module')
def mock_source_dir(mock_container):
    d = pjoin(mock_container, 'project')
    scatter_files(mock_files, d)
    return d

@pytest.fixture
def store():
    with temp_dir() as d:
        yield DiskStore(d, logger)


class CountingFetcher(object):
    """Writes `files` into the target dir, slowly, counting calls"""

    def __init__(self, files, delay=0):
        self.files = files
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def accepts(self, origin):
        return origin.startswith('test:')

    def check(self, locator):
        pass

    def fetch(self, locator, target_dir, timeout=None):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        scatter_files(self.files, target_dir)


def files_hash(files):
    with temp_dir() as d:
        scatter_files(files, d)
        return hash_tree(d)

def corrupt(sri_hash):
    algo, digest = sri_hash.split('-', 1)
    first = 'B' if digest[0] == 'A' else 'A'
    return '%s-%s%s' % (algo, first, digest[1:])


#
# Tree hashing
#

def test_hash_tree_format():
    with temp_dir() as d:
        dump(pjoin(d, 'a'), 'x')
        h1 = hash_tree(d)
        assert h1.startswith('sha256-')
        assert hash_tree(d, 'sha512').startswith('sha512-')

        # renames, contents and the executable bit all count
        os.chmod(pjoin(d, 'a'), 0o755)
        h2 = hash_tree(d)
        assert h2 != h1
        os.chmod(pjoin(d, 'a'), 0o644)
        assert hash_tree(d) == h1
        os.rename(pjoin(d, 'a'), pjoin(d, 'b'))
        assert hash_tree(d) != h1

def test_hash_tree_ignores_git_dir_and_empty_dirs():
    with temp_dir() as d:
        dump(pjoin(d, 'a'), 'x')
        h = hash_tree(d)
        dump(pjoin(d, '.git', 'HEAD'), 'ref: refs/heads/master')
        os.mkdir(pjoin(d, 'empty'))
        assert hash_tree(d) == h
        # .git below the root is content
        dump(pjoin(d, 'sub', '.git'), 'gitdir: ../.git')
        assert hash_tree(d) != h

def test_hash_tree_symlinks():
    with temp_dir() as d:
        dump(pjoin(d, 'a'), 'x')
        os.symlink('a', pjoin(d, 'link'))
        h = hash_tree(d)
        os.unlink(pjoin(d, 'link'))
        dump(pjoin(d, 'link'), 'a')
        assert hash_tree(d) != h

def test_parse_expected_hash():
    h = files_hash(mock_files)
    algo, digest = parse_expected_hash(SourceLocator('test:', hash=h))
    assert algo == 'sha256'
    assert h == 'sha256-' + digest
    # bare digest with explicit algorithm
    assert parse_expected_hash(SourceLocator('test:', hash=digest, hash_algo='sha256')) == (algo, digest)
    assert source_key(algo, digest).startswith('sha256/')
    assert '=' not in source_key(algo, digest)

@pytest.mark.parametrize('hash, hash_algo', [
    ('', None),
    (None, 'sha256'),
    ('sha256-notbase64!!', None),
    ('sha256-aGVsbG8=', None),             # too short
    ('sha256-aGVsbG8=', 'sha512'),         # contradicts the prefix
    ('aGVsbG8=', 'md5'),
])
def test_invalid_hash(hash, hash_algo):
    with assert_raises(InvalidManifest):
        parse_expected_hash(SourceLocator('test:', hash=hash, hash_algo=hash_algo))

def test_top_level_prefix():
    assert top_level_prefix(['p-1.0', 'p-1.0/a', 'p-1.0/b/c']) == 'p-1.0/'
    assert top_level_prefix(['p-1.0/a/b', 'p-1.0/a/c']) == 'p-1.0/'
    assert top_level_prefix(['a', 'b/c']) == ''
    assert top_level_prefix(['README']) == ''
    assert top_level_prefix(['zipdir/', 'zipdir/README']) == 'zipdir/'
    assert top_level_prefix([]) == ''

#
# Resolving
#

def test_resolve_local_dir(store, mock_source_dir):
    h = files_hash(mock_files)
    resolver = SourceResolver(store, logger)
    source = resolver.resolve(SourceLocator('file:' + mock_source_dir, hash=h))
    assert source.hash == h
    assert source.hash_algo == 'sha256'
    assert cat(pjoin(source.path, 'src', 'main.rs')) == 'fn main() {}\n'
    assert store.lookup_tree(source_key(*parse_expected_hash(SourceLocator('', hash=h)))) == source.path

def test_resolve_tarball(store, mock_tarball):
    archive, tree_hash = mock_tarball
    resolver = SourceResolver(store, logger)
    source = resolver.resolve(SourceLocator('file:' + archive, hash=tree_hash))
    # top-level directory stripped
    assert sorted(os.listdir(source.path)) == ['Cargo.lock', 'README', 'src']
    assert source.hash == tree_hash

def test_resolve_zipfile(store, mock_container):
    archive = pjoin(mock_container, 'test.zip')
    with closing(zipfile.ZipFile(archive, 'w')) as z:
        for relpath, contents in mock_files:
            z.writestr('project-1.0/' + relpath, contents)
    resolver = SourceResolver(store, logger)
    source = resolver.resolve(SourceLocator('file:' + archive, hash=files_hash(mock_files)))
    assert cat(pjoin(source.path, 'README')) == 'file contents'

def test_corrupted_hash_writes_nothing(store, mock_tarball):
    archive, tree_hash = mock_tarball
    resolver = SourceResolver(store, logger)
    with log_capture() as logger_:
        resolver.logger = logger_
        with assert_raises(HashMismatch) as e:
            resolver.resolve(SourceLocator('file:' + archive, hash=corrupt(tree_hash)))
    assert e.exc_val.expected == corrupt(tree_hash)
    assert e.exc_val.got == tree_hash
    logger_.assertLogged('^ERROR:source fetched from .* has hash')
    assert store.tree_keys() == []
    assert os.listdir(store.temp_dir) == []

def test_cache_hit_does_not_fetch(store):
    fetcher = CountingFetcher(mock_files)
    resolver = SourceResolver(store, logger, fetchers=[fetcher])
    locator = SourceLocator('test:x', hash=files_hash(mock_files))
    first = resolver.resolve(locator)
    second = resolver.resolve(locator)
    assert first == second
    assert fetcher.calls == 1

def test_concurrent_resolves_fetch_once(store):
    fetcher = CountingFetcher(mock_files, delay=0.1)
    resolver = SourceResolver(store, logger, fetchers=[fetcher])
    locator = SourceLocator('test:x', hash=files_hash(mock_files))
    results = []

    def work():
        results.append(resolver.resolve(locator))

    threads = [threading.Thread(target=work) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert fetcher.calls == 1
    assert len(results) == 8
    assert len(set(results)) == 1

def test_distinct_hashes_fetch_separately(store):
    other_files = [('README', 'other contents')]
    fetchers = [CountingFetcher(mock_files), CountingFetcher(other_files)]
    resolver = SourceResolver(store, logger, fetchers=[fetchers[0]])
    resolver.resolve(SourceLocator('test:a', hash=files_hash(mock_files)))
    resolver.fetchers = [fetchers[1]]
    resolver.resolve(SourceLocator('test:b', hash=files_hash(other_files)))
    assert [f.calls for f in fetchers] == [1, 1]
    assert len(store.tree_keys()) == 2

def test_empty_hash_fails_before_fetch(store):
    fetcher = mock.Mock()
    fetcher.accepts.return_value = True
    resolver = SourceResolver(store, logger, fetchers=[fetcher])
    with assert_raises(InvalidManifest):
        resolver.resolve(SourceLocator('test:x', hash=''))
    assert not fetcher.fetch.called

def test_unknown_origin(store):
    resolver = SourceResolver(store, logger)
    with assert_raises(InvalidManifest):
        resolver.resolve(SourceLocator('ftp://example.com/x.tar.gz', hash=files_hash(mock_files)))
    with assert_raises(InvalidManifest):
        resolver.resolve(SourceLocator('https://example.com/x.rar', hash=files_hash(mock_files)))

def test_fetch_failed(store, mock_container):
    resolver = SourceResolver(store, logger)
    with assert_raises(FetchFailed):
        resolver.resolve(SourceLocator('file:' + pjoin(mock_container, 'missing.tar.gz'),
                                       hash=files_hash(mock_files)))
    assert store.tree_keys() == []

def test_http_fetch_failed(store):
    resolver = SourceResolver(store, logger)
    import urllib.error
    with mock.patch('urllib.request.urlopen', side_effect=urllib.error.URLError('unreachable')):
        with assert_raises(FetchFailed):
            resolver.resolve(SourceLocator('https://example.com/x.tar.gz',
                                           hash=files_hash(mock_files)))
    assert store.tree_keys() == []

def test_corrupt_archive(store, mock_container):
    archive = pjoin(mock_container, 'corrupt.tar.gz')
    dump(archive, 'this is not a tarball')
    resolver = SourceResolver(store, logger)
    with assert_raises(FetchFailed):
        resolver.resolve(SourceLocator('file:' + archive, hash=files_hash(mock_files)))

@pytest.mark.parametrize('attackname', ['/escapes', '../escapes', 'a/../../escapes'])
def test_tarball_breakout(store, mock_container, attackname):
    archive = pjoin(mock_container, 'danger.tar.gz')
    contentsfile = pjoin(mock_container, 'contents')
    dump(contentsfile, 'hello')
    with closing(tarfile.open(archive, 'w:gz')) as f:
        info = tarfile.TarInfo(attackname)
        info.size = len('hello')
        with open(contentsfile, 'rb') as f2:
            f.addfile(info, f2)
    resolver = SourceResolver(store, logger)
    with assert_raises(SecurityError):
        resolver.resolve(SourceLocator('file:' + archive, hash=files_hash(mock_files)))
    assert store.tree_keys() == []

def test_github_origin():
    fetcher = GithubFetcher(logger)
    locator = SourceLocator('github:pagedMov/ox', 'v0.1.1-alpha',
                            'sha256-5XwZmsJF/imB8ZSBM9LCrQRRrG5sbjKl6N7MVYIUIck=')
    assert fetcher.accepts(locator.origin)
    fetcher.check(locator)
    assert (fetcher.get_url(locator) ==
            'https://github.com/pagedMov/ox/archive/v0.1.1-alpha.tar.gz')
    with assert_raises(InvalidManifest):
        fetcher.check(locator._replace(revision=None))
    with assert_raises(InvalidManifest):
        fetcher.check(locator._replace(origin='github:ox'))

def test_github_fetch_downloads_tarball(store, mock_tarball):
    archive, tree_hash = mock_tarball

    def fake_urlopen(url, timeout=None):
        assert url == 'https://github.com/pagedMov/ox/archive/v0.1.1-alpha.tar.gz'
        return open(archive, 'rb')

    resolver = SourceResolver(store, logger)
    with mock.patch('urllib.request.urlopen', side_effect=fake_urlopen):
        source = resolver.resolve(SourceLocator('github:pagedMov/ox', 'v0.1.1-alpha', tree_hash))
    assert source.hash == tree_hash
    assert cat(pjoin(source.path, 'README')) == 'file contents'

@pytest.mark.skipif(shutil.which('git') is None, reason='git not available')
def test_git_origin(store):
    with temp_dir() as repo:
        git('init', '-q', repo=repo)
        git('config', 'user.name', 'hashenv test', repo=repo)
        git('config', 'user.email', 'test@example.com', repo=repo)
        scatter_files(mock_files, repo)
        git('add', '.', repo=repo)
        git('commit', '-q', '-m', 'First revision', repo=repo)
        git('tag', 'v0.1', repo=repo)

        resolver = SourceResolver(store, logger)
        source = resolver.resolve(SourceLocator('git+file://' + repo, 'v0.1',
                                                files_hash(mock_files)))
        assert not os.path.exists(pjoin(source.path, '.git'))
        assert cat(pjoin(source.path, 'README')) == 'file contents'

        with assert_raises(FetchFailed):
            resolver.resolve(SourceLocator('git+file://' + repo, 'no-such-branch',
                                           files_hash([('x', 'y')])))

def test_hash_source(store, mock_tarball):
    archive, tree_hash = mock_tarball
    resolver = SourceResolver(store, logger)
    # the declared hash does not matter
    locator = SourceLocator('file:' + archive, hash='sha256-')
    assert resolver.hash_source(locator) == tree_hash
    assert resolver.hash_source(locator, 'sha512').startswith('sha512-')
    assert store.tree_keys() == []
