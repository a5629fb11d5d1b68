"""
Helpers shared by the tests: temporary directories, file fixtures,
fake input prefixes and archives

Set ``VERBOSE=1`` to see the log output of the code under test.
"""

import os
import stat
import tarfile
import tempfile
import contextlib
import subprocess
import logging
from textwrap import dedent
from os.path import join as pjoin

import pytest

from ..fileutils import silent_makedirs, rmtree_write_protected
from ..common import working_directory
from hashenv.util.logger_setup import configure_logging

VERBOSE = os.environ.get('VERBOSE', '0') not in ('', '0')

configure_logging('DEBUG' if VERBOSE else 'WARNING')
logger = logging.getLogger() if VERBOSE else logging.getLogger('null_logger')


class AssertRaisesResult(object):
    exc_type = exc_val = exc_tb = None


@contextlib.contextmanager
def assert_raises(wanted_exc_type):
    """Like ``pytest.raises``; the exception is available as ``exc_val``
    of the returned object after the with-block"""
    result = AssertRaisesResult()
    with pytest.raises(wanted_exc_type) as info:
        yield result
    result.exc_type, result.exc_val, result.exc_tb = info.type, info.value, info.tb


def make_abs_temp_dir():
    return os.path.realpath(tempfile.mkdtemp(prefix='hashenv-test-'))


@contextlib.contextmanager
def temp_dir():
    d = make_abs_temp_dir()
    try:
        yield d
    finally:
        # stores write-protect their entries
        rmtree_write_protected(d)


@contextlib.contextmanager
def temp_working_dir():
    with temp_dir() as d, working_directory(d):
        yield d


def cat(filename):
    with open(filename) as f:
        return f.read()


def dump(filename, contents, executable=False):
    """Writes the dedented `contents` to `filename`, creating directories"""
    if os.path.dirname(filename):
        silent_makedirs(os.path.dirname(filename))
    with open(filename, 'w') as f:
        f.write(dedent(contents))
    if executable:
        os.chmod(filename, os.stat(filename).st_mode | stat.S_IXUSR)


def scatter_files(files, target_dir):
    """Writes ``(relpath, contents)`` pairs below `target_dir`"""
    for relpath, contents in files:
        dump(pjoin(target_dir, relpath), contents)


def make_prefix(root, name, bin_names=(), pkgconfig=False, lib=False):
    """Creates a fake installed input `root/name`; returns its prefix"""
    prefix = pjoin(root, name)
    silent_makedirs(pjoin(prefix, 'bin'))
    for bin_name in bin_names:
        dump(pjoin(prefix, 'bin', bin_name), '#!/bin/sh\n', executable=True)
    if pkgconfig:
        dump(pjoin(prefix, 'lib', 'pkgconfig', '%s.pc' % name), 'Name: %s\n' % name)
    if lib:
        silent_makedirs(pjoin(prefix, 'include'))
        dump(pjoin(prefix, 'lib', 'lib%s.a' % name), '')
    return prefix


def git(*args, **kw):
    """Runs git in ``kw['repo']``; returns stdout"""
    out = subprocess.run(['git'] + list(args), cwd=kw['repo'], check=True,
                         stdout=subprocess.PIPE,
                         stderr=None if VERBOSE else subprocess.DEVNULL)
    return out.stdout.decode('ascii')


def make_temporary_tarball(files, container_dir=None, top_dir='project-1.0'):
    """Packs `files` below `top_dir` into ``archive.tar.gz``

    Returns ``(container_dir, archive_filename, tree_hash)``; the tree hash
    is that of the unpacked files with `top_dir` stripped.
    """
    from ..source_cache import hash_tree

    if container_dir is None:
        container_dir = make_abs_temp_dir()
    archive_filename = pjoin(container_dir, 'archive.tar.gz')
    with temp_dir() as d:
        scatter_files(files, d)
        with tarfile.open(archive_filename, 'w:gz') as archive:
            archive.add(d, arcname=top_dir)
        tree_hash = hash_tree(d)
    return container_dir, archive_filename, tree_hash
