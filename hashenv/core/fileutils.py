"""
File system helpers for the store

Entries of the store are write-protected once complete. The helpers
here create, unprotect and remove such trees, and move staged entries
into place.
"""

import os
import stat
import errno
import shutil
import gzip
from contextlib import contextmanager

WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


def silent_makedirs(path):
    """Like ``os.makedirs(path, exist_ok=True)``, but also fine when `path`
    is a symlink to a directory"""
    try:
        os.makedirs(path)
    except OSError:
        if not os.path.isdir(path):
            raise


def write_protect(path):
    """Clears all write bits of `path`; symlinks are left alone"""
    if not os.path.islink(path):
        os.chmod(path, stat.S_IMODE(os.lstat(path).st_mode) & ~WRITE_BITS)


@contextmanager
def allow_writes(path):
    """Makes `path` writable for the duration of the with-block"""
    if os.path.islink(path):
        yield
        return
    mode = stat.S_IMODE(os.lstat(path).st_mode)
    os.chmod(path, mode | WRITE_BITS)
    try:
        yield
    finally:
        os.chmod(path, mode)


def rmtree_write_protected(path):
    """
    Removes the file or tree `path`, including write-protected entries

    Symlinks are removed, never followed.
    """
    if os.path.islink(path) or not os.path.isdir(path):
        os.unlink(path)
        return
    # entries can only be unlinked from writable directories
    for dirpath, dirnames, filenames in os.walk(path):
        os.chmod(dirpath, stat.S_IRWXU)
    shutil.rmtree(path)


def atomic_rename_dir(src, dst):
    """Renames the directory `src` to `dst`, unless `dst` already exists

    Returns `True` if the rename happened, `False` if somebody else
    got there first (in which case `src` is left alone).
    """
    try:
        os.rename(src, dst)
    except OSError as e:
        if e.errno in (errno.EEXIST, errno.ENOTEMPTY) and os.path.isdir(dst):
            return False
        raise
    return True


def gzip_compress(source_filename, dest_filename):
    with open(source_filename, 'rb') as src, gzip.open(dest_filename, 'wb') as dst:
        shutil.copyfileobj(src, dst)
