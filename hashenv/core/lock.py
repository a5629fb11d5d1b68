"""
Lock hashes

The lock hash covers the fully resolved dependency graph of a package:
the fingerprint of its declared inputs plus the contents of any
dependency lock files at the root of its source tree. It is independent
of the source hash, so that a manifest whose inputs or pinned
dependencies went out of sync with the source is detected before
anything is built.
"""

import os
import hashlib
from os.path import join as pjoin

from .hasher import hash_document, format_digest

LOCK_FILENAMES = ('Cargo.lock', 'package-lock.json', 'yarn.lock', 'poetry.lock',
                  'Pipfile.lock', 'go.sum', 'flake.lock')


def find_lock_files(source_dir):
    return [name for name in LOCK_FILENAMES if os.path.isfile(pjoin(source_dir, name))]


def compute_lock_hash(environment, source_dir):
    lock_files = {}
    for name in find_lock_files(source_dir):
        with open(pjoin(source_dir, name), 'rb') as f:
            lock_files[name] = format_digest(hashlib.sha256(f.read()))
    doc = {'inputs': environment.fingerprint, 'lock_files': lock_files}
    return hash_document('lock', doc)
