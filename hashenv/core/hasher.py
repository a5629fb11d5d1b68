"""
:mod:`hashenv.core.hasher` -- Utilities for hashing
===================================================

Two digest renderings are in use:

 * The store format (:func:`format_digest`): the first 160 bits of a
   SHA-256 digest in lower-case base32, used for store keys, lock
   hashes and input fingerprints. Structured values are hashed with
   :func:`hash_document`.

 * The SRI format (:func:`format_sri_digest`): ``<algo>-<base64 digest>``,
   used for the content hash of sources, so that hashes already pinned
   elsewhere can be pasted into a manifest unchanged.
"""

import json
import hashlib
import base64

SUPPORTED_HASH_ALGOS = ('sha1', 'sha256', 'sha384', 'sha512')

STORE_DIGEST_BYTES = 20


def _reject_floats(doc, path='document'):
    # floats have several JSON spellings of the same value
    if isinstance(doc, float):
        raise TypeError('%s: floating-point number not allowed' % path)
    children = doc.items() if isinstance(doc, dict) else (
        enumerate(doc) if isinstance(doc, (list, tuple)) else ())
    for key, value in children:
        _reject_floats(value, '%s/%s' % (path, key))


def hash_document(doctype, doc):
    """
    Hashes a JSON-like document to the store format

    The document is serialized as compact JSON with sorted keys and
    prefixed with ``<doctype>|``, so that equal documents of different
    kinds (a lock, a build output, ...) hash differently. Key order of
    dicts does not matter; list order does.
    """
    _reject_floats(doc)
    payload = '%s|%s' % (doctype, json.dumps(doc, sort_keys=True, separators=(',', ':'),
                                              ensure_ascii=True, allow_nan=False))
    return format_digest(hashlib.sha256(payload.encode('utf-8')))


def format_digest(hasher):
    """The store format of the digest of `hasher` (anything with a
    ``digest()`` method, e.g. a :mod:`hashlib` object)"""
    raw = hasher.digest()[:STORE_DIGEST_BYTES]
    return base64.b32encode(raw).decode('ascii').lower()


def new_hasher(algo):
    """A :mod:`hashlib` object for one of `SUPPORTED_HASH_ALGOS`"""
    if algo not in SUPPORTED_HASH_ALGOS:
        raise ValueError('unsupported hash algorithm: %s' % algo)
    return hashlib.new(algo)


def format_sri_digest(algo, hasher):
    return '%s-%s' % (algo, base64.b64encode(hasher.digest()).decode('ascii'))


def split_sri_digest(value, default_algo=None):
    """Splits ``sha256-<base64>`` into ``('sha256', '<base64>')``

    A value without a known algorithm prefix is returned with
    `default_algo`.
    """
    algo, sep, rest = value.partition('-')
    if sep and algo in SUPPORTED_HASH_ALGOS:
        return algo, rest
    return default_algo, value


class HashingWriteStream(object):
    """
    File-like object feeding everything written to `hasher`, and to
    `stream` unless that is `None`
    """
    def __init__(self, hasher, stream=None):
        self.hasher = hasher
        self.stream = stream

    def write(self, data):
        self.hasher.update(data)
        if self.stream is not None:
            self.stream.write(data)

    def digest(self):
        return self.hasher.digest()
