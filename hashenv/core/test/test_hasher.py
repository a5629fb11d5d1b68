import base64
import hashlib
from io import BytesIO

import pytest

from .. import hasher
from .utils import assert_raises

def test_hash_document_rejects_floats():
    with assert_raises(TypeError) as e:
        hasher.hash_document('test', [1, {'a': {'b': 3.4}}])
    assert 'document/1/a/b' in str(e.exc_val)

def test_hash_document():
    doc_a = {'b': [1, True, None, 'asdf'], 'a': 'x'}
    doc_b = {'a': 'x', 'b': [1, True, None, 'asdf']}
    h = hasher.hash_document('test', doc_a)
    assert h == hasher.hash_document('test', doc_b)
    assert len(h) == 32
    assert h == h.lower()
    # the doctype takes part
    assert h != hasher.hash_document('other', doc_a)

@pytest.mark.parametrize('a, b', [
    ({'a': 3}, {'a': '3'}),
    ([1, 2], [2, 1]),
    ({'a': [1, 2]}, {'a': (1, 2, 3)}),
    (True, 1),
    (None, 'null'),
])
def test_hash_document_distinguishes(a, b):
    assert hasher.hash_document('test', a) != hasher.hash_document('test', b)

def test_hash_document_is_sha256_of_compact_json():
    h = hashlib.sha256(b'test|{"a":1,"b":[2,3]}')
    assert hasher.hash_document('test', {'b': [2, 3], 'a': 1}) == hasher.format_digest(h)

def test_format_digest():
    h = hashlib.sha256(b'x')
    assert hasher.format_digest(h) == base64.b32encode(h.digest()[:20]).decode('ascii').lower()

def test_sri_digest():
    h = hashlib.sha256(b'hello')
    sri = hasher.format_sri_digest('sha256', h)
    assert sri == 'sha256-' + base64.b64encode(h.digest()).decode('ascii')
    assert hasher.split_sri_digest(sri) == ('sha256', sri[len('sha256-'):])
    assert hasher.split_sri_digest('abc=', 'sha512') == ('sha512', 'abc=')
    # unknown prefixes are part of the digest
    assert hasher.split_sri_digest('md5-abc=', 'sha256') == ('sha256', 'md5-abc=')

def test_new_hasher():
    assert hasher.new_hasher('sha512').digest_size == 64
    with assert_raises(ValueError):
        hasher.new_hasher('md5')

def test_hashing_write_stream():
    out = BytesIO()
    tee = hasher.HashingWriteStream(hashlib.sha256(), out)
    tee.write(b'abc')
    tee.write(b'def')
    assert out.getvalue() == b'abcdef'
    assert tee.digest() == hashlib.sha256(b'abcdef').digest()
