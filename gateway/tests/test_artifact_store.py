"""
Tests for the content-addressed artifact store.

Coverage matrix:

  validate     missing root is created; a file in its place is rejected
  store        identifier is the SHA-256 hex digest of the content
  idempotency  same content -> same identifier, object not rewritten
  is_hash      anything but 64 lowercase hex chars is rejected
  path         refuses malformed identifiers instead of resolving them
  round trip   path(store(content)) holds exactly ``content``
"""

import hashlib

import pytest

from gateway.app.errors import StorageUnavailable
from gateway.app.services.storage import ArtifactStore


@pytest.fixture
def store(tmp_path):
    store = ArtifactStore(tmp_path / "artifacts")
    store.validate()
    return store


# ---------------------------------------------------------------------------
# validate()
# ---------------------------------------------------------------------------

def test_validate_creates_missing_root(tmp_path):
    root = tmp_path / "nested" / "artifacts"
    assert not root.exists()

    ArtifactStore(root).validate()

    assert root.is_dir()


def test_validate_rejects_root_that_is_a_file(tmp_path):
    root = tmp_path / "artifacts"
    root.write_bytes(b"not a directory")

    with pytest.raises(StorageUnavailable):
        ArtifactStore(root).validate()


# ---------------------------------------------------------------------------
# store()
# ---------------------------------------------------------------------------

def test_identifier_is_sha256_hex_of_content(store):
    content = b"%PDF-1.7 rendered invoice"

    identifier = store.store(content)

    assert identifier == hashlib.sha256(content).hexdigest()
    assert store.is_hash(identifier)


def test_storing_same_content_twice_is_idempotent(store):
    content = b"identical bytes"

    first = store.store(content)
    stat_before = store.path(first).stat()

    second = store.store(content)
    stat_after = store.path(second).stat()

    assert first == second
    assert stat_after.st_ino == stat_before.st_ino
    assert stat_after.st_mtime_ns == stat_before.st_mtime_ns
    assert store.read(second) == content


def test_distinct_content_gets_distinct_identifiers(store):
    assert store.store(b"alpha") != store.store(b"beta")


def test_store_leaves_no_temporary_files(store):
    store.store(b"one")
    store.store(b"two")

    leftovers = [p.name for p in store.root.iterdir() if p.name.startswith(".tmp-")]
    assert leftovers == []


@pytest.mark.parametrize(
    "content",
    [b"x", b"\x00\x01\x02\xff", "Grüße, Ada".encode("utf-8"), bytes(range(256)) * 64],
)
def test_round_trip(store, content):
    identifier = store.store(content)

    assert store.path(identifier).read_bytes() == content


# ---------------------------------------------------------------------------
# is_hash() / path()
# ---------------------------------------------------------------------------

VALID = "a" * 64


@pytest.mark.parametrize(
    "candidate",
    [
        "",
        "abc",
        "a" * 63,
        "a" * 65,
        "A" * 64,
        "g" * 64,
        "../" + "a" * 61,
        "a" * 30 + "/" + "a" * 33,
        "a" * 30 + "\\" + "a" * 33,
        ".." + "a" * 62,
        VALID + "\n",
        None,
        42,
    ],
)
def test_is_hash_rejects_malformed_identifiers(store, candidate):
    assert store.is_hash(candidate) is False


def test_is_hash_accepts_well_formed_identifier(store):
    assert store.is_hash(VALID) is True


def test_path_refuses_malformed_identifier(store):
    with pytest.raises(ValueError):
        store.path("../../etc/passwd")


def test_path_stays_inside_root(store):
    assert store.path(VALID).parent == store.root


def test_exists_is_false_for_unknown_or_malformed(store):
    assert store.exists(VALID) is False
    assert store.exists("../secret") is False
