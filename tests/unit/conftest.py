import os
import shutil
import sys
import tempfile

import pytest

COLLECTION_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
COLLECTION_NAMESPACE = "unity"
COLLECTION_NAME = "node_features"
FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


def _collections_path() -> tuple[str, bool]:
    """
    ansible-test units runs from inside ansible_collections/unity/node_features. anywhere else,
    link this checkout into a temporary collections tree so that the collection imports resolve
    returns the directory that contains ansible_collections, and whether it is temporary
    """
    parent, name = os.path.split(COLLECTION_ROOT)
    grandparent, namespace = os.path.split(parent)
    base, collections_dir = os.path.split(grandparent)
    if (collections_dir, namespace, name) == (
        "ansible_collections",
        COLLECTION_NAMESPACE,
        COLLECTION_NAME,
    ):
        return base, False
    base = tempfile.mkdtemp(prefix="unity_node_features_")
    namespace_dir = os.path.join(base, "ansible_collections", COLLECTION_NAMESPACE)
    os.makedirs(namespace_dir)
    os.symlink(COLLECTION_ROOT, os.path.join(namespace_dir, COLLECTION_NAME))
    return base, True


COLLECTIONS_PATH, COLLECTIONS_PATH_IS_TEMPORARY = _collections_path()
if COLLECTIONS_PATH not in sys.path:
    sys.path.insert(0, COLLECTIONS_PATH)


def pytest_unconfigure(config):
    if COLLECTIONS_PATH_IS_TEMPORARY:
        shutil.rmtree(COLLECTIONS_PATH, ignore_errors=True)


XEON_GOLD_6248R_ISA = [
    "sse",
    "sse2",
    "ssse3",
    "sse4_1",
    "sse4_2",
    "avx",
    "avx2",
    "avx512f",
    "avx512dq",
    "avx512cd",
    "avx512bw",
    "avx512vl",
    "avx512_vnni",
]


@pytest.fixture
def fixture_path():
    def _fixture_path(name: str) -> str:
        return os.path.join(FIXTURES_DIR, name)

    return _fixture_path


@pytest.fixture
def write_file(tmp_path):
    "write `content` (str or bytes) to a file in tmp_path and return its path as a str"

    def _write_file(content, name="cpuinfo") -> str:
        path = tmp_path / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf8")
        return str(path)

    return _write_file
