import shutil
from pathlib import Path

import pytest

from app.document_store import DocumentStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    target = tmp_path / "data"
    shutil.copytree(FIXTURES_DIR, target)
    return target


@pytest.fixture
def store(data_dir: Path) -> DocumentStore:
    return DocumentStore.load(data_dir)
