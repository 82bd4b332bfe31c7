import sys
from pathlib import Path

import pytest

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


@pytest.fixture
def store(tmp_path: Path):
    from tce.database import SQLiteIdentityStore

    return SQLiteIdentityStore(db_path=tmp_path / "tce.db")
