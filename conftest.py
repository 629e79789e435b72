import os

import pytest

from lending.library import Library


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file, max_active_loans=3, penalize_late_returns=True)
    yield lib
    lib.close()
    if os.path.exists(db_file):
        os.remove(db_file)
