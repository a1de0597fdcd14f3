import json
import sys
from pathlib import Path

import pytest

# Allow running the tests without installing the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from model_documents import TWO_STUMPS, leaf, model_document

DATA_DIR = Path(__file__).resolve().parent / "data"


@pytest.fixture
def regression_document():
    return model_document(TWO_STUMPS, objective="reg:squarederror")


@pytest.fixture
def binary_document():
    return model_document(TWO_STUMPS, objective="binary:logistic")


@pytest.fixture
def multiclass_document():
    return model_document(
        [leaf(1.0), leaf(2.0), leaf(3.0)],
        tree_info=[0, 1, 2],
        objective="multi:softprob",
    )


@pytest.fixture
def reference_model_path():
    return str(DATA_DIR / "binary.model.json")


@pytest.fixture
def write_model(tmp_path):
    def _write(document, name="model.json"):
        path = tmp_path / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return str(path)

    return _write
