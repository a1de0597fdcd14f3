from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Optional

import numpy as np

from errors import IncompatibleModelSizeError
from margin_transforms import transform
from model_loader import ModelLoaderParams, load_model, parse_model
from tree_model import Data, Model, Predictor, Transformation, Tree


def _as_values(data: Data) -> list[Optional[np.float32]]:
    if isinstance(data, Mapping):
        if not data:
            return []
        if any(index < 0 for index in data):
            raise ValueError("feature indices must be non-negative")
        values: list[Optional[np.float32]] = [None] * (max(data) + 1)
        for index, value in data.items():
            values[index] = None if value is None else np.float32(value)
        return values

    return [None if value is None else np.float32(value) for value in data]


def eval_tree(values: Sequence[Optional[np.float32]], tree: Tree) -> np.float32:
    """Walk one tree and return the leaf value reached by `values`.

    A feature beyond the end of `values` or set to None follows the node's
    missing branch. The walk is unbounded; trees must be validated first.
    """
    size = len(values)
    index = 0

    while True:
        node = tree[index]
        if node.is_leaf:
            return node.value

        if node.feature < size and values[node.feature] is not None:
            index = node.yes if values[node.feature] < node.value else node.no
        else:
            index = node.missing


def predict_group(
    values: Sequence[Optional[np.float32]], predictor: Predictor, base_score: np.float32
) -> np.float32:
    prediction = np.float32(0.0)
    for tree in predictor.trees:
        prediction += eval_tree(values, tree)
    return np.float32(prediction + base_score)


def predict(model: Model, data: Data, output_margin: bool = False) -> np.ndarray:
    """One score per output group, transformed unless `output_margin` is set."""
    values = _as_values(data)
    predictions = np.array(
        [predict_group(values, predictor, model.base_score) for predictor in model.predictors],
        dtype=np.float32,
    )
    if not output_margin:
        transform(predictions, model.transformation)
    return predictions


def predict_batch(
    model: Model, data_list: Sequence[Data], output_margin: bool = False
) -> np.ndarray:
    """One score per instance for a single-group model.

    The model's transformation runs across the whole batch, which makes
    SIGMOID per-instance and SOFTMAX a distribution over the instances.
    """
    if model.num_groups != 1:
        raise IncompatibleModelSizeError(
            f"xgboost predict incompatible model size: {model.num_groups}"
        )

    predictor = model.predictors[0]
    scores = np.array(
        [predict_group(_as_values(data), predictor, model.base_score) for data in data_list],
        dtype=np.float32,
    )
    if not output_margin:
        transform(scores, model.transformation)
    return scores


class XGBoostPredictor:
    """Read-only predictor over a loaded XGBoost JSON model.

    The wrapped Model is immutable, so one instance can serve concurrent
    callers without locking.
    """

    def __init__(self, model: Model) -> None:
        self._model = model
        self._feature_index = {name: i for i, name in enumerate(model.feature_names)}

    @classmethod
    def load(cls, path: str, params: ModelLoaderParams | None = None) -> XGBoostPredictor:
        return cls(load_model(path, params))

    @classmethod
    def from_dict(
        cls, document: Mapping[str, Any], params: ModelLoaderParams | None = None
    ) -> XGBoostPredictor:
        return cls(parse_model(document, params))

    @property
    def model(self) -> Model:
        return self._model

    @property
    def num_groups(self) -> int:
        return self._model.num_groups

    @property
    def transformation(self) -> Transformation:
        return self._model.transformation

    @property
    def base_score(self) -> np.float32:
        return self._model.base_score

    def make_data(self, features: Mapping[str, float]) -> list[Optional[float]]:
        """Order named features into a feature vector; unset names are missing."""
        if not self._feature_index:
            raise ValueError("model has no feature_names to map named features")

        values: list[Optional[float]] = [None] * len(self._feature_index)
        for name, value in features.items():
            if name not in self._feature_index:
                raise ValueError(f"unknown feature name: {name}")
            values[self._feature_index[name]] = value
        return values

    def predict(self, data: Data, output_margin: bool = False) -> np.ndarray:
        return predict(self._model, data, output_margin)

    def predict_batch(self, data_list: Sequence[Data], output_margin: bool = False) -> np.ndarray:
        return predict_batch(self._model, data_list, output_margin)
