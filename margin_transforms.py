from __future__ import annotations

from typing import MutableSequence, Union

import numpy as np

from errors import InvalidBaseScoreError
from tree_model import Transformation

LOGISTIC_OBJECTIVES = frozenset({"reg:logistic", "binary:logistic", "binary:logitraw"})
LOG_LINK_OBJECTIVES = frozenset(
    {"reg:gamma", "reg:tweedie", "count:poisson", "survival:aft", "survival:cox"}
)
SIGMOID_OBJECTIVES = frozenset({"reg:logistic", "binary:logistic"})
SOFTMAX_OBJECTIVES = frozenset({"multi:softprob"})

Scores = Union[MutableSequence[float], np.ndarray]


def transform_base_score(objective: str, base_score: float) -> np.float32:
    """Map a declared base score into the margin space of the objective."""
    score = np.float32(base_score)
    one = np.float32(1.0)

    if objective in LOGISTIC_OBJECTIVES:
        if not 0.0 < score < 1.0:
            raise InvalidBaseScoreError(
                f"base_score must be in (0,1) for logistic loss, got: {float(score)}"
            )
        return np.float32(-np.log(one / score - one))

    if objective in LOG_LINK_OBJECTIVES:
        if not score > 0.0:
            raise InvalidBaseScoreError(
                f"base_score must be positive for objective {objective}, got: {float(score)}"
            )
        return np.float32(np.log(score))

    return score


def transformation_for_objective(objective: str) -> Transformation:
    if objective in SOFTMAX_OBJECTIVES:
        return Transformation.SOFTMAX
    if objective in SIGMOID_OBJECTIVES:
        return Transformation.SIGMOID
    return Transformation.NONE


def _store(scores: Scores, values: np.ndarray) -> None:
    if isinstance(scores, np.ndarray):
        scores[...] = values
    else:
        scores[:] = values.tolist()


def transform_sigmoid(scores: Scores) -> None:
    values = np.asarray(scores, dtype=np.float32)
    # exp overflows to inf for very negative margins, which still yields 0.
    with np.errstate(over="ignore"):
        values = np.float32(1.0) / (np.float32(1.0) + np.exp(-values))
    _store(scores, values)


def transform_softmax(scores: Scores) -> None:
    values = np.asarray(scores, dtype=np.float32)
    peak = np.max(values, initial=np.finfo(np.float32).min)
    exps = np.exp(values - peak)
    total = np.sum(exps, dtype=np.float64)
    _store(scores, (exps.astype(np.float64) / total).astype(np.float32))


def transform(scores: Scores, kind: Transformation) -> None:
    """Apply the output transformation to a vector of raw margins in place.

    The vector may hold per-class margins of one instance or per-instance
    margins of a single-group batch; the caller decides which.
    """
    if len(scores) == 0:
        return

    if kind is Transformation.SIGMOID:
        transform_sigmoid(scores)
    elif kind is Transformation.SOFTMAX:
        transform_softmax(scores)
