from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Sequence, Union

import numpy as np

LEAF = -1

# Feature vector: slot i holds feature i, None marks a missing value.
Data = Union[Sequence[Optional[float]], Mapping[int, float]]


class Transformation(Enum):
    NONE = "none"
    SIGMOID = "sigmoid"
    SOFTMAX = "softmax"


@dataclass(frozen=True)
class Node:
    value: np.float32  # split threshold, or leaf score when feature == LEAF
    feature: int = LEAF
    yes: int = 0  # value < threshold
    no: int = 0  # value >= threshold
    missing: int = 0

    @property
    def is_leaf(self) -> bool:
        return self.feature < 0


@dataclass(frozen=True)
class Tree:
    nodes: tuple[Node, ...]

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> Node:
        return self.nodes[index]


@dataclass(frozen=True)
class Predictor:
    """Trees of one output group; the group score is the sum of their leaves."""

    trees: tuple[Tree, ...] = ()

    def __len__(self) -> int:
        return len(self.trees)


@dataclass(frozen=True)
class Model:
    predictors: tuple[Predictor, ...]
    base_score: np.float32 = np.float32(0.0)
    transformation: Transformation = Transformation.NONE
    objective: str = ""
    num_feature: int = 0
    feature_names: tuple[str, ...] = field(default_factory=tuple)

    @property
    def num_groups(self) -> int:
        return len(self.predictors)

    @property
    def num_trees(self) -> int:
        return sum(len(predictor) for predictor in self.predictors)
