from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import math
from typing import Any

import numpy as np

from errors import (
    ArrayLengthMismatchError,
    FileUnavailableError,
    GroupMismatchError,
    InvalidModelError,
    MalformedFieldError,
    MissingFieldError,
)
from margin_transforms import transform_base_score, transformation_for_objective
from tree_model import LEAF, Model, Node, Predictor, Tree
from tree_validator import validate_tree

logger = logging.getLogger(__name__)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

TREE_ARRAYS = (
    "default_left",
    "left_children",
    "right_children",
    "split_indices",
    "split_conditions",
)


@dataclass
class ModelLoaderParams:
    encoding: str = "utf-8"
    allow_group_gaps: bool = True  # missing group ids become empty groups
    apply_weight_drop: bool = True  # scale DART trees by their weight_drop

    def __post_init__(self) -> None:
        if not self.encoding:
            raise ValueError("encoding must be a non-empty codec name")
        try:
            "".encode(self.encoding)
        except LookupError as exc:
            raise ValueError(f"unknown encoding: {self.encoding}") from exc


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return INT64_MIN <= value <= INT64_MAX
    return isinstance(value, float)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _get_member(value: dict, key: str, path: str, expected: str) -> Any:
    if key not in value:
        raise MissingFieldError(_join(path, key), expected)
    return value[key]


def _get_object(value: dict, key: str, path: str) -> dict:
    member = _get_member(value, key, path, "object")
    if not isinstance(member, dict):
        raise MalformedFieldError(_join(path, key), "json member is not an object")
    return member


def _get_array(value: dict, key: str, path: str) -> list:
    member = _get_member(value, key, path, "array")
    if not isinstance(member, list):
        raise MalformedFieldError(_join(path, key), "json member is not an array")
    return member


def _get_string(value: dict, key: str, path: str) -> str:
    member = _get_member(value, key, path, "string")
    if not isinstance(member, str):
        raise MalformedFieldError(_join(path, key), "json member is not a string")
    return member


def _get_bool_array(value: dict, key: str, path: str) -> list[bool]:
    result = []
    for item in _get_array(value, key, path):
        # 0/1 integers appear in models converted from UBJSON.
        if isinstance(item, bool):
            result.append(item)
        elif _is_int(item) and item in (0, 1):
            result.append(bool(item))
        else:
            raise MalformedFieldError(_join(path, key), "json array member is not bool")
    return result


def _get_int_array(value: dict, key: str, path: str) -> list[int]:
    items = _get_array(value, key, path)
    for item in items:
        if not _is_int(item) or not INT32_MIN <= item <= INT32_MAX:
            raise MalformedFieldError(_join(path, key), "json array member is not int")
    return items


def _get_float_array(value: dict, key: str, path: str) -> list[np.float32]:
    items = _get_array(value, key, path)
    for item in items:
        if not _is_number(item):
            raise MalformedFieldError(_join(path, key), "json array member is not double/int")
    return [np.float32(item) for item in items]


def _parse_number(text: Any, path: str) -> float:
    """Parse a finite number stored as a string, e.g. "5E-1" or "[5E-1]"."""
    if _is_number(text):
        value = float(text)
    elif not isinstance(text, str):
        raise MalformedFieldError(path, "json member is not a string")
    else:
        stripped = text.strip()
        if stripped.startswith("[") and stripped.endswith("]"):
            parts = [part for part in stripped[1:-1].split(",") if part.strip()]
            if len(parts) != 1:
                raise MalformedFieldError(path, f"expected a single value, got {text!r}")
            stripped = parts[0].strip()

        # float() also takes digit separators, which no model writer emits.
        if "_" in stripped:
            raise MalformedFieldError(path, f"not a number: {text!r}")
        try:
            value = float(stripped)
        except ValueError as exc:
            raise MalformedFieldError(path, f"not a number: {text!r}") from exc

    if not math.isfinite(value):
        raise MalformedFieldError(path, f"not a finite number: {text!r}")
    return value


def _build_tree(json_tree: Any, path: str, weight: np.float32 | None = None) -> Tree:
    if not isinstance(json_tree, dict):
        raise MalformedFieldError(path, "tree is not an object")

    default_left = _get_bool_array(json_tree, "default_left", path)
    left_children = _get_int_array(json_tree, "left_children", path)
    right_children = _get_int_array(json_tree, "right_children", path)
    split_indices = _get_int_array(json_tree, "split_indices", path)
    split_conditions = _get_float_array(json_tree, "split_conditions", path)

    sizes = {
        name: len(array)
        for name, array in zip(
            TREE_ARRAYS,
            (default_left, left_children, right_children, split_indices, split_conditions),
        )
    }
    if len(set(sizes.values())) != 1:
        raise ArrayLengthMismatchError(f"{path}: json array sizes do not match: {sizes}")

    nodes = []
    for i in range(len(default_left)):
        is_leaf = left_children[i] < 0
        value = split_conditions[i]
        if is_leaf and weight is not None:
            value = np.float32(value * weight)
        nodes.append(
            Node(
                value=value,
                feature=LEAF if is_leaf else split_indices[i],
                yes=left_children[i],
                no=right_children[i],
                missing=left_children[i] if default_left[i] else right_children[i],
            )
        )

    tree = Tree(nodes=tuple(nodes))
    validate_tree(tree)
    return tree


def _find_tree_model(gradient_booster: dict, path: str) -> tuple[dict, str, list | None]:
    if "model" not in gradient_booster and "gbtree" in gradient_booster:
        # DART keeps a regular gbtree model plus per-tree drop weights.
        gbtree = _get_object(gradient_booster, "gbtree", path)
        weight_drop = None
        if "weight_drop" in gradient_booster:
            weight_drop = _get_float_array(gradient_booster, "weight_drop", path)
        return _get_object(gbtree, "model", f"{path}.gbtree"), f"{path}.gbtree.model", weight_drop

    return _get_object(gradient_booster, "model", path), f"{path}.model", None


def _group_trees(
    trees: list[Tree], tree_info: list[int], params: ModelLoaderParams
) -> tuple[Predictor, ...]:
    if len(tree_info) != len(trees):
        raise GroupMismatchError(
            f"unexpected tree_info size: {len(tree_info)}, trees: {len(trees)}"
        )

    groups: list[list[Tree]] = []
    for tree, group in zip(trees, tree_info):
        if group < 0:
            raise GroupMismatchError(f"unexpected tree_info group: {group}")
        if len(groups) < group + 1:
            groups.extend([] for _ in range(group + 1 - len(groups)))
        groups[group].append(tree)

    empty = [group for group, members in enumerate(groups) if not members]
    if empty:
        if not params.allow_group_gaps:
            raise GroupMismatchError(f"tree_info leaves groups without trees: {empty}")
        logger.warning("Output groups %s have no trees and will score base_score only", empty)

    return tuple(Predictor(trees=tuple(members)) for members in groups)


def _read_metadata(learner: dict) -> tuple[int, tuple[str, ...]]:
    num_feature = 0
    model_param = learner.get("learner_model_param", {})
    if isinstance(model_param, dict) and "num_feature" in model_param:
        path = "learner.learner_model_param.num_feature"
        parsed = _parse_number(model_param["num_feature"], path)
        if parsed < 0 or parsed != int(parsed):
            raise MalformedFieldError(path, f"not a feature count: {parsed}")
        num_feature = int(parsed)

    feature_names: tuple[str, ...] = ()
    if "feature_names" in learner:
        names = _get_array(learner, "feature_names", "learner")
        if not all(isinstance(name, str) for name in names):
            raise MalformedFieldError("learner.feature_names", "json array member is not string")
        feature_names = tuple(names)

    return num_feature, feature_names


def parse_model(document: Any, params: ModelLoaderParams | None = None) -> Model:
    """Build a validated Model from a decoded XGBoost JSON document."""
    params = params or ModelLoaderParams()
    if not isinstance(document, dict):
        raise InvalidModelError("invalid xgboost json model: top level is not an object")

    learner = _get_object(document, "learner", "")
    gradient_booster = _get_object(learner, "gradient_booster", "learner")
    model, model_path, weight_drop = _find_tree_model(
        gradient_booster, "learner.gradient_booster"
    )

    json_trees = _get_array(model, "trees", model_path)
    if weight_drop is not None and len(weight_drop) != len(json_trees):
        raise MalformedFieldError(
            "learner.gradient_booster.weight_drop",
            f"{len(weight_drop)} weights for {len(json_trees)} trees",
        )
    if not params.apply_weight_drop:
        weight_drop = None

    trees = [
        _build_tree(
            json_tree,
            f"{model_path}.trees[{i}]",
            weight_drop[i] if weight_drop is not None else None,
        )
        for i, json_tree in enumerate(json_trees)
    ]

    tree_info = _get_int_array(model, "tree_info", model_path)
    predictors = _group_trees(trees, tree_info, params)

    objective = _get_string(_get_object(learner, "objective", "learner"), "name", "learner.objective")
    model_param = _get_object(learner, "learner_model_param", "learner")
    raw_base_score = _parse_number(
        _get_string(model_param, "base_score", "learner.learner_model_param"),
        "learner.learner_model_param.base_score",
    )
    num_feature, feature_names = _read_metadata(learner)

    return Model(
        predictors=predictors,
        base_score=transform_base_score(objective, raw_base_score),
        transformation=transformation_for_objective(objective),
        objective=objective,
        num_feature=num_feature,
        feature_names=feature_names,
    )


def _reject_constant(name: str) -> None:
    raise ValueError(f"non-standard json constant: {name}")


def loads_model(text: str | bytes, params: ModelLoaderParams | None = None) -> Model:
    try:
        document = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise InvalidModelError(f"invalid xgboost json model: {exc}") from exc
    return parse_model(document, params)


def load_model(path: str, params: ModelLoaderParams | None = None) -> Model:
    """Load an XGBoost JSON model file.

    Raises:
        FileUnavailableError: the file cannot be opened or read.
        InvalidModelError: the content is not a well-formed, valid model.
    """
    params = params or ModelLoaderParams()
    try:
        with open(path, encoding=params.encoding) as f:
            text = f.read()
    except UnicodeDecodeError as exc:
        raise InvalidModelError(f"invalid xgboost json model: {exc}") from exc
    except OSError as exc:
        raise FileUnavailableError(f"cannot open model file {path}: {exc}") from exc

    model = loads_model(text, params)
    logger.debug(
        "Loaded %s: %d trees in %d groups, objective=%s, transformation=%s",
        path,
        model.num_trees,
        model.num_groups,
        model.objective,
        model.transformation.value,
    )
    return model
