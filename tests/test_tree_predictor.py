from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from errors import FileUnavailableError, IncompatibleModelSizeError
from margin_transforms import transform
from model_documents import model_document, tree_json
from model_loader import parse_model
from tree_model import LEAF, Node, Transformation, Tree
from tree_predictor import XGBoostPredictor, eval_tree, predict, predict_batch


def _sigmoid(x):
    x = np.float32(x)
    return np.float32(1.0) / (np.float32(1.0) + np.exp(-x))


def _stump_tree(missing):
    return Tree(nodes=(
        Node(value=np.float32(1.0), feature=2, yes=1, no=2, missing=missing),
        Node(value=np.float32(10.0), feature=LEAF),
        Node(value=np.float32(20.0), feature=LEAF),
    ))


def test_eval_tree_branches_on_strict_less_than():
    tree = _stump_tree(missing=1)
    assert eval_tree([None, None, np.float32(0.5)], tree) == 10.0
    assert eval_tree([None, None, np.float32(1.0)], tree) == 20.0
    assert eval_tree([None, None, np.float32(7.0)], tree) == 20.0


def test_missing_and_out_of_range_features_follow_missing_branch():
    for missing in (1, 2):
        tree = _stump_tree(missing=missing)
        expected = tree[missing].value
        assert eval_tree([np.float32(0.0), np.float32(0.0), None], tree) == expected
        assert eval_tree([np.float32(0.0)], tree) == expected
        assert eval_tree([], tree) == expected


def test_nan_is_not_treated_as_missing():
    tree = _stump_tree(missing=1)
    assert eval_tree([None, None, np.float32("nan")], tree) == 20.0


def test_regression_margins(regression_document):
    model = parse_model(regression_document)

    # 0.25 + 0.0625 + 0.5
    np.testing.assert_array_equal(predict(model, [0.5, None, 0.75]), np.float32([0.8125]))
    # -0.5 + 0.0625 (f2 out of range -> no) + 0.5
    np.testing.assert_array_equal(predict(model, [2.0]), np.float32([0.0625]))
    # 0.25 (missing -> yes) + 0.125 + 0.5
    np.testing.assert_array_equal(predict(model, {2: 0.1}), np.float32([0.875]))


def test_regression_output_is_untransformed(regression_document):
    model = parse_model(regression_document)
    data = [0.5, None, 0.75]
    np.testing.assert_array_equal(
        predict(model, data, output_margin=False), predict(model, data, output_margin=True)
    )


def test_predict_returns_float32_per_group(multiclass_document):
    model = parse_model(multiclass_document)
    prediction = predict(model, [])

    assert prediction.dtype == np.float32
    assert prediction.shape == (3,)


def test_multiclass_softmax_across_groups(multiclass_document):
    model = parse_model(multiclass_document)

    margins = predict(model, [], output_margin=True)
    np.testing.assert_array_equal(margins, np.float32([1.5, 2.5, 3.5]))

    probabilities = predict(model, [])
    expected = margins.copy()
    transform(expected, model.transformation)
    np.testing.assert_array_equal(probabilities, expected)
    assert np.isclose(np.sum(probabilities, dtype=np.float64), 1.0, atol=1e-6)
    exps = np.exp(np.float64([0.0, 1.0, 2.0]))
    np.testing.assert_allclose(probabilities, exps / exps.sum(), rtol=1e-6)


def test_binary_margin_and_probability_differ_by_sigmoid(binary_document):
    model = parse_model(binary_document)
    data = [0.5, None, 0.75]

    margin = predict(model, data, output_margin=True)
    probability = predict(model, data)

    np.testing.assert_array_equal(margin, np.float32([0.3125]))
    expected = margin.copy()
    transform(expected, model.transformation)
    np.testing.assert_array_equal(probability, expected)
    assert np.isclose(probability[0], _sigmoid(margin[0]), rtol=1e-6, atol=0.0)


def test_batch_predict_scores_each_instance(regression_document):
    model = parse_model(regression_document)
    scores = predict_batch(model, [[0.5, None, 0.75], [2.0], []])

    np.testing.assert_array_equal(scores, np.float32([0.8125, 0.0625, 0.8125]))


def test_batch_predict_applies_sigmoid_per_instance(binary_document):
    model = parse_model(binary_document)
    batch = [[0.5, None, 0.75], [2.0]]

    margins = predict_batch(model, batch, output_margin=True)
    scores = predict_batch(model, batch)

    expected = margins.copy()
    transform(expected, model.transformation)
    np.testing.assert_array_equal(scores, expected)

    for margin, score in zip(margins, scores):
        assert np.isclose(score, _sigmoid(margin), rtol=1e-6, atol=0.0)


def test_batch_predict_empty_batch(binary_document):
    scores = predict_batch(parse_model(binary_document), [])
    assert scores.shape == (0,)


def test_batch_predict_rejects_multi_group_models(multiclass_document):
    model = parse_model(multiclass_document)
    with pytest.raises(IncompatibleModelSizeError):
        predict_batch(model, [[1.0]])
    with pytest.raises(IncompatibleModelSizeError):
        predict_batch(model, [])


def test_empty_groups_score_base_score_only():
    model = parse_model(model_document(
        [tree_json([-1], [-1], [0], [1.0], [False])] * 2,
        tree_info=[0, 2],
        objective="multi:softprob",
    ))
    np.testing.assert_array_equal(
        predict(model, [], output_margin=True), np.float32([1.5, 0.5, 1.5])
    )


def test_sparse_mapping_matches_dense_vector(regression_document):
    model = parse_model(regression_document)
    np.testing.assert_array_equal(
        predict(model, {0: 0.5, 2: 0.75}), predict(model, [0.5, None, 0.75])
    )
    with pytest.raises(ValueError):
        predict(model, {-1: 0.5})


def test_reference_model_margins(reference_model_path):
    predictor = XGBoostPredictor.load(reference_model_path)

    assert predictor.transformation is Transformation.SIGMOID
    assert predictor.num_groups == 1
    assert predictor.base_score == 0.0

    # 0.125 + 0.625 - 0.1875
    np.testing.assert_array_equal(
        predictor.predict([-1.0, 3.0, None, 12.0], output_margin=True), np.float32([0.5625])
    )
    # everything missing: 0.125 + 0.625 + 0.0625
    np.testing.assert_array_equal(predictor.predict([], output_margin=True), np.float32([0.8125]))
    # 0.375 - 0.125 + 0.0625
    np.testing.assert_array_equal(
        predictor.predict([1.0, 0.0, None, 5.0], output_margin=True), np.float32([0.3125])
    )


def test_reference_model_probabilities(reference_model_path):
    predictor = XGBoostPredictor.load(reference_model_path)
    batch = [[-1.0, 3.0, None, 12.0], [1.0, 0.0, None, 5.0]]

    scores = predictor.predict_batch(batch)
    assert np.isclose(scores[0], _sigmoid(0.5625), rtol=1e-6, atol=0.0)
    assert np.isclose(scores[1], _sigmoid(0.3125), rtol=1e-6, atol=0.0)
    np.testing.assert_allclose(scores, [0.6370308, 0.5774954], rtol=1e-6)

    single = predictor.predict(batch[0])
    assert np.isclose(single[0], scores[0], rtol=1e-7, atol=0.0)

    margins = predictor.predict_batch(batch, output_margin=True)
    transform(margins, predictor.transformation)
    np.testing.assert_array_equal(scores, margins)


def test_make_data_orders_named_features(reference_model_path):
    predictor = XGBoostPredictor.load(reference_model_path)

    data = predictor.make_data({"weight": 12.0, "age": -1.0, "dose": 3.0})
    assert data == [-1.0, 3.0, None, 12.0]
    np.testing.assert_array_equal(predictor.predict(data, output_margin=True), np.float32([0.5625]))

    with pytest.raises(ValueError, match="unknown feature"):
        predictor.make_data({"height": 1.0})


def test_make_data_requires_feature_names(regression_document):
    predictor = XGBoostPredictor.from_dict(regression_document)
    with pytest.raises(ValueError):
        predictor.make_data({"age": 1.0})


def test_load_missing_file_fails():
    with pytest.raises(FileUnavailableError):
        XGBoostPredictor.load("foo.bar")


def test_concurrent_predictions_agree(reference_model_path):
    predictor = XGBoostPredictor.load(reference_model_path)
    rng = np.random.default_rng(13)
    rows = [
        [None if rng.random() < 0.2 else float(v) for v in rng.normal(scale=5.0, size=4)]
        for _ in range(200)
    ]

    expected = [predictor.predict(row) for row in rows]
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(predictor.predict, rows))

    for got, want in zip(results, expected):
        np.testing.assert_array_equal(got, want)
