"""
XGBoost JSON Predictor

Loads gradient-boosted tree models saved by XGBoost in its JSON format and
evaluates them on feature vectors without importing XGBoost itself.

Trees are validated at load time and kept in an immutable Model, so one
loaded model can serve predictions from many threads.
"""
