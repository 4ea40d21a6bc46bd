"""Token estimation."""

from parley.tokens.estimator import TokenEstimator

__all__ = ["TokenEstimator"]
