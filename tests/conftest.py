"""Shared fixtures for the clear_scnn test suite."""

import numpy as np
import pytest

from clear_scnn import (ConvLayer, DenseLayer, FlattenLayer, InputLayer, Model, PoolLayer,
                        RecurrentLayer)


@pytest.fixture(autouse=True)
def seed_numpy():
    """Every test starts from the same random state."""
    np.random.seed(0)


@pytest.fixture
def cnn_model():
    """Two-channel 6x6 input through conv, pooling and a dense head of 3 classes."""
    return Model(0.01, [
        InputLayer(6, 6, 2),
        ConvLayer(3, 2),
        PoolLayer(2),
        FlattenLayer(),
        DenseLayer(3),
    ])


@pytest.fixture
def rnn_model():
    """Vector input of 4 through a dense layer into a recurrent output layer of 3 nodes."""
    return Model(0.01, [
        InputLayer(4),
        DenseLayer(5),
        RecurrentLayer(3),
    ])


def numerical_gradient(loss_fn, matrix, h=1e-4):
    """Central-difference gradient of loss_fn() w.r.t. every element of matrix (in place)."""
    grad = np.zeros_like(matrix.data)
    for c in range(matrix.col):
        for r in range(matrix.row):
            original = matrix.data[c, r]
            matrix.data[c, r] = original + h
            loss_plus = loss_fn()
            matrix.data[c, r] = original - h
            loss_minus = loss_fn()
            matrix.data[c, r] = original
            grad[c, r] = (loss_plus - loss_minus) / (2 * h)
    return grad


def relative_error(analytic, numeric):
    analytic = np.asarray(analytic, dtype=float)
    numeric = np.asarray(numeric, dtype=float)
    denominator = np.maximum(np.abs(analytic) + np.abs(numeric), 1e-8)
    return float(np.max(np.abs(analytic - numeric) / denominator))
