# clear_scnn/activations.py

"""
Scalar activation functions and their derivatives.

Every function takes and returns a single number; layers apply them to a
whole Matrix with ``Matrix.apply_by_element``.
"""

import numpy as np
from typing import Callable

# Slope of the leaky ReLU for negative inputs
LEAKY_SLOPE = 0.001


def relu(x: float) -> float:
    """Leaky ReLU.

    Mathematical form:
        f(x) = x          if x >= 0
        f(x) = 0.001 * x  if x < 0
    """
    return LEAKY_SLOPE * x if x < 0 else x


def relu_grad(x: float) -> float:
    """Leaky ReLU derivative. The kink at 0 takes the negative-side slope."""
    return LEAKY_SLOPE if x <= 0 else 1.0


def sigmoid(x: float) -> float:
    """Sigmoid: e^x / (e^x + 1)."""
    ex = np.exp(x)
    return ex / (ex + 1)


def sigmoid_grad(x: float) -> float:
    """Sigmoid derivative, computed from the sigmoid value: y * (1 - y)."""
    y = sigmoid(x)
    return y * (1 - y)


def tanh(x: float) -> float:
    return np.tanh(x)


def tanh_grad(x: float) -> float:
    """tanh derivative, computed from the tanh value: 1 - t^2."""
    t = tanh(x)
    return 1 - t * t


# Dictionary mapping activation functions to their derivatives
ACTIVATION_GRADIENTS = {
    relu: relu_grad,
    sigmoid: sigmoid_grad,
    tanh: tanh_grad,
}


def get_grad_func(activation: Callable[[float], float]) -> Callable[[float], float]:
    """Looks up the derivative of an activation function from this module.

    Args:
        activation: One of relu, sigmoid or tanh.

    Returns:
        The matching gradient function.

    Raises:
        ValueError: If the activation function is not recognized.
    """
    try:
        return ACTIVATION_GRADIENTS[activation]
    except (KeyError, TypeError):
        raise ValueError(
            f"Unknown activation function {activation!r}. "
            f"Available functions: {[f.__name__ for f in ACTIVATION_GRADIENTS]}"
        ) from None
