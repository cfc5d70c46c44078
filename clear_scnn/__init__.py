# clear_scnn/__init__.py

"""clear_scnn - a small, readable neural network engine (CNN / ANN / RNN)."""

from clear_scnn.activations import relu, relu_grad, sigmoid, sigmoid_grad, tanh, tanh_grad, get_grad_func
from clear_scnn.exceptions import (DimensionMismatchError, MissingGradientError, ModeError,
                                   ScnnError, StructuralLinkError)
from clear_scnn.layers import (ConvLayer, DenseLayer, FlattenLayer, InputLayer, Layer, LayerKind,
                               PoolLayer, RecurrentLayer, TimeStep)
from clear_scnn.matrix import Matrix
from clear_scnn.model import Model, is_top_k_match, mse_loss

__version__ = "0.1.0"
