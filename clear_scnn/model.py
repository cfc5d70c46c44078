# clear_scnn/model.py

"""
Model: owns an ordered chain of layers and drives propagation through it.

    model = Model(0.01, [InputLayer(28, 28, 1), ConvLayer(5, 8), PoolLayer(2),
                         FlattenLayer(), DenseLayer(10)])
    model.train(inputs, targets, batch_size=16)
    model.test(inputs, targets)   # {"test_samples": ..., "correct_count": ...}

Models containing a RecurrentLayer run in RNN mode: each example is a series
of timestep inputs and only the output after the final step is compared with
the target (many-to-one).
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from clear_scnn.exceptions import DimensionMismatchError, ModeError, StructuralLinkError
from clear_scnn.layers import (DenseLayer, InputLayer, Layer, RecurrentLayer,
                               describe_layer, deserialize_layer)

# --- Error Functions ---

ErrorGradientType = Callable[[Sequence[float], Sequence[float]], List[float]]


def _as_output_and_target(output, target):
    output = np.asarray(output, dtype=float).reshape(-1)
    target = np.asarray(target, dtype=float).reshape(-1)
    if output.shape != target.shape:
        raise DimensionMismatchError(
            f"Output length {output.size} must match target length {target.size}"
        )
    return output, target


def mse_grad(output: Sequence[float], target: Sequence[float]) -> List[float]:
    """
    Gradient of the squared error 1/2 * Σ(output_i - target_i)^2 w.r.t. the output.

    Returns:
        output - target, as a list.
    """
    output, target = _as_output_and_target(output, target)
    return (output - target).tolist()


def mse_loss(output: Sequence[float], target: Sequence[float]) -> float:
    """Mean squared error between an output and its target."""
    output, target = _as_output_and_target(output, target)
    if output.size == 0:
        return 0.0
    return float(np.mean((output - target) ** 2))


# Dictionary mapping error function names to their output gradients
ERROR_FUNCTIONS: Dict[str, ErrorGradientType] = {
    "MSE": mse_grad,
}
DEFAULT_ERROR_FUNCTION = "MSE"


def is_top_k_match(output: Sequence[float], target: Sequence[float]) -> bool:
    """
    Checks a prediction against a multi-hot target.

    With k the number of 1s in target, the prediction is correct when the
    indices of the k largest outputs are exactly the indices where target is 1.
    Ties are broken by the lower index. A target without any 1 always matches.
    """
    output, target = _as_output_and_target(output, target)
    expected = np.flatnonzero(target == 1)
    k = expected.size
    if k == 0:
        return True
    top_k = np.argsort(-output, kind='stable')[:k]
    return set(top_k.tolist()) == set(expected.tolist())


class Model:
    """
    A linear chain of layers with a learning rate and an error function.

    Attributes:
        a (float): Learning rate applied by update_parameters.
        layers (List[Layer]): The chain, input layer first, output layer last.
        is_rnn (bool): True when any layer is a RecurrentLayer.
        output (list): Output of the most recent forward pass.
    """

    def __init__(self, a: float, layers: List[Layer], err_func: Optional[str] = DEFAULT_ERROR_FUNCTION):
        """
        Validates and links the layers.

        Args:
            a: Learning rate.
            layers: At least two layers; an InputLayer first (and nowhere
                else) and a DenseLayer or RecurrentLayer last.
            err_func: Name of the error function. None selects the default.

        Raises:
            StructuralLinkError: If the chain cannot be propagated through.
            ValueError: If err_func is not a known error function.
        """
        if err_func is None:
            err_func = DEFAULT_ERROR_FUNCTION
        if err_func not in ERROR_FUNCTIONS:
            raise ValueError(f"Unsupported err_func '{err_func}'. "
                             f"Valid options: {list(ERROR_FUNCTIONS.keys())}")

        layers = list(layers)
        if len(layers) < 2:
            raise StructuralLinkError("Model must have at least an input and an output layer")
        if not isinstance(layers[0], InputLayer):
            raise StructuralLinkError(f"First layer must be an InputLayer, got {type(layers[0]).__name__}")
        if any(isinstance(layer, InputLayer) for layer in layers[1:]):
            raise StructuralLinkError("Only the first layer may be an InputLayer")
        if not isinstance(layers[-1], DenseLayer):
            raise StructuralLinkError(
                f"Last layer must be a DenseLayer or RecurrentLayer, got {type(layers[-1]).__name__}"
            )

        self.a = a
        self.err_func = err_func
        self.error_gradient = ERROR_FUNCTIONS[err_func]
        self.layers = layers
        self.output = None

        for i, layer in enumerate(layers):
            prev_layer = layers[i - 1] if i > 0 else None
            next_layer = layers[i + 1] if i < len(layers) - 1 else None
            layer.link(prev_layer, next_layer)

        self.is_rnn = any(isinstance(layer, RecurrentLayer) for layer in layers)

        logging.info(f"Created model with {len(layers)} layers: {[type(l).__name__ for l in layers]}")
        logging.info(f"Learning rate: {a}, error function: {err_func}, RNN mode: {self.is_rnn}")

    # --- Propagation ---

    def for_prop(self, input_data) -> List[float]:
        """
        Runs one forward pass.

        Args:
            input_data: Whatever the InputLayer accepts (flat values, or one
                flat sequence per channel).

        Returns:
            The output of the last layer as a list (also kept in self.output).
        """
        self.layers[0].for_prop(input_data)
        for i, layer in enumerate(self.layers[1:], start=1):
            layer.for_prop()
            logging.debug(f"Forward pass - Layer {i} ({type(layer).__name__}) done")
        self.output = list(self.layers[-1].O)
        return self.output

    def _propagate_error(self, target) -> list:
        error = self.error_gradient(self.output, target)
        logging.debug(f"Back-propagating - target: {list(target)}, output: {self.output}")

        dPs = [None] * len(self.layers)
        last = len(self.layers) - 1
        for i in reversed(range(len(self.layers))):
            layer = self.layers[i]
            dPs[i] = layer.back_prop(error if i == last else None)
        return dPs

    def back_prop(self, input_data, target) -> list:
        """
        Runs a forward pass followed by a backward pass.

        Returns:
            One parameter gradient per layer, in layer order (None for layers
            without parameters). Nothing is applied to the parameters.
        """
        self.for_prop(input_data)
        return self._propagate_error(target)

    def _require_rnn(self, operation: str):
        if not self.is_rnn:
            raise ModeError(f"{operation} requires a model with a RecurrentLayer")

    def reset_memory(self):
        """Clears the timestep history of every RecurrentLayer."""
        self._require_rnn("reset_memory")
        for layer in self.layers:
            if isinstance(layer, RecurrentLayer):
                layer.reset_memory()

    def for_prop_series(self, inputs) -> List[float]:
        """Feeds a series of timestep inputs from a fresh memory and returns the final output."""
        self._require_rnn("for_prop_series")
        self.reset_memory()
        for input_data in inputs:
            self.for_prop(input_data)
        return self.output

    def back_prop_series(self, inputs, target) -> list:
        """Like back_prop, with the error taken from the output after the last timestep."""
        self._require_rnn("back_prop_series")
        self.for_prop_series(inputs)
        return self._propagate_error(target)

    # --- Training ---

    def update_parameters(self):
        """Applies the accumulated gradients of every layer with learning rate a."""
        for layer in self.layers:
            layer.update_parameters(self.a)

    def train(self, inputs, targets, batch_size: int) -> float:
        """
        One pass over a training set with mini-batch gradient descent.

        Gradients of every example are accumulated; the parameters are updated
        once per batch_size examples and once more for a shorter final batch.

        Args:
            inputs: Training inputs (timestep series in RNN mode).
            targets: One target per input.
            batch_size: Number of examples per parameter update.

        Returns:
            Mean of the per-example MSE observed during the pass.
        """
        if len(inputs) != len(targets):
            raise DimensionMismatchError(
                f"Number of inputs ({len(inputs)}) must match number of targets ({len(targets)})"
            )
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if len(inputs) == 0:
            logging.warning("train called with no examples. Nothing to do.")
            return 0.0

        total_loss = 0.0
        num_batches = 0
        for i, (input_data, target) in enumerate(zip(inputs, targets)):
            if self.is_rnn:
                dPs = self.back_prop_series(input_data, target)
            else:
                dPs = self.back_prop(input_data, target)
            total_loss += mse_loss(self.output, target)

            for layer, dP in zip(self.layers, dPs):
                if dP is not None:
                    layer.add_dp(dP)

            if (i + 1) % batch_size == 0 or i == len(inputs) - 1:
                self.update_parameters()
                num_batches += 1
                logging.debug(f"Batch {num_batches} done ({i + 1}/{len(inputs)} examples)")

        mean_loss = total_loss / len(inputs)
        logging.info(f"Trained on {len(inputs)} examples in {num_batches} batches - mean MSE: {mean_loss:.6f}")
        return mean_loss

    def test(self, inputs, targets) -> Dict[str, int]:
        """
        Counts correct top-k predictions.

        Returns:
            {"test_samples": number of examples, "correct_count": number correct}
        """
        if len(inputs) != len(targets):
            raise DimensionMismatchError(
                f"Number of inputs ({len(inputs)}) must match number of targets ({len(targets)})"
            )

        correct_count = 0
        for input_data, target in zip(inputs, targets):
            if self.is_rnn:
                output = self.for_prop_series(input_data)
            else:
                output = self.for_prop(input_data)
            if not np.any(np.asarray(target) == 1):
                logging.warning("Test target has no 1; the example is counted as correct")
            if is_top_k_match(output, target):
                correct_count += 1

        logging.info(f"Test: {correct_count}/{len(inputs)} correct")
        return {"test_samples": len(inputs), "correct_count": correct_count}

    # --- Serialization ---

    def serialize(self) -> str:
        """Text form: '<learning rate>|<layer 0>/<layer 1>/...'."""
        return f"{self.a}|" + "/".join(layer.serialize() for layer in self.layers)

    @classmethod
    def deserialize(cls, text: str) -> 'Model':
        """
        Rebuilds a Model from serialize() output. Stored parameters are kept.

        Raises:
            ValueError: If the text is malformed or names an unknown layer type.
        """
        a, layer_strings = cls._split(text)
        layers = [deserialize_layer(ser) for ser in layer_strings]
        model = cls(a, layers)
        logging.info(f"Deserialized model with {len(layers)} layers")
        return model

    @staticmethod
    def _split(text: str):
        parts = text.split("|", 1)
        if len(parts) != 2 or not parts[1]:
            raise ValueError("Serialized model must look like '<learning rate>|<layer>/<layer>/...'")
        try:
            a = float(parts[0])
        except ValueError:
            raise ValueError(f"Invalid learning rate in serialized model: {parts[0]!r}") from None
        return a, parts[1].split("/")

    @staticmethod
    def describe(text: str) -> str:
        """Human readable structure of a serialized model."""
        a, layer_strings = Model._split(text)
        lines = ["===== Model structure =====", f"learning rate: {a}"]
        for i, ser in enumerate(layer_strings):
            lines.append(f"  Layer {i}: {describe_layer(ser)}")
        lines.append("===========================")
        return "\n".join(lines)

    def structure_description(self) -> str:
        """Banner listing every layer of this model, one line each."""
        return Model.describe(self.serialize())
