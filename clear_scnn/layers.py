# clear_scnn/layers.py

"""
Layer building blocks of the engine.

Six layer kinds are chained by a Model:
   - InputLayer: turns caller data into a vector or a list of value maps
   - ConvLayer: valid 2-D correlation of every input map with a kernel grid
   - PoolLayer: non-overlapping average pooling
   - FlattenLayer: value maps -> one column vector
   - DenseLayer: fully connected layer
   - RecurrentLayer: fully connected layer fed back its own previous output,
     trained with backpropagation through time

Every layer follows the same protocol:
   link(prev_layer, next_layer)  establishes shapes (and parameters, once)
   for_prop()                    pulls prev_layer.O, caches I/O and returns O
   back_prop(network_error)      pulls next_layer.dEdI, sets self.dEdI and
                                 returns the parameter gradient (or None)
   add_dp(dP) / update_parameters(a)   batch accumulation and descent step

Value maps are Matrix instances with one column per unit of width and one row
per unit of height. Vectors are single-column matrices.
"""

import json
import logging
import re
import weakref
from enum import Enum
from typing import List, NamedTuple, Optional

import numpy as np

from clear_scnn.activations import relu, get_grad_func
from clear_scnn.exceptions import DimensionMismatchError, MissingGradientError, StructuralLinkError
from clear_scnn.matrix import Matrix


class LayerKind(Enum):
    """The closed set of layer kinds. Values are the serialization tags."""
    INPUT = "InLayer"
    CONV = "CLayer"
    POOL = "ALayer"
    FLATTEN = "FLayer"
    DENSE = "NLayer"
    RECURRENT = "RLayer"


MAP_CONSUMERS = (LayerKind.CONV, LayerKind.POOL, LayerKind.FLATTEN)
VECTOR_CONSUMERS = (LayerKind.DENSE, LayerKind.RECURRENT)


def produces_maps(layer: 'Layer') -> bool:
    """Whether a layer outputs a list of value maps rather than a vector."""
    if layer.kind is LayerKind.INPUT:
        return layer.num_maps > 0
    return layer.kind in (LayerKind.CONV, LayerKind.POOL)


def check_link(prev_layer: Optional['Layer'], layer: 'Layer', next_layer: Optional['Layer']):
    """
    Validates the neighbours of a layer.

    Raises:
        StructuralLinkError: If the (predecessor, layer, successor) kinds cannot
            be propagated through.
    """
    name = type(layer).__name__
    if layer.kind is LayerKind.INPUT:
        if prev_layer is not None:
            raise StructuralLinkError("InputLayer must be the first layer of a model")
        return

    if prev_layer is None:
        raise StructuralLinkError(f"{name} must be linked after another layer")
    prev_name = type(prev_layer).__name__

    if layer.kind in MAP_CONSUMERS and not produces_maps(prev_layer):
        raise StructuralLinkError(
            f"{name} must be linked after a layer producing value maps, not after {prev_name}"
        )

    if layer.kind in VECTOR_CONSUMERS and produces_maps(prev_layer):
        if prev_layer.kind is LayerKind.INPUT:
            raise StructuralLinkError(
                f"Multiple channels must be flattened before linking to {name}. "
                f"Try inserting FlattenLayer between InputLayer and {name}"
            )
        raise StructuralLinkError(
            f"{prev_name} must not be linked before {name}. Try inserting FlattenLayer"
        )

    if layer.kind is LayerKind.FLATTEN:
        if next_layer is None or next_layer.kind not in VECTOR_CONSUMERS:
            raise StructuralLinkError("FlattenLayer must be followed by a DenseLayer or RecurrentLayer")


# --- Base Layer Class ---

class Layer:
    """
    Base class for all layers.

    Neighbours are held as weak references: the Model owns the layers, a layer
    only observes its neighbours.
    """
    kind: LayerKind = None
    _INFO_REGEX = re.compile(r"^<([A-Za-z]+)>")

    def __init__(self):
        self._prev_ref = None
        self._next_ref = None
        self.is_end = False
        self.I = None     # cached input of the last forward pass
        self.O = None     # cached output of the last forward pass
        self.dEdI = None  # gradient w.r.t. the input, read by the previous layer

    @property
    def prev_layer(self) -> Optional['Layer']:
        return self._prev_ref() if self._prev_ref is not None else None

    @property
    def next_layer(self) -> Optional['Layer']:
        return self._next_ref() if self._next_ref is not None else None

    def link(self, prev_layer: Optional['Layer'], next_layer: Optional['Layer']):
        """
        Establishes this layer's position in a chain. Called by the Model.

        Args:
            prev_layer: The layer placed before this one (None for the input layer).
            next_layer: The layer placed after this one (None for the output layer).
        """
        check_link(prev_layer, self, next_layer)
        self._prev_ref = weakref.ref(prev_layer) if prev_layer is not None else None
        self._next_ref = weakref.ref(next_layer) if next_layer is not None else None
        self.is_end = next_layer is None

    def for_prop(self):
        raise NotImplementedError("Each layer must implement its own forward pass.")

    def back_prop(self, network_error=None):
        raise NotImplementedError("Each layer must implement its own backward pass.")

    def _incoming_gradient(self, network_error=None):
        """Gradient of the error w.r.t. this layer's output."""
        if self.is_end:
            if network_error is None:
                raise MissingGradientError(
                    f"{type(self).__name__} is the output layer and needs the network error"
                )
            return Matrix.from_array(network_error, 1)
        dEdO = self.next_layer.dEdI
        if dEdO is None:
            raise MissingGradientError(
                f"{type(self.next_layer).__name__} has not propagated a gradient yet"
            )
        return dEdO

    def add_dp(self, dP):
        """Place holder. Layers without trainable parameters ignore gradients."""
        return

    def update_parameters(self, a: float):
        """Place holder. Layers without trainable parameters have nothing to update."""
        return

    # --- Serialization ---

    def serialize(self) -> str:
        return f"<{self.kind.value}>"

    @classmethod
    def _match(cls, ser: str):
        match = cls._INFO_REGEX.match(ser)
        if match is None or match.group(1) != cls.kind.value:
            raise ValueError(f"Not a serialized {cls.__name__}: {ser[:40]!r}")
        return match

    @classmethod
    def get_layer_info(cls, ser: str) -> dict:
        """Extracts the fields written by serialize() into a dict."""
        match = cls._match(ser)
        return {'layer_type': match.group(1)}

    @classmethod
    def deserialize(cls, ser: str) -> 'Layer':
        raise NotImplementedError

    @classmethod
    def get_layer_description(cls, ser: str) -> str:
        """A one-line, human readable description of a serialized layer."""
        return cls.__name__


def _parse_matrix(payload: str) -> Optional[Matrix]:
    values = json.loads(payload)
    return None if values is None else Matrix.from_2d_array(values)


# --- Input Layer ---

class InputLayer(Layer):
    """
    First layer of every model.

    Three shapes are supported:
        InputLayer(n)            -> vector of n nodes (ANN / RNN)
        InputLayer(h, w, 1)      -> a single h x w value map
        InputLayer(h, w, c)      -> c value maps, one per channel
    """
    kind = LayerKind.INPUT
    _INFO_REGEX = re.compile(r"^<([A-Za-z]+)><([0-9]+)><([0-9]+)><([0-9]+)>")

    def __init__(self, height: int, width: Optional[int] = None, num_maps: Optional[int] = None):
        super().__init__()
        self.height = height
        if width and num_maps and num_maps > 0:
            self.width = width
            self.num_maps = num_maps
            self.num_nodes = None
        else:
            self.num_nodes = height
            self.width = 1
            self.num_maps = 0

    def _channel_to_map(self, channel) -> Matrix:
        values = np.asarray(channel, dtype=float)
        if values.ndim != 1 or values.size != self.height * self.width:
            raise DimensionMismatchError(
                f"Wrong input dimensions: expected {self.height * self.width} values, "
                f"got shape {values.shape}"
            )
        return Matrix.from_array(values, self.width)

    def for_prop(self, input_data):
        """
        Converts caller data into the representation of the next layer.

        Args:
            input_data: Flat sequence of values, or one flat sequence per
                channel when num_maps > 1.

        Returns:
            A column-vector Matrix (num_maps == 0) or a list of value maps.
        """
        if self.num_maps <= 1:
            O = self._channel_to_map(input_data)
            if self.num_maps == 1:
                O = [O]
        else:
            if len(input_data) != self.num_maps:
                raise DimensionMismatchError(
                    f"Wrong number of channels: expected {self.num_maps}, got {len(input_data)}"
                )
            O = [self._channel_to_map(channel) for channel in input_data]
        self.I = input_data
        self.O = O
        return O

    def back_prop(self, network_error=None):
        """Place holder. Nothing flows further back than the input layer."""
        return None

    def serialize(self) -> str:
        return f"<{self.kind.value}><{self.height}><{self.width}><{self.num_maps}>"

    @classmethod
    def get_layer_info(cls, ser: str) -> dict:
        match = cls._match(ser)
        return {
            'layer_type': match.group(1),
            'height': int(match.group(2)),
            'width': int(match.group(3)),
            'num_maps': int(match.group(4)),
        }

    @classmethod
    def deserialize(cls, ser: str) -> 'InputLayer':
        info = cls.get_layer_info(ser)
        return cls(info['height'], info['width'], info['num_maps'])

    @classmethod
    def get_layer_description(cls, ser: str) -> str:
        info = cls.get_layer_info(ser)
        if info['num_maps'] > 0:
            return (f"{cls.__name__} / height: {info['height']} / width: {info['width']}"
                    f" / num_maps: {info['num_maps']}")
        return f"{cls.__name__} / num_nodes: {info['height']}"


# --- Convolutional Layer ---

class ConvLayer(Layer):
    """
    Convolution layer with valid (unpadded) correlation and leaky ReLU.

    Kernel grid: kernels[i][j] is the kernel_size x kernel_size kernel between
    input map i and output map j.
    Output map size: input size - (kernel_size - 1) along each axis.
    """
    kind = LayerKind.CONV
    _INFO_REGEX = re.compile(r"^<([A-Za-z]+)><([0-9]+)><([0-9]+)>(.+)$", re.DOTALL)

    def __init__(self, kernel_size: int, num_maps: int, kernels: Optional[List[List[Matrix]]] = None):
        super().__init__()
        self.kernel_size = kernel_size
        self.num_maps = num_maps
        self.kernels = kernels
        self.Y = None   # pre-activation maps
        self.dP = None  # accumulated kernel gradients of the current batch
        self.activation = relu
        self.activation_grad = get_grad_func(self.activation)

    def link(self, prev_layer, next_layer):
        super().link(prev_layer, next_layer)

        self.height = prev_layer.height - (self.kernel_size - 1)
        self.width = prev_layer.width - (self.kernel_size - 1)
        if self.height < 1 or self.width < 1:
            raise StructuralLinkError(
                f"ConvLayer kernel size {self.kernel_size} is larger than the "
                f"{prev_layer.width}x{prev_layer.height} input maps"
            )

        # Kernels are created once; deserialized kernels are kept
        if self.kernels is None:
            self.kernels = [[Matrix(self.kernel_size, self.kernel_size) for _ in range(self.num_maps)]
                            for _ in range(prev_layer.num_maps)]
            self._he_initialization()
        else:
            self._check_kernels(prev_layer.num_maps)

    def _check_kernels(self, num_inputs: int):
        expected = (self.kernel_size, self.kernel_size)
        if len(self.kernels) != num_inputs or any(len(column) != self.num_maps for column in self.kernels):
            raise DimensionMismatchError(
                f"ConvLayer kernel grid must be {num_inputs} x {self.num_maps}"
            )
        for column in self.kernels:
            for kernel in column:
                if kernel.shape != expected:
                    raise DimensionMismatchError(
                        f"ConvLayer kernel shape {kernel.shape} does not match {expected}"
                    )

    def _he_initialization(self):
        """Initializes the kernel values using the He initialization scheme."""
        map_inputs = self.prev_layer.num_maps
        map_outputs = self.num_maps
        upper_limit = np.sqrt(map_outputs / (map_inputs + map_outputs) / self.kernel_size ** 2)
        for column in self.kernels:
            for kernel in column:
                kernel.rand_uni(-upper_limit, upper_limit)

    def for_prop(self):
        I = self.prev_layer.O
        if len(I) != len(self.kernels):
            raise DimensionMismatchError(
                f"ConvLayer expects {len(self.kernels)} input maps, got {len(I)}"
            )
        self.I = I

        Y = []
        for j in range(self.num_maps):
            y = None
            for i, input_map in enumerate(I):
                filtered_map = input_map.correlation(self.kernels[i][j])
                if y is None:
                    y = filtered_map
                else:
                    y.add(filtered_map)
            Y.append(y)
        self.Y = Y

        self.O = [y.apply_by_element(self.activation) for y in Y]
        logging.debug(f"ConvLayer forward - {len(I)} maps in, {len(self.O)} maps of {self.O[0].shape} out")
        return self.O

    def back_prop(self, network_error=None):
        """
        Computes the kernel gradients and the input gradient.

        For input map i and output map j:
            dE/dK[i][j] = I[i] (correlation) dY[j]
            dE/dI[i]   += rot180( rot180(K[i][j]) (full correlation) dY[j] )

        Returns:
            Kernel gradient grid with the same layout as self.kernels.
        """
        if self.Y is None:
            raise MissingGradientError("ConvLayer.back_prop called before for_prop")
        dEdO = self._incoming_gradient(network_error)

        dY = [dEdO[j].hadamard(self.Y[j].apply_by_element(self.activation_grad))
              for j in range(self.num_maps)]

        dEdK = [[None] * self.num_maps for _ in range(len(self.I))]
        dEdI = [None] * len(self.I)
        for i, input_map in enumerate(self.I):
            for j in range(self.num_maps):
                dEdK[i][j] = input_map.correlation(dY[j])

                contribution = self.kernels[i][j].rotate180().full_correlation(dY[j]).rotate180()
                if dEdI[i] is None:
                    dEdI[i] = contribution
                else:
                    dEdI[i].add(contribution)

        self.dEdI = dEdI
        logging.debug(f"ConvLayer backward - {len(dEdI)} input gradient maps of {dEdI[0].shape}")
        return dEdK

    def add_dp(self, dP):
        """Adds a kernel gradient grid to the batch accumulator."""
        if self.dP is None:
            self.dP = dP
            return
        for i, column in enumerate(dP):
            for j, gradient in enumerate(column):
                self.dP[i][j].add(gradient)

    def update_parameters(self, a: float):
        """Applies the accumulated kernel gradients scaled by the learning rate a."""
        if self.dP is not None:
            for i, column in enumerate(self.dP):
                for j, gradient in enumerate(column):
                    self.kernels[i][j].add(gradient.multiply(-1 * a))
        self.dP = None

    def serialize(self) -> str:
        kernels = None
        if self.kernels is not None:
            kernels = [[kernel.to_list() for kernel in column] for column in self.kernels]
        return f"<{self.kind.value}><{self.kernel_size}><{self.num_maps}>" + json.dumps(kernels)

    @classmethod
    def get_layer_info(cls, ser: str) -> dict:
        match = cls._match(ser)
        grid = json.loads(match.group(4))
        kernels = None
        if grid is not None:
            kernels = [[Matrix.from_2d_array(kernel) for kernel in column] for column in grid]
        return {
            'layer_type': match.group(1),
            'kernel_size': int(match.group(2)),
            'num_maps': int(match.group(3)),
            'kernels': kernels,
        }

    @classmethod
    def deserialize(cls, ser: str) -> 'ConvLayer':
        info = cls.get_layer_info(ser)
        return cls(info['kernel_size'], info['num_maps'], kernels=info['kernels'])

    @classmethod
    def get_layer_description(cls, ser: str) -> str:
        info = cls.get_layer_info(ser)
        return f"{cls.__name__} / kernel_size: {info['kernel_size']} / num_maps: {info['num_maps']}"


# --- Pooling Layer ---

class PoolLayer(Layer):
    """
    Average pooling with stride equal to the kernel size.

    Maps whose size does not divide by the stride are zero-padded on the
    trailing edge, so the output size is ceil(input / stride) per axis.
    """
    kind = LayerKind.POOL
    _INFO_REGEX = re.compile(r"^<([A-Za-z]+)><([0-9]+)>")

    def __init__(self, kernel_size: int):
        super().__init__()
        self.kernel_size = kernel_size

    def link(self, prev_layer, next_layer):
        super().link(prev_layer, next_layer)

        stride = self.kernel_size
        self.height = -(-prev_layer.height // stride)
        self.width = -(-prev_layer.width // stride)
        self.y_padding = (stride - prev_layer.height % stride) % stride
        self.x_padding = (stride - prev_layer.width % stride) % stride
        self.num_maps = prev_layer.num_maps

    def pad_map(self, input_map: Matrix) -> Matrix:
        """Appends zero columns/rows so that both axes divide by the stride."""
        padded = np.pad(input_map.data, ((0, self.x_padding), (0, self.y_padding)),
                        mode='constant', constant_values=0)
        return Matrix(padded.shape[0], padded.shape[1], padded)

    def depad_map(self, output_map: Matrix) -> Matrix:
        """Drops the trailing columns/rows added by pad_map."""
        width = output_map.col - self.x_padding
        height = output_map.row - self.y_padding
        return Matrix(width, height, output_map.data[:width, :height])

    def avg_pool(self, input_map: Matrix) -> Matrix:
        """Averages every stride x stride block of a (padded) value map."""
        stride = self.kernel_size
        if self.x_padding > 0 or self.y_padding > 0:
            padded_map = self.pad_map(input_map)
        else:
            padded_map = input_map
        if padded_map.shape != (self.width * stride, self.height * stride):
            raise DimensionMismatchError(
                f"PoolLayer input map {input_map.shape} does not match the linked shape"
            )

        result = Matrix(self.width, self.height)
        for c in range(result.col):
            for r in range(result.row):
                block = padded_map.data[c * stride:(c + 1) * stride, r * stride:(r + 1) * stride]
                result.data[c, r] = np.sum(block) / (stride * stride)
        return result

    def avg_pool_grad(self, grad_map: Matrix) -> Matrix:
        """Spreads each gradient value evenly over its block, then removes the padding."""
        stride = self.kernel_size
        spread = np.repeat(np.repeat(grad_map.data, stride, axis=0), stride, axis=1)
        spread = spread / (stride * stride)
        return self.depad_map(Matrix(spread.shape[0], spread.shape[1], spread))

    def for_prop(self):
        I = self.prev_layer.O
        self.I = I
        self.O = [self.avg_pool(input_map) for input_map in I]
        return self.O

    def back_prop(self, network_error=None):
        dEdO = self._incoming_gradient(network_error)
        self.dEdI = [self.avg_pool_grad(grad_map) for grad_map in dEdO]
        return None

    def serialize(self) -> str:
        return f"<{self.kind.value}><{self.kernel_size}>"

    @classmethod
    def get_layer_info(cls, ser: str) -> dict:
        match = cls._match(ser)
        return {'layer_type': match.group(1), 'kernel_size': int(match.group(2))}

    @classmethod
    def deserialize(cls, ser: str) -> 'PoolLayer':
        return cls(cls.get_layer_info(ser)['kernel_size'])

    @classmethod
    def get_layer_description(cls, ser: str) -> str:
        return f"{cls.__name__} / kernel_size: {cls.get_layer_info(ser)['kernel_size']}"


# --- Reshaping Layer ---

class FlattenLayer(Layer):
    """Concatenates every input map (in flatten order) into one column vector."""
    kind = LayerKind.FLATTEN

    def link(self, prev_layer, next_layer):
        super().link(prev_layer, next_layer)
        self.num_nodes = prev_layer.num_maps * prev_layer.height * prev_layer.width

    def for_prop(self):
        I = self.prev_layer.O
        self.I = I
        values = []
        for input_map in I:
            values.extend(input_map.to_array())
        self.O = Matrix.from_array(values, 1)
        return self.O

    def back_prop(self, network_error=None):
        dEdO = self._incoming_gradient(network_error)
        values = dEdO.to_array()

        prev_layer = self.prev_layer
        map_length = prev_layer.width * prev_layer.height
        self.dEdI = [Matrix.from_array(values[i * map_length:(i + 1) * map_length], prev_layer.width)
                     for i in range(prev_layer.num_maps)]
        return None

    @classmethod
    def deserialize(cls, ser: str) -> 'FlattenLayer':
        cls._match(ser)
        return cls()


# --- Fully Connected Layers ---

class DenseLayer(Layer):
    """
    Fully connected layer with leaky ReLU activation.

    W has shape (previous nodes, num_nodes), so S = W.dot(I) for a column
    vector input I. As the output layer, O is handed to the caller as a list.
    """
    kind = LayerKind.DENSE
    _INFO_REGEX = re.compile(r"^<([A-Za-z]+)><([0-9]+)>(.+)$", re.DOTALL)

    def __init__(self, num_nodes: int, weights: Optional[Matrix] = None):
        super().__init__()
        self.num_nodes = num_nodes
        self.W = weights
        self.S = None   # pre-activation
        self.dW = None  # accumulated weight gradient of the current batch
        self.activation = relu
        self.activation_grad = get_grad_func(self.activation)

    def _weights_shape(self, prev_nodes: int):
        return (prev_nodes, self.num_nodes)

    def link(self, prev_layer, next_layer):
        super().link(prev_layer, next_layer)

        expected = self._weights_shape(prev_layer.num_nodes)
        if self.W is None:
            self.W = Matrix(*expected)
            self._he_initialization()
        elif self.W.shape != expected:
            raise DimensionMismatchError(
                f"{type(self).__name__} weights shape {self.W.shape} does not match {expected}"
            )

    def _he_initialization(self):
        """Initializes the connection weights using the He initialization scheme."""
        upper_limit = np.sqrt(2 / self.W.col)
        self.W.rand_uni(-upper_limit, upper_limit)

    def _output(self, O: Matrix):
        return O.to_array() if self.is_end else O

    def for_prop(self):
        self.I = self.prev_layer.O
        self.S = self.W.dot(self.I)
        self.O = self._output(self.S.apply_by_element(self.activation))
        return self.O

    def back_prop(self, network_error=None):
        """
        Args:
            network_error: dE/dO of the model output; required only when this
                is the output layer.

        Returns:
            The weight gradient dE/dW = dE/dS . I^T
        """
        if self.S is None:
            raise MissingGradientError("DenseLayer.back_prop called before for_prop")
        dEdO = self._incoming_gradient(network_error)

        d_phi = self.S.apply_by_element(self.activation_grad)
        dEdS = dEdO.hadamard(d_phi)

        dW = dEdS.dot(self.I.transpose())
        self.dEdI = self.W.transpose().dot(dEdS)
        logging.debug(f"DenseLayer backward - dW shape: {dW.shape}, dEdI shape: {self.dEdI.shape}")
        return dW

    def add_dp(self, dW: Matrix):
        """Adds a weight gradient to the batch accumulator."""
        if self.dW is None:
            self.dW = dW
        else:
            self.dW.add(dW)

    def update_parameters(self, a: float):
        """Applies the accumulated weight gradient scaled by the learning rate a."""
        if self.dW is not None:
            self.W.add(self.dW.multiply(-1 * a))
        self.dW = None

    def serialize(self) -> str:
        weights = self.W.to_list() if self.W is not None else None
        return f"<{self.kind.value}><{self.num_nodes}>" + json.dumps(weights)

    @classmethod
    def get_layer_info(cls, ser: str) -> dict:
        match = cls._match(ser)
        return {
            'layer_type': match.group(1),
            'num_nodes': int(match.group(2)),
            'W': _parse_matrix(match.group(3)),
        }

    @classmethod
    def deserialize(cls, ser: str) -> 'DenseLayer':
        info = cls.get_layer_info(ser)
        return cls(info['num_nodes'], weights=info['W'])

    @classmethod
    def get_layer_description(cls, ser: str) -> str:
        return f"{cls.__name__} / num_nodes: {cls.get_layer_info(ser)['num_nodes']}"


class TimeStep(NamedTuple):
    """What one forward step of a RecurrentLayer leaves for back-propagation."""
    I: Matrix  # external input followed by the previous step's output
    S: Matrix  # pre-activation
    O: Matrix  # activated output


class RecurrentLayer(DenseLayer):
    """
    Recurrent layer: a dense layer whose input is extended with its own output
    from the previous timestep (a zero vector on the first step).

    W has shape (previous nodes + num_nodes, num_nodes). Its first columns
    weigh the external input, the remaining num_nodes columns weigh the
    recurrent input.

    Memory: every for_prop appends one TimeStep to self.steps; reset_memory()
    empties it. back_prop unrolls the recorded steps (BPTT).
    """
    kind = LayerKind.RECURRENT

    def _weights_shape(self, prev_nodes: int):
        return (prev_nodes + self.num_nodes, self.num_nodes)

    def link(self, prev_layer, next_layer):
        super().link(prev_layer, next_layer)
        self.steps: List[TimeStep] = []

    @property
    def Is(self) -> List[Matrix]:
        return [step.I for step in self.steps]

    @property
    def Ss(self) -> List[Matrix]:
        return [step.S for step in self.steps]

    @property
    def Os(self) -> List[Matrix]:
        return [step.O for step in self.steps]

    def reset_memory(self):
        """Forgets every recorded timestep."""
        self.steps = []

    def for_prop(self):
        Ii = self.prev_layer.O
        if self.steps:
            Ir = self.steps[-1].O
        else:
            Ir = Matrix(1, self.num_nodes)

        I = Matrix.concat_vectors(Ii, Ir)
        S = self.W.dot(I)
        O = S.apply_by_element(self.activation)
        self.steps.append(TimeStep(I.copy(), S.copy(), O.copy()))

        self.I = I
        self.S = S
        self.O = self._output(O)
        logging.debug(f"RecurrentLayer forward - step {len(self.steps)}")
        return self.O

    def back_prop(self, network_error=None):
        """
        Backpropagation through time over every recorded step.

        Walking from the last step to the first, the weight gradient is summed
        over the steps and the recurrent slice of each step's input gradient
        becomes the output gradient of the step before it. The external slice
        of the summed input gradient is exposed to the previous layer.

        The previous layer receives that sum once and pairs it with the input
        and pre-activation it cached at the last step. Its parameter gradient
        is therefore exact only when it sees a single timestep; over a longer
        series it approximates sum_t dEdI_t . I_t^T.

        Returns:
            The weight gradient accumulated over all steps.
        """
        if not self.steps:
            raise MissingGradientError("RecurrentLayer has no recorded timesteps to back-propagate")
        dEdO = self._incoming_gradient(network_error)

        prev_nodes = self.prev_layer.num_nodes
        dEdW = Matrix(self.W.col, self.W.row)
        dEdI = Matrix(1, prev_nodes + self.num_nodes)
        W_T = self.W.transpose()

        for t in reversed(range(len(self.steps))):
            step = self.steps[t]
            dEdS = dEdO.hadamard(step.S.apply_by_element(self.activation_grad))
            dEdW.add(dEdS.dot(step.I.transpose()))

            dEdI_t = W_T.dot(dEdS)
            dEdI.add(dEdI_t)

            # Recurrent part of the input gradient is the previous step's output gradient
            dEdO = dEdI_t.slice_vector(prev_nodes, prev_nodes + self.num_nodes)

        self.dEdI = dEdI.slice_vector(0, prev_nodes)
        logging.debug(f"RecurrentLayer backward - unrolled {len(self.steps)} steps")
        return dEdW


# Registry of the layer classes by kind
LAYER_CLASSES = {
    layer_class.kind: layer_class
    for layer_class in (InputLayer, ConvLayer, PoolLayer, FlattenLayer, DenseLayer, RecurrentLayer)
}

_TAG_REGEX = re.compile(r"^<([A-Za-z]+)>")


def layer_class_for(ser: str):
    """Finds the layer class of a serialized layer from its leading tag."""
    match = _TAG_REGEX.match(ser)
    if match is None:
        raise ValueError(f"Serialized layer has no type tag: {ser[:40]!r}")
    try:
        kind = LayerKind(match.group(1))
    except ValueError:
        raise ValueError(
            f"Unknown layer type '{match.group(1)}'. "
            f"Available types: {[kind.value for kind in LayerKind]}"
        ) from None
    return LAYER_CLASSES[kind]


def deserialize_layer(ser: str) -> Layer:
    return layer_class_for(ser).deserialize(ser)


def describe_layer(ser: str) -> str:
    return layer_class_for(ser).get_layer_description(ser)
