# clear_scnn/matrix.py

"""
Dense 2-D Matrix primitive used by every layer of the engine.

A Matrix is addressed as ``m[column][row]``. Its shape is fixed at
construction (``col`` columns, each holding ``row`` values) and the values are
kept in a NumPy float64 array of shape ``(col, row)``.

Apart from ``add`` (and the ``rand*`` fillers), operations never modify their
operands: they return a new Matrix.

Flattening (``to_array``) walks columns in the outer loop and rows in the
inner loop. The flatten and flatten-layer code depend on this exact order.
"""

import numpy as np
from typing import Callable, List, Sequence

from clear_scnn.exceptions import DimensionMismatchError


class Matrix:
    """
    A rectangular grid of floats with algebraic and correlation operations.

    Attributes:
        col (int): Number of columns (first index).
        row (int): Number of rows in every column (second index).
        data (np.ndarray): The values, shape (col, row).
    """

    def __init__(self, col: int, row: int, data=None):
        self.col = int(col)
        self.row = int(row)
        if data is None:
            self.data = np.zeros((self.col, self.row), dtype=float)
        else:
            values = np.array(data, dtype=float)
            if values.shape != (self.col, self.row):
                raise DimensionMismatchError(
                    f"Matrix data shape {values.shape} does not match ({self.col}, {self.row})"
                )
            self.data = values

    # --- Factories ---

    @staticmethod
    def from_array(arr: Sequence[float], col: int) -> 'Matrix':
        """
        Builds a Matrix from a flat sequence, filling column after column.

        Args:
            arr: Flat sequence of values; its length must be a multiple of col.
            col: Number of columns of the result.

        Returns:
            Matrix of shape (col, len(arr) // col) with arr[i] at [i // row][i % row].
        """
        values = np.asarray(arr, dtype=float).reshape(-1)
        if col <= 0 or values.size % col != 0:
            raise DimensionMismatchError(
                f"Cannot split {values.size} values into {col} columns"
            )
        row = values.size // col
        return Matrix(col, row, values.reshape(col, row))

    @staticmethod
    def from_2d_array(arr: Sequence[Sequence[float]]) -> 'Matrix':
        """Builds a Matrix from nested [column][row] sequences."""
        try:
            values = np.array(arr, dtype=float)
        except ValueError as e:
            raise DimensionMismatchError(f"Ragged 2-D array: {e}") from e
        if values.ndim != 2:
            raise DimensionMismatchError(f"Expected a 2-D array, got {values.ndim}-D")
        return Matrix(values.shape[0], values.shape[1], values)

    @staticmethod
    def concat_vectors(v1: 'Matrix', v2: 'Matrix') -> 'Matrix':
        """Concatenates vector v2 after vector v1. Both must be single-column."""
        if v1.col != 1:
            raise DimensionMismatchError(f"v1 is not a vector (col={v1.col})")
        if v2.col != 1:
            raise DimensionMismatchError(f"v2 is not a vector (col={v2.col})")
        return Matrix(1, v1.row + v2.row, np.concatenate([v1.data, v2.data], axis=1))

    # --- Container protocol ---

    def __getitem__(self, index):
        return self.data[index]

    def __setitem__(self, index, value):
        self.data[index] = value

    def __len__(self) -> int:
        return self.col

    def __iter__(self):
        return iter(self.data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.col == other.col and self.row == other.row and np.array_equal(self.data, other.data)

    __hash__ = None

    def __repr__(self) -> str:
        return f"Matrix(col={self.col}, row={self.row}, data={self.data.tolist()})"

    @property
    def shape(self):
        return (self.col, self.row)

    def _check_same_shape(self, other: 'Matrix', op: str):
        if self.col != other.col:
            raise DimensionMismatchError(f"{op}: col length {self.col} does not match {other.col}")
        if self.row != other.row:
            raise DimensionMismatchError(f"{op}: row length {self.row} does not match {other.row}")

    # --- Algebra ---

    def dot(self, m: 'Matrix') -> 'Matrix':
        """
        Matrix product with self as the left operand.

        result[c][r] = Σ_i self[i][r] * m[c][i]

        Args:
            m: Right operand; m.row must equal self.col.

        Returns:
            Matrix of shape (m.col, self.row).
        """
        if self.col != m.row:
            raise DimensionMismatchError(
                f"dot: inner dimensions do not match (self.col={self.col}, other.row={m.row})"
            )
        # In (col, row) storage the product reads as m.data @ self.data
        return Matrix(m.col, self.row, np.dot(m.data, self.data))

    def hadamard(self, m: 'Matrix') -> 'Matrix':
        """Element-wise product."""
        self._check_same_shape(m, "hadamard")
        return Matrix(self.col, self.row, self.data * m.data)

    def transpose(self) -> 'Matrix':
        return Matrix(self.row, self.col, self.data.T.copy())

    def add(self, m: 'Matrix') -> None:
        """Element-wise addition, in place."""
        self._check_same_shape(m, "add")
        self.data += m.data

    def multiply(self, a: float) -> 'Matrix':
        """Scalar multiplication."""
        return Matrix(self.col, self.row, a * self.data)

    def apply_by_element(self, func: Callable[[float], float]) -> 'Matrix':
        """Passes every element through a scalar function."""
        if self.data.size == 0:
            return self.copy()
        return Matrix(self.col, self.row, np.vectorize(func, otypes=[float])(self.data))

    # --- Shape reinterpretation ---

    def to_array(self) -> List[float]:
        """Flattens the matrix, columns outer and rows inner."""
        return self.data.reshape(-1).tolist()

    def to_list(self) -> List[List[float]]:
        """Nested [column][row] lists, the JSON payload form."""
        return self.data.tolist()

    def vectorize(self) -> 'Matrix':
        """Single-column matrix holding every element in flatten order."""
        return Matrix.from_array(self.to_array(), 1)

    def matrixize(self, num_of_vectors: int) -> 'Matrix':
        """Reinterprets the flatten order as a matrix with num_of_vectors columns."""
        return Matrix.from_array(self.to_array(), num_of_vectors)

    def slice_vector(self, pos1: int, pos2: int) -> 'Matrix':
        """Single-column matrix of flatten-order elements [pos1, pos2)."""
        return Matrix.from_array(self.to_array()[pos1:pos2], 1)

    # --- Correlation ---

    def correlation(self, k: 'Matrix') -> 'Matrix':
        """
        Valid-mode 2-D cross-correlation (the kernel is not flipped).

        Args:
            k: Kernel, no larger than self along either axis.

        Returns:
            Matrix of shape (self.col - k.col + 1, self.row - k.row + 1).
        """
        if not isinstance(k, Matrix):
            raise TypeError("kernel is not an instance of Matrix")
        if k.col > self.col or k.row > self.row:
            raise DimensionMismatchError(
                f"correlation: kernel {k.shape} is larger than input {self.shape}"
            )
        result = Matrix(self.col - k.col + 1, self.row - k.row + 1)

        for c in range(result.col):
            for r in range(result.row):
                # Receptive field aligned with output cell (c, r)
                window = self.data[c:c + k.col, r:r + k.row]
                result.data[c, r] = np.sum(window * k.data)

        return result

    def full_correlation(self, k: 'Matrix') -> 'Matrix':
        """
        Correlation after zero-padding self by (kernel size - 1) on every side,
        so the kernel visits every offset where it overlaps self by at least
        one cell. Used by the convolution layer's backward pass.
        """
        if not isinstance(k, Matrix):
            raise TypeError("kernel is not an instance of Matrix")
        pad_col = max(k.col - 1, 0)
        pad_row = max(k.row - 1, 0)
        padded = np.pad(self.data, ((pad_col, pad_col), (pad_row, pad_row)),
                        mode='constant', constant_values=0)
        return Matrix(padded.shape[0], padded.shape[1], padded).correlation(k)

    def rotate180(self) -> 'Matrix':
        return Matrix(self.col, self.row, self.data[::-1, ::-1].copy())

    # --- Initialization ---

    def rand(self) -> None:
        """Fills the matrix with uniform random values in [-0.5, 0.5)."""
        self.data = np.random.rand(self.col, self.row) - 0.5

    def rand_uni(self, lower_limit: float, upper_limit: float) -> None:
        """
        Fills the matrix from [lower_limit, upper_limit] without collisions.

        The range is cut into col * row equal intervals and every cell takes
        the start of a different interval, in random order.
        """
        num_intervals = self.col * self.row
        if num_intervals == 0:
            return
        interval = (upper_limit - lower_limit) / num_intervals
        pool = lower_limit + np.arange(num_intervals) * interval
        self.data = np.random.permutation(pool).reshape(self.col, self.row)

    def copy(self) -> 'Matrix':
        return Matrix(self.col, self.row, self.data.copy())
