# examples/quadrant_sequence.py
"""
Sequence classification with a RecurrentLayer.

Each 8x8 digit is cut into its four 4x4 quadrants (top-left, top-right,
bottom-left, bottom-right). The quadrants are fed one per timestep and the
class is read from the output after the last one (many-to-one).
"""

import argparse
import logging

import numpy as np
from sklearn.datasets import load_digits
from sklearn.model_selection import train_test_split

from clear_scnn import DenseLayer, InputLayer, Model, RecurrentLayer

# --- Configuration ---
EPOCHS = 10
BATCH_SIZE = 16
LEARNING_RATE = 0.01
HIDDEN_NODES = 32
RECURRENT_NODES = 24
NUM_CLASSES = 10
QUADRANT = 4
RANDOM_SEED = 42


def to_quadrant_series(image):
    """Splits one flat 8x8 image into four flat 4x4 timesteps."""
    grid = image.reshape(2 * QUADRANT, 2 * QUADRANT)
    return [grid[r:r + QUADRANT, c:c + QUADRANT].reshape(-1)
            for r in (0, QUADRANT) for c in (0, QUADRANT)]


def load_series():
    digits = load_digits()
    X = digits.data / 16.0
    y = np.eye(NUM_CLASSES)[digits.target]
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=RANDOM_SEED, stratify=digits.target)
    logging.info(f"Train: {len(X_train)} series, Test: {len(X_test)} series")
    return ([to_quadrant_series(x) for x in X_train], list(y_train)), \
           ([to_quadrant_series(x) for x in X_test], list(y_test))


def main():
    parser = argparse.ArgumentParser(description="Classify digits fed quadrant by quadrant to an RNN")
    parser.add_argument("--epochs", type=int, default=EPOCHS)
    parser.add_argument("--save", type=str, default=None, help="Write the trained model text to this path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    np.random.seed(RANDOM_SEED)

    (X_train, y_train), (X_test, y_test) = load_series()

    model = Model(LEARNING_RATE, [
        InputLayer(QUADRANT * QUADRANT),
        DenseLayer(HIDDEN_NODES),
        RecurrentLayer(RECURRENT_NODES),
        DenseLayer(NUM_CLASSES),
    ])
    print(model.structure_description())

    for epoch in range(args.epochs):
        loss = model.train(X_train, y_train, BATCH_SIZE)
        result = model.test(X_test, y_test)
        logging.info(f"Epoch {epoch + 1}/{args.epochs} | Training MSE: {loss:.4f} | "
                     f"Test: {result['correct_count']}/{result['test_samples']}")

    if args.save:
        with open(args.save, "w") as f:
            f.write(model.serialize())
        logging.info(f"Model saved to {args.save}")


if __name__ == "__main__":
    main()
