# examples/digits_classification.py
"""
Digit Classification with clear_scnn

Trains a small CNN (or a plain ANN) on the scikit-learn digits dataset
(8x8 pixel images, classes 0-9) using the from-scratch engine in clear_scnn.

Main steps:
1. Load the digits dataset and split it into train / test sets
2. Preprocess the data (normalize, one-hot encode the labels)
3. Build the model and print its structure
4. Train for a number of epochs, evaluating after every epoch
5. Round-trip the trained model through serialize / deserialize
6. Plot training loss and test accuracy
"""

import argparse
import logging
import time

import matplotlib.pyplot as plt
import numpy as np
from sklearn.datasets import load_digits
from sklearn.model_selection import train_test_split

from clear_scnn import ConvLayer, DenseLayer, FlattenLayer, InputLayer, Model, PoolLayer

# --- Configuration ---
EPOCHS = 10
BATCH_SIZE = 16
LEARNING_RATE = 0.01
NUM_CLASSES = 10
INPUT_HEIGHT = 8
INPUT_WIDTH = 8
TEST_SIZE = 0.2
RANDOM_SEED = 42


def load_sklearn_digits():
    logging.info("Loading Scikit-learn digits dataset...")
    digits = load_digits()
    X, y = digits.data, digits.target
    logging.info(f"Dataset loaded. X shape: {X.shape}, y shape: {y.shape}")
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=TEST_SIZE, random_state=RANDOM_SEED, stratify=y)
    logging.info(f"Split into Train: {X_train.shape}, Test: {X_test.shape}")
    return (X_train, y_train), (X_test, y_test)


def preprocess_digits_data(X, y):
    """Scales pixels to [0, 1] and one-hot encodes the labels."""
    X_normalized = X.astype(np.float64) / 16.0  # Digits pixel values are 0-16
    y_one_hot = np.eye(NUM_CLASSES)[y]
    return list(X_normalized), list(y_one_hot)


def build_model(mode):
    if mode == "cnn":
        layers = [
            InputLayer(INPUT_HEIGHT, INPUT_WIDTH, 1),
            ConvLayer(3, 4),     # 8x8 -> 6x6, 4 maps
            PoolLayer(2),        # 6x6 -> 3x3
            FlattenLayer(),      # 4 * 3 * 3 = 36 nodes
            DenseLayer(NUM_CLASSES),
        ]
    else:
        layers = [
            InputLayer(INPUT_HEIGHT * INPUT_WIDTH),
            DenseLayer(32),
            DenseLayer(NUM_CLASSES),
        ]
    return Model(LEARNING_RATE, layers)


def accuracy(model, X, y):
    result = model.test(X, y)
    return result["correct_count"] / result["test_samples"]


def plot_history(train_losses, test_accuracies):
    epochs = range(1, len(train_losses) + 1)
    plt.figure(figsize=(12, 5))
    plt.subplot(1, 2, 1)
    plt.plot(epochs, train_losses, label='Training MSE', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('MSE')
    plt.legend()
    plt.title('Training Loss over Epochs')
    plt.grid(True)

    plt.subplot(1, 2, 2)
    plt.plot(epochs, test_accuracies, label='Test Accuracy', color='orange', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Accuracy')
    plt.ylim(0, 1.05)
    plt.legend()
    plt.title('Test Accuracy over Epochs')
    plt.grid(True)

    plt.tight_layout()
    plt.show()


def main():
    parser = argparse.ArgumentParser(description="Train a clear_scnn model on the sklearn digits dataset")
    parser.add_argument("--mode", choices=["cnn", "ann"], default="cnn", help="Model architecture")
    parser.add_argument("--epochs", type=int, default=EPOCHS, help="Number of passes over the training set")
    parser.add_argument("--no-plot", action="store_true", help="Skip the matplotlib figure")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    np.random.seed(RANDOM_SEED)

    # --- 1. Load and preprocess ---
    (X_train_raw, y_train_raw), (X_test_raw, y_test_raw) = load_sklearn_digits()
    X_train, y_train = preprocess_digits_data(X_train_raw, y_train_raw)
    X_test, y_test = preprocess_digits_data(X_test_raw, y_test_raw)

    # --- 2. Build ---
    model = build_model(args.mode)
    print(model.structure_description())

    # --- 3. Train ---
    train_losses = []
    test_accuracies = []
    start_time_total = time.time()
    for epoch in range(args.epochs):
        epoch_start_time = time.time()

        permutation = np.random.permutation(len(X_train))
        epoch_loss = model.train([X_train[i] for i in permutation], [y_train[i] for i in permutation], BATCH_SIZE)
        train_losses.append(epoch_loss)

        test_accuracy = accuracy(model, X_test, y_test)
        test_accuracies.append(test_accuracy)
        logging.info(f"Epoch {epoch + 1}/{args.epochs} | Training MSE: {epoch_loss:.4f} | "
                     f"Test Accuracy: {test_accuracy * 100:.2f}% | {time.time() - epoch_start_time:.2f}s")

    logging.info(f"Total Training Time: {time.time() - start_time_total:.2f}s")

    # --- 4. Serialization round-trip ---
    restored = Model.deserialize(model.serialize())
    logging.info(f"Restored model test accuracy: {accuracy(restored, X_test, y_test) * 100:.2f}%")

    if not args.no_plot:
        plot_history(train_losses, test_accuracies)


if __name__ == "__main__":
    main()
