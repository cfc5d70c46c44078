"""
test_model.py
~~~~~~~~~~~~~

Tests for Model construction, training, evaluation and serialization.
"""

import numpy as np
import pytest

from clear_scnn import (ConvLayer, DenseLayer, DimensionMismatchError, InputLayer, Matrix, ModeError,
                        Model, StructuralLinkError, is_top_k_match, mse_loss)


@pytest.mark.unit
class TestConstruction:

    def test_requires_two_layers(self):
        with pytest.raises(StructuralLinkError):
            Model(0.1, [InputLayer(3)])

    def test_first_layer_must_be_input(self):
        with pytest.raises(StructuralLinkError):
            Model(0.1, [DenseLayer(3), DenseLayer(2)])

    def test_single_input_layer(self):
        with pytest.raises(StructuralLinkError):
            Model(0.1, [InputLayer(3), InputLayer(3), DenseLayer(2)])

    def test_last_layer_must_be_dense_or_recurrent(self):
        with pytest.raises(StructuralLinkError):
            Model(0.1, [InputLayer(4, 4, 1), ConvLayer(2, 1)])

    def test_unknown_error_function(self):
        with pytest.raises(ValueError, match="err_func"):
            Model(0.1, [InputLayer(3), DenseLayer(2)], err_func="MAE")

    def test_default_error_function(self):
        model = Model(0.1, [InputLayer(3), DenseLayer(2)], err_func=None)
        assert model.err_func == "MSE"

    def test_rnn_mode(self, cnn_model, rnn_model):
        assert not cnn_model.is_rnn
        assert rnn_model.is_rnn


@pytest.mark.unit
class TestPropagation:

    def test_for_prop_returns_output_list(self, cnn_model):
        output = cnn_model.for_prop([np.random.rand(36), np.random.rand(36)])
        assert isinstance(output, list)
        assert len(output) == 3
        assert cnn_model.output == output

    def test_back_prop_returns_gradient_per_layer(self, cnn_model):
        dPs = cnn_model.back_prop([np.random.rand(36), np.random.rand(36)], [0, 1, 0])
        assert len(dPs) == len(cnn_model.layers)
        assert dPs[0] is None and dPs[2] is None and dPs[3] is None
        assert dPs[4].shape == (8, 3)

    def test_back_prop_target_length(self, cnn_model):
        with pytest.raises(DimensionMismatchError):
            cnn_model.back_prop([np.random.rand(36), np.random.rand(36)], [0, 1])

    def test_recurrent_calls_need_rnn(self, cnn_model):
        with pytest.raises(ModeError):
            cnn_model.reset_memory()
        with pytest.raises(ModeError):
            cnn_model.for_prop_series([[0] * 36])
        with pytest.raises(ModeError):
            cnn_model.back_prop_series([[0] * 36], [1, 0, 0])

    def test_series_starts_from_fresh_memory(self, rnn_model):
        series = [np.random.rand(4) for _ in range(3)]
        first = rnn_model.for_prop_series(series)
        second = rnn_model.for_prop_series(series)
        assert np.allclose(first, second)
        assert len(rnn_model.layers[2].steps) == 3


@pytest.mark.unit
class TestErrorHelpers:

    def test_mse_loss(self):
        assert mse_loss([1, 2], [1, 0]) == pytest.approx(2.0)

    def test_top_k_single(self):
        assert is_top_k_match([0.9, 0.05, 0.05], [1, 0, 0])
        assert not is_top_k_match([0.1, 0.8, 0.1], [1, 0, 0])

    def test_top_k_multi_hot(self):
        assert is_top_k_match([0.7, 0.1, 0.6, 0.2], [1, 0, 1, 0])
        assert not is_top_k_match([0.7, 0.6, 0.1, 0.2], [1, 0, 1, 0])

    def test_target_without_ones_matches(self):
        assert is_top_k_match([0.2, 0.3], [0, 0])


@pytest.mark.unit
class TestEvaluation:

    def test_counts_correct_predictions(self, cnn_model, monkeypatch):
        outputs = iter([[0.9, 0.05, 0.05], [0.1, 0.8, 0.1]])
        monkeypatch.setattr(cnn_model, "for_prop", lambda input_data: next(outputs))
        result = cnn_model.test([None, None], [[1, 0, 0], [1, 0, 0]])
        assert result == {"test_samples": 2, "correct_count": 1}

    def test_mismatched_counts(self, cnn_model):
        with pytest.raises(DimensionMismatchError):
            cnn_model.test([[0] * 36], [])

    def test_warns_on_target_without_ones(self, rnn_model, caplog):
        with caplog.at_level("WARNING"):
            result = rnn_model.test([[np.random.rand(4)]], [[0, 0, 0]])
        assert result["correct_count"] == 1
        assert "no 1" in caplog.text


@pytest.mark.unit
class TestTraining:

    @pytest.fixture
    def small_model(self):
        return Model(0.05, [InputLayer(3), DenseLayer(4), DenseLayer(2)])

    @pytest.fixture
    def small_data(self):
        inputs = [np.random.rand(3) for _ in range(5)]
        targets = [[1, 0], [0, 1], [1, 0], [0, 1], [1, 0]]
        return inputs, targets

    def test_mismatched_counts(self, small_model):
        with pytest.raises(DimensionMismatchError):
            small_model.train([[1, 2, 3]], [[1, 0], [0, 1]], 1)

    def test_batch_size_must_be_positive(self, small_model, small_data):
        with pytest.raises(ValueError):
            small_model.train(*small_data, 0)

    def test_empty_training_set(self, small_model, caplog):
        with caplog.at_level("WARNING"):
            assert small_model.train([], [], 4) == 0.0
        assert "no examples" in caplog.text

    def test_trailing_batch_is_applied(self, small_model, small_data, monkeypatch):
        updates = []
        original = small_model.update_parameters
        monkeypatch.setattr(small_model, "update_parameters", lambda: (updates.append(1), original()))
        small_model.train(*small_data, 2)
        assert len(updates) == 3

    def test_one_update_per_batch(self, small_model, small_data):
        inputs, targets = small_data
        reference = Model.deserialize(small_model.serialize())

        expected = [layer.W.copy() for layer in reference.layers[1:]]
        for input_data, target in zip(inputs, targets):
            dPs = reference.back_prop(input_data, target)
            for W, dW in zip(expected, dPs[1:]):
                W.add(dW.multiply(-reference.a))

        small_model.train(inputs, targets, len(inputs))
        for layer, W in zip(small_model.layers[1:], expected):
            assert np.allclose(layer.W.data, W.data)

    def test_returns_mean_loss(self, small_model, small_data):
        inputs, targets = small_data
        reference = Model.deserialize(small_model.serialize())
        expected = np.mean([mse_loss(reference.for_prop(x), t) for x, t in zip(inputs, targets)])
        assert small_model.train(inputs, targets, len(inputs)) == pytest.approx(expected)


@pytest.mark.integration
class TestLearning:

    @pytest.mark.parametrize("hidden_nodes", [2, 4])
    def test_xor_like_loss_decreases(self, hidden_nodes):
        model = Model(0.05, [InputLayer(2), DenseLayer(hidden_nodes), DenseLayer(1)])
        inputs = [[0, 0], [0, 1], [1, 0], [1, 1]]
        targets = [[0], [1], [1], [0]]

        losses = [model.train(inputs, targets, 1) for _ in range(300)]
        assert np.mean(losses[-10:]) < np.mean(losses[:10])

    def test_rnn_trains_on_series(self, rnn_model):
        inputs = [[np.random.rand(4) for _ in range(3)] for _ in range(6)]
        targets = [[1, 0, 0], [0, 1, 0], [0, 0, 1]] * 2
        losses = [rnn_model.train(inputs, targets, 2) for _ in range(20)]
        assert all(np.isfinite(losses))
        result = rnn_model.test(inputs, targets)
        assert result["test_samples"] == 6


@pytest.mark.unit
class TestSerialization:

    def test_format(self):
        W = Matrix.from_2d_array([[0.5], [0.25]])
        model = Model(0.01, [InputLayer(2), DenseLayer(1, weights=W)])
        assert model.serialize() == "0.01|<InLayer><2><1><0>/<NLayer><1>[[0.5], [0.25]]"

    def test_cnn_round_trip(self, cnn_model):
        input_data = [np.random.rand(36), np.random.rand(36)]
        restored = Model.deserialize(cnn_model.serialize())
        assert restored.a == cnn_model.a
        assert [type(l) for l in restored.layers] == [type(l) for l in cnn_model.layers]
        assert np.allclose(restored.for_prop(input_data), cnn_model.for_prop(input_data))

    def test_rnn_round_trip(self, rnn_model):
        series = [np.random.rand(4) for _ in range(3)]
        restored = Model.deserialize(rnn_model.serialize())
        assert restored.is_rnn
        assert np.allclose(restored.for_prop_series(series), rnn_model.for_prop_series(series))

    def test_deserialized_parameters_are_not_reinitialized(self):
        W = Matrix.from_2d_array([[0.5], [0.25]])
        model = Model.deserialize(Model(0.01, [InputLayer(2), DenseLayer(1, weights=W)]).serialize())
        assert model.layers[1].W == W

    @pytest.mark.parametrize("text", [
        "not a model",
        "abc|<InLayer><2><1><0>/<NLayer><1>null",
        "0.1|",
        "0.1|<InLayer><2><1><0>/<XLayer><1>null",
        "0.1|<InLayer><2><1><0>/<NLayer><1>[[0.5",
    ])
    def test_malformed_text(self, text):
        with pytest.raises(ValueError):
            Model.deserialize(text)

    def test_structure_description(self, cnn_model):
        description = cnn_model.structure_description()
        assert "learning rate: 0.01" in description
        assert "Layer 0: InputLayer / height: 6 / width: 6 / num_maps: 2" in description
        assert "Layer 1: ConvLayer / kernel_size: 3 / num_maps: 2" in description
        assert "Layer 2: PoolLayer / kernel_size: 2" in description
        assert "Layer 3: FlattenLayer" in description
        assert "Layer 4: DenseLayer / num_nodes: 3" in description
