"""Tests for writing the quantized model files."""

import pytest
import torch
import yaml

from qcalib.config import CalibrationParams
from qcalib.errors import CalibrationIOError, SerializeError
from qcalib.graph.network import Network
from qcalib.graph.spec import parse_graph_spec
from qcalib.quantization.assembler import assemble
from qcalib.quantization.scale import ScaleCalculator, ScaleEntry
from qcalib.quantization.serializer import quantized_proto_dict, serialize
from tests.helpers import CONV_GRAPH, conv_state_dict


@pytest.fixture
def quantized_model():
    network = Network(parse_graph_spec(CONV_GRAPH))
    network.load_weights(conv_state_dict())
    params = CalibrationParams()
    table = {name: ScaleEntry(name, (0.02,), (0,)) for name in network.spec.blob_names}
    table.update(ScaleCalculator(params).weight_scales(network.weight_tensors()))
    return assemble(network, table, params)


class TestSerialize:
    """Tests for serialize."""

    def test_writes_both_files(self, quantized_model, tmp_path):
        """Test both artifacts exist and are non-empty."""
        proto_path, model_path = serialize(quantized_model, tmp_path / "q.yaml", tmp_path / "out" / "q.pt")

        assert proto_path.stat().st_size > 0
        assert model_path.stat().st_size > 0

    def test_proto_content(self, quantized_model, tmp_path):
        """Test the proto holds the layout, layer types and blob scales."""
        proto_path, _ = serialize(quantized_model, tmp_path / "q.yaml", tmp_path / "q.pt")

        proto = yaml.safe_load(proto_path.read_text())

        assert proto == quantized_proto_dict(quantized_model)
        assert proto["version"] == "RAPIDNET_V3"
        assert proto["bits"] == 8
        assert proto["inputs"] == [{"name": "data", "shape": [1, 3, 8, 8]}]
        assert [layer["type"] for layer in proto["layers"]] == [
            "quantized_conv2d",
            "quantized_relu",
            "quantized_max_pool2d",
            "quantized_flatten",
            "quantized_linear",
        ]
        assert proto["blob_scales"]["logits"] == {"kind": "blob", "scales": [0.02], "zero_points": [0]}

    def test_model_content(self, quantized_model, tmp_path):
        """Test the weights file loads back with integer tensors."""
        _, model_path = serialize(quantized_model, tmp_path / "q.yaml", tmp_path / "q.pt")

        state = torch.load(model_path, weights_only=True)

        assert torch.equal(state["weights"]["fc.weight"], quantized_model.weights["fc.weight"])
        assert state["biases"]["conv1.bias"].dtype == torch.int32
        assert state["weight_scales"]["conv1.weight"].shape == (4,)

    def test_proto_write_failure(self, quantized_model, tmp_path):
        """Test an unwritable proto path is reported by name."""
        blocked = tmp_path / "blocked"
        blocked.mkdir()

        with pytest.raises(SerializeError) as exc_info:
            serialize(quantized_model, blocked, tmp_path / "q.pt")

        assert exc_info.value.path == str(blocked)
        assert not (tmp_path / "q.pt").exists()

    def test_model_write_failure(self, quantized_model, tmp_path):
        """Test an unwritable model path is reported by name."""
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("x")
        model_path = not_a_dir / "q.pt"

        with pytest.raises(CalibrationIOError) as exc_info:
            serialize(quantized_model, tmp_path / "q.yaml", model_path)

        assert isinstance(exc_info.value, SerializeError)
        assert exc_info.value.path == str(model_path)
