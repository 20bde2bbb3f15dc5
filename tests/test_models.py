"""Unit tests for data models and configuration."""

import pytest
from pydantic import ValidationError

from gguf_memory_estimator_py.config import DEFAULT_CONTEXT_LENGTH, EstimatorConfig
from gguf_memory_estimator_py.httpfile import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT
from gguf_memory_estimator_py.models import (
    PENDING_LABEL, UNAVAILABLE_LABEL, EstimateRow, EstimateState, GroupedFile,
    MemoryEstimate, ModelHyperparameters
)


class TestGroupedFile:
    """Test GroupedFile invariants."""

    def test_single_part(self):
        grouped = GroupedFile(display_name="a.gguf", actual_name="a.gguf", part_files=["a.gguf"])

        assert not grouped.is_multipart

    def test_multipart(self):
        grouped = GroupedFile(
            display_name="a.gguf",
            actual_name="a-00001-of-00002.gguf",
            part_files=["a-00001-of-00002.gguf", "a-00002-of-00002.gguf"],
            part_count=2,
        )

        assert grouped.is_multipart

    def test_empty_parts_rejected(self):
        with pytest.raises(ValueError, match="no part files"):
            GroupedFile(display_name="a.gguf", actual_name="a.gguf", part_files=[])

    def test_actual_name_must_be_first_part(self):
        with pytest.raises(ValueError, match="must be the first part"):
            GroupedFile(
                display_name="a.gguf",
                actual_name="a-00002-of-00002.gguf",
                part_files=["a-00001-of-00002.gguf", "a-00002-of-00002.gguf"],
                part_count=2,
            )


class TestModelHyperparameters:
    """Test ModelHyperparameters value semantics."""

    def test_equality_and_immutability(self):
        params = ModelHyperparameters(hidden_size=4096, attention_heads=32, kv_heads=8, hidden_layers=32)

        assert params == ModelHyperparameters(4096, 32, 8, 32)
        with pytest.raises(AttributeError):
            params.hidden_size = 1


class TestEstimateRow:
    """Test the label rendered for each row state."""

    def setup_method(self):
        """Set up test fixtures."""
        self.file = GroupedFile(display_name="a.gguf", actual_name="a.gguf", part_files=["a.gguf"])
        self.estimate = MemoryEstimate(
            total_bytes=3_000_000_000,
            model_bytes=2_000_000_000,
            kv_cache_bytes=1_000_000_000,
            display_string="3.0 GB (Model: 2.0 GB + KV: 1.0 GB)",
        )

    def test_pending(self):
        row = EstimateRow(file=self.file)

        assert row.state is EstimateState.PENDING
        assert row.label == PENDING_LABEL == "calculating..."

    def test_ready(self):
        row = EstimateRow(file=self.file, state=EstimateState.READY, estimate=self.estimate)

        assert row.label == "3.0 GB (Model: 2.0 GB + KV: 1.0 GB)"

    def test_unavailable(self):
        row = EstimateRow(file=self.file, state=EstimateState.UNAVAILABLE)

        assert row.label == UNAVAILABLE_LABEL == "Unavailable"

    def test_ready_without_estimate_is_unavailable(self):
        row = EstimateRow(file=self.file, state=EstimateState.READY)

        assert row.label == UNAVAILABLE_LABEL


ENV_NAMES = (
    "HF_TOKEN", "HF_ENDPOINT", "GGUF_ESTIMATOR_TIMEOUT", "GGUF_ESTIMATOR_CONTEXT",
    "GGUF_ESTIMATOR_CHUNK_SIZE", "GGUF_ESTIMATOR_REVISION",
)


class TestEstimatorConfig:
    """Test configuration defaults, validation and environment loading."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_NAMES:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = EstimatorConfig()

        assert config.context_length == DEFAULT_CONTEXT_LENGTH == 16384
        assert config.chunk_size == DEFAULT_CHUNK_SIZE == 256 * 1024
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.revision == "main"
        assert config.endpoint is None
        assert config.token is None

    @pytest.mark.parametrize("field", ["context_length", "chunk_size", "timeout"])
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ValidationError):
            EstimatorConfig(**{field: 0})

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            EstimatorConfig(context_length=-1)

    def test_frozen(self):
        config = EstimatorConfig()

        with pytest.raises(ValidationError):
            config.context_length = 1

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("HF_TOKEN", "hf_abc")
        monkeypatch.setenv("HF_ENDPOINT", "https://mirror.example/")
        monkeypatch.setenv("GGUF_ESTIMATOR_TIMEOUT", "5.5")
        monkeypatch.setenv("GGUF_ESTIMATOR_CONTEXT", "4096")
        monkeypatch.setenv("GGUF_ESTIMATOR_CHUNK_SIZE", "65536")
        monkeypatch.setenv("GGUF_ESTIMATOR_REVISION", "v2")

        config = EstimatorConfig()

        assert config.token == "hf_abc"
        assert config.endpoint == "https://mirror.example"
        assert config.timeout == 5.5
        assert config.context_length == 4096
        assert config.chunk_size == 65536
        assert config.revision == "v2"

    def test_keyword_arguments_win_over_environment(self, monkeypatch):
        monkeypatch.setenv("GGUF_ESTIMATOR_CONTEXT", "4096")

        assert EstimatorConfig(context_length=512).context_length == 512

    def test_empty_token_is_none(self, monkeypatch):
        monkeypatch.setenv("HF_TOKEN", "")

        assert EstimatorConfig().token is None

    @pytest.mark.parametrize("name,value", [
        ("GGUF_ESTIMATOR_CONTEXT", "abc"),
        ("GGUF_ESTIMATOR_TIMEOUT", "soon"),
        ("GGUF_ESTIMATOR_CONTEXT", "0"),
    ])
    def test_malformed_environment_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            EstimatorConfig()

    def test_with_overrides_skips_none(self):
        config = EstimatorConfig(token="env-token")

        updated = config.with_overrides(context_length=2048, token=None, timeout=None)

        assert updated.context_length == 2048
        assert updated.token == "env-token"
        assert config.context_length == DEFAULT_CONTEXT_LENGTH

    def test_with_overrides_validates(self):
        with pytest.raises(ValidationError):
            EstimatorConfig().with_overrides(context_length=0)
