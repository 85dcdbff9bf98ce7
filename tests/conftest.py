"""Shared pytest fixtures for llama-session tests."""

import os

import pytest

from fakes import FakeBackend

from llama_session import EngineConfig, EngineSession

MODEL_PATH = os.environ.get(
    "LLAMA_SESSION_TEST_MODEL",
    os.path.join(
        os.path.dirname(__file__), "..", "models", "Llama-3.2-1B-Instruct-Q4_K_M.gguf"
    ),
)

requires_model = pytest.mark.skipif(
    not os.path.exists(MODEL_PATH), reason="test model not found"
)


@pytest.fixture
def model_file(tmp_path):
    """An existing, readable file standing in for GGUF weights."""
    path = tmp_path / "tiny-instruct.gguf"
    path.write_bytes(b"GGUF")
    return str(path)


@pytest.fixture
def backend():
    return FakeBackend(replies={"Hello": "Bonjour"})


@pytest.fixture
def engine(backend, model_file):
    """Ready EngineSession on the fake backend."""
    instance = EngineSession(EngineConfig(), backend=backend)
    instance.load(model_file)
    yield instance
    instance.close()


@pytest.fixture(scope="module")
def llm():
    """Shared EngineSession on a real llama.cpp model."""
    if not os.path.exists(MODEL_PATH):
        pytest.skip("test model not found")
    pytest.importorskip("llama_cpp")
    from llama_session import disable_logging

    disable_logging()
    instance = EngineSession()
    instance.initialize(os.path.dirname(MODEL_PATH), os.path.basename(MODEL_PATH))
    yield instance
    instance.close()
