"""Tests for configuration, prompt formatting and callback targets (no model required)."""

import queue

import pytest

from fakes import FakeBackend

from llama_session import (
    CallbackTarget,
    EngineConfig,
    EngineSession,
    PieceOverflowPolicy,
    PromptTemplate,
    ValidationError,
    reset_logging,
    translation_template,
)
from llama_session.sink import QueueSink


# Config validation tests
def test_defaults():
    config = EngineConfig()
    assert (config.n_ctx, config.n_batch, config.max_tokens) == (256, 256, 128)
    assert config.piece_capacity == 128
    assert config.tokenize_slack == 16
    assert config.reset_memory
    assert config.overflow_policy is PieceOverflowPolicy.TRUNCATE


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n_ctx": 0},
        {"n_batch": 0},
        {"n_threads": 0},
        {"n_gpu_layers": -2},
        {"max_tokens": 0},
        {"max_tokens": 300},
        {"piece_capacity": 4},
        {"tokenize_slack": -1},
        {"overflow_policy": "drop"},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValidationError):
        EngineConfig(**kwargs)


def test_overflow_policy_from_string():
    assert EngineConfig(overflow_policy="reject").overflow_policy is PieceOverflowPolicy.REJECT


def test_quiet_config_warns():
    with pytest.warns(RuntimeWarning, match="whole process"):
        EngineSession(EngineConfig(verbose=False), backend=FakeBackend())
    reset_logging()


# Prompt tests
def test_prompt_layout():
    prompt = PromptTemplate(system_prompt="Be brief.").format("Hello")
    assert prompt == (
        "<|start_header_id|>system<|end_header_id|>\n\nBe brief.<|eot_id|>"
        "<|start_header_id|>user<|end_header_id|>\n\nHello<|eot_id|>"
        "<|start_header_id|>assistant<|end_header_id|>\n\n"
    )


def test_prompt_has_no_bos_marker():
    assert "<|begin_of_text|>" not in PromptTemplate().format("Hello")


def test_default_template_translates_english_to_french():
    system = PromptTemplate().system_prompt
    assert "English" in system
    assert "French" in system


def test_translation_template_languages():
    template = translation_template("German", "Spanish")
    assert "German" in template.system_prompt
    assert "Output ONLY the Spanish translation" in template.system_prompt


# Callback target tests
class Receiver:
    def __init__(self):
        self.fragments = []

    def receive_token(self, fragment):
        self.fragments.append(fragment)


def test_target_prefers_method():
    receiver = Receiver()
    target = CallbackTarget(receiver)
    target.emit("a")
    target.emit("b")
    assert receiver.fragments == ["a", "b"]


def test_target_custom_method_name():
    class Listener:
        def __init__(self):
            self.seen = []

        def on_token(self, fragment):
            self.seen.append(fragment)

    listener = Listener()
    CallbackTarget(listener, method_name="on_token").emit("x")
    assert listener.seen == ["x"]


def test_target_plain_callable():
    seen = []
    CallbackTarget(seen.append).emit("x")
    assert seen == ["x"]


def test_target_resolved_once():
    receiver = Receiver()
    target = CallbackTarget(receiver)
    first = target.resolve()
    assert target.resolve() is first
    assert target.wraps(receiver)
    assert not target.wraps(Receiver())


def test_target_rejects_unusable_consumer():
    with pytest.raises(ValidationError, match="receive_token"):
        CallbackTarget(object()).resolve()


def test_queue_sink():
    fragments = queue.Queue()
    sink = QueueSink(fragments)
    sink("a")
    sink("b")
    assert [fragments.get_nowait(), fragments.get_nowait()] == ["a", "b"]


# Logging helpers
def test_set_log_level():
    import logging

    from llama_session import set_log_level

    set_log_level("error")
    assert logging.getLogger("llama_session").level == logging.ERROR
    assert logging.getLogger("llama-cpp-python").level == logging.ERROR
    with pytest.raises(ValueError):
        set_log_level("loud")
    reset_logging()
    assert logging.getLogger("llama_session").level == logging.NOTSET
