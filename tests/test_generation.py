"""Tests for the generation loop: stop conditions, pieces, context bounds."""

import pytest

from fakes import EOS, LONG, PAD, FakeBackend, byte_tokens

from llama_session import (
    DecodeError,
    EngineConfig,
    EngineSession,
    PieceOverflowPolicy,
    PromptTemplate,
    StopReason,
)


def _engine(model_file, backend, **config):
    engine = EngineSession(EngineConfig(**config), backend=backend)
    engine.load(model_file)
    return engine


def _run(engine, text="Hello"):
    fragments = []
    result = engine.generate(text, fragments.append)
    return fragments, result


def test_hello_scenario(engine):
    fragments, result = _run(engine)
    assert "".join(fragments) == "Bonjour"
    assert result.stop_reason is StopReason.EOS
    assert result.n_generated == len("Bonjour")
    assert result.n_generated <= engine.config.max_tokens
    assert result.ok


def test_fragments_arrive_in_generation_order(engine):
    fragments, _ = _run(engine)
    assert fragments == list("Bonjour")


def test_deterministic_output(engine):
    first, _ = _run(engine)
    second, _ = _run(engine)
    assert first == second


def test_stops_on_eos_without_emitting_it(model_file):
    backend = FakeBackend(script=byte_tokens("ok") + [EOS] + byte_tokens("never"))
    engine = _engine(model_file, backend)
    fragments, result = _run(engine)
    assert fragments == ["o", "k"]
    assert result.stop_reason is StopReason.EOS
    # The EOS token is never decoded back into the context
    assert backend.decode_calls[1:] == [1, 1]
    engine.close()


def test_max_tokens_bound(model_file):
    backend = FakeBackend(eos=False, replies={"Hello": ""}, filler="z")
    engine = _engine(model_file, backend, max_tokens=10)
    fragments, result = _run(engine)
    assert result.stop_reason is StopReason.MAX_TOKENS
    assert result.n_generated == 10
    assert len(fragments) == 10
    engine.close()


def test_default_max_tokens_is_128(model_file):
    backend = FakeBackend(eos=False, replies={"Hello": ""})
    engine = _engine(model_file, backend, n_ctx=512, n_batch=512)
    _, result = _run(engine)
    assert result.n_generated == 128
    engine.close()


def test_budget_clamped_to_remaining_context(model_file):
    template = PromptTemplate(system_prompt="t")
    backend = FakeBackend(eos=False, replies={"Hello": ""})
    engine = EngineSession(
        EngineConfig(n_ctx=100, n_batch=100, max_tokens=100),
        backend=backend,
        template=template,
    )
    engine.load(model_file)
    n_prompt = len(engine.tokenize(template.format("Hello")))
    assert 0 < 100 - n_prompt < 100

    _, result = _run(engine)
    assert result.stop_reason is StopReason.MAX_TOKENS
    assert result.n_generated == 100 - n_prompt
    assert engine.session.n_past == 100
    engine.close()


def test_prompt_decode_failure_emits_nothing(model_file):
    backend = FakeBackend(replies={"Hello": "Bonjour"}, fail_decode_at=0)
    engine = _engine(model_file, backend)
    fragments, result = _run(engine)
    assert fragments == []
    assert result.stop_reason is StopReason.PROMPT_DECODE_ERROR
    assert isinstance(result.error, DecodeError)
    assert result.error.stage == "prompt"
    assert backend.samplers_created == 0
    engine.close()


def test_prompt_longer_than_batch_is_rejected_before_decode(engine, backend):
    fragments, result = _run(engine, "x" * 300)
    assert fragments == []
    assert result.stop_reason is StopReason.PROMPT_DECODE_ERROR
    assert result.error.n_tokens > engine.config.n_batch
    assert backend.decode_calls == []


def test_decode_failure_mid_stream_keeps_emitted_fragments(model_file):
    backend = FakeBackend(replies={"Hello": "Bonjour"}, fail_decode_at=3)
    engine = _engine(model_file, backend)
    fragments, result = _run(engine)
    assert "".join(fragments) == "Bon"
    assert result.stop_reason is StopReason.DECODE_ERROR
    assert result.error.stage == "generation"
    assert result.n_generated == 3
    engine.close()


def test_session_usable_after_decode_error(model_file):
    backend = FakeBackend(replies={"Hello": "Bonjour"}, fail_decode_at=2)
    engine = _engine(model_file, backend)
    _, failed = _run(engine)
    assert failed.stop_reason is StopReason.DECODE_ERROR

    fragments, result = _run(engine)
    assert "".join(fragments) == "Bonjour"
    assert result.stop_reason is StopReason.EOS
    engine.close()


def test_zero_length_pieces_produce_no_callback(model_file):
    backend = FakeBackend(script=[PAD] + byte_tokens("o") + [PAD, EOS])
    engine = _engine(model_file, backend)
    fragments, result = _run(engine)
    assert fragments == ["o"]
    assert result.n_generated == 3
    assert result.n_fragments == 1
    engine.close()


def test_multibyte_character_split_across_tokens(model_file):
    backend = FakeBackend(replies={"Hello": "café"})
    engine = _engine(model_file, backend)
    fragments, result = _run(engine)
    assert fragments == ["c", "a", "f", "é"]
    assert result.n_generated == 5
    engine.close()


def test_incomplete_character_flushed_at_stop(model_file):
    backend = FakeBackend(script=byte_tokens("a") + [0xC3 + 3, EOS])
    engine = _engine(model_file, backend)
    fragments, _ = _run(engine)
    assert fragments == ["a", "�"]
    engine.close()


def test_oversized_piece_truncated(model_file):
    backend = FakeBackend(
        script=[LONG] + byte_tokens("k") + [EOS], extra_pieces={LONG: b"x" * 40}
    )
    engine = _engine(model_file, backend, piece_capacity=16)
    fragments, result = _run(engine)
    assert fragments == ["x" * 16, "k"]
    assert result.n_truncated == 1
    engine.close()


def test_oversized_piece_rejected(model_file):
    backend = FakeBackend(
        script=[LONG] + byte_tokens("k") + [EOS], extra_pieces={LONG: b"x" * 40}
    )
    engine = _engine(
        model_file, backend, piece_capacity=16, overflow_policy=PieceOverflowPolicy.REJECT
    )
    fragments, result = _run(engine)
    assert fragments == ["k"]
    assert result.n_truncated == 1
    assert result.n_generated == 2
    engine.close()


def test_memory_cleared_before_every_request(engine, backend):
    _run(engine)
    _run(engine)
    assert backend.clear_calls == 2


def test_memory_kept_when_reset_disabled(model_file):
    backend = FakeBackend(replies={"Hello": "Hi"})
    engine = _engine(model_file, backend, n_ctx=1024, reset_memory=False)
    _, first = _run(engine)
    after_first = engine.session.n_past
    _, second = _run(engine)
    assert backend.clear_calls == 0
    assert engine.session.n_past == after_first + second.n_prompt_tokens + second.n_generated
    engine.close()


def test_sampler_freed_after_every_request(engine, backend):
    _run(engine)
    _run(engine, "x" * 300)
    assert backend.samplers_created == backend.samplers_freed == 1


def test_sink_exception_propagates_and_releases_session(engine, backend):
    def failing_sink(fragment):
        raise RuntimeError("consumer gone")

    with pytest.raises(RuntimeError, match="consumer gone"):
        engine.generate("Hello", failing_sink)
    assert backend.samplers_created == backend.samplers_freed

    fragments, result = _run(engine)
    assert "".join(fragments) == "Bonjour"
