import pytest

from tracecore.infrastructure.tracing.baggage import (
    clear_baggage,
    get_all_baggage,
    get_baggage,
    remove_baggage,
    set_baggage,
)
from tracecore.infrastructure.tracing.context import ROOT_CONTEXT, current, use_context


def test_set_baggage_returns_new_context():
    """set_baggage nunca altera o contexto de entrada"""
    original = set_baggage(ROOT_CONTEXT, "tenant", "acme")
    updated = set_baggage(original, "tenant", "globex")

    assert get_baggage(original, "tenant") == "acme"
    assert get_baggage(updated, "tenant") == "globex"
    assert get_baggage(ROOT_CONTEXT, "tenant") is None


def test_set_baggage_keeps_other_entries():
    ctx = set_baggage(set_baggage(ROOT_CONTEXT, "a", "1"), "b", "2")
    assert dict(get_all_baggage(ctx)) == {"a": "1", "b": "2"}


def test_remove_baggage_is_pure():
    """remove_baggage retorna novo contexto sem a chave"""
    ctx = set_baggage(set_baggage(ROOT_CONTEXT, "a", "1"), "b", "2")
    removed = remove_baggage(ctx, "a")

    assert get_baggage(removed, "a") is None
    assert get_baggage(removed, "b") == "2"
    assert get_baggage(ctx, "a") == "1"


def test_remove_missing_key_returns_same_context():
    ctx = set_baggage(ROOT_CONTEXT, "a", "1")
    assert remove_baggage(ctx, "missing") is ctx


def test_clear_baggage():
    ctx = set_baggage(ROOT_CONTEXT, "a", "1")
    assert dict(get_all_baggage(clear_baggage(ctx))) == {}
    assert get_baggage(ctx, "a") == "1"


def test_get_all_baggage_is_read_only():
    """A visão retornada não permite mutação"""
    ctx = set_baggage(ROOT_CONTEXT, "a", "1")
    with pytest.raises(TypeError):
        get_all_baggage(ctx)["a"] = "2"


@pytest.mark.parametrize("key,value", [("", "v"), (None, "v"), ("k", 123), ("k", None)])
def test_invalid_entries_are_ignored(key, value):
    """Chave vazia ou valores não-string são ignorados sem exceção"""
    ctx = set_baggage(ROOT_CONTEXT, "existing", "1")
    assert set_baggage(ctx, key, value) is ctx


def test_baggage_survives_attach_and_detach():
    ctx = set_baggage(ROOT_CONTEXT, "tenant", "acme")
    with use_context(ctx):
        assert get_baggage(current(), "tenant") == "acme"
        with use_context(set_baggage(current(), "user", "42")):
            assert get_baggage(current(), "tenant") == "acme"
            assert get_baggage(current(), "user") == "42"
        assert get_baggage(current(), "user") is None
    assert get_baggage(current(), "tenant") is None
