"""Unit tests for caller context resolution."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from toolgate.auth.context import (
    Context,
    ContextType,
    require_context,
    resolve_context,
    resolve_from_headers,
    resolve_from_payload,
)
from toolgate.core.exceptions import InvalidContextError

MAX_ID = 2**63 - 1


class TestContext:
    def test_user_and_group_keys(self):
        assert Context.user(555).key == "user:555"
        assert Context.group(-42).key == "group:-42"
        assert str(Context.group(-42)) == "group:-42"

    @pytest.mark.parametrize(
        "context_type,context_id",
        [
            (ContextType.USER, 0),
            (ContextType.USER, -1),
            (ContextType.GROUP, 0),
            (ContextType.GROUP, 7),
            (ContextType.USER, MAX_ID + 1),
        ],
    )
    def test_rejects_invalid_sign_or_range(self, context_type, context_id):
        with pytest.raises(InvalidContextError):
            Context(context_type, context_id)

    def test_rejects_bool_id(self):
        with pytest.raises(InvalidContextError):
            Context(ContextType.USER, True)

    def test_equality_is_by_value(self):
        assert Context.user(9) == Context(ContextType.USER, 9)
        assert Context.user(9) != Context.group(-9)

    @given(st.integers(min_value=1, max_value=MAX_ID))
    def test_sign_rules_hold_for_any_id(self, n):
        assert Context.user(n).id == n
        assert Context.group(-n).id == -n
        with pytest.raises(InvalidContextError):
            Context.user(-n)
        with pytest.raises(InvalidContextError):
            Context.group(n)


class TestResolveContext:
    def test_both_absent_is_none(self):
        assert resolve_context(None, None) is None
        assert resolve_context("", "  ") is None

    def test_parses_strings(self):
        assert resolve_context("user", "555") == Context.user(555)
        assert resolve_context(" GROUP ", "-42") == Context.group(-42)

    def test_accepts_integer_id(self):
        assert resolve_context("group", -3) == Context.group(-3)

    @pytest.mark.parametrize("context_type,context_id", [("user", None), (None, "5"), ("", "5")])
    def test_partial_context_is_rejected(self, context_type, context_id):
        with pytest.raises(InvalidContextError):
            resolve_context(context_type, context_id)

    @pytest.mark.parametrize(
        "context_type,context_id",
        [("team", "5"), ("user", "abc"), ("user", "5.0"), ("user", "-5"), ("group", "5"), ("user", True)],
    )
    def test_invalid_values_are_rejected(self, context_type, context_id):
        with pytest.raises(InvalidContextError) as exc_info:
            resolve_context(context_type, context_id)
        assert exc_info.value.rpc_code == -32602

    def test_from_headers(self):
        headers = {"x-context-type": "user", "x-context-id": "555"}
        assert resolve_from_headers(headers, "x-context-type", "x-context-id") == Context.user(555)
        assert resolve_from_headers({}, "x-context-type", "x-context-id") is None

    def test_from_payload_ignores_nested_fields(self):
        payload = {"method": "tools/list", "params": {"context_type": "user", "context_id": "1"}}
        assert resolve_from_payload(payload) is None
        payload.update(context_type="group", context_id="-42")
        assert resolve_from_payload(payload) == Context.group(-42)

    def test_require_context(self):
        ctx = Context.user(1)
        assert require_context(ctx) is ctx
        with pytest.raises(InvalidContextError):
            require_context(None)
