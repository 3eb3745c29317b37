"""Tests for the named field behavior registry."""

from datetime import datetime

import pytest

from dbforge.hooks import BehaviorKind, BehaviorRegistry, FieldHookContext, behavior


def run(kind, name, value=None):
    return BehaviorRegistry.get(kind, name)(FieldHookContext(value=value))


class TestRegistry:
    def test_builtins_registered(self):
        assert BehaviorRegistry.list_registered(BehaviorKind.PRODUCER) == ["now", "timestamp", "uuid"]
        assert BehaviorRegistry.is_registered("validator", "email")

    def test_unknown_behavior(self):
        with pytest.raises(ValueError, match="not registered"):
            BehaviorRegistry.get(BehaviorKind.TRANSFORM, "slugify")

    def test_decorator_registers(self):
        @behavior("transform", "slugify")
        def slugify(ctx):
            return ctx.value.replace(" ", "-").lower()

        assert run("transform", "slugify", "Hello World") == "hello-world"

    def test_register_is_idempotent(self):
        first = BehaviorRegistry.get("producer", "now")
        BehaviorRegistry.register("producer", "now", lambda ctx: None)
        assert BehaviorRegistry.get("producer", "now") is first

    def test_clear(self):
        BehaviorRegistry.clear()
        assert BehaviorRegistry.list_registered("validator") == []


class TestBuiltins:
    def test_now_is_aware(self):
        value = run("producer", "now")
        assert isinstance(value, datetime)
        assert value.tzinfo is not None

    def test_timestamp_is_millis(self):
        assert run("producer", "timestamp") > 1_600_000_000_000

    def test_uuid_producer(self):
        value = run("producer", "uuid")
        assert run("validator", "uuid", value) is True

    def test_string_transforms_skip_non_strings(self):
        assert run("transform", "lowercase", "ABC") == "abc"
        assert run("transform", "uppercase", "abc") == "ABC"
        assert run("transform", "trim", "  a ") == "a"
        assert run("transform", "lowercase", 5) == 5

    def test_email(self):
        assert run("validator", "email", "ada@example.com") is True
        assert run("validator", "email", "not-an-email") == "must be a valid email address"
        assert run("validator", "email", None) is True

    def test_url(self):
        assert run("validator", "url", "https://example.com/x") is True
        assert isinstance(run("validator", "url", "example"), str)

    def test_numeric_validators(self):
        assert run("validator", "positive", 1) is True
        assert run("validator", "positive", 0) == "must be greater than 0"
        assert run("validator", "nonNegative", 0) is True
        assert run("validator", "nonNegative", -1) == "must not be negative"
        assert run("validator", "positive", "x") == "must be a number"

    def test_not_empty(self):
        assert run("validator", "notEmpty", "  ") == "must not be empty"
        assert run("validator", "notEmpty", []) == "must not be empty"
        assert run("validator", "notEmpty", "a") is True
