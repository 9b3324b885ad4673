from datetime import timedelta

import pytest

from ratelimiter_client import Operator, RateLimit, RateRule, ValidationFailure


def test_rule_of_builds_single_expression_rule():
    rule = RateRule.of("login", "5/m", "web.request.user.role=GUEST", parent_id="site")
    assert rule.id == "login"
    assert rule.parent_id == "site"
    assert rule.operator is Operator.NONE
    assert [r.rate for r in rule.sub_rates] == ["5/m"]
    assert rule.sub_rates[0].condition == "web.request.user.role=GUEST"
    rule.validate_rule()


@pytest.mark.parametrize("rate_id", ["", None])
def test_empty_id_fails(rate_id):
    rule = RateRule(id=rate_id, sub_rates=[RateLimit(rate="1/s")])
    with pytest.raises(ValidationFailure):
        rule.validate_rule()


def test_no_sub_rates_fails():
    with pytest.raises(ValidationFailure):
        RateRule(id="x").validate_rule()


def test_many_sub_rates_need_operator():
    rates = [RateLimit(rate="1/s"), RateLimit(rate="50/m")]
    with pytest.raises(ValidationFailure):
        RateRule(id="x", sub_rates=rates).validate_rule()
    RateRule(id="x", operator=Operator.OR, sub_rates=rates).validate_rule()


def test_limit_with_rate_and_permits_fails():
    with pytest.raises(ValidationFailure):
        RateLimit(rate="1/s", permits=3).validate_limit()


def test_limit_with_neither_fails():
    with pytest.raises(ValidationFailure):
        RateLimit().validate_limit()


def test_limit_with_permits_and_duration_is_valid():
    RateLimit(permits=10, duration=timedelta(minutes=1)).validate_limit()


@pytest.mark.parametrize("rate", ["5/m", "99/s", "1/h", "7/d"])
def test_rate_expression_grammar_accepts(rate):
    RateLimit(rate=rate).validate_limit()


@pytest.mark.parametrize("rate", ["5 per minute", "5/w", "/s", "x/s", "5/"])
def test_rate_expression_grammar_rejects(rate):
    with pytest.raises(ValidationFailure):
        RateLimit(rate=rate).validate_limit()


def test_factory_class_must_resolve():
    RateLimit(rate="1/s", factory_class="collections.OrderedDict").validate_limit()
    with pytest.raises(ValidationFailure):
        RateLimit(rate="1/s", factory_class="no.such.module.Factory").validate_limit()
    with pytest.raises(ValidationFailure):
        RateLimit(rate="1/s", factory_class="collections.NoSuchThing").validate_limit()


def test_wire_format_uses_service_field_names():
    wire = RateRule.of("login", "5/m", "x = 1", parent_id="site").to_wire()
    assert wire["parentId"] == "site"
    assert wire["operator"] == "NONE"
    assert wire["rates"][0]["rate"] == "5/m"
    assert wire["rates"][0]["when"] == "x = 1"
    assert "factoryClass" in wire["rates"][0]
    assert "when" not in wire


def test_rule_parses_nulls_from_service():
    rule = RateRule.model_validate({"id": "x", "operator": None, "rates": None, "when": None})
    assert rule.operator is Operator.NONE
    assert rule.sub_rates == []
    assert rule.condition is None


def test_rate_expression_is_trimmed_before_it_is_sent():
    rule = RateRule.of("login", " 5/m ")
    rule.validate_rule()
    assert rule.sub_rates[0].rate == "5/m"
    assert rule.to_wire()["rates"][0]["rate"] == "5/m"
