"""Tests for rate limit rules, policy resolution and the policy store."""

import pytest

from app.adapters.rate_limit.policy import (
    EndpointPattern,
    RateLimitPolicy,
    RateLimitPolicyStore,
    RateLimitRule,
    WindowMode,
    parse_period,
)
from app.core.config import RateLimitRuleConfig, RateLimitSettings
from app.core.errors import ValidationAppError


@pytest.mark.parametrize(
    ("period", "seconds"),
    [("1s", 1), ("5m", 300), ("1h", 3600), ("1d", 86400), (" 2M ", 120)],
)
def test_parse_period(period: str, seconds: float) -> None:
    assert parse_period(period) == seconds


@pytest.mark.parametrize("period", ["", "5", "m", "0s", "5w", "-1m"])
def test_parse_period_rejects_invalid(period: str) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        parse_period(period)
    assert exc_info.value.code == "invalid_rate_limit_period"


def test_rule_limit_must_be_positive() -> None:
    with pytest.raises(ValidationAppError):
        RateLimitRule.create("*", 0, "1m")


class TestEndpointPattern:
    def test_catch_all(self) -> None:
        pattern = EndpointPattern.parse("*")
        assert pattern.is_catch_all
        assert pattern.matches("DELETE", "/anything")

    def test_verb_and_path(self) -> None:
        pattern = EndpointPattern.parse("get:/api/companies")
        assert pattern.matches("GET", "/api/companies/")
        assert pattern.matches("get", "/API/Companies")
        assert not pattern.matches("POST", "/api/companies")
        assert not pattern.matches("GET", "/api/companies/1")

    def test_bare_path_glob_matches_any_verb(self) -> None:
        pattern = EndpointPattern.parse("/api/companies/*")
        assert pattern.matches("PUT", "/api/companies/abc")
        assert pattern.matches("GET", "/api/companies/abc/employees")

    def test_specificity_order(self) -> None:
        catch_all = EndpointPattern.parse("*")
        glob = EndpointPattern.parse("*:/api/*")
        literal = EndpointPattern.parse("*:/api/companies")
        with_verb = EndpointPattern.parse("get:/api/companies")

        assert catch_all.specificity < glob.specificity < literal.specificity
        assert literal.specificity < with_verb.specificity


class TestPolicy:
    def test_most_specific_general_rule_wins(self) -> None:
        policy = RateLimitPolicy(
            general_rules=(
                RateLimitRule.create("*", 100, "5m"),
                RateLimitRule.create("get:/api/companies", 10, "1m"),
            )
        )

        assert policy.resolve_rule("c", "GET", "/api/companies").limit == 10
        assert policy.resolve_rule("c", "POST", "/api/companies").limit == 100

    def test_client_override_wins(self) -> None:
        general = RateLimitRule.create("get:/api/companies", 10, "1m")
        override = RateLimitRule.create("*", 1000, "1m")
        policy = RateLimitPolicy(
            general_rules=(general,),
            client_rules={"partner": (override,)},
        )

        assert policy.resolve_rule("partner", "GET", "/api/companies") is override
        assert policy.resolve_rule("someone", "GET", "/api/companies") is general

    def test_ties_keep_first_configured_rule(self) -> None:
        first = RateLimitRule.create("*", 1, "1m")
        second = RateLimitRule.create("*", 2, "1m")
        policy = RateLimitPolicy(general_rules=(first, second))

        assert policy.resolve_rule("c", "GET", "/") is first

    def test_no_matching_rule(self) -> None:
        policy = RateLimitPolicy(general_rules=(RateLimitRule.create("get:/api/x", 1, "1m"),))
        assert policy.resolve_rule("c", "GET", "/api/y") is None

    def test_whitelists(self) -> None:
        policy = RateLimitPolicy(
            client_whitelist=frozenset({"trusted"}),
            endpoint_whitelist=(EndpointPattern.parse("get:/api/status"),),
        )

        assert policy.is_whitelisted("trusted", "POST", "/api/companies")
        assert policy.is_whitelisted("anyone", "GET", "/api/status")
        assert not policy.is_whitelisted("anyone", "GET", "/api/companies")

    def test_from_settings(self) -> None:
        cfg = RateLimitSettings(
            general_rules=[RateLimitRuleConfig(endpoint="*", limit=5, period="1m")],
            client_rules={"vip": [RateLimitRuleConfig(endpoint="*", limit=50, period="1m")]},
            client_whitelist=["ops"],
            window_mode="rolling",
        )

        policy = RateLimitPolicy.from_settings(cfg)

        assert policy.window_mode is WindowMode.ROLLING
        assert policy.resolve_rule("vip", "GET", "/").limit == 50
        assert policy.is_whitelisted("ops", "GET", "/")


class TestPolicyStore:
    def test_replace_swaps_snapshot(self) -> None:
        store = RateLimitPolicyStore()
        before = store.snapshot()
        replacement = RateLimitPolicy(general_rules=(RateLimitRule.create("*", 1, "1m"),))

        store.replace(replacement)

        assert store.snapshot() is replacement
        assert before.general_rules == ()
        assert store.revision == 1

    def test_set_client_rules_is_copy_on_write(self) -> None:
        store = RateLimitPolicyStore(
            RateLimitPolicy(general_rules=(RateLimitRule.create("*", 5, "1m"),))
        )
        held = store.snapshot()

        store.set_client_rules("vip", [RateLimitRule.create("*", 500, "1m")])

        assert "vip" not in held.client_rules
        assert store.snapshot().resolve_rule("vip", "GET", "/").limit == 500
        assert store.snapshot().general_rules == held.general_rules
