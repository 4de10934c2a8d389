"""Tests for the feature gate and denial tracking."""
from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from nlweb_licensing.app.features import FeatureGateError, Principal, TierMatrix
from nlweb_licensing.app.licensing import ReasonCode, Tier

FREE_FEATURES = [
    "api_endpoint",
    "search_shortcode",
    "admin_interface",
    "schema_org_responses",
    "query_enhancement",
    "basic_caching",
    "security_features",
    "mobile_responsive",
]


@pytest.fixture
def gate(licensed_services):
    return licensed_services.gate


@pytest.fixture
def admin() -> Principal:
    return Principal(principal_id="admin-1", is_administrator=True)


@pytest.fixture
def editor() -> Principal:
    return Principal(principal_id="editor-1", capabilities=frozenset({"nlweb_vector_embeddings"}))


def test_free_features_survive_total_network_failure(gate, server, admin) -> None:
    server.offline = True

    for feature in FREE_FEATURES:
        decision = gate.check(feature, admin)
        assert decision.granted is True
        assert decision.reason_code == ReasonCode.FREE_FEATURE

    assert server.requests == []


def test_free_feature_list_matches_registry(licensed_services) -> None:
    matrix: TierMatrix = licensed_services.tier_matrix

    assert set(FREE_FEATURES) == set(matrix.get_tier_features(Tier.FREE))


def test_missing_capability_is_denied_locally(gate, server) -> None:
    visitor = Principal(principal_id="visitor")

    decision = gate.check("vector_embeddings", visitor)

    assert decision.granted is False
    assert decision.reason_code == ReasonCode.MISSING_CAPABILITY
    assert gate.get_upgrade_prompt("vector_embeddings", visitor) is None
    assert server.requests == []


def test_unknown_feature_is_denied(gate, admin, server) -> None:
    decision = gate.check("teleportation", admin)

    assert decision.reason_code == ReasonCode.UNKNOWN_FEATURE
    assert server.requests == []


def test_paid_feature_uses_principal_as_context(gate, server, editor) -> None:
    server.reply("/validate", {"access_granted": True})

    assert gate.can_access("vector_embeddings", editor) is True
    assert server.payloads("/validate")[0]["context"] == "editor-1"


def test_require_access_raises_with_required_tier(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": False, "error_code": "tier_insufficient"})

    with pytest.raises(FeatureGateError) as exc:
        gate.require_access("white_label", admin)

    error = exc.value
    assert str(error) == "This feature (White Label) requires an Enterprise license or higher."
    assert error.required_tier == Tier.ENTERPRISE
    assert error.reason == ReasonCode.TIER_INSUFFICIENT
    assert error.payload["error"] == "feature_access_denied"
    assert error.payload["prompt"]["required_tier"] == "enterprise"

    http_exc = error.to_http_exception()
    assert http_exc.status_code == 403
    assert http_exc.detail["feature"] == "white_label"


def test_require_access_during_outage_does_not_ask_for_upgrade(gate, server, admin) -> None:
    server.offline = True

    with pytest.raises(FeatureGateError) as exc:
        gate.require_access("white_label", admin)

    error = exc.value
    assert error.reason == ReasonCode.SERVER_ERROR
    assert str(error) == (
        "License validation for White Label is temporarily unavailable. Please try again shortly."
    )
    assert error.required_tier == Tier.ENTERPRISE
    assert error.prompt is None
    assert "prompt" not in error.payload


def test_require_access_without_capability(gate, server) -> None:
    visitor = Principal(principal_id="visitor")

    with pytest.raises(FeatureGateError) as exc:
        gate.require_access("vector_embeddings", visitor)

    assert exc.value.reason == ReasonCode.MISSING_CAPABILITY
    assert str(exc.value) == "You do not have permission to use Vector Embeddings."
    assert server.requests == []


def test_require_access_for_other_domain_explains_binding(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": True, "sites": ["shop.other.org"]})

    with pytest.raises(FeatureGateError) as exc:
        gate.require_access("vector_embeddings", admin)

    assert str(exc.value) == "License not valid for domain: www.example.com"


def test_require_access_returns_grant(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": True})

    assert gate.require_access("white_label", admin).granted is True


def test_upgrade_prompt_for_confirmed_denial(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": False, "error_code": "tier_insufficient"})

    prompt = gate.get_upgrade_prompt("analytics_dashboard", admin)

    assert prompt.required_tier == Tier.PRO
    assert prompt.feature_name == "Analytics Dashboard"
    assert prompt.message == (
        "The Analytics Dashboard feature requires a Pro license or higher. "
        "Upgrade now to unlock this powerful functionality!"
    )
    url = urlparse(prompt.upgrade_url)
    query = parse_qs(url.query)
    assert url.netloc == "wpnlweb.com"
    assert query["tier"] == ["pro"]
    assert query["utm_source"] == ["plugin"]
    assert query["utm_campaign"] == ["feature_gate"]


def test_no_upgrade_prompt_during_outage(gate, server, admin) -> None:
    server.offline = True

    assert gate.get_upgrade_prompt("analytics_dashboard", admin) is None


def test_no_upgrade_prompt_when_granted(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": True})

    assert gate.get_upgrade_prompt("analytics_dashboard", admin) is None


def test_denials_are_memoized_within_request_scope(gate, server, admin) -> None:
    server.reply("/validate", {"access_granted": False})

    with gate.request_scope():
        for _ in range(3):
            assert gate.can_access("white_label", admin) is False
    assert len(server.calls("/validate")) == 1

    gate.can_access("white_label", admin)
    gate.can_access("white_label", admin)
    assert len(server.calls("/validate")) == 3


def test_denial_log_is_bounded(gate, licensed_services) -> None:
    visitor = Principal(principal_id="visitor")

    for _ in range(120):
        gate.check("vector_embeddings", visitor)

    events = licensed_services.denial_log.events()
    assert len(events) == 100
    assert events[0].reason == "missing_capability"
    assert events[0].site_url == "https://www.example.com"

    stats = gate.get_access_stats()
    assert stats.total_denials == 100
    assert stats.features_denied == {"vector_embeddings": 100}
    assert stats.recent_denials == 100


def test_access_stats_recent_window(gate, clock) -> None:
    visitor = Principal(principal_id="visitor")
    gate.check("vector_embeddings", visitor)

    clock.advance(8 * 24 * 3600)
    gate.check("white_label", visitor)

    stats = gate.get_access_stats()
    assert stats.total_denials == 2
    assert stats.recent_denials == 1


def test_grants_are_not_logged(gate, admin, licensed_services) -> None:
    gate.check("api_endpoint", admin)

    assert licensed_services.denial_log.events() == []


def test_observers_see_every_decision(make_services, license_key, admin) -> None:
    seen = []

    def broken(decision) -> None:
        raise RuntimeError("observer failure")

    services = make_services(license_key=license_key, observers=[broken])
    services.gate.add_observer(lambda decision: seen.append(decision.feature_id))

    services.gate.check("api_endpoint", admin)
    services.gate.check("teleportation", admin)

    assert seen == ["api_endpoint", "teleportation"]


def test_capability_names_use_prefix(gate) -> None:
    assert gate.capability_for("white_label") == "nlweb_white_label"
