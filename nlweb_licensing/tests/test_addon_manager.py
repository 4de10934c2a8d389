"""Tests for add-on activation and credit metering."""
from __future__ import annotations

import json
from typing import Dict, List

import httpx
import pytest

from nlweb_licensing.app.addons import AddonEvent, AddonEventType
from nlweb_licensing.app.addons.manager import ACTIVE_ADDONS_OPTION
from nlweb_licensing.app.licensing import Tier

ADDON_KEY = "ADDON-AGENTS-0001"


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[AddonEvent] = []

    def log(self, event: AddonEvent) -> None:
        self.events.append(event)

    def types(self) -> List[AddonEventType]:
        return [event.event_type for event in self.events]


class AddonLicenseServer:
    """Serves base and add-on license checks from one mutable state."""

    def __init__(self, server, base_key: str) -> None:
        self.base_key = base_key
        self.base_tier = "pro"
        self.addon_keys: Dict[str, str] = {}
        self.balance = 50
        server.on("/check", self.check)
        server.on("/activate", self.activate)
        server.on("/deactivate", self.deactivate)
        server.on("/credits/use", self.use_credits)

    def check(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["license_key"] == self.base_key:
            return httpx.Response(200, json={"success": True, "license_status": "valid", "tier": self.base_tier})
        if body.get("item_name") in self.addon_keys and self.addon_keys[body["item_name"]] == body["license_key"]:
            return httpx.Response(200, json={"success": True, "credit_balance": self.balance})
        return httpx.Response(200, json={"success": False, "license_status": "invalid"})

    def activate(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.addon_keys[body["item_name"]] = body["license_key"]
        return httpx.Response(200, json={"success": True, "credit_balance": self.balance})

    def deactivate(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.addon_keys.pop(body["item_name"], None)
        return httpx.Response(200, json={"success": True})

    def use_credits(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["cost"] > self.balance:
            return httpx.Response(200, json={"success": False, "balance": self.balance})
        self.balance -= body["cost"]
        return httpx.Response(200, json={"success": True, "balance": self.balance})


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def licensed(make_services, license_key, events):
    return make_services(license_key=license_key, addon_event_logger=events)


@pytest.fixture
def remote(server, license_key) -> AddonLicenseServer:
    return AddonLicenseServer(server, license_key)


@pytest.fixture
def addons(licensed, remote):
    manager = licensed.addons
    assert manager.activate_addon("automation_agents", ADDON_KEY).success is True
    return manager


def test_activation_requires_base_tier(make_services, server, events) -> None:
    manager = make_services(addon_event_logger=events).addons

    result = manager.activate_addon("automation_agents", ADDON_KEY)

    assert result.success is False
    assert result.error_code == "tier_insufficient"
    assert result.message == "Automation Agents requires a Pro license or higher."
    assert server.calls("/activate") == []
    assert events.events == []


def test_activation_rejects_unknown_addon_and_empty_key(licensed, remote) -> None:
    assert licensed.addons.activate_addon("time_travel", ADDON_KEY).message == "Invalid addon identifier."
    assert licensed.addons.activate_addon("automation_agents", " ").message == "License key is required."


def test_activation_stores_encrypted_key(addons, store, events, server) -> None:
    record = store.get("nlweb_addon_license_automation_agents")

    assert ADDON_KEY not in record["license_key"]
    assert addons.has_addon("automation_agents") is True
    assert addons.get_credit_balance("automation_agents") == 50
    assert events.types() == [AddonEventType.ACTIVATED]
    assert server.payloads("/activate")[0]["item_name"] == "NLWeb Automation Agents"


def test_active_addons_are_cached(addons, server) -> None:
    addons.get_active_addons()
    addons.get_active_addons()
    addons.has_addon("automation_agents")

    addon_checks = [payload for payload in server.payloads("/check") if payload["license_key"] == ADDON_KEY]
    assert len(addon_checks) == 1


def test_addon_access_requires_base_tier(addons) -> None:
    assert addons.validate_addon_access("automation_agents") is True
    assert addons.validate_addon_access("automation_agents", base_tier=Tier.FREE) is False
    assert addons.validate_addon_access("time_travel") is False


def test_consume_is_all_or_nothing(addons, server, events) -> None:
    assert addons.consume_credits("automation_agents", "custom_job", cost=60) is False
    assert addons.get_credit_balance("automation_agents") == 50
    assert server.calls("/credits/use") == []
    assert events.events[-1].event_type == AddonEventType.INSUFFICIENT_CREDITS
    assert events.events[-1].balance == 50

    assert addons.consume_credits("automation_agents", "custom_job", cost=50) is True
    assert addons.get_credit_balance("automation_agents") == 0
    assert events.events[-1].event_type == AddonEventType.CREDITS_CONSUMED


def test_consume_uses_catalog_cost(addons, server) -> None:
    assert addons.consume_credits("automation_agents", "content_generation") is True

    payload = server.payloads("/credits/use")[0]
    assert payload["cost"] == 10
    assert payload["context"] == "content_generation"
    assert payload["license_key"] == ADDON_KEY
    assert addons.get_credit_balance("automation_agents") == 40


def test_server_rejection_syncs_balance(addons, remote) -> None:
    remote.balance = 5

    assert addons.consume_credits("automation_agents", "bulk_operation", cost=20) is False
    assert addons.get_credit_balance("automation_agents") == 5


def test_failed_debit_leaves_balance_untouched(addons, server, events) -> None:
    server.offline = True

    assert addons.consume_credits("automation_agents", "bulk_operation") is False
    server.offline = False
    assert addons.get_credit_balance("automation_agents") == 50
    assert events.types()[-1] == AddonEventType.DEBIT_FAILED


@pytest.mark.parametrize("balance", ["n/a", [40], True])
def test_unreadable_debit_balance_fails_the_debit(addons, server, events, balance) -> None:
    server.reply("/credits/use", {"success": True, "balance": balance})

    assert addons.consume_credits("automation_agents", "content_generation") is False
    assert addons.get_credit_balance("automation_agents") == 50
    assert events.types()[-1] == AddonEventType.DEBIT_FAILED


def test_rejection_without_balance_is_not_insufficient_credits(addons, server, events) -> None:
    server.reply("/credits/use", {"success": False, "message": "License revoked"})

    assert addons.consume_credits("automation_agents", "content_generation") is False
    assert addons.get_credit_balance("automation_agents") == 50
    assert AddonEventType.INSUFFICIENT_CREDITS not in events.types()
    assert events.types()[-1] == AddonEventType.DEBIT_FAILED


def test_rejection_with_sufficient_balance_is_a_failed_debit(addons, server, events) -> None:
    server.reply("/credits/use", {"success": False, "balance": 45, "error_code": "invalid"})

    assert addons.consume_credits("automation_agents", "content_generation") is False
    assert addons.get_credit_balance("automation_agents") == 45
    assert events.types()[-1] == AddonEventType.DEBIT_FAILED


def test_unpriced_operation_is_free(addons, server) -> None:
    assert addons.consume_credits("automation_agents", "unknown_operation") is True
    assert server.calls("/credits/use") == []


def test_feature_based_addon_does_not_meter(licensed, remote, server) -> None:
    assert licensed.addons.activate_addon("advanced_analytics", "ADDON-ANALYTICS-0001").success is True

    assert licensed.addons.consume_credits("advanced_analytics", "custom_reports", cost=5) is True
    assert licensed.addons.get_credit_balance("advanced_analytics") == 0
    assert server.calls("/credits/use") == []


def test_inactive_addon_cannot_consume(licensed, remote) -> None:
    assert licensed.addons.consume_credits("ai_content_generation", "generate_post") is False


def test_deactivation_removes_local_state_when_offline(addons, server, store, events) -> None:
    server.offline = True

    result = addons.deactivate_addon("automation_agents")

    assert result.success is True
    assert result.remote_confirmed is False
    assert store.get("nlweb_addon_license_automation_agents") is None
    assert store.get("nlweb_addon_credits_automation_agents") is None
    assert addons.has_addon("automation_agents") is False
    assert events.types()[-1] == AddonEventType.DEACTIVATED


def test_deactivation_confirmed_by_server(addons, remote) -> None:
    result = addons.deactivate_addon("automation_agents")

    assert result.remote_confirmed is True
    assert remote.addon_keys == {}
    assert addons.has_addon("automation_agents") is False


def test_license_change_clears_addon_cache(addons, licensed, remote, store) -> None:
    addons.get_active_addons()
    assert store.get(ACTIVE_ADDONS_OPTION) is not None

    remote.base_tier = "enterprise"
    licensed.validator.background_sync()

    assert store.get(ACTIVE_ADDONS_OPTION) is None


def test_pricing_applies_agency_discounts(licensed) -> None:
    agents = licensed.addons.get_addon_pricing("automation_agents", Tier.AGENCY)
    analytics = licensed.addons.get_addon_pricing("advanced_analytics", Tier.AGENCY)
    pro = licensed.addons.get_addon_pricing("advanced_analytics")

    assert agents.discount == 20
    assert agents.final_price == pytest.approx(79.2)
    assert analytics.discount == 15
    assert analytics.final_price == pytest.approx(84.15)
    assert pro.final_price == 99
    assert pro.purchase_url == (
        "https://wpnlweb.com/addons/advanced_analytics/"
        "?tier=pro&utm_source=plugin&utm_medium=addon_prompt&utm_campaign=addon_purchase"
    )
    assert licensed.addons.get_addon_pricing("time_travel") is None
