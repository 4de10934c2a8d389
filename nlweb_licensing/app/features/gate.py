"""Single decision point for gated features."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlencode

from ...config import LicensingConfig
from ..licensing.models import AccessDecision, DecisionState, ReasonCode, Tier
from ..licensing.validator import LicenseValidator
from .events import DecisionObserver, DenialEventLog
from .exceptions import FeatureGateError
from .models import AccessStats, Principal, UpgradePrompt
from .registry import FeatureRegistry
from .tiers import TierMatrix

logger = logging.getLogger(__name__)

_DenialMemo = Dict[Tuple[str, str], AccessDecision]
_denial_memo: ContextVar[Optional[_DenialMemo]] = ContextVar("nlweb_denial_memo", default=None)


class FeatureGate:
    """Combines capability checks, the tier matrix and the validator.

    Order of evaluation: the principal's capability, registration of the
    feature, the free-tier shortcut, then the license validator. Denials are
    memoized only inside :meth:`request_scope`.
    """

    def __init__(
        self,
        config: LicensingConfig,
        registry: FeatureRegistry,
        tier_matrix: TierMatrix,
        validator: LicenseValidator,
        denial_log: DenialEventLog,
        *,
        observers: Iterable[DecisionObserver] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._tiers = tier_matrix
        self._validator = validator
        self._denial_log = denial_log
        self._observers: List[DecisionObserver] = list(observers)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def add_observer(self, observer: DecisionObserver) -> None:
        self._observers.append(observer)

    def capability_for(self, feature: str) -> str:
        return f"{self._config.capability_prefix}{feature}"

    @contextmanager
    def request_scope(self) -> Iterator[None]:
        token = _denial_memo.set({})
        try:
            yield
        finally:
            _denial_memo.reset(token)

    def check(self, feature: str, principal: Principal) -> AccessDecision:
        memo = _denial_memo.get()
        memo_key = (feature, principal.principal_id)
        if memo is not None and memo_key in memo:
            return memo[memo_key]

        decision = self._evaluate(feature, principal)

        if not decision.granted:
            if memo is not None:
                memo[memo_key] = decision
            self._denial_log.record(decision)
            logger.info(
                "Feature access denied",
                extra={
                    "feature": feature,
                    "principal_id": principal.principal_id,
                    "reason": decision.reason_code.value,
                },
            )

        for observer in list(self._observers):
            try:
                observer(decision)
            except Exception:
                logger.exception("Decision observer failed", extra={"feature": feature})
        return decision

    def can_access(self, feature: str, principal: Principal) -> bool:
        return self.check(feature, principal).granted

    def require_access(self, feature: str, principal: Principal) -> AccessDecision:
        """Return the granting decision or raise :class:`FeatureGateError`."""

        decision = self.check(feature, principal)
        if decision.granted:
            return decision

        descriptor = self._registry.get_feature_info(feature)
        required_tier = descriptor.required_tier if descriptor else Tier.PRO
        feature_name = descriptor.name if descriptor else feature
        raise FeatureGateError(
            feature=feature,
            message=self._denial_message(decision, feature_name, required_tier),
            reason=decision.reason_code,
            required_tier=required_tier,
            prompt=self._build_prompt(decision, principal),
        )

    def get_upgrade_prompt(self, feature: str, principal: Principal) -> Optional[UpgradePrompt]:
        """Prompt for a confirmed denial; ``None`` when access is granted or unconfirmed."""

        decision = self.check(feature, principal)
        return self._build_prompt(decision, principal)

    def get_access_stats(self) -> AccessStats:
        return self._denial_log.get_access_stats()

    def upgrade_url(self, tier: Tier) -> str:
        query = urlencode(
            {
                "tier": tier.value,
                "utm_source": "plugin",
                "utm_medium": "upgrade_prompt",
                "utm_campaign": "feature_gate",
            }
        )
        return f"{self._config.upgrade_base_url}?{query}"

    def _evaluate(self, feature: str, principal: Principal) -> AccessDecision:
        if not principal.has_capability(self.capability_for(feature)):
            return self._local_decision(
                feature, principal, DecisionState.DENIED, ReasonCode.MISSING_CAPABILITY
            )
        if not self._registry.is_registered_feature(feature):
            return self._local_decision(
                feature, principal, DecisionState.DENIED, ReasonCode.UNKNOWN_FEATURE
            )
        if self._tiers.is_free_feature(feature):
            return self._local_decision(
                feature, principal, DecisionState.GRANTED, ReasonCode.FREE_FEATURE
            )
        return self._validator.validate_feature_access(
            feature,
            context=principal.principal_id,
            principal_id=principal.principal_id,
        )

    def _local_decision(
        self,
        feature: str,
        principal: Principal,
        state: DecisionState,
        reason: ReasonCode,
    ) -> AccessDecision:
        return AccessDecision(
            feature_id=feature,
            principal_id=principal.principal_id,
            granted=state == DecisionState.GRANTED,
            state=state,
            reason_code=reason,
            timestamp=self._clock(),
        )

    def _build_prompt(self, decision: AccessDecision, principal: Principal) -> Optional[UpgradePrompt]:
        if not decision.is_confirmed_denial:
            return None
        descriptor = self._registry.get_feature_info(decision.feature_id)
        if descriptor is None:
            return None
        required_tier = descriptor.required_tier
        return UpgradePrompt(
            feature=decision.feature_id,
            feature_name=descriptor.name,
            current_tier=self._validator.get_tier(),
            required_tier=required_tier,
            upgrade_url=self.upgrade_url(required_tier),
            message=(
                f"The {descriptor.name} feature requires {required_tier.label_with_article} "
                "license or higher. Upgrade now to unlock this powerful functionality!"
            ),
        )

    @staticmethod
    def _denial_message(decision: AccessDecision, feature_name: str, required_tier: Tier) -> str:
        reason = decision.reason_code
        if reason == ReasonCode.DOMAIN_MISMATCH and decision.message:
            return decision.message
        if decision.is_confirmed_denial:
            return (
                f"This feature ({feature_name}) requires "
                f"{required_tier.label_with_article} license or higher."
            )
        if reason == ReasonCode.MISSING_CAPABILITY:
            return f"You do not have permission to use {feature_name}."
        if reason == ReasonCode.UNKNOWN_FEATURE:
            return f"Unknown feature: {feature_name}."
        if reason == ReasonCode.RATE_LIMITED:
            return f"Too many license checks for {feature_name}. Please try again shortly."
        return (
            f"License validation for {feature_name} is temporarily unavailable. "
            "Please try again shortly."
        )


__all__ = ["FeatureGate"]
