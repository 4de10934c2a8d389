"""Registry of gated features and their groups."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from ..licensing.models import Tier
from .catalog import CORE_FEATURES, FEATURE_GROUPS
from .models import FeatureDescriptor, FeatureGroup

logger = logging.getLogger(__name__)


class FeatureProvider(Protocol):
    """Extension point for collaborators contributing their own features."""

    def provide_features(self) -> Iterable[FeatureDescriptor]:
        ...


class FeatureRegistry:
    """Maps feature identifiers to descriptors.

    Built once at startup from the core catalog and every
    :class:`FeatureProvider`; later registrations are still accepted so
    collaborators loaded afterwards can extend the catalog.
    """

    def __init__(
        self,
        features: Iterable[FeatureDescriptor] = CORE_FEATURES,
        *,
        groups: Iterable[FeatureGroup] = FEATURE_GROUPS,
        providers: Iterable[FeatureProvider] = (),
    ) -> None:
        self._features: Dict[str, FeatureDescriptor] = {}
        self._groups: Dict[str, FeatureGroup] = {group.id: group for group in groups}
        self._lock = Lock()
        for descriptor in features:
            self.register_feature(descriptor.id, descriptor)
        for provider in providers:
            for descriptor in provider.provide_features():
                self.register_feature(descriptor.id, descriptor)

    def register_feature(
        self,
        feature_id: str,
        config: Union[FeatureDescriptor, Mapping[str, Any]],
    ) -> bool:
        """Register a feature; returns ``False`` for duplicates or invalid data."""

        if isinstance(config, FeatureDescriptor):
            data = config.model_dump()
        else:
            data = dict(config)
        data["id"] = feature_id
        try:
            descriptor = FeatureDescriptor.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Rejected feature registration",
                extra={"feature": feature_id, "errors": exc.error_count()},
            )
            return False

        with self._lock:
            if descriptor.id in self._features:
                logger.warning("Duplicate feature registration", extra={"feature": descriptor.id})
                return False
            self._features[descriptor.id] = descriptor
        return True

    def get_feature_info(self, feature_id: str) -> Optional[FeatureDescriptor]:
        return self._features.get(feature_id)

    def is_registered_feature(self, feature_id: str) -> bool:
        return feature_id in self._features

    def get_all_features(self) -> Dict[str, FeatureDescriptor]:
        return dict(self._features)

    def get_features_by_group(self, group: str) -> Dict[str, FeatureDescriptor]:
        return {key: value for key, value in self._features.items() if value.group == group}

    def get_features_by_tier(self, tier: Tier) -> Dict[str, FeatureDescriptor]:
        """Features whose minimum tier is exactly ``tier``."""

        return {key: value for key, value in self._features.items() if value.required_tier == tier}

    def get_groups(self) -> List[FeatureGroup]:
        return sorted(self._groups.values(), key=lambda group: (-group.priority, group.id))

    def get_feature_tier_requirement(self, feature_id: str) -> Optional[Tier]:
        descriptor = self._features.get(feature_id)
        return descriptor.required_tier if descriptor else None

    def __len__(self) -> int:
        return len(self._features)


__all__ = ["FeatureProvider", "FeatureRegistry"]
