"""
Feature flags for the resort operations back-end.

Flags default to OFF so a fresh deployment behaves like the plain service.

Usage:
    from resortops.core.feature_flags import is_enabled

    if is_enabled("CORRELATION_IDS_ENABLED"):
        ...
"""

import os
from typing import Dict, Optional


class FeatureFlags:
    """
    Feature flag management with environment-based configuration.

    Enable via environment variables: FEATURE_<FLAG_NAME>=true
    """

    REGISTRY: Dict[str, str] = {
        # Observability
        "CORRELATION_IDS_ENABLED": "Add correlation IDs to all requests",
        "PROMETHEUS_METRICS": "Expose the /metrics endpoint",
    }

    def __init__(self):
        self._cache: Dict[str, bool] = {}
        self._load_from_environment()

    def _load_from_environment(self) -> None:
        """Load flag values from environment variables."""
        for flag_name in self.REGISTRY:
            env_value = os.environ.get(f"FEATURE_{flag_name}", "").lower()
            # Only enable if explicitly set to 'true', '1', or 'yes'
            self._cache[flag_name] = env_value in ("true", "1", "yes")

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a flag is enabled. Unknown flags are always off."""
        if flag_name not in self.REGISTRY:
            return False
        return self._cache.get(flag_name, False)

    def override(self, flag_name: str, value: bool) -> None:
        """Override a flag value (for testing only)."""
        if flag_name in self.REGISTRY:
            self._cache[flag_name] = value

    def reset(self) -> None:
        """Reset all flags to environment values (for testing)."""
        self._load_from_environment()


# Global singleton instance
_flags_instance: Optional[FeatureFlags] = None


def get_flags() -> FeatureFlags:
    """Get the global FeatureFlags instance."""
    global _flags_instance
    if _flags_instance is None:
        _flags_instance = FeatureFlags()
    return _flags_instance


def is_enabled(flag_name: str) -> bool:
    """Convenience function to check if a flag is enabled."""
    return get_flags().is_enabled(flag_name)
