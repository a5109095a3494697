"""Schema upgrades for the profile store document.

Each step maps one version tag to the next; `migrate` walks the chain until
the document carries CURRENT_VERSION.
"""

import copy
import logging
from typing import Callable, Dict, List, Tuple

from .errors import UnsupportedVersion

logger = logging.getLogger(__name__)

CURRENT_VERSION = "2.0"
LEGACY_VERSION = "1.0"


def _v1_to_v2(data: dict) -> dict:
    """Move flat 1.0 profile maps under groups.<group>.profiles."""
    old_groups = data.get("groups") if isinstance(data.get("groups"), dict) else {}
    old_defaults = data.get("default_profile") if isinstance(data.get("default_profile"), dict) else {}

    direct_profiles = dict(old_groups.get("direct") or {})
    # Oldest layout: a single top-level profile map plus "default".
    for name, profile in (data.get("profiles") or {}).items():
        direct_profiles.setdefault(name, profile)

    router_profiles = {}
    for name, profile in (old_groups.get("router") or {}).items():
        profile = dict(profile)
        if "router_rules" not in profile:
            profile["router_rules"] = profile.pop("router", {})
        profile.setdefault("name", name)
        router_profiles[name] = profile

    direct_default = old_defaults.get("direct") or data.get("default")
    router_default = old_defaults.get("router")

    return {
        "version": CURRENT_VERSION,
        "groups": {
            "direct": {
                "profiles": direct_profiles,
                "default_profile": direct_default if direct_default in direct_profiles else None,
            },
            "router": {
                "profiles": router_profiles,
                "default_profile": router_default if router_default in router_profiles else None,
            },
        },
        "providers": copy.deepcopy(data.get("providers") or {}),
    }


MIGRATIONS: List[Tuple[str, Callable[[dict], dict]]] = [
    (LEGACY_VERSION, _v1_to_v2),
]

_STEPS: Dict[str, Callable[[dict], dict]] = dict(MIGRATIONS)


def detect_version(data: dict) -> str:
    # Releases before versioning was introduced wrote no tag at all.
    version = data.get("version")
    if version is None:
        return LEGACY_VERSION
    return str(version)


def migrate(data: dict) -> Tuple[dict, bool]:
    """Return (document in the current shape, whether anything changed)."""
    version = detect_version(data)
    if version == CURRENT_VERSION:
        return data, False
    if version not in _STEPS:
        raise UnsupportedVersion(f"Unsupported config version '{version}' (this release understands up to {CURRENT_VERSION})")

    migrated = copy.deepcopy(data)
    while version != CURRENT_VERSION:
        step = _STEPS.get(version)
        if step is None:
            raise UnsupportedVersion(f"No migration path from config version '{version}'")
        logger.info("Migrating profile store from version %s", version)
        migrated = step(migrated)
        version = detect_version(migrated)
    return migrated, True
