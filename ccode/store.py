from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import CorruptConfig, NotFound, ProviderInUse
from .jsonio import atomic_write_json
from .migrations import CURRENT_VERSION, migrate
from .models import DIRECT_GROUP, GROUPS, ROUTER_GROUP, DirectProfile, Provider, RouterProfile, normalize_group
from .validation import check_unique, validate_direct_profile, validate_provider, validate_router_profile

logger = logging.getLogger(__name__)

Profile = Union[DirectProfile, RouterProfile]


@dataclass
class ProfileGroup:
    """Insertion-ordered profiles of one kind plus the group's default."""

    profiles: Dict[str, Profile] = field(default_factory=dict)
    default_profile: Optional[str] = None


class Store:
    """In-memory profile store; load/save move it to and from disk."""

    def __init__(
        self,
        version: str = CURRENT_VERSION,
        groups: Optional[Dict[str, ProfileGroup]] = None,
        providers: Optional[Dict[str, Provider]] = None,
        path: Optional[Path] = None,
    ):
        self.version = version
        self.groups = groups or {name: ProfileGroup() for name in GROUPS}
        self.providers = providers if providers is not None else {}
        self.path = path
        self.dirty = False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Store":
        """Read the store at `path`; a missing file yields an empty store."""
        path = Path(path)
        if not path.exists():
            logger.debug("No profile store at %s, starting empty", path)
            return cls(path=path)

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptConfig(f"Failed to parse profile store: {exc}", path=str(path)) from exc

        if not isinstance(data, dict):
            raise CorruptConfig("Profile store must contain a JSON object", path=str(path))

        try:
            data, migrated = migrate(data)
            store = cls.from_dict(data)
        except (AttributeError, TypeError, ValueError) as exc:
            raise CorruptConfig(f"Profile store has an invalid layout: {exc}", path=str(path)) from exc
        store.path = path
        store.dirty = migrated
        return store

    def save(self, path: Union[str, Path, None] = None) -> None:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No path given for saving the profile store")
        atomic_write_json(target, self.to_dict(), mode=0o600)
        self.path = target
        self.dirty = False
        logger.debug("Saved profile store to %s", target)

    @classmethod
    def from_dict(cls, data: dict) -> "Store":
        raw_groups = data.get("groups") or {}
        groups = {}
        for group_name in GROUPS:
            raw = raw_groups.get(group_name) or {}
            profiles: Dict[str, Profile] = {}
            for name, profile_data in (raw.get("profiles") or {}).items():
                if group_name == DIRECT_GROUP:
                    profiles[name] = DirectProfile.from_dict(profile_data)
                else:
                    profiles[name] = RouterProfile.from_dict(profile_data, name=name)
            default = raw.get("default_profile")
            groups[group_name] = ProfileGroup(profiles, default if default in profiles else None)

        providers = {}
        raw_providers = data.get("providers") or {}
        # Accept both the mapping written by this tool and a bare list.
        if isinstance(raw_providers, list):
            raw_providers = {item.get("name", ""): item for item in raw_providers}
        for name, provider_data in raw_providers.items():
            provider = Provider.from_dict(provider_data)
            provider.name = provider.name or name
            providers[provider.name] = provider

        return cls(version=str(data.get("version") or CURRENT_VERSION), groups=groups, providers=providers)

    def to_dict(self) -> dict:
        groups = {}
        for group_name, group in self.groups.items():
            groups[group_name] = {
                "profiles": {name: profile.to_dict() for name, profile in group.profiles.items()},
                "default_profile": group.default_profile,
            }
        return {
            "version": self.version,
            "groups": groups,
            "providers": {name: provider.to_dict() for name, provider in self.providers.items()},
        }

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def group(self, group: str) -> ProfileGroup:
        key = normalize_group(group)
        if key not in self.groups:
            raise NotFound(f"Unknown group '{group}' (expected one of: {', '.join(GROUPS)})", group=group)
        return self.groups[key]

    def _validate(self, group: str, name: str, profile: Profile) -> None:
        if normalize_group(group) == DIRECT_GROUP:
            if not isinstance(profile, DirectProfile):
                raise TypeError("direct group only holds DirectProfile values")
            validate_direct_profile(profile, name)
        else:
            if not isinstance(profile, RouterProfile):
                raise TypeError("router group only holds RouterProfile values")
            if not profile.name:
                profile.name = name
            validate_router_profile(profile, name)

    def add_profile(self, group: str, name: str, profile: Profile) -> None:
        target = self.group(group)
        check_unique(name, target.profiles, normalize_group(group))
        self._validate(group, name, profile)
        was_empty = not target.profiles
        target.profiles[name] = profile
        if was_empty:
            target.default_profile = name
        self.dirty = True
        logger.info("Added %s profile '%s'", normalize_group(group), name)

    def update_profile(self, group: str, name: str, profile: Profile) -> None:
        target = self.group(group)
        if name not in target.profiles:
            raise NotFound(f"Profile '{name}' not found in group '{group}'", group=group, name=name)
        self._validate(group, name, profile)
        target.profiles[name] = profile
        self.dirty = True

    def set_default(self, group: str, name: str) -> None:
        target = self.group(group)
        if name not in target.profiles:
            raise NotFound(f"Profile '{name}' not found in group '{group}'", group=group, name=name)
        target.default_profile = name
        self.dirty = True

    def remove_profile(self, group: str, name: str) -> None:
        target = self.group(group)
        if name not in target.profiles:
            raise NotFound(f"Profile '{name}' not found in group '{group}'", group=group, name=name)
        del target.profiles[name]
        if target.default_profile == name:
            target.default_profile = next(iter(target.profiles), None)
        self.dirty = True
        logger.info("Removed %s profile '%s'", normalize_group(group), name)

    def get_profile(self, group: str, name: str) -> Profile:
        target = self.group(group)
        if name not in target.profiles:
            raise NotFound(f"Profile '{name}' not found in group '{group}'", group=group, name=name)
        return target.profiles[name]

    def get_default(self, group: str) -> Tuple[str, Profile]:
        target = self.group(group)
        if target.default_profile is None:
            raise NotFound(f"No default profile set for group '{group}'", group=group)
        return target.default_profile, target.profiles[target.default_profile]

    def list_profiles(self, group: str) -> List[Tuple[str, Profile, bool]]:
        target = self.group(group)
        return [(name, profile, name == target.default_profile) for name, profile in target.profiles.items()]

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def add_provider(self, provider: Provider) -> None:
        check_unique(provider.name, self.providers, "providers")
        validate_provider(provider)
        self.providers[provider.name] = provider
        self.dirty = True

    def update_provider(self, provider: Provider) -> None:
        if provider.name not in self.providers:
            raise NotFound(f"Provider '{provider.name}' not found", group="providers", name=provider.name)
        validate_provider(provider)
        self.providers[provider.name] = provider
        self.dirty = True

    def get_provider(self, name: str) -> Provider:
        if name not in self.providers:
            raise NotFound(f"Provider '{name}' not found", group="providers", name=name)
        return self.providers[name]

    def list_providers(self) -> List[Provider]:
        return list(self.providers.values())

    def provider_references(self, name: str) -> List[str]:
        """Router profiles whose rules point at provider `name`."""
        return [
            profile_name
            for profile_name, profile in self.groups[ROUTER_GROUP].profiles.items()
            if name in profile.router_rules.referenced_providers()
        ]

    def remove_provider(self, name: str) -> None:
        if name not in self.providers:
            raise NotFound(f"Provider '{name}' not found", group="providers", name=name)
        referrers = self.provider_references(name)
        if referrers:
            raise ProviderInUse(
                f"Provider '{name}' is referenced by router profile(s): {', '.join(referrers)}",
                profiles=referrers,
                group="providers",
                name=name,
            )
        del self.providers[name]
        self.dirty = True
