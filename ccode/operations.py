"""Orchestration used by the command layer.

The flow for every command is load_store -> mutate -> persist, followed by
project_to_external when the router group or provider set changed. `mutate`
works on a copy, so a failed operation never leaves a half-applied store.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from .errors import InvalidRoute, InvalidUrl, MissingField, NotFound
from .models import (
    DIRECT_GROUP,
    ROUTER_GROUP,
    DirectProfile,
    Provider,
    ProviderType,
    RouterProfile,
    normalize_group,
    timestamp,
)
from .projector import RouterConfigProjector
from .store import Profile, Store
from .validation import check_provider_references, find_unknown_models, find_unknown_providers

logger = logging.getLogger(__name__)


@dataclass
class AddProfile:
    group: str
    name: str
    profile: Profile


@dataclass
class UpdateProfile:
    group: str
    name: str
    profile: Profile


@dataclass
class UseProfile:
    group: str
    name: str


@dataclass
class RemoveProfile:
    group: str
    name: str


@dataclass
class AddProvider:
    provider: Provider


@dataclass
class UpdateProvider:
    provider: Provider


@dataclass
class RemoveProvider:
    name: str


Operation = Union[AddProfile, UpdateProfile, UseProfile, RemoveProfile, AddProvider, UpdateProvider, RemoveProvider]

_HANDLERS: Dict[type, Callable[[Store, Operation], None]] = {
    AddProfile: lambda store, op: store.add_profile(op.group, op.name, op.profile),
    UpdateProfile: lambda store, op: store.update_profile(op.group, op.name, op.profile),
    UseProfile: lambda store, op: store.set_default(op.group, op.name),
    RemoveProfile: lambda store, op: store.remove_profile(op.group, op.name),
    AddProvider: lambda store, op: store.add_provider(op.provider),
    UpdateProvider: lambda store, op: store.update_provider(op.provider),
    RemoveProvider: lambda store, op: store.remove_provider(op.name),
}


def load_store(path: Union[str, Path]) -> Store:
    return Store.load(path)


def mutate(store: Store, operation: Operation) -> Store:
    """Apply `operation` to a copy of `store` and return the copy."""
    handler = _HANDLERS.get(type(operation))
    if handler is None:
        raise TypeError(f"Unsupported operation: {type(operation).__name__}")
    updated = copy.deepcopy(store)
    handler(updated, operation)
    return updated


def persist(store: Store, path: Union[str, Path, None] = None) -> None:
    store.save(path)


def project_to_external(
    store: Store,
    group: str,
    profile_name: str,
    projector: RouterConfigProjector,
) -> List[str]:
    """Write the router profile and provider set into the router document.

    Direct profiles live only in the store, so projecting one is a no-op.
    Returns soft warnings (unlisted models); unknown providers raise.
    """
    if normalize_group(group) != ROUTER_GROUP:
        store.group(group)
        return []

    profile = store.get_profile(ROUTER_GROUP, profile_name)
    check_provider_references(profile, store.providers)
    warnings = find_unknown_models(profile, store.providers)
    for warning in warnings:
        logger.warning(warning)
    projector.sync(store.list_providers(), profile)
    return warnings


def project_providers(store: Store, projector: RouterConfigProjector) -> None:
    projector.sync_providers(store.list_providers())


def build_env(profile: DirectProfile) -> Dict[str, str]:
    """Environment variables for launching claude with `profile`."""
    env = {
        "ANTHROPIC_AUTH_TOKEN": profile.auth_token,
        "ANTHROPIC_BASE_URL": profile.base_url,
    }
    if profile.model is not None:
        env["ANTHROPIC_MODEL"] = profile.model
    if profile.small_fast_model is not None:
        env["ANTHROPIC_SMALL_FAST_MODEL"] = profile.small_fast_model
    return env


def resolve_profile(store: Store, group: str, name: Optional[str] = None) -> Tuple[str, Profile]:
    """Named profile, or the group default when no name is given."""
    if name:
        return name, store.get_profile(group, name)
    return store.get_default(group)


@dataclass
class ImportResult:
    store: Store
    providers: List[str]
    generated_profile: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.providers or self.generated_profile)


def import_from_external(store: Store, projector: RouterConfigProjector) -> ImportResult:
    """Adopt providers and default rules found in the router document.

    Providers already in the store win; only unknown names are imported. When
    the router group is empty, a `default` profile is generated from the
    document's router node.
    """
    updated = copy.deepcopy(store)
    imported = []
    if not projector.exists():
        return ImportResult(updated, imported)

    for provider in projector.read_providers():
        if provider.name in updated.providers:
            continue
        try:
            updated.add_provider(provider)
        except (InvalidUrl, MissingField) as exc:
            logger.warning("Not importing provider '%s', it will be dropped on the next provider sync: %s", provider.name, exc)
            continue
        imported.append(provider.name)

    generated = None
    router_group = updated.group(ROUTER_GROUP)
    rules = projector.read_router_rules()
    if not router_group.profiles and rules is not None and updated.providers:
        for warning in find_unknown_providers(RouterProfile("default", rules), updated.providers):
            logger.warning(warning)
        profile = RouterProfile(
            name="default",
            router_rules=rules,
            description="Generated from claude-code-router config",
            created_at=timestamp(),
        )
        try:
            updated.add_profile(ROUTER_GROUP, "default", profile)
            generated = "default"
        except (InvalidRoute, MissingField) as exc:
            logger.warning("Not generating a default router profile: %s", exc)

    if imported or generated:
        updated.dirty = True
        logger.info("Imported %d provider(s) from %s", len(imported), projector.path)
    return ImportResult(updated, imported, generated)


@dataclass
class ConfigStats:
    provider_count: int
    default_route: Optional[str]
    has_background_route: bool
    has_think_route: bool
    has_long_context_route: bool
    has_web_search_route: bool
    long_context_threshold: Optional[int]


def config_stats(projector: RouterConfigProjector) -> ConfigStats:
    providers = projector.read_providers()
    rules = projector.read_router_rules()
    return ConfigStats(
        provider_count=len(providers),
        default_route=rules.default if rules else None,
        has_background_route=bool(rules and rules.background),
        has_think_route=bool(rules and rules.think),
        has_long_context_route=bool(rules and rules.long_context),
        has_web_search_route=bool(rules and rules.web_search),
        long_context_threshold=rules.long_context_threshold if rules else None,
    )


def recommend_routes(route_key: str, providers: List[Provider], limit: int = 3) -> List[Tuple[str, str]]:
    """Suggested `provider,model` values for one router scenario."""
    suggestions = []

    def first_match(provider: Provider, *needles: str) -> Optional[str]:
        for model in provider.models:
            if any(needle in model for needle in needles):
                return model
        return None

    for provider in providers:
        kind = provider.provider_type
        model = None
        reason = ""
        if route_key == "default":
            model = provider.models[0] if provider.models else None
            reason = kind.display_name
        elif route_key == "background":
            if kind is ProviderType.OPENAI:
                model, reason = first_match(provider, "gpt-3.5", "4o-mini"), "fast responses"
            elif kind is ProviderType.DEEPSEEK:
                model, reason = (provider.models[0] if provider.models else None), "cost effective"
        elif route_key == "think":
            if kind is ProviderType.DEEPSEEK:
                model, reason = first_match(provider, "reasoner"), "strong reasoning"
            elif kind is ProviderType.QWEN:
                model, reason = first_match(provider, "Thinking", "thinking"), "chain-of-thought"
            elif kind is ProviderType.OPENROUTER:
                model, reason = first_match(provider, "claude", "o1"), "analysis"
        elif route_key == "longContext":
            if kind is ProviderType.QWEN:
                model, reason = (provider.models[0] if provider.models else None), "very long context"
            elif kind is ProviderType.GEMINI:
                model, reason = first_match(provider, "pro"), "large inputs"
            elif kind is ProviderType.OPENROUTER:
                model, reason = first_match(provider, "claude"), "document analysis"
        elif route_key == "webSearch" and provider.models:
            if kind is ProviderType.OPENROUTER:
                model, reason = f"{provider.models[0]}:online", "live search"
            else:
                model, reason = provider.models[0], "basic web lookup"
        if model:
            suggestions.append((f"{provider.name},{model}", reason))
    return suggestions[:limit]


def direct_profile_from_input(
    auth_token: str,
    base_url: str,
    model: Optional[str] = None,
    small_fast_model: Optional[str] = None,
    description: Optional[str] = None,
) -> DirectProfile:
    """Build a DirectProfile from raw user input, blank optionals become None."""
    return DirectProfile.from_dict(
        {
            "ANTHROPIC_AUTH_TOKEN": auth_token.strip(),
            "ANTHROPIC_BASE_URL": base_url.strip(),
            "ANTHROPIC_MODEL": model,
            "ANTHROPIC_SMALL_FAST_MODEL": small_fast_model,
            "description": description,
            "created_at": timestamp(),
        }
    )


def ensure_group(group: Optional[str], default: str = DIRECT_GROUP) -> str:
    key = normalize_group(group) or default
    if key not in (DIRECT_GROUP, ROUTER_GROUP):
        raise NotFound(f"Unknown group '{group}' (expected direct or ccr)", group=group)
    return key
