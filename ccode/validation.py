"""Structural checks run before any mutation is committed.

Every check is a pure function: it raises on the first problem and returns
nothing otherwise. Soft checks (`find_*`) return warning strings instead.
"""

import logging
from typing import Iterable, List, Mapping, Optional

from .errors import DuplicateName, InvalidRoute, InvalidUrl, MissingField, UnknownProvider
from .models import DirectProfile, Provider, ProviderType, RouterProfile, split_route

logger = logging.getLogger(__name__)

URL_SCHEMES = ("http://", "https://")


def check_required(value: Optional[str], field: str, **context) -> None:
    if value is None or not str(value).strip():
        raise MissingField(f"{field} must not be empty", **context)


def check_url(value: Optional[str], field: str = "base_url", **context) -> None:
    check_required(value, field, **context)
    if not str(value).strip().startswith(URL_SCHEMES):
        raise InvalidUrl(f"{field} must start with 'http://' or 'https://' (got {value!r})", **context)


def check_unique(name: str, existing: Iterable[str], scope: str) -> None:
    if name in set(existing):
        raise DuplicateName(f"'{name}' already exists in {scope}", group=scope, name=name)


def check_route(value: Optional[str], field: str, **context) -> None:
    if value is None:
        return
    provider, model = split_route(value)
    if "," not in value or not provider or not model:
        raise InvalidRoute(f"{field} route must look like 'provider,model' (got {value!r})", **context)


def validate_direct_profile(profile: DirectProfile, name: Optional[str] = None) -> None:
    context = {"group": "direct", "name": name}
    check_required(profile.auth_token, "auth_token", **context)
    check_url(profile.base_url, "base_url", **context)


def validate_router_profile(profile: RouterProfile, name: Optional[str] = None) -> None:
    context = {"group": "router", "name": name or profile.name}
    check_required(profile.name, "name", **context)
    rules = profile.router_rules
    check_required(rules.default, "default", **context)
    for key, value in rules.routes():
        check_route(value, key, **context)
    threshold = rules.long_context_threshold
    if threshold is not None and threshold <= 0:
        raise InvalidRoute(f"longContextThreshold must be positive (got {threshold})", **context)


def validate_provider(provider: Provider) -> None:
    context = {"group": "providers", "name": provider.name}
    check_required(provider.name, "name", **context)
    check_url(provider.api_base_url, "api_base_url", **context)
    if not [model for model in provider.models if model.strip()]:
        raise MissingField("models must contain at least one model", **context)
    if provider.provider_type is ProviderType.GEMINI and "/v1beta/models/" not in provider.api_base_url:
        logger.warning("Gemini provider '%s' URL does not contain /v1beta/models/", provider.name)


def find_unknown_providers(profile: RouterProfile, providers: Mapping[str, Provider]) -> List[str]:
    """Warnings for routes whose provider is not in the provider set."""
    warnings = []
    for key, value in profile.router_rules.routes():
        provider, _ = split_route(value)
        if provider not in providers:
            warnings.append(f"route '{key}' references unknown provider '{provider}'")
    return warnings


def find_unknown_models(profile: RouterProfile, providers: Mapping[str, Provider]) -> List[str]:
    warnings = []
    for key, value in profile.router_rules.routes():
        provider_name, model = split_route(value)
        provider = providers.get(provider_name)
        if provider is None:
            continue
        # OpenRouter web search uses "model:online", which is not a listed model.
        if model not in provider.models and model.split(":online", 1)[0] not in provider.models:
            warnings.append(f"route '{key}' uses model '{model}' not listed under provider '{provider_name}'")
    return warnings


def check_provider_references(profile: RouterProfile, providers: Mapping[str, Provider]) -> None:
    """Block projection of a profile that points at missing providers."""
    missing = [name for name in profile.router_rules.referenced_providers() if name not in providers]
    if missing:
        raise UnknownProvider(
            f"router profile '{profile.name}' references unknown provider(s): {', '.join(missing)}",
            providers=missing,
            group="router",
            name=profile.name,
        )
