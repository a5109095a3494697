from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

DIRECT_GROUP = "direct"
ROUTER_GROUP = "router"
GROUPS = (DIRECT_GROUP, ROUTER_GROUP)

# "ccr" is what users type on the command line for the router group.
GROUP_ALIASES = {"ccr": ROUTER_GROUP}

DEFAULT_LONG_CONTEXT_THRESHOLD = 60000

# Router keys owned by this tool, in the order they are written.
RULE_KEYS = ("default", "background", "think", "longContext", "longContextThreshold", "webSearch")
ROUTE_KEYS = tuple(key for key in RULE_KEYS if key != "longContextThreshold")

_DIRECT_FIELDS = (
    ("auth_token", "ANTHROPIC_AUTH_TOKEN"),
    ("base_url", "ANTHROPIC_BASE_URL"),
    ("model", "ANTHROPIC_MODEL"),
    ("small_fast_model", "ANTHROPIC_SMALL_FAST_MODEL"),
)

_RULE_ATTRS = {
    "default": "default",
    "background": "background",
    "think": "think",
    "longContext": "long_context",
    "longContextThreshold": "long_context_threshold",
    "webSearch": "web_search",
}


def timestamp() -> str:
    """Creation timestamp in the format stored alongside profiles."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def normalize_group(group: Optional[str]) -> Optional[str]:
    if group is None:
        return None
    key = group.strip().lower()
    return GROUP_ALIASES.get(key, key)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def split_route(value: str) -> Tuple[str, str]:
    """Split a `provider,model` rule into its two halves."""
    provider, _, model = value.partition(",")
    return provider.strip(), model.strip()


@dataclass
class DirectProfile:
    """Environment values for launching claude against one endpoint."""

    auth_token: str
    base_url: str
    model: Optional[str] = None
    small_fast_model: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "DirectProfile":
        values = {attr: data.get(key) for attr, key in _DIRECT_FIELDS}
        return cls(
            auth_token=str(values["auth_token"] or ""),
            base_url=str(values["base_url"] or ""),
            model=_optional_str(values["model"]),
            small_fast_model=_optional_str(values["small_fast_model"]),
            description=_optional_str(data.get("description")),
            created_at=_optional_str(data.get("created_at")),
        )

    def to_dict(self) -> dict:
        data = {}
        for attr, key in _DIRECT_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        if self.description is not None:
            data["description"] = self.description
        if self.created_at is not None:
            data["created_at"] = self.created_at
        return data


@dataclass
class RouterRules:
    """Scenario to `provider,model` mapping mirrored into the router document."""

    default: str
    background: Optional[str] = None
    think: Optional[str] = None
    long_context: Optional[str] = None
    long_context_threshold: Optional[int] = None
    web_search: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RouterRules":
        threshold = data.get("longContextThreshold")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float, str)):
            threshold = None
        elif isinstance(threshold, str):
            threshold = int(threshold) if threshold.strip().isdigit() else None
        elif isinstance(threshold, float) and not math.isfinite(threshold):
            raise ValueError(f"longContextThreshold must be a finite number (got {threshold})")
        else:
            threshold = int(threshold)
        return cls(
            default=str(data.get("default") or ""),
            background=_optional_str(data.get("background")),
            think=_optional_str(data.get("think")),
            long_context=_optional_str(data.get("longContext")),
            long_context_threshold=threshold,
            web_search=_optional_str(data.get("webSearch")),
        )

    def to_dict(self) -> dict:
        data = {}
        for key in RULE_KEYS:
            value = getattr(self, _RULE_ATTRS[key])
            if value is not None:
                data[key] = value
        return data

    def routes(self) -> List[Tuple[str, str]]:
        """Configured `(key, value)` route pairs, threshold excluded."""
        pairs = []
        for key in ROUTE_KEYS:
            value = getattr(self, _RULE_ATTRS[key])
            if value:
                pairs.append((key, value))
        return pairs

    def referenced_providers(self) -> List[str]:
        names = []
        for _, value in self.routes():
            provider, _ = split_route(value)
            if provider and provider not in names:
                names.append(provider)
        return names


@dataclass
class RouterProfile:
    """A named router rule set."""

    name: str
    router_rules: RouterRules
    description: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, name: str = "") -> "RouterProfile":
        rules = data.get("router_rules")
        if not isinstance(rules, dict):
            rules = {}
        return cls(
            name=str(data.get("name") or name),
            router_rules=RouterRules.from_dict(rules),
            description=_optional_str(data.get("description")),
            created_at=_optional_str(data.get("created_at")),
        )

    def to_dict(self) -> dict:
        data = {"name": self.name, "router_rules": self.router_rules.to_dict()}
        if self.description is not None:
            data["description"] = self.description
        if self.created_at is not None:
            data["created_at"] = self.created_at
        return data


class ProviderType(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    DEEPSEEK = "deepseek"
    GEMINI = "gemini"
    QWEN = "qwen"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Any) -> "ProviderType":
        if isinstance(value, ProviderType):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.CUSTOM

    @property
    def display_name(self) -> str:
        return _PROVIDER_TYPE_INFO[self]["display_name"]

    @property
    def url_hint(self) -> str:
        return _PROVIDER_TYPE_INFO[self]["url_hint"]

    @property
    def default_models(self) -> List[str]:
        return list(_PROVIDER_TYPE_INFO[self]["models"])

    @property
    def hints(self) -> List[str]:
        return list(_PROVIDER_TYPE_INFO[self]["hints"])

    def generate_transformer(self, models: List[str]) -> Optional[dict]:
        """Build the router transformer block this provider type needs."""
        if self is ProviderType.OPENROUTER:
            return {"use": ["openrouter"]}
        if self is ProviderType.GEMINI:
            return {"use": ["gemini"]}
        if self is ProviderType.DEEPSEEK:
            transformer: Dict[str, Any] = {"use": ["deepseek"]}
            for model in models:
                if "deepseek-chat" in model:
                    transformer[model] = {"use": ["tooluse"]}
            return transformer
        if self is ProviderType.QWEN:
            transformer = {"use": [["maxtoken", {"max_tokens": 65536}], "enhancetool"]}
            for model in models:
                if "thinking" in model.lower():
                    transformer[model] = {"use": ["reasoning"]}
            return transformer
        return None


_PROVIDER_TYPE_INFO = {
    ProviderType.OPENAI: {
        "display_name": "OpenAI compatible",
        "url_hint": "https://api.openai.com/v1/chat/completions",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"],
        "hints": ["Standard OpenAI API format", "No transformer required"],
    },
    ProviderType.OPENROUTER: {
        "display_name": "OpenRouter",
        "url_hint": "https://openrouter.ai/api/v1/chat/completions",
        "models": ["anthropic/claude-3.5-sonnet", "google/gemini-2.5-pro-preview", "anthropic/claude-sonnet-4"],
        "hints": ["Routes to many upstream models", "Append ':online' to a model for web search"],
    },
    ProviderType.DEEPSEEK: {
        "display_name": "DeepSeek",
        "url_hint": "https://api.deepseek.com/chat/completions",
        "models": ["deepseek-chat", "deepseek-reasoner"],
        "hints": ["DeepSeek transformer added automatically", "deepseek-chat models get tooluse"],
    },
    ProviderType.GEMINI: {
        "display_name": "Gemini",
        "url_hint": "https://generativelanguage.googleapis.com/v1beta/models/",
        "models": ["gemini-2.5-flash", "gemini-2.5-pro"],
        "hints": ["API path must contain /v1beta/models/", "Gemini transformer added automatically"],
    },
    ProviderType.QWEN: {
        "display_name": "Qwen",
        "url_hint": "https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions",
        "models": [
            "qwen3-coder-plus",
            "Qwen/Qwen3-Coder-480B-A35B-Instruct",
            "Qwen/Qwen3-235B-A22B-Thinking-2507",
        ],
        "hints": ["max_tokens capped at 65536", "Thinking models get the reasoning transformer"],
    },
    ProviderType.CUSTOM: {
        "display_name": "Custom",
        "url_hint": "https://your-api-url/v1/chat/completions",
        "models": ["custom-model"],
        "hints": ["Configure transformers by hand if needed"],
    },
}


_PROVIDER_KEYS = frozenset(
    ("name", "api_base_url", "baseUrl", "api_key", "apiKey", "models", "transformer", "provider_type")
)


@dataclass
class Provider:
    """Backend endpoint referenced by name from router rules."""

    name: str
    api_base_url: str
    api_key: str
    models: List[str] = field(default_factory=list)
    provider_type: ProviderType = ProviderType.CUSTOM
    transformer: Optional[dict] = None
    # Keys this tool does not model (e.g. max_retries), carried through syncs.
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        name: str,
        api_base_url: str,
        api_key: str,
        models: List[str],
        provider_type: ProviderType,
    ) -> "Provider":
        """Build a provider with the transformer its type implies."""
        return cls(
            name=name,
            api_base_url=api_base_url,
            api_key=api_key,
            models=list(models),
            provider_type=provider_type,
            transformer=provider_type.generate_transformer(models),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Provider":
        models = data.get("models")
        if not isinstance(models, list):
            models = []
        transformer = data.get("transformer")
        return cls(
            name=str(data.get("name") or ""),
            api_base_url=str(data.get("api_base_url") or data.get("baseUrl") or ""),
            api_key=str(data.get("api_key") or data.get("apiKey") or ""),
            models=[model for model in models if isinstance(model, str)],
            provider_type=ProviderType.parse(data.get("provider_type")),
            transformer=transformer if isinstance(transformer, dict) else None,
            extra={key: value for key, value in data.items() if key not in _PROVIDER_KEYS},
        )

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "api_base_url": self.api_base_url,
            "api_key": self.api_key,
            "models": list(self.models),
        }
        if self.transformer is not None:
            data["transformer"] = self.transformer
        data["provider_type"] = self.provider_type.value
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data
