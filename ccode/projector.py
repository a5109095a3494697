"""Projection of profile state onto the claude-code-router config file.

The router document belongs to claude-code-router. This module rewrites only
the provider list and the six router rule keys, and carries every other node
(transformer, HOST, LOG, unknown keys...) through untouched.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import CorruptExternalConfig
from .jsonio import atomic_write_json, backup_file, loads_relaxed
from .models import RULE_KEYS, Provider, RouterProfile, RouterRules

logger = logging.getLogger(__name__)

SKELETON = {"providers": [], "router": {}, "transformer": {}}

# claude-code-router writes capitalised keys; documents created here use lowercase.
_KEY_VARIANTS = {
    "providers": ("providers", "Providers"),
    "router": ("router", "Router"),
}


class RouterConfigProjector:
    """Reads and precisely updates the router configuration document."""

    def __init__(
        self,
        path: Union[str, Path],
        backup_dir: Union[str, Path, None] = None,
        backup: bool = True,
    ):
        self.path = Path(path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.path.parent / "backups"
        self.backup = backup

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Dict[str, Any]:
        """Read the document fresh from disk, or return a new skeleton."""
        if not self.path.exists():
            return copy.deepcopy(SKELETON)
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = loads_relaxed(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptExternalConfig(
                f"Failed to parse router config (even after relaxing JSON): {exc}",
                path=str(self.path),
            ) from exc
        if not isinstance(data, dict):
            raise CorruptExternalConfig("Router config must contain a JSON object", path=str(self.path))
        return data

    # ------------------------------------------------------------------
    # Node access
    # ------------------------------------------------------------------

    @staticmethod
    def node_key(document: Dict[str, Any], node: str) -> str:
        """Key used for `node` in this document, keeping its existing casing."""
        lower, upper = _KEY_VARIANTS[node]
        if lower not in document and upper in document:
            return upper
        return lower

    def _router_node(self, document: Dict[str, Any]) -> Dict[str, Any]:
        key = self.node_key(document, "router")
        router = document.get(key)
        if router is None:
            router = {}
            document[key] = router
        if not isinstance(router, dict):
            raise CorruptExternalConfig(f"'{key}' node is not an object", path=str(self.path))
        return router

    # ------------------------------------------------------------------
    # Merges (in memory, no I/O)
    # ------------------------------------------------------------------

    def merge_providers(self, document: Dict[str, Any], providers: Iterable[Provider]) -> None:
        document[self.node_key(document, "providers")] = [provider.to_dict() for provider in providers]

    def merge_router_rules(self, document: Dict[str, Any], rules: RouterRules) -> None:
        router = self._router_node(document)
        owned = rules.to_dict()
        for key in RULE_KEYS:
            if key in owned:
                router[key] = owned[key]
            else:
                router.pop(key, None)

    # ------------------------------------------------------------------
    # Syncs (read, merge, single atomic write)
    # ------------------------------------------------------------------

    def sync_providers(self, providers: Iterable[Provider]) -> None:
        self.sync(providers)

    def sync_router_rule(self, profile: RouterProfile) -> None:
        document = self.load()
        self.merge_router_rules(document, profile.router_rules)
        self._write(document)
        logger.info("Applied router profile '%s' to %s", profile.name, self.path)

    def sync(self, providers: Optional[Iterable[Provider]] = None, profile: Optional[RouterProfile] = None) -> None:
        """Project providers and/or a router profile in one read-modify-write."""
        document = self.load()
        if providers is not None:
            providers = list(providers)
            self.merge_providers(document, providers)
            logger.info("Synced %d provider(s) to %s", len(providers), self.path)
        if profile is not None:
            self.merge_router_rules(document, profile.router_rules)
            logger.info("Applied router profile '%s' to %s", profile.name, self.path)
        self._write(document)

    def _write(self, document: Dict[str, Any]) -> None:
        if self.backup and self.path.exists():
            backup_file(self.path, self.backup_dir)
        atomic_write_json(self.path, document)

    # ------------------------------------------------------------------
    # Reads back into typed objects
    # ------------------------------------------------------------------

    def read_providers(self) -> List[Provider]:
        document = self.load()
        raw = document.get(self.node_key(document, "providers"))
        if not isinstance(raw, list):
            return []
        providers = []
        for item in raw:
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"].strip():
                providers.append(Provider.from_dict(item))
        return providers

    def read_router_rules(self) -> Optional[RouterRules]:
        document = self.load()
        router = document.get(self.node_key(document, "router"))
        if not isinstance(router, dict) or not router.get("default"):
            return None
        try:
            return RouterRules.from_dict(router)
        except ValueError as exc:
            raise CorruptExternalConfig(f"Invalid router rules: {exc}", path=str(self.path)) from exc
