import argparse
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.logging import RichHandler

from .errors import CcodeError, NotFound, UnknownProvider
from .models import (
    DEFAULT_LONG_CONTEXT_THRESHOLD,
    DIRECT_GROUP,
    ROUTER_GROUP,
    ROUTE_KEYS,
    DirectProfile,
    Provider,
    ProviderType,
    RouterProfile,
    RouterRules,
    timestamp,
)
from .operations import (
    AddProfile,
    AddProvider,
    RemoveProfile,
    RemoveProvider,
    UpdateProfile,
    UpdateProvider,
    UseProfile,
    build_env,
    config_stats,
    direct_profile_from_input,
    ensure_group,
    import_from_external,
    load_store,
    mutate,
    persist,
    project_providers,
    project_to_external,
    recommend_routes,
    resolve_profile,
)
from .projector import RouterConfigProjector
from .settings import Settings, SettingsManager
from .store import Store
from .ui import ProfileUI
from .validation import check_unique, find_unknown_models, find_unknown_providers

logger = logging.getLogger(__name__)

ROUTE_LABELS = {
    "default": "Default route",
    "background": "Background route",
    "think": "Think route",
    "longContext": "Long context route",
    "webSearch": "Web search route",
}


@dataclass
class CliContext:
    settings: Settings
    ui: ProfileUI
    projector: RouterConfigProjector
    settings_manager: Optional[SettingsManager] = None

    @property
    def store_path(self) -> Path:
        return self.settings.store_file


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="ccode", description="Claude Code environment switcher")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--settings", help="Path to the ccode settings TOML file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_group_arg(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--group", choices=["direct", "ccr", "router"], help="Profile group (default: direct)")

    list_parser = subparsers.add_parser("list", help="List profiles")
    add_group_arg(list_parser)

    for command, help_text in (("add", "Add a profile"), ("edit", "Edit a profile")):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("name")
        add_group_arg(sub)
        sub.add_argument("--token", help="ANTHROPIC_AUTH_TOKEN (direct)")
        sub.add_argument("--url", help="ANTHROPIC_BASE_URL (direct)")
        sub.add_argument("--model", help="ANTHROPIC_MODEL (direct)")
        sub.add_argument("--small-fast-model", help="ANTHROPIC_SMALL_FAST_MODEL (direct)")
        sub.add_argument("--default-route", help="provider,model for the default route (ccr)")
        sub.add_argument("--background", help="provider,model for background tasks (ccr)")
        sub.add_argument("--think", help="provider,model for thinking tasks (ccr)")
        sub.add_argument("--long-context", help="provider,model for long context (ccr)")
        sub.add_argument("--long-context-threshold", type=int, help="Token threshold for long context (ccr)")
        sub.add_argument("--web-search", help="provider,model for web search (ccr)")
        sub.add_argument("--description", help="Free-form description")

    use_parser = subparsers.add_parser("use", help="Set the default profile")
    use_parser.add_argument("name")
    add_group_arg(use_parser)

    remove_parser = subparsers.add_parser("remove", help="Remove a profile")
    remove_parser.add_argument("name")
    add_group_arg(remove_parser)
    remove_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    run_parser = subparsers.add_parser("run", help="Launch claude with a profile")
    run_parser.add_argument("name", nargs="?")
    add_group_arg(run_parser)
    run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed through to claude")

    sync_parser = subparsers.add_parser("sync", help="Re-apply a router profile to the router config")
    sync_parser.add_argument("name", nargs="?")

    subparsers.add_parser("import", help="Import providers and routes from the router config")
    subparsers.add_parser("stats", help="Summarise the router config")

    settings_parser = subparsers.add_parser("settings", help="Show or change ccode settings")
    settings_parser.add_argument("--store-path", help="Profile store location")
    settings_parser.add_argument("--router-config-path", help="claude-code-router config location")
    settings_parser.add_argument("--backup-dir", help="Directory for router config backups")
    settings_parser.add_argument("--backups", choices=["on", "off"], help="Back up the router config before writing")
    settings_parser.add_argument("--debug-logging", choices=["on", "off"], help="Enable debug logging by default")
    settings_parser.add_argument("--claude-command", help="Command used to launch claude")
    settings_parser.add_argument("--ccr-command", help="Command used to launch claude-code-router")

    provider_parser = subparsers.add_parser("provider", help="Manage router providers")
    provider_sub = provider_parser.add_subparsers(dest="provider_command", required=True)
    provider_sub.add_parser("list", help="List providers")
    for command, help_text in (("add", "Add a provider"), ("edit", "Edit a provider")):
        sub = provider_sub.add_parser(command, help=help_text)
        sub.add_argument("name")
        sub.add_argument("--type", choices=[kind.value for kind in ProviderType], help="Provider type")
        sub.add_argument("--url", help="API base URL")
        sub.add_argument("--key", help="API key")
        sub.add_argument("--models", help="Comma separated model list")
    show_parser = provider_sub.add_parser("show", help="Show provider details")
    show_parser.add_argument("name")
    provider_remove = provider_sub.add_parser("remove", help="Remove a provider")
    provider_remove.add_argument("name")
    provider_remove.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    return parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=debug, show_path=debug)],
    )


def _split_models(value: str) -> List[str]:
    return [model.strip() for model in value.split(",") if model.strip()]


# ----------------------------------------------------------------------
# Store helpers
# ----------------------------------------------------------------------


def _load(ctx: CliContext) -> Store:
    store = load_store(ctx.store_path)
    if store.dirty:
        persist(store, ctx.store_path)
        ctx.ui.print_info(f"Upgraded profile store to version {store.version}")
    return store


def _load_with_import(ctx: CliContext) -> Store:
    """Load the store and pull in providers the router config already has."""
    store = _load(ctx)
    result = import_from_external(store, ctx.projector)
    if result.changed:
        persist(result.store, ctx.store_path)
        if result.providers:
            ctx.ui.print_info(f"Imported provider(s) from router config: {', '.join(result.providers)}")
        if result.generated_profile:
            ctx.ui.print_info(f"Generated router profile '{result.generated_profile}' from router config")
    return result.store


def _project(ctx: CliContext, store: Store, name: str) -> int:
    try:
        warnings = project_to_external(store, ROUTER_GROUP, name, ctx.projector)
    except UnknownProvider as exc:
        ctx.ui.print_warning(f"Saved locally, router config not updated: {exc}")
        return 1
    if warnings:
        logger.debug("Projected with %d warning(s)", len(warnings))
    ctx.ui.print_success(f"Applied router profile '{name}' to {ctx.projector.path}")
    return 0


# ----------------------------------------------------------------------
# Profile commands
# ----------------------------------------------------------------------


def cmd_list(args: argparse.Namespace, ctx: CliContext) -> int:
    groups = [ensure_group(args.group)] if args.group else [DIRECT_GROUP, ROUTER_GROUP]
    store = _load(ctx)
    for group in groups:
        rows = store.list_profiles(group)
        if group == DIRECT_GROUP:
            ctx.ui.display_direct_profiles(rows)
        else:
            ctx.ui.display_router_profiles(rows)
    return 0


def _prompt_direct(args: argparse.Namespace, ctx: CliContext, current: Optional[DirectProfile] = None) -> DirectProfile:
    ask = ctx.ui.ask
    token = args.token or ask("ANTHROPIC_AUTH_TOKEN", default=current.auth_token if current else None, password=True)
    url = args.url or ask(
        "ANTHROPIC_BASE_URL (e.g. https://api.anthropic.com)", default=current.base_url if current else None
    )
    if current is None:
        model = args.model
        small_fast_model = args.small_fast_model
        description = args.description if args.description is not None else ask("Description (optional)", default="")
        return direct_profile_from_input(token, url, model, small_fast_model, description)

    return DirectProfile(
        auth_token=token.strip(),
        base_url=url.strip(),
        model=(args.model or None) if args.model is not None else current.model,
        small_fast_model=(args.small_fast_model or None) if args.small_fast_model is not None else current.small_fast_model,
        description=(args.description or None) if args.description is not None else current.description,
        created_at=current.created_at,
    )


def _prompt_route(ctx: CliContext, key: str, providers: List[Provider], current: Optional[str]) -> Optional[str]:
    suggestions = recommend_routes(key, providers)
    if suggestions:
        ctx.ui.print_info("Suggestions: " + "; ".join(f"{route} ({reason})" for route, reason in suggestions))
    hint = "" if key == "default" else " (blank to skip)"
    value = ctx.ui.ask(f"{ROUTE_LABELS[key]}{hint}", default=current or "")
    return value or None


def _prompt_router(
    args: argparse.Namespace, ctx: CliContext, store: Store, name: str, current: Optional[RouterProfile] = None
) -> RouterProfile:
    providers = store.list_providers()
    if not providers:
        raise NotFound("No providers configured, add one with 'ccode provider add <name>' first", group="providers")

    current_rules = current.router_rules if current else None
    explicit = {
        "default": args.default_route,
        "background": args.background,
        "think": args.think,
        "longContext": args.long_context,
        "webSearch": args.web_search,
    }
    interactive = not any(value is not None for value in explicit.values())
    if interactive:
        ctx.ui.display_providers(providers)

    values = {}
    for key in ROUTE_KEYS:
        existing = current_rules.to_dict().get(key) if current_rules else None
        if explicit[key] is not None:
            values[key] = explicit[key] or None
        elif interactive:
            values[key] = _prompt_route(ctx, key, providers, existing)
        else:
            values[key] = existing
        if key == "default" and not values[key]:
            values[key] = _prompt_route(ctx, key, providers, existing)

    if args.long_context_threshold is not None:
        threshold = args.long_context_threshold
    elif current_rules is not None:
        threshold = current_rules.long_context_threshold
    elif interactive:
        raw = ctx.ui.ask("Long context threshold", default=str(DEFAULT_LONG_CONTEXT_THRESHOLD))
        threshold = int(raw) if raw.isdigit() else DEFAULT_LONG_CONTEXT_THRESHOLD
    else:
        threshold = DEFAULT_LONG_CONTEXT_THRESHOLD

    rules = RouterRules(
        default=values["default"] or "",
        background=values["background"],
        think=values["think"],
        long_context=values["longContext"],
        long_context_threshold=threshold,
        web_search=values["webSearch"],
    )
    if args.description is not None:
        description = args.description or None
    elif current is not None:
        description = current.description
    else:
        description = (ctx.ui.ask("Description (optional)", default="") or None) if interactive else None

    profile = RouterProfile(
        name=name,
        router_rules=rules,
        description=description,
        created_at=current.created_at if current else timestamp(),
    )
    for warning in find_unknown_providers(profile, store.providers) + find_unknown_models(profile, store.providers):
        ctx.ui.print_warning(warning)
    return profile


def cmd_add(args: argparse.Namespace, ctx: CliContext) -> int:
    group = ensure_group(args.group)
    if group == DIRECT_GROUP:
        store = _load(ctx)
        check_unique(args.name, store.group(group).profiles, group)
        profile = _prompt_direct(args, ctx)
    else:
        store = _load_with_import(ctx)
        check_unique(args.name, store.group(group).profiles, group)
        profile = _prompt_router(args, ctx, store, args.name)

    store = mutate(store, AddProfile(group, args.name, profile))
    persist(store, ctx.store_path)
    ctx.ui.print_success(f"Added {group} profile '{args.name}'")

    default_name = store.group(group).default_profile
    if default_name == args.name:
        ctx.ui.print_info("Set as the default profile")
        if group == ROUTER_GROUP:
            return _project(ctx, store, args.name)
    return 0


def cmd_edit(args: argparse.Namespace, ctx: CliContext) -> int:
    group = ensure_group(args.group)
    store = _load_with_import(ctx) if group == ROUTER_GROUP else _load(ctx)
    current = store.get_profile(group, args.name)
    if group == DIRECT_GROUP:
        profile = _prompt_direct(args, ctx, current)
    else:
        profile = _prompt_router(args, ctx, store, args.name, current)

    store = mutate(store, UpdateProfile(group, args.name, profile))
    persist(store, ctx.store_path)
    ctx.ui.print_success(f"Updated {group} profile '{args.name}'")
    if group == ROUTER_GROUP and store.group(group).default_profile == args.name:
        return _project(ctx, store, args.name)
    return 0


def cmd_use(args: argparse.Namespace, ctx: CliContext) -> int:
    group = ensure_group(args.group)
    store = _load_with_import(ctx) if group == ROUTER_GROUP else _load(ctx)
    store = mutate(store, UseProfile(group, args.name))
    persist(store, ctx.store_path)
    ctx.ui.print_success(f"'{args.name}' is now the default {group} profile")
    if group == ROUTER_GROUP:
        return _project(ctx, store, args.name)
    return 0


def cmd_remove(args: argparse.Namespace, ctx: CliContext) -> int:
    group = ensure_group(args.group)
    store = _load(ctx)
    store.get_profile(group, args.name)
    was_default = store.group(group).default_profile == args.name
    if was_default:
        ctx.ui.print_warning(f"'{args.name}' is the current default {group} profile")
    if not args.yes and not ctx.ui.confirm(f"Remove {group} profile '{args.name}'?"):
        ctx.ui.print_info("Cancelled")
        return 0

    store = mutate(store, RemoveProfile(group, args.name))
    persist(store, ctx.store_path)
    ctx.ui.print_success(f"Removed {group} profile '{args.name}'")

    new_default = store.group(group).default_profile
    if was_default and new_default:
        ctx.ui.print_info(f"Default {group} profile is now '{new_default}'")
        if group == ROUTER_GROUP:
            return _project(ctx, store, new_default)
    elif not new_default:
        ctx.ui.print_info(f"No {group} profiles left")
    return 0


def _launch(command: List[str], env: Optional[dict], ctx: CliContext) -> int:
    logger.debug("Launching %s", " ".join(command))
    try:
        completed = subprocess.run(command, env=env)
    except FileNotFoundError:
        ctx.ui.print_error(f"Cannot find '{command[0]}', make sure it is installed and on PATH")
        return 127
    if completed.returncode != 0:
        ctx.ui.print_warning(f"{command[0]} exited with status {completed.returncode}")
    return completed.returncode


def cmd_run(args: argparse.Namespace, ctx: CliContext) -> int:
    group = ensure_group(args.group)
    passthrough = [arg for arg in args.args if arg != "--"] if args.args else []

    if group == DIRECT_GROUP:
        store = _load(ctx)
        name, profile = resolve_profile(store, group, args.name)
        ctx.ui.print_info(f"Launching claude with profile '{name}' ({profile.base_url})")
        env = os.environ.copy()
        env.update(build_env(profile))
        return _launch([ctx.settings.claude_command, *passthrough], env, ctx)

    store = _load_with_import(ctx)
    name, _ = resolve_profile(store, group, args.name)
    status = _project(ctx, store, name)
    if status != 0:
        return status
    return _launch([ctx.settings.ccr_command, "code", *passthrough], None, ctx)


def cmd_sync(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    name, _ = resolve_profile(store, ROUTER_GROUP, args.name)
    return _project(ctx, store, name)


def cmd_import(args: argparse.Namespace, ctx: CliContext) -> int:
    if not ctx.projector.exists():
        ctx.ui.print_warning(f"No router config at {ctx.projector.path}")
        return 0
    store = _load(ctx)
    result = import_from_external(store, ctx.projector)
    if not result.changed:
        ctx.ui.print_info("Nothing new to import")
        return 0
    persist(result.store, ctx.store_path)
    for name in result.providers:
        ctx.ui.print_success(f"Imported provider '{name}'")
    if result.generated_profile:
        ctx.ui.print_success(f"Generated router profile '{result.generated_profile}'")
    return 0


def cmd_stats(args: argparse.Namespace, ctx: CliContext) -> int:
    if not ctx.projector.exists():
        ctx.ui.print_warning(f"No router config at {ctx.projector.path}")
        return 0
    ctx.ui.display_stats(config_stats(ctx.projector))
    return 0


def _on_off(value: Optional[str]) -> Optional[bool]:
    return None if value is None else value == "on"


def cmd_settings(args: argparse.Namespace, ctx: CliContext) -> int:
    manager = ctx.settings_manager or SettingsManager()
    changes = {
        "store_path": args.store_path,
        "router_config_path": args.router_config_path,
        "backup_dir": args.backup_dir,
        "backup": _on_off(args.backups),
        "debug": _on_off(args.debug_logging),
        "claude_command": args.claude_command,
        "ccr_command": args.ccr_command,
    }
    if any(value is not None for value in changes.values()):
        ctx.settings = manager.save_settings(**changes)
        ctx.ui.print_success(f"Saved settings to {manager.config_file}")
    ctx.ui.display_settings(ctx.settings)
    return 0


# ----------------------------------------------------------------------
# Provider commands
# ----------------------------------------------------------------------


def _prompt_provider_type(ctx: CliContext) -> ProviderType:
    kinds = list(ProviderType)
    for index, kind in enumerate(kinds, 1):
        ctx.ui.display_message(f"  {index}) {kind.display_name} [dim]({kind.url_hint})[/dim]")
    choice = ctx.ui.ask(f"Provider type [1-{len(kinds)}]", default="1")
    if choice.isdigit() and 1 <= int(choice) <= len(kinds):
        return kinds[int(choice) - 1]
    ctx.ui.print_warning("Invalid choice, using OpenAI compatible")
    return ProviderType.OPENAI


def cmd_provider(args: argparse.Namespace, ctx: CliContext) -> int:
    handler = {
        "list": cmd_provider_list,
        "add": cmd_provider_add,
        "edit": cmd_provider_edit,
        "show": cmd_provider_show,
        "remove": cmd_provider_remove,
    }[args.provider_command]
    return handler(args, ctx)


def cmd_provider_list(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    ctx.ui.display_providers(store.list_providers())
    return 0


def cmd_provider_show(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    ctx.ui.display_provider(store.get_provider(args.name))
    return 0


def cmd_provider_add(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    check_unique(args.name, store.providers, "providers")

    kind = ProviderType(args.type) if args.type else _prompt_provider_type(ctx)
    for hint in kind.hints:
        ctx.ui.print_info(hint)
    api_key = args.key or ctx.ui.ask("API key", password=True)
    url = args.url or ctx.ui.ask("API URL", default=kind.url_hint)
    models_raw = args.models or ctx.ui.ask("Models (comma separated)", default=", ".join(kind.default_models))
    provider = Provider.create(args.name, url.strip(), api_key.strip(), _split_models(models_raw), kind)

    store = mutate(store, AddProvider(provider))
    persist(store, ctx.store_path)
    project_providers(store, ctx.projector)
    ctx.ui.print_success(f"Added provider '{args.name}' ({kind.display_name})")
    return 0


def cmd_provider_edit(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    current = store.get_provider(args.name)
    interactive = not any([args.type, args.url, args.key, args.models])

    kind = ProviderType(args.type) if args.type else current.provider_type
    api_key = args.key or (ctx.ui.ask("API key", default=current.api_key, password=True) if interactive else current.api_key)
    url = args.url or (ctx.ui.ask("API URL", default=current.api_base_url) if interactive else current.api_base_url)
    if args.models:
        models = _split_models(args.models)
    elif interactive:
        models = _split_models(ctx.ui.ask("Models (comma separated)", default=", ".join(current.models)))
    else:
        models = list(current.models)

    transformer = current.transformer
    if models != current.models or kind is not current.provider_type:
        transformer = kind.generate_transformer(models)
    provider = Provider(args.name, url.strip(), api_key.strip(), models, kind, transformer, dict(current.extra))

    store = mutate(store, UpdateProvider(provider))
    persist(store, ctx.store_path)
    project_providers(store, ctx.projector)
    ctx.ui.print_success(f"Updated provider '{args.name}'")
    return 0


def cmd_provider_remove(args: argparse.Namespace, ctx: CliContext) -> int:
    store = _load_with_import(ctx)
    store.get_provider(args.name)
    if not args.yes and not ctx.ui.confirm(f"Remove provider '{args.name}'?"):
        ctx.ui.print_info("Cancelled")
        return 0
    store = mutate(store, RemoveProvider(args.name))
    persist(store, ctx.store_path)
    project_providers(store, ctx.projector)
    ctx.ui.print_success(f"Removed provider '{args.name}'")
    return 0


COMMANDS = {
    "list": cmd_list,
    "add": cmd_add,
    "edit": cmd_edit,
    "use": cmd_use,
    "remove": cmd_remove,
    "run": cmd_run,
    "sync": cmd_sync,
    "import": cmd_import,
    "stats": cmd_stats,
    "settings": cmd_settings,
    "provider": cmd_provider,
}


def build_context(
    settings: Settings,
    ui: Optional[ProfileUI] = None,
    settings_manager: Optional[SettingsManager] = None,
) -> CliContext:
    projector = RouterConfigProjector(
        settings.router_config_file,
        backup_dir=settings.backup_path,
        backup=settings.backup,
    )
    return CliContext(settings=settings, ui=ui or ProfileUI(), projector=projector, settings_manager=settings_manager)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    ui = ProfileUI()

    try:
        manager = SettingsManager(Path(args.settings).expanduser() if args.settings else None)
        settings = manager.load_settings()
        configure_logging(args.debug or settings.debug)
        ctx = build_context(settings, ui, manager)
        return COMMANDS[args.command](args, ctx)
    except CcodeError as exc:
        ui.print_error(str(exc))
        if exc.path:
            ui.print_info(f"File: {exc.path}")
        return 1
