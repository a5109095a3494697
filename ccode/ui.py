import json
from typing import List, Optional, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table

from .models import DirectProfile, Provider, RouterProfile
from .operations import ConfigStats
from .settings import Settings


def mask_secret(value: str) -> str:
    """Mask tokens and keys for display."""
    if len(value) > 10:
        return value[:6] + "•" * 8 + value[-4:]
    if len(value) > 4:
        return value[:2] + "•" * (len(value) - 4) + value[-2:]
    return "•" * len(value)


class ProfileUI:
    """Terminal rendering and prompting for the command layer."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_message(self, content, style: str = None) -> None:
        self.console.print(content, style=style)

    def print_success(self, msg: str) -> None:
        self.console.print(f"[bold green]✓[/] {msg}")

    def print_error(self, msg: str) -> None:
        self.console.print(f"[bold red]✗[/] {msg}")

    def print_warning(self, msg: str) -> None:
        self.console.print(f"[bold yellow]![/] {msg}")

    def print_info(self, msg: str) -> None:
        self.console.print(f"[dim]ℹ[/] {msg}")

    def ask(self, prompt: str, default: Optional[str] = None, password: bool = False) -> str:
        try:
            if default is None:
                return Prompt.ask(prompt, password=password, console=self.console).strip()
            return Prompt.ask(prompt, default=default, password=password, console=self.console).strip()
        except (KeyboardInterrupt, EOFError):
            self.console.print("\nCancelled.", style="yellow")
            raise SystemExit(130) from None

    def confirm(self, prompt: str, default: bool = False) -> bool:
        try:
            return Confirm.ask(prompt, default=default, console=self.console)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\nCancelled.", style="yellow")
            raise SystemExit(130) from None

    def display_direct_profiles(self, rows: Sequence[Tuple[str, DirectProfile, bool]]) -> None:
        if not rows:
            self.print_warning("No direct profiles. Add one with 'ccode add <name>'.")
            return
        table = Table(title="Direct profiles", box=box.ROUNDED, header_style="bold magenta")
        table.add_column("", width=1)
        table.add_column("Name", style="cyan")
        table.add_column("Base URL", style="green")
        table.add_column("Token", style="dim")
        table.add_column("Model", style="yellow")
        table.add_column("Description")
        for name, profile, is_default in rows:
            table.add_row(
                "*" if is_default else "",
                name,
                profile.base_url,
                mask_secret(profile.auth_token),
                profile.model or "",
                profile.description or "",
            )
        self.console.print(table)

    def display_router_profiles(self, rows: Sequence[Tuple[str, RouterProfile, bool]]) -> None:
        if not rows:
            self.print_warning("No router profiles. Add one with 'ccode add --group ccr <name>'.")
            return
        table = Table(title="Router profiles", box=box.ROUNDED, header_style="bold magenta")
        table.add_column("", width=1)
        table.add_column("Name", style="cyan")
        table.add_column("Routes", style="green")
        table.add_column("Description")
        for name, profile, is_default in rows:
            routes = "\n".join(f"{key}: {value}" for key, value in profile.router_rules.routes())
            threshold = profile.router_rules.long_context_threshold
            if threshold is not None:
                routes += f"\nlongContextThreshold: {threshold}"
            table.add_row("*" if is_default else "", name, routes, profile.description or "")
        self.console.print(table)

    def display_providers(self, providers: List[Provider]) -> None:
        if not providers:
            self.print_warning("No providers. Add one with 'ccode provider add <name>'.")
            return
        table = Table(title="Providers", box=box.ROUNDED, header_style="bold magenta")
        table.add_column("Name", style="cyan", min_width=12)
        table.add_column("Type", style="blue")
        table.add_column("API Base URL", style="dim", max_width=40)
        table.add_column("Models", style="green")
        for provider in providers:
            models = ", ".join(provider.models[:3])
            if len(provider.models) > 3:
                models += f" (+{len(provider.models) - 3})"
            table.add_row(provider.name, provider.provider_type.display_name, provider.api_base_url, models)
        self.console.print(table)

    def display_provider(self, provider: Provider) -> None:
        lines = [
            f"[bold]Type:[/] {provider.provider_type.display_name}",
            f"[bold]API URL:[/] {provider.api_base_url}",
            f"[bold]API Key:[/] {mask_secret(provider.api_key)}",
            "[bold]Models:[/]",
        ]
        lines.extend(f"  {index}. {model}" for index, model in enumerate(provider.models, 1))
        self.console.print(Panel.fit("\n".join(lines), title=f"[cyan]{provider.name}[/cyan]", border_style="blue"))
        if provider.transformer:
            syntax = Syntax(json.dumps(provider.transformer, ensure_ascii=False, indent=2), "json", theme="monokai")
            self.console.print(Panel(syntax, title="Transformer", border_style="blue"))

    def display_stats(self, stats: ConfigStats) -> None:
        table = Table(title="Router config", box=box.ROUNDED, show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Providers", str(stats.provider_count))
        table.add_row("Default route", stats.default_route or "-")
        for label, enabled in (
            ("Background route", stats.has_background_route),
            ("Think route", stats.has_think_route),
            ("Long context route", stats.has_long_context_route),
            ("Web search route", stats.has_web_search_route),
        ):
            table.add_row(label, "yes" if enabled else "no")
        if stats.long_context_threshold is not None:
            table.add_row("Long context threshold", str(stats.long_context_threshold))
        self.console.print(table)

    def display_settings(self, settings: Settings) -> None:
        table = Table(title="ccode settings", box=box.ROUNDED, show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Profile store", str(settings.store_file))
        table.add_row("Router config", str(settings.router_config_file))
        table.add_row("Backups", f"{settings.backup_path}" if settings.backup else "off")
        table.add_row("Debug logging", "on" if settings.debug else "off")
        table.add_row("claude command", settings.claude_command)
        table.add_row("ccr command", settings.ccr_command)
        self.console.print(table)
