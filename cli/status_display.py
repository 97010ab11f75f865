"""Status display functionality for CLI"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from channel.key_manager import ConnectionKeyManager
from channel.models import ApprovalMessage
from providers import ProviderConfig, ServerProvider


def format_timestamp(ms: Optional[int]) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def get_auth_status(status: Dict[str, Any]) -> tuple[str, str]:
    """
    Get authentication status and expiry info for one provider

    Args:
        status: Provider status as returned by ProviderTokenStorage.get_status

    Returns:
        Tuple of (status, detail_message)
    """
    if not status["authenticated"]:
        return "NO AUTH", "Not signed in"

    if status["is_expired"]:
        if status["has_refresh_token"]:
            return "EXPIRED", "Will refresh on next use"
        return "EXPIRED", "Sign in again"

    remaining = (status["expires_at"] - datetime.now().timestamp() * 1000) / 1000
    hours = int(remaining // 3600)
    minutes = int((remaining % 3600) // 60)
    time_str = f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"
    return "VALID", f"Expires in {time_str}"


def show_provider_status(statuses: List[Dict[str, Any]], console: Console):
    """Display authentication status for every provider"""
    table = Table(title="Provider Sign-in Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    table.add_column("User", style="dim")

    colors = {"VALID": "green", "EXPIRED": "yellow", "NO AUTH": "red"}
    for status in statuses:
        label, detail = get_auth_status(status)
        user = status.get("user") or {}
        table.add_row(
            status["provider_id"],
            f"[{colors[label]}]{label}[/{colors[label]}]",
            detail,
            user.get("email") or user.get("name") or "",
        )

    console.print(table)


def show_providers(providers: List[ProviderConfig], console: Console):
    """Display configured providers"""
    table = Table(title="Providers")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Client ID")
    table.add_column("PKCE")
    table.add_column("Custom")

    for provider in providers:
        table.add_row(
            provider.id,
            provider.name,
            "[green]configured[/green]" if provider.is_available else "[dim]missing[/dim]",
            "Yes" if provider.use_pkce else "No",
            "Yes" if provider.is_custom else "No",
        )

    console.print(table)


def show_server_providers(servers: List[ServerProvider], console: Console):
    """Display registered server providers"""
    if not servers:
        console.print("[dim]No server providers registered[/dim]")
        return

    table = Table(title="Server Providers")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("URL")

    for server in servers:
        table.add_row(server.id, server.name, server.url)

    console.print(table)


def show_key_info(key_manager: ConnectionKeyManager, console: Console, port: int):
    """Display the connection key and how to connect"""
    info = key_manager.info()

    table = Table(title="Connection Key")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Key", info["key"])
    table.add_row("Created", format_timestamp(info["created_at"]))
    table.add_row("Expires", format_timestamp(info["expires_at"]))
    table.add_row("Key File", info["key_file"])
    table.add_row("URL", key_manager.connection_url(port=port))

    console.print(table)


def show_messages(messages: List[ApprovalMessage], console: Console, title: str = "Approval Requests"):
    """Display approval requests"""
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Risk")
    table.add_column("Status")
    table.add_column("Received", style="dim")

    colors = {"pending": "yellow", "approved": "green", "rejected": "red"}
    for message in messages:
        color = colors[message.status]
        table.add_row(
            message.id,
            message.title,
            message.risk_level or "-",
            f"[{color}]{message.status}[/{color}]",
            format_timestamp(message.timestamp),
        )

    console.print(table)
