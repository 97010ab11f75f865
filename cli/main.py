"""CLI entry point and argument parsing"""

import argparse

from rich.console import Console

import settings
from agent import KeyboardAgent
from cli.cli_app import KeyboardAgentCLI
from cli.debug_setup import setup_logging
from cli.status_display import show_key_info, show_provider_status, show_providers, show_server_providers
from exceptions import KeyboardAgentError
from providers import ServerProvider


console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keyboard local agent")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument("--port", "-p", type=int, default=None, help="Override channel port (default: from config)")
    parser.add_argument("--storage-dir", default=None, help="Override storage directory (default: from config)")

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the approval channel")
    serve.add_argument(
        "--headless",
        action="store_true",
        help="Serve without the interactive menu"
    )

    key = subparsers.add_parser("key", help="Show the connection key")
    key.add_argument("--regenerate", action="store_true", help="Generate a new key, invalidating the old one")

    subparsers.add_parser("providers", help="List configured providers")
    subparsers.add_parser("status", help="Show provider sign-in status")

    login = subparsers.add_parser("login", help="Sign in to a provider in the browser")
    login.add_argument("provider", help="Provider id (e.g. google, github, microsoft)")
    login.add_argument("--server", default=None, help="Relay the sign-in through a server provider")

    logout = subparsers.add_parser("logout", help="Forget a provider's stored tokens")
    logout.add_argument("provider", help="Provider id")

    servers = subparsers.add_parser("servers", help="Manage server providers")
    server_commands = servers.add_subparsers(dest="server_command", required=True)
    add = server_commands.add_parser("add", help="Register a server provider")
    add.add_argument("id")
    add.add_argument("name")
    add.add_argument("url")
    remove = server_commands.add_parser("remove", help="Remove a server provider")
    remove.add_argument("id")
    server_commands.add_parser("list", help="List server providers")

    return parser


def run_servers_command(agent: KeyboardAgent, args) -> int:
    if args.server_command == "add":
        server = agent.add_server_provider(ServerProvider(id=args.id, name=args.name, url=args.url))
        console.print(f"[green]✓ Registered server provider {server.id} ({server.url})[/green]")
    elif args.server_command == "remove":
        if not agent.remove_server_provider(args.id):
            console.print(f"[yellow]No server provider named {args.id}[/yellow]")
            return 1
        console.print(f"[green]✓ Removed server provider {args.id}[/green]")
    else:
        show_server_providers(agent.list_server_providers(), console)
    return 0


def run_command(agent: KeyboardAgent, cli: KeyboardAgentCLI, args) -> int:
    """Dispatch a non-interactive subcommand

    Returns:
        Process exit code
    """
    if args.command == "key":
        if args.regenerate:
            agent.regenerate_connection_key()
        show_key_info(agent.key_manager, console, agent.ws_port)
    elif args.command == "providers":
        show_providers(agent.registry.list_providers(), console)
    elif args.command == "status":
        show_provider_status(agent.provider_status(), console)
    elif args.command == "login":
        return 0 if cli.loop.run_until_complete(cli.login(args.provider, server_id=args.server)) else 1
    elif args.command == "logout":
        if agent.oauth.logout(args.provider):
            console.print(f"[green]✓ Signed out of {args.provider}[/green]")
        else:
            console.print(f"[yellow]No stored tokens for {args.provider}[/yellow]")
    elif args.command == "servers":
        return run_servers_command(agent, args)
    elif args.command == "serve" and args.headless:
        cli.run_headless_mode()
    else:
        cli.run()
    return 0


def main():
    """Entry point for the CLI"""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(console, debug=args.debug)
    exit_code = 0

    try:
        agent = KeyboardAgent(
            storage_dir=args.storage_dir,
            ws_port=args.port or settings.WS_PORT,
        )
        cli = KeyboardAgentCLI(agent, console, debug=args.debug)
        exit_code = run_command(agent, cli, args)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        console.print("Goodbye!")
    except KeyboardAgentError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        exit_code = 1
    except Exception as e:
        console.print(f"\n[red]Fatal error:[/red] {e}")
        if args.debug:
            console.print_exception()
        exit_code = 1

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
