"""Main CLI application class for the Keyboard agent"""

import asyncio
import threading
import time
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from agent import KeyboardAgent
from channel import ChannelServer
from channel.models import ApprovalMessage
from exceptions import KeyboardAgentError
from cli.status_display import show_key_info, show_messages, show_provider_status


class KeyboardAgentCLI:
    """Interactive CLI for the Keyboard agent: channel control, sign-in and approvals"""

    def __init__(self, agent: KeyboardAgent, console: Console, debug: bool = False):
        self.agent = agent
        self.console = console
        self.debug = debug
        self.channel_server: Optional[ChannelServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.server_running = False

        self.agent.on_message(self._announce_message)
        self.agent.on_key_rotated(self._announce_key_rotation)

        # Create event loop
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

    def _announce_message(self, message: ApprovalMessage):
        self.console.print(f"\n[bold yellow]New approval request:[/bold yellow] {message.title} [dim]({message.id})[/dim]")

    def _announce_key_rotation(self, record):
        self.console.print("[yellow]Connection key rotated; clients must reconnect with the new key[/yellow]")

    def clear_screen(self):
        """Clear the terminal screen"""
        self.console.clear()

    def display_header(self):
        """Display application header"""
        self.console.print("\n")
        self.console.print(Panel.fit(
            "[bold cyan]Keyboard Agent[/bold cyan]\n"
            "[dim]Local approvals and provider sign-in[/dim]",
            border_style="cyan"
        ))

    def display_status(self):
        """Display channel and approval status"""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column(style="cyan", width=20)
        table.add_column()

        if self.server_running:
            table.add_row("Channel:", f"[green]✓ Listening on port {self.agent.ws_port}[/green]")
            table.add_row("Clients:", str(len(self.agent.channel.clients)))
        else:
            table.add_row("Channel:", "[dim]Not running[/dim]")

        pending = self.agent.approvals.pending_count
        table.add_row("Pending:", f"[yellow]{pending}[/yellow]" if pending else "0")

        signed_in = [s["provider_id"] for s in self.agent.provider_status() if s["authenticated"]]
        table.add_row("Signed in:", ", ".join(signed_in) if signed_in else "[dim]none[/dim]")

        self.console.print(table)
        self.console.print()

    def display_menu(self):
        """Display main menu options"""
        self.console.print("[bold]Main Menu:[/bold]")
        self.console.print()

        if not self.server_running:
            self.console.print("  [cyan]1[/cyan]. Start Approval Channel")
        else:
            self.console.print("  [cyan]1[/cyan]. Stop Approval Channel")
        self.console.print("  [cyan]2[/cyan]. Review Approval Requests")
        self.console.print("  [cyan]3[/cyan]. Sign in to Provider")
        self.console.print("  [cyan]4[/cyan]. Provider Status")
        self.console.print("  [cyan]5[/cyan]. Show Connection Key")
        self.console.print("  [cyan]6[/cyan]. Regenerate Connection Key")
        self.console.print("  [cyan]7[/cyan]. Exit")
        self.console.print()

    def start_server(self):
        """Start the approval channel in a background thread"""
        if self.server_running:
            self.console.print("[yellow]Channel is already running[/yellow]")
            return

        self.channel_server = self.agent.create_server()
        self.server_thread = threading.Thread(target=self.channel_server.run, daemon=True)
        self.server_thread.start()
        self.server_running = True

        self.console.print(f"\n[bold green]✓ Approval channel started on port {self.agent.ws_port}[/bold green]\n")

    def stop_server(self):
        """Stop the approval channel"""
        if not self.server_running:
            self.console.print("[yellow]Channel is not running[/yellow]")
            return

        self.channel_server.stop()
        if self.server_thread:
            self.server_thread.join(timeout=5)
        self.server_running = False

        self.console.print("\n[green]✓ Approval channel stopped[/green]\n")

    def decide(self, message_id: str, status: str, feedback: Optional[str] = None):
        """Decide a message on whichever loop owns the channel"""
        if self.server_running and self.agent.channel.loop is not None:
            return self.agent.channel.decide_threadsafe(message_id, status, feedback)
        return self.loop.run_until_complete(self.agent.decide_message(message_id, status, feedback))

    def review_approvals(self):
        """Walk through pending approval requests"""
        pending = self.agent.approvals.list_messages(status="pending")
        if not pending:
            self.console.print("[dim]No pending approval requests[/dim]")
            return

        show_messages(pending, self.console, title="Pending Approval Requests")
        for message in pending:
            self.agent.approvals.mark_read(message.id)
            self.console.print(Panel(
                "\n".join(part for part in (message.body, message.explanation, message.code) if part) or "[dim]no details[/dim]",
                title=message.title,
                subtitle=f"risk: {message.risk_level or 'unknown'}",
            ))
            choice = Prompt.ask("Decision", choices=["a", "r", "s"], default="s")
            if choice == "s":
                continue
            feedback = Prompt.ask("Feedback (optional)", default="") or None
            status = "approved" if choice == "a" else "rejected"
            self.decide(message.id, status, feedback)
            self.console.print(f"[green]✓ {message.id} {status}[/green]")

    async def login(self, provider_id: str, server_id: Optional[str] = None) -> bool:
        """Run the browser sign-in flow for a provider"""
        self.console.print(f"\n[bold cyan]Signing in to {provider_id}[/bold cyan]\n")
        self.console.print("Waiting for authentication in your browser...")
        try:
            tokens = await self.agent.oauth.login(provider_id, server_id=server_id)
        except KeyboardAgentError as e:
            self.console.print(f"[red]✗ Authentication error: {e}[/red]")
            return False

        if tokens is None:
            self.console.print("[red]✗ Authentication timed out[/red]")
            return False

        self.console.print("\n[bold green]✓ Authentication successful![/bold green]")
        if tokens.user:
            self.console.print(f"[dim]User: {tokens.user.get('email') or tokens.user.get('name')}[/dim]")
        return True

    def prompt_login(self):
        providers = [p.id for p in self.agent.list_available_providers()]
        if not providers:
            self.console.print("[red]No provider has a client id configured[/red]")
            return
        provider_id = Prompt.ask("Provider", choices=providers)
        self.loop.run_until_complete(self.login(provider_id))

    def run(self):
        """Main CLI loop"""
        while True:
            self.clear_screen()
            self.display_header()
            self.display_status()
            self.display_menu()

            choice = Prompt.ask("Select option", choices=["1", "2", "3", "4", "5", "6", "7"])

            if choice == "1":
                if self.server_running:
                    self.stop_server()
                else:
                    self.start_server()
            elif choice == "2":
                self.review_approvals()
            elif choice == "3":
                self.prompt_login()
            elif choice == "4":
                show_provider_status(self.agent.provider_status(), self.console)
            elif choice == "5":
                show_key_info(self.agent.key_manager, self.console, self.agent.ws_port)
            elif choice == "6":
                if Confirm.ask("Regenerate the key? Connected clients will need the new key"):
                    self.agent.regenerate_connection_key()
                    show_key_info(self.agent.key_manager, self.console, self.agent.ws_port)
            elif choice == "7":
                if self.server_running:
                    self.stop_server()
                self.console.print("\n[cyan]Goodbye![/cyan]\n")
                break

            input("\nPress Enter to continue...")

    def run_headless_mode(self):
        """Serve the channel without the menu until interrupted"""
        self.start_server()
        self.console.print(f"Connect with: [cyan]{self.agent.get_connection_url()}[/cyan]")
        self.console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            while self.server_running:
                time.sleep(1)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]Shutting down...[/yellow]")
            self.stop_server()
