"""CLI commands for agentgate."""

import asyncio
import signal

import typer
from rich.console import Console
from rich.table import Table

from agentgate import __logo__, __version__

app = typer.Typer(
    name="agentgate",
    help=f"{__logo__} agentgate - one persistent agent behind many chat channels",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} agentgate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """agentgate - one persistent agent behind many chat channels."""


# ============================================================================
# Gateway
# ============================================================================


def _build_gateway(settings, config):
    """Wire backend, store, orchestrator, agent loop, batcher and channels."""
    from agentgate.agent.batcher import GroupBatcher
    from agentgate.agent.hooks import install_skills_hook, name_agent_hook
    from agentgate.agent.loop import AgentLoop
    from agentgate.agent.prompts import default_create_options
    from agentgate.agent.session import SessionOrchestrator
    from agentgate.agent.store import AgentStore
    from agentgate.channels.manager import ChannelManager
    from agentgate.config.loader import build_group_settings
    from agentgate.pairing import PairingStore
    from agentgate.providers.letta import LettaBackend

    backend = LettaBackend(settings.base_url, settings.api_key or None, settings.request_timeout_seconds)
    store = AgentStore(settings.agent_store_path, agent_id_override=settings.agent_id or None)

    hooks = [name_agent_hook(backend, settings.agent_name)]
    if settings.skills_dir is not None:
        hooks.append(install_skills_hook(settings.skills_dir, settings.state_dir / "agents"))

    orchestrator = SessionOrchestrator(
        backend,
        store,
        create_options=default_create_options(settings.agent_name, settings.model),
        post_create_hooks=hooks,
        init_timeout_ms=settings.session_init_timeout_ms,
        idle_timeout_ms=settings.stream_idle_timeout_ms,
        edit_interval_ms=settings.stream_edit_interval_ms,
        max_tool_calls=settings.max_tool_calls,
        typing_interval=settings.typing_interval_seconds,
    )
    agent = AgentLoop(orchestrator, store, agent_name=settings.agent_name)
    agent.set_group_batcher(GroupBatcher(agent.process_group_batch, build_group_settings(config)))

    channels = ChannelManager(config, PairingStore(settings.credentials_dir))
    for adapter in channels.channels.values():
        agent.register_channel(adapter)
    return backend, agent, channels


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Start the agentgate gateway."""
    from loguru import logger

    from agentgate.config.loader import load_config
    from agentgate.settings import get_settings
    from agentgate.utils.log import setup_logging

    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_file)

    config = load_config()
    console.print(f"{__logo__} Starting agentgate gateway...")

    async def run() -> None:
        backend, agent, channels = _build_gateway(settings, config)
        if not channels.enabled_channels:
            console.print("[yellow]Warning: No channels enabled[/yellow]")
        else:
            console.print(f"[green]✓[/green] Channels enabled: {', '.join(channels.enabled_channels)}")
        agent.start()

        shutdown_done = False

        async def graceful_shutdown() -> None:
            nonlocal shutdown_done
            if shutdown_done:
                return
            shutdown_done = True
            console.print("\nShutting down...")
            await channels.stop_all()
            await agent.stop()
            await backend.aclose()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(graceful_shutdown()))

        try:
            await channels.start_all()
        except asyncio.CancelledError:
            pass
        finally:
            await graceful_shutdown()
        logger.info("Gateway exited")

    asyncio.run(run())


# ============================================================================
# Status / reset
# ============================================================================


def _load_store():
    from agentgate.agent.store import AgentStore
    from agentgate.settings import get_settings

    settings = get_settings()
    return settings, AgentStore(settings.agent_store_path, agent_id_override=settings.agent_id or None)


@app.command()
def status():
    """Show agentgate status."""
    from agentgate.config.loader import get_config_path, load_config

    settings, store = _load_store()
    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} agentgate Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[dim]defaults[/dim]'}")
    console.print(f"State: {settings.state_dir}")
    console.print(f"Server: {settings.base_url}")
    console.print(f"Agent: {store.agent_id or '[dim]not created yet[/dim]'}")
    console.print(f"Conversation: {store.conversation_id or '[dim]none[/dim]'}")
    if store.is_server_mismatch(settings.base_url):
        console.print(f"[yellow]Stored agent belongs to {store.base_url}[/yellow]")
    target = store.last_message_target
    if target is not None:
        console.print(f"Last message: {target.channel}:{target.chat_id} at {target.updated_at}")
    telegram = config.channels.telegram
    console.print(
        f"Telegram: {'[green]✓[/green]' if telegram.enabled else '[dim]disabled[/dim]'} (dm policy: {telegram.dm_policy})"
    )


@app.command()
def reset(
    conversation_only: bool = typer.Option(
        False, "--conversation-only", "-c", help="Keep the agent, start a new conversation"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Forget the stored agent (or only its conversation)."""
    _, store = _load_store()
    what = "conversation" if conversation_only else "agent and conversation"
    if not yes and not typer.confirm(f"Forget the stored {what}?"):
        raise typer.Exit()
    if conversation_only:
        asyncio.run(store.reset_conversation())
    else:
        asyncio.run(store.reset())
    console.print(f"[green]✓[/green] Reset {what}")


# ============================================================================
# Pairing Commands
# ============================================================================


pairing_app = typer.Typer(help="Manage DM pairing requests")
app.add_typer(pairing_app, name="pairing")


def _pairing_store():
    from agentgate.pairing import PairingStore
    from agentgate.settings import get_settings

    return PairingStore(get_settings().credentials_dir)


@pairing_app.command("list")
def pairing_list(
    channel: str = typer.Argument(..., help="Channel id, e.g. telegram"),
):
    """List pending pairing requests."""
    store = _pairing_store()
    requests = asyncio.run(store.list_pairing_requests(channel))

    if not requests:
        console.print(f"No pending pairing requests for {channel}.")
        return

    table = Table(title=f"Pending pairing requests ({channel})")
    table.add_column("Code", style="cyan")
    table.add_column("User ID")
    table.add_column("Name")
    table.add_column("Requested")

    for req in requests:
        name = ""
        if req.meta is not None:
            name = " ".join(p for p in (req.meta.first_name, req.meta.last_name) if p)
            if req.meta.username:
                name = f"{name} (@{req.meta.username})".strip()
        table.add_row(req.code, req.id, name, req.created_at)

    console.print(table)


@pairing_app.command("approve")
def pairing_approve(
    channel: str = typer.Argument(..., help="Channel id, e.g. telegram"),
    code: str = typer.Argument(..., help="Pairing code shown to the user"),
):
    """Approve a pairing code and allow its sender."""
    store = _pairing_store()
    approval = asyncio.run(store.approve_pairing_code(channel, code))
    if approval is None:
        console.print(f"[red]No pending request with code {code.upper()} on {channel}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Approved {approval.user_id} on {channel}")


if __name__ == "__main__":
    app()
