"""Channel manager for coordinating chat channels."""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from agentgate.channels.base import ChannelAdapter
from agentgate.config.schema import Config
from agentgate.pairing import PairingStore


class ChannelManager:
    """
    Builds the enabled channel adapters from config and runs them.
    """

    def __init__(self, config: Config, pairing_store: PairingStore | None = None) -> None:
        self.config = config
        self.pairing_store = pairing_store
        self.channels: dict[str, ChannelAdapter] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._init_channels()

    def _init_channels(self) -> None:
        if self.config.channels.telegram.enabled:
            from agentgate.channels.telegram import TelegramChannel

            self.add(TelegramChannel(self.config.channels.telegram, self.pairing_store))
            logger.info("Telegram channel enabled")

    def add(self, adapter: ChannelAdapter) -> None:
        self.channels[adapter.id] = adapter

    def get_channel(self, channel_id: str) -> ChannelAdapter | None:
        return self.channels.get(channel_id)

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels)

    async def _run_channel(self, adapter: ChannelAdapter) -> None:
        try:
            await adapter.start()
        except Exception as e:
            logger.error(f"Failed to start channel {adapter.id}: {e}")

    async def start_all(self) -> None:
        """Start every channel; returns once they have all stopped."""
        if not self.channels:
            logger.warning("No channels enabled")
            return
        self._tasks = [asyncio.create_task(self._run_channel(a)) for a in self.channels.values()]
        logger.info(f"Starting channels: {', '.join(self.channels)}")
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop_all(self) -> None:
        logger.info("Stopping all channels...")
        for channel_id, adapter in self.channels.items():
            try:
                await adapter.stop()
                logger.info(f"Stopped {channel_id} channel")
            except Exception as e:
                logger.error(f"Error stopping {channel_id}: {e}")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def get_status(self) -> dict[str, Any]:
        return {cid: {"enabled": True, "running": a.is_running} for cid, a in self.channels.items()}
