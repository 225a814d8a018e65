"""Concierge — Main entry point."""

import asyncio
import logging
import os
import signal
import sys

from .actions import ActionContentRouter
from .agent import ResponseGenerator
from .broadcast import BroadcastWorkflow
from .config import ConciergeSettings, load_settings
from .db.connection import apply_schema, close_db, init_db
from .gating import GatingPolicy
from .ingest import IngestionLoop
from .llm.openai import OpenAIProvider
from .memory import ConversationMemory, MemorySweeper
from .reminders import ReminderDispatcher
from .router import CommandGrammar, CommandRouter
from .transport.telegram import TelegramTransport

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_log_file = os.path.expanduser("~/concierge.log")

logging.basicConfig(
    level=logging.INFO,
    format=_log_format,
    handlers=[
        logging.StreamHandler(),                          # stderr (console)
        logging.FileHandler(_log_file, encoding="utf-8"), # ~/concierge.log
    ],
)
logger = logging.getLogger("concierge")


def build_pipeline(settings: ConciergeSettings, transport: TelegramTransport) -> tuple[IngestionLoop, ConversationMemory]:
    """Wire the routing components around a started transport."""
    memory = ConversationMemory(
        max_entries=settings.memory_max_entries,
        max_age_seconds=settings.memory_max_age,
    )
    gating = GatingPolicy(settings.mention_handles)
    if transport.username:
        gating.add_handle(transport.username)

    broadcasts = BroadcastWorkflow(
        transport,
        header=settings.broadcast_header,
        send_delay=settings.broadcast_send_delay,
        send_timeout=settings.send_timeout,
        allowlist=settings.broadcast_allowlist,
        confirm_phrase=settings.confirm_phrases[0] if settings.confirm_phrases else "yes",
        cancel_phrase=settings.cancel_phrases[0] if settings.cancel_phrases else "no",
    )
    provider = OpenAIProvider(
        api_key=settings.openai_api_key,
        chat_model=settings.chat_model,
        base_url=settings.openai_base_url,
        timeout=settings.response_timeout,
    )
    responder = ResponseGenerator(
        provider,
        agent_name=settings.agent_name,
        event_name=settings.event_name,
    )
    router = CommandRouter(
        transport,
        memory,
        broadcasts,
        responder,
        grammar=CommandGrammar.from_settings(settings),
        admin_ids=tuple(settings.admin_ids),
        agent_name=settings.agent_name,
        event_name=settings.event_name,
        response_timeout=settings.response_timeout,
        send_timeout=settings.send_timeout,
    )
    action_router = ActionContentRouter(
        event_name=settings.event_name,
        reminder_prefix=settings.reminder_prefix,
    )
    loop = IngestionLoop(
        transport,
        gating,
        router,
        action_router,
        show_sender_address=settings.show_sender_address,
        debug_logs=settings.debug_logs,
        send_timeout=settings.send_timeout,
    )
    return loop, memory


async def run(settings: ConciergeSettings = None) -> int:
    """Main run loop. Returns the process exit code."""
    settings = settings or load_settings()
    if settings.debug_logs:
        logger.setLevel(logging.DEBUG)

    missing = settings.missing_required()
    if missing:
        logger.critical(f"Missing required configuration: {', '.join('CONCIERGE_' + m.upper() for m in missing)}")
        return 1

    logger.info(f"🚀 Starting {settings.event_name} {settings.agent_name} agent")

    transport = None
    sweeper = None
    dispatcher = None
    try:
        pool = await init_db(settings.database_url)
        await apply_schema(pool)

        transport = TelegramTransport(settings.telegram_bot_token)
        await transport.start()

        ingestion, memory = build_pipeline(settings, transport)

        sweeper = MemorySweeper(memory, interval_seconds=settings.memory_sweep_interval)
        await sweeper.start()

        dispatcher = ReminderDispatcher(interval_seconds=settings.reminder_check_interval)
        await dispatcher.start(transport)

        logger.info("💬 Agent will only respond to:")
        logger.info("  - Direct messages (DMs)")
        handles = ", ".join(f"@{h}" for h in ingestion.gating.handles)
        logger.info(f"  - Group messages when mentioned with {handles}")

        # Ctrl+C / SIGTERM: stop the transport, which ends the message stream
        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_requested.set)
            except NotImplementedError:
                pass

        ingest_task = asyncio.create_task(ingestion.run())
        stop_task = asyncio.create_task(stop_requested.wait())
        done, _ = await asyncio.wait({ingest_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            logger.info("🛑 Shutting down agent...")
            await transport.stop()
            transport = None
            await ingest_task
        else:
            stop_task.cancel()
            ingest_task.result()
        return 0

    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
        return 1
    finally:
        if dispatcher:
            await dispatcher.stop()
        if sweeper:
            await sweeper.stop()
        if transport:
            await transport.stop()
        await close_db()


def main():
    """Entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
