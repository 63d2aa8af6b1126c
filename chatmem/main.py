"""chatmem entry point."""

import asyncio
import logging

from chatmem.api.server import ApiServer, Services
from chatmem.chat import ChatService
from chatmem.config import settings
from chatmem.db import Database
from chatmem.llm.client import ModelProvider, stream_text
from chatmem.memory.context import ContextAssembler
from chatmem.memory.extractor import MemoryExtractor
from chatmem.memory.retriever import MemoryRetriever
from chatmem.memory.store import MemoryStore
from chatmem.memory.turns import TurnRecorder

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_services(db: Database, provider: ModelProvider = stream_text) -> Services:
    """Wire the memory pipeline and chat service around one database."""
    store = MemoryStore(db)
    retriever = MemoryRetriever(store)
    chat = ChatService(
        store=store,
        assembler=ContextAssembler(retriever),
        recorder=TurnRecorder(store),
        extractor=MemoryExtractor(store),
        provider=provider,
    )
    return Services(store=store, retriever=retriever, chat=chat)


async def serve() -> None:
    """Open the database, run the API server until cancelled, then clean up."""
    db = await Database.open(settings.database_path)
    server = ApiServer(build_services(db))
    try:
        await server.start()
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await db.close()


def main() -> None:
    """Start the API server."""
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty, chat turns will fail at the provider")
    logger.info("Starting chatmem with model %s...", settings.chat_model)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
