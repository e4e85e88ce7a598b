from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from groupledger.config import get_settings
from groupledger.db.repo import Database, LedgerRepository, set_global_repository
from groupledger.handlers import ledger_router
from groupledger.logging import configure_logging, get_logger
from groupledger.scheduler import setup_scheduler


async def main() -> None:
    configure_logging()
    settings = get_settings()
    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()
    db = Database(settings.database_url, command_timeout=settings.storage_timeout)
    await db.connect()
    repo = LedgerRepository(db)

    dp.include_router(ledger_router)

    set_global_repository(repo)

    scheduler = await setup_scheduler(repo)

    log = get_logger(__name__)
    log.info("bot.start")
    try:
        await dp.start_polling(bot)
    finally:
        scheduler.shutdown(wait=False)
        await db.close()
        await bot.session.close()
        log.info("bot.stop")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
