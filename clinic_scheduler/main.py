"""CLI entry point for the clinic scheduler.

Usage:
    clinic-scheduler init-db
    clinic-scheduler chat --patient-id 1 [--language es]
    clinic-scheduler waitlist [--once]
    clinic-scheduler --debug chat --patient-id 1
"""

import argparse
import asyncio
import logging

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.database import async_session, init_db

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)

    logging.getLogger("clinic_scheduler").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat(patient_id: int, language: str | None) -> None:
    from clinic_scheduler.services.chat_service import ChatService

    async with async_session() as db:
        service = ChatService(db)
        conversation_id, greeting = await service.start_conversation(patient_id, language)
        print(f"\nAssistant: {greeting}\n")

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            reply = await service.send_message(conversation_id, user_input)
            print(f"\nAssistant: {reply.reply}\n")


async def _waitlist(once: bool) -> None:
    from clinic_scheduler.services.waitlist_service import WaitlistReconciler, run_waitlist_forever

    if not once:
        await run_waitlist_forever(settings.WAITLIST_INTERVAL_SECONDS)
        return

    report = await WaitlistReconciler(async_session).process_active_entries()
    print(report.model_dump_json(indent=2))


def main():
    parser = argparse.ArgumentParser(description="Dental clinic appointment scheduler")
    parser.add_argument("--debug", action="store_true", help="Show all log messages")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    chat = commands.add_parser("chat", help="Chat with the scheduling assistant")
    chat.add_argument("--patient-id", type=int, required=True)
    chat.add_argument("--language", choices=["en", "es"], default=None)

    waitlist = commands.add_parser("waitlist", help="Run the waitlist reconciler")
    waitlist.add_argument("--once", action="store_true", help="Run a single pass and print the report")

    args = parser.parse_args()
    _configure_logging(debug=args.debug)

    try:
        if args.command == "init-db":
            asyncio.run(init_db())
            print("Tables created.")
        elif args.command == "chat":
            asyncio.run(_chat(args.patient_id, args.language))
        elif args.command == "waitlist":
            asyncio.run(_waitlist(args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
