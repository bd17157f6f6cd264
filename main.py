"""Example bot wired on top of the dispatch engine.

Usage::

    BOT_TOKEN=... python main.py                 # long polling (default)
    BOT_TOKEN=... WEBHOOK_URL=... python main.py --mode webhook

Registers ``/start``, ``/help``, a callback handler for the help keyboard
and an echo catch-all, then runs the chosen update source until SIGINT or
SIGTERM.
"""

import argparse
import asyncio
import signal

from bot.dispatcher import Dispatcher
from bot.poller import Poller
from bot.registry import HandlerRegistry
from bot.webhook import WebhookReceiver
from config import API_BASE_URL, BOT_TOKEN, DISPATCH_MODE, REQUEST_TIMEOUT, poller_config, webhook_config
from core.logger import CourierLogger
from sdk.client import CourierClient
from sdk.models import CallbackQuery, Message, SendOptions, Update

logger = CourierLogger.get_logger()


def build_registry(client: CourierClient) -> HandlerRegistry:
    """Register the example handlers against *client*."""
    routes = HandlerRegistry()

    async def reply(chat_id: int, text: str, options: SendOptions | None = None) -> None:
        await asyncio.to_thread(client.send_message, chat_id, text, options)

    @routes.command("/start", description="Say hello")
    async def handle_start(message: Message) -> None:
        name = message.from_field.first_name if message.from_field else "there"
        await reply(message.chat.id, f"👋 Hello, {name}! Send /help to see what I can do.")

    @routes.command("/help", description="List commands")
    async def handle_help(message: Message) -> None:
        keyboard = {
            "inline_keyboard": [
                [{"text": command, "callback_data": f"help:{command}"}]
                for command in routes.commands()
            ]
        }
        lines = [f"{command} - {description}" for command, description in routes.commands().items()]
        await reply(message.chat.id, "\n".join(lines), SendOptions(reply_markup=keyboard))

    @routes.callback(prefix="help:")
    async def handle_help_button(query: CallbackQuery) -> None:
        command = (query.data or "").partition(":")[2]
        await asyncio.to_thread(client.answer_callback_query, query.id, f"Type {command} to run it")

    @routes.text()
    async def handle_echo(message: Message) -> None:
        if message.text:
            await reply(message.chat.id, message.text)

    @routes.unhandled()
    async def handle_unrouted(update: Update) -> None:
        logger.debug("Unrouted update", extra={"update_id": update.update_id})

    return routes


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows event loops
            pass


async def run_polling(client: CourierClient, dispatcher: Dispatcher) -> None:
    poller = Poller(client, dispatcher, poller_config())
    stop = asyncio.Event()
    _install_signal_handlers(stop)

    await poller.start()
    stop_waiter = asyncio.create_task(stop.wait())
    poller_waiter = asyncio.create_task(poller.wait())
    done, _ = await asyncio.wait({stop_waiter, poller_waiter}, return_when=asyncio.FIRST_COMPLETED)
    stop_waiter.cancel()
    await poller.stop()
    await dispatcher.drain()
    if poller_waiter in done:
        poller_waiter.result()  # re-raises PollerFatalError
    else:
        poller_waiter.cancel()


async def run_webhook(client: CourierClient, dispatcher: Dispatcher) -> None:
    receiver = WebhookReceiver(client, dispatcher, webhook_config())
    await receiver.run()
    await dispatcher.drain()


async def main(mode: str) -> None:
    if not BOT_TOKEN:
        raise EnvironmentError("BOT_TOKEN environment variable is not set or is empty.")

    client = CourierClient(BOT_TOKEN, base_url=API_BASE_URL, timeout=REQUEST_TIMEOUT)
    me = await asyncio.to_thread(client.get_me)
    logger.info("Bot identity confirmed", extra={"bot_id": me.id, "username": me.username, "mode": mode})

    dispatcher = Dispatcher(build_registry(client), mode=DISPATCH_MODE)
    try:
        if mode == "webhook":
            await run_webhook(client, dispatcher)
        else:
            await run_polling(client, dispatcher)
    finally:
        client.close()
    logger.info("Bot shut down")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the example Courier bot.")
    parser.add_argument("--mode", choices=("poll", "webhook"), default="poll", help="update source to use")
    args = parser.parse_args()
    asyncio.run(main(args.mode))
