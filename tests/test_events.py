import asyncio

from leadbot.domain.errors import SendError, SendFailureReason
from leadbot.domain.models import LogStatus
from leadbot.infrastructure.config.settings import CatalogPolicy
from leadbot.infrastructure.whatsapp.events import ChatEvent, ChatEventKind

from .conftest import NOTIFICATION_PHONE, make_bot

PHONE = "919876543210"
NOTIFY = "91" + NOTIFICATION_PHONE


def test_read_receipt_marks_seen_and_notifies_once(tmp_path, lead):
    bot = make_bot(tmp_path)
    bot.context.known_lead_phones = {PHONE}

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        first = await bot.events.on_read(PHONE)
        second = await bot.events.on_read(PHONE)
        return first, second

    first, second = asyncio.run(scenario())

    assert first == "Asha Verma"
    assert second is None
    notifications = bot.provider.sent_to(NOTIFY)
    assert len(notifications) == 1
    assert notifications[0][2].startswith("📲 Customer Viewed Message!")
    assert "Name: Asha Verma" in notifications[0][2]
    assert f"Phone: {PHONE}" in notifications[0][2]
    statuses = asyncio.run(bot.messages.load_statuses())
    assert statuses[PHONE] == {LogStatus.SEEN.value}


def test_read_from_unknown_phone_updates_log_without_notification(tmp_path, lead):
    bot = make_bot(tmp_path)

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        return await bot.events.on_read(PHONE)

    assert asyncio.run(scenario()) == "Asha Verma"
    assert bot.provider.sent_to(NOTIFY) == []
    assert asyncio.run(bot.messages.load_statuses())[PHONE] == {"Seen"}


def test_read_without_sent_row_is_ignored(tmp_path):
    bot = make_bot(tmp_path)
    bot.context.known_lead_phones = {PHONE}

    assert asyncio.run(bot.events.on_read(PHONE)) is None
    assert bot.provider.sent == []


def test_read_from_notification_phone_is_ignored(tmp_path):
    bot = make_bot(tmp_path)

    async def scenario():
        await bot.messages.log_status(NOTIFY, "Owner", LogStatus.SENT)
        return await bot.events.on_read(NOTIFICATION_PHONE)

    assert asyncio.run(scenario()) is None
    assert asyncio.run(bot.messages.load_statuses())[NOTIFY] == {"Sent"}


def test_seen_notification_retried_once(tmp_path, lead):
    bot = make_bot(tmp_path)
    bot.context.known_lead_phones = {PHONE}
    original = bot.provider.send_text
    attempts = []

    async def flaky_send(phone, text):
        if phone == NOTIFY:
            attempts.append(text)
            if len(attempts) == 1:
                raise SendError(SendFailureReason.TRANSIENT, "chat did not load", phone)
        await original(phone, text)

    bot.provider.send_text = flaky_send

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        await bot.events.on_read(PHONE)

    asyncio.run(scenario())

    assert len(attempts) == 2
    assert len(bot.provider.sent_to(NOTIFY)) == 1


def test_catalog_keyword_triggers_catalog(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL)

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        chit_chat = await bot.events.on_message(PHONE, "hello, thanks!")
        request = await bot.events.on_message(PHONE, "Please send the PDF")
        repeat = await bot.events.on_message(PHONE, "catalog again?")
        return chit_chat, request, repeat

    chit_chat, request, repeat = asyncio.run(scenario())

    assert not chit_chat
    assert request
    assert not repeat
    assert len(bot.provider.sent_to(PHONE, "file")) == 1
    assert asyncio.run(bot.catalogs.load_sent_phones()) == {PHONE}


def test_catalog_keyword_ignored_without_catalog(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.NONE)

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        return await bot.events.on_message(PHONE, "pdf")

    assert not asyncio.run(scenario())
    assert bot.provider.sent_to(PHONE, "file") == []


def test_catalog_request_from_stranger_is_ignored(tmp_path):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL)

    assert not asyncio.run(bot.events.on_message("9123456789", "send catalog"))
    assert bot.provider.sent == []


def test_run_consumes_provider_events(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL)
    bot.context.known_lead_phones = {PHONE}

    async def scenario():
        await bot.dispatcher.dispatch(lead)
        consumer = asyncio.create_task(bot.events.run())
        await bot.provider.events.put(ChatEvent(ChatEventKind.READ, PHONE))
        await bot.provider.events.put(ChatEvent(ChatEventKind.MESSAGE, PHONE, "price list please"))
        while not bot.provider.sent_to(PHONE, "file"):
            await asyncio.sleep(0.01)
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert len(bot.provider.sent_to(NOTIFY)) == 1
    assert len(bot.provider.sent_to(PHONE, "file")) == 1
