import asyncio

import pytest

from leadbot.application.dispatcher import pending_work
from leadbot.domain.errors import SendError, SendFailureReason
from leadbot.domain.models import LeadRecord, LogStatus
from leadbot.infrastructure.config.settings import CatalogPolicy

from .conftest import FakeProvider, make_bot

PHONE = "919876543210"


def statuses_of(bot):
    return asyncio.run(bot.messages.load_statuses()).get(PHONE, set())


def test_pending_work_per_policy():
    lead = LeadRecord(name="Asha", phone=PHONE)

    assert pending_work(lead, set(), False, CatalogPolicy.ALWAYS) == (True, True)
    assert pending_work(lead, {"Failed"}, False, CatalogPolicy.ALWAYS) == (True, True)
    assert pending_work(lead, {"Sent"}, False, CatalogPolicy.ALWAYS) == (False, False)
    assert pending_work(lead, {"Sent"}, False, CatalogPolicy.ALWAYS, retry_catalog=True) == (False, True)
    assert pending_work(lead, {"Seen"}, True, CatalogPolicy.ALWAYS, retry_catalog=True) == (False, False)
    assert pending_work(lead, {"Invalid"}, False, CatalogPolicy.ALWAYS) == (False, False)
    assert pending_work(lead, {"Invalid"}, False, CatalogPolicy.ALWAYS, retry_catalog=True) == (False, False)
    assert pending_work(lead, set(), False, CatalogPolicy.CONDITIONAL) == (True, False)
    assert pending_work(lead, set(), False, CatalogPolicy.NONE) == (True, False)


def test_dispatch_sends_welcome_and_catalog_once(tmp_path, lead):
    bot = make_bot(tmp_path)

    async def scenario():
        first = await bot.dispatcher.dispatch(lead)
        second = await bot.dispatcher.dispatch(lead)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.welcome_status == LogStatus.SENT
    assert first.catalog_sent
    assert second.skipped
    assert len(bot.provider.sent_to(PHONE, "text")) == 1
    assert len(bot.provider.sent_to(PHONE, "file")) == 1
    assert "Dear Asha Verma" in bot.provider.sent[0][2]
    assert "Acme Baths" in bot.provider.sent[0][2]
    assert bot.provider.sent[1][2] == (
        "Thank you for reaching out to us at Acme Baths. Please have a look at our basin collections."
    )
    assert statuses_of(bot) == {"Sent"}
    assert asyncio.run(bot.catalogs.load_sent_phones()) == {PHONE}
    assert not bot.context.locks.is_held(PHONE)


def test_concurrent_dispatch_sends_at_most_once(tmp_path, lead):
    bot = make_bot(tmp_path, provider=FakeProvider(send_delay=0.05))

    async def scenario():
        return await asyncio.gather(
            bot.dispatcher.dispatch(lead),
            bot.dispatcher.dispatch(LeadRecord(name="Asha", phone="+91 98765-43210")),
        )

    outcomes = asyncio.run(scenario())

    assert sorted(o.skipped for o in outcomes) == [False, True]
    assert len(bot.provider.sent_to(PHONE, "text")) == 1
    entries = asyncio.run(bot.messages.read_entries())
    assert [e.status for e in entries] == ["Sent"]


def test_invalid_recipient_is_terminal(tmp_path, lead):
    bot = make_bot(tmp_path)
    bot.provider.failures[PHONE] = SendError(SendFailureReason.RECIPIENT_INVALID, "not registered", PHONE)

    async def scenario():
        first = await bot.dispatcher.dispatch(lead)
        del bot.provider.failures[PHONE]
        second = await bot.dispatcher.dispatch(lead)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.welcome_status == LogStatus.INVALID
    assert not first.catalog_sent
    assert second.skipped
    assert bot.provider.sent == []
    assert statuses_of(bot) == {"Invalid"}


def test_transient_failure_is_retried_later(tmp_path, lead):
    bot = make_bot(tmp_path)
    bot.provider.failures[PHONE] = SendError(SendFailureReason.TRANSIENT, "chat did not load", PHONE)

    async def scenario():
        first = await bot.dispatcher.dispatch(lead)
        del bot.provider.failures[PHONE]
        second = await bot.dispatcher.dispatch(lead)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.welcome_status == LogStatus.FAILED
    assert not first.catalog_sent
    assert second.welcome_status == LogStatus.SENT
    assert second.catalog_sent
    assert statuses_of(bot) == {"Failed", "Sent"}


def test_not_ready_session_logs_failed(tmp_path, lead):
    bot = make_bot(tmp_path, provider=FakeProvider(ready=False))

    outcome = asyncio.run(bot.dispatcher.dispatch(lead))

    assert outcome.welcome_status == LogStatus.FAILED
    assert bot.provider.sent == []
    assert statuses_of(bot) == {"Failed"}


def test_logged_phone_gets_no_catalog_from_regular_dispatch(tmp_path, lead):
    bot = make_bot(tmp_path)

    async def scenario():
        await bot.messages.log_status(PHONE, "Asha Verma", LogStatus.SENT)
        return await bot.dispatcher.dispatch(lead)

    outcome = asyncio.run(scenario())

    assert outcome.skipped
    assert bot.provider.sent == []
    assert asyncio.run(bot.catalogs.load_sent_phones()) == set()


def test_catalog_failure_is_retried_on_next_dispatch(tmp_path, lead):
    bot = make_bot(tmp_path)
    bot.provider.file_failures[PHONE] = SendError(SendFailureReason.TRANSIENT, "upload timed out", PHONE)

    async def scenario():
        first = await bot.dispatcher.dispatch(lead)
        del bot.provider.file_failures[PHONE]
        second = await bot.dispatcher.dispatch(lead)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.welcome_status == LogStatus.SENT
    assert not first.catalog_sent
    assert second.welcome_status is None
    assert second.catalog_sent
    assert len(bot.provider.sent_to(PHONE, "text")) == 1
    assert statuses_of(bot) == {"Sent"}
    assert bot.dispatcher.catalog_retries == set()


def test_missing_catalog_file_sends_caption_as_text(tmp_path, lead):
    bot = make_bot(tmp_path, catalog_file=False)

    outcome = asyncio.run(bot.dispatcher.dispatch(lead))

    assert outcome.catalog_sent
    texts = bot.provider.sent_to(PHONE, "text")
    assert len(texts) == 2
    assert "basin collections" in texts[1][2]
    assert bot.provider.sent_to(PHONE, "file") == []


def test_location_message_follows_catalog(tmp_path, lead):
    bot = make_bot(tmp_path, locationMessage="Visit us at {location}\n{locationUrl}")

    asyncio.run(bot.dispatcher.dispatch(lead))

    kinds = [kind for _, kind, _ in bot.provider.sent]
    assert kinds == ["text", "file", "text"]
    assert bot.provider.sent[-1][2] == "Visit us at Mansarovar Garden\nhttps://maps.example/acme"


def test_conditional_policy_sends_catalog_only_on_request(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL)

    async def scenario():
        welcome = await bot.dispatcher.dispatch(lead)
        catalog = await bot.dispatcher.dispatch_catalog(lead, "Catalog requested")
        again = await bot.dispatcher.dispatch_catalog(lead, "Catalog requested")
        return welcome, catalog, again

    welcome, catalog, again = asyncio.run(scenario())

    assert welcome.welcome_status == LogStatus.SENT
    assert not welcome.catalog_sent
    assert catalog.catalog_sent
    assert again.skipped
    assert len(bot.provider.sent_to(PHONE, "file")) == 1


def test_no_catalog_policy(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.NONE)

    outcome = asyncio.run(bot.dispatcher.dispatch(lead))

    assert outcome.welcome_status == LogStatus.SENT
    assert not outcome.catalog_sent
    assert bot.provider.sent_to(PHONE, "file") == []


def test_dispatch_catalog_requires_delivered_welcome(tmp_path, lead):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL)

    async def scenario():
        await bot.messages.log_status(PHONE, "Asha Verma", LogStatus.INVALID)
        return await bot.dispatcher.dispatch_catalog(lead)

    outcome = asyncio.run(scenario())

    assert outcome.skipped
    assert bot.provider.sent == []


def test_lead_without_phone_is_skipped(tmp_path):
    bot = make_bot(tmp_path)

    outcome = asyncio.run(bot.dispatcher.dispatch(LeadRecord(name="No Phone", phone="n/a")))

    assert outcome.skipped
    assert bot.provider.sent == []


def test_read_receipt_watch_after_welcome(tmp_path, lead):
    bot = make_bot(tmp_path, track_read_receipts=True)

    asyncio.run(bot.dispatcher.dispatch(lead))

    assert bot.provider.watched == [PHONE]


def test_lock_released_when_send_raises_unexpectedly(tmp_path, lead):
    bot = make_bot(tmp_path)

    async def boom(phone, text):
        raise RuntimeError("driver crashed")

    bot.provider.send_text = boom

    with pytest.raises(RuntimeError):
        asyncio.run(bot.dispatcher.dispatch(lead))

    assert not bot.context.locks.is_held(PHONE)
