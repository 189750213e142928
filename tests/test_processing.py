import asyncio

from leadbot.domain.errors import FetchError, SendError, SendFailureReason
from leadbot.domain.models import LeadRecord, LogStatus
from leadbot.infrastructure.config.settings import CatalogPolicy

from .conftest import ADMIN_PHONE, FakeProvider, make_bot, write_log

ADMIN = "91" + ADMIN_PHONE
MAIN_HEADER = "Phone,Name,Timestamp,Status,SeenTimestamp,TimeToSee,LastUpdated"
CATALOG_HEADER = "Phone,Name,Timestamp,Status"


def leads():
    return [
        LeadRecord(name="Asha Verma", phone="9876543210"),
        LeadRecord(name="Ravi Kumar", phone="09123456789"),
        LeadRecord(name="Meena", phone="+91 90000 00001"),
    ]


def test_cycle_sends_to_new_leads_only_once(tmp_path):
    bot = make_bot(tmp_path, leads=leads())

    async def scenario():
        first = await bot.processor.run_once()
        second = await bot.processor.run_once()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.leads_fetched == 3
    assert first.welcomes_sent == 3
    assert first.catalogs_sent == 3
    assert second.dispatched == 0
    assert second.welcomes_sent == 0
    assert len([s for s in bot.provider.sent if s[1] == "text"]) == 3
    assert bot.context.known_lead_phones == {"919876543210", "919123456789", "919000000001"}
    assert bot.processor.state.value == "idle"


def test_duplicate_phones_in_one_fetch_get_one_welcome(tmp_path):
    bot = make_bot(tmp_path, leads=[
        LeadRecord(name="Asha", phone="9876543210"),
        LeadRecord(name="Asha Verma", phone="919876543210"),
        LeadRecord(name="A. Verma", phone="09876543210"),
    ])

    result = asyncio.run(bot.processor.run_once())

    assert result.welcomes_sent == 1
    assert len(bot.provider.sent_to("919876543210", "text")) == 1


def test_duplicate_after_failure_is_not_retried_in_same_cycle(tmp_path):
    bot = make_bot(tmp_path, leads=[
        LeadRecord(name="Asha", phone="9876543210"),
        LeadRecord(name="Asha again", phone="9876543210"),
    ])
    bot.provider.failures["919876543210"] = SendError(SendFailureReason.TRANSIENT, "timeout")

    result = asyncio.run(bot.processor.run_once())

    assert result.failed == 1
    entries = asyncio.run(bot.messages.read_entries())
    assert [e.status for e in entries] == ["Failed"]


def test_overlapping_cycles_are_skipped(tmp_path):
    bot = make_bot(tmp_path, leads=leads(), provider=FakeProvider(send_delay=0.02))

    async def scenario():
        return await asyncio.gather(bot.processor.run_once(), bot.processor.run_once())

    first, second = asyncio.run(scenario())

    assert not first.skipped
    assert second.skipped
    assert second.reason == "already running"
    assert bot.source.calls == 1
    assert len([s for s in bot.provider.sent if s[1] == "text"]) == 3


def test_cycle_skipped_while_session_not_ready(tmp_path):
    bot = make_bot(tmp_path, leads=leads(), provider=FakeProvider(ready=False))

    result = asyncio.run(bot.processor.run_once())

    assert result.skipped
    assert result.reason == "not ready"
    assert bot.source.calls == 0
    assert not bot.messages.path.exists()


def test_fetch_failures_alert_admin_once_per_episode(tmp_path):
    bot = make_bot(tmp_path, leads=leads())
    bot.source.error = FetchError("Sheets API returned HTTP 403")

    async def scenario():
        results = [await bot.processor.run_once() for _ in range(4)]
        bot.source.error = None
        results.append(await bot.processor.run_once())
        return results

    results = asyncio.run(scenario())

    assert [r.reason for r in results[:4]] == ["fetch failed"] * 4
    alerts = bot.provider.sent_to(ADMIN)
    assert len(alerts) == 1
    assert "🚨 SYSTEM ALERT - Acme Baths Bot" in alerts[0][2]
    assert "Lead source connection failed multiple times" in alerts[0][2]
    assert "HTTP 403" in alerts[0][2]
    assert bot.context.health.consecutive_failures == 0
    assert bot.context.health.last_successful_fetch is not None
    assert results[-1].welcomes_sent == 3
    assert len(bot.context.health.errors) == 4


def test_locked_phone_is_skipped(tmp_path):
    bot = make_bot(tmp_path, leads=leads())
    bot.context.locks.try_acquire("9876543210")

    result = asyncio.run(bot.processor.run_once())

    assert result.welcomes_sent == 2
    assert bot.provider.sent_to("919876543210") == []
    assert bot.context.locks.is_held("919876543210")


def test_unexpected_error_does_not_abort_cycle(tmp_path):
    bot = make_bot(tmp_path, leads=leads())
    original = bot.provider.send_text

    async def flaky_send(phone, text):
        if phone == "919876543210":
            raise RuntimeError("browser tab crashed")
        await original(phone, text)

    bot.provider.send_text = flaky_send

    result = asyncio.run(bot.processor.run_once())

    assert result.failed == 1
    assert result.welcomes_sent == 2
    assert not bot.context.locks.is_held("919876543210")


def test_conditional_policy_sends_catalog_to_flagged_leads(tmp_path):
    bot = make_bot(tmp_path, policy=CatalogPolicy.CONDITIONAL, leads=[
        LeadRecord(name="Asha", phone="9876543210", send_catalog=True),
        LeadRecord(name="Ravi", phone="9123456789"),
    ])

    async def scenario():
        first = await bot.processor.run_once()
        second = await bot.processor.run_once()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.welcomes_sent == 2
    assert first.catalogs_sent == 1
    assert len(bot.provider.sent_to("919876543210", "file")) == 1
    assert bot.provider.sent_to("919123456789", "file") == []
    assert second.catalogs_sent == 0


def test_invalid_leads_are_never_retried(tmp_path):
    bot = make_bot(tmp_path, leads=leads()[:1])
    bot.provider.failures["919876543210"] = SendError(SendFailureReason.RECIPIENT_INVALID, "not registered")

    async def scenario():
        await bot.processor.run_once()
        bot.provider.failures.clear()
        return await bot.processor.run_once()

    second = asyncio.run(scenario())

    assert second.dispatched == 0
    assert bot.provider.sent == []
    statuses = asyncio.run(bot.messages.load_statuses())
    assert statuses["919876543210"] == {LogStatus.INVALID.value}


def test_start_and_stop_processing(tmp_path):
    bot = make_bot(tmp_path, leads=leads())

    async def scenario():
        started = await bot.processor.start()
        started_again = await bot.processor.start()
        while bot.processor.last_result is None:
            await asyncio.sleep(0.01)
        processing = bot.processor.processing
        stopped = await bot.processor.stop()
        stopped_again = await bot.processor.stop()
        await bot.processor.shutdown(timeout=1)
        return started, started_again, processing, stopped, stopped_again

    started, started_again, processing, stopped, stopped_again = asyncio.run(scenario())

    assert started and not started_again
    assert processing
    assert stopped and not stopped_again
    assert not bot.processor.processing
    assert bot.processor.last_result.welcomes_sent == 3


def test_restart_after_stop_runs_a_new_cycle(tmp_path):
    bot = make_bot(tmp_path, leads=leads())

    async def scenario():
        await bot.processor.start()
        while bot.source.calls < 1:
            await asyncio.sleep(0.01)
        await bot.processor.stop()
        restarted = await bot.processor.start()
        while bot.source.calls < 2:
            await asyncio.sleep(0.01)
        while bot.processor.state.value != "idle":
            await asyncio.sleep(0.01)
        await bot.processor.shutdown(timeout=1)
        return restarted

    assert asyncio.run(asyncio.wait_for(scenario(), timeout=5))
    assert bot.source.calls >= 2
    for phone in ("919876543210", "919123456789", "919000000001"):
        assert len(bot.provider.sent_to(phone, "text")) == 1


def test_restart_resumes_from_the_log(tmp_path):
    write_log(tmp_path / "whatsapp_log.csv", MAIN_HEADER, ["919876543210,Asha Verma,2025-07-15 10:00:00,Sent,,,"])
    bot = make_bot(tmp_path, leads=leads()[:2])

    result = asyncio.run(bot.processor.run_once())

    assert result.welcomes_sent == 1
    assert result.catalogs_sent == 1
    assert {phone for phone, _, _ in bot.provider.sent} == {"919123456789"}
    assert asyncio.run(bot.catalogs.load_sent_phones()) == {"919123456789"}


def test_bundled_catalog_failure_is_retried_next_cycle(tmp_path):
    bot = make_bot(tmp_path, leads=leads()[:1])
    bot.provider.file_failures["919876543210"] = SendError(SendFailureReason.TRANSIENT, "upload timed out")

    async def scenario():
        first = await bot.processor.run_once()
        bot.provider.file_failures.clear()
        second = await bot.processor.run_once()
        third = await bot.processor.run_once()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first.welcomes_sent == 1 and first.catalogs_sent == 0
    assert second.welcomes_sent == 0 and second.catalogs_sent == 1
    assert third.dispatched == 0
    assert len(bot.provider.sent_to("919876543210", "text")) == 1
    assert len(bot.provider.sent_to("919876543210", "file")) == 1


def test_restart_without_catalog_policy_only_welcomes_new_leads(tmp_path):
    write_log(tmp_path / "whatsapp_log.csv", CATALOG_HEADER, ["9876543210,Asha Verma,2025-07-15 10:00:00,Sent"])
    bot = make_bot(tmp_path, leads=leads()[:2], policy=CatalogPolicy.CONDITIONAL)

    asyncio.run(bot.processor.run_once())

    assert bot.provider.sent_to("919876543210") == []
    assert len(bot.provider.sent_to("919123456789", "text")) == 1
