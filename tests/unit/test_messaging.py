import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from zapit.core.errors import PageNotReadyError, StorageError
from zapit.core.messaging import (
    Coordinator,
    DeliveryOutcome,
    PageChannel,
    RetryPolicy,
    Sender,
)
from zapit.store.rule_repository import JsonStorage, RuleRepository

PAGE_URL = "https://example.com/news"


@pytest.fixture
def coordinator(tmp_path):
    return Coordinator(RuleRepository(JsonStorage(tmp_path / "storage.json")))


def test_save_rule_stamps_identity(coordinator):
    rule_data = {"selector": "#ad-123", "action": "remove", "styles": {}, "id": "from-page"}

    response = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": rule_data}, Sender(url=PAGE_URL)
    ))

    assert response["success"] is True
    assert response["rule"]["id"] != "from-page"
    assert response["rule"]["url"] == PAGE_URL
    assert response["rule"]["created"]


def test_get_rules_prefers_explicit_url(coordinator):
    async def scenario():
        await coordinator.handle_message(
            {"action": "saveRule", "rule": {"selector": "h1", "action": "remove"}},
            Sender(url="https://other.org/"),
        )
        from_sender = await coordinator.handle_message({"action": "getRules"}, Sender(url=PAGE_URL))
        explicit = await coordinator.handle_message(
            {"action": "getRules", "url": "https://other.org/x"}, Sender(url=PAGE_URL)
        )
        return from_sender, explicit

    from_sender, explicit = asyncio.run(scenario())
    assert from_sender == {"rules": []}
    assert [rule["selector"] for rule in explicit["rules"]] == ["h1"]


def test_delete_and_clear(coordinator):
    async def scenario():
        saved = await coordinator.handle_message(
            {"action": "saveRule", "rule": {"selector": "h1", "action": "remove"}}, Sender(url=PAGE_URL)
        )
        deleted = await coordinator.handle_message(
            {"action": "deleteRule", "ruleId": saved["rule"]["id"]}, Sender(url=PAGE_URL)
        )
        cleared = await coordinator.handle_message({"action": "clearRules"}, Sender(url=PAGE_URL))
        return deleted, cleared

    deleted, cleared = asyncio.run(scenario())
    assert deleted == {"success": True, "removed": True}
    assert cleared == {"success": True}


def test_edit_mode_round_trip(coordinator):
    async def scenario():
        await coordinator.handle_message({"action": "setEditMode", "enabled": True}, Sender())
        return await coordinator.handle_message({"action": "getEditMode"}, Sender())

    assert asyncio.run(scenario()) == {"editMode": True}


def test_unknown_action_and_errors(coordinator):
    unknown = asyncio.run(coordinator.handle_message({"action": "explode"}, Sender(url=PAGE_URL)))
    no_url = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": {"selector": "h1", "action": "remove"}}, Sender()
    ))
    bad_action = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": {"selector": "h1", "action": "explode"}}, Sender(url=PAGE_URL)
    ))

    assert unknown == {"error": "Unrecognized action"}
    assert "error" in no_url
    assert "explode" in bad_action["error"]


def test_storage_failure_becomes_error_response():
    repository = MagicMock()
    repository.add = AsyncMock(side_effect=StorageError("disk full"))
    coordinator = Coordinator(repository)

    response = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": {"selector": "h1", "action": "remove"}}, Sender(url=PAGE_URL)
    ))
    assert response == {"error": "disk full"}


def test_send_to_unattached_page_raises():
    channel = PageChannel()
    with pytest.raises(PageNotReadyError):
        asyncio.run(channel.send("missing", {"action": "applyRules"}))


def test_retry_policy_waits_for_late_agent():
    channel = PageChannel()
    handler = AsyncMock(return_value={"success": True})
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) == 2:
            channel.attach("page-1", PAGE_URL, handler)

    policy = RetryPolicy(attempts=5, interval=0.5, backoff=2.0, sleep=fake_sleep)
    result = asyncio.run(channel.deliver("page-1", {"action": "applyRules", "rules": []}, policy))

    assert result.delivered
    assert result.attempts == 3
    assert result.response == {"success": True}
    assert delays == [0.5, 1.0]
    handler.assert_awaited_once_with({"action": "applyRules", "rules": []})


def test_retry_policy_exhausts_quietly():
    sleep = AsyncMock()
    policy = RetryPolicy(attempts=3, interval=1.0, sleep=sleep)

    result = asyncio.run(PageChannel().deliver("page-1", {"action": "applyRules"}, policy))

    assert result.outcome is DeliveryOutcome.EXHAUSTED
    assert result.attempts == 3
    assert result.response is None
    assert sleep.await_count == 2


def test_retry_policy_does_not_retry_other_errors():
    send = AsyncMock(side_effect=RuntimeError("boom"))
    policy = RetryPolicy(attempts=3, sleep=AsyncMock())

    with pytest.raises(RuntimeError):
        asyncio.run(policy.run(send))
    assert send.await_count == 1


def test_pages_for_host():
    channel = PageChannel()
    channel.attach("a", "https://example.com/1", AsyncMock())
    channel.attach("b", "https://other.org/", AsyncMock())
    channel.attach("c", "https://example.com/2", AsyncMock())
    channel.detach("c")

    assert channel.pages_for_host("example.com") == ["a"]
    assert channel.is_attached("b")


def test_save_rule_rejects_unrepairable_selector(coordinator):
    async def scenario():
        response = await coordinator.handle_message(
            {"action": "saveRule", "rule": {"selector": "div[", "action": "remove"}}, Sender(url=PAGE_URL)
        )
        stored = await coordinator.handle_message({"action": "getRules"}, Sender(url=PAGE_URL))
        return response, stored

    response, stored = asyncio.run(scenario())
    assert "div[" in response["error"]
    assert stored == {"rules": []}


def test_save_rule_stores_escaped_utility_selector(coordinator):
    response = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": {"selector": ".bg-[#fff]:hover", "action": "remove"}},
        Sender(url=PAGE_URL),
    ))
    assert response["rule"]["selector"] == ".bg-\\[\\#fff\\]\\:hover"


@pytest.mark.parametrize("rule_data", [
    "oops",
    {"selector": "p", "action": "style", "styles": [["color"]]},
])
def test_save_rule_with_malformed_record_returns_error(coordinator, rule_data):
    response = asyncio.run(coordinator.handle_message(
        {"action": "saveRule", "rule": rule_data}, Sender(url=PAGE_URL)
    ))
    assert set(response) == {"error"}
