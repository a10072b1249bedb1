import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from zapit.core.errors import EmptyElementError, ZapItError
from zapit.layers.action.page_agent import SELECTION_MODE_CLASS, EditModeSubscription, PageAgent
from zapit.layers.action.snapshot_store import REMOVED_CLASS
from zapit.layers.sense.document import SoupDocument

PAGE = """
<html><body>
  <div id="ad-123">Buy now</div>
  <p class="lead">Hello</p>
  <div class="zapit-style-panel"><input name="color"></div>
</body></html>
"""


class FakePicker:
    def __init__(self):
        self.subscribed = []
        self.unsubscribed = 0

    def subscribe(self, agent):
        self.subscribed.append(agent)

        def unsubscribe():
            self.unsubscribed += 1
        return unsubscribe


@pytest.fixture
def doc():
    return SoupDocument.from_html(PAGE)


@pytest.fixture
def runtime():
    async def respond(message):
        if message["action"] == "saveRule":
            return {"success": True, "rule": dict(message["rule"], id="saved-1")}
        if message["action"] == "getEditMode":
            return {"editMode": True}
        if message["action"] == "getRules":
            return {"rules": [{"id": "r1", "selector": "#ad-123", "action": "remove"}]}
        return {"error": "Unrecognized action"}
    return AsyncMock(side_effect=respond)


def _body(doc):
    return doc.select("body")[0]


def test_start_restores_edit_mode_and_applies_rules(doc, runtime):
    picker = FakePicker()
    agent = PageAgent(doc, runtime=runtime, picker=picker)

    asyncio.run(agent.start())

    assert agent.is_edit_mode
    assert picker.subscribed == [agent]
    assert _body(doc).has_class(SELECTION_MODE_CLASS)
    assert doc.select("#ad-123")[0].has_class(REMOVED_CLASS)
    assert [rule.id for rule in agent.applied_rules] == ["r1"]


def test_toggle_edit_mode_push(doc):
    picker = FakePicker()
    agent = PageAgent(doc, picker=picker)

    asyncio.run(agent.handle_message({"action": "toggleEditMode", "enabled": True}))
    asyncio.run(agent.handle_message({"action": "toggleEditMode", "enabled": True}))
    assert len(picker.subscribed) == 1

    asyncio.run(agent.handle_message({"action": "toggleEditMode", "enabled": False}))
    agent.disable_edit_mode()
    assert picker.unsubscribed == 1
    assert not agent.is_edit_mode
    assert not _body(doc).has_class(SELECTION_MODE_CLASS)


def test_edit_mode_subscription_context_manager(doc):
    picker = FakePicker()
    agent = PageAgent(doc, picker=picker)

    with EditModeSubscription(agent=agent, picker=picker) as session:
        assert session.active
        assert _body(doc).has_class(SELECTION_MODE_CLASS)
    assert not session.active
    session.close()
    assert picker.unsubscribed == 1


def test_apply_then_remove_rule_from_dom(doc):
    agent = PageAgent(doc)
    rules = [
        {"id": "r1", "selector": "#ad-123", "action": "remove"},
        {"id": "r2", "selector": "p.lead", "action": "style", "styles": {"color": "red"}},
        {"id": "r3", "selector": "p", "action": "explode"},
    ]

    response = asyncio.run(agent.handle_message({"action": "applyRules", "rules": rules}))
    assert response == {"success": True}
    assert len(agent.applied_rules) == 2

    asyncio.run(agent.handle_message({"action": "removeRuleFromDOM", "rule": rules[0]}))

    assert not doc.select("#ad-123")[0].has_class(REMOVED_CLASS)
    assert doc.select("p.lead")[0].get_style("color") == "red"
    assert [rule.id for rule in agent.applied_rules] == ["r2"]


def test_remove_rule_reapplies_shared_element(doc):
    agent = PageAgent(doc)
    rules = [
        {"id": "r1", "selector": "p.lead", "action": "style", "styles": {"color": "red"}},
        {"id": "r2", "selector": "p", "action": "style", "styles": {"margin": "4px"}},
    ]
    agent.apply_rules(rules)

    agent.remove_rule(rules[1])

    lead = doc.select("p.lead")[0]
    assert lead.get_style("color") == "red"
    assert lead.get_style("margin") == ""


def test_remove_element_saves_rule(doc, runtime):
    agent = PageAgent(doc, runtime=runtime)
    element = doc.select("#ad-123")[0]

    response = asyncio.run(agent.remove_element(element, agent.synthesize(element)))

    assert response["success"]
    assert element.has_class(REMOVED_CLASS)
    sent = runtime.await_args.args[0]
    assert sent["action"] == "saveRule"
    assert sent["rule"]["selector"] == "#ad-123"
    assert agent.applied_rules[0].id == "saved-1"


def test_style_element_drops_empty_values(doc, runtime):
    agent = PageAgent(doc, runtime=runtime)
    lead = doc.select("p.lead")[0]

    asyncio.run(agent.style_element(lead, "p.lead", {"backgroundColor": "#ff0", "border": ""}))

    assert lead.get_style("background-color") == "#ff0"
    assert runtime.await_args.args[0]["rule"]["styles"] == {"backgroundColor": "#ff0"}


def test_edit_text(doc, runtime):
    agent = PageAgent(doc, runtime=runtime)
    lead = doc.select("p.lead")[0]

    unchanged = asyncio.run(agent.edit_text(lead, "p.lead", "Hello"))
    assert unchanged is None
    assert runtime.await_count == 0

    asyncio.run(agent.edit_text(lead, "p.lead", "Bye"))
    rule = runtime.await_args.args[0]["rule"]
    assert lead.inner_html == "Bye"
    assert rule["originalText"] == "Hello"
    assert rule["newText"] == "Bye"


def test_edit_text_on_empty_element(runtime):
    doc = SoupDocument.from_html("<body><span id='x'></span></body>")
    agent = PageAgent(doc, runtime=runtime)

    with pytest.raises(EmptyElementError):
        asyncio.run(agent.edit_text(doc.select("#x")[0], "#x", "text"))


def test_failed_save_is_not_tracked(doc):
    runtime = AsyncMock(return_value={"error": "disk full"})
    agent = PageAgent(doc, runtime=runtime)

    response = asyncio.run(agent.remove_element(doc.select("#ad-123")[0], "#ad-123"))

    assert response == {"error": "disk full"}
    assert agent.applied_rules == []


def test_can_pick_skips_own_ui(doc):
    agent = PageAgent(doc, picker=MagicMock())
    field_input = doc.select("input")[0]
    lead = doc.select("p.lead")[0]

    assert not agent.can_pick(lead)
    agent.enable_edit_mode()
    assert agent.can_pick(lead)
    assert not agent.can_pick(field_input)


def test_request_without_runtime(doc):
    agent = PageAgent(doc)
    with pytest.raises(ZapItError):
        asyncio.run(agent.load_and_apply_rules())


def test_malformed_rule_in_batch_is_skipped(doc):
    agent = PageAgent(doc)
    rules = [
        {"id": "bad", "selector": "p.lead", "action": "style", "styles": [["color"]]},
        "oops",
        {"id": "r1", "selector": "#ad-123", "action": "remove"},
    ]

    response = asyncio.run(agent.handle_message({"action": "applyRules", "rules": rules}))

    assert response == {"success": True}
    assert doc.select("#ad-123")[0].has_class(REMOVED_CLASS)
    assert [rule.id for rule in agent.applied_rules] == ["r1"]


def test_save_rule_sends_escaped_selector(runtime):
    doc = SoupDocument.from_html('<body><div class="bg-[#fff]:hover">x</div></body>')
    agent = PageAgent(doc, runtime=runtime)
    element = doc.select("div")[0]

    asyncio.run(agent.remove_element(element, ".bg-[#fff]:hover"))

    assert runtime.await_args.args[0]["rule"]["selector"] == ".bg-\\[\\#fff\\]\\:hover"
