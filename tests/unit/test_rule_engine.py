import pytest
from zapit.core.errors import EmptyElementError
from zapit.core.rule import Rule, RuleAction
from zapit.layers.action.rule_engine import STYLESHEET_ID, RuleEngine
from zapit.layers.action.snapshot_store import REMOVED_CLASS
from zapit.layers.sense.document import SoupDocument

PAGE = """
<html><head><title>News</title></head>
<body>
  <div id="ad-123" class="ad">Buy now</div>
  <div class="ad-banner" style="padding: 2px;">Banner</div>
  <h1>Old headline</h1>
  <ul><li>a</li><li>b</li><li>c</li></ul>
</body></html>
"""


@pytest.fixture
def doc():
    return SoupDocument.from_html(PAGE)


@pytest.fixture
def engine(doc):
    return RuleEngine(doc)


def _remove(selector, rule_id="r1"):
    return Rule(selector=selector, action=RuleAction.REMOVE, id=rule_id)


def _style(selector, styles, rule_id="s1"):
    return Rule(selector=selector, action=RuleAction.STYLE, styles=styles, id=rule_id)


def _edit(selector, new_text, rule_id="t1"):
    return Rule(selector=selector, action=RuleAction.EDIT_TEXT, new_text=new_text, id=rule_id)


def test_remove_then_revert(doc, engine):
    rule = _remove("#ad-123")

    report = engine.apply_all([rule])
    assert report.matched == 1
    assert doc.select("#ad-123")[0].has_class(REMOVED_CLASS)
    assert doc.soup.find("style", id=STYLESHEET_ID) is not None

    engine.revert_one(rule)
    assert doc.select("#ad-123")[0].classes == ["ad"]
    assert doc.select(f".{REMOVED_CLASS}") == []


def test_style_then_revert_restores_inline_value(doc, engine):
    rule = _style(".ad-banner", {"backgroundColor": "#000"})

    engine.apply_all([rule])
    banner = doc.select(".ad-banner")[0]
    assert banner.get_style("background-color") == "#000"

    engine.revert_one(rule)
    assert banner.get_style("background-color") == ""
    assert banner.get_attribute("style") == "padding: 2px;"


def test_apply_all_is_idempotent(doc, engine):
    rules = [
        _remove("#ad-123"),
        _style(".ad-banner", {"backgroundColor": "#000", "padding": "8px"}),
        _edit("h1", "New <em>headline</em>"),
    ]

    engine.apply_all(rules)
    first = doc.to_html()
    engine.apply_all(rules)
    engine.apply_all(rules)

    assert doc.to_html() == first
    assert doc.select("h1")[0].inner_html == "New <em>headline</em>"
    assert doc.select(".ad-banner")[0].get_style("padding") == "8px"


def test_revert_all_returns_to_baseline(doc, engine):
    baseline = SoupDocument.from_html(PAGE)
    baseline.install_stylesheet(STYLESHEET_ID, engine.removed_css)

    engine.apply_all([_remove("li"), _edit("h1", "Changed"), _style("h1", {"color": "red"})])
    engine.revert_all()

    assert doc.to_html() == baseline.to_html()


def test_overlapping_styles_revert_to_original(doc, engine):
    first = _style(".ad-banner", {"padding": "10px"}, rule_id="s1")
    second = _style("div.ad-banner", {"padding": "20px", "color": "blue"}, rule_id="s2")

    engine.apply_all([first, second])
    banner = doc.select(".ad-banner")[0]
    assert banner.get_style("padding") == "20px"

    engine.revert_one(second)
    assert banner.get_attribute("style") == "padding: 2px;"

    # The shared snapshot is gone; reverting the first rule must not wipe the original.
    engine.revert_one(first)
    assert banner.get_style("padding") == "2px"


def test_later_rule_wins_on_conflict(doc, engine):
    engine.apply_all([
        _style("h1", {"color": "red"}, rule_id="a"),
        _style("h1", {"color": "green"}, rule_id="b"),
    ])
    assert doc.select("h1")[0].get_style("color") == "green"


def test_invalid_selector_does_not_abort_batch(doc, engine):
    rules = [
        _remove("div[", rule_id="bad"),
        _remove("#ad-123", rule_id="good"),
    ]

    report = engine.apply_all(rules)

    assert len(report.failed) == 1
    assert report.failed[0].rule.id == "bad"
    assert report.outcomes[1].success
    assert doc.select("#ad-123")[0].has_class(REMOVED_CLASS)
    assert report.to_dict()["failed"] == 1


def test_rule_matching_nothing_is_not_a_failure(engine):
    report = engine.apply_all([_remove(".does-not-exist")])
    assert report.failed == []
    assert report.matched == 0


def test_edit_text_rule_without_new_text_is_skipped(doc, engine):
    engine.apply_all([_edit("h1", None)])
    assert doc.select("h1")[0].inner_html == "Old headline"


def test_style_revert_without_snapshot_clears_own_properties(doc, engine):
    h1 = doc.select("h1")[0]
    h1.set_style("color", "red")
    h1.set_style("margin", "0")

    engine.revert_one(_style("h1", {"color": "red"}))

    assert h1.get_style("color") == ""
    assert h1.get_style("margin") == "0"


def test_immediate_effects(doc, engine):
    h1 = doc.select("h1")[0]
    banner = doc.select(".ad-banner")[0]

    original = engine.edit_text(h1, "Fresh")
    engine.style_element(banner, {"fontSize": "20px"})
    engine.remove_element(doc.select("#ad-123")[0])

    assert original == "Old headline"
    assert h1.inner_html == "Fresh"
    assert banner.get_style("font-size") == "20px"
    assert doc.select("#ad-123")[0].has_class(REMOVED_CLASS)

    engine.revert_all()
    assert h1.inner_html == "Old headline"
    assert banner.get_style("font-size") == ""


def test_edit_text_refuses_empty_element():
    doc = SoupDocument.from_html("<body><div id='empty'>   </div></body>")
    engine = RuleEngine(doc)

    with pytest.raises(EmptyElementError):
        engine.edit_text(doc.select("#empty")[0], "text")


def test_stylesheet_goes_inside_the_page_without_head():
    doc = SoupDocument.from_html("<body><p>x</p></body>")
    doc.install_stylesheet(STYLESHEET_ID, "p {}")
    assert doc.soup.body.find("style", id=STYLESHEET_ID) is not None
    assert doc.to_html().endswith("</style></body>")

    fragment = SoupDocument.from_html("<p>x</p>")
    fragment.install_stylesheet(STYLESHEET_ID, "p {}")
    assert fragment.to_html().startswith(f'<style id="{STYLESHEET_ID}">')
