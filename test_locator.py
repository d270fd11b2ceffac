import asyncio

import pytest

from actions import POINTER_SEQUENCE, safe_click, type_value
from conftest import FakeElement, FakePage, option_elements
from errors import LocatorMiss
from locator import ElementLocator, first_usable


def test_id_convention_wins_when_present():
    buttons, elements = option_elements(4)
    page = FakePage(elements=elements)
    name, found = asyncio.run(ElementLocator().find_with_strategy(page))
    assert name == "id"
    assert found == buttons


def test_class_strategy_when_ids_are_missing():
    buttons, elements = option_elements(3, with_ids=False)
    page = FakePage(elements=elements)
    name, found = asyncio.run(ElementLocator().find_with_strategy(page))
    assert name == "class"
    assert found == buttons


def test_structural_fallback():
    buttons = [FakeElement(text="1"), FakeElement(text="2")]
    page = FakePage(elements={".answer-controls-container button": buttons})
    name, found = asyncio.run(ElementLocator().find_with_strategy(page))
    assert name == "structural"
    assert found == buttons


def test_hidden_and_disabled_options_do_not_count():
    buttons, elements = option_elements(3)
    buttons[1].visible = False
    buttons[2].enabled = False
    # Only one usable id match, so the id strategy does not qualify
    page = FakePage(elements=elements)
    name, found = asyncio.run(ElementLocator().find_with_strategy(page))
    assert name is None
    assert found == []


def test_require_raises_when_nothing_qualifies():
    page = FakePage(elements={".answer-controls-container button": [FakeElement(text="only")]})
    with pytest.raises(LocatorMiss):
        asyncio.run(ElementLocator().require(page))


def test_find_by_letter_prefers_exact_id():
    buttons, elements = option_elements(4)
    page = FakePage(elements=elements)
    assert asyncio.run(ElementLocator().find_by_letter(page, "c")) is buttons[2]


def test_find_by_letter_uses_index_without_ids():
    buttons, elements = option_elements(5, with_ids=False)
    page = FakePage(elements=elements)
    assert asyncio.run(ElementLocator().find_by_letter(page, "E")) is buttons[4]


def test_first_usable_follows_selector_order():
    hidden = FakeElement(id="send", visible=False)
    shown = FakeElement(id="submit")
    page = FakePage(elements={"#send": [hidden], "#submit": [shown]})
    assert asyncio.run(first_usable(page, ["#send", "#submit"])) is shown


def test_safe_click_dispatches_full_pointer_sequence():
    element = FakeElement(id="multiple-choice-a", text="A")
    assert asyncio.run(safe_click(element)) is True
    assert element.events == list(POINTER_SEQUENCE)
    assert asyncio.run(safe_click(None)) is False


def test_type_value_fires_framework_events():
    field = FakeElement(id="numericAnswerInput")
    asyncio.run(type_value(field, "9.81"))
    assert field.value == "9.81"
    assert field.events == ["focus", "fill", "input", "change"]
