"""
Multi-strategy lookup of answer and submission elements.

Strategies are evaluated in priority order and the first one that yields at
least two enabled, visible candidates wins. Nothing is cached: the host page
replaces its option elements between questions.
"""
from typing import List, Optional, Sequence, Tuple

from errors import LocatorMiss
from logger import agent_logger

LETTERS = ["A", "B", "C", "D", "E"]
LETTER_TO_INDEX = {letter: i for i, letter in enumerate(LETTERS)}

_STYLE_JS = """(el) => {
    const s = window.getComputedStyle(el);
    return { display: s.display, visibility: s.visibility, opacity: s.opacity };
}"""


async def is_visible(element) -> bool:
    """Computed style is not hidden and the element occupies some space."""
    if element is None:
        return False
    style = await element.evaluate(_STYLE_JS)
    if style.get("display") == "none" or style.get("visibility") == "hidden" or str(style.get("opacity")) == "0":
        return False
    box = await element.bounding_box()
    return bool(box) and (box.get("width", 0) > 0 or box.get("height", 0) > 0)


async def is_usable(element) -> bool:
    return element is not None and await element.is_enabled() and await is_visible(element)


async def first_usable(page, selectors: Sequence[str]):
    """First enabled+visible element matching any selector, in selector order."""
    for selector in selectors:
        for element in await page.query_selector_all(selector):
            if await is_usable(element):
                return element
    return None


class LocatorStrategy:
    name = "base"

    async def candidates(self, page) -> list:
        raise NotImplementedError

    async def find(self, page) -> list:
        return [el for el in await self.candidates(page) if await is_usable(el)]


class IdConventionStrategy(LocatorStrategy):
    """One fixed id per option letter, e.g. #multiple-choice-a."""
    name = "id"

    def __init__(self, template: str = "#multiple-choice-{letter}", letters: Sequence[str] = LETTERS):
        self.template = template
        self.letters = list(letters)

    def selector_for(self, letter: str) -> str:
        return self.template.format(letter=letter.lower())

    async def candidates(self, page) -> list:
        found = []
        for letter in self.letters:
            element = await page.query_selector(self.selector_for(letter))
            if element is not None:
                found.append(element)
        return found


class SelectorStrategy(LocatorStrategy):
    def __init__(self, selector: str, name: str):
        self.selector = selector
        self.name = name

    async def candidates(self, page) -> list:
        return await page.query_selector_all(self.selector)


class ClassSelectorStrategy(SelectorStrategy):
    """Option buttons by class, inside their per-option container."""

    def __init__(self, selector: str = ".btn-container button.btn"):
        super().__init__(selector, name="class")


class StructuralStrategy(SelectorStrategy):
    """Any button under the known answer-controls ancestor."""

    def __init__(self, selector: str = ".answer-controls-container button"):
        super().__init__(selector, name="structural")


class ElementLocator:
    def __init__(self, strategies: Optional[List[LocatorStrategy]] = None, min_candidates: int = 2):
        self.strategies = strategies or [
            IdConventionStrategy(),
            ClassSelectorStrategy(),
            StructuralStrategy(),
        ]
        self.min_candidates = min_candidates

    async def find_with_strategy(self, page) -> Tuple[Optional[str], list]:
        for strategy in self.strategies:
            found = await strategy.find(page)
            if len(found) >= self.min_candidates:
                return strategy.name, found
        return None, []

    async def find(self, page) -> list:
        _, found = await self.find_with_strategy(page)
        return found

    async def require(self, page) -> list:
        found = await self.find(page)
        if not found:
            raise LocatorMiss("No enabled, visible answer options on the page")
        return found

    async def find_by_letter(self, page, letter: str, buttons: Optional[list] = None):
        """Exact id for the letter first, then the letter's index in the located set."""
        letter = (letter or "A").strip().upper()[:1] or "A"
        for strategy in self.strategies:
            if isinstance(strategy, IdConventionStrategy):
                element = await page.query_selector(strategy.selector_for(letter))
                if await is_usable(element):
                    agent_logger.info(f"Option {letter} found by id {strategy.selector_for(letter)}")
                    return element
        if buttons is None:
            buttons = await self.find(page)
        index = LETTER_TO_INDEX.get(letter, 0)
        if index < len(buttons):
            agent_logger.info(f"Option {letter} resolved to index {index}")
            return buttons[index]
        return None
