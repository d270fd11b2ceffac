"""Simulated user input that host frameworks (Angular/React) register."""
from logger import agent_logger

POINTER_SEQUENCE = ("mouseenter", "mouseover", "mousedown", "mouseup", "click")


async def describe(element) -> str:
    ident = await element.get_attribute("id") or (await element.get_attribute("class") or "")[:30]
    text = ((await element.text_content()) or "").strip()
    return f'{ident} "{text}"'


async def safe_click(element) -> bool:
    """Dispatch the full pointer sequence, not just a click."""
    if element is None:
        return False
    agent_logger.info(f"🖱️  Clicking: {await describe(element)}")
    for event_type in POINTER_SEQUENCE:
        await element.dispatch_event(event_type, {"bubbles": True, "cancelable": True})
    return True


async def type_value(element, value: str) -> None:
    """Set an input's value and fire the input/change events frameworks listen to."""
    await element.focus()
    await element.fill(value)
    await element.dispatch_event("input", {"bubbles": True})
    await element.dispatch_event("change", {"bubbles": True})
