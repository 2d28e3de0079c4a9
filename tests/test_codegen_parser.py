"""Line grammar for scripts produced by ``playwright codegen``."""

from tile_recorder.models import StepSource, StepType
from tile_recorder.recorder.codegen_parser import (
    chain_to_selector,
    parse_line,
    parse_script,
    parse_script_to_steps,
    split_chain,
)


def test_goto_click_and_comment():
    script = "\n".join(
        [
            "page.goto('https://x.com')",
            "// comment",
            "page.click('#a')",
        ]
    )
    steps = parse_script_to_steps(script)
    assert [(s.type, s.selector, s.value) for s in steps] == [
        (StepType.NAVIGATE, None, "https://x.com"),
        (StepType.CLICK, "#a", ""),
    ]
    assert all(s.source is StepSource.GENERATED_SCRIPT for s in steps)


def test_python_async_codegen_output():
    script = '''
import asyncio

from playwright.async_api import Playwright, async_playwright, expect


async def run(playwright: Playwright) -> None:
    browser = await playwright.chromium.launch(headless=False)
    context = await browser.new_context()
    page = await context.new_page()
    await page.goto("https://example.com/login")
    await page.get_by_label("Email").click()
    await page.get_by_label("Email").fill("al")
    await page.get_by_label("Email").fill("alice@example.com")
    await page.get_by_role("button", name="Sign in").click()
    await page.locator("#remember").check()
    await page.get_by_placeholder("Search").press("Enter")
    await page.locator("select#country").select_option("NL")
    await context.close()
'''
    steps = parse_script_to_steps(script)
    assert [(s.type, s.selector, s.value) for s in steps] == [
        (StepType.NAVIGATE, None, "https://example.com/login"),
        (StepType.CLICK, 'internal:label="Email"', ""),
        (StepType.FILL, 'internal:label="Email"', "alice@example.com"),
        (StepType.CLICK, 'role=button[name="Sign in"]', ""),
        (StepType.CHECK, "#remember", ""),
        (StepType.PRESS, '[placeholder="Search"]', "Enter"),
        (StepType.SELECT, "select#country", "NL"),
    ]


def test_javascript_codegen_output():
    script = """
  await page.goto('https://shop.test/');
  await page.getByTestId('cart').click();
  await page.locator('#qty').pressSequentially('3');
  await page.getByText('Checkout').first().click();
"""
    events = parse_script(script)
    assert [e.type for e in events] == ["navigate", "click", "type", "click"]
    assert events[1].selector == '[data-testid="cart"]'
    assert events[2].text == "3"
    assert events[3].selector == 'text="Checkout" >> nth=0'


def test_direct_actions_with_arguments():
    event = parse_line('await page.fill("input[name=\\"q\\"]", "hello")')
    assert event.type == "fill"
    assert event.selector == 'input[name="q"]'
    assert event.value == "hello"


def test_property_chain_segments():
    event = parse_line('await page.locator(".row").nth(2).click()')
    assert event.selector == ".row >> nth=2"
    event = parse_line('await page.locator(".row").last.click()')
    assert event.selector == ".row >> nth=-1"


def test_frame_locator_chain():
    selector = chain_to_selector('frame_locator("#pay").get_by_role("textbox", name="Card")')
    assert selector == '#pay >> internal:control=enter-frame >> role=textbox[name="Card"]'


def test_split_chain_respects_quotes():
    assert split_chain('locator("a.b").get_by_text("x.y")') == ['locator("a.b")', 'get_by_text("x.y")']


def test_unrecognized_lines_are_skipped():
    assert parse_line("expect(page).to_have_title('x')") is None
    assert parse_line("# await page.click('#a')") is None
    assert parse_line("await page.get_by_unknown('x').click()") is None
    assert parse_script("") == []
