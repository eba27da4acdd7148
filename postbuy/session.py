"""
Automated browser session: ordered steps with selector-fallback resolution.

Selector chains are data. Each step carries an ordered tuple of candidate
selectors; the driver tries them in priority order every poll cycle and uses
the first one that is visible and enabled. Steps run strictly in order and
are never retried here: a half-finished multi-page flow cannot be resumed
safely, so retrying belongs to the orchestrator.

Usage:
    async with open_session(settings, "climate_risk") as session:
        await session.driver.run([
            navigate("https://riskfactor.com/"),
            type_text(SEARCH_INPUTS, address, type_delay_ms=100),
            press("Enter"),
        ])
"""

from __future__ import annotations

import asyncio
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from postbuy.completion import CompletionDetector, EventSource, SignalSource
from postbuy.config import Settings
from postbuy.errors import CompletionTimeoutError, ElementNotFoundError, NavigationTimeoutError, SessionError
from postbuy.models import CompletionSignal

USER_AGENT_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
)

# Affirmative consent phrases, highest priority first.
CONSENT_PHRASES: tuple[str, ...] = (
    "Allow all",
    "Allow All",
    "Accept All",
    "Accept all",
    "Accept All Cookies",
    "Accept & Continue",
    "I Accept All",
    "Accept",
    "Allow",
    "I Accept",
    "OK",
    "Got it",
    "Agree",
    "Continue",
    "Allow selection",
)

CONSENT_CONTAINERS: tuple[str, ...] = (
    '[id*="cookie"]',
    '[class*="cookie"]',
    '[id*="consent"]',
    '[class*="consent"]',
    '[id*="gdpr"]',
    '[class*="gdpr"]',
    '[id*="privacy"]',
    '[class*="privacy"]',
    '[id*="cookiebot"]',
    '[class*="cookiebot"]',
)

_PAGE_BUTTONS = "button, [role='button']"
_MAX_CONSENT_CANDIDATES = 60


class StepAction(str, Enum):
    NAVIGATE = "navigate"
    LOCATE = "locate"
    TYPE = "type"
    CLICK = "click"
    PRESS = "press"
    UPLOAD = "upload"
    WAIT_FOR_SIGNAL = "wait_for_signal"


@dataclass(frozen=True, slots=True)
class SessionStep:
    action: StepAction
    selectors: tuple[str, ...] = ()
    value: Optional[str] = None
    url: Optional[str] = None
    timeout_ms: int = 30_000
    sources: tuple[SignalSource, ...] = ()
    poll_interval_ms: int = 1_000
    optional: bool = False
    settle_ms: int = 0
    type_delay_ms: int = 0
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.action.value


@dataclass(frozen=True, slots=True)
class StepOutcome:
    step: SessionStep
    selector: Optional[str] = None
    signal: Optional[CompletionSignal] = None
    skipped: bool = False


def navigate(url: str, timeout_ms: int = 60_000, settle_ms: int = 0, name: str = "") -> SessionStep:
    return SessionStep(StepAction.NAVIGATE, url=url, timeout_ms=timeout_ms, settle_ms=settle_ms, name=name)


def locate(selectors: Sequence[str], timeout_ms: int = 30_000, optional: bool = False, name: str = "") -> SessionStep:
    return SessionStep(StepAction.LOCATE, tuple(selectors), timeout_ms=timeout_ms, optional=optional, name=name)


def type_text(
    selectors: Sequence[str],
    value: str,
    timeout_ms: int = 30_000,
    type_delay_ms: int = 0,
    settle_ms: int = 0,
    name: str = "",
) -> SessionStep:
    return SessionStep(
        StepAction.TYPE,
        tuple(selectors),
        value=value,
        timeout_ms=timeout_ms,
        type_delay_ms=type_delay_ms,
        settle_ms=settle_ms,
        name=name,
    )


def click(
    selectors: Sequence[str] | str,
    timeout_ms: int = 30_000,
    optional: bool = False,
    settle_ms: int = 0,
    name: str = "",
) -> SessionStep:
    if isinstance(selectors, str):
        selectors = (selectors,)
    return SessionStep(
        StepAction.CLICK,
        tuple(selectors),
        timeout_ms=timeout_ms,
        optional=optional,
        settle_ms=settle_ms,
        name=name,
    )


def press(key: str, selectors: Sequence[str] = (), settle_ms: int = 0, name: str = "") -> SessionStep:
    return SessionStep(StepAction.PRESS, tuple(selectors), value=key, settle_ms=settle_ms, name=name)


def upload(selectors: Sequence[str], path: Path | str, timeout_ms: int = 30_000, settle_ms: int = 0) -> SessionStep:
    return SessionStep(StepAction.UPLOAD, tuple(selectors), value=str(path), timeout_ms=timeout_ms, settle_ms=settle_ms)


def wait_for_signal(
    sources: Sequence[SignalSource],
    timeout_ms: int,
    poll_interval_ms: int = 1_000,
    optional: bool = False,
    settle_ms: int = 0,
    name: str = "",
) -> SessionStep:
    return SessionStep(
        StepAction.WAIT_FOR_SIGNAL,
        sources=tuple(sources),
        timeout_ms=timeout_ms,
        poll_interval_ms=poll_interval_ms,
        optional=optional,
        settle_ms=settle_ms,
        name=name,
    )


def choose_consent_candidate(texts: Sequence[str], phrases: Sequence[str] = CONSENT_PHRASES) -> Optional[int]:
    """
    Index of the element to click, or None.

    Exact (case-insensitive) text matches beat substring matches; within each
    kind the phrase order decides. Substring matches are whole-word so "OK"
    never matches "Cookie settings".
    """
    cleaned = [" ".join((text or "").split()).lower() for text in texts]
    for phrase in phrases:
        wanted = phrase.lower()
        for index, text in enumerate(cleaned):
            if text == wanted:
                return index
    for phrase in phrases:
        pattern = re.compile(rf"(?<!\w){re.escape(phrase.lower())}(?!\w)")
        for index, text in enumerate(cleaned):
            if text and pattern.search(text):
                return index
    return None


class SessionDriver:
    def __init__(self, page, poll_interval_ms: int = 250, clock=time.monotonic, sleep=asyncio.sleep):
        self.page = page
        self.poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._sleep = sleep

    async def _is_ready(self, locator, action: StepAction) -> bool:
        if action == StepAction.UPLOAD:
            # File inputs are usually hidden behind a styled button.
            return await locator.count() > 0
        return await locator.is_visible() and await locator.is_enabled()

    async def resolve(
        self,
        selectors: Sequence[str],
        timeout_ms: int,
        action: StepAction = StepAction.LOCATE,
        step: str = "",
    ):
        """Return ``(selector, locator)`` for the first ready candidate."""
        if not selectors:
            raise ElementNotFoundError((), timeout_ms, step)
        deadline = self._clock() + timeout_ms / 1000
        while True:
            for selector in selectors:
                locator = self.page.locator(selector).first
                try:
                    if await self._is_ready(locator, action):
                        logger.debug(f"Resolved '{step or action.value}' via {selector}")
                        return selector, locator
                except PlaywrightError as exc:
                    logger.debug(f"Selector {selector} not usable: {exc}")
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ElementNotFoundError(selectors, timeout_ms, step)
            await self._sleep(min(self.poll_interval_ms / 1000, remaining))

    async def _navigate(self, step: SessionStep) -> StepOutcome:
        try:
            await self.page.goto(step.url, timeout=step.timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(step.url or "", step.timeout_ms) from exc
        return StepOutcome(step)

    async def _type(self, step: SessionStep) -> StepOutcome:
        selector, locator = await self.resolve(step.selectors, step.timeout_ms, step.action, step.label)
        value = step.value or ""
        await locator.click()
        await locator.fill("")
        if step.type_delay_ms:
            await locator.press_sequentially(value, delay=step.type_delay_ms)
        else:
            await locator.fill(value)
        # Reactive widgets (select2, React inputs) only update on these events.
        await locator.dispatch_event("input")
        await locator.dispatch_event("change")
        return StepOutcome(step, selector=selector)

    async def _click(self, step: SessionStep) -> StepOutcome:
        selector, locator = await self.resolve(step.selectors, step.timeout_ms, step.action, step.label)
        await locator.click(timeout=step.timeout_ms)
        return StepOutcome(step, selector=selector)

    async def _press(self, step: SessionStep) -> StepOutcome:
        if step.selectors:
            selector, locator = await self.resolve(step.selectors, step.timeout_ms, step.action, step.label)
            await locator.press(step.value)
            return StepOutcome(step, selector=selector)
        await self.page.keyboard.press(step.value)
        return StepOutcome(step)

    async def _upload(self, step: SessionStep) -> StepOutcome:
        selector, locator = await self.resolve(step.selectors, step.timeout_ms, step.action, step.label)
        await locator.set_input_files(step.value)
        return StepOutcome(step, selector=selector)

    async def _wait_for_signal(self, step: SessionStep) -> StepOutcome:
        detector = CompletionDetector(
            step.sources,
            step.timeout_ms,
            step.poll_interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )
        return StepOutcome(step, signal=await detector.wait())

    async def run_step(self, step: SessionStep) -> StepOutcome:
        handlers = {
            StepAction.NAVIGATE: self._navigate,
            StepAction.LOCATE: self._locate,
            StepAction.TYPE: self._type,
            StepAction.CLICK: self._click,
            StepAction.PRESS: self._press,
            StepAction.UPLOAD: self._upload,
            StepAction.WAIT_FOR_SIGNAL: self._wait_for_signal,
        }
        try:
            outcome = await handlers[step.action](step)
        except (SessionError, CompletionTimeoutError) as exc:
            if not step.optional:
                raise
            logger.info(f"Optional step '{step.label}' skipped: {exc}")
            return StepOutcome(step, skipped=True)
        if step.settle_ms:
            await self._sleep(step.settle_ms / 1000)
        return outcome

    async def _locate(self, step: SessionStep) -> StepOutcome:
        selector, _ = await self.resolve(step.selectors, step.timeout_ms, step.action, step.label)
        return StepOutcome(step, selector=selector)

    async def run(self, steps: Sequence[SessionStep]) -> list[StepOutcome]:
        outcomes = []
        for index, step in enumerate(steps, start=1):
            logger.debug(f"Step {index}/{len(steps)}: {step.label}")
            outcomes.append(await self.run_step(step))
        return outcomes

    async def _candidate_texts(self, selector: str) -> list[tuple[str, object]]:
        candidates = []
        locator = self.page.locator(selector)
        try:
            count = await locator.count()
        except PlaywrightError:
            return candidates
        for i in range(count):
            element = locator.nth(i)
            try:
                if not await element.is_visible():
                    continue
                candidates.append(((await element.inner_text()).strip(), element))
            except PlaywrightError:
                continue
            # Cap counts visible controls only.
            if len(candidates) >= _MAX_CONSENT_CANDIDATES:
                break
        return candidates

    async def dismiss_consent(
        self,
        phrases: Sequence[str] = CONSENT_PHRASES,
        containers: Sequence[str] = CONSENT_CONTAINERS,
    ) -> Optional[str]:
        """Click the best affirmative consent control; container regions first, then page-wide."""
        scoped = ", ".join(f"{c} button, {c} [role='button'], {c} a" for c in containers)
        for scope in (scoped, _PAGE_BUTTONS):
            candidates = await self._candidate_texts(scope)
            index = choose_consent_candidate([text for text, _ in candidates], phrases)
            if index is None:
                continue
            text, element = candidates[index]
            try:
                await element.click(timeout=5_000)
            except PlaywrightError as exc:
                logger.debug(f"Consent click on '{text}' failed: {exc}")
                continue
            logger.info(f"Dismissed consent dialog via '{text}'")
            return text
        logger.debug("No consent dialog found")
        return None


@dataclass(slots=True)
class BrowserSession:
    page: object
    driver: SessionDriver
    download_dir: Path
    downloads: EventSource
    _pending: set = field(default_factory=set)

    async def screenshot(self, filename: str, full_page: bool = False) -> Path:
        path = self.download_dir / filename
        await self.page.screenshot(path=str(path), full_page=full_page)
        return path

    def _on_download(self, download) -> None:
        task = asyncio.create_task(self._save_download(download))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save_download(self, download) -> None:
        target = self.download_dir / download.suggested_filename
        try:
            await download.save_as(str(target))
        except PlaywrightError as exc:
            logger.warning(f"Download {download.suggested_filename} could not be saved: {exc}")
            return
        logger.info(f"Download saved: {target}")
        self.downloads.notify(str(target))


@asynccontextmanager
async def open_session(
    settings: Settings,
    task_name: str,
    viewport: dict | None = None,
) -> AsyncIterator[BrowserSession]:
    """One exclusively-owned stealth Chromium session; the browser is always closed."""
    download_dir = settings.task_dir(task_name)
    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=settings.headless,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        try:
            context = await browser.new_context(
                accept_downloads=True,
                user_agent=USER_AGENT_DESKTOP,
                viewport=viewport or {"width": 1920, "height": 1080},
                locale="en-US",
            )
            page = await context.new_page()
            await Stealth().apply_stealth_async(page)
            session = BrowserSession(
                page=page,
                driver=SessionDriver(page),
                download_dir=download_dir,
                downloads=EventSource("download_event"),
            )
            page.on("download", session._on_download)
            logger.debug(f"Browser session opened for {task_name} (downloads -> {download_dir})")
            yield session
        finally:
            await browser.close()
            logger.debug(f"Browser session closed for {task_name}")
