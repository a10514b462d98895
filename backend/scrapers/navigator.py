"""
Browser Navigator - Multi-step scriptable-browser sessions.

Drives a page through a fixed state machine:

    LAUNCH -> NAVIGATE_SEARCH -> SUBMIT_SEARCH -> SELECT_RESULT
           -> NAVIGATE_DETAIL -> EXTRACT -> DONE | FAILED

Site specifics live in Workflow subclasses (scrapers/workflows/). The
navigator owns the session lifecycle:
- LAUNCH connects to the residential-proxy bypass endpoint (CDP websocket)
  when the workflow prefers it and one is configured, otherwise launches a
  slowed, human-paced local browser
- every step runs under its own bounded timeout; timeouts are classified as
  site_structure, rate_limited or network
- one on-page status overlay (fixed element id) is shown for the duration of
  the session and dismissed before the browser closes

Usage:
    from scrapers.navigator import BrowserNavigator
    from scrapers.workflows import EvaluationRollWorkflow

    result = BrowserNavigator().run(EvaluationRollWorkflow(), "9739-08-6546-0-000-0000")
    print(result.payload["identification"]["address"])
"""
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ingestion.errors import (
    ChallengeUnresolved,
    ConfigurationError,
    FailureReason,
    IngestionError,
    NavigationError,
    NavigationTimeout,
)
from ingestion.settings import IngestionSettings, get_settings
from scrapers.user_agents import get_random_user_agent

logger = logging.getLogger(__name__)

OVERLAY_ELEMENT_ID = "ingestion-status-overlay"

RATE_LIMIT_MARKERS = ("Too Many Requests", "Access denied", "rate limit", "Error 1015")


class NavigationStep(str, Enum):
    LAUNCH = "launch"
    NAVIGATE_SEARCH = "navigate_search"
    SUBMIT_SEARCH = "submit_search"
    SELECT_RESULT = "select_result"
    NAVIGATE_DETAIL = "navigate_detail"
    EXTRACT = "extract"
    DONE = "done"
    FAILED = "failed"


WORK_STEPS = (
    NavigationStep.NAVIGATE_SEARCH,
    NavigationStep.SUBMIT_SEARCH,
    NavigationStep.SELECT_RESULT,
    NavigationStep.NAVIGATE_DETAIL,
    NavigationStep.EXTRACT,
)

STEP_LABELS = {
    NavigationStep.NAVIGATE_SEARCH: "Opening search page",
    NavigationStep.SUBMIT_SEARCH: "Submitting search",
    NavigationStep.SELECT_RESULT: "Selecting result",
    NavigationStep.NAVIGATE_DETAIL: "Opening detail page",
    NavigationStep.EXTRACT: "Extracting fields",
}


@dataclass
class NavigationResult:
    """Outcome of a completed navigation session."""
    source_type: str
    natural_key: str
    payload: Dict[str, Any]
    source_url: str
    duration_ms: int = 0
    steps: List[str] = field(default_factory=list)
    state: NavigationStep = NavigationStep.DONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type,
            "natural_key": self.natural_key,
            "source_url": self.source_url,
            "duration_ms": self.duration_ms,
            "steps": self.steps,
            "state": self.state.value,
        }


# =============================================================================
# Status overlay
# =============================================================================

_OVERLAY_SHOW_JS = """
([id, text]) => {
    let el = document.getElementById(id);
    if (!el) {
        el = document.createElement('div');
        el.id = id;
        el.style.cssText = 'position:fixed;top:12px;right:12px;z-index:2147483647;'
            + 'background:#1f2937;color:#fff;padding:10px 14px;border-radius:6px;'
            + 'font:13px sans-serif;box-shadow:0 2px 8px rgba(0,0,0,.3);';
        document.body.appendChild(el);
    }
    el.textContent = text;
}
"""

_OVERLAY_DISMISS_JS = """
(id) => {
    const el = document.getElementById(id);
    if (el) el.remove();
}
"""


class StatusOverlay:
    """
    Single on-page progress indicator owned by a navigation session.

    show() creates the element (or reuses it after a page load), update()
    changes its text, dismiss() removes it. Used as a context manager so the
    indicator never outlives the operation that created it.
    """

    def __init__(self, page, title: str, element_id: str = OVERLAY_ELEMENT_ID):
        self.page = page
        self.title = title
        self.element_id = element_id
        self.message = ""
        self.active = False

    def show(self, message: str = "Starting"):
        self.active = True
        self.update(message)

    def update(self, message: str):
        if not self.active:
            return
        self.message = message
        self._evaluate(_OVERLAY_SHOW_JS, [self.element_id, f"{self.title}: {message}"])

    def dismiss(self):
        if not self.active:
            return
        self._evaluate(_OVERLAY_DISMISS_JS, self.element_id)
        self.active = False

    def _evaluate(self, script: str, arg):
        try:
            self.page.evaluate(script, arg)
        except PlaywrightError as e:
            # Page mid-navigation; the next update recreates the element
            logger.debug(f"Status overlay not rendered: {e}")

    def __enter__(self):
        self.show()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dismiss()
        return False


# =============================================================================
# Step context and workflows
# =============================================================================

@dataclass
class StepContext:
    """Everything a workflow step needs: the page, its timeout and settings."""
    page: Any
    step: NavigationStep
    timeout_ms: int
    settings: IngestionSettings
    natural_key: str
    rng: random.Random = field(default_factory=random.Random)

    def remove(self, *selectors: str):
        """Delete blocking elements (modals, stale error banners) from the DOM."""
        self.page.evaluate(
            """(selectors) => selectors.forEach(
                s => document.querySelectorAll(s).forEach(el => el.remove()))""",
            list(selectors),
        )

    def settle(self, ms: Optional[int] = None):
        """Give client-side validation time to run."""
        self.page.wait_for_timeout(
            ms if ms is not None else self.settings.navigator["validation_settle_ms"]
        )

    def human_pause(self, low_ms: int = 100, high_ms: int = 500):
        self.page.wait_for_timeout(self.rng.randint(low_ms, high_ms))

    def wait_out_challenge(self, ready_selector: str, markers: Sequence[str]):
        """
        If an anti-bot interstitial is showing, wait for ready_selector to
        appear; raise ChallengeUnresolved when it never does.
        """
        body = self.page.text_content("body") or ""
        if not any(marker.lower() in body.lower() for marker in markers):
            return
        wait_ms = int(self.settings.navigator["challenge_wait_ms"])
        logger.info(f"[{self.natural_key}] Challenge detected, waiting up to {wait_ms}ms")
        try:
            self.page.wait_for_selector(ready_selector, timeout=wait_ms)
        except PlaywrightTimeoutError:
            raise ChallengeUnresolved(
                self.step.value, self.natural_key, "interstitial did not clear"
            )


class Workflow(ABC):
    """
    Site-specific navigation script.

    Subclasses set:
    - name, source_type, start_url
    - browser_type: 'chromium' or 'firefox' for local sessions
    - prefers_proxy: use the bypass endpoint when one is configured
    - requires_proxy: refuse to run without the bypass endpoint
    - challenge_markers: body text that signals an interstitial
    """

    name: str = "workflow"
    source_type: str = ""
    start_url: str = ""
    browser_type: str = "chromium"
    prefers_proxy: bool = False
    requires_proxy: bool = False
    challenge_markers: Sequence[str] = ("Cloudflare", "Just a moment", "cf-challenge", "captcha")

    @abstractmethod
    def natural_key(self, query: str) -> str:
        """Validate the query and return the item's natural key."""

    @abstractmethod
    def navigate_search(self, ctx: StepContext, query: str):
        pass

    @abstractmethod
    def submit_search(self, ctx: StepContext, query: str):
        pass

    @abstractmethod
    def select_result(self, ctx: StepContext, query: str):
        pass

    @abstractmethod
    def navigate_detail(self, ctx: StepContext, query: str):
        pass

    @abstractmethod
    def extract(self, ctx: StepContext, query: str) -> Dict[str, Any]:
        pass


# =============================================================================
# Navigator
# =============================================================================

class BrowserNavigator:
    """Runs workflows through the navigation state machine."""

    def __init__(
        self,
        settings: Optional[IngestionSettings] = None,
        browser_endpoint: Optional[str] = None,
        playwright_factory: Callable = sync_playwright,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or get_settings()
        self.browser_endpoint = browser_endpoint
        self._playwright_factory = playwright_factory
        self.rng = rng or random.Random()
        self.state = NavigationStep.LAUNCH
        self.history: List[str] = []

    def run(self, workflow: Workflow, query: str) -> NavigationResult:
        """
        Execute workflow for query.

        Returns:
            NavigationResult with the extracted payload

        Raises:
            IdentityMissing: query is not a valid identifier (nothing launched)
            NavigationTimeout / ChallengeUnresolved: a step exceeded its wait
            NavigationError: deterministic failure (e.g. no qualifying result)
            ConfigurationError: proxy required but not configured
        """
        natural_key = workflow.natural_key(query)
        self.state = NavigationStep.LAUNCH
        self.history = []
        started = time.monotonic()

        logger.info(f"[{natural_key}] Starting {workflow.name} session")

        with self._playwright_factory() as playwright:
            browser, page = self._step(
                NavigationStep.LAUNCH, natural_key, None,
                lambda: self._launch(playwright, workflow),
            )
            try:
                page.on("dialog", lambda dialog: dialog.dismiss())
                payload: Dict[str, Any] = {}
                with StatusOverlay(page, f"{workflow.name} {natural_key}") as overlay:
                    for step in WORK_STEPS:
                        overlay.update(STEP_LABELS[step])
                        ctx = StepContext(
                            page=page,
                            step=step,
                            timeout_ms=self.settings.step_timeout_ms(step.value),
                            settings=self.settings,
                            natural_key=natural_key,
                            rng=self.rng,
                        )
                        method = getattr(workflow, step.value)
                        result = self._step(
                            step, natural_key, page, lambda: method(ctx, query)
                        )
                        if step == NavigationStep.EXTRACT:
                            payload = result or {}
                source_url = page.url
            finally:
                browser.close()

        self.state = NavigationStep.DONE
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[{natural_key}] {workflow.name} session done in {duration_ms}ms")

        return NavigationResult(
            source_type=workflow.source_type,
            natural_key=natural_key,
            payload=payload,
            source_url=source_url,
            duration_ms=duration_ms,
            steps=list(self.history),
        )

    def _step(self, step: NavigationStep, natural_key: str, page, action: Callable):
        self.state = step
        try:
            result = action()
        except IngestionError:
            self.state = NavigationStep.FAILED
            raise
        except PlaywrightTimeoutError as e:
            self.state = NavigationStep.FAILED
            reason = self._classify_timeout(page)
            logger.warning(f"[{natural_key}] {step.value} timed out ({reason.value})")
            raise NavigationTimeout(step.value, reason, natural_key, _first_line(e))
        except PlaywrightError as e:
            self.state = NavigationStep.FAILED
            message = str(e)
            reason = FailureReason.NETWORK if "net::" in message else FailureReason.SITE_STRUCTURE
            logger.warning(f"[{natural_key}] {step.value} failed ({reason.value}): {_first_line(e)}")
            raise NavigationError(_first_line(e), natural_key, step.value, reason)
        self.history.append(step.value)
        return result

    def _classify_timeout(self, page) -> FailureReason:
        if page is None:
            return FailureReason.NETWORK
        try:
            content = page.content()
        except PlaywrightError:
            return FailureReason.NETWORK
        lowered = content.lower()
        if any(marker.lower() in lowered for marker in RATE_LIMIT_MARKERS):
            return FailureReason.RATE_LIMITED
        return FailureReason.SITE_STRUCTURE

    def _launch(self, playwright, workflow: Workflow):
        nav = self.settings.navigator
        timeout_ms = self.settings.step_timeout_ms(NavigationStep.LAUNCH.value)

        if self.browser_endpoint and (workflow.prefers_proxy or workflow.requires_proxy):
            logger.info(f"Connecting to remote browser for {workflow.name}")
            browser = playwright.chromium.connect_over_cdp(self.browser_endpoint, timeout=timeout_ms)
            context = browser.contexts[0] if browser.contexts else browser.new_context()
        elif workflow.requires_proxy:
            raise ConfigurationError(
                f"{workflow.name} requires SCRAPING_BROWSER_ENDPOINT to be configured"
            )
        else:
            launcher = getattr(playwright, workflow.browser_type)
            browser = launcher.launch(
                headless=bool(nav["headless"]),
                slow_mo=int(nav["slow_mo_ms"]),
                timeout=timeout_ms,
            )
            context = browser.new_context(
                viewport=dict(nav["viewport"]),
                user_agent=get_random_user_agent(self.rng),
                extra_http_headers={"Accept-Language": nav["locale_header"]},
            )

        page = context.new_page()
        page.set_default_timeout(timeout_ms)
        return browser, page


def _first_line(error: Exception) -> str:
    text = str(error).strip()
    return text.splitlines()[0] if text else error.__class__.__name__
