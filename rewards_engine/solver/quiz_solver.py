"""Quiz state machine: state extraction, answer selection, brute-force fallback.

Quiz state is read from three places, most trusted first:

1. live page globals (``_w.rewardsQuizRenderInfo`` and friends)
2. an inline ``<script>`` literal, located with BeautifulSoup + regexes
3. a reconstruction from the quiz header and answer option elements

When none of them yields a remaining-question count, the solver brute-forces
the answer options under a fixed click budget.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Page
from pydantic import ValidationError

from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.log import get_logger
from rewards_engine.models import QuizState
from rewards_engine.solver.interaction import InteractionProtocol

logger = logging.getLogger(__name__)

START_BUTTON = "#rqStartQuiz"
ANSWER_OPTIONS = "[id^=rqAnswerOption]"
REFRESH_MARKER = "span.rqMCredits"
REFRESH_TIMEOUT_MS = 10000
REFRESH_SETTLE_MS = 2000
BRUTE_FORCE_MAX_ATTEMPTS = 40
MULTI_SELECT_OPTIONS = 8
SINGLE_SELECT_OPTIONS = (2, 3, 4)

COMPLETION_PHRASES = (
    "great job",
    "congratulations",
    "you just earned",
    "you earned",
    "well done",
    "nice job",
    "quiz complete",
    "completed the quiz",
    "you have earned",
)
COMPLETION_SELECTORS = (
    ".rqComplete",
    ".quiz-complete",
    ".rewards-complete",
    ".congrats",
    "#rqComplete",
    ".completePanel",
)
EARNED_POINTS = re.compile(r"earned\s+(\d{1,4})\s+points?", re.IGNORECASE)

SCRIPT_PATTERNS = [
    re.compile(r"_w\.rewardsQuizRenderInfo\s*=\s*({[\s\S]*?});"),
    re.compile(r"rewardsQuizRenderInfo\s*=\s*({[\s\S]*?});"),
    re.compile(r"window\.__INITIAL_STATE__\s*=\s*({[\s\S]*?});"),
    re.compile(r"var\s+quizData\s*=\s*({[\s\S]*?});"),
    re.compile(r"window\.__DATA__\s*=\s*({[\s\S]*?});"),
    re.compile(r'"rewardsQuizRenderInfo"\s*:\s*({[\s\S]*?})'),
]
_UNQUOTED_KEY = re.compile(r"(['\"]?)([A-Za-z0-9_]+)\1\s*:")

QUIZ_KEYS = ("rewardsQuizRenderInfo", "quiz", "quizData", "rewardsQuiz")

# ---------------------------------------------------------------------------
# JavaScript snippets
# ---------------------------------------------------------------------------

_LIVE_STATE_JS = """\
(keys) => {
    const plain = (o) => { try { return JSON.parse(JSON.stringify(o)); } catch (e) { return null; } };
    const w = window;
    if (w._w && w._w.rewardsQuizRenderInfo) return plain(w._w.rewardsQuizRenderInfo);
    if (w.rewardsQuizRenderInfo) return plain(w.rewardsQuizRenderInfo);
    for (const root of [w.__INITIAL_STATE__, w.__STATE__]) {
        if (!root || typeof root !== 'object') continue;
        for (const k of keys) {
            if (root[k]) return plain(root[k]);
        }
    }
    return null;
}"""

_EVAL_LITERAL_JS = """\
(text) => {
    try { return JSON.parse(text); } catch (e) {}
    try { return JSON.parse(JSON.stringify(new Function('return (' + text + ');')())); }
    catch (e) { return null; }
}"""

_DOM_STATE_JS = """\
() => {
    const circles = document.querySelectorAll('#rqHeaderCredits .filledCircle, #rqHeaderCredits .emptyCircle');
    let filled = 0;
    circles.forEach((el) => { if (el.classList.contains('filledCircle')) filled++; });
    const options = document.querySelectorAll('[id^=rqAnswerOption]');
    let correct = null;
    options.forEach((el) => {
        if ((el.getAttribute('iscorrectoption') || '').toLowerCase() === 'true') {
            correct = el.getAttribute('data-option') || (el.textContent || '').trim();
        }
    });
    const text = (sel) => { const el = document.querySelector(sel); return el ? (el.textContent || '').trim() : null; };
    return {
        maxQuestions: circles.length || null,
        CorrectlyAnsweredQuestionCount: filled,
        currentQuestionNumber: circles.length ? filled + 1 : null,
        numberOfOptions: options.length || null,
        correctAnswer: correct,
        earnedCredits: text('#rqHeaderCredits .rqECredits'),
        maxCredits: text('#rqHeaderCredits .rqMCredits'),
    };
}"""

_OPTION_STATES_JS = """\
() => Array.from(document.querySelectorAll('[id^=rqAnswerOption]')).map((el) => {
    let visible = true;
    let enabled = true;
    try {
        const cs = window.getComputedStyle(el);
        const r = el.getBoundingClientRect();
        if (cs.display === 'none' || cs.visibility === 'hidden' ||
            parseFloat(cs.opacity || '1') === 0 || r.width === 0 || r.height === 0) visible = false;
        if (el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true') enabled = false;
        const cls = (typeof el.className === 'string' ? el.className : '').toLowerCase();
        if (cls.includes('disabled') || cls.includes('ghost') || cls.includes('used')) enabled = false;
        const color = cs.color || '';
        if (color.includes('rgba') && color.includes('0.5')) enabled = false;
    } catch (e) {}
    return {
        id: el.id,
        visible,
        enabled,
        dataOption: el.getAttribute('data-option'),
        isCorrect: (el.getAttribute('iscorrectoption') || '').toLowerCase() === 'true',
    };
})"""

_COMPLETION_SIGNALS_JS = """\
([selectors, optionSel]) => {
    let marker = null;
    for (const s of selectors) {
        try { if (document.querySelector(s)) { marker = s; break; } } catch (e) {}
    }
    return {
        text: document.body ? (document.body.innerText || '') : '',
        marker,
        options: document.querySelectorAll(optionSel).length,
    };
}"""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class QuizOutcome(str, Enum):
    COMPLETED = "completed"
    REFRESH_FAILED = "refresh-failed"
    NO_CANDIDATES = "no-candidates"
    EXHAUSTED = "exhausted"


@dataclass
class QuizResult:
    success: bool
    reason: QuizOutcome
    strategy: str = "structured"
    questions_answered: int = 0
    clicks: int = 0


@dataclass
class OptionState:
    id: str
    visible: bool = True
    enabled: bool = True
    data_option: Optional[str] = None
    is_correct: bool = False

    @property
    def selector(self) -> str:
        return f"#{self.id}"


@dataclass
class CompletionCheck:
    complete: bool
    reason: Optional[str] = None


def evaluate_completion(signals: dict[str, Any]) -> CompletionCheck:
    """Decide completion from page text, completion markers and remaining options."""
    text = str(signals.get("text") or "")
    lowered = text.lower()
    for phrase in COMPLETION_PHRASES:
        if phrase in lowered:
            return CompletionCheck(True, f"phrase:{phrase}")
    if EARNED_POINTS.search(text):
        return CompletionCheck(True, "earned-points")
    if signals.get("marker"):
        return CompletionCheck(True, f"selector:{signals['marker']}")
    if not signals.get("options"):
        return CompletionCheck(True, "no-options")
    return CompletionCheck(False)


def pick_option(options: list[OptionState], tried: set[str]) -> Optional[OptionState]:
    """First untried usable option, else any usable option, else None."""
    usable = [o for o in options if o.visible and o.enabled and o.id]
    for option in usable:
        if option.selector not in tried:
            return option
    return usable[0] if usable else None


def parse_quiz_literal(text: str) -> Optional[dict]:
    """Parse a JS object literal that may not be strict JSON."""
    for candidate in (text, _UNQUOTED_KEY.sub(r'"\2":', text).replace("'", '"')):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def to_quiz_state(raw: Any) -> Optional[QuizState]:
    if not isinstance(raw, dict):
        return None
    for key in QUIZ_KEYS:
        if isinstance(raw.get(key), dict):
            raw = raw[key]
            break
    try:
        return QuizState.model_validate(raw)
    except ValidationError as e:
        logger.debug("Discarding malformed quiz state: %s", e)
        return None


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

class QuizSolver:

    def __init__(
        self,
        clicker: InteractionProtocol,
        humanizer: Optional[Humanizer] = None,
        is_mobile: bool = False,
        max_brute_force_attempts: int = BRUTE_FORCE_MAX_ATTEMPTS,
    ):
        self.clicker = clicker
        self.humanizer = humanizer or clicker.humanizer
        self.max_brute_force_attempts = max_brute_force_attempts
        self.log = get_logger("QUIZ", is_mobile)
        self._clicks = 0
        self._brute_force_clicks = 0

    async def solve(self, page: Page) -> QuizResult:
        self._clicks = 0
        self._brute_force_clicks = 0
        await self.start(page)

        state = await self.fetch_state(page)
        if state is None or state.questions_remaining is None:
            self.log.info("No structured quiz data, falling back to brute force")
            return await self.brute_force(page)

        self.log.info(
            "Quiz has %d question(s) remaining, %s option(s) per question",
            state.questions_remaining, state.number_of_options,
        )
        return await self._solve_structured(page, state)

    async def start(self, page: Page) -> bool:
        try:
            await page.wait_for_selector(START_BUTTON, state="visible", timeout=3000)
        except Exception:
            self.log.info("Start button not shown, assuming the quiz is in progress")
            return False
        result = await self.clicker.click(page, START_BUTTON)
        if not result.success:
            self.log.warning("Could not click start button: %s", result.reason)
            return False
        await self.humanizer.wait_random(1500, 2500)
        return True

    # ------------------------------------------------------------------
    # State extraction
    # ------------------------------------------------------------------

    async def fetch_state(self, page: Page) -> Optional[QuizState]:
        """Best available quiz state, or None when nothing could be read."""
        fallback: Optional[QuizState] = None
        strategies: list[tuple[str, Callable[[Page], Awaitable[Any]]]] = [
            ("globals", self._state_from_globals),
            ("script", self._state_from_scripts),
            ("dom", self._state_from_dom),
        ]
        for name, strategy in strategies:
            try:
                state = to_quiz_state(await strategy(page))
            except Exception as e:
                self.log.debug("Quiz state strategy %s failed: %s", name, e)
                continue
            if state is None:
                continue
            if state.questions_remaining is not None:
                self.log.debug("Quiz state read from %s", name)
                return state
            fallback = fallback or state
        return fallback

    async def _state_from_globals(self, page: Page):
        return await page.evaluate(_LIVE_STATE_JS, list(QUIZ_KEYS))

    async def _state_from_scripts(self, page: Page):
        soup = BeautifulSoup(await page.content(), "html.parser")
        for script in soup.find_all("script"):
            text = script.string or script.get_text() or ""
            if not text.strip():
                continue
            if script.get("type") == "application/ld+json":
                parsed = parse_quiz_literal(text.strip())
                if parsed and any("quiz" in k.lower() for k in parsed):
                    return parsed
                continue
            for pattern in SCRIPT_PATTERNS:
                match = pattern.search(text)
                if not match:
                    continue
                literal = match.group(1)
                parsed = parse_quiz_literal(literal)
                if parsed is None:
                    parsed = await page.evaluate(_EVAL_LITERAL_JS, literal)
                if parsed:
                    return parsed

        for el in soup.select("[data-quiz], [data-quiz-data], [data-rewards-quiz]"):
            raw = el.get("data-quiz") or el.get("data-quiz-data") or el.get("data-rewards-quiz")
            parsed = parse_quiz_literal(raw or "")
            if parsed:
                return parsed
        return None

    async def _state_from_dom(self, page: Page):
        return await page.evaluate(_DOM_STATE_JS)

    # ------------------------------------------------------------------
    # Page signals
    # ------------------------------------------------------------------

    async def option_states(self, page: Page) -> list[OptionState]:
        try:
            raw = await page.evaluate(_OPTION_STATES_JS)
        except Exception as e:
            self.log.debug("Option state read failed: %s", e)
            return []
        return [
            OptionState(
                id=str(o.get("id") or ""),
                visible=bool(o.get("visible", True)),
                enabled=bool(o.get("enabled", True)),
                data_option=o.get("dataOption"),
                is_correct=bool(o.get("isCorrect")),
            )
            for o in raw or []
        ]

    async def is_complete(self, page: Page) -> CompletionCheck:
        try:
            signals = await page.evaluate(
                _COMPLETION_SIGNALS_JS, [list(COMPLETION_SELECTORS), ANSWER_OPTIONS]
            )
        except Exception as e:
            return CompletionCheck(False, f"check-error: {e}")
        return evaluate_completion(signals or {})

    async def wait_for_refresh(self, page: Page) -> bool:
        """Wait for the credits header to re-render after an answer."""
        try:
            await page.wait_for_selector(REFRESH_MARKER, state="visible", timeout=REFRESH_TIMEOUT_MS)
        except Exception as e:
            self.log.warning("Quiz did not refresh: %s", e)
            return False
        await self.humanizer.wait(REFRESH_SETTLE_MS)
        return True

    # ------------------------------------------------------------------
    # Structured path
    # ------------------------------------------------------------------

    async def _solve_structured(self, page: Page, state: QuizState) -> QuizResult:
        answered = 0
        for question in range(state.questions_remaining or 0):
            if question:
                state = await self.fetch_state(page) or state

            count = state.number_of_options
            if count == MULTI_SELECT_OPTIONS:
                outcome = await self._answer_multi_select(page, state)
            elif count in SINGLE_SELECT_OPTIONS:
                outcome = await self._answer_single(page, state)
            else:
                self.log.info("Unexpected option count %s, brute forcing question", count)
                outcome = await self._brute_force_question(page, state)

            if not outcome.success:
                outcome.questions_answered = answered
                return outcome
            answered += 1

        check = await self.is_complete(page)
        if check.complete:
            self.log.info("Quiz completed (%s)", check.reason)
        else:
            self.log.info("Answered %d question(s); completion not confirmed", answered)
        return QuizResult(True, QuizOutcome.COMPLETED, "structured", answered, self._clicks)

    async def _answer_multi_select(self, page: Page, state: QuizState) -> QuizResult:
        correct = [o for o in await self.option_states(page) if o.is_correct]
        if not correct:
            return await self._brute_force_question(page, state)
        for option in correct:
            await self._click_option(page, option)
            if not await self.wait_for_refresh(page):
                return QuizResult(False, QuizOutcome.REFRESH_FAILED, clicks=self._clicks)
        return QuizResult(True, QuizOutcome.COMPLETED, clicks=self._clicks)

    async def _answer_single(self, page: Page, state: QuizState) -> QuizResult:
        options = await self.option_states(page)
        match = next(
            (o for o in options
             if state.correct_answer is not None and o.data_option == state.correct_answer),
            None,
        )
        if match is None:
            self.log.info("No option matches the expected answer, brute forcing question")
            return await self._brute_force_question(page, state)
        await self._click_option(page, match)
        if not await self.wait_for_refresh(page):
            return QuizResult(False, QuizOutcome.REFRESH_FAILED, clicks=self._clicks)
        return QuizResult(True, QuizOutcome.COMPLETED, clicks=self._clicks)

    async def _brute_force_question(self, page: Page, state: QuizState) -> QuizResult:
        answered = state.correctly_answered_count
        number = state.current_question_number

        async def advanced() -> bool:
            fresh = await self.fetch_state(page)
            if fresh is None:
                return False
            if answered is not None and (fresh.correctly_answered_count or 0) > answered:
                return True
            return (
                number is not None
                and fresh.current_question_number is not None
                and fresh.current_question_number != number
            )

        return await self.brute_force(page, until=advanced)

    # ------------------------------------------------------------------
    # Brute force
    # ------------------------------------------------------------------

    async def brute_force(
        self,
        page: Page,
        until: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> QuizResult:
        """Click usable options until completion (or ``until``), within the click budget.

        The budget counts brute-force clicks only; answers clicked on the
        structured path do not use it up.
        """
        tried: set[str] = set()
        while True:
            check = await self.is_complete(page)
            if check.complete:
                self.log.info("Brute force finished: %s", check.reason)
                return QuizResult(True, QuizOutcome.COMPLETED, "brute-force", clicks=self._clicks)
            if until is not None and await until():
                return QuizResult(True, QuizOutcome.COMPLETED, "brute-force", clicks=self._clicks)
            if self._brute_force_clicks >= self.max_brute_force_attempts:
                self.log.warning("Brute force gave up after %d clicks", self._brute_force_clicks)
                return QuizResult(False, QuizOutcome.EXHAUSTED, "brute-force", clicks=self._clicks)

            option = pick_option(await self.option_states(page), tried)
            if option is None:
                self.log.warning("Brute force found no usable options")
                return QuizResult(False, QuizOutcome.NO_CANDIDATES, "brute-force", clicks=self._clicks)

            tried.add(option.selector)
            self._brute_force_clicks += 1
            await self._click_option(page, option)
            await self.humanizer.wait_random(600, 1400)

    async def _click_option(self, page: Page, option: OptionState) -> None:
        self._clicks += 1
        result = await self.clicker.click(page, option.selector, max_attempts=1)
        if not result.success:
            self.log.debug("Option %s click failed: %s", option.selector, result.reason)
