"""
Attempt state machine for ExamForge.

One learner attempt moves through three phases:

    start -> question (index 0..N-1) -> results

and Restart returns to start with a freshly drawn variant. The machine is fed
explicit event objects through dispatch(); the convenience methods (start(),
set_answer(), next(), submit(), tick(), ...) just build the event and
dispatch it.

Refusals are never fatal: they leave the state unchanged and append a Notice
that the UI drains and shows. The timer is driven by Tick events so the whole
machine stays single-threaded; the `submitted` latch is what keeps a timer
expiry and a manual submit from both finalizing the attempt.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union

from examforge.models import (
    MatchingQuestion,
    MultipleChoiceQuestion,
    RankingQuestion,
    SingleChoiceQuestion,
    TestDefinition,
)
from examforge.results import AttemptReport, aggregate
from examforge.runtime import ScormRuntimeAdapter
from examforge.scoring import feedback_text, has_answer, normalize_matching_answer, outcome_label, score_answer
from examforge.variant import FlatQuestion, Variant, display_order, generate_variant, matching_order
from examforge.webhook import DEFAULT_TIMEOUT, build_payload, send_result_async

logger = logging.getLogger(__name__)

PHASE_START = "start"
PHASE_QUESTION = "question"
PHASE_RESULTS = "results"

MSG_NO_ATTEMPTS = "No attempts remaining"
MSG_ANSWER_FIRST = "Please answer the question first"
MSG_CONFIRM_FIRST = "Please confirm your answer first"
MSG_LOCKED = "This answer is locked"
MSG_SUBMITTED = "The test has already been submitted"
MSG_LAST_QUESTION = "This is the last question, submit to finish"
MSG_TIME_UP = "Time is up, your answers were submitted"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class AnswerChanged:
    question_id: str
    answer: Any


@dataclass(frozen=True)
class Confirm:
    pass


@dataclass(frozen=True)
class Advance:
    pass


@dataclass(frozen=True)
class Submit:
    force: bool = False


@dataclass(frozen=True)
class Tick:
    seconds: int = 1


@dataclass(frozen=True)
class Restart:
    pass


Event = Union[Start, AnswerChanged, Confirm, Advance, Submit, Tick, Restart]


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notice:
    """Transient message for the learner (kind: info, warning, error, success)."""

    message: str
    kind: str = "warning"


@dataclass(frozen=True)
class QuestionFeedback:
    """What Confirm reveals for one question."""

    question_id: str
    ratio: float
    outcome: str
    text: Optional[str] = None


@dataclass
class AttemptState:
    phase: str = PHASE_START
    variant: Variant = field(default_factory=Variant)
    current_index: int = 0
    answers: Dict[str, Any] = field(default_factory=dict)
    locked: Set[str] = field(default_factory=set)
    feedback: Dict[str, QuestionFeedback] = field(default_factory=dict)
    submitted: bool = False
    remaining_seconds: Optional[int] = None
    timer_running: bool = False
    time_expired: bool = False
    report: Optional[AttemptReport] = None
    notices: List[Notice] = field(default_factory=list)

    @property
    def current(self) -> Optional[FlatQuestion]:
        return self.variant.question_at(self.current_index)

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self.variant) - 1


def format_time(seconds: int) -> str:
    """m:ss countdown display."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


# ---------------------------------------------------------------------------
# Machine
# ---------------------------------------------------------------------------


class AttemptStateMachine:
    """
    Drives one learner's attempts at a test.

    Args:
        test: The resolved test definition.
        adapter: Runtime adapter; a standalone one is created when omitted.
        rng: Random source for variant generation.
        webhook_url: Overrides test.webhook_url; "" disables the webhook.
        webhook_timeout: Seconds before the webhook request is abandoned.
        notifier: Callable(url, payload, timeout) used to deliver the webhook.
            The default sends on a background thread and returns it.
    """

    def __init__(
        self,
        test: TestDefinition,
        adapter: Optional[ScormRuntimeAdapter] = None,
        rng: Optional[random.Random] = None,
        webhook_url: Optional[str] = None,
        webhook_timeout: float = DEFAULT_TIMEOUT,
        notifier: Callable[..., Any] = send_result_async,
    ):
        self.test = test
        self.adapter = adapter or ScormRuntimeAdapter()
        self.rng = rng
        self.webhook_url = test.webhook_url if webhook_url is None else webhook_url
        self.webhook_timeout = webhook_timeout
        self.notifier = notifier
        self.delivery: Any = None
        self.state = self._fresh_state()
        self._handlers = {
            Start: self._on_start,
            AnswerChanged: self._on_answer,
            Confirm: self._on_confirm,
            Advance: self._on_advance,
            Submit: self._on_submit,
            Tick: self._on_tick,
            Restart: self._on_restart,
        }

    def _fresh_state(self) -> AttemptState:
        variant = generate_variant(self.test, self.rng)
        return AttemptState(variant=variant, answers=dict(variant.initial_answers))

    def _notice(self, message: str, kind: str = "warning") -> None:
        self.state.notices.append(Notice(message, kind))

    def dispatch(self, event: Event) -> AttemptState:
        """Apply one event and return the (mutated) state."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported event: {event!r}")
        handler(event)
        return self.state

    def drain_notices(self) -> List[Notice]:
        notices, self.state.notices = self.state.notices, []
        return notices

    # -- handlers ----------------------------------------------------------

    def _on_start(self, event: Start) -> None:
        if self.state.phase != PHASE_START:
            return
        max_attempts = self.test.max_attempts
        if not self.adapter.has_attempts_left(max_attempts):
            self._notice(MSG_NO_ATTEMPTS, "error")
            return
        self.adapter.register_attempt_start(max_attempts)

        self.state.phase = PHASE_QUESTION
        self.state.current_index = 0
        if self.test.time_limit_minutes:
            self.state.remaining_seconds = self.test.time_limit_minutes * 60
            self.state.timer_running = True
        logger.info("Attempt started on test %s with %d questions", self.test.id, len(self.state.variant))

        if len(self.state.variant) == 0:
            self._finalize()

    def _on_answer(self, event: AnswerChanged) -> None:
        if self.state.submitted:
            self._notice(MSG_SUBMITTED, "info")
            return
        if self.state.phase != PHASE_QUESTION:
            return
        if event.question_id in self.state.locked:
            self._notice(MSG_LOCKED, "info")
            return
        if self.state.variant.find(event.question_id) is None:
            logger.warning("Answer for question %s which is not in this variant", event.question_id)
            return
        self.state.answers[event.question_id] = event.answer

    def _current_is_ready(self) -> bool:
        """Validation shared by Advance and manual Submit."""
        fq = self.state.current
        if fq is None:
            return True
        q = fq.question
        if self.test.show_correct_answers and q.id not in self.state.locked:
            self._notice(MSG_CONFIRM_FIRST)
            return False
        if not has_answer(q, self.state.answers.get(q.id)):
            self._notice(MSG_ANSWER_FIRST)
            return False
        return True

    def _on_confirm(self, event: Confirm) -> None:
        if self.state.phase != PHASE_QUESTION or self.state.submitted:
            return
        fq = self.state.current
        if fq is None or not self.test.show_correct_answers:
            return
        q = fq.question
        if q.id in self.state.locked:
            return
        answer = self.state.answers.get(q.id)
        if not has_answer(q, answer):
            self._notice(MSG_ANSWER_FIRST)
            return

        ratio = score_answer(q, answer)
        self.state.locked.add(q.id)
        self.state.feedback[q.id] = QuestionFeedback(
            question_id=q.id, ratio=ratio, outcome=outcome_label(ratio), text=feedback_text(q, ratio)
        )

    def _on_advance(self, event: Advance) -> None:
        if self.state.phase != PHASE_QUESTION or self.state.submitted:
            return
        if not self._current_is_ready():
            return
        if self.state.is_last:
            self._notice(MSG_LAST_QUESTION, "info")
            return
        self.state.current_index += 1

    def _on_submit(self, event: Submit) -> None:
        if self.state.submitted:
            return
        if not event.force:
            if self.state.phase != PHASE_QUESTION or not self._current_is_ready():
                return
        self._finalize()

    def _on_tick(self, event: Tick) -> None:
        if self.state.submitted or not self.state.timer_running or event.seconds <= 0:
            return
        remaining = self.state.remaining_seconds or 0
        self.state.remaining_seconds = max(0, remaining - event.seconds)
        if self.state.remaining_seconds == 0:
            self.state.time_expired = True
            logger.info("Time limit reached on test %s, submitting", self.test.id)
            self._notice(MSG_TIME_UP, "warning")
            self._finalize()

    def _on_restart(self, event: Restart) -> None:
        self.adapter.reset()
        self.state = self._fresh_state()

    def _finalize(self) -> None:
        """Grade, report to the runtime and webhook, show results. Runs once per attempt."""
        state = self.state
        state.submitted = True
        state.timer_running = False

        state.report = aggregate(self.test, state.variant, state.answers, time_expired=state.time_expired)
        self.adapter.finish(state.report, state.variant, state.answers)
        state.phase = PHASE_RESULTS
        if self.webhook_url:
            self.delivery = self.notifier(self.webhook_url, build_payload(self.test, state.report), self.webhook_timeout)

    def wait_for_delivery(self, timeout: Optional[float] = None) -> None:
        """Block until a background webhook delivery finishes, or timeout passes."""
        if isinstance(self.delivery, threading.Thread):
            self.delivery.join(timeout)

    # -- convenience -------------------------------------------------------

    def start(self) -> AttemptState:
        return self.dispatch(Start())

    def set_answer(self, question_id: str, answer: Any) -> AttemptState:
        return self.dispatch(AnswerChanged(question_id, answer))

    def confirm(self) -> AttemptState:
        return self.dispatch(Confirm())

    def next(self) -> AttemptState:
        return self.dispatch(Advance())

    def submit(self, force: bool = False) -> AttemptState:
        return self.dispatch(Submit(force=force))

    def tick(self, seconds: int = 1) -> AttemptState:
        return self.dispatch(Tick(seconds))

    def restart(self) -> AttemptState:
        return self.dispatch(Restart())

    # -- display-space helpers ---------------------------------------------
    # The UI works in display positions; answers are stored in original
    # index space, translated through the question's shuffle mapping.

    def _question(self, question_id: str):
        fq = self.state.variant.find(question_id)
        return fq.question if fq else None

    def choose_option(self, question_id: str, display_pos: int) -> AttemptState:
        """Select one option of a single-choice question by display position."""
        q = self._question(question_id)
        if not isinstance(q, SingleChoiceQuestion):
            return self.state
        order = display_order(self.state.variant, q)
        if not 0 <= display_pos < len(order):
            return self.state
        return self.set_answer(question_id, order[display_pos])

    def toggle_option(self, question_id: str, display_pos: int) -> AttemptState:
        """Toggle one option of a multiple-choice question by display position."""
        q = self._question(question_id)
        if not isinstance(q, MultipleChoiceQuestion):
            return self.state
        order = display_order(self.state.variant, q)
        if not 0 <= display_pos < len(order):
            return self.state
        original = order[display_pos]
        current = list(self.state.answers.get(question_id) or [])
        if original in current:
            current.remove(original)
        else:
            current.append(original)
        return self.set_answer(question_id, sorted(current))

    def set_match(self, question_id: str, left_index: int, right_display_pos: Optional[int]) -> AttemptState:
        """Match an original left item to the right item shown at right_display_pos.

        None clears the match for that left item.
        """
        q = self._question(question_id)
        if not isinstance(q, MatchingQuestion) or not 0 <= left_index < len(q.left):
            return self.state
        pairs = normalize_matching_answer(self.state.answers.get(question_id))
        if right_display_pos is None:
            pairs.pop(left_index, None)
        else:
            right_order = matching_order(self.state.variant, q).right
            if not 0 <= right_display_pos < len(right_order):
                return self.state
            pairs[left_index] = right_order[right_display_pos]
        return self.set_answer(question_id, pairs)

    def move_rank(self, question_id: str, position: int, direction: int) -> AttemptState:
        """Swap the ranking item at position with its neighbour (direction -1 up, +1 down)."""
        q = self._question(question_id)
        if not isinstance(q, RankingQuestion):
            return self.state
        order = list(self.state.answers.get(question_id) or display_order(self.state.variant, q))
        target = position + direction
        if not (0 <= position < len(order) and 0 <= target < len(order)):
            return self.state
        order[position], order[target] = order[target], order[position]
        return self.set_answer(question_id, order)

    def question_view(self, index: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Display-ordered view of a question for the CLI and web player.

        Correct answers are only included once the question is locked by
        Confirm, or after submission.
        """
        state = self.state
        index = state.current_index if index is None else index
        fq = state.variant.question_at(index)
        if fq is None:
            return None
        q = fq.question
        answer = state.answers.get(q.id)
        view: Dict[str, Any] = {
            "index": index,
            "total": len(state.variant),
            "id": q.id,
            "type": q.type,
            "prompt": q.prompt,
            "points": q.points,
            "topicName": fq.topic_name,
            "mediaUrl": q.media_url,
            "mediaType": q.media_type,
            "answer": answer,
            "locked": q.id in state.locked or state.submitted,
        }
        if isinstance(q, (SingleChoiceQuestion, MultipleChoiceQuestion)):
            view["options"] = [{"index": i, "text": q.options[i]} for i in display_order(state.variant, q)]
        elif isinstance(q, MatchingQuestion):
            mapping = matching_order(state.variant, q)
            view["left"] = [{"index": i, "text": q.left[i]} for i in mapping.left]
            view["right"] = [{"index": i, "text": q.right[i]} for i in mapping.right]
        elif isinstance(q, RankingQuestion):
            order = answer if isinstance(answer, list) else display_order(state.variant, q)
            view["items"] = [{"index": i, "text": q.items[i]} for i in order if 0 <= i < len(q.items)]

        fb = state.feedback.get(q.id)
        if fb is not None:
            view["feedback"] = {"outcome": fb.outcome, "ratio": fb.ratio, "text": fb.text}
            view["correct"] = q.to_dict()["correct"]
        return view
