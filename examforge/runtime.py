"""
Runtime adapter for ExamForge.

The engine talks to the host LMS only through a narrow key/value channel
shaped like the SCORM 2004 API_1484_11 object. When no host API is present
the StandaloneChannel is used instead: writes are logged and the attempt
still runs and shows results.

The channel is chosen once per attempt by detect_channel(); nothing else in
the engine checks whether an LMS is present.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from examforge.models import (
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    RankingQuestion,
    SingleChoiceQuestion,
    as_index,
    round_half_up,
)
from examforge.results import AttemptReport
from examforge.scoring import is_fully_correct, normalize_matching_answer, score_answer
from examforge.variant import Variant

logger = logging.getLogger(__name__)

SUSPEND_DATA_KEY = "cmi.suspend_data"
SCORM_API_NAME = "API_1484_11"
MAX_PARENT_DEPTH = 500

INTERACTION_TYPES = {
    "single": "choice",
    "multiple": "multiple_choice",
    "matching": "matching",
    "ranking": "sequencing",
}


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class RuntimeChannel(ABC):
    """
    Abstract key/value channel to the hosting runtime.
    Every method reports failure through its return value and never raises.
    """

    name = "abstract"

    @abstractmethod
    def initialize(self) -> bool:
        pass

    @abstractmethod
    def get_value(self, key: str) -> str:
        """
        Read a data-model element.

        Returns:
            str: The stored value, or "" when unset or unavailable.
        """
        pass

    @abstractmethod
    def set_value(self, key: str, value: Any) -> bool:
        pass

    @abstractmethod
    def commit(self) -> bool:
        pass

    @abstractmethod
    def terminate(self) -> bool:
        pass


class StandaloneChannel(RuntimeChannel):
    """
    Channel used when no LMS is present. Values are kept in memory so that
    session state (the attempt counter) works within one process.
    """

    name = "standalone"

    def __init__(self, log_writes: bool = True):
        self.values: Dict[str, str] = {}
        self.log_writes = log_writes
        self.initialized = False

    def initialize(self) -> bool:
        logger.info("No SCORM API found, running in standalone mode")
        self.initialized = True
        return True

    def get_value(self, key: str) -> str:
        return self.values.get(key, "")

    def set_value(self, key: str, value: Any) -> bool:
        if self.log_writes:
            logger.debug("setValue (standalone): %s = %s", key, value)
        self.values[key] = str(value)
        return True

    def commit(self) -> bool:
        return True

    def terminate(self) -> bool:
        self.initialized = False
        return True


class ScormApiChannel(RuntimeChannel):
    """
    Channel over a host object exposing the SCORM 2004 API
    (Initialize, GetValue, SetValue, Commit, Terminate).
    """

    name = "scorm"

    def __init__(self, api: Any, log_writes: bool = True):
        self.api = api
        self.log_writes = log_writes
        self.initialized = False

    def _call(self, method: str, *args) -> Any:
        try:
            return getattr(self.api, method)(*args)
        except Exception as e:
            logger.warning("SCORM %s%s failed: %s", method, args, e)
            return None

    @staticmethod
    def _ok(result: Any) -> bool:
        return result is True or result == "true"

    def initialize(self) -> bool:
        self.initialized = self._ok(self._call("Initialize", ""))
        if not self.initialized:
            logger.warning("SCORM Initialize returned false")
        return self.initialized

    def get_value(self, key: str) -> str:
        result = self._call("GetValue", key)
        return "" if result is None else str(result)

    def set_value(self, key: str, value: Any) -> bool:
        if self.log_writes:
            logger.debug("setValue: %s = %s", key, value)
        ok = self._ok(self._call("SetValue", key, str(value)))
        if not ok:
            logger.warning("SCORM SetValue(%s) was rejected", key)
        return ok

    def commit(self) -> bool:
        return self._ok(self._call("Commit", ""))

    def terminate(self) -> bool:
        ok = self._ok(self._call("Terminate", ""))
        self.initialized = False
        return ok


def _looks_like_api(obj: Any) -> bool:
    return all(callable(getattr(obj, m, None)) for m in ("Initialize", "GetValue", "SetValue", "Commit", "Terminate"))


def find_api(host: Any) -> Optional[Any]:
    """Look for API_1484_11 on the host, then up its parent chain, then on its opener.

    Args:
        host: The hosting environment object, or the API object itself.

    Returns:
        The API object, or None when the host exposes none.
    """
    if host is None:
        return None
    if _looks_like_api(host):
        return host

    win = host
    for _ in range(MAX_PARENT_DEPTH):
        api = getattr(win, SCORM_API_NAME, None)
        if api is not None and _looks_like_api(api):
            return api
        parent = getattr(win, "parent", None)
        if parent is None or parent is win:
            break
        win = parent

    opener = getattr(host, "opener", None)
    if opener is not None and opener is not host:
        return find_api(opener)
    return None


def detect_channel(host: Any = None, log_writes: bool = True) -> RuntimeChannel:
    """Search the host once and pick the channel implementation."""
    api = find_api(host)
    if api is not None:
        return ScormApiChannel(api, log_writes=log_writes)
    return StandaloneChannel(log_writes=log_writes)


# ---------------------------------------------------------------------------
# Interaction serialization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Interaction:
    id: str
    type: str
    result: str
    learner_response: str
    correct_pattern: str = ""
    description: str = ""


def interaction_type(question: Question) -> str:
    return INTERACTION_TYPES.get(question.type, "other")


def interaction_result(ratio: float) -> str:
    """'correct', 'incorrect', or the partial ratio with two decimals."""
    if is_fully_correct(ratio):
        return "correct"
    if ratio <= 0:
        return "incorrect"
    return f"{ratio:.2f}"


def _join_one_based(indices) -> str:
    return ",".join(str(i + 1) for i in indices)


def format_response(question: Question, answer: Any) -> str:
    """Serialize an answer (original index space) with 1-based indices.

    single -> "3", multiple -> "1,3" in selection order, matching -> "1-2,2-1"
    sorted by left, ranking -> "3,1,2". Missing or malformed answers give "".
    """
    if answer is None:
        return ""
    if isinstance(question, SingleChoiceQuestion):
        idx = as_index(answer)
        return "" if idx is None else str(idx + 1)
    if isinstance(question, MultipleChoiceQuestion):
        if not isinstance(answer, (list, tuple, set, frozenset)):
            return ""
        if isinstance(answer, (set, frozenset)):
            answer = sorted(answer)
        return _join_one_based(i for i in (as_index(a) for a in answer) if i is not None)
    if isinstance(question, MatchingQuestion):
        pairs = normalize_matching_answer(answer)
        return ",".join(f"{left + 1}-{right + 1}" for left, right in sorted(pairs.items()))
    if isinstance(question, RankingQuestion):
        if not isinstance(answer, (list, tuple)):
            return ""
        return _join_one_based(i for i in (as_index(a) for a in answer) if i is not None)
    return ""


def correct_pattern(question: Question) -> str:
    """The correct response in the same 1-based format as format_response()."""
    if isinstance(question, SingleChoiceQuestion):
        return "" if question.correct_index is None else str(question.correct_index + 1)
    if isinstance(question, MultipleChoiceQuestion):
        return _join_one_based(sorted(set(question.correct_indices)))
    if isinstance(question, MatchingQuestion):
        return format_response(question, question.correct_map)
    if isinstance(question, RankingQuestion):
        return _join_one_based(question.correct_order)
    return ""


def build_interactions(variant: Variant, answers: Mapping[str, Any]) -> List[Interaction]:
    """One interaction record per drawn question, in the attempt's display order."""
    records = []
    for fq in variant.flat_questions:
        q = fq.question
        answer = answers.get(q.id)
        records.append(
            Interaction(
                id=f"q_{q.id}",
                type=interaction_type(q),
                result=interaction_result(score_answer(q, answer)),
                learner_response=format_response(q, answer),
                correct_pattern=correct_pattern(q),
                description=q.prompt,
            )
        )
    return records


def _number(value: float) -> str:
    """Format a score for the data model: integral values without a fraction."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text or "0"


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class ScormRuntimeAdapter:
    """
    Translates attempt outcomes into SCORM data-model writes and keeps the
    per-learner session state (attempt counter) in cmi.suspend_data.

    Every write is attempted even when earlier ones fail; the count of
    rejected writes is kept in `failed_writes` for diagnostics.
    """

    def __init__(
        self,
        channel: Optional[RuntimeChannel] = None,
        suspend_key: str = SUSPEND_DATA_KEY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.channel = channel or StandaloneChannel()
        self.suspend_key = suspend_key
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.started = False
        self.finished = False
        self.failed_writes = 0

    @property
    def is_standalone(self) -> bool:
        return isinstance(self.channel, StandaloneChannel)

    def start(self) -> bool:
        """Initialize the channel once. Safe to call repeatedly."""
        if not self.started:
            self.started = self.channel.initialize()
        return self.started

    def reset(self) -> None:
        """Allow a new attempt on the same channel after finish()."""
        self.finished = False
        self.failed_writes = 0
        if not self.channel_open:
            self.started = False

    @property
    def channel_open(self) -> bool:
        return bool(getattr(self.channel, "initialized", False))

    def _set(self, key: str, value: Any) -> bool:
        ok = self.channel.set_value(key, value)
        if not ok:
            self.failed_writes += 1
        return ok

    # -- session state -----------------------------------------------------

    def read_session_state(self) -> Dict[str, Any]:
        """Parse cmi.suspend_data. Empty or unparseable data reads as {}."""
        self.start()
        raw = self.channel.get_value(self.suspend_key)
        if not raw:
            return {}
        try:
            state = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unparseable suspend data: %r", raw[:80])
            return {}
        return state if isinstance(state, dict) else {}

    def write_session_state(self, state: Dict[str, Any]) -> bool:
        self.start()
        ok = self._set(self.suspend_key, json.dumps(state))
        self.channel.commit()
        return ok

    def attempts_used(self) -> int:
        used = as_index(self.read_session_state().get("attemptsUsed"))
        return used if used is not None and used > 0 else 0

    def has_attempts_left(self, max_attempts: Optional[int]) -> bool:
        if not max_attempts:
            return True
        return self.attempts_used() < max_attempts

    def register_attempt_start(self, max_attempts: Optional[int]) -> bool:
        """Increment the persisted attempt counter.

        The write is best-effort: a rejected or failing write is logged and
        the attempt goes ahead. With no attempt limit nothing is written.

        Returns:
            bool: True when the counter was persisted or no limit applies.
        """
        if not max_attempts:
            return True
        state = self.read_session_state()
        used = as_index(state.get("attemptsUsed")) or 0
        state["attemptsUsed"] = max(0, used) + 1
        state["lastUpdated"] = self.clock().isoformat()
        logger.info("Attempt %d of %d started", state["attemptsUsed"], max_attempts)
        if not self.write_session_state(state):
            logger.warning("Could not persist the attempt counter to %s", self.suspend_key)
            return False
        return True

    # -- result writes -----------------------------------------------------

    def set_score(self, report: AttemptReport) -> None:
        possible = report.possible_points
        scaled = report.earned_points / possible if possible > 0 else 0.0
        self._set("cmi.score.raw", _number(report.earned_points))
        self._set("cmi.score.min", "0")
        self._set("cmi.score.max", _number(possible))
        self._set("cmi.score.scaled", _number(scaled))

    def set_objective(self, index: int, objective_id: str, score: float, status: str) -> None:
        prefix = f"cmi.objectives.{index}"
        self._set(f"{prefix}.id", objective_id)
        self._set(f"{prefix}.score.raw", _number(score))
        self._set(f"{prefix}.success_status", status)

    def set_interaction(self, index: int, record: Interaction) -> None:
        prefix = f"cmi.interactions.{index}"
        self._set(f"{prefix}.id", record.id)
        self._set(f"{prefix}.type", record.type)
        self._set(f"{prefix}.result", record.result)
        self._set(f"{prefix}.learner_response", record.learner_response)
        if record.correct_pattern:
            self._set(f"{prefix}.correct_responses.0.pattern", record.correct_pattern)
        if record.description:
            self._set(f"{prefix}.description", record.description)

    def finish(self, report: AttemptReport, variant: Variant, answers: Mapping[str, Any]) -> bool:
        """Write the final result, objectives and interactions, then commit and terminate.

        Only the first call writes; later calls are ignored.

        Returns:
            bool: True when every write was accepted.
        """
        if self.finished:
            logger.debug("finish() called again, ignoring")
            return self.failed_writes == 0
        self.finished = True
        self.start()

        self.set_score(report)
        self._set("cmi.completion_status", "completed")
        self._set("cmi.success_status", "passed" if report.passed else "failed")
        self._set("cmi.progress_measure", "1")
        self._set("cmi.exit", "normal")

        for i, tr in enumerate(report.topic_results):
            if tr.passed is None:
                status = "unknown"
            else:
                status = "passed" if tr.passed else "failed"
            self.set_objective(i, f"topic_{tr.topic_id}", round_half_up(tr.percent), status)

        for i, record in enumerate(build_interactions(variant, answers)):
            self.set_interaction(i, record)

        self.channel.commit()
        self.channel.terminate()

        if self.failed_writes:
            logger.warning("%d runtime writes were rejected", self.failed_writes)
        return self.failed_writes == 0


def adapter_from_config(config: Dict[str, Any], host: Any = None) -> ScormRuntimeAdapter:
    """Search the host and build an adapter using the runtime config section."""
    runtime_cfg = config.get("runtime", {})
    channel = detect_channel(host, log_writes=runtime_cfg.get("log_writes", True))
    return ScormRuntimeAdapter(channel, suspend_key=runtime_cfg.get("suspend_key", SUSPEND_DATA_KEY))
