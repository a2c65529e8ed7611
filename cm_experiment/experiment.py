"""
Experiment controller: a UI-independent state machine.

    intro ──start──▶ trial ──submit──▶ trial ──…──▶ end
      ▲                                              │
      └───────────────────reset──────────────────────┘

The trial queue is conditions × trials_per_condition entries, shuffled
once at start and consumed in order.  Each trial draws fresh values from
the generator, hands them to the condition's renderer, and waits for a
response.  A submitted response is graded, recorded and saved before the
next trial is shown.

Collaborators (generator, grader, store, renderers, presenter) are passed
in at construction and checked there; any front end drives the machine by
calling start / submit / reset (or dispatch).

Logging
───────
JSONL file per session in log_dir/.  Records:
  • experiment_header  – config, seed, queue length
  • trial_start        – condition, values, true percentage
  • trial_response     – the full trial record
  • experiment_footer  – per-condition summary
  • experiment_reset   – session abandoned via reset()
"""

import json
import logging
import math
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from .analysis import summarize
from .config import Condition, load_conditions
from .data import TrialData
from .errors import ConfigError, GenerationError, MissingCollaboratorError, ValidationError
from .storage import safe_filename_part

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════
#  Collaborator interfaces
# ══════════════════════════════════════════════════════════════════

class Generator(Protocol):
    def __call__(self, n: int, lower: int, upper: int, min_gap: int,
                 rng: random.Random, max_attempts: int) -> TrialData: ...


class Grader(Protocol):
    def score(self, trial_data: TrialData, response: float) -> Any: ...


class Renderer(Protocol):
    def render(self, container: Any, trial_data: TrialData) -> None: ...
    def clear(self, container: Any) -> None: ...


class Store(Protocol):
    def save(self, record: Any) -> None: ...
    def export_csv(self, participant_id: str | None = None) -> str: ...


class Presenter(Protocol):
    viz_container: Any

    def show_screen(self, name: str) -> None: ...
    def read_response_input(self) -> str: ...
    def clear_response_input(self) -> None: ...
    def write_error(self, text: str) -> None: ...
    def write_label(self, text: str) -> None: ...
    def write_counter(self, text: str) -> None: ...
    def write_csv_output(self, text: str) -> None: ...


def _require(obj, name: str, *methods: str) -> None:
    if obj is None:
        raise MissingCollaboratorError(f"{name} not provided")
    for m in methods:
        if not callable(getattr(obj, m, None)):
            raise MissingCollaboratorError(f"{name} has no {m}()")


# ══════════════════════════════════════════════════════════════════
#  Data structures
# ══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TrialQueueEntry:
    condition_id: str
    trial_index: int


@dataclass(frozen=True)
class TrialRecord:
    participant_id: str
    trial_number: int
    condition_id: str
    condition_label: str
    values: str                 # "10;50;60;5;80"
    marked_a: int
    marked_b: int
    true_value_a: int
    true_value_b: int
    true_percentage: int        # smaller / larger × 100
    response: float
    raw_error: float
    log2_error: float
    reaction_time_ms: int
    timestamp: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExperimentState:
    participant_id: str | None = None
    trial_queue: list[TrialQueueEntry] = field(default_factory=list)
    current_trial_index: int = 0
    current_trial_data: TrialData | None = None
    current_condition: Condition | None = None
    results: list[TrialRecord] = field(default_factory=list)
    start_time: float | None = None


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_response(raw: str | None) -> float:
    """Parse a percentage estimate; raises ValidationError unless 0 ≤ x ≤ 100."""
    text = (raw or "").strip()
    try:
        response = float(text)
    except ValueError:
        raise ValidationError("Please enter a number between 0 and 100.") from None
    if not math.isfinite(response) or response < 0 or response > 100:
        raise ValidationError("Please enter a number between 0 and 100.")
    return response


# ══════════════════════════════════════════════════════════════════
#  Controller
# ══════════════════════════════════════════════════════════════════

class ExperimentController:
    def __init__(
        self,
        config: dict,
        generator: Generator,
        grader: Grader,
        store: Store,
        renderers: dict[str, Renderer],
        presenter: Presenter,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], str] = _iso_now,
    ):
        if not callable(generator):
            raise MissingCollaboratorError("generator not provided")
        _require(grader, "grader", "score")
        _require(store, "store", "save", "export_csv")
        _require(presenter, "presenter", "show_screen", "read_response_input",
                 "clear_response_input", "write_error", "write_label",
                 "write_counter", "write_csv_output")

        self.config = config
        self.conditions = load_conditions(config)
        if not self.conditions:
            raise ConfigError("config defines no conditions")
        self._conditions_by_id = {c.id: c for c in self.conditions}

        renderers = renderers or {}
        for c in self.conditions:
            _require(renderers.get(c.id), f"renderer for condition {c.id!r}", "render", "clear")

        self.generator = generator
        self.grader = grader
        self.store = store
        self.renderers = renderers
        self.presenter = presenter
        self.clock = clock
        self.now = now

        # ── RNG ───────────────────────────────────────────────────────────
        seed = config.get("rng_seed")
        self.seed: int = seed if seed is not None else random.randrange(0, 2**32)
        self.rng = random.Random(self.seed)

        # ── State machine ─────────────────────────────────────────────────
        self.state = ExperimentState()
        self.screen = "intro"
        self.summary: dict[str, dict] = {}
        self.log_path: Path | None = None
        self.presenter.show_screen("intro")

    # ── queue ─────────────────────────────────────────────────────────────

    def build_trial_queue(self) -> list[TrialQueueEntry]:
        per_condition = self.config.get("trials_per_condition", 20)
        queue = [
            TrialQueueEntry(condition_id=c.id, trial_index=i)
            for c in self.conditions
            for i in range(per_condition)
        ]
        self.rng.shuffle(queue)
        return queue

    # ── commands ──────────────────────────────────────────────────────────

    def start(self, participant_id: str | None) -> bool:
        pid = (participant_id or "").strip()
        if not pid:
            self.presenter.write_error("Please enter a participant ID before starting.")
            logger.info("Start rejected: empty participant ID")
            return False

        previous = (self.state, self.summary, self.log_path)
        self.state = ExperimentState(participant_id=pid, trial_queue=self.build_trial_queue())
        self.summary = {}
        self.presenter.write_error("")
        logger.info("Starting experiment for participant: %s", pid)
        logger.info("Total trials: %d", len(self.state.trial_queue))
        try:
            self.log_path = self._init_logfile()
            self._run_next_trial()
        except (OSError, GenerationError):
            # nothing was shown yet: the previous session stays intact
            self.state, self.summary, self.log_path = previous
            raise
        return True

    def submit(self, raw_response: str | None = None) -> bool:
        if self.screen != "trial" or self.state.current_trial_data is None:
            logger.warning("submit() ignored: no trial on the %r screen", self.screen)
            return False
        if raw_response is None:
            raw_response = self.presenter.read_response_input()

        try:
            response = parse_response(raw_response)
        except ValidationError as e:
            self.presenter.write_error(str(e))
            return False

        st = self.state
        reaction_time = int(round((self.clock() - st.start_time) * 1000))
        grading = self.grader.score(st.current_trial_data, response)

        trial = st.current_trial_data
        a, b = trial.marked
        record = TrialRecord(
            participant_id=st.participant_id,
            trial_number=st.current_trial_index + 1,
            condition_id=st.current_condition.id,
            condition_label=st.current_condition.label,
            values=";".join(str(v) for v in trial.values),
            marked_a=a,
            marked_b=b,
            true_value_a=trial.values[a],
            true_value_b=trial.values[b],
            true_percentage=trial.true_percentage,
            response=response,
            raw_error=grading.raw_error,
            log2_error=grading.log2_error,
            reaction_time_ms=reaction_time,
            timestamp=self.now(),
        )
        st.results.append(record)
        self.store.save(record)
        self._log({"record_type": "trial_response", **record.to_dict()})
        logger.debug("Trial result: %s", record)

        st.current_trial_index += 1
        self._run_next_trial()
        return True

    def reset(self) -> None:
        """Clear the session for a new participant and return to intro."""
        self._log({
            "record_type": "experiment_reset",
            "timestamp": self.now(),
            "trials_completed": len(self.state.results),
        })
        self.state = ExperimentState()
        self.summary = {}
        self.log_path = None
        self.presenter.clear_response_input()
        self.presenter.write_error("")
        self.screen = "intro"
        self.presenter.show_screen("intro")
        logger.info("State reset, ready for next participant.")

    def retry(self) -> bool:
        """Generate the pending trial again after a GenerationError."""
        st = self.state
        if self.screen != "trial" or st.current_trial_data is not None:
            return False
        self._run_next_trial()
        return True

    def dispatch(self, command: str, *args):
        handlers = {"start": self.start, "submit": self.submit, "reset": self.reset,
                    "retry": self.retry}
        try:
            handler = handlers[command]
        except KeyError:
            raise ValueError(f"unknown command: {command!r}") from None
        return handler(*args)

    # ── views ─────────────────────────────────────────────────────────────

    @property
    def results(self) -> list[TrialRecord]:
        return list(self.state.results)

    @property
    def is_finished(self) -> bool:
        return self.screen == "end"

    def snapshot(self) -> dict:
        st = self.state
        return {
            "participant_id": st.participant_id,
            "trial_queue": list(st.trial_queue),
            "current_trial_index": st.current_trial_index,
            "current_trial_data": st.current_trial_data,
            "current_condition": st.current_condition,
            "results": list(st.results),
            "start_time": st.start_time,
            "screen": self.screen,
        }

    # ── flow ──────────────────────────────────────────────────────────────

    def _run_next_trial(self) -> None:
        st = self.state
        if st.current_trial_index >= len(st.trial_queue):
            self._end_experiment()
            return

        entry = st.trial_queue[st.current_trial_index]
        condition = self._conditions_by_id[entry.condition_id]

        # 1. trial data; nothing from the answered trial stays current
        st.current_trial_data = None
        st.current_condition = None
        st.start_time = None
        try:
            trial = self.generator(
                n=self.config.get("points_per_trial", 5),
                lower=self.config.get("value_lower", 2),
                upper=self.config.get("value_upper", 99),
                min_gap=self.config.get("min_marked_gap", 0),
                rng=self.rng,
                max_attempts=self.config.get("max_generation_attempts", 10000),
            )
        except GenerationError:
            logger.error("Trial generation failed at trial %d", st.current_trial_index + 1)
            self.presenter.write_error("Could not generate the next trial.")
            raise
        st.current_condition = condition
        st.current_trial_data = trial

        # 2. render
        renderer = self.renderers[condition.id]
        container = self.presenter.viz_container
        renderer.clear(container)
        renderer.render(container, trial)

        # 3. labels, cleared response
        self.presenter.write_label(condition.label)
        self.presenter.write_counter(
            f"Trial {st.current_trial_index + 1} of {len(st.trial_queue)}"
        )
        self.presenter.clear_response_input()
        self.presenter.write_error("")

        # 4. RT anchor
        st.start_time = self.clock()
        self.screen = "trial"
        self.presenter.show_screen("trial")

        self._log({
            "record_type": "trial_start",
            "timestamp": self.now(),
            "trial_number": st.current_trial_index + 1,
            "condition_id": condition.id,
            "condition_label": condition.label,
            "values": list(trial.values),
            "marked": list(trial.marked),
            "true_percentage": trial.true_percentage,
        })
        logger.debug("Trial %d | condition: %s | %s",
                     st.current_trial_index + 1, condition.id, trial)

    def _end_experiment(self) -> None:
        st = self.state
        logger.info("Experiment complete. Total records: %d", len(st.results))

        self.presenter.write_csv_output(self.store.export_csv())
        self.summary = summarize([r.to_dict() for r in st.results])
        logger.info("Summary: %s", self.summary)

        self._log({
            "record_type": "experiment_footer",
            "timestamp": self.now(),
            "participant_id": st.participant_id,
            "total_trials_completed": len(st.results),
            "summary": self.summary,
        })
        self.screen = "end"
        self.presenter.show_screen("end")

    # ── logging ───────────────────────────────────────────────────────────

    def _init_logfile(self) -> Path | None:
        log_dir = self.config.get("log_dir")
        if not log_dir:
            return None
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        stem = safe_filename_part(self.state.participant_id)
        path = log_dir / f"cm_experiment_{stem}_{ts}.jsonl"
        header = {
            "record_type": "experiment_header",
            "timestamp": self.now(),
            "participant_id": self.state.participant_id,
            "seed": self.seed,
            "config": self.config,
            "num_trials": len(self.state.trial_queue),
        }
        path.write_text(json.dumps(header, default=str, ensure_ascii=False) + "\n",
                        encoding="utf-8")
        return path

    def _log(self, record: dict) -> None:
        if self.log_path is None:
            return
        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str, ensure_ascii=False) + "\n")
