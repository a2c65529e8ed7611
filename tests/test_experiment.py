import json
import math
from collections import Counter

import pytest

from cm_experiment import grading
from cm_experiment.config import CONFIG
from cm_experiment.data import TrialData, generate_trial_data
from cm_experiment.errors import (
    ConfigError,
    GenerationError,
    MissingCollaboratorError,
    ValidationError,
)
from cm_experiment.experiment import ExperimentController, TrialQueueEntry, parse_response
from cm_experiment.storage import MemoryBackend, RecordStore

from conftest import FakeRenderer


def make_config(tmp_path=None, per_condition=2, **overrides):
    config = {
        "points_per_trial": 5,
        "trials_per_condition": per_condition,
        "conditions": [
            {"id": "bw", "label": "Bar Chart (B&W)"},
            {"id": "multicolor", "label": "Bar Chart (Multi-Color)"},
            {"id": "gradient", "label": "Bar Chart (Gradient)"},
        ],
        "value_lower": 2,
        "value_upper": 99,
        "min_marked_gap": 5,
        "log_dir": str(tmp_path / "logs") if tmp_path else None,
        "rng_seed": 42,
    }
    config.update(overrides)
    return config


@pytest.fixture
def renderers():
    return {"bw": FakeRenderer(), "multicolor": FakeRenderer(), "gradient": FakeRenderer()}


@pytest.fixture
def store():
    return RecordStore(MemoryBackend())


@pytest.fixture
def controller(tmp_path, presenter, renderers, store, fake_clock):
    return ExperimentController(
        config=make_config(tmp_path),
        generator=generate_trial_data,
        grader=grading,
        store=store,
        renderers=renderers,
        presenter=presenter,
        clock=fake_clock,
        now=lambda: "2026-01-01T00:00:00.000Z",
    )


def answer_correctly(controller):
    return controller.submit(str(controller.state.current_trial_data.true_percentage))


# ── construction ─────────────────────────────────────────────────────────

def test_starts_on_intro(controller, presenter):
    assert controller.screen == "intro"
    assert presenter.screens == ["intro"]


@pytest.mark.parametrize("missing", ["grader", "store", "presenter"])
def test_missing_collaborator(missing, presenter, renderers, store):
    kwargs = dict(config=make_config(), generator=generate_trial_data, grader=grading,
                  store=store, renderers=renderers, presenter=presenter)
    kwargs[missing] = None
    with pytest.raises(MissingCollaboratorError):
        ExperimentController(**kwargs)


def test_missing_generator(presenter, renderers, store):
    with pytest.raises(MissingCollaboratorError):
        ExperimentController(make_config(), None, grading, store, renderers, presenter)


def test_missing_renderer(presenter, renderers, store):
    del renderers["gradient"]
    with pytest.raises(MissingCollaboratorError, match="gradient"):
        ExperimentController(make_config(), generate_trial_data, grading, store,
                             renderers, presenter)


# ── queue ────────────────────────────────────────────────────────────────

def test_queue_is_balanced(tmp_path, presenter, renderers, store):
    controller = ExperimentController(make_config(per_condition=20), generate_trial_data,
                                      grading, store, renderers, presenter)
    queue = controller.build_trial_queue()
    assert len(queue) == 60
    assert Counter(e.condition_id for e in queue) == {"bw": 20, "multicolor": 20, "gradient": 20}
    assert sorted(e.trial_index for e in queue if e.condition_id == "bw") == list(range(20))
    assert controller.build_trial_queue() != queue


def test_queue_reproducible_from_seed(presenter, renderers, store):
    def queue():
        c = ExperimentController(make_config(rng_seed=7), generate_trial_data, grading,
                                 store, renderers, presenter)
        return c.build_trial_queue()

    assert queue() == queue()


# ── start ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("pid", ["", "   ", None])
def test_start_rejects_empty_id(controller, presenter, pid):
    assert controller.start(pid) is False
    assert presenter.error == "Please enter a participant ID before starting."
    assert controller.screen == "intro"
    assert controller.state.trial_queue == []


def test_start_shows_first_trial(controller, presenter, renderers, fake_clock):
    assert controller.start("  P001 ") is True
    st = controller.state
    assert st.participant_id == "P001"
    assert len(st.trial_queue) == 6
    assert st.current_trial_index == 0
    assert st.start_time == fake_clock.t
    assert controller.screen == "trial"
    assert presenter.screens[-1] == "trial"
    assert presenter.counter == "Trial 1 of 6"
    assert presenter.label == st.current_condition.label
    assert st.current_condition.id == st.trial_queue[0].condition_id
    renderer = renderers[st.current_condition.id]
    assert renderer.rendered == [st.current_trial_data]
    assert renderer.clears == 1


# ── submit ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize("text", ["", "abc", "-1", "100.5", "nan", "inf"])
def test_invalid_response_keeps_trial(controller, presenter, text):
    controller.start("P001")
    trial = controller.state.current_trial_data
    assert controller.submit(text) is False
    assert presenter.error == "Please enter a number between 0 and 100."
    assert controller.state.current_trial_index == 0
    assert controller.state.current_trial_data is trial
    assert controller.results == []


def test_submit_before_start_is_ignored(controller):
    assert controller.submit("50") is False


def test_submit_records_and_advances(controller, presenter, store, fake_clock):
    controller.start("P001")
    trial = controller.state.current_trial_data
    condition = controller.state.current_condition
    fake_clock.t += 1.2345
    presenter.response = " 70 "
    presenter.error = "stale"

    assert controller.submit() is True

    [rec] = controller.results
    assert rec.participant_id == "P001"
    assert rec.trial_number == 1
    assert rec.condition_id == condition.id
    assert rec.condition_label == condition.label
    assert rec.values == ";".join(str(v) for v in trial.values)
    assert (rec.marked_a, rec.marked_b) == (1, 2)
    assert (rec.true_value_a, rec.true_value_b) == trial.marked_values
    assert rec.true_percentage == trial.true_percentage
    assert rec.response == 70.0
    assert rec.raw_error == abs(trial.true_percentage - 70)
    assert rec.reaction_time_ms == 1234 or rec.reaction_time_ms == 1235
    assert rec.timestamp == "2026-01-01T00:00:00.000Z"
    assert store.get_all() == [rec.to_dict()]

    assert controller.state.current_trial_index == 1
    assert presenter.counter == "Trial 2 of 6"
    assert presenter.error == ""
    assert presenter.response == ""


def test_exact_answer_scores_zero(controller):
    controller.start("P001")
    answer_correctly(controller)
    assert controller.results[0].raw_error == 0
    assert controller.results[0].log2_error == 0


def test_graded_error(controller):
    controller.start("P001")
    pct = controller.state.current_trial_data.true_percentage
    response = 0 if pct > 50 else 100
    controller.submit(str(response))
    rec = controller.results[0]
    assert rec.log2_error == pytest.approx(math.log2(abs(pct - response) + 0.125))


def test_full_session_reaches_end(controller, presenter, store):
    controller.start("P001")
    for _ in range(6):
        assert answer_correctly(controller)
    assert controller.is_finished
    assert presenter.screens[-1] == "end"
    assert [r.trial_number for r in controller.results] == [1, 2, 3, 4, 5, 6]
    assert Counter(r.condition_id for r in controller.results) == {
        "bw": 2, "multicolor": 2, "gradient": 2}
    assert presenter.csv == store.export_csv()
    assert len(presenter.csv.split("\n")) == 7
    assert set(controller.summary) == {"bw", "multicolor", "gradient"}
    assert controller.submit("50") is False


def test_trials_follow_queue_order(controller, renderers):
    controller.start("P001")
    order = [e.condition_id for e in controller.state.trial_queue]
    seen = []
    for _ in range(6):
        seen.append(controller.state.current_condition.id)
        answer_correctly(controller)
    assert seen == order


# ── reset / dispatch ─────────────────────────────────────────────────────

def test_reset_mid_session(controller, presenter):
    controller.start("P001")
    answer_correctly(controller)
    controller.reset()
    st = controller.state
    assert st.participant_id is None
    assert st.trial_queue == []
    assert st.current_trial_index == 0
    assert st.current_trial_data is None
    assert st.current_condition is None
    assert st.results == []
    assert st.start_time is None
    assert controller.screen == "intro"
    assert presenter.screens[-1] == "intro"


def test_reset_from_intro(controller, presenter):
    controller.reset()
    assert presenter.screens == ["intro", "intro"]


def test_dispatch(controller):
    assert controller.dispatch("start", "P002") is True
    pct = controller.state.current_trial_data.true_percentage
    assert controller.dispatch("submit", str(pct)) is True
    controller.dispatch("reset")
    assert controller.screen == "intro"
    with pytest.raises(ValueError):
        controller.dispatch("jump")


def test_snapshot_is_a_copy(controller):
    controller.start("P001")
    snap = controller.snapshot()
    snap["trial_queue"].clear()
    assert len(controller.state.trial_queue) == 6
    assert snap["screen"] == "trial"
    assert isinstance(controller.state.trial_queue[0], TrialQueueEntry)


# ── generation failure ───────────────────────────────────────────────────

def test_generation_error_propagates(presenter, renderers, store):
    def broken(**kwargs):
        raise GenerationError("exhausted")

    controller = ExperimentController(make_config(), broken, grading, store,
                                      renderers, presenter)
    with pytest.raises(GenerationError):
        controller.start("P001")
    assert controller.results == []


def test_custom_generator_receives_config(presenter, renderers, store):
    calls = []

    def generator(**kwargs):
        calls.append(kwargs)
        return TrialData(values=(10, 50, 60, 5, 80), marked=(1, 2), true_percentage=83)

    controller = ExperimentController(make_config(min_marked_gap=0), generator, grading,
                                      store, renderers, presenter)
    controller.start("P001")
    assert calls[0]["n"] == 5
    assert calls[0]["lower"] == 2
    assert calls[0]["upper"] == 99
    assert calls[0]["min_gap"] == 0
    assert calls[0]["rng"] is controller.rng
    controller.submit("70")
    assert controller.results[0].log2_error == pytest.approx(3.714, abs=1e-3)


# ── session log ──────────────────────────────────────────────────────────

def test_session_log(controller, tmp_path):
    controller.start("P001")
    for _ in range(6):
        answer_correctly(controller)
    [path] = (tmp_path / "logs").glob("*.jsonl")
    lines = [json.loads(l) for l in path.read_text(encoding="utf-8").splitlines()]
    kinds = [l["record_type"] for l in lines]
    assert kinds[0] == "experiment_header"
    assert lines[0]["seed"] == 42
    assert kinds.count("trial_start") == 6
    assert kinds.count("trial_response") == 6
    assert kinds[-1] == "experiment_footer"
    assert lines[-1]["total_trials_completed"] == 6


def test_no_log_dir(presenter, renderers, store):
    controller = ExperimentController(make_config(), generate_trial_data, grading, store,
                                      renderers, presenter)
    controller.start("P001")
    assert controller.log_path is None


# ── parsing ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("text, expected", [("0", 0.0), ("100", 100.0), (" 42.5 ", 42.5)])
def test_parse_response(text, expected):
    assert parse_response(text) == expected


def test_parse_response_rejects():
    with pytest.raises(ValidationError):
        parse_response("101")


def test_default_config_builds(presenter, store):
    from cm_experiment.viz import default_renderers
    controller = ExperimentController(dict(CONFIG, log_dir=None), generate_trial_data,
                                      grading, store, default_renderers(), presenter)
    assert len(controller.build_trial_queue()) == 60


# ── failure paths ────────────────────────────────────────────────────────

def fixed_trial():
    return TrialData(values=(10, 50, 60, 5, 80), marked=(1, 2), true_percentage=83)


class FlakyGenerator:
    """Raises GenerationError on the listed (1-based) calls."""

    def __init__(self, failing_calls):
        self.failing_calls = set(failing_calls)
        self.calls = 0

    def __call__(self, **kwargs):
        self.calls += 1
        if self.calls in self.failing_calls:
            raise GenerationError("exhausted")
        return fixed_trial()


def test_generation_failure_mid_session_blocks_submit(presenter, renderers, store):
    generator = FlakyGenerator({2})
    controller = ExperimentController(make_config(), generator, grading, store,
                                      renderers, presenter)
    controller.start("P001")
    with pytest.raises(GenerationError):
        controller.submit("70")

    st = controller.state
    assert [r.trial_number for r in controller.results] == [1]
    assert st.current_trial_index == 1
    assert st.current_trial_data is None
    assert st.current_condition is None
    assert presenter.error == "Could not generate the next trial."

    assert controller.submit("83") is False
    assert [r.trial_number for r in controller.results] == [1]

    assert controller.dispatch("retry") is True
    assert st.current_trial_data == fixed_trial()
    assert presenter.counter == "Trial 2 of 6"
    assert controller.submit("83") is True
    assert [r["trial_number"] for r in store.get_all()] == [1, 2]


def test_retry_refused_while_a_trial_is_shown(controller):
    assert controller.retry() is False
    controller.start("P001")
    assert controller.retry() is False


def test_generation_failure_on_start_keeps_previous_state(presenter, renderers, store):
    controller = ExperimentController(make_config(), FlakyGenerator({1}), grading, store,
                                      renderers, presenter)
    with pytest.raises(GenerationError):
        controller.start("P001")
    assert controller.state.participant_id is None
    assert controller.state.trial_queue == []
    assert controller.screen == "intro"
    assert controller.submit("50") is False


@pytest.mark.parametrize("pid, stem", [("lab/P01", "lab_P01"), ("../x", "_x")])
def test_participant_id_is_safe_in_log_filename(controller, tmp_path, pid, stem):
    assert controller.start(pid) is True
    assert controller.state.participant_id == pid
    assert controller.log_path.parent == tmp_path / "logs"
    assert controller.log_path.name.startswith(f"cm_experiment_{stem}_")
    assert controller.screen == "trial"
    header = json.loads(controller.log_path.read_text(encoding="utf-8").splitlines()[0])
    assert header["participant_id"] == pid


def test_unwritable_log_dir_rolls_back(presenter, renderers, store, tmp_path):
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory", encoding="utf-8")
    controller = ExperimentController(make_config(log_dir=str(blocker)), generate_trial_data,
                                      grading, store, renderers, presenter)
    with pytest.raises(OSError):
        controller.start("P001")
    assert controller.state.participant_id is None
    assert controller.state.trial_queue == []
    assert controller.screen == "intro"


def test_no_conditions_is_a_config_error(presenter, store):
    with pytest.raises(ConfigError):
        ExperimentController(make_config(conditions=[]), generate_trial_data, grading,
                             store, {}, presenter)
