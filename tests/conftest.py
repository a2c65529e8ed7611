import os

import pytest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")


class ScriptedRng:
    """randint() returns the scripted values in order."""

    def __init__(self, values):
        self.values = list(values)

    def randint(self, a, b):
        v = self.values.pop(0)
        assert a <= v <= b
        return v


class FakePresenter:
    def __init__(self):
        self.viz_container = object()
        self.screens = []
        self.response = ""
        self.error = ""
        self.label = ""
        self.counter = ""
        self.csv = None
        self.cleared = 0

    def show_screen(self, name):
        self.screens.append(name)

    def read_response_input(self):
        return self.response

    def clear_response_input(self):
        self.response = ""
        self.cleared += 1

    def write_error(self, text):
        self.error = text

    def write_label(self, text):
        self.label = text

    def write_counter(self, text):
        self.counter = text

    def write_csv_output(self, text):
        self.csv = text


class FakeRenderer:
    def __init__(self):
        self.rendered = []
        self.clears = 0

    def render(self, container, trial_data):
        self.rendered.append(trial_data)

    def clear(self, container):
        self.clears += 1


class FakeClock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def fake_clock():
    return FakeClock()
