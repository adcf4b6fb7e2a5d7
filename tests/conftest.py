"""Shared fixtures: a controllable clock and timer queue, a recording bus, sample quizzes."""

import os
import tempfile

# Keep log and data files out of the source tree while tests run
os.environ.setdefault("QUIZIX_LOG_DIR", tempfile.mkdtemp(prefix="quizix-logs-"))
os.environ.setdefault("QUIZIX_DATA_DIR", tempfile.mkdtemp(prefix="quizix-data-"))

import pytest

from event_bus import LocalEventBus
from game_session import GameSession
from models import Question, Quiz
from quiz_store import MetadataService, QuizStore, UnlockRateLimiter


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _Timer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Timer queue driven by `advance`; fires due callbacks in time order."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers = []

    def call_later(self, delay, callback):
        timer = _Timer(self.clock() + delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [t for t in self.pending() if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.clock.now = max(self.clock.now, timer.when)
            timer.callback()
        self.clock.now = target
        self.timers = self.pending()


class RecordingBus(LocalEventBus):
    """Synchronous local bus that also remembers every emit with its recipient."""

    def __init__(self):
        super().__init__(sync=True)
        self.sent = []

    def emit(self, event, data=None, *, to=None):
        self.sent.append((event, data, to))
        super().emit(event, data, to=to)

    def events(self, name, to=...):
        return [data for event, data, recipient in self.sent
                if event == name and (to is ... or recipient == to)]

    def names(self):
        return [event for event, _, _ in self.sent]


def mc(text="What is 2 + 2?", correct=1, difficulty="medium", time_limit=20, **extra):
    return Question(question=text, type="multiple-choice", options=["3", "4", "5", "6"],
                    correctAnswer=correct, difficulty=difficulty, timeLimit=time_limit, **extra)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def quiz():
    return Quiz(title="Mixed Bag", questions=[
        mc(explanation="Basic addition", optionFeedback={0: "Off by one"}),
        Question(question="The sky is blue.", type="true-false", correctAnswer=True,
                 options=["True", "False"], timeLimit=15),
        Question(question="How many legs does a spider have?", type="numeric",
                 correctAnswer=8, tolerance=0, timeLimit=20),
        Question(question="Order these numbers", type="ordering",
                 options=["one", "two", "three", "four"], correctOrder=[3, 1, 2, 0],
                 timeLimit=30),
    ])


@pytest.fixture
def make_session(bus, clock, scheduler):
    """Build a session on the recording bus with deterministic time and seed."""

    def factory(quiz, **kwargs):
        kwargs.setdefault("pin", "123456")
        kwargs.setdefault("seed", 7)
        kwargs.setdefault("start_delay_ms", 0)
        return GameSession(quiz, bus, clock=clock, scheduler=scheduler, **kwargs)

    return factory


@pytest.fixture
def store(tmp_path):
    return QuizStore(tmp_path / "quizzes", tmp_path / "results")


@pytest.fixture
def metadata(tmp_path, clock):
    return MetadataService(tmp_path / "metadata.json", clock=clock,
                           limiter=UnlockRateLimiter(clock=clock))


@pytest.fixture
def make_mc():
    return mc


@pytest.fixture
def make_bus():
    return RecordingBus
