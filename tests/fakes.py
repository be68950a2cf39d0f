"""Fakes for upstream collaborators."""

from __future__ import annotations

from boardroom.backends.base import PayloadShape
from boardroom.errors import BackendError


class FakeClock:
    """Manually advanced clock with a sleep that just moves time forward."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events = []

    async def report(self, event) -> None:
        self.events.append(event)

    def named(self, name: str) -> list:
        return [e for e in self.events if e.name == name]


async def _iterate(chunks):
    for chunk in chunks:
        if isinstance(chunk, BaseException):
            raise chunk
        yield chunk


class ScriptedBackend:
    """Generation backend driven by per-model scripts.

    ``responses`` maps a model to a list of outcomes consumed in order (the
    last one repeats); an outcome that is an exception is raised.
    ``responder`` overrides ``responses`` with a callable.  ``streams`` maps
    a model or ``(model, shape)`` to an exception raised on open or a list
    of chunks; a model without a script cannot stream.
    """

    name = "scripted"

    def __init__(self, responses=None, streams=None, responder=None) -> None:
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.streams = streams or {}
        self.responder = responder
        self.calls: list[tuple[str, str]] = []
        self.stream_calls: list[tuple[str, PayloadShape]] = []
        self.stream_prompts: list[str] = []

    async def generate(
        self, model, prompt, *, shape=PayloadShape.TEXT, temperature=0.7, json_output=False
    ):
        self.calls.append((model, prompt))
        if self.responder is not None:
            return self.responder(model, prompt)
        script = self.responses.get(model)
        if not script:
            raise BackendError(f"{model} is not scripted", status=500)
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def open_stream(self, model, prompt, *, shape=PayloadShape.TEXT, temperature=0.7):
        self.stream_calls.append((model, shape))
        self.stream_prompts.append(prompt)
        outcome = self.streams.get((model, shape), self.streams.get(model))
        if outcome is None:
            raise BackendError("streaming is not supported", status=400)
        if isinstance(outcome, BaseException):
            raise outcome
        return _iterate(outcome)


def limit_error(model: str = "m1") -> BackendError:
    return BackendError("Resource has been exhausted", status=429, code="RESOURCE_EXHAUSTED",
                        backend=model)


def auth_error() -> BackendError:
    return BackendError("API key not valid", status=403, code="PERMISSION_DENIED")
