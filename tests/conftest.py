"""
Shared fixtures: a scripted in-memory transport so the client can be driven
without a network.
"""
import pytest

from config import JustCallConfig
from errors import JustCallError


class ScriptedTransport:
    """
    Async callable standing in for the HTTP layer.

    ``responses`` maps a strategy name to a list of outcomes consumed in
    order; an outcome is either a JSON payload or a JustCallError to raise.
    """

    def __init__(self, responses):
        self.responses = {name: list(outcomes) for name, outcomes in responses.items()}
        self.calls = []

    async def __call__(self, request, strategy):
        self.calls.append((strategy.name, request))
        outcome = self.responses[strategy.name].pop(0)
        if isinstance(outcome, JustCallError):
            raise outcome
        return outcome

    def strategies_tried(self):
        return [name for name, _ in self.calls]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_calls(count, start=0, **extra):
    return [dict({'id': start + i, 'from': '+1555000', 'to': '+1555999',
                  'duration': 30, 'direction': 'Incoming',
                  'call_transcription': f'call {start + i}'}, **extra)
            for i in range(count)]


@pytest.fixture
def config():
    return JustCallConfig(
        _env_file=None,
        justcall_api_key='key',
        justcall_api_secret='secret',
        page_delay=0.5,
        strategy_order='direct,local-relay,corsproxy-io',
    )


@pytest.fixture
def sleep():
    return RecordingSleep()
