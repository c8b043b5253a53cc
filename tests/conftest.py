"""
Shared fixtures for NichePress tests
"""

import json

import httpx
import pytest

from nichepress import InMemoryGraphStore, LLMConfig, Niche


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def suggest_body(query, suggestions):
    """Body shaped like the autocomplete endpoint's answer."""
    return json.dumps([query, suggestions])


def llm_envelope(text, input_tokens=10, output_tokens=20):
    """Messages API response wrapping a single text block."""
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def suggest_transport(answers):
    """MockTransport answering each query from a dict (unknown queries get no suggestions)."""
    requested = []

    def handler(request):
        query = request.url.params["q"]
        requested.append(query)
        return httpx.Response(200, text=suggest_body(query, answers.get(query, [])))

    transport = httpx.MockTransport(handler)
    transport.requested = requested
    return transport


@pytest.fixture
def store():
    return InMemoryGraphStore()


@pytest.fixture
def coffee(store):
    """The 'coffee' niche, seeded with 'cold brew'."""
    return store.add_niche(
        Niche(name="coffee", description="Brewing coffee at home", seed_keywords=["cold brew"])
    )


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def llm_config():
    return LLMConfig(api_key="test-key", api_url="https://llm.test/v1/messages")
