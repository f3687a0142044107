# truthstake/tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from backend.truthstake.lifecycle import ClaimLifecycle
from backend.truthstake.models import Vote
from backend.truthstake.schema import ClaimIn
from backend.truthstake.storage import ClaimStore

START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int):
        self.now = self.now + timedelta(seconds=seconds)


class FakeProvider:
    """Returns queued responses per model id; exceptions are raised."""

    def __init__(self, responses):
        self.responses = dict(responses)
        self.calls = []
        self.prompts = []

    def generate(self, model_id, prompt, **kwargs):
        self.calls.append(model_id)
        self.prompts.append(prompt)
        resp = self.responses.get(model_id, ConnectionError("no route to model"))
        if isinstance(resp, Exception):
            raise resp
        return resp


def addr(i: int) -> str:
    return "0x" + format(i, "040x")


def add_vote(store: ClaimStore, claim_id: str, i: int, position: str, stake_wei: int, weight_wei: int) -> Vote:
    return store.insert_vote(Vote(
        claim_id=claim_id,
        voter_address=addr(i),
        position=position,
        stake=stake_wei / 10 ** 18,
        stake_wei=str(stake_wei),
        weight=weight_wei / 10 ** 18,
        weight_wei=str(weight_wei),
        evidence=[f"https://example.org/{i}"],
    ))


def set_verdict(store: ClaimStore, claim_id: str, result: str, score: int = 70, status: str = "verified"):
    store.update_claim(claim_id, {
        "ai_verification": {
            "result": result,
            "final_score": score,
            "reasoning": "test verdict",
            "sources": ["https://reuters.com/a"],
        },
        "status": status,
    })


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return ClaimStore(engine=engine)


@pytest.fixture
def lifecycle(store, clock):
    return ClaimLifecycle(store, clock=clock)


@pytest.fixture
def claim_in():
    return ClaimIn(
        title="City water supply contains lead above legal limits",
        summary="Local report says tap water exceeds EPA lead limits.",
        url="https://example-news.com/water",
        category="Health",
        poster=addr(999),
        evidence=[{"url": "https://epa.gov/lead"}],
        voting_duration_sec=600,
    )


@pytest.fixture
def voting_claim(lifecycle, claim_in):
    claim = lifecycle.create_claim(claim_in)
    return lifecycle.open_voting(claim.claim_id)
