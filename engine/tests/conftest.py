"""
Shared fixtures: a scripted stand-in for the extraction service and a few
ready-made item lists.
"""

import json

import pytest

from tools.boq_recon.boq_recon_models import ExtractedItem
from utils.llm.LLM import OracleRequest, OracleResponse


class FakeOracle:
    """
    Scripted `StructuredOracle`.

    `script` maps a caller prefix ("extract:flooring", "compare", ...) to what
    the call should produce: a string (returned as STOP text), a dict/list
    (returned as JSON text), an `OracleResponse`, or an exception to raise.
    Callers without a script entry get `default`.
    """

    def __init__(self, script=None, default="[]"):
        self.script = dict(script or {})
        self.default = default
        self.requests: list[OracleRequest] = []

    def _lookup(self, caller: str):
        for prefix in sorted(self.script, key=len, reverse=True):
            if caller.startswith(prefix):
                return self.script[prefix]
        return self.default

    async def generate(self, request: OracleRequest) -> OracleResponse:
        self.requests.append(request)
        outcome = self._lookup(request.caller)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, OracleResponse):
            return outcome
        if isinstance(outcome, (dict, list)):
            outcome = json.dumps(outcome)
        return OracleResponse(text=outcome, finish_reason="STOP")

    def callers(self) -> list[str]:
        return [r.caller for r in self.requests]


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.delenv("VAULT_ADDR", raising=False)
    monkeypatch.delenv("PRICE_LIST_PATH", raising=False)
    monkeypatch.setenv("BOQ_RECON_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def fake_oracle():
    return FakeOracle


@pytest.fixture
def drawing_items():
    return [
        ExtractedItem(description="Ball valve", size='3"', quantity="4", unit="NOS"),
        ExtractedItem(description="Diesel day tank", capacity="1000L", quantity="1", unit="NOS"),
        ExtractedItem(description="Level switch", quantity="2", unit="NOS"),
    ]


@pytest.fixture
def boq_items():
    return [
        ExtractedItem(description="Ball Valve 80mm", size="80mm", quantity="4", unit="NOS"),
        ExtractedItem(description="Day tank 1000 L", capacity="1000L", quantity="1", unit="SET"),
    ]


@pytest.fixture
def price_rows():
    return [
        {"Item": "BV-80", "Description": "Ball valve 80mm", "Unit Price": 250.0, "Unit Man Hours": 1.5},
        {"Item": "BV-80-SS", "Description": "Ball valve 80mm stainless", "Unit Price": 410.0, "Unit Man Hours": 1.5},
        {"Item": "DT-1000", "Description": "Day tank 1000L", "Unit Price": 5200.0, "Unit Man Hours": 12},
        {"Item": "CV-50", "Description": "Check valve 50mm", "Unit Price": 180.0, "Unit Man Hours": 1.0},
    ]
