# backend/app/services/scoring_client.py
"""
Client for the script scoring backend.

The backend compares a transcript excerpt with the reference script and
returns per-gate similarity. How it computes similarity is opaque here; this
client only sends the request and validates the response shape.

Request:  {"transcript": str, "currentGate": int, "mode": str}
Response: {"gates": [{"gate": int, "similarity": float}],
           "adherenceScore": float, "recommendedGate"?: int}

A null gates list, similarity or adherence score reads as empty / 0.

No retry here: a failed check leaves the session state as it was and the
next throttle window tries again.
"""
from __future__ import annotations

from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.agents.gate_progress import GateScore, ScoreResult
from app.agents.script_gates import ScriptMode
from app.config import settings
from app.utils.logger import logger


class ScoringUnavailableError(Exception):
    """Raised when the scoring backend could not produce a usable result."""
    pass


class GateSimilarityPayload(BaseModel):
    gate: int
    similarity: Optional[float] = 0.0

    @field_validator("similarity", mode="before")
    @classmethod
    def _null_similarity(cls, value):
        return 0.0 if value is None else value


class ScoreResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gates: Optional[List[GateSimilarityPayload]] = Field(default_factory=list)
    adherence_score: Optional[float] = Field(0.0, alias="adherenceScore")
    recommended_gate: Optional[int] = Field(None, alias="recommendedGate")

    @field_validator("gates", mode="before")
    @classmethod
    def _null_gates(cls, value):
        return [] if value is None else value

    @field_validator("adherence_score", mode="before")
    @classmethod
    def _null_adherence(cls, value):
        return 0.0 if value is None else value

    def to_result(self) -> ScoreResult:
        return ScoreResult(
            gates=[GateScore(gate=g.gate, similarity=g.similarity) for g in self.gates],
            adherence_score=self.adherence_score,
            recommended_gate=self.recommended_gate,
        )


class ScriptScoringClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (base_url or getattr(settings, "SCRIPT_SCORING_URL", "") or "").strip()
        self.api_key = (api_key or getattr(settings, "SCRIPT_SCORING_API_KEY", "") or "").strip()
        self._http = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.SCRIPT_SCORING_TIMEOUT,
            transport=transport,
        )

        if not self.url:
            logger.warning("SCRIPT_SCORING_URL is missing")

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def score(self, transcript: str, current_gate: int, mode: ScriptMode) -> ScoreResult:
        if not self.url:
            raise ScoringUnavailableError("SCRIPT_SCORING_URL missing")

        payload = {
            "transcript": transcript,
            "currentGate": current_gate,
            "mode": mode.value,
        }

        try:
            response = await self._http.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ScoringUnavailableError(f"Scoring backend timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ScoringUnavailableError(f"Scoring backend unreachable: {e}") from e

        if response.status_code != 200:
            raise ScoringUnavailableError(
                f"Scoring backend error {response.status_code}: {response.text[:200]}"
            )

        try:
            return ScoreResponsePayload.model_validate(response.json()).to_result()
        except (ValueError, ValidationError) as e:
            raise ScoringUnavailableError(f"Malformed scoring response: {e}") from e

    async def aclose(self) -> None:
        await self._http.aclose()
