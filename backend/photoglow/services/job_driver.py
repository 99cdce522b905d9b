"""Synchronous polling driver.

Submits a prediction and polls it to a terminal state within a fixed budget.
The budget is kept below the invocation limit so that a timeout still
produces a well-formed response; clock and sleep are injectable for tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from photoglow.services.errors import ProviderRejected, ProviderTransportError
from photoglow.services.providers.replicate import (
    TERMINAL,
    ReplicateClient,
    extract_output_url,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
OnSubmitted = Callable[[str], Awaitable[None]]


class PredictionTimeout(ProviderRejected):
    """Deadline reached while the prediction was still running."""
    default_code = "prediction_timeout"

    def __init__(self, prediction_id: str, status: str) -> None:
        self.prediction_id = prediction_id
        super().__init__(details={"prediction_id": prediction_id, "status": status})


@dataclass
class PredictionOutcome:
    prediction_id: str
    status: str
    output_url: str
    raw: dict[str, Any]


class PollingDriver:

    def __init__(
        self,
        client: ReplicateClient,
        *,
        interval: float = 1.25,
        budget: float = 25.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.interval = interval
        self.budget = budget
        self._clock = clock
        self._sleep = sleep

    async def run(
        self,
        target: str,
        input: dict[str, Any],
        on_submitted: OnSubmitted | None = None,
    ) -> PredictionOutcome:
        created = await self.client.create_prediction(target, input)
        prediction_id = str(created.get("id") or "")
        if not prediction_id:
            raise ProviderTransportError("replicate_model_error", details="prediction without id")
        if on_submitted is not None:
            await on_submitted(prediction_id)

        prediction = created
        if prediction.get("status") not in TERMINAL:
            prediction = await self.wait(prediction_id)
        return self._outcome(prediction_id, prediction)

    async def wait(self, prediction_id: str) -> dict[str, Any]:
        """Poll until terminal or the budget runs out, then check once more."""
        start = self._clock()
        while self._clock() - start < self.budget:
            try:
                prediction = await self.client.get_prediction(prediction_id)
            except ProviderTransportError as e:
                logger.warning("Poll of %s failed, retrying: %s", prediction_id, e)
            else:
                if prediction.get("status") in TERMINAL:
                    return prediction
            await self._sleep(self.interval)

        prediction = await self.client.get_prediction(prediction_id)
        logger.info(
            "Prediction %s after %.1fs budget: %s",
            prediction_id, self.budget, prediction.get("status"),
        )
        return prediction

    def _outcome(self, prediction_id: str, prediction: dict[str, Any]) -> PredictionOutcome:
        status = str(prediction.get("status") or "unknown")
        if status not in TERMINAL:
            raise PredictionTimeout(prediction_id, status)
        if status != "succeeded":
            raise ProviderRejected("prediction_failed", details=prediction.get("error") or status)

        output_url = extract_output_url(prediction.get("output"))
        if not output_url:
            raise ProviderRejected("no_output_from_model")
        return PredictionOutcome(
            prediction_id=prediction_id,
            status=status,
            output_url=output_url,
            raw=prediction,
        )
