"""Batch helper: many independent generations, one failure per item."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from gemwire.errors import GemwireError

if TYPE_CHECKING:
    from gemwire.client import GeminiClient, PromptInput
    from gemwire.result import GenerateResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """Result or error for one batch item."""

    index: int
    result: GenerateResult | None = None
    error: GemwireError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        """Answer text on success, the error message on failure."""
        if self.error is not None:
            return str(self.error)
        return self.result.text if self.result is not None else ""


async def generate_many(
    client: GeminiClient,
    prompts: Iterable[PromptInput],
    *,
    model: str | None = None,
) -> list[BatchOutcome]:
    """Generate for each prompt in order, recording per-item failures.

    Calls run one after another; library errors are captured on the item and
    the batch continues. Anything else (bugs, cancellation) propagates.
    """
    outcomes: list[BatchOutcome] = []
    for idx, prompt in enumerate(prompts):
        try:
            result = await client.generate(prompt, model=model)
        except GemwireError as e:
            logger.warning("Batch item %d failed: %s", idx, e)
            outcomes.append(BatchOutcome(index=idx, error=e))
            continue
        outcomes.append(BatchOutcome(index=idx, result=result))

    failed = sum(1 for o in outcomes if not o.ok)
    logger.debug("Batch finished: %d item(s), %d failed", len(outcomes), failed)
    return outcomes
