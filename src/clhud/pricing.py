"""Token pricing and heuristic cost estimation for the live session."""

from __future__ import annotations

from dataclasses import dataclass

from .context import estimate_tokens, serialize_payload
from .models import EventKind, HudEvent

# Pricing per million tokens (USD), by model family
MODEL_PRICING: dict[str, dict[str, float]] = {
    "opus": {"input": 15.0, "output": 75.0},
    "sonnet": {"input": 3.0, "output": 15.0},
    "haiku": {"input": 0.80, "output": 4.0},
}

# Default family when the transcript hasn't told us the model yet
DEFAULT_FAMILY = "sonnet"


def model_family(model: str | None) -> str:
    """Map a model id like ``claude-opus-4-5-20251101`` to a pricing family."""
    if not model:
        return DEFAULT_FAMILY
    lowered = model.lower()
    for family in MODEL_PRICING:
        if family in lowered:
            return family
    return DEFAULT_FAMILY


@dataclass(frozen=True)
class CostEstimate:
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    family: str = DEFAULT_FAMILY

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


def estimate_cost(input_tokens: int, output_tokens: int, family: str = DEFAULT_FAMILY) -> CostEstimate:
    """Dollar cost for token counts at a family's list price."""
    pricing = MODEL_PRICING.get(family, MODEL_PRICING[DEFAULT_FAMILY])
    return CostEstimate(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost=(input_tokens / 1_000_000) * pricing["input"],
        output_cost=(output_tokens / 1_000_000) * pricing["output"],
        family=family if family in MODEL_PRICING else DEFAULT_FAMILY,
    )


class CostTracker:
    """Rough spend for the session, built from the same payload estimates.

    Tool inputs and user prompts count as input tokens, tool responses as
    output tokens. Like the context estimate this is a ballpark figure.
    """

    def __init__(self) -> None:
        self.family = DEFAULT_FAMILY
        self.reset()

    def set_model(self, model: str | None) -> None:
        self.family = model_family(model)

    def process(self, event: HudEvent) -> None:
        match event.kind:
            case EventKind.POST_TOOL_USE:
                if event.input:
                    self._input_tokens += estimate_tokens(serialize_payload(event.input))
                if event.response:
                    self._output_tokens += estimate_tokens(serialize_payload(event.response))
            case EventKind.USER_PROMPT_SUBMIT:
                if event.prompt:
                    self._input_tokens += estimate_tokens(event.prompt)
            case _:
                pass

    def cost(self) -> CostEstimate:
        return estimate_cost(self._input_tokens, self._output_tokens, self.family)

    def reset(self) -> None:
        self._input_tokens = 0
        self._output_tokens = 0
        self.family = DEFAULT_FAMILY


def format_cost(dollars: float) -> str:
    """Format dollar amount for display."""
    if dollars < 0.01:
        return "<$0.01"
    return f"${dollars:.2f}"


def format_tokens(count: int) -> str:
    """Format token count for display (e.g., 48.2K, 1.2M)."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)
