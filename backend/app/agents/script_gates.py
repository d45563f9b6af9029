# backend/app/agents/script_gates.py
"""
Script gate catalog.

A gate is one ordered checkpoint of the reference call script. Each script
mode has its own fixed gate list:
- acquisition: the 8-gate seller call (primary script)
- disposition: the 5-gate buyer call (secondary script)

The catalog is static. Asking for a mode that does not exist is a
configuration error, not something to recover from at runtime.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ScriptMode(Enum):
    ACQUISITION = "acquisition"
    DISPOSITION = "disposition"


class UnknownScriptModeError(Exception):
    """Raised when a script mode has no gate catalog."""
    pass


class UnknownGateError(Exception):
    """Raised when a gate index is outside the script."""
    pass


@dataclass(frozen=True)
class GateDefinition:
    """One checkpoint of a reference script (immutable)."""
    index: int
    short_name: str
    full_name: str
    reference_text: str
    coaching_hint: str


ACQUISITION_GATES: Tuple[GateDefinition, ...] = (
    GateDefinition(
        index=1,
        short_name="Intro",
        full_name="Intro (Contact/Credibility)",
        reference_text=(
            "I can promise you one of two things: I'm either going to give you an approval "
            "with an offer, or a denial with the reason why. Fair enough?"
        ),
        coaching_hint=(
            "Remember to set the Approval/Denial frame. Say: 'I can promise you one of two things: "
            "I'm either going to give you an approval with an offer, or a denial with the reason why. Fair enough?'"
        ),
    ),
    GateDefinition(
        index=2,
        short_name="Motivation",
        full_name="Fact Find - Motivation",
        reference_text="Catch me up to speed, what's got you even thinking about selling?",
        coaching_hint=(
            "Don't rush past the motivation. Ask: 'Catch me up to speed, what's got you even thinking "
            "about selling?' You need to uncover their 'Why' before moving forward."
        ),
    ),
    GateDefinition(
        index=3,
        short_name="Condition",
        full_name="Fact Find - Condition",
        reference_text=(
            "We open the front door, what am I seeing? How old are the roof, the HVAC, "
            "and how is the foundation?"
        ),
        coaching_hint=(
            "Time for the property walkthrough. Say: 'We open the front door, what am I seeing?' "
            "Then ask about the major three: roof, HVAC, and foundation."
        ),
    ),
    GateDefinition(
        index=4,
        short_name="Numbers",
        full_name="Transition to Numbers",
        reference_text=(
            "If we could make this work, where would you need to be on price for it to make sense for you?"
        ),
        coaching_hint=(
            "Anchor their number before yours. Ask: 'If we could make this work, where would you "
            "need to be on price for it to make sense?'"
        ),
    ),
    GateDefinition(
        index=5,
        short_name="Hold",
        full_name="Running Comps / Hold",
        reference_text=(
            "I have everything I need. Let me run this by my underwriting team real quick. Hang on one sec."
        ),
        coaching_hint=(
            "Take the underwriting hold. Say: 'I have everything I need. Let me run this by my "
            "underwriting team real quick, hang on one sec.'"
        ),
    ),
    GateDefinition(
        index=6,
        short_name="Offer",
        full_name="The Offer",
        reference_text=(
            "Your property was just approved for purchase. We've moved your funds into a Virtual Withdraw Account."
        ),
        coaching_hint=(
            "Present the offer with confidence. Say: 'Your property was just approved for purchase. "
            "We've moved your funds into a Virtual Withdraw Account.'"
        ),
    ),
    GateDefinition(
        index=7,
        short_name="Expectations",
        full_name="The Close - Expectations",
        reference_text=(
            "Here is exactly what happens next: title opens, we schedule a walkthrough, and you pick the closing date."
        ),
        coaching_hint=(
            "Set expectations for what happens next: title, walkthrough, and a closing date they choose."
        ),
    ),
    GateDefinition(
        index=8,
        short_name="Commitment",
        full_name="Final Commitment",
        reference_text=(
            "Let's verify your name and address. I'm sending a simple two-page agreement written in plain English."
        ),
        coaching_hint=(
            "Assume the close. Say: 'Let's verify your name and address. I'm sending a simple "
            "two-page agreement. It's written in third-grade English.'"
        ),
    ),
)


DISPOSITION_GATES: Tuple[GateDefinition, ...] = (
    GateDefinition(
        index=1,
        short_name="Intro",
        full_name="The Intro (Value Proposition)",
        reference_text=(
            "I've got an off-market deal in your area that fits your buy box. Do you have two minutes?"
        ),
        coaching_hint=(
            "Lead with the value. Tell the buyer you have an off-market deal that fits their buy box."
        ),
    ),
    GateDefinition(
        index=2,
        short_name="ARV & Condition",
        full_name="Fact Find (ARV & Condition)",
        reference_text=(
            "The after-repair value is backed by recent comps, and here is the condition, room by room."
        ),
        coaching_hint=(
            "Give them the numbers that matter: ARV backed by comps, then the condition of the property."
        ),
    ),
    GateDefinition(
        index=3,
        short_name="Neighborhood",
        full_name="The Pitch (Neighborhood Context)",
        reference_text=(
            "The neighborhood is turning over fast; renovated houses on this street sell within weeks."
        ),
        coaching_hint=(
            "Sell the location. Explain how fast renovated homes in the neighborhood are moving."
        ),
    ),
    GateDefinition(
        index=4,
        short_name="Timeline & Terms",
        full_name="The Offer (Timeline & Terms)",
        reference_text=(
            "We need a non-refundable deposit and can close in fourteen days. Does that timeline work for you?"
        ),
        coaching_hint=(
            "State the terms clearly: deposit, closing timeline, and ask if that works for them."
        ),
    ),
    GateDefinition(
        index=5,
        short_name="Agreement",
        full_name="The Close (Agreement & Next Steps)",
        reference_text=(
            "I'll send the assignment agreement now; once it's signed we'll lock the deal in your name."
        ),
        coaching_hint=(
            "Close it out. Send the assignment agreement and confirm the next step once it's signed."
        ),
    ),
)


_GATE_CATALOG: Dict[ScriptMode, Tuple[GateDefinition, ...]] = {
    ScriptMode.ACQUISITION: ACQUISITION_GATES,
    ScriptMode.DISPOSITION: DISPOSITION_GATES,
}


def parse_mode(value) -> ScriptMode:
    """Coerce a mode name (or ScriptMode) into a ScriptMode."""
    if isinstance(value, ScriptMode):
        return value
    try:
        return ScriptMode((value or "").strip().lower())
    except (ValueError, AttributeError):
        raise UnknownScriptModeError(f"Unknown script mode: {value!r}")


def gates_for(mode) -> Tuple[GateDefinition, ...]:
    """Ordered gate list for a script mode."""
    return _GATE_CATALOG[parse_mode(mode)]


def gate_count(mode) -> int:
    return len(gates_for(mode))


def get_gate(mode, index: int) -> GateDefinition:
    gates = gates_for(mode)
    if not 1 <= index <= len(gates):
        raise UnknownGateError(f"Gate {index} does not exist in the {parse_mode(mode).value} script")
    return gates[index - 1]
