# backend/tests/test_script_gates.py
"""
Gate catalog tests: both scripts, ordering, immutability and lookup errors.
"""

import dataclasses

import pytest

from app.agents.script_gates import (
    ACQUISITION_GATES,
    DISPOSITION_GATES,
    ScriptMode,
    UnknownGateError,
    UnknownScriptModeError,
    gate_count,
    gates_for,
    get_gate,
    parse_mode,
)


class TestGateCatalog:
    def test_acquisition_has_eight_ordered_gates(self):
        gates = gates_for(ScriptMode.ACQUISITION)
        assert len(gates) == 8
        assert [g.index for g in gates] == list(range(1, 9))
        assert [g.short_name for g in gates] == [
            "Intro", "Motivation", "Condition", "Numbers",
            "Hold", "Offer", "Expectations", "Commitment",
        ]

    def test_disposition_has_five_ordered_gates(self):
        gates = gates_for("disposition")
        assert gates is DISPOSITION_GATES
        assert [g.index for g in gates] == [1, 2, 3, 4, 5]

    def test_every_gate_has_reference_and_hint(self):
        for gate in ACQUISITION_GATES + DISPOSITION_GATES:
            assert gate.full_name
            assert gate.reference_text.strip()
            assert gate.coaching_hint.strip()

    def test_gate_definitions_are_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ACQUISITION_GATES[0].reference_text = "changed"

    def test_gate_count(self):
        assert gate_count(ScriptMode.ACQUISITION) == 8
        assert gate_count(ScriptMode.DISPOSITION) == 5

    def test_get_gate_is_one_based(self):
        assert get_gate("acquisition", 1).short_name == "Intro"
        assert get_gate("acquisition", 8).short_name == "Commitment"

    @pytest.mark.parametrize("index", [0, 6, -1])
    def test_get_gate_out_of_range(self, index):
        with pytest.raises(UnknownGateError):
            get_gate(ScriptMode.DISPOSITION, index)


class TestParseMode:
    def test_accepts_enum_and_names(self):
        assert parse_mode(ScriptMode.DISPOSITION) is ScriptMode.DISPOSITION
        assert parse_mode("acquisition") is ScriptMode.ACQUISITION
        assert parse_mode("  Disposition ") is ScriptMode.DISPOSITION

    @pytest.mark.parametrize("value", ["wholesale", "", None, 3])
    def test_unknown_mode_raises(self, value):
        with pytest.raises(UnknownScriptModeError):
            gates_for(value)
