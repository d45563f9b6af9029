from app.agents.script_gates import ScriptMode, gates_for
from app.agents.gate_progress import GateProgressTracker
from app.agents.heat_streak import StreakEngine
from app.agents.peak_mode import SustainedExcellenceDetector
from app.agents.sales_engine import SalesEngine

__all__ = [
    'ScriptMode',
    'gates_for',
    'GateProgressTracker',
    'StreakEngine',
    'SustainedExcellenceDetector',
    'SalesEngine'
]
