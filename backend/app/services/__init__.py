from app.services.check_throttle import CheckThrottle
from app.services.voice_hints import CoachTrigger
from app.services.scoring_client import ScriptScoringClient
from app.services.training_session import TrainingSession

__all__ = [
    'CheckThrottle',
    'CoachTrigger',
    'ScriptScoringClient',
    'TrainingSession'
]
