# backend/salestrainer/models/__init__.py
from salestrainer.models.session import SalesSession, Message, SessionAnalytics
from salestrainer.models.training_config import (
    AppConfig,
    PenProduct,
    AIPromptConfig,
    DiscoveryQuestion,
    PositioningAngle,
    ClosingStrategy,
    ObjectionHandler,
)

__all__ = [
    'SalesSession', 'Message', 'SessionAnalytics',
    'AppConfig', 'PenProduct', 'AIPromptConfig', 'DiscoveryQuestion',
    'PositioningAngle', 'ClosingStrategy', 'ObjectionHandler',
]
