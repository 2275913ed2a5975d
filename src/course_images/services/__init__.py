"""
服务模块
"""
from .generation_service import GenerationService, get_generation_service
from .prediction_service import PredictionService, get_prediction_service
from .reaper_service import ReaperService
from .webhook_service import WebhookService, get_webhook_service

__all__ = [
    "GenerationService",
    "get_generation_service",
    "PredictionService",
    "get_prediction_service",
    "ReaperService",
    "WebhookService",
    "get_webhook_service",
]
