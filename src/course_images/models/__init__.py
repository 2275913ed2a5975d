"""
数据模型模块
"""
from .prediction import Prediction, PredictionStatus, PredictionType, can_transition
from .course import Course, CourseModule
from .profile import Profile
from .generation_event import GenerationEvent

__all__ = [
    "Prediction",
    "PredictionStatus",
    "PredictionType",
    "can_transition",
    "Course",
    "CourseModule",
    "Profile",
    "GenerationEvent",
]
