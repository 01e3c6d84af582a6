from classpoint.core.models.class_model import SchoolClass
from classpoint.core.models.student import Student
from classpoint.core.models.point_history import PointHistory
from classpoint.core.models.reward import Reward
from classpoint.core.models.reward_redemption import RewardRedemption
from classpoint.core.models.app_setting import AppSetting

__all__ = [
    "AppSetting",
    "PointHistory",
    "Reward",
    "RewardRedemption",
    "SchoolClass",
    "Student",
]
