from enum import StrEnum


class ServiceType(StrEnum):
    VOICE = "voice"
    DATA = "data"
    SMS = "sms"
    INTERNET = "internet"
    TV = "tv"
    OTHER = "other"


class RecommendationSource(StrEnum):
    AI = "ai"
    RULES = "rules"
