"""Exceptions raised out of the aggregation pipeline."""


class FarmDataError(Exception):
    """Base class for hard failures the caller is expected to handle."""


class OnboardingIncompleteError(FarmDataError):
    """The user has no farmer profile, or has not finished onboarding."""

    def __init__(self, user_id: str, reason: str = "Farmer onboarding not completed"):
        self.user_id = user_id
        super().__init__(f"{reason}. Please complete your profile first.")


class LocationRequiredError(FarmDataError):
    """No coordinates could be resolved and the caller asked for all data."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Location coordinates are required for environmental data")


class RecordNotFoundError(FarmDataError):
    """A write referenced a user or farm that does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")
