"""
Custom exceptions for achievement tracking with user-friendly error messages.
"""

class TrackingException(Exception):
    """Base exception for achievement tracking errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class TransientFetchError(TrackingException):
    """Raised when the achievement source cannot be reached or answers with a server error."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Transient fetch failure during {operation}: {details}",
            "❌ RetroAchievements is not responding. Please try again later."
        )
        self.operation = operation

class DataIntegrityError(TrackingException):
    """Raised when a referenced user or game does not exist."""
    def __init__(self, entity: str, identifier: str):
        super().__init__(
            f"{entity} '{identifier}' not found",
            f"❌ {entity} '{identifier}' is not registered!"
        )
        self.entity = entity
        self.identifier = identifier

class MalformedPayloadError(TrackingException):
    """Raised when an achievement or progress payload is missing required fields."""
    def __init__(self, payload_kind: str, reason: str):
        super().__init__(
            f"Malformed {payload_kind} payload: {reason}",
            "❌ Received unexpected data from RetroAchievements."
        )
        self.payload_kind = payload_kind

class ConcurrentUpdateConflict(TrackingException):
    """Raised when an award row changed between read and compare-and-set."""
    def __init__(self, username: str, game_id: str, attempts: int = 1):
        super().__init__(
            f"Concurrent award update for {username}/{game_id} after {attempts} attempt(s)",
            "❌ Failed to save award progress. Please try again."
        )
        self.attempts = attempts

class TierRegressionError(TrackingException):
    """Raised when a write would lower a stored award tier."""
    def __init__(self, current_tier, requested_tier):
        super().__init__(
            f"Refusing to lower award tier from {current_tier!r} to {requested_tier!r}"
        )
        self.current_tier = current_tier
        self.requested_tier = requested_tier
