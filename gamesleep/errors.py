"""Error taxonomy shared by the interaction endpoint and the idle monitor."""


class GameSleepError(Exception):
    """Base class for all controller errors."""


class ConfigError(GameSleepError):
    """Required configuration is missing or unusable."""


class AuthenticationFailure(GameSleepError):
    """Request signature missing or invalid. Maps to HTTP 401, never retried."""


class MalformedRequest(GameSleepError):
    """Request body could not be parsed. Maps to HTTP 400."""


class AdapterFailure(GameSleepError):
    """A cloud API, probe or webhook call failed."""


class PersistenceFailure(GameSleepError):
    """Reading or writing the activity record failed."""
