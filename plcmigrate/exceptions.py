"""
Exception hierarchy for plcmigrate.

Only configuration problems raise. Parsing and extraction never do: malformed
source is reported through ``ParseResult.errors`` / ``ParseResult.warnings`` or
yields empty result sets.
"""


class PLCMigrateError(Exception):
    """Base class for all plcmigrate errors."""


class ConfigurationError(PLCMigrateError):
    """Raised when analysis configuration is invalid or cannot be loaded."""


class UnknownTargetLanguageError(ConfigurationError, ValueError):
    """Raised when a target language outside the supported set is requested."""

    def __init__(self, value, supported):
        self.value = value
        self.supported = list(supported)
        super().__init__(
            f"Unknown target language '{value}'. "
            f"Supported languages: {', '.join(self.supported)}"
        )


class InvalidWeightsError(ConfigurationError, ValueError):
    """Raised when migration scoring weights fail validation."""
