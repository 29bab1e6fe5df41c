"""Custom exceptions for Client Reports."""


class ClientReportsError(Exception):
    """Base exception for all Client Reports errors."""


class ProviderUnavailableError(ClientReportsError):
    """Exception raised when an external mail, embedding or summary provider fails or times out."""


class GmailAPIError(ProviderUnavailableError):
    """Exception raised for Gmail API related errors."""


class OllamaConnectionError(ProviderUnavailableError):
    """Exception raised when unable to connect to Ollama."""


class OllamaInferenceError(ProviderUnavailableError):
    """Exception raised when Ollama returns an error or an unusable response."""


class ConfigurationError(ClientReportsError):
    """Exception raised for configuration related errors."""


class AuthenticationError(ClientReportsError):
    """Exception raised for authentication failures."""


class InvalidInputError(ClientReportsError):
    """Exception raised when a caller passes malformed parameters."""


class TaskStateError(ClientReportsError):
    """Exception raised on an illegal task status transition."""
