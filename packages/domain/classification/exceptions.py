"""
Classification error hierarchy

Only transport-level batch failures propagate out of the classifiers; parse
failures and rate-limit exhaustion are absorbed into UNKNOWN results.
"""
from typing import Dict, Optional


class ClassificationError(Exception):
    """Base class for classification errors"""


class ClassificationTransportError(ClassificationError):
    """
    The external AI call for a batch failed (network, timeout, API error).

    partial_results holds the classifications that did succeed before the
    failure (earlier chunks of the same batch), keyed by identity hash.
    """

    def __init__(self, message: str, batch_size: int = 0, partial_results: Optional[Dict] = None):
        self.batch_size = batch_size
        self.partial_results = dict(partial_results or {})
        super().__init__(message)


class ClassifierConfigurationError(ClassificationError):
    """Unknown or unusable classifier selection"""


class KeywordConfigError(ClassificationError):
    """Keyword/synonym configuration is malformed"""
