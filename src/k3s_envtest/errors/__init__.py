"""
Error handling module for the test environment bootstrapper.

This module provides the error hierarchy used by every layer, with each error
naming the resource it concerns.
"""

from .envtest_errors import (
    ConfigurationError,
    ConflictError,
    CRDTimeoutError,
    EndpointTimeoutError,
    EnvtestError,
    IssuanceError,
    KubernetesAPIError,
    NetworkError,
    TransformError,
)

__all__ = [
    "EnvtestError",
    "ConfigurationError",
    "IssuanceError",
    "TransformError",
    "NetworkError",
    "EndpointTimeoutError",
    "CRDTimeoutError",
    "ConflictError",
    "KubernetesAPIError",
]
