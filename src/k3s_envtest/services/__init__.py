"""
Service layer for the test environment.

Contains the orchestrator that sequences certificate issuance, CRD
installation and webhook wiring against a live cluster.
"""

from .bootstrap import EnvBootstrapper

__all__ = ["EnvBootstrapper"]
