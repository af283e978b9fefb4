"""
Tests package - test suite for the k3s test environment bootstrapper.

Contains:
- unit/: Unit tests for individual components
"""
