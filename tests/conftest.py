"""
Shared pytest fixtures for protodiff unit tests.

This module provides common fixtures used across multiple test files.
"""

import pytest

from protodiff.candidate import CandidateAdapter, WireBackend
from protodiff.candidate.wire import Arena
from protodiff.oracle import DifferentialOracle
from protodiff.reference import ListErrorCollector, ReferenceValidator


@pytest.fixture
def collector():
    """Collector that keeps every reference diagnostic."""
    return ListErrorCollector()


@pytest.fixture
def reference(collector):
    """Fresh reference validator with an empty pool."""
    return ReferenceValidator(collector=collector)


@pytest.fixture
def backend():
    """Fresh pure-Python candidate backend."""
    return WireBackend()


@pytest.fixture
def candidate(backend):
    """Adapter around the default candidate backend."""
    return CandidateAdapter(backend)


@pytest.fixture
def arena():
    """Arena released at teardown."""
    with Arena() as a:
        yield a


@pytest.fixture
def oracle():
    """Oracle with default configuration."""
    return DifferentialOracle()
