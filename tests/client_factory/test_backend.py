"""
Tests for backend enumeration.

This module tests the BackendType enum.
"""

import pytest

from stepflow.backend import BackendType


class TestBackendType:
    """Test cases for BackendType enum."""

    def test_backend_type_values(self):
        """Test backend type enum values."""
        assert BackendType.IN_MEMORY.value == "in_memory"
        assert BackendType.SQLITE.value == "sqlite"

    def test_backend_type_iteration(self):
        """Test iterating over BackendType values."""
        assert list(BackendType) == [BackendType.IN_MEMORY, BackendType.SQLITE]

    def test_backend_type_from_string(self):
        """Test creating BackendType from string."""
        assert BackendType("in_memory") == BackendType.IN_MEMORY
        assert BackendType("sqlite") == BackendType.SQLITE

    def test_backend_type_invalid_string(self):
        """Test creating BackendType from invalid string."""
        with pytest.raises(ValueError):
            BackendType("postgres")
