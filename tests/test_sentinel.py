"""Sentinel generation tests."""

from __future__ import annotations

import pytest

from shell_watcher.runtime.sentinel import (
    DEFAULT_SENTINEL_LENGTH,
    MIN_SENTINEL_LENGTH,
    generate_sentinel,
)


class TestGenerateSentinel:
    """Test sentinel shape and uniqueness."""

    def test_default_length(self):
        assert len(generate_sentinel()) == DEFAULT_SENTINEL_LENGTH == 100

    def test_alphanumeric_only(self):
        """No quotes or shell metacharacters."""
        sentinel = generate_sentinel()
        assert sentinel.isascii()
        assert sentinel.isalnum()

    def test_unique_per_call(self):
        assert len({generate_sentinel() for _ in range(50)}) == 50

    def test_custom_length(self):
        assert len(generate_sentinel(128)) == 128

    def test_too_short_rejected(self):
        with pytest.raises(ValueError):
            generate_sentinel(MIN_SENTINEL_LENGTH - 1)
