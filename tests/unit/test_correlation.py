"""
Unit tests for correlation module.

Tests correlation ID generation, context management, and async context variable operations.
"""

import asyncio

import pytest

from tuya_lan.correlation import (
    correlation_context,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def clear_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


class TestGenerateCorrelationId:
    """Tests for generate_correlation_id function"""

    def test_generates_unique_id(self):
        """Test that generate_correlation_id creates unique IDs"""
        assert generate_correlation_id() != generate_correlation_id()

    def test_generates_valid_uuid_format(self):
        """Test that generated ID is valid UUID4 hex format"""
        corr_id = generate_correlation_id()

        assert len(corr_id) == 32
        assert all(c in "0123456789abcdef" for c in corr_id)


class TestGetSetCorrelationId:
    """Tests for get_correlation_id and set_correlation_id functions"""

    def test_get_returns_none_initially(self):
        assert get_correlation_id() is None

    def test_set_and_get_correlation_id(self):
        set_correlation_id("batch-1")

        assert get_correlation_id() == "batch-1"

    def test_set_none_clears_id(self):
        set_correlation_id("batch-1")
        set_correlation_id(None)

        assert get_correlation_id() is None


class TestCorrelationContext:
    """Tests for correlation_context context manager"""

    def test_generates_id_when_none_given(self):
        """Test that an ID is generated and active inside the block"""
        with correlation_context() as corr_id:
            assert corr_id is not None
            assert get_correlation_id() == corr_id

    def test_uses_given_id(self):
        with correlation_context("explicit-id") as corr_id:
            assert corr_id == "explicit-id"

    def test_no_auto_generate(self):
        with correlation_context(auto_generate=False) as corr_id:
            assert corr_id is None
            assert get_correlation_id() is None

    def test_restores_previous_id(self):
        """Test that the outer ID is restored after a nested block"""
        with correlation_context("outer"):
            with correlation_context("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
        assert get_correlation_id() is None

    def test_restores_on_exception(self):
        with pytest.raises(RuntimeError), correlation_context("failing"):
            raise RuntimeError

        assert get_correlation_id() is None


class TestEnsureCorrelationId:
    """Tests for ensure_correlation_id function"""

    def test_generates_when_missing(self):
        corr_id = ensure_correlation_id()

        assert corr_id
        assert get_correlation_id() == corr_id

    def test_keeps_existing(self):
        set_correlation_id("existing")

        assert ensure_correlation_id() == "existing"


class TestAsyncIsolation:
    """Tests for correlation IDs across concurrent tasks"""

    @pytest.mark.asyncio
    async def test_tasks_have_isolated_ids(self):
        """Test that concurrent tasks each see their own ID"""

        async def worker(name: str) -> str | None:
            with correlation_context(name):
                await asyncio.sleep(0.01)
                return get_correlation_id()

        results = await asyncio.gather(worker("a"), worker("b"), worker("c"))

        assert results == ["a", "b", "c"]
