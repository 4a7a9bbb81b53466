"""Unit tests for tracing helpers."""

from __future__ import annotations

import pytest
from bson import ObjectId

from mongo_txn.infrastructure.tracing import get_tracer, trace_span, transaction_span


@pytest.mark.unit
class TestTransactionSpan:
    def test_tracer_is_cached(self) -> None:
        assert get_tracer() is get_tracer()

    def test_span_yields(self) -> None:
        with transaction_span("commit", ObjectId(), documents=2) as span:
            assert span is not None

    def test_exception_propagates(self) -> None:
        """A failing block is marked on the span and re-raised unchanged."""
        with pytest.raises(ValueError, match="boom"):
            with transaction_span("expire", ObjectId()):
                raise ValueError("boom")

    def test_plain_span(self) -> None:
        with trace_span("mongo_txn.test", {"k": "v"}) as span:
            assert span is not None
