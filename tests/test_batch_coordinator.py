"""Unit tests for BatchCoordinator."""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from batchcrop.schemas.batch import ItemStatus
from batchcrop.services.batch_coordinator import (
    BatchCoordinator, RESET_MESSAGE, CANCELLED_MESSAGE, REMOVED_MESSAGE
)
from batchcrop.services.item_processor import ItemProcessor
from batchcrop.services.session import BatchSession
from batchcrop.utils.security import ValidationError

from conftest import FakeTransform, make_image_bytes


def _names(records):
    return [r.original_name for r in records]


class TestBatchCoordinator:
    @pytest.mark.asyncio
    async def test_negative_crop_fails_before_any_storage_call(self, config, make_item):
        store = MagicMock()
        store.put = AsyncMock()
        store.delete = AsyncMock()
        transform = AsyncMock()
        coordinator = BatchCoordinator(ItemProcessor(store, transform, config))
        items = [make_item("a.png"), make_item("b.png")]

        with pytest.raises(ValidationError):
            await coordinator.run(items, -1)

        assert store.put.call_count == 0
        assert store.delete.call_count == 0
        transform.transform.assert_not_called()
        assert all(item.status == ItemStatus.PENDING for item in items)

    @pytest.mark.asyncio
    async def test_fractional_crop_is_rejected(self, store, config, fake_transform, make_item):
        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config))
        with pytest.raises(ValidationError):
            await coordinator.run([make_item()], 4.5)

    @pytest.mark.asyncio
    async def test_every_item_lands_in_exactly_one_list(self, store, config, make_item):
        names = ["a.png", "b.png", "c.png", "d.png"]
        transform = FakeTransform(store, config, fail_for=["b.png"])
        coordinator = BatchCoordinator(ItemProcessor(store, transform, config))
        items = [make_item(name) for name in names]

        result = await coordinator.run(items, 4)

        assert result.attempted == len(names)
        assert _names(result.successes) == ["a.png", "c.png", "d.png"]
        assert _names(result.failures) == ["b.png"]
        assert not set(_names(result.successes)) & set(_names(result.failures))
        assert result.ok
        assert result.summary == "3/4 images processed successfully"

    @pytest.mark.asyncio
    async def test_failure_does_not_change_processing_order(self, store, config, make_item):
        names = ["a.png", "b.png", "c.png"]
        transform = FakeTransform(store, config, fail_for=["a.png"])
        coordinator = BatchCoordinator(ItemProcessor(store, transform, config))

        await coordinator.run([make_item(name) for name in names], 4)

        called = [key.split("_", 1)[1] for key, _ in transform.calls]
        assert called == names

    @pytest.mark.asyncio
    async def test_zero_successes_is_a_failed_batch(self, store, config, make_item):
        transform = FakeTransform(store, config, fail_for=["a.png", "b.png"])
        coordinator = BatchCoordinator(ItemProcessor(store, transform, config))
        items = [make_item("a.png"), make_item("b.png")]

        result = await coordinator.run(items, 4)

        assert not result.ok
        assert result.succeeded == 0
        assert result.summary == "0/2 images processed successfully"
        assert all(item.status == ItemStatus.ERROR for item in items)

    @pytest.mark.asyncio
    async def test_progress_emitted_once_per_item(self, store, config, fake_transform, make_item):
        events = []

        async def on_progress(event):
            events.append(event)

        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config), on_progress)
        items = [make_item("a.png"), make_item("b.png"), make_item("c.png")]

        result = await coordinator.run(items, 4, batch_id="batch-test")

        assert [e.label for e in events] == ["1 of 3", "2 of 3", "3 of 3"]
        assert [e.item_id for e in events] == [item.id for item in items]
        assert all(e.batch_id == "batch-test" for e in events)
        assert result.batch_id == "batch-test"

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, store, config, fake_transform, make_item):
        callback = AsyncMock(side_effect=RuntimeError("ui gone"))
        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config), callback)

        result = await coordinator.run([make_item("a.png"), make_item("b.png")], 4)

        assert result.succeeded == 2
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_reset_discards_remaining_items(self, store, config, fake_transform, make_item):
        live = {"value": True}

        async def on_progress(event):
            live["value"] = False

        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config), on_progress)
        items = [make_item("a.png"), make_item("b.png"), make_item("c.png")]

        result = await coordinator.run(items, 4, is_live=lambda: live["value"])

        assert result.cancelled
        assert result.attempted == 3
        assert _names(result.successes) == ["a.png"]
        assert [f.error_message for f in result.failures] == [RESET_MESSAGE, RESET_MESSAGE]
        assert items[1].status == ItemStatus.PENDING
        assert len(fake_transform.calls) == 1

    @pytest.mark.asyncio
    async def test_cancellation_marks_in_flight_item(self, make_item):
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=asyncio.CancelledError())
        coordinator = BatchCoordinator(processor)
        item = make_item()

        with pytest.raises(asyncio.CancelledError):
            await coordinator.run([item], 4)

        assert item.status == ItemStatus.ERROR
        assert item.error_message == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_batch_reports_failure(self, store, config, fake_transform):
        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config))

        result = await coordinator.run([], 45)

        assert result.attempted == 0
        assert not result.ok


class TestItemRemovalDuringBatch:
    @staticmethod
    def _session_items(session, *names):
        items = session.create_items([(name, make_image_bytes()) for name in names])
        batch_id, is_live = session.begin_batch(items)
        return items, batch_id, is_live

    @pytest.mark.asyncio
    async def test_item_removed_between_progress_events_is_skipped(self, store, config, fake_transform):
        session = BatchSession()
        items, batch_id, is_live = self._session_items(session, "a.png", "b.png", "c.png")

        async def on_progress(event):
            if event.index == 1:
                session.remove_item(items[1].id)

        coordinator = BatchCoordinator(ItemProcessor(store, fake_transform, config), on_progress)
        result = await coordinator.run(
            items, 4, batch_id=batch_id, is_live=is_live, is_active=session.has_item
        )
        session.complete_batch(batch_id, result)

        assert _names(result.successes) == ["a.png", "c.png"]
        assert [(f.original_name, f.error_message) for f in result.failures] == [("b.png", REMOVED_MESSAGE)]
        assert result.attempted == 3
        assert not result.cancelled
        assert [key.split("_", 1)[1] for key, _ in fake_transform.calls] == ["a.png", "c.png"]
        assert items[1].status == ItemStatus.PENDING
        assert _names(session.processed) == ["a.png", "c.png"]
        assert session.previews.active_count == 0

    @pytest.mark.asyncio
    async def test_item_removed_while_in_flight_is_not_a_success(self, store, config):
        session = BatchSession()
        items, batch_id, is_live = self._session_items(session, "a.png", "b.png")
        inner = FakeTransform(store, config)

        class RemovingTransform:
            async def transform(self, raw_key, crop_amount_px):
                if raw_key.endswith("_a.png"):
                    session.remove_item(items[0].id)
                return await inner.transform(raw_key, crop_amount_px)

        coordinator = BatchCoordinator(ItemProcessor(store, RemovingTransform(), config))
        result = await coordinator.run(
            items, 4, batch_id=batch_id, is_live=is_live, is_active=session.has_item
        )
        session.complete_batch(batch_id, result)

        assert _names(result.successes) == ["b.png"]
        assert _names(result.failures) == ["a.png"]
        assert items[0].status == ItemStatus.PROCESSING
        assert items[0].processed_ref is None
        assert _names(session.processed) == ["b.png"]
