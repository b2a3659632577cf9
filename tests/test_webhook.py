"""Tests for WebhookService."""

import json

import httpx
import pytest

from batchcrop.schemas.batch import BatchFailure, BatchResult, ItemProgress, ItemStatus, ProcessedImage
from batchcrop.config import WEBHOOK_RETRY_ATTEMPTS
from batchcrop.services.webhook import WebhookService


def _service(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookService(client=client, retry_delay=0, **kwargs)


class TestWebhookService:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 2:
                return httpx.Response(503)
            return httpx.Response(204)

        assert await _service(handler).send_webhook("http://hook.test", {"a": 1}, retry_attempts=3)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_connection_errors(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        assert not await _service(handler).send_webhook("http://hook.test", {}, retry_attempts=2)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_no_url_is_a_no_op(self):
        def handler(request):
            raise AssertionError("should not be called")

        assert not await _service(handler).send_webhook("", {})

    @pytest.mark.asyncio
    async def test_item_progress_payload(self):
        bodies = []

        def handler(request):
            bodies.append((json.loads(request.content), request.headers))
            return httpx.Response(200)

        progress = ItemProgress(
            batch_id="batch-1", item_id="item-1", original_name="a.png",
            index=2, total=5, status=ItemStatus.ERROR, error_message="boom"
        )
        await _service(handler).send_item_progress_webhook(
            "http://hook.test", progress, {"X-Token": "abc"}
        )

        body, headers = bodies[0]
        assert body["event_type"] == "batch_progress"
        assert body["progress"]["label"] == "2 of 5"
        assert body["progress"]["status"] == "error"
        assert "timestamp" in body
        assert headers["X-Token"] == "abc"

    @pytest.mark.asyncio
    async def test_batch_completed_payload(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        result = BatchResult(
            batch_id="batch-1",
            successes=[ProcessedImage(original_name="a.png", url="http://x/a", storage_key="a.jpeg")],
            failures=[BatchFailure(original_name="b.png", error_message="bad")],
        )
        await _service(handler).send_batch_completed_webhook("http://hook.test", result)

        results = bodies[0]["results"]
        assert results["summary"] == "1/2 images processed successfully"
        assert results["failures"] == [{"original_name": "b.png", "error_message": "bad"}]
        assert results["ok"] is True

    @pytest.mark.asyncio
    async def test_invalid_url_is_logged_not_raised(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        service = _service(handler)
        result = BatchResult(batch_id="batch-1")

        assert not await service.send_batch_completed_webhook("http://hook.test", result)
        assert len(attempts) == WEBHOOK_RETRY_ATTEMPTS
