"""
Integration tests for the request pipeline: gateway, queues and persister.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from service_gateway.app.main import GatewayService
from service_persister.app.main import PersisterService
from service_persister.app.persistence import InMemoryRecordStore
from shared.config import UsagePlanSettings, get_config
from shared.errors import ValidationError
from shared.queues import FailureOutcome, InMemoryOutcomeQueue, SuccessOutcome
from shared.test_helpers import FaultProbe, FlakyQueue, StubTokenValidator, data_factory

HEADERS = {"X-API-Key": "key-1", "Authorization": "Bearer good-token"}


class RecordingHandler:
    """Primary unit stand-in that records every invocation."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result if result is not None else {"status": "ok"}
        self.error = error
        self.delay = delay
        self.events = []

    async def __call__(self, event):
        self.events.append(event)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class Pipeline:
    """Gateway and persister wired to shared in-memory queues and store."""

    def __init__(self, handler, success_queue=None, **gateway_overrides):
        self.handler = handler
        self.validator = StubTokenValidator({"good-token": "user-1"})
        self.success_queue = success_queue or InMemoryOutcomeQueue("on-success-queue-test")
        self.failure_queue = InMemoryOutcomeQueue("on-failure-queue-test")
        self.store = InMemoryRecordStore(index_lag_seconds=0.05)
        self.faults = FaultProbe()

        settings = {
            "api_keys": {"key-1": "default"},
            "usage_plans": {"default": UsagePlanSettings(quota_limit=100)},
            "enqueue_base_delay": 0.001,
            "enqueue_max_delay": 0.01,
        }
        settings.update(gateway_overrides)
        self.gateway = GatewayService(
            get_config("gateway", 8000, **settings),
            validator=self.validator,
            success_queue=self.success_queue,
            failure_queue=self.failure_queue,
            handler=handler,
        )
        self.gateway.faults.add_sink(self.faults)
        self.persister = PersisterService(
            get_config("persister", 8020, receive_wait_seconds=0, poll_interval_seconds=0.01),
            queue=self.success_queue,
            store=self.store,
            start_consumer=False,
        )

    def client(self) -> httpx.AsyncClient:
        transport = httpx.ASGITransport(app=self.gateway.app)
        return httpx.AsyncClient(transport=transport, base_url="http://gateway")

    async def settle(self):
        """Let routing finish and drain the success queue once."""
        await self.gateway.dispatcher.drain()
        return await self.persister.consumer.run_once()


@pytest_asyncio.fixture
async def pipeline_factory():
    pipelines = []

    async def build(handler, **kwargs):
        pipeline = Pipeline(handler, **kwargs)
        await pipeline.gateway.startup()
        await pipeline.persister.startup()
        pipelines.append(pipeline)
        return pipeline

    yield build

    for pipeline in pipelines:
        await pipeline.persister.shutdown()
        await pipeline.gateway.shutdown()


class TestPipelineFlow:
    """End-to-end flows through the pipeline."""

    @pytest.mark.asyncio
    async def test_success_flows_to_store(self, pipeline_factory):
        """Valid key and token: 200, one success item, one stored record."""
        pipeline = await pipeline_factory(RecordingHandler({"status": "ok"}))

        async with pipeline.client() as client:
            response = await client.get("/new/route/2024-01-01", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

        await pipeline.gateway.dispatcher.drain()
        [outcome] = await pipeline.success_queue.outcomes()
        assert isinstance(outcome, SuccessOutcome)
        assert await pipeline.failure_queue.outcomes() == []

        result = await pipeline.settle()
        assert result.persisted == 1

        request_id = pipeline.handler.events[0].request_id
        [record] = await pipeline.store.get_by_partition(request_id)
        assert record.employee_name == "2024-01-01"
        assert await pipeline.success_queue.outcomes() == []

    @pytest.mark.asyncio
    async def test_failure_flows_to_failure_queue(self, pipeline_factory):
        """Primary unit raises: 5xx, one failure item, store untouched."""
        pipeline = await pipeline_factory(RecordingHandler(error=ValidationError("bad date")))

        async with pipeline.client() as client:
            response = await client.get("/new/route/2024-01-01", headers=HEADERS)

        assert response.status_code >= 500
        await pipeline.settle()

        [outcome] = await pipeline.failure_queue.outcomes()
        assert isinstance(outcome, FailureOutcome)
        assert outcome.condition == "Failure"
        assert outcome.error_detail == "bad date"
        assert await pipeline.success_queue.outcomes() == []
        assert await pipeline.store.count() == 0

    @pytest.mark.asyncio
    async def test_invalid_token_never_executes(self, pipeline_factory):
        """Valid key, invalid token: 403 and nothing produced."""
        pipeline = await pipeline_factory(RecordingHandler())

        async with pipeline.client() as client:
            response = await client.get(
                "/new/route/2024-01-01",
                headers={"X-API-Key": "key-1", "Authorization": "Bearer forged"}
            )

        assert response.status_code == 403
        await pipeline.settle()
        assert pipeline.handler.events == []
        assert await pipeline.success_queue.outcomes() == []
        assert await pipeline.failure_queue.outcomes() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("api_key", [None, "wrong-key"])
    async def test_api_key_checked_before_token(self, pipeline_factory, api_key):
        """Missing or invalid key: 401 and the authorizer is never consulted."""
        pipeline = await pipeline_factory(RecordingHandler())
        headers = {"Authorization": "Bearer good-token"}
        if api_key:
            headers["X-API-Key"] = api_key

        async with pipeline.client() as client:
            response = await client.get("/new/route/2024-01-01", headers=headers)

        assert response.status_code == 401
        assert pipeline.validator.calls == []
        assert pipeline.handler.events == []

    @pytest.mark.asyncio
    async def test_timeout_still_persists(self, pipeline_factory):
        """The client gets 504 but the late outcome is still stored."""
        pipeline = await pipeline_factory(
            RecordingHandler({"status": "ok"}, delay=0.2),
            gateway_timeout_seconds=0.05,
        )

        async with pipeline.client() as client:
            response = await client.get("/new/route/2024-01-01", headers=HEADERS)

        assert response.status_code == 504
        assert response.json()["code"] == "EXECUTION_TIMEOUT"

        result = await pipeline.settle()
        assert result.persisted == 1

    @pytest.mark.asyncio
    async def test_enqueue_outage_reported_as_data_loss(self, pipeline_factory):
        """The client still gets its result; the dropped outcome is a fault."""
        pipeline = await pipeline_factory(
            RecordingHandler({"status": "ok"}),
            success_queue=FlakyQueue("on-success-queue-test", failures=100),
        )

        async with pipeline.client() as client:
            response = await client.get("/new/route/2024-01-01", headers=HEADERS)

        assert response.status_code == 200
        result = await pipeline.settle()

        assert result.received == 0
        [fault] = pipeline.faults.of_type("enqueue_failure")
        assert fault.data_loss is True

    @pytest.mark.asyncio
    async def test_background_consumer_and_lagging_index(self, pipeline_factory):
        """Records reach the index after the configured lag."""
        employee = data_factory.make_employee("E42", "Ada", 36, "Engineer")
        pipeline = await pipeline_factory(RecordingHandler(employee))
        await pipeline.persister.consumer.start()

        async with pipeline.client() as client:
            for _ in range(7):
                assert (await client.get("/new/route/2024-01-01", headers=HEADERS)).status_code == 200

        await pipeline.gateway.dispatcher.drain()
        for _ in range(100):
            if await pipeline.store.query_index("36", "Engineer"):
                break
            await asyncio.sleep(0.01)

        [record] = await pipeline.store.query_index("36", "Engineer")
        assert record.key == ("E42", "Ada")
        assert await pipeline.store.count() == 1

        for _ in range(100):
            stats = await pipeline.success_queue.stats()
            if stats["visible"] == 0 and stats["in_flight"] == 0:
                break
            await asyncio.sleep(0.01)
        assert stats == {"visible": 0, "in_flight": 0, "dead_lettered": 0}

    @pytest.mark.asyncio
    async def test_cors_preflight(self, pipeline_factory):
        pipeline = await pipeline_factory(RecordingHandler())

        async with pipeline.client() as client:
            response = await client.options(
                "/new/route/2024-01-01",
                headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "GET"},
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert pipeline.handler.events == []
