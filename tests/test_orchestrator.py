"""
Tests for the Sync Orchestrator

Each test drives one request to a terminal state and checks the response
body, the job store and the outbound dispatch.
"""
import json
from datetime import timedelta

import pytest
import pytest_asyncio

from portcullis.api.deps import build_services
from portcullis.core.config import Settings
from portcullis.core.connectors import build_default_registry
from portcullis.core.errors import SourceConnectionError
from portcullis.db import create_engine, create_session_factory
from portcullis.sync.job_store import SyncJobStore, SyncStatus
from portcullis.sync.orchestrator import SUCCESS_MESSAGE, SyncState

from conftest import make_table


@pytest_asyncio.fixture
async def services(settings, engine, registry, github):
    svc = build_services(settings, registry=registry, dispatch_transport=github.transport, engine=engine)
    yield svc
    await svc.dispatcher.close()


class ExplodingDispatcher:
    """Stands in for the dispatcher when the trigger itself blows up."""

    def __init__(self, real):
        self.real = real
        self.raised = RuntimeError("dispatcher crashed")

    def build_request(self, **kwargs):
        return self.real.build_request(**kwargs)

    async def trigger(self, request, deadline=None):
        raise self.raised


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_dispatched(self, services, github, fake_source, valid_body):
        outcome = await services.orchestrator.run(valid_body)

        assert outcome.state == SyncState.DISPATCHED
        assert outcome.success
        assert outcome.status_code == 200
        assert outcome.body == {"success": True, "syncId": outcome.sync_id, "message": SUCCESS_MESSAGE}

        record = await services.job_store.get(outcome.sync_id)
        assert record.status == SyncStatus.ACTIVE
        assert record.dispatch_attempts == 1
        assert record.link_type == "clickhouse"
        assert record.destination_config["options"] == {"mode": "stream", "batchSize": 10000}

        inputs = github.body()["inputs"]
        assert inputs["org_id"] == "org_1"
        assert inputs["sync_id"] == outcome.sync_id
        assert json.loads(inputs["data"]) == {"events": []}
        assert json.loads(inputs["schema"]) == {
            "events": [{"name": "id", "type": "UInt64"}, {"name": "name", "type": "String"}]
        }
        assert fake_source.credentials_seen[0] == valid_body["internal_credentials"]

    @pytest.mark.asyncio
    async def test_rows_travel_with_snapshot(self, services, github, fake_source, valid_body):
        fake_source.tables["events"] = make_table("events", rows=[{"id": 1, "name": "signup"}])
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.success
        assert json.loads(github.body()["inputs"]["data"]) == {"events": [{"id": 1, "name": "signup"}]}

    @pytest.mark.asyncio
    async def test_source_without_tables_still_dispatches(self, services, github, fake_source, valid_body):
        fake_source.table_names = []
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.DISPATCHED
        assert github.body()["inputs"]["data"] == "{}"
        assert github.body()["inputs"]["schema"] == "{}"

    @pytest.mark.asyncio
    async def test_repeat_requests_create_separate_jobs(self, services, valid_body):
        first = await services.orchestrator.run(valid_body)
        second = await services.orchestrator.run(valid_body)
        assert first.sync_id != second.sync_id


class TestEarlyExits:
    @pytest.mark.asyncio
    async def test_validation_failed(self, services, github, fake_source, valid_body):
        valid_body["link_type"] = ""
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.VALIDATION_FAILED
        assert outcome.status_code == 400
        assert outcome.body["error"] == "Validation failed"
        assert outcome.body["details"][0]["loc"] == ["link_type"]
        assert fake_source.credentials_seen == []
        assert github.requests == []

    @pytest.mark.asyncio
    async def test_unknown_fields_rejected(self, services, github, fake_source, valid_body):
        valid_body["priority"] = "high"
        valid_body["destination_config"]["region"] = "eu"
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.VALIDATION_FAILED
        assert outcome.status_code == 400
        locs = [issue["loc"] for issue in outcome.body["details"]]
        assert ["priority"] in locs
        assert ["destination_config", "region"] in locs
        assert await services.job_store.list_for_organization("org_1") == []
        assert fake_source.credentials_seen == []
        assert github.requests == []

    @pytest.mark.asyncio
    async def test_bad_credentials_shape(self, services, github, valid_body):
        del valid_body["internal_credentials"]["database"]
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.EXTRACTION_FAILED
        assert outcome.status_code == 500
        assert outcome.body["syncId"] is None
        assert "database" in outcome.body["error"]
        assert await services.job_store.list_for_organization("org_1") == []
        assert github.requests == []

    @pytest.mark.asyncio
    async def test_source_unreachable(self, services, github, fake_source, valid_body):
        fake_source.connect_error = SourceConnectionError(message="Connection refused")
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.EXTRACTION_FAILED
        assert outcome.body == {"success": False, "syncId": None, "error": "Connection refused"}
        assert await services.job_store.list_for_organization("org_1") == []

    @pytest.mark.asyncio
    async def test_malformed_port_fails_extraction(self, settings, engine, github, valid_body):
        services = build_services(
            settings, registry=build_default_registry(), dispatch_transport=github.transport, engine=engine
        )
        valid_body["internal_credentials"]["port"] = "abc"
        try:
            outcome = await services.orchestrator.run(valid_body)
        finally:
            await services.dispatcher.close()
        assert outcome.state == SyncState.EXTRACTION_FAILED
        assert outcome.status_code == 500
        assert outcome.body["syncId"] is None
        assert "port must be a port number" in outcome.body["error"]
        assert await services.job_store.list_for_organization("org_1") == []
        assert github.requests == []

    @pytest.mark.asyncio
    async def test_unencodable_rows_fail_extraction(self, services, github, fake_source, valid_body):
        fake_source.tables["events"] = make_table("events", rows=[{"id": 1, "took": timedelta(seconds=5)}])
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.EXTRACTION_FAILED
        assert outcome.status_code == 500
        assert outcome.body["syncId"] is None
        assert "could not be serialized" in outcome.body["error"]
        assert await services.job_store.list_for_organization("org_1") == []
        assert github.requests == []

    @pytest.mark.asyncio
    async def test_persistence_failed(self, services, tmp_path, github, valid_body):
        # no tables created in this database
        broken = create_engine(Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"))
        services.orchestrator.job_store = SyncJobStore(create_session_factory(broken))
        try:
            outcome = await services.orchestrator.run(valid_body)
        finally:
            await broken.dispose()
        assert outcome.state == SyncState.PERSISTENCE_FAILED
        assert outcome.status_code == 500
        assert outcome.body["error"] == "Database error"
        assert "syncId" not in outcome.body
        assert github.requests == []


class TestDispatchFailures:
    @pytest.mark.asyncio
    async def test_dispatch_rejected_keeps_job(self, services, github, valid_body):
        github.queue((401, {"message": "Bad credentials"}))
        outcome = await services.orchestrator.run(valid_body)

        assert outcome.state == SyncState.DISPATCH_FAILED
        assert outcome.status_code == 422
        assert outcome.body["syncId"] == outcome.sync_id
        assert outcome.body["error"] == "Dispatch error"
        assert outcome.body["details"] == "HTTP 401: Bad credentials"

        record = await services.job_store.get(outcome.sync_id)
        assert record.status == SyncStatus.ACTIVE
        assert record.dispatch_error == "HTTP 401: Bad credentials"
        assert record.dispatch_attempts == 1

    @pytest.mark.asyncio
    async def test_dispatch_exhausted(self, services, github, valid_body):
        github.queue(503, 503, 503)
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.DISPATCH_FAILED
        assert (await services.job_store.get(outcome.sync_id)).dispatch_attempts == 3

    @pytest.mark.asyncio
    async def test_unexpected_crash_reports_sync_id(self, services, valid_body):
        exploding = ExplodingDispatcher(services.dispatcher)
        services.orchestrator.dispatcher = exploding
        outcome = await services.orchestrator.run(valid_body)
        assert outcome.state == SyncState.UNHANDLED_FAILURE
        assert outcome.status_code == 500
        assert outcome.body["success"] is False
        assert outcome.body["error"] == "dispatcher crashed"
        assert outcome.body["syncId"] is not None
        assert await services.job_store.get(outcome.body["syncId"]) is not None
        assert not hasattr(exploding.raised, "sync_id")
