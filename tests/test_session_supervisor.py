import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from zapbot.services.auth_store import FileAuthStore
from zapbot.services.broadcast_service import EVENT_CONNECTION_STATUS, EVENT_QR
from zapbot.services.session_supervisor import (
    NotConnectedError,
    SessionStartError,
    SessionSupervisor,
    StopOutcome,
    render_qr,
)
from zapbot.services.transport.base import ConnectionUpdate, CredentialsUpdate, MessageReceived

JID = "5511999999999@s.whatsapp.net"


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def drain_queue(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def auth_store(tmp_path):
    return FileAuthStore(tmp_path / "auth_info")


@pytest.fixture
def make_supervisor(transport, auth_store, store, broadcaster):
    created = []

    def factory(**kwargs):
        kwargs.setdefault("reconnect_delay_seconds", 60.0)
        supervisor = SessionSupervisor(transport, auth_store, store, broadcaster, **kwargs)
        created.append(supervisor)
        return supervisor

    yield factory


async def close_with(supervisor, status_code):
    await supervisor.handle_event(ConnectionUpdate(connection="close", status_code=status_code))


class TestRenderQr:
    def test_png_data_uri(self):
        assert render_qr("2@abc,def,ghi", scale=2).startswith("data:image/png;base64,")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, make_supervisor, transport):
        supervisor = make_supervisor()

        assert await supervisor.start() is True
        assert await supervisor.start() is False
        assert len(transport.sessions) == 1
        assert transport.credentials_seen == [None]

        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_start_resumes_with_stored_credentials(self, make_supervisor, transport, auth_store):
        auth_store.save({"me": {"id": "5511988887777:3@s.whatsapp.net"}})
        supervisor = make_supervisor()

        await supervisor.start()

        assert transport.credentials_seen == [{"me": {"id": "5511988887777:3@s.whatsapp.net"}}]
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_qr_is_rendered_and_published(self, make_supervisor, broadcaster):
        supervisor = make_supervisor()
        queue = broadcaster.subscribe()

        await supervisor.handle_event(ConnectionUpdate(qr="2@pairing-ref"))

        envelope = queue.get_nowait()
        assert envelope["event"] == EVENT_QR
        assert envelope["data"].startswith("data:image/png;base64,")
        assert supervisor.state.last_qr_payload == envelope["data"]

    @pytest.mark.asyncio
    async def test_open_marks_connected(self, make_supervisor, broadcaster, store):
        supervisor = make_supervisor()
        await supervisor.start()
        queue = broadcaster.subscribe()

        await supervisor.handle_event(ConnectionUpdate(qr="2@pairing-ref"))
        await supervisor.handle_event(ConnectionUpdate(connection="open"))

        assert supervisor.snapshot() == {
            "connected": True,
            "device": {"name": "Loja Centro", "number": "5511988887777"},
        }
        assert supervisor.state.last_qr_payload is None
        events = [item["event"] for item in drain_queue(queue)]
        assert events == [EVENT_QR, EVENT_CONNECTION_STATUS]
        assert len(store.connections) == 1
        assert list(store.connections.values())[0]["is_connected"] is True

        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_credentials_saved(self, make_supervisor, auth_store):
        supervisor = make_supervisor()

        await supervisor.handle_event(CredentialsUpdate({"noiseKey": "abc"}))
        await supervisor.handle_event(CredentialsUpdate({"me": {"id": "x"}}))

        assert auth_store.load() == {"noiseKey": "abc", "me": {"id": "x"}}

    @pytest.mark.asyncio
    async def test_events_consumed_from_session(self, make_supervisor, transport):
        supervisor = make_supervisor()
        handler = AsyncMock()
        supervisor.on_message(handler)
        await supervisor.start()
        session = transport.sessions[0]

        session.push(ConnectionUpdate(connection="open"))
        message = MessageReceived(conversation_id=JID, text="Olá")
        session.push(message)

        await wait_for(lambda: handler.await_count == 1)
        handler.assert_awaited_once_with(message)
        assert supervisor.state.connected is True

        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_restore_reuses_connection_record(self, make_supervisor, store):
        connection_id = store.upsert_connection(None, is_connected=False)
        supervisor = make_supervisor()

        await supervisor.restore()
        await supervisor.handle_event(ConnectionUpdate(qr="2@pairing-ref"))

        assert list(store.connections) == [connection_id]
        assert supervisor.state.connected is False


class TestReconnect:
    @pytest.mark.asyncio
    async def test_non_logout_close_schedules_reconnect(self, make_supervisor):
        supervisor = make_supervisor()
        await supervisor.start()
        await supervisor.handle_event(ConnectionUpdate(connection="open"))

        await close_with(supervisor, 428)

        assert supervisor.is_live is False
        assert supervisor.reconnect_pending is True
        assert supervisor.state.reconnect_attempts == 1
        assert supervisor.snapshot() == {"connected": False, "device": None}

        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_logout_close_does_not_reconnect(self, make_supervisor):
        supervisor = make_supervisor()
        await supervisor.start()
        await close_with(supervisor, 428)
        await supervisor.start()

        await close_with(supervisor, 401)

        assert supervisor.state.reconnect_attempts == 0
        await supervisor.shutdown()

    @pytest.mark.asyncio
    @patch("zapbot.services.session_supervisor.alert_critical", new_callable=AsyncMock)
    async def test_gives_up_after_max_attempts(self, mock_alert, make_supervisor):
        supervisor = make_supervisor()

        for expected in range(1, 6):
            await close_with(supervisor, 500)
            assert supervisor.state.reconnect_attempts == expected

        await close_with(supervisor, 500)

        assert supervisor.state.reconnect_attempts == 0
        await supervisor.drain()
        mock_alert.assert_awaited_once()
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_open_resets_attempts(self, make_supervisor):
        supervisor = make_supervisor()
        await close_with(supervisor, 428)
        await close_with(supervisor, 428)
        await supervisor.start()

        await supervisor.handle_event(ConnectionUpdate(connection="open"))

        assert supervisor.state.reconnect_attempts == 0
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_reconnect_opens_new_session(self, make_supervisor, transport):
        supervisor = make_supervisor(reconnect_delay_seconds=0)
        await supervisor.start()

        transport.sessions[0].push(ConnectionUpdate(connection="close", status_code=515))

        await wait_for(lambda: len(transport.sessions) == 2 and supervisor.is_live)
        assert transport.sessions[0].closed is True
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_start_failure_is_retried(self, make_supervisor, transport):
        transport.failures_left = 2
        supervisor = make_supervisor(reconnect_delay_seconds=0)

        with pytest.raises(SessionStartError):
            await supervisor.start()

        await wait_for(lambda: supervisor.is_live)
        assert len(transport.credentials_seen) == 3
        await supervisor.shutdown()

    @pytest.mark.asyncio
    @patch("zapbot.services.session_supervisor.alert_critical", new_callable=AsyncMock)
    async def test_start_failures_are_bounded(self, mock_alert, make_supervisor, transport):
        transport.failures_left = 100
        supervisor = make_supervisor(reconnect_delay_seconds=0, max_reconnect_attempts=2)

        with pytest.raises(SessionStartError):
            await supervisor.start()

        await wait_for(lambda: mock_alert.await_count == 1)
        await wait_for(lambda: not supervisor.reconnect_pending)
        assert len(transport.credentials_seen) == 3
        assert supervisor.is_live is False


class TestStopAndSend:
    @pytest.mark.asyncio
    async def test_stop_without_session(self, make_supervisor):
        supervisor = make_supervisor()

        result = await supervisor.stop()

        assert result == StopOutcome.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, make_supervisor):
        supervisor = make_supervisor()
        await close_with(supervisor, 428)
        assert supervisor.reconnect_pending is True

        result = await supervisor.stop()

        assert result == StopOutcome.NOT_CONNECTED
        assert supervisor.reconnect_pending is False
        assert supervisor.state.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_stop_logs_out_and_clears_everything(self, make_supervisor, transport, auth_store, store, broadcaster):
        supervisor = make_supervisor()
        auth_store.save({"noiseKey": "abc"})
        await supervisor.start()
        await supervisor.handle_event(ConnectionUpdate(connection="open"))
        queue = broadcaster.subscribe()

        result = await supervisor.stop()

        assert result == StopOutcome.DISCONNECTED
        assert transport.sessions[0].logged_out is True
        assert not auth_store.directory.exists()
        assert store.connections == {}
        assert supervisor.snapshot() == {"connected": False, "device": None}
        assert queue.get_nowait()["event"] == EVENT_CONNECTION_STATUS
        assert supervisor.reconnect_pending is False

    @pytest.mark.asyncio
    async def test_send_requires_connection(self, make_supervisor):
        supervisor = make_supervisor()

        with pytest.raises(NotConnectedError) as exc_info:
            await supervisor.send(JID, "Olá")
        assert exc_info.value.message == "WhatsApp não está conectado"

    @pytest.mark.asyncio
    async def test_send_before_open_is_rejected(self, make_supervisor):
        supervisor = make_supervisor()
        await supervisor.start()

        with pytest.raises(NotConnectedError):
            await supervisor.send(JID, "Olá")
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_send_when_connected(self, make_supervisor, transport):
        supervisor = make_supervisor()
        await supervisor.start()
        await supervisor.handle_event(ConnectionUpdate(connection="open"))

        await supervisor.send(JID, "Olá")

        assert transport.sessions[0].sent == [(JID, "Olá")]
        await supervisor.shutdown()
