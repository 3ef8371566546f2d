"""
Tests for LocalServer httpx Integration

Tests answering httpx traffic including:
- Sync and async clients through the activation hook
- JSON, text, file and empty bodies
- Header and body phase failures
- Mountable transports with fall-through
- Blocking unmatched requests
- Hook installation and removal
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from localserver import (
    BasicResponseProvider,
    Header,
    HeaderPhaseFailure,
    LocalServer,
    LocalServerConfig,
    LocalServerError,
    NetworkAccessBlocked,
    ResponseHead,
    ResponseProvider,
    Timing,
)
from localserver.transport import (
    AsyncLocalServerTransport,
    AsyncResponseCollector,
    LocalServerTransport,
    run_coroutine_sync,
)

PERSON_URL = 'https://int.example.com/persons/123'


def passthrough_handler(request):
    return httpx.Response(200, text='from network')


class UpstreamCancelledProvider(ResponseProvider):
    """Provider whose header awaits an upstream operation that was cancelled."""

    def can_handle(self, request):
        return True

    async def header(self, request):
        future = asyncio.get_running_loop().create_future()
        future.cancel()
        await future
        return ResponseHead(str(request.url), 200)

    async def body(self, request):
        return b''


class TestSyncClient:
    """Test the sync httpx client through the activation hook."""

    def test_json_body(self, local_server):
        BasicResponseProvider.json(r'https://.*/persons/.*', {'name': 'Jhon', 'age': 31}).add_to_local_server()

        response = httpx.get(PERSON_URL)

        assert response.status_code == 200
        assert response.json() == {'name': 'Jhon', 'age': 31}
        assert response.headers['Content-Type'] == 'application/json'

    def test_string_body(self, local_server):
        local_server.add(BasicResponseProvider(r'https://.*/persons/.*', body='{"name": "Jhon"}'))

        response = httpx.get(PERSON_URL)

        assert json.loads(response.text) == {'name': 'Jhon'}

    def test_file_body(self, local_server, tmp_path):
        path = tmp_path / 'person.json'
        path.write_text('{"name": "Jhon", "age": 31}')
        local_server.add(BasicResponseProvider(r'.*', body=path))

        response = httpx.get(PERSON_URL)

        assert response.json()['age'] == 31

    def test_status_without_body(self, local_server):
        """Test a 404 provider without body gives an empty response."""
        local_server.add(BasicResponseProvider(r'https://.*/baseball', header=404))

        response = httpx.get('https://int.example.com/baseball')

        assert response.status_code == 404
        assert response.content == b''

    def test_custom_headers(self, local_server):
        local_server.add(BasicResponseProvider(r'.*', header=Header(201, {'X-Mock': 'yes'})))

        response = httpx.post(PERSON_URL, json={'name': 'Jhon'})

        assert response.status_code == 201
        assert response.headers['X-Mock'] == 'yes'

    def test_header_error(self, local_server):
        """Test the configured error object reaches the caller unchanged."""
        error = httpx.ConnectError('Not connected to the internet')
        local_server.add(BasicResponseProvider(r'https://.*/horse', header=error))

        with pytest.raises(httpx.ConnectError) as exc_info:
            httpx.get('https://int.example.com/horse')

        assert exc_info.value is error

    def test_body_error_after_status(self, local_server):
        """Test a body failure surfaces on read with the status already known."""
        error = ValueError('body unavailable')
        local_server.add(BasicResponseProvider(r'.*', body=error, header=404))

        with httpx.Client() as client:
            with client.stream('GET', PERSON_URL) as response:
                assert response.status_code == 404
                with pytest.raises(ValueError) as exc_info:
                    response.read()

        assert exc_info.value is error

    def test_most_recent_provider_answers(self, local_server):
        local_server.add(BasicResponseProvider(r'https://.*', body='general'))
        local_server.add(BasicResponseProvider(r'https://.*/horse', body='narrow'))

        assert httpx.get('https://int.example.com/horse').text == 'narrow'
        assert httpx.get('https://int.example.com/cow').text == 'general'

    def test_sync_client_inside_event_loop(self, local_server):
        """Test a sync request issued from async code still completes."""
        local_server.add(BasicResponseProvider(r'.*', body='ok'))

        async def scenario():
            return httpx.get(PERSON_URL)

        assert asyncio.run(scenario()).text == 'ok'


class TestAsyncClient:
    """Test the async httpx client through the activation hook."""

    def test_json_body(self, local_server):
        BasicResponseProvider.json(r'https://.*/persons/.*', {'name': 'Jhon'}).add_to_local_server()

        async def scenario():
            async with httpx.AsyncClient() as client:
                return await client.get(PERSON_URL)

        response = asyncio.run(scenario())

        assert response.status_code == 200
        assert response.json() == {'name': 'Jhon'}

    def test_header_error(self, local_server):
        error = httpx.ReadTimeout('The request timed out')
        local_server.add(BasicResponseProvider(r'.*', header=error))

        async def scenario():
            async with httpx.AsyncClient() as client:
                await client.get(PERSON_URL)

        with pytest.raises(httpx.ReadTimeout) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value is error

    def test_body_error_after_status(self, local_server):
        error = ValueError('body unavailable')
        local_server.add(BasicResponseProvider(r'.*', body=error, header=404))

        async def scenario():
            async with httpx.AsyncClient() as client:
                async with client.stream('GET', PERSON_URL) as response:
                    status = response.status_code
                    try:
                        await response.aread()
                    except ValueError as e:
                        return status, e
            return status, None

        status, raised = asyncio.run(scenario())

        assert status == 404
        assert raised is error

    def test_response_returned_before_body_delay(self, local_server):
        """Test the status is available while the body is still delayed."""
        local_server.add(BasicResponseProvider(r'.*', body='slow', timing=Timing(body_delay=0.3)))

        async def scenario():
            loop = asyncio.get_running_loop()
            async with httpx.AsyncClient() as client:
                started = loop.time()
                async with client.stream('GET', PERSON_URL) as response:
                    header_at = loop.time() - started
                    body = await response.aread()
                    body_at = loop.time() - started
            return header_at, body_at, body

        header_at, body_at, body = asyncio.run(scenario())

        assert header_at < 0.2
        assert body_at >= 0.28
        assert body == b'slow'

    def test_abandoned_request_is_cancelled(self, local_server):
        """Test a caller timing out stops the engine."""
        local_server.add(BasicResponseProvider(r'.*', timing=Timing(header_delay=0.3)))

        async def scenario():
            async with httpx.AsyncClient() as client:
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(client.get(PERSON_URL), 0.05)

        asyncio.run(scenario())

        assert local_server.metrics.cancelled == 1
        assert local_server.metrics.completed == 0


class TestMountedTransports:
    """Test transports mounted explicitly on a client."""

    def test_transport_without_start(self, isolated_local_server):
        """Test an explicit transport answers even if the server is not started."""
        isolated_local_server.add(BasicResponseProvider(r'.*/persons/.*', body='local'))
        transport = LocalServerTransport(isolated_local_server, transport=httpx.MockTransport(passthrough_handler))

        with httpx.Client(transport=transport) as client:
            assert client.get(PERSON_URL).text == 'local'
            assert client.get('https://int.example.com/horse').text == 'from network'

        assert not isolated_local_server.is_active

    def test_async_transport(self, isolated_local_server):
        isolated_local_server.add(BasicResponseProvider(r'.*/persons/.*', body='local'))
        transport = AsyncLocalServerTransport(isolated_local_server, transport=httpx.MockTransport(passthrough_handler))

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                matched = await client.get(PERSON_URL)
                unmatched = await client.get('https://int.example.com/horse')
            return matched.text, unmatched.text

        assert asyncio.run(scenario()) == ('local', 'from network')

    def test_block_unmatched(self):
        server = LocalServer(LocalServerConfig(block_unmatched=True))
        transport = LocalServerTransport(server, transport=httpx.MockTransport(passthrough_handler))

        with httpx.Client(transport=transport) as client:
            with pytest.raises(NetworkAccessBlocked) as exc_info:
                client.get('https://int.example.com/horse')

        assert exc_info.value.url == 'https://int.example.com/horse'

    def test_async_block_unmatched(self):
        server = LocalServer(LocalServerConfig(block_unmatched=True))
        transport = AsyncLocalServerTransport(server, transport=httpx.MockTransport(passthrough_handler))

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                await client.get('https://int.example.com/horse')

        with pytest.raises(NetworkAccessBlocked):
            asyncio.run(scenario())


class TestActivationHook:
    """Test installing and removing the activation hook."""

    def test_unmatched_request_passes_through(self, isolated_local_server):
        """Test unmatched requests reach the original transport."""
        isolated_local_server.add(BasicResponseProvider(r'.*/persons/.*', body='local'))

        with patch.object(httpx.HTTPTransport, 'handle_request', return_value=httpx.Response(204)) as original:
            isolated_local_server.start()
            try:
                assert httpx.get(PERSON_URL).text == 'local'
                original.assert_not_called()

                assert httpx.get('https://int.example.com/horse').status_code == 204
                original.assert_called_once()
            finally:
                isolated_local_server.stop()

    def test_stop_restores_originals(self, isolated_local_server):
        sync_send = httpx.HTTPTransport.handle_request
        async_send = httpx.AsyncHTTPTransport.handle_async_request

        isolated_local_server.start()
        assert httpx.HTTPTransport.handle_request is not sync_send
        isolated_local_server.stop()

        assert httpx.HTTPTransport.handle_request is sync_send
        assert httpx.AsyncHTTPTransport.handle_async_request is async_send

    def test_disabled_stack_not_patched(self):
        server = LocalServer(LocalServerConfig(intercept_httpx=False))
        sync_send = httpx.HTTPTransport.handle_request

        with server:
            assert httpx.HTTPTransport.handle_request is sync_send

    def test_start_is_idempotent(self, isolated_local_server):
        isolated_local_server.start()
        isolated_local_server.start()

        assert isolated_local_server.is_active
        isolated_local_server.stop()
        isolated_local_server.stop()
        assert not isolated_local_server.is_active

    def test_single_active_server(self, local_server):
        """Test a second server cannot intercept while another one does."""
        other = LocalServer()

        with pytest.raises(LocalServerError):
            other.start()

        assert not other.is_active


class TestRunCoroutineSync:
    """Test run_coroutine_sync."""

    def test_without_running_loop(self):
        async def answer():
            return 42

        assert run_coroutine_sync(answer) == 42

    def test_inside_running_loop(self):
        async def answer():
            return 42

        async def scenario():
            return run_coroutine_sync(answer)

        assert asyncio.run(scenario()) == 42


class TestInterruptedProviders:
    """Test providers interrupted by a cancelled operation of their own."""

    def test_async_request_fails_instead_of_waiting(self, isolated_local_server):
        isolated_local_server.add(UpstreamCancelledProvider())
        transport = AsyncLocalServerTransport(isolated_local_server, transport=httpx.MockTransport(passthrough_handler))

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                await asyncio.wait_for(client.get(PERSON_URL), 1.0)

        with pytest.raises(HeaderPhaseFailure):
            asyncio.run(scenario())

        assert isolated_local_server.metrics.failed == 1

    def test_sync_request_fails_with_header_failure(self, isolated_local_server):
        isolated_local_server.add(UpstreamCancelledProvider())
        transport = LocalServerTransport(isolated_local_server, transport=httpx.MockTransport(passthrough_handler))

        with httpx.Client(transport=transport) as client:
            with pytest.raises(HeaderPhaseFailure):
                client.get(PERSON_URL)

    def test_waiters_released_when_engine_ends(self):
        """Test a finished engine never leaves the header awaitable pending."""
        async def scenario():
            collector = AsyncResponseCollector()
            collector.engine_finished(None)
            with pytest.raises(LocalServerError):
                await collector.header()

        asyncio.run(scenario())


class TestNestedInterception:
    """Test a mounted transport used while the activation hook is installed."""

    def test_sync_unmatched_request_resolved_once(self, isolated_local_server):
        with patch.object(httpx.HTTPTransport, 'handle_request', return_value=httpx.Response(204)) as original:
            isolated_local_server.start()
            try:
                with httpx.Client(transport=LocalServerTransport(isolated_local_server)) as client:
                    response = client.get('https://int.example.com/horse')
            finally:
                isolated_local_server.stop()

        assert response.status_code == 204
        original.assert_called_once()
        assert isolated_local_server.metrics.total_requests == 1
        assert isolated_local_server.metrics.unmatched_requests == 1

    def test_async_unmatched_request_resolved_once(self, isolated_local_server):
        async def scenario():
            async with httpx.AsyncClient(transport=AsyncLocalServerTransport(isolated_local_server)) as client:
                return await client.get('https://int.example.com/horse')

        with patch.object(
            httpx.AsyncHTTPTransport,
            'handle_async_request',
            new_callable=AsyncMock,
            return_value=httpx.Response(204)
        ) as original:
            isolated_local_server.start()
            try:
                response = asyncio.run(scenario())
            finally:
                isolated_local_server.stop()

        assert response.status_code == 204
        original.assert_awaited_once()
        assert isolated_local_server.metrics.total_requests == 1
