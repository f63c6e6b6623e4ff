"""
Protocol client tests against an in-process fake CSE.
"""

import socket

import pytest

from discovery import Endpoint
from helpers import make_config
from onem2m import OneM2MClient, RegistrationOutcome


def _client(port, **overrides):
    return OneM2MClient(make_config(cse_port=port, **overrides)['cse'])


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


LAMP = Endpoint("lamp-1", "127.0.0.1", 8081)


class TestRegistration:
    @pytest.mark.asyncio
    async def test_entity_twice_created_then_already_exists(self, fake_cse):
        async with _client(fake_cse.port) as client:
            first = await client.register_entity()
            second = await client.register_entity()

        assert first is RegistrationOutcome.CREATED
        assert second is RegistrationOutcome.ALREADY_EXISTS
        assert first.ok and second.ok

    @pytest.mark.asyncio
    async def test_entity_request_shape(self, fake_cse):
        async with _client(fake_cse.port) as client:
            await client.register_entity()

        request = fake_cse.requests[0]
        assert request['method'] == "POST"
        assert request['path'] == "/cse-in"
        assert request['headers']['X-M2M-Origin'] == "CAdmin3"
        assert request['headers']['X-M2M-RVI'] == "3"
        assert request['headers']['X-M2M-RI']
        assert request['headers']['Content-Type'] == "application/json;ty=2"
        assert request['headers']['Accept'] == "application/json"
        assert request['body'] == {
            "m2m:ae": {"rn": "Notebook-AE", "api": "NnotebookAE", "rr": True, "srv": ["3"]}
        }

    @pytest.mark.asyncio
    async def test_request_ids_are_unique(self, fake_cse):
        async with _client(fake_cse.port) as client:
            await client.register_entity()
            await client.register_entity()

        ids = {r['headers']['X-M2M-RI'] for r in fake_cse.requests}
        assert len(ids) == 2

    @pytest.mark.asyncio
    async def test_entity_forbidden_is_degraded_success(self, fake_cse):
        fake_cse.entity_status = 403
        async with _client(fake_cse.port) as client:
            outcome = await client.register_entity()

        assert outcome is RegistrationOutcome.FORBIDDEN
        assert outcome.usable and not outcome.ok

    @pytest.mark.asyncio
    async def test_entity_unexpected_status_fails(self, fake_cse):
        fake_cse.entity_status = 500
        async with _client(fake_cse.port) as client:
            assert await client.register_entity() is RegistrationOutcome.FAILED

    @pytest.mark.asyncio
    async def test_connection_refused_is_failure_not_exception(self):
        async with _client(_free_port()) as client:
            assert await client.register_entity() is RegistrationOutcome.FAILED
            assert await client.entity_exists() is False
            assert await client.register_container() is RegistrationOutcome.FAILED

    @pytest.mark.asyncio
    async def test_entity_exists_substring_match(self, fake_cse):
        async with _client(fake_cse.port) as client:
            assert await client.entity_exists() is False
            await client.register_entity()
            assert await client.entity_exists() is True

        lookup = fake_cse.requests[0]
        assert lookup['method'] == "GET"
        assert lookup['query'] == {"fu": "1", "ty": "2"}
        assert "Content-Type" not in lookup['headers']

    @pytest.mark.asyncio
    async def test_container_409_is_success(self, fake_cse):
        async with _client(fake_cse.port) as client:
            assert await client.register_container() is RegistrationOutcome.CREATED
            assert await client.register_container() is RegistrationOutcome.ALREADY_EXISTS

        request = fake_cse.requests[0]
        assert request['path'] == "/cse-in/Notebook-AE"
        assert request['headers']['Content-Type'] == "application/json;ty=3"
        assert request['body'] == {"m2m:cnt": {"rn": "Container"}}

    @pytest.mark.asyncio
    async def test_container_forbidden_fails(self, fake_cse):
        fake_cse.container_status = 403
        async with _client(fake_cse.port) as client:
            assert await client.register_container() is RegistrationOutcome.FAILED


class TestState:
    @pytest.mark.asyncio
    async def test_write_sends_inverse_of_current_state(self, fake_cse):
        async with _client(fake_cse.port, cse__address_devices_directly=False) as client:
            assert await client.write_state(LAMP, current_state=False) is True
            assert await client.write_state(LAMP, current_state=True) is True

        assert fake_cse.instances["Notebook-AE/Container"] == [True, False]
        request = fake_cse.requests[0]
        assert request['path'] == "/cse-in/Notebook-AE/Container"
        assert request['headers']['Content-Type'] == "application/json;ty=4"
        assert request['body'] == {"m2m:cin": {"con": True, "cnf": "text/plain:0"}}

    @pytest.mark.asyncio
    async def test_write_rejected_status(self, fake_cse):
        fake_cse.write_status = 400
        async with _client(fake_cse.port, cse__address_devices_directly=False) as client:
            assert await client.write_state(LAMP, current_state=False) is False

    @pytest.mark.asyncio
    async def test_read_latest_instance(self, fake_cse):
        fake_cse.instances["Notebook-AE/Container"] = [False, "True"]
        async with _client(fake_cse.port, cse__address_devices_directly=False) as client:
            result = await client.read_state(LAMP)

        assert result.ok and result.state is True
        assert fake_cse.requests[0]['path'] == "/cse-in/Notebook-AE/Container/la"

    @pytest.mark.asyncio
    async def test_read_non_200_is_not_ok(self, fake_cse):
        async with _client(fake_cse.port, cse__address_devices_directly=False) as client:
            result = await client.read_state(LAMP)
        assert result.ok is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["{}", "not json", '{"m2m:cin": {"cnf": "text/plain:0"}}'])
    async def test_read_unparseable_body_is_not_ok(self, fake_cse, body):
        fake_cse.latest_body = body
        async with _client(fake_cse.port, cse__address_devices_directly=False) as client:
            result = await client.read_state(LAMP)
        assert result.ok is False
        assert result.error

    @pytest.mark.asyncio
    async def test_devices_addressed_directly_by_default(self, fake_cse):
        device = Endpoint("lamp-1", "127.0.0.1", fake_cse.port)
        fake_cse.instances["Notebook-AE/Container"] = [True]
        # The CSE host points nowhere: the read must go to the device itself
        async with _client(_free_port()) as client:
            assert client.device_base_url(device) == f"http://127.0.0.1:{fake_cse.port}/cse-in"
            result = await client.read_state(device)
        assert result.ok and result.state is True
