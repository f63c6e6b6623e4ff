"""
Test doubles: a scripted advertisement source and an in-process fake CSE
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from aiohttp import web

from config_loader import _apply_defaults
from discovery import Advertisement, AdvertisementSource
from errors import DiscoveryInitError


def make_config(cse_port: int = 8080, **overrides) -> Dict[str, Any]:
    """Build a fully defaulted config pointing at a local CSE"""
    config = {
        'cse': {'host': '127.0.0.1', 'port': cse_port, 'request_timeout': 2},
        'discovery': {'timeout_seconds': 0.5, 'close_grace_seconds': 0.2},
        'api': {'enabled': False},
        'logging': {'file': None, 'console_output': False},
    }
    for dotted, value in overrides.items():
        section, key = dotted.split('__', 1)
        config.setdefault(section, {})[key] = value
    return _apply_defaults(config)


class ScriptedSource(AdvertisementSource):
    """Plays a fixed list of advertisements, optionally spaced out in time"""

    def __init__(self, advertisements: List[Advertisement], delay: float = 0.0,
                 finish: bool = True, fail: bool = False, teardown_delay: float = 0.0):
        super().__init__()
        self.advertisements = advertisements
        self.delay = delay
        self.finish_stream = finish
        self.fail = fail
        self.teardown_delay = teardown_delay
        self.teardown_calls = 0
        self._task: Optional[asyncio.Task] = None

    async def start(self, service_type: str) -> None:
        if self.fail:
            raise DiscoveryInitError("resolver unavailable")
        self._task = asyncio.ensure_future(self._play())

    async def _play(self):
        for advertisement in self.advertisements:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.offer(advertisement)
        if self.finish_stream:
            self.finish()

    async def _teardown(self) -> None:
        self.teardown_calls += 1
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self.teardown_delay:
            await asyncio.sleep(self.teardown_delay)


class FakeCSE:
    """Minimal oneM2M CSE: entities, containers and content instances in memory"""

    def __init__(self, namespace: str = "m2m"):
        self.namespace = namespace
        self.entities: List[str] = []
        self.containers: List[str] = []
        self.instances: Dict[str, List[Any]] = {}
        self.requests: List[Dict[str, Any]] = []

        # Forced status codes, None means normal behaviour
        self.entity_status: Optional[int] = None
        self.container_status: Optional[int] = None
        self.write_status: Optional[int] = None
        self.latest_body: Optional[str] = None
        self.latest_status: Optional[int] = None

        self.port: Optional[int] = None
        self.app = web.Application()
        self.app.router.add_post('/cse-in', self._register_entity)
        self.app.router.add_get('/cse-in', self._discover)
        self.app.router.add_post('/cse-in/{entity}', self._register_container)
        self.app.router.add_post('/cse-in/{entity}/{container}', self._write_instance)
        self.app.router.add_get('/cse-in/{entity}/{container}/la', self._latest_instance)

    async def _record(self, request: web.Request) -> Any:
        text = await request.text()
        body = json.loads(text) if text else None
        self.requests.append({
            'method': request.method,
            'path': request.path,
            'query': dict(request.query),
            'headers': dict(request.headers),
            'body': body,
        })
        return body

    async def _register_entity(self, request):
        body = await self._record(request)
        if self.entity_status is not None:
            return web.json_response({}, status=self.entity_status)
        name = body[f"{self.namespace}:ae"]["rn"]
        if name in self.entities:
            return web.json_response({"m2m:dbg": "resource already exists"}, status=409)
        self.entities.append(name)
        return web.json_response(body, status=201)

    async def _discover(self, request):
        await self._record(request)
        return web.json_response({"m2m:uril": [f"cse-in/{name}" for name in self.entities]})

    async def _register_container(self, request):
        body = await self._record(request)
        if self.container_status is not None:
            return web.json_response({}, status=self.container_status)
        path = f"{request.match_info['entity']}/{body[f'{self.namespace}:cnt']['rn']}"
        if path in self.containers:
            return web.json_response({}, status=409)
        self.containers.append(path)
        return web.json_response(body, status=201)

    async def _write_instance(self, request):
        body = await self._record(request)
        if self.write_status is not None:
            return web.json_response({}, status=self.write_status)
        path = f"{request.match_info['entity']}/{request.match_info['container']}"
        self.instances.setdefault(path, []).append(body[f"{self.namespace}:cin"]["con"])
        return web.json_response(body, status=201)

    async def _latest_instance(self, request):
        await self._record(request)
        if self.latest_status is not None or self.latest_body is not None:
            return web.Response(text=self.latest_body or "", status=self.latest_status or 200,
                                content_type="application/json")
        path = f"{request.match_info['entity']}/{request.match_info['container']}"
        history = self.instances.get(path)
        if not history:
            return web.json_response({"m2m:dbg": "not found"}, status=404)
        return web.json_response({f"{self.namespace}:cin": {"con": history[-1], "cnf": "text/plain:0"}})
