# tests/unit/generation/test_unit_base_gateway.py — v2
"""Tests for generation/base_gateway.py — timeout and failure wrapping."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from analysiscache.cache.errors import GenerationFailure
from analysiscache.generation.base_gateway import BaseGenerationGateway, generate_with_timeout
from analysiscache.generation.models import GenerationRequest

REQUEST = GenerationRequest(kind="input_analysis", owner_id="u1", modality="text", content="zinc")


class ScriptedGateway(BaseGenerationGateway):
    def __init__(self, payload=None, error=None, delay_s=0.0):
        self.payload = payload or {"productName": "Creatine"}
        self.error = error
        self.delay_s = delay_s
        self.requests = []

    @property
    def calls(self):
        return len(self.requests)

    async def generate(self, request):
        self.requests.append(request)
        await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.payload


class ListGateway(BaseGenerationGateway):
    async def generate(self, request):
        return ["not", "a", "dict"]


class InnerTimeoutGateway(BaseGenerationGateway):
    async def generate(self, request):
        raise asyncio.TimeoutError("upstream read timeout")


class TestBaseGenerationGateway:
    def test_is_abstract(self):
        with pytest.raises(TypeError):
            BaseGenerationGateway()  # type: ignore[abstract]

    def test_gateway_name_defaults_to_class(self):
        assert ScriptedGateway().gateway_name == "ScriptedGateway"


class TestGenerateWithTimeout:
    @pytest.mark.asyncio
    async def test_success(self):
        gw = ScriptedGateway(payload={"productName": "Zinc"})
        assert await generate_with_timeout(gw, REQUEST, 1.0) == {"productName": "Zinc"}
        assert gw.requests == [REQUEST]

    @pytest.mark.asyncio
    async def test_no_timeout(self):
        gw = ScriptedGateway()
        assert await generate_with_timeout(gw, REQUEST, None)

    @pytest.mark.asyncio
    async def test_timeout(self):
        gw = ScriptedGateway(delay_s=1.0)
        with pytest.raises(GenerationFailure, match="timed out") as exc_info:
            await generate_with_timeout(gw, REQUEST, 0.01)
        assert exc_info.value.reason == "timeout"
        assert exc_info.value.timeout_s == 0.01
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_gateway_exception(self):
        gw = ScriptedGateway(error=ConnectionError("upstream 503"))
        with pytest.raises(GenerationFailure, match="upstream 503") as exc_info:
            await generate_with_timeout(gw, REQUEST, 1.0)
        assert exc_info.value.reason == "error"
        assert gw.calls == 1

    @pytest.mark.asyncio
    async def test_mocked_gateway_called_once(self):
        gw = MagicMock(spec=BaseGenerationGateway)
        gw.gateway_name = "mock"
        gw.generate = AsyncMock(return_value={"productName": "Zinc"})
        assert await generate_with_timeout(gw, REQUEST, 1.0) == {"productName": "Zinc"}
        gw.generate.assert_awaited_once_with(REQUEST)

    @pytest.mark.asyncio
    async def test_non_dict_payload(self):
        with pytest.raises(GenerationFailure, match="expected dict"):
            await generate_with_timeout(ListGateway(), REQUEST, 1.0)

    @pytest.mark.asyncio
    async def test_gateway_timeout_without_deadline_is_error(self):
        with pytest.raises(GenerationFailure, match="upstream read timeout") as exc_info:
            await generate_with_timeout(InnerTimeoutGateway(), REQUEST, None)
        assert exc_info.value.reason == "error"
        assert exc_info.value.timeout_s is None

    @pytest.mark.asyncio
    async def test_gateway_timeout_within_deadline_is_error(self):
        with pytest.raises(GenerationFailure) as exc_info:
            await generate_with_timeout(InnerTimeoutGateway(), REQUEST, 5.0)
        assert exc_info.value.reason == "error"
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)


class TestGenerationFailureMessage:
    def test_timeout_with_deadline(self):
        assert str(GenerationFailure("timeout", "x", timeout_s=2.0)) == "Generation timed out after 2.0s"

    def test_timeout_without_deadline(self):
        assert str(GenerationFailure("timeout", "x")) == "Generation timed out"
