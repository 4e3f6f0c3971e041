"""Tests for the generation client factory."""

import pytest

from models.enums import GenerationBackend
from providers.registry import create_generation_client
from providers.simulated import SimulatedGenerationClient
from providers.veo import VeoGenerationClient


def test_creates_simulated_client_with_options():
    client = create_generation_client("simulated", progress_step=10)

    assert isinstance(client, SimulatedGenerationClient)
    assert client.progress_step == 10
    assert client.backend_name == "simulated"


@pytest.mark.asyncio
async def test_creates_veo_client():
    client = create_generation_client(GenerationBackend.VEO, api_key="k", base_url="https://veo.test")

    assert isinstance(client, VeoGenerationClient)
    assert client.backend_name == "veo"
    await client.aclose()


def test_unknown_backend_raises():
    with pytest.raises(ValueError, match="Unknown generation backend"):
        create_generation_client("sora")
