"""
Generation client factory: maps GenerationBackend to a client instance.

One place knows every backend. The API lifespan calls
create_generation_client(settings.GENERATION_BACKEND) once and shares the
client across all user sessions.
"""

from typing import Union

from models.enums import GenerationBackend
from providers.base import AbstractGenerationClient
from providers.simulated import SimulatedGenerationClient
from providers.veo import VeoGenerationClient


_REGISTRY: dict[GenerationBackend, type[AbstractGenerationClient]] = {
    GenerationBackend.VEO: VeoGenerationClient,
    GenerationBackend.SIMULATED: SimulatedGenerationClient,
}


def create_generation_client(backend: Union[GenerationBackend, str], **kwargs) -> AbstractGenerationClient:
    """
    Create a client for the given backend. kwargs go to the client's constructor:

        create_generation_client("simulated", progress_step=10)
        create_generation_client(GenerationBackend.VEO, api_key="...")
    """
    try:
        backend = GenerationBackend(backend)
    except ValueError:
        raise ValueError(
            f"Unknown generation backend: '{backend}'. "
            f"Available: {[b.value for b in _REGISTRY]}"
        )
    return _REGISTRY[backend](**kwargs)
