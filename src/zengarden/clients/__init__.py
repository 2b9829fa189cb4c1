"""Remote service clients: generation relay, object storage, NFT minter."""

from zengarden.clients.base import (
    ConfigurationError,
    GeneratedFlower,
    GeneratedImage,
    Generator,
    GeneratorError,
    Minter,
    MintError,
    MintResult,
    ObjectStorage,
)
from zengarden.clients.generator import RelayGenerator, generate_flower
from zengarden.clients.minter import EvmMinter
from zengarden.clients.storage import R2Storage

__all__ = [
    "ConfigurationError",
    "EvmMinter",
    "GeneratedFlower",
    "GeneratedImage",
    "Generator",
    "GeneratorError",
    "MintError",
    "MintResult",
    "Minter",
    "ObjectStorage",
    "R2Storage",
    "RelayGenerator",
    "generate_flower",
]
