"""
Companion Memory - long-term memory for AI companions

Extracts facts from conversation, retrieves them by semantic similarity,
ages them over time and shares important ones between companion personas.
"""

from .aging import ConsolidationScheduler, MemoryAgingEngine
from .config import MemoryConfig, load_memory_config
from .embedding import EmbeddingService
from .exceptions import (
    MemoryNotFoundError,
    MemorySystemError,
    NoEligibleRecipientsError,
    SharingError,
    StorageError,
)
from .export import MemoryNetworkExporter
from .extraction import MemoryExtractor
from .fuzziness import Fuzzifier
from .memory_service import MemoryService, MemoryServiceInterface
from .models import (
    ConnectionType,
    ExtractedFact,
    Memory,
    MemoryType,
    PermissionLevel,
    PersonaRelationship,
    RetrievalResult,
    SharedMemory,
)
from .network import PersonaGraph
from .retrieval import MemoryRetriever
from .sharing import SharedMemoryNetwork

__all__ = [
    "ConnectionType",
    "ConsolidationScheduler",
    "EmbeddingService",
    "ExtractedFact",
    "Fuzzifier",
    "Memory",
    "MemoryAgingEngine",
    "MemoryConfig",
    "MemoryExtractor",
    "MemoryNetworkExporter",
    "MemoryNotFoundError",
    "MemoryRetriever",
    "MemoryService",
    "MemoryServiceInterface",
    "MemorySystemError",
    "MemoryType",
    "NoEligibleRecipientsError",
    "PermissionLevel",
    "PersonaGraph",
    "PersonaRelationship",
    "RetrievalResult",
    "SharedMemory",
    "SharedMemoryNetwork",
    "SharingError",
    "StorageError",
    "load_memory_config",
]
