"""
Discovery Service - find local businesses on directory sites.

Components:
- Sources: directory adapters (sources/)
- Resolution: merge sightings into deduplicated businesses (resolution.py)
- Rate gate: pacing and circuit breaker per source (rate_gate.py)
- Checkpoint: durable progress and pause/stop control (checkpoint.py)
- Scheduler: round-robin chunked orchestration (scheduler.py)

Usage:
    from services.discovery import PipelineConfig, EntityResolver
    from services.discovery.scheduler import Orchestrator

    resolver = EntityResolver()
    entity, created = resolver.add(record, region_key="AZ")
"""

from services.discovery.config import PipelineConfig
from services.discovery.models import (
    CheckpointState,
    CompanyFacts,
    Contact,
    Entity,
    RawRecord,
    WorkUnit,
)
from services.discovery.resolution import EntityResolver
from services.discovery.rate_gate import RateGate, SourceSkipped
from services.discovery.checkpoint import CheckpointStore, FileJobControl, JobControl

__all__ = [
    "PipelineConfig",
    "CheckpointState",
    "CompanyFacts",
    "Contact",
    "Entity",
    "RawRecord",
    "WorkUnit",
    "EntityResolver",
    "RateGate",
    "SourceSkipped",
    "CheckpointStore",
    "FileJobControl",
    "JobControl",
]
