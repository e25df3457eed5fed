"""
Processor lookup by job type.

Usage:
    registry = ProcessorRegistry.default()
    processor = registry.get(JobType.TEAM_MATCHING)
"""
from typing import Dict, Iterable, Optional

from tournament_sync.core.errors import ConfigurationError
from tournament_sync.services.sync.processors.base import BaseProcessor
from tournament_sync.services.sync.processors.competition_structure import CompetitionStructureProcessor
from tournament_sync.services.sync.processors.discovery import DiscoveryProcessor
from tournament_sync.services.sync.processors.game_sync import (
    CompetitionGameSyncProcessor, TournamentGameSyncProcessor
)
from tournament_sync.services.sync.processors.team_matching import TeamMatchingProcessor
from tournament_sync.services.sync.processors.tournament_structure import TournamentStructureProcessor
from tournament_sync.services.sync.queue.job_types import JobType, parse_job_type


class ProcessorRegistry:
    """Maps each JobType to the processor instance handling it."""

    def __init__(self, processors: Optional[Iterable[BaseProcessor]] = None):
        self._processors: Dict[JobType, BaseProcessor] = {}
        for processor in processors or ():
            self.register(processor)

    @classmethod
    def default(cls) -> "ProcessorRegistry":
        """Registry holding one processor per job type."""
        return cls([
            DiscoveryProcessor(),
            CompetitionStructureProcessor(),
            TournamentStructureProcessor(),
            CompetitionGameSyncProcessor(),
            TournamentGameSyncProcessor(),
            TeamMatchingProcessor(),
        ])

    def register(self, processor: BaseProcessor) -> None:
        self._processors[parse_job_type(processor.job_type)] = processor

    def get(self, job_type) -> BaseProcessor:
        """
        Processor for a job type.

        Raises:
            UnknownJobTypeError: job_type is not a JobType value
            ConfigurationError: no processor registered for it
        """
        key = parse_job_type(job_type)
        if key not in self._processors:
            raise ConfigurationError(
                f"No processor registered for {key.value}. Available: {[t.value for t in self._processors]}"
            )
        return self._processors[key]

    def __contains__(self, job_type) -> bool:
        try:
            return parse_job_type(job_type) in self._processors
        except ConfigurationError:
            return False

    def __len__(self) -> int:
        return len(self._processors)
