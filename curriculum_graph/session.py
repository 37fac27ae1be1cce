"""
Curriculum session - owns one graph instance for the life of a session.

The graph is created with the session and handed to consumers explicitly.
Starting a new session clears it.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from .models import ExtractionMethod, LegacyPrerequisites
from .services.migration import MigrationResult, PrerequisiteMigrator
from .storage.graph import GraphStore
from .storage.persistence import load_snapshot, save_snapshot


logger = logging.getLogger(__name__)


class CurriculumSession:
    """
    Per-session state: the curriculum graph, any legacy prerequisite lists
    that have not been migrated yet, and the migration guard flag.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        prerequisites: Optional[LegacyPrerequisites] = None,
        extraction_method: ExtractionMethod = ExtractionMethod.AI_EXTRACTED,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.graph = GraphStore(extraction_method=extraction_method)
        self.prerequisites = prerequisites or LegacyPrerequisites()
        self.prerequisites_migrated = False

    def migrate_prerequisites(self) -> MigrationResult:
        """Move legacy prerequisite lists into the graph (runs once)."""
        return PrerequisiteMigrator().migrate(self)

    def reset(self, session_id: Optional[str] = None) -> None:
        """Start a new session: clear the graph and all prerequisite state."""
        previous = self.session_id
        self.session_id = session_id or str(uuid.uuid4())
        self.graph.reset()
        self.prerequisites = LegacyPrerequisites()
        self.prerequisites_migrated = False
        logger.info(f"Session {previous} reset as {self.session_id}")

    def save(self, path: str | Path) -> Path:
        return save_snapshot(self, path)

    @classmethod
    def load(cls, path: str | Path) -> "CurriculumSession":
        return load_snapshot(path)
