"""Pipeline — wires the store, classifier and orchestrator together for the CLI."""

from __future__ import annotations

import logging

from lpmail.agent.ingest import EmailIngestor
from lpmail.config import PipelineConfig
from lpmail.processing.classifier import IntentClassifier
from lpmail.processing.orchestrator import Classifier, ParsingOrchestrator
from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


class Pipeline:
    """Owns one EmailStore and the orchestrator built on top of it.

    The store and orchestrator are public attributes so commands can hand
    them straight to reparse and ingestion helpers.

    Usage::

        pipeline = Pipeline.from_config(PipelineConfig.from_env())
        try:
            ...
        finally:
            pipeline.close()
    """

    def __init__(
        self,
        store: EmailStore,
        config: PipelineConfig,
        classifier: Classifier | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.orchestrator = ParsingOrchestrator(store, classifier=classifier, config=config)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> Pipeline:
        """Open the configured database; attach Haiku only when a key is set."""
        classifier = IntentClassifier(config.anthropic_api_key) if config.ai_enabled else None
        if classifier is None:
            logger.info("ANTHROPIC_API_KEY not set, AI parsing disabled")
        return cls(EmailStore(config.db_path), config, classifier)

    def ingestor(self, use_ai: bool | None = None) -> EmailIngestor:
        if use_ai is None:
            use_ai = self.config.use_ai_on_ingest
        return EmailIngestor(self.store, self.orchestrator, use_ai=use_ai)

    def close(self) -> None:
        """Release the database connection."""
        self.store.close()
