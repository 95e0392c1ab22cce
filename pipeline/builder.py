"""Assemble the transaction pipeline from settings"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from config import Settings
from core.exceptions import ExportError
from core.interfaces import BatchWriterFn, CategorizeFn, ContextLookupFn
from core.logging_config import get_logger
from llm.client import LLMClient
from orchestrator import PipelineOrchestrator
from stages.s1_cleaning import DescriptionCleaner
from stages.s2_enrichment import EmailEnricher, GraphEmailSearch, no_email_lookup
from stages.s3_categorization import Categorizer, LLMCategorizer, unavailable_categorizer
from stages.s4_export import CsvBatchWriter
from ui.progress import ProgressTracker

from .sink import BufferedSink
from .stage import Stage

logger = get_logger(__name__)


def build_stages(
    settings: Settings,
    categorize: CategorizeFn,
    email_lookup: ContextLookupFn,
    writer: BatchWriterFn,
) -> List[Stage]:
    """Cleaning -> enrichment -> categorization -> export"""
    options = {
        "capacity": settings.STAGE_QUEUE_CAPACITY,
        "grace_period": settings.STAGE_GRACE_PERIOD,
    }
    return [
        Stage.from_transform(DescriptionCleaner(), concurrency=settings.STAGE_CONCURRENCY, **options),
        Stage.from_transform(EmailEnricher(email_lookup), concurrency=settings.STAGE_CONCURRENCY, **options),
        Stage.from_transform(
            Categorizer(categorize),
            concurrency=settings.categorizer_concurrency,
            **options
        ),
        BufferedSink(
            "Export",
            writer,
            batch_size=settings.EXPORT_BUFFER_SIZE,
            flush_interval=settings.EXPORT_FLUSH_INTERVAL,
            **options
        ),
    ]


@asynccontextmanager
async def transaction_pipeline(
    settings: Settings,
    progress: Optional[ProgressTracker] = None,
    *,
    categorize: Optional[CategorizeFn] = None,
    email_lookup: Optional[ContextLookupFn] = None,
    writer: Optional[BatchWriterFn] = None,
) -> AsyncIterator[PipelineOrchestrator]:
    """
    Yield a ready-to-run orchestrator and release its resources afterwards

    Collaborators left as None are built from settings: the LLM categorizer
    when an API key is configured, Graph email search when credentials are
    configured, and a CSV writer under OUTPUT_DIR.
    """
    closers = []

    if email_lookup is None:
        if settings.email_enrichment_enabled:
            search = GraphEmailSearch(
                tenant_id=settings.GRAPH_TENANT_ID,
                client_id=settings.GRAPH_CLIENT_ID,
                client_secret=settings.GRAPH_CLIENT_SECRET,
                mailbox=settings.GRAPH_MAILBOX,
                search_days=settings.EMAIL_SEARCH_DAYS,
                timeout=settings.SOURCE_TIMEOUT,
            )
            closers.append(search.aclose)
            email_lookup = search
        else:
            logger.info("email_enrichment_disabled")
            email_lookup = no_email_lookup

    if categorize is None:
        if any([settings.OPENAI_API_KEY, settings.ANTHROPIC_API_KEY, settings.GOOGLE_API_KEY]):
            categorize = LLMCategorizer(LLMClient(settings))
        else:
            logger.warning("llm_categorization_disabled", reason="no API key configured")
            categorize = unavailable_categorizer

    if writer is None:
        writer = CsvBatchWriter(settings.get_output_path(), settings.EXPORT_FILE_NAME_FORMAT)

    orchestrator = PipelineOrchestrator(
        build_stages(settings, categorize, email_lookup, writer),
        progress,
        grace_period=settings.STAGE_GRACE_PERIOD,
        final_flush_timeout=settings.FINAL_FLUSH_TIMEOUT,
    )
    try:
        yield orchestrator
    finally:
        for stage in orchestrator.stages[:-1]:
            await stage.aclose()
        try:
            await orchestrator.sink.aclose()
        except ExportError as e:
            logger.error("sink_close_failed", error=str(e), buffered=orchestrator.sink.buffered)
        for close in closers:
            await close()
