#!/usr/bin/env python3
import os
import sys
import hmac
import json
import time
import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from zoneinfo import ZoneInfo

from feed_digest.models.content import EnrichedRecord
from feed_digest.services.ai_service import AIService, AIServiceError
from feed_digest.services.article_store import ArticleStore, StoreError
from feed_digest.services.content_extraction import ContentExtractionService
from feed_digest.services.deduplication_service import DeduplicationService, dedupe_batch
from feed_digest.services.email_service import EmailConfig, EmailService
from feed_digest.services.feed_registry import RECENCY_EXEMPT_SOURCES, all_sources
from feed_digest.services.rss import RSSService
from feed_digest.services.scrapers import RedditService, ScraperService
from feed_digest.services.source_ranking_service import SourceRankingService, order_by_recency
from feed_digest.services.summarization_service import SummarizationService
from feed_digest.services.synthesis_service import DigestIntroService
from feed_digest.pipeline.content_aggregator import ContentAggregator, filter_recent
from feed_digest.pipeline.email_compiler import EmailCompiler
from feed_digest.pipeline.quota_validator import DailyUsage, partition_by_budget
from feed_digest.utils.logging_config import PerformanceTracker, log_pipeline_metrics, setup_logging


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Pipeline configuration"""
    gemini_api_key: str = ""
    gemini_model: Optional[str] = None

    # Email settings
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    smtp_use_tls: bool = True
    recipient_email: Optional[str] = None

    # Budget
    daily_ai_limit: int = 50
    max_ai_per_run: int = 20

    # Selection
    recency_window_hours: float = 24
    summary_batch_size: int = 5
    intro_top_n: int = 15
    feed_timeout_seconds: float = 10
    include_reddit: bool = True
    scoring_config_path: Optional[str] = None

    # Paths
    database_path: str = "data/articles.db"
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Timing
    timezone: str = "UTC"
    run_at: dt_time = dt_time(6, 0)

    # Access
    cron_secret: Optional[str] = None
    archive_url: Optional[str] = None

    dry_run: bool = False

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build configuration from environment variables (after .env is loaded)."""
        run_at = os.getenv("RUN_AT", "06:00")
        hour, _, minute = run_at.partition(":")
        smtp_user = os.getenv("SMTP_USER", "")
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL") or None,
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=smtp_user,
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            from_email=os.getenv("FROM_EMAIL", smtp_user),
            smtp_use_tls=_env_bool("SMTP_USE_TLS", "true"),
            recipient_email=os.getenv("DIGEST_RECIPIENT_EMAIL") or None,
            daily_ai_limit=int(os.getenv("DAILY_AI_LIMIT", "50")),
            max_ai_per_run=int(os.getenv("MAX_AI_PER_RUN", "20")),
            recency_window_hours=float(os.getenv("RECENCY_WINDOW_HOURS", "24")),
            summary_batch_size=int(os.getenv("SUMMARY_BATCH_SIZE", "5")),
            intro_top_n=int(os.getenv("INTRO_TOP_N", "15")),
            feed_timeout_seconds=float(os.getenv("FEED_TIMEOUT_SECONDS", "10")),
            include_reddit=_env_bool("INCLUDE_REDDIT", "true"),
            scoring_config_path=os.getenv("SCORING_CONFIG_PATH") or None,
            database_path=os.getenv("DATABASE_PATH", "data/articles.db"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            timezone=os.getenv("DIGEST_TIMEZONE", "UTC"),
            run_at=dt_time(int(hour), int(minute or 0)),
            cron_secret=os.getenv("CRON_SECRET") or None,
            archive_url=os.getenv("DASHBOARD_URL") or None,
            dry_run=_env_bool("DRY_RUN"),
        )


@dataclass
class PipelineServices:
    """Every collaborator a run needs, built once and passed in."""
    aggregator: ContentAggregator
    deduplicator: DeduplicationService
    ranker: SourceRankingService
    summarizer: SummarizationService
    intro: DigestIntroService
    store: ArticleStore
    compiler: EmailCompiler
    email: Optional[EmailService] = None


def build_services(config: PipelineConfig) -> PipelineServices:
    store = ArticleStore(config.database_path)
    try:
        ai = AIService(api_key=config.gemini_api_key, model=config.gemini_model)
    except (ValueError, AIServiceError) as e:
        raise PipelineError(f"Failed to initialize AI service: {e}") from e

    email = None
    if config.recipient_email:
        email = EmailService(EmailConfig(
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port,
            smtp_user=config.smtp_user,
            smtp_password=config.smtp_password,
            from_email=config.from_email,
            use_tls=config.smtp_use_tls,
        ))

    return PipelineServices(
        aggregator=ContentAggregator(
            sources=all_sources(include_reddit=config.include_reddit),
            rss_service=RSSService(timeout=config.feed_timeout_seconds),
            scraper_service=ScraperService(timeout=config.feed_timeout_seconds),
            reddit_service=RedditService(timeout=config.feed_timeout_seconds),
            source_timeout=config.feed_timeout_seconds * 3,
        ),
        deduplicator=DeduplicationService(store),
        ranker=SourceRankingService(config_path=config.scoring_config_path),
        summarizer=SummarizationService(
            ai,
            ContentExtractionService(timeout=config.feed_timeout_seconds),
            batch_size=config.summary_batch_size,
        ),
        intro=DigestIntroService(ai, top_n=config.intro_top_n),
        store=store,
        compiler=EmailCompiler(timezone=config.timezone, archive_url=config.archive_url),
        email=email,
    )


class RunStage(Enum):
    FETCH = "fetch"
    FILTER_DEDUPE = "filter_dedupe"
    BUDGET_CHECK = "budget_check"
    SCORE_RANK = "score_rank"
    PARTITION = "partition"
    ENRICH = "enrich"
    SAVE_BASIC = "save_basic"
    SAVE_ENRICHED = "save_enriched"
    GENERATE_INTRO = "generate_intro"
    SEND_EMAIL = "send_email"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    success: bool
    total_new: int = 0
    ai_processed: int = 0
    saved_without_ai: int = 0
    daily_usage: Optional[DailyUsage] = None
    duration_ms: int = 0
    log: List[str] = field(default_factory=list)
    stage: RunStage = RunStage.DONE
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "totalNew": self.total_new,
            "aiProcessed": self.ai_processed,
            "savedWithoutAI": self.saved_without_ai,
            "dailyUsage": self.daily_usage.to_dict() if self.daily_usage else None,
            "durationMs": self.duration_ms,
            "log": list(self.log),
        }
        if self.error is not None:
            out["error"] = self.error
        return out


class DigestPipeline:
    """
    Runs one digest: fetch, filter, budget, rank, enrich, save, intro, send.

    Every stage appends a line to the run log. Partial failures degrade data
    inside their stage; anything unexpected ends the run as FAILED with the
    log so far.
    """

    def __init__(self, config: PipelineConfig, services: PipelineServices):
        self.config = config
        self.services = services
        self.tz = ZoneInfo(config.timezone)
        self.logger = logging.getLogger(__name__)

        self.stage = RunStage.FETCH
        self._log: List[str] = []

        self.shutdown_event = asyncio.Event()

    def _note(self, message: str) -> None:
        self._log.append(message)
        self.logger.info(message)

    def _enter(self, stage: RunStage) -> None:
        self.stage = stage
        self.logger.debug(f"Stage: {stage.value}")

    def start_of_today(self) -> datetime:
        now = datetime.now(self.tz)
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    async def run(self) -> RunResult:
        started = time.monotonic()
        self._log = []
        result = RunResult(success=True, log=self._log)
        svc = self.services

        try:
            await svc.store.initialize_db()

            self._enter(RunStage.FETCH)
            self._note("Fetching all sources...")
            with PerformanceTracker("fetch", self.logger) as tracker:
                aggregated = await svc.aggregator.fetch_all()
            log_pipeline_metrics(self.logger, "fetch", len(svc.aggregator.sources), len(aggregated.records), tracker.duration_ms)
            if aggregated.failed:
                self._note(f"{len(aggregated.failed)} source tasks failed: " + ", ".join(r.source for r in aggregated.failed))

            self._enter(RunStage.FILTER_DEDUPE)
            recent = filter_recent(
                aggregated.records,
                window_hours=self.config.recency_window_hours,
                exempt_sources=RECENCY_EXEMPT_SOURCES,
            )
            unique = dedupe_batch(recent)
            self._note(
                f"Found {len(aggregated.records)} articles, {len(recent)} from last "
                f"{self.config.recency_window_hours:g} hours, {len(unique)} unique"
            )
            if not unique:
                self._note("No new articles found")
                return self._finish(result, started)

            outcome = await svc.deduplicator.filter_known(unique)
            self._note(f"{outcome.duplicates} duplicates, {outcome.deleted} deleted, {len(outcome.new)} new")
            result.total_new = len(outcome.new)
            if not outcome.new:
                self._note("No new articles to save")
                return self._finish(result, started)

            self._enter(RunStage.BUDGET_CHECK)
            used_today = await self._count_used_today()
            limit = self.config.daily_ai_limit
            result.daily_usage = DailyUsage(used=used_today, limit=limit, remaining=max(0, limit - used_today))

            self._enter(RunStage.SCORE_RANK)
            ranked = svc.ranker.rank(order_by_recency(outcome.new))

            self._enter(RunStage.PARTITION)
            partition = partition_by_budget(ranked, limit, self.config.max_ai_per_run, used_today)
            self._note(f"AI budget: {used_today}/{limit} used today, {partition.quota} available this run")
            self._note(f"Selected {len(partition.enrich)} for AI, {len(partition.basic)} without AI")

            enriched: List[EnrichedRecord] = []
            if partition.enrich:
                self._enter(RunStage.ENRICH)
                self._note("Extracting full text and generating briefings...")
                enriched = await svc.summarizer.enrich(partition.enrich)
                degraded = svc.summarizer.stats.get("degraded_batches", 0)
                self._note(
                    f"Generated {len(enriched)} AI briefings"
                    + (f" ({degraded} batches degraded)" if degraded else "")
                )
            else:
                self._note("Budget exhausted, skipping enrichment")
            result.ai_processed = len(enriched)

            self._enter(RunStage.SAVE_BASIC)
            if partition.basic:
                basic_stats = await svc.store.save_basic(partition.basic)
                result.saved_without_ai = basic_stats.saved
                self._note(f"Saved {basic_stats.saved} basic articles ({basic_stats.errors} errors)")

            self._enter(RunStage.SAVE_ENRICHED)
            if enriched:
                ai_stats = await svc.store.save_enriched(enriched)
                self._note(f"Saved {ai_stats.saved} AI articles ({ai_stats.errors} errors)")

            used_after = await self._count_used_after_save(used_today + len(enriched) + result.saved_without_ai)
            result.daily_usage = DailyUsage(used=used_after, limit=limit, remaining=max(0, limit - used_after))

            if not enriched:
                self._note("No AI articles to email")
                return self._finish(result, started)

            self._enter(RunStage.GENERATE_INTRO)
            self._note("Generating digest introduction...")
            intro = await svc.intro.generate_intro(enriched)

            self._enter(RunStage.SEND_EMAIL)
            await self._send_digest(enriched, intro)

            return self._finish(result, started)

        except Exception as e:  # noqa: BLE001
            failed_stage = self.stage
            self.logger.error("Digest failed in stage %s: %s", failed_stage.value, e, exc_info=True)
            self._note(f"Error: {e}")
            result.success = False
            result.error = str(e) or type(e).__name__
            result.stage = RunStage.FAILED
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.stage = RunStage.FAILED
            return result

    async def _count_used_today(self) -> int:
        """Rows created since local midnight; an unreadable count is treated as an exhausted budget."""
        try:
            return await self.services.store.count_created_since(self.start_of_today())
        except StoreError as e:
            self._note(f"Could not read today's usage ({e}), skipping enrichment")
            return self.config.daily_ai_limit

    async def _count_used_after_save(self, estimate: int) -> int:
        """Usage as the next run will read it, basic rows included."""
        try:
            return await self.services.store.count_created_since(self.start_of_today())
        except StoreError as e:
            self.logger.warning(f"⚠️ Could not re-read today's usage, reporting estimate: {e}")
            return estimate

    async def _send_digest(self, enriched: List[EnrichedRecord], intro: str) -> None:
        recipient = self.config.recipient_email
        if not recipient or self.services.email is None:
            self._note("No recipient configured, skipping email")
            return

        compiled = self.services.compiler.compile_digest(enriched, intro)
        if self.config.dry_run:
            self._note(f"Dry run: would send '{compiled.subject}' to {recipient}")
            return

        self._note(f"Sending digest email to {recipient}...")
        sent = await self.services.email.send(compiled.html_content, compiled.plain_text, compiled.subject, recipient)
        if sent.success:
            self._note("Email sent successfully")
        else:
            self._note(f"Email failed: {sent.error}")

    def _finish(self, result: RunResult, started: float) -> RunResult:
        self.stage = RunStage.DONE
        result.stage = RunStage.DONE
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self._note(f"Completed in {result.duration_ms}ms")
        return result

    # Scheduling

    def _handle_shutdown(self, signum, frame) -> None:  # noqa: ANN001
        self.shutdown_event.set()

    def install_signal_handlers(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                signal.signal(sig, self._handle_shutdown)
            except ValueError:
                # Not on the main thread
                self.logger.debug("Signal handlers not installed")

    def calculate_next_run_time(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(self.tz)
        run_at = self.config.run_at
        next_run = now.replace(hour=run_at.hour, minute=run_at.minute, second=0, microsecond=0)
        if next_run <= now:
            next_run = (now + timedelta(days=1)).replace(
                hour=run_at.hour, minute=run_at.minute, second=0, microsecond=0
            )
        return next_run

    async def _wait_until_execution_time(self) -> None:
        next_run = self.calculate_next_run_time()
        self.logger.info(f"⏰ Next run at {next_run.isoformat()}")
        while not self.shutdown_event.is_set():
            delay = (next_run - datetime.now(self.tz)).total_seconds()
            if delay <= 0:
                break
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=min(delay, 1.0))
            except asyncio.TimeoutError:
                continue

    async def schedule_daily_execution(self) -> None:
        while not self.shutdown_event.is_set():
            await self._wait_until_execution_time()
            if self.shutdown_event.is_set():
                break
            run_task = asyncio.create_task(self.run())
            shutdown_wait = asyncio.create_task(self.shutdown_event.wait())
            try:
                done, _ = await asyncio.wait({run_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
                if shutdown_wait in done and not run_task.done():
                    run_task.cancel()
                    break
                outcome = run_task.result()
                self.logger.info(json.dumps(outcome.to_dict(), ensure_ascii=False))
            finally:
                for t in (run_task, shutdown_wait):
                    if not t.done():
                        t.cancel()
                await asyncio.gather(run_task, shutdown_wait, return_exceptions=True)
            # Avoid re-running inside the same minute
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=60)
            except asyncio.TimeoutError:
                pass


def verify_trigger_secret(
    configured: Optional[str],
    authorization: Optional[str] = None,
    query_secret: Optional[str] = None,
) -> bool:
    """
    Check run credentials against the configured secret.

    The header must read ``Bearer <secret>``; the query value is the bare secret.

    With no configured secret every caller is allowed and a warning is logged.
    """
    if not configured:
        logging.getLogger(__name__).warning("CRON_SECRET not set, allowing unauthenticated trigger")
        return True

    candidates = []
    if authorization:
        scheme, _, token = authorization.strip().partition(" ")
        if scheme == "Bearer" and token:
            candidates.append(token.strip())
    if query_secret:
        candidates.append(query_secret)

    return any(hmac.compare_digest(c.encode(), configured.encode()) for c in candidates)


class PipelineError(Exception):
    """Custom exception for pipeline failures"""
    pass


async def handle_store_management(args, config: PipelineConfig) -> None:
    """Handle store management commands"""
    store = ArticleStore(config.database_path)
    await store.initialize_db()

    if args.delete_url:
        for url in args.delete_url:
            await store.mark_deleted(url)
            print(f"🗑️  Marked deleted: {url}")

    if args.clear_deleted:
        removed = await store.clear_deleted()
        print(f"✅ Cleared {removed} deleted URLs")

    if args.stats:
        stats = await store.get_statistics()
        print("📊 Article Store Statistics")
        print("=" * 50)
        print(f"Total articles: {stats['total_articles']} ({stats['enriched_articles']} enriched)")
        print(f"Deleted URLs: {stats['deleted_urls']}")
        if stats.get("date_range"):
            print("\nDate range:")
            print(f"  Oldest: {stats['date_range']['oldest']}")
            print(f"  Newest: {stats['date_range']['newest']}")
        if stats["articles_by_category"]:
            print("\nArticles by category:")
            for category, count in stats["articles_by_category"].items():
                print(f"  {category}: {count}")
        if stats["articles_by_source"]:
            print("\nTop sources:")
            for source, count in stats["articles_by_source"].items():
                print(f"  {source}: {count}")


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    import argparse
    parser = argparse.ArgumentParser(description="Feed Digest pipeline")
    parser.add_argument("--once", action="store_true", help="Run once immediately (default)")
    parser.add_argument("--schedule", action="store_true", help="Run daily at RUN_AT in DIGEST_TIMEZONE")
    parser.add_argument("--dry-run", action="store_true", help="Run without sending email")
    parser.add_argument("--secret", help="Trigger secret")
    parser.add_argument("--authorization", help="Authorization header value, e.g. 'Bearer <secret>'")
    parser.add_argument("--stats", action="store_true", help="Show article store statistics")
    parser.add_argument("--delete-url", action="append", metavar="URL", help="Soft-delete a URL (repeatable)")
    parser.add_argument("--clear-deleted", action="store_true", help="Clear all soft-deleted URLs")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    load_dotenv()
    config = PipelineConfig.from_env()
    if args.dry_run:
        config.dry_run = True

    setup_logging(log_level=args.log_level or config.log_level, log_dir=config.log_dir)

    if args.stats or args.delete_url or args.clear_deleted:
        try:
            await handle_store_management(args, config)
        except StoreError as e:
            logging.getLogger(__name__).error("%s", e)
            print(f"❌ {e}")
            return 1
        return 0

    if not verify_trigger_secret(config.cron_secret, args.authorization, args.secret):
        print(json.dumps({"error": "Unauthorized"}))
        return 1

    try:
        pipeline = DigestPipeline(config, build_services(config))
    except PipelineError as e:
        logging.getLogger(__name__).error("%s", e)
        print(json.dumps({"success": False, "error": str(e)}))
        return 1

    if args.schedule:
        pipeline.install_signal_handlers()
        print(f"Starting daily scheduler at {config.run_at.strftime('%H:%M')} {config.timezone}...")
        await pipeline.schedule_daily_execution()
        return 0

    result = await pipeline.run()
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
