"""Reader -> processor -> writer orchestration for one job.

Per chunk::

    read_chunk -> process each item -> write accepted items
               -> writer.checkpoint() -> CheckpointStore.save()
               -> job metrics -> re-read status (anything but PROCESSING stops)

After the last chunk the writer is closed with its footer, the job moves
to FINALIZING, the ``.part`` file is renamed and checksummed, the
checksum is verified, the optional content schema is checked, and the
job becomes COMPLETED. Any exception from the loop closes the writer
without a footer (the file stays at its last checkpoint) and fails the
job, unless the job left PROCESSING (stop, restart) in the meantime.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from filegen.checkpoint import Checkpoint, Checkpointable, CheckpointStore
from filegen.config.models import AppConfig, InterfaceConfig, OutputFormat
from filegen.exceptions import (
    ConfigValidationError,
    FileGenError,
    FinalizationError,
    InvalidTransitionError,
    SkipLimitExceededError,
    ValidationError,
)
from filegen.finalizer import Finalizer
from filegen.jobs.machine import JobStatusMachine
from filegen.jobs.models import Job
from filegen.jobs.status import JobStatus
from filegen.jobs.store import JobStore
from filegen.logging_config import job_context, log_exception, log_performance
from filegen.processor import ProcessOutcome, ProcessResult, build_processor
from filegen.reader import CursorReader, build_reader
from filegen.source.base import RecordSource
from filegen.source.db import source_from_config
from filegen.validation import ContentValidator, SchemaCache, json_record_validator
from filegen.writers import WriterContext, build_writer
from filegen.writers.base import PART_SUFFIX, CheckpointedWriter

logger = logging.getLogger(__name__)

SourceFactory = Callable[[InterfaceConfig], RecordSource]

LAUNCHABLE_STATES = (JobStatus.PENDING, JobStatus.QUEUED)


@dataclass
class ChunkCounters:
    skipped: int = 0
    invalid: int = 0
    filtered: int = 0
    chunks: int = 0


def output_file_name(interface_type: str, job_id: str, extension: str) -> str:
    return f"{interface_type}_{job_id}.{extension}"


class PipelineOrchestrator:
    """Runs generation jobs end to end against a job store."""

    def __init__(
        self,
        config: AppConfig,
        store: JobStore,
        source_factory: Optional[SourceFactory] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        finalizer: Optional[Finalizer] = None,
        writer_context: Optional[WriterContext] = None,
        schema_cache: Optional[SchemaCache] = None,
    ):
        settings = config.settings
        self.config = config
        self.settings = settings
        self.store = store
        self.machine = JobStatusMachine(store)
        self.source_factory = source_factory or self._default_source_factory
        self.checkpoints = checkpoint_store or CheckpointStore(Path(settings.checkpoint_directory))
        self.finalizer = finalizer or Finalizer(settings.file_permissions)
        self.writer_context = writer_context or WriterContext(
            external_config_dir=settings.external_config_dir,
            config_dir=Path(config.config_dir) if config.config_dir else None,
        )
        self.schema_cache = schema_cache or SchemaCache()
        self.content_validator = ContentValidator(settings.xsd_strict_mode, self.schema_cache)

    def _default_source_factory(self, interface: InterfaceConfig) -> RecordSource:
        if self.config.database is None:
            raise ConfigValidationError("No database section configured", key="database")
        return source_from_config(interface, self.config.database)

    def part_path(self, job: Job, interface: InterfaceConfig) -> Path:
        name = output_file_name(job.interface_type, job.job_id, interface.file_extension)
        return Path(self.settings.output_directory).absolute() / (name + PART_SUFFIX)

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #
    def run(self, job_id: str) -> Job:
        """Execute a PENDING or QUEUED job and return its final state."""
        job = self.machine.get(job_id)
        with job_context(job_id, job.interface_type):
            return self._run(job)

    def _run(self, job: Job) -> Job:
        job_id = job.job_id
        if job.status not in LAUNCHABLE_STATES:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.PROCESSING.value)

        try:
            interface = self.config.get_interface(job.interface_type)
        except KeyError:
            message = f"Unknown interface type: {job.interface_type}"
            logger.error(message)
            return self.machine.mark_failed(job_id, message)

        if not interface.enabled:
            message = f"Interface {job.interface_type} is disabled"
            logger.error(message)
            return self.machine.mark_failed(job_id, message)

        # Raises InterfaceBusyError while another job of the type is PROCESSING
        self.machine.mark_processing(job_id)
        return self._generate(job, interface)

    # ------------------------------------------------------------------ #
    # Generation
    # ------------------------------------------------------------------ #
    def _generate(self, job: Job, interface: InterfaceConfig) -> Job:
        start = time.time()
        part_path = self.part_path(job, interface)
        checkpoint = self.checkpoints.load(job.job_id)
        counters = ChunkCounters()
        if checkpoint is not None:
            counters = ChunkCounters(
                skipped=checkpoint.skipped_count,
                invalid=checkpoint.invalid_count,
                filtered=checkpoint.filtered_count,
                chunks=checkpoint.chunk_count,
            )
            logger.info(
                "Resuming from checkpoint: records=%d offset=%d last_key=%s",
                checkpoint.writer.record_count,
                checkpoint.writer.offset,
                checkpoint.reader.last_key,
            )

        source: Optional[RecordSource] = None
        reader: Optional[CursorReader] = None
        writer: Optional[CheckpointedWriter] = None
        try:
            source = self.source_factory(interface)
            reader = build_reader(
                interface.record_shape.value,
                source,
                interface.key_column,
                self.settings.effective_page_size,
                retry=self.settings.retry,
                interface_type=job.interface_type,
            )
            processor = build_processor(
                interface.record_shape.value,
                key_column=interface.key_column,
                required_fields=interface.required_fields,
                filter_blank_fields=interface.filter_blank_fields,
                validator=self._record_validator(interface),
            )
            writer = build_writer(job.interface_type, interface, self.writer_context)

            if checkpoint is not None:
                restorable: List[Tuple[Checkpointable, Any]] = [
                    (reader, checkpoint.reader),
                    (writer, checkpoint.writer),
                ]
                for component, state in restorable:
                    component.restore(state)
            reader.open()
            writer.open(part_path, restart=checkpoint is not None)
            self.machine.update_metrics(
                job.job_id,
                writer.record_count,
                counters.skipped,
                counters.invalid,
                file_name=part_path.name[: -len(PART_SUFFIX)],
                file_path=str(part_path),
            )

            while True:
                items = reader.read_chunk(self.settings.chunk_size)
                if not items:
                    break
                accepted = self._process_chunk(items, processor, counters)
                writer.write(accepted)
                self._save_checkpoint(job.job_id, reader, writer, counters)

                current = self.machine.get(job.job_id)
                if current.status != JobStatus.PROCESSING:
                    logger.info(
                        "Job is %s; leaving %s at %d records for restart",
                        current.status.value,
                        part_path,
                        writer.record_count,
                    )
                    writer.close(False)
                    return current

            writer.close(True)
        except Exception as exc:
            if writer is not None:
                writer.close(False)
            log_exception(logger, "File generation failed", exc)
            return self._fail_or_stop(job.job_id, exc)
        finally:
            if reader is not None:
                reader.close()
            if source is not None:
                source.close()

        total = writer.record_count
        completed = self._publish(job, interface, part_path, total, counters)
        log_performance(
            logger,
            "file_generation",
            time.time() - start,
            records_written=total,
            records_skipped=counters.skipped,
            records_invalid=counters.invalid,
            records_filtered=counters.filtered,
            status=completed.status.value,
        )
        return completed

    def _process_chunk(self, items: List[Any], processor: Any, counters: ChunkCounters) -> List[Any]:
        accepted: List[Any] = []
        for item in items:
            try:
                result = processor.process(item)
            except ValidationError as exc:
                result = ProcessResult.skipped(exc.message)
                if counters.skipped + 1 > self.settings.skip_limit:
                    raise SkipLimitExceededError(counters.skipped + 1, self.settings.skip_limit, exc) from exc
            if result.outcome == ProcessOutcome.ACCEPTED:
                accepted.append(result.item)
            elif result.outcome == ProcessOutcome.SKIPPED:
                counters.skipped += 1
                logger.warning("Skipping record: %s", result.reason)
            elif result.outcome == ProcessOutcome.INVALID:
                counters.invalid += 1
            else:
                counters.filtered += 1
        return accepted

    def _save_checkpoint(
        self,
        job_id: str,
        reader: CursorReader,
        writer: CheckpointedWriter,
        counters: ChunkCounters,
    ) -> None:
        writer_state = writer.checkpoint()
        counters.chunks += 1
        self.checkpoints.save(
            Checkpoint(
                job_id=job_id,
                reader=reader.checkpoint(),
                writer=writer_state,
                chunk_count=counters.chunks,
                skipped_count=counters.skipped,
                invalid_count=counters.invalid,
                filtered_count=counters.filtered,
            )
        )
        self.machine.update_metrics(job_id, writer_state.record_count, counters.skipped, counters.invalid)

    def _fail_or_stop(self, job_id: str, exc: Exception) -> Job:
        current = self.machine.get(job_id)
        if current.status != JobStatus.PROCESSING:
            # Stopped (and possibly already restarted) while this worker ran
            return current
        message = exc.message if isinstance(exc, FileGenError) else f"{type(exc).__name__}: {exc}"
        return self.machine.mark_failed(job_id, message)

    def _record_validator(self, interface: InterfaceConfig):
        if not interface.record_schema_file:
            return None
        return json_record_validator(self.config.resolve_path(interface.record_schema_file), self.schema_cache)

    # ------------------------------------------------------------------ #
    # Finalize
    # ------------------------------------------------------------------ #
    def _publish(
        self,
        job: Job,
        interface: InterfaceConfig,
        part_path: Path,
        total: int,
        counters: ChunkCounters,
    ) -> Job:
        try:
            self.machine.update_metrics(job.job_id, total, counters.skipped, counters.invalid)
            self.machine.mark_finalizing(job.job_id)
        except InvalidTransitionError:
            current = self.machine.get(job.job_id)
            if current.status not in (JobStatus.STOPPED,) + LAUNCHABLE_STATES:
                raise
            # Footer sits past the last checkpoint and is discarded on restart
            logger.info("Job %s before finalize; %s kept for restart", current.status.value, part_path)
            return current

        try:
            outcome = self.finalizer.finalize(part_path)
            if not outcome.success:
                raise FinalizationError(
                    f"Finalization failed: {outcome.result.value} ({outcome.message or outcome.result.describe()})",
                    file_path=str(part_path),
                    result=outcome.result.value,
                )
            if not self.finalizer.verify(outcome.final_path):
                raise FinalizationError(
                    "Checksum verification failed after finalize",
                    file_path=str(outcome.final_path),
                )
            self._validate_content(interface, outcome.final_path)
        except FileGenError as exc:
            log_exception(logger, "Publishing failed", exc)
            self.finalizer.cleanup(part_path)
            return self.machine.mark_failed(job.job_id, exc.message)

        self.store.update_metrics(
            job.job_id,
            total,
            counters.skipped,
            counters.invalid,
            file_name=outcome.final_path.name,
            file_path=str(outcome.final_path),
        )
        completed = self.machine.mark_completed(job.job_id)
        self.checkpoints.clear(job.job_id)
        logger.info(
            "Generated %s with %d records (skipped=%d invalid=%d filtered=%d)",
            outcome.final_path,
            total,
            counters.skipped,
            counters.invalid,
            counters.filtered,
        )
        return completed

    def _validate_content(self, interface: InterfaceConfig, final_path: Path) -> None:
        if interface.output_format == OutputFormat.XML and interface.xsd_schema_file:
            self.content_validator.validate_xml(final_path, self.config.resolve_path(interface.xsd_schema_file))
        elif interface.output_format == OutputFormat.JSON and interface.json_schema_file:
            self.content_validator.validate_json(final_path, self.config.resolve_path(interface.json_schema_file))


__all__ = ["PipelineOrchestrator", "output_file_name", "LAUNCHABLE_STATES"]
