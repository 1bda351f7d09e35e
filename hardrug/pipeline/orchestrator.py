"""Rug-pull agent — per-event fast path and per-task slow path.

Fast path (``handle_transaction``), run on every transaction:
  1. Ignore anything that is not a contract creation
  2. Resolve the created address (supplied, or derived from sender + nonce)
  3. Optionally classify supplied source and drop uninteresting contracts
  4. Enqueue a ``PendingTask`` and return whatever findings are staged

Slow path (``process_task``), run by the single pipeline consumer:
  1. FETCHING: explorer source, flattened when multi-file
  2. CLASSIFYING: capability profile of the entry contract
  3. DECODING: constructor arguments from the creation input
  4. SYNTHESIZING: injected source + invariant tests
  5. VERIFYING: forge invariant run on a fork at the deployment block
  6. INTERPRETING: failing techniques to findings
"""

from __future__ import annotations

import asyncio
import logging

from hardrug.analyzer.classifier import ContractClassifier, ContractProfile
from hardrug.analyzer.constructor import ConstructorDecoder, find_constructor_arguments, to_bytes
from hardrug.core.config import Settings, get_settings
from hardrug.core.errors import ErrorCode, HardRugError, UnsupportedInputError
from hardrug.core.logging import task_context
from hardrug.core.types import ContractCreationEvent, Finding
from hardrug.fuzzer.forge_executor import ForgeConfig, ForgeExecutor
from hardrug.fuzzer.harness import HarnessSynthesizer
from hardrug.ingestion.chain_reader import ChainReader, compute_contract_address
from hardrug.ingestion.contract_fetcher import ContractFetcher
from hardrug.ingestion.flattener import SourceFlattener
from hardrug.pipeline.queue import PendingTask, TaskPipeline
from hardrug.verifier.interpreter import ResultInterpreter

logger = logging.getLogger(__name__)


class RugPullAgent:
    """Coordinates classification, queueing and verification of new contracts.

    Collaborators are injectable so the pipeline can be driven without
    network access or a Foundry install.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fetcher: ContractFetcher | None = None,
        flattener: SourceFlattener | None = None,
        chain_reader: ChainReader | None = None,
        classifier: ContractClassifier | None = None,
        executor: ForgeExecutor | None = None,
        interpreter: ResultInterpreter | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fetcher = fetcher
        self._flattener = flattener or SourceFlattener(self._settings)
        self._chain_reader = chain_reader
        self._classifier = classifier or ContractClassifier()
        self._executor = executor or ForgeExecutor(ForgeConfig.from_settings(self._settings))
        self._interpreter = interpreter or ResultInterpreter()
        self.pipeline = TaskPipeline(
            self.process_task,
            poll_interval if poll_interval is not None else self._settings.queue_poll_interval,
        )

    @property
    def fetcher(self) -> ContractFetcher:
        if self._fetcher is None:
            self._fetcher = ContractFetcher(self._settings)
        return self._fetcher

    @property
    def chain_reader(self) -> ChainReader:
        if self._chain_reader is None:
            self._chain_reader = ChainReader(self._settings.json_rpc_url)
        return self._chain_reader

    async def initialize(self) -> None:
        """Start the background consumer."""
        self.pipeline.start_consumer()

    async def close(self) -> None:
        await self.pipeline.shutdown()
        if self._fetcher is not None:
            await self._fetcher.close()

    # ── Fast path ────────────────────────────────────────────────────

    async def handle_transaction(
        self,
        event: ContractCreationEvent,
        source: str | None = None,
        entry_hint: str | None = None,
    ) -> list[Finding]:
        """Enqueue a creation event and return findings staged so far."""
        if not event.is_creation:
            return []

        task = self.prepare_task(event, source, entry_hint)
        if task is not None:
            self.pipeline.submit(task)
        return self.pipeline.drain_findings()

    def prepare_task(
        self,
        event: ContractCreationEvent,
        source: str | None = None,
        entry_hint: str | None = None,
    ) -> PendingTask | None:
        address = event.contract_address or compute_contract_address(event.sender, event.nonce)
        ctx = task_context(event, address)
        task = PendingTask(event=event, contract_address=address, entry_hint=entry_hint)

        try:
            if event.runtime_code:
                task.constructor_args = find_constructor_arguments(event.data, event.runtime_code)
            if source is None:
                return task
            profile = self._classifier.classify(source, entry_hint)
        except HardRugError as e:
            logger.warning("Skipping %s (%s): %s", address, e.code.value, e, extra=ctx)
            return None
        except Exception:
            logger.exception("Unexpected failure preparing %s", address, extra=ctx)
            return None
        if not profile.is_interesting:
            logger.debug("Skipping %s: neither token nor ownable", address, extra=ctx)
            return None

        task.source = source
        task.profile = profile
        return task

    # ── Slow path ────────────────────────────────────────────────────

    async def process_task(self, task: PendingTask) -> list[Finding]:
        """Run one task through verification. Pipeline errors drop the task."""
        ctx = task_context(task.event, task.contract_address)
        logger.info("Processing %s", task.contract_address, extra=ctx)
        try:
            return await self._process(task)
        except UnsupportedInputError as e:
            logger.info("Skipping %s (%s): %s", task.contract_address, e.code.value, e, extra=ctx)
        except HardRugError as e:
            level = logging.ERROR if e.code == ErrorCode.TOOL_FAILURE else logging.WARNING
            errors = getattr(e, "errors", None)
            logger.log(
                level, "Dropping %s (%s): %s%s", task.contract_address, e.code.value, e,
                f" {errors[:3]}" if errors else "", extra=ctx,
            )
        return []

    async def _process(self, task: PendingTask) -> list[Finding]:
        event = task.event
        ctx = task_context(event, task.contract_address)

        profile = task.profile
        if profile is None:
            source, entry_hint = await self._resolve_source(task)
            profile = await asyncio.to_thread(self._classifier.classify, source, entry_hint)
            if not profile.is_interesting:
                logger.info("Skipping %s: neither token nor ownable", task.contract_address, extra=ctx)
                return []

        blob = task.constructor_args
        if blob is None:
            blob = await self._constructor_blob(task, profile)

        arguments = ConstructorDecoder(profile).decode(blob)
        harness = HarnessSynthesizer(profile, arguments).synthesize()
        if not harness.suite:
            return []

        logger.info(
            "Verifying %s with %s at block %d",
            profile.entry_name, ", ".join(harness.suite.names), event.block_number, extra=ctx,
        )
        report = await self._executor.run(
            harness.render(), event.block_number, self._settings.json_rpc_url,
        )
        findings = self._interpreter.findings(report, event.sender, task.contract_address)

        if findings:
            logger.warning(
                "%d findings for %s", len(findings), task.contract_address, extra=ctx,
            )
        else:
            logger.info("No techniques confirmed for %s", task.contract_address, extra=ctx)
        return findings

    async def _resolve_source(self, task: PendingTask) -> tuple[str, str | None]:
        if task.source is not None:
            return task.source, task.entry_hint

        fetched = await self.fetcher.fetch_contract_source(task.contract_address, task.event.network)
        source = fetched.source_code
        if fetched.is_multi_file:
            source = await self._flattener.flatten(fetched.source_files)
        return source, task.entry_hint or fetched.contract_name or None

    async def _constructor_blob(self, task: PendingTask, profile: ContractProfile) -> bytes:
        """Locate the constructor-argument bytes in the creation input."""
        runtime_code = (
            to_bytes(task.event.runtime_code)
            if task.event.runtime_code
            else await self.chain_reader.get_code(task.contract_address)
        )
        if not runtime_code:
            raise UnsupportedInputError(
                f"No code deployed at {task.contract_address}", code=ErrorCode.BYTECODE_NOT_FOUND,
            )

        blob = find_constructor_arguments(task.event.data, runtime_code)
        if blob is not None:
            return blob

        constructor = profile.entry.constructor
        if constructor is not None and constructor.parameters:
            raise UnsupportedInputError(
                f"Runtime code suffix not found in creation input of {task.contract_address}",
                code=ErrorCode.BYTECODE_NOT_FOUND,
            )
        return b""
