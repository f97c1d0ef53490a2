"""
Training orchestrator.

Owns the training queue and drives one session at a time through

    GATING -> BATCHING -> TRAINING_ANN -> TRAINING_SNN? -> TRAINING_META?
           -> CHECKPOINTING -> FEDERATING? -> IDLE

with a FAILED branch from the training and checkpointing states that rolls
every learnable component back to the last checkpoint. Gate failures are
soft outcomes, never exceptions. Numeric phases run on a single-worker
executor so at most one offload is in flight.

Two independent polling loops drive it in the background: the resource
monitor refresh and the periodic training-opportunity check.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import numpy as np

from sentinel.checkpoint import CheckpointManager, CheckpointStorage, CheckpointStorageConfig
from sentinel.config import TrainingSettings, get_settings
from sentinel.engine.resource_manager import DeviceProbe, ResourceMonitor, ResourceSnapshot, ResourceThresholds
from sentinel.errors import CheckpointError, CheckpointRestoreError, FederationError, InsufficientDataError
from sentinel.federation import (
    BaseTransport,
    FederatedClient,
    FederatedClientConfig,
    PrivacyConfig,
    TransportConfig,
)
from sentinel.learning import (
    ExperienceReplayBuffer,
    FeedForwardClassifier,
    IncrementalConfig,
    IncrementalLearner,
    IncrementalResult,
    ReplayConfig,
    SpikingNetwork,
    STDPConfig,
    STDPLearner,
)
from sentinel.meta import MetaParameterOptimizer
from sentinel.runtime import EventBus, get_bus
from sentinel.types import (
    GateResult,
    TrainingConfig,
    TrainingMode,
    TrainingOutcome,
    TrainingPriority,
    TrainingSample,
    stack_samples,
)
from .history import TrainingHistory
from .privacy_guard import PrivacyGuard
from .queue import QueueConfig, TrainingQueue
from .scheduler import DEFAULT_WINDOWS, TrainingScheduler
from .session import SessionState, TrainingSession
from .telemetry import build_training_metrics_snapshot, publish_session_record, publish_training_metrics

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """Configuration for TrainingOrchestrator."""
    max_batch_samples: int = 100
    min_hours_between_sessions: float = 6.0
    min_queue_samples: int = 20
    periodic_min_samples: int = 50
    check_interval_seconds: float = 300.0
    accuracy_ema_alpha: float = 0.3


class TrainingOrchestrator:
    """
    Coordinates gating, batching, the learner phases, checkpointing and
    federated contribution for on-device training.
    """

    def __init__(
        self,
        monitor: ResourceMonitor,
        learner: IncrementalLearner,
        stdp: STDPLearner,
        meta: MetaParameterOptimizer,
        federated: FederatedClient,
        checkpoints: CheckpointManager,
        scheduler: Optional[TrainingScheduler] = None,
        queue: Optional[TrainingQueue] = None,
        privacy_guard: Optional[PrivacyGuard] = None,
        history: Optional[TrainingHistory] = None,
        config: Optional[OrchestratorConfig] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.monitor = monitor
        self.learner = learner
        self.stdp = stdp
        self.meta = meta
        self.federated = federated
        self.checkpoints = checkpoints
        self.scheduler = scheduler or TrainingScheduler(DEFAULT_WINDOWS)
        self.queue = queue if queue is not None else TrainingQueue()
        self.privacy_guard = privacy_guard or PrivacyGuard()
        self.history = history if history is not None else TrainingHistory()
        self.config = config or OrchestratorConfig()
        self.bus = bus or get_bus()
        self.clock = clock

        self.state = SessionState.IDLE
        self.is_training = False
        self.last_training_time: Optional[float] = None
        self.total_sessions = 0
        self.total_samples = 0
        self.average_accuracy = 0.0
        self.rejected_samples = 0

        self.running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._executor: Optional[ThreadPoolExecutor] = None

        self._resume_from_history()
        if self.federated.baseline is None:
            self.federated.set_baseline(self.learner.model.state_dict())

    def _resume_from_history(self) -> None:
        """Seed the session clock and counters from a reloaded history."""
        last = self.history.last()
        if last is None:
            return
        self.last_training_time = last.finished_at
        for record in self.history:
            if not record.success:
                continue
            self.total_sessions += 1
            self.total_samples += record.sample_count
            accuracy = record.results.get("ann", {}).get("accuracy")
            if accuracy is None:
                continue
            if self.total_sessions == 1:
                self.average_accuracy = float(accuracy)
            else:
                alpha = self.config.accuracy_ema_alpha
                self.average_accuracy = alpha * float(accuracy) + (1 - alpha) * self.average_accuracy
        logger.info(
            f"Resumed from {len(self.history)} recorded sessions "
            f"({self.total_sessions} successful, {self.total_samples} samples)"
        )

    # -- construction --------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: Optional[TrainingSettings] = None,
        probe: Optional[DeviceProbe] = None,
        transport: Optional[BaseTransport] = None,
        bus: Optional[EventBus] = None,
    ) -> "TrainingOrchestrator":
        """Wire every component from TrainingSettings."""
        settings = settings or get_settings()
        bus = bus or get_bus()
        rng = np.random.default_rng(settings.seed)
        state_dir = Path(settings.state_dir) if settings.state_dir else None

        monitor = ResourceMonitor(probe, ResourceThresholds(), bus, settings.resource_refresh_seconds)
        model = FeedForwardClassifier(settings.feature_dim, settings.num_classes, settings.hidden_units, rng=rng)
        replay = ExperienceReplayBuffer(settings.feature_dim, ReplayConfig(capacity=settings.replay_capacity), rng=rng)
        learner = IncrementalLearner(
            model,
            replay,
            IncrementalConfig(
                ewc_lambda=settings.ewc_lambda,
                distillation_weight=settings.distillation_weight,
                temperature=settings.distillation_temperature,
            ),
        )
        network = SpikingNetwork(
            settings.feature_dim,
            STDPConfig(
                output_neurons=settings.snn_output_neurons,
                time_steps=settings.snn_time_steps,
                lr_factor=settings.snn_lr_factor,
            ),
            rng=rng,
        )
        stdp = STDPLearner(network, rng=rng)
        meta = MetaParameterOptimizer()
        federated = FederatedClient(
            FederatedClientConfig(
                enabled=settings.federation_enabled,
                min_samples=settings.min_queue_samples,
                total_epsilon=settings.dp_total_epsilon,
                device_class=settings.device_class,
                state_dir=state_dir,
                privacy=PrivacyConfig(
                    epsilon=settings.dp_epsilon,
                    delta=settings.dp_delta,
                    clip_norm=settings.dp_clip_norm,
                ),
                transport=TransportConfig(
                    protocol=settings.federation_protocol,
                    endpoint=settings.federation_endpoint,
                ),
            ),
            transport=transport,
            bus=bus,
            device_class=monitor.device_class(),
            rng=rng,
        )
        storage = None
        if state_dir is not None:
            storage = CheckpointStorage(CheckpointStorageConfig(root=state_dir / "checkpoints"))
        checkpoints = CheckpointManager(learner, stdp, meta, federated, storage)
        history = TrainingHistory(state_dir / "history.jsonl" if state_dir else None)

        return cls(
            monitor=monitor,
            learner=learner,
            stdp=stdp,
            meta=meta,
            federated=federated,
            checkpoints=checkpoints,
            queue=TrainingQueue(QueueConfig(settings.queue_capacity, settings.queue_retention_ratio)),
            history=history,
            config=OrchestratorConfig(
                max_batch_samples=settings.max_batch_samples,
                min_hours_between_sessions=settings.min_hours_between_sessions,
                min_queue_samples=settings.min_queue_samples,
                periodic_min_samples=settings.periodic_min_samples,
                check_interval_seconds=settings.check_interval_seconds,
            ),
            bus=bus,
        )

    # -- ingestion -----------------------------------------------------------

    def add_training_data(
        self, features: Any, label: int, priority: TrainingPriority = TrainingPriority.NORMAL
    ) -> Optional[asyncio.Task]:
        """
        Enqueue a labelled sample from the inference engine.

        Samples failing the privacy guard are dropped silently. A CRITICAL
        sample also schedules an immediate attempt when an event loop is
        running; the task is returned so callers may await it.
        """
        if not self.privacy_guard.is_data_safe(features):
            self.rejected_samples += 1
            logger.debug("Training sample rejected by privacy guard")
            return None
        try:
            sample = TrainingSample(features=features, label=label, priority=priority)
        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed training sample dropped: {e}")
            return None
        model = self.learner.model
        if sample.features.shape[0] != model.input_dim:
            logger.warning(f"Training sample dropped: expected {model.input_dim} features, got {sample.features.shape[0]}")
            return None
        if not 0 <= sample.label < model.num_classes:
            logger.warning(f"Training sample dropped: label {sample.label} out of range")
            return None
        if not np.all(np.isfinite(sample.features)):
            logger.warning("Training sample dropped: non-finite features")
            return None

        self.queue.push(sample)
        if sample.priority == TrainingPriority.CRITICAL:
            return self._spawn_immediate()
        return None

    def _spawn_immediate(self) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; critical sample waits for the next opportunity")
            return None
        task = loop.create_task(self.try_immediate_training())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def try_immediate_training(self) -> TrainingOutcome:
        """Attempt a session now, ignoring training windows but not the gates."""
        if self.is_training:
            return TrainingOutcome(success=False, reason="Training already in progress")
        logger.info("Critical sample queued; attempting immediate training")
        return await self.train_incrementally()

    # -- gating --------------------------------------------------------------

    def hours_since_last_training(self) -> float:
        if self.last_training_time is None:
            return math.inf
        return (self.clock() - self.last_training_time) / 3600.0

    async def can_train_now(self) -> GateResult:
        """Evaluate the seven gates in order and report the first failure."""
        await asyncio.to_thread(self.monitor.refresh)
        for ok, reason in self.monitor.gate_checks():
            if not ok:
                return GateResult(False, reason)
        if self.hours_since_last_training() < self.config.min_hours_between_sessions:
            return GateResult(False, "Too soon since last training")
        if len(self.queue) < self.config.min_queue_samples:
            return GateResult(False, "Insufficient training data")
        return GateResult(True, "Ready to train")

    def evaluate_condition(self, condition: str, snapshot: Optional[ResourceSnapshot] = None) -> bool:
        """Evaluate a window condition such as "idle_and_charging" against a snapshot."""
        snap = snapshot or self.monitor.snapshot
        checks = {
            "always": True,
            "charging": snap.is_charging,
            "idle": not snap.user_active,
            "wifi_connected": snap.wifi_connected,
        }
        for term in condition.split("_and_"):
            if term not in checks:
                logger.debug(f"Unknown window condition '{term}'")
                return False
            if not checks[term]:
                return False
        return True

    # -- session -------------------------------------------------------------

    async def train_incrementally(self, duration_limit_minutes: Optional[float] = None) -> TrainingOutcome:
        """
        Run one training session if the device allows it.

        Args:
            duration_limit_minutes: Optional cap tighter than the mode's own
                duration budget (e.g. from the active training window).

        Returns:
            TrainingOutcome; failures are reported in it, never raised.
        """
        if self.is_training:
            return TrainingOutcome(success=False, reason="Training already in progress")
        self.is_training = True
        try:
            return await self._run_session(duration_limit_minutes)
        finally:
            self.is_training = False
            self.state = SessionState.IDLE
            if not self.running:
                self._release_executor()

    async def _run_session(self, duration_limit_minutes: Optional[float]) -> TrainingOutcome:
        started = time.perf_counter()
        self.state = SessionState.GATING
        gate = await self.can_train_now()
        if not gate.can_train:
            logger.info(f"Training deferred: {gate.reason}")
            return TrainingOutcome(success=False, reason=gate.reason)

        mode = self.monitor.get_optimal_training_mode()
        if mode is None:
            return TrainingOutcome(success=False, reason="No affordable training mode")
        config = TrainingConfig.for_mode(mode)

        self.state = SessionState.BATCHING
        try:
            batch = self._assemble_batch(config)
        except InsufficientDataError as e:
            logger.info(f"Training deferred: {e} ({e.available}/{e.required} in {mode.value} mode)")
            return TrainingOutcome(success=False, reason=str(e))
        await asyncio.sleep(0)

        session = TrainingSession(mode=mode, sample_count=len(batch))
        session.transition(SessionState.GATING)
        session.transition(SessionState.BATCHING)
        self.checkpoints.ensure_baseline()
        baseline = self.monitor.snapshot
        budget_seconds = config.max_duration_seconds
        if duration_limit_minutes is not None:
            budget_seconds = min(budget_seconds, duration_limit_minutes * 60.0)
        logger.info(f"Training session {session.id} started: mode={mode.value} samples={len(batch)}")

        try:
            features, labels = stack_samples(batch)
            self._enter(session, SessionState.TRAINING_ANN)
            ann = await self._offload(self.learner.train_incremental, features, labels, config)
            session.add_result("ann", ann)

            if mode != TrainingMode.LIGHT and await self._within_budget(session, "snn", config, baseline, started, budget_seconds):
                self._enter(session, SessionState.TRAINING_SNN)
                snn = await self._offload(self.stdp.train_stdp, features, labels, config)
                session.add_result("snn", snn)

            if mode == TrainingMode.INTENSIVE and await self._within_budget(session, "meta", config, baseline, started, budget_seconds):
                self._enter(session, SessionState.TRAINING_META)
                session.add_result("meta", await self._offload(self._meta_phase, ann))

            self._enter(session, SessionState.CHECKPOINTING)
            await self._offload(self._commit, session)
        except Exception as e:
            return await self._fail(session, e, started)

        self.queue.remove(s.id for s in batch)
        self.last_training_time = self.clock()
        await self._federate(session)
        self._update_metrics(session, ann)

        record = self.history.append(session.close(success=True))
        duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(f"Training session {session.id} completed in {duration_ms:.0f}ms")
        await publish_session_record(self.bus, record)
        await publish_training_metrics(self.bus, self._metrics_snapshot())
        return TrainingOutcome(
            success=True,
            duration_ms=duration_ms,
            session_id=session.id,
            metrics=session.get_metrics(),
        )

    def _assemble_batch(self, config: TrainingConfig) -> List[TrainingSample]:
        batch = self.queue.select_batch(self.config.max_batch_samples)
        available = len(batch) + self.learner.replay_draw_size(config.batch_size)
        if available < config.min_samples_required:
            raise InsufficientDataError(available, config.min_samples_required)
        return batch

    def _enter(self, session: TrainingSession, state: SessionState) -> None:
        self.state = state
        session.transition(state)

    async def _within_budget(
        self,
        session: TrainingSession,
        phase: str,
        config: TrainingConfig,
        baseline: ResourceSnapshot,
        started: float,
        budget_seconds: float,
    ) -> bool:
        """Check duration and battery budgets before an optional phase."""
        elapsed = time.perf_counter() - started
        if elapsed > budget_seconds:
            session.skip(phase, f"duration budget exhausted ({elapsed:.1f}s > {budget_seconds:.0f}s)")
            logger.info(f"Skipping {phase} phase: duration budget exhausted")
            return False
        await asyncio.to_thread(self.monitor.refresh)
        drain = self.monitor.battery_drain_since(baseline)
        if drain > config.max_battery_drain:
            session.skip(phase, f"battery budget exhausted ({drain:.1%} > {config.max_battery_drain:.0%})")
            logger.info(f"Skipping {phase} phase: battery budget exhausted")
            return False
        return True

    def _meta_phase(self, ann: IncrementalResult) -> Dict[str, float]:
        snap = self.monitor.snapshot
        pressure = {
            "charging": float(snap.is_charging),
            "constrained": float(snap.temperature >= self.monitor.thresholds.max_temperature - 3.0),
        }
        scales = self.meta.step(ann.accuracy, ann.loss_terms, pressure)
        self.learner.set_scales(scales)
        return dict(scales, beta=self.meta.state.beta, reward_ema=self.meta.state.reward_ema)

    def _commit(self, session: TrainingSession) -> None:
        self.learner.consolidate()
        self.checkpoints.save(session)

    async def _fail(self, session: TrainingSession, error: Exception, started: float) -> TrainingOutcome:
        logger.error(f"Training session {session.id} failed: {error}", exc_info=True)
        session.mark_failed(str(error))
        self.state = SessionState.FAILED
        try:
            self.checkpoints.restore()
        except CheckpointRestoreError as e:
            logger.error(f"Rollback failed for session {session.id}: {e}")
        self.last_training_time = self.clock()
        record = self.history.append(session.close(success=False))
        await publish_session_record(self.bus, record)
        return TrainingOutcome(
            success=False,
            error=str(error),
            duration_ms=(time.perf_counter() - started) * 1000.0,
            session_id=session.id,
        )

    async def _federate(self, session: TrainingSession) -> None:
        if not self.federated.should_contribute_to_federation(session.sample_count):
            return
        self._enter(session, SessionState.FEDERATING)
        try:
            update = await self._offload(
                self.federated.prepare_update, session.sample_count, self.learner.model.state_dict()
            )
        except FederationError as e:
            logger.warning(f"Federated contribution skipped: {e}")
            return
        try:
            delivered = await self.federated.submit(update)
        except Exception as e:
            logger.error(f"Federated contribution failed: {e}", exc_info=True)
            delivered = False
        # privacy budget is spent once the update exists, delivered or not
        try:
            self.checkpoints.amend_federated_state()
        except CheckpointError as e:
            logger.error(f"Federated state not checkpointed: {e}")
        session.add_result("federated", {"delivered": delivered, "round_id": update.round_id, "sigma": update.sigma})

    def _update_metrics(self, session: TrainingSession, ann: IncrementalResult) -> None:
        self.total_sessions += 1
        self.total_samples += session.sample_count
        if self.total_sessions == 1:
            self.average_accuracy = ann.accuracy
        else:
            alpha = self.config.accuracy_ema_alpha
            self.average_accuracy = alpha * ann.accuracy + (1 - alpha) * self.average_accuracy

    async def _offload(self, fn, *args):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sentinel-train")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    def _release_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # -- periodic trigger ----------------------------------------------------

    def _current_hour(self) -> int:
        return time.localtime(self.clock()).tm_hour

    async def check_training_opportunity(self) -> Optional[TrainingOutcome]:
        """
        Periodic trigger: train when inside a window whose condition holds and
        enough samples are queued. Returns None when no attempt was made.
        """
        if self.is_training:
            return None
        windows = [
            w for w in self.scheduler.active_windows(self._current_hour())
            if self.evaluate_condition(w.condition)
        ]
        if not windows:
            return None
        if len(self.queue) < self.config.periodic_min_samples:
            return None
        limit = max(w.max_duration_minutes for w in windows)
        return await self.train_incrementally(duration_limit_minutes=limit)

    async def start(self) -> None:
        """Start the resource refresh loop and the opportunity loop."""
        if self.running:
            return
        self.running = True
        self.checkpoints.ensure_baseline()
        await self.monitor.start()
        await self.federated.transport.start()
        self._loop_task = asyncio.create_task(self._opportunity_loop())
        logger.info(f"Training orchestrator started (check every {self.config.check_interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loops. A session already running is allowed to finish."""
        if not self.running:
            return
        self.running = False
        while self.is_training:
            await asyncio.sleep(0.05)
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.monitor.stop()
        await self.federated.transport.stop()
        self._release_executor()
        logger.info("Training orchestrator stopped")

    async def _opportunity_loop(self) -> None:
        while self.running:
            try:
                await self.check_training_opportunity()
            except Exception as e:
                logger.warning(f"Training opportunity check failed: {e}")
            await asyncio.sleep(self.config.check_interval_seconds)

    # -- reporting -----------------------------------------------------------

    def get_training_metrics(self) -> Dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "total_samples": self.total_samples,
            "average_accuracy": self.average_accuracy,
            "queue_size": len(self.queue),
            "is_training": self.is_training,
            "last_training_time": self.last_training_time,
            "hours_since_last_training": self.hours_since_last_training(),
        }

    def _metrics_snapshot(self) -> Dict[str, float]:
        return build_training_metrics_snapshot(
            self.total_sessions,
            self.total_samples,
            self.average_accuracy,
            len(self.queue),
            extras={"training_rejected_samples": self.rejected_samples},
        )

    def get_model_snapshot(self) -> Dict[str, Dict[str, np.ndarray]]:
        """Read-only learnable state of the current checkpoint, for live inference."""
        return self.checkpoints.model_snapshot()
