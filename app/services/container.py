from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import AppConfig
from app.domain.trigger_state import CooldownTracker
from app.services.application.history_recorder import HistoryRecorder
from app.services.application.schedule_evaluator import ScheduleEvaluator
from app.services.application.threshold_evaluator import ThresholdEvaluator
from app.services.application.watering_executor import WateringExecutor
from app.services.utilities.system_health_service import SystemHealthService
from app.workers.queue_consumer import QueueConsumer
from app.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories.job_queue import JobQueueRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.store.state_client import StateClient, TransportPolicy

logger = logging.getLogger(__name__)


def build_state_client(config: AppConfig) -> StateClient:
    """Firebase SDK as primary transport, REST as fallback."""
    from infrastructure.store.firebase_rest import FirebaseRestTransport, ServiceAccountTokenProvider
    from infrastructure.store.firebase_sdk import FirebaseSdkTransport, initialize_firebase_app

    service_account = config.firebase_credentials()
    app = initialize_firebase_app(service_account, config.firebase_database_url)
    primary = FirebaseSdkTransport(app, timeout=config.primary_timeout_seconds)
    fallback = FirebaseRestTransport(
        config.firebase_database_url,
        token_provider=ServiceAccountTokenProvider.from_service_account(service_account),
        timeout=config.fallback_timeout_seconds,
    )
    policy = TransportPolicy(
        failure_threshold=config.primary_failure_threshold,
        reset_after=config.fallback_reset_after,
    )
    return StateClient(primary, fallback, policy=policy, ping_path=config.control_path)


def build_queue_repository(config: AppConfig) -> tuple[SQLiteDatabaseHandler, JobQueueRepository]:
    database = SQLiteDatabaseHandler(config.queue_db_path)
    database.create_tables()
    repo = JobQueueRepository(
        database,
        keep_completed=config.keep_completed_jobs,
        keep_failed=config.keep_failed_jobs,
    )
    return database, repo


@dataclass
class ServiceContainer:
    """Aggregate and manage the worker's services."""

    config: AppConfig
    state_client: StateClient
    database: SQLiteDatabaseHandler
    queue_repo: JobQueueRepository
    cooldowns: CooldownTracker
    schedule_evaluator: ScheduleEvaluator
    threshold_evaluator: ThresholdEvaluator
    history_recorder: HistoryRecorder
    executor: WateringExecutor
    consumer: QueueConsumer
    scheduler: UnifiedScheduler
    health_service: SystemHealthService

    @classmethod
    def build(cls, config: AppConfig, *, state_client: Optional[StateClient] = None) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Args:
            config: Validated application configuration
            state_client: Pre-built store client; built from config when omitted
        """
        logger.info("Building ServiceContainer...")
        client = state_client or build_state_client(config)
        database, queue_repo = build_queue_repository(config)
        queue_repo.recover_interrupted()

        cooldowns = CooldownTracker(config.sensor_cooldown_seconds)
        history = HistoryRecorder(
            client,
            sensor_path=config.sensor_path,
            history_path=config.history_path,
            timezone=config.timezone,
            retention_days=config.history_retention_days,
        )
        executor = WateringExecutor(
            client,
            history,
            cooldowns,
            actuator_path=config.actuator_path,
            sensor_path=config.sensor_path,
            smart_poll_seconds=config.smart_poll_seconds,
            progress_interval_seconds=config.progress_interval_seconds,
            max_duration_seconds=config.max_duration_seconds,
        )
        consumer = QueueConsumer(queue_repo, executor)
        scheduler = UnifiedScheduler(timezone=config.timezone)

        container = cls(
            config=config,
            state_client=client,
            database=database,
            queue_repo=queue_repo,
            cooldowns=cooldowns,
            schedule_evaluator=ScheduleEvaluator(
                client,
                queue_repo,
                control_path=config.control_path,
                timezone=config.timezone,
            ),
            threshold_evaluator=ThresholdEvaluator(
                client,
                queue_repo,
                cooldowns,
                control_path=config.control_path,
                sensor_path=config.sensor_path,
            ),
            history_recorder=history,
            executor=executor,
            consumer=consumer,
            scheduler=scheduler,
            health_service=SystemHealthService(
                client,
                queue_repo,
                consumer=consumer,
                scheduler=scheduler,
                timezone=config.timezone,
            ),
        )

        from app.workers.scheduled_tasks import register_all_tasks, schedule_default_jobs

        register_all_tasks(scheduler, container)
        schedule_default_jobs(scheduler, config)

        logger.info("ServiceContainer built successfully.")
        return container

    def start(self) -> None:
        """Start consuming jobs, then the periodic checks."""
        self.consumer.start()
        if self.config.sensor_listener_enabled:
            self.threshold_evaluator.start_listener()
        self.scheduler.start()
        logger.info("Irrigation worker started (timezone %s)", self.config.timezone)

    def shutdown(self, timeout: float = 10.0) -> None:
        """Stop triggers, let the running job switch its channels off, release resources."""
        try:
            self.scheduler.stop(wait=True, timeout=timeout)
            logger.info("✓ UnifiedScheduler stopped")
        except Exception as e:
            logger.warning(f"Failed to stop UnifiedScheduler: {e}")

        if not self.consumer.stop(timeout=timeout):
            # Cut the watering wait short; the job still writes its off state
            self.executor.abort()
            if not self.consumer.stop(timeout=timeout):
                logger.error("Queue consumer did not stop; sending safety OFF")
                self.executor.safety_off()

        self.threshold_evaluator.stop_listener()
        self.state_client.close()
        self.database.close_all()
        logger.info("ServiceContainer shutdown complete.")
