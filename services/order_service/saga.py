import structlog
from shared.observability import ecomm_saga_compensation_total

logger = structlog.get_logger(__name__)

class SagaStep:
    def __init__(self, name, action, compensation=None):
        self.name = name
        self.action = action
        self.compensation = compensation

class SagaOrchestrator:
    def __init__(self, name: str = "saga"):
        self.name = name
        self.steps = []

    def add_step(self, name: str, action, compensation=None):
        """Builder pattern to add a step and its rollback compensation."""
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def execute(self, ctx: dict) -> dict:
        """Run the steps in order against a shared ``ctx`` and return it.

        On any exception every started step is compensated in reverse, the one
        that raised included, so a compensation must cope with a half-done
        action (read only what the action managed to put in ``ctx``).
        """
        log = logger.bind(saga=self.name)
        started = []
        for step in self.steps:
            started.append(step)
            try:
                await step.action(ctx)
            except Exception as e:
                log.error("saga_step_failed", step=step.name, error=str(e), error_type=type(e).__name__)
                await self._rollback(started, ctx, log)
                raise
        return ctx

    async def _rollback(self, started: list, ctx: dict, log):
        """Executes compensations in reverse order. Wraps each in a try/except."""
        log.info("saga_rollback_started", steps=[s.name for s in started])
        for step in reversed(started):
            if not step.compensation:
                continue
            try:
                await step.compensation(ctx)
            except Exception as ce:
                # A failing compensation MUST NOT block other compensations
                log.critical(
                    "saga_compensation_failed",
                    step=step.name,
                    error=str(ce),
                    detail="Manual intervention may be required",
                )
                continue
            log.info("saga_compensation_succeeded", step=step.name)
            ecomm_saga_compensation_total.labels(step_name=step.name).inc()
