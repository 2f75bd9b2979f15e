"""Per-claim verification scheduling with staggered dispatch and bounded retry.

Each scheduled claim gets its own pipeline task (a slot):
1. Cache lookup by normalized claim text; a hit is written immediately
2. Stagger wait: the i-th claim of a batch waits i * stagger_seconds
3. Up to max_retries + 1 verifier attempts, exponential backoff between
   them (base, 2 * base, 4 * base, ...)
4. The verdict, or a terminal UNABLE_TO_VERIFY record once retries are
   exhausted, is written to claim.verification

One slot per claim id at most: a claim with a slot, or with any verification
already set, is skipped by schedule_all(). retry() is the only way back in.
A claim's verification field is written by its own slot only.

Usage:
    from narrative_research.verification import VerificationScheduler

    scheduler = VerificationScheduler(verifier=GeminiClaimVerifier())
    stats = await scheduler.verify_claims(claims)
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from narrative_research.config.settings import settings
from narrative_research.data_management.schemas import (
    Claim,
    ClaimVerification,
    VerificationStatus,
)
from narrative_research.data_management.verification_cache import VerificationCache
from narrative_research.utils.logging import (
    batch_context,
    get_correlation_id,
    get_structured_logger,
)
from narrative_research.verification.claim_verifier import (
    ClaimVerifier,
    verdict_from_payload,
)

ProgressCallback = Callable[[Claim], Union[None, Awaitable[None]]]


@dataclass
class _ClaimSlot:
    """Book-keeping for one in-flight claim pipeline."""

    claim: Claim
    delay: float
    use_cache: bool = True
    attempts: int = 0
    task: Optional[asyncio.Task] = None


class VerificationScheduler:
    """Schedules claim verifications against a rate-limited verifier.

    Claims are mutated in place as results arrive; callers render partial
    state at any time. Failures never escape a pipeline: the worst outcome for
    a claim is an UNABLE_TO_VERIFY verification asking for manual review.
    """

    def __init__(
        self,
        verifier: ClaimVerifier,
        cache: Optional[VerificationCache] = None,
        stagger_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
        attempt_timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize VerificationScheduler.

        Args:
            verifier: Claim verification worker.
            cache: Optional verdict cache shared across batches.
            stagger_seconds: Start offset per claim (default from settings).
            max_retries: Additional attempts after the first (default from settings).
            base_delay_seconds: Backoff base delay (default from settings).
            attempt_timeout: Deadline per attempt; None disables.
            progress_callback: Called with the claim after each verification write.
            sleep: Awaitable delay used for stagger and backoff waits.
        """
        self.verifier = verifier
        self.cache = cache
        self.stagger_seconds = (
            stagger_seconds if stagger_seconds is not None else settings.stagger_seconds
        )
        self.max_retries = (
            max_retries if max_retries is not None else settings.verification_max_retries
        )
        self.base_delay_seconds = (
            base_delay_seconds
            if base_delay_seconds is not None
            else settings.verification_base_delay_seconds
        )
        self.attempt_timeout = attempt_timeout
        self.progress_callback = progress_callback
        self._sleep = sleep
        self._slots: dict[str, _ClaimSlot] = {}
        self._logger = get_structured_logger(__name__, component="VerificationScheduler")

    # ── Scheduling ───────────────────────────────────────────────────

    def schedule_all(self, claims: Iterable[Claim]) -> list[asyncio.Task]:
        """Start one pipeline per claim that has no verification and no slot.

        The stagger index counts scheduled claims only, so skipped claims do
        not delay the rest.

        Returns:
            Tasks of the newly started pipelines.
        """
        tasks = []
        skipped = 0
        with batch_context(get_correlation_id()):
            for claim in claims:
                if claim.verification is not None or self.is_in_flight(claim.id):
                    skipped += 1
                    continue
                slot = _ClaimSlot(claim=claim, delay=len(tasks) * self.stagger_seconds)
                tasks.append(self._start(slot))

            self._logger.info(
                "claims_scheduled",
                scheduled=len(tasks),
                skipped=skipped,
                stagger_seconds=self.stagger_seconds,
            )
        return tasks

    def retry(self, claim: Claim) -> Optional[asyncio.Task]:
        """Clear a claim's verification and re-enter the pipeline from attempt 0.

        Manual retries skip the stagger and the cache. Returns None when the
        claim is still in flight.
        """
        if self.is_in_flight(claim.id):
            self._logger.info("retry_ignored_in_flight", claim_id=claim.id)
            return None
        claim.verification = None
        self._logger.info("claim_retry", claim_id=claim.id)
        return self._start(_ClaimSlot(claim=claim, delay=0.0, use_cache=False))

    async def verify_claims(self, claims: Iterable[Claim]) -> dict[str, Any]:
        """Schedule claims and wait until every one of them is settled.

        Returns:
            Summary stats with counts by verification status.
        """
        claims = list(claims)
        self.schedule_all(claims)
        pending = [
            self._slots[c.id].task
            for c in claims
            if c.id in self._slots and self._slots[c.id].task is not None
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        stats: dict[str, Any] = {"total": len(claims)}
        for status in VerificationStatus:
            stats[status.value] = sum(
                1 for c in claims if c.verification and c.verification.status == status
            )
        stats["unverified"] = sum(1 for c in claims if c.verification is None)
        self._logger.info("verification_complete", **stats)
        return stats

    def is_in_flight(self, claim_id: str) -> bool:
        return claim_id in self._slots

    @property
    def in_flight_count(self) -> int:
        return len(self._slots)

    async def wait_idle(self) -> None:
        """Wait until no pipeline is running."""
        while self._slots:
            tasks = [s.task for s in self._slots.values() if s.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)
            # tasks cancelled before their first step never reach their finally
            for claim_id, slot in list(self._slots.items()):
                if slot.task is None or slot.task.done():
                    del self._slots[claim_id]

    async def shutdown(self) -> None:
        """Cancel every pipeline and clear the placeholders they left behind."""
        slots = list(self._slots.values())
        for slot in slots:
            if slot.task is not None:
                slot.task.cancel()
        if slots:
            await asyncio.gather(
                *(s.task for s in slots if s.task is not None), return_exceptions=True
            )
        for slot in slots:
            if slot.claim.verification is not None and not slot.claim.verification.is_terminal:
                slot.claim.verification = None
            if self._slots.get(slot.claim.id) is slot:
                del self._slots[slot.claim.id]
        self._logger.info("scheduler_shutdown", cancelled=len(slots))

    # ── Pipeline ─────────────────────────────────────────────────────

    def _start(self, slot: _ClaimSlot) -> asyncio.Task:
        slot.claim.verification = ClaimVerification.placeholder(VerificationStatus.PENDING)
        self._slots[slot.claim.id] = slot
        slot.task = asyncio.create_task(
            self._run_pipeline(slot), name=f"verify-claim-{slot.claim.id}"
        )
        return slot.task

    async def _run_pipeline(self, slot: _ClaimSlot) -> None:
        claim = slot.claim
        try:
            if slot.use_cache:
                cached = await self._cache_lookup(claim)
                if cached is not None:
                    self._logger.info("cache_hit", claim_id=claim.id)
                    await self._write(slot, cached)
                    return

            if slot.delay > 0:
                await self._sleep(slot.delay)

            verification = await self._verify_with_retry(slot)
            await self._write(slot, verification)
            await self._cache_store(claim, verification)
        except asyncio.CancelledError:
            if self._slots.get(claim.id) is slot:
                claim.verification = None
            self._logger.info("pipeline_cancelled", claim_id=claim.id)
            raise
        except Exception as e:
            reason = str(e).strip() or type(e).__name__
            self._logger.error("pipeline_failed", claim_id=claim.id, error=reason)
            if self._slots.get(claim.id) is slot:
                await self._write(
                    slot,
                    ClaimVerification.unable_to_verify(
                        f"Unable to verify ({reason}). Needs manual review.",
                        attempts=slot.attempts,
                    ),
                )
        finally:
            if self._slots.get(claim.id) is slot:
                del self._slots[claim.id]

    async def _verify_with_retry(self, slot: _ClaimSlot) -> ClaimVerification:
        claim = slot.claim
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay_seconds, exp_base=2),
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            before_sleep=self._log_retry(claim),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    slot.attempts = attempt.retry_state.attempt_number
                    claim.verification = ClaimVerification.placeholder(
                        VerificationStatus.CHECKING, attempts=slot.attempts
                    )
                    verdict = verdict_from_payload(await self._call_verifier(claim))
        except Exception as e:
            reason = str(e).strip() or type(e).__name__
            self._logger.warning(
                "verification_exhausted",
                claim_id=claim.id,
                attempts=slot.attempts,
                error=reason,
            )
            return ClaimVerification.unable_to_verify(
                f"Unable to verify after {slot.attempts} attempts ({reason}). "
                "Needs manual review.",
                attempts=slot.attempts,
            )

        self._logger.info(
            "claim_verified",
            claim_id=claim.id,
            status=verdict.status.value,
            confidence=verdict.confidence,
            attempts=slot.attempts,
        )
        return ClaimVerification.from_verdict(verdict, attempts=slot.attempts)

    async def _call_verifier(self, claim: Claim):
        call = self.verifier.verify(claim.text, claim.title)
        if self.attempt_timeout:
            return await asyncio.wait_for(call, timeout=self.attempt_timeout)
        return await call

    def _log_retry(self, claim: Claim) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self._logger.warning(
                "verification_retry",
                claim_id=claim.id,
                attempt=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error) if error else None,
            )

        return before_sleep

    async def _write(self, slot: _ClaimSlot, verification: ClaimVerification) -> None:
        slot.claim.verification = verification
        if self.progress_callback is None:
            return
        try:
            result = self.progress_callback(slot.claim)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._logger.error("progress_callback_failed", claim_id=slot.claim.id, error=str(e))

    async def _cache_lookup(self, claim: Claim) -> Optional[ClaimVerification]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(claim.text)
        except Exception as e:
            self._logger.warning("cache_lookup_failed", claim_id=claim.id, error=str(e))
            return None

    async def _cache_store(self, claim: Claim, verification: ClaimVerification) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.put(claim.text, verification)
        except Exception as e:
            self._logger.warning("cache_store_failed", claim_id=claim.id, error=str(e))
