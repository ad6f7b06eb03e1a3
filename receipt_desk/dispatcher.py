"""Print dispatcher: deliver a formatted receipt with retries and fallback.

Each call renders the receipt once, then makes up to ``max_attempts``
delivery attempts. Every attempt picks its path afresh: the shared
surface when it is present and accessible, otherwise a freshly opened
secondary output target. The observer sees ``printing`` first and then
exactly one of ``success`` or ``error``; no exception reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, List, Optional, Tuple

from .config import PrintConfig
from .core import FormattedDocument, PrintStatus, ReceiptInput, StoreProfile
from .formatter import format_receipt
from .printer import (
    OutputTargetFactory,
    SharedSurface,
    SurfaceUnavailable,
    SurfaceWindow,
)


logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.3
DEFAULT_SETTLE_DELAY = 0.25

PATH_PRIMARY = "primary"
PATH_SECONDARY = "secondary"

FAILURE_FORMAT = "format"
FAILURE_UNAVAILABLE = "unavailable"
FAILURE_DELIVERY = "delivery"

StatusObserver = Callable[[PrintStatus], None]
Formatter = Callable[[ReceiptInput, Optional[StoreProfile], Optional[tzinfo]], FormattedDocument]


@dataclass(frozen=True)
class PrintFailure:
    attempt: int
    path: Optional[str]
    kind: str
    message: str


@dataclass(frozen=True)
class PrintReport:
    status: PrintStatus
    attempts: int
    failures: Tuple[PrintFailure, ...]
    path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is PrintStatus.SUCCESS


class InvalidTransition(Exception):
    pass


_TRANSITIONS = {
    PrintStatus.IDLE: (PrintStatus.PRINTING,),
    PrintStatus.PRINTING: (PrintStatus.SUCCESS, PrintStatus.ERROR),
    PrintStatus.SUCCESS: (),
    PrintStatus.ERROR: (),
}


class PrintJob:
    """State of one print request: idle -> printing -> success | error."""

    def __init__(self, on_status: Optional[StatusObserver], max_attempts: int) -> None:
        self._on_status = on_status
        self.max_attempts = max_attempts
        self.status = PrintStatus.IDLE
        self.attempts = 0
        self.failures: List[PrintFailure] = []
        self.path: Optional[str] = None

    def transition(self, status: PrintStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"{self.status.value} -> {status.value}")
        self.status = status
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception:
            logger.exception(f"Print status observer failed on {status.value}")

    @property
    def can_attempt(self) -> bool:
        return self.status is PrintStatus.PRINTING and self.attempts < self.max_attempts

    def begin_attempt(self) -> int:
        if not self.can_attempt:
            raise InvalidTransition(f"no attempts left after {self.attempts}")
        self.attempts += 1
        return self.attempts

    def record_failure(self, path: Optional[str], kind: str, exc: BaseException) -> None:
        self.failures.append(PrintFailure(self.attempts, path, kind, str(exc) or type(exc).__name__))

    def succeed(self, path: str) -> None:
        self.path = path
        self.transition(PrintStatus.SUCCESS)

    def fail(self) -> None:
        self.transition(PrintStatus.ERROR)

    def report(self) -> PrintReport:
        return PrintReport(self.status, self.attempts, tuple(self.failures), self.path)


class PrintDispatcher:
    def __init__(
        self,
        surface: Optional[SharedSurface] = None,
        fallback: Optional[OutputTargetFactory] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        tz: Optional[tzinfo] = None,
        formatter: Formatter = format_receipt,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.surface = surface
        self.fallback = fallback
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.settle_delay = settle_delay
        self.tz = tz
        self._format = formatter

    @classmethod
    def from_config(
        cls,
        config: PrintConfig,
        surface: Optional[SharedSurface] = None,
        fallback: Optional[OutputTargetFactory] = None,
    ) -> "PrintDispatcher":
        return cls(
            surface,
            fallback,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay,
            settle_delay=config.settle_delay,
            tz=config.timezone,
        )

    async def print_receipt(
        self,
        receipt: ReceiptInput,
        profile: Optional[StoreProfile],
        on_status: Optional[StatusObserver] = None,
    ) -> PrintReport:
        receipt_id = getattr(receipt, "receipt_id", "?")
        job = PrintJob(on_status, self.max_attempts)
        job.transition(PrintStatus.PRINTING)

        # Rendering is deterministic, so a failure here is never retried
        try:
            document = self._format(receipt, profile, self.tz)
        except Exception as exc:
            logger.exception(f"Could not format receipt {receipt_id}")
            job.record_failure(None, FAILURE_FORMAT, exc)
            job.fail()
            return job.report()

        while job.can_attempt:
            attempt = job.begin_attempt()
            window = self._resolve_window()
            path = PATH_PRIMARY if window is not None else PATH_SECONDARY
            try:
                if window is not None:
                    await self._deliver_primary(window, document)
                else:
                    await asyncio.to_thread(self._deliver_secondary, document)
            except Exception as exc:
                kind = FAILURE_UNAVAILABLE if isinstance(exc, SurfaceUnavailable) else FAILURE_DELIVERY
                job.record_failure(path, kind, exc)
                logger.warning(
                    f"Print attempt {attempt}/{self.max_attempts} for {receipt_id} "
                    f"failed on {path} path: {exc}"
                )
                if job.can_attempt:
                    await asyncio.sleep(self.retry_delay)
                continue

            job.succeed(path)
            logger.info(f"Printed {receipt_id} on {path} path (attempt {attempt})")
            return job.report()

        logger.error(f"Giving up on {receipt_id} after {job.attempts} attempt(s)")
        job.fail()
        return job.report()

    def _resolve_window(self) -> Optional[SurfaceWindow]:
        if self.surface is None:
            logger.warning("No shared print surface configured, using secondary target")
            return None
        try:
            window = self.surface.content_window()
        except Exception as exc:
            logger.warning(f"Shared print surface not accessible: {exc}")
            return None
        if window is None:
            logger.warning("Shared print surface not accessible, using secondary target")
        return window

    async def _deliver_primary(self, window: SurfaceWindow, document: FormattedDocument) -> None:
        # Held from content injection through print so concurrent jobs
        # cannot overwrite a document that is still being printed.
        # The print action blocks on the host command, so it runs off the loop.
        async with self.surface.lock:
            window.write(document)
            await asyncio.sleep(self.settle_delay)
            await asyncio.to_thread(window.print)

    def _deliver_secondary(self, document: FormattedDocument) -> None:
        target = self.fallback.open() if self.fallback is not None else None
        if target is None:
            raise SurfaceUnavailable("secondary output target could not be opened")
        try:
            target.write(document)
            target.print()
        finally:
            target.close()


async def print_receipt(
    receipt: ReceiptInput,
    profile: Optional[StoreProfile],
    on_status: Optional[StatusObserver] = None,
    *,
    surface: Optional[SharedSurface] = None,
    fallback: Optional[OutputTargetFactory] = None,
    **options,
) -> PrintReport:
    """One-shot helper around :class:`PrintDispatcher`."""
    dispatcher = PrintDispatcher(surface, fallback, **options)
    return await dispatcher.print_receipt(receipt, profile, on_status)
