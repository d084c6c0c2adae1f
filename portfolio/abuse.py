"""Abuse gate for the public contact form.

Checks run in a fixed order and the first failure decides the rejection:
origin, honeypot/bot, timing, then (after the caller has validated fields)
the per-client rate limit and duplicate suppression. The first three are
pure; the last two read and write the :class:`GateStore`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import hashlib
import logging
import math
from threading import Lock
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlsplit

from crawlerdetect import CrawlerDetect

from .config import Settings
from .metrics import GATE_DECISIONS_TOTAL
from .rate_limit import DuplicateRecord, GateStore, InMemoryGateStore, RateBucket

logger = logging.getLogger("portfolio.abuse")

FINGERPRINT_SEPARATOR = "\x1f"
_DEFAULT_PORTS = {"http": 80, "https": 443}

BotClassifier = Callable[[str], bool]


class RejectReason(str, Enum):
    ORIGIN_MISMATCH = "origin_mismatch"
    BOT_SUSPECTED = "bot_suspected"
    SUBMITTED_TOO_FAST = "submitted_too_fast"
    RATE_LIMITED = "rate_limited"
    DUPLICATE_SUBMISSION = "duplicate_submission"

    @property
    def is_transient(self) -> bool:
        """Whether waiting and resending can succeed."""
        return self in {RejectReason.RATE_LIMITED, RejectReason.DUPLICATE_SUBMISSION}


@dataclass(frozen=True)
class GateDecision:
    accepted: bool
    reason: Optional[RejectReason] = None
    retry_after_ms: Optional[int] = None

    @classmethod
    def reject(cls, reason: RejectReason, retry_after_ms: Optional[int] = None) -> "GateDecision":
        return cls(accepted=False, reason=reason, retry_after_ms=retry_after_ms)


ACCEPT = GateDecision(accepted=True)


@dataclass(frozen=True)
class GateConfig:
    max_per_window: int = 3
    window_ms: int = 600_000
    min_fill_ms: int = 2_500
    expected_origin: Optional[str] = None
    inline_sweep: bool = True
    sweep_batch: int = 50

    @classmethod
    def from_settings(cls, cfg: Settings) -> "GateConfig":
        return cls(
            max_per_window=cfg.rate_limit_max,
            window_ms=cfg.rate_limit_window_ms,
            min_fill_ms=cfg.min_submit_ms,
            expected_origin=cfg.public_site_url,
            inline_sweep=cfg.abuse_inline_sweep,
            sweep_batch=cfg.abuse_sweep_batch,
        )


@dataclass(frozen=True)
class SubmissionContext:
    client_id: str
    arrived_at: int
    rendered_at: Any = None
    reply_to: str = ""
    subject: str = ""
    body: str = ""
    origin: Optional[str] = None
    referer: Optional[str] = None
    user_agent: str = ""
    honeypot: str = ""


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    """Best-effort client address from proxy headers.

    Priority: first X-Forwarded-For entry, CF-Connecting-IP, X-Real-IP.
    """
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return forwarded or headers.get("cf-connecting-ip") or headers.get("x-real-ip") or "unknown"


def content_fingerprint(reply_to: str, subject: str, body: str) -> str:
    normalized = FINGERPRINT_SEPARATOR.join(
        (
            (reply_to or "").strip().lower(),
            (subject or "").strip(),
            (body or "").strip(),
        )
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def parse_render_timestamp(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except (ValueError, OverflowError):
        # Oversized JSON integers do not fit a float.
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def _url_host(url: str) -> str:
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Not an absolute URL: {url!r}")
    port = parts.port
    if port is None or _DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return parts.hostname
    return f"{parts.hostname}:{port}"


def origin_allowed(expected_origin: Optional[str], origin: Optional[str], referer: Optional[str]) -> bool:
    if not expected_origin:
        return True
    received = origin or referer
    if not received:
        # Some browsers and privacy extensions strip both headers.
        return True
    try:
        return _url_host(expected_origin) == _url_host(received)
    except ValueError:
        return False


_crawler_detect = CrawlerDetect()


def crawlerdetect_classifier(user_agent: str) -> bool:
    return bool(_crawler_detect.isCrawler(user_agent))


def looks_like_bot(user_agent: str, classifier: BotClassifier = crawlerdetect_classifier) -> bool:
    """Classify a user-agent; classifier errors count as "not a bot"."""
    if not user_agent:
        return False
    try:
        return bool(classifier(user_agent))
    except Exception:
        logger.warning(
            "Bot classifier failed, treating user agent as human",
            exc_info=True,
            extra={"event": "bot_classifier_failed", "reason": "fail_open"},
        )
        return False


class AbuseGate:
    def __init__(
        self,
        config: Optional[GateConfig] = None,
        store: Optional[GateStore] = None,
        classifier: BotClassifier = crawlerdetect_classifier,
    ) -> None:
        self.config = config or GateConfig()
        self.store = store if store is not None else InMemoryGateStore()
        self._classifier = classifier
        self._lock = Lock()

    def check_origin(self, ctx: SubmissionContext) -> GateDecision:
        if origin_allowed(self.config.expected_origin, ctx.origin, ctx.referer):
            return ACCEPT
        return GateDecision.reject(RejectReason.ORIGIN_MISMATCH)

    def check_bot(self, ctx: SubmissionContext) -> GateDecision:
        if (ctx.honeypot or "").strip():
            return GateDecision.reject(RejectReason.BOT_SUSPECTED)
        if looks_like_bot(ctx.user_agent or "", self._classifier):
            return GateDecision.reject(RejectReason.BOT_SUSPECTED)
        return ACCEPT

    def check_timing(self, ctx: SubmissionContext, now: int) -> GateDecision:
        rendered_at = parse_render_timestamp(ctx.rendered_at)
        if rendered_at is None or now - rendered_at < self.config.min_fill_ms:
            return GateDecision.reject(RejectReason.SUBMITTED_TOO_FAST)
        return ACCEPT

    def check_rate_limit(self, client_id: str, now: int) -> GateDecision:
        with self._lock:
            bucket = self.store.get_bucket(client_id)

            if bucket is None or not bucket.is_live(now):
                self.store.set_bucket(client_id, RateBucket(count=1, window_expires_at=now + self.config.window_ms))
                if self.config.inline_sweep:
                    self.store.sweep_buckets(now, self.config.sweep_batch)
                return ACCEPT

            if bucket.count >= self.config.max_per_window:
                return GateDecision.reject(
                    RejectReason.RATE_LIMITED,
                    retry_after_ms=max(0, bucket.window_expires_at - now),
                )

            self.store.set_bucket(
                client_id,
                RateBucket(count=bucket.count + 1, window_expires_at=bucket.window_expires_at),
            )
            return ACCEPT

    def check_duplicate(self, client_id: str, fingerprint: str, now: int) -> GateDecision:
        with self._lock:
            previous = self.store.get_record(client_id)
            if previous is not None and previous.is_live(now) and previous.content_fingerprint == fingerprint:
                return GateDecision.reject(RejectReason.DUPLICATE_SUBMISSION)

            self.store.set_record(
                client_id,
                DuplicateRecord(content_fingerprint=fingerprint, window_expires_at=now + self.config.window_ms),
            )
            if self.config.inline_sweep:
                self.store.sweep_records(now, self.config.sweep_batch)
            return ACCEPT

    def screen(self, ctx: SubmissionContext, now: Optional[int] = None) -> GateDecision:
        """Run the stateless checks: origin, honeypot/bot and fill time."""
        now = ctx.arrived_at if now is None else now
        for decision in (self.check_origin(ctx), self.check_bot(ctx), self.check_timing(ctx, now)):
            if not decision.accepted:
                self._record(ctx, decision)
                return decision
        return ACCEPT

    def throttle(self, ctx: SubmissionContext, now: Optional[int] = None) -> GateDecision:
        """Run the stateful checks: rate limit, then duplicate suppression."""
        now = ctx.arrived_at if now is None else now
        decision = self.check_rate_limit(ctx.client_id, now)
        if decision.accepted:
            fingerprint = content_fingerprint(ctx.reply_to, ctx.subject, ctx.body)
            decision = self.check_duplicate(ctx.client_id, fingerprint, now)
        self._record(ctx, decision)
        return decision

    def evaluate(self, ctx: SubmissionContext, now: Optional[int] = None) -> GateDecision:
        decision = self.screen(ctx, now)
        if not decision.accepted:
            return decision
        return self.throttle(ctx, now)

    def sweep_expired(self, now: int, limit: Optional[int] = None) -> int:
        with self._lock:
            return self.store.sweep_expired(now, limit)

    @staticmethod
    def _record(ctx: SubmissionContext, decision: GateDecision) -> None:
        if decision.accepted:
            GATE_DECISIONS_TOTAL.labels(outcome="accept", reason="none").inc()
            return

        GATE_DECISIONS_TOTAL.labels(outcome="reject", reason=decision.reason.value).inc()
        logger.info(
            "Contact submission rejected",
            extra={
                "event": "gate_rejected",
                "ip": ctx.client_id,
                "reason": decision.reason.value,
                "retry_after_ms": decision.retry_after_ms,
            },
        )
