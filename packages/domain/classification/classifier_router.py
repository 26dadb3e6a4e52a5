"""
Classifier Router

Selects the active classification strategy from configuration:
- rules     → RuleBasedClassifier (no I/O)
- ai        → AiBatchClassifier
- cached_ai → CachedAiClassifier wrapping AiBatchClassifier

Strategies are built lazily and reused; selection never rebinds mid-run.
The rate-limit policy is a call-site decision (REJECT on request paths, WAIT
in the background job), so AI strategies are kept per policy.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import anthropic
import structlog

from packages.common.classification_cache import CacheStore, ClassificationCache
from packages.common.config import Settings
from packages.domain.classification.ai_classifier import AiBatchClassifier
from packages.domain.classification.base import FodmapClassifier
from packages.domain.classification.cached_classifier import CachedAiClassifier
from packages.domain.classification.exceptions import ClassifierConfigurationError
from packages.domain.classification.keywords import KeywordConfig, load_keyword_config
from packages.domain.classification.rate_limiter import RateLimiter, RateLimitPolicy, RateWindow
from packages.domain.classification.rule_classifier import RuleBasedClassifier

logger = structlog.get_logger()


class ClassifierKind(str, Enum):
    RULES = "rules"
    AI = "ai"
    CACHED_AI = "cached_ai"


class ClassifierRouter:
    """
    Factory for the configured FodmapClassifier.

    Usage:
        router = ClassifierRouter(settings, RedisRateWindow(redis), RedisCacheStore(redis))
        classifier = router.select(rate_limit_policy=RateLimitPolicy.WAIT)
        results = await classifier.classify_batch(products)
    """

    def __init__(
        self,
        settings: Settings,
        rate_window: RateWindow,
        cache_store: CacheStore,
        keywords: Optional[KeywordConfig] = None,
        client: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            settings: Application settings
            rate_window: Shared AI call counter (Redis in production)
            cache_store: Backing store for the classification cache
            keywords: Preloaded keyword lists (loaded from settings.keywords_path if None)
            client: Pre-built Anthropic client (tests)
            sleep: Delay function used by the WAIT rate-limit policy
        """
        self.settings = settings
        self.default_kind = self.validate(settings.classifier)

        self._keywords = keywords
        self._client = client
        self._rule_classifier: Optional[RuleBasedClassifier] = None
        self._ai_classifiers: Dict[RateLimitPolicy, AiBatchClassifier] = {}
        self._cached_classifiers: Dict[RateLimitPolicy, CachedAiClassifier] = {}

        self.rate_limiter = RateLimiter(
            rate_window,
            max_calls=settings.rate_limit_max_calls,
            window_seconds=settings.rate_limit_window_seconds,
            wait_attempts=settings.rate_limit_wait_attempts,
            poll_interval_seconds=settings.rate_limit_poll_seconds,
            sleep=sleep,
        )
        self.cache = ClassificationCache(cache_store, ttl_seconds=settings.cache_ttl_seconds)

        if self.default_kind is not ClassifierKind.RULES and not self._has_ai_credentials:
            logger.warning("ai_classifier_unconfigured",
                           classifier=self.default_kind.value,
                           message="ANTHROPIC_API_KEY not set, AI classifications will be UNKNOWN")

        logger.info("classifier_router_initialized",
                    classifier=self.default_kind.value,
                    ai_model=settings.ai_model,
                    ai_batch_size=settings.ai_batch_size,
                    rate_limit=f"{settings.rate_limit_max_calls}/{settings.rate_limit_window_seconds}s")

    @staticmethod
    def validate(kind: Any) -> ClassifierKind:
        """
        Resolve a classifier name.

        Raises:
            ClassifierConfigurationError: If the name is not a known strategy
        """
        if isinstance(kind, ClassifierKind):
            return kind
        try:
            return ClassifierKind(str(kind).strip().lower())
        except ValueError:
            valid = [k.value for k in ClassifierKind]
            raise ClassifierConfigurationError(
                f"Unknown classifier '{kind}', expected one of {valid}"
            )

    @property
    def _has_ai_credentials(self) -> bool:
        return self._client is not None or bool(self.settings.anthropic_api_key)

    @property
    def keywords(self) -> KeywordConfig:
        """Lazy-load keyword lists"""
        if self._keywords is None:
            self._keywords = load_keyword_config(self.settings.keywords_path)
        return self._keywords

    @property
    def rule_classifier(self) -> RuleBasedClassifier:
        if self._rule_classifier is None:
            self._rule_classifier = RuleBasedClassifier(self.keywords)
        return self._rule_classifier

    @property
    def client(self) -> Optional[Any]:
        """Lazy-load the Anthropic client shared by every AI strategy"""
        if self._client is None and self.settings.anthropic_api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.ai_timeout_seconds,
            )
        return self._client

    def ai_classifier(self, policy: RateLimitPolicy) -> AiBatchClassifier:
        if policy not in self._ai_classifiers:
            self._ai_classifiers[policy] = AiBatchClassifier(
                self.rate_limiter,
                model=self.settings.ai_model,
                max_tokens=self.settings.ai_max_tokens,
                batch_size=self.settings.ai_batch_size,
                rate_limit_policy=policy,
                timeout_seconds=self.settings.ai_timeout_seconds,
                client=self.client,
            )
        return self._ai_classifiers[policy]

    def cached_classifier(self, policy: RateLimitPolicy) -> CachedAiClassifier:
        if policy not in self._cached_classifiers:
            self._cached_classifiers[policy] = CachedAiClassifier(self.ai_classifier(policy), self.cache)
        return self._cached_classifiers[policy]

    def select(
        self,
        override: Optional[Any] = None,
        rate_limit_policy: RateLimitPolicy = RateLimitPolicy.REJECT,
    ) -> FodmapClassifier:
        """
        Return the active strategy.

        Args:
            override: Explicit classifier name/kind, wins over configuration
            rate_limit_policy: What AI strategies do when the rate window is full

        Raises:
            ClassifierConfigurationError: If override names an unknown strategy
        """
        kind = self.validate(override) if override is not None else self.default_kind

        if kind is ClassifierKind.RULES:
            return self.rule_classifier
        if kind is ClassifierKind.AI:
            return self.ai_classifier(rate_limit_policy)
        return self.cached_classifier(rate_limit_policy)

    def describe(self) -> Tuple[str, bool]:
        """(default classifier name, AI credentials present)"""
        return self.default_kind.value, self._has_ai_credentials
