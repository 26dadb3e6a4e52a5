"""
AI Batch Classifier - Claude-powered FODMAP classification

Builds a prompt for one product or an indexed list of products, calls the
Anthropic API and parses the answer into ClassificationResult values.

Failure handling:
- Missing API key → UNKNOWN with an explanation (never raises)
- Rate window exhausted → UNKNOWN with an explanation (policy decides whether
  to wait first)
- Single-item network/API error → UNKNOWN with the error message
- Whole-batch network/API error → ClassificationTransportError (the job
  applies the fallback and the worker retries)
- Unparseable response → single-token heuristic, then UNKNOWN

Every product of a batch gets exactly one result; indices the model skipped
are filled with UNKNOWN and logged.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import anthropic
import structlog

from packages.common.config import AI_BATCH_SIZE_CEILING
from packages.common.metrics import AI_CALLS
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.rate_limiter import RateLimiter, RateLimitPolicy
from packages.domain.classification.schemas import (
    ClassifiableProduct,
    ClassificationResult,
    FodmapStatus,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-3-5-haiku-latest"

MISSING_API_KEY_EXPLANATION = "AI classifier not configured: ANTHROPIC_API_KEY is not set"
RATE_LIMITED_EXPLANATION = "AI rate limit reached; classification skipped"
MISSING_BATCH_ENTRY_EXPLANATION = "No classification returned for this product in the AI batch response"
UNPARSEABLE_BATCH_EXPLANATION = "Could not parse the AI batch response"

_EXACT_STATUS_TOKENS = {
    "low": FodmapStatus.LOW,
    "moderate": FodmapStatus.MODERATE,
    "medium": FodmapStatus.MODERATE,
    "high": FodmapStatus.HIGH,
    "na": FodmapStatus.NA,
    "n/a": FodmapStatus.NA,
    "unknown": FodmapStatus.UNKNOWN,
}

_WORD_PATTERN = re.compile(r"[a-z][a-z/]*")
_BATCH_LINE_PATTERN = re.compile(r"^\s*(\d+)\s*[:.)\-]\s*([A-Za-z/]+)(?:\s*[-:,]?\s*(.*))?$")


# ---- Response parsing -------------------------------------------------------------------

def strip_code_fence(text: str) -> str:
    """Remove a markdown code fence wrapped around a JSON payload"""
    text = text.strip()
    if "```json" in text:
        return text.split("```json", 1)[1].split("```", 1)[0].strip()
    if "```" in text:
        parts = text.split("```")
        if len(parts) >= 3:
            return parts[1].strip()
    return text


def normalize_status_token(raw: str) -> Optional[FodmapStatus]:
    """
    Map a model-produced status token to a FodmapStatus.

    Deliberately permissive: any token containing "low" is LOW, and so on.
    Returns None when nothing recognisable is present.
    """
    token = raw.strip().lower()
    if not token:
        return None
    if token in _EXACT_STATUS_TOKENS:
        return _EXACT_STATUS_TOKENS[token]
    if "low" in token:
        return FodmapStatus.LOW
    if "moderate" in token or "medium" in token:
        return FodmapStatus.MODERATE
    if "high" in token:
        return FodmapStatus.HIGH
    if "na" in token:
        return FodmapStatus.NA
    return None


def _coerce_is_food(value: Any, status: FodmapStatus) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    if status is FodmapStatus.NA:
        return False
    if status in {FodmapStatus.LOW, FodmapStatus.MODERATE, FodmapStatus.HIGH}:
        return True
    return None


def _result_from_mapping(data: Dict[str, Any]) -> Optional[ClassificationResult]:
    raw_status = data.get("status", data.get("classification", data.get("fodmap")))
    if raw_status is None:
        return None

    status = normalize_status_token(str(raw_status)) or FodmapStatus.UNKNOWN
    explanation = data.get("explanation") or data.get("reason")

    return ClassificationResult(
        status=status,
        is_food=_coerce_is_food(data.get("is_food"), status),
        explanation=str(explanation) if explanation is not None else None,
    )


def heuristic_status(text: str) -> Optional[FodmapStatus]:
    """
    Single-token fallback for unstructured answers.

    A one-word answer is matched permissively; in longer text the first word
    that is exactly a status name wins.
    """
    words = _WORD_PATTERN.findall(text.lower())
    if len(words) == 1:
        return normalize_status_token(words[0])
    for word in words:
        if word in _EXACT_STATUS_TOKENS:
            return _EXACT_STATUS_TOKENS[word]
    return None


def parse_single_response(response_text: str) -> ClassificationResult:
    """Parse the answer for one product, degrading to the heuristic, then UNKNOWN"""
    payload = strip_code_fence(response_text)

    try:
        data = json.loads(payload)
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict):
            result = _result_from_mapping(data)
            if result is not None:
                return result
    except (json.JSONDecodeError, ValueError):
        pass

    status = heuristic_status(payload)
    if status is None:
        logger.warning("ai_response_unparseable", response=response_text[:200])
        return ClassificationResult.unknown("Could not interpret the AI response")

    return ClassificationResult(
        status=status,
        is_food=_coerce_is_food(None, status),
        explanation=f"Unstructured AI response: {payload[:200]}",
    )


def _batch_entries_from_json(data: Any) -> List[Tuple[int, ClassificationResult]]:
    entries: List[Tuple[int, ClassificationResult]] = []

    if isinstance(data, dict) and isinstance(data.get("results"), list):
        data = data["results"]

    if isinstance(data, dict):
        # {"1": {...}, "2": "low"}
        for key, value in data.items():
            if not str(key).strip().isdigit():
                continue
            if isinstance(value, dict):
                result = _result_from_mapping(value)
            else:
                status = normalize_status_token(str(value)) or FodmapStatus.UNKNOWN
                result = ClassificationResult(status=status, is_food=_coerce_is_food(None, status))
            if result is not None:
                entries.append((int(str(key).strip()), result))
        return entries

    if isinstance(data, list):
        has_indices = any(isinstance(item, dict) and "index" in item for item in data)
        for position, item in enumerate(data, start=1):
            if not isinstance(item, dict):
                continue
            result = _result_from_mapping(item)
            if result is None:
                continue
            if has_indices:
                try:
                    index = int(item.get("index"))
                except (TypeError, ValueError):
                    continue
            else:
                index = position
            entries.append((index, result))

    return entries


def _batch_entries_from_lines(text: str) -> List[Tuple[int, ClassificationResult]]:
    """Fallback for the plain "1: low" line format"""
    entries: List[Tuple[int, ClassificationResult]] = []
    for line in text.splitlines():
        match = _BATCH_LINE_PATTERN.match(line)
        if not match:
            continue
        status = normalize_status_token(match.group(2)) or FodmapStatus.UNKNOWN
        explanation = (match.group(3) or "").strip() or None
        entries.append((
            int(match.group(1)),
            ClassificationResult(
                status=status,
                is_food=_coerce_is_food(None, status),
                explanation=explanation,
            ),
        ))
    return entries


def parse_batch_response(
    response_text: str,
    products: Sequence[ClassifiableProduct],
) -> Dict[str, ClassificationResult]:
    """
    Map a batch answer back onto products by their 1-based prompt index.

    Returns exactly one result per product. Out-of-range indices are ignored,
    the first answer for a repeated index wins, missing indices are UNKNOWN.
    """
    payload = strip_code_fence(response_text)

    try:
        entries = _batch_entries_from_json(json.loads(payload))
    except (json.JSONDecodeError, ValueError):
        entries = []
    if not entries:
        entries = _batch_entries_from_lines(payload)

    if not entries:
        logger.warning("ai_batch_response_unparseable",
                       product_count=len(products),
                       response=response_text[:200])
        return {
            product.identity_hash: ClassificationResult.unknown(UNPARSEABLE_BATCH_EXPLANATION)
            for product in products
        }

    by_index: Dict[int, ClassificationResult] = {}
    for index, result in entries:
        if 1 <= index <= len(products) and index not in by_index:
            by_index[index] = result

    results: Dict[str, ClassificationResult] = {}
    for position, product in enumerate(products, start=1):
        result = by_index.get(position)
        if result is None:
            logger.warning("ai_batch_result_missing",
                           index=position,
                           identity_hash=product.identity_hash,
                           product_name=product.name,
                           response=response_text[:200])
            result = ClassificationResult.unknown(MISSING_BATCH_ENTRY_EXPLANATION)
        results[product.identity_hash] = result

    return results


# ---- Prompts ------------------------------------------------------------------------------

_CLASSIFICATION_RULES = """Classification rules:
- LOW: food that is generally safe for people with IBS (rice, potatoes, meat, fish, eggs, most vegetables, gluten-free products, lactose-free dairy, plain spirits)
- MODERATE: food that is only safe in small portions
- HIGH: food with significant FODMAPs (wheat/rye/barley products, milk and dairy with lactose, onion, garlic, beans and legumes, apples, pears, honey)
- NA: non-food items (cosmetics, cleaning products, toiletries, household items)
- UNKNOWN: food whose ingredients are unclear or too complex to judge

Product names are often in Serbian/Bosnian/Croatian/Montenegrin. Translate them first.
Key terms: "hleb/hljeb/kruh" = bread, "pšenica/pšenični" = wheat, "ječam" = barley,
"mleko/mlijeko" = milk, "jogurt" = yogurt, "luk" = onion, "beli luk/češnjak" = garlic,
"pasulj" = beans, "sočivo" = lentils, "jabuka" = apple, "kruška" = pear,
"pirinač/riža" = rice, "krompir" = potato, "meso" = meat, "riba" = fish,
"bezglutenski" = gluten-free, "bez laktoze" = lactose-free, "keks" = biscuit, "čips" = chips.
Use the category to understand the product type."""


def build_single_prompt(product: ClassifiableProduct) -> str:
    return f"""You are a FODMAP classification expert. Classify the product below.

Product name: {product.name}
Category: {product.category}

{_CLASSIFICATION_RULES}

RESPONSE FORMAT (return ONLY this JSON, no other text):
{{"status": "LOW|MODERATE|HIGH|NA|UNKNOWN", "is_food": true, "explanation": "one short sentence"}}
"""


def build_batch_prompt(products: Sequence[ClassifiableProduct]) -> str:
    lines = []
    for index, product in enumerate(products, start=1):
        lines.append(f"{index}. Name: {product.name}")
        lines.append(f"   Category: {product.category}")
    product_list = "\n".join(lines)

    return f"""You are a FODMAP classification expert. Classify EVERY product below.

Products to classify:
{product_list}

{_CLASSIFICATION_RULES}

Be decisive: most single-ingredient or simple products can be classified.

RESPONSE FORMAT (return ONLY this JSON array, one object per product, same numbering):
[
  {{"index": 1, "status": "LOW", "is_food": true, "explanation": "Rice is low FODMAP"}},
  {{"index": 2, "status": "NA", "is_food": false, "explanation": "Shampoo is not food"}}
]
"""


# ---- Classifier ---------------------------------------------------------------------------

class AiBatchClassifier:
    """
    FODMAP classification through the Anthropic Messages API.

    Usage:
        classifier = AiBatchClassifier(rate_limiter, api_key="sk-...",
                                       rate_limit_policy=RateLimitPolicy.WAIT)
        results = await classifier.classify_batch(products)
        results["name_12345"].status  # FodmapStatus.LOW
    """

    name = "ai"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
        batch_size: int = AI_BATCH_SIZE_CEILING,
        rate_limit_policy: RateLimitPolicy = RateLimitPolicy.REJECT,
        timeout_seconds: float = 60.0,
        client: Optional[Any] = None,
    ):
        """
        Args:
            rate_limiter: Shared limiter gating every API call
            api_key: Anthropic API key (no key → every result is UNKNOWN)
            model: Anthropic model identifier
            max_tokens: Response token ceiling per call
            batch_size: Products per API call, capped at AI_BATCH_SIZE_CEILING
            rate_limit_policy: REJECT for request paths, WAIT for background work
            timeout_seconds: Per-request timeout
            client: Pre-built AsyncAnthropic-compatible client (tests)
        """
        self.rate_limiter = rate_limiter
        self.model = model
        self.max_tokens = max_tokens
        self.rate_limit_policy = rate_limit_policy

        if batch_size > AI_BATCH_SIZE_CEILING:
            logger.warning("ai_batch_size_capped",
                           requested=batch_size,
                           ceiling=AI_BATCH_SIZE_CEILING)
        self.batch_size = max(1, min(batch_size, AI_BATCH_SIZE_CEILING))

        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)
        else:
            logger.warning("anthropic_api_key_missing",
                           message="ANTHROPIC_API_KEY not set, AI classification returns UNKNOWN")
            self.client = None

    async def _generate(self, prompt: str, kind: str) -> str:
        AI_CALLS.labels(kind=kind).inc()
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.0,
            messages=[
                {
                    "role": "user",
                    "content": prompt
                }
            ]
        )

        usage = getattr(response, "usage", None)
        logger.debug("ai_call_complete",
                     kind=kind,
                     model=self.model,
                     input_tokens=getattr(usage, "input_tokens", None),
                     output_tokens=getattr(usage, "output_tokens", None))

        # Empty content or non-text blocks parse as an empty answer
        texts = [block.text for block in (getattr(response, "content", None) or [])
                 if isinstance(getattr(block, "text", None), str)]
        if not texts:
            logger.warning("ai_response_without_text", kind=kind, model=self.model)
            return ""

        return texts[0].strip()

    async def classify(self, product: ClassifiableProduct) -> ClassificationResult:
        if self.client is None:
            return ClassificationResult.unknown(MISSING_API_KEY_EXPLANATION)

        if not await self.rate_limiter.acquire(self.rate_limit_policy):
            logger.warning("ai_rate_limited_fallback_unknown",
                           identity_hash=product.identity_hash,
                           product_name=product.name)
            return ClassificationResult.unknown(RATE_LIMITED_EXPLANATION)

        try:
            response_text = await self._generate(build_single_prompt(product), kind="single")
        except Exception as e:
            logger.error("ai_classification_failed",
                         identity_hash=product.identity_hash,
                         product_name=product.name,
                         error=str(e))
            return ClassificationResult.unknown(f"AI classification failed: {e}")

        result = parse_single_response(response_text)

        logger.info("ai_classification_complete",
                    identity_hash=product.identity_hash,
                    product_name=product.name,
                    category=product.category,
                    status=result.status.value,
                    raw_response=response_text[:200])

        return result

    async def classify_batch(
        self,
        products: Sequence[ClassifiableProduct],
    ) -> Dict[str, ClassificationResult]:
        # One entry per identity, first occurrence wins
        unique: Dict[str, ClassifiableProduct] = {}
        for product in products:
            unique.setdefault(product.identity_hash, product)
        items = list(unique.values())

        if not items:
            return {}

        if len(items) == 1:
            return {items[0].identity_hash: await self.classify(items[0])}

        results: Dict[str, ClassificationResult] = {}
        for start in range(0, len(items), self.batch_size):
            chunk = items[start:start + self.batch_size]
            if len(chunk) == 1:
                results[chunk[0].identity_hash] = await self.classify(chunk[0])
                continue
            try:
                results.update(await self._classify_chunk(chunk))
            except ClassificationTransportError as e:
                # Chunks that already succeeded travel with the error
                e.partial_results = {**results, **e.partial_results}
                raise

        return results

    async def _classify_chunk(
        self,
        chunk: List[ClassifiableProduct],
    ) -> Dict[str, ClassificationResult]:
        if self.client is None:
            return {p.identity_hash: ClassificationResult.unknown(MISSING_API_KEY_EXPLANATION) for p in chunk}

        if not await self.rate_limiter.acquire(self.rate_limit_policy):
            logger.warning("ai_batch_rate_limited_fallback_unknown", product_count=len(chunk))
            return {p.identity_hash: ClassificationResult.unknown(RATE_LIMITED_EXPLANATION) for p in chunk}

        try:
            response_text = await self._generate(build_batch_prompt(chunk), kind="batch")
        except (anthropic.APIError, asyncio.TimeoutError) as e:
            logger.error("ai_batch_classification_failed",
                         product_count=len(chunk),
                         error=str(e))
            raise ClassificationTransportError(
                f"AI batch call failed: {e}", batch_size=len(chunk)
            ) from e

        results = parse_batch_response(response_text, chunk)

        logger.info("ai_batch_classification_complete",
                    product_count=len(chunk),
                    classified=sum(1 for r in results.values() if r.status is not FodmapStatus.UNKNOWN),
                    current_calls=await self.rate_limiter.window.current(),
                    raw_response=response_text[:200])

        return results
