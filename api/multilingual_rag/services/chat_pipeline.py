"""
Chat pipeline orchestrating multilingual retrieval-augmented answers.

A request moves through these stages:
1. detect_language        - never fails, falls back to a script classifier
2. translate_to_pivot     - skipped when the message is already in the pivot language
3. resolve_answer         - search result cache, then grounded generation
4. translate_from_pivot   - skipped when the target is the pivot language
5. augment_with_images    - optional; failures degrade to the text-only answer

Failures in stages 2-4 abort the request with a typed error. Stage 5 never
aborts.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from multilingual_rag.core.config import Settings
from multilingual_rag.core.exceptions import (
    BaseAppException,
    DegradedFeatureError,
    PermanentRemoteError,
    PipelineError,
    TransientRemoteError,
    ValidationError,
)
from multilingual_rag.metrics.pipeline_metrics import (
    image_augmentation_total,
    image_search_results,
    pipeline_requests_total,
    pipeline_stage_duration_seconds,
    ungrounded_retries_total,
)
from multilingual_rag.services.cache.durable import SQLiteCacheBackend
from multilingual_rag.services.images.catalog import SQLiteImageCatalog
from multilingual_rag.services.images.image_search import ImageRelevanceSearch
from multilingual_rag.services.images.intent import (
    ImageIntentClassifier,
    contains_no_image_phrase,
    default_caption,
    image_intro,
    strip_no_image_sentences,
)
from multilingual_rag.services.interfaces import (
    GenerationResult,
    GenerationService,
    TextCompletionService,
)
from multilingual_rag.services.llm_provider import create_llm_service
from multilingual_rag.services.rag.document_store import SQLiteDocumentStore
from multilingual_rag.services.rag.query_expander import QueryExpander
from multilingual_rag.services.rag.search_cache import SearchResultCache
from multilingual_rag.services.retry import (
    FILE_SEARCH_POLICY,
    LANGUAGE_MODEL_POLICY,
    TRANSLATION_POLICY,
    RetryExecutor,
    build_retry_policies,
    error_message,
)
from multilingual_rag.services.translation.cache import TranslationCache
from multilingual_rag.services.translation.language_detector import LanguageDetector
from multilingual_rag.services.translation.translation_service import (
    TranslationService,
)
from multilingual_rag.utils.logging import truncate_for_log

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_INSTRUCTION = """คุณคือผู้ช่วยของโรงพยาบาล ตอบคำถามโดยใช้ข้อมูลจากเอกสารที่ค้นได้เท่านั้น

กฎ:
1. ค้นหาเอกสารด้วยเครื่องมือ search_documents ก่อนตอบทุกครั้ง
2. ถ้าไม่พบข้อมูลในเอกสาร ให้บอกตรง ๆ ว่าไม่พบข้อมูล ห้ามเดา
3. ห้ามวินิจฉัยโรคหรือสั่งยา แนะนำให้ปรึกษาแพทย์
4. ตอบเป็นภาษาไทย สุภาพ กระชับ"""

STRICT_GROUNDING_SUFFIX = "\n\nต้องใช้ search_documents เท่านั้น"
STRICT_QUERY_TEMPLATE = "ค้นหาข้อมูลจากเอกสาร: {query}"

IMAGE_DENIAL_REWRITE_PROMPT = """The answer below says that no images are available, but these images were found:
{captions}

Rewrite the answer without any statement that images are unavailable. Keep everything else, keep the same language, and do not describe the images.

Answer:
{answer}

Return only the rewritten answer."""

# Exceptions that indicate a bug in this process rather than a remote failure
_INTERNAL_FAULTS = (TypeError, AttributeError, KeyError, IndexError, AssertionError)


@dataclass
class AssembledResponse:
    """Final pipeline output returned to the HTTP layer."""

    answer: str
    detected_language: str
    target_language: str
    evidence_used: bool
    images: List[Dict[str, str]] = field(default_factory=list)
    from_cache: bool = False
    translated_query: Optional[str] = None
    response_time_ms: float = 0.0


class ChatPipeline:
    """Multilingual RAG request orchestrator.

    Holds the process-wide caches and clients; one instance serves every
    request and is safe to share between concurrent tasks.
    """

    def __init__(
        self,
        detector: LanguageDetector,
        translator: TranslationService,
        search_cache: SearchResultCache,
        generator: GenerationService,
        retry_executor: RetryExecutor,
        image_search: Optional[ImageRelevanceSearch] = None,
        intent_classifier: Optional[ImageIntentClassifier] = None,
        query_expander: Optional[QueryExpander] = None,
        rewriter: Optional[TextCompletionService] = None,
        pivot_language: str = "th",
        supported_languages: Optional[Sequence[str]] = None,
        document_store_name: str = "knowledge-base",
        ungrounded_retry_count: int = 1,
        max_history_length: int = 10,
        image_max_results: int = 3,
        max_sample_log_length: int = 100,
        system_instruction: str = SYSTEM_INSTRUCTION,
        document_store: Optional[SQLiteDocumentStore] = None,
    ):
        self.detector = detector
        self.translator = translator
        self.search_cache = search_cache
        self.generator = generator
        self.retry_executor = retry_executor
        self.image_search = image_search
        self.intent_classifier = intent_classifier
        self.query_expander = query_expander
        self.rewriter = rewriter
        self.pivot_language = pivot_language
        self.supported_languages = tuple(
            supported_languages or detector.supported_languages
        )
        self.document_store_name = document_store_name
        self.ungrounded_retry_count = max(0, ungrounded_retry_count)
        self.max_history_length = max_history_length
        self.image_max_results = image_max_results
        self.max_sample_log_length = max_sample_log_length
        self.system_instruction = system_instruction
        self.document_store = document_store

    @contextlib.contextmanager
    def _timed(self, stage: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            pipeline_stage_duration_seconds.labels(stage=stage).observe(
                time.perf_counter() - start
            )

    def _remote_failure(
        self, policy_name: str, stage: str, exc: Exception
    ) -> BaseAppException:
        """Map an exhausted or rejected remote call to a typed error."""
        if isinstance(exc, _INTERNAL_FAULTS):
            return PipelineError(error_message(exc), stage=stage)
        try:
            retryable = self.retry_executor.policy(policy_name).is_retryable(exc)
        except KeyError:
            retryable = False
        if retryable:
            return TransientRemoteError(policy_name, error_message(exc))
        return PermanentRemoteError(policy_name, error_message(exc))

    async def _remote_stage(
        self,
        stage: str,
        policy_name: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        with self._timed(stage):
            try:
                return await operation()
            except (BaseAppException, asyncio.CancelledError):
                raise
            except Exception as e:
                logger.error(f"Stage {stage} failed: {e}")
                raise self._remote_failure(policy_name, stage, e) from e

    def _normalize_history(
        self, chat_history: Optional[Sequence[Any]]
    ) -> List[Dict[str, str]]:
        """Accept dicts or objects with role/content; map "model" to "assistant"."""
        history: List[Dict[str, str]] = []
        for msg in chat_history or []:
            if isinstance(msg, dict):
                role, content = msg.get("role"), msg.get("content")
            else:
                role, content = getattr(msg, "role", None), getattr(msg, "content", None)
            if not content or role not in ("user", "assistant", "model"):
                continue
            history.append(
                {"role": "assistant" if role == "model" else role, "content": content}
            )
        if self.max_history_length > 0:
            history = history[-self.max_history_length :]
        else:
            history = []
        return history

    async def process(
        self,
        message: str,
        chat_history: Optional[Sequence[Any]] = None,
        target_language: Optional[str] = None,
    ) -> AssembledResponse:
        """Answer a user message in the user's language.

        Args:
            message: The user's question in any supported language
            chat_history: Prior turns as {"role", "content"} messages
            target_language: Answer language override; defaults to the
                detected language

        Raises:
            ValidationError: Empty message or unsupported target language
            TransientRemoteError: A remote call kept failing with a retryable error
            PermanentRemoteError: A remote call failed with a non-retryable error
            PipelineError: An internal fault
        """
        start_time = time.perf_counter()
        message = (message or "").strip()
        if not message:
            pipeline_requests_total.labels(outcome="invalid").inc()
            raise ValidationError("Message must not be empty", field="message")
        if target_language is not None:
            target_language = target_language.strip().lower()
            if target_language not in self.supported_languages:
                pipeline_requests_total.labels(outcome="invalid").inc()
                raise ValidationError(
                    f"Unsupported target language: {target_language}",
                    field="target_language",
                )

        history = self._normalize_history(chat_history)
        logger.info(
            f"Processing message: {truncate_for_log(message, self.max_sample_log_length)}"
        )

        try:
            response = await self._run(message, history, target_language)
        except BaseAppException as e:
            pipeline_requests_total.labels(outcome="error").inc()
            logger.error(f"Chat request aborted ({e.error_code}): {e.detail}")
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            pipeline_requests_total.labels(outcome="error").inc()
            logger.error(f"Unexpected pipeline failure: {e}", exc_info=True)
            raise PipelineError(error_message(e)) from e

        response.response_time_ms = (time.perf_counter() - start_time) * 1000
        pipeline_requests_total.labels(
            outcome="cache_hit" if response.from_cache else "success"
        ).inc()
        logger.info(
            f"Response ready in {response.response_time_ms:.0f}ms "
            f"(lang={response.detected_language}->{response.target_language}, "
            f"cache={response.from_cache}, evidence={response.evidence_used}, "
            f"images={len(response.images)})"
        )
        return response

    async def _run(
        self,
        message: str,
        history: List[Dict[str, str]],
        target_language: Optional[str],
    ) -> AssembledResponse:
        with self._timed("detect_language"):
            detected = await self.detector.detect(message)
        target = target_language or detected

        # Stage 2
        if detected == self.pivot_language:
            pivot_query = message
        else:
            pivot_query = await self._remote_stage(
                "translate_to_pivot",
                TRANSLATION_POLICY,
                lambda: self.translator.translate(
                    message, detected, self.pivot_language, direction="query"
                ),
            )

        # Stage 3
        answer, chunks, from_cache = await self._remote_stage(
            "resolve_answer",
            FILE_SEARCH_POLICY,
            lambda: self._resolve_answer(pivot_query, history),
        )

        # Stage 4
        if target != self.pivot_language:
            answer = await self._remote_stage(
                "translate_from_pivot",
                TRANSLATION_POLICY,
                lambda: self.translator.translate(
                    answer, self.pivot_language, target, direction="response"
                ),
            )

        # Stage 5
        images: List[Dict[str, str]] = []
        with self._timed("augment_with_images"):
            try:
                answer, images = await self._augment_with_images(
                    message, history, pivot_query, answer, target
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                degraded = DegradedFeatureError("image_augmentation", error_message(e))
                image_augmentation_total.labels(outcome="degraded").inc()
                logger.warning(f"{degraded}; returning text-only answer")

        return AssembledResponse(
            answer=answer,
            detected_language=detected,
            target_language=target,
            evidence_used=len(chunks) > 0,
            images=images,
            from_cache=from_cache,
            translated_query=pivot_query if pivot_query != message else None,
        )

    async def _generate(
        self,
        system_instruction: str,
        contents: List[Dict[str, str]],
    ) -> GenerationResult:
        return await self.retry_executor.execute(
            lambda: self.generator.generate(
                system_instruction, contents, tools=[self.document_store_name]
            ),
            FILE_SEARCH_POLICY,
        )

    async def _resolve_answer(
        self, pivot_query: str, history: List[Dict[str, str]]
    ) -> Tuple[str, List[Dict[str, Any]], bool]:
        cached = await self.search_cache.get(pivot_query)
        if cached is not None:
            logger.info(f"Answer served from search cache ({cached.tier})")
            return cached.answer, cached.evidence_chunks, True

        contents = history + [{"role": "user", "content": pivot_query}]
        result = await self._generate(self.system_instruction, contents)

        if not result.grounded and self.ungrounded_retry_count:
            result = await self._retry_ungrounded(result, pivot_query, history)

        await self.search_cache.set(pivot_query, result.text, result.evidence_chunks)
        return result.text, result.evidence_chunks, False

    async def _retry_ungrounded(
        self,
        first: GenerationResult,
        pivot_query: str,
        history: List[Dict[str, str]],
    ) -> GenerationResult:
        """Ask again with a stricter instruction; keep the first answer if none ground."""
        strict_instruction = self.system_instruction + STRICT_GROUNDING_SUFFIX
        strict_contents = history + [
            {"role": "user", "content": STRICT_QUERY_TEMPLATE.format(query=pivot_query)}
        ]

        for attempt in range(1, self.ungrounded_retry_count + 1):
            logger.info(
                f"Answer has no evidence, stricter retry {attempt}/{self.ungrounded_retry_count}"
            )
            try:
                retry = await self._generate(strict_instruction, strict_contents)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                ungrounded_retries_total.labels(result="failed").inc()
                logger.warning(f"Ungrounded retry failed, keeping first answer: {e}")
                return first
            if retry.grounded:
                ungrounded_retries_total.labels(result="grounded").inc()
                return retry
            ungrounded_retries_total.labels(result="ungrounded").inc()

        logger.info("No retry produced evidence; keeping the first answer")
        return first

    async def _expand_query(
        self, pivot_query: str, history: List[Dict[str, str]]
    ) -> str:
        if self.query_expander is None:
            return pivot_query
        result = await self.query_expander.expand(pivot_query, history)
        if result.expanded:
            logger.info(f"Image query expanded via {result.strategy}")
        return result.expanded_query

    async def _augment_with_images(
        self,
        message: str,
        history: List[Dict[str, str]],
        pivot_query: str,
        answer: str,
        language: str,
    ) -> Tuple[str, List[Dict[str, str]]]:
        if self.image_search is None or self.intent_classifier is None:
            return answer, []
        if not await self.intent_classifier.is_image_request(message):
            image_augmentation_total.labels(outcome="skipped").inc()
            return answer, []

        search_query, image_only = await asyncio.gather(
            self._expand_query(pivot_query, history),
            self.intent_classifier.is_image_only(message),
        )
        results = await self.image_search.search(
            search_query, max_results=self.image_max_results
        )
        image_search_results.observe(len(results))

        images = [
            {
                "url": item.image.storage_url,
                "caption": item.image.caption
                or default_caption(item.image.category, language),
            }
            for item in results
        ]
        if not images:
            image_augmentation_total.labels(outcome="none").inc()
            return answer, []

        intro = image_intro(language)
        if image_only:
            image_augmentation_total.labels(outcome="image_only").inc()
            return intro, images

        if contains_no_image_phrase(answer):
            answer = await self._remove_image_denial(answer, images)
            image_augmentation_total.labels(outcome="corrected").inc()
        else:
            image_augmentation_total.labels(outcome="mixed").inc()

        if not answer.strip():
            return intro, images
        return f"{answer}\n\n{intro}", images

    async def _remove_image_denial(
        self, answer: str, images: List[Dict[str, str]]
    ) -> str:
        """Rewrite an answer that wrongly claims no images exist."""
        if self.rewriter is not None:
            captions = "\n".join(f"- {img['caption']}" for img in images)
            prompt = IMAGE_DENIAL_REWRITE_PROMPT.format(captions=captions, answer=answer)
            try:
                rewritten = await self.retry_executor.execute(
                    lambda: self.rewriter.complete(prompt), LANGUAGE_MODEL_POLICY
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Answer rewrite failed, dropping denial sentences: {e}")
            else:
                rewritten = (rewritten or "").strip()
                if rewritten and not contains_no_image_phrase(rewritten):
                    return rewritten
        return strip_no_image_sentences(answer)

    async def get_cache_stats(self) -> Dict[str, Any]:
        translation_cache = self.translator.cache
        return {
            "search": await self.search_cache.get_stats(),
            "translation": {
                "memory": translation_cache.get_stats(),
                "durable": await translation_cache.get_durable_stats(),
            },
        }

    def clear_caches(self) -> None:
        """Clear the in-process tiers of both caches."""
        self.search_cache.clear()
        self.translator.cache.clear()
        logger.info("In-process caches cleared")

    def close(self) -> None:
        if self.document_store is not None:
            self.document_store.close()


async def build_chat_pipeline(
    settings: Settings,
    llm: Optional[Any] = None,
) -> ChatPipeline:
    """Create the pipeline and its stores from settings.

    Args:
        settings: Application settings
        llm: Object implementing both completion and generation; built from
            settings with AISuite when omitted
    """
    settings.ensure_data_dirs()

    durable_backend = None
    if settings.DURABLE_CACHE_ENABLED:
        durable_backend = SQLiteCacheBackend(settings.CACHE_DB_PATH)
        await durable_backend.initialize()
        await durable_backend.cleanup_expired()

    document_store = SQLiteDocumentStore(settings.DOCUMENT_DB_PATH)
    if llm is None:
        llm = create_llm_service(settings, document_store)

    retry_executor = RetryExecutor(build_retry_policies(settings).values())

    translation_cache = TranslationCache(
        max_size=settings.TRANSLATION_CACHE_MAX_SIZE,
        ttl_seconds=settings.TRANSLATION_CACHE_TTL_MINUTES * 60,
        durable_backend=durable_backend,
        durable_ttl_seconds=settings.TRANSLATION_DURABLE_TTL_HOURS * 3600,
    )
    search_cache = SearchResultCache(
        max_size=settings.SEARCH_CACHE_MAX_SIZE,
        ttl_seconds=settings.SEARCH_CACHE_TTL_MINUTES * 60,
        durable_backend=durable_backend,
        durable_ttl_seconds=settings.SEARCH_DURABLE_TTL_MINUTES * 60,
    )

    image_search = None
    intent_classifier = None
    if settings.IMAGE_SEARCH_ENABLED:
        catalog = SQLiteImageCatalog(settings.IMAGE_DB_PATH)
        await catalog.initialize()
        image_search = ImageRelevanceSearch(
            catalog,
            llm=llm,
            retry_executor=retry_executor,
            categories=settings.IMAGE_CATEGORIES,
            fetch_limit=settings.IMAGE_FETCH_LIMIT,
        )
        intent_classifier = ImageIntentClassifier(llm, retry_executor)

    pipeline = ChatPipeline(
        detector=LanguageDetector(
            llm=llm,
            retry_executor=retry_executor,
            supported_languages=settings.SUPPORTED_LANGUAGES,
            short_text_threshold=settings.SHORT_TEXT_THRESHOLD,
        ),
        translator=TranslationService(llm, translation_cache, retry_executor),
        search_cache=search_cache,
        generator=llm,
        retry_executor=retry_executor,
        image_search=image_search,
        intent_classifier=intent_classifier,
        query_expander=QueryExpander(llm, retry_executor),
        rewriter=llm,
        pivot_language=settings.PIVOT_LANGUAGE,
        supported_languages=settings.SUPPORTED_LANGUAGES,
        document_store_name=settings.DOCUMENT_STORE_NAME,
        ungrounded_retry_count=settings.UNGROUNDED_RETRY_COUNT,
        max_history_length=settings.MAX_CHAT_HISTORY_LENGTH,
        image_max_results=settings.IMAGE_MAX_RESULTS,
        max_sample_log_length=settings.MAX_SAMPLE_LOG_LENGTH,
        document_store=document_store,
    )
    logger.info("Chat pipeline initialized")
    return pipeline
