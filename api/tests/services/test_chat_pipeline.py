"""
End-to-end tests for ChatPipeline with in-memory fakes.

The detector and intent classifier run without a model (script and keyword
fallbacks), the translator and generator are AsyncMocks, and the image
catalog is the shared ``fake_catalog`` fixture.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from multilingual_rag.core.exceptions import (
    PermanentRemoteError,
    PipelineError,
    TransientRemoteError,
    ValidationError,
)
from multilingual_rag.services.chat_pipeline import (
    STRICT_GROUNDING_SUFFIX,
    STRICT_QUERY_TEMPLATE,
    SYSTEM_INSTRUCTION,
    ChatPipeline,
)
from multilingual_rag.services.images import ImageIntentClassifier, ImageRelevanceSearch
from multilingual_rag.services.interfaces import GenerationResult
from multilingual_rag.services.rag.search_cache import SearchResultCache
from multilingual_rag.services.translation import (
    LanguageDetector,
    TranslationCache,
    TranslationService,
)

CHUNK = {"id": 1, "title": "ห้องพัก", "content": "ห้องพักราคา 3000 บาท", "source": None}


@pytest.fixture
def translator_llm() -> MagicMock:
    llm = MagicMock()
    llm.complete = AsyncMock(return_value="translated")
    return llm


@pytest.fixture
def generator() -> MagicMock:
    generator = MagicMock()
    generator.generate = AsyncMock(
        return_value=GenerationResult("ห้องพักราคา 3000 บาทต่อคืนค่ะ", [CHUNK])
    )
    return generator


@pytest.fixture
def make_pipeline(translator_llm, generator, retry_executor, fake_catalog, clock):
    """Factory so tests can override individual collaborators."""

    def _make(**overrides) -> ChatPipeline:
        kwargs = dict(
            detector=LanguageDetector(llm=None),
            translator=TranslationService(
                translator_llm, TranslationCache(clock=clock), retry_executor
            ),
            search_cache=SearchResultCache(clock=clock),
            generator=generator,
            retry_executor=retry_executor,
            image_search=ImageRelevanceSearch(fake_catalog, llm=None),
            intent_classifier=ImageIntentClassifier(llm=None),
            rewriter=None,
        )
        kwargs.update(overrides)
        return ChatPipeline(**kwargs)

    return _make


class TestTextAnswers:
    """Tests for the translation and retrieval stages."""

    @pytest.mark.asyncio
    async def test_pivot_language_message_skips_translation(
        self, make_pipeline, translator_llm, generator
    ):
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert response.answer == "ห้องพักราคา 3000 บาทต่อคืนค่ะ"
        assert response.detected_language == "th"
        assert response.target_language == "th"
        assert response.evidence_used is True
        assert response.translated_query is None
        assert response.images == []
        translator_llm.complete.assert_not_awaited()
        args = generator.generate.await_args
        assert args.args[0] == SYSTEM_INSTRUCTION
        assert args.args[1][-1] == {"role": "user", "content": "ห้องพักเดี่ยวราคาเท่าไหร่คะ"}
        assert args.kwargs["tools"] == ["knowledge-base"]

    @pytest.mark.asyncio
    async def test_english_round_trip(self, make_pipeline, translator_llm, generator):
        translator_llm.complete.side_effect = [
            "ห้องพักเดี่ยวราคาเท่าไหร่",
            "A private room costs 3000 baht per night.",
        ]
        pipeline = make_pipeline()

        response = await pipeline.process("How much is a private room per night?")

        assert response.answer == "A private room costs 3000 baht per night."
        assert response.detected_language == "en"
        assert response.translated_query == "ห้องพักเดี่ยวราคาเท่าไหร่"
        assert generator.generate.await_args.args[1][-1]["content"] == "ห้องพักเดี่ยวราคาเท่าไหร่"
        assert response.response_time_ms > 0

    @pytest.mark.asyncio
    async def test_target_language_override(self, make_pipeline, translator_llm):
        translator_llm.complete.return_value = "개인실은 1박에 3000바트입니다."
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ", target_language="KO")

        assert response.detected_language == "th"
        assert response.target_language == "ko"
        assert response.answer == "개인실은 1박에 3000바트입니다."

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, make_pipeline, generator):
        pipeline = make_pipeline()

        first = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")
        second = await pipeline.process("  ห้องพักเดี่ยวราคาเท่าไหร่คะ ")

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.answer == first.answer
        assert second.evidence_used is True
        assert generator.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_history_is_normalized_and_trimmed(self, make_pipeline, generator):
        pipeline = make_pipeline(max_history_length=2)
        history = [
            {"role": "user", "content": "สวัสดีค่ะ"},
            {"role": "model", "content": "สวัสดีค่ะ มีอะไรให้ช่วยไหมคะ"},
            MagicMock(role="user", content="อยากทราบเรื่องห้องพัก"),
            {"role": "system", "content": "ignored"},
        ]

        await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ", chat_history=history)

        contents = generator.generate.await_args.args[1]
        assert contents == [
            {"role": "assistant", "content": "สวัสดีค่ะ มีอะไรให้ช่วยไหมคะ"},
            {"role": "user", "content": "อยากทราบเรื่องห้องพัก"},
            {"role": "user", "content": "ห้องพักเดี่ยวราคาเท่าไหร่คะ"},
        ]


class TestUngroundedRetry:
    """Tests for the stricter retry when no evidence was used."""

    @pytest.mark.asyncio
    async def test_retry_uses_strict_instruction_and_query(self, make_pipeline, generator):
        generator.generate.side_effect = [
            GenerationResult("คิดว่าน่าจะประมาณ 3000 บาท", []),
            GenerationResult("ห้องพักราคา 3000 บาทต่อคืนค่ะ", [CHUNK]),
        ]
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert response.answer == "ห้องพักราคา 3000 บาทต่อคืนค่ะ"
        assert response.evidence_used is True
        retry_args = generator.generate.await_args_list[1].args
        assert retry_args[0] == SYSTEM_INSTRUCTION + STRICT_GROUNDING_SUFFIX
        assert retry_args[1][-1]["content"] == STRICT_QUERY_TEMPLATE.format(
            query="ห้องพักเดี่ยวราคาเท่าไหร่คะ"
        )

    @pytest.mark.asyncio
    async def test_ungrounded_answer_kept_when_retry_also_ungrounded(
        self, make_pipeline, generator
    ):
        generator.generate.return_value = GenerationResult("ไม่พบข้อมูลในเอกสาร", [])
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert response.answer == "ไม่พบข้อมูลในเอกสาร"
        assert response.evidence_used is False
        assert generator.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_retry_keeps_first_answer(self, make_pipeline, generator):
        generator.generate.side_effect = [
            GenerationResult("คิดว่าน่าจะประมาณ 3000 บาท", []),
            RuntimeError("invalid api key"),
        ]
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert response.answer == "คิดว่าน่าจะประมาณ 3000 บาท"

    @pytest.mark.asyncio
    async def test_retry_disabled(self, make_pipeline, generator):
        generator.generate.return_value = GenerationResult("ไม่พบข้อมูลในเอกสาร", [])
        pipeline = make_pipeline(ungrounded_retry_count=0)

        await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert generator.generate.await_count == 1


class TestImageAugmentation:
    """Tests for merging catalog images into the answer."""

    @pytest.mark.asyncio
    async def test_image_only_request_replaces_answer_with_intro(
        self, make_pipeline, generator
    ):
        generator.generate.return_value = GenerationResult("ไม่พบข้อมูล", [])
        pipeline = make_pipeline()

        response = await pipeline.process("ขอดูรูปห้องพัก")

        assert response.answer == "นี่คือรูปภาพที่เกี่ยวข้องค่ะ"
        assert len(response.images) == 3
        assert response.images[0] == {
            "url": "https://cdn.example.com/room-1.png",
            "caption": "ห้องพักผู้ป่วยแบบเดี่ยว",
        }
        # img-3 has no caption
        assert response.images[2]["caption"] == "จากหมวดหมู่ srs-room"

    @pytest.mark.asyncio
    async def test_mixed_request_drops_denial_sentence(
        self, make_pipeline, translator_llm, fake_catalog, sample_images
    ):
        translator_llm.complete.side_effect = [
            "ห้องพักราคาเท่าไหร่ และมีรูปไหม",
            "The room costs 3000 baht. Sorry, no photo found for this room.",
        ]
        fake_catalog.fetch_active.return_value = sample_images[:2]
        pipeline = make_pipeline()

        response = await pipeline.process(
            "How much is the room and is there a picture of it?"
        )

        assert response.answer == "The room costs 3000 baht.\n\nHere are the related images."
        assert len(response.images) == 2

    @pytest.mark.asyncio
    async def test_mixed_request_appends_intro(self, make_pipeline):
        pipeline = make_pipeline()

        response = await pipeline.process("ห้องพักราคาเท่าไหร่ มีรูปให้ดูไหมคะ")

        assert response.answer == (
            "ห้องพักราคา 3000 บาทต่อคืนค่ะ\n\nนี่คือรูปภาพที่เกี่ยวข้องค่ะ"
        )

    @pytest.mark.asyncio
    async def test_denial_rewritten_by_model(
        self, make_pipeline, generator, retry_executor
    ):
        generator.generate.return_value = GenerationResult(
            "ห้องพักราคา 3000 บาท ขออภัย ไม่มีรูปห้องพักค่ะ", [CHUNK]
        )
        rewriter = MagicMock()
        rewriter.complete = AsyncMock(return_value="ห้องพักราคา 3000 บาทค่ะ")
        pipeline = make_pipeline(rewriter=rewriter)

        response = await pipeline.process("ห้องพักราคาเท่าไหร่ มีรูปให้ดูไหมคะ")

        assert response.answer == "ห้องพักราคา 3000 บาทค่ะ\n\nนี่คือรูปภาพที่เกี่ยวข้องค่ะ"
        assert "ห้องพักผู้ป่วยแบบเดี่ยว" in rewriter.complete.await_args.args[0]

    @pytest.mark.asyncio
    async def test_no_images_found_keeps_answer(self, make_pipeline, generator, fake_catalog):
        generator.generate.return_value = GenerationResult("ไม่พบข้อมูล", [])
        fake_catalog.fetch_active.return_value = []
        pipeline = make_pipeline()

        response = await pipeline.process("ขอดูรูปห้องพัก")

        assert response.answer == "ไม่พบข้อมูล"
        assert response.images == []

    @pytest.mark.asyncio
    async def test_catalog_failure_degrades_to_text(self, make_pipeline, fake_catalog):
        fake_catalog.fetch_active.side_effect = RuntimeError("catalog unavailable")
        pipeline = make_pipeline()

        response = await pipeline.process("ขอดูรูปห้องพัก")

        assert response.answer == "ห้องพักราคา 3000 บาทต่อคืนค่ะ"
        assert response.images == []

    @pytest.mark.asyncio
    async def test_text_question_skips_catalog(self, make_pipeline, fake_catalog):
        pipeline = make_pipeline()

        await pipeline.process("ค่าผ่าตัดเท่าไหร่คะ")

        fake_catalog.fetch_active.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_image_services(self, make_pipeline):
        pipeline = make_pipeline(image_search=None, intent_classifier=None)

        response = await pipeline.process("ขอดูรูปห้องพัก")

        assert response.images == []

    @pytest.mark.asyncio
    async def test_image_query_is_expanded(self, make_pipeline, fake_catalog):
        expander = MagicMock()
        expander.expand = AsyncMock(
            return_value=MagicMock(expanded=True, expanded_query="รูปห้องพักเดี่ยว", strategy="llm")
        )
        pipeline = make_pipeline(query_expander=expander)

        await pipeline.process("ขอดูรูปอันนั้นหน่อย")

        assert expander.expand.await_args.args[0] == "ขอดูรูปอันนั้นหน่อย"
        fake_catalog.fetch_active.assert_awaited_once()


class TestErrors:
    """Tests for validation and typed remote errors."""

    @pytest.mark.asyncio
    async def test_empty_message(self, make_pipeline):
        with pytest.raises(ValidationError) as exc_info:
            await make_pipeline().process("   ")

        assert exc_info.value.status_code == 422
        assert exc_info.value.error_code == "VALIDATION_ERROR_MESSAGE"

    @pytest.mark.asyncio
    async def test_unsupported_target_language(self, make_pipeline):
        with pytest.raises(ValidationError) as exc_info:
            await make_pipeline().process("hello there", target_language="fr")

        assert exc_info.value.error_code == "VALIDATION_ERROR_TARGET_LANGUAGE"

    @pytest.mark.asyncio
    async def test_translation_timeout_is_transient(
        self, make_pipeline, translator_llm, generator
    ):
        translator_llm.complete.side_effect = RuntimeError("Request timed out")

        with pytest.raises(TransientRemoteError) as exc_info:
            await make_pipeline().process("How much is a private room per night?")

        assert exc_info.value.status_code == 503
        assert exc_info.value.service == "TRANSLATION"
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generation_rejection_is_permanent(self, make_pipeline, generator):
        generator.generate.side_effect = RuntimeError("invalid api key")

        with pytest.raises(PermanentRemoteError) as exc_info:
            await make_pipeline().process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert exc_info.value.status_code == 502
        assert exc_info.value.service == "FILE_SEARCH"
        assert generator.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_internal_fault_is_pipeline_error(self, make_pipeline, generator):
        generator.generate.side_effect = TypeError("unexpected keyword argument")

        with pytest.raises(PipelineError) as exc_info:
            await make_pipeline().process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        assert exc_info.value.stage == "resolve_answer"
        assert exc_info.value.status_code == 500


class TestCacheManagement:
    @pytest.mark.asyncio
    async def test_stats_and_clear(self, make_pipeline):
        pipeline = make_pipeline()
        await pipeline.process("ห้องพักเดี่ยวราคาเท่าไหร่คะ")

        stats = await pipeline.get_cache_stats()
        assert stats["search"]["memory"]["size"] == 1
        assert stats["translation"]["durable"] == {"count": 0, "total_access": 0}

        pipeline.clear_caches()
        stats = await pipeline.get_cache_stats()
        assert stats["search"]["memory"]["size"] == 0
