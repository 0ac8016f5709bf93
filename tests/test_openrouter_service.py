import httpx
import pytest

from helpers import PNG_DATA_URL, RESULT_DATA_URL, RecordingTransport, chat_response, json_transport
from scene_studio.exceptions import ConfigurationError, GenerationError, NoImageReturnedError, ParseError
from scene_studio.llm_service import (
    DEFAULT_USER_TEMPLATE,
    FALLBACK_SCENARIOS,
    extract_image_url,
    parse_scenarios,
    strip_data_url_prefix,
)
from scene_studio.models import ImageGenerationOptions, LLMProvider, LLMServiceConfig


def _malformed_json(request):
    return httpx.Response(
        200,
        content=b"<html>502 bad gateway",
        headers={"content-type": "application/json"},
    )


class TestAvailability:

    def test_available_with_explicit_key(self, make_service):
        service = make_service(json_transport(chat_response("x")))
        assert service.is_available()
        assert service.get_provider() == LLMProvider.NANO_BANANA_PRO

    def test_falls_back_to_environment(self, monkeypatch, make_service):
        service = make_service(json_transport(chat_response("x")), service_config=LLMServiceConfig())
        assert not service.is_available()
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-env")
        assert service.is_available()

    @pytest.mark.parametrize("call", [
        lambda s: s.expand_prompt("kitchen"),
        lambda s: s.generate_image(PNG_DATA_URL, "prompt"),
        lambda s: s.edit_image(PNG_DATA_URL, PNG_DATA_URL, "remove cup"),
        lambda s: s.recommend_scenarios(PNG_DATA_URL),
    ])
    def test_unavailable_raises_without_network(self, make_service, call):
        transport = json_transport(chat_response("never"))
        service = make_service(transport, service_config=LLMServiceConfig())
        with pytest.raises(ConfigurationError):
            call(service)
        assert transport.requests == []

    def test_config_is_read_on_every_call(self, make_service):
        config = LLMServiceConfig()
        transport = json_transport(chat_response("expanded"))
        service = make_service(transport, service_config=config)
        assert not service.is_available()
        config.api_key = "sk-late"
        assert service.expand_prompt("desk") == "expanded"
        assert transport.requests[0].headers["Authorization"] == "Bearer sk-late"


class TestExpandPrompt:

    def test_sends_filled_templates(self, make_service):
        transport = json_transport(chat_response("A detailed kitchen scene"))
        service = make_service(transport, provider=LLMProvider.GEMINI_3_PRO_PREVIEW)

        result = service.expand_prompt("sunny kitchen", "person looking")

        assert result == "A detailed kitchen scene"
        assert len(transport.requests) == 1
        request = transport.requests[0]
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["X-Title"] == "AmzGen"

        payload = transport.payloads()[0]
        assert payload["model"] == "google/gemini-3-pro-preview"
        assert payload["temperature"] == 0.7
        system, user = payload["messages"]
        assert system["role"] == "system"
        assert user["content"] == DEFAULT_USER_TEMPLATE.replace(
            "{{basePrompt}}", "sunny kitchen").replace("{{customContext}}", "person looking")

    def test_uses_configured_templates(self, make_service):
        config = LLMServiceConfig(
            api_key="sk-test",
            expand_prompt_system="SYS",
            expand_prompt_user_template="Scene={{basePrompt}}; ctx={{customContext}}",
        )
        transport = json_transport(chat_response("ok"))
        make_service(transport, service_config=config).expand_prompt("loft")

        system, user = transport.payloads()[0]["messages"]
        assert system["content"] == "SYS"
        assert user["content"] == "Scene=loft; ctx="

    def test_empty_response_falls_back(self, make_service):
        transport = json_transport(chat_response(""))
        result = make_service(transport).expand_prompt("beach")
        assert result == "A professional product shot in a beach setting."

    def test_http_error_wrapped(self, make_service):
        transport = json_transport({"error": {"message": "Invalid API key"}}, status_code=401)
        with pytest.raises(GenerationError) as exc_info:
            make_service(transport).expand_prompt("beach")
        assert "Invalid API key" in str(exc_info.value)
        assert exc_info.value.status_code == 401
        # 不重试
        assert len(transport.requests) == 1

    def test_error_payload_wrapped(self, make_service):
        transport = json_transport({"error": {"message": "Provider overloaded", "code": 502}})
        with pytest.raises(GenerationError) as exc_info:
            make_service(transport).expand_prompt("beach")
        assert "Provider overloaded" in str(exc_info.value)

    def test_connection_error_wrapped(self, make_service):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationError):
            make_service(RecordingTransport(handler)).expand_prompt("beach")

    def test_malformed_json_body_wrapped(self, make_service):
        transport = RecordingTransport(_malformed_json)
        with pytest.raises(GenerationError):
            make_service(transport).expand_prompt("beach")
        assert len(transport.requests) == 1


class TestGenerateImage:

    def test_returns_structured_attachment(self, make_service):
        transport = json_transport(chat_response("Here you go", images=[RESULT_DATA_URL]))
        service = make_service(transport)

        result = service.generate_image(PNG_DATA_URL, "a marble counter", ImageGenerationOptions(quality="8k"))

        assert result == RESULT_DATA_URL
        payload = transport.payloads()[0]
        assert payload["model"] == "google/gemini-3-pro-image-preview"
        assert payload["modalities"] == ["image", "text"]
        text_part, image_part = payload["messages"][0]["content"]
        assert "Scene Description: a marble counter." in text_part["text"]
        assert text_part["text"].endswith("\nStyle/Quality: 8k")
        assert image_part["image_url"]["url"] == "data:image/png;base64,iVBORw0KGgo="

    def test_no_quality_suffix_without_option(self, make_service):
        transport = json_transport(chat_response(None, images=[RESULT_DATA_URL]))
        make_service(transport).generate_image("iVBORw0KGgo=", "scene")
        text_part = transport.payloads()[0]["messages"][0]["content"][0]
        assert "Style/Quality" not in text_part["text"]

    def test_attachment_in_later_choice_beats_url_text(self, make_service):
        transport = json_transport(chat_response(
            "Check the docs at https://example.com/help for details",
            "",
            None,
            images=[None, None, RESULT_DATA_URL],
        ))
        assert make_service(transport).generate_image(PNG_DATA_URL, "scene") == RESULT_DATA_URL

    def test_markdown_image_link(self, make_service):
        transport = json_transport(chat_response("Done: ![result](https://cdn.example.com/img.png)"))
        assert make_service(transport).generate_image(PNG_DATA_URL, "scene") == "https://cdn.example.com/img.png"

    def test_bare_url(self, make_service):
        transport = json_transport(chat_response("https://cdn.example.com/out.webp"))
        assert make_service(transport).generate_image(PNG_DATA_URL, "scene") == "https://cdn.example.com/out.webp"

    def test_data_url_text(self, make_service):
        transport = json_transport(chat_response(RESULT_DATA_URL))
        assert make_service(transport).generate_image(PNG_DATA_URL, "scene") == RESULT_DATA_URL

    def test_text_only_response(self, make_service):
        transport = json_transport(chat_response("I cannot create that image."))
        with pytest.raises(NoImageReturnedError) as exc_info:
            make_service(transport).generate_image(PNG_DATA_URL, "scene")
        assert exc_info.value.text == "I cannot create that image."

    def test_empty_choices(self, make_service):
        transport = json_transport({"id": "x", "choices": []})
        with pytest.raises(NoImageReturnedError) as exc_info:
            make_service(transport).generate_image(PNG_DATA_URL, "scene")
        assert exc_info.value.text is None

    def test_http_error_carries_upstream_message(self, make_service):
        transport = json_transport({"error": {"message": "Insufficient credits"}}, status_code=402)
        with pytest.raises(GenerationError) as exc_info:
            make_service(transport).generate_image(PNG_DATA_URL, "scene")
        assert "Insufficient credits" in str(exc_info.value)
        assert exc_info.value.status_code == 402
        assert len(transport.requests) == 1

    def test_site_headers(self, make_service):
        config = LLMServiceConfig(api_key="sk-test", site_url="https://shop.example", site_name="MyShop")
        transport = json_transport(chat_response(None, images=[RESULT_DATA_URL]))
        make_service(transport, service_config=config).generate_image(PNG_DATA_URL, "scene")
        headers = transport.requests[0].headers
        assert headers["HTTP-Referer"] == "https://shop.example"
        assert headers["X-Title"] == "MyShop"
        assert headers["Authorization"] == "Bearer sk-test"


class TestRecommendScenarios:

    def test_parses_fenced_json(self, make_service):
        content = '```json\n["Marble bathroom", "Sunlit desk", "Dark moody studio"]\n```'
        transport = json_transport(chat_response(content))
        service = make_service(transport, provider=LLMProvider.GEMINI_3_PRO_PREVIEW)

        assert service.recommend_scenarios(PNG_DATA_URL) == ["Marble bathroom", "Sunlit desk", "Dark moody studio"]
        payload = transport.payloads()[0]
        assert payload["model"] == "google/gemini-3-pro-preview"
        text_part, image_part = payload["messages"][0]["content"]
        assert "JSON array of strings" in text_part["text"]
        assert "Best Seller" in text_part["text"]
        assert image_part["type"] == "image_url"

    def test_prose_refusal_returns_fallback(self, make_service):
        transport = json_transport(chat_response("Sorry, I can't help with that product."))
        assert make_service(transport).recommend_scenarios(PNG_DATA_URL) == FALLBACK_SCENARIOS

    def test_call_failure_returns_fallback(self, make_service):
        transport = json_transport({"error": {"message": "boom"}}, status_code=500)
        assert make_service(transport).recommend_scenarios(PNG_DATA_URL) == FALLBACK_SCENARIOS
        assert len(transport.requests) == 1

    def test_malformed_json_body_returns_fallback(self, make_service):
        transport = RecordingTransport(_malformed_json)
        assert make_service(transport).recommend_scenarios(PNG_DATA_URL) == FALLBACK_SCENARIOS


class TestEditImage:

    def test_sends_image_and_mask(self, make_service):
        transport = json_transport(chat_response(None, images=[RESULT_DATA_URL]))
        service = make_service(transport, provider=LLMProvider.GEMINI_3_PRO_PREVIEW)

        result = service.edit_image("data:image/jpeg;base64,SU1H", "data:image/png;base64,TUFTSw==", "add a plant")

        assert result == RESULT_DATA_URL
        payload = transport.payloads()[0]
        assert payload["model"] == "google/gemini-3-pro-image-preview"
        assert payload["modalities"] == ["image", "text"]
        text_part, image_part, mask_part = payload["messages"][0]["content"]
        assert "Instruction: add a plant" in text_part["text"]
        assert "white area in the mask" in text_part["text"]
        assert image_part["image_url"]["url"] == "data:image/png;base64,SU1H"
        assert mask_part["image_url"]["url"] == "data:image/png;base64,TUFTSw=="

    def test_remote_source_passed_as_url(self, make_service):
        transport = json_transport(chat_response(None, images=[RESULT_DATA_URL]))
        make_service(transport).edit_image("https://cdn.example.com/a.png", PNG_DATA_URL, "x")
        image_part = transport.payloads()[0]["messages"][0]["content"][1]
        assert image_part["image_url"]["url"] == "https://cdn.example.com/a.png"

    def test_no_image_includes_truncated_text(self, make_service):
        long_text = "I would rather describe the edit. " * 10
        transport = json_transport(chat_response(long_text))
        with pytest.raises(NoImageReturnedError) as exc_info:
            make_service(transport).edit_image(PNG_DATA_URL, PNG_DATA_URL, "x")
        assert long_text[:100] in str(exc_info.value)
        assert long_text[:101] not in str(exc_info.value)


class TestHelpers:

    def test_strip_data_url_prefix(self):
        assert strip_data_url_prefix("data:image/jpeg;base64,QUJD") == "QUJD"
        assert strip_data_url_prefix("data:image/webp;base64,QUJD") == "QUJD"
        assert strip_data_url_prefix("QUJD") == "QUJD"

    def test_any_data_url_prefix_is_stripped(self, make_service):
        assert strip_data_url_prefix("data:image/gif;base64,R0lGOD") == "R0lGOD"
        assert strip_data_url_prefix("data:image/bmp;base64,Qk0=") == "Qk0="

        transport = json_transport(chat_response(None, images=[RESULT_DATA_URL]))
        make_service(transport).generate_image("data:image/gif;base64,R0lGOD", "scene")
        image_part = transport.payloads()[0]["messages"][0]["content"][1]
        assert image_part["image_url"]["url"] == "data:image/png;base64,R0lGOD"

    def test_extract_prefers_content_part_attachment(self):
        response = {"choices": [{"message": {"content": [
            {"type": "text", "text": "see https://example.com"},
            {"type": "image_url", "image_url": {"url": RESULT_DATA_URL}},
        ]}}]}
        assert extract_image_url(response) == RESULT_DATA_URL

    def test_extract_returns_none_without_image(self):
        assert extract_image_url(chat_response("just words")) is None
        assert extract_image_url({}) is None

    def test_parse_scenarios_takes_first_well_formed_array(self):
        content = 'Ideas [draft] follow: ["A", "B", "C"] and [1, 2]'
        assert parse_scenarios(content) == ["A", "B", "C"]

    def test_parse_scenarios_rejects_non_strings(self):
        with pytest.raises(ParseError):
            parse_scenarios("[1, 2, 3]")
        with pytest.raises(ParseError):
            parse_scenarios("[]")
