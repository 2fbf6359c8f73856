import asyncio
import json

import httpx
import pytest

from viralscope.errors import UpstreamCallError
from viralscope.vertex import VertexClient


def run_with(handler, fn):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            vertex = VertexClient(client, "ya29.test", "viral-test", location="us-central1")
            return await fn(vertex)

    return asyncio.run(scenario())


def test_text_analysis_calls_generate_content(fake_google):
    outcome = run_with(fake_google.handler, lambda v: v.analyze_text("Check out my new gadget!"))

    request = fake_google.requests[0]
    assert request.url.path == (
        "/v1/projects/viral-test/locations/us-central1"
        "/publishers/google/models/gemini-2.5-flash:generateContent"
    )
    assert request.headers["Authorization"] == "Bearer ya29.test"
    body = json.loads(request.content)
    assert "Check out my new gadget!" in body["contents"][0]["parts"][0]["text"]
    assert body["generationConfig"]["temperature"] == 0.2

    assert outcome.result.virality_score == 72
    assert outcome.result.emotional_tone == "Excitement"


def test_provider_error_message_is_surfaced(fake_google):
    fake_google.fail.add("text-analysis")
    with pytest.raises(UpstreamCallError, match="text-analysis unavailable"):
        run_with(fake_google.handler, lambda v: v.analyze_text("hello"))


def test_timeouts_become_upstream_errors():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamCallError):
        run_with(handler, lambda v: v.analyze_text("hello"))


def test_unexpected_shape_is_an_upstream_error():
    handler = lambda request: httpx.Response(200, json={"candidates": []})
    with pytest.raises(UpstreamCallError):
        run_with(handler, lambda v: v.describe_visuals(["https://cdn.example.com/a.jpg"]))


def test_gs_audio_goes_to_speech_to_text(fake_google):
    transcript = run_with(fake_google.handler, lambda v: v.transcribe("gs://bucket/clip.mp3"))
    assert transcript == fake_google.transcript
    assert fake_google.calls == ["speech"]
    body = json.loads(fake_google.requests[0].content)
    assert body["audio"] == {"uri": "gs://bucket/clip.mp3"}
    assert body["config"]["languageCode"] == "en-US"


def test_web_video_is_transcribed_by_gemini(fake_google):
    transcript = run_with(
        fake_google.handler, lambda v: v.transcribe("https://cdn.example.com/clip.mp4")
    )
    assert transcript == fake_google.transcript
    assert fake_google.calls == ["transcription"]
    part = json.loads(fake_google.requests[0].content)["contents"][0]["parts"][0]
    assert part["fileData"] == {
        "fileUri": "https://cdn.example.com/clip.mp4",
        "mimeType": "video/mp4",
    }


def test_vision_sends_frames_as_file_data(fake_google):
    description = run_with(
        fake_google.handler,
        lambda v: v.describe_visuals(["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.png"]),
    )
    assert description == fake_google.vision_output
    parts = json.loads(fake_google.requests[0].content)["contents"][0]["parts"]
    assert [p["fileData"]["mimeType"] for p in parts[:2]] == ["image/jpeg", "image/png"]


def test_embedding_values_are_returned(fake_google):
    values = run_with(fake_google.handler, lambda v: v.embed("some transcript"))
    assert values == fake_google.embedding
    assert fake_google.requests[0].url.path.endswith("text-embedding-004:predict")
