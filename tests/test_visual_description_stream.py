"""Tests for the Gemini visual-description stream."""

import base64
from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import ConfigurationError, DeadlineExceeded, DecodeError, ProviderError
from models import Keyframe
from request_context import RequestContext
from visual_description_stream import (
    FIRST_FRAME_CONTEXT,
    MOTION_VOCABULARY,
    build_prompt,
    call_vision_model,
    error_marker,
    run_visual_descriptions,
)


@pytest.fixture
def ctx():
    return RequestContext(timeout_seconds=30.0)


class TestBuildPrompt:
    """Tests for the per-frame prompt."""

    def test_contains_context_and_timestamp(self):
        prompt = build_prompt("A woman holds a bottle.", 2.5)

        assert "Previous frame context: A woman holds a bottle." in prompt
        assert "Timestamp: 2.5s" in prompt

    def test_first_frame_sentinel(self):
        prompt = build_prompt(FIRST_FRAME_CONTEXT, 0.0)

        assert "This is the first frame of the ad." in prompt
        assert "Timestamp: 0.0s" in prompt

    def test_lists_motion_vocabulary(self):
        prompt = build_prompt(FIRST_FRAME_CONTEXT, 1.0)

        for term in MOTION_VOCABULARY:
            assert term in prompt
        assert "Camera movement" in prompt
        assert "Emotional tone" in prompt


class TestCallVisionModel:
    """Tests for call_vision_model."""

    @patch("visual_description_stream.requests.post")
    def test_success(self, mock_post, ctx, gemini_reply):
        mock_post.return_value = gemini_reply("  A product close-up.  ")

        text = call_vision_model(ctx, "gm-key", b"jpeg", "describe")

        assert text == "A product close-up."

    @patch("visual_description_stream.requests.post")
    def test_request_shape(self, mock_post, ctx, gemini_reply):
        mock_post.return_value = gemini_reply("ok")

        call_vision_model(ctx, "gm-key", b"jpeg-bytes", "describe this",
                          base_url="http://gemini.test/", model="gemini-test")

        args, kwargs = mock_post.call_args
        assert args[0] == "http://gemini.test/v1beta/models/gemini-test:generateContent"
        assert kwargs["params"] == {"key": "gm-key"}
        parts = kwargs["json"]["contents"][0]["parts"]
        assert len(parts) == 2
        assert parts[0] == {"text": "describe this"}
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert base64.b64decode(parts[1]["inline_data"]["data"]) == b"jpeg-bytes"
        assert 0 < kwargs["timeout"] <= 30.0

    @patch("visual_description_stream.requests.post")
    def test_rate_limited(self, mock_post, ctx, make_response):
        mock_post.return_value = make_response(status_code=429, text="quota exceeded")

        with pytest.raises(ProviderError) as exc_info:
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

        assert exc_info.value.status_code == 429
        assert "429" in str(exc_info.value)

    @patch("visual_description_stream.requests.post")
    def test_api_error_field(self, mock_post, ctx, make_response):
        mock_post.return_value = make_response(json_body={"error": {"message": "API key not valid"}})

        with pytest.raises(ProviderError, match="gemini error: API key not valid"):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

    @patch("visual_description_stream.requests.post")
    def test_no_candidates(self, mock_post, ctx, make_response):
        mock_post.return_value = make_response(json_body={"candidates": []})

        with pytest.raises(ProviderError, match="empty response from gemini"):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

    @patch("visual_description_stream.requests.post")
    def test_blank_text(self, mock_post, ctx, gemini_reply):
        mock_post.return_value = gemini_reply("   ")

        with pytest.raises(ProviderError, match="empty response from gemini"):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

    @patch("visual_description_stream.requests.post")
    def test_malformed_body(self, mock_post, ctx, make_response):
        mock_post.return_value = make_response(text="not json")

        with pytest.raises(DecodeError):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

    @patch("visual_description_stream.requests.post")
    def test_transport_error(self, mock_post, ctx):
        mock_post.side_effect = requests.ConnectionError("reset by peer")

        with pytest.raises(ProviderError, match="reset by peer"):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

    @patch("visual_description_stream.requests.post")
    def test_cancelled_context(self, mock_post, ctx):
        ctx.cancel()

        with pytest.raises(DeadlineExceeded):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

        mock_post.assert_not_called()

    @patch("visual_description_stream.requests.post")
    def test_no_time_left_is_deadline_exceeded(self, mock_post):
        readings = iter([0.0, 29.5, 30.0])
        ctx = RequestContext(30.0, clock=lambda: next(readings))

        with pytest.raises(DeadlineExceeded):
            call_vision_model(ctx, "gm-key", b"jpeg", "describe")

        mock_post.assert_not_called()


class TestRunVisualDescriptions:
    """Tests for the sequential per-frame fold."""

    def test_context_is_carried_forward(self, ctx, keyframes):
        describe = MagicMock(side_effect=["A woman smiles.", "She opens the bottle."])

        result = run_visual_descriptions(ctx, keyframes, "gm-key", describe=describe)

        assert [f.description for f in result.frames] == ["A woman smiles.", "She opens the bottle."]
        assert [f.frame_index for f in result.frames] == [0, 5]
        assert [f.timestamp_sec for f in result.frames] == [0.0, 2.5]

        first_prompt, first_image = describe.call_args_list[0].args
        second_prompt, second_image = describe.call_args_list[1].args
        assert FIRST_FRAME_CONTEXT in first_prompt
        assert first_image == b"img1"
        assert "Previous frame context: A woman smiles." in second_prompt
        assert second_image == b"img2"

    def test_failed_frame_keeps_previous_context(self, ctx, keyframes):
        describe = MagicMock(side_effect=[ProviderError("gemini returned 429: quota"), "A bottle on a table."])

        result = run_visual_descriptions(ctx, keyframes, "gm-key", describe=describe)

        assert result.frames[0].description == "[Error: gemini returned 429: quota]"
        assert result.frames[1].description == "A bottle on a table."
        second_prompt = describe.call_args_list[1].args[0]
        assert f"Previous frame context: {FIRST_FRAME_CONTEXT}" in second_prompt

    def test_failure_after_success_carries_last_good_description(self, ctx):
        frames = [
            Keyframe(index=i, timestamp_sec=float(i), image_bytes=b"img")
            for i in range(3)
        ]
        describe = MagicMock(side_effect=["Opening shot.", DecodeError("bad body"), "Closing logo."])

        result = run_visual_descriptions(ctx, frames, "gm-key", describe=describe)

        assert len(result.frames) == 3
        assert result.frames[1].description.startswith("[Error:")
        third_prompt = describe.call_args_list[2].args[0]
        assert "Previous frame context: Opening shot." in third_prompt

    def test_every_frame_fails(self, ctx, keyframes):
        describe = MagicMock(side_effect=ProviderError("down"))

        result = run_visual_descriptions(ctx, keyframes, "gm-key", describe=describe)

        assert [f.description for f in result.frames] == ["[Error: down]", "[Error: down]"]

    def test_no_keyframes(self, ctx):
        describe = MagicMock()

        result = run_visual_descriptions(ctx, [], "gm-key", describe=describe)

        assert result.frames == []
        describe.assert_not_called()

    @patch("visual_description_stream.requests.post")
    def test_default_describe_uses_gemini(self, mock_post, ctx, keyframes, gemini_reply):
        mock_post.side_effect = [gemini_reply("First."), gemini_reply("Second.")]

        result = run_visual_descriptions(ctx, keyframes, "gm-key")

        assert [f.description for f in result.frames] == ["First.", "Second."]
        assert mock_post.call_count == 2

    def test_missing_api_key(self, ctx, keyframes):
        with pytest.raises(ConfigurationError):
            run_visual_descriptions(ctx, keyframes, "")


def test_error_marker():
    assert error_marker(ProviderError("boom")) == "[Error: boom]"
