"""Activity inference: model fallback order, soft failures, normalization."""

import threading
from unittest.mock import Mock

import pytest
import requests

from ambient.errors import NetworkFailure
from ambient.inference import (
    SYSTEM_PROMPT,
    ActivityInferenceClient,
    ActivityMetadata,
    fallback_activity,
    normalize_activity_summary,
)

from conftest import chat_response


METADATA = ActivityMetadata(
    app_name="Mail",
    bundle_identifier="com.apple.mail",
    window_title="Re: Q3 planning",
    selected_text=None,
)
SCREENSHOT = "data:image/jpeg;base64,AAAA"


def make_client(*responses, api_key="test-key"):
    session = Mock()
    session.post.side_effect = list(responses)
    client = ActivityInferenceClient(
        api_key=api_key,
        base_url="https://example.test/v1/",
        vision_model="vision-model",
        text_model="text-model",
        session=session,
    )
    return client, session


def test_normalize_keeps_first_two_sentences():
    assert normalize_activity_summary("A. B. C.") == "A. B."
    assert normalize_activity_summary("One! Two? Three。Four") == "One. Two."


def test_normalize_leaves_short_text_untouched():
    assert normalize_activity_summary("no terminal punctuation") == "no terminal punctuation"
    two = "The user is replying to Dana.  They are confirming the Q3 date!"
    assert normalize_activity_summary(two) is two


def test_fallback_wording():
    assert fallback_activity("Mail", True) == (
        "Could not reliably infer a two-sentence summary for Mail from the screenshot and metadata."
    )
    assert fallback_activity(None, False) == (
        "Could not reliably infer a two-sentence summary for the active application "
        "from the visible metadata."
    )


def test_no_credential_skips_requests():
    client, session = make_client(api_key="   ")

    result = client.infer_activity(METADATA, SCREENSHOT)

    assert result == fallback_activity("Mail", True)
    session.post.assert_not_called()


def test_vision_failure_falls_back_to_text_model():
    client, session = make_client(
        chat_response(None, status_code=500),
        chat_response("Replying to Dana about Q3 planning. The draft confirms dates."),
    )

    result = client.infer_activity(METADATA, SCREENSHOT)

    assert result == "Replying to Dana about Q3 planning. The draft confirms dates."
    first, second = session.post.call_args_list
    assert first.kwargs["json"]["model"] == "vision-model"
    assert second.kwargs["json"]["model"] == "text-model"
    assert isinstance(second.kwargs["json"]["messages"][1]["content"], str)
    assert first.args[0] == "https://example.test/v1/chat/completions"


def test_without_screenshot_only_text_model_is_tried():
    client, session = make_client(chat_response(None, status_code=429))

    result = client.infer_activity(METADATA, None)

    assert result == fallback_activity("Mail", False)
    assert session.post.call_count == 1
    assert session.post.call_args.kwargs["json"]["model"] == "text-model"


def test_undecodable_json_and_missing_content_are_soft_failures():
    broken = Mock(status_code=200)
    broken.json.side_effect = ValueError("not json")
    empty = Mock(status_code=200)
    empty.json.return_value = {"choices": []}
    client, session = make_client(broken, empty)

    assert client.infer_activity(METADATA, SCREENSHOT) == fallback_activity("Mail", True)
    assert session.post.call_count == 2


def test_transport_error_is_soft_failure():
    client, session = make_client(
        requests.ConnectionError("dns"),
        chat_response("Writing an email. Subject unclear."),
    )

    assert client.infer_activity(METADATA, SCREENSHOT) == "Writing an email. Subject unclear."


def test_long_answer_is_normalized():
    client, _ = make_client(chat_response("  First. Second. Third.  "))

    assert client.infer_activity(METADATA) == "First. Second."


def test_cancelled_before_start():
    client, session = make_client(chat_response("Ignored."))
    cancel = threading.Event()
    cancel.set()

    assert client.infer_activity(METADATA, SCREENSHOT, cancel) == fallback_activity("Mail", True)
    session.post.assert_not_called()


def test_vision_payload_shape():
    client, _ = make_client()

    payload = client.build_payload(METADATA, "vision-model", SCREENSHOT)

    assert payload["temperature"] == 0.2
    system, user = payload["messages"]
    assert system == {"role": "system", "content": SYSTEM_PROMPT}
    parts = user["content"]
    assert [p["type"] for p in parts] == ["text", "text", "image_url"]
    assert parts[1]["text"] == (
        "App: Mail\nBundle ID: com.apple.mail\nWindow: Re: Q3 planning\nSelected text: None"
    )
    assert parts[2]["image_url"] == {"url": SCREENSHOT}


def test_authorization_header():
    client, session = make_client(chat_response("Reading mail."))

    client.infer_activity(METADATA)

    assert session.post.call_args.kwargs["headers"] == {"Authorization": "Bearer test-key"}


def test_request_failure_carries_status_code():
    client, _ = make_client(chat_response(None, status_code=503))

    with pytest.raises(NetworkFailure) as excinfo:
        client.request_activity(METADATA, "vision-model")

    assert excinfo.value.status_code == 503


def test_transport_failure_has_no_status_code():
    client, _ = make_client(requests.exceptions.ConnectionError("connection refused"))

    with pytest.raises(NetworkFailure) as excinfo:
        client.request_activity(METADATA, "vision-model")

    assert excinfo.value.status_code is None
