from __future__ import annotations

import base64
import threading
from io import BytesIO
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from app.config import ReplicateConfig, Settings
from app.errors import (
    ConfigurationError,
    FallbackTransformError,
    InvalidRequest,
    ProvidersExhausted,
    RequestCancelled,
    UpstreamError,
)
from app.models import (
    EditRequest,
    GenerationRequest,
    InputImage,
    ProviderCallSpec,
    ProviderChoice,
    ProviderResponse,
)
from app.services.fallback import FallbackCoordinator
from app.services.image_provider.imagen_provider import ImagenProvider
from app.services.retry import RetryExecutor


def _png(width: int = 400, height: int = 200) -> bytes:
    bio = BytesIO()
    Image.new("RGB", (width, height), (10, 200, 10)).save(bio, "PNG")
    return bio.getvalue()


class FakeGenerator:
    def __init__(
        self,
        name: str,
        outcomes: list,
        *,
        configured: bool = True,
        supports_input_image: bool = False,
    ) -> None:
        self.name = name
        self.model = f"{name}-model"
        self.outcomes = outcomes
        self.is_configured = configured
        self.supports_input_image = supports_input_image
        self.calls = 0
        self.requests: list[GenerationRequest] = []

    def build_spec(self, request: GenerationRequest) -> ProviderCallSpec:
        self.requests.append(request)
        return ProviderCallSpec(provider=self.name, model=self.model, payload={"prompt": request.prompt})

    def invoke(self, spec: ProviderCallSpec) -> ProviderResponse:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(output=outcome)


class FakeEditor:
    name = "photoroom"
    model = "photoroom"

    def __init__(self, outcomes: list, *, configured: bool = True) -> None:
        self.outcomes = outcomes
        self.is_configured = configured
        self.calls = 0
        self.specs: list[dict] = []

    def build_expand_spec(self, image, mime_type, dimensions, *, seed=None, remove_text=False):
        self.specs.append({"dimensions": dimensions, "seed": seed, "remove_text": remove_text})
        return ProviderCallSpec(provider=self.name, model=self.model, payload={"outputSize": dimensions.token})

    def build_text_removal_spec(self, image, mime_type, *, mode="ai.all"):
        self.specs.append({"mode": mode})
        return ProviderCallSpec(provider=self.name, model=self.model, payload={"textRemoval.mode": mode})

    def invoke(self, spec):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(output=outcome, content_type="image/png")


def make_coordinator(*, primary=None, backup=None, editor=None, local_fallback=None):
    providers = {}
    if primary is not None:
        providers[ProviderChoice.PRIMARY] = primary
    if backup is not None:
        providers[ProviderChoice.BACKUP] = backup
    return FallbackCoordinator(
        Settings(),
        generation_providers=providers,
        edit_provider=editor or FakeEditor([b"unused"]),
        retry=RetryExecutor(sleep=lambda _: None),
        local_fallback=local_fallback,
    )


@pytest.fixture
def source_download(monkeypatch):
    calls = []

    class DummyResponse:
        content = _png(4000, 2000)

        def raise_for_status(self):
            return None

    def fake_get(url, timeout):
        calls.append(url)
        return DummyResponse()

    monkeypatch.setattr("app.services.fallback.requests.get", fake_get)
    return calls


# ---------- generation ----------


def test_primary_exhausted_backup_succeeds():
    primary = FakeGenerator("primary", [UpstreamError("upstream 503", status_code=503)])
    backup = FakeGenerator("backup", [["https://cdn.example.com/b.png"]])

    result = make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    assert result.used_fallback is True
    assert result.provider_used == "backup"
    assert result.model_used == "backup-model"
    assert result.images == ("https://cdn.example.com/b.png",)
    assert "upstream 503" in result.fallback_reason
    assert primary.calls == 3
    assert backup.calls == 1


def test_requested_provider_success_is_not_a_fallback():
    primary = FakeGenerator("primary", [["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"]])
    backup = FakeGenerator("backup", [["https://cdn.example.com/z.png"]])

    result = make_coordinator(primary=primary, backup=backup).generate(
        GenerationRequest(prompt="Sale", num_outputs=2)
    )

    assert result.used_fallback is False
    assert result.fallback_reason is None
    assert len(result.images) == 2
    assert backup.calls == 0


def test_backup_requested_with_one_failed_call_returns_single_image():
    lock = threading.Lock()
    counter = {"n": 0}

    def run(model, payload):
        with lock:
            counter["n"] += 1
            n = counter["n"]
        if n == 2:
            raise UpstreamError("safety filter")
        return "https://replicate.delivery/ok.jpg"

    client = MagicMock()
    client.run.side_effect = run
    backup = ImagenProvider(ReplicateConfig(api_token="r8_test"), client=client)
    primary = FakeGenerator("primary", [["https://cdn.example.com/never.png"]])

    result = make_coordinator(primary=primary, backup=backup).generate(
        GenerationRequest(prompt="Sale", num_outputs=2, provider=ProviderChoice.BACKUP)
    )

    assert result.images == ("https://replicate.delivery/ok.jpg",)
    assert result.used_fallback is False
    assert result.provider_used == "backup"
    assert result.dropped == 1
    assert primary.calls == 0


def test_no_usable_images_switches_without_retrying():
    primary = FakeGenerator("primary", [[{"status": "done"}]])
    backup = FakeGenerator("backup", [["https://cdn.example.com/b.png"]])

    result = make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    assert primary.calls == 1
    assert result.provider_used == "backup"


def test_all_providers_failing_raises_composite_error():
    primary = FakeGenerator("primary", [UpstreamError("primary down")])
    backup = FakeGenerator("backup", [UpstreamError("backup down")])

    with pytest.raises(ProvidersExhausted) as excinfo:
        make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    attempts = excinfo.value.attempts
    assert [a.provider for a in attempts] == ["primary", "backup"]
    assert "backup down" in str(attempts[-1].error)
    payload = excinfo.value.to_payload()
    assert payload["error"] == "PROVIDERS_EXHAUSTED"
    assert len(payload["attempts"]) == 2


def test_nothing_configured_raises_before_any_call():
    primary = FakeGenerator("primary", [["https://x"]], configured=False)
    backup = FakeGenerator("backup", [["https://y"]], configured=False)

    with pytest.raises(ConfigurationError):
        make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    assert primary.calls == backup.calls == 0


def test_unconfigured_requested_provider_goes_to_alternate():
    primary = FakeGenerator("primary", [["https://x"]], configured=False)
    backup = FakeGenerator("backup", [["https://cdn.example.com/b.png"]])

    result = make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    assert result.provider_used == "backup"
    assert result.used_fallback is True


def test_fatal_errors_propagate_without_switching():
    primary = FakeGenerator("primary", [InvalidRequest("prompt rejected")])
    backup = FakeGenerator("backup", [["https://cdn.example.com/b.png"]])

    with pytest.raises(InvalidRequest):
        make_coordinator(primary=primary, backup=backup).generate(GenerationRequest(prompt="Sale"))

    assert backup.calls == 0


def test_cancelled_request_stops_everything():
    primary = FakeGenerator("primary", [["https://x"]])
    event = threading.Event()
    event.set()

    with pytest.raises(RequestCancelled):
        make_coordinator(primary=primary).generate(GenerationRequest(prompt="Sale"), cancel_event=event)

    assert primary.calls == 0


def test_input_image_only_goes_to_capable_provider():
    primary = FakeGenerator("primary", [UpstreamError("primary down")], supports_input_image=True)
    backup = FakeGenerator("backup", [["https://cdn.example.com/b.png"]])
    image = InputImage(_png(), "image/png", "ad.png")

    with pytest.raises(ProvidersExhausted) as excinfo:
        make_coordinator(primary=primary, backup=backup).translate(image, "German")

    assert [a.provider for a in excinfo.value.attempts] == ["primary"]
    assert backup.calls == 0
    sent = primary.requests[0]
    assert "German" in sent.prompt
    assert sent.aspect_ratio == "1:1"
    assert sent.input_image is not None


def test_resize_targets_landscape():
    primary = FakeGenerator("primary", [["https://cdn.example.com/wide.png"]], supports_input_image=True)

    result = make_coordinator(primary=primary).resize(InputImage(_png(), "image/png"))

    assert result.images == ("https://cdn.example.com/wide.png",)
    assert primary.requests[0].aspect_ratio == "3:2"


def test_translate_requires_language():
    with pytest.raises(InvalidRequest):
        make_coordinator(primary=FakeGenerator("primary", [["https://x"]])).translate(
            InputImage(_png(), "image/png"), "  "
        )


# ---------- editing ----------


def test_expand_success_returns_remote_image(source_download):
    editor = FakeEditor([_png(1200, 1200)])

    result = make_coordinator(editor=editor).expand(
        EditRequest(image_url="https://cdn.example.com/src.png", target_ratio="1:1", seed=42)
    )

    assert result.provider_used == "photoroom"
    assert result.used_fallback is False
    assert result.image.startswith("data:image/png;base64,")
    assert (result.dimensions.width, result.dimensions.height) == (1200, 1200)
    assert editor.specs[0]["seed"] == 42
    assert source_download == ["https://cdn.example.com/src.png"]


def test_expand_remote_failure_degrades_to_local_crop(source_download):
    editor = FakeEditor([UpstreamError("PhotoRoom returned HTTP 500", status_code=500)])

    result = make_coordinator(editor=editor).expand(
        EditRequest(image_url="https://cdn.example.com/src.png", target_ratio="1:1")
    )

    assert editor.calls == 3
    assert result.used_fallback is True
    assert result.provider_used == "local-crop"
    assert "HTTP 500" in result.fallback_reason
    encoded = result.image.split(",", 1)[1]
    assert Image.open(BytesIO(base64.b64decode(encoded))).size == (1200, 1200)


def test_expand_local_failure_raises_composite(source_download):
    editor = FakeEditor([UpstreamError("down")])
    local = MagicMock()
    local.transform.side_effect = FallbackTransformError("cannot decode")

    with pytest.raises(ProvidersExhausted) as excinfo:
        make_coordinator(editor=editor, local_fallback=local).expand(
            EditRequest(image_url="https://cdn.example.com/src.png", target_ratio="4:5")
        )

    assert [a.provider for a in excinfo.value.attempts] == ["photoroom", "local-crop"]


def test_unreachable_image_url_fails_before_provider_call(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr("app.services.fallback.requests.get", fake_get)
    editor = FakeEditor([b"unused"])

    with pytest.raises(InvalidRequest):
        make_coordinator(editor=editor).expand(
            EditRequest(image_url="https://unreachable.example.com/src.png", target_ratio="1:1")
        )

    assert editor.calls == 0
    assert editor.specs == []


def test_expand_rejects_unknown_ratio(source_download):
    with pytest.raises(InvalidRequest):
        make_coordinator().expand(EditRequest(image_url="https://cdn.example.com/src.png", target_ratio="2:1"))

    assert source_download == []


def test_expand_requires_editor_credentials(source_download):
    with pytest.raises(ConfigurationError):
        make_coordinator(editor=FakeEditor([b"x"], configured=False)).expand(
            EditRequest(image_url="https://cdn.example.com/src.png", target_ratio="1:1")
        )

    assert source_download == []


def test_expand_accepts_data_uri_source():
    editor = FakeEditor([_png(1080, 1350)])
    data_uri = "data:image/png;base64," + base64.b64encode(_png()).decode()

    result = make_coordinator(editor=editor).expand(EditRequest(image_url=data_uri, target_ratio="4:5"))

    assert result.provider_used == "photoroom"
    assert (result.dimensions.width, result.dimensions.height) == (1080, 1350)


def test_remove_text_has_no_local_fallback(source_download):
    editor = FakeEditor([UpstreamError("down")])

    with pytest.raises(ProvidersExhausted):
        make_coordinator(editor=editor).remove_text("https://cdn.example.com/src.png", mode="ai.artificial")

    assert editor.specs == [{"mode": "ai.artificial"}]


def test_remove_text_success(source_download):
    editor = FakeEditor([_png(10, 10)])

    result = make_coordinator(editor=editor).remove_text("https://cdn.example.com/src.png")

    assert result.remove_text is True
    assert result.image.startswith("data:image/png;base64,")
