"""
Tests for the structured-extraction side: cache, rate limiter and Analyzer.

The LLM client and the clock are injected fakes, so no API key or network
access is needed.
"""

import json
from types import SimpleNamespace

import pytest

from release_parser.analyzer import Analyzer, EXTRACTION_SCHEMA, split_ticket_field
from release_parser.extraction_cache import ExtractionCache, content_hash
from release_parser.rate_limiter import RateLimiter
from release_parser.llm_client import BaseLLMClient, OpenAIClient, AnthropicClient
from release_parser.preprocessor import Preprocessor, to_markdown
from release_parser.segmenter import Segmenter
from release_parser.schemas import CacheRecord, ReleaseMetadata, ExtractedEntry
from release_parser.exceptions import ConfigurationError, LLMClientError


SECTION_HTML = (
    '<h2 id="r32-1">r32.1<a class="sl-anchor-link" href="#r32-1">#</a></h2>'
    "<p><em>Build: 555</em></p>"
    "<h3>Bug Fixes</h3>"
    "<ul><li>Fixed T-100: crash on load</li><li>Improved startup time</li></ul>"
)

PAYLOAD = {
    "release": {"build": "555", "starter_build": "", "released": "2024-01-01"},
    "entries": [
        {"category": "Bug Fixes", "tickets": "T-100, T-101", "description": "Crash on load"},
        {"category": "Bug Fixes", "tickets": "", "description": "   "},
        {"category": "", "tickets": "", "description": "Improved startup time"},
    ],
}


class FakeLLMClient(BaseLLMClient):
    """Records calls and returns a canned response (or raises)."""

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else PAYLOAD
        self.error = error
        self.calls = []

    def complete_json(self, prompt, schema, schema_name="response", system_prompt=None):
        self.calls.append({"prompt": prompt, "schema": schema, "schema_name": schema_name})
        if self.error:
            raise self.error
        return self.response


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _section():
    return Segmenter("https://example.test").segment(SECTION_HTML, "/notes/r32")[0]


def _analyzer(tmp_path, client, **kwargs):
    return Analyzer(
        llm_client=client,
        cache=ExtractionCache(tmp_path / "cache.json"),
        rate_limiter=RateLimiter(min_interval=0),
        ticket_prefix="T",
        **kwargs
    )


# --- Content-addressed cache ---

def test_cache_put_persists_immediately(tmp_path):
    path = tmp_path / "data" / "cache.json"
    cache = ExtractionCache(path)
    record = CacheRecord(
        version="r1",
        url="https://example.test/r1",
        release=ReleaseMetadata(build="1"),
        entries=[ExtractedEntry(category="Fixes", tickets="T-1", description="x")]
    )
    key = cache.key_for("some markdown")
    cache.put(key, record)

    reloaded = ExtractionCache(path)
    assert key in reloaded
    assert reloaded.get(key) == record
    assert json.loads(path.read_text())[key]["version"] == "r1"


def test_cache_key_is_stable_sha256():
    assert ExtractionCache.key_for("abc") == content_hash("abc")
    assert len(content_hash("abc")) == 64
    assert content_hash("abc") != content_hash("abd")


def test_cache_corrupt_file_resets_to_empty(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json")
    cache = ExtractionCache(path)
    assert len(cache) == 0


def test_cache_malformed_record_is_ignored(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"k1": {"url": "no version"}, "k2": {"version": "r2"}}))
    cache = ExtractionCache(path)

    assert cache.get("k1") is None
    assert [key for key, _ in cache.records()] == ["k2"]


def test_cache_update_url(tmp_path):
    cache = ExtractionCache(tmp_path / "cache.json")
    cache.put("k", CacheRecord(version="r1", url="old"))

    assert cache.update_url("k", "new") is True
    assert cache.update_url("k", "new") is False
    assert cache.update_url("missing", "new") is False
    assert ExtractionCache(tmp_path / "cache.json").get("k").url == "new"


def test_cache_current_records_prefer_latest_revision(tmp_path):
    cache = ExtractionCache(tmp_path / "cache.json")
    page = "https://example.test/notes/r32"
    cache.put("r31", CacheRecord(version="r31", url="https://example.test/notes/r31#r31"))
    cache.put("old", CacheRecord(version="r32.1", url=f"{page}#r32-1", release=ReleaseMetadata(build="1")))
    cache.put("r32", CacheRecord(version="r32", url=f"{page}#r32"))
    cache.put("new", CacheRecord(version="r32.1", url=f"{page}#r32-1", release=ReleaseMetadata(build="2")))

    current = cache.current_records()

    # Superseded revisions stay cached but are not current
    assert len(cache) == 4
    assert [key for key, _ in current] == ["r31", "new", "r32"]


def test_cache_touch_restores_older_revision(tmp_path):
    cache = ExtractionCache(tmp_path / "cache.json")
    cache.put("old", CacheRecord(version="r1", url="https://example.test/notes/r1#a"))
    cache.put("other", CacheRecord(version="r2", url="https://example.test/notes/r1#b"))
    cache.put("new", CacheRecord(version="r1", url="https://example.test/notes/r1#a"))

    assert cache.touch("new") is False
    assert cache.touch("old") is True
    assert cache.touch("missing") is False

    reloaded = ExtractionCache(tmp_path / "cache.json")
    assert [key for key, _ in reloaded.current_records()] == ["old", "other"]


# --- Rate limiter ---

def test_rate_limiter_enforces_interval():
    clock = FakeClock()
    limiter = RateLimiter(min_interval=4.0, clock=clock.time, sleep=clock.sleep)

    assert limiter.wait() == 0.0          # first call goes straight through
    clock.now += 1.0
    assert limiter.wait() == pytest.approx(3.0)
    clock.now += 10.0
    assert limiter.wait() == 0.0
    assert clock.sleeps == [pytest.approx(3.0)]


# --- Preprocessor ---

def test_preprocessor_markdown_drops_anchor_links_and_images():
    markdown = Preprocessor().to_markdown(
        '<h2>r1<a class="sl-anchor-link" href="#r1">Section titled r1</a></h2>'
        '<img src="x.png" alt="shot"><ul><li>One</li><li>Two</li></ul>'
    )
    assert "Section titled" not in markdown
    assert "shot" not in markdown
    assert "- One" in markdown
    assert "- Two" in markdown


def test_preprocessor_markdown_empty_section():
    assert to_markdown("") == ""


# --- Analyzer ---

def test_split_ticket_field():
    assert split_ticket_field("T-1, T-2,T-1, ") == ["T-1", "T-2"]
    assert split_ticket_field("") == []


def test_analyzer_calls_service_once_then_uses_cache(tmp_path):
    client = FakeLLMClient()
    analyzer = _analyzer(tmp_path, client)
    section = _section()

    first = analyzer.extract(section)
    second = analyzer.extract(section)

    assert len(client.calls) == 1
    assert first.source == "ai"
    assert second.source == "cache"
    assert second.entries == first.entries
    assert second.release == first.release


def test_analyzer_result_shape(tmp_path):
    result = _analyzer(tmp_path, FakeLLMClient()).extract(_section())

    assert result.version == "r32.1"
    assert result.url == "https://example.test/notes/r32#r32-1"
    assert result.release.build == "555"
    # Blank descriptions are dropped
    assert [e.description for e in result.entries] == ["Crash on load", "Improved startup time"]
    assert result.entries[0].tickets == ["T-100", "T-101"]
    assert result.entries[0].url == result.url


def test_analyzer_sends_strict_schema_and_markdown(tmp_path):
    client = FakeLLMClient()
    _analyzer(tmp_path, client).extract(_section())

    call = client.calls[0]
    assert call["schema"] is EXTRACTION_SCHEMA
    assert call["schema"]["additionalProperties"] is False
    assert call["schema"]["properties"]["entries"]["items"]["additionalProperties"] is False
    assert "Fixed T-100: crash on load" in call["prompt"]
    assert "T-XXXXX" in call["prompt"]
    assert "<li>" not in call["prompt"]


def test_analyzer_cache_survives_process_restart(tmp_path):
    _analyzer(tmp_path, FakeLLMClient()).extract(_section())

    client = FakeLLMClient()
    result = _analyzer(tmp_path, client).extract(_section())

    assert client.calls == []
    assert result.source == "cache"


def test_analyzer_force_refresh_bypasses_and_overwrites(tmp_path):
    _analyzer(tmp_path, FakeLLMClient()).extract(_section())

    refreshed = dict(PAYLOAD, entries=[{"category": "Fixes", "tickets": "", "description": "New text"}])
    client = FakeLLMClient(response=refreshed)
    result = _analyzer(tmp_path, client, force_refresh=True).extract(_section())

    assert len(client.calls) == 1
    assert [e.description for e in result.entries] == ["New text"]
    cache = ExtractionCache(tmp_path / "cache.json")
    assert len(cache) == 1
    [(_, record)] = list(cache.records())
    assert record.entries[0].description == "New text"


def test_analyzer_failed_refresh_keeps_cached_result(tmp_path):
    _analyzer(tmp_path, FakeLLMClient()).extract(_section())

    client = FakeLLMClient(error=LLMClientError("boom", provider="openai"))
    result = _analyzer(tmp_path, client, force_refresh=True).extract(_section())

    assert result.source == "pattern"
    [(_, record)] = list(ExtractionCache(tmp_path / "cache.json").records())
    assert record.entries[0].description == "Crash on load"


def test_analyzer_service_error_falls_back_to_patterns(tmp_path):
    client = FakeLLMClient(error=LLMClientError("503", provider="openai"))
    analyzer = _analyzer(tmp_path, client)
    result = analyzer.extract(_section())

    assert result.source == "pattern"
    assert [(e.ticket_ids, e.description) for e in result.entries] == [
        ("T-100", "crash on load"),
        ("", "Improved startup time"),
    ]
    assert result.release.build == "555"
    assert len(analyzer.cache) == 0


def test_analyzer_malformed_payload_falls_back(tmp_path):
    client = FakeLLMClient(response={"entries": "not a list"})
    analyzer = _analyzer(tmp_path, client)
    result = analyzer.extract(_section())

    assert result.source == "pattern"
    assert len(analyzer.cache) == 0


def test_analyzer_heading_only_section_yields_no_entries(tmp_path):
    empty = {"release": {"build": "", "starter_build": "", "released": ""}, "entries": []}
    client = FakeLLMClient(response=empty)
    section = Segmenter().segment('<h2 id="r9">r9</h2><h2 id="r10">r10</h2>', "/notes")[0]
    result = _analyzer(tmp_path, client).extract(section)

    assert result.version == "r9"
    assert result.entries == []
    assert result.source == "ai"
    assert len(client.calls) == 1


def test_analyzer_missing_content_falls_back(tmp_path, monkeypatch):
    client = FakeLLMClient()
    analyzer = _analyzer(tmp_path, client)
    monkeypatch.setattr(analyzer.preprocessor, "to_markdown", lambda html: "")

    result = analyzer.extract(_section())
    assert result.source == "pattern"
    assert client.calls == []


def test_analyzer_rate_limits_service_calls_only(tmp_path):
    clock = FakeClock()
    client = FakeLLMClient()
    analyzer = Analyzer(
        llm_client=client,
        cache=ExtractionCache(tmp_path / "cache.json"),
        rate_limiter=RateLimiter(min_interval=4.0, clock=clock.time, sleep=clock.sleep),
        ticket_prefix="T"
    )
    sections = Segmenter().segment(
        "<h2>r1</h2><ul><li>a</li></ul><h2>r2</h2><ul><li>b</li></ul>", "/notes"
    )

    for section in sections:
        analyzer.extract(section)
    for section in sections:
        analyzer.extract(section)      # cache hits: no waiting

    assert len(client.calls) == 2
    assert clock.sleeps == [pytest.approx(4.0)]


def test_analyzer_without_credentials_fails_fast(tmp_path, monkeypatch):
    for var in ("AI_TOKEN", "OPENAI_API_KEY", "LLM_PROVIDER"):
        monkeypatch.delenv(var, raising=False)

    with pytest.raises(ConfigurationError):
        Analyzer(cache=ExtractionCache(tmp_path / "cache.json"))


# --- Provider clients ---

def _fake_openai(content, captured):
    def create(**kwargs):
        captured.update(kwargs)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_openai_client_requests_strict_schema():
    captured = {}
    client = OpenAIClient(api_key="token", client=_fake_openai('{"entries": []}', captured))

    result = client.complete_json("prompt", EXTRACTION_SCHEMA, "release_entries", system_prompt="system")

    assert result == {"entries": []}
    assert captured["temperature"] == 0
    assert captured["messages"][0] == {"role": "system", "content": "system"}
    json_schema = captured["response_format"]["json_schema"]
    assert json_schema["strict"] is True
    assert json_schema["name"] == "release_entries"
    assert json_schema["schema"] is EXTRACTION_SCHEMA


@pytest.mark.parametrize("content", ["", "not json"])
def test_openai_client_bad_content_raises(content):
    client = OpenAIClient(api_key="token", client=_fake_openai(content, {}))
    with pytest.raises(LLMClientError):
        client.complete_json("prompt", EXTRACTION_SCHEMA)


def test_anthropic_client_embeds_schema_and_strips_fences(monkeypatch):
    client = AnthropicClient(api_key="key", client=object())
    prompts = []

    def complete(prompt, system_prompt=None):
        prompts.append(prompt)
        return '```json\n{"entries": [], "release": {"build": "1"}}\n```'

    monkeypatch.setattr(client, "_complete", complete)
    result = client.complete_json("Extract this", EXTRACTION_SCHEMA, "release_entries")

    assert result == {"entries": [], "release": {"build": "1"}}
    assert prompts[0].startswith("Extract this")
    assert "release_entries" in prompts[0]
    assert json.dumps(EXTRACTION_SCHEMA) in prompts[0]


@pytest.mark.parametrize("reply", ["", "   ", "Sorry, I cannot help with that."])
def test_anthropic_client_unusable_reply_raises(monkeypatch, reply):
    client = AnthropicClient(api_key="key", client=object())
    monkeypatch.setattr(client, "_complete", lambda prompt, system_prompt=None: reply)

    with pytest.raises(LLMClientError) as exc_info:
        client.complete_json("Extract this", EXTRACTION_SCHEMA)
    assert exc_info.value.provider == "anthropic"
