"""Tests for token usage extraction and the AI usage summary."""

import json
from datetime import datetime, timedelta, timezone

from logger import AICallTracker, extract_token_usage, summarize_ai_usage


class TestExtractTokenUsage:
    def test_openai_shape(self):
        usage = extract_token_usage({"usage": {"prompt_tokens": 10, "completion_tokens": 5}})
        assert usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    def test_claude_shape(self):
        usage = extract_token_usage({"usage": {"input_tokens": 7, "output_tokens": 3}})
        assert usage["total_tokens"] == 10

    def test_gemini_and_ollama_shapes(self):
        gemini = {"usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6}}
        assert extract_token_usage(gemini)["completion_tokens"] == 6
        assert extract_token_usage({"prompt_eval_count": 2, "eval_count": 9})["total_tokens"] == 11

    def test_nothing_reported(self):
        assert extract_token_usage({"choices": []}) == {}
        assert extract_token_usage(None) == {}


class TestAICallTracker:
    def test_estimates_tokens_when_provider_reports_none(self):
        tracker = AICallTracker(provider="Ollama", prompt_chars=400).start()
        record = tracker.finish(response_chars=80)
        assert record["token_usage"] == {"estimated": True, "prompt_tokens": 100,
                                         "completion_tokens": 20, "total_tokens": 120}
        assert record["success"]

    def test_context_manager_records_failure(self):
        records = []
        tracker = AICallTracker(provider="Claude")
        tracker.finish = lambda **kw: records.append(kw)
        try:
            with tracker:
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert records == [{"success": False, "error": "RuntimeError: boom"}]


class TestSummarizeAIUsage:
    def write(self, path, *records):
        path.write_text("".join(json.dumps(r) + "\n" for r in records) + "not json\n",
                        encoding="utf-8")

    def test_aggregates_recent_calls(self, tmp_path):
        now = datetime.now(timezone.utc)
        old = (now - timedelta(hours=30)).isoformat()
        path = tmp_path / "ai_usage.jsonl"
        self.write(
            path,
            {"timestamp": now.isoformat(), "provider": "Claude", "model": "m1", "success": True,
             "elapsed_ms": 300, "token_usage": {"prompt_tokens": 10, "completion_tokens": 20}},
            {"timestamp": now.isoformat(), "provider": "Claude", "model": "m1", "success": False,
             "elapsed_ms": 100, "token_usage": {}},
            {"timestamp": old, "provider": "OpenAI", "success": True, "elapsed_ms": 50},
        )
        summary = summarize_ai_usage(24, path=path)
        assert summary["total_calls"] == 2
        assert summary["failed_calls"] == 1
        assert summary["error_rate_pct"] == 50.0
        assert summary["total_tokens"] == 30
        assert summary["avg_elapsed_ms"] == 200
        assert summary["slowest_call"]["elapsed_ms"] == 300
        assert summary["providers"] == {"Claude": {"calls": 2, "avg_elapsed_ms": 200}}
        assert summary["models_used"] == ["m1"]

    def test_missing_file(self, tmp_path):
        summary = summarize_ai_usage(path=tmp_path / "none.jsonl")
        assert summary["total_calls"] == 0
        assert summary["slowest_call"] is None
