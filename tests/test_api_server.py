import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient

from reachforge import api_server
from reachforge.generation import GenerationTask, response_cache_key
from reachforge.lessons import LESSONS
from reachforge.metrics import MetricsCollector
from reachforge.passages import Passage
from reachforge.rag_pipeline import build_engine

PASSAGE_TEXT = (
    "Parents often notice changes in sleep during treatment; keeping a calm bedtime routine and "
    "a consistent wake time helps children feel secure."
)


class _FakeSearch:
    def __init__(self, passages=None):
        self.passages = list(passages or [])
        self.calls = []

    def search(self, query_text, top_k):
        self.calls.append(query_text)
        return list(self.passages)


class _FakeGenerator:
    def __init__(self, reply="generated", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def complete(self, prompt_text):
        self.prompts.append(prompt_text)
        if self.error is not None:
            raise self.error
        return self.reply


class TestApiServer(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self._metrics_patch = patch.object(api_server, "metrics_collector", MetricsCollector(self._tmp.name))
        self.metrics = self._metrics_patch.start()
        self.search = _FakeSearch([Passage(text=f"Tip {i}. {PASSAGE_TEXT}") for i in range(5)])
        self.generator = _FakeGenerator("Keep routines steady.")
        self.engine = build_engine(search=self.search, generator=self.generator, start_sweepers=False)
        api_server._state["engine"] = self.engine
        self.client = TestClient(api_server.app)

    def tearDown(self):
        api_server._state.clear()
        self.engine.close()
        self._metrics_patch.stop()
        self._tmp.cleanup()

    def test_query_returns_answer(self):
        response = self.client.post("/api/query", json={"question": "How do I help with sleep?"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"answer": "Keep routines steady."})
        self.assertEqual(self.search.calls, ["How do I help with sleep?"])

    def test_repeated_query_hits_cache(self):
        for _ in range(3):
            self.client.post("/api/query", json={"question": "Sleep?"})
        self.assertEqual(len(self.generator.prompts), 1)
        stats = self.engine.cache_stats()["response_cache"]
        self.assertEqual(stats["hits"], 2)

    def test_slide_returns_content(self):
        response = self.client.post("/api/generateSlide", json={"lessonHeader": "Diagnosis"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"slideContent": "Keep routines steady."})
        self.assertEqual(
            self.search.calls,
            ["Information relevant to: Diagnosis for parents of children with cancer."],
        )

    def test_missing_or_blank_fields_are_400(self):
        cases = [
            ("/api/query", {}, "question is required"),
            ("/api/query", {"question": "   "}, "question is required"),
            ("/api/generateSlide", {}, "lessonHeader is required"),
            ("/api/generateSlide", {"lessonHeader": ""}, "lessonHeader is required"),
            ("/api/retrieve", {"query": ""}, "query is required"),
        ]
        for path, body, detail in cases:
            response = self.client.post(path, json=body)
            self.assertEqual(response.status_code, 400, path)
            self.assertEqual(response.json()["detail"], detail)
        self.assertEqual(self.generator.prompts, [])
        self.assertEqual(self.search.calls, [])

    def test_generation_failure_is_500_and_not_cached(self):
        self.generator.error = TimeoutError("model timed out")
        response = self.client.post("/api/query", json={"question": "Fatigue?"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Internal server error during qa generation.")

        slide = self.client.post("/api/generateSlide", json={"lessonHeader": "Treatment"})
        self.assertEqual(slide.status_code, 500)
        self.assertEqual(slide.json()["detail"], "Internal server error during slide generation.")

        self.generator.error = None
        retry = self.client.post("/api/query", json={"question": "Fatigue?"})
        self.assertEqual(retry.status_code, 200)
        self.assertEqual(self.metrics.get_summary()["errors"]["count"], 2)

    def test_retrieve_returns_passages(self):
        response = self.client.post("/api/retrieve", json={"query": "sleep"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["count"], 5)
        self.assertEqual(len(body["passages"]), 5)
        self.assertTrue(body["passages"][0]["text"].startswith("Tip 0."))

    def test_engine_unavailable_is_503(self):
        api_server._state["engine"] = None
        for path, body in (
            ("/api/query", {"question": "q"}),
            ("/api/generateSlide", {"lessonHeader": "Diagnosis"}),
            ("/api/retrieve", {"query": "q"}),
        ):
            self.assertEqual(self.client.post(path, json=body).status_code, 503, path)
        health = self.client.get("/health").json()
        self.assertEqual(health, {"status": "ok", "pipeline_ready": False, "retrieval_ready": False})

    def test_retrieval_still_served_without_llm(self):
        with patch("reachforge.rag_pipeline._initialize_llm", return_value=None):
            engine = build_engine(search=self.search, start_sweepers=False)
        self.assertIsNone(engine.orchestrator)
        self.assertFalse(engine.generation_ready)
        api_server._state["engine"] = engine

        retrieved = self.client.post("/api/retrieve", json={"query": "sleep"})
        self.assertEqual(retrieved.status_code, 200)
        self.assertEqual(retrieved.json()["count"], 5)
        query = self.client.post("/api/query", json={"question": "q"})
        self.assertEqual(query.status_code, 503)
        slide = self.client.post("/api/generateSlide", json={"lessonHeader": "Diagnosis"})
        self.assertEqual(slide.status_code, 503)
        self.assertEqual(
            self.client.get("/health").json(),
            {"status": "ok", "pipeline_ready": False, "retrieval_ready": True},
        )
        engine.close()

    def test_unexpected_error_is_500_without_details(self):
        api_server._state["engine"] = SimpleNamespace(
            retriever=SimpleNamespace(retrieve=lambda query: 1 / 0),
        )
        client = TestClient(api_server.app, raise_server_exceptions=False)
        response = client.post("/api/retrieve", json={"query": "q"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "An unexpected error occurred."})
        route = self.metrics.get_summary()["routes"]["/api/retrieve"]
        self.assertEqual(route["requests"], 1)
        self.assertEqual(route["errors"], 1)

    def test_lessons_catalog(self):
        response = self.client.get("/api/lessons")
        self.assertEqual(response.status_code, 200)
        headers = [lesson["header"] for lesson in response.json()["lessons"]]
        self.assertEqual(headers, [lesson.header for lesson in LESSONS])

    def test_health_and_metrics(self):
        self.assertEqual(
            self.client.get("/health").json(),
            {"status": "ok", "pipeline_ready": True, "retrieval_ready": True},
        )
        self.client.post("/api/query", json={"question": "q"})
        summary = self.client.get("/metrics").json()
        self.assertEqual(summary["throughput"]["total_requests"], 1)
        self.assertIn("/api/query", summary["routes"])
        self.assertIn("retrieval_cache", summary["caches"])
        self.assertIn("response_cache", summary["caches"])


class TestLifespan(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.executor = ThreadPoolExecutor(max_workers=2)
        self.search = _FakeSearch([Passage(text=f"Tip {i}. {PASSAGE_TEXT}") for i in range(5)])
        self.generator = _FakeGenerator("Slide body.")
        self.engine = build_engine(search=self.search, generator=self.generator, start_sweepers=False)
        # Sweeper with a long interval so startup and shutdown are observable.
        self.engine.retrieval_cache.sweep_interval_seconds = 60.0
        self.engine.retrieval_cache.start()
        self._patches = [
            patch.object(api_server, "metrics_collector", MetricsCollector(self._tmp.name)),
            patch.object(api_server, "_executor", self.executor),
        ]
        for patcher in self._patches:
            patcher.start()

    def tearDown(self):
        for patcher in reversed(self._patches):
            patcher.stop()
        self.executor.shutdown(wait=True)
        self.engine.close()
        api_server._state.clear()
        self._tmp.cleanup()

    def test_startup_builds_engine_and_warms_slides(self):
        with patch.object(api_server, "build_engine", return_value=self.engine) as fake_build, \
                patch.object(api_server, "WARM_LESSON_SLIDES", True):
            with TestClient(api_server.app) as client:
                self.assertIs(api_server._state["engine"], self.engine)
                self.assertTrue(self.engine.retrieval_cache.sweeper_running)
                self.assertEqual(client.get("/health").json()["pipeline_ready"], True)
            fake_build.assert_called_once_with()

        self.executor.shutdown(wait=True)
        self.assertEqual(len(self.generator.prompts), len(LESSONS))
        for lesson in LESSONS:
            self.assertIn(response_cache_key(GenerationTask.TOPIC_SLIDE, lesson.header), self.engine.response_cache)

    def test_shutdown_stops_sweepers_and_clears_state(self):
        with patch.object(api_server, "build_engine", return_value=self.engine), \
                patch.object(api_server, "WARM_LESSON_SLIDES", False):
            with TestClient(api_server.app) as client:
                self.assertEqual(client.post("/api/query", json={"question": "q"}).status_code, 200)
        self.assertFalse(self.engine.retrieval_cache.sweeper_running)
        self.assertEqual(api_server._state, {})
        self.assertEqual(len(self.generator.prompts), 1, "warm-up disabled, only the query generated")

    def test_startup_without_llm_skips_warmup(self):
        with patch("reachforge.rag_pipeline._initialize_llm", return_value=None):
            engine = build_engine(search=self.search, start_sweepers=False)
        with patch.object(api_server, "build_engine", return_value=engine), \
                patch.object(api_server, "WARM_LESSON_SLIDES", True):
            with TestClient(api_server.app) as client:
                self.assertEqual(client.post("/api/retrieve", json={"query": "sleep"}).status_code, 200)
                self.assertEqual(client.post("/api/query", json={"question": "q"}).status_code, 503)
        self.executor.shutdown(wait=True)
        self.assertEqual(self.generator.prompts, [])


class TestMetricsCollector(unittest.TestCase):
    def test_records_routes_and_writes_jsonl(self):
        with tempfile.TemporaryDirectory() as tmp:
            collector = MetricsCollector(tmp)
            collector.record_request("/api/query", 12.5, success=True)
            collector.record_request("/api/query", 7.5, success=False)
            summary = collector.get_summary()
            self.assertEqual(summary["routes"]["/api/query"]["requests"], 2)
            self.assertEqual(summary["errors"]["count"], 1)
            self.assertEqual(summary["errors"]["rate_percent"], 50.0)
            self.assertEqual(summary["latency"]["avg_ms"], 10.0)
            self.assertNotIn("caches", summary)
            with open(f"{tmp}/metrics.jsonl", encoding="utf-8") as fh:
                self.assertEqual(len(fh.readlines()), 2)


if __name__ == "__main__":
    unittest.main()
