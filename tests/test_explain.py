import unittest
from types import SimpleNamespace
from unittest import mock

from google.api_core.exceptions import InternalServerError, ResourceExhausted

from lid_quiz import explain
from lid_quiz.explain import ExplanationService

OPTIONS = ["Religionsfreiheit", "Steuern", "Wahlrecht", "Meinungsfreiheit"]


def model(name):
    return SimpleNamespace(name=name, supported_generation_methods=["generateContent"])


class ExplainTestCase(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch.object(explain, "genai")
        self.genai = patcher.start()
        self.addCleanup(patcher.stop)
        self.genai.list_models.return_value = [
            model("models/gemini-1.5-flash"),
            model("models/gemini-2.0-flash"),
            model("models/gemini-2.0-pro"),
            SimpleNamespace(name="models/embedding-001", supported_generation_methods=["embedContent"]),
        ]

    def respond(self, *outcomes):
        """GenerativeModel(...).generate_content() の結果を順に返す。"""
        instance = self.genai.GenerativeModel.return_value
        instance.generate_content.side_effect = list(outcomes)
        return instance


class TestModelSelection(ExplainTestCase):
    def test_configures_only_with_key(self):
        ExplanationService("")
        self.genai.configure.assert_not_called()
        ExplanationService("key")
        self.genai.configure.assert_called_once_with(api_key="key")

    def test_lists_generate_content_models(self):
        names = ExplanationService("key").list_models()
        self.assertEqual(len(names), 3)
        self.assertNotIn("models/embedding-001", names)

    def test_best_model_prefers_version_then_pro(self):
        self.assertEqual(ExplanationService("key").select_best_model(), "models/gemini-2.0-pro")

    def test_candidates_follow_priority(self):
        service = ExplanationService("key", ["latest", "gemini-1.5-flash", "models/gemini-2.0-pro"])
        self.assertEqual(service.candidate_models(), ["models/gemini-2.0-pro", "gemini-1.5-flash"])


class TestGenerate(ExplainTestCase):
    def test_offline_without_key(self):
        self.assertEqual(ExplanationService("").generate("x"), {"offline": True})
        self.assertIsNone(ExplanationService("").explain("Frage", OPTIONS, 3, 0))

    def test_success(self):
        self.respond(SimpleNamespace(text="Weil Meinungsfreiheit gilt."))
        result = ExplanationService("key").generate("x")
        self.assertFalse(result["offline"])
        self.assertEqual(result["model"], "models/gemini-2.0-pro")
        self.assertEqual(result["text"], "Weil Meinungsfreiheit gilt.")

    @mock.patch.object(explain.time, "sleep")
    def test_fails_over_on_api_error(self, _sleep):
        self.respond(InternalServerError("boom"), SimpleNamespace(text="ok"))
        service = ExplanationService("key", ["latest", "gemini-1.5-flash"])
        result = service.generate("x")
        self.assertEqual(result["model"], "gemini-1.5-flash")
        self.assertEqual(result["text"], "ok")

    def test_quota_stops_the_chain(self):
        instance = self.respond(ResourceExhausted("429"), SimpleNamespace(text="never"))
        service = ExplanationService("key", ["latest", "gemini-1.5-flash"])
        result = service.generate("x")
        self.assertTrue(result["offline"])
        self.assertEqual(result["error"], "429")
        self.assertEqual(instance.generate_content.call_count, 1)

    @mock.patch.object(explain.time, "sleep")
    def test_all_failures_mean_offline(self, _sleep):
        self.respond(InternalServerError("a"), InternalServerError("b"))
        service = ExplanationService("key", ["latest", "gemini-1.5-flash"])
        self.assertEqual(service.generate("x"), {"offline": True})


class TestExplain(ExplainTestCase):
    def test_prompt_mentions_both_answers_when_wrong(self):
        prompt = ExplanationService.build_explanation_prompt("Frage?", OPTIONS, 3, 1, "de")
        self.assertIn("Gewählte Antwort: Steuern (falsch)", prompt)
        self.assertIn("Richtige Antwort: Meinungsfreiheit", prompt)
        self.assertIn("Deutsch", prompt)

    def test_prompt_variants(self):
        right = ExplanationService.build_explanation_prompt("Q?", OPTIONS, 3, 3, "en")
        self.assertIn("Chosen Answer: Meinungsfreiheit (correct)", right)
        plain = ExplanationService.build_explanation_prompt("Q?", OPTIONS, 3, None, "en")
        self.assertIn("Correct Answer: Meinungsfreiheit", plain)
        self.assertNotIn("Chosen", plain)

    def test_explain_caches_results(self):
        instance = self.respond(SimpleNamespace(text="  Erklärung.  "))
        service = ExplanationService("key")
        self.assertEqual(service.explain("Frage", OPTIONS, 3, 0), "Erklärung.")
        self.assertEqual(service.explain("Frage", OPTIONS, 3, 0), "Erklärung.")
        self.assertEqual(instance.generate_content.call_count, 1)

    def test_explain_returns_none_on_failure(self):
        self.respond(ResourceExhausted("429"))
        self.assertIsNone(ExplanationService("key").explain("Frage", OPTIONS, 3, 0))

    def test_explain_rejects_bad_indices(self):
        service = ExplanationService("key")
        with self.assertRaises(ValueError):
            service.explain("Frage", OPTIONS, 4, 0)
        with self.assertRaises(ValueError):
            service.explain("Frage", OPTIONS, 3, 9)


if __name__ == "__main__":
    unittest.main()
