import json
import unittest
import importlib

from _test_utils import add_src_to_path

add_src_to_path()

translator = importlib.import_module("betfair_nlp.nlq.translator")
prompts = importlib.import_module("betfair_nlp.nlq.prompts")
errors = importlib.import_module("betfair_nlp.core.errors")

PAYLOAD = {
    "sqlQuery": "SELECT row_to_json(t) FROM (SELECT market_id FROM market_definitions) t;",
    "naturalLanguageInterpretation": "Lists every market.",
}


class TestParseTranslationResponse(unittest.TestCase):
    def test_whole_body_json(self) -> None:
        result = translator.parse_translation_response(json.dumps(PAYLOAD))
        self.assertEqual(result.script, PAYLOAD["sqlQuery"])
        self.assertEqual(result.interpretation, "Lists every market.")
        self.assertTrue(result.has_script)

    def test_fenced_block(self) -> None:
        for tag in ("json", "javascript", "js", "JSON"):
            text = f"Here you go:\n```{tag}\n{json.dumps(PAYLOAD)}\n```\nEnjoy {{not json}}"
            with self.subTest(tag=tag):
                result = translator.parse_translation_response(text)
                self.assertEqual(result.script, PAYLOAD["sqlQuery"])

    def test_first_brace_substring(self) -> None:
        text = f"Sure! {json.dumps(PAYLOAD)} Let me know if you need more."
        result = translator.parse_translation_response(text)
        self.assertEqual(result.interpretation, "Lists every market.")

    def test_legacy_keys(self) -> None:
        result = translator.parse_translation_response(
            json.dumps({"mongoQuery": "SELECT 1", "interpretation": "one"})
        )
        self.assertEqual(result.script, "SELECT 1")
        self.assertEqual(result.interpretation, "one")

    def test_unparseable_raises(self) -> None:
        for text in ("", "I cannot help with that.", "{not: valid", "[1, 2]"):
            with self.subTest(text=text):
                with self.assertRaises(errors.TranslationFailed):
                    translator.parse_translation_response(text)

    def test_placeholder_scripts(self) -> None:
        for value in (None, "", "  ", "null", "N/A", '""', 42):
            with self.subTest(value=value):
                self.assertTrue(translator.is_placeholder_script(value))
        self.assertFalse(translator.is_placeholder_script("SELECT 1"))
        result = translator.parse_translation_response(json.dumps({"sqlQuery": ""}))
        self.assertFalse(result.has_script)


class TestQueryTranslator(unittest.TestCase):
    def test_translate_sends_prompt(self) -> None:
        prompts_seen = []

        def backend(prompt):
            prompts_seen.append(prompt)
            return json.dumps(PAYLOAD)

        result = translator.QueryTranslator(backend).translate("Which markets are open?")
        self.assertEqual(result.script, PAYLOAD["sqlQuery"])
        prompt = prompts_seen[0]
        for table in ("market_definitions", "market_statuses", "price_updates"):
            self.assertIn(table, prompt)
        self.assertIn('"Which markets are open?"', prompt)
        self.assertIn("sqlQuery", prompt)

    def test_backend_failure_propagates(self) -> None:
        def backend(prompt):
            raise errors.BackendUnavailable("quota")

        with self.assertRaises(errors.BackendUnavailable):
            translator.QueryTranslator(backend).translate("anything")


class TestPrompts(unittest.TestCase):
    def test_summary_prompt_includes_rows(self) -> None:
        prompt = prompts.build_summary_prompt(
            "prices?",
            [{"runner_name": "Red Rum", "last_traded_price": 3.5}],
            interpretation="Latest prices.",
        )
        self.assertIn("Red Rum", prompt)
        self.assertIn("Rows (1):", prompt)
        self.assertIn("Latest prices.", prompt)
        self.assertIn("bullet", prompt)


if __name__ == "__main__":
    unittest.main()
