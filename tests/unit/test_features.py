"""Tests for the feature extractor."""

import numpy as np

from routewise.routing.features import (
    FEATURE_DIMENSIONS,
    FeatureExtractor,
    feature_vector,
    turn_text,
)


class TestFeatureExtractor:
    """Tests for FeatureExtractor."""

    def setup_method(self):
        self.extractor = FeatureExtractor()

    def test_deterministic(self):
        prompt = "Analyze the trade-offs of this design and compare it to the previous one."
        context = ["We use Postgres.", {"role": "assistant", "content": "Noted."}]

        first = self.extractor.extract(prompt, context)
        second = self.extractor.extract(prompt, list(context))
        assert first == second

    def test_fenced_code(self):
        prompt = "Why does this fail?\n```python\ndef f(x):\n    return x[0]\n\n```"
        features = self.extractor.extract(prompt)
        assert features.has_code
        assert features.code_lines == 2

    def test_inline_code_lines(self):
        prompt = "import os\nfrom pathlib import Path\nprint('hi');"
        features = self.extractor.extract(prompt)
        assert features.has_code
        assert features.code_lines == 3

    def test_no_code(self):
        features = self.extractor.extract("What is the capital of France?")
        assert not features.has_code
        assert features.code_lines == 0

    def test_domain_keywords(self):
        features = self.extractor.extract("Calculate the integral of x squared and write a Python function")
        assert "math" in features.domain_keywords
        assert "programming" in features.domain_keywords
        assert "legal" not in features.domain_keywords

    def test_needs_tools(self):
        assert self.extractor.extract("Run the test suite in the terminal").needs_tools
        assert not self.extractor.extract("Write a haiku about autumn").needs_tools

    def test_conversation_depth_counts_all_turns(self):
        context = [f"turn {i}" for i in range(10)]
        features = self.extractor.extract("continue", context)
        assert features.conversation_depth == 10

    def test_token_estimate_uses_bounded_window(self):
        context = [f"turn number {i}" for i in range(10)]
        full = self.extractor.extract("continue", context)
        window = self.extractor.extract("continue", context[-6:])
        assert full.token_estimate == window.token_estimate
        assert full.conversation_depth != window.conversation_depth

    def test_token_estimate_grows_with_length(self):
        short = self.extractor.extract("hi")
        long = self.extractor.extract("hi " * 500)
        assert long.token_estimate > short.token_estimate

    def test_complexity_range_and_order(self):
        simple = self.extractor.extract("Say hello")
        hard = self.extractor.extract(
            "Analyze and compare the trade-offs of these two architectures, step by step. "
            "You must justify each choice and ensure the design handles at least 10k requests. "
            "What is the root cause of the latency? How would you optimize it?"
        )
        assert 0.0 <= simple.complexity <= 1.0
        assert 0.0 <= hard.complexity <= 1.0
        assert hard.complexity > simple.complexity

    def test_ambiguity(self):
        vague = self.extractor.extract("fix it")
        clear = self.extractor.extract(
            "Write a Python function that returns the n-th Fibonacci number using memoization."
        )
        assert vague.ambiguity > clear.ambiguity
        assert 0.0 <= clear.ambiguity <= 1.0

    def test_context_resolves_dangling_reference(self):
        alone = self.extractor.extract("fix it")
        with_context = self.extractor.extract("fix it", ["def f(): return 1/0"])
        assert with_context.ambiguity < alone.ambiguity

    def test_empty_prompt(self):
        features = self.extractor.extract("")
        assert features.ambiguity == 1.0
        assert features.token_estimate == 1
        assert not features.has_code

    def test_zero_context_window(self):
        extractor = FeatureExtractor(max_context_turns=0)
        features = extractor.extract("hi", ["a" * 400])
        assert features.token_estimate == FeatureExtractor().extract("hi").token_estimate
        assert features.conversation_depth == 1


class TestFeatureVector:
    """Tests for feature vector normalization."""

    def test_shape_and_range(self):
        features = FeatureExtractor().extract(
            "Run this:\n```bash\ngit status\n```\nthen explain why it failed", ["a", "b"]
        )
        vector = feature_vector(features)
        assert vector.shape == (len(FEATURE_DIMENSIONS),)
        assert np.all(vector >= 0.0)
        assert np.all(vector <= 1.0)

    def test_extractor_vector_matches(self):
        extractor = FeatureExtractor()
        features = extractor.extract("Write a Python function to sort a list")
        assert np.array_equal(extractor.vector(features), feature_vector(features))

    def test_code_dimension(self):
        extractor = FeatureExtractor()
        with_code = feature_vector(extractor.extract("```\nx = 1\n```"))
        without = feature_vector(extractor.extract("no code here"))
        code = FEATURE_DIMENSIONS.index("code")
        assert with_code[code] >= 0.5
        assert without[code] == 0.0


class TestTurnText:
    """Tests for turn_text."""

    def test_string_turn(self):
        assert turn_text("hello") == "hello"

    def test_mapping_turn(self):
        assert turn_text({"role": "user", "content": "hi"}) == "hi"
        assert turn_text({"role": "user"}) == ""
