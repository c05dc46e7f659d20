"""Tests for cluster naming and its fallbacks."""

import time

from clusterintel.clustering.naming import ClusterNamer, clean_generated_name, extract_keywords, keyword_name

from conftest import FakeTextGenerator


def test_extract_keywords_skips_stopwords_and_short_words():
    text = "The budget for the budget review and the annual budget forecast, 2024 2024"
    keywords = extract_keywords(text)
    assert keywords[0] == "budget"
    assert "the" not in keywords
    assert "2024" not in keywords
    assert "for" not in keywords


def test_keyword_name_templates_rotate_by_index():
    assert keyword_name(["budget", "forecast"], 0) == "Budget Content"
    assert keyword_name(["budget", "forecast"], 1) == "Budget & Forecast"
    assert keyword_name(["budget"], 1) == "Budget Topics"
    assert keyword_name([], 0) is None


def test_clean_generated_name():
    assert clean_generated_name('  "Legal Contracts"\nextra line') == "Legal Contracts"
    assert clean_generated_name("") == ""


def test_generator_name_used_when_valid():
    namer = ClusterNamer(FakeTextGenerator("Tax Filings"))
    assert namer.name_cluster(["some tax text"], 0) == "Tax Filings"


def test_too_long_generated_name_falls_back_to_keywords():
    namer = ClusterNamer(FakeTextGenerator("x" * 60))
    assert namer.name_cluster(["invoice invoice payment"], 0) == "Invoice Content"


def test_generator_error_falls_back():
    namer = ClusterNamer(FakeTextGenerator(error=RuntimeError("boom")))
    assert namer.name_cluster(["invoice invoice payment"], 2) == "Invoice Topics"


def test_generator_timeout_falls_back():
    class Slow(FakeTextGenerator):
        def generate(self, system_prompt, user_prompt):
            time.sleep(0.5)
            return "Too Late"

    namer = ClusterNamer(Slow(), timeout=0.05)
    assert namer.name_cluster(["invoice invoice payment"], 0) == "Invoice Content"


def test_indexed_fallbacks():
    namer = ClusterNamer()
    assert namer.name_cluster(["", ""], 3) == "Topic Cluster 4"
    assert namer.name_cluster(["a an it 12"], 0) == "Content Cluster 1"


def test_name_for_collection_fallbacks():
    namer = ClusterNamer()
    assert namer.name_for_collection("ai") == "General Content"
    assert namer.name_for_collection("research") == "Research Content"
    assert namer.name_for_collection("machine learning papers") == "Machine Learning Cluster"
