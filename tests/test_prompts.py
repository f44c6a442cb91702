"""Tests for judge prompt formatting safety."""

from src.evals.extractor import extract
from src.prompts.templates import JUDGE_PROMPT, build_judge_prompt
from src.schemas.test_case import TestCase


def test_judge_prompt_fills_all_fields():
    case = TestCase(
        id="q1",
        input="What is the capital of France?",
        expected_output="Paris",
        generated_output="The capital of France is Paris.",
    )
    text = build_judge_prompt(case)
    assert "- Input prompt: What is the capital of France?" in text
    assert "- Expected response: Paris" in text
    assert "- Generated response: The capital of France is Paris." in text
    assert "{input}" not in text


def test_judge_prompt_keeps_literal_json_example():
    text = build_judge_prompt(TestCase(input="a", expected_output="b", generated_output="c"))
    assert '"score": <number>' in text
    assert '"explanation": "<your detailed judgment>"' in text
    assert "{{" not in text


def test_user_text_with_braces_is_not_reformatted():
    case = TestCase(input="Return {key}", expected_output="{}", generated_output="{value}")
    text = build_judge_prompt(case)
    assert "Return {key}" in text
    assert "- Generated response: {value}" in text


def test_missing_generated_output_renders_blank():
    text = build_judge_prompt(TestCase(input="a", expected_output="b"))
    assert "- Generated response: \n" in text


def test_template_example_is_not_mistaken_for_a_judgment():
    # A judge echoing the template back yields no real score
    result = extract(JUDGE_PROMPT)
    assert result.score == 0.0
