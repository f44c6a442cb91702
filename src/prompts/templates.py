"""Prompt templates for the judge model.

The judge receives the original input, the expected answer and the
evaluation model's answer, and must reply with a JSON object holding a
0-10 score and an explanation. Judges do not always comply; see
src.evals.extractor for how replies are read back.
"""

from __future__ import annotations

from src.schemas.test_case import TestCase

# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------

JUDGE_PROMPT = """\
You are an expert evaluator of LLM responses. Your task is to judge the quality of a generated response compared to an expected response.

Context:
- Input prompt: {input}
- Expected response: {expected}
- Generated response: {generated}

Evaluate the generated response based on the following criteria:
1. Accuracy: How well does it match the factual content of the expected response?
2. Completeness: Does it cover all key points from the expected response?
3. Clarity: Is it well-written and easy to understand?
4. Relevance: Does it directly address the input prompt?

Provide your evaluation in the following format:
1. A score from 0-10 (where 10 is perfect)
2. A brief explanation of your judgment

Your response should be in JSON format. Nothing else.
The JSON object should be formatted like this:
{{
  "score": <number>,
  "explanation": "<your detailed judgment>"
}}

Remember your answer should be the JSON object, nothing else.

Remember:
- Be objective and consistent
- Consider context and nuance
- Focus on substance over style
- Account for valid alternative phrasings
"""


def build_judge_prompt(test_case: TestCase) -> str:
    """Fill the judge template from a test case that already has generated output."""
    return JUDGE_PROMPT.format(
        input=test_case.input,
        expected=test_case.expected_output,
        generated=test_case.generated_output or "",
    )
