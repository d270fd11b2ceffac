"""
Mock LLM Service for Local Testing
This module provides a simple mock implementation that doesn't require API keys.
"""
import re
from models import AIRequest, AnswerModel
from logger import agent_logger


async def get_structured_answer_mock(request: AIRequest) -> AnswerModel:
    """
    Mock LLM function that uses simple heuristics to answer poll questions.
    This allows testing without requiring actual LLM API keys.

    Returns: AnswerModel with a letter or a number string
    """
    agent_logger.info("Using MOCK LLM (no API call)")
    question = request.question.lower()

    if request.type == "numeric":
        numbers = re.findall(r'-?\d+(?:\.\d+)?', request.question)
        # If question asks for sum/total, add all numbers found
        if numbers and ('sum' in question or 'total' in question):
            total = sum(float(n) for n in numbers)
            return AnswerModel(answer=f"{total:g}")
        if numbers:
            return AnswerModel(answer=numbers[0])
        return AnswerModel(answer="42")

    # Multiple choice: prefer the catch-all option when there is one
    for i, option in enumerate(request.options[:5]):
        if 'all of the above' in option.lower():
            return AnswerModel(answer="ABCDE"[i])
    return AnswerModel(answer="A")
