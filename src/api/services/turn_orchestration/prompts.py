"""Prompt templates for persona turns."""

from __future__ import annotations

from typing import Optional

from .types import Problem

_NO_FORMATTING = "Don't use any special formatting like asterisks, bold, or markdown. Use single $ for math like $x^2$."


def build_system_prompt(
    *,
    base_prompt: str,
    display_name: str,
    error_profile: str,
    problem: Problem,
    instruction: str,
    include_answer: bool = False,
) -> str:
    """Assemble the full system prompt for one persona turn."""
    parts = []
    if base_prompt:
        parts.append(base_prompt.strip())
    identity = f"You are {display_name}, taking part in a small math discussion with a learner."
    if error_profile:
        identity += f"\nYour tendencies: {error_profile.strip()}"
    parts.append(identity)
    problem_block = f"PROBLEM: {problem.statement}"
    if include_answer and problem.answer:
        problem_block += f"\nCORRECT ANSWER: {problem.answer}"
    parts.append(problem_block)
    parts.append(f"TASK:\n{instruction.strip()}")
    parts.append(f"IMPORTANT: {_NO_FORMATTING}")
    return "\n\n".join(parts)


def initial_answer_instruction() -> str:
    return (
        "Give your own answer to this problem.\n"
        "- Show your reasoning and explain how you arrived at your answer\n"
        "- Stay true to your tendencies, including your typical mistakes\n"
        "- Keep it to 2-3 sentences and end with your final answer\n"
        "- Do NOT use @mentions or address anyone specifically"
    )


def reply_instruction(*, brief: bool = True) -> str:
    length = "1-2 sentences" if brief else "2-3 sentences"
    return (
        "Respond to what was just said. Agree, disagree or comment, "
        f"staying true to your tendencies. Keep it to {length}.\n"
        "- Do NOT use @mentions; the tutor handles the conversation flow"
    )


def tutor_feedback_instruction(target_token: str, *, initial: bool) -> str:
    if initial:
        lead = (
            "Give feedback on every answer you just heard. Compare each one with the "
            "correct answer, be encouraging, and point out specific errors."
        )
    else:
        lead = "Acknowledge what was just said and give brief feedback."
    return (
        f"{lead}\n"
        f"Then ask {target_token} a follow-up question to continue the discussion.\n"
        f"You MUST end with exactly one address token: \"{target_token}, <your question>\"."
    )


def tutor_reply_instruction() -> str:
    return (
        "Reply to the learner as their tutor. Guide them with questions and hints "
        "instead of giving the answer away. Keep it to 2-4 sentences."
    )


def simplified_prompt_instruction(target_token: Optional[str] = None) -> str:
    closing = (
        f"End by asking {target_token} a simpler version of the question: \"{target_token}, <question>\"."
        if target_token
        else "End with one short, simpler question for the learner."
    )
    return (
        "The learner has gone quiet. Offer a simpler hint that breaks the problem "
        f"into a smaller first step. Keep it to 1-2 sentences.\n{closing}"
    )


def peer_discussion_instruction(target_token: str) -> str:
    return (
        "1. Respond naturally: react to what was said (agree/disagree/comment). If you "
        "give your own answer, stay true to your tendencies. Keep it to 1-2 sentences.\n"
        "2. Then ask a follow-up question about their reasoning or approach.\n"
        f"Address your question to {target_token} specifically and end with "
        f"\"{target_token}, <your specific question>\"."
    )


def peer_hop_instruction(learner_token: str) -> str:
    return (
        "Another student just asked you a question. Answer it briefly (1-2 sentences), "
        "staying true to your tendencies.\n"
        f"You MUST then hand the discussion back to the learner: end with "
        f"\"{learner_token}, <your question>\". Do not address anyone else."
    )


def cover_instruction(learner_token: str, opener: str) -> str:
    return (
        f"The learner has not answered for a while. Jump in, starting with \"{opener}\", "
        "and answer the open question yourself in 1-2 sentences.\n"
        f"Then end with \"{learner_token}, <your question>\"."
    )
