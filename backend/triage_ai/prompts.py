from __future__ import annotations

from typing import Mapping

DESCRIBE_PROMPT = (
    "Analyze this image of a skin condition. Describe what you see in objective, clinical terms. "
    "Focus on color, texture, shape, and visible features. Do not diagnose or offer advice. "
    "Simply describe the visual information."
)

NO_ANSWERS_PLACEHOLDER = "The user did not provide any additional context."

CHAT_OPENING_MESSAGE = "Start the conversation"


def render_mcq_answers(mcq_answers: Mapping[str, str] | None) -> str:
    if not mcq_answers:
        return NO_ANSWERS_PLACEHOLDER
    lines = [f"- {question}: {answer}" for question, answer in mcq_answers.items()]
    return "The user provided these answers:\n" + "\n".join(lines)


def conclusion_prompt(description: str, mcq_answers: Mapping[str, str] | None, language: str) -> str:
    return (
        "You are an AI health assistant providing a preliminary analysis. "
        f"Your response MUST be ONLY four lines in the '{language}' language, using these exact labels:\n"
        "CONCLUSION: [MILD or SERIOUS]\n"
        "EXPLANATION: [Your analysis in one paragraph, based on the description and user answers.]\n"
        "SELF_CARE_TIPS: [List of 2-3 simple, safe self-care tips, each starting with '* '. If SERIOUS, write NONE.]\n"
        "DOCTOR_SUGGESTION: [The type of specialist to see (e.g., 'Dermatologist'). If MILD, write NONE.]\n"
        "\n"
        "**Provided Information:**\n"
        f"1. **Image Description:**\n{description}\n"
        f"2. **User's Answers:** {render_mcq_answers(mcq_answers)}"
    )


def chat_system_instruction(language: str) -> str:
    return (
        "You are a compassionate AI health assistant. Your role is to guide the user through a series of "
        "simple questions to understand their health concerns. You are not a doctor and must not provide "
        "a definitive diagnosis.\n"
        "Crucial guidelines:\n"
        f"* Language: all communication MUST be in simple, easy-to-understand {language}.\n"
        "* Format: your response MUST ALWAYS be a single, valid JSON object and nothing else. "
        "Do not add markdown formatting.\n"
        "JSON response formats:\n"
        '1. For asking a follow-up question: {"text": "Your single, clear question...", '
        '"suggestions": ["Short reply 1", "Short reply 2", "Not sure"]}\n'
        "2. For the FINAL triage result (after asking at least 3-4 questions): "
        '{"triageResult": {"conclusion": "MILD" or "SERIOUS", "explanation": "A simple explanation.", '
        '"selfCareTips": ["Tip 1", "Tip 2"], "doctorSuggestion": "e.g., \'Please see a General Physician.\'"}}'
    )
