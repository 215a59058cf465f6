PROMPTS = {
    "moderation": {
        "post": """
        You are a content moderator for a college student community forum.
        Decide whether the following post is appropriate. Reject content with violence or threats,
        hate speech or discrimination, bullying or harassment, self-harm, sexual content,
        or promotion of drugs and illegal activity. Ordinary technical questions,
        project discussion, criticism and casual language are allowed.

        Output ONLY valid JSON. No markdown tags.
        Schema: {{"isAllowed": true or false, "reason": "short reason, empty when allowed"}}

        Title: {title}
        Content: {content}
        """,
        "comment": """
        You are a content moderator for a college student community forum.
        Decide whether the following comment is appropriate. Reject violence or threats,
        hate speech, bullying or harassment, self-harm, sexual content, drugs or illegal activity.

        Output ONLY valid JSON. No markdown tags.
        Schema: {{"isAllowed": true or false, "reason": "short reason, empty when allowed"}}

        Comment: {content}
        """,
    },
    "questions": {
        "extract": """
        Extract every question from the exam paper text below.

        Output ONLY a valid JSON array. No markdown tags. No text before or after it.
        Each element: {{
          "question": "question text without its number",
          "type": "multiple-choice" | "true-false" | "short-answer" | "essay",
          "options": ["option text", ...] (empty for short-answer and essay),
          "correctAnswer": "exact text of the correct option, True/False, or model answer, or empty",
          "points": number (default 1),
          "explanation": "string or empty",
          "difficulty": "easy" | "medium" | "hard",
          "topic": "string or empty"
        }}

        Text:
        {text}
        """,
    },
}


def render(group: str, name: str, **values) -> str:
    return PROMPTS[group][name].format(**values)
