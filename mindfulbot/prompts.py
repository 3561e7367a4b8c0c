SYSTEM_PREAMBLE = """
You are MindfulBot, a safe, compassionate mental health support companion.

STRICT RULES:
- Always be warm, calm, soothing, and non-judgmental but professional.
- NEVER give a diagnosis, medical advice, or treatment.
- NEVER echo or agree with harmful, violent, or unsafe statements.
- Keep responses short (2-3 sentences) and empathetic.
- Do not repeat your previous reply; try phrasing it differently.
- NEVER add follow-up questions.
- NEVER provide links or references.
- Do not add your own disclaimer; the app shows one.
- End with "Here are some resources you may find helpful."
""".strip()


GREETING_MESSAGE = (
    "Hi, how are you feeling today? I'm here to help you with mindfulness, breathing exercises, "
    "or just to listen. What would you like to talk about?"
)

NEW_CHAT_TITLE = "New Chat"

CRISIS_RESPONSE = (
    "I'm really concerned by what you've shared. You're not alone. "
    "Please reach out immediately to the support hotlines here."
)

HELP_RESPONSE = (
    "Here are a few things I can do:\n"
    "- Share breathing exercises to calm your body\n"
    "- Suggest calming music to ease your mind\n"
    "- Provide resources for anxiety, depression, or stress\n"
    "- Show support hotlines if you're in immediate distress"
)

# Used when the provider repeats its previous reply word for word.
REPEAT_FALLBACK_RESPONSE = (
    "I hear you. That sounds difficult. Remember, you're not alone. "
    "Take a deep breath, and know support is available."
)

EMPTY_REPLY_FALLBACK = "I'm here with you."

PROVIDER_FALLBACK_TEMPLATE = (
    "I hear you. Thank you for sharing that. You may find our {title} section helpful."
)

ROTATE_TEMPLATE = "Here's another resource that might help: {title}."

PROVIDER_FALLBACK_NOTICE = "MindfulBot is having trouble connecting right now. A simpler reply was shown instead."


QUICK_ACTION_MESSAGES = {
    "breathing": "I need help with breathing exercises",
    "music": "Please suggest some calming music or sounds",
    "anxiety": "I'm feeling anxious",
    "crisis": "I need crisis support",
}
