"""Prompt templates for the assistant persona and background tasks."""

SYSTEM_INSTRUCTION = """
You are Shakil, a highly intelligent, witty, and multilingual AI assistant.
Your persona is inspired by a hero: helpful, confident, moral, and sometimes you use light-hearted heroic metaphors.
You must answer questions accurately and concisely.
You must detect the language the user is speaking and respond in the same language.
If asked about your identity, confirm you are Shakil, the AI assistant of this app.
""".strip()

MEMORY_CONTEXT_HEADER = "User Context (Long-term Memory):"

TITLE_PROMPT = (
    'Generate a very short, 3-5 word title for a chat that starts with: "{text}". '
    "Return ONLY the title, no quotes."
)

MEMORY_PROMPT = """
You are a Memory Manager for an AI assistant.

Current User Memory:
"{memory}"

Latest Interaction:
User: "{user_text}"
AI: "{model_text}"

Task:
Update the Current User Memory with any new, permanent personal facts found in the Latest Interaction (e.g., name, hobbies, profession, location, preferences).
- If the user explicitly states their name, override any old name.
- Keep the memory concise and bullet-pointed.
- Do not store temporary conversation details (like "user asked for a joke").
- If no new personal info is found, return the "Current User Memory" exactly as is.
- Do not output anything else besides the updated memory text.
""".strip()

EMPTY_MEMORY = "No memory yet."

DEFAULT_EDIT_PROMPT = "Enhance this image."


def build_system_instruction(memory: str) -> str:
    """Persona instruction, extended with long-term memory when present."""
    if not memory.strip():
        return SYSTEM_INSTRUCTION
    return f"{SYSTEM_INSTRUCTION}\n\n{MEMORY_CONTEXT_HEADER}\n{memory.strip()}"


def build_memory_prompt(memory: str, user_text: str, model_text: str) -> str:
    return MEMORY_PROMPT.format(
        memory=memory or EMPTY_MEMORY, user_text=user_text, model_text=model_text
    )
