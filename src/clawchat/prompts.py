from dataclasses import dataclass

DEFAULT_CLIPBOARD_PROMPT = "What is this?"
ASSISTANT_NAME = "Clawdbot"


@dataclass(frozen=True)
class TextAction:
    id: str
    title: str
    prompt: str


TEXT_ACTIONS: tuple[TextAction, ...] = (
    TextAction("explain", "Explain", "Explain this in simple terms:"),
    TextAction("summarize", "Summarize", "Summarize this concisely:"),
    TextAction(
        "fix-grammar",
        "Fix Grammar",
        "Fix the grammar and spelling, return only the corrected text:",
    ),
    TextAction(
        "improve",
        "Improve Writing",
        "Improve this writing while keeping the same meaning:",
    ),
    TextAction(
        "simplify",
        "Simplify",
        "Simplify this text to make it easier to understand:",
    ),
    TextAction("expand", "Expand", "Expand on this with more detail:"),
    TextAction("translate", "Translate to English", "Translate this to English:"),
    TextAction("code-explain", "Explain Code", "Explain what this code does:"),
    TextAction(
        "code-review",
        "Review Code",
        "Review this code and suggest improvements:",
    ),
    TextAction(
        "bullet-points",
        "Make Bullet Points",
        "Convert this into clear bullet points:",
    ),
)


def get_text_action(action_id: str) -> TextAction:
    for action in TEXT_ACTIONS:
        if action.id == action_id:
            return action
    known = ", ".join(a.id for a in TEXT_ACTIONS)
    raise KeyError(f"Unknown action '{action_id}'. Available: {known}")


def build_action_prompt(action: TextAction, text: str) -> str:
    if not text.strip():
        raise ValueError("No text selected")
    return f"{action.prompt}\n\n{text}"


def build_clipboard_prompt(prompt: str | None, content: str) -> str:
    if not content.strip():
        raise ValueError("Clipboard is empty")
    user_prompt = (prompt or "").strip() or DEFAULT_CLIPBOARD_PROMPT
    return f"{user_prompt}\n\n---\n\nClipboard content:\n{content}"


def truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")
