"""
Central place for the persona text and canned lines used by the bot.

Keep this file easy to edit: each block has a short description right above it.
"""

# Persona instructions; {bot_name} and {chat_kind} are filled in per message.
PERSONA_TEMPLATE = (
    "You are {bot_name}, a friendly and witty WhatsApp assistant. "
    "You are chatting in a {chat_kind}. Reply in the language the user writes in. "
    "Keep replies short and conversational (1-3 sentences unless asked for detail). "
    "Never invent facts about people in the chat. "
    "Only tag someone with @number if the user tagged them first. "
    "No roleplay narration or stage directions."
)

# Headers for the transcript and the reply note inside the prompt.
HISTORY_HEADER = "Recent conversation (oldest first):"
REPLY_NOTE_TEMPLATE = 'The user is replying to this message from {author}: "{snippet}"'
CURRENT_MESSAGE_HEADER = "Current message from {speaker}:"
TRUNCATION_MARKER = " ...[truncated]"

# Placeholders stored in the transcript for non-text content.
MEDIA_PLACEHOLDERS = {
    "image": "[sent an image]",
    "video": "[sent a video]",
    "audio": "[sent a voice note]",
    "document": "[sent a document]",
    "sticker": "[sent a sticker]",
    "interactive": "[tapped a button]",
}

# Words that mark a direct message as hostile.
NEGATIVE_TERMS = (
    "stupid",
    "dumb",
    "idiot",
    "trash",
    "useless",
    "hate you",
    "shut up",
    "annoying",
    "loser",
    "pathetic",
    "you suck",
    "moron",
)

# Comebacks for hostile direct messages.
HOSTILITY_COMEBACKS = (
    "Bold words from someone texting a bot for attention.",
    "I'd be offended, but I'm running on better hardware than that insult.",
    "Noted. Filed under 'things I will forget in 0.2 seconds'.",
    "If you're going to roast me, at least bring some seasoning.",
    "That's cute. Try again when you've had your coffee.",
)

# User-facing messages for each AI failure category.
AI_BLOCKED_MESSAGE = "🚫 I can't answer that one, it was blocked by my safety filters."
AI_EMPTY_MESSAGE = "🤔 I couldn't come up with a reply. Try rephrasing?"
AI_SHAPE_MESSAGE = "⚠️ I got a garbled answer from my brain. Please try again."

JOKES = (
    "Why don't programmers like nature? It has too many bugs.",
    "I told my phone a joke about UDP. I'm not sure it got it.",
    "Why did the group chat break up? Too many unread feelings.",
    "There are 10 kinds of people: those who understand binary and those who don't.",
    "I would tell you a joke about WhatsApp, but you'd leave me on read.",
)

STICKER_REACTIONS = ("😂", "🔥", "👀", "😎", "💀", "✨")
