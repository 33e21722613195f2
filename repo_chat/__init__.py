"""repo-chat: chat with Gemini about a GitHub repository."""
