"""Terminal helpers and chat loop state."""
