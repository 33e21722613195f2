"""Prompt templates and conversation notices."""

from __future__ import annotations

# --- Context Injection ---

FILE_BLOCK_TEMPLATE = """\
--- FILE: {path} ---
```
{content}
```"""

FULL_CONTEXT_TEMPLATE = """\
Analyze the following project files and base your answer on the information in them:

{files}

--- QUESTION ---
{question}"""

REFERENCE_CONTEXT_TEMPLATE = """\
The question refers to the following project files:

{files}

--- QUESTION ---
{question}"""

DELTA_CONTEXT_HEADER = """\
PROJECT CONTEXT UPDATE:
Take the following changes into account in addition to what you already know about the project.
"""
DELTA_ADDED_LINE = "- ADDED FILES: {paths}"
DELTA_MODIFIED_LINE = "- MODIFIED FILES: {paths}"
DELTA_REMOVED_LINE = "- REMOVED FILES: {paths}"
DELTA_CONTENTS_HEADER = "Here are the NEW contents of the added and modified files:"
DELTA_QUESTION_TEMPLATE = """\
Answer my question below based on these updates:
--- QUESTION ---
{question}"""

ATTACHMENT_TEMPLATE = """

--- ATTACHED FILE: {name} ---
```
{content}
```"""

# --- Side Features ---

SUMMARY_PROMPT = """\
Summarize the following conversation in a few sentences. Mention the project
files or topics that were discussed and any open questions.

{conversation}"""

# --- Conversation Notices ---

FILES_ATTACHED_NOTICE = (
    "{count} files ({source}) added to the context (~{tokens:,} tokens). "
    "Their contents will be sent with your next message."
)
SYNC_UP_TO_DATE_NOTICE = "The project is already up to date. No changes found."
SYNC_APPLIED_NOTICE = "Project updated: {summary}. Context updated ({sign}{diff:,} tokens)."
SYNC_FAILED_NOTICE = "Error while syncing the repository: {error}"
LOAD_FAILED_NOTICE = "Error while loading the repository: {error}"
LOAD_EMPTY_NOTICE = "The repository was loaded but contained no files to analyze."
SUMMARY_NOTICE = "Conversation summary: {summary}"
SUMMARY_FAILED_NOTICE = "Could not summarize the conversation: {error}"

MISSING_CREDENTIAL_ERROR = (
    "No API key is configured. Set one with /key, the GEMINI_API_KEY environment "
    "variable, or the config file."
)
INVALID_CREDENTIAL_ERROR = "The API key is invalid or the request was rejected. Please check your settings."
GENERIC_ERROR = "Sorry, an error occurred: {error}"
