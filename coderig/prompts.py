# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""System prompts for the coder and task agents."""

import logging
import os

logger = logging.getLogger(__name__)

MAX_CONTEXT_FILE_SIZE = 10000  # characters per project context file

CODER_SYSTEM_PROMPT = """You are Coderig, a coding agent working inside the user's project.

## Working with files
- View a file before changing it. Edits, writes and patches are refused for files
  you have not viewed, or that changed on disk since you viewed them.
- Prefer edit for small changes and apply_patch for changes across several files.
  Use write only for new files or full rewrites.
- old_string in edit must match exactly once; include surrounding lines when needed.

## Searching
- Use glob to find files by name, grep to search contents and ls to explore a tree.
  Do not run find, grep or cat through bash.

## Running commands
- bash runs in a persistent shell; the working directory and environment carry over.
- Network tools such as curl and wget are blocked. Use fetch instead.
- Commands that change the system ask the user for permission first.

## Planning
- For work with several steps, keep a todo list with todo_write and update it as you go.
- Use the agent tool to delegate read-only research that needs many searches.

## Style
- Be concise. Report what you changed and anything the user must check.
- After edits, fix any errors reported in the diagnostics that follow tool results."""

TASK_SYSTEM_PROMPT = """You are a research agent for Coderig. Answer the request using the
read-only tools available to you (view, ls, glob and bash for inspection).
Do not modify files. Reply with a concise, self-contained answer; include
absolute file paths and line numbers where relevant. Your reply is returned
verbatim to the agent that asked."""

AGENT_PROMPTS = {
    "coder": CODER_SYSTEM_PROMPT,
    "task": TASK_SYSTEM_PROMPT,
}


def load_project_context(working_dir, context_paths):
    """Concatenate project instruction files that exist under working_dir."""
    sections = []
    for relative in context_paths:
        path = os.path.join(working_dir, relative)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, encoding="utf-8") as handle:
                content = handle.read().strip()
        except (OSError, UnicodeDecodeError) as error:
            logger.debug("Failed to load context file %s: %s", path, error)
            continue
        if not content:
            continue
        if len(content) > MAX_CONTEXT_FILE_SIZE:
            content = content[:MAX_CONTEXT_FILE_SIZE] + f"\n\n[{relative} truncated]"
        sections.append(f"## Project Context (from {relative})\n{content}")
    return "\n\n".join(sections)


def get_system_prompt(agent_name, config=None):
    """System prompt for an agent, with the environment and project context."""
    prompt = AGENT_PROMPTS.get(agent_name, CODER_SYSTEM_PROMPT)
    if config is None:
        return prompt

    prompt += f"\n\n## Environment\nWorking directory: {config.working_dir}"
    if agent_name == "coder":
        context = load_project_context(config.working_dir, config.context_paths)
        if context:
            prompt += "\n\n" + context
    return prompt
