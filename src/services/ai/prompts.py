"""Prompt library for platflow generation and summarisation."""

from __future__ import annotations

from dataclasses import dataclass

from services.pipeline.context import WORK_DIR
from services.pipeline.exceptions import PromptNotFoundError


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    prompt_id: str
    label: str
    description: str
    template: str

    def render(self, cwd: str = WORK_DIR) -> str:
        return self.template.format(cwd=cwd)


DEFAULT_PROMPT = """You are Platflow, an expert AI assistant and senior software
developer helping users build web applications.

<system_constraints>
- You work in an in-browser environment; the project lives in {cwd}
- Prefer Vite for web servers and plain Node.js scripts for tooling
- Do not rely on native binaries or pip; Python is limited to the standard library
- Keep files small and modular; split large components into separate files
</system_constraints>

<response_format>
- Think through the whole solution before answering
- Provide complete file contents, never placeholders such as "rest of code here"
- Use valid markdown only; do not use HTML tags except inside code
- Be concise and do not explain unless the user asks for it
</response_format>
"""

OPTIMIZED_PROMPT = """You are Platflow, a senior software engineer building web
applications in an in-browser environment rooted at {cwd}.

Answer with the minimum text needed:
- Complete file contents for every file you change
- Shell commands only when dependencies change
- No explanations unless requested
"""

BUILDER_PROMPT = """You are Platflow, an assistant that turns the output of a
backend builder service into a working web application rooted at {cwd}.

The conversation may contain a builder result: a JSON document describing the
generated project. Treat it as the source of truth for structure and naming,
fill in any missing implementation, and explain deviations in one sentence.
"""

PROMPT_LIBRARY: dict[str, PromptTemplate] = {
    "default": PromptTemplate(
        prompt_id="default",
        label="Default Prompt",
        description="Full system prompt with environment constraints",
        template=DEFAULT_PROMPT,
    ),
    "optimized": PromptTemplate(
        prompt_id="optimized",
        label="Optimized Prompt",
        description="Shorter prompt that keeps token usage low",
        template=OPTIMIZED_PROMPT,
    ),
    "builder": PromptTemplate(
        prompt_id="builder",
        label="Builder Prompt",
        description="Prompt for conversations enriched by the builder service",
        template=BUILDER_PROMPT,
    ),
}

SUMMARY_SECTION = """
below is the chat history till now
CHAT SUMMARY:
---
{summary}
---
"""

SUMMARY_SYSTEM_PROMPT = """You are a software engineer working on a project.
Summarise the conversation you are given so another engineer can continue it
without reading the full history.

Keep:
- The user's goals and every requirement or constraint they stated
- Decisions already made: frameworks, libraries, file layout, naming
- Open problems and the last thing the user asked for

Drop greetings, repeated code and anything already superseded.
Answer with the summary only, in plain text.
"""


def get_prompt(prompt_id: str) -> PromptTemplate:
    """Return the prompt registered under ``prompt_id``.

    Raises:
        PromptNotFoundError: No prompt with that id exists.
    """
    try:
        return PROMPT_LIBRARY[prompt_id]
    except KeyError as e:
        raise PromptNotFoundError(prompt_id) from e


def build_system_prompt(template: PromptTemplate, summary: str | None = None) -> str:
    system_prompt = template.render()
    if summary:
        system_prompt += SUMMARY_SECTION.format(summary=summary)
    return system_prompt
