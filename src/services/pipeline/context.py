"""Per-request pipeline context and conversation helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from fnmatch import fnmatch

from schemas.platflow import BuilderConfig, ChatMessage, FileEntry, PlatflowRequest
from services.credentials import RequestCredentials


WORK_DIR = "/home/project"

DEFAULT_MESSAGE_REPLAY_WINDOW = 3

# Paths relative to WORK_DIR that never count as project context
IGNORE_PATTERNS = (
    "node_modules/*",
    "*/node_modules/*",
    ".git/*",
    "dist/*",
    "build/*",
    ".next/*",
    "coverage/*",
    ".cache/*",
    ".vscode/*",
    ".idea/*",
    "*.log",
    "*.DS_Store",
    "*npm-debug.log*",
    "*yarn-debug.log*",
    "*yarn-error.log*",
    "*lock.json",
    "*lock.yaml",
    "*lock.yml",
)

CONTINUE_PROMPT = (
    "Continue your prior response. IMPORTANT: Immediately begin from where you "
    "left off without any interruptions. Do not repeat any content, including "
    "artifact and action tags."
)

_MODEL_TAG = re.compile(r"\[Model: (.*?)\]\n\n")
_PROVIDER_TAG = re.compile(r"\[Provider: (.*?)\]\n\n")


def _relative_path(path: str) -> str:
    prefix = f"{WORK_DIR}/"
    if path.startswith(prefix):
        return path[len(prefix) :]
    return path.lstrip("/")


def is_ignored_path(path: str) -> bool:
    relative = _relative_path(path)
    return any(fnmatch(relative, pattern) for pattern in IGNORE_PATTERNS)


def get_file_paths(files: dict[str, FileEntry | None] | None) -> list[str]:
    """Return the file (not folder) paths of ``files`` that are not ignored."""
    if not files:
        return []
    return [
        path
        for path, entry in files.items()
        if entry is not None and entry.type == "file" and not is_ignored_path(path)
    ]


def compute_message_slice_id(
    message_count: int, window: int = DEFAULT_MESSAGE_REPLAY_WINDOW
) -> int:
    """Index of the first message replayed verbatim alongside a summary."""
    return max(0, message_count - window)


def select_replay_messages(
    messages: list[ChatMessage], summary: str | None, message_slice_id: int
) -> list[ChatMessage]:
    """Pick the history sent to the model.

    With a summary only the trailing window is replayed (just the last message
    when the window covers the whole conversation); without one everything is.
    """
    if not messages or summary is None:
        return list(messages)
    if message_slice_id:
        return list(messages[message_slice_id:])
    return [messages[-1]]


def extract_model_selection(content: str) -> tuple[str | None, str | None, str]:
    """Split ``[Model: x]`` / ``[Provider: y]`` tags off a user message.

    Returns ``(model, provider, cleaned_content)``.
    """
    model_match = _MODEL_TAG.search(content)
    provider_match = _PROVIDER_TAG.search(content)
    cleaned = _PROVIDER_TAG.sub("", _MODEL_TAG.sub("", content))
    return (
        model_match.group(1).strip() if model_match else None,
        provider_match.group(1).strip() if provider_match else None,
        cleaned,
    )


def strip_model_tags(message: ChatMessage) -> ChatMessage:
    if message.role != "user":
        return message
    _, _, cleaned = extract_model_selection(message.content)
    if cleaned == message.content:
        return message
    return message.model_copy(update={"content": cleaned})


def last_user_message(messages: list[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


@dataclass(slots=True)
class PipelineContext:
    """Everything one platflow request carries into the stage pipeline."""

    messages: list[ChatMessage]
    prompt_id: str
    context_optimization: bool = False
    files: dict[str, FileEntry | None] = field(default_factory=dict)
    builder_config: BuilderConfig | None = None
    credentials: RequestCredentials = field(default_factory=RequestCredentials)
    file_paths: list[str] = field(default_factory=list)

    @classmethod
    def from_request(
        cls,
        request: PlatflowRequest,
        credentials: RequestCredentials,
        *,
        default_prompt_id: str = "default",
    ) -> PipelineContext:
        files = request.files or {}
        return cls(
            messages=list(request.messages),
            prompt_id=request.prompt_id or default_prompt_id,
            context_optimization=request.context_optimization,
            files=files,
            builder_config=request.builder_config,
            credentials=credentials,
            file_paths=get_file_paths(files),
        )

    @property
    def chat_id(self) -> str:
        if not self.messages:
            return ""
        return self.messages[-1].id or ""

    @property
    def has_builder(self) -> bool:
        return bool(self.builder_config and self.builder_config.backend_url)

    @property
    def wants_summary(self) -> bool:
        return bool(self.file_paths) and self.context_optimization


@dataclass(slots=True, frozen=True)
class GenerationRequest:
    """Input of one text generation run.

    ``continuation`` holds turns appended after the replayed history when a
    length-truncated answer is being continued.
    """

    messages: list[ChatMessage]
    prompt_id: str
    summary: str | None = None
    message_slice_id: int = 0
    file_paths: list[str] = field(default_factory=list)
    continuation: tuple[ChatMessage, ...] = ()

    def history(self) -> list[ChatMessage]:
        replay = select_replay_messages(self.messages, self.summary, self.message_slice_id)
        return [*replay, *self.continuation]

    def continued_with(self, partial_answer: str) -> GenerationRequest:
        return replace(
            self,
            continuation=(
                *self.continuation,
                ChatMessage(role="assistant", content=partial_answer),
                ChatMessage(role="user", content=CONTINUE_PROMPT),
            ),
        )
