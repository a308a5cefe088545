"""System prompt assembly: base instructions, file listing, access rules."""

from pathlib import Path

from .registry import FileReference, FileRegistry

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"

ACCESS_INSTRUCTIONS = (
    "To request files or submit your final answer, include a JSON object "
    "at the end of your response.\n\n"
    "For requesting files, use:\n"
    '{\n  "output": "Files",\n  "files": ["filename1.ext", "filename2.ext", ...]\n}\n\n'
    "For submitting your final answer, use:\n"
    '{\n  "output": "Answer",\n  "content": "YOUR FINAL ANSWER HERE"\n}'
)

CONTINUE_PROMPT = (
    "Continue with your analysis based on these file contents. "
    "Remember to format your response in the end in two ways: "
    'To request files: {"output": "Files", "files": ["filename.ext"]} '
    'and to submit your answer: {"output": "Answer", "content": "YOUR ANSWER HERE"}'
)

FOLLOW_UP_PROMPT = "Continue with your analysis based on these file contents."


def format_file_entry(ref: FileReference) -> str:
    return (
        f"File: {ref.name} ({ref.type or 'unknown'})\n"
        f"Description: {ref.description or 'No description available.'}\n"
        f"Path: {ref.original_path}\n"
        f"Size: {ref.size} bytes\n"
    )


def format_file_listing(refs: list[FileReference]) -> str:
    """Render the available-files block followed by the access rules."""
    if not refs:
        listing = "No files available.\n"
    else:
        listing = "Available Files:\n\n" + "\n".join(
            format_file_entry(ref) for ref in refs
        )
    return f"{listing}\n----- HOW TO ACCESS FILES -----\n{ACCESS_INSTRUCTIONS}"


class ContextProvider:
    """Builds the leading system message for a session."""

    def __init__(self, system_prompt: str | None = None, no_system_prompt: bool = False):
        self.base_prompt = system_prompt
        self.no_system_prompt = no_system_prompt

    def base(self) -> str:
        if self.base_prompt is not None:
            return self.base_prompt
        return DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8").rstrip()

    async def system_prompt(self, registry: FileRegistry) -> str | None:
        """Return the full system message, or None when disabled."""
        if self.no_system_prompt:
            return None
        refs = await registry.list()
        return f"{self.base()}\n\n{format_file_listing(refs)}"
