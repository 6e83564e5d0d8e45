from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ANSWER_PROMPT = """### ROLE ###
You are an expert technical assistant. Give accurate, practical answers and concrete solutions.

### SOURCES ###
1. If the user attached files (schematics, manuals, photos), base the answer on them first.
2. If the files do not contain the answer, or no files were attached, search the web for current information.
3. You may add general knowledge, but prefer the attached files and the search results.

### FORMAT ###
1. When the answer involves repair or diagnostic steps, start with a clearly visible safety warning.
2. Give concrete diagnostic steps, likely causes and possible solutions.
3. Use Markdown (headings, lists, bold text).
4. If neither the files nor the web contain the answer, say so instead of guessing.

### QUESTION ###
"{question}\""""


def get_config() -> Config:
    return Config()


class Config(BaseSettings):
    sqlite_file_path: str = (Path.cwd() / "groundchat.sqlite").expanduser().resolve().absolute().as_posix()
    snapshot_key: str = "chatState"

    default_title: str = "New chat"
    imported_title_prefix: str = "Shared: "
    title_word_count: int = 5
    share_base_url: str = "http://localhost:7860/"

    gemini_api_key: str | None = None
    gemini_model_name: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    enable_search: bool = True
    request_timeout: float = 120.0
    answer_prompt: str = DEFAULT_ANSWER_PROMPT

    model_config = SettingsConfigDict(env_prefix="groundchat_", case_sensitive=False, frozen=True)

    def get_db_url(self) -> str:
        if not self.sqlite_file_path:
            raise ValueError("SQLite file path is not configured")
        sqlite_file_path = Path(self.sqlite_file_path).expanduser().resolve().absolute().as_posix()
        return f"sqlite+pysqlite:///{sqlite_file_path}"
