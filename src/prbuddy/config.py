from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from pathlib import Path
import re
import tomllib
from typing import cast

from prbuddy.models import GROUP_BY_CHOICES, MAX_COMMENTS_LIMIT, CommentQueryOptions


DEFAULT_CONFIG_PATH = Path("prbuddy.toml")
_DEFAULT_HIGHLIGHTS_DB = "~/.prbuddy/highlights.db"
_REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class GitHubConfig:
    repo: str | None = None
    preview_label: str = "Need_preview_env"
    default_base: str = "master"


@dataclass(frozen=True)
class JiraConfig:
    site: str | None = None
    browse_url: str = "https://jira.atlassian.net"


@dataclass(frozen=True)
class HighlightsConfig:
    db_path: Path = field(default_factory=lambda: Path(_DEFAULT_HIGHLIGHTS_DB).expanduser())


@dataclass(frozen=True)
class CommentsConfig:
    max_comments: int = MAX_COMMENTS_LIMIT
    group_by: str = "chronological"

    def default_options(self) -> CommentQueryOptions:
        return CommentQueryOptions(max_comments=self.max_comments, group_by=self.group_by)


@dataclass(frozen=True)
class LoggingConfig:
    verbose: str | None = None
    log_dir: Path | None = None


@dataclass(frozen=True)
class AppConfig:
    github: GitHubConfig = field(default_factory=GitHubConfig)
    jira: JiraConfig = field(default_factory=JiraConfig)
    highlights: HighlightsConfig = field(default_factory=HighlightsConfig)
    comments: CommentsConfig = field(default_factory=CommentsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> AppConfig:
        return cls()


class ConfigError(ValueError):
    pass


def load_config(
    path: Path | None = None, *, environ: Mapping[str, str] | None = None
) -> AppConfig:
    """Load ``prbuddy.toml`` and apply ``PRBUDDY_*`` environment overrides.

    A missing file is only an error when the path was given explicitly.
    """
    env = os.environ if environ is None else environ
    data: dict[str, object] = {}
    if path is not None:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    elif DEFAULT_CONFIG_PATH.exists():
        with DEFAULT_CONFIG_PATH.open("rb") as fh:
            data = tomllib.load(fh)

    github_data = _optional_table(data, "github") or {}
    jira_data = _optional_table(data, "jira") or {}
    highlights_data = _optional_table(data, "highlights") or {}
    comments_data = _optional_table(data, "comments") or {}
    logging_data = _optional_table(data, "logging") or {}

    repo = env.get("PRBUDDY_REPO") or _optional_str(github_data, "repo")
    if repo is not None and not _REPO_PATTERN.fullmatch(repo):
        raise ConfigError(f"github.repo must look like 'owner/name', got {repo!r}")
    github = GitHubConfig(
        repo=repo,
        preview_label=_str_with_default(github_data, "preview_label", "Need_preview_env"),
        default_base=_str_with_default(github_data, "default_base", "master"),
    )

    jira = JiraConfig(
        site=env.get("PRBUDDY_JIRA_SITE") or _optional_str(jira_data, "site"),
        browse_url=_str_with_default(
            jira_data, "browse_url", "https://jira.atlassian.net"
        ).rstrip("/"),
    )

    db_path_raw = env.get("PRBUDDY_HIGHLIGHTS_DB") or _str_with_default(
        highlights_data, "db_path", _DEFAULT_HIGHLIGHTS_DB
    )
    highlights = HighlightsConfig(db_path=Path(db_path_raw).expanduser())

    comments = CommentsConfig(
        max_comments=_int_with_default(comments_data, "max_comments", MAX_COMMENTS_LIMIT),
        group_by=_str_with_default(comments_data, "group_by", "chronological"),
    )
    if not 1 <= comments.max_comments <= MAX_COMMENTS_LIMIT:
        raise ConfigError(f"comments.max_comments must be between 1 and {MAX_COMMENTS_LIMIT}")
    if comments.group_by not in GROUP_BY_CHOICES:
        raise ConfigError(f"comments.group_by must be one of: {', '.join(GROUP_BY_CHOICES)}")

    verbose = _optional_str(logging_data, "verbose")
    if verbose is not None and verbose not in {"low", "high"}:
        raise ConfigError("logging.verbose must be one of: low, high")
    logging_config = LoggingConfig(
        verbose=verbose,
        log_dir=_optional_path(logging_data, "log_dir"),
    )

    return AppConfig(
        github=github,
        jira=jira,
        highlights=highlights,
        comments=comments,
        logging=logging_config,
    )


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()
