#!/usr/bin/env python3
"""
Prompt Prep - Project Packer for AI Prompts

Walks a project directory, selects files through ignore patterns and
include/exclude rules, strips comments and whitespace from each file and
appends the results to one timestamped text file.

Architecture:
    CLI Args → Configuration → Ignore Patterns → File Discovery →
    Selection → Concurrent Read/Minify → Buffered Output Sink
"""

from __future__ import annotations

import argparse
import logging
import os
import posixpath
import re
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import (
    Callable,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

import gitignore_parser
import pyperclip

# =============================================================================
# VERSION MANAGEMENT
# =============================================================================

__version__ = "1.0.0"


def get_version() -> str:
    """Get version from package metadata or fallback to hardcoded."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("code-prompt-prep")
    except PackageNotFoundError:
        return __version__


# =============================================================================
# CONSTANTS
# =============================================================================

class Defaults:
    """Default configuration values."""
    PROJECT_PATH = "."
    OUTPUT_FOLDER = "_ai_output"
    CONCURRENCY = 4
    MAX_CONCURRENCY = 100
    # Sink flushes when either threshold is reached
    WRITE_BUFFER_SIZE = 5 * 1024 * 1024
    MAX_BUFFER_ENTRIES = 100


GITIGNORE_NAME = ".gitignore"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

DEFAULT_IGNORE_PATTERNS: Tuple[str, ...] = (
    # Version control and IDE folders
    ".git/", ".svn/", ".hg/", ".idea/", ".vscode/",
    # Dependencies
    "node_modules/", "bower_components/",
    # Build outputs
    "dist/", "build/", "out/", "target/", "bin/", "obj/",
    # Files
    ".gitignore", "*.md",
    # Images
    "*.png", "*.jpg", "*.jpeg", "*.gif", "*.bmp", "*.tiff", "*.ico", "*.svg",
    # Audio and video
    "*.mp4", "*.avi", "*.mov", "*.mkv", "*.webm",
    "*.mp3", "*.wav", "*.ogg", "*.flac",
    # Archives
    "*.zip", "*.rar", "*.7z", "*.tar", "*.gz", "*.bz2",
    # Documents and spreadsheets
    "*.csv", "*.xls", "*.xlsx", "*.pdf", "*.doc", "*.docx", "*.ppt", "*.pptx",
    # Compiled objects
    "*.class", "*.o", "*.so", "*.a", "*.exe", "*.dll",
    # Fonts
    "*.woff", "*.woff2", "*.ttf", "*.otf", "*.eot",
    # Environment files
    ".env", ".env.*",
    # Package manager lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
    "npm-shrinkwrap.json", "shrinkwrap.yaml",
)

INVALID_PATH_CHARS = re.compile(r'[<>:"|?*]')
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
EXTENSION_PATTERN = re.compile(r"^\.[a-zA-Z0-9]+$")

# Status glyphs for console output
GLYPH_SUCCESS = "✓"
GLYPH_ERROR = "✗"
GLYPH_WARNING = "⚠"
GLYPH_INFO = "ℹ"


# =============================================================================
# ERRORS
# =============================================================================

class ErrorKind(Enum):
    """Kinds of failure a run can produce."""
    CONFIG_VALIDATION = auto()   # Fatal, before any filesystem work
    ENUMERATION = auto()         # Fatal, before the pipeline starts
    PER_FILE = auto()            # Recovered, reported per file
    OUTPUT_WRITE = auto()        # Fatal, artifact is discarded
    IGNORE_SOURCE_READ = auto()  # Recovered, defaults only
    IGNORE_FILE_UPDATE = auto()  # Recovered, warning only


FATAL_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.CONFIG_VALIDATION,
    ErrorKind.ENUMERATION,
    ErrorKind.OUTPUT_WRITE,
})


class PackError(Exception):
    """Tagged error; callers branch on ``kind`` rather than on subclasses."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.path = path

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_KINDS

    def __str__(self) -> str:
        text = self.message
        if self.path:
            text = f"{self.path}: {text}"
        if self.cause is not None:
            text = f"{text} ({self.cause})"
        return text


# =============================================================================
# DATA MODELS
# =============================================================================

def normalize_relative(path: str) -> str:
    """Normalize a relative path to forward slashes without ./ or trailing /."""
    path = path.replace("\\", "/").strip()
    if not path:
        return ""
    path = posixpath.normpath(path).lstrip("/")
    return "" if path == "." else path


@dataclass(frozen=True)
class FilterSpec:
    """One side (include or exclude) of the selection rules."""
    files: FrozenSet[str] = frozenset()
    extensions: FrozenSet[str] = frozenset()
    folders: FrozenSet[str] = frozenset()

    @classmethod
    def from_lists(
        cls,
        files: Iterable[str] = (),
        extensions: Iterable[str] = (),
        folders: Iterable[str] = (),
    ) -> FilterSpec:
        """Build a spec, normalizing every path."""
        return cls(
            files=frozenset(p for p in map(normalize_relative, files) if p),
            extensions=frozenset(e.strip() for e in extensions if e.strip()),
            folders=frozenset(p for p in map(normalize_relative, folders) if p),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.files or self.extensions or self.folders)


@dataclass(frozen=True)
class RunConfig:
    """Immutable, validated run configuration."""
    project_path: Path
    output_folder_name: str = Defaults.OUTPUT_FOLDER
    include: FilterSpec = field(default_factory=FilterSpec)
    exclude: FilterSpec = field(default_factory=FilterSpec)
    concurrency: int = Defaults.CONCURRENCY

    @property
    def output_dir(self) -> Path:
        return self.project_path / self.output_folder_name


@dataclass(frozen=True)
class CandidateFile:
    """A discovered file that survived ignore-pattern pruning."""
    absolute_path: Path
    relative_path: str


@dataclass
class ProcessingOutcome:
    """Result of processing one file."""
    relative_path: str
    succeeded: bool
    error: Optional[PackError] = None
    duration_ms: float = 0.0


@dataclass
class RunSummary:
    """Complete run results."""
    artifact_path: Optional[Path]
    outcomes: List[ProcessingOutcome]
    total: int
    cancelled: bool = False
    duration: float = 0.0

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failures(self) -> List[ProcessingOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def failed(self) -> int:
        return len(self.failures)

    def describe(self) -> str:
        """One-line summary, e.g. 'processed 40/42, 2 failed: a.js, b.ts'."""
        text = f"processed {self.processed}/{self.total}"
        if self.failed:
            names = ", ".join(o.relative_path for o in self.failures)
            text += f", {self.failed} failed: {names}"
        return text


# =============================================================================
# CANCELLATION
# =============================================================================

class CancelToken:
    """Run-scoped cancellation flag shared by the orchestrator and workers."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def install_interrupt_handler(token: CancelToken) -> Callable[[], None]:
    """Cancel ``token`` on the first Ctrl-C; a second one interrupts hard.

    Returns a function restoring the previous handler.
    """
    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        token.cancel("interrupted")
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handler)

    def restore() -> None:
        signal.signal(signal.SIGINT, previous)

    return restore


# =============================================================================
# IGNORE PATTERNS
# =============================================================================

def _is_directory_pattern(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#") and stripped.endswith("/")


class IgnoreMatcher:
    """Gitignore-style predicate over paths relative to the project root.

    A query ending in ``/`` names a directory. Directory-only patterns
    (``build/``) apply to directories and everything below them, never to
    a plain file of the same name.
    """

    def __init__(self, root: Path, patterns: Sequence[str]):
        self.root = root
        self.patterns: Tuple[str, ...] = tuple(patterns)
        self._all = gitignore_parser.parse_gitignore_str(
            "\n".join(self.patterns), str(root)
        )
        # gitignore_parser does not know whether a path is a directory
        self._files = gitignore_parser.parse_gitignore_str(
            "\n".join(p for p in self.patterns if not _is_directory_pattern(p)), str(root)
        )

    def _absolute(self, rel: str) -> str:
        return os.path.join(str(self.root), *rel.split("/"))

    def matches(self, relative_path: str) -> bool:
        """Check whether a relative file (or ``dir/``) path is ignored."""
        is_dir = relative_path.replace("\\", "/").rstrip().endswith("/")
        rel = normalize_relative(relative_path)
        if not rel:
            return False
        if is_dir:
            return bool(self._all(self._absolute(rel)))

        parts = rel.split("/")
        for depth in range(1, len(parts)):
            if self._all(self._absolute("/".join(parts[:depth]))):
                return True
        return bool(self._files(self._absolute(rel)))


def load_ignore_source(root: Path) -> Optional[str]:
    """Read the project .gitignore; unreadable means no local patterns."""
    gitignore = root / GITIGNORE_NAME
    if not gitignore.exists():
        return None
    try:
        return gitignore.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        error = PackError(
            ErrorKind.IGNORE_SOURCE_READ,
            "Could not read ignore file, using default patterns only",
            cause=e,
            path=GITIGNORE_NAME,
        )
        logging.warning(str(error))
        return None


def compile_matcher(
    root: Path,
    default_patterns: Sequence[str] = DEFAULT_IGNORE_PATTERNS,
    local_source: Optional[str] = None,
) -> IgnoreMatcher:
    """Compile defaults plus optional .gitignore text into one matcher."""
    patterns = list(default_patterns)
    if local_source:
        patterns.extend(local_source.splitlines())
    return IgnoreMatcher(root, patterns)


def load_matcher(root: Path, extra_patterns: Sequence[str] = ()) -> IgnoreMatcher:
    """Load default, extra and project-local patterns for one run."""
    defaults = list(DEFAULT_IGNORE_PATTERNS) + list(extra_patterns)
    matcher = compile_matcher(root, defaults, load_ignore_source(root))
    logging.debug(f"Loaded {len(matcher.patterns)} ignore patterns")
    return matcher


def add_to_gitignore(project_path: Path, folder_name: str) -> bool:
    """Append /<folder>/ to the project .gitignore unless already present.

    Returns True when the file was changed.
    """
    gitignore = project_path / GITIGNORE_NAME
    entry = f"/{folder_name}/"
    try:
        content = ""
        if gitignore.exists():
            content = gitignore.read_text(encoding="utf-8")
            if entry in (line.strip() for line in content.splitlines()):
                return False
        prefix = "\n" if content and not content.endswith("\n") else ""
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(f"{prefix}{entry}\n")
        return True
    except (OSError, UnicodeDecodeError) as e:
        raise PackError(
            ErrorKind.IGNORE_FILE_UPDATE,
            "Failed to update .gitignore file",
            cause=e,
            path=GITIGNORE_NAME,
        ) from e


# =============================================================================
# FILE DISCOVERY
# =============================================================================

def enumerate_files(root: Path, matcher: IgnoreMatcher) -> List[CandidateFile]:
    """Recursively list files under root, pruning ignored directories.

    Symbolic links are never followed or returned.
    """
    if not root.exists():
        raise PackError(ErrorKind.ENUMERATION, "Project path does not exist", path=str(root))
    if not root.is_dir():
        raise PackError(ErrorKind.ENUMERATION, "Project path is not a directory", path=str(root))

    def on_error(error: OSError) -> None:
        if Path(error.filename or "") == root:
            raise PackError(
                ErrorKind.ENUMERATION, "Cannot read project directory",
                cause=error, path=str(root),
            ) from error
        logging.warning(f"Skipping unreadable directory {error.filename}: {error.strerror}")

    candidates = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=False):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if os.path.islink(os.path.join(dirpath, name)):
                logging.debug(f"Skipping symlinked directory {rel}")
            elif matcher.matches(rel + "/"):
                logging.debug(f"Pruned {rel}/")
            else:
                kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            path = Path(dirpath) / name
            if path.is_symlink():
                logging.debug(f"Skipping symlink {rel}")
                continue
            if matcher.matches(rel):
                logging.debug(f"Ignored {rel}")
                continue
            candidates.append(CandidateFile(absolute_path=path, relative_path=rel))

    return candidates


# =============================================================================
# SELECTION
# =============================================================================

def _under_folder(relative_path: str, folders: Iterable[str]) -> bool:
    return any(
        relative_path == folder or relative_path.startswith(folder + "/")
        for folder in folders
    )


def _has_extension(relative_path: str, extensions: Iterable[str]) -> bool:
    return any(relative_path.endswith(ext) for ext in extensions)


def select_files(
    candidates: Sequence[CandidateFile],
    project_root: Path,
    include: FilterSpec,
    exclude: FilterSpec,
    matcher: IgnoreMatcher,
) -> List[CandidateFile]:
    """Apply ignore patterns, then exclude rules, then include rules.

    Order is preserved. With no filters at all every non-ignored file is
    kept; with exclude rules only, every non-excluded file is kept.

    Folder rules match whole path components, so ``src`` covers
    ``src/a.js`` but not ``srcfoo/a.js``. Candidate paths are already
    relative, so ``project_root`` is only used in log output.
    """
    selected = []

    for candidate in candidates:
        rel = normalize_relative(candidate.relative_path)

        if matcher.matches(rel):
            continue
        if rel in exclude.files:
            continue
        if _has_extension(rel, exclude.extensions):
            continue
        if _under_folder(rel, exclude.folders):
            continue

        if include.is_empty:
            # No filters at all, or exclude rules only
            selected.append(candidate)
        elif (rel in include.files
              or _has_extension(rel, include.extensions)
              or _under_folder(rel, include.folders)):
            selected.append(candidate)
        else:
            logging.debug(f"Not included by any filter: {rel}")

    logging.debug(f"Selected {len(selected)} of {len(candidates)} files under {project_root}")
    return selected


# =============================================================================
# CONTENT TRANSFORM
# =============================================================================

# Lookbehind keeps URLs such as http://example.com intact
_LINE_COMMENT = re.compile(r"(?<!:)//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_WHITESPACE = re.compile(r"\s+")


def minify_code(content: str) -> str:
    """Remove // and /* */ comments and collapse all whitespace.

    Pattern based, not a parser: comment markers inside string literals
    are stripped too.
    """
    content = _LINE_COMMENT.sub("", content)
    content = _BLOCK_COMMENT.sub("", content)
    content = content.replace("\r\n", "\n")
    lines = (line.strip() for line in content.split("\n"))
    joined = " ".join(line for line in lines if line)
    return _WHITESPACE.sub(" ", joined).strip()


# =============================================================================
# OUTPUT SINK
# =============================================================================

class OutputSink:
    """Append-only buffered artifact shared by all pipeline workers.

    Every ``append`` call is written as one unit; concurrent callers are
    serialized by an internal lock.
    """

    def __init__(
        self,
        path: Path,
        handle,
        buffer_size: int = Defaults.WRITE_BUFFER_SIZE,
        max_entries: int = Defaults.MAX_BUFFER_ENTRIES,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.path = path
        self.buffer_size = buffer_size
        self.max_entries = max_entries
        self.cancel_token = cancel_token
        self.bytes_written = 0
        self.dropped_entries = 0
        self._handle = handle
        self._buffer: List[str] = []
        self._buffered_bytes = 0
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def open(
        cls,
        path: Path,
        buffer_size: int = Defaults.WRITE_BUFFER_SIZE,
        max_entries: int = Defaults.MAX_BUFFER_ENTRIES,
        cancel_token: Optional[CancelToken] = None,
    ) -> OutputSink:
        """Create the artifact; an existing file is never overwritten."""
        try:
            handle = open(path, "x", encoding="utf-8", newline="")
        except OSError as e:
            raise PackError(
                ErrorKind.OUTPUT_WRITE, "Cannot create output file", cause=e, path=str(path)
            ) from e
        return cls(path, handle, buffer_size, max_entries, cancel_token)

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, text: str) -> None:
        with self._lock:
            if self._closed:
                raise PackError(ErrorKind.OUTPUT_WRITE, "Output file is closed", path=str(self.path))
            self._buffer.append(text)
            self._buffered_bytes += len(text.encode("utf-8"))
            if (self._buffered_bytes >= self.buffer_size
                    or len(self._buffer) >= self.max_entries):
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            if not self._closed:
                self._flush_locked()

    @property
    def complete(self) -> bool:
        """False once any appended entry was dropped instead of written."""
        return self.dropped_entries == 0

    def _flush_locked(self, honor_cancel: bool = True) -> None:
        if not self._buffer:
            return
        if honor_cancel and self.cancel_token is not None and self.cancel_token.cancelled:
            # The artifact of a cancelled run is discarded; skip the disk
            logging.debug(f"Dropping {len(self._buffer)} buffered entries after cancellation")
            self.dropped_entries += len(self._buffer)
            self._reset_buffer()
            return
        content = "".join(self._buffer)
        try:
            self._handle.write(content)
            self._handle.flush()
        except OSError as e:
            raise PackError(
                ErrorKind.OUTPUT_WRITE, "Failed to write output file", cause=e, path=str(self.path)
            ) from e
        self.bytes_written += self._buffered_bytes
        self._reset_buffer()

    def _reset_buffer(self) -> None:
        self._buffer = []
        self._buffered_bytes = 0

    def close(self) -> None:
        """Flush remaining content to disk and release the handle."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._flush_locked(honor_cancel=False)
                os.fsync(self._handle.fileno())
            except OSError as e:
                raise PackError(
                    ErrorKind.OUTPUT_WRITE, "Failed to flush output file", cause=e, path=str(self.path)
                ) from e
            finally:
                self._close_handle()

    def discard(self) -> None:
        """Drop buffered content and delete the artifact."""
        with self._lock:
            self._closed = True
            self._reset_buffer()
            self._close_handle()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        logging.info(f"Removed incomplete output file {self.path}")

    def _close_handle(self) -> None:
        try:
            self._handle.close()
        except OSError as e:
            logging.debug(f"Error closing {self.path}: {e}")


# =============================================================================
# PROCESSING PIPELINE
# =============================================================================

OutcomeCallback = Callable[[ProcessingOutcome, int, int], None]


class ProcessingPipeline:
    """Bounded worker pool: read, transform and append each file once."""

    def __init__(
        self,
        transform: Callable[[str], str],
        sink: OutputSink,
        concurrency: int = Defaults.CONCURRENCY,
        cancel_token: Optional[CancelToken] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ):
        if not 1 <= concurrency <= Defaults.MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be between 1 and {Defaults.MAX_CONCURRENCY}")
        self.transform = transform
        self.sink = sink
        self.concurrency = concurrency
        self.cancel_token = cancel_token or CancelToken()
        self.on_outcome = on_outcome
        self._lock = threading.Lock()
        self._pending: Iterator[CandidateFile] = iter(())
        self._outcomes: List[ProcessingOutcome] = []
        self._completed = 0
        self._total = 0
        self._fatal: Optional[PackError] = None

    def run(self, files: Sequence[CandidateFile]) -> List[ProcessingOutcome]:
        """Process all files; returns outcomes in completion order.

        Raises the first OUTPUT_WRITE error after in-flight work drains.
        """
        self._pending = iter(tuple(files))
        self._outcomes = []
        self._completed = 0
        self._total = len(files)
        self._fatal = None

        workers = min(self.concurrency, self._total)
        if workers:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="promptprep") as executor:
                futures = [executor.submit(self._worker) for _ in range(workers)]
                for future in as_completed(futures):
                    future.result()

        if self._fatal is not None:
            raise self._fatal
        return list(self._outcomes)

    def _claim(self) -> Optional[CandidateFile]:
        with self._lock:
            if self._fatal is not None or self.cancel_token.cancelled:
                return None
            return next(self._pending, None)

    def _worker(self) -> None:
        while True:
            candidate = self._claim()
            if candidate is None:
                return
            try:
                outcome = self._process(candidate)
            except PackError as e:
                with self._lock:
                    if self._fatal is None:
                        self._fatal = e
                return
            self._record(outcome)

    def _process(self, candidate: CandidateFile) -> ProcessingOutcome:
        start = time.perf_counter()
        rel = candidate.relative_path
        try:
            content = candidate.absolute_path.read_text(encoding="utf-8")
            transformed = self.transform(content)
        except Exception as e:
            logging.debug(f"Failed to process {rel}: {e}")
            return ProcessingOutcome(
                relative_path=rel,
                succeeded=False,
                error=PackError(ErrorKind.PER_FILE, "Failed to process file", cause=e, path=rel),
                duration_ms=(time.perf_counter() - start) * 1000,
            )
        # Sink failures propagate: they are fatal for the whole run
        self.sink.append(f"{rel}\n{transformed}\n\n")
        return ProcessingOutcome(
            relative_path=rel,
            succeeded=True,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    def _record(self, outcome: ProcessingOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)
            self._completed += 1
            completed = self._completed
        if self.on_outcome is not None:
            self.on_outcome(outcome, completed, self._total)


# =============================================================================
# ORCHESTRATION
# =============================================================================

class RunContext:
    """Resources owned by one run, released together on cleanup."""

    def __init__(self, config: RunConfig, cancel_token: Optional[CancelToken] = None):
        self.config = config
        self.cancel_token = cancel_token or CancelToken()
        self.sink: Optional[OutputSink] = None

    def open_sink(self, path: Path) -> OutputSink:
        self.sink = OutputSink.open(path, cancel_token=self.cancel_token)
        return self.sink

    def finish(self) -> Path:
        """Close the sink normally and hand back the artifact path."""
        self.sink.close()
        sink, self.sink = self.sink, None
        return sink.path

    def abort(self) -> None:
        """Release everything registered; no partial artifact survives."""
        if self.sink is not None:
            sink, self.sink = self.sink, None
            sink.discard()


def artifact_name(now: Optional[datetime] = None) -> str:
    return f"{(now or datetime.now()).strftime(TIMESTAMP_FORMAT)}.txt"


def run_pack(
    config: RunConfig,
    transform: Callable[[str], str] = minify_code,
    cancel_token: Optional[CancelToken] = None,
    on_outcome: Optional[OutcomeCallback] = None,
    now: Optional[datetime] = None,
) -> RunSummary:
    """Run the whole pack: select, process and write one artifact."""
    start = time.time()
    ctx = RunContext(config, cancel_token)
    root = config.project_path

    if not root.is_dir():
        raise PackError(ErrorKind.ENUMERATION, "Project path does not exist", path=str(root))

    output_dir = config.output_dir
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PackError(
            ErrorKind.OUTPUT_WRITE, "Cannot create output folder", cause=e, path=str(output_dir)
        ) from e

    try:
        if add_to_gitignore(root, config.output_folder_name):
            logging.info(f"Added /{config.output_folder_name}/ to {GITIGNORE_NAME}")
    except PackError as e:
        logging.warning(str(e))

    matcher = load_matcher(root, extra_patterns=[f"/{config.output_folder_name}/"])
    candidates = enumerate_files(root, matcher)
    logging.info(f"Found {len(candidates)} files")
    files = select_files(candidates, root, config.include, config.exclude, matcher)
    logging.info(f"Selected {len(files)} files for processing")

    ctx.open_sink(output_dir / artifact_name(now))
    pipeline = ProcessingPipeline(
        transform,
        ctx.sink,
        concurrency=config.concurrency,
        cancel_token=ctx.cancel_token,
        on_outcome=on_outcome,
    )
    try:
        outcomes = pipeline.run(files)
        if len(outcomes) < len(files) or not ctx.sink.complete:
            ctx.abort()
            return RunSummary(
                artifact_path=None,
                outcomes=outcomes,
                total=len(files),
                cancelled=True,
                duration=time.time() - start,
            )
        artifact = ctx.finish()
    except BaseException:
        ctx.abort()
        raise

    return RunSummary(
        artifact_path=artifact,
        outcomes=outcomes,
        total=len(files),
        duration=time.time() - start,
    )


# =============================================================================
# CONFIGURATION BUILDER
# =============================================================================

def parse_comma_separated(value: Optional[str]) -> List[str]:
    """Split a comma-separated option into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def is_valid_path(value: str) -> bool:
    """Reject invalid characters, control characters and parent references."""
    normalized = os.path.normpath(value)
    if INVALID_PATH_CHARS.search(normalized) or CONTROL_CHARS.search(normalized):
        return False
    return ".." not in normalized


def is_valid_extension(value: str) -> bool:
    return bool(EXTENSION_PATTERN.match(value))


class ConfigBuilder:
    """Builds RunConfig from CLI arguments."""

    @staticmethod
    def from_args(args: argparse.Namespace) -> RunConfig:
        """Create and validate config; all problems are reported at once."""
        issues: List[str] = []

        project_raw = str(args.project_path or Defaults.PROJECT_PATH)
        if CONTROL_CHARS.search(project_raw):
            issues.append("projectPath: Invalid project path format.")

        output_folder = args.output_folder or Defaults.OUTPUT_FOLDER
        if (not is_valid_path(output_folder) or output_folder.strip() in ("", ".")
                or "/" in output_folder or "\\" in output_folder):
            issues.append(
                "outputFolder: Output folder must be a valid folder name without path separators."
            )

        filters = {}
        for side in ("include", "exclude"):
            files = parse_comma_separated(getattr(args, f"{side}_files", None))
            extensions = parse_comma_separated(getattr(args, f"{side}_extensions", None))
            folders = parse_comma_separated(getattr(args, f"{side}_folders", None))
            issues.extend(ConfigBuilder._check_paths(f"{side}.files", files, "file"))
            issues.extend(ConfigBuilder._check_paths(f"{side}.folders", folders, "folder"))
            for ext in extensions:
                if not is_valid_extension(ext):
                    issues.append(
                        f"{side}.extensions: Invalid extension format '{ext}'. Extensions "
                        "must start with dot and contain only alphanumeric characters."
                    )
            filters[side] = FilterSpec.from_lists(files, extensions, folders)

        concurrency = ConfigBuilder._parse_concurrency(args.concurrency, issues)

        if issues:
            raise PackError(
                ErrorKind.CONFIG_VALIDATION, "Invalid options:\n" + "\n".join(issues)
            )

        return RunConfig(
            project_path=Path(project_raw).resolve(),
            output_folder_name=output_folder,
            include=filters["include"],
            exclude=filters["exclude"],
            concurrency=concurrency,
        )

    @staticmethod
    def _check_paths(label: str, paths: List[str], noun: str) -> List[str]:
        return [
            f"{label}: Invalid {noun} path format '{p}'. "
            "Path contains invalid characters or structure."
            for p in paths if not is_valid_path(p)
        ]

    @staticmethod
    def _parse_concurrency(value, issues: List[str]) -> int:
        if value is None or value == "":
            return Defaults.CONCURRENCY
        try:
            number = int(str(value).strip())
        except ValueError:
            issues.append(f"concurrency: Expected an integer, got '{value}'.")
            return Defaults.CONCURRENCY
        if number < 1:
            issues.append("concurrency: Concurrency must be a positive integer.")
        elif number > Defaults.MAX_CONCURRENCY:
            issues.append(
                f"concurrency: Concurrency must not exceed {Defaults.MAX_CONCURRENCY} "
                "for system stability."
            )
        return number


# =============================================================================
# CONSOLE OUTPUT
# =============================================================================

class ConsoleReporter:
    """Renders run events to stderr."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr

    def message(self, glyph: str, text: str) -> None:
        print(f"{glyph} {text}", file=self.stream)

    def on_outcome(self, outcome: ProcessingOutcome, completed: int, total: int) -> None:
        if outcome.succeeded:
            self.message(GLYPH_SUCCESS, f"[{completed}/{total}] Processed: {outcome.relative_path}")
        else:
            self.message(GLYPH_ERROR, f"[{completed}/{total}] Failed: {outcome.error}")

    def summary(self, result: RunSummary) -> None:
        if result.cancelled:
            self.message(GLYPH_WARNING, f"Interrupted, {result.describe()}; output discarded")
            return
        glyph = GLYPH_WARNING if result.failed else GLYPH_SUCCESS
        self.message(glyph, f"Completed in {result.duration:.2f}s, {result.describe()}")
        self.message(GLYPH_INFO, f"Output saved to {result.artifact_path}")


def copy_to_clipboard(path: Path, reporter: ConsoleReporter) -> bool:
    """Copy the artifact contents to the clipboard."""
    try:
        content = path.read_text(encoding="utf-8")
        pyperclip.copy(content)
    except (OSError, pyperclip.PyperclipException) as e:
        reporter.message(GLYPH_WARNING, f"Could not copy to clipboard: {e}")
        return False
    reporter.message(GLYPH_SUCCESS, f"{len(content):,} chars copied to clipboard")
    return True


# =============================================================================
# CLI PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="cpp",
        description="Prepare project files for AI assistance by minifying and organizing code.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cpp                          # Pack the current directory
  cpp -p ./app -ie .ts,.tsx    # Only TypeScript files of ./app
  cpp -xd tests,scripts        # Everything except two folders
  cpp -c 16 --copy             # 16 workers, copy result to clipboard
        """,
    )

    proj = parser.add_argument_group("Project")
    proj.add_argument("-p", "--project-path", default=Defaults.PROJECT_PATH,
                      help="Path to the project directory (default: current)")
    proj.add_argument("-o", "--output-folder", default=Defaults.OUTPUT_FOLDER,
                      help=f"Name of the output folder (default: {Defaults.OUTPUT_FOLDER})")

    incl = parser.add_argument_group("Include")
    incl.add_argument("-if", "--include-files", default="", metavar="LIST",
                      help="Files to include (comma-separated file paths)")
    incl.add_argument("-ie", "--include-extensions", default="", metavar="LIST",
                      help="File extensions to include (comma-separated, must start with dot)")
    incl.add_argument("-id", "--include-folders", default="", metavar="LIST",
                      help="Folders to include (comma-separated folder paths)")

    excl = parser.add_argument_group("Exclude")
    excl.add_argument("-xf", "--exclude-files", default="", metavar="LIST",
                      help="Files to exclude (comma-separated file paths)")
    excl.add_argument("-xe", "--exclude-extensions", default="", metavar="LIST",
                      help="File extensions to exclude (comma-separated, must start with dot)")
    excl.add_argument("-xd", "--exclude-folders", default="", metavar="LIST",
                      help="Folders to exclude (comma-separated folder paths)")

    run = parser.add_argument_group("Processing")
    run.add_argument("-c", "--concurrency", default=str(Defaults.CONCURRENCY), metavar="N",
                     help=f"Number of files to process concurrently (max {Defaults.MAX_CONCURRENCY})")
    run.add_argument("--copy", action="store_true", help="Copy the result to the clipboard")
    run.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    return parser


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    reporter = ConsoleReporter()
    token = CancelToken()
    restore_handler = install_interrupt_handler(token)

    try:
        config = ConfigBuilder.from_args(args)
        reporter.message(GLYPH_INFO, f"Packing {config.project_path}")
        result = run_pack(config, cancel_token=token, on_outcome=reporter.on_outcome)
        reporter.summary(result)
        if result.cancelled:
            return 130
        if args.copy and result.artifact_path is not None:
            copy_to_clipboard(result.artifact_path, reporter)
        return 0

    except PackError as e:
        if e.kind == ErrorKind.CONFIG_VALIDATION:
            reporter.message(GLYPH_ERROR, f"Validation error: {e}")
        else:
            reporter.message(GLYPH_ERROR, f"Fatal error: {e}")
        return 1
    except KeyboardInterrupt:
        reporter.message(GLYPH_WARNING, "Interrupted")
        return 130
    finally:
        restore_handler()


if __name__ == "__main__":
    sys.exit(main())
