"""Unified diff splitting and file relevance filtering."""

from __future__ import annotations

import re
from dataclasses import dataclass

FILE_HEADER_PATTERN = re.compile(r"^diff --git a/(?P<filename>.*?) b/.*$", re.MULTILINE)

# Suffixes of files that are opaque, binary, or generated.
NON_ESSENTIAL_SUFFIXES: tuple[str, ...] = (
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tiff", ".svg", ".ico", ".psd", ".ai", ".eps",
    # video
    ".mp4", ".avi", ".mov", ".wmv", ".flv", ".mkv", ".webm", ".mpeg", ".mpg", ".m4v",
    # audio
    ".mp3", ".wav", ".flac", ".aac", ".ogg", ".wma", ".m4a", ".aiff", ".ape",
    # documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp",
    # archives
    ".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz", ".lz", ".z",
    # executables and binaries
    ".exe", ".dll", ".so", ".dylib", ".bin", ".class", ".jar", ".war", ".ear", ".msi",
    ".apk", ".ipa",
    # compiled objects
    ".o", ".obj", ".pyc", ".pyo", ".pyd", ".lib", ".a", ".dsym",
    # system and temporary files
    ".sys", ".tmp", ".bak", ".old", ".swp", ".swo", ".lock", ".cfg", ".ini",
    # databases
    ".db", ".sqlite", ".sqlite3", ".mdb", ".accdb", ".dbf", ".frm", ".myd", ".myi",
    # fonts
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    # logs and backups
    ".log", ".orig", ".sav", ".save", ".dump",
    # certificates and keys
    ".crt", ".pem", ".key", ".csr", ".der",
    # platform metadata
    ".plist", ".mobileprovision", ".icns", ".ds_store", "thumbs.db", "desktop.ini",
    # generated artifacts
    ".map", ".min.js", ".d.ts", ".map.js", ".map.css", ".bundle.js", ".bundle.css",
    ".bundle.js.map", ".bundle.css.map", ".bundle.min.js",
)


@dataclass(frozen=True, slots=True)
class FileDiffSegment:
    """Diff text belonging to exactly one file."""

    filename: str
    diff_content: str


def parse_per_file_diffs(diff: str) -> tuple[FileDiffSegment, ...]:
    """Split a raw unified diff into ordered per-file segments.

    Each segment runs from its ``diff --git`` header up to the next header or
    the end of input and is stripped of surrounding whitespace. Text before
    the first header belongs to no segment; a diff without headers yields an
    empty tuple.
    """
    headers = list(FILE_HEADER_PATTERN.finditer(diff))
    segments: list[FileDiffSegment] = []
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(diff)
        segments.append(
            FileDiffSegment(
                filename=header.group("filename"),
                diff_content=diff[header.start() : end].strip(),
            )
        )
    return tuple(segments)


def is_essential_file(filename: str) -> bool:
    """Return whether a file is worth spending token budget on."""
    return not filename.lower().endswith(NON_ESSENTIAL_SUFFIXES)


def filter_essential_files(
    segments: tuple[FileDiffSegment, ...] | list[FileDiffSegment],
) -> tuple[FileDiffSegment, ...]:
    """Drop segments whose filename is on the non-essential deny-list."""
    return tuple(segment for segment in segments if is_essential_file(segment.filename))
