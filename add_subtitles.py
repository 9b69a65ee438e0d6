#!/usr/bin/env python
"""
add_subtitles.py

Rename SRT/ASS files from a subtitle folder to match the MKV files of a
video folder, inserting a language code before the extension:

  Show - S01E01 - Title.mkv  +  Show 01 [Fansub].ass  +  eng
      ->  Show - S01E01 - Title.eng.ass

The episode number is read from the "- S01E## -" token of each MKV name and
looked up in the subtitle folder using these shapes, first hit wins:

  1) "* 01*"   space before the number   (Show 01.ass)
  2) "*[01]*"  bracketed                 (Show [01][Source].ass)
  3) "*{01}*"  braced                    (Show {01}.srt)
  4) "*E01*"   episode token             (Show S01E01.srt)

Moves by default. -c copies, -r copies and also renames the original in the
subtitle folder so both sides carry the same name.
"""

from __future__ import annotations

import argparse
import errno
import re
import shutil
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable


# ========= CONFIG =========

TEMPLATE_EXT = ".mkv"
SUB_EXTS = (".srt", ".ass")

DEFAULT_SEASON = 1

USAGE = (
    "%(prog)s [-c|--copy] [-r] [options] "
    "<subdir_of_srtList> <dstdir_of_mkv> <langiso>"
)


# ========= LOGGING =========

def log(msg: str) -> None:
    print(msg)

def v_log(msg: str, verbose: bool) -> None:
    if verbose:
        print(msg)

def err(msg: str) -> None:
    print(msg, file=sys.stderr)


# ========= DATA =========

class Mode(Enum):
    MOVE = "move"
    COPY = "copy"
    COPY_RENAME = "copy+rename"


@dataclass(frozen=True)
class SubtitleOptions:
    lang_iso: str
    copy_mode: bool = False
    rename_original: bool = False
    season: int = DEFAULT_SEASON
    include_episode_token: bool = True
    dry_run: bool = False
    verbose: bool = False

    @property
    def mode(self) -> Mode:
        # -r needs a copy in the destination as well
        if self.rename_original:
            return Mode.COPY_RENAME
        if self.copy_mode:
            return Mode.COPY
        return Mode.MOVE


@dataclass(frozen=True)
class CandidatePattern:
    glob: str
    matches: Callable[[str], bool] = field(compare=False, repr=False)


@dataclass
class MatchResult:
    episode: str
    patterns: list[CandidatePattern]
    path: Path | None = None
    pattern: CandidatePattern | None = None

    @property
    def found(self) -> bool:
        return self.path is not None


@dataclass
class RunSummary:
    processed: int = 0
    matched: int = 0
    skipped: int = 0
    missing: int = 0
    failed: int = 0
    written: list[Path] = field(default_factory=list)


# ========= EPISODE PARSING =========

def season_token(season: int) -> str:
    return f"S{season:02d}"


def extract_episode_number(name: str, season: int = DEFAULT_SEASON) -> str | None:
    """
    Return the two-digit episode number from a "... - S01E07 - ..." name,
    or None when the name does not carry that token for `season`.
    """
    m = re.search(rf"-\s{season_token(season)}E(\d{{2}})\s-", name)
    return m.group(1) if m else None


# ========= MATCHING =========

def _shape(fragment: str) -> Callable[[str], bool]:
    exts = "|".join(re.escape(ext) for ext in SUB_EXTS)
    rx = re.compile(rf".*{re.escape(fragment)}.*(?:{exts})", re.DOTALL)

    def matches(name: str) -> bool:
        # hidden files are never globbed
        if name.startswith("."):
            return False
        return rx.fullmatch(name) is not None

    return matches


def build_candidate_patterns(
    episode: str,
    include_episode_token: bool = True,
) -> list[CandidatePattern]:
    shapes = [
        f" {episode}",
        f"[{episode}]",
        f"{{{episode}}}",
    ]
    if include_episode_token:
        shapes.append(f"E{episode}")

    return [CandidatePattern(glob=f"*{s}*", matches=_shape(s)) for s in shapes]


def list_subtitle_candidates(source_dir: Path) -> list[Path]:
    return sorted(
        (p for p in source_dir.iterdir() if p.is_file()),
        key=lambda p: p.name,
    )


def find_subtitle(
    episode: str,
    source_dir: Path,
    patterns: list[CandidatePattern] | None = None,
    verbose: bool = False,
) -> MatchResult:
    if patterns is None:
        patterns = build_candidate_patterns(episode)

    candidates = list_subtitle_candidates(source_dir)
    result = MatchResult(episode=episode, patterns=patterns)

    for pattern in patterns:
        hits = [p for p in candidates if pattern.matches(p.name)]
        v_log(f"   [{pattern.glob}] {len(hits)} hit(s)", verbose)
        if hits:
            result.path = hits[0]
            result.pattern = pattern
            break

    return result


def describe_patterns(patterns: list[CandidatePattern]) -> str:
    globs = [p.glob for p in patterns]
    if len(globs) < 2:
        return "".join(globs)
    return f"{', '.join(globs[:-1])}, and {globs[-1]}"


# ========= FILE OPERATIONS =========

def subtitle_target_name(template_name: str, lang_iso: str, subtitle_name: str) -> str:
    if template_name.endswith(TEMPLATE_EXT):
        base = template_name[: -len(TEMPLATE_EXT)]
    else:
        base = Path(template_name).stem
    orig_ext = subtitle_name.rsplit(".", 1)[-1]
    return f"{base}.{lang_iso}.{orig_ext}"


class PartialCopyError(OSError):
    """The destination copy was written but the original could not be renamed."""

    def __init__(self, copied: Path, cause: OSError):
        super().__init__(cause.errno, cause.strerror or str(cause), cause.filename)
        self.copied = copied


def move_file(src: Path, dst: Path) -> None:
    # dst is overwritten if it exists
    try:
        src.replace(dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.copy2(src, dst)
        src.unlink()


def apply_subtitle(subtitle: Path, template: Path, options: SubtitleOptions) -> list[Path]:
    """
    Put `subtitle` next to `template` under the template's name.

    Returns the paths written, which is empty on a dry run. OSError from the
    underlying copy/move is left to the caller; a copy+rename whose rename
    fails raises PartialCopyError carrying the copy already made.
    """
    new_name = subtitle_target_name(template.name, options.lang_iso, subtitle.name)
    target = template.parent / new_name
    mode = options.mode

    if options.dry_run:
        log(f"[DRY RUN] Would {mode.value}: {subtitle} -> {target}")
        if mode is Mode.COPY_RENAME:
            log(f"[DRY RUN] Would rename original: {subtitle} -> {subtitle.with_name(new_name)}")
        return []

    if mode is Mode.MOVE:
        move_file(subtitle, target)
        return [target]

    shutil.copy2(subtitle, target)
    if mode is Mode.COPY:
        return [target]

    renamed = subtitle.with_name(new_name)
    try:
        subtitle.replace(renamed)
    except OSError as e:
        raise PartialCopyError(target, e) from e
    return [renamed, target]


# ========= CORE LOGIC =========

def iter_templates(dest_dir: Path) -> list[Path]:
    return sorted(
        (
            p for p in dest_dir.iterdir()
            if p.is_file() and p.name.endswith(TEMPLATE_EXT) and not p.name.startswith(".")
        ),
        key=lambda p: p.name,
    )


def report_success(episode: str, written: list[Path], options: SubtitleOptions) -> None:
    mode = options.mode
    if mode is Mode.COPY_RENAME:
        renamed, target = written
        log(f"✅ Copied and Renamed Original Episode {episode}:")
        log(f"   Source: {renamed}")
        log(f"   Destination: {target}")
    elif mode is Mode.COPY:
        log(f"✅ Copied Episode {episode}: {written[0].name}")
    else:
        log(f"✅ Renamed and Moved Episode {episode}: {written[0].name}")


def process_template(
    template: Path,
    source_dir: Path,
    options: SubtitleOptions,
    summary: RunSummary,
) -> None:
    summary.processed += 1

    episode = extract_episode_number(template.name, options.season)
    if episode is None:
        summary.skipped += 1
        log(
            f"⚠️ Warning: Skipping '{template.name}'. Could not extract episode "
            f"number (looking for {season_token(options.season)}E##)."
        )
        return

    v_log(f"🔍 Episode {episode}: {template.name}", options.verbose)
    patterns = build_candidate_patterns(episode, options.include_episode_token)
    match = find_subtitle(episode, source_dir, patterns, verbose=options.verbose)

    if not match.found:
        summary.missing += 1
        log(
            f"⚠️ Warning: Could not find matching SRT/ASS file for episode {episode} "
            f"in '{source_dir}'. Tried patterns: {describe_patterns(patterns)}."
        )
        return

    v_log(f"   Matched {match.path.name} via {match.pattern.glob}", options.verbose)

    try:
        written = apply_subtitle(match.path, template, options)
    except PartialCopyError as e:
        summary.failed += 1
        summary.written.append(e.copied)
        err(
            f"❌ Error: Copied episode {episode} to '{e.copied}' but could not rename "
            f"original '{match.path.name}': {e}"
        )
        return
    except OSError as e:
        summary.failed += 1
        err(f"❌ Error: Failed to {options.mode.value} '{match.path.name}' for episode {episode}: {e}")
        return

    summary.matched += 1
    summary.written.extend(written)
    if written:
        report_success(episode, written, options)


def process_directory(source_dir: Path, dest_dir: Path, options: SubtitleOptions) -> RunSummary:
    summary = RunSummary()
    for template in iter_templates(dest_dir):
        process_template(template, source_dir, options, summary)
    return summary


# ========= CLI =========

class SubtitleArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"❌ Error: {message}\n")


def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = SubtitleArgumentParser(
        usage=USAGE,
        allow_abbrev=False,
        description="Rename SRT/ASS subtitles to match MKV files and tag them with a language code.",
    )
    p.add_argument("subdir", type=Path, help="Directory containing the original subtitle files")
    p.add_argument("dstdir", type=Path, help="Directory containing the MKV files (naming template)")
    p.add_argument("langiso", help="Language code (e.g. 'jpn', 'eng')")
    p.add_argument(
        "-c", "--copy",
        action="store_true",
        help="Copy subtitles to destination instead of moving",
    )
    p.add_argument(
        "-r", "--rename-original",
        action="store_true",
        help="Rename original subtitle in source folder to match destination naming",
    )
    p.add_argument(
        "--season",
        type=int,
        default=DEFAULT_SEASON,
        help=f"Season number expected in the MKV names (default: {DEFAULT_SEASON})",
    )
    p.add_argument(
        "--skip-e-pattern",
        action="store_true",
        help="Only try the space, bracket and brace shapes, not *E##*",
    )
    p.add_argument("--dry-run", action="store_true", help="Show what would happen without touching files")
    p.add_argument("--verbose", action="store_true", help="Print every pattern probed")
    args = p.parse_args(argv)
    if not 0 <= args.season <= 99:
        p.error(f"--season must be between 0 and 99, got {args.season}")
    return args


def print_header(args: argparse.Namespace, options: SubtitleOptions) -> None:
    log("--- Subtitle Rename Utility ---")
    log(f"Subtitle Source: {args.subdir}")
    log(f"Video Destination: {args.dstdir}")
    log(f"Language ISO Code: {options.lang_iso}")
    log(f"Copy Mode: {str(options.copy_mode).lower()}")
    log(f"Rename Original: {str(options.rename_original).lower()}")
    log(f"Season: {season_token(options.season)}")
    if options.dry_run:
        log("Mode: DRY RUN")
    log("-------------------------------")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    options = SubtitleOptions(
        lang_iso=args.langiso,
        copy_mode=args.copy,
        rename_original=args.rename_original,
        season=args.season,
        include_episode_token=not args.skip_e_pattern,
        dry_run=args.dry_run,
        verbose=args.verbose,
    )

    print_header(args, options)

    if not args.subdir.is_dir():
        err(f"❌ Error: Subtitle source directory '{args.subdir}' not found.")
        return 1
    if not args.dstdir.is_dir():
        err(f"❌ Error: Video destination directory '{args.dstdir}' not found.")
        return 1

    try:
        summary = process_directory(args.subdir, args.dstdir, options)
    except KeyboardInterrupt:
        err("\n⚠️ Interrupted. Files handled so far are already in place.")
        return 130

    log(
        f"\n{summary.processed} file(s): {summary.matched} matched, "
        f"{summary.skipped} skipped, {summary.missing} missing, {summary.failed} failed"
    )
    log("--- Done. ---")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
