#!/usr/bin/env python3
"""
LFSweep

A Python tool to recursively convert CRLF line endings to LF in text files.
"""

import argparse
import concurrent.futures
import enum
import logging
import os
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Set

from tqdm import tqdm

# Define version
__version__ = "1.0.0"

# Number of head bytes inspected by the text heuristic
SAMPLE_SIZE = 1024

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("LFSweep")


class Outcome(enum.Enum):
    """Result of running the pipeline on one file."""

    CONVERTED = "converted"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass(frozen=True)
class FileResult:
    path: str
    outcome: Outcome
    reason: Optional[str] = None

    @classmethod
    def converted(cls, path: str) -> "FileResult":
        return cls(path, Outcome.CONVERTED)

    @classmethod
    def skipped(cls, path: str) -> "FileResult":
        return cls(path, Outcome.SKIPPED)

    @classmethod
    def errored(cls, path: str, reason: str) -> "FileResult":
        return cls(path, Outcome.ERRORED, reason)


@dataclass
class RunTally:
    """
    Outcome counters for a directory run.

    Only the orchestrating thread mutates a tally; workers hand their
    results back through futures.
    """

    converted: int = 0
    skipped: int = 0
    errored: int = 0
    elapsed: float = 0.0

    def record(self, result: FileResult) -> None:
        if result.outcome is Outcome.CONVERTED:
            self.converted += 1
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1

    def record_error(self) -> None:
        self.errored += 1

    @property
    def total(self) -> int:
        return self.converted + self.skipped + self.errored


class _TqdmStreamHandler(logging.StreamHandler):
    """Stream handler that writes through tqdm so progress bars stay intact."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


class _MaxLevelFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    def __init__(self, max_level: int) -> None:
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """
    Route progress output to stdout and diagnostics to stderr.

    Calling this again replaces the handlers installed by a previous call.
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stdout_handler = _TqdmStreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(stdout_handler)

    stderr_handler = _TqdmStreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def is_likely_text(file_path: str) -> bool:
    """
    Check whether a file is likely text by sampling its first bytes.

    A NUL byte anywhere in the first SAMPLE_SIZE bytes marks the file as
    binary. This is a cheap heuristic: UTF-16 text is reported as binary
    and binary formats without an early NUL are reported as text.

    Raises OSError if the file cannot be opened or read.
    """
    with open(file_path, "rb") as f:
        chunk: bytes = f.read(SAMPLE_SIZE)
    return b"\x00" not in chunk


def _write_atomic(file_path: str, content: str) -> None:
    # Replace the link target, not the link itself
    real_path = os.path.realpath(file_path)
    directory = os.path.dirname(real_path)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".lfsweep-")
    try:
        with os.fdopen(tmp_fd, "w", newline="", encoding="utf-8") as tmp:
            tmp.write(content)
        # mkstemp creates the file with mode 0600
        shutil.copymode(real_path, tmp_path)
        os.replace(tmp_path, real_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def convert_line_endings(file_path: str, atomic: bool = False) -> bool:
    """
    Replace every CRLF in a text file with LF.

    Returns True if the file was rewritten and False if it contained no
    CRLF. Raises UnicodeDecodeError for content that is not valid UTF-8
    and OSError for read or write failures; nothing is written unless
    the whole file was read and decoded first.
    """
    # newline="" keeps "\r\n" intact on read and write
    with open(file_path, "r", newline="", encoding="utf-8") as f:
        content: str = f.read()

    if "\r\n" not in content:
        return False

    new_content: str = content.replace("\r\n", "\n")

    if atomic:
        _write_atomic(file_path, new_content)
    else:
        with open(file_path, "w", newline="", encoding="utf-8") as f:
            f.write(new_content)
    return True


def process_file(file_path: str, atomic: bool = False) -> FileResult:
    """Classify a file and convert its line endings when it is text."""
    try:
        if not is_likely_text(file_path):
            logger.debug("Skipping binary file: %s", file_path)
            return FileResult.skipped(file_path)

        if not convert_line_endings(file_path, atomic=atomic):
            logger.debug("No CRLF line endings in: %s", file_path)
            return FileResult.skipped(file_path)
    except (OSError, UnicodeDecodeError) as e:
        return FileResult.errored(file_path, str(e))

    logger.debug("Updated file: %s", file_path)
    return FileResult.converted(file_path)


def walk_files(root_dir: str, onerror: Callable[[OSError], None]) -> Iterator[str]:
    """
    Lazily yield every regular file below root_dir.

    Directory symlinks are not followed. Entries that are not regular
    files are dropped, and listing failures are handed to onerror.
    """
    for root, _, files in os.walk(root_dir, onerror=onerror):
        for filename in files:
            file_path: str = os.path.join(root, filename)
            if os.path.isfile(file_path):
                yield file_path


def _default_workers() -> int:
    return os.cpu_count() or 1


def _report_result(result: FileResult) -> None:
    if result.outcome is Outcome.CONVERTED:
        logger.info("Processed: %s", result.path)
    elif result.outcome is Outcome.ERRORED:
        logger.error("Error processing file %s: %s", result.path, result.reason)


def process_tree(  # pylint: disable=too-many-locals
    root_dir: str,
    atomic: bool = False,
    max_workers: Optional[int] = None,
    progress: Optional[bool] = None,
) -> RunTally:
    """
    Convert every likely-text file under root_dir using a thread pool.

    Files are submitted while the tree is still being walked. The number
    of queued files is capped so that huge trees do not pile up futures;
    results are drained and tallied on the calling thread.
    """
    if max_workers is None:
        max_workers = _default_workers()
    window: int = max_workers * 4

    tally = RunTally()
    start_time: float = time.time()

    def on_walk_error(error: OSError) -> None:
        tally.record_error()
        logger.error("Error: Failed to traverse directory: %s", error)

    logger.debug("Using %d worker threads", max_workers)

    pending: Set[concurrent.futures.Future] = set()
    future_to_file = {}

    with tqdm(
        desc="Processing files",
        unit="file",
        disable=None if progress is None else not progress,
    ) as pbar:

        def drain(futures: Set[concurrent.futures.Future]) -> None:
            for future in futures:
                file_path = future_to_file.pop(future)
                try:
                    result = future.result()
                except Exception as e:  # pylint: disable=broad-exception-caught
                    tally.record_error()
                    logger.error("Unhandled error processing %s: %s", file_path, e)
                else:
                    tally.record(result)
                    _report_result(result)
                pbar.update(1)

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers
        ) as executor:
            for file_path in walk_files(root_dir, on_walk_error):
                future = executor.submit(process_file, file_path, atomic)
                future_to_file[future] = file_path
                pending.add(future)

                if len(pending) >= window:
                    done, pending = concurrent.futures.wait(
                        pending, return_when=concurrent.futures.FIRST_COMPLETED
                    )
                    drain(done)

            done, _ = concurrent.futures.wait(pending)
            drain(done)

    tally.elapsed = time.time() - start_time
    return tally


def process_single_file(file_path: str, atomic: bool = False) -> FileResult:
    """Run the pipeline once on a single file and report the outcome."""
    result = process_file(file_path, atomic=atomic)
    if result.outcome is Outcome.SKIPPED:
        logger.warning("Skipped: %s", file_path)
    else:
        _report_result(result)
    return result


def format_duration(execution_time: float) -> str:
    if execution_time < 60:
        return f"{execution_time:.2f} seconds"
    if execution_time < 3600:
        minutes = int(execution_time // 60)
        seconds = execution_time % 60
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds:.2f} seconds"
    hours = int(execution_time // 3600)
    minutes = int((execution_time % 3600) // 60)
    seconds = execution_time % 60
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds:.2f} seconds"
    )


def report_summary(tally: RunTally) -> None:
    logger.info("\n--- Processing Complete ---")
    logger.info("Files successfully converted: %d", tally.converted)
    logger.info("Files skipped: %d", tally.skipped)
    logger.info("Errors encountered: %d", tally.errored)
    logger.info("Total time: %s", format_duration(tally.elapsed))


def run(
    root: str, atomic: bool = False, progress: Optional[bool] = None
) -> Optional[RunTally]:
    """
    Process a directory tree or a single file.

    Returns the tally for a directory run and None otherwise.
    """
    if os.path.isdir(root):
        tally = process_tree(root, atomic=atomic, progress=progress)
        report_summary(tally)
        return tally

    if os.path.isfile(root):
        process_single_file(root, atomic=atomic)
    elif os.path.lexists(root):
        logger.error("Not a file or directory: %s", root)
    else:
        logger.error("Path not found: %s", root)
    return None


def _log_file_path(value: str) -> str:
    """argparse type: a log file that can be opened for appending."""
    try:
        with open(value, "a", encoding="utf-8"):
            pass
    except OSError as e:
        raise argparse.ArgumentTypeError(f"cannot open log file: {e}") from e
    return value


def main() -> int:
    try:
        version: str = getattr(sys.modules[__name__], "__version__", "1.0.0")

        parser = argparse.ArgumentParser(
            description="Recursively convert CRLF line endings to LF in text files"
        )
        parser.add_argument(
            "path",
            nargs="?",
            default=".",
            help="File or directory to process (default: current directory)",
        )
        parser.add_argument(
            "--atomic",
            action="store_true",
            help="Write each converted file to a temporary file and rename it "
            "over the original",
        )
        parser.add_argument(
            "--no-progress",
            action="store_true",
            help="Do not show a progress bar",
        )
        parser.add_argument(
            "--verbose", action="store_true", help="Enable verbose logging"
        )
        parser.add_argument(
            "--log-file",
            type=_log_file_path,
            default=None,
            help="Also append log records to this file",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"LFSweep v{version}",
            help="Show program version and exit",
        )

        args = parser.parse_args()

        setup_logging(verbose=args.verbose, log_file=args.log_file)
        logger.debug("LFSweep v%s - processing %s", version, args.path)

        run(
            args.path,
            atomic=args.atomic,
            progress=False if args.no_progress else None,
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.level <= logging.DEBUG:
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
