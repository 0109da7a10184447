"""Display sinks for the markdown result stream.

One sink is chosen at startup from ``result_viewer_app``:

- ``""``: write straight to the terminal.
- ``homo``: feed a long-lived viewer process through its stdin.
- ``Terminal`` / ``iTerm2`` / ``Warp``: write a temporary markdown file and
  open it in that app once the run is over.

Every sink has a single idempotent ``cleanup()`` that is safe to call from
both normal completion and signal handlers.
"""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TextIO

from desktop import TERMINAL_VIEWERS, launch_viewer
from extraction import format_json_in_file

logger = logging.getLogger(__name__)

PIPE_VIEWER = "homo"


class DisplaySink(ABC):
    """Append-only destination for result markdown."""

    def __init__(self):
        self._cleaned_up = False

    @abstractmethod
    def write(self, content: str) -> None:
        ...

    def reformat_json(self) -> None:
        """Expand compact JSON blocks in already-written output, if possible."""

    def finish(self) -> None:
        """Called once the complete result has been written."""

    def cleanup(self) -> None:
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self._release()

    def _release(self) -> None:
        pass


class TerminalSink(DisplaySink):
    def __init__(self, stream: TextIO | None = None):
        super().__init__()
        self._stream = stream or sys.stdout

    def write(self, content: str) -> None:
        self._stream.write(content)
        self._stream.flush()

    def _release(self) -> None:
        self._stream.flush()


class MarkdownFileSink(DisplaySink):
    """Collects output in a temp .md file and opens it in a viewer app on cleanup."""

    def __init__(
        self,
        viewer_app: str,
        launcher: Callable[[str, str], bool] = launch_viewer,
        directory: str | None = None,
    ):
        super().__init__()
        self.viewer_app = viewer_app
        self._launcher = launcher
        fd, self.path = tempfile.mkstemp(suffix=".md", prefix="gems-", dir=directory)
        os.close(fd)
        logger.debug("Using viewer app: %s with file: %s", viewer_app, self.path)

    def write(self, content: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(content)

    def reformat_json(self) -> None:
        format_json_in_file(self.path)

    def _release(self) -> None:
        self._launcher(self.viewer_app, self.path)


class PipeViewerSink(DisplaySink):
    """Streams output into a viewer process that outlives this program.

    After the result is delivered the viewer's stdin is closed and a
    background thread waits for the user to close the viewer; ``viewer_closed``
    is set when it does. Nothing in the main flow waits on it.
    """

    def __init__(self, command: list[str], popen: Callable[..., subprocess.Popen] = subprocess.Popen):
        super().__init__()
        self._process = popen(command, stdin=subprocess.PIPE, text=True, encoding="utf-8")
        self._pipe_open = True
        self._janitor: threading.Thread | None = None
        self.viewer_closed = threading.Event()
        logger.debug("Using %s with pipe (PID: %s)", command[0], self._process.pid)

    def write(self, content: str) -> None:
        if not self._pipe_open:
            return
        try:
            self._process.stdin.write(content)
            self._process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError):
            # Window closed early; not an error
            logger.debug("Pipe closed (window terminated early), stopping output...")
            self._pipe_open = False

    def finish(self) -> None:
        self._detach()
        logger.debug("Viewer is running in the background. The program will now exit.")

    def _release(self) -> None:
        self._detach()

    def _detach(self) -> None:
        if self._janitor is not None:
            return
        self._close_pipe()
        self._janitor = threading.Thread(target=self._wait_for_viewer, name="viewer-janitor", daemon=True)
        self._janitor.start()

    def _close_pipe(self) -> None:
        self._pipe_open = False
        try:
            self._process.stdin.close()
        except (BrokenPipeError, OSError):
            pass

    def _wait_for_viewer(self) -> None:
        self._process.wait()
        logger.debug("Viewer process finished")
        self.viewer_closed.set()


def create_sink(viewer_app: str) -> DisplaySink:
    """Pick the sink for the configured viewer app."""
    if not viewer_app:
        logger.debug("Using direct terminal output")
        return TerminalSink()

    if viewer_app == PIPE_VIEWER:
        if shutil.which(PIPE_VIEWER):
            return PipeViewerSink([PIPE_VIEWER])
        logger.warning("%s not found in PATH, using terminal output", PIPE_VIEWER)
        return TerminalSink()

    if viewer_app in TERMINAL_VIEWERS:
        return MarkdownFileSink(viewer_app)

    logger.warning("Unknown viewer app: %s, using terminal output", viewer_app)
    return TerminalSink()
